"""Delivery targets for dispatch outbox messages.

The outbox relay hands each pending DispatchMessage to a publisher. A
publisher raises DispatchDeliveryError when the channel rejects or
cannot receive the message; the relay then keeps the message pending.
"""

import logging
from typing import Any, Protocol

import httpx

from src.config import DispatchConfig

logger = logging.getLogger(__name__)


class DispatchDeliveryError(Exception):
    """The agent-dispatch channel did not accept a message."""


class DispatchPublisher(Protocol):
    """Anything that can deliver a dispatch message body."""

    def publish(self, topic: str, payload: dict[str, Any]) -> None:
        ...


class LoggingPublisher:
    """Publisher that only logs; used when no channel is configured."""

    def __init__(self) -> None:
        self.published: list[tuple[str, dict[str, Any]]] = []

    def publish(self, topic: str, payload: dict[str, Any]) -> None:
        logger.info(
            "Dispatch %s for run %s (batch %s, agent %s)",
            topic,
            payload.get("run_id"),
            payload.get("batch_id"),
            payload.get("agent_id"),
        )
        self.published.append((topic, payload))


class HttpDispatchPublisher:
    """Publisher that POSTs messages to the agent-dispatch service.

    The body is ``{"topic": ..., "payload": ...}``. Any non-2xx response
    or transport error is a delivery failure.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.url = url
        self._client = client or httpx.Client(timeout=timeout)

    def publish(self, topic: str, payload: dict[str, Any]) -> None:
        try:
            resp = self._client.post(self.url, json={"topic": topic, "payload": payload})
        except httpx.TimeoutException as e:
            raise DispatchDeliveryError(f"timed out posting to {self.url}") from e
        except httpx.HTTPError as e:
            raise DispatchDeliveryError(f"could not reach {self.url}: {e}") from e
        if resp.status_code >= 400:
            raise DispatchDeliveryError(
                f"{self.url} answered {resp.status_code}: {resp.text[:200]}"
            )

    def close(self) -> None:
        self._client.close()


def build_publisher(config: DispatchConfig) -> DispatchPublisher:
    """Create the publisher selected by the dispatch config section."""
    if config.publisher == "http" and config.url:
        return HttpDispatchPublisher(config.url, timeout=config.timeout_seconds)
    return LoggingPublisher()
