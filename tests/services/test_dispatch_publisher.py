"""Tests for dispatch publishers."""

import httpx
import pytest

from src.config import DispatchConfig
from src.services.dispatch_publisher import (
    DispatchDeliveryError,
    HttpDispatchPublisher,
    LoggingPublisher,
    build_publisher,
)

URL = "http://dispatch.local/messages"


def _publisher(handler) -> HttpDispatchPublisher:
    return HttpDispatchPublisher(URL, client=httpx.Client(transport=httpx.MockTransport(handler)))


class TestHttpDispatchPublisher:

    def test_posts_topic_and_payload(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(202)

        _publisher(handler).publish("run.dispatch", {"run_id": "r1"})

        assert str(seen[0].url) == URL
        assert seen[0].method == "POST"
        assert b'"topic":"run.dispatch"' in seen[0].content.replace(b" ", b"")

    def test_error_status_raises(self):
        publisher = _publisher(lambda request: httpx.Response(503, text="busy"))
        with pytest.raises(DispatchDeliveryError, match="503"):
            publisher.publish("run.dispatch", {"run_id": "r1"})

    def test_transport_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(DispatchDeliveryError, match="could not reach"):
            _publisher(handler).publish("run.dispatch", {})

    def test_timeout_raises(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(DispatchDeliveryError, match="timed out"):
            _publisher(handler).publish("run.dispatch", {})


class TestBuildPublisher:

    def test_default_is_logging(self):
        assert isinstance(build_publisher(DispatchConfig()), LoggingPublisher)

    def test_http(self):
        publisher = build_publisher(DispatchConfig(publisher="http", url=URL))
        try:
            assert isinstance(publisher, HttpDispatchPublisher)
            assert publisher.url == URL
        finally:
            publisher.close()

    def test_logging_publisher_records(self):
        publisher = LoggingPublisher()
        publisher.publish("run.dispatch", {"run_id": "r1"})
        assert publisher.published == [("run.dispatch", {"run_id": "r1"})]
