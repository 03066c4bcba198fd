"""Safety checks of live agent telemetry before a batch is dispatched.

All checks run and every failure is reported, so the user sees the
complete list of reasons in one response. Supported keys in a batch's
``preflight`` map (all optional, percentages unless noted):

    max_memory_usage   memory used must not exceed this
    min_memory         legacy alias of max_memory_usage
    max_cpu_usage      CPU used must not exceed this
    max_disk_usage     disk used must not exceed this
    min_free_disk      disk free (100 - used) must be at least this
    max_heartbeat_age_sec  seconds since last heartbeat must not exceed this

A declared threshold whose telemetry value is missing fails the check,
and so does a malformed threshold map (unknown key or non-numeric value).
A lookup error fails preflight closed.
"""

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.db.models import Agent, AgentStatus, ScriptBatch
from src.services.agent_telemetry import AgentTelemetryService
from src.services.batch_resolver import os_supported

logger = logging.getLogger(__name__)


@dataclass
class PreflightResult:
    """Outcome of preflight checks.

    Attributes:
        failed: True if any check failed.
        details: One human-readable string per failed check.
    """

    failed: bool
    details: list[str] = field(default_factory=list)


def _fmt(value: float) -> str:
    """Render a percentage without a trailing '.0'."""
    return f"{value:g}"


def _heartbeat_age_seconds(last_heartbeat: str | None, now: datetime) -> float | None:
    if not last_heartbeat:
        return None
    try:
        seen = datetime.fromisoformat(last_heartbeat)
    except ValueError:
        return None
    if seen.tzinfo is None:
        seen = seen.replace(tzinfo=UTC)
    return (now - seen).total_seconds()


class PreflightThresholds(BaseModel):
    """Typed view of a batch's ``preflight`` map."""

    model_config = ConfigDict(extra="forbid")

    max_memory_usage: float | None = None
    min_memory: float | None = None
    max_cpu_usage: float | None = None
    max_disk_usage: float | None = None
    min_free_disk: float | None = None
    max_heartbeat_age_sec: float | None = Field(default=None, ge=0)


def parse_thresholds(preflight: dict[str, Any] | None) -> PreflightThresholds:
    """Validate a preflight map.

    Raises:
        pydantic.ValidationError: On unknown keys or non-numeric values.
    """
    return PreflightThresholds.model_validate(preflight or {})


def describe_threshold_errors(error: PydanticValidationError) -> list[str]:
    """One "<key>: <problem>" line per invalid threshold."""
    return [
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
        for err in error.errors()
    ]


def evaluate_thresholds(
    agent: Agent, preflight: dict[str, Any], now: datetime | None = None
) -> list[str]:
    """Compare agent telemetry against a batch's preflight thresholds.

    Args:
        agent: Agent with current telemetry.
        preflight: The batch's threshold map.
        now: Reference time for heartbeat age (defaults to current UTC).

    Returns:
        Failure details, empty when every threshold passes. A malformed
        threshold map yields one detail per bad key.
    """
    try:
        thresholds = parse_thresholds(preflight)
    except PydanticValidationError as e:
        return [f"Invalid preflight threshold {line}" for line in describe_threshold_errors(e)]

    details: list[str] = []

    max_memory = (
        thresholds.max_memory_usage
        if thresholds.max_memory_usage is not None
        else thresholds.min_memory
    )
    if max_memory is not None:
        if agent.memory_usage is None:
            details.append("Memory usage unknown, cannot verify memory threshold")
        elif agent.memory_usage > max_memory:
            details.append(
                f"Insufficient memory: {_fmt(agent.memory_usage)}% used, "
                f"need < {_fmt(max_memory)}%"
            )

    max_cpu = thresholds.max_cpu_usage
    if max_cpu is not None:
        if agent.cpu_usage is None:
            details.append("CPU usage unknown, cannot verify CPU threshold")
        elif agent.cpu_usage > max_cpu:
            details.append(
                f"High CPU usage: {_fmt(agent.cpu_usage)}% used, "
                f"need < {_fmt(max_cpu)}%"
            )

    max_disk = thresholds.max_disk_usage
    min_free = thresholds.min_free_disk
    if max_disk is not None or min_free is not None:
        if agent.disk_usage is None:
            details.append("Disk usage unknown, cannot verify disk threshold")
        else:
            if max_disk is not None and agent.disk_usage > max_disk:
                details.append(
                    f"Disk usage too high: {_fmt(agent.disk_usage)}% used, "
                    f"need < {_fmt(max_disk)}%"
                )
            free = 100 - agent.disk_usage
            if min_free is not None and free < min_free:
                details.append(
                    f"Insufficient disk space: {_fmt(free)}% free, "
                    f"need >= {_fmt(min_free)}%"
                )

    max_age = thresholds.max_heartbeat_age_sec
    if max_age is not None:
        age = _heartbeat_age_seconds(agent.last_heartbeat, now or datetime.now(UTC))
        if age is None:
            details.append("No heartbeat received from agent")
        elif age > max_age:
            details.append(
                f"Agent heartbeat is stale: last seen {int(age)}s ago, "
                f"limit {_fmt(max_age)}s"
            )

    return details


class PreflightEvaluator:
    """Runs preflight checks for a batch against one agent."""

    def __init__(self, db: Session) -> None:
        self.db = db
        self.telemetry = AgentTelemetryService(db)

    def run_preflight(self, agent_id: str, batch: ScriptBatch) -> PreflightResult:
        """Check agent status, OS and the batch's thresholds.

        Args:
            agent_id: Target agent.
            batch: Resolved batch.

        Returns:
            PreflightResult listing every failure.
        """
        try:
            agent = self.telemetry.get(agent_id, tenant_id=batch.customer_id)
            if agent is None:
                return PreflightResult(failed=True, details=["Agent not found or offline"])

            details: list[str] = []
            if agent.status != AgentStatus.running.value:
                details.append(f"Agent is {agent.status}, expected running")

            if not os_supported(agent.os, batch.os_targets):
                details.append(f"Agent OS {agent.os} not supported for this batch")

            details.extend(evaluate_thresholds(agent, batch.preflight))
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Preflight lookup failed for agent %s: %s", agent_id, e)
            return PreflightResult(failed=True, details=["Preflight check failed"])

        if details:
            logger.info(
                "Preflight failed for batch %s on agent %s: %s",
                batch.id,
                agent_id,
                "; ".join(details),
            )
        return PreflightResult(failed=bool(details), details=details)
