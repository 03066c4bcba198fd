"""Per-batch concurrency limits.

A batch caps how many of its runs may be non-terminal (started or
running) at once, per agent (per_agent_concurrency) and across the whole
tenant (per_tenant_concurrency). A limit of zero or less is unlimited.

evaluate() is the pure count-and-compare used inside the dispatcher's
start-run transaction. check_concurrency() is the pre-dispatch gate the
pipeline calls; when its lookup errors, RouterSettings.fail_open_concurrency
decides whether the request proceeds. The dispatcher re-checks under lock
either way, so a fail-open here cannot double-dispatch.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.config import RouterSettings
from src.db.models import ACTIVE_RUN_STATUSES, BatchRun, ScriptBatch

logger = logging.getLogger(__name__)

CONCURRENCY_UNAVAILABLE_MESSAGE = "Unable to verify concurrency limits"


@dataclass(frozen=True)
class ConcurrencyDecision:
    """Outcome of a concurrency check.

    Attributes:
        blocked: True if a limit is reached (or the check failed closed).
        reason: "agent", "tenant", "concurrency_check_failed", "fail_open"
            or None when allowed.
        message: User-facing text when blocked.
        agent_runs: Non-terminal runs of the batch on the agent.
        tenant_runs: Non-terminal runs of the batch across the tenant.
        agent_limit: per_agent_concurrency at check time.
        tenant_limit: per_tenant_concurrency at check time.
    """

    blocked: bool
    reason: str | None = None
    message: str | None = None
    agent_runs: int = 0
    tenant_runs: int = 0
    agent_limit: int | None = None
    tenant_limit: int | None = None


def _limit_reached(count: int, limit: int | None) -> bool:
    return limit is not None and limit > 0 and count >= limit


def count_active_runs(
    db: Session, batch_id: str, tenant_id: str, agent_id: str | None = None
) -> int:
    """Count non-terminal runs of a batch for a tenant, optionally per agent."""
    stmt = select(func.count(BatchRun.id)).where(
        BatchRun.batch_id == batch_id,
        BatchRun.customer_id == tenant_id,
        BatchRun.status.in_(ACTIVE_RUN_STATUSES),
    )
    if agent_id is not None:
        stmt = stmt.where(BatchRun.agent_id == agent_id)
    return int(db.scalar(stmt) or 0)


def evaluate(
    db: Session, batch: ScriptBatch, agent_id: str, tenant_id: str
) -> ConcurrencyDecision:
    """Compare current non-terminal run counts to the batch's limits.

    Raises:
        SQLAlchemyError: If the counts cannot be read.
    """
    agent_runs = count_active_runs(db, batch.id, tenant_id, agent_id)
    tenant_runs = count_active_runs(db, batch.id, tenant_id)
    agent_limit = batch.per_agent_concurrency
    tenant_limit = batch.per_tenant_concurrency
    counts = {
        "agent_runs": agent_runs,
        "tenant_runs": tenant_runs,
        "agent_limit": agent_limit,
        "tenant_limit": tenant_limit,
    }

    if _limit_reached(agent_runs, agent_limit):
        return ConcurrencyDecision(
            blocked=True,
            reason="agent",
            message=(
                f"{batch.name} is already running on this agent "
                f"({agent_runs}/{agent_limit}). Please wait for it to finish."
            ),
            **counts,
        )
    if _limit_reached(tenant_runs, tenant_limit):
        return ConcurrencyDecision(
            blocked=True,
            reason="tenant",
            message=(
                f"Tenant-wide limit for {batch.name} reached "
                f"({tenant_runs}/{tenant_limit}). Please wait for a run to finish."
            ),
            **counts,
        )
    return ConcurrencyDecision(blocked=False, **counts)


class ConcurrencyGuard:
    """Pre-dispatch concurrency gate with configurable failure behaviour."""

    def __init__(self, db: Session, settings: RouterSettings) -> None:
        self.db = db
        self.settings = settings

    def check_concurrency(
        self, batch: ScriptBatch, agent_id: str, tenant_id: str
    ) -> ConcurrencyDecision:
        """Check whether another run of the batch may start.

        Args:
            batch: Batch to be dispatched.
            agent_id: Target agent.
            tenant_id: Owning tenant.

        Returns:
            ConcurrencyDecision; blocked=True stops the pipeline.
        """
        try:
            decision = evaluate(self.db, batch, agent_id, tenant_id)
            # Release the read transaction so the dispatcher can take its lock.
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            if self.settings.fail_open_concurrency:
                logger.warning(
                    "Concurrency check failed for batch %s, allowing (fail open): %s",
                    batch.id,
                    e,
                )
                return ConcurrencyDecision(blocked=False, reason="fail_open")
            logger.error(
                "Concurrency check failed for batch %s, blocking (fail closed): %s",
                batch.id,
                e,
            )
            return ConcurrencyDecision(
                blocked=True,
                reason="concurrency_check_failed",
                message=CONCURRENCY_UNAVAILABLE_MESSAGE,
            )

        if decision.blocked:
            logger.info(
                "Concurrency limit (%s) blocks batch %s on agent %s",
                decision.reason,
                batch.id,
                agent_id,
            )
        return decision
