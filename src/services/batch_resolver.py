"""Resolve an intent to an executable script batch for a specific agent.

A batch is executable for an agent when it belongs to the tenant, carries
the name the intent catalog maps to, has an active version, and lists the
agent's OS in its targets. Lookup failures resolve to None: an unknown
batch is never dispatched.
"""

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.db.models import ScriptBatch, ScriptBatchVersion, VersionStatus
from src.orchestrator.intent_catalog import IntentCatalog
from src.services.agent_telemetry import AgentTelemetryService

logger = logging.getLogger(__name__)


def os_supported(agent_os: str | None, os_targets: list[str]) -> bool:
    """True if agent_os is one of os_targets (case-insensitive)."""
    if not agent_os:
        return False
    wanted = agent_os.strip().lower()
    return any(str(t).strip().lower() == wanted for t in os_targets)


class BatchResolver:
    """Maps (tenant, intent, agent) to a ScriptBatch."""

    def __init__(self, db: Session, catalog: IntentCatalog) -> None:
        self.db = db
        self.catalog = catalog
        self.telemetry = AgentTelemetryService(db)

    def resolve_batch(
        self, tenant_id: str, intent: str, agent_id: str
    ) -> ScriptBatch | None:
        """Find the executable batch for an intent on an agent.

        Args:
            tenant_id: Tenant owning the batch and the agent.
            intent: Classified intent label.
            agent_id: Target agent.

        Returns:
            The matching batch, or None when the intent is unmapped, the
            agent is unknown, no active batch targets the agent's OS, or
            the lookup fails.
        """
        batch_name = self.catalog.batch_name_for(intent)
        if batch_name is None:
            logger.info("Intent %s has no batch mapping", intent)
            return None

        try:
            agent = self.telemetry.get(agent_id, tenant_id=tenant_id)
            if agent is None:
                logger.info("Agent %s not found for tenant %s", agent_id, tenant_id)
                return None

            candidates = (
                self.db.query(ScriptBatch)
                .join(
                    ScriptBatchVersion,
                    (ScriptBatchVersion.batch_id == ScriptBatch.id)
                    & (ScriptBatchVersion.version == ScriptBatch.active_version),
                )
                .filter(
                    ScriptBatch.customer_id == tenant_id,
                    ScriptBatch.name == batch_name,
                    ScriptBatch.active_version.is_not(None),
                    ScriptBatchVersion.status == VersionStatus.active.value,
                )
                .order_by(ScriptBatch.created_at, ScriptBatch.id)
                .all()
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(
                "Batch lookup failed for intent %s (tenant %s): %s",
                intent,
                tenant_id,
                e,
            )
            return None

        for batch in candidates:
            if os_supported(agent.os, batch.os_targets):
                return batch

        logger.info(
            "No active %r batch targets OS %r for tenant %s",
            batch_name,
            agent.os,
            tenant_id,
        )
        return None
