"""Read and record agent telemetry.

The router only reads telemetry (resolver for the agent's OS, preflight
for status and resource usage). record_heartbeat is the write side used
by the agent channel (see src.api.routes.agents).
"""

import logging
from typing import Any

from sqlalchemy.orm import Session

from src.db.models import Agent, AgentStatus, utc_now_iso
from src.errors import NotFoundError

logger = logging.getLogger(__name__)


class AgentTelemetryService:
    """Tenant-scoped access to agent rows and their latest heartbeat."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self, agent_id: str, tenant_id: str | None = None) -> Agent | None:
        """Return the agent, or None if missing or owned by another tenant.

        Args:
            agent_id: Agent to look up.
            tenant_id: When given, agents of other tenants are treated as
                missing.
        """
        agent = self.db.get(Agent, agent_id)
        if agent is None:
            return None
        if tenant_id is not None and agent.customer_id != tenant_id:
            logger.warning(
                "Agent %s requested by tenant %s belongs to another tenant",
                agent_id,
                tenant_id,
            )
            return None
        return agent

    def register(
        self,
        tenant_id: str,
        hostname: str | None = None,
        os: str | None = None,
        agent_id: str | None = None,
    ) -> Agent:
        """Create an agent row for a tenant (offline until its first heartbeat)."""
        agent = Agent(
            customer_id=tenant_id,
            hostname=hostname,
            os=os,
            status=AgentStatus.offline.value,
        )
        if agent_id:
            agent.id = agent_id
        self.db.add(agent)
        self.db.commit()
        self.db.refresh(agent)
        logger.info("Registered agent %s (%s) for tenant %s", agent.id, os, tenant_id)
        return agent

    def record_heartbeat(
        self,
        agent_id: str,
        cpu_usage: float | None = None,
        memory_usage: float | None = None,
        disk_usage: float | None = None,
        status: str | None = None,
        snapshot: dict[str, Any] | None = None,
    ) -> Agent:
        """Store a heartbeat's telemetry on the agent row.

        Args:
            agent_id: Reporting agent.
            cpu_usage: CPU usage percent.
            memory_usage: Memory usage percent.
            disk_usage: Disk usage percent.
            status: New connectivity status, if reported.
            snapshot: Raw heartbeat body kept for diagnostics.

        Returns:
            The updated agent.

        Raises:
            NotFoundError: If the agent does not exist.
        """
        agent = self.db.get(Agent, agent_id)
        if agent is None:
            raise NotFoundError("Agent", agent_id)

        if cpu_usage is not None:
            agent.cpu_usage = cpu_usage
        if memory_usage is not None:
            agent.memory_usage = memory_usage
        if disk_usage is not None:
            agent.disk_usage = disk_usage
        if status is not None:
            agent.status = status
        if snapshot is not None:
            agent.heartbeat = snapshot
        agent.last_heartbeat = utc_now_iso()

        self.db.commit()
        self.db.refresh(agent)
        return agent
