"""FastAPI routes for agent registration and heartbeats.

Heartbeats are the only write path for the telemetry the router's
resolver and preflight stages read.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from src.api.schemas import AgentRegisterRequest, AgentResponse, HeartbeatRequest
from src.db.connection import get_db
from src.db.models import Agent
from src.services.agent_telemetry import AgentTelemetryService

router = APIRouter(prefix="/agents", tags=["agents"])


def get_telemetry_service(db: Session = Depends(get_db)) -> AgentTelemetryService:
    """Dependency to get AgentTelemetryService instance."""
    return AgentTelemetryService(db)


@router.post("", response_model=AgentResponse, status_code=201)
def register_agent(
    request: AgentRegisterRequest,
    telemetry: AgentTelemetryService = Depends(get_telemetry_service),
) -> Agent:
    """Register an agent for a tenant."""
    return telemetry.register(
        request.tenant_id,
        hostname=request.hostname,
        os=request.os,
        agent_id=request.agent_id,
    )


@router.post("/{agent_id}/heartbeat", response_model=AgentResponse)
def record_heartbeat(
    agent_id: str,
    heartbeat: HeartbeatRequest,
    telemetry: AgentTelemetryService = Depends(get_telemetry_service),
) -> Agent:
    """Store an agent's latest telemetry.

    Raises:
        NotFoundError: If the agent does not exist (404).
    """
    return telemetry.record_heartbeat(
        agent_id,
        cpu_usage=heartbeat.cpu_usage,
        memory_usage=heartbeat.memory_usage,
        disk_usage=heartbeat.disk_usage,
        status=heartbeat.status.value if heartbeat.status else None,
        snapshot=heartbeat.snapshot,
    )
