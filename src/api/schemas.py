"""Pydantic schemas for API request/response validation.

This module defines the data contracts for the chat router REST API:
the router request body, confirmation decisions, run status and
conversation event listings.
"""

import json
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TerminalRunStatusEnum(str, Enum):
    """Statuses a run may be completed with."""

    succeeded = "succeeded"
    failed = "failed"
    cancelled = "cancelled"


# Router schemas


class RouterRequest(BaseModel):
    """One user message for the router.

    Attributes:
        tenant_id: Tenant issuing the request.
        user_id: Requesting user.
        agent_id: Target agent.
        conversation_id: Conversation id (created on first use).
        text: The user's message.
        inputs: Optional structured inputs (e.g. from a re-prompt form).
        request_id: Optional idempotency id; retries with the same id
            never start a second run.
    """

    tenant_id: str = Field(..., min_length=1, max_length=36)
    user_id: str = Field(..., min_length=1, max_length=36)
    agent_id: str = Field(..., min_length=1, max_length=36)
    conversation_id: str = Field(..., min_length=1, max_length=36)
    text: str = Field(..., min_length=1, max_length=4000)
    inputs: dict[str, Any] | None = None
    request_id: str | None = Field(default=None, min_length=1, max_length=100)

    @field_validator("text")
    @classmethod
    def text_not_blank(cls, value: str) -> str:
        """Reject whitespace-only messages."""
        if not value.strip():
            raise ValueError("text must not be blank")
        return value


class ConfirmationApproveRequest(BaseModel):
    """Body for approving a pending confirmation."""

    user_id: str = Field(..., min_length=1, max_length=36)
    request_id: str | None = Field(default=None, min_length=1, max_length=100)


class ConfirmationDenyRequest(BaseModel):
    """Body for denying a pending confirmation."""

    user_id: str = Field(..., min_length=1, max_length=36)
    reason: str | None = Field(default=None, max_length=1000)


# Run schemas


class RunCompleteRequest(BaseModel):
    """Completion report from the agent execution channel."""

    status: TerminalRunStatusEnum
    stdout: str | None = None
    stderr: str | None = None


class RunResponse(BaseModel):
    """Schema for run response."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    batch_id: str
    agent_id: str
    customer_id: str
    conversation_id: str | None = None
    batch_version: int | None = None
    status: str
    inputs: dict[str, Any] = Field(default_factory=dict)
    raw_stdout: str | None = None
    raw_stderr: str | None = None
    created_at: str
    started_at: str | None = None
    finished_at: str | None = None


# Conversation event schemas


class ChatEventResponse(BaseModel):
    """Schema for one conversation event."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    type: str
    agent_id: str | None = None
    ref_id: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: str

    @field_validator("payload", mode="before")
    @classmethod
    def parse_payload(cls, value: Any) -> Any:
        """Accept payloads still encoded as JSON text."""
        if isinstance(value, str):
            return json.loads(value) if value else {}
        return value


class ChatEventListResponse(BaseModel):
    """Schema for a conversation's event trail."""

    conversation_id: str
    events: list[ChatEventResponse]
    total: int


# Agent schemas


class AgentStatusEnum(str, Enum):
    """Connectivity states an agent may report."""

    running = "running"
    offline = "offline"
    stopped = "stopped"
    error = "error"


class AgentRegisterRequest(BaseModel):
    """Schema for registering an agent."""

    tenant_id: str = Field(..., min_length=1, max_length=36)
    hostname: str | None = Field(default=None, max_length=255)
    os: str | None = Field(default=None, max_length=50)
    agent_id: str | None = Field(default=None, min_length=1, max_length=36)


class HeartbeatRequest(BaseModel):
    """Telemetry reported by an agent heartbeat."""

    status: AgentStatusEnum | None = None
    cpu_usage: float | None = Field(default=None, ge=0, le=100)
    memory_usage: float | None = Field(default=None, ge=0, le=100)
    disk_usage: float | None = Field(default=None, ge=0, le=100)
    snapshot: dict[str, Any] | None = None


class AgentResponse(BaseModel):
    """Schema for agent response."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    customer_id: str
    hostname: str | None = None
    os: str | None = None
    status: str
    cpu_usage: float | None = None
    memory_usage: float | None = None
    disk_usage: float | None = None
    last_heartbeat: str | None = None
