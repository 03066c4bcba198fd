"""SQLAlchemy ORM models for the chat router state database.

This module defines the tenant-scoped data models the router reads and
writes: agents and their telemetry, command policies, the script batch
catalog, execution runs, conversations with their append-only event
trail, confirmation requests, the dispatch outbox and the tenant audit
log. Uses SQLAlchemy 2.0 style with Mapped and mapped_column.
"""

import json
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
)


def generate_uuid() -> str:
    """Generate a UUID4 string for primary keys."""
    return str(uuid4())


def utc_now_iso() -> str:
    """Generate current UTC timestamp in ISO8601 format."""
    return datetime.now(UTC).isoformat()


def _load_json(raw: str | None, default: Any) -> Any:
    """Decode a JSON text column, falling back to default when empty."""
    if not raw:
        return default
    return json.loads(raw)


def _dump_json(value: Any) -> str | None:
    """Encode a value for a JSON text column (None stays NULL)."""
    if value is None:
        return None
    return json.dumps(value)


# Enums matching the database schema constraints


class AgentStatus(str, Enum):
    """Connectivity states reported for a remote agent."""

    running = "running"
    offline = "offline"
    stopped = "stopped"
    error = "error"


class PolicyMode(str, Enum):
    """Enforcement modes for command policies.

    Precedence when several policies match: forbid > confirm > auto.
    """

    auto = "auto"
    confirm = "confirm"
    forbid = "forbid"


class MatchType(str, Enum):
    """How a policy's match_value is compared against a command."""

    exact = "exact"
    regex = "regex"
    wildcard = "wildcard"


class VersionStatus(str, Enum):
    """Lifecycle of a script batch version.

    Lifecycle: draft -> active -> superseded
    """

    draft = "draft"
    active = "active"
    superseded = "superseded"


class RunStatus(str, Enum):
    """Status values for batch runs.

    Lifecycle: started -> running -> succeeded/failed/cancelled
    """

    started = "started"
    running = "running"
    succeeded = "succeeded"
    failed = "failed"
    cancelled = "cancelled"


# Runs in these states count against concurrency limits
ACTIVE_RUN_STATUSES = (RunStatus.started.value, RunStatus.running.value)
TERMINAL_RUN_STATUSES = (
    RunStatus.succeeded.value,
    RunStatus.failed.value,
    RunStatus.cancelled.value,
)


class ConversationStatus(str, Enum):
    """Open/closed state of a chat conversation."""

    open = "open"
    closed = "closed"


class ConfirmationStatus(str, Enum):
    """Lifecycle of a command confirmation request.

    Lifecycle: pending -> approved/rejected/expired
    """

    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    expired = "expired"


class OutboxStatus(str, Enum):
    """Delivery state of a dispatch outbox message."""

    pending = "pending"
    delivered = "delivered"
    failed = "failed"


class ChatEventType(str, Enum):
    """Types of events recorded in a conversation's audit trail."""

    intent_classified = "intent_classified"
    smalltalk_response = "smalltalk_response"
    policy_blocked = "policy_blocked"
    policy_fail_open = "policy_fail_open"
    batch_not_found = "batch_not_found"
    input_request = "input_request"
    inputs_validated = "inputs_validated"
    confirmation_requested = "confirmation_requested"
    confirmation_approved = "confirmation_approved"
    confirmation_rejected = "confirmation_rejected"
    preflight_passed = "preflight_passed"
    preflight_failed = "preflight_failed"
    concurrency_blocked = "concurrency_blocked"
    concurrency_fail_open = "concurrency_fail_open"
    task_queued = "task_queued"
    task_started = "task_started"
    task_succeeded = "task_succeeded"
    task_failed = "task_failed"
    task_cancelled = "task_cancelled"
    dispatch_failed = "dispatch_failed"
    deadline_exceeded = "deadline_exceeded"
    router_error = "router_error"
    conversation_closed = "conversation_closed"


# SQLAlchemy Base


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# Models


class Agent(Base):
    """Remote server agent owned by a tenant.

    Telemetry columns are refreshed by heartbeats; the router only reads
    them (resolver for OS, preflight for status and resource usage).

    Attributes:
        id: UUID primary key
        customer_id: Owning tenant
        hostname: Reported hostname
        os: Operating system label (e.g. "ubuntu")
        status: Connectivity state ("running" means online)
        cpu_usage: Last reported CPU usage percent
        memory_usage: Last reported memory usage percent
        disk_usage: Last reported disk usage percent
        heartbeat_json: Raw last heartbeat snapshot
        last_heartbeat: ISO8601 timestamp of the last heartbeat
    """

    __tablename__ = "agents"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    customer_id: Mapped[str] = mapped_column(String(36), nullable=False)
    hostname: Mapped[str | None] = mapped_column(String(255), nullable=True)
    os: Mapped[str | None] = mapped_column(String(50), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=AgentStatus.offline.value
    )

    # Telemetry (percentages)
    cpu_usage: Mapped[float | None] = mapped_column(Float, nullable=True)
    memory_usage: Mapped[float | None] = mapped_column(Float, nullable=True)
    disk_usage: Mapped[float | None] = mapped_column(Float, nullable=True)
    heartbeat_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_heartbeat: Mapped[str | None] = mapped_column(String(50), nullable=True)

    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    updated_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso, onupdate=utc_now_iso
    )

    __table_args__ = (Index("idx_agents_customer", "customer_id"),)

    @property
    def heartbeat(self) -> dict[str, Any]:
        """Parse the heartbeat snapshot JSON."""
        return _load_json(self.heartbeat_json, {})

    @heartbeat.setter
    def heartbeat(self, value: dict[str, Any] | None) -> None:
        self.heartbeat_json = _dump_json(value)

    def __repr__(self) -> str:
        return f"<Agent(id={self.id!r}, os={self.os!r}, status={self.status!r})>"


class CommandPolicy(Base):
    """Tenant rule deciding whether a command is auto-run, confirmed or forbidden.

    Attributes:
        id: UUID primary key
        customer_id: Owning tenant
        policy_name: Display name, quoted in block messages
        mode: auto, confirm or forbid
        match_type: exact, regex or wildcard
        match_value: Pattern compared against the intent or command text
        os_whitelist_json: JSON list of OS labels the policy applies to
            (NULL or empty applies to every OS)
        risk: Free-form risk label (low/medium/high/critical)
        confirm_message: Message shown when confirmation is required
        timeout_sec: Execution timeout hint for matched commands
        active: Inactive policies are ignored
    """

    __tablename__ = "command_policies"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    customer_id: Mapped[str] = mapped_column(String(36), nullable=False)
    policy_name: Mapped[str] = mapped_column(String(255), nullable=False)
    mode: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PolicyMode.auto.value
    )
    match_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=MatchType.exact.value
    )
    match_value: Mapped[str] = mapped_column(Text, nullable=False)
    os_whitelist_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    risk: Mapped[str] = mapped_column(String(20), nullable=False, default="low")
    confirm_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    timeout_sec: Mapped[int | None] = mapped_column(Integer, nullable=True)
    active: Mapped[bool] = mapped_column(nullable=False, default=True)

    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    updated_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso, onupdate=utc_now_iso
    )

    __table_args__ = (
        Index("idx_command_policies_customer_active", "customer_id", "active"),
    )

    @property
    def os_whitelist(self) -> list[str]:
        """Parse the OS whitelist JSON into a list."""
        return _load_json(self.os_whitelist_json, [])

    @os_whitelist.setter
    def os_whitelist(self, value: list[str] | None) -> None:
        self.os_whitelist_json = _dump_json(value) if value else None

    def __repr__(self) -> str:
        return (
            f"<CommandPolicy(name={self.policy_name!r}, mode={self.mode!r}, "
            f"match={self.match_type}:{self.match_value!r})>"
        )


class ScriptBatch(Base):
    """Named, versioned, allow-listed script operation for a tenant.

    Attributes:
        id: UUID primary key
        customer_id: Owning tenant
        name: Batch name the intent catalog maps to
        description: Optional description
        risk: Risk label
        os_targets_json: JSON list of supported OS labels
        inputs_schema_json: JSON Schema for run inputs
        inputs_defaults_json: Default input values
        preflight_json: Preflight thresholds (see PreflightEvaluator)
        max_timeout_sec: Upper bound on a run's wall time
        per_agent_concurrency: Max non-terminal runs per agent (<=0 unlimited)
        per_tenant_concurrency: Max non-terminal runs per tenant (<=0 unlimited)
        active_version: Version number currently executable (NULL = none)
    """

    __tablename__ = "script_batches"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    customer_id: Mapped[str] = mapped_column(String(36), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    risk: Mapped[str] = mapped_column(String(20), nullable=False, default="low")
    os_targets_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    inputs_schema_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    inputs_defaults_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    preflight_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    max_timeout_sec: Mapped[int] = mapped_column(
        Integer, nullable=False, default=300
    )
    per_agent_concurrency: Mapped[int] = mapped_column(
        Integer, nullable=False, default=1, server_default="1"
    )
    per_tenant_concurrency: Mapped[int] = mapped_column(
        Integer, nullable=False, default=10, server_default="10"
    )
    active_version: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    updated_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso, onupdate=utc_now_iso
    )

    versions: Mapped[list["ScriptBatchVersion"]] = relationship(
        "ScriptBatchVersion",
        back_populates="batch",
        cascade="all, delete-orphan",
        order_by="ScriptBatchVersion.version",
    )

    __table_args__ = (
        Index("idx_script_batches_customer_name", "customer_id", "name"),
    )

    @property
    def os_targets(self) -> list[str]:
        """Parse the supported OS list."""
        return _load_json(self.os_targets_json, [])

    @os_targets.setter
    def os_targets(self, value: list[str]) -> None:
        self.os_targets_json = json.dumps(value or [])

    @property
    def inputs_schema(self) -> dict[str, Any]:
        """Parse the JSON Schema for run inputs."""
        return _load_json(self.inputs_schema_json, {})

    @inputs_schema.setter
    def inputs_schema(self, value: dict[str, Any] | None) -> None:
        self.inputs_schema_json = _dump_json(value)

    @property
    def inputs_defaults(self) -> dict[str, Any]:
        """Parse the default input values."""
        return _load_json(self.inputs_defaults_json, {})

    @inputs_defaults.setter
    def inputs_defaults(self, value: dict[str, Any] | None) -> None:
        self.inputs_defaults_json = _dump_json(value)

    @property
    def preflight(self) -> dict[str, Any]:
        """Parse the preflight threshold map."""
        return _load_json(self.preflight_json, {})

    @preflight.setter
    def preflight(self, value: dict[str, Any] | None) -> None:
        self.preflight_json = _dump_json(value)

    def __repr__(self) -> str:
        return (
            f"<ScriptBatch(id={self.id!r}, name={self.name!r}, "
            f"active_version={self.active_version!r})>"
        )


class ScriptBatchVersion(Base):
    """Immutable script source revision of a batch.

    Attributes:
        id: UUID primary key
        batch_id: Parent batch
        version: 1-based version number, unique per batch
        sha256: Hex digest of the source
        size_bytes: Source length in bytes
        source: Script body
        notes: Optional release notes
        status: draft, active or superseded
    """

    __tablename__ = "script_batch_versions"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    batch_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("script_batches.id", ondelete="CASCADE"), nullable=False
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    sha256: Mapped[str] = mapped_column(String(64), nullable=False)
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False)
    source: Mapped[str] = mapped_column(Text, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=VersionStatus.draft.value
    )
    created_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    batch: Mapped["ScriptBatch"] = relationship(
        "ScriptBatch", back_populates="versions"
    )

    __table_args__ = (
        UniqueConstraint("batch_id", "version", name="uq_batch_version"),
        UniqueConstraint("batch_id", "sha256", name="uq_batch_version_sha"),
        Index("idx_script_batch_versions_batch", "batch_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<ScriptBatchVersion(batch_id={self.batch_id!r}, "
            f"version={self.version}, status={self.status!r})>"
        )


class BatchRun(Base):
    """One dispatch of a batch against one agent.

    Created by the run dispatcher in status "started"; terminal states are
    written by the agent execution channel through complete_run.

    Attributes:
        id: UUID primary key (the run_id returned to the client)
        batch_id: Batch being executed
        agent_id: Target agent
        customer_id: Owning tenant
        conversation_id: Conversation that requested the run
        batch_version: Active version at dispatch time
        inputs_json: Validated inputs
        status: started, running, succeeded, failed or cancelled
        idempotency_key: Client request id; repeated keys replay the run
    """

    __tablename__ = "batch_runs"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    batch_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("script_batches.id"), nullable=False
    )
    agent_id: Mapped[str] = mapped_column(String(36), nullable=False)
    customer_id: Mapped[str] = mapped_column(String(36), nullable=False)
    conversation_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    batch_version: Mapped[int | None] = mapped_column(Integer, nullable=True)
    inputs_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RunStatus.started.value
    )
    idempotency_key: Mapped[str | None] = mapped_column(
        String(200), nullable=True, unique=True
    )

    # Output captured from the agent
    raw_stdout: Mapped[str | None] = mapped_column(Text, nullable=True)
    raw_stderr: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    started_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    finished_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    updated_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso, onupdate=utc_now_iso
    )

    __table_args__ = (
        Index("idx_batch_runs_batch_agent_status", "batch_id", "agent_id", "status"),
        Index("idx_batch_runs_batch_customer_status", "batch_id", "customer_id", "status"),
    )

    @property
    def inputs(self) -> dict[str, Any]:
        return _load_json(self.inputs_json, {})

    @inputs.setter
    def inputs(self, value: dict[str, Any] | None) -> None:
        self.inputs_json = _dump_json(value)

    def __repr__(self) -> str:
        return f"<BatchRun(id={self.id!r}, batch_id={self.batch_id!r}, status={self.status!r})>"


class ChatConversation(Base):
    """Chat session between a user and one agent.

    The typed conversation state (idle, awaiting inputs, awaiting
    confirmation) lives in meta_json under the "state" key; see
    src.services.conversation_state.

    Attributes:
        id: UUID primary key (client supplied)
        customer_id: Owning tenant
        agent_id: Agent the conversation targets
        user_id: Requesting user
        status: open or closed
        last_intent: Last intent whose inputs validated
        meta_json: JSON metadata blob
    """

    __tablename__ = "chat_conversations"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    customer_id: Mapped[str] = mapped_column(String(36), nullable=False)
    agent_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    user_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ConversationStatus.open.value
    )
    last_intent: Mapped[str | None] = mapped_column(String(100), nullable=True)
    meta_json: Mapped[str | None] = mapped_column(Text, nullable=True)

    started_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    closed_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    updated_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso, onupdate=utc_now_iso
    )

    events: Mapped[list["ChatEvent"]] = relationship(
        "ChatEvent",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="ChatEvent.created_at",
    )

    __table_args__ = (Index("idx_chat_conversations_customer", "customer_id"),)

    @property
    def meta(self) -> dict[str, Any]:
        """Parse the metadata JSON."""
        return _load_json(self.meta_json, {})

    @meta.setter
    def meta(self, value: dict[str, Any] | None) -> None:
        self.meta_json = _dump_json(value)

    def __repr__(self) -> str:
        return (
            f"<ChatConversation(id={self.id!r}, status={self.status!r}, "
            f"last_intent={self.last_intent!r})>"
        )


class ChatEvent(Base):
    """Append-only audit record of one router decision.

    Attributes:
        id: UUID primary key
        conversation_id: Parent conversation
        agent_id: Agent the event concerns
        type: ChatEventType value
        payload_json: Redacted structured payload
        ref_id: Optional reference (run id, confirmation id)
        created_at: ISO8601 timestamp
    """

    __tablename__ = "chat_events"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    conversation_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("chat_conversations.id", ondelete="CASCADE"),
        nullable=False,
    )
    agent_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    payload_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    ref_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    conversation: Mapped["ChatConversation"] = relationship(
        "ChatConversation", back_populates="events"
    )

    __table_args__ = (
        Index("idx_chat_events_conversation", "conversation_id"),
        Index("idx_chat_events_type", "type"),
    )

    @property
    def payload(self) -> dict[str, Any]:
        return _load_json(self.payload_json, {})

    def __repr__(self) -> str:
        return f"<ChatEvent(type={self.type!r}, conversation_id={self.conversation_id!r})>"


class CommandConfirmation(Base):
    """Pending approval for a command matched by a confirm-mode policy.

    Attributes:
        id: UUID primary key
        customer_id: Owning tenant
        conversation_id: Conversation to resume after approval
        agent_id: Target agent
        policy_id: Policy that required confirmation
        batch_id: Resolved batch
        intent: Classified intent
        command_text: Raw user text
        params_json: Validated inputs to dispatch with
        status: pending, approved, rejected or expired
        requested_by: User who issued the command
        decided_by: User who approved or denied
        rejection_reason: Reason supplied on deny
        expires_at: ISO8601 deadline for a decision
    """

    __tablename__ = "command_confirmations"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    customer_id: Mapped[str] = mapped_column(String(36), nullable=False)
    conversation_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("chat_conversations.id", ondelete="SET NULL"), nullable=True
    )
    agent_id: Mapped[str] = mapped_column(String(36), nullable=False)
    policy_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    batch_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    intent: Mapped[str | None] = mapped_column(String(100), nullable=True)
    command_text: Mapped[str] = mapped_column(Text, nullable=False)
    params_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ConfirmationStatus.pending.value
    )
    requested_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    decided_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    decided_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    expires_at: Mapped[str] = mapped_column(String(50), nullable=False)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    __table_args__ = (
        Index("idx_command_confirmations_status_expires", "status", "expires_at"),
        Index("idx_command_confirmations_conversation", "conversation_id"),
    )

    @property
    def params(self) -> dict[str, Any]:
        return _load_json(self.params_json, {})

    @params.setter
    def params(self, value: dict[str, Any] | None) -> None:
        self.params_json = _dump_json(value)

    def __repr__(self) -> str:
        return f"<CommandConfirmation(id={self.id!r}, status={self.status!r})>"


class DispatchMessage(Base):
    """Transactional outbox entry for the agent-dispatch channel.

    Written in the same transaction as the BatchRun it announces, then
    delivered by OutboxRelay.

    Attributes:
        id: UUID primary key
        run_id: Run being dispatched
        topic: Channel topic (e.g. "run.dispatch")
        payload_json: Message body
        status: pending, delivered or failed
        attempts: Delivery attempts so far
        last_error: Last delivery error text
    """

    __tablename__ = "dispatch_outbox"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    run_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("batch_runs.id", ondelete="CASCADE"), nullable=False
    )
    topic: Mapped[str] = mapped_column(String(100), nullable=False)
    payload_json: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=OutboxStatus.pending.value
    )
    attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    delivered_at: Mapped[str | None] = mapped_column(String(50), nullable=True)

    __table_args__ = (
        Index("idx_dispatch_outbox_status_created", "status", "created_at"),
    )

    @property
    def payload(self) -> dict[str, Any]:
        return _load_json(self.payload_json, {})

    def __repr__(self) -> str:
        return f"<DispatchMessage(id={self.id!r}, run_id={self.run_id!r}, status={self.status!r})>"


class AuditLog(Base):
    """Tenant-level audit record for administrative and dispatch actions.

    Attributes:
        id: UUID primary key
        customer_id: Owning tenant
        actor: User or component that acted
        action: Action name (e.g. "run.dispatched")
        target: Identifier of the affected object
        meta_json: Redacted structured context
        created_at: ISO8601 timestamp
    """

    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    customer_id: Mapped[str] = mapped_column(String(36), nullable=False)
    actor: Mapped[str] = mapped_column(String(100), nullable=False)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    target: Mapped[str | None] = mapped_column(String(255), nullable=True)
    meta_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    __table_args__ = (
        Index("idx_audit_logs_customer_created", "customer_id", "created_at"),
        Index("idx_audit_logs_action", "action"),
    )

    @property
    def meta(self) -> dict[str, Any]:
        return _load_json(self.meta_json, {})

    def __repr__(self) -> str:
        return f"<AuditLog(action={self.action!r}, target={self.target!r})>"
