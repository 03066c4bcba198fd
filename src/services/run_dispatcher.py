"""Atomic run start and run completion.

Starting a run is one transaction:

1. Lock the batch row (SELECT ... FOR UPDATE; on SQLite the engine's
   BEGIN IMMEDIATE already holds the write lock, see
   src.db.connection.configure_sqlite_engine).
2. Re-count non-terminal runs against the batch's limits.
3. Insert the BatchRun in status "started" and its dispatch outbox
   message, plus an audit row.
4. Commit.

Two requests racing for a batch with a limit of one therefore serialize
on the lock, and the second sees the first's run and is blocked. The
outbox message is delivered later by OutboxRelay, so a crash between
commit and delivery loses nothing.

Usage:
    dispatcher = RunDispatcher(db, ChatEventLogger(db))
    result = dispatcher.enqueue(batch, agent_id, tenant_id, conversation_id, inputs)
    if result.success:
        print(result.run_id)
"""

import json
import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from src.db.models import (
    ACTIVE_RUN_STATUSES,
    TERMINAL_RUN_STATUSES,
    BatchRun,
    ChatEventType,
    DispatchMessage,
    RunStatus,
    ScriptBatch,
    utc_now_iso,
)
from src.errors import NotFoundError, RouterError, RunStateError
from src.services.audit_service import AuditService
from src.services.chat_event_logger import ChatEventLogger
from src.services.concurrency_guard import ConcurrencyDecision, evaluate
from src.services.idempotency import generate_idempotency_key

logger = logging.getLogger(__name__)

DISPATCH_TOPIC = "run.dispatch"
DISPATCH_FAILED_MESSAGE = "Failed to queue task. Please try again."

_COMPLETION_EVENTS = {
    RunStatus.succeeded.value: ChatEventType.task_succeeded,
    RunStatus.failed.value: ChatEventType.task_failed,
    RunStatus.cancelled.value: ChatEventType.task_cancelled,
}


@dataclass
class DispatchResult:
    """Outcome of a start-run attempt.

    Attributes:
        success: A run exists for this request (new or replayed).
        run_id: The run's id when success is True.
        blocked: Concurrency decision when the locked re-check refused.
        replayed: The request_id matched an earlier run.
        message: User-facing text when not successful.
    """

    success: bool
    run_id: str | None = None
    blocked: ConcurrencyDecision | None = None
    replayed: bool = False
    message: str | None = None


class RunDispatcher:
    """Creates runs under the batch lock and records their completion."""

    def __init__(self, db: Session, events: ChatEventLogger | None = None) -> None:
        self.db = db
        self.events = events or ChatEventLogger(db)

    def _find_by_key(self, key: str) -> BatchRun | None:
        return self.db.scalars(
            select(BatchRun).where(BatchRun.idempotency_key == key)
        ).first()

    def enqueue(
        self,
        batch: ScriptBatch,
        agent_id: str,
        tenant_id: str,
        conversation_id: str,
        inputs: dict[str, Any],
        request_id: str | None = None,
        actor: str | None = None,
    ) -> DispatchResult:
        """Start a run of a batch on an agent.

        Args:
            batch: Resolved batch.
            agent_id: Target agent.
            tenant_id: Owning tenant.
            conversation_id: Conversation that asked for the run.
            inputs: Validated inputs.
            request_id: Optional client request id. A repeated id returns
                the run created the first time.
            actor: User id recorded in the audit log.

        Returns:
            DispatchResult. Emits task_queued when a new run is created.
        """
        key = (
            generate_idempotency_key(tenant_id, conversation_id, request_id)
            if request_id
            else None
        )
        batch_id = batch.id
        batch_name = batch.name

        try:
            if key is not None:
                existing = self._find_by_key(key)
                if existing is not None:
                    self.db.commit()
                    logger.info("Replaying run %s for request %s", existing.id, request_id)
                    return DispatchResult(success=True, run_id=existing.id, replayed=True)

            locked = self.db.execute(
                select(ScriptBatch).where(ScriptBatch.id == batch_id).with_for_update()
            ).scalar_one()

            decision = evaluate(self.db, locked, agent_id, tenant_id)
            if decision.blocked:
                self.db.rollback()
                return DispatchResult(
                    success=False, blocked=decision, message=decision.message
                )

            now = utc_now_iso()
            run = BatchRun(
                batch_id=batch_id,
                agent_id=agent_id,
                customer_id=tenant_id,
                conversation_id=conversation_id,
                batch_version=locked.active_version,
                status=RunStatus.started.value,
                idempotency_key=key,
                started_at=now,
            )
            run.inputs = inputs
            self.db.add(run)
            self.db.flush()
            run_id = run.id

            self.db.add(
                DispatchMessage(
                    run_id=run_id,
                    topic=DISPATCH_TOPIC,
                    payload_json=json.dumps(
                        {
                            "run_id": run_id,
                            "batch_id": batch_id,
                            "batch_version": locked.active_version,
                            "agent_id": agent_id,
                            "tenant_id": tenant_id,
                            "conversation_id": conversation_id,
                            "inputs": inputs,
                            "timeout_sec": locked.max_timeout_sec,
                        },
                        default=str,
                    ),
                )
            )
            AuditService(self.db).log(
                tenant_id,
                actor=actor or "chat-router",
                action="run.dispatched",
                target=run_id,
                meta={"batch_id": batch_id, "agent_id": agent_id, "inputs": inputs},
                commit=False,
            )
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            existing = self._find_by_key(key) if key is not None else None
            if existing is not None:
                logger.info("Concurrent replay of request %s -> run %s", request_id, existing.id)
                return DispatchResult(success=True, run_id=existing.id, replayed=True)
            logger.error("Run insert failed for batch %s: %s", batch_id, e)
            return DispatchResult(success=False, message=DISPATCH_FAILED_MESSAGE)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Run dispatch failed for batch %s: %s", batch_id, e)
            return DispatchResult(success=False, message=DISPATCH_FAILED_MESSAGE)

        logger.info("Queued run %s of batch %s on agent %s", run_id, batch_id, agent_id)
        self.events.log(
            conversation_id,
            agent_id,
            ChatEventType.task_queued,
            {
                "batch_id": batch_id,
                "batch_name": batch_name,
                "run_id": run_id,
                "inputs": inputs,
            },
            ref_id=run_id,
        )
        return DispatchResult(success=True, run_id=run_id)

    def get_run(self, run_id: str) -> BatchRun:
        """Return a run.

        Raises:
            NotFoundError: If the run does not exist.
        """
        run = self.db.get(BatchRun, run_id)
        if run is None:
            raise NotFoundError("Run", run_id)
        return run

    def complete_run(
        self,
        run_id: str,
        status: RunStatus | str,
        stdout: str | None = None,
        stderr: str | None = None,
    ) -> BatchRun:
        """Move a non-terminal run to a terminal status.

        The update only applies while the run is still started or running,
        so a duplicate completion report cannot overwrite the first.

        Args:
            run_id: Run to finish.
            status: succeeded, failed or cancelled.
            stdout: Captured standard output.
            stderr: Captured standard error.

        Returns:
            The updated run.

        Raises:
            RouterError: E-1003 if status is not terminal.
            NotFoundError: If the run does not exist.
            RunStateError: If the run already finished.
        """
        status_value = status.value if isinstance(status, RunStatus) else status
        if status_value not in TERMINAL_RUN_STATUSES:
            raise RouterError.from_code("E-1003", status=status_value)

        now = utc_now_iso()
        result = self.db.execute(
            update(BatchRun)
            .where(BatchRun.id == run_id, BatchRun.status.in_(ACTIVE_RUN_STATUSES))
            .values(
                status=status_value,
                raw_stdout=stdout,
                raw_stderr=stderr,
                finished_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self.db.rollback()
            run = self.db.get(BatchRun, run_id)
            if run is None:
                raise NotFoundError("Run", run_id)
            raise RunStateError(run_id, run.status)
        self.db.commit()

        run = self.get_run(run_id)
        self.db.refresh(run)
        logger.info("Run %s finished: %s", run_id, status_value)

        if run.conversation_id:
            event_type = _COMPLETION_EVENTS[status_value]
            self.events.log(
                run.conversation_id,
                run.agent_id,
                event_type,
                {"run_id": run_id, "status": status_value},
                ref_id=run_id,
            )
        return run
