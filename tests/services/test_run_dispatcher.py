"""Tests for atomic run start and run completion."""

import threading

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from src.db.connection import configure_sqlite_engine
from src.db.models import AuditLog, BatchRun, DispatchMessage, RunStatus
from src.errors import NotFoundError, RouterError, RunStateError
from src.services.batch_service import BatchService
from src.services.chat_event_logger import ChatEventLogger
from src.services.conversation_state import ConversationStateStore
from src.services.run_dispatcher import DISPATCH_TOPIC, RunDispatcher
from tests.helpers import TENANT_ID, USER_ID

CONVERSATION_ID = "conv-1"


@pytest.fixture
def dispatcher(db_session) -> RunDispatcher:
    ConversationStateStore(db_session).ensure_conversation(CONVERSATION_ID, TENANT_ID)
    return RunDispatcher(db_session)


class TestEnqueue:

    def test_creates_run_outbox_and_audit(self, db_session, dispatcher, make_agent, make_batch):
        agent = make_agent()
        batch = make_batch()

        result = dispatcher.enqueue(
            batch, agent.id, TENANT_ID, CONVERSATION_ID, {"DOMAIN": "example.com"}, actor=USER_ID
        )

        assert result.success
        assert not result.replayed
        run = db_session.get(BatchRun, result.run_id)
        assert run.status == RunStatus.started.value
        assert run.batch_version == 1
        assert run.inputs == {"DOMAIN": "example.com"}
        assert run.started_at is not None

        message = db_session.scalars(select(DispatchMessage)).one()
        assert message.run_id == run.id
        assert message.topic == DISPATCH_TOPIC
        assert message.status == "pending"
        assert message.payload["agent_id"] == agent.id
        assert message.payload["conversation_id"] == CONVERSATION_ID
        assert message.payload["inputs"] == {"DOMAIN": "example.com"}

        audit = db_session.scalars(select(AuditLog).where(AuditLog.action == "run.dispatched")).one()
        assert audit.actor == USER_ID
        assert audit.target == run.id

    def test_emits_task_queued(self, db_session, dispatcher, make_agent, make_batch):
        agent = make_agent()
        batch = make_batch()
        result = dispatcher.enqueue(batch, agent.id, TENANT_ID, CONVERSATION_ID, {})

        events = ChatEventLogger(db_session).list_events(CONVERSATION_ID, "task_queued")
        assert len(events) == 1
        assert events[0].ref_id == result.run_id
        assert events[0].payload["batch_name"] == "System Monitor"

    def test_repeated_request_id_replays(self, db_session, dispatcher, make_agent, make_batch):
        agent = make_agent()
        batch = make_batch(per_agent_concurrency=5)

        first = dispatcher.enqueue(batch, agent.id, TENANT_ID, CONVERSATION_ID, {}, request_id="req-1")
        second = dispatcher.enqueue(batch, agent.id, TENANT_ID, CONVERSATION_ID, {}, request_id="req-1")

        assert second.success
        assert second.replayed
        assert second.run_id == first.run_id
        assert len(db_session.scalars(select(BatchRun)).all()) == 1
        events = ChatEventLogger(db_session).list_events(CONVERSATION_ID, "task_queued")
        assert len(events) == 1

    def test_blocked_at_limit(self, db_session, dispatcher, make_agent, make_batch):
        agent = make_agent()
        batch = make_batch(per_agent_concurrency=1)
        assert dispatcher.enqueue(batch, agent.id, TENANT_ID, CONVERSATION_ID, {}).success

        result = dispatcher.enqueue(batch, agent.id, TENANT_ID, CONVERSATION_ID, {})

        assert not result.success
        assert result.blocked.reason == "agent"
        assert result.message == (
            "System Monitor is already running on this agent (1/1). "
            "Please wait for it to finish."
        )
        assert len(db_session.scalars(select(BatchRun)).all()) == 1
        assert len(db_session.scalars(select(DispatchMessage)).all()) == 1


class TestCompleteRun:

    def _start(self, dispatcher, make_agent, make_batch) -> str:
        agent = make_agent()
        batch = make_batch()
        return dispatcher.enqueue(batch, agent.id, TENANT_ID, CONVERSATION_ID, {}).run_id

    def test_success(self, db_session, dispatcher, make_agent, make_batch):
        run_id = self._start(dispatcher, make_agent, make_batch)

        run = dispatcher.complete_run(run_id, RunStatus.succeeded, stdout="ok")

        assert run.status == "succeeded"
        assert run.raw_stdout == "ok"
        assert run.finished_at is not None
        events = ChatEventLogger(db_session).list_events(CONVERSATION_ID, "task_succeeded")
        assert [e.ref_id for e in events] == [run_id]

    def test_failure_event(self, db_session, dispatcher, make_agent, make_batch):
        run_id = self._start(dispatcher, make_agent, make_batch)
        dispatcher.complete_run(run_id, "failed", stderr="boom")
        events = ChatEventLogger(db_session).list_events(CONVERSATION_ID, "task_failed")
        assert events[0].payload == {"run_id": run_id, "status": "failed"}

    def test_cancellation_event(self, db_session, dispatcher, make_agent, make_batch):
        run_id = self._start(dispatcher, make_agent, make_batch)
        dispatcher.complete_run(run_id, RunStatus.cancelled)
        logger = ChatEventLogger(db_session)
        events = logger.list_events(CONVERSATION_ID, "task_cancelled")
        assert events[0].payload == {"run_id": run_id, "status": "cancelled"}
        assert logger.list_events(CONVERSATION_ID, "task_failed") == []

    def test_finished_run_frees_slot(self, dispatcher, make_agent, make_batch):
        agent = make_agent()
        batch = make_batch(per_agent_concurrency=1)
        run_id = dispatcher.enqueue(batch, agent.id, TENANT_ID, CONVERSATION_ID, {}).run_id
        dispatcher.complete_run(run_id, "cancelled")
        assert dispatcher.enqueue(batch, agent.id, TENANT_ID, CONVERSATION_ID, {}).success

    def test_non_terminal_status_rejected(self, dispatcher, make_agent, make_batch):
        run_id = self._start(dispatcher, make_agent, make_batch)
        with pytest.raises(RouterError) as exc_info:
            dispatcher.complete_run(run_id, "running")
        assert exc_info.value.code == "E-1003"

    def test_unknown_run(self, dispatcher):
        with pytest.raises(NotFoundError):
            dispatcher.complete_run("missing", "succeeded")

    def test_second_completion_conflicts(self, dispatcher, make_agent, make_batch):
        run_id = self._start(dispatcher, make_agent, make_batch)
        dispatcher.complete_run(run_id, "succeeded")
        with pytest.raises(RunStateError) as exc_info:
            dispatcher.complete_run(run_id, "failed")
        assert exc_info.value.status == "succeeded"
        assert dispatcher.get_run(run_id).status == "succeeded"


@pytest.mark.slow
class TestConcurrentEnqueue:
    """Two sessions racing for a batch with a limit of one."""

    def test_only_one_run_starts(self, file_based_db):
        engine = create_engine(
            f"sqlite:///{file_based_db}", connect_args={"check_same_thread": False}
        )
        configure_sqlite_engine(engine)
        SessionLocal = sessionmaker(bind=engine, autoflush=False)

        with SessionLocal() as setup:
            ConversationStateStore(setup).ensure_conversation(CONVERSATION_ID, TENANT_ID)
            service = BatchService(setup)
            batch = service.create_batch(
                tenant_id=TENANT_ID, name="Database Backup", os_targets=["ubuntu"],
                per_agent_concurrency=1,
            )
            service.add_version(batch.id, "#!/bin/sh\necho backup\n")
            service.activate_version(batch.id, 1)
            batch_id = batch.id

        barrier = threading.Barrier(2)
        results = []
        lock = threading.Lock()

        def worker() -> None:
            with SessionLocal() as session:
                own_batch = BatchService(session).get_batch(batch_id)
                session.commit()
                barrier.wait()
                result = RunDispatcher(session).enqueue(
                    own_batch, "agent-1", TENANT_ID, CONVERSATION_ID, {}
                )
                with lock:
                    results.append(result)

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert sorted(r.success for r in results) == [False, True]
        with SessionLocal() as check:
            assert len(check.scalars(select(BatchRun)).all()) == 1
        engine.dispose()
