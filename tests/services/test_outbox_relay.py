"""Tests for outbox delivery to the agent-dispatch channel."""

import pytest
from sqlalchemy import select

from src.db.models import DispatchMessage
from src.services.chat_event_logger import ChatEventLogger
from src.services.conversation_state import ConversationStateStore
from src.services.dispatch_publisher import DispatchDeliveryError, LoggingPublisher
from src.services.outbox_relay import OutboxRelay
from src.services.run_dispatcher import DISPATCH_TOPIC, RunDispatcher
from tests.helpers import TENANT_ID

CONVERSATION_ID = "conv-1"


class FailingPublisher:
    def __init__(self) -> None:
        self.calls = 0

    def publish(self, topic, payload):
        self.calls += 1
        raise DispatchDeliveryError("http://dispatch answered 503: token=abc123")


@pytest.fixture
def queued_run(db_session, make_agent, make_batch) -> str:
    ConversationStateStore(db_session).ensure_conversation(CONVERSATION_ID, TENANT_ID)
    agent = make_agent()
    batch = make_batch()
    return RunDispatcher(db_session).enqueue(batch, agent.id, TENANT_ID, CONVERSATION_ID, {}).run_id


def _message(db_session) -> DispatchMessage:
    return db_session.scalars(select(DispatchMessage)).one()


class TestOutboxRelay:

    def test_delivers_and_emits_task_started(self, db_session, queued_run):
        publisher = LoggingPublisher()
        stats = OutboxRelay(db_session, publisher).drain()

        assert (stats.delivered, stats.retried, stats.failed) == (1, 0, 0)
        topic, payload = publisher.published[0]
        assert topic == DISPATCH_TOPIC
        assert payload["run_id"] == queued_run

        message = _message(db_session)
        assert message.status == "delivered"
        assert message.attempts == 1
        assert message.delivered_at is not None

        started = ChatEventLogger(db_session).list_events(CONVERSATION_ID, "task_started")
        assert [e.ref_id for e in started] == [queued_run]

    def test_delivered_messages_not_resent(self, db_session, queued_run):
        publisher = LoggingPublisher()
        relay = OutboxRelay(db_session, publisher)
        relay.drain()
        stats = relay.drain()
        assert stats.delivered == 0
        assert len(publisher.published) == 1

    def test_failure_keeps_message_pending(self, db_session, queued_run):
        stats = OutboxRelay(db_session, FailingPublisher()).drain()

        assert (stats.delivered, stats.retried, stats.failed) == (0, 1, 0)
        message = _message(db_session)
        assert message.status == "pending"
        assert message.attempts == 1
        assert "E-3001" in message.last_error
        assert "abc123" not in message.last_error

    def test_gives_up_after_max_attempts(self, db_session, queued_run):
        publisher = FailingPublisher()
        relay = OutboxRelay(db_session, publisher, max_attempts=2)

        relay.drain()
        stats = relay.drain()
        assert stats.failed == 1

        assert _message(db_session).status == "failed"
        assert relay.drain().failed == 0
        assert publisher.calls == 2

        failed = ChatEventLogger(db_session).list_events(CONVERSATION_ID, "dispatch_failed")
        assert len(failed) == 1
        assert "E-3001" in failed[0].payload["error"]
        assert not ChatEventLogger(db_session).list_events(CONVERSATION_ID, "task_started")

    def test_limit(self, db_session, make_agent, make_batch):
        ConversationStateStore(db_session).ensure_conversation(CONVERSATION_ID, TENANT_ID)
        agent = make_agent()
        batch = make_batch(per_agent_concurrency=5)
        dispatcher = RunDispatcher(db_session)
        for _ in range(3):
            dispatcher.enqueue(batch, agent.id, TENANT_ID, CONVERSATION_ID, {})

        stats = OutboxRelay(db_session, LoggingPublisher()).drain(limit=2)
        assert stats.delivered == 2
