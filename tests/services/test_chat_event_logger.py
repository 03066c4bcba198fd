"""Tests for the append-only chat event trail."""

from unittest.mock import MagicMock

from sqlalchemy.exc import OperationalError

from src.db.models import ChatEventType
from src.services.chat_event_logger import ChatEventLogger
from src.services.conversation_state import ConversationStateStore
from tests.helpers import TENANT_ID


class TestChatEventLogger:

    def test_log_persists_event(self, db_session):
        ConversationStateStore(db_session).ensure_conversation("conv-1", TENANT_ID)
        events = ChatEventLogger(db_session)
        event = events.log("conv-1", "a1", ChatEventType.intent_classified, {"intent": "check_cpu"})
        assert event is not None
        assert event.type == "intent_classified"
        assert event.payload == {"intent": "check_cpu"}

    def test_payload_is_redacted(self, db_session):
        ConversationStateStore(db_session).ensure_conversation("conv-1", TENANT_ID)
        events = ChatEventLogger(db_session)
        event = events.log(
            "conv-1", "a1", "inputs_validated",
            {"inputs": {"DB_PASSWORD": "hunter2", "DB_NAME": "shop"}},
        )
        assert event.payload["inputs"] == {"DB_PASSWORD": "***REDACTED***", "DB_NAME": "shop"}

    def test_list_events_in_order_and_filtered(self, db_session):
        ConversationStateStore(db_session).ensure_conversation("conv-1", TENANT_ID)
        events = ChatEventLogger(db_session)
        events.log("conv-1", "a1", ChatEventType.intent_classified)
        events.log("conv-1", "a1", ChatEventType.task_queued, ref_id="run-1")
        events.log("conv-1", "a1", ChatEventType.task_started, ref_id="run-1")

        assert [e.type for e in events.list_events("conv-1")] == [
            "intent_classified", "task_queued", "task_started",
        ]
        queued = events.list_events("conv-1", ChatEventType.task_queued)
        assert [e.ref_id for e in queued] == ["run-1"]
        assert events.list_events("other") == []

    def test_write_failure_is_counted_not_raised(self):
        db = MagicMock()
        db.commit.side_effect = OperationalError("INSERT", {}, Exception("disk full"))
        events = ChatEventLogger(db)
        assert events.log("conv-1", "a1", ChatEventType.smalltalk_response) is None
        assert events.failures == 1
        db.rollback.assert_called_once()
