"""Tests for tenant audit logging and redaction."""

from src.services.audit_service import REDACTED, AuditService, redact_sensitive
from tests.helpers import OTHER_TENANT_ID, TENANT_ID


class TestRedactSensitive:

    def test_redacts_credentials_and_contacts(self):
        data = {"WP_ADMIN_EMAIL": "a@b.io", "DOMAIN": "b.io", "db-password": "pw"}
        assert redact_sensitive(data) == {
            "WP_ADMIN_EMAIL": REDACTED,
            "DOMAIN": "b.io",
            "db-password": REDACTED,
        }

    def test_nested_structures(self):
        data = {"inputs": [{"api_key": "k", "region": "eu"}]}
        assert redact_sensitive(data) == {"inputs": [{"api_key": REDACTED, "region": "eu"}]}

    def test_scalars_pass_through(self):
        assert redact_sensitive(None) is None
        assert redact_sensitive("text") == "text"
        assert redact_sensitive({"n": 3})["n"] == 3


class TestAuditService:

    def test_log_and_query(self, db_session):
        audit = AuditService(db_session)
        audit.log(TENANT_ID, actor="u1", action="run.dispatched", target="r1",
                  meta={"inputs": {"WP_ADMIN_EMAIL": "a@b.io"}})
        audit.log(TENANT_ID, actor="u1", action="confirmation.approved", target="c1")
        audit.log(OTHER_TENANT_ID, actor="u2", action="run.dispatched", target="r2")

        logs = audit.get_logs(TENANT_ID)
        assert [log.action for log in logs] == ["run.dispatched", "confirmation.approved"]
        assert logs[0].meta == {"inputs": {"WP_ADMIN_EMAIL": REDACTED}}
        assert logs[1].meta == {}

    def test_filter_by_action_and_limit(self, db_session):
        audit = AuditService(db_session)
        for i in range(3):
            audit.log(TENANT_ID, actor="u1", action="run.dispatched", target=f"r{i}")
        logs = audit.get_logs(TENANT_ID, action="run.dispatched", limit=2)
        assert len(logs) == 2

    def test_uncommitted_entry_joins_caller_transaction(self, db_session):
        audit = AuditService(db_session)
        audit.log(TENANT_ID, actor="u1", action="run.dispatched", commit=False)
        db_session.rollback()
        assert audit.get_logs(TENANT_ID) == []
