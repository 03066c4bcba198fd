"""Tests for resolving an intent to an executable batch."""

from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from src.services.batch_resolver import BatchResolver, os_supported
from tests.helpers import OTHER_TENANT_ID, TENANT_ID


class TestOsSupported:

    @pytest.mark.parametrize(
        "agent_os,targets,expected",
        [
            ("ubuntu", ["ubuntu", "debian"], True),
            ("Ubuntu", ["ubuntu"], True),
            (" debian ", ["Debian"], True),
            ("centos", ["ubuntu"], False),
            ("ubuntu 22.04", ["ubuntu"], False),
            (None, ["ubuntu"], False),
            ("ubuntu", [], False),
        ],
    )
    def test_case_insensitive_equality(self, agent_os, targets, expected):
        assert os_supported(agent_os, targets) is expected


class TestResolveBatch:

    def test_resolves_active_batch_for_agent_os(self, db_session, catalog, make_agent, make_batch):
        agent = make_agent(os="ubuntu")
        batch = make_batch("System Monitor", os_targets=["ubuntu"])
        resolved = BatchResolver(db_session, catalog).resolve_batch(TENANT_ID, "check_cpu", agent.id)
        assert resolved is not None
        assert resolved.id == batch.id

    def test_unmapped_intent(self, db_session, catalog, make_agent):
        agent = make_agent()
        assert BatchResolver(db_session, catalog).resolve_batch(TENANT_ID, "launch", agent.id) is None

    def test_unknown_agent(self, db_session, catalog, make_batch):
        make_batch("System Monitor")
        assert BatchResolver(db_session, catalog).resolve_batch(TENANT_ID, "check_cpu", "nope") is None

    def test_agent_of_other_tenant(self, db_session, catalog, make_agent, make_batch):
        agent = make_agent(tenant_id=OTHER_TENANT_ID)
        make_batch("System Monitor")
        assert BatchResolver(db_session, catalog).resolve_batch(TENANT_ID, "check_cpu", agent.id) is None

    def test_batch_of_other_tenant(self, db_session, catalog, make_agent, make_batch):
        agent = make_agent()
        make_batch("System Monitor", tenant_id=OTHER_TENANT_ID)
        assert BatchResolver(db_session, catalog).resolve_batch(TENANT_ID, "check_cpu", agent.id) is None

    def test_batch_without_active_version(self, db_session, catalog, make_agent, make_batch):
        agent = make_agent()
        make_batch("System Monitor", activate=False)
        assert BatchResolver(db_session, catalog).resolve_batch(TENANT_ID, "check_cpu", agent.id) is None

    def test_os_mismatch(self, db_session, catalog, make_agent, make_batch):
        agent = make_agent(os="windows")
        make_batch("System Monitor", os_targets=["ubuntu"])
        assert BatchResolver(db_session, catalog).resolve_batch(TENANT_ID, "check_cpu", agent.id) is None

    def test_picks_batch_matching_os(self, db_session, catalog, make_agent, make_batch):
        agent = make_agent(os="centos")
        make_batch("System Monitor", os_targets=["ubuntu"])
        centos_batch = make_batch("System Monitor", os_targets=["centos"])
        resolved = BatchResolver(db_session, catalog).resolve_batch(TENANT_ID, "check_cpu", agent.id)
        assert resolved.id == centos_batch.id

    def test_lookup_failure_resolves_to_none(self, catalog):
        db = MagicMock()
        db.get.side_effect = OperationalError("SELECT", {}, Exception("db down"))
        assert BatchResolver(db, catalog).resolve_batch(TENANT_ID, "check_cpu", "a1") is None
        db.rollback.assert_called_once()
