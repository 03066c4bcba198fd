"""Tests for the /api/v1/conversations endpoints."""

from tests.helpers import TENANT_ID, USER_ID


def _say(client, agent_id: str, text: str) -> dict:
    return client.post(
        "/chat-router",
        json={
            "tenant_id": TENANT_ID,
            "user_id": USER_ID,
            "agent_id": agent_id,
            "conversation_id": "conv-1",
            "text": text,
        },
    ).json()


class TestConversationEvents:

    def test_lists_events_in_order(self, client, make_agent, make_batch):
        agent = make_agent()
        make_batch()
        _say(client, agent.id, "check cpu")

        resp = client.get("/api/v1/conversations/conv-1/events")

        assert resp.status_code == 200
        data = resp.json()
        assert data["conversation_id"] == "conv-1"
        assert [e["type"] for e in data["events"]] == [
            "intent_classified", "inputs_validated", "preflight_passed", "task_queued",
        ]
        assert data["total"] == 4
        assert data["events"][0]["payload"]["intent"] == "check_cpu"

    def test_filter_by_type(self, client, make_agent, make_batch):
        agent = make_agent()
        make_batch()
        run_id = _say(client, agent.id, "check cpu")["run_id"]

        data = client.get("/api/v1/conversations/conv-1/events", params={"type": "task_queued"}).json()

        assert data["total"] == 1
        assert data["events"][0]["ref_id"] == run_id

    def test_unknown_conversation(self, client):
        assert client.get("/api/v1/conversations/missing/events").status_code == 404


class TestCloseConversation:

    def test_close_then_route(self, client, make_agent, make_batch):
        agent = make_agent()
        make_batch()
        _say(client, agent.id, "hello")

        assert client.delete("/api/v1/conversations/conv-1").status_code == 204

        data = _say(client, agent.id, "check cpu")
        assert data["state"] == "done"
        assert "closed" in data["message"]

    def test_close_unknown(self, client):
        assert client.delete("/api/v1/conversations/missing").status_code == 404
