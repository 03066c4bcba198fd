"""Tests for agent registration and heartbeat endpoints."""

from tests.helpers import TENANT_ID


class TestAgents:

    def test_register(self, client):
        resp = client.post(
            "/api/v1/agents",
            json={"tenant_id": TENANT_ID, "hostname": "web-01", "os": "ubuntu"},
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["status"] == "offline"
        assert data["customer_id"] == TENANT_ID

    def test_heartbeat(self, client):
        agent_id = client.post(
            "/api/v1/agents", json={"tenant_id": TENANT_ID, "agent_id": "agent-9"}
        ).json()["id"]

        resp = client.post(
            f"/api/v1/agents/{agent_id}/heartbeat",
            json={"status": "running", "cpu_usage": 22.5, "snapshot": {"load": 0.4}},
        )

        assert resp.status_code == 200
        data = resp.json()
        assert data["id"] == "agent-9"
        assert data["status"] == "running"
        assert data["cpu_usage"] == 22.5
        assert data["last_heartbeat"]

    def test_heartbeat_out_of_range(self, client):
        resp = client.post("/api/v1/agents/a1/heartbeat", json={"cpu_usage": 140})
        assert resp.status_code == 422

    def test_heartbeat_unknown_agent(self, client):
        resp = client.post("/api/v1/agents/missing/heartbeat", json={"cpu_usage": 10})
        assert resp.status_code == 404


class TestHealth:

    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"

    def test_readyz(self, client):
        resp = client.get("/readyz")
        assert resp.status_code == 200
        assert resp.json()["checks"]["database"] == {"status": "ok"}
