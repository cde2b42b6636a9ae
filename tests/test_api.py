"""Integration tests for coordinator API endpoints"""
import asyncio
import tempfile
from pathlib import Path

import pytest
from httpx import AsyncClient, ASGITransport

from autosdlc.main import app, create_app
from autosdlc.models.agent import AgentStatus, AgentStatusRecord, AgentType, CurrentActivity
from autosdlc.services.status_document import render_status_document
from autosdlc.settings import Settings


def write_status(directory: Path, agent_id: str, agent_type: AgentType, status: AgentStatus) -> None:
    record = AgentStatusRecord(
        agent_type=agent_type,
        status=status,
        last_updated="2024-05-01T10:00:00.000Z",
        current_activity=CurrentActivity(task="Working", progress=10),
    )
    (directory / f"{agent_id}-status.md").write_text(render_status_document(record))


@pytest.mark.asyncio
class TestHealthEndpoint:
    """Test health check endpoint"""

    async def test_health_check(self):
        """Test health endpoint returns OK"""
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "environment" in data


@pytest.mark.asyncio
class TestCoordinatorMCP:
    """Test the coordinator's ping/disconnect endpoint"""

    async def test_ping(self):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.post("/mcp", json={
                "method": "ping",
                "params": {"agentId": "coder-agent", "agentType": "coder"},
                "id": "c-1",
            })

        assert response.status_code == 200
        assert response.json()["result"]["pong"] is True
        assert response.json()["id"] == "c-1"

    async def test_disconnect(self):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.post("/mcp", json={"method": "disconnect", "params": {"agentId": "coder-agent"}})

        assert response.json()["result"] == {"disconnected": True}

    async def test_unknown_method(self):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.post("/mcp", json={"method": "tools/call"})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == -32603


@pytest.mark.asyncio
class TestAgentStatusAPI:
    """Test status endpoints backed by the synchronizer"""

    async def test_status_endpoints(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            shared = Path(tmpdir)
            write_status(shared, "coder-agent", AgentType.CODER, AgentStatus.BUSY)
            write_status(shared, "pm-agent", AgentType.PM, AgentStatus.IDLE)

            test_app = create_app(Settings(environment="test", shared_status_dir=tmpdir, watch_interval=0.05))
            async with test_app.router.lifespan_context(test_app):
                transport = ASGITransport(app=test_app)
                async with AsyncClient(transport=transport, base_url="http://test") as client:
                    all_statuses = (await client.get("/api/agents/status")).json()
                    busy = (await client.get("/api/agents/status", params={"status": "BUSY"})).json()
                    one = await client.get("/api/agents/coder-agent/status")
                    missing = await client.get("/api/agents/ghost-agent/status")
                    health = (await client.get("/health")).json()

        assert set(all_statuses) == {"coder-agent", "pm-agent"}
        assert list(busy) == ["coder-agent"]
        assert one.status_code == 200
        assert one.json()["agentType"] == "coder"
        assert one.json()["currentActivity"]["progress"] == 10
        assert missing.status_code == 404
        assert health["environment"] == "test"

    async def test_status_follows_file_changes(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            shared = Path(tmpdir)
            test_app = create_app(Settings(environment="test", shared_status_dir=tmpdir, watch_interval=0.05))
            async with test_app.router.lifespan_context(test_app):
                transport = ASGITransport(app=test_app)
                async with AsyncClient(transport=transport, base_url="http://test") as client:
                    assert (await client.get("/api/agents/status")).json() == {}

                    write_status(shared, "tester-agent", AgentType.TESTER, AgentStatus.ERROR)
                    for _ in range(100):
                        response = await client.get("/api/agents/tester-agent/status")
                        if response.status_code == 200:
                            break
                        await asyncio.sleep(0.05)

        assert response.status_code == 200
        assert response.json()["status"] == "ERROR"
