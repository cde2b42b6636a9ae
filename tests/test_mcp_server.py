"""Integration tests for the agent MCP server"""
import asyncio
import socket

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from autosdlc.agents.mcp_server import MCPAgentServer
from autosdlc.errors import AgentConnectionError, HandlerError, ToolNotFoundError
from autosdlc.models.agent import AgentType
from autosdlc.services.tool_registry import ToolRegistry


def make_server(**kwargs) -> MCPAgentServer:
    return MCPAgentServer(agent_id="coder-agent", agent_type=AgentType.CODER, port=0, **kwargs)


class TestServerLifecycle:
    """Test binding, serving and releasing the port"""

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        server = make_server()
        await server.start()
        try:
            assert server.is_running
            assert server.port != 0
            async with httpx.AsyncClient() as client:
                response = await client.get(f"{server.url}/health")
            assert response.status_code == 200
            assert response.json()["running"] is True
        finally:
            await server.stop()

        assert not server.is_running

    @pytest.mark.asyncio
    async def test_port_is_released_on_stop(self):
        """Test a stopped server's port can be bound again immediately"""
        server = make_server()
        await server.start()
        port = server.port
        await server.stop()

        again = MCPAgentServer(agent_id="again", agent_type=AgentType.PM, port=port)
        await again.start()
        try:
            assert again.port == port
        finally:
            await again.stop()

    @pytest.mark.asyncio
    async def test_bind_conflict_raises(self):
        blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        blocker.bind(("127.0.0.1", 0))
        blocker.listen(1)
        try:
            server = MCPAgentServer(agent_id="x", agent_type=AgentType.PM, port=blocker.getsockname()[1])
            with pytest.raises(AgentConnectionError):
                await server.start()
            assert not server.is_running
        finally:
            blocker.close()

    @pytest.mark.asyncio
    async def test_echo_tool_over_the_wire(self):
        server = make_server()
        server.register_tool("echo", lambda params: params)
        await server.start()
        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(f"{server.url}/mcp", json={
                    "method": "tools/call",
                    "params": {"name": "echo", "arguments": {"x": 1}},
                    "id": 1,
                })
        finally:
            await server.stop()

        assert response.status_code == 200
        assert response.json() == {"result": {"x": 1}, "id": 1}


@pytest.mark.asyncio
class TestMCPProtocol:
    """Test request handling in-process through the ASGI app"""

    async def post(self, server: MCPAgentServer, body, **kwargs):
        transport = ASGITransport(app=server.app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            return await client.post("/mcp", json=body, **kwargs)

    async def test_ping(self):
        response = await self.post(make_server(), {"method": "ping", "id": "p1"})

        assert response.status_code == 200
        data = response.json()
        assert data["id"] == "p1"
        assert data["result"]["pong"] is True
        assert data["result"]["agentId"] == "coder-agent"

    async def test_tools_list_includes_defaults(self):
        server = make_server()
        server.register_tool("implementFeature", lambda p: {}, {"description": "Build it"})

        response = await self.post(server, {"method": "tools/list"})

        tools = {t["name"]: t for t in response.json()["result"]["tools"]}
        assert set(tools) == {"getStatus", "ping", "implementFeature"}
        assert tools["implementFeature"]["description"] == "Build it"
        assert tools["implementFeature"]["version"] == "1.0.0"

    async def test_async_handler(self):
        server = make_server()

        async def slow_double(params):
            await asyncio.sleep(0.01)
            return {"value": params["n"] * 2}

        server.register_tool("double", slow_double)
        response = await self.post(server, {"method": "tools/call", "params": {"name": "double", "arguments": {"n": 21}}})

        assert response.json()["result"] == {"value": 42}

    async def test_unknown_method(self):
        response = await self.post(make_server(), {"method": "resources/list", "id": 7})

        assert response.status_code == 400
        assert response.json() == {"error": {"code": -32603, "message": "Unknown method: resources/list"}, "id": 7}

    async def test_missing_method(self):
        response = await self.post(make_server(), {"params": {}})

        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Missing method in request"

    async def test_invalid_json(self):
        transport = ASGITransport(app=make_server().app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.post("/mcp", content=b"{not json", headers={"Content-Type": "application/json"})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == -32603

    async def test_unknown_tool(self):
        response = await self.post(make_server(), {"method": "tools/call", "params": {"name": "missing"}})

        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Tool not found: missing"

    async def test_handler_error_becomes_rpc_error(self):
        """Test a raising handler yields an error body and the server keeps serving"""
        server = make_server()

        def explode(params):
            raise ValueError("boom")

        server.register_tool("explode", explode)

        response = await self.post(server, {"method": "tools/call", "params": {"name": "explode"}, "id": 3})
        assert response.status_code == 400
        assert response.json() == {"error": {"code": -32603, "message": "boom"}, "id": 3}

        response = await self.post(server, {"method": "ping"})
        assert response.status_code == 200

    async def test_registry_validation_rejects_bad_arguments(self):
        registry = ToolRegistry()
        server = make_server(tool_registry=registry)
        server.register_tool("reviewCode", lambda p: {"ok": True}, {
            "parameters": {"pullRequest": {"type": "number", "required": True}},
        })

        bad = await self.post(server, {"method": "tools/call", "params": {"name": "reviewCode", "arguments": {}}})
        good = await self.post(server, {
            "method": "tools/call",
            "params": {"name": "reviewCode", "arguments": {"pullRequest": 12}},
        })

        assert bad.status_code == 400
        assert "Invalid arguments" in bad.json()["error"]["message"]
        assert good.json()["result"] == {"ok": True}

    async def test_options_preflight(self):
        transport = ASGITransport(app=make_server().app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.options("/anything")

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"

    async def test_preflight_with_any_request_headers(self):
        transport = ASGITransport(app=make_server().app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.options("/mcp", headers={
                "Origin": "http://ui.test",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "authorization",
            })

        assert response.status_code == 200
        assert response.headers["access-control-allow-methods"] == "GET, POST, OPTIONS"

    async def test_unknown_path_is_404(self):
        transport = ASGITransport(app=make_server().app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/nope")

        assert response.status_code == 404
        assert response.json() == {"error": "Not found"}

    async def test_capabilities(self):
        server = make_server(capabilities=["tdd", "ping"])
        server.register_tool("implementFeature", lambda p: {})

        transport = ASGITransport(app=server.app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/capabilities")

        data = response.json()
        assert data["agentId"] == "coder-agent"
        assert data["agentType"] == "coder"
        assert data["capabilities"] == ["tdd", "ping", "getStatus", "implementFeature"]
        assert "implementFeature" in data["tools"]


class TestToolManagement:
    """Test direct tool invocation and registry mirroring"""

    @pytest.mark.asyncio
    async def test_invoke_tool_directly(self):
        server = make_server()
        server.register_tool("echo", lambda params: params)

        assert await server.invoke_tool("echo", {"a": 1}) == {"a": 1}

    @pytest.mark.asyncio
    async def test_invoke_unknown_tool(self):
        with pytest.raises(ToolNotFoundError):
            await make_server().invoke_tool("missing")

    @pytest.mark.asyncio
    async def test_invoke_wraps_handler_errors(self):
        server = make_server()

        def explode(params):
            raise RuntimeError("bad input")

        server.register_tool("explode", explode)
        with pytest.raises(HandlerError, match="bad input"):
            await server.invoke_tool("explode")

    @pytest.mark.asyncio
    async def test_registry_mirrors_and_clears(self):
        registry = ToolRegistry()
        server = make_server(tool_registry=registry)
        server.register_tool("implementFeature", lambda p: {})

        assert registry.has_agent_tool("coder-agent", "implementFeature")
        assert registry.has_agent_tool("coder-agent", "getStatus")

        server.unregister_tool("implementFeature")
        assert not registry.has_agent_tool("coder-agent", "implementFeature")

        await server.start()
        await server.stop()
        assert registry.get_agent_tools("coder-agent") == []
