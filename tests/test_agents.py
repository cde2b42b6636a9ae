"""Unit tests for agent system"""
import random
import socket
import tempfile
from pathlib import Path

import pytest

from autosdlc.agents.base import BaseAgent
from autosdlc.agents.factory import AgentFactory
from autosdlc.agents.mock_agent import MOCK_TOOLS, MockAgent
from autosdlc.agents.__main__ import parse_args
from autosdlc.errors import AgentConnectionError
from autosdlc.models.agent import AgentStatus, AgentType
from autosdlc.models.rpc import AgentMessage
from autosdlc.services.message_router import MessageRouter
from autosdlc.services.status_document import parse_status_document
from autosdlc.services.tool_registry import ToolRegistry
from autosdlc.utils.port_allocator import PortAllocator


def make_agent(tmpdir: str, agent_type: AgentType = AgentType.CODER, **kwargs) -> MockAgent:
    return MockAgent(
        agent_type,
        work_delay=0.01,
        rng=random.Random(7),
        workspace_dir=Path(tmpdir) / "workspace" / f"{agent_type.value}-agent",
        shared_status_dir=Path(tmpdir) / "shared",
        port=0,
        **kwargs
    )


def shared_status(tmpdir: str, agent_id: str):
    return parse_status_document((Path(tmpdir) / "shared" / f"{agent_id}-status.md").read_text())


class TestMockAgent:
    """Test mock agent lifecycle and status publication"""

    @pytest.mark.asyncio
    async def test_start_publishes_idle(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            agent = make_agent(tmpdir)
            await agent.start()
            try:
                assert agent.is_running
                assert agent.agent_id == "coder-agent"
                assert isinstance(agent, BaseAgent)

                record = shared_status(tmpdir, "coder-agent")
                assert record.status == AgentStatus.IDLE
                assert record.recent_actions[-1].action == "Agent started"
                assert (Path(tmpdir) / "workspace" / "coder-agent" / "Agent_Output.md").exists()
            finally:
                await agent.stop()

            assert not agent.is_running

    @pytest.mark.asyncio
    @pytest.mark.parametrize("agent_type", list(AgentType))
    async def test_each_type_registers_its_tool(self, agent_type):
        with tempfile.TemporaryDirectory() as tmpdir:
            agent = make_agent(tmpdir, agent_type)
            await agent.start()
            try:
                capabilities = agent.get_capabilities()
            finally:
                await agent.stop()

            assert MOCK_TOOLS[agent_type]["name"] in capabilities
            assert "getStatus" in capabilities

    @pytest.mark.asyncio
    async def test_tool_call_completes_task(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            agent = make_agent(tmpdir, AgentType.REVIEWER)
            await agent.start()
            try:
                result = await agent.invoke_tool("reviewCode", {"pullRequest": 42})

                assert result["pullRequest"] == 42
                assert 0.4 <= result["score"] <= 1.0
                assert agent.status == AgentStatus.IDLE
                assert agent.tasks_completed == 1

                record = shared_status(tmpdir, "reviewer-agent")
                assert record.metrics.tasks_completed == 1
                assert record.recent_actions[-1].action == "reviewCode"
                assert record.recent_actions[-1].result == "success"
                assert record.current_activity.task is None
            finally:
                await agent.stop()

    @pytest.mark.asyncio
    async def test_update_status_and_dependencies(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            agent = make_agent(tmpdir, AgentType.PM)
            await agent.start()
            try:
                await agent.update_status(
                    AgentStatus.BLOCKED,
                    task="Waiting for review",
                    progress=60,
                    dependencies=["reviewer-agent", "reviewer-agent", "tester-agent"],
                )
                record = shared_status(tmpdir, "pm-agent")
            finally:
                await agent.stop()

            assert record.status == AgentStatus.BLOCKED
            assert record.current_activity.task == "Waiting for review"
            assert record.current_activity.progress == 60
            assert record.current_activity.dependencies == ["reviewer-agent", "tester-agent"]

    @pytest.mark.asyncio
    async def test_log_action_counts_errors_and_caps_history(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            agent = make_agent(tmpdir)
            await agent.start()
            try:
                await agent.log_action("build", "Error: compile failed")
                for i in range(60):
                    await agent.log_action(f"step {i}")
            finally:
                await agent.stop()

            assert agent.error_count == 1
            assert len(agent.action_history) == 50
            assert agent.action_history[-1].action == "step 59"

    @pytest.mark.asyncio
    async def test_blank_action_keeps_status_readable(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            agent = make_agent(tmpdir)
            await agent.start()
            try:
                await agent.log_action("")
                await agent.log_action("pm → coder handoff")
                record = shared_status(tmpdir, "coder-agent")
            finally:
                await agent.stop()

            assert [a.action for a in record.recent_actions[-2:]] == ["", "pm → coder handoff"]
            assert record.recent_actions[-1].result is None

    @pytest.mark.asyncio
    async def test_failed_start_publishes_error(self):
        """Test an unreachable coordinator leaves an ERROR status behind"""
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind(("127.0.0.1", 0))
            dead_port = sock.getsockname()[1]

        with tempfile.TemporaryDirectory() as tmpdir:
            agent = make_agent(tmpdir, coordinator_url=f"http://127.0.0.1:{dead_port}")

            with pytest.raises(AgentConnectionError):
                await agent.start()

            assert not agent.is_running
            assert not agent.server.is_running
            record = shared_status(tmpdir, "coder-agent")
            assert record.status == AgentStatus.ERROR
            assert record.current_activity.task.startswith("Failed to start")

    @pytest.mark.asyncio
    async def test_sentinel_coordinator_url(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            agent = make_agent(tmpdir, coordinator_url="http://localhost:9999")
            await agent.start()
            try:
                assert agent.client.is_connected
            finally:
                await agent.stop()


class TestAgentFactory:
    """Test agent creation on allocated ports"""

    def make_factory(self, tmpdir: str, router: MessageRouter = None, registry: ToolRegistry = None) -> AgentFactory:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind(("127.0.0.1", 0))
            base = sock.getsockname()[1]
        return AgentFactory(
            workspace_root=Path(tmpdir) / "workspace",
            shared_status_dir=Path(tmpdir) / "shared",
            port_allocator=PortAllocator(base, base + 50),
            message_router=router,
            tool_registry=registry,
            work_delay=0.01,
        )

    @pytest.mark.asyncio
    async def test_create_all_and_route(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            router = MessageRouter()
            await router.start()
            registry = ToolRegistry()
            factory = self.make_factory(tmpdir, router, registry)
            try:
                agents = await factory.create_all()

                assert [a.agent_type for a in agents] == list(AgentType)
                assert len({a.port for a in agents}) == len(agents)
                assert sorted(router.get_registered_agents()) == sorted(a.agent_id for a in agents)
                assert registry.has_agent_tool("coder-agent", "implementFeature")

                result = await router.route_message(AgentMessage(
                    sender="pm-agent",
                    recipient="coder-agent",
                    method="implementFeature",
                    payload={"feature": "login"},
                ))
                assert result["feature"] == "login"
            finally:
                await factory.stop_all()
                await router.stop()

            assert factory.list_agents() == []
            assert registry.get_all_tools() == []

    @pytest.mark.asyncio
    async def test_create_agent_is_idempotent(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            factory = self.make_factory(tmpdir)
            try:
                first = await factory.create_agent(AgentType.TESTER)
                second = await factory.create_agent(AgentType.TESTER)
                assert first is second
                assert factory.get_agent("tester-agent") is first
            finally:
                await factory.stop_all()

    @pytest.mark.asyncio
    async def test_stop_agent_releases_port(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            factory = self.make_factory(tmpdir)
            agent = await factory.create_agent(AgentType.CUSTOMER)
            port = agent.port

            await factory.stop_agent("customer-agent")

            assert not factory.port_allocator.is_allocated(port)
            assert factory.get_agent("customer-agent") is None


class TestAgentCommandLine:
    """Test argument parsing of the agent runner"""

    def test_parse_args(self):
        args = parse_args(["--type", "coder", "--port", "3702"])
        assert args.type == "coder"
        assert args.port == 3702
        assert args.agent_id is None

    def test_rejects_unknown_type(self):
        with pytest.raises(SystemExit):
            parse_args(["--type", "janitor", "--port", "3702"])
