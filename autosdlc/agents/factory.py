import logging
from pathlib import Path
from typing import Optional, Union

from autosdlc.agents.mock_agent import MockAgent
from autosdlc.errors import AgentCommError, AgentConnectionError
from autosdlc.models.agent import AgentType
from autosdlc.services.message_router import MessageRouter
from autosdlc.services.tool_registry import ToolRegistry
from autosdlc.utils.port_allocator import PortAllocator

logger = logging.getLogger(__name__)


class AgentFactory:
    """Factory for creating and managing agents"""

    def __init__(
        self,
        workspace_root: Union[str, Path],
        shared_status_dir: Union[str, Path],
        port_allocator: PortAllocator,
        message_router: Optional[MessageRouter] = None,
        tool_registry: Optional[ToolRegistry] = None,
        coordinator_url: Optional[str] = None,
        update_interval: float = 5.0,
        work_delay: float = 0.1
    ):
        self.workspace_root = Path(workspace_root)
        self.shared_status_dir = Path(shared_status_dir)
        self.port_allocator = port_allocator
        self.message_router = message_router
        self.tool_registry = tool_registry
        self.coordinator_url = coordinator_url
        self.update_interval = update_interval
        self.work_delay = work_delay

        self._agents: dict[str, MockAgent] = {}

    async def create_agent(self, agent_type: AgentType, agent_id: Optional[str] = None) -> MockAgent:
        """
        Start an agent on a free port and register it with the router.

        Returns the existing agent when agent_id is already running.
        """
        agent_id = agent_id or f"{agent_type.value}-agent"
        if agent_id in self._agents:
            return self._agents[agent_id]

        port = await self.port_allocator.allocate()
        if port is None:
            raise AgentConnectionError(
                f"No free agent port in {self.port_allocator.start_port}-{self.port_allocator.end_port}"
            )
        agent = MockAgent(
            agent_type,
            agent_id=agent_id,
            work_delay=self.work_delay,
            workspace_dir=self.workspace_root / agent_id,
            shared_status_dir=self.shared_status_dir,
            port=port,
            host=self.port_allocator.host,
            coordinator_url=self.coordinator_url,
            tool_registry=self.tool_registry,
            update_interval=self.update_interval,
        )

        try:
            await agent.start()
            if self.message_router is not None:
                await self.message_router.register_agent(agent_id, agent.url)
        except Exception:
            await agent.stop()
            await self.port_allocator.release(port)
            raise

        self._agents[agent_id] = agent
        logger.info(f"[Factory] Created {agent_type.value} agent '{agent_id}' on port {port}")
        return agent

    async def create_all(self) -> list[MockAgent]:
        """One agent per type, in AgentType order"""
        return [await self.create_agent(agent_type) for agent_type in AgentType]

    def get_agent(self, agent_id: str) -> Optional[MockAgent]:
        return self._agents.get(agent_id)

    def list_agents(self) -> list[str]:
        return list(self._agents.keys())

    async def stop_agent(self, agent_id: str) -> None:
        agent = self._agents.pop(agent_id, None)
        if agent is None:
            return

        if self.message_router is not None:
            self.message_router.unregister_agent(agent_id)
        port = agent.port
        await agent.stop()
        await self.port_allocator.release(port)

    async def stop_all(self):
        """Stop all agents"""
        for agent_id in list(self._agents):
            try:
                await self.stop_agent(agent_id)
            except AgentCommError as e:
                logger.error(f"[Factory] Failed to stop {agent_id}: {e}")
