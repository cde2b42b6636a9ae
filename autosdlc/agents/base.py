import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional, Union

from autosdlc.agents.mcp_client import MCPClient
from autosdlc.agents.mcp_server import MCPAgentServer
from autosdlc.models.agent import (
    MAX_RECENT_ACTIONS,
    AgentMetrics,
    AgentStatus,
    AgentStatusRecord,
    AgentType,
    CurrentActivity,
    RecentAction,
)
from autosdlc.services.output_writer import AgentOutputWriter
from autosdlc.services.tool_registry import ToolRegistry
from autosdlc.utils.timestamps import utc_timestamp

logger = logging.getLogger(__name__)


class BaseAgent(ABC):
    """
    Base class for all agents.

    An agent owns one MCP server (its tools), an optional MCP client to the
    coordinator, and an output writer publishing its status document.
    """

    def __init__(
        self,
        agent_id: str,
        agent_type: AgentType,
        workspace_dir: Union[str, Path],
        shared_status_dir: Union[str, Path],
        port: int,
        host: str = "127.0.0.1",
        coordinator_url: Optional[str] = None,
        tool_registry: Optional[ToolRegistry] = None,
        update_interval: float = 5.0,
        request_timeout: float = 5.0
    ):
        self.agent_id = agent_id
        self.agent_type = agent_type
        self.workspace_dir = Path(workspace_dir)

        self.server = MCPAgentServer(
            agent_id=agent_id,
            agent_type=agent_type,
            port=port,
            host=host,
            tool_registry=tool_registry,
        )
        self.client: Optional[MCPClient] = None
        if coordinator_url:
            self.client = MCPClient(coordinator_url, agent_id, agent_type, timeout=request_timeout)
        self.output_writer = AgentOutputWriter(
            agent_type=agent_type,
            agent_name=agent_id,
            workspace=self.workspace_dir,
            shared_status_dir=shared_status_dir,
            update_interval=update_interval,
        )

        self.status = AgentStatus.IDLE
        self.current_activity = CurrentActivity()
        self.action_history: list[RecentAction] = []
        self.tasks_completed = 0
        self.error_count = 0

        self._running = False
        self._start_time: Optional[float] = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def port(self) -> int:
        return self.server.port

    @property
    def url(self) -> str:
        return self.server.url

    @abstractmethod
    def register_tools(self) -> None:
        """Register agent-specific tools on self.server"""
        pass

    async def start(self) -> None:
        """
        Start the server, connect to the coordinator and begin publishing.

        On failure the agent publishes an ERROR status and re-raises.
        """
        if self._running:
            return

        try:
            self.workspace_dir.mkdir(parents=True, exist_ok=True)
            await self.server.start()
            if self.client is not None:
                await self.client.connect()
            self.register_tools()
            await self.output_writer.start()
        except Exception as e:
            logger.error(f"[Agent] {self.agent_id} failed to start: {e}", exc_info=True)
            await self._abort_start(e)
            raise

        self._running = True
        self._start_time = time.monotonic()
        await self.log_action("Agent started")
        await self.update_status(AgentStatus.IDLE)
        logger.info(f"[Agent] {self.agent_id} ({self.agent_type.value}) started on {self.url}")

    async def stop(self) -> None:
        """Stop all components; errors are logged, not raised"""
        if not self._running:
            return

        self._running = False
        self.status = AgentStatus.IDLE

        try:
            await self.server.stop()
            if self.client is not None:
                await self.client.disconnect()
            await self.output_writer.stop()
        except Exception as e:
            logger.error(f"[Agent] Error stopping {self.agent_id}: {e}", exc_info=True)

        logger.info(f"[Agent] {self.agent_id} stopped")

    def get_capabilities(self) -> list[str]:
        return self.server.get_capabilities()

    async def invoke_tool(self, name: str, params: Optional[dict[str, Any]] = None) -> Any:
        return await self.server.invoke_tool(name, params)

    async def update_status(
        self,
        status: AgentStatus,
        task: Optional[str] = None,
        progress: Optional[int] = None,
        dependencies: Optional[list[str]] = None
    ) -> None:
        """Change status and activity fields; omitted fields keep their value"""
        self.status = status

        changes: dict[str, Any] = {}
        if task is not None:
            changes["task"] = task
        if progress is not None:
            changes["progress"] = progress
        if dependencies is not None:
            changes["dependencies"] = dependencies
        if changes:
            # Revalidate so progress bounds and dependency dedupe apply
            self.current_activity = CurrentActivity.model_validate(
                {**self.current_activity.model_dump(), **changes}
            )

        await self._publish()

    async def log_action(self, action: str, result: Optional[str] = None) -> None:
        """Record an action; results mentioning "error" count as errors"""
        self.action_history.append(RecentAction(timestamp=utc_timestamp(), action=action, result=result))
        if len(self.action_history) > MAX_RECENT_ACTIONS:
            self.action_history = self.action_history[-MAX_RECENT_ACTIONS:]

        if result and "error" in result.lower():
            self.error_count += 1

        await self._publish()

    async def complete_task(self) -> None:
        self.tasks_completed += 1
        self.current_activity = CurrentActivity()
        await self.update_status(AgentStatus.IDLE)

    def build_status_record(self) -> AgentStatusRecord:
        uptime = int(time.monotonic() - self._start_time) if self._start_time is not None else 0
        return AgentStatusRecord(
            agent_type=self.agent_type,
            status=self.status,
            last_updated=utc_timestamp(),
            current_activity=self.current_activity.model_copy(deep=True),
            recent_actions=list(self.action_history),
            metrics=AgentMetrics(
                tasks_completed=self.tasks_completed,
                uptime_seconds=uptime,
                error_count=self.error_count,
            ),
        )

    async def _publish(self) -> None:
        if self._running:
            await self.output_writer.update_status(self.build_status_record())

    async def _abort_start(self, error: Exception) -> None:
        self.status = AgentStatus.ERROR
        self.current_activity = CurrentActivity(task=f"Failed to start: {error}")
        self.error_count += 1

        if self.server.is_running:
            await self.server.stop()
        if self.client is not None:
            await self.client.disconnect()
        await self.output_writer.stop()

        await self.output_writer.update_status(self.build_status_record())
        self.output_writer.flush()
