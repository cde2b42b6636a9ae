"""
Message Router

Keeps an agent_id -> base URL directory and delivers application messages
to agents as tools/call requests, point-to-point or by broadcast.
"""

import asyncio
import logging
from typing import Any, Mapping, Optional, Union

import httpx
from pydantic import ValidationError

from autosdlc.agents.mcp_client import mcp_endpoint, post_rpc
from autosdlc.errors import (
    AgentCommError,
    AgentConnectionError,
    AgentNotFoundError,
    ProtocolError,
    RequestTimeoutError,
)
from autosdlc.models.rpc import AgentMessage
from autosdlc.utils.timestamps import epoch_ms, utc_timestamp

logger = logging.getLogger(__name__)

HEALTH_CHECK_TIMEOUT = 5.0

MessageLike = Union[AgentMessage, Mapping[str, Any]]


class MessageRouter:
    """Routes messages between agents via their MCP endpoints"""

    def __init__(
        self,
        main_server_url: Optional[str] = None,
        default_timeout_ms: int = 5000,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Args:
            main_server_url: Coordinator pinged on start; None skips the check
            default_timeout_ms: Deadline for messages that carry no timeout
            transport: Optional httpx transport (in-process tests)
        """
        self.main_server_url = main_server_url
        self.default_timeout_ms = default_timeout_ms

        self._agents: dict[str, str] = {}
        self._running = False
        self._message_id = 0
        self._transport = transport
        self._client = httpx.AsyncClient(transport=transport)

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """
        Raises:
            AgentConnectionError: If the coordinator does not answer a ping
        """
        if self._running:
            return

        if self._client.is_closed:
            self._client = httpx.AsyncClient(transport=self._transport)

        if self.main_server_url:
            try:
                await post_rpc(
                    self._client,
                    mcp_endpoint(self.main_server_url),
                    {"method": "ping"},
                    HEALTH_CHECK_TIMEOUT,
                )
            except AgentCommError as e:
                raise AgentConnectionError(f"Failed to connect to main MCP server: {e}") from e

        self._running = True
        logger.info(f"[MessageRouter] Started (coordinator: {self.main_server_url or 'none'})")

    async def stop(self) -> None:
        self._running = False
        self._agents.clear()
        await self._client.aclose()
        logger.info("[MessageRouter] Stopped")

    async def register_agent(self, agent_id: str, server_url: str) -> None:
        """
        Add an agent after checking its /health endpoint answers.

        Raises:
            ProtocolError: If the router is not started
            AgentConnectionError: If the health check fails
        """
        self._require_running()

        health_url = f"{server_url.rstrip('/')}/health"
        try:
            response = await self._client.get(health_url, timeout=HEALTH_CHECK_TIMEOUT)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise AgentConnectionError(f"Failed to register agent {agent_id}: {e}") from e

        self._agents[agent_id] = server_url.rstrip("/")
        logger.info(f"[MessageRouter] Registered {agent_id} at {server_url}")

    def unregister_agent(self, agent_id: str) -> None:
        if self._agents.pop(agent_id, None) is not None:
            logger.info(f"[MessageRouter] Unregistered {agent_id}")

    def get_registered_agents(self) -> list[str]:
        return list(self._agents.keys())

    def is_agent_registered(self, agent_id: str) -> bool:
        return agent_id in self._agents

    async def route_message(self, message: MessageLike) -> Any:
        """
        Deliver a message to its single recipient and return the tool result.

        Raises:
            ProtocolError: If the router is stopped or the message has
                several recipients
            AgentNotFoundError: If the recipient is not registered
            RequestTimeoutError: If the recipient does not answer in time
        """
        self._require_running()
        message = _as_message(message)

        if isinstance(message.recipient, list):
            raise ProtocolError("Use broadcast_message for multiple recipients")

        return await self._deliver(message.recipient, message)

    async def broadcast_message(self, message: MessageLike) -> list[Any]:
        """
        Deliver a message to every recipient concurrently.

        Results follow recipient order. Any single failure fails the whole
        broadcast.
        """
        self._require_running()
        message = _as_message(message)

        recipients = message.recipient if isinstance(message.recipient, list) else [message.recipient]
        deliveries = [
            asyncio.ensure_future(self._deliver(agent_id, message.model_copy(update={"recipient": agent_id})))
            for agent_id in recipients
        ]
        try:
            return list(await asyncio.gather(*deliveries))
        except BaseException:
            for delivery in deliveries:
                delivery.cancel()
            raise

    async def _deliver(self, agent_id: str, message: AgentMessage) -> Any:
        agent_url = self._agents.get(agent_id)
        if agent_url is None:
            raise AgentNotFoundError(f"Agent not found: {agent_id}")

        message_id = message.id or self._next_message_id()
        timeout_ms = message.timeout or self.default_timeout_ms

        request = {
            "method": "tools/call",
            "params": {
                "name": message.method,
                "arguments": {
                    **message.payload,
                    "_messageMetadata": {
                        "from": message.sender,
                        "to": agent_id,
                        "type": message.type,
                        "id": message_id,
                        "timestamp": utc_timestamp(),
                    },
                },
            },
            "id": message_id,
        }

        logger.debug(f"[MessageRouter] {message.sender} -> {agent_id}: {message.method} ({message_id})")
        try:
            response = await post_rpc(self._client, mcp_endpoint(agent_url), request, timeout_ms / 1000)
        except RequestTimeoutError as e:
            raise RequestTimeoutError("Message timeout") from e

        return response.get("result")

    def _require_running(self) -> None:
        if not self._running:
            raise ProtocolError("Message router not started")

    def _next_message_id(self) -> str:
        self._message_id += 1
        return f"msg-{epoch_ms()}-{self._message_id}"


def _as_message(message: MessageLike) -> AgentMessage:
    if isinstance(message, AgentMessage):
        return message
    try:
        return AgentMessage.model_validate(message)
    except ValidationError as e:
        raise ProtocolError(f"Invalid message: {e}") from e
