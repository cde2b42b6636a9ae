"""
MCP Agent Server

Inbound side of agent communication. Each agent hosts one HTTP listener
exposing its tools through a small JSON RPC-style protocol on POST /mcp,
plus /health and /capabilities endpoints.
"""

import asyncio
import contextlib
import inspect
import json
import logging
import socket
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

import uvicorn
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from autosdlc.errors import (
    RPC_INTERNAL_ERROR,
    AgentCommError,
    AgentConnectionError,
    HandlerError,
    ProtocolError,
    ToolNotFoundError,
)
from autosdlc.models.agent import AgentType
from autosdlc.models.rpc import RPCErrorBody, RPCResponse
from autosdlc.models.tool import ToolDefinition
from autosdlc.services.tool_registry import ToolRegistry, ToolSpec, build_tool_definition
from autosdlc.utils.timestamps import utc_timestamp

logger = logging.getLogger(__name__)

ToolHandler = Callable[[dict[str, Any]], Union[Any, Awaitable[Any]]]

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves process signal handling to its owner"""

    @contextlib.contextmanager
    def capture_signals(self):
        yield


class MCPAgentServer:
    """HTTP listener exposing one agent's tools"""

    def __init__(
        self,
        agent_id: str,
        agent_type: AgentType,
        port: int,
        host: str = "127.0.0.1",
        capabilities: Optional[list[str]] = None,
        tool_registry: Optional[ToolRegistry] = None,
        shutdown_timeout: float = 5.0
    ):
        """
        Args:
            agent_id: Identifier reported in ping/health responses
            agent_type: Agent type reported in health/capabilities
            port: Port to listen on (0 picks a free port at start)
            host: Interface to bind
            capabilities: Static capability names advertised besides tools
            tool_registry: Optional shared registry; tool definitions are
                mirrored into it and tools/call arguments validated against it
            shutdown_timeout: Seconds to wait for in-flight handlers on stop
        """
        self.agent_id = agent_id
        self.agent_type = agent_type
        self.host = host
        self.port = port
        self.static_capabilities = list(capabilities or [])
        self.tool_registry = tool_registry
        self.shutdown_timeout = shutdown_timeout

        self.tools: dict[str, ToolHandler] = {}
        self.tool_definitions: dict[str, ToolDefinition] = {}

        self._running = False
        self._server: Optional[_EmbeddedServer] = None
        self._serve_task: Optional[asyncio.Task] = None
        self._socket: Optional[socket.socket] = None

        self.app = self._build_app()
        self._register_default_tools()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"

    async def start(self) -> None:
        """
        Bind the port and serve until stop() is called.

        Raises:
            AgentConnectionError: If the port cannot be bound or the server
                fails to start
        """
        if self._running:
            return

        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.host, self.port))
        except OSError as e:
            sock.close()
            raise AgentConnectionError(f"Cannot bind MCP server for {self.agent_id} on {self.host}:{self.port}: {e}") from e

        self.port = sock.getsockname()[1]
        self._socket = sock

        config = uvicorn.Config(
            self.app,
            log_config=None,
            log_level="warning",
            lifespan="off",
            timeout_graceful_shutdown=self.shutdown_timeout,
        )
        self._server = _EmbeddedServer(config)
        self._serve_task = asyncio.create_task(
            self._server.serve(sockets=[sock]), name=f"mcp-server-{self.agent_id}"
        )

        while not self._server.started:
            if self._serve_task.done():
                error = self._serve_task.exception()
                self._cleanup()
                raise AgentConnectionError(f"MCP server for {self.agent_id} failed to start: {error}")
            await asyncio.sleep(0.01)

        if self.tool_registry is not None:
            for name, definition in self.tool_definitions.items():
                self.tool_registry.register_agent_tool(self.agent_id, name, definition)

        self._running = True
        logger.info(f"[MCPServer] {self.agent_id} ({self.agent_type.value}) listening on {self.url}")

    async def stop(self) -> None:
        """Stop serving; the port is released when this returns"""
        if not self._running:
            return

        if self._server is not None:
            self._server.should_exit = True
        if self._serve_task is not None:
            try:
                await self._serve_task
            except Exception as e:
                logger.error(f"[MCPServer] {self.agent_id} shutdown error: {e}", exc_info=True)

        self._cleanup()
        if self.tool_registry is not None:
            self.tool_registry.clear_agent_tools(self.agent_id)

        self._running = False
        logger.info(f"[MCPServer] {self.agent_id} stopped")

    def _cleanup(self) -> None:
        if self._socket is not None:
            self._socket.close()
        self._socket = None
        self._server = None
        self._serve_task = None

    def get_capabilities(self) -> list[str]:
        return list(dict.fromkeys([*self.static_capabilities, *self.tools.keys()]))

    def register_tool(self, name: str, handler: ToolHandler, definition: ToolSpec = None) -> ToolDefinition:
        """Register (or replace) a tool handler with its definition"""
        tool_definition = build_tool_definition(self.agent_id, name, definition)
        self.tools[name] = handler
        self.tool_definitions[name] = tool_definition

        if self.tool_registry is not None:
            self.tool_registry.register_agent_tool(self.agent_id, name, tool_definition)
        return tool_definition

    def unregister_tool(self, name: str) -> None:
        self.tools.pop(name, None)
        self.tool_definitions.pop(name, None)
        if self.tool_registry is not None:
            self.tool_registry.unregister_agent_tool(self.agent_id, name)

    async def invoke_tool(self, name: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        """
        Run a tool handler directly.

        Raises:
            ToolNotFoundError: If no handler is registered under name
            HandlerError: If the handler raises
        """
        handler = self.tools.get(name)
        if handler is None:
            raise ToolNotFoundError(f"Tool not found: {name}")

        try:
            result = handler(dict(params or {}))
            if inspect.isawaitable(result):
                result = await result
        except AgentCommError:
            raise
        except Exception as e:
            raise HandlerError(str(e) or e.__class__.__name__) from e
        return result

    def _build_app(self) -> FastAPI:
        app = FastAPI(
            title=f"MCP Agent {self.agent_id}",
            docs_url=None,
            redoc_url=None,
            openapi_url=None,
        )
        # Any OPTIONS request is answered as a preflight, whatever the path
        @app.middleware("http")
        async def preflight(request: Request, call_next):
            if request.method == "OPTIONS":
                return Response(status_code=200, headers=CORS_HEADERS)
            return await call_next(request)

        @app.exception_handler(StarletteHTTPException)
        async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
            message = "Not found" if exc.status_code == 404 else exc.detail
            return JSONResponse({"error": message}, status_code=exc.status_code, headers=CORS_HEADERS)

        @app.post("/mcp")
        async def mcp(request: Request) -> JSONResponse:
            return await self._handle_mcp_request(request)

        @app.get("/capabilities")
        async def capabilities() -> JSONResponse:
            return JSONResponse({
                "agentId": self.agent_id,
                "agentType": self.agent_type.value,
                "capabilities": self.get_capabilities(),
                "tools": {name: d.describe() for name, d in self.tool_definitions.items()},
            }, headers=CORS_HEADERS)

        @app.get("/health")
        async def health() -> JSONResponse:
            return JSONResponse({
                "status": "healthy",
                "agentId": self.agent_id,
                "agentType": self.agent_type.value,
                "running": self._running,
                "port": self.port,
                "timestamp": utc_timestamp(),
            }, headers=CORS_HEADERS)

        return app

    async def _handle_mcp_request(self, request: Request) -> JSONResponse:
        request_id = None
        try:
            try:
                body = await request.json()
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                raise ProtocolError(f"Invalid JSON body: {e}") from e
            if not isinstance(body, dict):
                raise ProtocolError("Request body must be a JSON object")

            request_id = body.get("id")
            method = body.get("method")
            if not method:
                raise ProtocolError("Missing method in request")
            if not isinstance(method, str):
                raise ProtocolError("Invalid method type: must be string")

            result = jsonable_encoder(await self._dispatch(method, body.get("params")))
            return JSONResponse(RPCResponse(result=result, id=request_id).to_wire(), headers=CORS_HEADERS)

        except Exception as e:
            # Every failure becomes an RPC error; the listener must keep serving
            if isinstance(e, HandlerError):
                logger.error(f"[MCPServer] {self.agent_id} tool handler failed: {e}", exc_info=e.__cause__ or e)
            elif isinstance(e, AgentCommError):
                logger.warning(f"[MCPServer] {self.agent_id} rejected request: {e}")
            else:
                logger.error(f"[MCPServer] {self.agent_id} internal error: {e}", exc_info=True)

            code = e.code if isinstance(e, HandlerError) else RPC_INTERNAL_ERROR
            response = RPCResponse(error=RPCErrorBody(code=code, message=str(e) or "Internal error"), id=request_id)
            return JSONResponse(response.to_wire(), status_code=400, headers=CORS_HEADERS)

    async def _dispatch(self, method: str, params: Any) -> Any:
        if method == "ping":
            return {"pong": True, "agentId": self.agent_id, "timestamp": utc_timestamp()}
        if method == "tools/list":
            return {"tools": [d.describe() for d in self.tool_definitions.values()]}
        if method == "tools/call":
            return await self._handle_tool_call(params)
        if method == "disconnect":
            return {"disconnected": True, "agentId": self.agent_id}
        raise ProtocolError(f"Unknown method: {method}")

    async def _handle_tool_call(self, params: Any) -> Any:
        if not isinstance(params, dict) or not params.get("name"):
            raise ProtocolError("Missing tool name in call")

        name = params["name"]
        if name not in self.tools:
            raise ToolNotFoundError(f"Tool not found: {name}")

        arguments = params.get("arguments") or {}
        if not isinstance(arguments, dict):
            raise ProtocolError("Tool arguments must be an object")

        if self.tool_registry is not None and not self.tool_registry.validate_tool_call(self.agent_id, name, arguments):
            raise ProtocolError(f"Invalid arguments for tool {name}")

        return await self.invoke_tool(name, arguments)

    def _register_default_tools(self) -> None:
        def get_status(params: dict[str, Any]) -> dict[str, Any]:
            return {
                "agentId": self.agent_id,
                "agentType": self.agent_type.value,
                "running": self._running,
                "capabilities": self.get_capabilities(),
                "timestamp": utc_timestamp(),
            }

        def ping(params: dict[str, Any]) -> dict[str, Any]:
            return {
                "pong": True,
                "agentId": self.agent_id,
                "echo": params,
                "timestamp": utc_timestamp(),
            }

        self.register_tool("getStatus", get_status, {"description": "Get agent status and information"})
        self.register_tool("ping", ping, {"description": "Ping the agent to test connectivity"})
