"""
Coordinator MCP endpoint.

Agents connect their MCPClient here; the coordinator answers ping and
disconnect only.
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from autosdlc.errors import RPC_INTERNAL_ERROR
from autosdlc.models.rpc import RPCErrorBody, RPCResponse
from autosdlc.utils.timestamps import utc_timestamp

logger = logging.getLogger(__name__)

router = APIRouter(tags=["mcp"])


@router.post("/mcp")
async def coordinator_mcp(request: Request):
    try:
        body = await request.json()
    except ValueError:
        body = None
    if not isinstance(body, dict):
        return _error("Invalid JSON body", None)

    request_id = body.get("id")
    method = body.get("method")
    params = body.get("params") if isinstance(body.get("params"), dict) else {}

    if method == "ping":
        if params.get("agentId"):
            logger.info(f"[Coordinator] Agent {params['agentId']} ({params.get('agentType')}) connected")
        result = {"pong": True, "server": "coordinator", "timestamp": utc_timestamp()}
    elif method == "disconnect":
        if params.get("agentId"):
            logger.info(f"[Coordinator] Agent {params['agentId']} disconnected")
        result = {"disconnected": True}
    else:
        return _error(f"Unknown method: {method}", request_id)

    return RPCResponse(result=result, id=request_id).to_wire()


def _error(message: str, request_id) -> JSONResponse:
    response = RPCResponse(error=RPCErrorBody(code=RPC_INTERNAL_ERROR, message=message), id=request_id)
    return JSONResponse(response.to_wire(), status_code=400)
