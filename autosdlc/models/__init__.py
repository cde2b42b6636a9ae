from autosdlc.models.agent import (
    AgentMetrics,
    AgentStatus,
    AgentStatusRecord,
    AgentType,
    CurrentActivity,
    RecentAction,
)
from autosdlc.models.rpc import AgentMessage, RPCErrorBody, RPCRequest, RPCResponse
from autosdlc.models.tool import ParameterSchema, ToolDefinition

__all__ = [
    "AgentMessage",
    "AgentMetrics",
    "AgentStatus",
    "AgentStatusRecord",
    "AgentType",
    "CurrentActivity",
    "ParameterSchema",
    "RPCErrorBody",
    "RPCRequest",
    "RPCResponse",
    "RecentAction",
    "ToolDefinition",
]
