"""Exceptions raised by the agent communication and status layers"""

from typing import Optional

# JSON-RPC "internal error", used for every failure reported by an agent server
RPC_INTERNAL_ERROR = -32603


class AgentCommError(Exception):
    """Base class for agent communication errors"""
    pass


class AgentConnectionError(AgentCommError):
    """Peer unreachable or liveness check failed"""
    pass


class ProtocolError(AgentCommError):
    """Malformed request or misuse of the protocol"""
    pass


class NotFoundError(AgentCommError):
    """Unknown tool or unregistered agent"""
    pass


class ToolNotFoundError(NotFoundError):
    pass


class AgentNotFoundError(NotFoundError):
    pass


class RequestTimeoutError(AgentCommError, TimeoutError):
    """Deadline exceeded while waiting for a peer"""
    pass


class HandlerError(AgentCommError):
    """A tool handler failed, or a peer answered with an RPC error"""

    def __init__(self, message: str, code: int = RPC_INTERNAL_ERROR, data: Optional[dict] = None):
        super().__init__(message)
        self.code = code
        self.data = data


class StatusParseError(AgentCommError):
    """Status document does not follow the expected structure"""

    def __init__(self, message: str, line_number: Optional[int] = None):
        if line_number is not None:
            message = f"line {line_number}: {message}"
        super().__init__(message)
        self.line_number = line_number


class StatusIOError(AgentCommError, OSError):
    """Status directory or file could not be created or written"""
    pass
