from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Literal, Optional, Union

class RPCRequest(BaseModel):
    method: str
    params: Optional[dict[str, Any]] = None
    id: Optional[Union[str, int]] = None

class RPCErrorBody(BaseModel):
    code: int
    message: str

class RPCResponse(BaseModel):
    result: Any = None
    error: Optional[RPCErrorBody] = None
    id: Optional[Union[str, int]] = None

    def to_wire(self) -> dict[str, Any]:
        if self.error is not None:
            return {"error": self.error.model_dump(), "id": self.id}
        return {"result": self.result, "id": self.id}

MessageType = Literal["request", "response", "notification"]

class AgentMessage(BaseModel):
    """Application-level message routed between agents as a tools/call"""
    model_config = ConfigDict(populate_by_name=True)

    sender: str = Field(alias="from")
    recipient: Union[str, list[str]] = Field(alias="to")
    type: MessageType = "request"
    method: str
    payload: dict[str, Any] = Field(default_factory=dict)
    timeout: Optional[int] = Field(default=None, gt=0, description="Milliseconds")
    id: Optional[str] = None
