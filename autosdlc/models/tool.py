from pydantic import BaseModel, Field
from typing import Any, Literal, Optional

DEFAULT_TOOL_VERSION = "1.0.0"

class ParameterSchema(BaseModel):
    type: Literal["string", "number", "boolean", "object", "array"]
    required: bool = False
    description: Optional[str] = None
    min: Optional[float] = None
    max: Optional[float] = None
    pattern: Optional[str] = None
    enum: Optional[list[Any]] = None

class ToolDefinition(BaseModel):
    """Registered description of one agent tool.

    ``parameters`` keeps the raw per-field schema mappings so that a broken
    schema is only rejected when a call is validated against it.
    """
    name: str
    agent_id: str
    description: str = ""
    parameters: dict[str, Any] = Field(default_factory=dict)
    version: str = DEFAULT_TOOL_VERSION
    tags: list[str] = Field(default_factory=list)

    def describe(self) -> dict[str, Any]:
        """Wire form used by tools/list and /capabilities"""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
            "version": self.version,
        }
