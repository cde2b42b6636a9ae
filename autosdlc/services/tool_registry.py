"""
Tool Registry

Catalog of the tools each agent exposes, keyed by (agent_id, tool_name),
with schema-based validation of call arguments.
"""

import logging
import math
import re
from typing import Any, Mapping, Optional, Union

from pydantic import ValidationError

from autosdlc.models.tool import DEFAULT_TOOL_VERSION, ParameterSchema, ToolDefinition

logger = logging.getLogger(__name__)

ToolSpec = Union[Mapping[str, Any], ToolDefinition, None]


def build_tool_definition(agent_id: str, tool_name: str, definition: ToolSpec = None) -> ToolDefinition:
    """Normalize a partial definition, filling in the default version"""
    if isinstance(definition, ToolDefinition):
        fields = definition.model_dump(exclude={"name", "agent_id"})
    else:
        fields = {k: v for k, v in dict(definition or {}).items() if k not in ("name", "agent_id")}

    if not fields.get("version"):
        fields["version"] = DEFAULT_TOOL_VERSION
    if fields.get("description") is None:
        fields["description"] = ""
    if fields.get("parameters") is None:
        fields["parameters"] = {}
    if fields.get("tags") is None:
        fields["tags"] = []

    return ToolDefinition(name=tool_name, agent_id=agent_id, **fields)


class ToolRegistry:
    """
    Process-local registry of agent tool definitions.

    One definition exists per (agent_id, tool_name); registering the same
    pair again replaces the previous definition.
    """

    def __init__(self):
        self._tools: dict[tuple[str, str], ToolDefinition] = {}
        # agent_id -> tool names in registration order
        self._agent_tools: dict[str, list[str]] = {}

    def register_agent_tool(
        self,
        agent_id: str,
        tool_name: str,
        definition: ToolSpec = None
    ) -> ToolDefinition:
        """
        Register (or replace) a tool for an agent.

        Args:
            agent_id: Owning agent
            tool_name: Tool name, unique per agent
            definition: description/parameters/version/tags; name and
                agent_id in the definition are ignored

        Returns:
            The stored definition
        """
        full_definition = build_tool_definition(agent_id, tool_name, definition)

        self.unregister_agent_tool(agent_id, tool_name)
        self._tools[(agent_id, tool_name)] = full_definition
        self._agent_tools.setdefault(agent_id, []).append(tool_name)

        logger.debug(f"[ToolRegistry] Registered {agent_id}:{tool_name} v{full_definition.version}")
        return full_definition

    def unregister_agent_tool(self, agent_id: str, tool_name: str) -> None:
        self._tools.pop((agent_id, tool_name), None)

        names = self._agent_tools.get(agent_id)
        if names and tool_name in names:
            names.remove(tool_name)
            if not names:
                del self._agent_tools[agent_id]

    def get_agent_tools(self, agent_id: str) -> list[ToolDefinition]:
        return [self._tools[(agent_id, name)] for name in self._agent_tools.get(agent_id, [])]

    def get_all_tools(self) -> list[ToolDefinition]:
        return list(self._tools.values())

    def find_tools_by_name(self, tool_name: str) -> list[ToolDefinition]:
        return [tool for tool in self._tools.values() if tool.name == tool_name]

    def find_tools_by_tags(self, tags: list[str]) -> list[ToolDefinition]:
        """Tools carrying at least one of the given tags"""
        wanted = set(tags)
        return [tool for tool in self._tools.values() if wanted.intersection(tool.tags)]

    def get_tool_definition(self, agent_id: str, tool_name: str) -> Optional[ToolDefinition]:
        return self._tools.get((agent_id, tool_name))

    def has_agent_tool(self, agent_id: str, tool_name: str) -> bool:
        return (agent_id, tool_name) in self._tools

    def get_agents_with_tools(self) -> list[str]:
        return list(self._agent_tools.keys())

    def clear_agent_tools(self, agent_id: str) -> None:
        for tool_name in list(self._agent_tools.get(agent_id, [])):
            self.unregister_agent_tool(agent_id, tool_name)

    def clear_all_tools(self) -> None:
        self._tools.clear()
        self._agent_tools.clear()

    def get_stats(self) -> dict[str, Any]:
        return {
            "total_tools": len(self._tools),
            "total_agents": len(self._agent_tools),
            "tools_by_agent": {agent_id: len(names) for agent_id, names in self._agent_tools.items()},
        }

    def validate_tool_call(self, agent_id: str, tool_name: str, parameters: Any) -> bool:
        """
        Check call arguments against the tool's parameter schema.

        Fails closed: an unknown tool, a malformed schema or non-mapping
        arguments yield False instead of raising.
        """
        definition = self.get_tool_definition(agent_id, tool_name)
        if definition is None:
            return False
        if not isinstance(parameters, Mapping):
            return False

        try:
            schema = {
                name: ParameterSchema.model_validate(raw)
                for name, raw in definition.parameters.items()
            }
        except (ValidationError, TypeError, AttributeError) as e:
            logger.warning(f"[ToolRegistry] Malformed schema for {agent_id}:{tool_name}: {e}")
            return False

        for name, param_schema in schema.items():
            if param_schema.required and name not in parameters:
                return False

        for name, value in parameters.items():
            param_schema = schema.get(name)
            if param_schema is None:
                continue  # unknown parameters are allowed
            if not _validate_value(value, param_schema):
                return False

        return True


def _validate_value(value: Any, schema: ParameterSchema) -> bool:
    if schema.type == "string":
        if not isinstance(value, str):
            return False
        if schema.pattern is not None:
            try:
                if re.search(schema.pattern, value) is None:
                    return False
            except re.error:
                return False

    elif schema.type == "number":
        # bool is an int subclass but never a valid number here
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return False
        if isinstance(value, float) and math.isnan(value):
            return False
        if schema.min is not None and value < schema.min:
            return False
        if schema.max is not None and value > schema.max:
            return False

    elif schema.type == "boolean":
        if not isinstance(value, bool):
            return False

    elif schema.type == "object":
        if not isinstance(value, Mapping):
            return False

    elif schema.type == "array":
        if not isinstance(value, (list, tuple)):
            return False

    if schema.enum is not None and value not in schema.enum:
        return False

    return True
