"""
MCP Tools implementation.

Provides the tool capability contract and the registry that maps a tool
name to its handler for discovery and dispatch.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .protocol import CallToolResult, Tool, ToolParameter


logger = logging.getLogger(__name__)


class ToolError(Exception):
    """Base error for tool-level failures."""

    retryable = False


class ToolNotFoundError(ToolError):
    """Requested tool does not exist in the registry."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"tool not found: {name}")


class InvalidArgumentsError(ToolError):
    """Arguments did not match the tool's input schema."""

    def __init__(self, tool: str, detail: str) -> None:
        self.tool = tool
        self.detail = detail
        super().__init__(f"invalid arguments for {tool}: {detail}")


class ToolExecutionError(ToolError):
    """A tool failed while talking to its backend."""

    def __init__(self, tool: str, detail: str, retryable: bool = False) -> None:
        self.tool = tool
        self.detail = detail
        self.retryable = retryable
        super().__init__(detail)


_JSON_TYPES = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "array": (list,),
    "object": (dict,),
}


def matches_json_type(value: Any, type_name: str) -> bool:
    """Check a decoded JSON value against a JSON-schema type name."""
    if type_name == "integer":
        if isinstance(value, bool):
            return False
        if isinstance(value, float):
            return value.is_integer()
        return isinstance(value, int)
    if type_name == "number" and isinstance(value, bool):
        return False
    expected = _JSON_TYPES.get(type_name)
    if expected is None:
        return True
    return isinstance(value, expected)


class BaseTool(ABC):
    """Base class for MCP tools."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Tool name."""
        pass

    @property
    @abstractmethod
    def description(self) -> str:
        """Tool description."""
        pass

    @property
    @abstractmethod
    def parameters(self) -> List[ToolParameter]:
        """Tool parameters."""
        pass

    @abstractmethod
    async def execute(self, arguments: Dict[str, Any]) -> CallToolResult:
        """Execute the tool with already validated arguments."""
        pass

    def get_definition(self) -> Tool:
        """Get the MCP tool definition."""
        return Tool(
            name=self.name,
            description=self.description,
            parameters=self.parameters,
        )

    def validate_arguments(self, arguments: Dict[str, Any]) -> None:
        """
        Validate arguments against the declared parameters.

        Unknown arguments are ignored.

        Raises:
            InvalidArgumentsError: on a missing required argument, a type
                mismatch or a value outside the declared enum.
        """
        for param in self.parameters:
            if param.name not in arguments or arguments[param.name] is None:
                if param.required:
                    raise InvalidArgumentsError(
                        self.name, f"{param.name} is required"
                    )
                continue

            value = arguments[param.name]
            if not matches_json_type(value, param.type):
                raise InvalidArgumentsError(
                    self.name, f"{param.name} must be of type {param.type}"
                )
            if param.enum is not None and value not in param.enum:
                allowed = ", ".join(str(v) for v in param.enum)
                raise InvalidArgumentsError(
                    self.name, f"{param.name} must be one of: {allowed}"
                )

    async def invoke(self, arguments: Dict[str, Any]) -> CallToolResult:
        """Validate ``arguments`` and run the tool."""
        self.validate_arguments(arguments)
        return await self.execute(arguments)


@dataclass
class ToolRegistry:
    """
    Registry for managing tools.

    Populated once at startup. Registering a name twice replaces the
    earlier tool.
    """
    tools: Dict[str, BaseTool] = field(default_factory=dict)

    def register(self, tool: BaseTool) -> None:
        """Register a tool."""
        if tool.name in self.tools:
            logger.debug(f"Replacing registered tool {tool.name}")
        self.tools[tool.name] = tool

    def get(self, name: str) -> Optional[BaseTool]:
        """Get a tool by name."""
        return self.tools.get(name)

    def resolve(self, name: str) -> BaseTool:
        """Get a tool by exact name or raise ToolNotFoundError."""
        tool = self.tools.get(name)
        if tool is None:
            raise ToolNotFoundError(name)
        return tool

    def tool_names(self) -> List[str]:
        return list(self.tools)

    def list_tools(self) -> List[Tool]:
        """List all registered tools as MCP Tool definitions."""
        return [tool.get_definition() for tool in self.tools.values()]

    async def invoke(self, name: str, arguments: Dict[str, Any]) -> CallToolResult:
        """
        Invoke a tool by name.

        Failures raised by the tool propagate unchanged.
        """
        tool = self.resolve(name)
        return await tool.invoke(arguments)

    def __len__(self) -> int:
        return len(self.tools)

    def __contains__(self, name: str) -> bool:
        return name in self.tools
