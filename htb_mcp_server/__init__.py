"""
HTB MCP Server - exposes HackTheBox operations as Model Context Protocol tools.

The server speaks newline-delimited JSON-RPC 2.0 over stdin/stdout and
handles the initialize, tools/list and tools/call lifecycle.
"""

from .protocol import (
    PROTOCOL_VERSION,
    CallToolRequest,
    CallToolResult,
    Content,
    InitializeRequest,
    InitializeResult,
    InvalidParamsError,
    MCPError,
    MCPErrorCode,
    MCPMessage,
    MessageDecodeError,
    SerializationError,
    Tool,
    ToolParameter,
    create_json_content,
    create_text_content,
    new_error_response,
    new_notification,
    new_request,
    new_response,
    parse_message,
)
from .server import ConfigError, MCPServer, ServerConfig, ServerState, StartupError
from .tools import (
    BaseTool,
    InvalidArgumentsError,
    ToolError,
    ToolExecutionError,
    ToolNotFoundError,
    ToolRegistry,
)
from .client import (
    BackendTimeoutError,
    BackendUnavailableError,
    HTBClient,
    HTBError,
    UnauthorizedError,
)
from .htb_tools import create_default_registry
from .transport import FramingError, Transport, StdioTransport

__version__ = "1.0.0"

__all__ = [
    # Protocol
    "PROTOCOL_VERSION",
    "CallToolRequest",
    "CallToolResult",
    "Content",
    "InitializeRequest",
    "InitializeResult",
    "InvalidParamsError",
    "MCPError",
    "MCPErrorCode",
    "MCPMessage",
    "MessageDecodeError",
    "SerializationError",
    "Tool",
    "ToolParameter",
    "create_json_content",
    "create_text_content",
    "new_error_response",
    "new_notification",
    "new_request",
    "new_response",
    "parse_message",
    # Server
    "ConfigError",
    "MCPServer",
    "ServerConfig",
    "ServerState",
    "StartupError",
    # Tools
    "BaseTool",
    "InvalidArgumentsError",
    "ToolError",
    "ToolExecutionError",
    "ToolNotFoundError",
    "ToolRegistry",
    "create_default_registry",
    # Backend
    "BackendTimeoutError",
    "BackendUnavailableError",
    "HTBClient",
    "HTBError",
    "UnauthorizedError",
    # Transport
    "FramingError",
    "Transport",
    "StdioTransport",
]
