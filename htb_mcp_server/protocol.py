"""
MCP Protocol definitions.

Implements the JSON-RPC 2.0 envelope used by the Model Context Protocol
together with the MCP payloads this server speaks: the initialize handshake,
tool descriptors, tool-call requests/results and content blocks.
"""

import json
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union


JSONRPC_VERSION = "2.0"
PROTOCOL_VERSION = "2024-11-05"

METHOD_INITIALIZE = "initialize"
METHOD_LIST_TOOLS = "tools/list"
METHOD_CALL_TOOL = "tools/call"
METHOD_INITIALIZED = "notifications/initialized"

JSON_MIME_TYPE = "application/json"


class MCPErrorCode(Enum):
    """Standard JSON-RPC error codes."""
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603


class MessageDecodeError(ValueError):
    """Raised when a raw line cannot be decoded into a message."""


class InvalidParamsError(ValueError):
    """Raised when method params do not match the expected shape."""


class SerializationError(ValueError):
    """Raised when a value cannot be represented as JSON."""


@dataclass
class MCPError:
    """JSON-RPC error object."""
    code: int
    message: str
    data: Optional[Any] = None

    @classmethod
    def from_code(cls, code: MCPErrorCode, message: str, data: Any = None) -> "MCPError":
        return cls(code=code.value, message=message, data=data)

    def to_dict(self) -> dict:
        result = {"code": self.code, "message": self.message}
        if self.data is not None:
            result["data"] = self.data
        return result

    @classmethod
    def from_dict(cls, data: Any) -> "MCPError":
        if not isinstance(data, dict):
            raise MessageDecodeError("error must be an object")
        code = data.get("code")
        if not isinstance(code, int) or isinstance(code, bool):
            raise MessageDecodeError("error.code must be an integer")
        message = data.get("message", "")
        if not isinstance(message, str):
            raise MessageDecodeError("error.message must be a string")
        return cls(code=code, message=message, data=data.get("data"))


def _reject_constant(name: str) -> Any:
    # NaN and Infinity are accepted by json.loads but are not JSON
    raise MessageDecodeError(f"Invalid JSON: unexpected constant {name}")


@dataclass
class MCPMessage:
    """
    A JSON-RPC 2.0 message.

    The role of a message is derived from which fields are populated:
    a request carries ``method`` and ``id``, a notification carries
    ``method`` only, a response carries either ``result`` or ``error``.
    """
    jsonrpc: str = JSONRPC_VERSION
    id: Optional[Union[str, int, float]] = None
    method: Optional[str] = None
    params: Optional[Any] = None
    result: Optional[Any] = None
    error: Optional[MCPError] = None

    @property
    def is_request(self) -> bool:
        return self.method is not None and self.id is not None

    @property
    def is_notification(self) -> bool:
        return self.method is not None and self.id is None

    @property
    def is_response(self) -> bool:
        return self.method is None

    def to_dict(self) -> dict:
        result = {"jsonrpc": self.jsonrpc}
        if self.method is not None:
            if self.id is not None:
                result["id"] = self.id
            result["method"] = self.method
            if self.params is not None:
                result["params"] = self.params
            return result

        # Responses always echo the id, null when it could not be recovered
        result["id"] = self.id
        if self.error is not None:
            result["error"] = self.error.to_dict()
        else:
            result["result"] = self.result
        return result

    def to_json(self) -> str:
        try:
            return json.dumps(self.to_dict(), allow_nan=False)
        except (TypeError, ValueError) as e:
            raise SerializationError(f"Failed to encode message: {e}") from e

    @classmethod
    def from_dict(cls, data: Any) -> "MCPMessage":
        if not isinstance(data, dict):
            raise MessageDecodeError("Message must be a JSON object")

        jsonrpc = data.get("jsonrpc", JSONRPC_VERSION)
        if not isinstance(jsonrpc, str):
            raise MessageDecodeError("jsonrpc must be a string")

        msg_id = data.get("id")
        if msg_id is not None and (
            isinstance(msg_id, bool) or not isinstance(msg_id, (str, int, float))
        ):
            raise MessageDecodeError("id must be a string or a number")
        if isinstance(msg_id, float) and not math.isfinite(msg_id):
            raise MessageDecodeError("id must be a finite number")

        method = data.get("method")
        if method is not None and not isinstance(method, str):
            raise MessageDecodeError("method must be a string")

        error = data.get("error")
        return cls(
            jsonrpc=jsonrpc,
            id=msg_id,
            method=method,
            params=data.get("params"),
            result=data.get("result"),
            error=MCPError.from_dict(error) if error is not None else None,
        )

    @classmethod
    def from_json(cls, json_str: Union[str, bytes]) -> "MCPMessage":
        try:
            data = json.loads(json_str, parse_constant=_reject_constant)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise MessageDecodeError(f"Invalid JSON: {e}") from e
        return cls.from_dict(data)


def new_request(id: Union[str, int, float], method: str, params: Any = None) -> MCPMessage:
    """Build a request message."""
    return MCPMessage(id=id, method=method, params=params)


def new_response(id: Optional[Union[str, int, float]], result: Any) -> MCPMessage:
    """Build a success response message."""
    return MCPMessage(id=id, result=result)


def new_error_response(
    id: Optional[Union[str, int, float]],
    code: Union[MCPErrorCode, int],
    message: str,
    data: Any = None,
) -> MCPMessage:
    """Build an error response message."""
    if isinstance(code, MCPErrorCode):
        error = MCPError.from_code(code, message, data)
    else:
        error = MCPError(code=code, message=message, data=data)
    return MCPMessage(id=id, error=error)


def new_notification(method: str, params: Any = None) -> MCPMessage:
    """Build a notification message. Notifications never carry an id."""
    return MCPMessage(method=method, params=params)


def parse_message(data: Union[str, bytes, dict]) -> MCPMessage:
    """Parse a raw line or decoded object into an MCP message."""
    if isinstance(data, (str, bytes)):
        return MCPMessage.from_json(data)
    return MCPMessage.from_dict(data)


@dataclass
class ClientInfo:
    name: str = ""
    version: str = ""


@dataclass
class InitializeRequest:
    """Params of the ``initialize`` request."""
    protocol_version: str = ""
    capabilities: Dict[str, Any] = field(default_factory=dict)
    client_info: ClientInfo = field(default_factory=ClientInfo)

    @classmethod
    def from_params(cls, params: Any) -> "InitializeRequest":
        if params is None:
            raise InvalidParamsError("missing parameters")
        if not isinstance(params, dict):
            raise InvalidParamsError("params must be an object")

        version = params.get("protocolVersion", "")
        if not isinstance(version, str):
            raise InvalidParamsError("protocolVersion must be a string")

        capabilities = params.get("capabilities") or {}
        if not isinstance(capabilities, dict):
            raise InvalidParamsError("capabilities must be an object")

        info = params.get("clientInfo") or {}
        if not isinstance(info, dict):
            raise InvalidParamsError("clientInfo must be an object")
        name = info.get("name", "")
        client_version = info.get("version", "")
        if not isinstance(name, str) or not isinstance(client_version, str):
            raise InvalidParamsError("clientInfo name and version must be strings")

        return cls(
            protocol_version=version,
            capabilities=capabilities,
            client_info=ClientInfo(name=name, version=client_version),
        )


@dataclass
class InitializeResult:
    """Result of the ``initialize`` request."""
    server_name: str
    server_version: str
    protocol_version: str = PROTOCOL_VERSION
    tools_list_changed: bool = False

    def to_dict(self) -> dict:
        return {
            "protocolVersion": self.protocol_version,
            "capabilities": {
                "tools": {"listChanged": self.tools_list_changed},
            },
            "serverInfo": {
                "name": self.server_name,
                "version": self.server_version,
            },
        }


@dataclass
class ToolParameter:
    """Tool parameter definition."""
    name: str
    type: str
    description: str
    required: bool = False
    default: Optional[Any] = None
    enum: Optional[List[Any]] = None
    items: Optional[Dict[str, Any]] = None

    def to_json_schema(self) -> dict:
        """Convert to JSON schema property."""
        schema = {
            "type": self.type,
            "description": self.description,
        }
        if self.enum is not None:
            schema["enum"] = self.enum
        if self.default is not None:
            schema["default"] = self.default
        if self.items is not None:
            schema["items"] = self.items
        return schema


@dataclass
class Tool:
    """Tool descriptor as advertised by ``tools/list``."""
    name: str
    description: str
    parameters: List[ToolParameter] = field(default_factory=list)

    def input_schema(self) -> dict:
        properties = {}
        required = []

        for param in self.parameters:
            properties[param.name] = param.to_json_schema()
            if param.required:
                required.append(param.name)

        return {
            "type": "object",
            "properties": properties,
            "required": required,
        }

    def to_dict(self) -> dict:
        """Convert to MCP tool definition format."""
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema(),
        }


@dataclass
class Content:
    """A content block in a tool-call result."""
    text: str
    type: str = "text"
    mime_type: Optional[str] = None

    def to_dict(self) -> dict:
        result = {"type": self.type, "text": self.text}
        if self.mime_type is not None:
            result["mimeType"] = self.mime_type
        return result


@dataclass
class CallToolRequest:
    """Params of the ``tools/call`` request."""
    name: str = ""
    arguments: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_params(cls, params: Any) -> "CallToolRequest":
        if params is None:
            raise InvalidParamsError("missing parameters")
        if not isinstance(params, dict):
            raise InvalidParamsError("params must be an object")

        name = params.get("name", "")
        if not isinstance(name, str):
            raise InvalidParamsError("name must be a string")

        arguments = params.get("arguments")
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            raise InvalidParamsError("arguments must be an object")

        return cls(name=name, arguments=arguments)


@dataclass
class CallToolResult:
    """Result of a tool invocation."""
    content: List[Content] = field(default_factory=list)
    is_error: bool = False

    def to_dict(self) -> dict:
        result = {"content": [c.to_dict() for c in self.content]}
        if self.is_error:
            result["isError"] = True
        return result

    @classmethod
    def from_text(cls, text: str) -> "CallToolResult":
        return cls(content=[create_text_content(text)])

    @classmethod
    def from_value(cls, value: Any) -> "CallToolResult":
        return cls(content=[create_json_content(value)])

    @classmethod
    def failure(cls, text: str) -> "CallToolResult":
        return cls(content=[create_text_content(text)], is_error=True)


def create_text_content(text: str) -> Content:
    """Create a plain text content block."""
    return Content(text=text)


def create_json_content(value: Any) -> Content:
    """
    Create a content block holding ``value`` as indented JSON text.

    Raises:
        SerializationError: if ``value`` is not representable as JSON.
    """
    try:
        text = json.dumps(value, indent=2, allow_nan=False)
    except (TypeError, ValueError) as e:
        raise SerializationError(f"failed to marshal JSON: {e}") from e
    return Content(text=text, mime_type=JSON_MIME_TYPE)
