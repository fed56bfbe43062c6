"""
MCP Server implementation.

Main server that handles the MCP lifecycle, request dispatch and the
stdio read loop.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from .protocol import (
    METHOD_CALL_TOOL,
    METHOD_INITIALIZE,
    METHOD_INITIALIZED,
    METHOD_LIST_TOOLS,
    PROTOCOL_VERSION,
    CallToolRequest,
    CallToolResult,
    InitializeRequest,
    InitializeResult,
    InvalidParamsError,
    MCPErrorCode,
    MCPMessage,
    MessageDecodeError,
    SerializationError,
    new_error_response,
    new_response,
    parse_message,
)
from .tools import ToolRegistry
from .transport import FramingError, Transport, StdioTransport


logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://labs.hackthebox.com/api/v4"


class ConfigError(Exception):
    """Raised when the environment does not yield a usable configuration."""


class StartupError(Exception):
    """Raised when the server cannot enter the running state."""


@dataclass
class ServerConfig:
    """Configuration for MCP server."""
    htb_token: str = ""
    htb_base_url: str = DEFAULT_BASE_URL
    name: str = "htb-mcp-server"
    version: str = "1.0.0"
    log_level: str = "INFO"
    request_timeout: float = 30.0

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ServerConfig":
        """
        Load configuration from environment variables.

        ``HTB_TOKEN`` is required and must look like a JWT. Numeric
        settings that fail to parse keep their defaults.
        """
        env = os.environ if environ is None else environ

        token = env.get("HTB_TOKEN", "")
        if not token:
            raise ConfigError("HTB_TOKEN environment variable is required")
        if token.count(".") != 2:
            raise ConfigError(
                "invalid HTB_TOKEN format: HTB token must be a valid JWT "
                "with 3 parts separated by dots"
            )

        config = cls(htb_token=token)

        if env.get("HTB_BASE_URL"):
            config.htb_base_url = env["HTB_BASE_URL"]
        if env.get("LOG_LEVEL"):
            config.log_level = env["LOG_LEVEL"].upper()

        timeout = env.get("REQUEST_TIMEOUT_SECONDS")
        if timeout:
            try:
                config.request_timeout = float(int(timeout))
            except ValueError:
                logger.warning(f"Ignoring invalid REQUEST_TIMEOUT_SECONDS={timeout!r}")

        return config

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "version": self.version,
            "htb_base_url": self.htb_base_url,
            "log_level": self.log_level,
            "request_timeout": self.request_timeout,
        }


class ServerState(Enum):
    UNINITIALIZED = "uninitialized"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting-down"


Handler = Callable[[Any], Awaitable[Any]]


class MCPServer:
    """
    MCP Server that owns the tool registry and drives the request lifecycle.

    Messages are handled strictly one at a time, so responses are written
    in the order their requests arrived.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        config: Optional[ServerConfig] = None,
        client=None,
    ):
        self.config = config or ServerConfig()
        self.registry = registry
        self.client = client
        self.state = ServerState.UNINITIALIZED
        self._transport: Optional[Transport] = None
        self._loop_task: Optional[asyncio.Task] = None
        self._handlers: Dict[str, Handler] = {
            METHOD_INITIALIZE: self._handle_initialize,
            METHOD_LIST_TOOLS: self._handle_list_tools,
            METHOD_CALL_TOOL: self._handle_call_tool,
        }

    @property
    def running(self) -> bool:
        return self.state is ServerState.RUNNING

    async def start(self) -> None:
        """
        Probe the backend once and enter the running state.

        Raises:
            StartupError: if the backend is unreachable or the server was
                already started.
        """
        if self.state is not ServerState.UNINITIALIZED:
            raise StartupError(f"Cannot start server in state {self.state.value}")

        if self.client is not None:
            try:
                await self.client.health_check()
            except Exception as e:
                raise StartupError(str(e)) from e
            logger.info("HTB API connection verified")

        self.state = ServerState.RUNNING

    def stop(self) -> None:
        """Signal the server to stop. There is no way back to running."""
        if self.state is ServerState.SHUTTING_DOWN:
            return
        logger.info("Shutting down HTB MCP Server...")
        self.state = ServerState.SHUTTING_DOWN
        if self._loop_task is not None and not self._loop_task.done():
            self._loop_task.cancel()

    async def _handle_initialize(self, params: Any) -> dict:
        """Handle initialize request."""
        request = InitializeRequest.from_params(params)

        if request.protocol_version != PROTOCOL_VERSION:
            logger.warning(
                f"Client protocol version {request.protocol_version} differs "
                f"from server version {PROTOCOL_VERSION}"
            )
        if request.client_info.name:
            logger.info(
                f"Client connected: {request.client_info.name} "
                f"{request.client_info.version}"
            )

        return InitializeResult(
            server_name=self.config.name,
            server_version=self.config.version,
        ).to_dict()

    async def _handle_list_tools(self, params: Any) -> dict:
        """Handle tools/list request."""
        return {
            "tools": [t.to_dict() for t in self.registry.list_tools()],
        }

    async def _handle_call_tool(self, params: Any) -> dict:
        """
        Handle tools/call request.

        Tool failures are reported inside a successful response with
        ``isError`` set, never as a protocol error.
        """
        request = CallToolRequest.from_params(params)

        try:
            result = await self.registry.invoke(request.name, request.arguments)
        except Exception as e:
            logger.warning(f"Tool {request.name!r} failed: {e}")
            text = f"Error executing tool: {e}"
            if getattr(e, "retryable", False):
                text += " (retryable)"
            result = CallToolResult.failure(text)

        return result.to_dict()

    async def process_request(self, request: MCPMessage) -> MCPMessage:
        """Process a single MCP request and build its response."""
        handler = self._handlers.get(request.method or "")

        if handler is None:
            return new_error_response(
                request.id,
                MCPErrorCode.METHOD_NOT_FOUND,
                "Method not found",
                f"Unknown method: {request.method or ''}",
            )

        try:
            result = await handler(request.params)
            return new_response(request.id, result)
        except InvalidParamsError as e:
            return new_error_response(
                request.id, MCPErrorCode.INVALID_PARAMS, "Invalid params", str(e)
            )
        except Exception as e:
            logger.exception(f"Error processing {request.method}: {e}")
            return new_error_response(
                request.id, MCPErrorCode.INTERNAL_ERROR, "Internal error", str(e)
            )

    async def handle_line(self, line: str) -> Optional[MCPMessage]:
        """
        Handle one raw line.

        Returns the response to write, or None for notifications.
        """
        try:
            message = parse_message(line)
        except MessageDecodeError as e:
            logger.warning(f"Parse error: {e}")
            return new_error_response(
                None, MCPErrorCode.PARSE_ERROR, "Parse error", str(e)
            )

        if message.is_notification:
            if message.method == METHOD_INITIALIZED:
                logger.debug(f"Notification received: {message.method}")
            else:
                logger.warning(f"Ignoring unsupported notification: {message.method}")
            return None

        return await self.process_request(message)

    async def _send(self, response: MCPMessage) -> None:
        try:
            line = response.to_json()
        except SerializationError as e:
            logger.error(f"Failed to encode response: {e}")
            fallback = new_error_response(
                response.id, MCPErrorCode.INTERNAL_ERROR, "Internal error", str(e)
            )
            try:
                line = fallback.to_json()
            except SerializationError:
                # The id itself could not be encoded
                fallback.id = None
                line = fallback.to_json()
        await self._transport.send(line)

    async def run(self, transport: Optional[Transport] = None) -> None:
        """
        Run the read loop until end of input or ``stop``.

        The server must have been started. Returns at once if it was
        stopped before the loop began.
        """
        if self.state is ServerState.SHUTTING_DOWN:
            logger.info("Server stopped before the read loop started")
            return
        if self.state is not ServerState.RUNNING:
            raise StartupError("Server must be started before running")

        self._transport = transport or StdioTransport()
        self._loop_task = asyncio.current_task()

        logger.info(
            f"MCP Server {self.config.name} v{self.config.version} "
            f"starting on stdio transport"
        )

        try:
            async with self._transport:
                while self.running:
                    try:
                        line = await self._transport.receive()
                    except FramingError as e:
                        logger.warning(f"Framing error: {e}")
                        await self._send(new_error_response(
                            None, MCPErrorCode.PARSE_ERROR, "Parse error", str(e)
                        ))
                        continue

                    if line is None:
                        logger.info("EOF received, shutting down")
                        break
                    if not line.strip():
                        continue

                    response = await self.handle_line(line)
                    if response is not None:
                        await self._send(response)
        except asyncio.CancelledError:
            if self.state is not ServerState.SHUTTING_DOWN:
                raise
        finally:
            self.state = ServerState.SHUTTING_DOWN
            self._loop_task = None
            logger.info("Server stopped")
