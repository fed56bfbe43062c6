"""
MCP Transport layer implementations.

Provides the newline-delimited stdio transport: one JSON document per line
on stdin for requests and on stdout for responses.
"""

import asyncio
import logging
import sys
from abc import ABC, abstractmethod
from typing import Optional


logger = logging.getLogger(__name__)

# Upper bound for a single framed line
MAX_LINE_BYTES = 16 * 1024 * 1024


class FramingError(ValueError):
    """Raised when a line cannot be read off the stream as UTF-8 text."""


class Transport(ABC):
    """Abstract base class for MCP transports."""

    @abstractmethod
    async def send(self, line: str) -> None:
        """Send one encoded message."""
        pass

    @abstractmethod
    async def receive(self) -> Optional[str]:
        """Receive one raw line. Returns None on EOF/close."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the transport."""
        pass

    async def open(self) -> None:
        """Prepare the transport for use."""

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


class StdioTransport(Transport):
    """
    Transport using stdin/stdout for communication.

    Messages are framed by a single trailing newline. When no reader is
    given, stdin is attached to the running event loop on ``open``.
    """

    def __init__(
        self,
        reader: Optional[asyncio.StreamReader] = None,
        output_stream=None,
        input_stream=None,
    ):
        self.reader = reader
        self.input = input_stream or sys.stdin
        self.output = output_stream or sys.stdout
        self._closed = False

    async def open(self) -> None:
        if self.reader is not None:
            return
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader(limit=MAX_LINE_BYTES)
        protocol = asyncio.StreamReaderProtocol(reader)
        await loop.connect_read_pipe(lambda: protocol, self.input)
        self.reader = reader

    async def send(self, line: str) -> None:
        """Write one message followed by a newline and flush."""
        if self._closed:
            raise RuntimeError("Transport is closed")

        try:
            self.output.write(line + "\n")
            self.output.flush()
        except (OSError, ValueError) as e:
            raise RuntimeError(f"Failed to send: {e}") from e

    async def receive(self) -> Optional[str]:
        """
        Read the next line.

        Returns None at end of stream.

        Raises:
            FramingError: if the line is too long or not valid UTF-8.
        """
        if self._closed:
            return None
        if self.reader is None:
            raise RuntimeError("Transport is not open")

        try:
            raw = await self.reader.readline()
        except ValueError as e:
            # Over-long line; the reader discards it
            raise FramingError(f"Line exceeds limit: {e}") from e

        if not raw:
            return None

        try:
            return raw.decode("utf-8").rstrip("\r\n")
        except UnicodeDecodeError as e:
            raise FramingError(f"Invalid UTF-8: {e}") from e

    async def close(self) -> None:
        """Close the transport."""
        self._closed = True
