"""
Command-line entry point.

Runs the HTB MCP server on stdin/stdout. Logs go to stderr since stdout
carries the protocol.
"""

import asyncio
import logging
import signal
import sys

from .client import HTBClient
from .htb_tools import create_default_registry
from .server import ConfigError, MCPServer, ServerConfig, StartupError
from .transport import StdioTransport


logger = logging.getLogger("htb_mcp_server")


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )


async def run_server(config: ServerConfig) -> None:
    """Build the client, registry and server, then serve until stopped."""
    async with HTBClient.from_config(config) as client:
        registry = create_default_registry(client, version=config.version)
        server = MCPServer(registry, config=config, client=client)

        await server.start()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, server.stop)

        logger.info(f"Registered {len(registry)} tools")
        await server.run(StdioTransport())


def main() -> int:
    try:
        config = ServerConfig.from_env()
    except ConfigError as e:
        setup_logging("INFO")
        logger.error(f"Failed to load configuration: {e}")
        return 1

    setup_logging(config.log_level)

    try:
        asyncio.run(run_server(config))
    except StartupError as e:
        logger.error(f"Failed to start MCP server: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
