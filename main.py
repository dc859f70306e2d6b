# =============================================================================
# main.py  —  Entry Point for the Home Assistant MCP server
# =============================================================================
#
# HOW TO RUN:
#   uv run python main.py                      (streamable HTTP on :3000/mcp)
#   MCP_TRANSPORT=stdio uv run python main.py  (stdio, for desktop MCP hosts)
#
# WHAT HAPPENS:
#   1. Loads .env and reads settings (HA_URL and HA_TOKEN are required)
#   2. Configures logging to STDERR
#   3. Creates one HomeAssistantClient shared by every MCP session
#   4. Serves the tools over the selected transport until interrupted
#
# CONFIGURATION (environment variables, see core/config.py):
#   HA_URL, HA_TOKEN      Home Assistant base URL and long-lived token
#   HA_TIMEOUT            Per-request timeout in seconds (default 10)
#   HOST, PORT            HTTP bind address (default 0.0.0.0:3000)
#   MCP_TRANSPORT         "http" (default) or "stdio"
#   MCP_JSON_RESPONSE     "true" to answer POSTs with JSON instead of SSE
#   LOG_LEVEL             Logging level (default INFO)
# =============================================================================

import asyncio
import logging
import sys

from dotenv import load_dotenv

# Load environment variables from .env file (HA_URL, HA_TOKEN, etc.)
# This must happen BEFORE settings are read.
load_dotenv()

import uvicorn

from core.config import ConfigError, Settings, load_settings
from core.ha_client import HomeAssistantClient
from tools.http_transport import create_app
from tools.mcp_server import create_server

logger = logging.getLogger("smarthome_mcp")


def configure_logging(level: str = "INFO") -> None:
    """Send all logs to STDERR; STDOUT carries the MCP stream in stdio mode."""
    logging.basicConfig(
        level=level,
        format="%(asctime)s [MCP] %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


async def run_stdio(settings: Settings) -> None:
    """Serve a single tool server over stdin/stdout."""
    async with HomeAssistantClient(settings.ha_config()) as client:
        await create_server(client).run_async(transport="stdio")


def run_http(settings: Settings) -> None:
    """Serve the session-routed streamable HTTP app with uvicorn."""
    client = HomeAssistantClient(settings.ha_config())
    app = create_app(client, json_response=settings.json_response)
    logger.info(f"HA MCP server listening on http://{settings.host}:{settings.port}/mcp")
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


def main() -> None:
    try:
        settings = load_settings()
    except ConfigError as err:
        configure_logging()
        logger.error(str(err))
        sys.exit(1)

    configure_logging(settings.log_level)
    logger.info(f"Using Home Assistant at {settings.ha_url} ({settings.transport} transport)")

    if settings.transport == "stdio":
        asyncio.run(run_stdio(settings))
    else:
        run_http(settings)


# =============================================================================
# Script entry point
# =============================================================================
if __name__ == "__main__":
    main()
