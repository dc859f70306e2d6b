# =============================================================================
# core/config.py  —  Runtime settings from the environment
# =============================================================================
#
# All configuration comes from environment variables.  main.py calls
# python-dotenv's load_dotenv() first, so a local .env file works too:
#
#   HA_URL=http://homeassistant.local:8123
#   HA_TOKEN=eyJ0eXAiOiJKV1Qi...
#
# load_settings() takes the environment as a parameter so tests can pass a
# plain dict instead of patching os.environ.
# =============================================================================

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from core.models import HAConfig

TRANSPORTS = ("http", "stdio")
LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


class ConfigError(Exception):
    """Raised when required settings are missing or malformed."""


@dataclass
class Settings:
    """Everything main.py needs to start the server."""

    ha_url: str
    ha_token: str
    ha_timeout: float = 10.0
    host: str = "0.0.0.0"
    port: int = 3000
    transport: str = "http"            # "http" (streamable HTTP) or "stdio"
    json_response: bool = False        # Plain JSON POST responses instead of SSE
    log_level: str = "INFO"

    def ha_config(self) -> HAConfig:
        return HAConfig(url=self.ha_url, token=self.ha_token, timeout=self.ha_timeout)


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build Settings from environment variables.

    Raises:
        ConfigError: if HA_URL or HA_TOKEN is missing, or a value is invalid.
    """
    env = os.environ if environ is None else environ

    ha_url = env.get("HA_URL", "").strip()
    ha_token = env.get("HA_TOKEN", "").strip()
    if not ha_url or not ha_token:
        raise ConfigError("Missing required env vars: HA_URL and HA_TOKEN")

    try:
        port = int(env.get("PORT", "3000"))
    except ValueError:
        raise ConfigError(f"PORT must be an integer, got {env.get('PORT')!r}")

    try:
        ha_timeout = float(env.get("HA_TIMEOUT", "10"))
    except ValueError:
        raise ConfigError(f"HA_TIMEOUT must be a number, got {env.get('HA_TIMEOUT')!r}")

    transport = env.get("MCP_TRANSPORT", "http").strip().lower()
    if transport not in TRANSPORTS:
        raise ConfigError(
            f"MCP_TRANSPORT must be one of {', '.join(TRANSPORTS)}, got {transport!r}"
        )

    log_level = env.get("LOG_LEVEL", "INFO").strip().upper()
    if log_level not in LOG_LEVELS:
        raise ConfigError(
            f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}, got {log_level!r}"
        )

    return Settings(
        ha_url=ha_url,
        ha_token=ha_token,
        ha_timeout=ha_timeout,
        host=env.get("HOST", "0.0.0.0"),
        port=port,
        transport=transport,
        json_response=_as_bool(env.get("MCP_JSON_RESPONSE", "false")),
        log_level=log_level,
    )
