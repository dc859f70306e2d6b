# =============================================================================
# core/__init__.py
# =============================================================================
# This package contains everything that talks to Home Assistant.
#
# CRITICAL ARCHITECTURAL RULE:
#   Nothing in this package imports FastMCP, Starlette, or any MCP transport.
#   It is an async Home Assistant client plus the data shapes and parsers it
#   needs; tools/ decides how those are exposed to an agent.
#
#   models.py           → dataclasses (EntityState, EntityMeta, HAConfig)
#   template_parser.py  → parsing Python-repr lists/dicts from /api/template
#   ha_client.py        → the REST client
#   config.py           → settings from environment variables
# =============================================================================
