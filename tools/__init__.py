# =============================================================================
# tools/__init__.py
# =============================================================================
# This package contains the FastMCP tool wrappers and the HTTP transport.
#
# ARCHITECTURAL ROLE:
#   tools/ is the "translation layer" between MCP clients and core/.
#     - mcp_server.py     wraps HomeAssistantClient calls as MCP tools,
#                         summarizes states and returns JSON text
#     - http_transport.py routes streamable-HTTP requests to per-session
#                         tool servers
#
# WHAT TOOLS DO NOT DO:
#   - They do NOT build HTTP requests to Home Assistant (that's core/)
#   - They do NOT retry or cache; one tool call is one (or a fan-out of)
#     Home Assistant request(s)
# =============================================================================
