# =============================================================================
# tools/mcp_server.py  —  FastMCP Tool Server (ALL tools in one place)
# =============================================================================
#
# WHAT THIS FILE DOES:
#   Defines ALL MCP tools that the agent can call.  Each tool is a thin
#   wrapper around a HomeAssistantClient method: it handles argument
#   shaping, trims entity states down to summaries, and returns JSON text.
#
# HOW IT WORKS (the flow):
#   1. An MCP client (the agent) calls a tool by name, e.g. "ha_light.turn_on"
#   2. FastMCP validates the arguments and routes to the function below
#   3. The function calls core/ha_client.py, which talks to Home Assistant
#   4. The result is summarized and returned as pretty-printed JSON text
#
# TOOL NAMING CONVENTIONS:
#   ha_<domain>.<action>, mirroring Home Assistant's own "domain.service"
#   naming so the agent can map tools onto the services it already knows:
#     - ha_light.*   → light control, by entity or by area
#     - ha_entity.*  → state lookup and discovery (read-only)
#     - ha_area.*    → area listing and status (read-only)
#     - ha_todo.*    → todo list items
#     - ha_service.call → escape hatch for any other service
#
# ONE SERVER PER SESSION:
#   create_server() builds a fresh FastMCP instance.  The HTTP transport
#   (tools/http_transport.py) calls it once per MCP session; the stdio
#   transport calls it once per process.  All instances share a single
#   HomeAssistantClient.
#
# ERRORS:
#   HomeAssistantError is not caught here.  FastMCP reports an exception
#   raised by a tool as an error result (isError) carrying its message.
# =============================================================================

import asyncio
import json
import logging
from typing import Annotated, Any, Literal, Optional

from fastmcp import FastMCP
from pydantic import Field

from core.ha_client import HomeAssistantClient
from core.models import EntityMeta, EntityState, summarize_state

logger = logging.getLogger(__name__)

SERVER_NAME = "smarthome-mcp"
SERVER_VERSION = "1.0.0"

TodoStatus = Literal["needs_action", "completed"]

# =============================================================================
# Logging helpers
# =============================================================================
# Logs go to STDERR (configured in main.py).  In stdio mode STDOUT *is* the
# MCP transport, and a stray log line there would corrupt the JSON-RPC stream.
#
# ANSI COLOR CODES:
#     - CYAN for incoming requests (tool name + parameters)
#     - GREEN for response JSON
#     - YELLOW for intermediate status/progress messages
# =============================================================================

_CYAN = "\033[36m"     # Requests (tool calls with params)
_GREEN = "\033[32m"    # Responses (JSON output)
_YELLOW = "\033[33m"   # Status/progress messages
_RESET = "\033[0m"     # Reset to default terminal color

# Listing every sensor in a house produces a lot of JSON; the log gets a prefix.
_MAX_LOGGED_RESPONSE = 2000


def _log_request(tool_name: str, **params: Any) -> None:
    """Log an incoming tool call with its parameters in CYAN."""
    param_str = ", ".join(f"{k}={v!r}" for k, v in params.items())
    logger.info(f"{_CYAN}{tool_name} called with: {param_str}{_RESET}")


def _log_status(message: str) -> None:
    """Log an intermediate status message in YELLOW."""
    logger.info(f"{_YELLOW}  → {message}{_RESET}")


def _log_response(tool_name: str, result: Any) -> str:
    """Log the tool response as compact JSON in GREEN, then return it as indented JSON text."""
    compact = json.dumps(result, separators=(",", ":"), ensure_ascii=False)
    if len(compact) > _MAX_LOGGED_RESPONSE:
        compact = compact[:_MAX_LOGGED_RESPONSE] + "..."
    logger.info(f"{_GREEN}  ← {tool_name} response: {compact}{_RESET}")
    return json.dumps(result, indent=2, ensure_ascii=False)


def _summarize_changed(changed: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Summarize the raw state list returned by a service call."""
    return [summarize_state(EntityState.from_dict(item)) for item in changed]


async def _summaries_with_meta(
    ha: HomeAssistantClient, entities: list[EntityState]
) -> list[dict[str, Any]]:
    """Summaries extended with the area and device each entity belongs to."""
    meta_map = await ha.get_entity_meta_map([e.entity_id for e in entities])
    results = []
    for entity in entities:
        meta = meta_map.get(entity.entity_id, EntityMeta())
        results.append({**summarize_state(entity), "area": meta.area, "device": meta.device})
    return results


async def _switch_area_lights(
    ha: HomeAssistantClient, area: str, service: str
) -> Any:
    """Shared body of the *_in_area light tools: one service call for all lights."""
    entities = await ha.get_entities_in_area(area)
    lights = [e for e in entities if e.startswith("light.")]
    _log_status(f"{len(entities)} entities in area, {len(lights)} lights")
    if not lights:
        return {"message": f"No lights found in area '{area}'"}

    changed = await ha.call_service("light", service, {"entity_id": lights})
    return _summarize_changed(changed)


def create_server(ha: HomeAssistantClient) -> FastMCP:
    """Create a FastMCP server exposing Home Assistant as tools.

    Args:
        ha: The client every tool talks to.

    Returns:
        A new FastMCP instance with all tools registered.
    """
    mcp = FastMCP(SERVER_NAME, version=SERVER_VERSION)

    # =========================================================================
    # Light controls
    # =========================================================================
    @mcp.tool(name="ha_light.turn_on")
    async def light_turn_on(entity_id: str) -> str:
        """Turn on a light entity.

        Args:
            entity_id: The light entity id, e.g. light.kitchen
        """
        _log_request("ha_light.turn_on", entity_id=entity_id)
        changed = await ha.call_service("light", "turn_on", {"entity_id": entity_id})
        return _log_response("ha_light.turn_on", _summarize_changed(changed))

    @mcp.tool(name="ha_light.turn_off")
    async def light_turn_off(entity_id: str) -> str:
        """Turn off a light entity.

        Args:
            entity_id: The light entity id, e.g. light.kitchen
        """
        _log_request("ha_light.turn_off", entity_id=entity_id)
        changed = await ha.call_service("light", "turn_off", {"entity_id": entity_id})
        return _log_response("ha_light.turn_off", _summarize_changed(changed))

    @mcp.tool(name="ha_light.set_brightness")
    async def light_set_brightness(
        entity_id: str,
        brightness: Annotated[int, Field(ge=0, le=255, description="Brightness level 0–255")],
    ) -> str:
        """Set the brightness of a light (0–255).

        Args:
            entity_id: The light entity id
            brightness: Brightness level 0–255
        """
        _log_request("ha_light.set_brightness", entity_id=entity_id, brightness=brightness)
        changed = await ha.call_service(
            "light", "turn_on", {"entity_id": entity_id, "brightness": brightness}
        )
        return _log_response("ha_light.set_brightness", _summarize_changed(changed))

    # =========================================================================
    # Area-based light controls
    # =========================================================================
    # Home Assistant has no "lights in area" endpoint, so the area's entities
    # come from a rendered template and are filtered to the light domain.
    # All lights are switched with a single service call.
    # =========================================================================
    @mcp.tool(name="ha_light.turn_on_in_area")
    async def light_turn_on_in_area(area: str) -> str:
        """Turn on all lights in a named area (e.g. 'kitchen', 'living_room').

        Args:
            area: Area id as known in Home Assistant
        """
        _log_request("ha_light.turn_on_in_area", area=area)
        result = await _switch_area_lights(ha, area, "turn_on")
        return _log_response("ha_light.turn_on_in_area", result)

    @mcp.tool(name="ha_light.turn_off_in_area")
    async def light_turn_off_in_area(area: str) -> str:
        """Turn off all lights in a named area.

        Args:
            area: Area id as known in Home Assistant
        """
        _log_request("ha_light.turn_off_in_area", area=area)
        result = await _switch_area_lights(ha, area, "turn_off")
        return _log_response("ha_light.turn_off_in_area", result)

    # =========================================================================
    # State queries
    # =========================================================================
    @mcp.tool(name="ha_entity.get_state")
    async def entity_get_state(entity_id: str) -> str:
        """Get the current state and attributes of any entity.

        Args:
            entity_id: Entity id, e.g. sensor.temperature
        """
        _log_request("ha_entity.get_state", entity_id=entity_id)
        state = await ha.get_state(entity_id)
        return _log_response("ha_entity.get_state", summarize_state(state))

    @mcp.tool(name="ha_area.get_status")
    async def area_get_status(area: str) -> str:
        """Get the state of all entities in an area.

        Args:
            area: Area id
        """
        _log_request("ha_area.get_status", area=area)
        entity_ids = await ha.get_entities_in_area(area)
        _log_status(f"Fetching {len(entity_ids)} entity states")
        states = await asyncio.gather(*(ha.get_state(eid) for eid in entity_ids))
        return _log_response(
            "ha_area.get_status",
            {"area": area, "entities": [summarize_state(s) for s in states]},
        )

    @mcp.tool(name="ha_area.list")
    async def area_list() -> str:
        """List all areas configured in Home Assistant."""
        _log_request("ha_area.list")
        area_ids = await ha.get_areas()
        names = await asyncio.gather(*(ha.get_area_name(area_id) for area_id in area_ids))
        areas = [{"id": area_id, "name": name} for area_id, name in zip(area_ids, names)]
        return _log_response("ha_area.list", areas)

    # =========================================================================
    # Entity discovery
    # =========================================================================
    # Both tools attach the area and device of every match, resolved with one
    # template render for the whole batch rather than one per entity.
    # =========================================================================
    @mcp.tool(name="ha_entity.list")
    async def entity_list(
        domain: str,
        device_class: Optional[str] = None,
        state: Optional[str] = None,
    ) -> str:
        """List all entities for a domain (e.g. light, sensor, switch, climate) with their current states. Optionally filter by device_class (e.g. temperature, humidity, motion).

        Args:
            domain: Entity domain: light, sensor, switch, binary_sensor, climate, etc.
            device_class: Filter by device_class attribute, e.g. 'temperature', 'humidity', 'motion'
            state: Filter by state value, e.g. 'on', 'off'. Omit to return all.
        """
        _log_request("ha_entity.list", domain=domain, device_class=device_class, state=state)
        entities = await ha.get_states_by_domain(domain)
        if device_class:
            entities = [e for e in entities if e.attributes.get("device_class") == device_class]
        if state:
            entities = [e for e in entities if e.state == state]
        _log_status(f"{len(entities)} entities after filtering")
        return _log_response("ha_entity.list", await _summaries_with_meta(ha, entities))

    @mcp.tool(name="ha_entity.search")
    async def entity_search(query: str, domain: Optional[str] = None) -> str:
        """Search entities by keyword across entity IDs and friendly names. Returns matching entities with their current states.

        Args:
            query: Search term to match against entity_id and friendly_name
            domain: Optionally restrict to a domain (light, sensor, etc.)
        """
        _log_request("ha_entity.search", query=query, domain=domain)
        states = await ha.get_states_by_domain(domain) if domain else await ha.get_states()
        q = query.lower()
        matches = [
            e for e in states
            if q in e.entity_id.lower() or q in str(e.friendly_name or "").lower()
        ]
        _log_status(f"{len(matches)} of {len(states)} entities match")
        return _log_response("ha_entity.search", await _summaries_with_meta(ha, matches))

    # =========================================================================
    # Todo lists
    # =========================================================================
    # Items are addressed by their text.  get_items is the only todo service
    # that returns data, so it goes through call_service_with_response.
    # =========================================================================
    @mcp.tool(name="ha_todo.get_items")
    async def todo_get_items(entity_id: str, status: Optional[TodoStatus] = None) -> str:
        """Get items from a Home Assistant todo list. Use ha_entity.list with domain 'todo' to discover available lists first.

        Args:
            entity_id: Todo list entity id, e.g. todo.shopping_list
            status: Filter by status. Omit to return all items.
        """
        _log_request("ha_todo.get_items", entity_id=entity_id, status=status)
        data: dict[str, Any] = {"entity_id": entity_id}
        if status:
            data["status"] = status
        response = await ha.call_service_with_response("todo", "get_items", data)
        return _log_response("ha_todo.get_items", response)

    @mcp.tool(name="ha_todo.add_item")
    async def todo_add_item(entity_id: str, item: str) -> str:
        """Add an item to a Home Assistant todo list.

        Args:
            entity_id: Todo list entity id, e.g. todo.shopping_list
            item: The item text to add
        """
        _log_request("ha_todo.add_item", entity_id=entity_id, item=item)
        changed = await ha.call_service("todo", "add_item", {"entity_id": entity_id, "item": item})
        return _log_response(
            "ha_todo.add_item", {"added": item, "list": entity_id, "state": changed}
        )

    @mcp.tool(name="ha_todo.update_item")
    async def todo_update_item(
        entity_id: str,
        item: str,
        rename: Optional[str] = None,
        status: Optional[TodoStatus] = None,
    ) -> str:
        """Update a todo item's text or status (mark as completed/needs_action). Use ha_todo.get_items first to find the item name.

        Args:
            entity_id: Todo list entity id
            item: Current item text (must match exactly)
            rename: New text for the item
            status: New status
        """
        _log_request(
            "ha_todo.update_item", entity_id=entity_id, item=item, rename=rename, status=status
        )
        data: dict[str, Any] = {"entity_id": entity_id, "item": item}
        if rename:
            data["rename"] = rename
        if status:
            data["status"] = status
        changed = await ha.call_service("todo", "update_item", data)
        return _log_response(
            "ha_todo.update_item", {"updated": item, "list": entity_id, "state": changed}
        )

    @mcp.tool(name="ha_todo.remove_item")
    async def todo_remove_item(entity_id: str, item: str) -> str:
        """Remove an item from a Home Assistant todo list.

        Args:
            entity_id: Todo list entity id
            item: The item text to remove (must match exactly)
        """
        _log_request("ha_todo.remove_item", entity_id=entity_id, item=item)
        changed = await ha.call_service(
            "todo", "remove_item", {"entity_id": entity_id, "item": item}
        )
        return _log_response(
            "ha_todo.remove_item", {"removed": item, "list": entity_id, "state": changed}
        )

    # =========================================================================
    # Generic service call
    # =========================================================================
    @mcp.tool(name="ha_service.call")
    async def service_call(
        domain: str,
        service: str,
        data: Optional[dict[str, Any]] = None,
    ) -> str:
        """Call any Home Assistant service (escape hatch for anything not covered by other tools).

        Args:
            domain: Service domain, e.g. 'switch', 'climate'
            service: Service name, e.g. 'turn_on', 'set_temperature'
            data: Service data payload
        """
        _log_request("ha_service.call", domain=domain, service=service, data=data)
        changed = await ha.call_service(domain, service, data)
        return _log_response("ha_service.call", changed)

    return mcp
