# =============================================================================
# core/ha_client.py  —  Home Assistant REST API client
# =============================================================================
#
# WHAT THIS MODULE DOES:
#   A thin async wrapper around the Home Assistant REST API:
#     - /api/states            → entity states
#     - /api/services/<d>/<s>  → service calls (turn lights on, todo items...)
#     - /api/template          → Jinja2 rendering, the only REST route that
#                                knows about areas and devices
#
#   It does NOT know about MCP.  tools/mcp_server.py wraps these methods as
#   tools; this module only speaks HTTP and returns Python values.
#
# ERRORS:
#   Any non-2xx response raises HomeAssistantAPIError carrying the status
#   code and response body.  Network failures (refused connection, timeout)
#   raise HomeAssistantConnectionError.  Both derive from HomeAssistantError.
#   Nothing is retried.
# =============================================================================

import logging
from typing import Any, Optional

import httpx

from core.models import EntityMeta, EntityState, HAConfig
from core.template_parser import jinja_string, parse_jinja_list, parse_template_mapping

logger = logging.getLogger(__name__)


class HomeAssistantError(Exception):
    """Base class for everything this client raises."""


class HomeAssistantAPIError(HomeAssistantError):
    """Home Assistant answered with a non-success status."""

    def __init__(self, status_code: int, reason: str, body: str = "") -> None:
        self.status_code = status_code
        self.reason = reason
        self.body = body
        super().__init__(f"HA API {status_code}: {reason} - {body}")


class HomeAssistantConnectionError(HomeAssistantError):
    """Home Assistant could not be reached (connect error, timeout, ...)."""


# Resolves entity_id → {area, device} for a batch of entities in one render.
# The entity's own area wins; otherwise the area of its device is used.
# The device name prefers the user-assigned name.
_ENTITY_META_TEMPLATE = """{%- set ns = namespace(d={}) -%}
{%- for eid in [__ENTITY_IDS__] -%}
  {%- set ea = area_name(eid) -%}
  {%- set da = device_attr(eid, 'area_id') -%}
  {%- set dn = device_attr(eid, 'name_by_user') or device_attr(eid, 'name') -%}
  {%- set area = ea if ea else (area_name(da) if da else None) -%}
  {%- set ns.d = dict(ns.d, **{eid: {'area': area, 'device': dn}}) -%}
{%- endfor -%}
{{ ns.d | tojson }}"""


class HomeAssistantClient:
    """Async client for one Home Assistant instance."""

    def __init__(
        self,
        config: HAConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = config.url.rstrip("/")
        self.token = config.token
        self.timeout = config.timeout
        # transport is only passed by tests (httpx.MockTransport).
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._get_headers(),
            timeout=self.timeout,
            transport=transport,
        )

    def _get_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
        }

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "HomeAssistantClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------
    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[dict[str, Any]] = None,
    ) -> httpx.Response:
        logger.debug("%s %s", method, path)
        try:
            response = await self._http.request(method, path, json=json)
        except httpx.TimeoutException as err:
            raise HomeAssistantConnectionError(
                f"Timeout: Home Assistant at {self.base_url} did not respond within {self.timeout}s"
            ) from err
        except httpx.RequestError as err:
            raise HomeAssistantConnectionError(
                f"Cannot connect to Home Assistant at {self.base_url}: {err}"
            ) from err

        if not response.is_success:
            logger.warning("%s %s failed with HTTP %s", method, path, response.status_code)
            raise HomeAssistantAPIError(response.status_code, response.reason_phrase, response.text)
        return response

    async def _request_json(
        self,
        method: str,
        path: str,
        json: Optional[dict[str, Any]] = None,
    ) -> Any:
        response = await self._request(method, path, json=json)
        return response.json()

    # -------------------------------------------------------------------------
    # States
    # -------------------------------------------------------------------------
    async def get_states(self) -> list[EntityState]:
        data = await self._request_json("GET", "/api/states")
        return [EntityState.from_dict(item) for item in data]

    async def get_states_by_domain(self, domain: str) -> list[EntityState]:
        prefix = f"{domain}."
        return [s for s in await self.get_states() if s.entity_id.startswith(prefix)]

    async def get_state(self, entity_id: str) -> EntityState:
        data = await self._request_json("GET", f"/api/states/{entity_id}")
        return EntityState.from_dict(data)

    # -------------------------------------------------------------------------
    # Services
    # -------------------------------------------------------------------------
    async def call_service(
        self,
        domain: str,
        service: str,
        data: Optional[dict[str, Any]] = None,
    ) -> list[dict[str, Any]]:
        """Call a service and return the raw list of states it changed."""
        return await self._request_json(
            "POST", f"/api/services/{domain}/{service}", json=data or {}
        )

    async def call_service_with_response(
        self,
        domain: str,
        service: str,
        data: Optional[dict[str, Any]] = None,
    ) -> Any:
        """Call a service that returns data (e.g. todo.get_items) rather than state changes."""
        return await self._request_json(
            "POST", f"/api/services/{domain}/{service}?return_response", json=data or {}
        )

    # -------------------------------------------------------------------------
    # Templates: areas and devices
    # -------------------------------------------------------------------------
    async def render_template(self, template: str) -> str:
        """Render a Jinja2 template and return the raw text.

        The body is never JSON-decoded: lists come back as Python reprs
        ("['kitchen']"), which are not valid JSON.
        """
        response = await self._request("POST", "/api/template", json={"template": template})
        return response.text

    async def get_areas(self) -> list[str]:
        raw = await self.render_template("{{ areas() | list }}")
        return parse_jinja_list(raw)

    async def get_area_name(self, area_id: str) -> str:
        raw = await self.render_template(f"{{{{ area_name({jinja_string(area_id)}) }}}}")
        return raw.strip()

    async def get_entities_in_area(self, area_id: str) -> list[str]:
        raw = await self.render_template(
            f"{{{{ area_entities({jinja_string(area_id)}) | list }}}}"
        )
        return parse_jinja_list(raw)

    async def get_entity_meta_map(self, entity_ids: list[str]) -> dict[str, EntityMeta]:
        """Resolve entity_id → EntityMeta(area, device) for a batch of entities."""
        if not entity_ids:
            return {}

        id_list = ", ".join(jinja_string(eid) for eid in entity_ids)
        raw = await self.render_template(_ENTITY_META_TEMPLATE.replace("__ENTITY_IDS__", id_list))

        meta_map = {}
        for entity_id, meta in parse_template_mapping(raw).items():
            if not isinstance(meta, dict):
                continue
            meta_map[entity_id] = EntityMeta(area=meta.get("area"), device=meta.get("device"))
        return meta_map
