"""Shared pytest fixtures for the smarthome MCP tests."""

from __future__ import annotations

import json
from typing import Any, Optional

import httpx
import pytest

from core.ha_client import HomeAssistantClient
from core.models import HAConfig


def make_state(entity_id: str, state: str, **attributes: Any) -> dict[str, Any]:
    """Build a raw /api/states entry."""
    return {
        "entity_id": entity_id,
        "state": state,
        "attributes": attributes,
        "last_changed": "2026-10-19T06:00:00+00:00",
        "last_updated": "2026-10-19T06:00:00+00:00",
        "context": {"id": "01HX", "parent_id": None, "user_id": None},
    }


class FakeHomeAssistant:
    """In-memory stand-in for the Home Assistant REST API.

    Serves /api/states, /api/services and /api/template, and records every
    request so tests can assert on paths and payloads.
    """

    def __init__(self) -> None:
        self.states: dict[str, dict[str, Any]] = {}
        self.areas: dict[str, dict[str, Any]] = {}
        self.meta: dict[str, dict[str, Any]] = {}
        self.service_responses: dict[tuple[str, str], Any] = {}
        self.requests: list[httpx.Request] = []
        self.fail_status: Optional[int] = None
        self.template_override: Optional[str] = None

    def add_state(self, entity_id: str, state: str, **attributes: Any) -> None:
        self.states[entity_id] = make_state(entity_id, state, **attributes)

    def add_area(self, area_id: str, name: str, entities: list[str]) -> None:
        self.areas[area_id] = {"name": name, "entities": entities}

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def requests_to(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_status is not None:
            return httpx.Response(self.fail_status, text="boom")

        path = request.url.path
        if path == "/api/states":
            return httpx.Response(200, json=list(self.states.values()))
        if path.startswith("/api/states/"):
            entity_id = path[len("/api/states/"):]
            if entity_id not in self.states:
                return httpx.Response(404, text='{"message": "Entity not found."}')
            return httpx.Response(200, json=self.states[entity_id])
        if path.startswith("/api/services/"):
            return self._handle_service(request)
        if path == "/api/template":
            template = json.loads(request.content)["template"]
            return httpx.Response(200, text=self._render(template))
        return httpx.Response(404, text="not found")

    def _handle_service(self, request: httpx.Request) -> httpx.Response:
        _, _, _, domain, service = request.url.path.split("/")
        data = json.loads(request.content)
        if (domain, service) in self.service_responses:
            return httpx.Response(200, json=self.service_responses[(domain, service)])

        ids = data.get("entity_id", [])
        if isinstance(ids, str):
            ids = [ids]
        changed = []
        for entity_id in ids:
            if entity_id not in self.states:
                continue
            if service in ("turn_on", "turn_off"):
                self.states[entity_id]["state"] = "on" if service == "turn_on" else "off"
            if "brightness" in data:
                self.states[entity_id]["attributes"]["brightness"] = data["brightness"]
            changed.append(self.states[entity_id])
        return httpx.Response(200, json=changed)

    def _render(self, template: str) -> str:
        if self.template_override is not None:
            return self.template_override
        if "namespace(" in template:
            found = {eid: meta for eid, meta in self.meta.items() if f"'{eid}'" in template}
            return json.dumps(found)
        if "areas()" in template:
            return repr(list(self.areas))
        for area_id, area in self.areas.items():
            if f"area_entities('{area_id}')" in template:
                return repr(area["entities"])
            if f"area_name('{area_id}')" in template:
                return area["name"]
        if "area_entities(" in template:
            return "[]"
        return "None"


@pytest.fixture
def ha_config() -> HAConfig:
    return HAConfig(url="http://test-ha:8123/", token="test_token_123", timeout=5.0)


@pytest.fixture
def fake_ha() -> FakeHomeAssistant:
    """A small house: two areas, three lights, two sensors and a todo list."""
    fake = FakeHomeAssistant()
    fake.add_state("light.kitchen", "off", friendly_name="Kitchen Light", brightness=None)
    fake.add_state("light.kitchen_island", "off", friendly_name="Kitchen Island")
    fake.add_state("light.living_room", "on", friendly_name="Living Room Lamp", brightness=180)
    fake.add_state(
        "sensor.kitchen_temperature",
        "21.5",
        friendly_name="Kitchen Temperature",
        device_class="temperature",
        unit_of_measurement="°C",
    )
    fake.add_state(
        "sensor.living_room_humidity",
        "48",
        friendly_name="Living Room Humidity",
        device_class="humidity",
        unit_of_measurement="%",
    )
    fake.add_state("todo.shopping_list", "2", friendly_name="Shopping List")
    fake.add_area(
        "kitchen",
        "Kitchen",
        ["light.kitchen", "light.kitchen_island", "sensor.kitchen_temperature"],
    )
    fake.add_area("living_room", "Living Room", ["light.living_room", "sensor.living_room_humidity"])
    fake.add_area("garage", "Garage", [])
    fake.meta = {
        "light.kitchen": {"area": "Kitchen", "device": "Hue Bulb 1"},
        "light.kitchen_island": {"area": "Kitchen", "device": None},
        "light.living_room": {"area": "Living Room", "device": "Floor Lamp"},
        "sensor.kitchen_temperature": {"area": "Kitchen", "device": "Aqara Sensor"},
    }
    return fake


@pytest.fixture
def ha_client(ha_config: HAConfig, fake_ha: FakeHomeAssistant) -> HomeAssistantClient:
    return HomeAssistantClient(ha_config, transport=fake_ha.transport)
