# =============================================================================
# core/models.py  —  Data Models (the "nouns" of the system)
# =============================================================================
#
# These dataclasses define the *shape* of the Home Assistant data that flows
# through the adapter.  The REST API hands us loosely-typed JSON; everything
# past core/ha_client.py works with these instead.
#
# DESIGN PRINCIPLE: "No Phantom Fields"
#   An agent reasons about every field it is shown.  summarize_state() below
#   keeps only the handful of attributes an agent needs to answer "is the
#   kitchen light on?" or "how warm is the bedroom?", and drops the rest
#   (supported_features, icon, entity_picture, ...).
# =============================================================================

from dataclasses import dataclass, field
from typing import Any, Optional


# -----------------------------------------------------------------------------
# HAConfig — how to reach the Home Assistant instance
# -----------------------------------------------------------------------------
@dataclass
class HAConfig:
    """Connection parameters for the Home Assistant REST API."""

    url: str                           # e.g. "http://homeassistant.local:8123"
    token: str                         # Long-lived access token
    timeout: float = 10.0              # Per-request timeout (seconds)


# -----------------------------------------------------------------------------
# EntityState — one entry of GET /api/states
# -----------------------------------------------------------------------------
@dataclass
class EntityState:
    """The state of a single entity as reported by Home Assistant."""

    entity_id: str                     # "light.kitchen"
    state: str                         # "on", "off", "21.5", "unavailable", ...
    attributes: dict[str, Any] = field(default_factory=dict)
    last_changed: str = ""             # ISO timestamps, passed through as-is
    last_updated: str = ""
    context: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EntityState":
        return cls(
            entity_id=data["entity_id"],
            state=data.get("state", ""),
            attributes=data.get("attributes") or {},
            last_changed=data.get("last_changed", ""),
            last_updated=data.get("last_updated", ""),
            context=data.get("context") or {},
        )

    @property
    def domain(self) -> str:
        return self.entity_id.split(".", 1)[0]

    @property
    def friendly_name(self) -> Optional[str]:
        return self.attributes.get("friendly_name")


# -----------------------------------------------------------------------------
# EntityMeta — where an entity lives
# -----------------------------------------------------------------------------
# Areas and devices are not exposed by any direct REST endpoint, so these
# come from a rendered template (see HomeAssistantClient.get_entity_meta_map).
# Either field is None when Home Assistant has no assignment for the entity.
# -----------------------------------------------------------------------------
@dataclass
class EntityMeta:
    """Area and device names resolved for an entity."""

    area: Optional[str] = None
    device: Optional[str] = None


# Attributes worth showing to an agent, across lights, sensors and climate.
USEFUL_ATTRIBUTES: tuple[str, ...] = (
    "brightness",
    "color_temp",
    "rgb_color",
    "unit_of_measurement",
    "device_class",
    "current_temperature",
    "temperature",
    "hvac_action",
)


def summarize_state(entity: EntityState) -> dict[str, Any]:
    """Reduce an entity to the fields an agent reasons about.

    Always returns entity_id, state and friendly_name (falling back to the
    entity id), then any of USEFUL_ATTRIBUTES the entity actually carries.
    Attributes that are present but falsy (brightness 0) are kept.
    """
    friendly_name = entity.friendly_name
    if friendly_name is None:
        friendly_name = entity.entity_id

    summary: dict[str, Any] = {
        "entity_id": entity.entity_id,
        "state": entity.state,
        "friendly_name": friendly_name,
    }
    for key in USEFUL_ATTRIBUTES:
        if key in entity.attributes:
            summary[key] = entity.attributes[key]
    return summary
