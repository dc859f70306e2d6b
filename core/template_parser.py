# =============================================================================
# core/template_parser.py  —  Parsing Home Assistant template output
# =============================================================================
#
# WHAT THIS MODULE DOES:
#   POST /api/template renders a Jinja2 expression on the Home Assistant
#   server and returns the result as *plain text*.  When the expression
#   evaluates to a list or dict, that text is the Python repr of it:
#
#       {{ areas() | list }}   →   "['kitchen', 'living_room']"
#
#   These helpers turn that text back into Python values, and quote values
#   going the other way (ids interpolated into templates).
#
# PARSING ORDER:
#   1. ast.literal_eval, which reads items containing commas or quotes
#   2. a plain split on commas, for text that is not a valid literal
# =============================================================================

import ast
import json
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

# One leading or trailing quote character on a split item.
_EDGE_QUOTES = re.compile(r"^['\"]|['\"]$")


def parse_jinja_list(raw: str) -> list[str]:
    """Parse the string form of a Python list returned by the template API.

    Example:
        "['kitchen', 'living_room']"  →  ["kitchen", "living_room"]

    Surrounding whitespace is ignored, double quotes work as well as single
    quotes, and empty items are dropped.
    """
    trimmed = raw.strip()
    if trimmed in ("", "[]"):
        return []

    try:
        parsed = ast.literal_eval(trimmed)
    except (ValueError, SyntaxError):
        parsed = None

    if isinstance(parsed, (list, tuple)):
        return [str(item) for item in parsed if item is not None and item != ""]

    logger.debug("Template output is not a Python literal, splitting: %r", trimmed)
    return _split_list(trimmed)


def _split_list(trimmed: str) -> list[str]:
    items = []
    for part in trimmed[1:-1].split(","):
        item = _EDGE_QUOTES.sub("", part.strip())
        if item:
            items.append(item)
    return items


def parse_template_mapping(raw: str) -> dict[str, Any]:
    """Parse a dict rendered by the template API.

    Accepts JSON (the output of the `tojson` filter) or a Python dict repr.
    Anything unparsable, or anything that is not a dict, yields {}.
    """
    text = raw.strip()
    if not text:
        return {}

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        try:
            parsed = ast.literal_eval(text)
        except (ValueError, SyntaxError):
            logger.warning("Could not parse template mapping: %.200r", text)
            return {}

    if not isinstance(parsed, dict):
        return {}
    return parsed


def jinja_string(value: str) -> str:
    """Quote a value as a single-quoted Jinja string literal."""
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"
