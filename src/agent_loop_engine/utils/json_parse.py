"""Parsing of tool call arguments as they stream in."""
from __future__ import annotations

import json
from typing import Any

from partial_json_parser import loads as partial_loads

from agent_loop_engine.logging import get_logger

logger = get_logger("json_parse")


def _as_object(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def parse_streaming_json(partial: str) -> dict[str, Any]:
    """Best-effort view of an argument object that may still be incomplete.

    Complete JSON is parsed strictly. Anything else goes through
    ``partial_json_parser``, which closes open strings, arrays and objects.
    Unparseable or non-object input yields ``{}``.
    """
    if not partial or not partial.strip():
        return {}
    try:
        return _as_object(json.loads(partial))
    except json.JSONDecodeError:
        pass
    try:
        return _as_object(partial_loads(partial))
    except Exception:
        return {}


def parse_tool_arguments(raw: str) -> dict[str, Any]:
    """Parse the final arguments of a tool call, logging malformed input."""
    if not raw or not raw.strip():
        return {}
    try:
        return _as_object(json.loads(raw))
    except json.JSONDecodeError as e:
        logger.warning("Malformed tool arguments (%s); using best-effort parse", e)
        return parse_streaming_json(raw)
