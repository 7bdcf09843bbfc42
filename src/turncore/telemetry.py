"""Structured one-line JSON events for tool outcomes and repairs."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

__all__ = ["TELEMETRY_LOGGER", "emit_event", "json_safe"]

TELEMETRY_LOGGER = logging.getLogger("turncore.telemetry")

# Long payloads (file content, patch text) are clipped in events.
_MAX_EVENT_STRING = 240


def json_safe(value: Any) -> Any:
    """Coerce complex objects into JSON-serialisable representations."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Path):
        return value.as_posix()
    if is_dataclass(value) and not isinstance(value, type):
        return json_safe(asdict(value))
    if hasattr(value, "model_dump"):
        try:
            return json_safe(value.model_dump())
        except TypeError:
            pass
    if isinstance(value, Mapping):
        return {str(key): json_safe(child) for key, child in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [json_safe(item) for item in value]
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="ignore")
    return str(value)


def _clip(value: Any) -> Any:
    if isinstance(value, str) and len(value) > _MAX_EVENT_STRING:
        return f"{value[: _MAX_EVENT_STRING - 3]}..."
    if isinstance(value, list):
        return [_clip(item) for item in value]
    if isinstance(value, dict):
        return {key: _clip(child) for key, child in value.items()}
    return value


def emit_event(event: str, **fields: Any) -> None:
    """Log a structured telemetry event on the ``turncore.telemetry`` logger."""
    if not TELEMETRY_LOGGER.isEnabledFor(logging.INFO):
        return
    payload: dict[str, Any] = {"event": event, "timestamp": datetime.now(timezone.utc).isoformat()}
    for key, value in fields.items():
        payload[key] = _clip(json_safe(value))
    try:
        message = json.dumps(payload, separators=(",", ":"), ensure_ascii=True)
    except (TypeError, ValueError):
        message = json.dumps({key: str(value) for key, value in payload.items()}, ensure_ascii=True)
    TELEMETRY_LOGGER.info(message)
