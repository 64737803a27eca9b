"""Dot-path extraction from JSON payloads."""

from __future__ import annotations

from typing import Any


def extract_value(payload: Any, path: str) -> Any:
    """Return the value at a dot-separated path, or None if it cannot be reached.

    Dicts are walked by key and lists by non-negative integer segment, so
    ``entry.0.id`` reads the ``id`` of the first entry. Dots inside keys
    cannot be escaped.
    """
    if not path:
        return None

    current = payload
    for segment in path.split("."):
        if isinstance(current, dict):
            if segment not in current:
                return None
            current = current[segment]
        elif isinstance(current, list):
            if not (segment.isascii() and segment.isdigit()):
                return None
            index = int(segment)
            if index >= len(current):
                return None
            current = current[index]
        else:
            return None
    return current
