"""Flexible decoding of provider JSON values.

Xtream panels disagree on the type of nearly every field: identifiers come
back as strings, integers, floats, ``null`` or sentinel words, and list
fields can be real arrays, JSON encoded strings or comma separated strings.
Everything here is total: unusable input maps to ``None`` or an empty list,
never an exception.
"""
from __future__ import annotations

import json
import math
from typing import Any, Optional

from iptv_cache.models.xtream import ABSENT_TOKENS

_TRUE_STRINGS = frozenset({"1", "true", "yes"})


def _float_text(value: float) -> str:
    if math.isfinite(value) and value.is_integer():
        return str(int(value))
    return str(value)


def as_flexible_string(value: Any) -> Optional[str]:
    """Return the textual form of a JSON scalar, ``None`` for anything else."""
    if isinstance(value, str):
        return value
    # bool is an int subclass, test it first
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return _float_text(value)
    return None


def as_flexible_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return int(text)
        except ValueError:
            pass
        try:
            number = float(text)
        except ValueError:
            return None
        return int(number) if math.isfinite(number) else None
    return None


def as_flexible_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    return None


def as_clean_string(value: Any) -> Optional[str]:
    """Flexible string, stripped, with blanks and sentinel words as ``None``."""
    text = as_flexible_string(value)
    if text is None:
        return None
    text = text.strip()
    if not text or text.lower() in ABSENT_TOKENS:
        return None
    return text


def first_present(mapping: dict, *keys: str) -> Optional[str]:
    """First key of *mapping* holding a usable string value."""
    for key in keys:
        text = as_clean_string(mapping.get(key))
        if text is not None:
            return text
    return None


def first_int(mapping: dict, *keys: str) -> Optional[int]:
    for key in keys:
        number = as_flexible_int(mapping.get(key))
        if number is not None:
            return number
    return None


def normalize_category_identifier(raw: Any) -> Optional[str]:
    """Canonical category id: trimmed, sentinel-free, ``"12.0"`` → ``"12"``."""
    text = as_clean_string(raw)
    if text is None:
        return None
    try:
        return str(int(text))
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return text
    if math.isfinite(number) and number.is_integer():
        return str(int(number))
    return text


def _dedupe(values) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for value in values:
        category_id = normalize_category_identifier(value)
        if category_id is None or category_id in seen:
            continue
        seen.add(category_id)
        result.append(category_id)
    return result


def decode_category_id_list(raw: Any) -> list[str]:
    """Decode a ``category_ids`` style field into an ordered, de-duplicated list."""
    if isinstance(raw, list):
        return _dedupe(raw)
    if isinstance(raw, str):
        text = raw.strip()
        if text.startswith("["):
            try:
                decoded = json.loads(text)
            except ValueError:
                decoded = None
            if isinstance(decoded, list):
                return _dedupe(decoded)
            text = text.strip("[]")
        if "," in text:
            return _dedupe(part.strip().strip('"') for part in text.split(","))
        return _dedupe([text])
    if isinstance(raw, (bool, int, float)):
        return _dedupe([raw])
    return []


def decode_string_list(raw: Any) -> list[str]:
    """Like :func:`decode_category_id_list` but keeps values verbatim (lowercased)."""
    if isinstance(raw, str):
        text = raw.strip()
        if text.startswith("["):
            try:
                raw = json.loads(text)
            except ValueError:
                raw = text.strip("[]").split(",")
        else:
            raw = text.split(",")
    if not isinstance(raw, list):
        return []
    result: list[str] = []
    for value in raw:
        text = as_clean_string(value)
        if text is None:
            continue
        text = text.strip('"').lower()
        if text and text not in result:
            result.append(text)
    return result


def normalize_list(data: Any) -> list:
    """Handle Xtream's numbered-key objects vs proper arrays."""
    if isinstance(data, list):
        return data
    if isinstance(data, dict) and data:
        if all(isinstance(v, dict) for v in data.values()):
            try:
                keys = sorted(data.keys(), key=lambda k: int(k))
            except (ValueError, TypeError):
                # Named keys: an error or info object, not a list
                return []
            return [data[k] for k in keys]
    return []
