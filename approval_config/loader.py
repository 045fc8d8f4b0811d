"""
Configuration loader (``approval_config.loader``).

Responsibility
--------------
Reads YAML settings files and parses the merged mapping into a frozen
``CircuitSettings``.  Runtime callers go through
``approval_config.get_active_config()``, never through this module.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Wrong type or out-of-range value  -> ``ValueError`` naming the key.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from approval_config.schema import CircuitSettings


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load one YAML file; an empty file yields an empty dict."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def merge_settings(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Recursive merge; mappings merge key by key, anything else replaces."""
    merged: dict[str, Any] = dict(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = merge_settings(merged[key], value)
        else:
            merged[key] = value
    return merged


def _section(data: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, Mapping):
        raise ValueError(f"'{name}' must be a mapping")
    return value


def _positive_int(value: Any, key: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'{key}' must be an integer, got {value!r}")
    if value <= 0:
        raise ValueError(f"'{key}' must be positive, got {value}")
    return value


def _non_negative_int(value: Any, key: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'{key}' must be an integer, got {value!r}")
    if value < 0:
        raise ValueError(f"'{key}' must not be negative, got {value}")
    return value


def _non_empty_str(value: Any, key: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"'{key}' must be a non-empty string")
    return value.strip()


def parse_settings(data: Mapping[str, Any]) -> CircuitSettings:
    """
    Build CircuitSettings from a merged settings mapping.

    Raises:
        ValueError: a value has the wrong type or is out of range.
    """
    tokens = _section(data, "tokens")
    reminders = _section(data, "reminders")
    links = _section(data, "links")
    pool = _section(data, "pool")

    return CircuitSettings(
        database_url=_non_empty_str(data.get("database_url"), "database_url"),
        token_ttl_hours=_positive_int(tokens.get("ttl_hours", 48), "tokens.ttl_hours"),
        reminder_lead_hours=_non_negative_int(
            reminders.get("lead_hours", 24), "reminders.lead_hours",
        ),
        app_url=_non_empty_str(links.get("app_url", "http://localhost:8080"), "links.app_url"),
        api_url=_non_empty_str(links.get("api_url", "http://localhost:3000"), "links.api_url"),
        default_locale=_non_empty_str(data.get("default_locale", "fr"), "default_locale"),
        pool_size=_positive_int(pool.get("size", 20), "pool.size"),
        max_overflow=_non_negative_int(pool.get("max_overflow", 10), "pool.max_overflow"),
        checksum=compute_checksum(dict(data)),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form; identical data, identical checksum."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
