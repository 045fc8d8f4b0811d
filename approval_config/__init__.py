"""
approval_config -- single public entrypoint for runtime settings.

Responsibility:
    ``get_active_config()`` is the ONLY way to obtain settings at runtime.
    No other component reads settings files or environment variables.

Resolution order (later wins):
    1. ``approval_config/defaults.yaml`` bundled with the package.
    2. The file given as ``config_path``, else the file named by the
       ``APPROVAL_CONFIG`` environment variable.
    3. The ``DATABASE_URL`` environment variable for ``database_url``.

Failure modes:
    - ``FileNotFoundError`` -- the override file does not exist.
    - ``ValueError`` -- a setting has the wrong type or range.

Audit relevance:
    Every call logs ``circuit_config_loaded`` with the settings checksum,
    tying runtime behavior to an exact configuration.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from approval_config.loader import (
    compute_checksum,
    load_yaml_file,
    merge_settings,
    parse_settings,
)
from approval_config.schema import CircuitSettings

_logger = logging.getLogger("approval_kernel.config")

DEFAULTS_FILE = Path(__file__).parent / "defaults.yaml"

CONFIG_ENV_VAR = "APPROVAL_CONFIG"
DATABASE_URL_ENV_VAR = "DATABASE_URL"


def get_active_config(config_path: Path | str | None = None) -> CircuitSettings:
    """Resolve and validate the settings for this process."""
    data = load_yaml_file(DEFAULTS_FILE)

    override_path = config_path or os.environ.get(CONFIG_ENV_VAR)
    if override_path:
        path = Path(override_path)
        if not path.is_file():
            raise FileNotFoundError(f"Settings file not found: {path}")
        data = merge_settings(data, load_yaml_file(path))

    database_url = os.environ.get(DATABASE_URL_ENV_VAR)
    if database_url:
        data = merge_settings(data, {"database_url": database_url})

    settings = parse_settings(data)

    _logger.info(
        "circuit_config_loaded",
        extra={
            "checksum": settings.checksum,
            "source": str(override_path) if override_path else "defaults",
            "token_ttl_hours": settings.token_ttl_hours,
            "reminder_lead_hours": settings.reminder_lead_hours,
        },
    )
    return settings


__all__ = [
    "CircuitSettings",
    "compute_checksum",
    "get_active_config",
]
