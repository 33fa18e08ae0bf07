"""
inventory_config -- single public entrypoint for ledger settings.

Responsibility:
    Provides the ONLY way to obtain settings at runtime through
    ``get_active_settings()``.  No other component reads settings files or
    environment variables directly.

Architecture position:
    Configuration -- YAML-driven, validated at load time.  This package
    sits above ``inventory_kernel`` and ``inventory_engines`` and below
    ``inventory_services``.  The kernel MUST NEVER import from
    ``inventory_config``; ``bridges`` translate settings into
    kernel-compatible inputs.

Invariants enforced:
    - Single entrypoint: all runtime settings flow through
      ``get_active_settings()``.
    - Deterministic: the same YAML sources produce the same checksum.

Failure modes:
    - ``FileNotFoundError`` -- the overlay file does not exist.
    - ``ValueError`` -- unknown keys, wrong types or out-of-range values.

Audit relevance:
    Every successful call emits an ``INVENTORY_CONFIG_TRACE`` log entry
    with the checksum and the sources that produced it.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from inventory_config.loader import (
    DEFAULTS_FILE,
    load_yaml_file,
    merge_settings,
    parse_settings,
)
from inventory_config.schema import LedgerSettings

_logger = logging.getLogger("inventory_kernel.config")

CONFIG_ENV_VAR = "INVENTORY_LEDGER_CONFIG"
DATABASE_URL_ENV_VAR = "DATABASE_URL"


def get_active_settings(path: Path | str | None = None) -> LedgerSettings:
    """The ONLY public settings entrypoint.

    Resolution order, later wins:
        1. ``inventory_config/defaults.yaml``
        2. ``path``, or the file named by ``INVENTORY_LEDGER_CONFIG``
        3. ``DATABASE_URL`` for the database URL

    Raises:
        FileNotFoundError: If the overlay file is missing.
        ValueError: If the merged settings fail validation.
    """
    data = load_yaml_file(DEFAULTS_FILE)
    sources = [str(DEFAULTS_FILE)]

    overlay_path = path or os.environ.get(CONFIG_ENV_VAR)
    if overlay_path:
        data = merge_settings(data, load_yaml_file(Path(overlay_path)))
        sources.append(str(overlay_path))

    database_url = os.environ.get(DATABASE_URL_ENV_VAR)
    if database_url:
        data = merge_settings(data, {"database_url": database_url})
        sources.append(f"env:{DATABASE_URL_ENV_VAR}")

    settings = parse_settings(data, sources=tuple(sources))

    _logger.info(
        "INVENTORY_CONFIG_TRACE",
        extra={
            "trace_type": "INVENTORY_CONFIG_TRACE",
            "checksum": settings.checksum,
            "sources": list(settings.sources),
            "lock_backend": settings.lock.backend,
            "pallet_fallback_policy": settings.pallets.fallback_policy,
        },
    )
    return settings


__all__ = [
    "CONFIG_ENV_VAR",
    "DATABASE_URL_ENV_VAR",
    "LedgerSettings",
    "get_active_settings",
]
