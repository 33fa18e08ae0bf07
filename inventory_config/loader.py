"""
Settings loader (``inventory_config.loader``).

Responsibility
--------------
Loads YAML settings files, overlays them on the packaged defaults and
parses the result into the frozen ``inventory_config.schema`` types.  The
single public entry point for runtime settings is
``inventory_config.get_active_settings()``.

Invariants enforced
-------------------
* Unknown sections or keys are rejected, so a misspelt key never silently
  falls back to its default.
* Every value is type-checked and range-checked before a LedgerSettings
  is produced.
* ``compute_checksum`` is a deterministic SHA-256 over the merged data.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown key, wrong type or out-of-range value  -> ``ValueError``.
"""

from __future__ import annotations

import copy
import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from inventory_config.schema import (
    LOCK_BACKENDS,
    PALLET_FALLBACK_POLICIES,
    LedgerSettings,
    LockSettings,
    PalletSettings,
    ReconciliationSettings,
    ValidationSettings,
)

DEFAULTS_FILE = Path(__file__).parent / "defaults.yaml"

_SECTIONS = {
    "lock": LockSettings,
    "validation": ValidationSettings,
    "pallets": PalletSettings,
    "reconciliation": ReconciliationSettings,
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def merge_settings(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """Overlay one settings mapping on another, section by section."""
    merged = copy.deepcopy(base)
    for key, value in overlay.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = value
    return merged


def compute_checksum(data: dict[str, Any]) -> str:
    canonical = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _coerce(section: str, key: str, value: Any, expected: type) -> Any:
    if expected is float and isinstance(value, int) and not isinstance(value, bool):
        return float(value)
    if expected is str and isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    if not isinstance(value, expected) or isinstance(value, bool):
        raise ValueError(
            f"{section}.{key}: expected {expected.__name__}, got {value!r}"
        )
    return value


def _parse_section(name: str, data: Any):
    cls = _SECTIONS[name]
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ValueError(f"{name}: expected a mapping, got {data!r}")

    defaults = cls()
    values: dict[str, Any] = {}
    for key, value in data.items():
        if not hasattr(defaults, key):
            raise ValueError(f"{name}: unknown setting {key!r}")
        values[key] = _coerce(name, key, value, type(getattr(defaults, key)))
    return cls(**values)


def _validate(settings: LedgerSettings) -> None:
    if settings.lock.backend not in LOCK_BACKENDS:
        raise ValueError(f"lock.backend must be one of {LOCK_BACKENDS}, got {settings.lock.backend!r}")
    if settings.lock.timeout_seconds <= 0 or settings.lock.poll_interval_seconds <= 0:
        raise ValueError("lock timings must be positive")

    v = settings.validation
    for key in ("max_cartons", "max_pallets", "max_batch_lot_length"):
        if getattr(v, key) <= 0:
            raise ValueError(f"validation.{key} must be positive")
    if v.duplicate_window_seconds < 0:
        raise ValueError("validation.duplicate_window_seconds must not be negative")
    if not v.default_batch_lot.strip() or len(v.default_batch_lot) > v.max_batch_lot_length:
        raise ValueError("validation.default_batch_lot must be a non-blank, in-bounds batch lot")

    if settings.pallets.fallback_policy not in PALLET_FALLBACK_POLICIES:
        raise ValueError(
            f"pallets.fallback_policy must be one of {PALLET_FALLBACK_POLICIES}, "
            f"got {settings.pallets.fallback_policy!r}"
        )

    r = settings.reconciliation
    if not (r.critical_threshold > r.high_threshold > r.medium_threshold >= 0):
        raise ValueError(
            "reconciliation thresholds must satisfy critical > high > medium >= 0"
        )
    if r.history_sample_size < 0 or r.progress_interval <= 0:
        raise ValueError(
            "reconciliation.history_sample_size must be >= 0 and progress_interval > 0"
        )


def parse_settings(data: dict[str, Any], sources: tuple[str, ...] = ()) -> LedgerSettings:
    """Parse merged settings data into a validated LedgerSettings."""
    unknown = set(data) - set(_SECTIONS) - {"database_url"}
    if unknown:
        raise ValueError(f"Unknown settings sections: {sorted(unknown)}")

    database_url = data.get("database_url") or LedgerSettings.database_url
    if not isinstance(database_url, str):
        raise ValueError(f"database_url: expected str, got {database_url!r}")

    settings = LedgerSettings(
        database_url=database_url,
        lock=_parse_section("lock", data.get("lock")),
        validation=_parse_section("validation", data.get("validation")),
        pallets=_parse_section("pallets", data.get("pallets")),
        reconciliation=_parse_section("reconciliation", data.get("reconciliation")),
        checksum=compute_checksum(data),
        sources=sources,
    )
    _validate(settings)
    return settings
