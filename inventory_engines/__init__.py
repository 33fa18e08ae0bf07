"""
Module: inventory_engines
Responsibility:
    Pure calculation engines over projected inventory balances.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May import inventory_kernel (domain values, enums, hashing).
    MUST NOT import inventory_services or inventory_config.

Invariants enforced:
    - Purity: engines never call ``datetime.now()`` or touch a session.
    - Determinism: identical inputs always produce identical outputs.

Usage:
    from inventory_engines.reconciliation import evaluate_key, summarize
"""

from inventory_engines.reconciliation import (
    DEFAULT_THRESHOLDS,
    DiscrepancyFinding,
    HistorySample,
    ReconciliationSummary,
    SeverityThresholds,
    classify_severity,
    evaluate_key,
    summarize,
)
from inventory_engines.tracer import traced_engine

__all__ = [
    "DEFAULT_THRESHOLDS",
    "DiscrepancyFinding",
    "HistorySample",
    "ReconciliationSummary",
    "SeverityThresholds",
    "classify_severity",
    "evaluate_key",
    "summarize",
    "traced_engine",
]
