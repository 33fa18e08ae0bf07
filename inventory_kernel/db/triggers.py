"""
Module: inventory_kernel.db.triggers
Responsibility: Loading, installing, and verifying database immutability
    triggers (Layer 2 of 2).  This is the database-level complement to the
    ORM-level listeners in db/immutability.py.
Architecture position: Kernel > DB.  May import from db/ only.  MUST NOT
    import from models/, services/, selectors/, domain/, or outer layers.

Invariants enforced (per dialect, under sql/<dialect>/):
    - InventoryTransaction rows: no UPDATE, no DELETE.
    - ReconciliationDiscrepancy rows: no UPDATE, no DELETE.
    - AuditEvent rows: no UPDATE, no DELETE.

Failure modes:
    - PostgreSQL RAISE EXCEPTION / SQLite RAISE(ABORT) on any violation
      (surfaced by SQLAlchemy as InternalError, IntegrityError or
      OperationalError depending on the driver).
    - FileNotFoundError if SQL files are missing from the sql/ directory.
    - ValueError for a dialect with no trigger set.

Audit relevance:
    Even if the ORM layer is bypassed (raw SQL, bulk operations, direct
    database access), these triggers prevent modification of ledger records.
"""

from pathlib import Path

from sqlalchemy import text
from sqlalchemy.engine import Engine

# =============================================================================
# SQL File Loading
# =============================================================================

SQL_DIR = Path(__file__).parent / "sql"

SUPPORTED_DIALECTS = ("postgresql", "sqlite")

# Ordered list of trigger files to install (numbered for predictable order)
TRIGGER_FILES = [
    "01_inventory_transaction.sql",
    "02_reconciliation_discrepancy.sql",
    "03_audit_event.sql",
]

DROP_FILE = "99_drop_all.sql"

# Statements inside a file are separated by this marker; trigger bodies
# contain semicolons, and SQLite drivers execute one statement per call.
STATEMENT_SEPARATOR = "-- @@"

ALL_TRIGGER_NAMES = [
    "trg_inventory_transaction_immutability_update",
    "trg_inventory_transaction_immutability_delete",
    "trg_reconciliation_discrepancy_immutability_update",
    "trg_reconciliation_discrepancy_immutability_delete",
    "trg_audit_event_immutability_update",
    "trg_audit_event_immutability_delete",
]


def _dialect_dir(engine: Engine) -> Path:
    name = engine.dialect.name
    if name not in SUPPORTED_DIALECTS:
        raise ValueError(f"No immutability triggers for dialect: {name}")
    return SQL_DIR / name


def _load_sql_file(directory: Path, filename: str) -> str:
    """
    Load SQL content from a file in a dialect directory.

    Raises:
        FileNotFoundError: If the file doesn't exist.
    """
    return (directory / filename).read_text(encoding="utf-8")


def _split_statements(sql_content: str) -> list[str]:
    return [
        chunk.strip()
        for chunk in sql_content.split(STATEMENT_SEPARATOR)
        if chunk.strip()
    ]


def _execute_file(engine: Engine, filename: str) -> None:
    statements = _split_statements(_load_sql_file(_dialect_dir(engine), filename))
    with engine.connect() as conn:
        for statement in statements:
            conn.execute(text(statement))
        conn.commit()


# =============================================================================
# Public API
# =============================================================================


def install_immutability_triggers(engine: Engine) -> None:
    """
    Install database-level immutability triggers for the engine's dialect.

    Preconditions: Tables must exist (call after create_all()).
    Postconditions: All triggers in ALL_TRIGGER_NAMES are installed.
        Installation is idempotent.
    """
    for filename in TRIGGER_FILES:
        _execute_file(engine, filename)


def uninstall_immutability_triggers(engine: Engine) -> None:
    """
    Remove database-level immutability triggers.

    WARNING: Only use this for maintenance that must rewrite historical rows.
    Re-install triggers immediately afterwards.
    """
    _execute_file(engine, DROP_FILE)


def get_installed_triggers(engine: Engine) -> list[str]:
    """Get list of installed immutability triggers, sorted by name."""
    params = {f"t{i}": name for i, name in enumerate(ALL_TRIGGER_NAMES)}
    placeholders = ", ".join(f":{key}" for key in params)
    if engine.dialect.name == "postgresql":
        check_sql = f"SELECT tgname FROM pg_trigger WHERE tgname IN ({placeholders}) ORDER BY tgname"
    else:
        check_sql = (
            "SELECT name FROM sqlite_master WHERE type = 'trigger' "
            f"AND name IN ({placeholders}) ORDER BY name"
        )

    with engine.connect() as conn:
        return [row[0] for row in conn.execute(text(check_sql), params)]


def triggers_installed(engine: Engine) -> bool:
    """Check if all immutability triggers are installed."""
    return len(get_installed_triggers(engine)) == len(ALL_TRIGGER_NAMES)


def get_missing_triggers(engine: Engine) -> list[str]:
    """Get list of immutability triggers that should be installed but aren't."""
    installed = set(get_installed_triggers(engine))
    return sorted(set(ALL_TRIGGER_NAMES) - installed)
