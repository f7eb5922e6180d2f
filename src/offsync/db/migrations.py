"""
Schema-evolution hook for the record store.

create_all() only creates missing tables; it never alters an existing one.
Columns added to a model after its table first shipped are listed in
ADDED_COLUMNS and added here with SQLite ALTER TABLE ADD COLUMN, so a
database file created with the bare schema (only the core sync fields of
record and syncpasslog) still opens. On a database create_all() just built,
every column already exists and this is a no-op.

Each step is idempotent: columns are only added if absent. New columns go
at the end of ADDED_COLUMNS and must carry a default.
"""
from sqlalchemy import text

# (table, column, SQLite column definition)
ADDED_COLUMNS = [
    # Record: persisted transient-failure count used by the retry policy
    ("record", "attempt_count", "INTEGER NOT NULL DEFAULT 0"),
    # SyncPassLog: which trigger requested the pass
    ("syncpasslog", "trigger", "VARCHAR NOT NULL DEFAULT 'manual'"),
]


def run_migrations(engine) -> None:
    """Add every column in ADDED_COLUMNS that the database lacks.

    Safe to call multiple times; checks column existence before altering.
    Supports SQLite only (uses PRAGMA table_info).

    Args:
        engine: SQLAlchemy engine (SQLModel create_engine result).
    """
    with engine.connect() as conn:
        for table, column, col_type in ADDED_COLUMNS:
            _add_column_if_missing(conn, table, column, col_type)
        conn.commit()


def _add_column_if_missing(conn, table: str, column: str, col_type: str) -> None:
    """Add a column to a table if it doesn't already exist.

    Args:
        conn: SQLAlchemy connection.
        table: Table name (lowercase, as SQLite stores it).
        column: Column name to add.
        col_type: SQLite column definition, e.g. "INTEGER NOT NULL DEFAULT 0".
    """
    result = conn.execute(text(f"PRAGMA table_info({table})"))
    existing_columns = {row[1] for row in result}
    if column not in existing_columns:
        # Quoted: "trigger" is an SQLite keyword
        conn.execute(text(f'ALTER TABLE {table} ADD COLUMN "{column}" {col_type}'))
