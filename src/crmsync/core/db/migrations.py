from __future__ import annotations

import sqlite3
from pathlib import Path

MIGRATIONS_TABLE = "schema_migrations"


def connect_db(db_path: Path, timeout_sec: float = 10.0) -> sqlite3.Connection:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    connection = sqlite3.connect(str(db_path), timeout=timeout_sec)
    connection.row_factory = sqlite3.Row
    connection.execute("PRAGMA foreign_keys = ON")
    return connection


def _ensure_migrations_table(connection: sqlite3.Connection) -> None:
    connection.execute(
        f"""
        CREATE TABLE IF NOT EXISTS {MIGRATIONS_TABLE} (
            filename TEXT PRIMARY KEY,
            applied_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )
    connection.commit()


def _applied_filenames(connection: sqlite3.Connection) -> set[str]:
    return {row["filename"] for row in connection.execute(f"SELECT filename FROM {MIGRATIONS_TABLE}")}


def pending_migrations(connection: sqlite3.Connection, migrations_dir: Path) -> list[Path]:
    _ensure_migrations_table(connection)
    applied = _applied_filenames(connection)
    return [path for path in sorted(migrations_dir.glob("*.sql")) if path.name not in applied]


def apply_migrations(connection: sqlite3.Connection, migrations_dir: Path) -> list[str]:
    executed: list[str] = []

    for migration_file in pending_migrations(connection, migrations_dir):
        script = migration_file.read_text(encoding="utf-8")
        with connection:
            connection.executescript(script)
            connection.execute(
                f"INSERT INTO {MIGRATIONS_TABLE} (filename) VALUES (?)",
                (migration_file.name,),
            )
        executed.append(migration_file.name)

    return executed
