"""Forward-only SQL migrations, one directory per store namespace.

Files live under ``postgres_migrations/<namespace>/NNNN_description.sql`` and are
applied in filename order under a per-namespace advisory lock. Applied versions
are recorded with their checksum; editing an applied file is an error.
"""

from __future__ import annotations

import hashlib
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

MIGRATIONS_ROOT = Path(__file__).with_name("postgres_migrations")


@dataclass(frozen=True)
class PostgresMigration:
    version: str
    name: str
    sql_path: Path
    checksum: str


def apply_postgres_migrations(*, connection: Any, namespace: str) -> list[str]:
    """Applies pending migrations and returns the versions it ran."""
    with _namespace_lock(connection=connection, namespace=namespace):
        try:
            pending = _pending_locked(connection=connection, namespace=namespace)
            for migration in pending:
                _run_statements(connection=connection, sql=migration.sql_path.read_text("utf-8"))
                connection.execute(
                    """
                    INSERT INTO schema_migrations (
                        version,
                        namespace,
                        checksum,
                        applied_at
                    ) VALUES (%s, %s, %s, %s)
                    """,
                    (
                        f"{namespace}:{migration.version}",
                        namespace,
                        migration.checksum,
                        datetime.now(timezone.utc).isoformat(),
                    ),
                )
            connection.commit()
        except Exception:
            connection.rollback()
            raise
    return [migration.version for migration in pending]


def pending_postgres_migrations(*, connection: Any, namespace: str) -> list[PostgresMigration]:
    with _namespace_lock(connection=connection, namespace=namespace):
        try:
            pending = _pending_locked(connection=connection, namespace=namespace)
            connection.commit()
        except Exception:
            connection.rollback()
            raise
    return pending


def load_migrations(*, namespace: str) -> list[PostgresMigration]:
    namespace_path = MIGRATIONS_ROOT / namespace
    if not namespace_path.is_dir():
        raise RuntimeError(f"POSTGRES_MIGRATIONS_NAMESPACE_NOT_FOUND:{namespace}")
    migrations = []
    for sql_path in sorted(namespace_path.glob("*.sql")):
        version, _, name = sql_path.stem.partition("_")
        migrations.append(
            PostgresMigration(
                version=version,
                name=name,
                sql_path=sql_path,
                checksum=hashlib.sha256(sql_path.read_bytes()).hexdigest(),
            )
        )
    return migrations


def migration_lock_key(*, namespace: str) -> int:
    digest = hashlib.sha256(namespace.encode("utf-8")).digest()[:8]
    return int.from_bytes(digest, byteorder="big", signed=True)


@contextmanager
def _namespace_lock(*, connection: Any, namespace: str) -> Iterator[None]:
    lock_key = migration_lock_key(namespace=namespace)
    connection.execute("SELECT pg_advisory_lock(%s::bigint)", (lock_key,))
    try:
        yield
    finally:
        connection.execute("SELECT pg_advisory_unlock(%s::bigint)", (lock_key,))


def _pending_locked(*, connection: Any, namespace: str) -> list[PostgresMigration]:
    connection.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version TEXT PRIMARY KEY,
            namespace TEXT NOT NULL,
            checksum TEXT NOT NULL,
            applied_at TEXT NOT NULL
        )
        """
    )
    rows = connection.execute(
        """
        SELECT version, checksum
        FROM schema_migrations
        WHERE namespace = %s
        ORDER BY version ASC
        """,
        (namespace,),
    ).fetchall()
    prefix = f"{namespace}:"
    applied = {
        str(row["version"]).removeprefix(prefix): str(row["checksum"]) for row in rows
    }
    pending = []
    for migration in load_migrations(namespace=namespace):
        checksum = applied.get(migration.version)
        if checksum is None:
            pending.append(migration)
        elif checksum != migration.checksum:
            raise RuntimeError(
                f"POSTGRES_MIGRATION_CHECKSUM_MISMATCH:{namespace}:{migration.version}"
            )
    return pending


def _run_statements(*, connection: Any, sql: str) -> None:
    for statement in sql.split(";"):
        if statement.strip():
            connection.execute(statement.strip())
