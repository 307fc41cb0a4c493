"""
SQLite store backend.

A single-node store: every statement is immediately visible to every reader,
so schema agreement is always reached and consistency levels are accepted
but ignored. The connection runs in autocommit mode, so each migration
statement is applied on its own and a failing script leaves its earlier
statements in place, just like on a replicated cluster.

The lease's conditional write runs inside BEGIN IMMEDIATE, which takes the
database write lock up front; concurrent processes pointed at the same file
therefore serialize on it and at most one of them sees its claim applied.

All timestamps are stored as ISO 8601 UTC strings with 'Z' suffix.

Example usage:
    >>> from keyspace_migrator.store.sqlite import SQLiteStore
    >>> store = SQLiteStore("./output/app.db")
    >>> store.table_exists("schema_migration")
    False
    >>> store.close()
"""

import logging
import re
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from keyspace_migrator.exceptions import StoreUnavailableError
from keyspace_migrator.models import Consistency, ExecutionResult, Lease, MigrationRecord
from keyspace_migrator.utils.time import format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

DEFAULT_LOCK_TIMEOUT_SECONDS = 5.0


def _checked_identifier(name: str) -> str:
    """Table names are interpolated into SQL, so only plain identifiers pass."""
    if not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid table name: {name!r}")
    return name


class SQLiteStore:
    """
    Store backed by a SQLite database file.

    Args:
        db_path: Path to the database file (parent directories are created),
            or ":memory:"
        namespace: Name reported as the keyspace; also keys the lease row
        lock_timeout: Seconds to wait for another process's write lock

    Raises:
        StoreUnavailableError: If the database cannot be opened
    """

    def __init__(
        self,
        db_path: str | Path,
        namespace: str = "main",
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT_SECONDS,
    ):
        self.namespace = namespace
        self._db_path = str(db_path)
        self._closed = False

        try:
            if self._db_path != ":memory:":
                Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(
                self._db_path, timeout=lock_timeout, isolation_level=None
            )
        except (sqlite3.Error, OSError) as e:
            raise StoreUnavailableError(
                f"Unable to open SQLite database {self._db_path}: {e}"
            ) from e

        logger.debug(f"Opened SQLite store {self._db_path}")

    @property
    def db_path(self) -> str:
        return self._db_path

    @property
    def closed(self) -> bool:
        return self._closed

    @contextmanager
    def _infrastructure(self, operation: str) -> Iterator[sqlite3.Connection]:
        """Translate driver errors of bookkeeping operations into StoreUnavailableError."""
        if self._closed:
            raise StoreUnavailableError(
                f"Cannot {operation}: session on {self._db_path} is closed"
            )
        try:
            yield self._conn
        except sqlite3.Error as e:
            raise StoreUnavailableError(
                f"Failed to {operation} in {self._db_path}: {e}"
            ) from e

    # ------------------------------------------------------------------
    # Statement execution
    # ------------------------------------------------------------------

    def execute(self, statement: str, consistency: Consistency) -> ExecutionResult:
        if self._closed:
            raise StoreUnavailableError(
                f"Cannot execute statement: session on {self._db_path} is closed"
            )
        self._conn.execute(statement)
        return ExecutionResult(schema_in_agreement=True)

    def table_exists(self, table: str) -> bool:
        with self._infrastructure("inspect schema") as conn:
            row = conn.execute(
                "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?",
                (table,),
            ).fetchone()
        return row is not None

    # ------------------------------------------------------------------
    # Migration log
    # ------------------------------------------------------------------

    def create_migration_table(self, table: str) -> None:
        table = _checked_identifier(table)
        with self._infrastructure("create migration table") as conn:
            # Surrogate key: repeated attempts for one version append rows
            conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    applied_successful INTEGER NOT NULL,
                    version INTEGER NOT NULL,
                    script_name TEXT NOT NULL,
                    script TEXT NOT NULL,
                    executed_at TEXT NOT NULL
                )
            """)
            conn.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{table}_success_version
                ON {table}(applied_successful, version DESC)
            """)

    def insert_migration_record(
        self, table: str, record: MigrationRecord, consistency: Consistency
    ) -> None:
        table = _checked_identifier(table)
        with self._infrastructure("record migration") as conn:
            conn.execute(
                f"""
                INSERT INTO {table}
                    (applied_successful, version, script_name, script, executed_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    1 if record.applied_successfully else 0,
                    record.version,
                    record.script_name,
                    record.script,
                    format_timestamp(record.executed_at),
                ),
            )

    def max_successful_version(self, table: str, consistency: Consistency) -> int | None:
        table = _checked_identifier(table)
        with self._infrastructure("read schema version") as conn:
            row = conn.execute(
                f"SELECT MAX(version) FROM {table} WHERE applied_successful = 1"
            ).fetchone()
        # MAX() returns NULL if no successful row exists
        return row[0] if row else None

    def migration_records(
        self, table: str, consistency: Consistency
    ) -> list[MigrationRecord]:
        table = _checked_identifier(table)
        with self._infrastructure("read migration history") as conn:
            rows = conn.execute(
                f"""
                SELECT version, script_name, script, applied_successful, executed_at
                FROM {table}
                ORDER BY version, id
                """
            ).fetchall()

        return [
            MigrationRecord(
                version=row[0],
                script_name=row[1],
                script=row[2],
                applied_successfully=bool(row[3]),
                executed_at=parse_timestamp(row[4]),
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Lease
    # ------------------------------------------------------------------

    def create_lease_table(self, table: str) -> None:
        table = _checked_identifier(table)
        with self._infrastructure("create lease table") as conn:
            conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    keyspace_name TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    owner_host TEXT NOT NULL,
                    target_version INTEGER NOT NULL,
                    acquired_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL
                )
            """)

    def insert_lease_if_absent(self, table: str, lease: Lease, ttl_seconds: int) -> Lease:
        # expires_at already carries ttl_seconds; SQLite has no native TTL
        table = _checked_identifier(table)
        if lease.expires_at is None:
            raise ValueError("SQLite leases require expires_at")

        with self._infrastructure("acquire migration lease") as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                # Claims past their expiry are no longer live
                conn.execute(
                    f"DELETE FROM {table} WHERE keyspace_name = ? AND expires_at <= ?",
                    (lease.keyspace, format_timestamp(lease.acquired_at)),
                )
                conn.execute(
                    f"""
                    INSERT OR IGNORE INTO {table}
                        (keyspace_name, owner_id, owner_host, target_version,
                         acquired_at, expires_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        lease.keyspace,
                        lease.owner_id,
                        lease.owner_host,
                        lease.target_version,
                        format_timestamp(lease.acquired_at),
                        format_timestamp(lease.expires_at),
                    ),
                )
                holder = self._select_lease(conn, table, lease.keyspace)
                conn.execute("COMMIT")
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise

        # The row exists after INSERT OR IGNORE, whoever wrote it
        return holder if holder is not None else lease

    def read_lease(self, table: str, keyspace: str) -> Lease | None:
        table = _checked_identifier(table)
        with self._infrastructure("read migration lease") as conn:
            return self._select_lease(conn, table, keyspace)

    def delete_lease(self, table: str, keyspace: str, owner_id: str) -> None:
        table = _checked_identifier(table)
        with self._infrastructure("release migration lease") as conn:
            conn.execute(
                f"DELETE FROM {table} WHERE keyspace_name = ? AND owner_id = ?",
                (keyspace, owner_id),
            )

    @staticmethod
    def _select_lease(conn: sqlite3.Connection, table: str, keyspace: str) -> Lease | None:
        row = conn.execute(
            f"""
            SELECT keyspace_name, owner_id, owner_host, target_version,
                   acquired_at, expires_at
            FROM {table}
            WHERE keyspace_name = ?
            """,
            (keyspace,),
        ).fetchone()
        if row is None:
            return None
        return Lease(
            keyspace=row[0],
            owner_id=row[1],
            owner_host=row[2],
            target_version=row[3],
            acquired_at=parse_timestamp(row[4]),
            expires_at=parse_timestamp(row[5]),
        )

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close the connection. Subsequent operations raise StoreUnavailableError."""
        if self._closed:
            return
        self._conn.close()
        self._closed = True
        logger.debug(f"Closed SQLite store {self._db_path}")
