"""
Apache Cassandra store backend (requires the ``cassandra`` extra).

Wraps a host-supplied ``cassandra.cluster.Cluster``: the backend opens its own
keyspace-scoped session and closes only that session, leaving the cluster
and its connection pool to the host.

- Statements run as SimpleStatements at the configured consistency level
- Schema agreement is read from ``ResultSet.response_future.is_schema_agreed``;
  how long the driver waits is the cluster's ``max_schema_agreement_wait``
- The lease is a lightweight transaction (``IF NOT EXISTS ... USING TTL``),
  which Cassandra runs through Paxos, so concurrent claims are linearizable
- Releasing the lease is conditional on ownership (``IF owner_id = ...``), so
  an owner whose claim already expired cannot delete a successor's claim

Example usage:
    >>> from cassandra.cluster import Cluster
    >>> from keyspace_migrator.store.cassandra import CassandraStore
    >>> cluster = Cluster(["127.0.0.1"])
    >>> store = CassandraStore(cluster, "billing")
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from cassandra import ConsistencyLevel
from cassandra.query import SimpleStatement

from keyspace_migrator.exceptions import StoreUnavailableError
from keyspace_migrator.models import Consistency, ExecutionResult, Lease, MigrationRecord
from keyspace_migrator.utils.time import ensure_utc

logger = logging.getLogger(__name__)

CREATE_MIGRATION_TABLE = """
    CREATE TABLE IF NOT EXISTS {table} (
        applied_successful boolean,
        version int,
        script_name varchar,
        script text,
        executed_at timestamp,
        PRIMARY KEY (applied_successful, version, executed_at)
    ) WITH CLUSTERING ORDER BY (version DESC, executed_at DESC)
"""

INSERT_MIGRATION = (
    "INSERT INTO {table} (applied_successful, version, script_name, script, executed_at)"
    " VALUES (%s, %s, %s, %s, %s)"
)

VERSION_QUERY = (
    "SELECT version FROM {table} WHERE applied_successful = True"
    " ORDER BY version DESC LIMIT 1"
)

HISTORY_QUERY = (
    "SELECT applied_successful, version, script_name, script, executed_at FROM {table}"
)

CREATE_LEASE_TABLE = """
    CREATE TABLE IF NOT EXISTS {table} (
        keyspace_name text PRIMARY KEY,
        owner_id text,
        owner_host text,
        target_version int,
        acquired_at timestamp,
        expires_at timestamp
    )
"""

TAKE_LEASE = (
    "INSERT INTO {table}"
    " (keyspace_name, owner_id, owner_host, target_version, acquired_at, expires_at)"
    " VALUES (%s, %s, %s, %s, %s, %s) IF NOT EXISTS USING TTL %s"
)

READ_LEASE = (
    "SELECT keyspace_name, owner_id, owner_host, target_version, acquired_at, expires_at"
    " FROM {table} WHERE keyspace_name = %s"
)

RELEASE_LEASE = "DELETE FROM {table} WHERE keyspace_name = %s IF owner_id = %s"


def to_driver_consistency(consistency: Consistency) -> int:
    """Map a Consistency to the driver's ConsistencyLevel constant."""
    return getattr(ConsistencyLevel, consistency.value)


class CassandraStore:
    """
    Store backed by a Cassandra keyspace.

    Args:
        cluster: Connected or connectable cassandra.cluster.Cluster
        keyspace: Existing keyspace to migrate (provisioning is the host's job)
        lease_consistency: Consistency for the commit phase of lease writes
        owns_cluster: Also shut the cluster down on close(); only for
            clusters created on the store's behalf (see open_store())

    Raises:
        StoreUnavailableError: If no session can be opened on the keyspace
    """

    def __init__(
        self,
        cluster: Any,
        keyspace: str,
        lease_consistency: Consistency = Consistency.QUORUM,
        owns_cluster: bool = False,
    ):
        self.namespace = keyspace
        self._cluster = cluster
        self._lease_consistency = lease_consistency
        self._owns_cluster = owns_cluster
        self._closed = False

        try:
            self._session = cluster.connect(keyspace)
        except Exception as e:
            raise StoreUnavailableError(
                f"Unable to open a session on keyspace {keyspace}: {e}"
            ) from e

    @property
    def closed(self) -> bool:
        return self._closed

    @contextmanager
    def _infrastructure(self, operation: str) -> Iterator[Any]:
        if self._closed:
            raise StoreUnavailableError(
                f"Cannot {operation}: session on keyspace {self.namespace} is closed"
            )
        try:
            yield self._session
        except StoreUnavailableError:
            raise
        except Exception as e:
            raise StoreUnavailableError(
                f"Failed to {operation} in keyspace {self.namespace}: {e}"
            ) from e

    # ------------------------------------------------------------------
    # Statement execution
    # ------------------------------------------------------------------

    def execute(self, statement: str, consistency: Consistency) -> ExecutionResult:
        if self._closed:
            raise StoreUnavailableError(
                f"Cannot execute statement: session on keyspace {self.namespace} is closed"
            )
        result = self._session.execute(
            SimpleStatement(statement, consistency_level=to_driver_consistency(consistency))
        )
        return ExecutionResult(
            schema_in_agreement=bool(result.response_future.is_schema_agreed)
        )

    def table_exists(self, table: str) -> bool:
        with self._infrastructure("inspect schema"):
            keyspace = self._cluster.metadata.keyspaces.get(self.namespace)
            if keyspace is None:
                raise StoreUnavailableError(f"Keyspace {self.namespace} does not exist")
            return table in keyspace.tables

    # ------------------------------------------------------------------
    # Migration log
    # ------------------------------------------------------------------

    def create_migration_table(self, table: str) -> None:
        with self._infrastructure("create migration table") as session:
            session.execute(CREATE_MIGRATION_TABLE.format(table=table))

    def insert_migration_record(
        self, table: str, record: MigrationRecord, consistency: Consistency
    ) -> None:
        with self._infrastructure("record migration") as session:
            session.execute(
                SimpleStatement(
                    INSERT_MIGRATION.format(table=table),
                    consistency_level=to_driver_consistency(consistency),
                ),
                (
                    record.applied_successfully,
                    record.version,
                    record.script_name,
                    record.script,
                    record.executed_at,
                ),
            )

    def max_successful_version(self, table: str, consistency: Consistency) -> int | None:
        with self._infrastructure("read schema version") as session:
            row = session.execute(
                SimpleStatement(
                    VERSION_QUERY.format(table=table),
                    consistency_level=to_driver_consistency(consistency),
                )
            ).one()
        return None if row is None else row.version

    def migration_records(
        self, table: str, consistency: Consistency
    ) -> list[MigrationRecord]:
        with self._infrastructure("read migration history") as session:
            rows = list(
                session.execute(
                    SimpleStatement(
                        HISTORY_QUERY.format(table=table),
                        consistency_level=to_driver_consistency(consistency),
                    )
                )
            )

        records = [
            MigrationRecord(
                version=row.version,
                script_name=row.script_name,
                script=row.script,
                applied_successfully=bool(row.applied_successful),
                executed_at=ensure_utc(row.executed_at),
            )
            for row in rows
        ]
        return sorted(records, key=lambda r: (r.version, r.executed_at))

    # ------------------------------------------------------------------
    # Lease
    # ------------------------------------------------------------------

    def create_lease_table(self, table: str) -> None:
        with self._infrastructure("create lease table") as session:
            session.execute(CREATE_LEASE_TABLE.format(table=table))

    def insert_lease_if_absent(self, table: str, lease: Lease, ttl_seconds: int) -> Lease:
        with self._infrastructure("acquire migration lease") as session:
            result = session.execute(
                SimpleStatement(
                    TAKE_LEASE.format(table=table),
                    consistency_level=to_driver_consistency(self._lease_consistency),
                    serial_consistency_level=ConsistencyLevel.SERIAL,
                ),
                (
                    lease.keyspace,
                    lease.owner_id,
                    lease.owner_host,
                    lease.target_version,
                    lease.acquired_at,
                    lease.expires_at,
                    ttl_seconds,
                ),
            )
            if result.was_applied:
                return lease

            # A rejected LWT returns the row that blocked it
            holder = self._row_to_lease(result.one())
        if holder is None:
            holder = self.read_lease(table, lease.keyspace)
        return holder if holder is not None else lease

    def read_lease(self, table: str, keyspace: str) -> Lease | None:
        with self._infrastructure("read migration lease") as session:
            row = session.execute(
                SimpleStatement(
                    READ_LEASE.format(table=table),
                    consistency_level=ConsistencyLevel.SERIAL,
                ),
                (keyspace,),
            ).one()
        return self._row_to_lease(row)

    def delete_lease(self, table: str, keyspace: str, owner_id: str) -> None:
        with self._infrastructure("release migration lease") as session:
            session.execute(
                SimpleStatement(
                    RELEASE_LEASE.format(table=table),
                    consistency_level=to_driver_consistency(self._lease_consistency),
                    serial_consistency_level=ConsistencyLevel.SERIAL,
                ),
                (keyspace, owner_id),
            )

    @staticmethod
    def _row_to_lease(row: Any) -> Lease | None:
        if row is None or getattr(row, "owner_id", None) is None:
            return None
        expires_at = getattr(row, "expires_at", None)
        return Lease(
            keyspace=row.keyspace_name,
            owner_id=row.owner_id,
            owner_host=row.owner_host or "",
            target_version=row.target_version,
            acquired_at=ensure_utc(row.acquired_at),
            expires_at=ensure_utc(expires_at) if expires_at is not None else None,
        )

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Shut down this store's session; the cluster stays open unless owned."""
        if self._closed:
            return
        try:
            self._session.shutdown()
        finally:
            self._closed = True
            if self._owns_cluster:
                self._cluster.shutdown()
        logger.debug(f"Closed session on keyspace {self.namespace}")
