"""
Store abstraction for keyspace-migrator.

The migrator needs four things from the replicated store it migrates:

1. Statement execution with a post-execution schema agreement signal
2. A strongly consistent read path for the migration log
3. A conditional ("only if absent") write for the migration lease
4. A keyspace-scoped session that can be closed on its own

Store is the Protocol capturing those needs. VersionStore and
LeaseCoordinator layer policy on top of it; backends (SQLiteStore,
CassandraStore) only translate the operations into their dialect.

Error contract for implementations:
- execute() raises the driver's own exception for a failing statement, so
  MigrationExecutor can record it as a migration failure
- every other operation raises StoreUnavailableError when the store cannot
  be reached or the driver fails
"""

from typing import Protocol

from keyspace_migrator.models import Consistency, ExecutionResult, Lease, MigrationRecord

MIGRATION_TABLE = "schema_migration"
LEASE_TABLE = "schema_migration_leader"


def prefixed_table_name(table: str, prefix: str | None) -> str:
    """
    Return table name namespaced by an optional prefix.

    Example:
        >>> prefixed_table_name("schema_migration", "billing")
        'billing_schema_migration'
        >>> prefixed_table_name("schema_migration", "")
        'schema_migration'
    """
    if not prefix:
        return table
    return f"{prefix}_{table}"


class Store(Protocol):
    """
    Session on the store that is being migrated.

    Attributes:
        namespace: Keyspace (or equivalent schema container) the session is
            scoped to
    """

    namespace: str

    def execute(self, statement: str, consistency: Consistency) -> ExecutionResult:
        """Execute one migration statement and report schema agreement."""
        ...

    def table_exists(self, table: str) -> bool: ...

    def create_migration_table(self, table: str) -> None: ...

    def insert_migration_record(
        self, table: str, record: MigrationRecord, consistency: Consistency
    ) -> None: ...

    def max_successful_version(self, table: str, consistency: Consistency) -> int | None:
        """Return the highest successfully applied version, None if there is none."""
        ...

    def migration_records(
        self, table: str, consistency: Consistency
    ) -> list[MigrationRecord]: ...

    def create_lease_table(self, table: str) -> None: ...

    def insert_lease_if_absent(self, table: str, lease: Lease, ttl_seconds: int) -> Lease:
        """
        Conditionally write lease, only if no live claim exists for its keyspace.

        Returns:
            The claim holding the row after the write: lease itself when the
            write applied, otherwise the live claim of the current holder.
        """
        ...

    def read_lease(self, table: str, keyspace: str) -> Lease | None: ...

    def delete_lease(self, table: str, keyspace: str, owner_id: str) -> None:
        """Delete the claim for keyspace if (and only if) owner_id holds it."""
        ...

    def close(self) -> None:
        """Close the session. Safe to call more than once."""
        ...
