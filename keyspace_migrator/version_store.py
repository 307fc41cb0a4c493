"""
Migration log and schema version tracking.

VersionStore owns the migration log table. Every execution attempt appends
one record (successful or not); records are never updated or deleted. The
current schema version is the highest version with a successful record, or
0 when there is none, so a failed attempt never lowers the version and a
later success for the same version raises it.

Example:
    >>> version_store = VersionStore(store, table_prefix="billing")
    >>> version_store.current_version()
    0
    >>> version_store.record(migration, success=True)
    >>> version_store.current_version()
    1
"""

import logging

from keyspace_migrator.models import Consistency, Migration, MigrationRecord
from keyspace_migrator.store.base import MIGRATION_TABLE, Store, prefixed_table_name
from keyspace_migrator.utils.time import utc_now

logger = logging.getLogger(__name__)


class VersionStore:
    """
    Reads and appends the migration log of one store session.

    The log table is created on construction if it is missing.

    Args:
        store: Session shared with the rest of the migration run
        table_prefix: Optional prefix namespacing the log table
        consistency: Level for version reads and log writes. Must be strong
            enough (QUORUM or above on a cluster) to observe migrations
            another process just finished.

    Raises:
        StoreUnavailableError: If the store cannot be reached
    """

    def __init__(
        self,
        store: Store,
        table_prefix: str = "",
        consistency: Consistency = Consistency.QUORUM,
    ):
        self._store = store
        self._consistency = consistency
        self.table_name = prefixed_table_name(MIGRATION_TABLE, table_prefix)
        self.ensure_schema()

    @property
    def keyspace(self) -> str:
        return self._store.namespace

    @property
    def consistency(self) -> Consistency:
        return self._consistency

    def ensure_schema(self) -> None:
        """Create the log table if it is absent; no-op otherwise."""
        if self._store.table_exists(self.table_name):
            return
        logger.info(
            f"Creating migration log table {self.table_name}",
            extra={"context": {"keyspace": self.keyspace}},
        )
        self._store.create_migration_table(self.table_name)

    def current_version(self) -> int:
        """Return the highest successfully applied version, or 0."""
        version = self._store.max_successful_version(self.table_name, self._consistency)
        return version if version is not None else 0

    def record(self, migration: Migration, success: bool) -> None:
        """
        Append one log record for an execution attempt, stamped with the
        current UTC time. Duplicate versions are expected under retries.
        """
        record = MigrationRecord.for_attempt(migration, success, utc_now())
        self._store.insert_migration_record(self.table_name, record, self._consistency)
        logger.debug(
            f"Recorded {'successful' if success else 'failed'} attempt of "
            f"{migration.script_name}",
            extra={"context": {"version": migration.version, "success": success}},
        )

    def history(self) -> list[MigrationRecord]:
        """Return every log record ordered by version, then execution time."""
        return self._store.migration_records(self.table_name, self._consistency)
