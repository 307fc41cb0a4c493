"""
Top-level migration controller.

MigrationTask compares the schema version recorded in the store with the
latest version the repository offers, and if the store is behind applies
the pending migrations in order. With consensus enabled, only the process
that wins the migration lease does the work; the others skip.

States:
    IDLE -> CHECKING_VERSION -> UP_TO_DATE
                             -> ACQUIRING_LEASE -> LEASE_DENIED
                                                -> MIGRATING -> DONE
    every path ends in CLOSED: the store session is closed exactly once, at
    the end of migrate(), whichever way it exits.

Example:
    >>> store = SQLiteStore("./app.db")
    >>> task = MigrationTask(store, ScriptDirectoryRepository("./migrations"))
    >>> result = task.migrate()
    >>> result.outcome, result.final_version
    (<TaskState.DONE: 'done'>, 3)
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from keyspace_migrator.exceptions import MigrationFailedError
from keyspace_migrator.executor import MigrationExecutor
from keyspace_migrator.lease import DEFAULT_LEASE_TTL_SECONDS, LeaseCoordinator
from keyspace_migrator.models import Consistency, FailurePolicy, Migration
from keyspace_migrator.repository import MigrationRepository
from keyspace_migrator.store.base import Store
from keyspace_migrator.version_store import VersionStore

if TYPE_CHECKING:
    from keyspace_migrator.config.schema import MigrationSettings

logger = logging.getLogger(__name__)


class TaskState(str, Enum):
    IDLE = "idle"
    CHECKING_VERSION = "checking_version"
    UP_TO_DATE = "up_to_date"
    ACQUIRING_LEASE = "acquiring_lease"
    LEASE_DENIED = "lease_denied"
    MIGRATING = "migrating"
    DONE = "done"
    CLOSED = "closed"


@dataclass
class FailedMigration:
    """A migration skipped under FailurePolicy.CONTINUE, with its error."""

    migration: Migration
    error: MigrationFailedError


@dataclass
class MigrationResult:
    """
    Outcome of one migrate() call.

    Attributes:
        outcome: UP_TO_DATE, LEASE_DENIED or DONE
        starting_version: Schema version read before any work
        final_version: Schema version after the run
        applied: Migrations applied successfully, in order
        failed: Migrations that failed and were skipped (CONTINUE policy)
    """

    outcome: TaskState
    starting_version: int
    final_version: int
    applied: list[Migration] = field(default_factory=list)
    failed: list[FailedMigration] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.failed


class MigrationTask:
    """
    Drives one migration run over a store session it owns.

    The task is single use: migrate() closes the store session, so a second
    call fails with StoreUnavailableError. Open a new session for a new run.

    Args:
        store: Session to migrate; closed by migrate()
        repository: Supplier of available migrations
        consensus: Let only the lease holder migrate (for concurrent starts)
        failure_policy: STRICT aborts on the first failure, CONTINUE skips it
        consistency: Level for statements and version reads
        table_prefix: Optional prefix for the log and lease tables
        lease_ttl_seconds: Lifetime of a lease claim
        owner_id: Lease owner identity (defaults to a random UUID)

    Raises:
        StoreUnavailableError: If the log (or lease) table cannot be prepared;
            the store session is closed before the error propagates
    """

    def __init__(
        self,
        store: Store,
        repository: MigrationRepository,
        *,
        consensus: bool = False,
        failure_policy: FailurePolicy = FailurePolicy.STRICT,
        consistency: Consistency = Consistency.QUORUM,
        table_prefix: str = "",
        lease_ttl_seconds: int = DEFAULT_LEASE_TTL_SECONDS,
        owner_id: str | None = None,
    ):
        self._store = store
        self._repository = repository
        self._failure_policy = failure_policy
        self.state = TaskState.IDLE

        try:
            self.version_store = VersionStore(store, table_prefix, consistency)
            self.lease = (
                LeaseCoordinator(
                    store,
                    table_prefix=table_prefix,
                    ttl_seconds=lease_ttl_seconds,
                    owner_id=owner_id,
                )
                if consensus
                else None
            )
        except Exception:
            self._close_after_error()
            raise

        self.executor = MigrationExecutor(store, self.version_store, consistency)

    @classmethod
    def from_settings(
        cls,
        store: Store,
        repository: MigrationRepository,
        settings: "MigrationSettings",
        owner_id: str | None = None,
    ) -> "MigrationTask":
        """Build a task from the 'migration' section of the configuration."""
        return cls(
            store,
            repository,
            consensus=settings.consensus,
            failure_policy=settings.failure_policy,
            consistency=settings.consistency_level,
            table_prefix=settings.table_prefix,
            lease_ttl_seconds=settings.lease_ttl_seconds,
            owner_id=owner_id,
        )

    @property
    def keyspace(self) -> str:
        return self._store.namespace

    @property
    def consensus(self) -> bool:
        return self.lease is not None

    @property
    def failure_policy(self) -> FailurePolicy:
        return self._failure_policy

    def migrate(self) -> MigrationResult:
        """
        Bring the store up to the repository's latest version.

        Returns:
            MigrationResult describing what happened

        Raises:
            MigrationFailedError: Under STRICT policy, for the first failing
                migration; later migrations are not attempted
            StoreUnavailableError: If the store fails outside of a migration
                statement
        """
        try:
            result = self._run()
        except BaseException:
            self._close_after_error()
            raise
        self._close()
        return result

    def _run(self) -> MigrationResult:
        self.state = TaskState.CHECKING_VERSION
        latest_version = self._repository.latest_version()
        starting_version = self.version_store.current_version()

        if starting_version >= latest_version:
            return self._up_to_date(starting_version, starting_version)

        if self.lease is None:
            return self._migrate_pending(starting_version, latest_version)

        self.state = TaskState.ACQUIRING_LEASE
        with self.lease.hold(latest_version) as acquired:
            if not acquired:
                self.state = TaskState.LEASE_DENIED
                logger.info(
                    f"Another process is migrating keyspace {self.keyspace}; skipping",
                    extra={"context": {"target_version": latest_version}},
                )
                return MigrationResult(
                    outcome=TaskState.LEASE_DENIED,
                    starting_version=starting_version,
                    final_version=starting_version,
                )
            return self._migrate_pending(starting_version, latest_version)

    def _migrate_pending(self, starting_version: int, latest_version: int) -> MigrationResult:
        # Another process may have finished since the first check
        current_version = self.version_store.current_version()
        if current_version >= latest_version:
            return self._up_to_date(starting_version, current_version)

        self.state = TaskState.MIGRATING
        pending = self._repository.migrations_since(current_version)
        logger.info(
            f"Migrating keyspace {self.keyspace} from version {current_version} "
            f"to {latest_version}",
            extra={"context": {"pending": len(pending)}},
        )

        result = MigrationResult(
            outcome=TaskState.DONE,
            starting_version=starting_version,
            final_version=current_version,
        )
        for migration in pending:
            try:
                self.executor.execute(migration)
            except MigrationFailedError as e:
                result.failed.append(FailedMigration(migration, e))
                if not self._failure_policy.continues_after_failure():
                    raise
                logger.warning(
                    f"Failed to migrate script {migration.script_name}. "
                    f"Reason: {e.cause}",
                    extra={
                        "context": {
                            "version": migration.version,
                            "statement": e.statement,
                        }
                    },
                )
            else:
                result.applied.append(migration)

        result.final_version = self.version_store.current_version()
        self.state = TaskState.DONE
        logger.info(
            f"Migrated keyspace {self.keyspace} to version {result.final_version}",
            extra={
                "context": {
                    "applied": len(result.applied),
                    "failed": len(result.failed),
                }
            },
        )
        return result

    def _up_to_date(self, starting_version: int, current_version: int) -> MigrationResult:
        self.state = TaskState.UP_TO_DATE
        logger.info(
            f"Keyspace {self.keyspace} is already up to date at version {current_version}"
        )
        return MigrationResult(
            outcome=TaskState.UP_TO_DATE,
            starting_version=starting_version,
            final_version=current_version,
        )

    def _close(self) -> None:
        self._store.close()
        self.state = TaskState.CLOSED

    def _close_after_error(self) -> None:
        """Close the session while another error propagates; close errors are logged."""
        try:
            self._close()
        except Exception:
            logger.exception(f"Failed to close session on keyspace {self.keyspace}")
