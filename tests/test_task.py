"""
Tests for task.py (MigrationTask).

End-to-end runs against SQLite stores. Tests cover:
- Applying every pending migration in order
- Idempotent re-runs (no statements, no log writes)
- Consensus: lease denial, re-check after acquisition, lease release,
  concurrent tasks racing for one database
- STRICT and CONTINUE failure policies
- Durability across sessions
- The store session being closed on every exit path
"""

import threading

import pytest

from keyspace_migrator.config.schema import MigrationSettings
from keyspace_migrator.exceptions import MigrationFailedError, StoreUnavailableError
from keyspace_migrator.lease import LeaseCoordinator
from keyspace_migrator.models import Consistency, FailurePolicy, Migration
from keyspace_migrator.repository import InMemoryRepository
from keyspace_migrator.store import SQLiteStore
from keyspace_migrator.task import MigrationTask, TaskState
from keyspace_migrator.version_store import VersionStore


class CountingStore(SQLiteStore):
    """SQLiteStore counting statement executions and log/lease writes."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.executed = []
        self.writes = 0
        self.close_calls = 0

    def execute(self, statement, consistency):
        self.executed.append(statement)
        return super().execute(statement, consistency)

    def create_migration_table(self, table):
        self.writes += 1
        super().create_migration_table(table)

    def insert_migration_record(self, table, record, consistency):
        self.writes += 1
        super().insert_migration_record(table, record, consistency)

    def create_lease_table(self, table):
        self.writes += 1
        super().create_lease_table(table)

    def insert_lease_if_absent(self, table, lease, ttl_seconds):
        self.writes += 1
        return super().insert_lease_if_absent(table, lease, ttl_seconds)

    def close(self):
        self.close_calls += 1
        super().close()


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "schema.db"


def _open(db_path):
    return CountingStore(db_path, namespace="billing")


def _migrations(count):
    return [
        Migration(v, f"{v:03d}_table_{v}.cql", f"CREATE TABLE table_{v} (id INTEGER PRIMARY KEY);")
        for v in range(1, count + 1)
    ]


def _current_version(db_path):
    store = SQLiteStore(db_path)
    try:
        return VersionStore(store).current_version()
    finally:
        store.close()


def _history(db_path):
    store = SQLiteStore(db_path)
    try:
        return VersionStore(store).history()
    finally:
        store.close()


A = Migration(1, "001_a.cql", "CREATE TABLE a (id INTEGER PRIMARY KEY);")
B = Migration(2, "002_b.cql", "CREATE TABLE b (id INTEGER PRIMARY KEY);\nCREATE TABLE broken (;")
C = Migration(3, "003_c.cql", "CREATE TABLE c (id INTEGER PRIMARY KEY);")


# ============================================================================
# Applying migrations
# ============================================================================


def test_applies_all_pending_migrations(db_path):
    store = _open(db_path)
    migrations = _migrations(3)
    task = MigrationTask(store, InMemoryRepository(migrations))

    result = task.migrate()

    assert result.outcome is TaskState.DONE
    assert result.starting_version == 0
    assert result.final_version == 3
    assert result.applied == migrations
    assert result.succeeded
    assert len(store.executed) == 3
    assert [r.version for r in _history(db_path)] == [1, 2, 3]
    assert all(r.applied_successfully for r in _history(db_path))


def test_only_migrations_after_current_version_run(db_path):
    migrations = _migrations(3)
    MigrationTask(_open(db_path), InMemoryRepository(migrations[:1])).migrate()

    store = _open(db_path)
    result = MigrationTask(store, InMemoryRepository(migrations)).migrate()

    assert result.starting_version == 1
    assert [m.version for m in result.applied] == [2, 3]
    assert store.executed == [m.script.rstrip(";") for m in migrations[1:]]


def test_second_run_is_a_noop(db_path):
    repository = InMemoryRepository(_migrations(3))
    MigrationTask(_open(db_path), repository).migrate()

    store = _open(db_path)
    result = MigrationTask(store, repository).migrate()

    assert result.outcome is TaskState.UP_TO_DATE
    assert result.final_version == 3
    assert store.executed == []
    assert store.writes == 0


def test_empty_repository_is_up_to_date(db_path):
    store = _open(db_path)

    result = MigrationTask(store, InMemoryRepository()).migrate()

    assert result.outcome is TaskState.UP_TO_DATE
    assert result.final_version == 0
    assert store.executed == []


def test_store_ahead_of_repository_is_up_to_date(db_path):
    MigrationTask(_open(db_path), InMemoryRepository(_migrations(3))).migrate()

    result = MigrationTask(_open(db_path), InMemoryRepository(_migrations(2))).migrate()

    assert result.outcome is TaskState.UP_TO_DATE
    assert result.final_version == 3


def test_applied_migrations_survive_reopen(db_path):
    MigrationTask(_open(db_path), InMemoryRepository(_migrations(4))).migrate()

    assert _current_version(db_path) == 4


def test_table_prefix_namespaces_log(db_path):
    store = _open(db_path)
    task = MigrationTask(store, InMemoryRepository(_migrations(1)), table_prefix="billing")

    task.migrate()

    assert task.version_store.table_name == "billing_schema_migration"
    check = SQLiteStore(db_path)
    assert check.table_exists("billing_schema_migration")
    assert not check.table_exists("schema_migration")
    check.close()


# ============================================================================
# Failure policies
# ============================================================================


def test_strict_policy_stops_at_first_failure(db_path):
    store = _open(db_path)
    task = MigrationTask(store, InMemoryRepository([A, B, C]))

    with pytest.raises(MigrationFailedError) as exc_info:
        task.migrate()

    error = exc_info.value
    assert error.script_name == "002_b.cql"
    assert error.statement == "CREATE TABLE broken ("
    assert not any("CREATE TABLE c" in s for s in store.executed)
    assert _current_version(db_path) == 1
    assert [(r.version, r.applied_successfully) for r in _history(db_path)] == [
        (1, True),
        (2, False),
    ]


def test_continue_policy_skips_failures(db_path):
    store = _open(db_path)
    task = MigrationTask(
        store, InMemoryRepository([A, B, C]), failure_policy=FailurePolicy.CONTINUE
    )

    result = task.migrate()

    assert result.outcome is TaskState.DONE
    assert result.final_version == 3
    assert result.applied == [A, C]
    assert [f.migration for f in result.failed] == [B]
    assert result.failed[0].error.statement == "CREATE TABLE broken ("
    assert not result.succeeded
    assert [(r.version, r.applied_successfully) for r in _history(db_path)] == [
        (1, True),
        (2, False),
        (3, True),
    ]


def test_continue_policy_logs_failure(db_path, caplog):
    task = MigrationTask(
        _open(db_path), InMemoryRepository([A, B, C]), failure_policy=FailurePolicy.CONTINUE
    )

    with caplog.at_level("WARNING", logger="keyspace_migrator.task"):
        task.migrate()

    assert "Failed to migrate script 002_b.cql. Reason:" in caplog.text


def test_failed_version_is_retried_by_next_run(db_path):
    broken = Migration(1, "001_a.cql", "CREATE TABLE broken (;")
    with pytest.raises(MigrationFailedError):
        MigrationTask(_open(db_path), InMemoryRepository([broken])).migrate()

    result = MigrationTask(_open(db_path), InMemoryRepository([A])).migrate()

    assert result.applied == [A]
    assert _current_version(db_path) == 1


# ============================================================================
# Consensus
# ============================================================================


def test_consensus_run_releases_lease(db_path):
    store = _open(db_path)
    task = MigrationTask(store, InMemoryRepository(_migrations(2)), consensus=True)

    result = task.migrate()

    assert task.consensus
    assert result.outcome is TaskState.DONE
    check = SQLiteStore(db_path)
    assert check.read_lease(task.lease.table_name, "billing") is None
    check.close()


def test_lease_denied_when_another_process_holds_it(db_path):
    other = SQLiteStore(db_path, namespace="billing")
    LeaseCoordinator(other, owner_id="other-process").try_acquire(2)

    store = _open(db_path)
    task = MigrationTask(store, InMemoryRepository(_migrations(2)), consensus=True)
    result = task.migrate()

    assert result.outcome is TaskState.LEASE_DENIED
    assert result.final_version == 0
    assert store.executed == []
    assert task.state is TaskState.CLOSED
    assert store.closed
    # The other process's claim is untouched
    assert other.read_lease(task.lease.table_name, "billing").owner_id == "other-process"
    other.close()


def test_version_rechecked_after_acquiring_lease(db_path):
    migrations = _migrations(2)
    store = _open(db_path)
    task = MigrationTask(store, InMemoryRepository(migrations), consensus=True)

    acquire = task.lease.try_acquire

    def acquire_after_peer_finished(target_version):
        # Another process completes the run while this one waits for the lease
        peer = SQLiteStore(db_path)
        peer_versions = VersionStore(peer)
        for migration in migrations:
            peer_versions.record(migration, success=True)
        peer.close()
        return acquire(target_version)

    task.lease.try_acquire = acquire_after_peer_finished

    result = task.migrate()

    assert result.outcome is TaskState.UP_TO_DATE
    assert result.starting_version == 0
    assert result.final_version == 2
    assert store.executed == []


def test_lease_released_after_strict_failure(db_path):
    task = MigrationTask(_open(db_path), InMemoryRepository([A, B]), consensus=True)

    with pytest.raises(MigrationFailedError):
        task.migrate()

    check = SQLiteStore(db_path)
    assert check.read_lease(task.lease.table_name, "billing") is None
    check.close()


def test_lease_release_failure_does_not_mask_migration_error(db_path, caplog):
    class FailingReleaseStore(CountingStore):
        def delete_lease(self, table, keyspace, owner_id):
            raise StoreUnavailableError("release failed")

    bad = Migration(1, "001_bad.cql", "CREATE TABLE broken (;")
    store = FailingReleaseStore(db_path, namespace="billing")
    task = MigrationTask(store, InMemoryRepository([bad]), consensus=True)

    with pytest.raises(MigrationFailedError) as exc_info:
        task.migrate()

    assert exc_info.value.script_name == "001_bad.cql"
    assert exc_info.value.statement == "CREATE TABLE broken ("
    assert "Failed to release migration lease" in caplog.text
    assert store.close_calls == 1


def test_concurrent_tasks_apply_migrations_once(db_path):
    workers = 4
    migrations = _migrations(3)
    barrier = threading.Barrier(workers)
    results = []
    errors = []
    lock = threading.Lock()

    def run():
        # sqlite3 connections belong to the thread that opened them
        try:
            store = _open(db_path)
            task = MigrationTask(store, InMemoryRepository(migrations), consensus=True)
            barrier.wait()
            result = task.migrate()
        except Exception as e:
            with lock:
                errors.append(e)
            return
        with lock:
            results.append((result, store.executed))

    threads = [threading.Thread(target=run) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert errors == []
    assert len(results) == workers
    done = [r for r, _ in results if r.outcome is TaskState.DONE]
    assert len(done) == 1
    assert [m.version for m in done[0].applied] == [1, 2, 3]
    assert {r.outcome for r, _ in results} <= {
        TaskState.DONE,
        TaskState.LEASE_DENIED,
        TaskState.UP_TO_DATE,
    }
    assert sum(len(executed) for _, executed in results) == 3
    assert _current_version(db_path) == 3
    assert [r.version for r in _history(db_path)] == [1, 2, 3]


def test_without_consensus_no_lease_table(db_path):
    task = MigrationTask(_open(db_path), InMemoryRepository(_migrations(1)))

    task.migrate()

    assert task.lease is None
    check = SQLiteStore(db_path)
    assert not check.table_exists("schema_migration_leader")
    check.close()


# ============================================================================
# Session lifecycle
# ============================================================================


@pytest.mark.parametrize(
    "migrations",
    [[], _migrations(2)],
    ids=["up_to_date", "migrated"],
)
def test_store_closed_once_after_success(db_path, migrations):
    store = _open(db_path)
    task = MigrationTask(store, InMemoryRepository(migrations))

    task.migrate()

    assert store.close_calls == 1
    assert task.state is TaskState.CLOSED


def test_store_closed_after_failure(db_path):
    store = _open(db_path)
    task = MigrationTask(store, InMemoryRepository([B]))

    with pytest.raises(MigrationFailedError):
        task.migrate()

    assert store.close_calls == 1
    assert store.closed
    assert task.state is TaskState.CLOSED


def test_task_is_single_use(db_path):
    task = MigrationTask(_open(db_path), InMemoryRepository(_migrations(1)))
    task.migrate()

    with pytest.raises(StoreUnavailableError):
        task.migrate()


def test_store_closed_when_log_table_cannot_be_prepared(db_path):
    class UnreachableStore(CountingStore):
        def table_exists(self, table):
            raise StoreUnavailableError("store is down")

    store = UnreachableStore(db_path)

    with pytest.raises(StoreUnavailableError, match="store is down"):
        MigrationTask(store, InMemoryRepository(_migrations(1)))

    assert store.close_calls == 1


def test_close_error_does_not_mask_migration_error(db_path, caplog):
    class FailingCloseStore(CountingStore):
        def close(self):
            super().close()
            raise StoreUnavailableError("close failed")

    task = MigrationTask(FailingCloseStore(db_path), InMemoryRepository([B]))

    with pytest.raises(MigrationFailedError):
        task.migrate()

    assert "Failed to close session" in caplog.text


# ============================================================================
# Configuration
# ============================================================================


def test_from_settings(db_path):
    settings = MigrationSettings(
        consensus=True,
        fail_gracefully=True,
        consistency_level="local_quorum",
        table_prefix="billing",
        lease_ttl_seconds=42,
    )

    task = MigrationTask.from_settings(
        _open(db_path), InMemoryRepository(), settings, owner_id="me"
    )

    assert task.consensus
    assert task.failure_policy is FailurePolicy.CONTINUE
    assert task.version_store.consistency is Consistency.LOCAL_QUORUM
    assert task.version_store.table_name == "billing_schema_migration"
    assert task.lease.ttl_seconds == 42
    assert task.lease.owner_id == "me"
    assert task.keyspace == "billing"
    task.migrate()
