"""
keyspace-migrator: versioned schema migrations for Cassandra keyspaces.

Embedding hosts build a store session, a repository and a MigrationTask:

    >>> from keyspace_migrator import MigrationTask, ScriptDirectoryRepository, SQLiteStore
    >>> task = MigrationTask(SQLiteStore("./app.db"), ScriptDirectoryRepository("./migrations"))
    >>> task.migrate().final_version
    3
"""

__version__ = "0.1.0"

from keyspace_migrator.exceptions import (
    MigrationFailedError,
    MigratorError,
    SchemaAgreementError,
    StoreUnavailableError,
)
from keyspace_migrator.executor import MigrationExecutor
from keyspace_migrator.lease import LeaseCoordinator
from keyspace_migrator.models import Consistency, FailurePolicy, Lease, Migration
from keyspace_migrator.repository import InMemoryRepository, ScriptDirectoryRepository
from keyspace_migrator.statements import StatementSplitter
from keyspace_migrator.store import SQLiteStore, open_store
from keyspace_migrator.task import MigrationResult, MigrationTask, TaskState
from keyspace_migrator.version_store import VersionStore

__all__ = [
    "Consistency",
    "FailurePolicy",
    "InMemoryRepository",
    "Lease",
    "LeaseCoordinator",
    "Migration",
    "MigrationExecutor",
    "MigrationFailedError",
    "MigrationResult",
    "MigrationTask",
    "MigratorError",
    "SQLiteStore",
    "ScriptDirectoryRepository",
    "SchemaAgreementError",
    "StatementSplitter",
    "StoreUnavailableError",
    "TaskState",
    "VersionStore",
    "__version__",
    "open_store",
]
