"""
Execution of a single migration against the store.

MigrationExecutor splits a migration's script into statements and runs them
strictly in order. After each statement it checks that the cluster agreed on
the resulting schema before moving on, because the next statement may depend
on the change. Every attempt writes exactly one migration log record.

Atomicity is per statement only. When statement N fails, statements 1..N-1
stay applied and nothing is rolled back; migration scripts should therefore
be forward-only and safe to re-apply (CREATE ... IF NOT EXISTS and friends).
"""

import logging

from keyspace_migrator.exceptions import MigrationFailedError, SchemaAgreementError
from keyspace_migrator.models import Consistency, Migration
from keyspace_migrator.statements import StatementSplitter
from keyspace_migrator.store.base import Store
from keyspace_migrator.version_store import VersionStore

logger = logging.getLogger(__name__)

MIGRATION_ERROR_MSG = "Error during migration of script {script_name} while executing '{statement}'"

SCHEMA_AGREEMENT_ERROR_MSG = (
    "Schema agreement could not be reached. "
    "You might consider increasing 'max_schema_agreement_wait'."
)


class MigrationExecutor:
    """
    Applies migrations statement by statement and logs the outcome.

    Args:
        store: Session the statements run on
        version_store: Log that receives one record per attempt
        consistency: Level every statement runs at
        splitter: Statement splitter (defaults to StatementSplitter())
    """

    def __init__(
        self,
        store: Store,
        version_store: VersionStore,
        consistency: Consistency = Consistency.QUORUM,
        splitter: StatementSplitter | None = None,
    ):
        self._store = store
        self._version_store = version_store
        self._consistency = consistency
        self._splitter = splitter or StatementSplitter()

    def execute(self, migration: Migration) -> None:
        """
        Apply migration and record the attempt.

        A script without executable statements is recorded as an immediate
        success.

        Raises:
            MigrationFailedError: If a statement fails or does not reach
                schema agreement; carries the script name, the exact statement
                and the underlying cause. The failure is recorded first.
            StoreUnavailableError: If the attempt cannot be recorded
        """
        logger.debug(
            f"About to execute migration {migration.script_name} "
            f"to version {migration.version}"
        )
        statements = self._splitter.split(migration.script)

        last_statement: str | None = None
        try:
            for statement in statements:
                last_statement = statement
                self._execute_statement(migration, statement)
        except Exception as exc:
            self._version_store.record(migration, success=False)
            raise MigrationFailedError(
                MIGRATION_ERROR_MSG.format(
                    script_name=migration.script_name, statement=last_statement
                ),
                script_name=migration.script_name,
                version=migration.version,
                statement=last_statement,
                cause=exc,
            ) from exc

        self._version_store.record(migration, success=True)
        logger.info(
            f"Successfully applied migration {migration.script_name} "
            f"to version {migration.version}",
            extra={"context": {"statements": len(statements)}},
        )

    def _execute_statement(self, migration: Migration, statement: str) -> None:
        logger.debug(
            f"Executing statement of {migration.script_name}",
            extra={"context": {"statement": statement}},
        )
        result = self._store.execute(statement, self._consistency)
        if not result.schema_in_agreement:
            raise SchemaAgreementError(
                SCHEMA_AGREEMENT_ERROR_MSG,
                script_name=migration.script_name,
                statement=statement,
            )
