"""
Custom exceptions for keyspace-migrator.

This module provides a hierarchy of exceptions that enable type-safe error
handling throughout the migrator. All exceptions inherit from the base
MigratorError for consistent catching.

Exception Hierarchy:
    MigratorError (base)
    ├── ConfigurationError
    │   ├── ConfigFileNotFoundError
    │   └── ConfigValidationError
    ├── StoreError
    │   └── StoreUnavailableError
    ├── RepositoryError
    ├── SchemaAgreementError
    └── MigrationFailedError

A lease held by another process is not an error: MigrationTask reports it as
the LEASE_DENIED outcome.

Usage:
    from keyspace_migrator.exceptions import MigrationFailedError

    try:
        task.migrate()
    except MigrationFailedError as e:
        logger.error(f"{e.script_name} stopped at: {e.statement}")
        sys.exit(3)
"""


class MigratorError(Exception):
    """
    Base exception for all keyspace-migrator errors.

    Enables catching every migrator-specific error with a single except clause.
    """

    pass


# ============================================================================
# Configuration Errors
# ============================================================================


class ConfigurationError(MigratorError):
    """
    Base class for configuration-related errors.

    Should be caught and result in exit code 1 (configuration error).
    """

    pass


class ConfigFileNotFoundError(ConfigurationError):
    """
    Configuration file does not exist at the specified path.

    Example:
        raise ConfigFileNotFoundError("/path/to/migrator.yaml")
    """

    pass


class ConfigValidationError(ConfigurationError):
    """
    Configuration file is invalid (YAML syntax, schema validation, env vars).

    Example:
        raise ConfigValidationError("Field 'store.keyspace' is required for cassandra")
    """

    pass


# ============================================================================
# Store Errors
# ============================================================================


class StoreError(MigratorError):
    """
    Base class for store-related errors.

    Should be caught and result in exit code 2 (store error).
    """

    pass


class StoreUnavailableError(StoreError):
    """
    The store could not be reached or a session operation failed.

    Fatal to the calling operation and never retried internally. Raised by
    the store backends for infrastructure operations (migration log, lease
    table, connecting); statement failures inside a migration script surface
    as MigrationFailedError instead.

    Example:
        raise StoreUnavailableError("Unable to open SQLite database ./schema.db")
    """

    pass


# ============================================================================
# Repository Errors
# ============================================================================


class RepositoryError(MigratorError):
    """
    Migration scripts could not be discovered or are inconsistent.

    Example:
        raise RepositoryError("Duplicate migration version 3: 003_a.cql, 003_b.cql")
    """

    pass


# ============================================================================
# Migration Errors
# ============================================================================


class SchemaAgreementError(MigratorError):
    """
    A statement was applied but the cluster did not converge on one schema
    within the driver's wait window.

    Treated by MigrationExecutor as a failure of that statement.

    Attributes:
        script_name: str - Script whose statement did not converge
        statement: str - The statement text
    """

    def __init__(self, message: str, script_name: str, statement: str):
        super().__init__(message)
        self.script_name = script_name
        self.statement = statement


class MigrationFailedError(MigratorError):
    """
    A migration script failed while executing one of its statements.

    Statements before the failing one stay applied; nothing is rolled back.

    Attributes:
        script_name: str - Name of the failing script
        version: int - Version of the failing migration
        statement: str | None - Exact statement text that failed
        cause: BaseException | None - Underlying driver or agreement error

    Example:
        raise MigrationFailedError(
            "Error during migration of script 002_users.cql while executing 'CREATE ...'",
            script_name="002_users.cql",
            version=2,
            statement="CREATE ...",
            cause=exc,
        ) from exc
    """

    def __init__(
        self,
        message: str,
        script_name: str,
        version: int,
        statement: str | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.script_name = script_name
        self.version = version
        self.statement = statement
        self.cause = cause
