"""
CLI entrypoint for keyspace-migrator.

Provides a dual-mode command-line interface with:
- Human-friendly output: Rich spinners, tables, colored text
- Agent-friendly output: One structured JSON document per command

Commands:
    migrate: Apply pending migration scripts to the configured store
    status: Show the current schema version, pending scripts and history
    validate: Validate configuration and scripts without touching the store

Exit codes:
    0: Success (including "already up to date" and "lease held elsewhere")
    1: Configuration error (invalid YAML, unset env var, bad script directory)
    2: Store error (store unreachable, log or lease table unusable)
    3: Migration failure (strict) or partial failure (fail_gracefully)

Examples:
    # Human-friendly output
    keyspace-migrator migrate --config migrator.yaml

    # Agent-friendly JSON output (no spinners, no colors)
    keyspace-migrator migrate --config migrator.yaml --format json

    # Inspect without migrating
    keyspace-migrator status --config migrator.yaml

Security:
    - Store credentials are resolved from environment variables
    - Log output passes through SecretRedactingFilter
"""

from pathlib import Path

import typer
from rich.traceback import install as install_rich_traceback

from keyspace_migrator import __version__
from keyspace_migrator.config.loader import load_config
from keyspace_migrator.config.schema import MigratorConfig
from keyspace_migrator.exceptions import (
    ConfigurationError,
    MigrationFailedError,
    RepositoryError,
    StoreError,
)
from keyspace_migrator.repository import ScriptDirectoryRepository
from keyspace_migrator.statements import split_statements
from keyspace_migrator.store import open_store
from keyspace_migrator.task import MigrationTask, TaskState
from keyspace_migrator.utils.console import (
    console,
    error,
    info,
    output_mode,
    print_history_table,
    print_migration_summary,
    print_pending_table,
    spinner,
    success,
    warning,
)
from keyspace_migrator.utils.logging import setup_logging
from keyspace_migrator.version_store import VersionStore

# Install Rich tracebacks for better error messages
install_rich_traceback(show_locals=False)

# Exit codes
EXIT_SUCCESS = 0  # Migrated, up to date, or lease held elsewhere
EXIT_CONFIG_ERROR = 1  # Config or script discovery failed
EXIT_STORE_ERROR = 2  # Store unreachable
EXIT_MIGRATION_FAILED = 3  # A migration failed

app = typer.Typer(
    name="keyspace-migrator",
    help="Apply versioned schema migration scripts to a Cassandra keyspace",
    add_completion=False,
)

CONFIG_OPTION = typer.Option(
    ...,
    "--config",
    "-c",
    help="Path to YAML configuration file",
    exists=True,
    file_okay=True,
    dir_okay=False,
)

FORMAT_OPTION = typer.Option(
    "text",
    "--format",
    "-f",
    help="Output format: 'text' (human-friendly) or 'json' (machine-readable)",
)

VERBOSE_OPTION = typer.Option(
    False,
    "--verbose",
    "-v",
    help="Enable debug logging",
)


def _set_output_format(format: str) -> None:
    if format not in output_mode.FORMATS:
        raise typer.BadParameter(
            f"Invalid format: {format}. Must be 'text' or 'json'", param_hint="--format"
        )
    output_mode.format = format


def _exit(code: int) -> None:
    """Flush buffered JSON (agent mode) and leave with code."""
    output_mode.flush_json()
    raise typer.Exit(code)


def _load(config: Path) -> tuple[MigratorConfig, ScriptDirectoryRepository]:
    """Load configuration and discover scripts, exiting with code 1 on failure."""
    try:
        with spinner("Loading configuration..."):
            migrator_config = load_config(config)
            settings = migrator_config.migration
            repository = ScriptDirectoryRepository(
                settings.scripts_dir, extension=settings.script_extension
            )
    except ConfigurationError as e:
        error(f"Configuration error: {e}")
        if output_mode.is_agent():
            output_mode.add_json("error_type", "configuration_error")
        _exit(EXIT_CONFIG_ERROR)
    except RepositoryError as e:
        error(f"Migration scripts error: {e}")
        if output_mode.is_agent():
            output_mode.add_json("error_type", "repository_error")
        _exit(EXIT_CONFIG_ERROR)

    return migrator_config, repository


@app.command()
def migrate(
    config: Path = CONFIG_OPTION,
    format: str = FORMAT_OPTION,
    verbose: bool = VERBOSE_OPTION,
):
    """
    Apply pending migration scripts to the configured store.

    This command will:
    1. Load the configuration and discover migration scripts
    2. Read the current schema version from the migration log
    3. With consensus enabled, claim the migration lease (or skip)
    4. Apply every script newer than the current version, in order
    5. Record each attempt in the migration log

    Exit codes:
      0: Migrated, already up to date, or another process is migrating
      1: Configuration error
      2: Store error
      3: A migration failed

    Examples:
      keyspace-migrator migrate --config migrator.yaml
      keyspace-migrator migrate --config migrator.yaml --format json
    """
    _set_output_format(format)

    # Suppress JSON logs in human mode (unless verbose=True)
    setup_logging(verbose=verbose, quiet_logs=output_mode.is_human())

    migrator_config, repository = _load(config)
    settings = migrator_config.migration
    success(
        f"Found {len(repository.migrations_since(0))} migration scripts "
        f"in {repository.directory}"
    )

    try:
        with spinner("Connecting to store..."):
            store = open_store(migrator_config.store, settings.consistency_level)
            task = MigrationTask.from_settings(store, repository, settings)
    except ImportError as e:
        error(
            f"The {migrator_config.store.backend} backend needs an optional "
            f"dependency: {e}. Install keyspace-migrator[cassandra]."
        )
        _exit(EXIT_CONFIG_ERROR)
    except StoreError as e:
        error(f"Store unavailable: {e}")
        _exit(EXIT_STORE_ERROR)

    try:
        with spinner(f"Migrating keyspace {task.keyspace}..."):
            result = task.migrate()
    except MigrationFailedError as e:
        error(str(e))
        if output_mode.is_agent():
            output_mode.add_json("script_name", e.script_name)
            output_mode.add_json("version", e.version)
            output_mode.add_json("statement", e.statement)
            output_mode.add_json("cause", str(e.cause))
        elif e.cause is not None:
            info(f"Cause: {e.cause}")
        _exit(EXIT_MIGRATION_FAILED)
    except StoreError as e:
        error(f"Store error during migration: {e}")
        _exit(EXIT_STORE_ERROR)

    print_migration_summary(result)
    if output_mode.is_agent():
        output_mode.add_json("keyspace", task.keyspace)

    if result.outcome is TaskState.UP_TO_DATE:
        success(
            f"Keyspace {task.keyspace} is up to date at version {result.final_version}"
        )
    elif result.outcome is TaskState.LEASE_DENIED:
        success(
            f"Another process holds the migration lease on {task.keyspace}; skipped"
        )
    elif result.failed:
        warning(
            f"Migrated keyspace {task.keyspace} to version {result.final_version} "
            f"with {len(result.failed)} failed migration(s)"
        )
        if output_mode.is_agent():
            output_mode.add_json("status", "partial_failure")
        _exit(EXIT_MIGRATION_FAILED)
    else:
        success(
            f"Migrated keyspace {task.keyspace} from version "
            f"{result.starting_version} to {result.final_version}"
        )

    _exit(EXIT_SUCCESS)


@app.command()
def status(
    config: Path = CONFIG_OPTION,
    format: str = FORMAT_OPTION,
    verbose: bool = VERBOSE_OPTION,
):
    """
    Show the schema version, pending scripts and migration history.

    Creates the migration log table if it is missing but never runs a
    migration script.

    Exit codes:
      0: Status shown
      1: Configuration error
      2: Store error
    """
    _set_output_format(format)
    setup_logging(verbose=verbose, quiet_logs=output_mode.is_human())

    migrator_config, repository = _load(config)
    settings = migrator_config.migration

    try:
        with spinner("Reading migration log..."):
            store = open_store(migrator_config.store, settings.consistency_level)
            try:
                version_store = VersionStore(
                    store, settings.table_prefix, settings.consistency_level
                )
                current_version = version_store.current_version()
                history = version_store.history()
            finally:
                store.close()
    except ImportError as e:
        error(
            f"The {migrator_config.store.backend} backend needs an optional "
            f"dependency: {e}. Install keyspace-migrator[cassandra]."
        )
        _exit(EXIT_CONFIG_ERROR)
    except StoreError as e:
        error(f"Store unavailable: {e}")
        _exit(EXIT_STORE_ERROR)

    latest_version = repository.latest_version()
    pending = repository.migrations_since(current_version)

    if output_mode.is_agent():
        output_mode.add_json("keyspace", store.namespace)
        output_mode.add_json("current_version", current_version)
        output_mode.add_json("latest_version", latest_version)

    info(f"Keyspace: {store.namespace}")
    info(f"Current version: {current_version}")
    info(f"Latest available version: {latest_version}")

    if pending:
        warning(f"{len(pending)} pending migration(s)")
    else:
        success("No pending migrations")
    print_pending_table(pending, json_key="pending")
    print_history_table(history)

    _exit(EXIT_SUCCESS)


@app.command()
def validate(
    config: Path = CONFIG_OPTION,
    format: str = FORMAT_OPTION,
):
    """
    Validate configuration and migration scripts without touching the store.

    Checks:
    - YAML syntax and field values
    - Referenced environment variables are set
    - The scripts directory exists and script versions are unique
    - Every script splits into statements

    Exit codes:
      0: Configuration and scripts are valid
      1: Configuration or scripts are invalid

    Examples:
      # Validate for CI/CD (JSON output)
      keyspace-migrator validate --config migrator.yaml --format json
    """
    _set_output_format(format)

    if output_mode.is_agent():
        output_mode.add_json("valid", False)

    migrator_config, repository = _load(config)

    migrations = repository.migrations_since(0)
    statement_counts = {m.version: len(split_statements(m.script)) for m in migrations}

    success("Configuration is valid")
    info(f"Backend: {migrator_config.store.backend}")
    info(f"Scripts: {len(migrations)} (latest version {repository.latest_version()})")
    print_pending_table(migrations, statement_counts)

    empty = [m.script_name for m in migrations if statement_counts[m.version] == 0]
    if empty:
        warning(f"Scripts without statements: {', '.join(empty)}")

    if output_mode.is_agent():
        output_mode.add_json("valid", True)
        output_mode.add_json("backend", migrator_config.store.backend)
        output_mode.add_json("latest_version", repository.latest_version())

    _exit(EXIT_SUCCESS)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit",
    ),
):
    """
    keyspace-migrator - Versioned schema migrations for Cassandra keyspaces.

    Use 'keyspace-migrator COMMAND --help' for detailed command documentation.
    """
    if version:
        console.print(f"[bold cyan]keyspace-migrator[/bold cyan] version {__version__}")
        raise typer.Exit(EXIT_SUCCESS)

    if ctx.invoked_subcommand is None:
        console.print("[yellow]Use --help to see available commands[/yellow]")
        console.print()
        console.print("Quick start:")
        console.print("  keyspace-migrator validate --config migrator.yaml")
        console.print("  keyspace-migrator migrate --config migrator.yaml")


if __name__ == "__main__":
    app()
