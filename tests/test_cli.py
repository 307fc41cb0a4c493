"""
Tests for the CLI module - commands, output modes and exit codes.

Commands:
    - migrate: Applies scripts; exit codes for success, config, store and
      migration failures
    - status: Current/latest version, pending scripts, history
    - validate: Config and script checks without a store
    - main callback: --version

Output Modes:
    - Human mode (--format text): Rich output
    - Agent mode (--format json): One valid JSON document on stdout

All runs use real SQLite stores in temporary directories.
"""

import json

import pytest
import yaml
from typer.testing import CliRunner

from keyspace_migrator import __version__
from keyspace_migrator.cli import (
    EXIT_CONFIG_ERROR,
    EXIT_MIGRATION_FAILED,
    EXIT_STORE_ERROR,
    EXIT_SUCCESS,
    app,
)
from keyspace_migrator.lease import LeaseCoordinator
from keyspace_migrator.store import SQLiteStore
from keyspace_migrator.version_store import VersionStore

# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def cli_runner():
    """Return CliRunner for testing Typer apps."""
    return CliRunner()


@pytest.fixture(autouse=True)
def reset_output_mode(monkeypatch):
    """Reset global output_mode after each test and keep the root logger as is."""
    from keyspace_migrator.utils.console import output_mode

    monkeypatch.setattr("keyspace_migrator.cli.setup_logging", lambda **kwargs: None)
    original_format = output_mode.format
    output_mode._json_buffer.clear()

    yield

    output_mode.format = original_format
    output_mode._json_buffer.clear()


@pytest.fixture
def scripts_dir(tmp_path):
    directory = tmp_path / "migrations"
    directory.mkdir()
    (directory / "001_users.cql").write_text(
        "CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT);", encoding="utf-8"
    )
    (directory / "002_orders.cql").write_text(
        "-- orders\nCREATE TABLE orders (id INTEGER PRIMARY KEY);\n"
        "CREATE INDEX idx_orders ON orders (id);",
        encoding="utf-8",
    )
    return directory


def _write_config(tmp_path, migration=None, store=None):
    config_file = tmp_path / "migrator.yaml"
    data = {
        "store": store or {"backend": "sqlite", "path": "schema.db"},
        "migration": {"scripts_dir": "migrations", **(migration or {})},
    }
    with config_file.open("w", encoding="utf-8") as f:
        yaml.dump(data, f)
    return config_file


@pytest.fixture
def config_file(tmp_path, scripts_dir):
    return _write_config(tmp_path)


def _current_version(tmp_path):
    store = SQLiteStore(tmp_path / "schema.db")
    try:
        return VersionStore(store).current_version()
    finally:
        store.close()


# ============================================================================
# migrate
# ============================================================================


class TestMigrateCommand:
    def test_migrate_applies_scripts(self, cli_runner, config_file, tmp_path):
        result = cli_runner.invoke(app, ["migrate", "--config", str(config_file)])

        assert result.exit_code == EXIT_SUCCESS, result.output
        assert "Migrated keyspace main from version 0 to 2" in result.output
        assert _current_version(tmp_path) == 2

    def test_migrate_json_output(self, cli_runner, config_file):
        result = cli_runner.invoke(
            app, ["migrate", "--config", str(config_file), "--format", "json"]
        )

        assert result.exit_code == EXIT_SUCCESS
        data = json.loads(result.stdout)
        assert data["status"] == "success"
        assert data["outcome"] == "done"
        assert data["starting_version"] == 0
        assert data["final_version"] == 2
        assert data["applied"] == ["001_users.cql", "002_orders.cql"]
        assert data["failed"] == []
        assert data["keyspace"] == "main"

    def test_migrate_twice_is_up_to_date(self, cli_runner, config_file):
        cli_runner.invoke(app, ["migrate", "--config", str(config_file)])

        result = cli_runner.invoke(
            app, ["migrate", "--config", str(config_file), "--format", "json"]
        )

        assert result.exit_code == EXIT_SUCCESS
        data = json.loads(result.stdout)
        assert data["outcome"] == "up_to_date"
        assert data["applied"] == []

    def test_migrate_strict_failure(self, cli_runner, tmp_path, scripts_dir):
        (scripts_dir / "003_broken.cql").write_text("CREATE TABLE broken (;", encoding="utf-8")
        (scripts_dir / "004_later.cql").write_text("CREATE TABLE later (id INTEGER);", encoding="utf-8")
        config_file = _write_config(tmp_path)

        result = cli_runner.invoke(
            app, ["migrate", "--config", str(config_file), "--format", "json"]
        )

        assert result.exit_code == EXIT_MIGRATION_FAILED
        data = json.loads(result.stdout)
        assert data["status"] == "error"
        assert data["script_name"] == "003_broken.cql"
        assert data["statement"] == "CREATE TABLE broken ("
        assert _current_version(tmp_path) == 2

    def test_migrate_strict_failure_text(self, cli_runner, tmp_path, scripts_dir):
        (scripts_dir / "003_broken.cql").write_text("CREATE TABLE broken (;", encoding="utf-8")
        config_file = _write_config(tmp_path)

        result = cli_runner.invoke(app, ["migrate", "--config", str(config_file)])

        assert result.exit_code == EXIT_MIGRATION_FAILED
        assert "003_broken.cql" in result.output

    def test_migrate_graceful_partial_failure(self, cli_runner, tmp_path, scripts_dir):
        (scripts_dir / "003_broken.cql").write_text("CREATE TABLE broken (;", encoding="utf-8")
        (scripts_dir / "004_later.cql").write_text("CREATE TABLE later (id INTEGER);", encoding="utf-8")
        config_file = _write_config(tmp_path, migration={"fail_gracefully": True})

        result = cli_runner.invoke(
            app, ["migrate", "--config", str(config_file), "--format", "json"]
        )

        assert result.exit_code == EXIT_MIGRATION_FAILED
        data = json.loads(result.stdout)
        assert data["status"] == "partial_failure"
        assert data["final_version"] == 4
        assert [f["script_name"] for f in data["failed"]] == ["003_broken.cql"]
        assert _current_version(tmp_path) == 4

    def test_migrate_lease_held_elsewhere(self, cli_runner, tmp_path, scripts_dir):
        config_file = _write_config(tmp_path, migration={"consensus": True})
        other = SQLiteStore(tmp_path / "schema.db")
        LeaseCoordinator(other, owner_id="other-process").try_acquire(2)

        result = cli_runner.invoke(
            app, ["migrate", "--config", str(config_file), "--format", "json"]
        )
        other.close()

        assert result.exit_code == EXIT_SUCCESS
        data = json.loads(result.stdout)
        assert data["outcome"] == "lease_denied"
        assert _current_version(tmp_path) == 0

    def test_migrate_invalid_yaml(self, cli_runner, tmp_path):
        config_file = tmp_path / "migrator.yaml"
        config_file.write_text("store: [unclosed", encoding="utf-8")

        result = cli_runner.invoke(app, ["migrate", "--config", str(config_file)])

        assert result.exit_code == EXIT_CONFIG_ERROR
        assert "Configuration error" in result.output

    def test_migrate_missing_scripts_dir(self, cli_runner, tmp_path):
        config_file = _write_config(tmp_path)

        result = cli_runner.invoke(
            app, ["migrate", "--config", str(config_file), "--format", "json"]
        )

        assert result.exit_code == EXIT_CONFIG_ERROR
        data = json.loads(result.stdout)
        assert data["error_type"] == "repository_error"

    def test_migrate_store_unavailable(self, cli_runner, tmp_path, scripts_dir):
        (tmp_path / "blocker").write_text("not a directory", encoding="utf-8")
        config_file = _write_config(
            tmp_path, store={"backend": "sqlite", "path": "blocker/schema.db"}
        )

        result = cli_runner.invoke(
            app, ["migrate", "--config", str(config_file), "--format", "json"]
        )

        assert result.exit_code == EXIT_STORE_ERROR
        assert json.loads(result.stdout)["status"] == "error"

    def test_missing_config_file(self, cli_runner, tmp_path):
        result = cli_runner.invoke(
            app, ["migrate", "--config", str(tmp_path / "missing.yaml")]
        )

        assert result.exit_code != EXIT_SUCCESS

    def test_invalid_format(self, cli_runner, config_file):
        result = cli_runner.invoke(
            app, ["migrate", "--config", str(config_file), "--format", "xml"]
        )

        assert result.exit_code != EXIT_SUCCESS


# ============================================================================
# status
# ============================================================================


class TestStatusCommand:
    def test_status_before_migrating(self, cli_runner, config_file):
        result = cli_runner.invoke(
            app, ["status", "--config", str(config_file), "--format", "json"]
        )

        assert result.exit_code == EXIT_SUCCESS
        data = json.loads(result.stdout)
        assert data["current_version"] == 0
        assert data["latest_version"] == 2
        assert [m["script_name"] for m in data["pending"]] == [
            "001_users.cql",
            "002_orders.cql",
        ]
        assert data["history"] == []

    def test_status_after_migrating(self, cli_runner, config_file):
        cli_runner.invoke(app, ["migrate", "--config", str(config_file)])

        result = cli_runner.invoke(
            app, ["status", "--config", str(config_file), "--format", "json"]
        )

        data = json.loads(result.stdout)
        assert data["current_version"] == 2
        assert data["pending"] == []
        assert [h["version"] for h in data["history"]] == [1, 2]
        assert all(h["applied_successfully"] for h in data["history"])

    def test_status_text(self, cli_runner, config_file):
        result = cli_runner.invoke(app, ["status", "--config", str(config_file)])

        assert result.exit_code == EXIT_SUCCESS
        assert "Current version: 0" in result.output
        assert "2 pending migration(s)" in result.output

    def test_status_does_not_migrate(self, cli_runner, config_file, tmp_path):
        cli_runner.invoke(app, ["status", "--config", str(config_file)])

        assert _current_version(tmp_path) == 0


# ============================================================================
# validate
# ============================================================================


class TestValidateCommand:
    def test_validate_json(self, cli_runner, config_file):
        result = cli_runner.invoke(
            app, ["validate", "--config", str(config_file), "--format", "json"]
        )

        assert result.exit_code == EXIT_SUCCESS
        data = json.loads(result.stdout)
        assert data["valid"] is True
        assert data["backend"] == "sqlite"
        assert data["latest_version"] == 2
        assert [(m["script_name"], m["statements"]) for m in data["migrations"]] == [
            ("001_users.cql", 1),
            ("002_orders.cql", 2),
        ]

    def test_validate_does_not_create_store(self, cli_runner, config_file, tmp_path):
        cli_runner.invoke(app, ["validate", "--config", str(config_file)])

        assert not (tmp_path / "schema.db").exists()

    def test_validate_invalid_config(self, cli_runner, tmp_path, scripts_dir):
        config_file = _write_config(tmp_path, migration={"lease_ttl_seconds": -1})

        result = cli_runner.invoke(
            app, ["validate", "--config", str(config_file), "--format", "json"]
        )

        assert result.exit_code == EXIT_CONFIG_ERROR
        data = json.loads(result.stdout)
        assert data["valid"] is False
        assert data["error_type"] == "configuration_error"

    def test_validate_warns_on_empty_script(self, cli_runner, tmp_path, scripts_dir):
        (scripts_dir / "003_placeholder.cql").write_text("-- todo\n", encoding="utf-8")
        config_file = _write_config(tmp_path)

        result = cli_runner.invoke(app, ["validate", "--config", str(config_file)])

        assert result.exit_code == EXIT_SUCCESS
        assert "003_placeholder.cql" in result.output


# ============================================================================
# main callback
# ============================================================================


def test_version_flag(cli_runner):
    result = cli_runner.invoke(app, ["--version"])

    assert result.exit_code == EXIT_SUCCESS
    assert __version__ in result.output


def test_no_command_shows_hint(cli_runner):
    result = cli_runner.invoke(app, [])

    assert "--help" in result.output
