"""
Configuration loader for keyspace-migrator.

Loads YAML configuration files, resolves ${ENV_VAR} references (so store
credentials never live in version control) and validates the result with
the Pydantic models in config.schema.

Relative paths in the file (store.path, migration.scripts_dir) are resolved
against the directory containing the configuration file.

Functions:
    load_config: Main entrypoint to load and validate a configuration file
"""

import os
import re
from pathlib import Path

import yaml
from pydantic import ValidationError

from keyspace_migrator.exceptions import ConfigFileNotFoundError, ConfigValidationError

from .schema import MigratorConfig

ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)\}")


def load_config(config_path: str | Path) -> MigratorConfig:
    """
    Load and validate a migrator configuration file.

    Args:
        config_path: Path to the YAML file (relative or absolute)

    Returns:
        MigratorConfig with environment references resolved

    Raises:
        ConfigFileNotFoundError: If the file doesn't exist
        ConfigValidationError: If the YAML is invalid or empty, a referenced
            environment variable is unset, or validation fails

    Security:
        Uses yaml.safe_load() to prevent code injection
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigFileNotFoundError(f"Configuration file not found: {config_path}")

    try:
        with config_path.open(encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigValidationError(f"Invalid YAML syntax in {config_path}: {e}") from e
    except OSError as e:
        raise ConfigValidationError(
            f"Failed to read configuration file {config_path}: {e}"
        ) from e

    if raw_config is None:
        raise ConfigValidationError(f"Configuration file is empty: {config_path}")
    if not isinstance(raw_config, dict):
        raise ConfigValidationError(
            f"Configuration root must be a mapping in {config_path}"
        )

    raw_config = _resolve_env_vars_recursive(raw_config)

    try:
        config = MigratorConfig.model_validate(raw_config)
    except ValidationError as e:
        # Format validation errors in a user-friendly way
        error_messages = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            msg = error["msg"]
            error_messages.append(f"  - {loc}: {msg}")

        raise ConfigValidationError(
            f"Configuration validation failed in {config_path}:\n"
            + "\n".join(error_messages)
        ) from e

    return _resolve_relative_paths(config, config_path.parent)


def _resolve_env_vars_recursive(obj):
    """
    Recursively resolve ${ENV_VAR} references in nested dicts/lists.

    A string that is exactly "${VAR}" becomes the variable's value; a string
    embedding references ("prefix-${VAR}") gets each one substituted.

    Raises:
        ConfigValidationError: If a referenced variable is not set
    """
    if isinstance(obj, dict):
        return {key: _resolve_env_vars_recursive(value) for key, value in obj.items()}

    if isinstance(obj, list):
        return [_resolve_env_vars_recursive(item) for item in obj]

    if isinstance(obj, str):

        def substitute(match: re.Match) -> str:
            env_var_name = match.group(1)
            env_value = os.environ.get(env_var_name)
            if env_value is None:
                raise ConfigValidationError(
                    f"Environment variable ${{{env_var_name}}} not set. "
                    f"Please set it in your environment."
                )
            return env_value

        return ENV_VAR_PATTERN.sub(substitute, obj)

    return obj


def _resolve_relative_paths(config: MigratorConfig, base_dir: Path) -> MigratorConfig:
    """Anchor relative file system paths at the configuration file's directory."""
    store = config.store
    if store.path and store.path != ":memory:" and not Path(store.path).is_absolute():
        store = store.model_copy(update={"path": str(base_dir / store.path)})

    migration = config.migration
    if not Path(migration.scripts_dir).is_absolute():
        migration = migration.model_copy(
            update={"scripts_dir": str(base_dir / migration.scripts_dir)}
        )

    return config.model_copy(update={"store": store, "migration": migration})
