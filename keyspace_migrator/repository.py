"""
Migration script repositories.

A repository supplies the migrations available to a run:

- latest_version(): highest available version (0 when there are none)
- migrations_since(version): migrations with a higher version, ascending

Ordering and gap handling are the repository's job; MigrationTask applies
what it is given in the given order.

Implementations:
    InMemoryRepository: Wraps Migration objects built by the host
    ScriptDirectoryRepository: Discovers <version>_<name><extension> files

Example:
    >>> repo = ScriptDirectoryRepository("./migrations")
    >>> [m.script_name for m in repo.migrations_since(0)]
    ['001_create_users.cql', '002_add_email.cql']
"""

import logging
import re
from collections.abc import Iterable
from pathlib import Path
from typing import Protocol

from keyspace_migrator.exceptions import RepositoryError
from keyspace_migrator.models import Migration

logger = logging.getLogger(__name__)

DEFAULT_SCRIPT_EXTENSION = ".cql"

SCRIPT_NAME_PATTERN = re.compile(r"^(?P<version>\d+)_(?P<name>.+)$")


class MigrationRepository(Protocol):
    """Supplier of ordered migrations."""

    def latest_version(self) -> int: ...

    def migrations_since(self, version: int) -> list[Migration]: ...


def _ordered_unique(migrations: Iterable[Migration]) -> list[Migration]:
    """Sort migrations by version, rejecting duplicate versions."""
    ordered = sorted(migrations, key=lambda m: m.version)
    for previous, current in zip(ordered, ordered[1:]):
        if previous.version == current.version:
            raise RepositoryError(
                f"Duplicate migration version {current.version}: "
                f"{previous.script_name}, {current.script_name}"
            )
    return ordered


class InMemoryRepository:
    """
    Repository over Migration objects supplied by the caller.

    Raises:
        RepositoryError: If two migrations share a version
    """

    def __init__(self, migrations: Iterable[Migration] = ()):
        self._migrations = _ordered_unique(migrations)

    def latest_version(self) -> int:
        return self._migrations[-1].version if self._migrations else 0

    def migrations_since(self, version: int) -> list[Migration]:
        return [m for m in self._migrations if m.version > version]


class ScriptDirectoryRepository(InMemoryRepository):
    """
    Repository discovering migration scripts in a directory.

    Only files named <version>_<name><extension> are considered, for example
    ``001_create_users.cql``; the version is the leading integer and the file
    name becomes the script name. Other files are ignored. Scripts are read
    once, on construction.

    Args:
        directory: Directory holding the scripts (not searched recursively)
        extension: Script file extension, including the dot
        encoding: Text encoding of the scripts

    Raises:
        RepositoryError: If the directory does not exist, a script cannot be
            read, a version is not positive, or two scripts share a version
    """

    def __init__(
        self,
        directory: str | Path,
        extension: str = DEFAULT_SCRIPT_EXTENSION,
        encoding: str = "utf-8",
    ):
        self.directory = Path(directory)
        self.extension = extension
        super().__init__(self._discover(encoding))

    def _discover(self, encoding: str) -> list[Migration]:
        if not self.directory.is_dir():
            raise RepositoryError(f"Migration directory not found: {self.directory}")

        migrations = []
        for path in sorted(self.directory.glob(f"*{self.extension}")):
            if not path.is_file():
                continue
            match = SCRIPT_NAME_PATTERN.match(path.name[: -len(self.extension)])
            if match is None:
                logger.debug(f"Ignoring file without version prefix: {path.name}")
                continue

            try:
                script = path.read_text(encoding=encoding)
            except (OSError, UnicodeDecodeError) as e:
                raise RepositoryError(f"Failed to read migration script {path}: {e}") from e

            try:
                migrations.append(
                    Migration(
                        version=int(match.group("version")),
                        script_name=path.name,
                        script=script,
                    )
                )
            except ValueError as e:
                raise RepositoryError(f"Invalid migration script {path.name}: {e}") from e

        logger.debug(
            f"Discovered {len(migrations)} migration scripts in {self.directory}"
        )
        return migrations
