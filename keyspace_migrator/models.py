"""
Core value types for keyspace-migrator.

Key components:
- Migration: Immutable, versioned schema-change script
- MigrationRecord: One row of the migration log (one per execution attempt)
- Lease: Claim on the right to migrate a keyspace to a target version
- Consistency: Store-agnostic consistency levels
- FailurePolicy: What the controller does after a failed migration
- ExecutionResult: Outcome of executing a single statement

Example:
    >>> from keyspace_migrator.models import Migration
    >>> m = Migration(1, "001_create_users.cql", "CREATE TABLE users (id int PRIMARY KEY);")
    >>> m.version
    1
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


@dataclass(frozen=True)
class Migration:
    """
    A versioned, named unit of schema-change script text.

    Created by a MigrationRepository when enumerating available scripts and
    never mutated afterwards.

    Attributes:
        version: Positive, unique version number; higher versions run later
        script_name: Name used for logging and the audit trail
        script: Raw script text, split into statements at execution time
    """

    version: int
    script_name: str
    script: str

    def __post_init__(self) -> None:
        if isinstance(self.version, bool) or not isinstance(self.version, int):
            raise TypeError(f"Migration version must be an int, got: {self.version!r}")
        if self.version <= 0:
            raise ValueError(f"Migration version must be positive, got: {self.version}")
        if not self.script_name or self.script_name.isspace():
            raise ValueError("Migration script_name cannot be empty")


@dataclass(frozen=True)
class MigrationRecord:
    """
    A persisted row of the migration log.

    Attributes:
        version: Version of the attempted migration
        script_name: Script name at the time of the attempt
        script: Full script text that was attempted
        applied_successfully: Whether every statement succeeded
        executed_at: UTC time the attempt was recorded
    """

    version: int
    script_name: str
    script: str
    applied_successfully: bool
    executed_at: datetime

    @classmethod
    def for_attempt(
        cls, migration: Migration, success: bool, executed_at: datetime
    ) -> "MigrationRecord":
        return cls(
            version=migration.version,
            script_name=migration.script_name,
            script=migration.script,
            applied_successfully=success,
            executed_at=executed_at,
        )


@dataclass(frozen=True)
class Lease:
    """
    A claim on the right to migrate a keyspace.

    Only one live lease exists per keyspace at a time; the store enforces
    this with a conditional write.

    Attributes:
        keyspace: Namespace the lease guards
        owner_id: Unique identity of the claiming coordinator
        owner_host: Host name of the claiming process (audit only)
        target_version: Version the owner intends to migrate to
        acquired_at: UTC time of the claim
        expires_at: UTC time after which the claim is no longer live
    """

    keyspace: str
    owner_id: str
    owner_host: str
    target_version: int
    acquired_at: datetime
    expires_at: datetime | None = None

    def is_owned_by(self, owner_id: str) -> bool:
        return self.owner_id == owner_id


class Consistency(str, Enum):
    """
    Consistency levels for reads and statement execution.

    Names follow the Cassandra levels. Single-node stores ignore them.
    """

    ANY = "ANY"
    ONE = "ONE"
    TWO = "TWO"
    THREE = "THREE"
    QUORUM = "QUORUM"
    ALL = "ALL"
    LOCAL_QUORUM = "LOCAL_QUORUM"
    EACH_QUORUM = "EACH_QUORUM"
    LOCAL_ONE = "LOCAL_ONE"


class FailurePolicy(str, Enum):
    """
    Decides what happens to the rest of a batch after a migration fails.

    STRICT: abort the batch and propagate the failure.
    CONTINUE: log the failure and move on to the next migration, accepting a
        partially migrated end state.
    """

    STRICT = "strict"
    CONTINUE = "continue"

    @classmethod
    def from_flag(cls, fail_gracefully: bool) -> "FailurePolicy":
        return cls.CONTINUE if fail_gracefully else cls.STRICT

    def continues_after_failure(self) -> bool:
        return self is FailurePolicy.CONTINUE


@dataclass(frozen=True)
class ExecutionResult:
    """
    Outcome of executing one statement against the store.

    Attributes:
        schema_in_agreement: False when the cluster did not converge on a
            single schema version within the driver's wait window
    """

    schema_in_agreement: bool = True
