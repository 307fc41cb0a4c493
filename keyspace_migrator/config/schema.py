"""
Configuration schema models for keyspace-migrator.

Pydantic models validating the migrator's YAML configuration file.

Models:
    StoreSettings: Which store to migrate and how to reach it
    MigrationSettings: Where scripts live and how the run behaves
    MigratorConfig: Root configuration model (validates entire YAML)

Example YAML:
    store:
      backend: cassandra
      contact_points: ["10.0.0.1", "10.0.0.2"]
      keyspace: billing
      username: migrator
      password: ${CASSANDRA_PASSWORD}
    migration:
      scripts_dir: ./migrations
      consensus: true
      fail_gracefully: false
      consistency_level: LOCAL_QUORUM
      table_prefix: billing
      lease_ttl_seconds: 600
"""

import re
from typing import Literal

from pydantic import BaseModel, field_validator, model_validator

from keyspace_migrator.lease import DEFAULT_LEASE_TTL_SECONDS
from keyspace_migrator.models import Consistency, FailurePolicy
from keyspace_migrator.repository import DEFAULT_SCRIPT_EXTENSION

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class StoreSettings(BaseModel):
    """
    Store connection settings.

    Attributes:
        backend: "sqlite" (single file) or "cassandra" (cluster)
        path: SQLite database file (sqlite only)
        contact_points: Cassandra hosts to bootstrap from
        port: Cassandra native protocol port
        keyspace: Keyspace to migrate; must already exist (cassandra only)
        username: Optional Cassandra user
        password: Optional Cassandra password, usually ${ENV_VAR}
        local_datacenter: Datacenter for DC-aware load balancing
        max_schema_agreement_wait: Seconds the driver waits for schema
            agreement after each DDL statement
    """

    backend: Literal["sqlite", "cassandra"] = "sqlite"
    path: str | None = None
    contact_points: list[str] = ["127.0.0.1"]
    port: int = 9042
    keyspace: str | None = None
    username: str | None = None
    password: str | None = None
    local_datacenter: str | None = None
    max_schema_agreement_wait: int = 10

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        if not 1 <= v <= 65535:
            raise ValueError(f"port must be between 1 and 65535 (got: {v})")
        return v

    @field_validator("keyspace")
    @classmethod
    def validate_keyspace(cls, v: str | None) -> str | None:
        if v is not None and not _IDENTIFIER.match(v):
            raise ValueError(f"keyspace must be a plain identifier, got: {v!r}")
        return v

    @field_validator("contact_points")
    @classmethod
    def validate_contact_points(cls, v: list[str]) -> list[str]:
        if not v or any(not host or host.isspace() for host in v):
            raise ValueError("contact_points must be a non-empty list of hosts")
        return v

    @field_validator("max_schema_agreement_wait")
    @classmethod
    def validate_schema_agreement_wait(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"max_schema_agreement_wait must be positive, got: {v}")
        return v

    @model_validator(mode="after")
    def validate_backend_fields(self) -> "StoreSettings":
        """Each backend has its own required fields."""
        if self.backend == "sqlite" and (not self.path or self.path.isspace()):
            raise ValueError("store.path is required for the sqlite backend")
        if self.backend == "cassandra" and not self.keyspace:
            raise ValueError("store.keyspace is required for the cassandra backend")
        return self


class MigrationSettings(BaseModel):
    """
    Migration run settings.

    Attributes:
        scripts_dir: Directory holding <version>_<name><extension> scripts
        script_extension: Script file extension
        consensus: Let only one of several concurrent processes migrate
        fail_gracefully: Skip failing migrations instead of aborting
        consistency_level: Level for statements and version reads
        table_prefix: Optional prefix for the log and lease tables
        lease_ttl_seconds: Lifetime of a migration lease claim
    """

    scripts_dir: str = "migrations"
    script_extension: str = DEFAULT_SCRIPT_EXTENSION
    consensus: bool = False
    fail_gracefully: bool = False
    consistency_level: Consistency = Consistency.QUORUM
    table_prefix: str = ""
    lease_ttl_seconds: int = DEFAULT_LEASE_TTL_SECONDS

    @field_validator("consistency_level", mode="before")
    @classmethod
    def normalize_consistency_level(cls, v):
        """Accept level names in any case ("quorum", "LOCAL_QUORUM")."""
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @field_validator("scripts_dir")
    @classmethod
    def validate_scripts_dir(cls, v: str) -> str:
        if not v or v.isspace():
            raise ValueError("scripts_dir cannot be empty")
        return v

    @field_validator("script_extension")
    @classmethod
    def validate_script_extension(cls, v: str) -> str:
        if not v.startswith(".") or len(v) < 2:
            raise ValueError(f"script_extension must start with '.', got: {v!r}")
        return v

    @field_validator("table_prefix")
    @classmethod
    def validate_table_prefix(cls, v: str) -> str:
        if v and not _IDENTIFIER.match(v):
            raise ValueError(f"table_prefix must be a plain identifier, got: {v!r}")
        return v

    @field_validator("lease_ttl_seconds")
    @classmethod
    def validate_lease_ttl(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"lease_ttl_seconds must be positive, got: {v}")
        return v

    @property
    def failure_policy(self) -> FailurePolicy:
        return FailurePolicy.from_flag(self.fail_gracefully)


class MigratorConfig(BaseModel):
    """
    Root configuration model.

    Attributes:
        store: Store connection settings
        migration: Migration run settings (all defaults if omitted)
    """

    store: StoreSettings
    migration: MigrationSettings = MigrationSettings()
