"""
Store backends for keyspace-migrator.

Backends:
    SQLiteStore: Single-file store on the standard library's sqlite3
    CassandraStore: Cassandra keyspace (install the ``cassandra`` extra)

The Cassandra backend is imported lazily so that the driver is only needed
when it is used.
"""

from typing import TYPE_CHECKING

from keyspace_migrator.exceptions import StoreUnavailableError

from .base import LEASE_TABLE, MIGRATION_TABLE, Store, prefixed_table_name
from .sqlite import SQLiteStore

if TYPE_CHECKING:
    from keyspace_migrator.config.schema import StoreSettings
    from keyspace_migrator.models import Consistency

__all__ = [
    "LEASE_TABLE",
    "MIGRATION_TABLE",
    "SQLiteStore",
    "Store",
    "open_store",
    "prefixed_table_name",
]


def open_store(settings: "StoreSettings", consistency: "Consistency | None" = None) -> Store:
    """
    Open a store session from the 'store' section of the configuration.

    For Cassandra a Cluster is created here and owned by the returned store,
    so closing the store also shuts the cluster down.

    Args:
        settings: Validated store settings
        consistency: Level for lease writes (Cassandra only)

    Raises:
        StoreUnavailableError: If the store cannot be reached
    """
    if settings.backend == "sqlite":
        return SQLiteStore(settings.path)

    return _open_cassandra_store(settings, consistency)


def _open_cassandra_store(settings: "StoreSettings", consistency: "Consistency | None") -> Store:
    from cassandra.auth import PlainTextAuthProvider
    from cassandra.cluster import Cluster
    from cassandra.policies import DCAwareRoundRobinPolicy

    from keyspace_migrator.models import Consistency

    from .cassandra import CassandraStore

    cluster_options = {
        "contact_points": settings.contact_points,
        "port": settings.port,
        "max_schema_agreement_wait": settings.max_schema_agreement_wait,
    }
    if settings.username:
        cluster_options["auth_provider"] = PlainTextAuthProvider(
            username=settings.username, password=settings.password or ""
        )
    if settings.local_datacenter:
        cluster_options["load_balancing_policy"] = DCAwareRoundRobinPolicy(
            local_dc=settings.local_datacenter
        )

    cluster = Cluster(**cluster_options)
    try:
        return CassandraStore(
            cluster,
            settings.keyspace,
            lease_consistency=consistency or Consistency.QUORUM,
            owns_cluster=True,
        )
    except StoreUnavailableError:
        cluster.shutdown()
        raise
