"""
Distributed mutual exclusion for migration runs.

When several processes start against the same keyspace, only the one that
holds the migration lease applies migrations. The lease is a single row per
keyspace written with the store's conditional ("only if absent") primitive:
no lock service is involved, the store's own linearizable write decides the
winner. It is cooperative and best effort. A claim expires after its TTL so
a crashed holder cannot block migrations forever; a holder whose migration
outlives the TTL can therefore be overtaken, and operators should size
lease_ttl_seconds above their longest expected run.

try_acquire() makes exactly one attempt. A False result means someone else
is migrating; MigrationTask treats that as "skip", and callers who want to
wait must poll themselves.

Example:
    >>> coordinator = LeaseCoordinator(store, ttl_seconds=300)
    >>> with coordinator.hold(target_version=7) as acquired:
    ...     if acquired:
    ...         run_migrations()
"""

import logging
import socket
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import timedelta

from keyspace_migrator.models import Lease
from keyspace_migrator.store.base import LEASE_TABLE, Store, prefixed_table_name
from keyspace_migrator.utils.time import utc_now

logger = logging.getLogger(__name__)

DEFAULT_LEASE_TTL_SECONDS = 300


class LeaseCoordinator:
    """
    Acquires and releases the migration lease for one store session.

    Args:
        store: Session shared with the rest of the migration run
        table_prefix: Optional prefix namespacing the lease table
        ttl_seconds: Lifetime of a claim; must be positive
        owner_id: Identity of this coordinator (defaults to a random UUID)
        owner_host: Host name recorded with the claim (defaults to this host)

    Raises:
        ValueError: If ttl_seconds is not positive
        StoreUnavailableError: If the store cannot be reached
    """

    def __init__(
        self,
        store: Store,
        table_prefix: str = "",
        ttl_seconds: int = DEFAULT_LEASE_TTL_SECONDS,
        owner_id: str | None = None,
        owner_host: str | None = None,
    ):
        if ttl_seconds <= 0:
            raise ValueError(f"Lease TTL must be positive, got: {ttl_seconds}")

        self._store = store
        self.ttl_seconds = ttl_seconds
        self.owner_id = owner_id or str(uuid.uuid4())
        self.owner_host = owner_host or socket.gethostname()
        self.table_name = prefixed_table_name(LEASE_TABLE, table_prefix)
        self._held: Lease | None = None
        self.ensure_schema()

    @property
    def keyspace(self) -> str:
        return self._store.namespace

    @property
    def held(self) -> Lease | None:
        """The claim this coordinator holds, or None."""
        return self._held

    def ensure_schema(self) -> None:
        if not self._store.table_exists(self.table_name):
            self._store.create_lease_table(self.table_name)

    def try_acquire(self, target_version: int) -> bool:
        """
        Attempt once to claim the lease for target_version.

        Returns:
            True if this coordinator now holds the lease (including when it
            already held it), False if another owner holds a live claim
        """
        now = utc_now()
        claim = Lease(
            keyspace=self.keyspace,
            owner_id=self.owner_id,
            owner_host=self.owner_host,
            target_version=target_version,
            acquired_at=now,
            expires_at=now + timedelta(seconds=self.ttl_seconds),
        )

        holder = self._store.insert_lease_if_absent(self.table_name, claim, self.ttl_seconds)

        if holder.is_owned_by(self.owner_id):
            self._held = holder
            logger.info(
                f"Acquired migration lease on keyspace {self.keyspace}",
                extra={
                    "context": {
                        "owner_id": self.owner_id,
                        "target_version": target_version,
                        "ttl_seconds": self.ttl_seconds,
                    }
                },
            )
            return True

        logger.warning(
            f"Migration lease on keyspace {self.keyspace} is held by another process",
            extra={
                "context": {
                    "holder_id": holder.owner_id,
                    "holder_host": holder.owner_host,
                    "holder_target_version": holder.target_version,
                }
            },
        )
        return False

    def release(self) -> None:
        """
        Clear the lease if this coordinator holds it; no-op otherwise.

        The local claim is forgotten even if the delete fails, in which case
        the row lapses when its TTL runs out.
        """
        if self._held is None:
            return
        try:
            self._store.delete_lease(self.table_name, self.keyspace, self.owner_id)
            logger.info(
                f"Released migration lease on keyspace {self.keyspace}",
                extra={"context": {"owner_id": self.owner_id}},
            )
        finally:
            self._held = None

    @contextmanager
    def hold(self, target_version: int) -> Iterator[bool]:
        """
        Scoped acquisition: try once, yield whether the lease was acquired,
        and always release on exit, including when the body raises.

        If the body raises, a failing release is logged and the body's error
        propagates. On a normal exit release errors propagate.
        """
        acquired = self.try_acquire(target_version)
        try:
            yield acquired
        except BaseException:
            self._release_after_error()
            raise
        self.release()

    def _release_after_error(self) -> None:
        try:
            self.release()
        except Exception:
            logger.exception(f"Failed to release migration lease on keyspace {self.keyspace}")
