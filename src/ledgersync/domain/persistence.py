"""Persistence writer: tenant-scoped, idempotent writes to the canonical store."""

import logging
from typing import Optional

from ledgersync.database.base import Database
from ledgersync.domain.entities import (
    AccountRecord,
    Connection,
    TransactionRecord,
    UpsertResult,
)
from ledgersync.domain.errors import (
    NotFoundError,
    PersistenceError,
    account_not_found,
    connection_not_found,
)

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 500


class PersistenceWriter:
    """Writes normalized records for one tenant.

    Every call re-checks that the connection and the referenced accounts
    belong to the tenant, so a foreign id passed by mistake is rejected
    instead of written.
    """

    def __init__(self, db: Database, batch_size: int = DEFAULT_BATCH_SIZE):
        """Initialize persistence writer.

        Args:
            db: Database instance
            batch_size: Records per upsert batch
        """
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.db = db
        self.batch_size = batch_size

    def _require_connection(self, tenant_id: str, connection_id: int) -> Connection:
        connection = self.db.get_connection(tenant_id, connection_id)
        if connection is None:
            raise NotFoundError(connection_not_found(connection_id))
        return connection

    def _require_accounts(self, tenant_id: str, records: list[TransactionRecord]) -> None:
        for account_id in sorted({r.account_id for r in records}):
            if self.db.get_account(tenant_id, account_id) is None:
                raise NotFoundError(account_not_found(account_id))

    def upsert_accounts(
        self, tenant_id: str, connection_id: int, records: list[AccountRecord]
    ) -> UpsertResult:
        """Insert or update provider accounts keyed by external identifier.

        Returns:
            UpsertResult with inserted/updated counts
        """
        self._require_connection(tenant_id, connection_id)
        if not records:
            return UpsertResult()
        return self.db.upsert_accounts(tenant_id, connection_id, records)

    def upsert_transactions(
        self,
        tenant_id: str,
        connection_id: int,
        records: list[TransactionRecord],
        job_id: Optional[int] = None,
        source_kind: Optional[str] = None,
    ) -> UpsertResult:
        """Insert or update transactions keyed by (tenant, connection, external id).

        Records are written in batches; each batch is atomic.

        Raises:
            NotFoundError: If the connection or an account is not in the tenant
            PersistenceError: If a batch fails; ``written`` counts rows from
                earlier batches that were committed
        """
        connection = self._require_connection(tenant_id, connection_id)
        self._require_accounts(tenant_id, records)
        source_kind = source_kind or connection.source_kind

        total = UpsertResult()
        for start in range(0, len(records), self.batch_size):
            batch = records[start : start + self.batch_size]
            try:
                total += self.db.upsert_transactions(
                    tenant_id, connection_id, source_kind, job_id, batch
                )
            except PersistenceError as e:
                logger.error(
                    "Upsert batch at offset %d failed for connection %s: %s",
                    start,
                    connection_id,
                    e,
                )
                raise PersistenceError(str(e), written=total.total) from e
        return total

    def replace_transactions(
        self,
        tenant_id: str,
        connection_id: int,
        records: list[TransactionRecord],
        job_id: Optional[int] = None,
        source_kind: Optional[str] = None,
    ) -> UpsertResult:
        """Delete the connection's transactions and insert ``records`` atomically.

        Used by override imports; a failure leaves the previous data intact.
        """
        connection = self._require_connection(tenant_id, connection_id)
        self._require_accounts(tenant_id, records)
        return self.db.upsert_transactions(
            tenant_id,
            connection_id,
            source_kind or connection.source_kind,
            job_id,
            records,
            replace=True,
        )

    def delete_transactions_by_connection(self, tenant_id: str, connection_id: int) -> int:
        """Delete every transaction of the connection. Returns rows deleted."""
        self._require_connection(tenant_id, connection_id)
        return self.db.delete_transactions_by_connection(tenant_id, connection_id)

    def delete_transactions_by_external_ids(
        self, tenant_id: str, connection_id: int, external_ids: list[str]
    ) -> int:
        """Delete transactions by external id. Returns rows deleted."""
        self._require_connection(tenant_id, connection_id)
        if not external_ids:
            return 0
        return self.db.delete_transactions_by_external_ids(tenant_id, connection_id, external_ids)
