"""Sync orchestrator: drives one connection's cursor loop against its provider."""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from ledgersync.database.base import Database
from ledgersync.domain.batch_parser import infer_transaction_type
from ledgersync.domain.entities import AccountRecord, Connection, TransactionRecord
from ledgersync.domain.errors import (
    NotFoundError,
    ProviderAuthError,
    ValidationError,
    connection_not_found,
)
from ledgersync.domain.persistence import PersistenceWriter
from ledgersync.domain.sync_adapter import (
    ProviderTransaction,
    SyncAdapter,
    TransactionDeltaPage,
)
from ledgersync.utils.amount_parser import check_precision

logger = logging.getLogger(__name__)

DEFAULT_MAX_PAGES = 50
DEFAULT_TIME_BUDGET = 300.0


@dataclass
class SyncResult:
    """Aggregate outcome of one sync run."""

    accounts_requested: bool = False
    transactions_requested: bool = False
    accounts_synced: int = 0
    accounts_closed: int = 0
    accounts_fetched: bool = False
    transactions_added: int = 0
    transactions_modified: int = 0
    transactions_removed: int = 0
    inserted: int = 0
    updated: int = 0
    pages_committed: int = 0
    starting_cursor: Optional[str] = None
    final_cursor: Optional[str] = None
    partial: bool = False
    partial_reason: Optional[str] = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def transactions_fetched(self) -> int:
        return self.transactions_added + self.transactions_modified

    @property
    def made_progress(self) -> bool:
        if self.transactions_requested:
            return self.pages_committed > 0
        return self.accounts_fetched

    @property
    def failed(self) -> bool:
        """A run fails only when it has errors and committed nothing."""
        return bool(self.errors) and not self.made_progress

    @property
    def note(self) -> Optional[str]:
        if self.partial:
            return f"Partial sync: {self.partial_reason}; next run resumes from the saved cursor"
        if self.errors and not self.failed:
            return "Completed with errors; next run resumes from the saved cursor"
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "accountsSynced": self.accounts_synced,
            "accountsClosed": self.accounts_closed,
            "transactionsAdded": self.transactions_added,
            "transactionsModified": self.transactions_modified,
            "transactionsRemoved": self.transactions_removed,
            "inserted": self.inserted,
            "updated": self.updated,
            "pagesCommitted": self.pages_committed,
            "startingCursor": self.starting_cursor,
            "finalCursor": self.final_cursor,
            "partial": self.partial,
            "note": self.note,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "durationSeconds": round(self.duration_seconds, 3),
        }


def _page_snapshot(page: TransactionDeltaPage) -> dict[str, Any]:
    """JSON-safe copy of a page for adapters that do not supply ``raw``."""

    def item(txn: ProviderTransaction) -> dict[str, Any]:
        return {
            "id": txn.external_id,
            "accountId": txn.account_external_id,
            "date": txn.date.isoformat(),
            "amount": str(txn.amount),
            "currency": txn.currency,
            "description": txn.description,
            "type": txn.transaction_type,
            "metadata": txn.metadata,
        }

    return {
        "added": [item(t) for t in page.added],
        "modified": [item(t) for t in page.modified],
        "removed": list(page.removed),
        "nextCursor": page.next_cursor,
        "hasMore": page.has_more,
    }


class SyncOrchestrator:
    """Runs the incremental sync loop for one connection.

    The cursor is saved only after a page's writes have succeeded, so a crash
    re-processes at most the last page. A failed page fetch ends the run at the
    last committed cursor; it is not retried within the run.
    """

    def __init__(
        self,
        db: Database,
        adapter_lookup: Optional[Callable[[str], SyncAdapter]] = None,
        writer: Optional[PersistenceWriter] = None,
        max_pages: int = DEFAULT_MAX_PAGES,
        time_budget: float = DEFAULT_TIME_BUDGET,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize sync orchestrator.

        Args:
            db: Database instance
            adapter_lookup: Returns the adapter for a connection's source kind;
                defaults to the provider registry
            writer: Persistence writer (one over ``db`` by default)
            max_pages: Page ceiling per run
            time_budget: Wall-clock seconds per run
            clock: Monotonic clock, injectable for tests
        """
        if max_pages < 1:
            raise ValueError("max_pages must be at least 1")
        if adapter_lookup is None:
            from ledgersync.providers import get_adapter

            adapter_lookup = get_adapter
        self.db = db
        self.adapter_lookup = adapter_lookup
        self.writer = writer or PersistenceWriter(db)
        self.max_pages = max_pages
        self.time_budget = time_budget
        self.clock = clock

    def sync(
        self,
        tenant_id: str,
        connection_id: int,
        job_id: Optional[int] = None,
        sync_accounts: bool = True,
        sync_transactions: bool = True,
    ) -> SyncResult:
        """Run one sync.

        Args:
            tenant_id: Tenant ID
            connection_id: Provider connection ID
            job_id: Job to attribute snapshots, cursors and writes to
            sync_accounts: Fetch and upsert the account list first
            sync_transactions: Run the transaction delta loop

        Returns:
            SyncResult

        Raises:
            NotFoundError: If the connection is not in the tenant
            ValidationError: If the connection is file-based
            ProviderAuthError: If the provider rejects the credentials
            PersistenceError: If a page's writes fail
        """
        started = self.clock()
        connection = self.db.get_connection(tenant_id, connection_id)
        if connection is None:
            raise NotFoundError(connection_not_found(connection_id))
        if connection.is_file_based:
            raise ValidationError(f"Connection {connection_id} is file-based and cannot be synced")

        adapter = self.adapter_lookup(connection.source_kind)
        credentials = dict(connection.config.get("credentials") or {})

        result = SyncResult(
            accounts_requested=sync_accounts,
            transactions_requested=sync_transactions,
        )
        saved = self.db.get_sync_cursor(tenant_id, connection_id)
        result.starting_cursor = saved.cursor if saved else None
        result.final_cursor = result.starting_cursor

        if sync_accounts:
            self._sync_accounts(adapter, credentials, connection, result)
        if sync_transactions:
            self._sync_transactions(adapter, credentials, connection, job_id, result, started)

        result.duration_seconds = self.clock() - started
        logger.info(
            "Sync of connection %s finished: %d pages, %d added, %d modified, %d removed, %d errors",
            connection_id,
            result.pages_committed,
            result.transactions_added,
            result.transactions_modified,
            result.transactions_removed,
            len(result.errors),
        )
        return result

    def _sync_accounts(
        self,
        adapter: SyncAdapter,
        credentials: dict[str, Any],
        connection: Connection,
        result: SyncResult,
    ) -> None:
        try:
            accounts = adapter.fetch_accounts(credentials)
        except ProviderAuthError:
            raise
        except Exception as e:
            logger.warning("Account fetch failed for connection %s: %s", connection.id, e)
            result.errors.append(f"Accounts: {e}")
            return

        records = [
            AccountRecord(
                external_account_id=account.external_id,
                name=account.name,
                account_type=account.account_type,
                currency=account.currency,
                balance=account.balance,
                status=account.status,
            )
            for account in accounts
        ]
        upserted = self.writer.upsert_accounts(connection.tenant_id, connection.id, records)
        result.accounts_fetched = True
        result.accounts_synced = upserted.total

        closed = self.db.close_missing_accounts(
            connection.tenant_id, connection.id, [a.external_id for a in accounts]
        )
        result.accounts_closed = closed
        if closed:
            result.warnings.append(
                f"{closed} account(s) no longer returned by the provider were marked closed"
            )

    def _sync_transactions(
        self,
        adapter: SyncAdapter,
        credentials: dict[str, Any],
        connection: Connection,
        job_id: Optional[int],
        result: SyncResult,
        started: float,
    ) -> None:
        tenant_id = connection.tenant_id
        cursor = result.starting_cursor
        account_ids: dict[str, Optional[int]] = {}
        page_number = 0

        while True:
            if page_number >= self.max_pages:
                result.partial = True
                result.partial_reason = f"reached the limit of {self.max_pages} pages"
                break
            if self.clock() - started >= self.time_budget:
                result.partial = True
                result.partial_reason = f"time budget of {self.time_budget:g}s exhausted"
                break
            page_number += 1

            try:
                page = adapter.fetch_transaction_deltas(credentials, cursor)
            except ProviderAuthError:
                raise
            except Exception as e:
                logger.warning(
                    "Page %d fetch failed for connection %s: %s", page_number, connection.id, e
                )
                result.errors.append(f"Page {page_number}: {e}")
                break

            if job_id is not None:
                self.db.create_raw_data(
                    tenant_id,
                    connection.id,
                    job_id,
                    page.raw if page.raw is not None else _page_snapshot(page),
                    page_number=page_number,
                )

            try:
                records = [
                    self._normalize(adapter, connection, item, account_ids)
                    for item in list(page.added) + list(page.modified)
                ]
            except ValidationError as e:
                logger.warning(
                    "Page %d of connection %s could not be normalized: %s",
                    page_number,
                    connection.id,
                    e,
                )
                result.errors.append(f"Page {page_number}: {e}")
                break

            upserted = self.writer.upsert_transactions(
                tenant_id, connection.id, records, job_id=job_id
            )
            removed = self.writer.delete_transactions_by_external_ids(
                tenant_id, connection.id, list(page.removed)
            )

            if page.next_cursor is not None:
                self.db.save_sync_cursor(tenant_id, connection.id, page.next_cursor, job_id)
                result.final_cursor = page.next_cursor

            result.pages_committed += 1
            result.transactions_added += len(page.added)
            result.transactions_modified += len(page.modified)
            result.transactions_removed += removed
            result.inserted += upserted.inserted
            result.updated += upserted.updated

            if not page.has_more:
                break
            if page.next_cursor is None or page.next_cursor == cursor:
                result.errors.append(
                    f"Page {page_number}: provider reported more data without advancing the cursor"
                )
                break
            cursor = page.next_cursor

    def _normalize(
        self,
        adapter: SyncAdapter,
        connection: Connection,
        item: ProviderTransaction,
        account_ids: dict[str, Optional[int]],
    ) -> TransactionRecord:
        if not item.external_id:
            raise ValidationError("Provider returned a transaction without an identifier")

        account_id = None
        if item.account_external_id:
            if item.account_external_id not in account_ids:
                account = self.db.get_account_by_external_id(
                    connection.tenant_id, connection.id, item.account_external_id
                )
                account_ids[item.account_external_id] = account.id if account else None
            account_id = account_ids[item.account_external_id]
        if account_id is None:
            account_id = connection.account_id
        if account_id is None:
            raise ValidationError(
                f"Transaction {item.external_id} references unknown account "
                f"'{item.account_external_id}' and the connection has no default account"
            )

        try:
            check_precision(item.amount)
        except ValueError as e:
            raise ValidationError(f"Transaction {item.external_id}: {e}")

        metadata = dict(item.metadata)
        metadata.setdefault("provider", adapter.provider_name or connection.source_kind)
        return TransactionRecord(
            account_id=account_id,
            date=item.date,
            amount=item.amount,
            currency=item.currency,
            description=item.description,
            transaction_type=item.transaction_type or infer_transaction_type(item.amount),
            external_transaction_id=item.external_id,
            metadata=metadata,
        )
