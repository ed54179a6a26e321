"""Abstract repository interface for the canonical store.

Every read and write that touches tenant data takes the tenant id and filters
by it, so a foreign id passed by mistake finds nothing instead of another
tenant's rows.
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import Any, Optional

# Import entities directly to avoid circular import through domain/__init__.py
from ledgersync.domain.entities import (
    Account,
    AccountRecord,
    AuditRecord,
    AuditLogEntry,
    Connection,
    ConnectionUpdate,
    IngestionJob,
    JobUpdate,
    RawIngestionData,
    SyncCursor,
    Transaction,
    TransactionRecord,
    UpsertResult,
)


class Database(ABC):
    """Abstract database interface for ledgersync."""

    @abstractmethod
    def connect(self) -> None:
        """Connect to the database."""
        pass

    @abstractmethod
    def disconnect(self) -> None:
        """Disconnect from the database."""
        pass

    @abstractmethod
    def initialize_schema(self) -> None:
        """Initialize database schema (create tables)."""
        pass

    # Tenant membership
    @abstractmethod
    def add_tenant_member(self, tenant_id: str, user_id: str, role: str = "member") -> None:
        """Grant a user access to a tenant (idempotent)."""
        pass

    @abstractmethod
    def get_tenant_role(self, tenant_id: str, user_id: str) -> Optional[str]:
        """Return the user's role in the tenant, or None if not a member."""
        pass

    # Connection operations
    @abstractmethod
    def create_connection(
        self,
        tenant_id: str,
        name: str,
        source_kind: str,
        config: dict[str, Any],
        import_mode: str = "append",
        account_id: Optional[int] = None,
        created_by: Optional[str] = None,
    ) -> int:
        """Create a connection. Returns connection ID."""
        pass

    @abstractmethod
    def get_connection(self, tenant_id: str, connection_id: int) -> Optional[Connection]:
        """Get connection by ID within a tenant."""
        pass

    @abstractmethod
    def get_connection_by_name(self, tenant_id: str, name: str) -> Optional[Connection]:
        """Get connection by name within a tenant."""
        pass

    @abstractmethod
    def list_connections(
        self,
        tenant_id: Optional[str] = None,
        source_kind: Optional[str] = None,
        status: Optional[str] = None,
    ) -> list[Connection]:
        """List connections, optionally filtered.

        ``tenant_id=None`` lists across tenants and is meant for the scheduler.
        """
        pass

    @abstractmethod
    def update_connection(
        self, tenant_id: str, connection_id: int, update: ConnectionUpdate
    ) -> None:
        """Apply an explicit update to a connection's status fields."""
        pass

    # Ingestion job operations
    @abstractmethod
    def begin_job(
        self,
        tenant_id: str,
        connection_id: int,
        job_kind: str,
        triggered_by: Optional[str] = None,
    ) -> int:
        """Create a pending job and claim the connection in one transaction.

        Raises:
            NotFoundError: If the connection does not exist in the tenant
            ConcurrencyError: If the connection already has an active job;
                no job record is created in that case
        """
        pass

    @abstractmethod
    def update_job(self, job_id: int, update: JobUpdate) -> None:
        """Apply an explicit update to a job.

        Raises:
            InvalidTransitionError: If the status change is not a forward move
        """
        pass

    @abstractmethod
    def finish_job(
        self, job_id: int, update: JobUpdate, audit_entry: Optional[AuditRecord] = None
    ) -> None:
        """Apply a terminal update and release the connection's active-job claim.

        The job update, the claim release and ``audit_entry`` (if given) are
        committed together.
        """
        pass

    @abstractmethod
    def abort_job(
        self,
        job_id: int,
        error_message: str,
        audit_entry: Optional[AuditRecord] = None,
    ) -> bool:
        """Fail a job that never reached its own finish and release its claim.

        Returns:
            True if the job was moved to failed (and ``audit_entry`` written),
            False if it was already terminal; a claim it still holds is
            released either way
        """
        pass

    @abstractmethod
    def get_job(self, job_id: int, tenant_id: Optional[str] = None) -> Optional[IngestionJob]:
        """Get job by ID, optionally scoped to a tenant."""
        pass

    @abstractmethod
    def list_jobs(
        self,
        tenant_id: str,
        connection_id: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> list[IngestionJob]:
        """List jobs newest first."""
        pass

    # Raw ingestion data
    @abstractmethod
    def create_raw_data(
        self,
        tenant_id: str,
        connection_id: int,
        job_id: int,
        raw_data: dict[str, Any],
        file_name: Optional[str] = None,
        file_size_bytes: Optional[int] = None,
        page_number: Optional[int] = None,
    ) -> int:
        """Store a write-once input snapshot. Returns raw data ID."""
        pass

    @abstractmethod
    def list_raw_data(self, tenant_id: str, job_id: int) -> list[RawIngestionData]:
        """List snapshots for a job in page order."""
        pass

    # Account operations
    @abstractmethod
    def create_account(
        self,
        tenant_id: str,
        name: str,
        account_type: str = "checking",
        currency: str = "USD",
        balance=None,
        external_account_id: Optional[str] = None,
        connection_id: Optional[int] = None,
    ) -> int:
        """Create an account. Returns account ID."""
        pass

    @abstractmethod
    def get_account(self, tenant_id: str, account_id: int) -> Optional[Account]:
        """Get account by ID within a tenant."""
        pass

    @abstractmethod
    def get_account_by_external_id(
        self, tenant_id: str, connection_id: int, external_account_id: str
    ) -> Optional[Account]:
        """Get a provider account by its external identifier."""
        pass

    @abstractmethod
    def list_accounts(
        self, tenant_id: str, connection_id: Optional[int] = None
    ) -> list[Account]:
        """List accounts for a tenant."""
        pass

    @abstractmethod
    def upsert_accounts(
        self, tenant_id: str, connection_id: int, records: list[AccountRecord]
    ) -> UpsertResult:
        """Insert or update accounts keyed by external identifier, atomically."""
        pass

    @abstractmethod
    def close_missing_accounts(
        self, tenant_id: str, connection_id: int, active_external_ids: list[str]
    ) -> int:
        """Mark the connection's accounts absent from the list as closed."""
        pass

    # Transaction operations
    @abstractmethod
    def upsert_transactions(
        self,
        tenant_id: str,
        connection_id: int,
        source_kind: str,
        job_id: Optional[int],
        records: list[TransactionRecord],
        replace: bool = False,
    ) -> UpsertResult:
        """Insert or update transactions keyed by the dedup key, atomically.

        With ``replace=True`` every existing transaction of the connection is
        deleted first, inside the same database transaction.

        Raises:
            PersistenceError: If the batch could not be written; nothing from
                this call is kept
        """
        pass

    @abstractmethod
    def delete_transactions_by_connection(self, tenant_id: str, connection_id: int) -> int:
        """Delete all transactions of a connection. Returns rows deleted."""
        pass

    @abstractmethod
    def delete_transactions_by_external_ids(
        self, tenant_id: str, connection_id: int, external_ids: list[str]
    ) -> int:
        """Delete transactions by external id. Returns rows deleted."""
        pass

    @abstractmethod
    def list_transactions(
        self,
        tenant_id: str,
        connection_id: Optional[int] = None,
        account_id: Optional[int] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> list[Transaction]:
        """List transactions with optional filters, newest first."""
        pass

    # Sync cursor operations
    @abstractmethod
    def get_sync_cursor(self, tenant_id: str, connection_id: int) -> Optional[SyncCursor]:
        """Get the committed cursor for a connection."""
        pass

    @abstractmethod
    def save_sync_cursor(
        self, tenant_id: str, connection_id: int, cursor: str, job_id: Optional[int] = None
    ) -> None:
        """Persist the cursor after a page's writes succeeded."""
        pass

    # Audit log operations
    @abstractmethod
    def append_audit_entry(
        self,
        tenant_id: str,
        event_type: str,
        event_data: dict[str, Any],
        connection_id: Optional[int] = None,
        job_id: Optional[int] = None,
        actor: Optional[str] = None,
    ) -> int:
        """Append an audit entry. Returns entry ID."""
        pass

    @abstractmethod
    def list_audit_entries(
        self,
        tenant_id: str,
        connection_id: Optional[int] = None,
        job_id: Optional[int] = None,
    ) -> list[AuditLogEntry]:
        """List audit entries oldest first."""
        pass
