"""Domain model entities for ledgersync.

These are pure data classes representing business concepts, independent of
database schema. Records returned by the repository are frozen; the only way
to change a stored job or connection is through the explicit update
structures at the bottom of this module.
"""

from dataclasses import dataclass, field, fields
from datetime import datetime, date
from decimal import Decimal
from typing import Any, Optional

from ledgersync.domain.errors import ValidationError

SOURCE_CSV = "csv"

IMPORT_APPEND = "append"
IMPORT_OVERRIDE = "override"
IMPORT_MODES = (IMPORT_APPEND, IMPORT_OVERRIDE)

JOB_MANUAL = "manual"
JOB_SCHEDULED = "scheduled"
JOB_KINDS = (JOB_MANUAL, JOB_SCHEDULED)

JOB_PENDING = "pending"
JOB_RUNNING = "running"
JOB_COMPLETED = "completed"
JOB_FAILED = "failed"
TERMINAL_JOB_STATUSES = (JOB_COMPLETED, JOB_FAILED)

# Allowed forward moves; terminal states have none.
JOB_TRANSITIONS: dict[str, tuple[str, ...]] = {
    JOB_PENDING: (JOB_RUNNING, JOB_FAILED),
    JOB_RUNNING: (JOB_COMPLETED, JOB_FAILED),
    JOB_COMPLETED: (),
    JOB_FAILED: (),
}

DEBIT = "debit"
CREDIT = "credit"
TRANSACTION_TYPES = (DEBIT, CREDIT)

ACCOUNT_ACTIVE = "active"
ACCOUNT_CLOSED = "closed"

CONNECTION_ACTIVE = "active"
CONNECTION_DISABLED = "disabled"

SYNC_SUCCESS = "success"
SYNC_PARTIAL = "partial"
SYNC_ERROR = "error"


@dataclass(frozen=True)
class Connection:
    """A configured data source for one tenant."""

    id: int
    tenant_id: str
    name: str
    source_kind: str
    config: dict[str, Any]
    import_mode: str
    account_id: Optional[int]
    status: str
    active_job_id: Optional[int]
    last_sync_at: Optional[datetime]
    last_sync_status: Optional[str]
    last_error: Optional[str]
    created_by: Optional[str]
    created_at: datetime

    @property
    def is_file_based(self) -> bool:
        return self.source_kind == SOURCE_CSV


@dataclass(frozen=True)
class IngestionJob:
    """One execution attempt against a connection."""

    id: int
    tenant_id: str
    connection_id: int
    job_kind: str
    status: str
    records_fetched: int
    records_processed: int
    records_imported: int
    records_skipped: int
    records_failed: int
    error_message: Optional[str]
    error_details: Optional[dict[str, Any]]
    summary: Optional[dict[str, Any]]
    triggered_by: Optional[str]
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    created_at: datetime

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES


@dataclass(frozen=True)
class RawIngestionData:
    """Write-once snapshot of the input a job received."""

    id: int
    tenant_id: str
    connection_id: int
    job_id: int
    raw_data: dict[str, Any]
    file_name: Optional[str]
    file_size_bytes: Optional[int]
    page_number: Optional[int]
    created_at: datetime


@dataclass(frozen=True)
class Account:
    """Canonical financial account."""

    id: int
    tenant_id: str
    name: str
    account_type: str
    currency: str
    balance: Optional[Decimal]
    external_account_id: Optional[str]
    connection_id: Optional[int]
    status: str
    created_at: datetime


@dataclass(frozen=True)
class Transaction:
    """Canonical tenant-scoped transaction."""

    id: int
    tenant_id: str
    account_id: int
    connection_id: int
    date: date
    amount: Decimal
    currency: str
    description: Optional[str]
    transaction_type: str
    external_transaction_id: str
    source_kind: str
    import_job_id: Optional[int]
    metadata: dict[str, Any]
    imported_at: datetime


@dataclass(frozen=True)
class SyncCursor:
    """Last committed position in a provider's delta stream."""

    connection_id: int
    tenant_id: str
    cursor: str
    job_id: Optional[int]
    updated_at: datetime


@dataclass(frozen=True)
class AuditLogEntry:
    """Immutable record of what a job did."""

    id: int
    tenant_id: str
    connection_id: Optional[int]
    job_id: Optional[int]
    event_type: str
    event_data: dict[str, Any]
    actor: Optional[str]
    created_at: datetime


@dataclass(frozen=True)
class TransactionRecord:
    """A normalized transaction ready to be written.

    Tenant, connection and job are stamped on by the persistence writer.
    """

    account_id: int
    date: date
    amount: Decimal
    currency: str
    description: Optional[str]
    transaction_type: str
    external_transaction_id: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AccountRecord:
    """A normalized account ready to be upserted by external identifier."""

    external_account_id: str
    name: str
    account_type: str
    currency: str
    balance: Optional[Decimal] = None
    status: str = ACCOUNT_ACTIVE


@dataclass(frozen=True)
class AuditRecord:
    """An audit entry ready to be written; ``event_data`` is already redacted."""

    tenant_id: str
    event_type: str
    event_data: dict[str, Any]
    connection_id: Optional[int] = None
    job_id: Optional[int] = None
    actor: Optional[str] = None


@dataclass(frozen=True)
class UpsertResult:
    """Counts from an insert-or-update batch."""

    inserted: int = 0
    updated: int = 0

    @property
    def total(self) -> int:
        return self.inserted + self.updated

    def __add__(self, other: "UpsertResult") -> "UpsertResult":
        return UpsertResult(
            inserted=self.inserted + other.inserted,
            updated=self.updated + other.updated,
        )


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


class _ExplicitUpdate:
    """Mixin for update structures: only fields set to a value are applied."""

    @classmethod
    def from_dict(cls, patch: dict[str, Any]):
        """Build an update from a plain dict, rejecting unknown fields."""
        allowed = {f.name for f in fields(cls)}
        unknown = sorted(set(patch) - allowed)
        if unknown:
            raise ValidationError(
                f"Unknown {cls.__name__} fields: {', '.join(unknown)}. "
                f"Allowed: {', '.join(sorted(allowed))}"
            )
        return cls(**patch)

    def changes(self) -> dict[str, Any]:
        """Return only the fields this update sets."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not UNSET
        }


@dataclass(frozen=True)
class JobUpdate(_ExplicitUpdate):
    """The mutable fields of an ingestion job."""

    status: Any = UNSET
    records_fetched: Any = UNSET
    records_processed: Any = UNSET
    records_imported: Any = UNSET
    records_skipped: Any = UNSET
    records_failed: Any = UNSET
    error_message: Any = UNSET
    error_details: Any = UNSET
    summary: Any = UNSET
    started_at: Any = UNSET
    completed_at: Any = UNSET


@dataclass(frozen=True)
class ConnectionUpdate(_ExplicitUpdate):
    """Status and error fields of a connection; everything else is immutable."""

    status: Any = UNSET
    last_sync_at: Any = UNSET
    last_sync_status: Any = UNSET
    last_error: Any = UNSET
