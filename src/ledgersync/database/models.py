"""SQLAlchemy models for the ledgersync store."""

from datetime import datetime, UTC
from sqlalchemy import (
    JSON,
    Column,
    Integer,
    String,
    ForeignKey,
    DateTime,
    Date,
    Numeric,
    Text,
    UniqueConstraint,
    Index,
    create_engine,
)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker, Session

from ledgersync.utils.amount_parser import AMOUNT_DECIMAL_PLACES, AMOUNT_INTEGER_DIGITS

AMOUNT_PRECISION = AMOUNT_INTEGER_DIGITS + AMOUNT_DECIMAL_PLACES


def _utcnow() -> datetime:
    return datetime.now(UTC)


Base = declarative_base()


class TenantMember(Base):
    """Membership of a user in a tenant (organization)."""

    __tablename__ = "tenant_members"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String, nullable=False)
    user_id = Column(String, nullable=False)
    role = Column(String, nullable=False, default="member")
    created_at = Column(DateTime, default=_utcnow, nullable=False)

    __table_args__ = (UniqueConstraint("tenant_id", "user_id", name="uq_tenant_member"),)


class Connection(Base):
    """Configured data source for one tenant."""

    __tablename__ = "connections"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    source_kind = Column(String, nullable=False)
    config = Column(JSON, nullable=False, default=dict)
    import_mode = Column(String, nullable=False, default="append")
    # Default target account for file imports and unmatched provider rows
    account_id = Column(Integer, nullable=True)
    status = Column(String, nullable=False, default="active")
    # Non-null while a job runs; claimed with a conditional UPDATE.
    active_job_id = Column(Integer, nullable=True)
    last_sync_at = Column(DateTime, nullable=True)
    last_sync_status = Column(String, nullable=True)
    last_error = Column(Text, nullable=True)
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime, default=_utcnow, nullable=False)

    __table_args__ = (UniqueConstraint("tenant_id", "name", name="uq_connection_tenant_name"),)

    jobs = relationship("IngestionJob", back_populates="connection")


class IngestionJob(Base):
    """One execution attempt against a connection. Never deleted."""

    __tablename__ = "ingestion_jobs"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String, nullable=False, index=True)
    connection_id = Column(Integer, ForeignKey("connections.id"), nullable=False)
    job_kind = Column(String, nullable=False, default="manual")
    status = Column(String, nullable=False, default="pending")
    records_fetched = Column(Integer, nullable=False, default=0)
    records_processed = Column(Integer, nullable=False, default=0)
    records_imported = Column(Integer, nullable=False, default=0)
    records_skipped = Column(Integer, nullable=False, default=0)
    records_failed = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    error_details = Column(JSON, nullable=True)
    summary = Column(JSON, nullable=True)
    triggered_by = Column(String, nullable=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=_utcnow, nullable=False)

    connection = relationship("Connection", back_populates="jobs")


class RawIngestionData(Base):
    """Untouched input snapshot linked to a job."""

    __tablename__ = "raw_ingestion_data"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String, nullable=False)
    connection_id = Column(Integer, ForeignKey("connections.id"), nullable=False)
    job_id = Column(Integer, ForeignKey("ingestion_jobs.id"), nullable=False, index=True)
    raw_data = Column(JSON, nullable=False)
    file_name = Column(String, nullable=True)
    file_size_bytes = Column(Integer, nullable=True)
    page_number = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=_utcnow, nullable=False)


class Account(Base):
    """Canonical financial account."""

    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    account_type = Column(String, nullable=False, default="checking")
    currency = Column(String(3), nullable=False, default="USD")
    balance = Column(Numeric(AMOUNT_PRECISION, AMOUNT_DECIMAL_PLACES), nullable=True)
    external_account_id = Column(String, nullable=True)
    connection_id = Column(Integer, ForeignKey("connections.id"), nullable=True)
    status = Column(String, nullable=False, default="active")
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "connection_id", "external_account_id", name="uq_account_external_id"
        ),
    )


class Transaction(Base):
    """Canonical transaction."""

    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String, nullable=False)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    connection_id = Column(Integer, ForeignKey("connections.id"), nullable=False)
    date = Column(Date, nullable=False)
    amount = Column(Numeric(AMOUNT_PRECISION, AMOUNT_DECIMAL_PLACES), nullable=False)
    currency = Column(String(3), nullable=False)
    description = Column(String, nullable=True)
    transaction_type = Column(String, nullable=False, default="credit")
    external_transaction_id = Column(String, nullable=False)
    source_kind = Column(String, nullable=False)
    import_job_id = Column(Integer, ForeignKey("ingestion_jobs.id"), nullable=True)
    # "metadata" is reserved on declarative classes
    metadata_ = Column("metadata", JSON, nullable=False, default=dict)
    imported_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    # Dedup key that makes re-imports idempotent
    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "connection_id",
            "external_transaction_id",
            name="uq_transaction_dedup_key",
        ),
        Index("ix_transactions_tenant_account_date", "tenant_id", "account_id", "date"),
    )


class SyncCursor(Base):
    """Provider cursor per connection."""

    __tablename__ = "sync_cursors"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String, nullable=False)
    connection_id = Column(Integer, ForeignKey("connections.id"), nullable=False, unique=True)
    cursor = Column(Text, nullable=False)
    job_id = Column(Integer, ForeignKey("ingestion_jobs.id"), nullable=True)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)


class AuditLogEntry(Base):
    """Append-only audit record."""

    __tablename__ = "audit_log"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String, nullable=False, index=True)
    connection_id = Column(Integer, ForeignKey("connections.id"), nullable=True)
    job_id = Column(Integer, ForeignKey("ingestion_jobs.id"), nullable=True)
    event_type = Column(String, nullable=False)
    event_data = Column(JSON, nullable=False, default=dict)
    actor = Column(String, nullable=True)
    created_at = Column(DateTime, default=_utcnow, nullable=False)


def create_session_factory(database_url: str) -> sessionmaker[Session]:
    """Create a SQLAlchemy session factory."""
    engine = create_engine(database_url, echo=False)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine)
