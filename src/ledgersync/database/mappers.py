"""Mapper functions to convert between domain models and SQLAlchemy models.

This layer isolates the conversion logic so domain entities stay free of ORM
state. JSON columns are copied so callers cannot mutate session-owned data.
"""

import copy

from ledgersync.domain import entities as domain
from ledgersync.database.models import (
    Account as ORMAccount,
    AuditLogEntry as ORMAuditLogEntry,
    Connection as ORMConnection,
    IngestionJob as ORMIngestionJob,
    RawIngestionData as ORMRawIngestionData,
    SyncCursor as ORMSyncCursor,
    Transaction as ORMTransaction,
)


def connection_to_domain(orm_connection: ORMConnection) -> domain.Connection:
    """Convert SQLAlchemy Connection model to domain Connection entity."""
    return domain.Connection(
        id=orm_connection.id,
        tenant_id=orm_connection.tenant_id,
        name=orm_connection.name,
        source_kind=orm_connection.source_kind,
        config=copy.deepcopy(orm_connection.config or {}),
        import_mode=orm_connection.import_mode,
        account_id=orm_connection.account_id,
        status=orm_connection.status,
        active_job_id=orm_connection.active_job_id,
        last_sync_at=orm_connection.last_sync_at,
        last_sync_status=orm_connection.last_sync_status,
        last_error=orm_connection.last_error,
        created_by=orm_connection.created_by,
        created_at=orm_connection.created_at,
    )


def job_to_domain(orm_job: ORMIngestionJob) -> domain.IngestionJob:
    """Convert SQLAlchemy IngestionJob model to domain IngestionJob entity."""
    return domain.IngestionJob(
        id=orm_job.id,
        tenant_id=orm_job.tenant_id,
        connection_id=orm_job.connection_id,
        job_kind=orm_job.job_kind,
        status=orm_job.status,
        records_fetched=orm_job.records_fetched or 0,
        records_processed=orm_job.records_processed or 0,
        records_imported=orm_job.records_imported or 0,
        records_skipped=orm_job.records_skipped or 0,
        records_failed=orm_job.records_failed or 0,
        error_message=orm_job.error_message,
        error_details=copy.deepcopy(orm_job.error_details),
        summary=copy.deepcopy(orm_job.summary),
        triggered_by=orm_job.triggered_by,
        started_at=orm_job.started_at,
        completed_at=orm_job.completed_at,
        created_at=orm_job.created_at,
    )


def raw_data_to_domain(orm_raw: ORMRawIngestionData) -> domain.RawIngestionData:
    """Convert SQLAlchemy RawIngestionData model to domain entity."""
    return domain.RawIngestionData(
        id=orm_raw.id,
        tenant_id=orm_raw.tenant_id,
        connection_id=orm_raw.connection_id,
        job_id=orm_raw.job_id,
        raw_data=copy.deepcopy(orm_raw.raw_data),
        file_name=orm_raw.file_name,
        file_size_bytes=orm_raw.file_size_bytes,
        page_number=orm_raw.page_number,
        created_at=orm_raw.created_at,
    )


def account_to_domain(orm_account: ORMAccount) -> domain.Account:
    """Convert SQLAlchemy Account model to domain Account entity."""
    return domain.Account(
        id=orm_account.id,
        tenant_id=orm_account.tenant_id,
        name=orm_account.name,
        account_type=orm_account.account_type,
        currency=orm_account.currency,
        balance=orm_account.balance,
        external_account_id=orm_account.external_account_id,
        connection_id=orm_account.connection_id,
        status=orm_account.status,
        created_at=orm_account.created_at,
    )


def transaction_to_domain(orm_transaction: ORMTransaction) -> domain.Transaction:
    """Convert SQLAlchemy Transaction model to domain Transaction entity."""
    return domain.Transaction(
        id=orm_transaction.id,
        tenant_id=orm_transaction.tenant_id,
        account_id=orm_transaction.account_id,
        connection_id=orm_transaction.connection_id,
        date=orm_transaction.date,
        amount=orm_transaction.amount,
        currency=orm_transaction.currency,
        description=orm_transaction.description,
        transaction_type=orm_transaction.transaction_type,
        external_transaction_id=orm_transaction.external_transaction_id,
        source_kind=orm_transaction.source_kind,
        import_job_id=orm_transaction.import_job_id,
        metadata=copy.deepcopy(orm_transaction.metadata_ or {}),
        imported_at=orm_transaction.imported_at,
    )


def sync_cursor_to_domain(orm_cursor: ORMSyncCursor) -> domain.SyncCursor:
    """Convert SQLAlchemy SyncCursor model to domain SyncCursor entity."""
    return domain.SyncCursor(
        connection_id=orm_cursor.connection_id,
        tenant_id=orm_cursor.tenant_id,
        cursor=orm_cursor.cursor,
        job_id=orm_cursor.job_id,
        updated_at=orm_cursor.updated_at,
    )


def audit_entry_to_domain(orm_entry: ORMAuditLogEntry) -> domain.AuditLogEntry:
    """Convert SQLAlchemy AuditLogEntry model to domain AuditLogEntry entity."""
    return domain.AuditLogEntry(
        id=orm_entry.id,
        tenant_id=orm_entry.tenant_id,
        connection_id=orm_entry.connection_id,
        job_id=orm_entry.job_id,
        event_type=orm_entry.event_type,
        event_data=copy.deepcopy(orm_entry.event_data or {}),
        actor=orm_entry.actor,
        created_at=orm_entry.created_at,
    )
