"""Audit log writer."""

import logging
from typing import Any, Optional

from ledgersync.database.base import Database
from ledgersync.domain.entities import AuditRecord

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("ledgersync.audit")

CSV_IMPORT_COMPLETED = "csv_import_completed"
CSV_IMPORT_FAILED = "csv_import_failed"
PROVIDER_SYNC_COMPLETED = "provider_sync_completed"
PROVIDER_SYNC_FAILED = "provider_sync_failed"
INGESTION_JOB_ABORTED = "ingestion_job_aborted"

REDACTED = "***"

# Keys whose values never reach the audit log (compared lowercased)
SENSITIVE_KEYS = {
    "password",
    "passwd",
    "secret",
    "client_secret",
    "token",
    "access_token",
    "refresh_token",
    "api_key",
    "apikey",
    "authorization",
    "credentials",
    "private_key",
}


def redact(data: Any, max_depth: int = 10) -> Any:
    """Return a copy of ``data`` with sensitive keys replaced by ``***``."""
    if max_depth <= 0:
        return data
    if isinstance(data, dict):
        return {
            key: (
                REDACTED
                if isinstance(key, str) and key.lower() in SENSITIVE_KEYS
                else redact(value, max_depth - 1)
            )
            for key, value in data.items()
        }
    if isinstance(data, (list, tuple)):
        return [redact(item, max_depth - 1) for item in data]
    return data


class AuditLogWriter:
    """Appends immutable audit entries describing what each job did."""

    def __init__(self, db: Database):
        """Initialize audit log writer.

        Args:
            db: Database instance
        """
        self.db = db

    def record(
        self,
        tenant_id: str,
        event_type: str,
        event_data: dict[str, Any],
        connection_id: Optional[int] = None,
        job_id: Optional[int] = None,
        actor: Optional[str] = None,
    ) -> int:
        """Append one entry and mirror it to the ``ledgersync.audit`` logger.

        Returns:
            Audit entry ID
        """
        entry = self.prepare(tenant_id, event_type, event_data, connection_id, job_id, actor)
        entry_id = self.db.append_audit_entry(
            tenant_id=entry.tenant_id,
            event_type=entry.event_type,
            event_data=entry.event_data,
            connection_id=entry.connection_id,
            job_id=entry.job_id,
            actor=entry.actor,
        )
        self.emit(entry)
        return entry_id

    def prepare(
        self,
        tenant_id: str,
        event_type: str,
        event_data: dict[str, Any],
        connection_id: Optional[int] = None,
        job_id: Optional[int] = None,
        actor: Optional[str] = None,
    ) -> AuditRecord:
        """Build a redacted entry for a caller that commits it with other writes."""
        return AuditRecord(
            tenant_id=tenant_id,
            event_type=event_type,
            event_data=redact(event_data),
            connection_id=connection_id,
            job_id=job_id,
            actor=actor,
        )

    def emit(self, entry: AuditRecord) -> None:
        """Mirror a stored entry to the ``ledgersync.audit`` logger."""
        audit_logger.info(
            "AUDIT %s tenant=%s connection=%s job=%s actor=%s data=%s",
            entry.event_type,
            entry.tenant_id,
            entry.connection_id,
            entry.job_id,
            entry.actor,
            entry.event_data,
        )

    def list_entries(
        self,
        tenant_id: str,
        connection_id: Optional[int] = None,
        job_id: Optional[int] = None,
    ):
        """List audit entries oldest first."""
        return self.db.list_audit_entries(tenant_id, connection_id=connection_id, job_id=job_id)
