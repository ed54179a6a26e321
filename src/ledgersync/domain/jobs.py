"""Ingestion job controller.

Wraps a file import or a provider sync in a tracked job:

    pending -> running -> completed | failed

Rejections that happen before a job exists (unknown connection, missing
tenant access, another job already active) raise domain errors. Once a job
exists nothing escapes: every outcome ends in a terminal job state with
exactly one audit entry. A run interrupted by something that is not an
``Exception`` (KeyboardInterrupt, SystemExit) is marked failed and its claim
released before the interruption propagates.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, UTC
from typing import Any, Optional

from ledgersync.database.base import Database
from ledgersync.domain import audit
from ledgersync.domain.audit import AuditLogWriter
from ledgersync.domain.batch_parser import BatchParser, ColumnMapping, ParseResult, ParserConfig
from ledgersync.domain.connection import validate_import_mode
from ledgersync.domain.entities import (
    IMPORT_OVERRIDE,
    JOB_COMPLETED,
    JOB_FAILED,
    JOB_MANUAL,
    JOB_RUNNING,
    SYNC_ERROR,
    SYNC_PARTIAL,
    SYNC_SUCCESS,
    Connection,
    ConnectionUpdate,
    IngestionJob,
    JobUpdate,
    UpsertResult,
)
from ledgersync.domain.errors import (
    NotFoundError,
    ValidationError,
    account_not_found,
    connection_not_found,
    job_not_found,
)
from ledgersync.domain.persistence import PersistenceWriter
from ledgersync.domain.sync import SyncOrchestrator, SyncResult
from ledgersync.domain.tenant import TenantAccessService

logger = logging.getLogger(__name__)

# Added to the sync time budget before an unfinished job counts as abandoned.
STALE_JOB_MARGIN = 600.0


def _now() -> datetime:
    return datetime.now(UTC)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; they were written in UTC.
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


@dataclass(frozen=True)
class JobOutcome:
    """Terminal state of a job plus the delegate's report."""

    job: IngestionJob
    connection: Connection
    parse_result: Optional[ParseResult] = None
    sync_result: Optional[SyncResult] = None
    upsert: Optional[UpsertResult] = None

    @property
    def success(self) -> bool:
        return self.job.status == JOB_COMPLETED


class IngestionJobController:
    """Runs file imports and provider syncs as tracked jobs."""

    def __init__(
        self,
        db: Database,
        orchestrator: Optional[SyncOrchestrator] = None,
        writer: Optional[PersistenceWriter] = None,
        parser: Optional[BatchParser] = None,
        stale_job_after: Optional[float] = None,
    ):
        """Initialize job controller.

        Args:
            db: Database instance
            orchestrator: Sync orchestrator (a default one over ``db`` if None)
            writer: Persistence writer for file imports
            parser: Batch parser for file imports
            stale_job_after: Seconds after which an unfinished job holding a
                connection is treated as abandoned (defaults to the sync time
                budget plus a margin)
        """
        self.db = db
        self.writer = writer or PersistenceWriter(db)
        self.orchestrator = orchestrator or SyncOrchestrator(db, writer=self.writer)
        self.parser = parser or BatchParser()
        self.audit = AuditLogWriter(db)
        self.access = TenantAccessService(db)
        if stale_job_after is None:
            stale_job_after = self.orchestrator.time_budget + STALE_JOB_MARGIN
        self.stale_job_after = timedelta(seconds=stale_job_after)

    def _require_connection(self, tenant_id: str, connection_id: int) -> Connection:
        connection = self.db.get_connection(tenant_id, connection_id)
        if connection is None:
            raise NotFoundError(connection_not_found(connection_id))
        return connection

    def _abandon(
        self, job_id: int, connection: Connection, actor: Optional[str], message: str
    ) -> bool:
        """Fail an unfinished job and free its connection, with one audit entry."""
        entry = self.audit.prepare(
            tenant_id=connection.tenant_id,
            event_type=audit.INGESTION_JOB_ABORTED,
            event_data={
                "status": JOB_FAILED,
                "sourceKind": connection.source_kind,
                "errorMessage": message,
            },
            connection_id=connection.id,
            job_id=job_id,
            actor=actor,
        )
        if not self.db.abort_job(job_id, message, audit_entry=entry):
            return False
        self.audit.emit(entry)
        logger.warning(
            "Job %s on connection %s (tenant %s) aborted: %s",
            job_id,
            connection.id,
            connection.tenant_id,
            message,
        )
        return True

    def _outcome_not_recorded(
        self, job_id: int, connection: Connection, actor: Optional[str], error: Exception
    ) -> JobOutcome:
        """Fail a job whose own finish could not be written."""
        logger.exception("Could not record the outcome of job %s", job_id)
        self._abandon(job_id, connection, actor, f"Could not record outcome: {error}")
        return JobOutcome(job=self.db.get_job(job_id), connection=connection)

    def _recover_stale_claim(self, connection: Connection) -> None:
        """Release the connection if the job holding it was abandoned."""
        if connection.active_job_id is None:
            return
        job = self.db.get_job(connection.active_job_id)
        if job is None:
            return
        if not job.is_terminal:
            since = _as_utc(job.started_at or job.created_at)
            if _now() - since < self.stale_job_after:
                return
        self._abandon(
            job.id,
            connection,
            None,
            f"Abandoned: no finish within {int(self.stale_job_after.total_seconds())}s",
        )

    def _start(self, connection: Connection, job_kind: str, actor: Optional[str]) -> int:
        self._recover_stale_claim(connection)
        job_id = self.db.begin_job(connection.tenant_id, connection.id, job_kind, triggered_by=actor)
        try:
            self.db.update_job(job_id, JobUpdate(status=JOB_RUNNING, started_at=_now()))
        except BaseException as e:
            self._abandon(job_id, connection, actor, f"Job could not be started: {e}")
            raise
        logger.info(
            "Job %s running for connection %s (tenant %s, %s)",
            job_id,
            connection.id,
            connection.tenant_id,
            job_kind,
        )
        return job_id

    def _finish(
        self,
        job_id: int,
        connection: Connection,
        status: str,
        event_type: str,
        actor: Optional[str],
        counts: dict[str, int],
        summary: dict[str, Any],
        error_message: Optional[str] = None,
        error_details: Optional[dict[str, Any]] = None,
    ) -> IngestionJob:
        entry = self.audit.prepare(
            tenant_id=connection.tenant_id,
            event_type=event_type,
            event_data={
                "status": status,
                "sourceKind": connection.source_kind,
                "counts": counts,
                "errorMessage": error_message,
            },
            connection_id=connection.id,
            job_id=job_id,
            actor=actor,
        )
        self.db.finish_job(
            job_id,
            JobUpdate(
                status=status,
                records_fetched=counts.get("fetched", 0),
                records_processed=counts.get("processed", 0),
                records_imported=counts.get("imported", 0),
                records_skipped=counts.get("skipped", 0),
                records_failed=counts.get("failed", 0),
                error_message=error_message,
                error_details=error_details,
                summary=summary,
                completed_at=_now(),
            ),
            audit_entry=entry,
        )
        self.audit.emit(entry)
        log = logger.info if status == JOB_COMPLETED else logger.warning
        log(
            "Job %s %s for connection %s (tenant %s): %s",
            job_id,
            status,
            connection.id,
            connection.tenant_id,
            counts,
        )
        return self.db.get_job(job_id)

    def abort_job(
        self,
        tenant_id: str,
        job_id: int,
        actor: Optional[str] = None,
        reason: Optional[str] = None,
        authorize: bool = True,
    ) -> IngestionJob:
        """Fail a pending or running job by hand and release its connection.

        Raises:
            AuthorizationError: If ``actor`` is not a tenant member
            NotFoundError: If the job is not in the tenant
            ValidationError: If the job already finished
        """
        if authorize:
            self.access.require_member(tenant_id, actor)
        job = self.db.get_job(job_id, tenant_id=tenant_id)
        if job is None:
            raise NotFoundError(job_not_found(job_id))
        if job.is_terminal:
            raise ValidationError(f"Job {job_id} already finished ({job.status})")
        connection = self._require_connection(tenant_id, job.connection_id)
        message = f"Aborted by {actor or 'operator'}"
        if reason:
            message = f"{message}: {reason}"
        self._abandon(job_id, connection, actor, message)
        return self.db.get_job(job_id)

    def run_file_import(
        self,
        tenant_id: str,
        connection_id: int,
        content: str,
        mapping: ColumnMapping,
        config: Optional[ParserConfig] = None,
        account_id: Optional[int] = None,
        actor: Optional[str] = None,
        import_mode: Optional[str] = None,
        job_kind: str = JOB_MANUAL,
        file_name: Optional[str] = None,
        authorize: bool = True,
    ) -> JobOutcome:
        """Parse and persist one file as a job.

        Args:
            tenant_id: Tenant ID
            connection_id: File connection ID
            content: Raw file content
            mapping: Confirmed column mapping
            config: Parser formatting options
            account_id: Target account (defaults to the connection's account)
            actor: Acting user
            import_mode: "append" or "override" (defaults to the connection's)
            job_kind: "manual" or "scheduled"
            file_name: Original file name for the raw snapshot
            authorize: Require ``actor`` to be a tenant member

        Returns:
            JobOutcome in a terminal state

        Raises:
            AuthorizationError: If ``actor`` is not a tenant member
            NotFoundError: If the connection is not in the tenant
            ValidationError: If the connection is not file-based or the mode is invalid
            ConcurrencyError: If the connection already has an active job
        """
        config = config or ParserConfig()
        if authorize:
            self.access.require_member(tenant_id, actor)
        connection = self._require_connection(tenant_id, connection_id)
        if not connection.is_file_based:
            raise ValidationError(f"Connection {connection_id} is not a file import connection")
        mode = validate_import_mode(import_mode or connection.import_mode)
        account_id = account_id if account_id is not None else connection.account_id

        job_id = self._start(connection, job_kind, actor)
        try:
            return self._run_file_job(
                job_id, connection, actor, content, mapping, config, account_id, mode, file_name
            )
        except Exception as e:
            return self._outcome_not_recorded(job_id, connection, actor, e)
        except BaseException as e:
            self._abandon(job_id, connection, actor, f"Interrupted: {type(e).__name__}")
            raise

    def _run_file_job(
        self,
        job_id: int,
        connection: Connection,
        actor: Optional[str],
        content: str,
        mapping: ColumnMapping,
        config: ParserConfig,
        account_id: Optional[int],
        mode: str,
        file_name: Optional[str],
    ) -> JobOutcome:
        tenant_id = connection.tenant_id
        result: Optional[ParseResult] = None
        records: list = []
        upsert: Optional[UpsertResult] = None
        try:
            self.db.create_raw_data(
                tenant_id,
                connection.id,
                job_id,
                {
                    "content": content,
                    "columnMapping": mapping.to_dict(),
                    "config": config.to_dict(),
                    "accountId": account_id,
                    "importMode": mode,
                },
                file_name=file_name,
                file_size_bytes=len(content.encode("utf-8")) if content else 0,
            )

            account = self.db.get_account(tenant_id, account_id) if account_id is not None else None
            if account is None:
                raise NotFoundError(account_not_found(account_id))

            result = self.parser.parse(content, mapping, config)
            if result.success:
                currency = config.currency or account.currency
                records = [parsed.to_record(account.id, currency) for parsed in result.records]
                if mode == IMPORT_OVERRIDE:
                    upsert = self.writer.replace_transactions(
                        tenant_id, connection.id, records, job_id=job_id
                    )
                else:
                    upsert = self.writer.upsert_transactions(
                        tenant_id, connection.id, records, job_id=job_id
                    )
        except Exception as e:
            logger.exception("File import job %s failed", job_id)
            written = getattr(e, "written", 0)
            counts = {
                "fetched": result.summary.total_rows if result else 0,
                "processed": result.summary.valid_rows if result else 0,
                "imported": written,
                "skipped": result.summary.invalid_rows if result else 0,
                "failed": len(records) - written,
            }
            job = self._finish(
                job_id,
                connection,
                JOB_FAILED,
                audit.CSV_IMPORT_FAILED,
                actor,
                counts,
                summary={"importMode": mode, "parse": result.to_dict() if result else None},
                error_message=str(e),
                error_details={"exception": type(e).__name__, "written": written},
            )
            return JobOutcome(job=job, connection=connection, parse_result=result)

        counts = {
            "fetched": result.summary.total_rows,
            "processed": result.summary.valid_rows,
            "imported": upsert.total if upsert else 0,
            "skipped": result.summary.invalid_rows,
            "failed": 0,
        }
        if upsert is None:
            file_errors = [e.message for e in result.errors if e.row == 0]
            job = self._finish(
                job_id,
                connection,
                JOB_FAILED,
                audit.CSV_IMPORT_FAILED,
                actor,
                counts,
                summary={"importMode": mode, "parse": result.to_dict()},
                error_message="; ".join(file_errors) or "No valid transactions found in file",
                error_details=result.to_dict(),
            )
            return JobOutcome(job=job, connection=connection, parse_result=result)

        job = self._finish(
            job_id,
            connection,
            JOB_COMPLETED,
            audit.CSV_IMPORT_COMPLETED,
            actor,
            counts,
            summary={
                "importMode": mode,
                "inserted": upsert.inserted,
                "updated": upsert.updated,
                "parse": result.to_dict(),
            },
        )
        return JobOutcome(job=job, connection=connection, parse_result=result, upsert=upsert)

    def run_provider_sync(
        self,
        tenant_id: str,
        connection_id: int,
        actor: Optional[str] = None,
        job_kind: str = JOB_MANUAL,
        sync_accounts: bool = True,
        sync_transactions: bool = True,
        authorize: bool = True,
    ) -> JobOutcome:
        """Run one provider sync as a job.

        The job fails only when the run committed nothing and reported errors,
        or when an exception (rejected credentials, persistence failure)
        escaped the orchestrator. Hitting the page or time ceiling completes
        the job with a partial-progress note.

        Raises:
            AuthorizationError: If ``actor`` is not a tenant member
            NotFoundError: If the connection is not in the tenant
            ValidationError: If the connection is file-based
            ConcurrencyError: If the connection already has an active job
        """
        if authorize:
            self.access.require_member(tenant_id, actor)
        connection = self._require_connection(tenant_id, connection_id)
        if connection.is_file_based:
            raise ValidationError(f"Connection {connection_id} is file-based and cannot be synced")

        job_id = self._start(connection, job_kind, actor)
        try:
            return self._run_sync_job(
                job_id, connection, actor, sync_accounts, sync_transactions
            )
        except Exception as e:
            return self._outcome_not_recorded(job_id, connection, actor, e)
        except BaseException as e:
            self._abandon(job_id, connection, actor, f"Interrupted: {type(e).__name__}")
            raise

    def _run_sync_job(
        self,
        job_id: int,
        connection: Connection,
        actor: Optional[str],
        sync_accounts: bool,
        sync_transactions: bool,
    ) -> JobOutcome:
        try:
            result = self.orchestrator.sync(
                connection.tenant_id,
                connection.id,
                job_id=job_id,
                sync_accounts=sync_accounts,
                sync_transactions=sync_transactions,
            )
        except Exception as e:
            logger.exception("Provider sync job %s failed", job_id)
            self._record_sync_status(connection, SYNC_ERROR, str(e))
            job = self._finish(
                job_id,
                connection,
                JOB_FAILED,
                audit.PROVIDER_SYNC_FAILED,
                actor,
                {"fetched": 0, "processed": 0, "imported": getattr(e, "written", 0)},
                summary={},
                error_message=str(e),
                error_details={"exception": type(e).__name__},
            )
            return JobOutcome(job=job, connection=connection)

        counts = {
            "fetched": result.transactions_fetched,
            "processed": result.transactions_fetched,
            "imported": result.inserted + result.updated,
            "skipped": 0,
            "failed": 0,
        }
        if result.failed:
            message = "; ".join(result.errors)
            self._record_sync_status(connection, SYNC_ERROR, message)
            job = self._finish(
                job_id,
                connection,
                JOB_FAILED,
                audit.PROVIDER_SYNC_FAILED,
                actor,
                counts,
                summary=result.to_dict(),
                error_message=message,
                error_details={"errors": list(result.errors)},
            )
        else:
            partial = result.partial or bool(result.errors)
            self._record_sync_status(
                connection,
                SYNC_PARTIAL if partial else SYNC_SUCCESS,
                "; ".join(result.errors) or None,
            )
            job = self._finish(
                job_id,
                connection,
                JOB_COMPLETED,
                audit.PROVIDER_SYNC_COMPLETED,
                actor,
                counts,
                summary=result.to_dict(),
                error_details={"errors": list(result.errors)} if result.errors else None,
            )
        return JobOutcome(job=job, connection=connection, sync_result=result)

    def _record_sync_status(
        self, connection: Connection, status: str, error: Optional[str]
    ) -> None:
        self.db.update_connection(
            connection.tenant_id,
            connection.id,
            ConnectionUpdate(last_sync_at=_now(), last_sync_status=status, last_error=error),
        )
