"""Tests for the ingestion job controller."""

from dataclasses import replace
from datetime import datetime, timedelta, UTC
from decimal import Decimal

import pytest

from ledgersync.domain import audit
from ledgersync.domain.batch_parser import ColumnMapping
from ledgersync.domain.connection import ConnectionService
from ledgersync.domain.entities import JobUpdate
from ledgersync.domain.errors import (
    AuthorizationError,
    ConcurrencyError,
    NotFoundError,
    PersistenceError,
    ProviderAuthError,
    ProviderError,
    ValidationError,
)
from ledgersync.domain.jobs import IngestionJobController
from ledgersync.domain.persistence import PersistenceWriter

TENANT = "acme"
USER = "alice"

CONTENT = "Date,Amount,Desc,Ref\n2024-01-01,100.00,Coffee,R1\n2024-01-02,abc,Lunch,R2\n"
MAPPING = ColumnMapping(date="Date", amount="Amount", description="Desc", reference="Ref")


@pytest.fixture
def file_connection(temp_db, tenant_member, sample_account):
    return ConnectionService(temp_db).get_or_create_file_connection(
        TENANT, "Bank export", sample_account.id, created_by=USER
    )


@pytest.fixture
def status_log(temp_db, monkeypatch):
    """Record every status a job is moved to."""
    statuses = []
    update_job = temp_db.update_job
    finish_job = temp_db.finish_job

    def recording_update(job_id, update):
        statuses.append(update.changes().get("status"))
        return update_job(job_id, update)

    def recording_finish(job_id, update, **kwargs):
        statuses.append(update.changes().get("status"))
        return finish_job(job_id, update, **kwargs)

    monkeypatch.setattr(temp_db, "update_job", recording_update)
    monkeypatch.setattr(temp_db, "finish_job", recording_finish)
    return statuses


class TestFileImportJobs:
    def test_import_runs_through_statuses(self, temp_db, file_connection, status_log):
        controller = IngestionJobController(temp_db)

        outcome = controller.run_file_import(TENANT, file_connection.id, CONTENT, MAPPING, actor=USER)

        assert status_log == ["running", "completed"]
        job = outcome.job
        assert outcome.success
        assert (job.records_fetched, job.records_processed) == (2, 1)
        assert (job.records_imported, job.records_skipped, job.records_failed) == (1, 1, 0)
        assert job.started_at is not None and job.completed_at is not None
        assert job.summary["inserted"] == 1

    def test_exactly_one_audit_entry(self, temp_db, file_connection):
        outcome = IngestionJobController(temp_db).run_file_import(
            TENANT, file_connection.id, CONTENT, MAPPING, actor=USER
        )

        entries = temp_db.list_audit_entries(TENANT, job_id=outcome.job.id)
        assert len(entries) == 1
        assert entries[0].event_type == audit.CSV_IMPORT_COMPLETED
        assert entries[0].actor == USER
        assert entries[0].event_data["counts"]["imported"] == 1

    def test_raw_snapshot_is_stored(self, temp_db, file_connection, sample_account):
        outcome = IngestionJobController(temp_db).run_file_import(
            TENANT, file_connection.id, CONTENT, MAPPING, actor=USER, file_name="jan.csv"
        )

        (snapshot,) = temp_db.list_raw_data(TENANT, outcome.job.id)
        assert snapshot.raw_data["content"] == CONTENT
        assert snapshot.raw_data["accountId"] == sample_account.id
        assert snapshot.file_name == "jan.csv"
        assert snapshot.file_size_bytes == len(CONTENT)

    def test_reimport_is_idempotent(self, temp_db, file_connection):
        controller = IngestionJobController(temp_db)
        controller.run_file_import(TENANT, file_connection.id, CONTENT, MAPPING, actor=USER)
        second = controller.run_file_import(TENANT, file_connection.id, CONTENT, MAPPING, actor=USER)

        assert second.upsert.updated == 1
        assert len(temp_db.list_transactions(TENANT)) == 1

    def test_override_replaces_connection_data(self, temp_db, file_connection):
        controller = IngestionJobController(temp_db)
        controller.run_file_import(TENANT, file_connection.id, CONTENT, MAPPING, actor=USER)
        replacement = "Date,Amount,Desc,Ref\n2024-03-01,5.00,Tea,R9\n"

        outcome = controller.run_file_import(
            TENANT, file_connection.id, replacement, MAPPING, actor=USER, import_mode="override"
        )

        assert outcome.success
        ids = [t.external_transaction_id for t in temp_db.list_transactions(TENANT)]
        assert ids == ["R9"]

    def test_unparseable_file_fails_job(self, temp_db, file_connection):
        outcome = IngestionJobController(temp_db).run_file_import(
            TENANT, file_connection.id, "Date,Amount\n", MAPPING, actor=USER
        )

        assert not outcome.success
        assert outcome.job.status == "failed"
        assert "not found" in outcome.job.error_message
        entries = temp_db.list_audit_entries(TENANT, job_id=outcome.job.id)
        assert [e.event_type for e in entries] == [audit.CSV_IMPORT_FAILED]

    def test_persistence_failure_is_captured(self, temp_db, file_connection, monkeypatch):
        writer = PersistenceWriter(temp_db)

        def broken_upsert(*args, **kwargs):
            raise PersistenceError("database is locked", written=0)

        monkeypatch.setattr(writer, "upsert_transactions", broken_upsert)
        controller = IngestionJobController(temp_db, writer=writer)

        outcome = controller.run_file_import(TENANT, file_connection.id, CONTENT, MAPPING, actor=USER)

        assert outcome.job.status == "failed"
        assert outcome.job.error_message == "database is locked"
        assert outcome.job.records_failed == 1
        assert outcome.job.error_details["exception"] == "PersistenceError"
        assert temp_db.get_connection(TENANT, file_connection.id).active_job_id is None
        assert len(temp_db.list_audit_entries(TENANT, job_id=outcome.job.id)) == 1

    def test_unexpected_error_is_captured(self, temp_db, file_connection, monkeypatch):
        controller = IngestionJobController(temp_db)

        def explode(*args, **kwargs):
            raise RuntimeError("parser crashed")

        monkeypatch.setattr(controller.parser, "parse", explode)

        outcome = controller.run_file_import(TENANT, file_connection.id, CONTENT, MAPPING, actor=USER)

        assert outcome.job.status == "failed"
        assert outcome.job.error_message == "parser crashed"

    def test_concurrent_job_is_rejected(self, temp_db, file_connection):
        temp_db.begin_job(TENANT, file_connection.id, "manual")

        with pytest.raises(ConcurrencyError):
            IngestionJobController(temp_db).run_file_import(
                TENANT, file_connection.id, CONTENT, MAPPING, actor=USER
            )
        assert len(temp_db.list_jobs(TENANT)) == 1
        assert temp_db.list_audit_entries(TENANT) == []

    def test_non_member_is_rejected(self, temp_db, file_connection):
        with pytest.raises(AuthorizationError):
            IngestionJobController(temp_db).run_file_import(
                TENANT, file_connection.id, CONTENT, MAPPING, actor="mallory"
            )
        assert temp_db.list_jobs(TENANT) == []

    def test_provider_connection_is_not_a_file_target(self, temp_db, provider_connection):
        with pytest.raises(ValidationError):
            IngestionJobController(temp_db).run_file_import(
                TENANT, provider_connection.id, CONTENT, MAPPING, actor=USER
            )


class TestProviderSyncJobs:
    def test_successful_sync(
        self, temp_db, provider_connection, scripted_adapter, make_txn, make_page, status_log
    ):
        scripted_adapter.pages = {None: make_page(added=[make_txn("T1"), make_txn("T2")])}

        outcome = IngestionJobController(temp_db).run_provider_sync(
            TENANT, provider_connection.id, actor=USER
        )

        assert status_log == ["running", "completed"]
        assert outcome.success
        assert outcome.job.records_imported == 2
        assert outcome.sync_result.pages_committed == 1
        connection = temp_db.get_connection(TENANT, provider_connection.id)
        assert connection.last_sync_status == "success"
        assert connection.last_error is None
        assert connection.active_job_id is None
        entries = temp_db.list_audit_entries(TENANT, job_id=outcome.job.id)
        assert [e.event_type for e in entries] == [audit.PROVIDER_SYNC_COMPLETED]

    def test_progress_with_errors_completes_as_partial(
        self, temp_db, provider_connection, scripted_adapter, make_txn, make_page
    ):
        scripted_adapter.pages = {
            None: make_page(added=[make_txn("T1")], next_cursor="c1", has_more=True),
            "c1": ProviderError("timeout"),
        }

        outcome = IngestionJobController(temp_db).run_provider_sync(
            TENANT, provider_connection.id, actor=USER
        )

        assert outcome.job.status == "completed"
        assert outcome.job.summary["note"].startswith("Completed with errors")
        connection = temp_db.get_connection(TENANT, provider_connection.id)
        assert connection.last_sync_status == "partial"
        assert connection.last_error == "Page 2: timeout"

    def test_no_progress_fails(self, temp_db, provider_connection, scripted_adapter):
        scripted_adapter.pages = {None: ProviderError("bank offline")}

        outcome = IngestionJobController(temp_db).run_provider_sync(
            TENANT, provider_connection.id, actor=USER
        )

        assert outcome.job.status == "failed"
        assert outcome.job.error_message == "Page 1: bank offline"
        assert temp_db.get_connection(TENANT, provider_connection.id).last_sync_status == "error"

    def test_auth_failure_fails_job_without_leaking_credentials(
        self, temp_db, provider_connection, scripted_adapter
    ):
        scripted_adapter.pages = {None: ProviderAuthError("token rejected", 401)}

        outcome = IngestionJobController(temp_db).run_provider_sync(
            TENANT, provider_connection.id, actor=USER
        )

        assert outcome.job.status == "failed"
        assert outcome.job.error_details["exception"] == "ProviderAuthError"
        (entry,) = temp_db.list_audit_entries(TENANT, job_id=outcome.job.id)
        assert entry.event_type == audit.PROVIDER_SYNC_FAILED
        assert "secret-token" not in str(entry.event_data)

    def test_file_connection_cannot_be_synced(self, temp_db, file_connection):
        with pytest.raises(ValidationError):
            IngestionJobController(temp_db).run_provider_sync(
                TENANT, file_connection.id, actor=USER
            )


class TestAmountPrecision:
    def test_sub_cent_amount_is_stored_exactly(self, temp_db, file_connection):
        content = "Date,Amount,Desc,Ref\n2024-01-01,1.005,Fuel,R1\n"

        outcome = IngestionJobController(temp_db).run_file_import(
            TENANT, file_connection.id, content, MAPPING, actor=USER
        )

        assert outcome.success
        (txn,) = temp_db.list_transactions(TENANT)
        assert txn.amount == Decimal("1.005")

    def test_amount_past_stored_precision_is_a_row_error(self, temp_db, file_connection):
        content = "Date,Amount,Desc,Ref\n2024-01-01,1.0000001,Fuel,R1\n2024-01-02,2.00,Tea,R2\n"

        outcome = IngestionJobController(temp_db).run_file_import(
            TENANT, file_connection.id, content, MAPPING, actor=USER
        )

        assert outcome.success
        assert outcome.job.records_skipped == 1
        (issue,) = outcome.parse_result.errors
        assert issue.field == "amount"
        assert "more than 6 decimal places" in issue.message
        assert [t.external_transaction_id for t in temp_db.list_transactions(TENANT)] == ["R2"]


class TestInterruptedJobs:
    def test_interrupt_fails_job_and_frees_connection(self, temp_db, file_connection, monkeypatch):
        controller = IngestionJobController(temp_db)
        parse = controller.parser.parse
        calls = []

        def interrupt_once(*args, **kwargs):
            calls.append(1)
            if len(calls) == 1:
                raise KeyboardInterrupt
            return parse(*args, **kwargs)

        monkeypatch.setattr(controller.parser, "parse", interrupt_once)

        with pytest.raises(KeyboardInterrupt):
            controller.run_file_import(TENANT, file_connection.id, CONTENT, MAPPING, actor=USER)

        (job,) = temp_db.list_jobs(TENANT)
        assert job.status == "failed"
        assert job.error_message == "Interrupted: KeyboardInterrupt"
        assert job.error_details == {"aborted": True}
        entries = temp_db.list_audit_entries(TENANT, job_id=job.id)
        assert [e.event_type for e in entries] == [audit.INGESTION_JOB_ABORTED]
        assert temp_db.get_connection(TENANT, file_connection.id).active_job_id is None

        assert controller.run_file_import(
            TENANT, file_connection.id, CONTENT, MAPPING, actor=USER
        ).success

    def test_interrupted_sync_frees_connection(
        self, temp_db, provider_connection, scripted_adapter
    ):
        scripted_adapter.pages = {None: KeyboardInterrupt()}

        with pytest.raises(KeyboardInterrupt):
            IngestionJobController(temp_db).run_provider_sync(
                TENANT, provider_connection.id, actor=USER
            )

        (job,) = temp_db.list_jobs(TENANT)
        assert job.status == "failed"
        assert temp_db.get_connection(TENANT, provider_connection.id).active_job_id is None

    def test_failed_start_releases_claim(self, temp_db, file_connection, monkeypatch):
        def broken_update(job_id, update):
            raise PersistenceError("disk I/O error")

        monkeypatch.setattr(temp_db, "update_job", broken_update)

        with pytest.raises(PersistenceError):
            IngestionJobController(temp_db).run_file_import(
                TENANT, file_connection.id, CONTENT, MAPPING, actor=USER
            )

        (job,) = temp_db.list_jobs(TENANT)
        assert job.status == "failed"
        assert job.error_message == "Job could not be started: disk I/O error"
        assert temp_db.get_connection(TENANT, file_connection.id).active_job_id is None

    def test_unrecorded_completion_fails_job_once(self, temp_db, file_connection, monkeypatch):
        controller = IngestionJobController(temp_db)
        prepare = controller.audit.prepare

        def unwritable_completion(*args, **kwargs):
            entry = prepare(*args, **kwargs)
            if entry.event_type == audit.CSV_IMPORT_COMPLETED:
                # tenant_id is NOT NULL, so the finishing commit fails
                return replace(entry, tenant_id=None)
            return entry

        monkeypatch.setattr(controller.audit, "prepare", unwritable_completion)

        outcome = controller.run_file_import(TENANT, file_connection.id, CONTENT, MAPPING, actor=USER)

        assert not outcome.success
        assert outcome.job.error_message.startswith("Could not record outcome")
        entries = temp_db.list_audit_entries(TENANT, job_id=outcome.job.id)
        assert [e.event_type for e in entries] == [audit.INGESTION_JOB_ABORTED]
        assert temp_db.get_connection(TENANT, file_connection.id).active_job_id is None


class TestStaleClaims:
    def test_abandoned_running_job_is_recovered(self, temp_db, file_connection):
        old_job = temp_db.begin_job(TENANT, file_connection.id, "manual", triggered_by=USER)
        temp_db.update_job(
            old_job,
            JobUpdate(status="running", started_at=datetime.now(UTC) - timedelta(hours=2)),
        )

        outcome = IngestionJobController(temp_db, stale_job_after=3600).run_file_import(
            TENANT, file_connection.id, CONTENT, MAPPING, actor=USER
        )

        assert outcome.success
        abandoned = temp_db.get_job(old_job)
        assert abandoned.status == "failed"
        assert abandoned.error_message == "Abandoned: no finish within 3600s"
        entries = temp_db.list_audit_entries(TENANT, job_id=old_job)
        assert [e.event_type for e in entries] == [audit.INGESTION_JOB_ABORTED]
        assert entries[0].actor is None

    def test_recent_running_job_keeps_its_claim(self, temp_db, file_connection):
        old_job = temp_db.begin_job(TENANT, file_connection.id, "manual")
        temp_db.update_job(old_job, JobUpdate(status="running", started_at=datetime.now(UTC)))

        with pytest.raises(ConcurrencyError):
            IngestionJobController(temp_db, stale_job_after=3600).run_file_import(
                TENANT, file_connection.id, CONTENT, MAPPING, actor=USER
            )
        assert temp_db.get_job(old_job).status == "running"

    def test_pending_job_counts_from_creation(self, temp_db, file_connection):
        old_job = temp_db.begin_job(TENANT, file_connection.id, "manual")

        outcome = IngestionJobController(temp_db, stale_job_after=0).run_file_import(
            TENANT, file_connection.id, CONTENT, MAPPING, actor=USER
        )

        assert outcome.success
        assert temp_db.get_job(old_job).status == "failed"


class TestAbortJob:
    def test_abort_running_job(self, temp_db, file_connection):
        job_id = temp_db.begin_job(TENANT, file_connection.id, "manual")
        temp_db.update_job(job_id, JobUpdate(status="running", started_at=datetime.now(UTC)))

        job = IngestionJobController(temp_db).abort_job(
            TENANT, job_id, actor=USER, reason="worker died"
        )

        assert job.status == "failed"
        assert job.error_message == "Aborted by alice: worker died"
        assert job.completed_at is not None
        assert temp_db.get_connection(TENANT, file_connection.id).active_job_id is None
        (entry,) = temp_db.list_audit_entries(TENANT, job_id=job_id)
        assert entry.event_type == audit.INGESTION_JOB_ABORTED
        assert entry.actor == USER

    def test_finished_job_cannot_be_aborted(self, temp_db, file_connection):
        controller = IngestionJobController(temp_db)
        outcome = controller.run_file_import(TENANT, file_connection.id, CONTENT, MAPPING, actor=USER)

        with pytest.raises(ValidationError, match="already finished"):
            controller.abort_job(TENANT, outcome.job.id, actor=USER)
        assert len(temp_db.list_audit_entries(TENANT, job_id=outcome.job.id)) == 1

    def test_unknown_job(self, temp_db, tenant_member):
        with pytest.raises(NotFoundError):
            IngestionJobController(temp_db).abort_job(TENANT, 999, actor=USER)

    def test_job_of_another_tenant_is_not_found(self, temp_db, file_connection):
        job_id = temp_db.begin_job(TENANT, file_connection.id, "manual")
        IngestionJobController(temp_db).access.add_member("globex", USER)

        with pytest.raises(NotFoundError):
            IngestionJobController(temp_db).abort_job("globex", job_id, actor=USER)
        assert temp_db.get_job(job_id).status == "pending"

    def test_non_member_is_rejected(self, temp_db, file_connection):
        job_id = temp_db.begin_job(TENANT, file_connection.id, "manual")

        with pytest.raises(AuthorizationError):
            IngestionJobController(temp_db).abort_job(TENANT, job_id, actor="mallory")
        assert temp_db.get_job(job_id).status == "pending"
