"""Tests for the SQLAlchemy repository."""

import pytest
from datetime import date
from decimal import Decimal

from ledgersync.database.factories import create_sqlite_database
from ledgersync.domain import entities
from ledgersync.domain.entities import (
    AccountRecord,
    AuditRecord,
    JobUpdate,
    TransactionRecord,
    UpsertResult,
)
from ledgersync.domain.errors import (
    ConcurrencyError,
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)

TENANT = "acme"


@pytest.fixture
def file_connection(temp_db, sample_account):
    connection_id = temp_db.create_connection(
        tenant_id=TENANT,
        name="Bank export",
        source_kind="csv",
        config={},
        account_id=sample_account.id,
    )
    return temp_db.get_connection(TENANT, connection_id)


def _record(external_id, account_id, amount="1.00", day=1, description=None):
    return TransactionRecord(
        account_id=account_id,
        date=date(2024, 1, day),
        amount=Decimal(amount),
        currency="USD",
        description=description,
        transaction_type="debit",
        external_transaction_id=external_id,
    )


class TestTenantScoping:
    """Records of one tenant are invisible to another."""

    def test_connection_lookup_is_tenant_scoped(self, temp_db, file_connection):
        assert temp_db.get_connection(TENANT, file_connection.id) == file_connection
        assert temp_db.get_connection("globex", file_connection.id) is None

    def test_account_lookup_is_tenant_scoped(self, temp_db, sample_account):
        assert temp_db.get_account("globex", sample_account.id) is None

    def test_job_lookup_is_tenant_scoped(self, temp_db, file_connection):
        job_id = temp_db.begin_job(TENANT, file_connection.id, "manual")
        assert temp_db.get_job(job_id, tenant_id=TENANT).id == job_id
        assert temp_db.get_job(job_id, tenant_id="globex") is None

    def test_tenant_membership(self, temp_db):
        temp_db.add_tenant_member(TENANT, "bob", "admin")
        temp_db.add_tenant_member(TENANT, "bob", "owner")

        assert temp_db.get_tenant_role(TENANT, "bob") == "owner"
        assert temp_db.get_tenant_role("globex", "bob") is None


class TestJobLifecycle:
    """Tests for job claims and status transitions."""

    def test_begin_job_claims_connection(self, temp_db, file_connection):
        job_id = temp_db.begin_job(TENANT, file_connection.id, "manual", triggered_by="alice")

        job = temp_db.get_job(job_id)
        assert job.status == entities.JOB_PENDING
        assert job.triggered_by == "alice"
        assert temp_db.get_connection(TENANT, file_connection.id).active_job_id == job_id

    def test_second_job_is_rejected_without_record(self, temp_db, file_connection):
        temp_db.begin_job(TENANT, file_connection.id, "manual")

        with pytest.raises(ConcurrencyError):
            temp_db.begin_job(TENANT, file_connection.id, "scheduled")

        assert len(temp_db.list_jobs(TENANT)) == 1

    def test_claim_is_checked_in_the_database(self, temp_db, file_connection):
        """A session holding a stale view still loses the conditional claim."""
        other = create_sqlite_database(database_path=temp_db.database_path)
        try:
            # Load the connection into the other session before it is claimed
            assert other.get_connection(TENANT, file_connection.id).active_job_id is None
            temp_db.begin_job(TENANT, file_connection.id, "manual")

            with pytest.raises(ConcurrencyError):
                other.begin_job(TENANT, file_connection.id, "manual")
        finally:
            other.disconnect()

        assert len(temp_db.list_jobs(TENANT)) == 1

    def test_begin_job_unknown_connection(self, temp_db, file_connection):
        with pytest.raises(NotFoundError):
            temp_db.begin_job("globex", file_connection.id, "manual")

    def test_begin_job_rejects_unknown_kind(self, temp_db, file_connection):
        with pytest.raises(ValidationError):
            temp_db.begin_job(TENANT, file_connection.id, "nightly")

    def test_finish_job_releases_claim(self, temp_db, file_connection):
        job_id = temp_db.begin_job(TENANT, file_connection.id, "manual")
        temp_db.update_job(job_id, JobUpdate(status=entities.JOB_RUNNING))
        temp_db.finish_job(job_id, JobUpdate(status=entities.JOB_COMPLETED, records_imported=3))

        assert temp_db.get_job(job_id).records_imported == 3
        assert temp_db.get_connection(TENANT, file_connection.id).active_job_id is None
        # The connection accepts a new job once released
        temp_db.begin_job(TENANT, file_connection.id, "manual")

    def test_pending_job_may_fail_directly(self, temp_db, file_connection):
        job_id = temp_db.begin_job(TENANT, file_connection.id, "manual")
        temp_db.finish_job(job_id, JobUpdate(status=entities.JOB_FAILED, error_message="boom"))

        assert temp_db.get_job(job_id).status == entities.JOB_FAILED

    def test_cannot_skip_running(self, temp_db, file_connection):
        job_id = temp_db.begin_job(TENANT, file_connection.id, "manual")
        with pytest.raises(InvalidTransitionError):
            temp_db.update_job(job_id, JobUpdate(status=entities.JOB_COMPLETED))

    def test_terminal_job_cannot_change_status(self, temp_db, file_connection):
        job_id = temp_db.begin_job(TENANT, file_connection.id, "manual")
        temp_db.update_job(job_id, JobUpdate(status=entities.JOB_RUNNING))
        temp_db.finish_job(job_id, JobUpdate(status=entities.JOB_COMPLETED))

        with pytest.raises(InvalidTransitionError):
            temp_db.update_job(job_id, JobUpdate(status=entities.JOB_RUNNING))
        with pytest.raises(InvalidTransitionError):
            temp_db.update_job(job_id, JobUpdate(status=entities.JOB_FAILED))

    def test_finish_job_requires_terminal_status(self, temp_db, file_connection):
        job_id = temp_db.begin_job(TENANT, file_connection.id, "manual")
        with pytest.raises(InvalidTransitionError):
            temp_db.finish_job(job_id, JobUpdate(status=entities.JOB_RUNNING))

    def test_list_jobs_newest_first(self, temp_db, file_connection):
        first = temp_db.begin_job(TENANT, file_connection.id, "manual")
        temp_db.finish_job(first, JobUpdate(status=entities.JOB_FAILED))
        second = temp_db.begin_job(TENANT, file_connection.id, "manual")

        assert [j.id for j in temp_db.list_jobs(TENANT)] == [second, first]
        assert [j.id for j in temp_db.list_jobs(TENANT, limit=1)] == [second]

    def test_finish_job_writes_audit_entry_in_same_commit(self, temp_db, file_connection):
        job_id = temp_db.begin_job(TENANT, file_connection.id, "manual")
        temp_db.update_job(job_id, JobUpdate(status=entities.JOB_RUNNING))
        entry = AuditRecord(TENANT, "csv_import_completed", {"status": "completed"}, job_id=job_id)

        temp_db.finish_job(job_id, JobUpdate(status=entities.JOB_COMPLETED), audit_entry=entry)

        (stored,) = temp_db.list_audit_entries(TENANT, job_id=job_id)
        assert stored.event_data == {"status": "completed"}

    def test_failed_audit_write_keeps_job_unfinished(self, temp_db, file_connection):
        job_id = temp_db.begin_job(TENANT, file_connection.id, "manual")
        temp_db.update_job(job_id, JobUpdate(status=entities.JOB_RUNNING))
        entry = AuditRecord(None, "csv_import_completed", {}, job_id=job_id)

        with pytest.raises(PersistenceError):
            temp_db.finish_job(job_id, JobUpdate(status=entities.JOB_COMPLETED), audit_entry=entry)

        assert temp_db.get_job(job_id).status == entities.JOB_RUNNING
        assert temp_db.get_connection(TENANT, file_connection.id).active_job_id == job_id
        assert temp_db.list_audit_entries(TENANT) == []

    def test_abort_job_fails_job_and_releases_claim(self, temp_db, file_connection):
        job_id = temp_db.begin_job(TENANT, file_connection.id, "manual")
        entry = AuditRecord(TENANT, "ingestion_job_aborted", {}, job_id=job_id)

        assert temp_db.abort_job(job_id, "worker lost", audit_entry=entry)

        job = temp_db.get_job(job_id)
        assert (job.status, job.error_message) == (entities.JOB_FAILED, "worker lost")
        assert job.error_details == {"aborted": True}
        assert temp_db.get_connection(TENANT, file_connection.id).active_job_id is None
        assert len(temp_db.list_audit_entries(TENANT, job_id=job_id)) == 1

    def test_abort_finished_job_is_a_no_op(self, temp_db, file_connection):
        job_id = temp_db.begin_job(TENANT, file_connection.id, "manual")
        temp_db.finish_job(job_id, JobUpdate(status=entities.JOB_FAILED, error_message="boom"))
        entry = AuditRecord(TENANT, "ingestion_job_aborted", {}, job_id=job_id)

        assert not temp_db.abort_job(job_id, "late", audit_entry=entry)

        assert temp_db.get_job(job_id).error_message == "boom"
        assert temp_db.list_audit_entries(TENANT) == []


class TestTransactionUpserts:
    """Tests for idempotent transaction writes."""

    def test_upsert_is_idempotent(self, temp_db, file_connection, sample_account):
        records = [_record("R1", sample_account.id), _record("R2", sample_account.id, day=2)]

        first = temp_db.upsert_transactions(TENANT, file_connection.id, "csv", None, records)
        second = temp_db.upsert_transactions(TENANT, file_connection.id, "csv", None, records)

        assert first == UpsertResult(inserted=2, updated=0)
        assert second == UpsertResult(inserted=0, updated=2)
        assert len(temp_db.list_transactions(TENANT)) == 2

    def test_upsert_updates_fields(self, temp_db, file_connection, sample_account):
        temp_db.upsert_transactions(
            TENANT, file_connection.id, "csv", None, [_record("R1", sample_account.id)]
        )
        temp_db.upsert_transactions(
            TENANT,
            file_connection.id,
            "csv",
            None,
            [_record("R1", sample_account.id, amount="2.50", description="fixed")],
        )

        (txn,) = temp_db.list_transactions(TENANT)
        assert txn.amount == Decimal("2.50")
        assert txn.description == "fixed"

    def test_same_external_id_in_other_connection_is_distinct(
        self, temp_db, file_connection, sample_account
    ):
        other_id = temp_db.create_connection(TENANT, "Other export", "csv", {})
        record = _record("R1", sample_account.id)

        temp_db.upsert_transactions(TENANT, file_connection.id, "csv", None, [record])
        temp_db.upsert_transactions(TENANT, other_id, "csv", None, [record])

        assert len(temp_db.list_transactions(TENANT)) == 2
        assert len(temp_db.list_transactions(TENANT, connection_id=other_id)) == 1

    def test_replace_deletes_previous_rows(self, temp_db, file_connection, sample_account):
        temp_db.upsert_transactions(
            TENANT,
            file_connection.id,
            "csv",
            None,
            [_record("R1", sample_account.id), _record("R2", sample_account.id)],
        )

        result = temp_db.upsert_transactions(
            TENANT,
            file_connection.id,
            "csv",
            None,
            [_record("R2", sample_account.id), _record("R3", sample_account.id)],
            replace=True,
        )

        assert result == UpsertResult(inserted=2, updated=0)
        ids = {t.external_transaction_id for t in temp_db.list_transactions(TENANT)}
        assert ids == {"R2", "R3"}

    def test_delete_by_external_ids(self, temp_db, file_connection, sample_account):
        temp_db.upsert_transactions(
            TENANT,
            file_connection.id,
            "csv",
            None,
            [_record("R1", sample_account.id), _record("R2", sample_account.id)],
        )

        deleted = temp_db.delete_transactions_by_external_ids(
            TENANT, file_connection.id, ["R1", "missing"]
        )

        assert deleted == 1
        assert [t.external_transaction_id for t in temp_db.list_transactions(TENANT)] == ["R2"]

    def test_list_transactions_filters_by_date(self, temp_db, file_connection, sample_account):
        temp_db.upsert_transactions(
            TENANT,
            file_connection.id,
            "csv",
            None,
            [_record(f"R{d}", sample_account.id, day=d) for d in (1, 10, 20)],
        )

        listed = temp_db.list_transactions(
            TENANT, start_date=date(2024, 1, 5), end_date=date(2024, 1, 25)
        )
        assert [t.external_transaction_id for t in listed] == ["R20", "R10"]


class TestAccountUpserts:
    def test_upsert_and_close_missing(self, temp_db, file_connection):
        records = [
            AccountRecord("A1", "Main", "checking", "EUR", Decimal("10.00")),
            AccountRecord("A2", "Savings", "savings", "EUR"),
        ]
        assert temp_db.upsert_accounts(TENANT, file_connection.id, records) == UpsertResult(2, 0)
        assert temp_db.upsert_accounts(TENANT, file_connection.id, records[:1]) == UpsertResult(
            0, 1
        )

        closed = temp_db.close_missing_accounts(TENANT, file_connection.id, ["A1"])

        assert closed == 1
        a2 = temp_db.get_account_by_external_id(TENANT, file_connection.id, "A2")
        assert a2.status == entities.ACCOUNT_CLOSED


class TestCursorsAndAudit:
    def test_save_sync_cursor_overwrites(self, temp_db, file_connection):
        assert temp_db.get_sync_cursor(TENANT, file_connection.id) is None

        temp_db.save_sync_cursor(TENANT, file_connection.id, "c1")
        temp_db.save_sync_cursor(TENANT, file_connection.id, "c2")

        assert temp_db.get_sync_cursor(TENANT, file_connection.id).cursor == "c2"
        assert temp_db.get_sync_cursor("globex", file_connection.id) is None

    def test_audit_entries_oldest_first(self, temp_db, file_connection):
        first = temp_db.append_audit_entry(TENANT, "a", {"n": 1}, connection_id=file_connection.id)
        second = temp_db.append_audit_entry(TENANT, "b", {"n": 2}, connection_id=file_connection.id)

        entries = temp_db.list_audit_entries(TENANT, connection_id=file_connection.id)
        assert [e.id for e in entries] == [first, second]
        assert entries[1].event_data == {"n": 2}
        assert temp_db.list_audit_entries("globex") == []

    def test_raw_data_in_page_order(self, temp_db, file_connection):
        job_id = temp_db.begin_job(TENANT, file_connection.id, "manual")
        temp_db.create_raw_data(TENANT, file_connection.id, job_id, {"page": 1}, page_number=1)
        temp_db.create_raw_data(TENANT, file_connection.id, job_id, {"page": 2}, page_number=2)

        snapshots = temp_db.list_raw_data(TENANT, job_id)
        assert [s.raw_data for s in snapshots] == [{"page": 1}, {"page": 2}]
        assert temp_db.list_raw_data("globex", job_id) == []
