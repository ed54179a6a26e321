"""Tests for tenant, account and connection services."""

import pytest

from ledgersync.domain.account import AccountService
from ledgersync.domain.connection import ConnectionService
from ledgersync.domain.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from ledgersync.domain.tenant import TenantAccessService

TENANT = "acme"
USER = "alice"


class TestTenantAccessService:
    def test_require_member(self, temp_db, tenant_member):
        service = TenantAccessService(temp_db)

        assert service.require_member(TENANT, USER) == "member"
        with pytest.raises(AuthorizationError, match="'bob' does not have access"):
            service.require_member(TENANT, "bob")
        with pytest.raises(AuthorizationError):
            service.require_member(TENANT, None)

    def test_invalid_role(self, temp_db):
        with pytest.raises(ValidationError, match="Invalid role"):
            TenantAccessService(temp_db).add_member(TENANT, USER, "root")


class TestAccountService:
    def test_create_account_defaults(self, temp_db):
        service = AccountService(temp_db, default_currency="eur")
        account_id = service.create_account(TENANT, "Savings", account_type="savings")

        account = service.get_account(TENANT, account_id)
        assert account.currency == "EUR"
        assert account.account_type == "savings"
        assert account.connection_id is None
        assert service.get_account("globex", account_id) is None

    def test_duplicate_name(self, temp_db, sample_account):
        with pytest.raises(ConflictError):
            AccountService(temp_db).create_account(TENANT, "Checking")

    def test_same_name_in_other_tenant(self, temp_db, sample_account):
        assert AccountService(temp_db).create_account("globex", "Checking")

    def test_invalid_type(self, temp_db):
        with pytest.raises(ValidationError, match="Invalid account type"):
            AccountService(temp_db).create_account(TENANT, "Odd", account_type="crypto")


class TestConnectionService:
    def test_file_connection_is_reused_by_name(self, temp_db, sample_account):
        service = ConnectionService(temp_db)

        first = service.get_or_create_file_connection(TENANT, "Export", sample_account.id)
        second = service.get_or_create_file_connection(TENANT, "Export", sample_account.id)

        assert first.id == second.id
        assert first.source_kind == "csv"
        assert first.account_id == sample_account.id

    def test_file_connection_name_taken_by_provider(self, temp_db, provider_connection, sample_account):
        with pytest.raises(ConflictError):
            ConnectionService(temp_db).get_or_create_file_connection(
                TENANT, provider_connection.name, sample_account.id
            )

    def test_file_connection_needs_tenant_account(self, temp_db, sample_account):
        with pytest.raises(NotFoundError):
            ConnectionService(temp_db).get_or_create_file_connection(
                "globex", "Export", sample_account.id
            )

    def test_provider_connection_stores_credentials(self, temp_db, provider_connection):
        assert provider_connection.source_kind == "fakebank"
        assert provider_connection.config["credentials"] == {"access_token": "secret-token"}

    def test_provider_connection_duplicate_name(self, temp_db, provider_connection):
        with pytest.raises(ConflictError):
            ConnectionService(temp_db).create_provider_connection(
                TENANT, provider_connection.name, "fakebank"
            )

    def test_set_enabled(self, temp_db, provider_connection):
        service = ConnectionService(temp_db)
        service.set_enabled(TENANT, provider_connection.id, False)

        assert service.get_connection(TENANT, provider_connection.id).status == "disabled"

    def test_get_job_of_other_tenant(self, temp_db, provider_connection):
        job_id = temp_db.begin_job(TENANT, provider_connection.id, "manual")
        service = ConnectionService(temp_db)

        assert service.get_job(TENANT, job_id).id == job_id
        with pytest.raises(NotFoundError):
            service.get_job("globex", job_id)
