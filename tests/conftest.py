"""Shared pytest fixtures for ledgersync tests."""

import os
import tempfile
from datetime import date
from decimal import Decimal

import pytest

from ledgersync import providers
from ledgersync.database.factories import create_sqlite_database
from ledgersync.domain.account import AccountService
from ledgersync.domain.connection import ConnectionService
from ledgersync.domain.sync_adapter import (
    ProviderAccount,
    ProviderTransaction,
    SyncAdapter,
    TransactionDeltaPage,
)
from ledgersync.domain.tenant import TenantAccessService

TENANT = "acme"
USER = "alice"


class ScriptedAdapter(SyncAdapter):
    """Adapter that replays pages keyed by the cursor it is called with.

    A page value that is an exception instance is raised instead.
    """

    provider_name = "fakebank"

    def __init__(self):
        self.accounts = []
        self.pages = {}
        self.cursors_seen = []

    def fetch_accounts(self, credentials):
        if isinstance(self.accounts, Exception):
            raise self.accounts
        return list(self.accounts)

    def fetch_transaction_deltas(self, credentials, cursor):
        self.cursors_seen.append(cursor)
        page = self.pages[cursor]
        if isinstance(page, BaseException):
            raise page
        return page


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep LEDGERSYNC_* variables from the shell out of tests."""
    for name in list(os.environ):
        if name.startswith("LEDGERSYNC_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def temp_db():
    """Create a temporary database for testing."""
    fd, db_path = tempfile.mkstemp(suffix=".db")
    os.close(fd)

    db = create_sqlite_database(database_path=db_path)
    # Store the path for tests that need it
    db.database_path = db_path
    db.connect()
    db.initialize_schema()

    yield db

    db.disconnect()
    if os.path.exists(db_path):
        os.unlink(db_path)


@pytest.fixture
def tenant_member(temp_db):
    """Make USER a member of TENANT and return (tenant_id, user_id)."""
    TenantAccessService(temp_db).add_member(TENANT, USER)
    return TENANT, USER


@pytest.fixture
def sample_account(temp_db, tenant_member):
    """Create a manual checking account in TENANT."""
    service = AccountService(temp_db)
    account_id = service.create_account(TENANT, "Checking", currency="USD")
    return service.get_account(TENANT, account_id)


@pytest.fixture
def scripted_adapter():
    """Register a ScriptedAdapter as the 'fakebank' provider."""
    adapter = ScriptedAdapter()
    providers.register_adapter(ScriptedAdapter.provider_name, lambda: adapter)
    yield adapter
    providers.unregister_adapter(ScriptedAdapter.provider_name)


@pytest.fixture
def provider_connection(temp_db, tenant_member, sample_account, scripted_adapter):
    """A 'fakebank' connection whose default account is sample_account."""
    service = ConnectionService(temp_db)
    connection_id = service.create_provider_connection(
        TENANT,
        "Fake bank",
        ScriptedAdapter.provider_name,
        credentials={"access_token": "secret-token"},
        account_id=sample_account.id,
        created_by=USER,
    )
    return service.get_connection(TENANT, connection_id)


@pytest.fixture
def make_txn():
    """Build ProviderTransactions with sensible defaults."""

    def _make(external_id, amount="10.00", account=None, day=1, description=None):
        return ProviderTransaction(
            external_id=external_id,
            account_external_id=account,
            date=date(2024, 1, day),
            amount=Decimal(amount),
            currency="EUR",
            description=description or f"Payment {external_id}",
        )

    return _make


@pytest.fixture
def make_page():
    """Build TransactionDeltaPages."""

    def _make(added=(), modified=(), removed=(), next_cursor=None, has_more=False):
        return TransactionDeltaPage(
            added=list(added),
            modified=list(modified),
            removed=list(removed),
            next_cursor=next_cursor,
            has_more=has_more,
        )

    return _make


@pytest.fixture
def make_account():
    def _make(external_id, name=None, balance="100.00"):
        return ProviderAccount(
            external_id=external_id,
            name=name or f"Account {external_id}",
            account_type="checking",
            currency="EUR",
            balance=Decimal(balance),
        )

    return _make


@pytest.fixture
def cli_runner():
    """Create a Click CLI test runner."""
    from click.testing import CliRunner

    return CliRunner()
