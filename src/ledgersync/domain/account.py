"""Account domain service."""

from decimal import Decimal
from typing import Optional

from ledgersync.database.base import Database
from ledgersync.domain.entities import Account as AccountEntity
from ledgersync.domain.errors import ConflictError, ValidationError

ACCOUNT_TYPES = ("checking", "savings", "credit_card", "loan", "investment")


class AccountService:
    """Service for managing tenant accounts."""

    def __init__(self, db: Database, default_currency: str = "USD"):
        """Initialize account service.

        Args:
            db: Database instance
            default_currency: Currency for accounts created without one
        """
        self.db = db
        self.default_currency = default_currency

    def create_account(
        self,
        tenant_id: str,
        name: str,
        account_type: str = "checking",
        currency: Optional[str] = None,
        balance: Optional[Decimal] = None,
    ) -> int:
        """Create a manual account.

        Args:
            tenant_id: Tenant ID
            name: Account name
            account_type: One of ACCOUNT_TYPES
            currency: ISO currency code (defaults to the service default)
            balance: Optional balance snapshot

        Returns:
            Account ID

        Raises:
            ValidationError: If the type is unknown
            ConflictError: If the tenant already has a manual account with this name
        """
        if account_type not in ACCOUNT_TYPES:
            raise ValidationError(
                f"Invalid account type '{account_type}'. Must be one of: {', '.join(ACCOUNT_TYPES)}"
            )
        for acc in self.db.list_accounts(tenant_id):
            if acc.name == name and acc.connection_id is None:
                raise ConflictError(f"Account with name '{name}' already exists")

        return self.db.create_account(
            tenant_id=tenant_id,
            name=name,
            account_type=account_type,
            currency=(currency or self.default_currency).upper(),
            balance=balance,
        )

    def get_account(self, tenant_id: str, account_id: int) -> Optional[AccountEntity]:
        """Get account by ID.

        Returns:
            Account entity or None if not found
        """
        return self.db.get_account(tenant_id, account_id)

    def list_accounts(
        self, tenant_id: str, connection_id: Optional[int] = None
    ) -> list[AccountEntity]:
        """List accounts of a tenant, optionally only those of one connection."""
        return self.db.list_accounts(tenant_id, connection_id=connection_id)
