"""Provider sync adapter contract.

Each external data source implements ``SyncAdapter`` and normalizes its
native responses into the fixed shapes below. The orchestrator only ever
sees these shapes.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Optional

from ledgersync.domain.entities import ACCOUNT_ACTIVE


@dataclass(frozen=True)
class ProviderAccount:
    external_id: str
    name: str
    account_type: str
    currency: str
    balance: Optional[Decimal] = None
    status: str = ACCOUNT_ACTIVE


@dataclass(frozen=True)
class ProviderTransaction:
    """A provider transaction keyed by the provider's own identifier.

    ``transaction_type`` may be left as None, in which case the sign of
    ``amount`` decides (negative is a debit).
    """

    external_id: str
    date: date
    amount: Decimal
    currency: str
    description: Optional[str] = None
    account_external_id: Optional[str] = None
    transaction_type: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TransactionDeltaPage:
    """One page of changes after a cursor.

    ``raw`` holds the untouched provider response for the raw snapshot.
    """

    added: list[ProviderTransaction] = field(default_factory=list)
    modified: list[ProviderTransaction] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    next_cursor: Optional[str] = None
    has_more: bool = False
    raw: Optional[dict[str, Any]] = None


class SyncAdapter(ABC):
    """Capability interface for an external account-aggregation provider.

    Implementations handle their own retry and backoff. Given the same
    cursor they must return the same page, and must never drop a delta once
    it has been emitted.
    """

    provider_name: str = ""

    @abstractmethod
    def fetch_accounts(self, credentials: dict[str, Any]) -> list[ProviderAccount]:
        """Return the full list of accounts visible with these credentials.

        Raises:
            ProviderAuthError: If the credentials are rejected
            ProviderError: For any other provider failure
        """
        pass

    @abstractmethod
    def fetch_transaction_deltas(
        self, credentials: dict[str, Any], cursor: Optional[str]
    ) -> TransactionDeltaPage:
        """Return the page of changes following ``cursor`` (None = from the start).

        Raises:
            ProviderAuthError: If the credentials are rejected
            ProviderError: For any other provider failure
        """
        pass
