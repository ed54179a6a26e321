"""Tink open-banking adapter."""

import json
import logging
import os
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ledgersync.domain.entities import ACCOUNT_ACTIVE, ACCOUNT_CLOSED
from ledgersync.domain.errors import ProviderAuthError, ProviderError
from ledgersync.domain.sync_adapter import (
    ProviderAccount,
    ProviderTransaction,
    SyncAdapter,
    TransactionDeltaPage,
)
from ledgersync.utils.amount_parser import check_precision

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.tink.com"
DEFAULT_CURRENCY = "EUR"
# Days re-read before the newest booked date seen, for late-booked items.
DEFAULT_OVERLAP_DAYS = 7

ACCOUNT_TYPE_MAP = {
    "CHECKING": "checking",
    "SAVINGS": "savings",
    "CREDIT_CARD": "credit_card",
    "LOAN": "loan",
    "MORTGAGE": "loan",
    "INVESTMENT": "investment",
    "PENSION": "investment",
}


def map_account_type(tink_type: Optional[str]) -> str:
    """Map a Tink account type to a canonical one (unknown types are checking)."""
    return ACCOUNT_TYPE_MAP.get((tink_type or "").upper(), "checking")


def parse_tink_amount(value: Optional[dict[str, Any]]) -> Decimal:
    """Convert ``{unscaledValue, scale}`` to a Decimal.

    Raises:
        ProviderError: If the value is missing or malformed
    """
    if not value:
        raise ProviderError("Tink amount is missing")
    try:
        unscaled = Decimal(str(value["unscaledValue"]))
        scale = int(value.get("scale", 0))
    except (KeyError, TypeError, ValueError, InvalidOperation) as e:
        raise ProviderError(f"Malformed Tink amount {value!r}: {e}")
    try:
        return check_precision(unscaled.scaleb(-scale))
    except ValueError as e:
        raise ProviderError(f"Unsupported Tink amount {value!r}: {e}")


def decode_cursor(cursor: Optional[str]) -> dict[str, Optional[str]]:
    """Read a saved cursor; an unreadable one starts a full listing."""
    state: dict[str, Optional[str]] = {"bookedFrom": None, "pageToken": None, "latest": None}
    if not cursor:
        return state
    try:
        saved = json.loads(cursor)
    except ValueError:
        saved = None
    if not isinstance(saved, dict):
        logger.warning("Ignoring unreadable Tink cursor %r; reading the full listing", cursor)
        return state
    for key in state:
        value = saved.get(key)
        state[key] = str(value) if value else None
    return state


def encode_cursor(state: dict[str, Optional[str]]) -> str:
    return json.dumps(state, sort_keys=True, separators=(",", ":"))


class TinkSyncAdapter(SyncAdapter):
    """Fetches accounts and transactions from the Tink Data v2 API.

    Credentials must carry an ``access_token``.

    Tink lists transactions newest first, so a page token cannot mark where
    the next run should resume. The cursor is a small JSON document instead:

    - ``bookedFrom``: lower bound sent as ``bookedDateGte``
    - ``pageToken``: position inside the listing of the run in progress
    - ``latest``: newest booked date seen in that listing

    When a listing is exhausted the cursor drops its page token and moves
    ``bookedFrom`` to ``latest`` minus an overlap window, so the next run
    re-reads recent days and anything newer. Re-read items are absorbed by
    the dedup key.
    """

    provider_name = "tink"
    DEFAULT_TIMEOUT = 30

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = 3,
        backoff_factor: float = 0.5,
        page_size: int = 100,
        overlap_days: int = DEFAULT_OVERLAP_DAYS,
    ):
        """
        Initialize Tink adapter.

        Args:
            base_url: API root (defaults to LEDGERSYNC_TINK_BASE_URL or the public API)
            timeout: Request timeout in seconds
            max_retries: Maximum retry attempts on 429/5xx responses
            backoff_factor: Backoff factor for retries
            page_size: Items requested per page
            overlap_days: Days before the newest booked date that the next
                run reads again
        """
        if overlap_days < 0:
            raise ValueError("overlap_days must not be negative")
        self.base_url = (
            base_url or os.environ.get("LEDGERSYNC_TINK_BASE_URL") or DEFAULT_BASE_URL
        ).rstrip("/")
        self.timeout = timeout
        self.page_size = page_size
        self.overlap_days = overlap_days

        self.session = requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def _get(
        self, endpoint: str, credentials: dict[str, Any], params: Optional[dict] = None
    ) -> dict[str, Any]:
        """GET an endpoint and return its JSON body."""
        token = credentials.get("access_token")
        if not token:
            raise ProviderAuthError("Tink credentials are missing an access_token")

        url = f"{self.base_url}{endpoint}"
        logger.debug("Tink request: GET %s %s", url, params)
        try:
            response = self.session.get(
                url,
                params=params,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error("Tink request to %s failed: %s", url, e)
            raise ProviderError(f"Tink request to {endpoint} failed: {e}") from e

        if response.status_code in (401, 403):
            raise ProviderAuthError(
                f"Tink rejected the credentials ({response.status_code})",
                status_code=response.status_code,
            )
        if not response.ok:
            try:
                message = response.json().get("errorMessage", response.reason)
            except ValueError:
                message = response.reason
            logger.error("Tink API error %s: %s", response.status_code, message)
            raise ProviderError(
                f"Tink API error {response.status_code}: {message}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(f"Tink returned invalid JSON from {endpoint}") from e

    def fetch_accounts(self, credentials: dict[str, Any]) -> list[ProviderAccount]:
        """Fetch every account page and normalize them."""
        accounts: list[ProviderAccount] = []
        page_token: Optional[str] = None
        while True:
            params: dict[str, Any] = {"pageSize": self.page_size}
            if page_token:
                params["pageToken"] = page_token
            body = self._get("/data/v2/accounts", credentials, params)
            accounts.extend(self.normalize_account(item) for item in body.get("accounts", []))
            page_token = body.get("nextPageToken") or None
            if page_token is None:
                return accounts

    def fetch_transaction_deltas(
        self, credentials: dict[str, Any], cursor: Optional[str]
    ) -> TransactionDeltaPage:
        """Fetch the transaction page that follows ``cursor``.

        Tink pages carry no modifications or removals. A page token left over
        from an interrupted run that Tink no longer accepts (400) is dropped
        and the listing restarts from ``bookedFrom``.
        """
        state = decode_cursor(cursor)
        try:
            body = self._get_transactions(credentials, state)
        except ProviderAuthError:
            raise
        except ProviderError as e:
            if e.status_code != 400 or not state["pageToken"]:
                raise
            logger.warning("Tink rejected saved page token, restarting listing: %s", e)
            state["pageToken"] = None
            body = self._get_transactions(credentials, state)

        added = [self.normalize_transaction(item) for item in body.get("transactions", [])]
        latest = state["latest"]
        for txn in added:
            if latest is None or txn.date.isoformat() > latest:
                latest = txn.date.isoformat()

        next_token = body.get("nextPageToken") or None
        if next_token is not None:
            next_state = {
                "bookedFrom": state["bookedFrom"],
                "pageToken": next_token,
                "latest": latest,
            }
        else:
            booked_from = state["bookedFrom"]
            if latest is not None:
                window = date.fromisoformat(latest) - timedelta(days=self.overlap_days)
                booked_from = window.isoformat()
            next_state = {"bookedFrom": booked_from, "pageToken": None, "latest": latest}
        return TransactionDeltaPage(
            added=added,
            next_cursor=encode_cursor(next_state),
            has_more=next_token is not None,
            raw=body,
        )

    def _get_transactions(
        self, credentials: dict[str, Any], state: dict[str, Optional[str]]
    ) -> dict[str, Any]:
        params: dict[str, Any] = {"pageSize": self.page_size}
        if state["bookedFrom"]:
            params["bookedDateGte"] = state["bookedFrom"]
        if state["pageToken"]:
            params["pageToken"] = state["pageToken"]
        return self._get("/data/v2/transactions", credentials, params)

    @staticmethod
    def normalize_account(item: dict[str, Any]) -> ProviderAccount:
        """Map a Tink account object to a ProviderAccount."""
        booked = (item.get("balances") or {}).get("booked") or {}
        amount = booked.get("amount") or {}
        balance = parse_tink_amount(amount["value"]) if amount.get("value") else None
        identifiers = item.get("identifiers") or {}
        name = (
            item.get("name")
            or (identifiers.get("iban") or {}).get("iban")
            or f"Account {item['id']}"
        )
        return ProviderAccount(
            external_id=item["id"],
            name=name,
            account_type=map_account_type(item.get("type")),
            currency=amount.get("currencyCode") or DEFAULT_CURRENCY,
            balance=balance,
            status=ACCOUNT_CLOSED if item.get("closed") else ACCOUNT_ACTIVE,
        )

    @staticmethod
    def normalize_transaction(item: dict[str, Any]) -> ProviderTransaction:
        """Map a Tink transaction object to a ProviderTransaction.

        Raises:
            ProviderError: If the id, amount or dates are unusable
        """
        if not item.get("id"):
            raise ProviderError("Tink transaction without an id")
        amount = item.get("amount") or {}
        dates = item.get("dates") or {}
        booked = dates.get("booked") or dates.get("value")
        if not booked:
            raise ProviderError(f"Tink transaction {item['id']} has no date")
        try:
            txn_date = date.fromisoformat(booked)
        except ValueError as e:
            raise ProviderError(f"Tink transaction {item['id']} has an invalid date: {e}")

        descriptions = item.get("descriptions") or {}
        merchant = (item.get("merchantInformation") or {}).get("merchantName")
        metadata = {
            "booking_status": item.get("status"),
            "value_date": dates.get("value"),
            "transaction_type": (item.get("types") or {}).get("type"),
            "reference": item.get("reference"),
            "merchant_name": merchant,
            "category": ((item.get("categories") or {}).get("pfm") or {}).get("name"),
        }
        return ProviderTransaction(
            external_id=item["id"],
            account_external_id=item.get("accountId"),
            date=txn_date,
            amount=parse_tink_amount(amount.get("value")),
            currency=amount.get("currencyCode") or DEFAULT_CURRENCY,
            description=descriptions.get("display") or descriptions.get("original") or merchant,
            metadata={key: value for key, value in metadata.items() if value is not None},
        )
