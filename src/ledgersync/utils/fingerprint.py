"""Content fingerprints for rows that carry no source identifier."""

import hashlib
from datetime import date
from decimal import Decimal
from typing import Optional


def normalize_description(description: Optional[str]) -> str:
    """Lowercase and collapse whitespace so cosmetic edits do not change ids."""
    if not description:
        return ""
    return " ".join(description.lower().split())


def transaction_fingerprint(
    txn_date: date, amount: Decimal, description: Optional[str], occurrence: int = 0
) -> str:
    """Derive a stable external id from a row's content.

    ``occurrence`` distinguishes legitimate repeats of the same
    (date, amount, description) within one file, counted in file order, so
    reordering unrelated rows does not change any id.

    Returns:
        ``fp-`` followed by 24 hex characters of a SHA256 digest
    """
    normalized_amount = format(amount.normalize(), "f") if amount else "0"
    content = "|".join(
        [
            txn_date.isoformat(),
            normalized_amount,
            normalize_description(description),
            str(occurrence),
        ]
    )
    return "fp-" + hashlib.sha256(content.encode("utf-8")).hexdigest()[:24]
