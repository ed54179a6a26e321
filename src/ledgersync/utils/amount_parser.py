"""Amount parsing utilities."""

from decimal import Decimal, InvalidOperation
import re

# Digits the store keeps for amounts and balances.
AMOUNT_DECIMAL_PLACES = 6
AMOUNT_INTEGER_DIGITS = 14


def parse_amount(amount_str: str, decimal_separator: str = ".") -> Decimal:
    """Parse an amount string into a Decimal.

    Handles various formats:
    - "123.45"
    - "$123.45"
    - "-123.45"
    - "-$123.45"
    - "1,234.56"
    - "(123.45)" (negative in parentheses)
    - "123.45-" (trailing minus)
    - "1.234,56" (with decimal_separator=",")

    Args:
        amount_str: Amount string
        decimal_separator: "." or ","; the other character is treated as a
            thousands separator

    Returns:
        Decimal amount

    Raises:
        ValueError: If amount string cannot be parsed or is more precise than
            AMOUNT_DECIMAL_PLACES
    """
    if amount_str is None or not str(amount_str).strip():
        raise ValueError("Empty amount string")
    if decimal_separator not in (".", ","):
        raise ValueError(f"Unsupported decimal separator '{decimal_separator}'")

    original = str(amount_str)
    cleaned = original.strip()

    # Handle parentheses notation (negative)
    is_negative = False
    if cleaned.startswith("(") and cleaned.endswith(")"):
        is_negative = True
        cleaned = cleaned[1:-1]
    elif cleaned.endswith("-"):
        is_negative = True
        cleaned = cleaned[:-1]

    # Remove currency symbols and inner whitespace
    cleaned = re.sub(r"[$€£¥\s]", "", cleaned)

    if decimal_separator == ",":
        cleaned = cleaned.replace(".", "").replace(",", ".")
    else:
        cleaned = cleaned.replace(",", "")

    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        raise ValueError(f"Could not parse amount '{original.strip()}'")
    if not amount.is_finite():
        raise ValueError(f"Could not parse amount '{original.strip()}'")
    check_precision(amount)
    return -amount if is_negative else amount


def check_precision(amount: Decimal) -> Decimal:
    """Reject amounts the store would have to round.

    Raises:
        ValueError: If ``amount`` has non-zero digits past AMOUNT_DECIMAL_PLACES
            or more than AMOUNT_INTEGER_DIGITS integer digits
    """
    if abs(amount) >= Decimal(10) ** AMOUNT_INTEGER_DIGITS:
        raise ValueError(f"Amount {amount} is too large")
    rounded = amount.quantize(Decimal(1).scaleb(-AMOUNT_DECIMAL_PLACES))
    if amount != rounded:
        raise ValueError(
            f"Amount {amount} has more than {AMOUNT_DECIMAL_PLACES} decimal places"
        )
    return amount
