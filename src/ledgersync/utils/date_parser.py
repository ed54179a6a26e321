"""Date parsing utilities."""

import re
from datetime import date, datetime
from typing import Optional

from dateutil import parser as date_parser

# Display-style tokens accepted in a configured date format.
_FORMAT_TOKENS = (
    ("YYYY", "%Y"),
    ("YY", "%y"),
    ("MM", "%m"),
    ("DD", "%d"),
)


def to_strptime_format(date_format: str) -> str:
    """Translate a display format such as ``MM/DD/YYYY`` to strptime syntax.

    Formats that already contain ``%`` directives are returned unchanged.
    """
    if "%" in date_format:
        return date_format
    result = date_format
    for token, directive in _FORMAT_TOKENS:
        result = re.sub(token, directive, result)
    return result


def parse_date(
    date_str: str, date_format: Optional[str] = None, day_first: bool = False
) -> date:
    """Parse a date string into a date object.

    When ``date_format`` is given the value must match it exactly; otherwise
    the format is inferred.

    Args:
        date_str: Date string in various formats
        date_format: Optional explicit format (``%d.%m.%Y`` or ``DD.MM.YYYY``)
        day_first: Read ambiguous inferred dates such as 03/04/2024 as 3 April

    Returns:
        Date object

    Raises:
        ValueError: If date string cannot be parsed
    """
    if date_str is None or not str(date_str).strip():
        raise ValueError("Empty date string")
    date_str = str(date_str).strip()

    if date_format:
        try:
            return datetime.strptime(date_str, to_strptime_format(date_format)).date()
        except ValueError:
            raise ValueError(
                f"Could not parse date '{date_str}' with format '{date_format}'"
            )

    try:
        dt = date_parser.parse(date_str, dayfirst=day_first)
        return dt.date()
    except (ValueError, TypeError, OverflowError) as e:
        raise ValueError(f"Could not parse date '{date_str}': {e}")
