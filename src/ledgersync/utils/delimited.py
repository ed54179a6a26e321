"""Helpers for reading delimiter-separated text."""

import csv
import io
from typing import Optional

SNIFF_DELIMITERS = ",;\t|"
SNIFF_SAMPLE_SIZE = 4096


def strip_bom(content: str) -> str:
    """Remove a leading UTF-8 byte order mark."""
    return content[1:] if content.startswith("\ufeff") else content


def detect_delimiter(content: str, default: str = ",") -> str:
    """Guess the delimiter from the start of the content.

    Falls back to ``default`` when the sniffer cannot decide (for example a
    single-column file).
    """
    sample = content[:SNIFF_SAMPLE_SIZE]
    try:
        return csv.Sniffer().sniff(sample, delimiters=SNIFF_DELIMITERS).delimiter
    except csv.Error:
        return default


def read_rows(content: str, delimiter: Optional[str] = None) -> list[list[str]]:
    """Split content into rows of cells, dropping rows that are entirely blank.

    Raises:
        csv.Error: If the content cannot be tokenized
    """
    content = strip_bom(content)
    if delimiter is None:
        delimiter = detect_delimiter(content)
    reader = csv.reader(io.StringIO(content, newline=""), delimiter=delimiter, strict=True)
    return [row for row in reader if any(cell.strip() for cell in row)]


def normalize_headers(header_row: list[str]) -> list[str]:
    """Trim header cells and name blank ones by position."""
    return [
        cell.strip() or f"column_{index}"
        for index, cell in enumerate(header_row, start=1)
    ]
