"""Schema detection for uploaded delimited files."""

import csv
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional

from ledgersync.utils.delimited import normalize_headers, read_rows, strip_bom, detect_delimiter

logger = logging.getLogger(__name__)

SAMPLE_ROW_COUNT = 5

# Header phrases per canonical field, most specific first. Matching is done
# on whole words so "Paid" never matches "id".
FIELD_SYNONYMS: dict[str, tuple[str, ...]] = {
    "date": (
        "date",
        "transaction date",
        "trans date",
        "posted date",
        "posting date",
        "booking date",
        "value date",
    ),
    "amount": ("amount", "transaction amount", "value", "sum", "debit", "credit"),
    "description": (
        "description",
        "desc",
        "memo",
        "narrative",
        "details",
        "payee",
        "merchant",
    ),
    "type": ("type", "transaction type", "dr cr", "debit credit", "cr dr"),
    "balance": ("balance", "running balance"),
    "reference": (
        "reference",
        "ref",
        "transaction id",
        "reference number",
        "check",
        "check number",
        "id",
    ),
    "category": ("category",),
}


def _words(text: str) -> list[str]:
    """Lowercase a header and split it into alphanumeric words."""
    return re.findall(r"[a-z0-9]+", text.lower())


def _contains_phrase(words: list[str], phrase: list[str]) -> bool:
    size = len(phrase)
    return any(words[i : i + size] == phrase for i in range(len(words) - size + 1))


def suggest_mapping(columns: list[str]) -> dict[str, str]:
    """Suggest a canonical field for as many columns as the synonym table allows.

    Exact header matches are assigned first, then headers that merely contain
    a synonym. A column is never suggested for two fields, and fields with no
    match are left out.

    Args:
        columns: Header names in file order

    Returns:
        Dict of canonical field name -> column name
    """
    header_words = [_words(column) for column in columns]
    suggestions: dict[str, str] = {}
    used: set[int] = set()

    def assign(matches) -> None:
        for field_name, synonyms in FIELD_SYNONYMS.items():
            if field_name in suggestions:
                continue
            for synonym in synonyms:
                phrase = _words(synonym)
                index = next(
                    (
                        i
                        for i, words in enumerate(header_words)
                        if i not in used and words and matches(words, phrase)
                    ),
                    None,
                )
                if index is not None:
                    suggestions[field_name] = columns[index]
                    used.add(index)
                    break

    assign(lambda words, phrase: words == phrase)
    assign(_contains_phrase)
    return suggestions


@dataclass(frozen=True)
class DetectionResult:
    """Columns, sample rows and a candidate mapping for user confirmation."""

    columns: list[str] = field(default_factory=list)
    sample_rows: list[dict[str, str]] = field(default_factory=list)
    suggested_mapping: dict[str, str] = field(default_factory=dict)
    delimiter: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "columns": list(self.columns),
            "sampleRows": [dict(row) for row in self.sample_rows],
            "suggestedMapping": dict(self.suggested_mapping),
        }


class SchemaDetector:
    """Infers the shape of a delimited file.

    Detection is best effort and never raises: empty or unreadable content
    yields no columns and an empty mapping, leaving validation to the parser.
    """

    def __init__(self, sample_size: int = SAMPLE_ROW_COUNT):
        self.sample_size = sample_size

    def detect(
        self, content: Optional[str], delimiter: Optional[str] = None, has_header: bool = True
    ) -> DetectionResult:
        """Detect columns, sample rows and a suggested mapping.

        Args:
            content: Raw file content
            delimiter: Explicit delimiter; sniffed when None
            has_header: Whether the first non-blank row holds column names

        Returns:
            DetectionResult (empty when the content cannot be read)
        """
        if not content or not content.strip():
            return DetectionResult()

        content = strip_bom(content)
        if delimiter is None:
            delimiter = detect_delimiter(content)
        try:
            rows = read_rows(content, delimiter)
        except csv.Error as e:
            logger.info("Schema detection could not read content: %s", e)
            return DetectionResult()
        if not rows:
            return DetectionResult()

        if has_header:
            columns = normalize_headers(rows[0])
            data_rows = rows[1:]
        else:
            width = max(len(row) for row in rows)
            columns = [f"column_{i}" for i in range(1, width + 1)]
            data_rows = rows

        sample_rows = [
            {column: (row[i].strip() if i < len(row) else "") for i, column in enumerate(columns)}
            for row in data_rows[: self.sample_size]
        ]
        suggested = suggest_mapping(columns) if has_header else {}
        return DetectionResult(
            columns=columns,
            sample_rows=sample_rows,
            suggested_mapping=suggested,
            delimiter=delimiter,
        )


def detect_schema(content: Optional[str], delimiter: Optional[str] = None) -> dict[str, Any]:
    """Detection entrypoint: returns ``{columns, sampleRows, suggestedMapping}``."""
    return SchemaDetector().detect(content, delimiter=delimiter).to_dict()
