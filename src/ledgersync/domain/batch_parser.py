"""Batch parser: applies a confirmed column mapping to delimited content."""

import csv
import logging
from collections import Counter
from dataclasses import asdict, dataclass, field, fields
from datetime import date
from decimal import Decimal
from typing import Any, Optional

from ledgersync.domain.entities import CREDIT, DEBIT, TransactionRecord
from ledgersync.domain.errors import ValidationError
from ledgersync.utils.amount_parser import parse_amount
from ledgersync.utils.date_parser import parse_date
from ledgersync.utils.delimited import detect_delimiter, normalize_headers, read_rows, strip_bom
from ledgersync.utils.fingerprint import normalize_description, transaction_fingerprint

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("date", "amount")

EXTERNAL_ID_FINGERPRINT = "fingerprint"
EXTERNAL_ID_ROW = "row"
EXTERNAL_ID_STRATEGIES = (EXTERNAL_ID_FINGERPRINT, EXTERNAL_ID_ROW)

_DEBIT_VALUES = {"debit", "dr", "d", "db", "withdrawal", "payment"}
_CREDIT_VALUES = {"credit", "cr", "c", "deposit"}


def parse_transaction_type(value: Optional[str]) -> Optional[str]:
    """Map a source type value to ``debit``/``credit``; None if unrecognized."""
    if value is None:
        return None
    cleaned = value.strip().lower()
    if not cleaned:
        return None
    if cleaned in _DEBIT_VALUES or "debit" in cleaned:
        return DEBIT
    if cleaned in _CREDIT_VALUES or "credit" in cleaned:
        return CREDIT
    return None


def infer_transaction_type(amount: Decimal, debit_positive: bool = False) -> str:
    """Infer the type from the amount's sign."""
    if debit_positive:
        return DEBIT if amount >= 0 else CREDIT
    return DEBIT if amount < 0 else CREDIT


@dataclass(frozen=True)
class ColumnMapping:
    """Maps canonical fields to column names in the file."""

    date: str
    amount: str
    description: Optional[str] = None
    type: Optional[str] = None
    reference: Optional[str] = None
    balance: Optional[str] = None
    category: Optional[str] = None

    @classmethod
    def from_dict(cls, mapping: dict[str, Any]) -> "ColumnMapping":
        """Build a mapping from ``{field: column}``.

        Raises:
            ValidationError: If a field is unknown or a required field is unmapped
        """
        if not isinstance(mapping, dict):
            raise ValidationError("Column mapping must be an object of field -> column")
        allowed = [f.name for f in fields(cls)]
        unknown = sorted(set(mapping) - set(allowed))
        if unknown:
            raise ValidationError(
                f"Unknown mapping fields: {', '.join(unknown)}. "
                f"Valid fields: {', '.join(allowed)}"
            )
        cleaned = {
            key: str(value).strip()
            for key, value in mapping.items()
            if value is not None and str(value).strip()
        }
        missing = [name for name in REQUIRED_FIELDS if name not in cleaned]
        if missing:
            raise ValidationError(
                f"Column mapping is missing required fields: {', '.join(missing)}"
            )
        return cls(**cleaned)

    def to_dict(self) -> dict[str, str]:
        return {key: value for key, value in asdict(self).items() if value is not None}


@dataclass(frozen=True)
class ParserConfig:
    """Formatting options for one parse call."""

    date_format: Optional[str] = None
    delimiter: Optional[str] = None
    has_header: bool = True
    skip_rows: int = 0
    decimal_separator: str = "."
    day_first: bool = False
    debit_positive: bool = False
    infer_type_from_sign: bool = False
    currency: Optional[str] = None
    external_id_strategy: str = EXTERNAL_ID_FINGERPRINT

    # Keys accepted from API payloads in addition to the field names
    _ALIASES = {
        "dateFormat": "date_format",
        "hasHeader": "has_header",
        "skipRows": "skip_rows",
        "decimalSeparator": "decimal_separator",
        "dayFirst": "day_first",
        "debitPositive": "debit_positive",
        "inferTypeFromSign": "infer_type_from_sign",
        "externalIdStrategy": "external_id_strategy",
    }

    def __post_init__(self):
        if self.decimal_separator not in (".", ","):
            raise ValidationError(
                f"Invalid decimal separator '{self.decimal_separator}'. Must be '.' or ','"
            )
        if self.external_id_strategy not in EXTERNAL_ID_STRATEGIES:
            raise ValidationError(
                f"Invalid external id strategy '{self.external_id_strategy}'. "
                f"Must be one of: {', '.join(EXTERNAL_ID_STRATEGIES)}"
            )
        if not isinstance(self.skip_rows, int) or self.skip_rows < 0:
            raise ValidationError("skip_rows must be a non-negative integer")
        if self.delimiter is not None and len(self.delimiter) != 1:
            raise ValidationError(f"Delimiter must be a single character, got '{self.delimiter}'")

    @classmethod
    def from_dict(cls, config: Optional[dict[str, Any]]) -> "ParserConfig":
        """Build a config from snake_case or camelCase keys.

        A nested ``amountFormat`` object may carry ``decimalSeparator`` and
        ``debitPositive``.

        Raises:
            ValidationError: If a key is unknown or a value is invalid
        """
        if not config:
            return cls()
        flat = dict(config)
        amount_format = flat.pop("amountFormat", None) or {}
        flat.update(amount_format)
        # negativePattern is implied: parentheses and trailing minus always parse
        flat.pop("negativePattern", None)

        allowed = {f.name for f in fields(cls)}
        values: dict[str, Any] = {}
        unknown = []
        for key, value in flat.items():
            name = cls._ALIASES.get(key, key)
            if name in allowed:
                values[name] = value
            else:
                unknown.append(key)
        if unknown:
            raise ValidationError(f"Unknown parser config keys: {', '.join(sorted(unknown))}")
        if "skip_rows" in values:
            try:
                values["skip_rows"] = int(values["skip_rows"])
            except (TypeError, ValueError):
                raise ValidationError(f"skip_rows must be an integer, got '{values['skip_rows']}'")
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ParseIssue:
    """An error or warning tied to a source row (row 0 means the whole file)."""

    row: int
    message: str
    field: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"row": self.row, "message": self.message}
        if self.field is not None:
            data["field"] = self.field
        return data


@dataclass(frozen=True)
class ParsedTransaction:
    """A validated row, not yet bound to an account."""

    row_number: int
    date: date
    amount: Decimal
    description: Optional[str]
    transaction_type: str
    external_transaction_id: str
    balance: Optional[Decimal] = None
    category: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_record(self, account_id: int, currency: str) -> TransactionRecord:
        return TransactionRecord(
            account_id=account_id,
            date=self.date,
            amount=self.amount,
            currency=currency,
            description=self.description,
            transaction_type=self.transaction_type,
            external_transaction_id=self.external_transaction_id,
            metadata=dict(self.metadata),
        )


@dataclass
class ParseSummary:
    total_rows: int = 0
    valid_rows: int = 0
    invalid_rows: int = 0
    columns: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalRows": self.total_rows,
            "validRows": self.valid_rows,
            "invalidRows": self.invalid_rows,
            "columns": list(self.columns),
        }


@dataclass
class ParseResult:
    """Output of one parse call.

    ``success`` is False only for structurally unreadable content or when no
    row produced a valid record.
    """

    success: bool = False
    records: list[ParsedTransaction] = field(default_factory=list)
    errors: list[ParseIssue] = field(default_factory=list)
    warnings: list[ParseIssue] = field(default_factory=list)
    summary: ParseSummary = field(default_factory=ParseSummary)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "summary": self.summary.to_dict(),
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
        }


class _RowFailure(ValueError):
    def __init__(self, field_name: str, message: str):
        self.field_name = field_name
        super().__init__(message)


class BatchParser:
    """Parses delimited content into validated transactions."""

    def parse(
        self,
        content: Optional[str],
        mapping: ColumnMapping,
        config: Optional[ParserConfig] = None,
    ) -> ParseResult:
        """Parse content with a confirmed mapping.

        Rows are numbered from 1, excluding the header. A row whose date or
        amount cannot be coerced is reported in ``errors`` and left out of
        ``records``; minor issues are reported in ``warnings`` and the row is
        kept.

        Args:
            content: Raw delimited text
            mapping: Canonical field -> column mapping
            config: Formatting options (defaults apply when None)

        Returns:
            ParseResult
        """
        config = config or ParserConfig()
        result = ParseResult()

        if not content or not content.strip():
            result.errors.append(ParseIssue(row=0, message="File is empty"))
            return result

        content = strip_bom(content)
        delimiter = config.delimiter or detect_delimiter(content)
        try:
            rows = read_rows(content, delimiter)
        except csv.Error as e:
            result.errors.append(ParseIssue(row=0, message=f"CSV parsing failed: {e}"))
            return result

        if config.has_header:
            if not rows:
                result.errors.append(ParseIssue(row=0, message="File is empty"))
                return result
            columns = normalize_headers(rows[0])
            data_rows = rows[1:]
        else:
            width = max((len(row) for row in rows), default=0)
            columns = [f"column_{i}" for i in range(1, width + 1)]
            data_rows = rows
        data_rows = data_rows[config.skip_rows :]

        result.summary.columns = columns
        result.summary.total_rows = len(data_rows)

        available = ", ".join(columns)
        for field_name, column in mapping.to_dict().items():
            if column not in columns:
                result.errors.append(
                    ParseIssue(
                        row=0,
                        field=field_name,
                        message=(
                            f'{field_name.capitalize()} column "{column}" not found. '
                            f"Available columns: {available}"
                        ),
                    )
                )
        if result.errors:
            return result

        # Duplicate header names resolve to the first occurrence
        index: dict[str, int] = {}
        for i, column in enumerate(columns):
            index.setdefault(column, i)

        occurrences: Counter = Counter()
        by_reference: dict[str, int] = {}

        for offset, cells in enumerate(data_rows):
            row_number = offset + 1 + config.skip_rows
            values = {
                column: (cells[i].strip() if i < len(cells) else "")
                for column, i in index.items()
            }
            row_warnings: list[ParseIssue] = []
            if len(cells) > len(columns):
                row_warnings.append(
                    ParseIssue(
                        row=row_number,
                        message=f"Row has {len(cells) - len(columns)} extra field(s); ignored",
                    )
                )
            try:
                parsed = self._parse_row(
                    values, row_number, mapping, config, occurrences, row_warnings
                )
            except _RowFailure as e:
                result.errors.append(ParseIssue(row=row_number, message=str(e), field=e.field_name))
                result.summary.invalid_rows += 1
                continue

            result.summary.valid_rows += 1
            result.warnings.extend(row_warnings)

            previous = by_reference.get(parsed.external_transaction_id)
            if previous is not None:
                replaced = result.records[previous]
                result.warnings.append(
                    ParseIssue(
                        row=row_number,
                        field="reference",
                        message=(
                            f"Duplicate reference '{parsed.external_transaction_id}' "
                            f"(also on row {replaced.row_number}); this row replaces it"
                        ),
                    )
                )
                result.records[previous] = parsed
            else:
                by_reference[parsed.external_transaction_id] = len(result.records)
                result.records.append(parsed)

        if result.summary.invalid_rows:
            result.warnings.append(
                ParseIssue(
                    row=0,
                    message=(
                        f"{result.summary.invalid_rows} rows could not be parsed "
                        "and will be skipped"
                    ),
                )
            )
        if result.summary.valid_rows == 0:
            result.errors.append(ParseIssue(row=0, message="No valid transactions found in file"))
            return result

        result.success = True
        logger.debug(
            "Parsed %d rows: %d valid, %d invalid",
            result.summary.total_rows,
            result.summary.valid_rows,
            result.summary.invalid_rows,
        )
        return result

    def _parse_row(
        self,
        values: dict[str, str],
        row_number: int,
        mapping: ColumnMapping,
        config: ParserConfig,
        occurrences: Counter,
        warnings: list[ParseIssue],
    ) -> ParsedTransaction:
        date_str = values[mapping.date]
        if not date_str:
            raise _RowFailure("date", "Missing date value")
        try:
            txn_date = parse_date(date_str, config.date_format, day_first=config.day_first)
        except ValueError as e:
            raise _RowFailure("date", str(e))

        amount_str = values[mapping.amount]
        if not amount_str:
            raise _RowFailure("amount", "Missing amount value")
        try:
            amount = parse_amount(amount_str, config.decimal_separator)
        except ValueError as e:
            raise _RowFailure("amount", str(e))

        description = None
        if mapping.description:
            description = values[mapping.description] or None
            if description is None:
                warnings.append(
                    ParseIssue(row=row_number, field="description", message="Empty description")
                )

        if mapping.type:
            transaction_type = parse_transaction_type(values[mapping.type])
            if transaction_type is None:
                warnings.append(
                    ParseIssue(
                        row=row_number,
                        field="type",
                        message=(
                            f"Unrecognized type '{values[mapping.type]}'; defaulting to credit"
                        ),
                    )
                )
                transaction_type = CREDIT
        elif config.infer_type_from_sign:
            transaction_type = infer_transaction_type(amount, config.debit_positive)
        else:
            transaction_type = CREDIT

        metadata: dict[str, Any] = {"row_number": row_number}
        mapped_columns = set(mapping.to_dict().values())
        for column, value in values.items():
            if column not in mapped_columns:
                metadata[column] = value

        balance = None
        if mapping.balance and values[mapping.balance]:
            try:
                balance = parse_amount(values[mapping.balance], config.decimal_separator)
                metadata["balance"] = str(balance)
            except ValueError:
                warnings.append(
                    ParseIssue(
                        row=row_number,
                        field="balance",
                        message=f"Could not parse balance '{values[mapping.balance]}'; ignored",
                    )
                )

        category = None
        if mapping.category and values[mapping.category]:
            category = values[mapping.category]
            metadata["category"] = category

        reference = values[mapping.reference] if mapping.reference else ""
        if reference:
            external_id = reference
        elif config.external_id_strategy == EXTERNAL_ID_ROW:
            external_id = f"row-{row_number}"
        else:
            key = (txn_date, amount.normalize(), normalize_description(description))
            external_id = transaction_fingerprint(txn_date, amount, description, occurrences[key])
            occurrences[key] += 1

        return ParsedTransaction(
            row_number=row_number,
            date=txn_date,
            amount=amount,
            description=description,
            transaction_type=transaction_type,
            external_transaction_id=external_id,
            balance=balance,
            category=category,
            metadata=metadata,
        )
