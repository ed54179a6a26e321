"""Tests for content fingerprints and delimited text helpers."""

from datetime import date
from decimal import Decimal

from ledgersync.utils.delimited import detect_delimiter, normalize_headers, read_rows
from ledgersync.utils.fingerprint import transaction_fingerprint


def test_fingerprint_is_stable_and_prefixed():
    first = transaction_fingerprint(date(2024, 1, 1), Decimal("10.00"), "Coffee Shop")
    second = transaction_fingerprint(date(2024, 1, 1), Decimal("10.0"), "  coffee   shop ")

    assert first == second
    assert first.startswith("fp-")
    assert len(first) == 27


def test_fingerprint_distinguishes_occurrences():
    base = (date(2024, 1, 1), Decimal("10.00"), "Coffee")
    assert transaction_fingerprint(*base, occurrence=0) != transaction_fingerprint(
        *base, occurrence=1
    )


def test_fingerprint_changes_with_amount():
    assert transaction_fingerprint(
        date(2024, 1, 1), Decimal("10.00"), "Coffee"
    ) != transaction_fingerprint(date(2024, 1, 1), Decimal("-10.00"), "Coffee")


def test_detect_delimiter():
    assert detect_delimiter("a;b;c\n1;2;3\n") == ";"
    assert detect_delimiter("a\tb\n1\t2\n") == "\t"


def test_detect_delimiter_falls_back_to_default():
    assert detect_delimiter("single\nvalue\n") == ","


def test_read_rows_skips_blank_lines_and_bom():
    rows = read_rows("\ufeffDate,Amount\n\n2024-01-01,1.00\n,\n", ",")
    assert rows == [["Date", "Amount"], ["2024-01-01", "1.00"]]


def test_normalize_headers_names_blank_columns():
    assert normalize_headers([" Date ", "", "Amount"]) == ["Date", "column_2", "Amount"]
