"""
Patent number standardization: spacing/punctuation variants collapse to one
canonical CC-SERIAL[-KIND] form; JP era numbers become Western years.
"""
import pytest

from utils.patent_numbers import standardize_patent_number, normalize_patent_ids


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("US 10,123,456 B2", "US-10123456-B2"),
        ("us10123456b2", "US-10123456-B2"),
        ("US-10123456-B2", "US-10123456-B2"),
        ("EP1234567", "EP-1234567"),
        ("WO2020123456A1", "WO-2020123456-A1"),
        ("CN 112345678 A", "CN-112345678-A"),
    ],
)
def test_standardize_variants(raw, expected):
    assert standardize_patent_number(raw) == expected


def test_japanese_heisei_era_becomes_western_year():
    # H05 -> 1988 + 5
    assert standardize_patent_number("JPH05123456A") == "JP-1993123456-A"


def test_japanese_showa_era_becomes_western_year():
    # S60 -> 1925 + 60
    assert standardize_patent_number("JP S60-12345") == "JP-198512345"


def test_japanese_reiwa_era_becomes_western_year():
    assert standardize_patent_number("JPR03000123") == "JP-2021000123"


def test_non_patent_string_is_returned_unchanged():
    assert standardize_patent_number("not a patent") == "not a patent"
    assert standardize_patent_number("12345") == "12345"


def test_normalize_dedupes_equivalent_spellings_in_order():
    ids = normalize_patent_ids(["US10123456B2", "EP1234567", "US-10123456-B2", " ", None, "ep 1234567"])
    assert ids == ["US-10123456-B2", "EP-1234567"]
