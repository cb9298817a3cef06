"""
Tests for phone normalization and masking.
"""

import pytest

from app.utils.phone import mask_phone, normalize_phone


@pytest.mark.parametrize(
    "raw",
    ["0501234567", "050-123-4567", "050 123 4567", "972501234567", "+972501234567", "00972501234567", "501234567"],
)
def test_israeli_formats_normalize_to_e164(raw):
    assert normalize_phone(raw) == "+972501234567"


def test_foreign_number_keeps_its_country_code():
    assert normalize_phone("+1 (415) 555-0100") == "+14155550100"


@pytest.mark.parametrize("raw", [None, "", "12", "abc", "+972+501234567", "0" * 20])
def test_invalid_numbers(raw):
    assert normalize_phone(raw) is None


def test_mask_local_number():
    assert mask_phone("+972501234567") == "050-***-4567"


def test_mask_foreign_number():
    assert mask_phone("+14155550100") == "+14***0100"


def test_mask_missing_phone():
    assert mask_phone(None) == ""
