"""Tests for shared page text parsing."""

from datetime import date
from decimal import Decimal

import pytest

from staywatch.adapters.parsing import (
    compact,
    extract_price,
    parse_bedrooms,
    parse_date,
    parse_discount,
    parse_expiry,
    parse_nights,
    parse_voucher,
    slugify,
)
from staywatch.db.models import DiscountType


@pytest.mark.parametrize(
    "text,expected",
    [
        ("£1,299.00", Decimal("1299.00")),
        ("from £499pp", Decimal("499.00")),
        ("  £ 749 ", Decimal("749.00")),
        ("Total: £1,050.5", Decimal("1050.50")),
    ],
)
def test_extract_price(text, expected):
    assert extract_price(text) == expected


@pytest.mark.parametrize("text", [None, "", "Sold out", "£0", "-£5", "Call for price"])
def test_extract_price_rejects(text):
    assert extract_price(text) is None


@pytest.mark.parametrize(
    "text,expected",
    [
        ("2024-07-01", date(2024, 7, 1)),
        ("2024-07-01T00:00:00Z", date(2024, 7, 1)),
        ("01/07/2024", date(2024, 7, 1)),
        ("1st July 2024", date(2024, 7, 1)),
        ("Mon 1st July 2024", date(2024, 7, 1)),
        ("Friday 5th Jul 2024", date(2024, 7, 5)),
    ],
)
def test_parse_date(text, expected):
    assert parse_date(text) == expected


def test_parse_date_default_year():
    assert parse_date("31/08", default_year=2024) == date(2024, 8, 31)
    assert parse_date("31/08") is None


@pytest.mark.parametrize("text", [None, "", "next summer", "2024-13-01"])
def test_parse_date_rejects(text):
    assert parse_date(text) is None


def test_parse_nights():
    assert parse_nights("7 nights") == 7
    assert parse_nights("Short break: 3 nts") == 3
    assert parse_nights("4") == 4
    assert parse_nights("1 night") == 1
    assert parse_nights("0") is None
    assert parse_nights("a week") is None
    assert parse_nights(None) is None


def test_parse_bedrooms():
    assert parse_bedrooms("3 bedrooms") == 3
    assert parse_bedrooms("2-bed lodge") == 2
    assert parse_bedrooms("Sleeps 6") is None
    assert parse_bedrooms(None) is None


@pytest.mark.parametrize(
    "text,expected",
    [
        ("Up to 25% off summer breaks", (DiscountType.PERCENT_OFF, Decimal("25"))),
        ("Save £100 on 7 night stays", (DiscountType.FIXED_OFF, Decimal("100.00"))),
        ("Save up to £250", (DiscountType.FIXED_OFF, Decimal("250.00"))),
        ("Breaks from £99", (DiscountType.SALE_PRICE, Decimal("99.00"))),
        ("Kids go free", (DiscountType.PERK, None)),
    ],
)
def test_parse_discount(text, expected):
    assert parse_discount(text) == expected


def test_parse_expiry():
    today = date(2024, 3, 1)

    assert parse_expiry("Offer ends 31st August 2024", today) == date(2024, 8, 31)
    assert parse_expiry("Book by 15/04", today) == date(2024, 4, 15)
    # Day and month already passed this year means next year
    assert parse_expiry("Valid until 10/01", today) == date(2025, 1, 10)
    assert parse_expiry("No expiry mentioned", today) is None


def test_parse_voucher():
    assert parse_voucher("Use code SUMMER50 at checkout") == "SUMMER50"
    assert parse_voucher("Enter promo: FAMILY2024") == "FAMILY2024"
    assert parse_voucher("No code needed") is None


def test_slug_helpers():
    assert slugify("Lake District & Cumbria") == "lake-district-cumbria"
    assert compact("Tattershall Lakes") == "tattershalllakes"
