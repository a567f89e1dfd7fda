"""Price, date and offer text parsing shared by provider adapters.

Every helper returns None rather than guessing when the input is not
confidently parseable.
"""

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional

from selectolax.parser import HTMLParser, Node

from staywatch.db.models import DiscountType

PRICE_RE = re.compile(r"-?\d+(?:\.\d+)?")
NIGHTS_RE = re.compile(r"(\d+)\s*(?:nights?|nts?)\b", re.IGNORECASE)
BEDROOMS_RE = re.compile(r"(\d+)\s*(?:-\s*)?bed(?:room)?s?\b", re.IGNORECASE)
ORDINAL_RE = re.compile(r"(\d{1,2})(?:st|nd|rd|th)\b", re.IGNORECASE)
ISO_PREFIX_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})")
PERCENT_OFF_RE = re.compile(r"(\d+(?:\.\d+)?)\s*%")
SAVE_AMOUNT_RE = re.compile(r"save\s+(?:up\s+to\s+)?£\s*([\d,]+(?:\.\d+)?)", re.IGNORECASE)
SALE_PRICE_RE = re.compile(r"(?:from|now|only)\s+£\s*([\d,]+(?:\.\d+)?)", re.IGNORECASE)
EXPIRY_RE = re.compile(
    r"(?:ends?|expires?|valid\s+until|book\s+by)\s*:?\s*"
    r"(\d{1,2}(?:st|nd|rd|th)?[\s/-](?:\d{1,2}|[A-Za-z]+)(?:[\s/-]\d{2,4})?)",
    re.IGNORECASE,
)
VOUCHER_RE = re.compile(r"\b(?:code|promo)\s*:?\s*([A-Z0-9]{4,20})\b")

DATE_FORMATS = (
    "%Y-%m-%d",
    "%d/%m/%Y",
    "%d-%m-%Y",
    "%d.%m.%Y",
    "%d %B %Y",
    "%d %b %Y",
    "%a %d %B %Y",
    "%A %d %B %Y",
    "%a %d %b %Y",
    "%A %d %b %Y",
    "%d/%m/%y",
)


def extract_price(text: Optional[str]) -> Optional[Decimal]:
    """
    Parse a GBP price from display text.

    Strips the pound sign, thousands separators and whitespace, then reads the
    first number. Non-numeric, zero and negative values are rejected.

    Args:
        text: Price text such as "£1,299.00" or "from £499pp"

    Returns:
        Price as Decimal, or None
    """
    if text is None:
        return None
    cleaned = re.sub(r"[£,\s]", "", str(text))
    match = PRICE_RE.search(cleaned)
    if not match:
        return None
    try:
        value = Decimal(match.group(0))
    except InvalidOperation:
        return None
    if value <= 0:
        return None
    return value.quantize(Decimal("0.01"))


def parse_date(text: Optional[str], default_year: Optional[int] = None) -> Optional[date]:
    """
    Parse a stay or expiry date.

    Accepts ISO dates (optionally with a time part), UK numeric dates and
    "1st July 2024" style text. When ``default_year`` is given, day/month text
    without a year uses it.
    """
    if not text:
        return None
    raw = str(text).strip()

    iso = ISO_PREFIX_RE.match(raw)
    if iso:
        try:
            return date.fromisoformat(iso.group(1))
        except ValueError:
            return None

    cleaned = ORDINAL_RE.sub(r"\1", raw).replace(",", " ")
    cleaned = re.sub(r"\s+", " ", cleaned).strip()

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(cleaned, fmt).date()
        except ValueError:
            continue

    if default_year is not None:
        for fmt in ("%d/%m", "%d-%m", "%d %B", "%d %b"):
            try:
                parsed = datetime.strptime(cleaned, fmt)
            except ValueError:
                continue
            try:
                return parsed.replace(year=default_year).date()
            except ValueError:
                return None
    return None


def parse_nights(text: Optional[str]) -> Optional[int]:
    """Read a night count from text such as "7 nights" or a bare "7"."""
    if text is None:
        return None
    raw = str(text).strip()
    match = NIGHTS_RE.search(raw)
    if match:
        value = int(match.group(1))
    elif raw.isdigit():
        value = int(raw)
    else:
        return None
    return value if value > 0 else None


def parse_bedrooms(text: Optional[str]) -> Optional[int]:
    if not text:
        return None
    match = BEDROOMS_RE.search(str(text))
    if not match:
        return None
    value = int(match.group(1))
    return value if value > 0 else None


def parse_discount(text: str) -> tuple[DiscountType, Optional[Decimal]]:
    """
    Classify offer text into a discount type and value.

    Returns:
        (discount type, value) where value is a percentage or GBP amount
    """
    match = PERCENT_OFF_RE.search(text)
    if match:
        return DiscountType.PERCENT_OFF, Decimal(match.group(1))
    match = SAVE_AMOUNT_RE.search(text)
    if match:
        return DiscountType.FIXED_OFF, extract_price(match.group(1))
    match = SALE_PRICE_RE.search(text)
    if match:
        return DiscountType.SALE_PRICE, extract_price(match.group(1))
    if "£" in text:
        amount = extract_price(text[text.index("£"):])
        if amount is not None:
            return DiscountType.FIXED_OFF, amount
    return DiscountType.PERK, None


def parse_expiry(text: str, today: Optional[date] = None) -> Optional[date]:
    """Find an "ends 31/08" style expiry in offer text."""
    match = EXPIRY_RE.search(text)
    if not match:
        return None
    today = today or date.today()
    parsed = parse_date(match.group(1), default_year=today.year)
    # A day/month without a year that already passed refers to next year
    if parsed and parsed < today and not re.search(r"\d{4}$", match.group(1).strip()):
        try:
            parsed = parsed.replace(year=today.year + 1)
        except ValueError:
            return None
    return parsed


def parse_voucher(text: str) -> Optional[str]:
    match = VOUCHER_RE.search(text)
    return match.group(1) if match else None


def text_of(node: Optional[Node]) -> Optional[str]:
    """Stripped text of a node, or None when absent or blank."""
    if node is None:
        return None
    value = node.text(strip=True, separator=" ")
    return value or None


def first_match(node: HTMLParser | Node, selectors: Iterable[str]) -> Optional[Node]:
    """Return the first element matching any of the selectors, in order."""
    for selector in selectors:
        found = node.css_first(selector)
        if found is not None:
            return found
    return None


def select_all(node: HTMLParser | Node, selectors: Iterable[str]) -> list[Node]:
    """Elements matching the first selector that matches anything."""
    for selector in selectors:
        found = node.css(selector)
        if found:
            return found
    return []


def slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    return slug


def compact(value: Optional[str]) -> str:
    """Lowercase with all non-alphanumerics removed, for lookup tables."""
    return re.sub(r"[^a-z0-9]", "", (value or "").lower())
