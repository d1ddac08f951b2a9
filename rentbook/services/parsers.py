"""Parsing and key-normalization utilities for billing data.

Operator input arrives with formatting drift: month keys typed as "2024-5",
"2024/05" or "202405", wing names in mixed case, amounts as strings or
blanks. These helpers turn such values into the canonical forms used as
composite keys and into Decimal amounts.

Example:
    >>> normalize_month_key("2024-5")
    '2024-05'

    >>> normalize_wing("  A ")
    'a'

    >>> parse_amount("1,250.50")
    Decimal('1250.50')

    >>> parse_boolean("false")
    False
"""

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

MONTH_KEY_PATTERN = re.compile(r"^\d{4}-\d{2}$")
_COMPACT_MONTH = re.compile(r"^(\d{4})(\d{2})$")
_SEPARATED_MONTH = re.compile(r"^(\d{4})[-/.](\d{1,2})")


def normalize_month_key(value: Any) -> str:
    """
    Normalize a month reference to the canonical "YYYY-MM" form.

    Accepts dates, "YYYYMM", "YYYY-M", "YYYY/MM", "YYYY.MM" and ISO date
    strings. Values that match none of these are returned trimmed and
    unchanged, so callers can still reject them with is_valid_month_key().

    Examples:
        >>> normalize_month_key("202405")
        '2024-05'
        >>> normalize_month_key("2024/5")
        '2024-05'
        >>> normalize_month_key(date(2024, 5, 17))
        '2024-05'
        >>> normalize_month_key(None)
        ''
    """
    if value is None or value == "":
        return ""
    if isinstance(value, (date, datetime)):
        return f"{value.year:04d}-{value.month:02d}"

    text = str(value).strip()
    compact = _COMPACT_MONTH.match(text)
    if compact:
        return f"{compact.group(1)}-{compact.group(2)}"
    separated = _SEPARATED_MONTH.match(text)
    if separated:
        return f"{separated.group(1)}-{int(separated.group(2)):02d}"
    return text


def is_valid_month_key(value: str) -> bool:
    """Check a normalized month key is "YYYY-MM" with a real month."""
    if not value or not MONTH_KEY_PATTERN.match(value):
        return False
    return 1 <= int(value[5:7]) <= 12


def month_index(month_key: str) -> Optional[int]:
    """Return a monotonically increasing month number (year * 12 + month - 1)."""
    normalized = normalize_month_key(month_key)
    if not is_valid_month_key(normalized):
        return None
    return int(normalized[:4]) * 12 + int(normalized[5:7]) - 1


def normalize_wing(value: Any) -> str:
    """Canonical wing name for key comparison: trimmed and case-folded."""
    if value is None:
        return ""
    return str(value).strip().casefold()


def normalize_key(value: Any) -> str:
    """Canonical form of free-text matching keys such as GRN numbers."""
    if value is None:
        return ""
    return str(value).strip().lower()


def parse_amount(value: Any) -> Optional[Decimal]:
    """
    Parse a money or meter value to Decimal.

    Args:
        value: int, float, Decimal or string (thousand separators "," and
            spaces are ignored) or None/empty

    Returns:
        Decimal object or None if input is empty

    Raises:
        ValueError: If value is not a finite number

    Examples:
        >>> parse_amount("5 000")
        Decimal('5000')
        >>> parse_amount(12.5)
        Decimal('12.5')
        >>> parse_amount("") is None
        True
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        # str() keeps the shortest repr, so 0.1 stays 0.1
        result = Decimal(str(value))
    else:
        text = str(value).strip()
        if not text:
            return None
        normalized = text.replace(",", "").replace(" ", "").replace("\xa0", "")
        try:
            result = Decimal(normalized)
        except InvalidOperation as e:
            raise ValueError(f"Cannot parse amount '{value}': {e}") from e

    if not result.is_finite():
        raise ValueError(f"Amount must be a finite number, got '{value}'")
    return result


def parse_amount_or_zero(value: Any) -> Decimal:
    """Parse an amount, treating blank values as zero."""
    parsed = parse_amount(value)
    return parsed if parsed is not None else Decimal("0")


def parse_boolean(value: Any) -> bool:
    """
    Parse a loosely typed flag.

    Strings are true unless empty or "false" (any case); other values use
    their truthiness.

    Examples:
        >>> parse_boolean("TRUE")
        True
        >>> parse_boolean("false")
        False
        >>> parse_boolean("")
        False
        >>> parse_boolean(1)
        True
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip() != "" and value.strip().lower() != "false"
    return bool(value)


def is_blank(value: Any) -> bool:
    """True for None and empty strings, the "missing cell" values."""
    return value is None or (isinstance(value, str) and value.strip() == "")


__all__ = [
    "MONTH_KEY_PATTERN",
    "is_blank",
    "is_valid_month_key",
    "month_index",
    "normalize_key",
    "normalize_month_key",
    "normalize_wing",
    "parse_amount",
    "parse_amount_or_zero",
    "parse_boolean",
]
