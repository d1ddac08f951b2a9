"""Locale service for month labels and currency formatting in bill views.

Uses babel. Configuration:
    LOCALE env var (default: en_IN) - determines currency and month names

Example:
    >>> from rentbook.services.locale_service import format_amount, format_month_label
    >>> format_month_label("2024-05")
    'May 2024'
    >>> format_amount(5800)
    '₹5,800.00'
"""

import logging
from datetime import date
from decimal import Decimal

from babel import Locale, UnknownLocaleError
from babel.dates import format_date as babel_format_date
from babel.numbers import format_currency as babel_format_currency
from babel.numbers import format_decimal as babel_format_decimal
from babel.numbers import get_territory_currencies

from rentbook.config import settings
from rentbook.services.parsers import is_valid_month_key, normalize_month_key

logger = logging.getLogger(__name__)

# Default locale if LOCALE setting is invalid or missing
DEFAULT_LOCALE = "en_IN"
DEFAULT_CURRENCY = "INR"


def _get_locale() -> str:
    """Get locale from settings with validation and fallback."""
    locale_str = settings.locale or DEFAULT_LOCALE
    try:
        Locale.parse(locale_str)
        return locale_str
    except (UnknownLocaleError, ValueError) as e:
        logger.warning(f"Invalid LOCALE '{locale_str}': {e}. Falling back to '{DEFAULT_LOCALE}'")
        return DEFAULT_LOCALE


def _get_currency_from_locale(locale_str: str) -> str:
    """Derive currency code from locale territory (e.g. 'en_IN' -> 'INR')."""
    try:
        locale = Locale.parse(locale_str)
        territory = locale.territory
        if territory:
            currencies = get_territory_currencies(territory)
            if currencies:
                return currencies[0]
    except (UnknownLocaleError, ValueError) as e:
        logger.warning(f"Could not derive currency from locale '{locale_str}': {e}")

    return DEFAULT_CURRENCY


# Module-level constants (computed once at import)
LOCALE = _get_locale()
CURRENCY = _get_currency_from_locale(LOCALE)


def format_month_label(month_key: str) -> str:
    """Human label of a billing month ("2024-05" -> "May 2024").

    Month keys that cannot be normalized are returned as normalized text.
    """
    normalized = normalize_month_key(month_key)
    if not is_valid_month_key(normalized):
        return normalized
    first_day = date(int(normalized[:4]), int(normalized[5:7]), 1)
    return babel_format_date(first_day, "MMM yyyy", locale=LOCALE)


def format_amount(amount: float | Decimal, include_symbol: bool = True) -> str:
    """Format monetary amount according to locale.

    Args:
        amount: Numeric amount to format
        include_symbol: Whether to include currency symbol (default True)

    Returns:
        Formatted currency string (e.g., '₹5,800.00')
    """
    if include_symbol:
        return babel_format_currency(Decimal(amount), CURRENCY, locale=LOCALE)
    return babel_format_decimal(Decimal(amount), format="#,##0.00", locale=LOCALE)


__all__ = [
    "CURRENCY",
    "LOCALE",
    "format_amount",
    "format_month_label",
]
