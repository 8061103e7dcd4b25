"""Amount and currency parsing for display strings such as ``"$5.00"``."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Optional

from shared.logging.logger import get_logger

log = get_logger("normalizer.currency")

DEFAULT_CURRENCY = "USD"

CURRENCY_SYMBOLS = {
    "€": "EUR",
    "$": "USD",
    "£": "GBP",
    "¥": "JPY",
}

CURRENCY_CODES = ("USD", "EUR", "GBP", "JPY", "CAD", "AUD")


def parse_amount(raw: Optional[str]) -> Decimal:
    """
    Strip known glyphs/codes and thousands separators, then parse a decimal.

    Never raises: unparsable input yields ``Decimal(0)`` and a warning.
    """
    if raw is None:
        log.warning("Amount string missing; defaulting to 0")
        return Decimal("0")

    cleaned = str(raw)
    for token in (",", *CURRENCY_SYMBOLS.keys(), *CURRENCY_CODES):
        cleaned = cleaned.replace(token, "")
    cleaned = cleaned.strip()

    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        log.warning(f"Could not parse amount from '{raw}'; defaulting to 0")
        return Decimal("0")

    if not amount.is_finite():
        log.warning(f"Non-finite amount parsed from '{raw}'; defaulting to 0")
        return Decimal("0")
    return amount


def parse_currency(raw: Optional[str]) -> str:
    """Resolve an ISO code from a leading glyph or trailing code, else USD."""
    if not raw or not raw.strip():
        log.warning(f"Currency missing; defaulting to {DEFAULT_CURRENCY}")
        return DEFAULT_CURRENCY

    text = raw.strip()
    symbol = CURRENCY_SYMBOLS.get(text[0])
    if symbol:
        return symbol

    upper = text.upper()
    for code in CURRENCY_CODES:
        if upper.endswith(f" {code}"):
            return code

    log.warning(f"Unrecognized currency in '{raw}'; defaulting to {DEFAULT_CURRENCY}")
    return DEFAULT_CURRENCY


__all__ = [
    "CURRENCY_CODES",
    "CURRENCY_SYMBOLS",
    "DEFAULT_CURRENCY",
    "parse_amount",
    "parse_currency",
]
