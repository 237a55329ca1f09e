# backend/docgen/domain/formatting.py
from __future__ import annotations

from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional


def to_fixed(value: float, digits: int) -> str:
    """Half-up rounding to a fixed number of decimals ("2.5" -> "3" at 0 digits)."""
    q = Decimal(1).scaleb(-digits) if digits > 0 else Decimal(1)
    return str(Decimal(repr(float(value))).quantize(q, rounding=ROUND_HALF_UP))


def number_str(value: float) -> str:
    """Shortest plain rendering: 1.0 -> "1", 1.25 -> "1.25"."""
    f = float(value)
    if f.is_integer():
        return str(int(f))
    return repr(f)


def format_currency(amount: Optional[float]) -> str:
    if amount is None:
        return "[Amount TBD]"
    whole = int(Decimal(repr(float(amount))).quantize(Decimal(1), rounding=ROUND_HALF_UP))
    sign = "-" if whole < 0 else ""
    return f"{sign}${abs(whole):,}"


def format_currency_detailed(amount: Optional[float]) -> str:
    if amount is None:
        return "[Amount TBD]"
    cents = Decimal(repr(float(amount))).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    sign = "-" if cents < 0 else ""
    return f"{sign}${abs(cents):,.2f}"


def format_grouped(amount: float) -> str:
    """Thousands-grouped without a currency sign, up to 3 decimals: 1234.5 -> "1,234.5"."""
    d = Decimal(repr(float(amount))).quantize(Decimal("0.001"), rounding=ROUND_HALF_UP)
    text = f"{d:,.3f}".rstrip("0").rstrip(".")
    return text


def format_percent(rate: Optional[float]) -> str:
    if rate is None:
        return "[Rate TBD]"
    return f"{to_fixed(rate * 100, 3)}%"


def format_percent_short(rate: Optional[float]) -> str:
    if rate is None:
        return "[Rate TBD]"
    return f"{to_fixed(rate * 100, 2)}%"


def format_date(d: Optional[date]) -> str:
    if d is None:
        return "[Date TBD]"
    return f"{d.strftime('%B')} {d.day}, {d.year}"
