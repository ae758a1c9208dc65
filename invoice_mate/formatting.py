from __future__ import annotations

import math
import re

from invoice_mate.dates import parse_calendar_date

_CURRENCY_SYMBOLS = {"USD": "$", "EUR": "€", "GBP": "£", "JPY": "¥"}


def format_currency(amount: float, currency: str = "USD") -> str:
    """On-screen currency, en-US grouping: ``-$1,650.00``."""
    symbol = _CURRENCY_SYMBOLS.get(currency.upper(), f"{currency.upper()} ")
    sign = "-" if amount < 0 else ""
    return f"{sign}{symbol}{abs(amount):,.2f}"


def format_pdf_currency(amount: float) -> str:
    return f"${amount:.2f}"


def parse_formatted_currency(text: str) -> float:
    numeric = re.sub(r"[^0-9.\-]+", "", text)
    try:
        return float(numeric)
    except ValueError:
        return math.nan


def format_display_date(value: str) -> str:
    parsed = parse_calendar_date(value)
    if parsed is None:
        return value
    return parsed.strftime("%m/%d/%Y")
