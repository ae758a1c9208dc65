from __future__ import annotations

import re
from datetime import date, datetime, timedelta, timezone

ISO_FORMAT = "%Y-%m-%d"

CALENDAR_FORMATS = (
    ISO_FORMAT,
    "%d-%m-%Y",
    "%d/%m/%Y",
    "%m/%d/%Y",
    "%B %d, %Y",
    "%b %d, %Y",
)

DUE_DATE_OFFSET = timedelta(days=30)

# Day first, then month; two digit years are read as 20YY.
_SLASHED_DATE = re.compile(r"^(?P<day>\d{1,2})[/.-](?P<month>\d{1,2})[/.-](?P<year>\d{4}|\d{2})$")


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def parse_calendar_date(value: str | None) -> date | None:
    if not value:
        return None
    text = str(value).strip()
    for fmt in CALENDAR_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def repair_slashed_date(text: str) -> str:
    """Rewrite ``D/M/Y`` style dates to ``YYYY-MM-DD``; other text is returned stripped."""
    compact = text.strip()
    m = _SLASHED_DATE.match(compact)
    if not m:
        return compact
    year = m.group("year")
    if len(year) == 2:
        year = f"20{year}"
    return f"{year}-{int(m.group('month')):02d}-{int(m.group('day')):02d}"


def default_due_date(invoice_date: str, today: date | None = None) -> str:
    start = parse_calendar_date(invoice_date) or today or utc_today()
    return (start + DUE_DATE_OFFSET).strftime(ISO_FORMAT)
