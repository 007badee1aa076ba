"""
Timeframe parsing for trend windows.

Accepted forms: ``YYYY`` (year), ``YYYY-MM`` (month) and ``YYYY-Qn``
(quarter). Anything else resolves to the current month.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from veritas.core.clock import as_utc, utcnow

logger = logging.getLogger(__name__)

YEAR_PATTERN = re.compile(r"^(\d{4})$")
MONTH_PATTERN = re.compile(r"^(\d{4})-(\d{2})$")
QUARTER_PATTERN = re.compile(r"^(\d{4})-Q([1-4])$", re.I)


@dataclass(frozen=True)
class TimeWindow:
    """Half-open window ``[start, end)`` in UTC."""
    start: datetime
    end: datetime
    label: str

    @property
    def first_day(self) -> date:
        return self.start.date()

    @property
    def last_day(self) -> date:
        return (self.end - timedelta(days=1)).date()

    def contains(self, moment: datetime) -> bool:
        return self.start <= as_utc(moment) < self.end


def _month_start(year: int, month: int) -> datetime:
    return datetime(year, month, 1, tzinfo=timezone.utc)


def _add_months(year: int, month: int, months: int) -> datetime:
    index = year * 12 + (month - 1) + months
    return _month_start(index // 12, index % 12 + 1)


def month_window(year: int, month: int) -> TimeWindow:
    return TimeWindow(_month_start(year, month), _add_months(year, month, 1), f"{year:04d}-{month:02d}")


def parse_timeframe(timeframe: str, now: Optional[datetime] = None) -> TimeWindow:
    """Resolve a timeframe label to its window; unparseable input means the current month."""
    text = (timeframe or "").strip()

    match = YEAR_PATTERN.match(text)
    if match:
        year = int(match.group(1))
        if 1 <= year < 9999:
            return TimeWindow(_month_start(year, 1), _add_months(year, 1, 12), text)

    match = MONTH_PATTERN.match(text)
    if match:
        year, month = int(match.group(1)), int(match.group(2))
        if 1 <= year < 9999 and 1 <= month <= 12:
            return month_window(year, month)

    match = QUARTER_PATTERN.match(text)
    if match:
        year, quarter = int(match.group(1)), int(match.group(2))
        if 1 <= year < 9999:
            first_month = (quarter - 1) * 3 + 1
            return TimeWindow(
                _month_start(year, first_month),
                _add_months(year, first_month, 3),
                f"{year:04d}-Q{quarter}",
            )

    current = as_utc(now) if now is not None else utcnow()
    logger.debug(f"Unparseable timeframe {timeframe!r}, using current month")
    return month_window(current.year, current.month)
