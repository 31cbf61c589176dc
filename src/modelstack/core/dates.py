"""
Special date placeholders usable inside filter values.

    $now         current instant
    $today       UTC midnight of the current day
    $yesterday   $today minus one day
    $tomorrow    $today plus one day
    $<N><unit>ago, unit in S (seconds), m (minutes), H (hours), d (days),
                 w (weeks), M (months), y (years)

Usage:
    resolve_special_date("$7dago", now=datetime(2024, 1, 8, tzinfo=timezone.utc))
    # datetime(2024, 1, 1, tzinfo=timezone.utc)
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from dateutil.relativedelta import relativedelta

from .errors import InvalidFilterError

Clock = Callable[[], datetime]

RELATIVE_DATE_RE = re.compile(r"^\$(\d+)([A-Za-z]+)ago$")

UNIT_DELTAS: dict[str, Callable[[int], relativedelta]] = {
    "S": lambda n: relativedelta(seconds=n),
    "m": lambda n: relativedelta(minutes=n),
    "H": lambda n: relativedelta(hours=n),
    "d": lambda n: relativedelta(days=n),
    "w": lambda n: relativedelta(weeks=n),
    "M": lambda n: relativedelta(months=n),
    "y": lambda n: relativedelta(years=n),
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def is_special_date(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    return value in ("$now", "$today", "$yesterday", "$tomorrow") or bool(RELATIVE_DATE_RE.match(value))


def resolve_special_date(value: str, now: Optional[datetime] = None) -> datetime:
    """
    Resolve a placeholder into a UTC datetime.

    Raises:
        InvalidFilterError: if a relative placeholder uses an unknown unit
    """
    if now is None:
        now = utc_now()
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)

    if value == "$now":
        return now
    if value == "$today":
        return today
    if value == "$yesterday":
        return today - timedelta(days=1)
    if value == "$tomorrow":
        return today + timedelta(days=1)

    match = RELATIVE_DATE_RE.match(value)
    if not match:
        raise InvalidFilterError(f"invalid special date '{value}'")
    amount, unit = int(match.group(1)), match.group(2)
    delta = UNIT_DELTAS.get(unit)
    if delta is None:
        raise InvalidFilterError(f"invalid special date unit '{unit}' in '{value}'")
    return now - delta(amount)
