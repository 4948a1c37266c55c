"""Service-duration arithmetic (whole calendar months elapsed)."""

from __future__ import annotations

from datetime import date
from typing import Any, Optional

from .exceptions import InvalidDateRange
from .models import PersonnelRecord, ServiceDuration, coerce_date


def _require_date(value: Any, name: str) -> date:
    if value is None or value == "":
        raise InvalidDateRange(f"{name} is missing")
    parsed = coerce_date(value)
    if parsed is None:
        raise InvalidDateRange(f"{name} is not a valid date: {value!r}")
    return parsed


def compute_duration(
    start_date: Any,
    end_date: Any = None,
    *,
    today: Optional[date] = None,
) -> ServiceDuration:
    """Years/months elapsed between ``start_date`` and ``end_date``.

    ``end_date`` defaults to ``today``; ``today`` defaults to the system
    date and should be injected by callers that need determinism. A month
    is borrowed when the end day-of-month precedes the start day-of-month.
    """
    start = _require_date(start_date, "start_date")
    if end_date is None:
        end = today or date.today()
    else:
        end = _require_date(end_date, "end_date")

    if end < start:
        raise InvalidDateRange(f"end_date {end.isoformat()} is before start_date {start.isoformat()}")

    years = end.year - start.year
    months = end.month - start.month
    if end.day < start.day:
        months -= 1
    if months < 0:
        years -= 1
        months += 12

    total = years * 12 + months
    return ServiceDuration(years=total // 12, months=total % 12, total_months=total)


def duration_for(personnel: PersonnelRecord, today: Optional[date] = None) -> ServiceDuration:
    """Enlistment to separation (or ``today`` while still serving)."""
    return compute_duration(personnel.enlistment_date, personnel.separation_date, today=today)


def format_months(total_months: int) -> str:
    if total_months <= 0:
        return "-"
    years, months = divmod(total_months, 12)
    if years and months:
        return f"{years} năm {months} tháng"
    if years:
        return f"{years} năm"
    return f"{months} tháng"


def format_duration(duration: ServiceDuration) -> str:
    return format_months(duration.total_months)
