"""
Renewal & Delivery Scheduling — pure date rules for subscription cycles.

Rules:
  - WEEKLY renews every 7 days, MONTHLY every calendar month
    (month-end dates clamp: Jan 31 → Feb 28/29)
  - WEEKLY deliveries go out on Saturdays, MONTHLY on the 1st of the month
  - A cycle only gets the nearest delivery slot if it is more than
    ``buffer_days`` away; otherwise the delivery moves one cycle out
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from dateutil.relativedelta import relativedelta

from services.errors import InvalidFrequency

WEEKLY = "WEEKLY"
MONTHLY = "MONTHLY"

SATURDAY = 5  # date.weekday()
DEFAULT_DELIVERY_BUFFER_DAYS = 2


def _frequency(value) -> str:
    freq = getattr(value, "value", value)
    if freq not in (WEEKLY, MONTHLY):
        raise InvalidFrequency(f"Invalid frequency: {freq}", frequency=freq)
    return freq


def next_renewal_date(current: date, frequency) -> date:
    if _frequency(frequency) == WEEKLY:
        return current + timedelta(days=7)
    return current + relativedelta(months=1)


def nearest_delivery_date(current: date, frequency) -> date:
    """Next Saturday on/after ``current`` (WEEKLY) or 1st of next month (MONTHLY)."""
    if _frequency(frequency) == WEEKLY:
        return current + timedelta(days=(SATURDAY - current.weekday()) % 7)
    return current.replace(day=1) + relativedelta(months=1)


def is_eligible_for_nearest_delivery(current: date, delivery_date: date, buffer_days: int) -> bool:
    return current < delivery_date - timedelta(days=buffer_days)


def next_delivery_date(
    current: date,
    frequency,
    buffer_days: int = DEFAULT_DELIVERY_BUFFER_DAYS,
) -> date:
    """
    Delivery date for a cycle purchased on ``current``.

    Too close to the nearest slot → the slot after it (computed from
    ``current`` + 7 days).
    """
    nearest = nearest_delivery_date(current, frequency)
    if is_eligible_for_nearest_delivery(current, nearest, buffer_days):
        return nearest
    return nearest_delivery_date(current + timedelta(days=7), frequency)


def days_until(target: date, today: date) -> int:
    """Calendar days from ``today`` to ``target`` (negative if past)."""
    return (target - today).days


def store_today(timezone: str) -> date:
    """Calendar date in the store's timezone."""
    return datetime.now(ZoneInfo(timezone)).date()
