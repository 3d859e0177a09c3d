"""Recurrence rules: parsing, normalization, presets and labels.

Rules are stored on `tasks.repeat_rule` as a JSON object:

- {"freq": "daily"}
- {"freq": "weekly", "byweekday": [1..7]}  (Mon=1 .. Sun=7)
- {"freq": "monthly", "bymonthday": 1..31}
- {"freq": "yearly", "bymonth": 1..12, "bymonthday": 1..31}

A task without a rule (or with a payload that does not parse) is simply
non-recurring; parsing never raises.
"""

import calendar
import json
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any

WEEKDAY_NAMES = {1: "Mon", 2: "Tue", 3: "Wed", 4: "Thu", 5: "Fri", 6: "Sat", 7: "Sun"}
WORKWEEK = (1, 2, 3, 4, 5)

PRESETS = ("none", "daily", "weekdays", "weekly", "monthly", "yearly")


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


@dataclass(frozen=True)
class RecurrenceRule:
    """Normalized recurrence rule.

    `byweekday` is sorted and de-duplicated; an empty tuple on a weekly rule
    means "the anchor's own weekday".
    """

    freq: Frequency
    byweekday: tuple[int, ...] = ()
    bymonth: int | None = None
    bymonthday: int | None = None


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def clamped_date(year: int, month: int, day: int) -> date:
    """Build a date, pulling `day` back to the month's last day when needed."""
    return date(year, month, max(1, min(day, days_in_month(year, month))))


def _as_int(value: Any) -> int | None:
    # bool is an int subclass but never a valid field value
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _in_range(value: Any, low: int, high: int) -> int | None:
    number = _as_int(value)
    if number is None or number < low or number > high:
        return None
    return number


def parse_rule(raw: Any) -> RecurrenceRule | None:
    """Parse a stored payload (dict or JSON text) into a rule.

    Returns None for an absent payload and for any violation: unknown
    frequency, non-integer fields, or values out of range. No partial rule
    is ever produced.
    """
    if raw is None:
        return None
    if isinstance(raw, RecurrenceRule):
        return raw
    if isinstance(raw, str):
        raw = raw.strip()
        if not raw:
            return None
        try:
            raw = json.loads(raw)
        except ValueError:
            return None
    if not isinstance(raw, dict):
        return None

    freq = raw.get("freq")
    if not isinstance(freq, str):
        return None
    freq = freq.strip().lower()

    if freq == Frequency.DAILY:
        return RecurrenceRule(Frequency.DAILY)

    if freq == Frequency.WEEKLY:
        values = raw.get("byweekday")
        if values is None:
            values = []
        if not isinstance(values, (list, tuple)):
            return None
        weekdays = set()
        for value in values:
            weekday = _in_range(value, 1, 7)
            if weekday is None:
                return None
            weekdays.add(weekday)
        return RecurrenceRule(Frequency.WEEKLY, byweekday=tuple(sorted(weekdays)))

    if freq == Frequency.MONTHLY:
        day = _in_range(raw.get("bymonthday"), 1, 31)
        if day is None:
            return None
        return RecurrenceRule(Frequency.MONTHLY, bymonthday=day)

    if freq == Frequency.YEARLY:
        month = _in_range(raw.get("bymonth"), 1, 12)
        day = _in_range(raw.get("bymonthday"), 1, 31)
        if month is None or day is None:
            return None
        return RecurrenceRule(Frequency.YEARLY, bymonth=month, bymonthday=day)

    return None


def serialize_rule(rule: RecurrenceRule | None) -> dict[str, Any] | None:
    """Render a rule into its durable `{freq, byweekday?, bymonth?, bymonthday?}` shape."""
    if rule is None:
        return None
    payload: dict[str, Any] = {"freq": rule.freq.value}
    if rule.freq is Frequency.WEEKLY:
        payload["byweekday"] = list(rule.byweekday)
    elif rule.freq is Frequency.MONTHLY:
        payload["bymonthday"] = rule.bymonthday
    elif rule.freq is Frequency.YEARLY:
        payload["bymonth"] = rule.bymonth
        payload["bymonthday"] = rule.bymonthday
    return payload


def describe_rule(raw: Any) -> str | None:
    """Short display label, e.g. "Weekdays", "Monthly (day 15)", "Yearly (Jun 3)"."""
    rule = parse_rule(raw)
    if rule is None:
        return None

    if rule.freq is Frequency.DAILY:
        return "Daily"

    if rule.freq is Frequency.WEEKLY:
        if rule.byweekday == WORKWEEK:
            return "Weekdays"
        if len(rule.byweekday) == 1:
            return f"Weekly ({WEEKDAY_NAMES[rule.byweekday[0]]})"
        return "Weekly"

    if rule.freq is Frequency.MONTHLY:
        return f"Monthly (day {rule.bymonthday})"

    # Label against a leap year so Feb 29 survives and Feb 30/31 clamp to it
    label_day = min(rule.bymonthday, days_in_month(2000, rule.bymonth))
    return f"Yearly ({calendar.month_abbr[rule.bymonth]} {label_day})"


def rule_from_preset(preset: str | None, reference: date | None = None) -> RecurrenceRule | None:
    """Map a named preset onto a concrete rule anchored on `reference`.

    `reference` is the task's due date, or today when the task has none.
    Returns None for "none", blank, or unknown presets.
    """
    name = (preset or "").strip().lower()
    if name in ("", "none"):
        return None

    anchor = reference or date.today()

    if name == "daily":
        return RecurrenceRule(Frequency.DAILY)
    if name == "weekdays":
        return RecurrenceRule(Frequency.WEEKLY, byweekday=WORKWEEK)
    if name == "weekly":
        return RecurrenceRule(Frequency.WEEKLY, byweekday=(anchor.isoweekday(),))
    if name == "monthly":
        return RecurrenceRule(Frequency.MONTHLY, bymonthday=anchor.day)
    if name == "yearly":
        return RecurrenceRule(Frequency.YEARLY, bymonth=anchor.month, bymonthday=anchor.day)
    return None
