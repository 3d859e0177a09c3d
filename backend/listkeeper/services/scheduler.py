"""Next-occurrence computation for recurring tasks."""

from datetime import date, timedelta

from listkeeper.services.recurrence import Frequency, RecurrenceRule, clamped_date, parse_rule

# Search bounds; the calendar guarantees a hit well within these
MONTHLY_SEARCH_MONTHS = 24
YEARLY_SEARCH_YEARS = 8


def select_anchor(current_due: date | None, completed_on: date) -> date:
    """Anchor on the due date when completed early, on the completion date otherwise.

    Early completion keeps the original cadence; late completion avoids
    spawning a successor that is already overdue.
    """
    if current_due is not None and current_due > completed_on:
        return current_due
    return completed_on


def next_due_date(
    rule: RecurrenceRule | dict | str | None,
    current_due: date | None,
    completed_on: date | None = None,
) -> date | None:
    """Compute the next due date, or None for a missing/unparseable rule."""
    parsed = parse_rule(rule)
    if parsed is None:
        return None

    anchor = select_anchor(current_due, completed_on or date.today())

    if parsed.freq is Frequency.DAILY:
        return anchor + timedelta(days=1)
    if parsed.freq is Frequency.WEEKLY:
        return _next_weekly(anchor, parsed.byweekday)
    if parsed.freq is Frequency.MONTHLY:
        return _next_monthly(anchor, parsed.bymonthday)
    if parsed.freq is Frequency.YEARLY:
        return _next_yearly(anchor, parsed.bymonth, parsed.bymonthday)
    return None


def _next_weekly(anchor: date, weekdays: tuple[int, ...]) -> date | None:
    """First day after `anchor` whose ISO weekday is in `weekdays`."""
    wanted = set(weekdays) or {anchor.isoweekday()}
    for offset in range(1, 8):
        candidate = anchor + timedelta(days=offset)
        if candidate.isoweekday() in wanted:
            return candidate
    return None


def _next_monthly(anchor: date, day_of_month: int) -> date | None:
    """First clamped day-of-month strictly after `anchor`."""
    for offset in range(MONTHLY_SEARCH_MONTHS):
        month_index = anchor.month - 1 + offset
        candidate = clamped_date(
            anchor.year + month_index // 12,
            month_index % 12 + 1,
            day_of_month,
        )
        if candidate > anchor:
            return candidate
    return None


def _next_yearly(anchor: date, month: int, day: int) -> date | None:
    """First clamped month/day strictly after `anchor`."""
    for offset in range(YEARLY_SEARCH_YEARS):
        candidate = clamped_date(anchor.year + offset, month, day)
        if candidate > anchor:
            return candidate
    return None
