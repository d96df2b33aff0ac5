"""Recurrence scheduling for bills and loan payments.

Pure functions. No stored state: occurrences are recomputed from the rule.

Occurrence k of a series is start_date + k steps, always measured from the
anchor start_date. Month and year steps clamp to the last day of the target
month, so a series anchored on Jan 31 runs Feb 28 (29), Mar 31, Apr 30.
"""

import calendar
from datetime import date, timedelta

from loan_engine.engine.errors import InvalidInputError, UnsupportedRecurrenceTypeError
from loan_engine.models.loan import PaymentFrequency
from loan_engine.models.recurrence import RecurrenceRule, RecurrenceType

# Step per interval unit: (days, months)
STEP_UNITS: dict[RecurrenceType, tuple[int, int]] = {
    RecurrenceType.WEEKLY: (7, 0),
    RecurrenceType.BIWEEKLY: (14, 0),
    RecurrenceType.MONTHLY: (0, 1),
    RecurrenceType.QUARTERLY: (0, 3),
    RecurrenceType.ANNUAL: (0, 12),
    RecurrenceType.CUSTOM: (1, 0),
}

FREQUENCY_RECURRENCE: dict[PaymentFrequency, RecurrenceType] = {
    PaymentFrequency.WEEKLY: RecurrenceType.WEEKLY,
    PaymentFrequency.BIWEEKLY: RecurrenceType.BIWEEKLY,
    PaymentFrequency.MONTHLY: RecurrenceType.MONTHLY,
    PaymentFrequency.QUARTERLY: RecurrenceType.QUARTERLY,
    PaymentFrequency.ANNUALLY: RecurrenceType.ANNUAL,
}


def add_months(dt: date, months: int) -> date:
    """Return a date ``months`` months after ``dt``, clamping the day of month.

    Jan 31 + 1 month is Feb 28 (Feb 29 in leap years), never Mar 2 or 3.
    """
    year = dt.year + (dt.month - 1 + months) // 12
    month = (dt.month - 1 + months) % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def recurrence_type(rule: RecurrenceRule) -> RecurrenceType:
    """Resolve the rule's type, accepting raw strings; raises UnsupportedRecurrenceTypeError."""
    if isinstance(rule.type, RecurrenceType):
        return rule.type
    try:
        return RecurrenceType(rule.type)
    except ValueError:
        raise UnsupportedRecurrenceTypeError(rule.type) from None


def _interval(rule: RecurrenceRule) -> int:
    interval = 1 if rule.interval is None else rule.interval
    if isinstance(interval, bool) or not isinstance(interval, int) or interval < 1:
        raise InvalidInputError("interval", "must be a positive whole number")
    return interval


def _step(rule: RecurrenceRule) -> tuple[int, int]:
    days, months = STEP_UNITS[recurrence_type(rule)]
    interval = _interval(rule)
    return days * interval, months * interval


def _nth(start: date, step_days: int, step_months: int, k: int) -> date:
    if step_months:
        return add_months(start, step_months * k)
    return start + timedelta(days=step_days * k)


def _first_index_after(start: date, step_days: int, step_months: int, after: date) -> int:
    """Smallest k with occurrence k strictly after ``after``."""
    if after < start:
        return 0
    if step_days:
        return (after - start).days // step_days + 1
    months_between = (after.year - start.year) * 12 + (after.month - start.month)
    k = max(months_between // step_months, 0)
    # Clamping can land occurrence k on or before ``after``; at most one more step
    while _nth(start, step_days, step_months, k) <= after:
        k += 1
    return k


def next_occurrence(rule: RecurrenceRule, after: date) -> date | None:
    """First occurrence strictly after ``after``, or None once past end_date.

    Raises UnsupportedRecurrenceTypeError for unknown types and
    InvalidInputError for a non-positive interval.
    """
    step_days, step_months = _step(rule)
    k = _first_index_after(rule.start_date, step_days, step_months, after)
    occurrence = _nth(rule.start_date, step_days, step_months, k)
    if rule.end_date is not None and occurrence > rule.end_date:
        return None
    return occurrence


def upcoming_occurrences(rule: RecurrenceRule, after: date, count: int) -> list[date]:
    """Up to ``count`` occurrences strictly after ``after``, stopping at end_date."""
    step_days, step_months = _step(rule)
    k = _first_index_after(rule.start_date, step_days, step_months, after)

    occurrences: list[date] = []
    while len(occurrences) < count:
        occurrence = _nth(rule.start_date, step_days, step_months, k)
        if rule.end_date is not None and occurrence > rule.end_date:
            break
        occurrences.append(occurrence)
        k += 1
    return occurrences


def describe_recurrence(rule: RecurrenceRule) -> str:
    """Human-readable recurrence, e.g. "Monthly", "Every 10 days", "Every 2 weeks"."""
    rtype = recurrence_type(rule)
    interval = _interval(rule)
    if rtype is RecurrenceType.CUSTOM:
        return "Every day" if interval == 1 else f"Every {interval} days"
    if interval == 1:
        return rtype.value.capitalize()

    days, months = STEP_UNITS[rtype]
    if days:
        return f"Every {days // 7 * interval} weeks"
    if months % 12 == 0:
        return f"Every {months // 12 * interval} years"
    return f"Every {months * interval} months"


def next_payment_date(
    payment_date: date | None,
    frequency: PaymentFrequency,
    today: date,
) -> date | None:
    """Next loan payment date after today.

    A payment date still in the future is returned as is; otherwise the
    series anchored on it is advanced past today. None when no date is set.
    """
    if payment_date is None:
        return None
    if payment_date > today:
        return payment_date
    rule = RecurrenceRule(type=FREQUENCY_RECURRENCE[frequency], start_date=payment_date)
    return next_occurrence(rule, after=today)
