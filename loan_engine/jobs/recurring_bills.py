"""Materialize due recurring bills.

Runs as a periodic background job: every recurring bill whose next due date
has arrived gets a concrete bill instance per due occurrence, and its next
due date moves to the following occurrence. A bill with a broken
recurrence rule is logged and skipped without stopping the run.
"""

import logging
from dataclasses import dataclass, field
from datetime import date

from loan_engine.config import settings
from loan_engine.data.base import BillStore
from loan_engine.engine.errors import InvalidInputError, UnsupportedRecurrenceTypeError
from loan_engine.engine.recurrence import next_occurrence
from loan_engine.models.recurrence import BillInstance, RecurringBill

logger = logging.getLogger(__name__)


@dataclass
class ProcessingSummary:
    as_of: date
    created: list[str] = field(default_factory=list)
    finished: list[str] = field(default_factory=list)
    skipped: dict[str, str] = field(default_factory=dict)  # bill id -> reason

    @property
    def created_count(self) -> int:
        return len(self.created)


def materialize(bill: RecurringBill, due_date: date, owner_id: str | None) -> BillInstance:
    return BillInstance(
        bill_id=bill.id,
        description=bill.description,
        amount=bill.amount,
        due_date=due_date,
        currency=bill.currency,
        owner_id=owner_id or bill.owner_id,
    )


def _due_dates(bill: RecurringBill, as_of: date) -> tuple[list[date], date | None]:
    """Every occurrence due on or before as_of, plus the one after them.

    A job that missed runs catches up with one instance per missed occurrence.
    """
    due_dates: list[date] = []
    due: date | None = bill.next_due_date
    while due is not None and due <= as_of:
        if bill.rule.end_date is not None and due > bill.rule.end_date:
            due = None
            break
        due_dates.append(due)
        due = next_occurrence(bill.rule, after=due)
    return due_dates, due


def process_due_bills(
    store: BillStore,
    as_of: date,
    owner_id: str | None = None,
) -> ProcessingSummary:
    """Create an instance per due occurrence and advance each bill's due date.

    Args:
        store: External bill store
        as_of: Bills due on or before this date are processed
        owner_id: Owner stamped on new instances (defaults to
            settings.default_owner_id, then the bill's own owner)
    """
    owner = owner_id or settings.default_owner_id
    summary = ProcessingSummary(as_of=as_of)

    for bill in store.list_due_recurring_bills(as_of):
        try:
            due_dates, following = _due_dates(bill, as_of)
        except (UnsupportedRecurrenceTypeError, InvalidInputError) as e:
            logger.warning("Skipping recurring bill %s: %s", bill.id, e)
            summary.skipped[bill.id] = str(e)
            continue
        if not due_dates:
            continue

        # Advance per instance: after a failed write the due date is the first unwritten occurrence
        next_dues = due_dates[1:] + [following]
        for due, next_due in zip(due_dates, next_dues):
            store.create_bill_instance(materialize(bill, due, owner))
            store.set_next_due_date(bill.id, next_due)
            summary.created.append(bill.id)
        logger.info(
            "Materialized %d instance(s) of bill %s; next due %s",
            len(due_dates), bill.id, following or "never (series ended)",
        )

        if following is None:
            summary.finished.append(bill.id)

    return summary
