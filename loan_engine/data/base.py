"""Protocol definitions for the external bill-tracking store.

The store owns the authoritative next due date of every recurring bill;
the engine only computes dates and asks the store to persist them.

The recurring-bill job calls set_next_due_date right after each
create_bill_instance. An error raised by either call stops the run, and the
stored due date then points at the first occurrence not yet written.
"""

from datetime import date
from typing import Protocol, runtime_checkable

from loan_engine.models.recurrence import BillInstance, RecurringBill


@runtime_checkable
class BillStore(Protocol):
    def list_due_recurring_bills(self, as_of: date) -> list[RecurringBill]:
        """Recurring bills whose next due date is on or before as_of."""
        ...

    def create_bill_instance(self, instance: BillInstance) -> None:
        """Persist one materialized bill."""
        ...

    def set_next_due_date(self, bill_id: str, next_due: date | None) -> None:
        """Advance a recurring bill; None marks the series finished."""
        ...
