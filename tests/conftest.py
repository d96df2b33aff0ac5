"""Canonical test fixtures used across engine and job tests.

Fixture loan: 10,000 principal, 12%/yr (1%/mo), 12 months.
Open-ended fixture: 10,000 principal, 1%/mo, no term.
"""

from dataclasses import replace
from datetime import date

import pytest
from decimal import Decimal

from loan_engine.models.loan import FormulaContext, LoanTerms, PaymentFrequency, RateType
from loan_engine.models.recurrence import BillInstance, RecurrenceRule, RecurrenceType, RecurringBill


class InMemoryBillStore:
    """BillStore fake holding bills in a dict."""

    def __init__(self, bills: list[RecurringBill] | None = None):
        self.bills: dict[str, RecurringBill] = {b.id: b for b in bills or []}
        self.instances: list[BillInstance] = []
        self.finished: set[str] = set()

    def list_due_recurring_bills(self, as_of: date) -> list[RecurringBill]:
        return [
            b for b in self.bills.values()
            if b.id not in self.finished and b.next_due_date <= as_of
        ]

    def create_bill_instance(self, instance: BillInstance) -> None:
        self.instances.append(instance)

    def set_next_due_date(self, bill_id: str, next_due: date | None) -> None:
        if next_due is None:
            self.finished.add(bill_id)
        else:
            self.bills[bill_id] = replace(self.bills[bill_id], next_due_date=next_due)


@pytest.fixture
def fixed_term_loan() -> LoanTerms:
    """12% a year over 12 months: the classic 888.49 payment."""
    return LoanTerms(
        principal_amount=Decimal("10000"),
        interest_rate=Decimal("12"),
        interest_rate_type=RateType.YEARLY,
        term_months=12,
        payment_frequency=PaymentFrequency.MONTHLY,
    )


@pytest.fixture
def open_ended_loan() -> LoanTerms:
    """1% a month, no term: interest-only."""
    return LoanTerms(
        principal_amount=Decimal("10000"),
        interest_rate=Decimal("1"),
        interest_rate_type=RateType.MONTHLY,
        term_months=0,
    )


@pytest.fixture
def overdue_context() -> FormulaContext:
    """900/month payment, 30 days late."""
    return FormulaContext(
        principal_amount=Decimal("10000"),
        interest_rate=Decimal("0.12"),
        term_months=12,
        days_overdue=30,
        payment_frequency="monthly",
        monthly_payment=Decimal("900"),
    )


@pytest.fixture
def monthly_rent_bill() -> RecurringBill:
    return RecurringBill(
        id="rent",
        description="Office rent",
        amount=Decimal("1200.00"),
        rule=RecurrenceRule(
            type=RecurrenceType.MONTHLY,
            start_date=date(2024, 1, 31),
        ),
        next_due_date=date(2024, 1, 31),
        owner_id="owner-1",
    )


@pytest.fixture
def make_store():
    """Factory for an in-memory BillStore seeded with bills."""
    def _make(*bills: RecurringBill) -> InMemoryBillStore:
        return InMemoryBillStore(list(bills))
    return _make
