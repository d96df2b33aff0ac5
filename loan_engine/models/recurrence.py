from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum


class RecurrenceType(Enum):
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"
    CUSTOM = "custom"  # interval counts days


@dataclass(frozen=True)
class RecurrenceRule:
    type: RecurrenceType | str  # Raw strings from the bill store are accepted and checked on use
    start_date: date
    interval: int = 1
    end_date: date | None = None


@dataclass(frozen=True)
class RecurringBill:
    """A recurring bill template as held by the external bill store."""
    id: str
    description: str
    amount: Decimal
    rule: RecurrenceRule
    next_due_date: date
    currency: str = "USD"
    owner_id: str | None = None


@dataclass(frozen=True)
class BillInstance:
    """One materialized occurrence of a recurring bill."""
    bill_id: str
    description: str
    amount: Decimal
    due_date: date
    currency: str = "USD"
    owner_id: str | None = None
