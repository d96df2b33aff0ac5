from dataclasses import dataclass
from decimal import Decimal
from enum import Enum


class RateType(Enum):
    """Period an interest or moratory rate is quoted for."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class PaymentFrequency(Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUALLY = "annually"
    WEEKLY = "weekly"
    BIWEEKLY = "bi-weekly"


@dataclass(frozen=True)
class LoanTerms:
    principal_amount: Decimal
    interest_rate: Decimal  # Percentage points, e.g. Decimal("12") for 12%
    interest_rate_type: RateType = RateType.MONTHLY
    term_months: int | None = None  # None or 0 = open-ended, interest-only
    payment_frequency: PaymentFrequency = PaymentFrequency.MONTHLY

    @property
    def is_open_ended(self) -> bool:
        return not self.term_months


@dataclass(frozen=True)
class MoratoryRule:
    moratory_rate: Decimal = Decimal("0")  # Percentage points per moratory_rate_type period
    moratory_rate_type: RateType = RateType.MONTHLY
    custom_formula: str | None = None
    custom_formula_description: str | None = None  # Display only

    @property
    def has_custom_formula(self) -> bool:
        return bool(self.custom_formula and self.custom_formula.strip())


@dataclass(frozen=True)
class FormulaContext:
    """The only names a custom moratory formula can see."""
    principal_amount: Decimal
    interest_rate: Decimal  # Fraction, e.g. Decimal("0.12"), not percentage points
    term_months: int
    days_overdue: int
    payment_frequency: str
    monthly_payment: Decimal | None = None

    def variables(self) -> dict[str, Decimal | str]:
        """Formula-visible names mapped to values.

        monthlyPayment is omitted when unknown so a formula using it fails
        loudly instead of silently reading zero.
        """
        names: dict[str, Decimal | str] = {
            "principalAmount": _number(self.principal_amount),
            "interestRate": _number(self.interest_rate),
            "termMonths": _number(self.term_months),
            "daysOverdue": _number(self.days_overdue),
            "paymentFrequency": self.payment_frequency,
        }
        if self.monthly_payment is not None:
            names["monthlyPayment"] = _number(self.monthly_payment)
        return names


def _number(value) -> Decimal:
    """None -> 0; floats go through str() so 0.12 stays 0.12."""
    if value is None:
        return Decimal("0")
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


FORMULA_VARIABLES = (
    "principalAmount",
    "interestRate",
    "termMonths",
    "daysOverdue",
    "paymentFrequency",
    "monthlyPayment",
)
