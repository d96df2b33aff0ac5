"""Loan payment computation.

Pure functions: LoanTerms in, Decimal or dataclass out. No I/O.

Rates are normalized to an effective monthly rate with fixed conversion
constants: a daily rate counts 30 days per month, a weekly rate 4.33 weeks
per month and a yearly rate 12 months per year. These are flat conversions,
not compounding ones, and match the figures shown everywhere else in the
finance UI.

Payments are returned at full calculation precision; round_money() is for
display and for cash amounts such as schedule rows.
"""

from dataclasses import dataclass
from decimal import Decimal, Overflow, ROUND_HALF_EVEN, ROUND_HALF_UP, localcontext

from loan_engine.config import settings
from loan_engine.engine.errors import InvalidInputError
from loan_engine.models.loan import LoanTerms, PaymentFrequency, RateType

TWO_PLACES = Decimal("0.01")

DAYS_PER_MONTH = Decimal("30")
WEEKS_PER_MONTH = Decimal("4.33")
MONTHS_PER_YEAR = Decimal("12")

PAYMENTS_PER_YEAR: dict[PaymentFrequency, int] = {
    PaymentFrequency.MONTHLY: 12,
    PaymentFrequency.QUARTERLY: 4,
    PaymentFrequency.ANNUALLY: 1,
    PaymentFrequency.WEEKLY: 52,
    PaymentFrequency.BIWEEKLY: 26,
}


@dataclass(frozen=True)
class AmortizationPayment:
    period: int
    payment: Decimal
    principal: Decimal
    interest: Decimal
    balance: Decimal


@dataclass(frozen=True)
class AmortizationSchedule:
    payments: list[AmortizationPayment]
    monthly_payment: Decimal
    total_interest: Decimal
    total_principal: Decimal


def round_money(amount: Decimal) -> Decimal:
    return amount.quantize(TWO_PLACES, ROUND_HALF_UP)


def to_amount(value, field_name: str) -> Decimal:
    """Coerce a numeric field: missing/NaN/infinite -> 0, negative -> error."""
    if value is None:
        return Decimal("0")
    if isinstance(value, bool) or not isinstance(value, (Decimal, int, float)):
        raise InvalidInputError(field_name, "must be a number")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    if not value.is_finite():
        return Decimal("0")
    if value < 0:
        raise InvalidInputError(field_name, "must not be negative")
    return value


def to_term(term_months) -> int:
    if term_months is None:
        return 0
    if isinstance(term_months, bool) or not isinstance(term_months, int):
        raise InvalidInputError("term_months", "must be a whole number of months")
    if term_months < 0:
        raise InvalidInputError("term_months", "must not be negative")
    return term_months


def effective_monthly_rate(interest_rate: Decimal, rate_type: RateType) -> Decimal:
    """Convert a percentage rate quoted per day/week/month/year to a monthly fraction."""
    rate = to_amount(interest_rate, "interest_rate") / 100
    if rate_type is RateType.DAILY:
        return rate * DAYS_PER_MONTH
    if rate_type is RateType.WEEKLY:
        return rate * WEEKS_PER_MONTH
    if rate_type is RateType.YEARLY:
        return rate / MONTHS_PER_YEAR
    return rate


def _payment(principal: Decimal, r: Decimal, n: int) -> Decimal:
    if n == 0:
        # Open-ended obligation: interest only
        return principal * r
    if r == 0:
        return principal / n
    # M = P * [r(1+r)^n] / [(1+r)^n - 1]
    try:
        factor = (1 + r) ** n
        return principal * (r * factor) / (factor - 1)
    except Overflow:
        # r(1+r)^n / ((1+r)^n - 1) tends to r as n grows
        return principal * r


def compute_monthly_payment(terms: LoanTerms) -> Decimal:
    """Monthly payment for fixed-term loans, interest-only for open-ended ones."""
    principal = to_amount(terms.principal_amount, "principal_amount")
    n = to_term(terms.term_months)

    with localcontext() as ctx:
        ctx.prec = settings.decimal_precision
        ctx.rounding = ROUND_HALF_EVEN
        ctx.traps[Overflow] = True
        r = effective_monthly_rate(terms.interest_rate, terms.interest_rate_type)
        if principal == 0:
            return Decimal("0")
        return +_payment(principal, r, n)


def payments_per_year(frequency: PaymentFrequency) -> int:
    return PAYMENTS_PER_YEAR[frequency]


def days_per_payment_period(frequency: PaymentFrequency) -> int:
    """Approximate calendar days between payments (365 / payments per year)."""
    return round(365 / payments_per_year(frequency))


def compute_period_payment(terms: LoanTerms) -> Decimal:
    """The monthly payment restated per payment_frequency period.

    A quarterly payer owes three months' worth each quarter, a weekly payer
    12/52 of a month each week.
    """
    monthly = compute_monthly_payment(terms)
    per_year = payments_per_year(terms.payment_frequency)
    if per_year == 12:
        return monthly
    with localcontext() as ctx:
        ctx.prec = settings.decimal_precision
        ctx.rounding = ROUND_HALF_EVEN
        return monthly * 12 / per_year


def amortization_schedule(terms: LoanTerms) -> AmortizationSchedule:
    """Month-by-month repayment schedule in cents.

    Open-ended loans never amortize, so their schedule has no payments.
    """
    pmt = round_money(compute_monthly_payment(terms))
    n_periods = to_term(terms.term_months)
    balance = to_amount(terms.principal_amount, "principal_amount")

    payments: list[AmortizationPayment] = []
    total_interest = Decimal("0")
    total_principal = Decimal("0")

    if n_periods == 0 or balance == 0:
        return AmortizationSchedule(
            payments=payments,
            monthly_payment=pmt,
            total_interest=total_interest,
            total_principal=total_principal,
        )

    with localcontext() as ctx:
        ctx.prec = settings.decimal_precision
        ctx.rounding = ROUND_HALF_EVEN
        r = effective_monthly_rate(terms.interest_rate, terms.interest_rate_type)

        for period in range(1, n_periods + 1):
            interest = round_money(balance * r)
            principal_paid = pmt - interest

            # Final payment absorbs rounding drift
            if principal_paid > balance or period == n_periods:
                principal_paid = balance
                actual_payment = interest + principal_paid
            else:
                actual_payment = pmt

            balance -= principal_paid
            total_interest += interest
            total_principal += principal_paid

            payments.append(AmortizationPayment(
                period=period,
                payment=actual_payment,
                principal=principal_paid,
                interest=interest,
                balance=round_money(balance),
            ))

    return AmortizationSchedule(
        payments=payments,
        monthly_payment=pmt,
        total_interest=total_interest,
        total_principal=total_principal,
    )
