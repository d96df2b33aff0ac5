"""Moratory (late-payment) interest.

Pure functions. No I/O.

The standard penalty has two named modes:
  PERIODIC_RATE (canonical): principal * moratory_rate% prorated by the days
      overdue over the rate's quoting period (1, 7 or 30 days).
  PRORATED_PAYMENT: the regular monthly payment spread over 30 days, charged
      per day overdue.
A rule with a custom formula ignores the mode and evaluates the formula.
"""

from dataclasses import dataclass, replace
from decimal import Decimal, ROUND_HALF_EVEN, localcontext
from enum import Enum

from loan_engine.config import settings
from loan_engine.engine.amortization import (
    DAYS_PER_MONTH,
    compute_monthly_payment,
    round_money,
    to_amount,
)
from loan_engine.engine.errors import FormulaEvaluationError, InvalidInputError
from loan_engine.engine.formula import evaluate_formula
from loan_engine.models.loan import (
    FormulaContext,
    LoanTerms,
    MoratoryRule,
    PaymentFrequency,
    RateType,
)

# Days covered by one moratory rate period
RATE_PERIOD_DAYS: dict[RateType, Decimal] = {
    RateType.DAILY: Decimal("1"),
    RateType.WEEKLY: Decimal("7"),
    RateType.MONTHLY: DAYS_PER_MONTH,
    RateType.YEARLY: Decimal("365"),
}


class MoratoryMode(Enum):
    PERIODIC_RATE = "periodic_rate"
    PRORATED_PAYMENT = "prorated_payment"


@dataclass(frozen=True)
class FormulaPreview:
    """Loan-detail sanity run of a custom formula; never raises."""
    days_overdue: int
    monthly_payment: Decimal
    daily_penalty: Decimal
    value: Decimal | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class FormulaValidation:
    is_valid: bool
    error: str | None = None
    sample_result: Decimal | None = None


@dataclass(frozen=True)
class ExampleFormula:
    name: str
    formula: str
    description: str


EXAMPLE_FORMULAS: dict[str, ExampleFormula] = {
    "daily_from_monthly": ExampleFormula(
        name="Daily rate from monthly interest",
        formula="principalAmount * (interestRate / 12 / 30) * daysOverdue",
        description="Converts monthly interest rate to daily and applies per day overdue",
    ),
    "prorated_payment": ExampleFormula(
        name="Daily share of the monthly payment",
        formula="return (monthlyPayment / 30) * daysOverdue;",
        description="Charges one thirtieth of the regular payment per day overdue",
    ),
    "frequency_based": ExampleFormula(
        name="Frequency-based penalty (2% per payment period)",
        formula=(
            "const periodsPerYear = paymentFrequency === 'monthly' ? 12"
            " : paymentFrequency === 'quarterly' ? 4 : 1;\n"
            "return principalAmount * 0.02 * Math.ceil(daysOverdue / (365 / periodsPerYear));"
        ),
        description="2% penalty for each missed payment period",
    ),
    "tiered": ExampleFormula(
        name="Tiered penalty based on days overdue",
        formula=(
            "if (daysOverdue <= 30) return principalAmount * 0.01 * (daysOverdue / 30);\n"
            "else if (daysOverdue <= 90) return principalAmount * 0.01"
            " + principalAmount * 0.02 * ((daysOverdue - 30) / 60);\n"
            "else return principalAmount * 0.03 * (daysOverdue / 30);"
        ),
        description="1% for first 30 days, 2% for 31-90 days, 3% thereafter",
    ),
}

# Fixed loan the formula editor validates against
SAMPLE_CONTEXT = FormulaContext(
    principal_amount=Decimal("10000"),
    interest_rate=Decimal("0.12"),
    term_months=12,
    days_overdue=30,
    payment_frequency=PaymentFrequency.MONTHLY.value,
    monthly_payment=compute_monthly_payment(
        LoanTerms(
            principal_amount=Decimal("10000"),
            interest_rate=Decimal("12"),
            interest_rate_type=RateType.YEARLY,
            term_months=12,
        )
    ),
)


def formula_context_for(
    terms: LoanTerms,
    days_overdue: int,
    monthly_payment: Decimal | None = None,
) -> FormulaContext:
    """Build the formula variables for a loan.

    monthly_payment is derived from the terms unless given explicitly.
    """
    if monthly_payment is None:
        monthly_payment = compute_monthly_payment(terms)
    return FormulaContext(
        principal_amount=to_amount(terms.principal_amount, "principal_amount"),
        interest_rate=to_amount(terms.interest_rate, "interest_rate") / 100,
        term_months=terms.term_months or 0,
        days_overdue=days_overdue,
        payment_frequency=terms.payment_frequency.value,
        monthly_payment=monthly_payment,
    )


def _days_overdue(context: FormulaContext) -> int:
    days = context.days_overdue
    if days is None:
        return 0
    if isinstance(days, bool) or not isinstance(days, int):
        raise InvalidInputError("days_overdue", "must be a whole number of days")
    return days


def periodic_rate_penalty(rule: MoratoryRule, context: FormulaContext) -> Decimal:
    """principal * rate% * days_overdue / days in the rate's period."""
    days = _days_overdue(context)
    rate = to_amount(rule.moratory_rate, "moratory_rate")
    principal = to_amount(context.principal_amount, "principal_amount")
    if days <= 0 or rate == 0:
        return Decimal("0")
    with localcontext() as ctx:
        ctx.prec = settings.decimal_precision
        ctx.rounding = ROUND_HALF_EVEN
        return principal * (rate / 100) * days / RATE_PERIOD_DAYS[rule.moratory_rate_type]


def prorated_payment_penalty(context: FormulaContext) -> Decimal:
    """(monthly_payment / 30) * days_overdue."""
    days = _days_overdue(context)
    if context.monthly_payment is None:
        raise InvalidInputError("monthly_payment", "required for prorated-payment penalties")
    payment = to_amount(context.monthly_payment, "monthly_payment")
    if days <= 0:
        return Decimal("0")
    with localcontext() as ctx:
        ctx.prec = settings.decimal_precision
        ctx.rounding = ROUND_HALF_EVEN
        return payment / DAYS_PER_MONTH * days


def compute_moratory_interest(
    rule: MoratoryRule,
    context: FormulaContext,
    mode: MoratoryMode = MoratoryMode.PERIODIC_RATE,
) -> Decimal:
    """Late-payment penalty for a loan.

    Raises FormulaEvaluationError when a custom formula fails and
    InvalidInputError for out-of-range numbers.
    """
    if rule.has_custom_formula:
        days = max(_days_overdue(context), 0)
        if days != context.days_overdue:
            context = replace(context, days_overdue=days)
        return evaluate_formula(rule.custom_formula, context)
    if mode is MoratoryMode.PRORATED_PAYMENT:
        return prorated_payment_penalty(context)
    return periodic_rate_penalty(rule, context)


def preview_custom_formula(
    rule: MoratoryRule,
    terms: LoanTerms,
    days_overdue: int | None = None,
) -> FormulaPreview:
    """Run the rule's formula for a sample overdue period (30 days by default).

    Open-ended loans are previewed as 12-month loans so monthlyPayment is a
    real amortizing payment, matching the loan-detail view.
    """
    days = settings.formula_preview_days_overdue if days_overdue is None else days_overdue
    if terms.is_open_ended:
        terms = replace(terms, term_months=12)

    try:
        monthly = compute_monthly_payment(terms)
    except InvalidInputError as e:
        return FormulaPreview(days, Decimal("0"), Decimal("0"), error=e.message)

    monthly_display = round_money(monthly)
    daily_penalty = round_money(monthly / DAYS_PER_MONTH)

    if not rule.has_custom_formula:
        return FormulaPreview(days, monthly_display, daily_penalty, error="No formula specified")

    try:
        context = formula_context_for(terms, days, monthly_payment=monthly)
        value = evaluate_formula(rule.custom_formula, context)
    except FormulaEvaluationError as e:
        return FormulaPreview(days, monthly_display, daily_penalty, error=str(e))

    return FormulaPreview(days, monthly_display, daily_penalty, value=round_money(value))


def validate_custom_formula(formula: str) -> FormulaValidation:
    """Check a formula against the sample loan before it is saved."""
    try:
        result = evaluate_formula(formula, SAMPLE_CONTEXT)
    except FormulaEvaluationError as e:
        return FormulaValidation(is_valid=False, error=f"Formula error: {e}")

    ceiling = SAMPLE_CONTEXT.principal_amount * settings.formula_reasonable_multiple
    if result > ceiling:
        return FormulaValidation(
            is_valid=False,
            error="Formula result seems unreasonably high",
            sample_result=result,
        )
    return FormulaValidation(is_valid=True, sample_result=result)
