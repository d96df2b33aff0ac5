"""Pydantic schemas for raw form input.

Form fields arrive as strings ("10,000.50", "", "abc") or numbers. Numeric
fields follow the finance UI's parseFloat(x) || 0 rule: anything blank or
unparseable becomes 0. Enum and date fields are validated strictly.
"""

from datetime import date
from decimal import Decimal, InvalidOperation

from pydantic import BaseModel, Field, field_validator

from loan_engine.models.loan import LoanTerms, MoratoryRule, PaymentFrequency, RateType
from loan_engine.models.recurrence import RecurrenceRule, RecurrenceType


def parse_decimal(value) -> Decimal:
    """Lenient numeric parse: None/blank/garbage/NaN/inf -> 0."""
    if value is None or isinstance(value, bool):
        return Decimal("0")
    if isinstance(value, Decimal):
        parsed = value
    else:
        text = str(value).strip().replace(",", "")
        if not text:
            return Decimal("0")
        try:
            parsed = Decimal(text)
        except InvalidOperation:
            return Decimal("0")
    return parsed if parsed.is_finite() else Decimal("0")


def parse_int(value) -> int:
    """Lenient whole-number parse, like parseInt: "12.7" -> 12, garbage -> 0."""
    return int(parse_decimal(value))


# ---- Request schemas ----

class LoanTermsForm(BaseModel):
    principal_amount: Decimal = Field(Decimal("0"), description="Loan principal")
    interest_rate: Decimal = Field(Decimal("0"), description="Rate in percentage points")
    interest_rate_type: RateType = RateType.MONTHLY
    term_months: int | None = Field(None, description="Blank or 0 for open-ended loans")
    payment_frequency: PaymentFrequency = PaymentFrequency.MONTHLY

    @field_validator("principal_amount", "interest_rate", mode="before")
    @classmethod
    def _lenient_decimal(cls, v):
        return parse_decimal(v)

    @field_validator("term_months", mode="before")
    @classmethod
    def _lenient_term(cls, v):
        if v is None or (isinstance(v, str) and not v.strip()):
            return None
        return parse_int(v)

    def to_terms(self) -> LoanTerms:
        return LoanTerms(
            principal_amount=self.principal_amount,
            interest_rate=self.interest_rate,
            interest_rate_type=self.interest_rate_type,
            term_months=self.term_months,
            payment_frequency=self.payment_frequency,
        )


class MoratoryRuleForm(BaseModel):
    moratory_rate: Decimal = Decimal("0")
    moratory_rate_type: RateType = RateType.MONTHLY
    custom_formula: str | None = None
    custom_formula_description: str | None = None

    @field_validator("moratory_rate", mode="before")
    @classmethod
    def _lenient_decimal(cls, v):
        return parse_decimal(v)

    @field_validator("custom_formula", "custom_formula_description", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    def to_rule(self) -> MoratoryRule:
        return MoratoryRule(
            moratory_rate=self.moratory_rate,
            moratory_rate_type=self.moratory_rate_type,
            custom_formula=self.custom_formula,
            custom_formula_description=self.custom_formula_description,
        )


class RecurrenceRuleForm(BaseModel):
    recurrence_type: RecurrenceType
    recurrence_interval: int = Field(1, ge=1)
    recurrence_start_date: date
    recurrence_end_date: date | None = None

    @field_validator("recurrence_interval", mode="before")
    @classmethod
    def _default_interval(cls, v):
        if v is None or (isinstance(v, str) and not v.strip()):
            return 1
        return v

    @field_validator("recurrence_end_date", mode="before")
    @classmethod
    def _blank_end_date(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    def to_recurrence(self) -> RecurrenceRule:
        return RecurrenceRule(
            type=self.recurrence_type,
            start_date=self.recurrence_start_date,
            interval=self.recurrence_interval,
            end_date=self.recurrence_end_date,
        )
