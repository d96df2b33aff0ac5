from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError

from loan_engine.engine.amortization import compute_monthly_payment, round_money
from loan_engine.models.forms import (
    LoanTermsForm,
    MoratoryRuleForm,
    RecurrenceRuleForm,
    parse_decimal,
    parse_int,
)
from loan_engine.models.loan import PaymentFrequency, RateType
from loan_engine.models.recurrence import RecurrenceType


class TestParsing:
    @pytest.mark.parametrize("raw,expected", [
        ("10,000.50", Decimal("10000.50")),
        (" 12 ", Decimal("12")),
        (7, Decimal("7")),
        (Decimal("1.5"), Decimal("1.5")),
        ("", Decimal("0")),
        ("abc", Decimal("0")),
        (None, Decimal("0")),
        ("NaN", Decimal("0")),
        ("Infinity", Decimal("0")),
        (True, Decimal("0")),
    ])
    def test_parse_decimal(self, raw, expected):
        assert parse_decimal(raw) == expected

    def test_parse_int_truncates(self):
        assert parse_int("12.7") == 12
        assert parse_int("x") == 0


class TestLoanTermsForm:
    def test_string_fields(self):
        form = LoanTermsForm(
            principal_amount="10,000",
            interest_rate="12",
            interest_rate_type="yearly",
            term_months="12",
            payment_frequency="bi-weekly",
        )
        terms = form.to_terms()
        assert terms.principal_amount == Decimal("10000")
        assert terms.interest_rate_type is RateType.YEARLY
        assert terms.payment_frequency is PaymentFrequency.BIWEEKLY
        assert round_money(compute_monthly_payment(terms)) == Decimal("888.49")

    def test_garbage_numbers_become_zero(self):
        form = LoanTermsForm(principal_amount="abc", interest_rate="")
        assert form.principal_amount == Decimal("0")
        assert form.interest_rate == Decimal("0")

    def test_blank_term_is_open_ended(self):
        assert LoanTermsForm(term_months="").to_terms().is_open_ended
        assert LoanTermsForm(term_months=None).to_terms().is_open_ended

    def test_fractional_term_truncated(self):
        assert LoanTermsForm(term_months="12.7").term_months == 12

    def test_unknown_rate_type_rejected(self):
        with pytest.raises(ValidationError):
            LoanTermsForm(interest_rate_type="hourly")


class TestMoratoryRuleForm:
    def test_blank_formula_is_none(self):
        rule = MoratoryRuleForm(moratory_rate="2.5", custom_formula="   ").to_rule()
        assert rule.custom_formula is None
        assert not rule.has_custom_formula
        assert rule.moratory_rate == Decimal("2.5")

    def test_formula_kept(self):
        rule = MoratoryRuleForm(
            custom_formula="return daysOverdue;",
            custom_formula_description="One per day",
        ).to_rule()
        assert rule.has_custom_formula
        assert rule.custom_formula_description == "One per day"


class TestRecurrenceRuleForm:
    def test_defaults(self):
        form = RecurrenceRuleForm(
            recurrence_type="quarterly",
            recurrence_interval="",
            recurrence_start_date="2024-01-15",
            recurrence_end_date="",
        )
        rule = form.to_recurrence()
        assert rule.type is RecurrenceType.QUARTERLY
        assert rule.interval == 1
        assert rule.start_date == date(2024, 1, 15)
        assert rule.end_date is None

    def test_string_interval(self):
        form = RecurrenceRuleForm(
            recurrence_type="custom",
            recurrence_interval="10",
            recurrence_start_date="2024-01-01",
        )
        assert form.recurrence_interval == 10

    def test_non_positive_interval_rejected(self):
        with pytest.raises(ValidationError):
            RecurrenceRuleForm(
                recurrence_type="weekly",
                recurrence_interval=0,
                recurrence_start_date="2024-01-01",
            )

    def test_unknown_type_rejected(self):
        with pytest.raises(ValidationError):
            RecurrenceRuleForm(recurrence_type="fortnightly", recurrence_start_date="2024-01-01")
