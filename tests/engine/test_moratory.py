from dataclasses import replace
from decimal import Decimal

import pytest

from loan_engine.engine.errors import FormulaEvaluationError, InvalidInputError
from loan_engine.engine.moratory import (
    EXAMPLE_FORMULAS,
    SAMPLE_CONTEXT,
    MoratoryMode,
    compute_moratory_interest,
    formula_context_for,
    preview_custom_formula,
    validate_custom_formula,
)
from loan_engine.engine.amortization import round_money
from loan_engine.engine.formula import evaluate_formula
from loan_engine.models.loan import FormulaContext, LoanTerms, MoratoryRule, RateType


class TestPeriodicRate:
    def test_monthly_rate_full_month(self, overdue_context):
        rule = MoratoryRule(moratory_rate=Decimal("3"), moratory_rate_type=RateType.MONTHLY)
        assert compute_moratory_interest(rule, overdue_context) == Decimal("300")

    def test_monthly_rate_prorated_by_days(self, overdue_context):
        rule = MoratoryRule(moratory_rate=Decimal("3"), moratory_rate_type=RateType.MONTHLY)
        context = replace(overdue_context, days_overdue=15)
        assert compute_moratory_interest(rule, context) == Decimal("150")

    def test_daily_rate(self, overdue_context):
        rule = MoratoryRule(moratory_rate=Decimal("0.1"), moratory_rate_type=RateType.DAILY)
        context = replace(overdue_context, days_overdue=10)
        assert compute_moratory_interest(rule, context) == Decimal("100")

    def test_weekly_rate(self, overdue_context):
        rule = MoratoryRule(moratory_rate=Decimal("1"), moratory_rate_type=RateType.WEEKLY)
        context = replace(overdue_context, days_overdue=14)
        assert compute_moratory_interest(rule, context) == Decimal("200")

    def test_yearly_rate(self, overdue_context):
        rule = MoratoryRule(moratory_rate=Decimal("36.5"), moratory_rate_type=RateType.YEARLY)
        context = replace(overdue_context, days_overdue=10)
        assert compute_moratory_interest(rule, context) == Decimal("100")

    def test_not_overdue(self, overdue_context):
        rule = MoratoryRule(moratory_rate=Decimal("3"))
        assert compute_moratory_interest(rule, replace(overdue_context, days_overdue=0)) == Decimal("0")
        assert compute_moratory_interest(rule, replace(overdue_context, days_overdue=-5)) == Decimal("0")

    def test_zero_rate(self, overdue_context):
        assert compute_moratory_interest(MoratoryRule(), overdue_context) == Decimal("0")

    def test_negative_rate_rejected(self, overdue_context):
        rule = MoratoryRule(moratory_rate=Decimal("-1"))
        with pytest.raises(InvalidInputError):
            compute_moratory_interest(rule, overdue_context)


class TestProratedPayment:
    def test_full_month(self, overdue_context):
        rule = MoratoryRule()
        result = compute_moratory_interest(rule, overdue_context, MoratoryMode.PRORATED_PAYMENT)
        assert result == Decimal("900")

    def test_partial_month(self, overdue_context):
        context = replace(overdue_context, days_overdue=10)
        result = compute_moratory_interest(MoratoryRule(), context, MoratoryMode.PRORATED_PAYMENT)
        assert result == Decimal("300")

    def test_requires_monthly_payment(self, overdue_context):
        context = replace(overdue_context, monthly_payment=None)
        with pytest.raises(InvalidInputError) as exc:
            compute_moratory_interest(MoratoryRule(), context, MoratoryMode.PRORATED_PAYMENT)
        assert exc.value.field_name == "monthly_payment"


class TestCustomFormula:
    def test_formula_takes_precedence(self, overdue_context):
        rule = MoratoryRule(
            moratory_rate=Decimal("3"),
            custom_formula="return principalAmount * 0.05;",
        )
        assert compute_moratory_interest(rule, overdue_context) == Decimal("500")
        assert compute_moratory_interest(rule, overdue_context, MoratoryMode.PRORATED_PAYMENT) == Decimal("500")

    def test_blank_formula_falls_back_to_rate(self, overdue_context):
        rule = MoratoryRule(moratory_rate=Decimal("3"), custom_formula="   ")
        assert not rule.has_custom_formula
        assert compute_moratory_interest(rule, overdue_context) == Decimal("300")

    def test_missing_days_and_term_count_as_zero(self, overdue_context):
        context = replace(overdue_context, term_months=None, days_overdue=None)
        formula_rule = MoratoryRule(custom_formula="return principalAmount * 0.02;")
        assert compute_moratory_interest(formula_rule, context) == Decimal("200")
        assert compute_moratory_interest(MoratoryRule(custom_formula="termMonths + daysOverdue"), context) == Decimal("0")
        assert compute_moratory_interest(MoratoryRule(moratory_rate=Decimal("3")), context) == Decimal("0")

    def test_negative_days_read_as_zero(self, overdue_context):
        context = replace(overdue_context, days_overdue=-5)
        rule = MoratoryRule(custom_formula="return daysOverdue;")
        assert compute_moratory_interest(rule, context) == Decimal("0")

    def test_non_integer_days_rejected(self, overdue_context):
        context = replace(overdue_context, days_overdue="30")
        with pytest.raises(InvalidInputError):
            compute_moratory_interest(MoratoryRule(custom_formula="daysOverdue"), context)

    def test_formula_error_propagates(self, overdue_context):
        rule = MoratoryRule(custom_formula="return balance;")
        with pytest.raises(FormulaEvaluationError):
            compute_moratory_interest(rule, overdue_context)


class TestFormulaContext:
    def test_context_from_terms(self, fixed_term_loan):
        context = formula_context_for(fixed_term_loan, 30)
        assert context.principal_amount == Decimal("10000")
        assert context.interest_rate == Decimal("0.12")
        assert context.term_months == 12
        assert context.days_overdue == 30
        assert context.payment_frequency == "monthly"
        assert round_money(context.monthly_payment) == Decimal("888.49")

    def test_open_ended_context(self, open_ended_loan):
        context = formula_context_for(open_ended_loan, 5)
        assert context.term_months == 0
        assert context.monthly_payment == Decimal("100")

    def test_float_fields_keep_their_decimal_value(self):
        context = FormulaContext(
            principal_amount=10000.0,
            interest_rate=0.12,
            term_months=12,
            days_overdue=30,
            payment_frequency="monthly",
            monthly_payment=888.49,
        )
        variables = context.variables()
        assert variables["interestRate"] == Decimal("0.12")
        assert variables["monthlyPayment"] == Decimal("888.49")
        assert evaluate_formula("principalAmount * interestRate", context) == Decimal("1200")

    def test_explicit_monthly_payment(self, fixed_term_loan):
        context = formula_context_for(fixed_term_loan, 30, monthly_payment=Decimal("900"))
        assert context.monthly_payment == Decimal("900")


class TestPreview:
    def test_preview_prorated_formula(self, fixed_term_loan):
        rule = MoratoryRule(custom_formula=EXAMPLE_FORMULAS["prorated_payment"].formula)
        preview = preview_custom_formula(rule, fixed_term_loan)
        assert preview.ok
        assert preview.days_overdue == 30
        assert preview.monthly_payment == Decimal("888.49")
        assert preview.daily_penalty == Decimal("29.62")
        assert preview.value == Decimal("888.49")

    def test_preview_custom_days(self, fixed_term_loan):
        rule = MoratoryRule(custom_formula="daysOverdue")
        assert preview_custom_formula(rule, fixed_term_loan, days_overdue=7).value == Decimal("7.00")

    def test_open_ended_previewed_as_twelve_months(self, open_ended_loan):
        rule = MoratoryRule(custom_formula="return termMonths;")
        preview = preview_custom_formula(rule, open_ended_loan)
        assert preview.monthly_payment == Decimal("888.49")
        assert preview.value == Decimal("12.00")

    def test_preview_error_is_reported(self, fixed_term_loan):
        rule = MoratoryRule(custom_formula="return balance;")
        preview = preview_custom_formula(rule, fixed_term_loan)
        assert not preview.ok
        assert preview.value is None
        assert "Unknown variable 'balance'" in preview.error
        assert preview.monthly_payment == Decimal("888.49")

    def test_no_formula(self, fixed_term_loan):
        preview = preview_custom_formula(MoratoryRule(), fixed_term_loan)
        assert preview.error == "No formula specified"

    def test_bad_loan_terms_reported(self):
        terms = LoanTerms(principal_amount=Decimal("-5"), interest_rate=Decimal("1"), term_months=12)
        preview = preview_custom_formula(MoratoryRule(custom_formula="1"), terms)
        assert not preview.ok
        assert "principal_amount" in preview.error


class TestValidation:
    @pytest.mark.parametrize("key", sorted(EXAMPLE_FORMULAS))
    def test_examples_are_valid(self, key):
        validation = validate_custom_formula(EXAMPLE_FORMULAS[key].formula)
        assert validation.is_valid, validation.error
        assert validation.sample_result > 0

    def test_example_results(self):
        assert validate_custom_formula(EXAMPLE_FORMULAS["frequency_based"].formula).sample_result == Decimal("200")
        assert validate_custom_formula(EXAMPLE_FORMULAS["tiered"].formula).sample_result == Decimal("100")

    def test_sample_context(self):
        assert SAMPLE_CONTEXT.days_overdue == 30
        assert round_money(SAMPLE_CONTEXT.monthly_payment) == Decimal("888.49")

    def test_error_is_prefixed(self):
        validation = validate_custom_formula("return -1;")
        assert not validation.is_valid
        assert validation.error.startswith("Formula error:")
        assert validation.sample_result is None

    def test_unreasonably_high(self):
        validation = validate_custom_formula("principalAmount * 100")
        assert not validation.is_valid
        assert validation.error == "Formula result seems unreasonably high"
        assert validation.sample_result == Decimal("1000000")
