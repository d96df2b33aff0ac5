"""CLI for previewing loan and recurring-bill calculations.

Usage:
    python -m loan_engine.cli payment 10000 12 --term 12
    python -m loan_engine.cli payment 10000 1 --rate-type monthly
    python -m loan_engine.cli moratory 10000 12 --term 12 --days 30 --formula "return (monthlyPayment / 30) * daysOverdue;"
    python -m loan_engine.cli next monthly 2024-01-31 --after 2024-01-31 --count 3
"""

import argparse
import logging
import sys
from datetime import date

from pydantic import ValidationError

from loan_engine.config import settings
from loan_engine.engine.amortization import (
    compute_monthly_payment,
    compute_period_payment,
    round_money,
)
from loan_engine.engine.errors import EngineError, FormulaEvaluationError
from loan_engine.engine.moratory import (
    MoratoryMode,
    compute_moratory_interest,
    formula_context_for,
)
from loan_engine.engine.recurrence import describe_recurrence, upcoming_occurrences
from loan_engine.models.forms import LoanTermsForm, MoratoryRuleForm, RecurrenceRuleForm
from loan_engine.models.loan import PaymentFrequency, RateType
from loan_engine.models.recurrence import RecurrenceType


def _add_loan_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("principal", help="Principal amount")
    parser.add_argument("rate", help="Interest rate in percentage points")
    parser.add_argument("--rate-type", choices=[t.value for t in RateType], default="monthly",
                        help="Period the rate is quoted for (default: monthly)")
    parser.add_argument("--term", default=None, help="Term in months (omit for open-ended)")
    parser.add_argument("--frequency", choices=[f.value for f in PaymentFrequency], default="monthly",
                        help="Payment frequency (default: monthly)")


def _terms(args: argparse.Namespace):
    return LoanTermsForm(
        principal_amount=args.principal,
        interest_rate=args.rate,
        interest_rate_type=args.rate_type,
        term_months=args.term,
        payment_frequency=args.frequency,
    ).to_terms()


def cmd_payment(args: argparse.Namespace) -> int:
    terms = _terms(args)
    monthly = compute_monthly_payment(terms)
    print(f"\n{'=' * 60}")
    print("  Loan Payment")
    print(f"{'=' * 60}")
    kind = "interest only" if terms.is_open_ended else f"{terms.term_months} months"
    print(f"  Term:             {kind}")
    print(f"  Monthly payment:  {round_money(monthly):,.2f}")
    if terms.payment_frequency is not PaymentFrequency.MONTHLY:
        period = compute_period_payment(terms)
        print(f"  Per {terms.payment_frequency.value} payment: {round_money(period):,.2f}")
    print()
    return 0


def cmd_moratory(args: argparse.Namespace) -> int:
    terms = _terms(args)
    rule = MoratoryRuleForm(
        moratory_rate=args.moratory_rate,
        moratory_rate_type=args.moratory_rate_type,
        custom_formula=args.formula,
    ).to_rule()
    context = formula_context_for(terms, args.days)
    mode = MoratoryMode(args.mode)

    print(f"\n{'=' * 60}")
    print(f"  Moratory Interest ({args.days} days overdue)")
    print(f"{'=' * 60}")
    try:
        penalty = compute_moratory_interest(rule, context, mode)
    except FormulaEvaluationError as e:
        print(f"  Formula error:    {e}")
        print()
        return 1
    source = "custom formula" if rule.has_custom_formula else mode.value.replace("_", " ")
    print(f"  Method:           {source}")
    print(f"  Penalty:          {round_money(penalty):,.2f}")
    print()
    return 0


def cmd_next(args: argparse.Namespace) -> int:
    rule = RecurrenceRuleForm(
        recurrence_type=args.type,
        recurrence_interval=args.interval,
        recurrence_start_date=args.start,
        recurrence_end_date=args.end,
    ).to_recurrence()
    after = args.after or date.today()
    occurrences = upcoming_occurrences(rule, after, args.count)

    print(f"\n  {describe_recurrence(rule)} from {rule.start_date.isoformat()}, after {after.isoformat()}:")
    if not occurrences:
        print("    (series ended)")
    for occurrence in occurrences:
        print(f"    {occurrence.isoformat()}")
    print()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Loan and recurring-bill calculator")
    sub = parser.add_subparsers(dest="command", required=True)

    payment = sub.add_parser("payment", help="Monthly (or per-period) loan payment")
    _add_loan_args(payment)
    payment.set_defaults(func=cmd_payment)

    moratory = sub.add_parser("moratory", help="Late-payment penalty")
    _add_loan_args(moratory)
    moratory.add_argument("--days", type=int, default=settings.formula_preview_days_overdue,
                          help="Days overdue (default: %(default)s)")
    moratory.add_argument("--moratory-rate", default="0", help="Moratory rate in percentage points")
    moratory.add_argument("--moratory-rate-type", choices=[t.value for t in RateType], default="monthly")
    moratory.add_argument("--mode", choices=[m.value for m in MoratoryMode],
                          default=MoratoryMode.PERIODIC_RATE.value)
    moratory.add_argument("--formula", default=None, help="Custom moratory formula")
    moratory.set_defaults(func=cmd_moratory)

    nxt = sub.add_parser("next", help="Upcoming occurrences of a recurrence rule")
    nxt.add_argument("type", choices=[t.value for t in RecurrenceType])
    nxt.add_argument("start", help="Start date (YYYY-MM-DD)")
    nxt.add_argument("--interval", type=int, default=1)
    nxt.add_argument("--end", default=None, help="End date (YYYY-MM-DD)")
    nxt.add_argument("--after", type=date.fromisoformat, default=None, help="Reference date (default: today)")
    nxt.add_argument("--count", type=int, default=1)
    nxt.set_defaults(func=cmd_next)

    return parser


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=settings.log_level.upper(), format="%(levelname)s %(name)s: %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return args.func(args)
    except (EngineError, ValidationError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
