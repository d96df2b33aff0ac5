"""Sandboxed interpreter for user-authored moratory interest formulas.

Formulas are short JavaScript-flavoured snippets written by end users, e.g.

    return (monthlyPayment / 30) * daysOverdue;

    if (daysOverdue <= 30) return principalAmount * 0.01;
    else return principalAmount * Math.min(0.05, 0.01 * ceil(daysOverdue / 30));

They are tokenized, parsed by recursive descent into an immutable tree and
evaluated by a tree walker. The grammar is closed: literals, the
FormulaContext variables, locally declared constants, arithmetic, comparison
and logical operators, the ternary, if/else, blocks, return, and a fixed set
of math functions. There are no loops, assignments, member access (beyond
Math.<fn>) or other names, so a formula can neither reach anything outside
its context nor run for longer than its size allows.

All arithmetic is Decimal under a private context, so a given formula and
context always produce the same result.
"""

import logging
import re
from dataclasses import dataclass
from decimal import (
    Context,
    Decimal,
    DecimalException,
    DivisionByZero,
    InvalidOperation,
    Overflow,
    ROUND_CEILING,
    ROUND_FLOOR,
    ROUND_HALF_EVEN,
    localcontext,
)
from typing import Callable, Union

from loan_engine.config import settings
from loan_engine.engine.errors import FormulaErrorReason, FormulaEvaluationError
from loan_engine.models.loan import FORMULA_VARIABLES, FormulaContext

logger = logging.getLogger(__name__)

Value = Union[Decimal, str, bool]

KEYWORDS = {"if", "else", "return", "const", "let", "var", "true", "false"}

# JavaScript words a user might reach for; rejected with a clear message
UNSUPPORTED_WORDS = {
    "while", "for", "do", "function", "new", "class", "this", "import", "export",
    "switch", "case", "default", "try", "catch", "finally", "throw", "delete",
    "typeof", "instanceof", "void", "in", "of", "yield", "await", "async", "with",
    "debugger", "break", "continue", "null", "undefined", "globalThis", "window",
}

OPERATORS = [
    "===", "!==", "**", "==", "!=", "<=", ">=", "&&", "||",
    "+", "-", "*", "/", "%", "<", ">", "!", "?", ":", "(", ")", "{", "}", ",", ";", ".", "=",
]

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+|//[^\n]*|/\*.*?\*/)
    |(?P<number>(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)
    |(?P<string>'[^'\\\n]*'|"[^"\\\n]*")
    |(?P<ident>[A-Za-z_$][A-Za-z0-9_$]*)
    |(?P<op>""" + "|".join(re.escape(op) for op in OPERATORS) + r""")
    """,
    re.VERBOSE | re.DOTALL,
)

MATH_CONSTANTS: dict[str, Decimal] = {
    "PI": Decimal("3.141592653589793238462643383"),
    "E": Decimal("2.718281828459045235360287471"),
}


# ---- Tokens ----

@dataclass(frozen=True)
class Token:
    kind: str  # "number", "string", "ident", "keyword", "op", "eof"
    value: str
    pos: int


def tokenize(source: str) -> list[Token]:
    """Split formula text into tokens, rejecting anything outside the grammar."""
    if len(source) > settings.formula_max_length:
        raise FormulaEvaluationError(
            FormulaErrorReason.LIMIT,
            f"Formula is too long ({len(source)} characters, limit {settings.formula_max_length})",
        )

    tokens: list[Token] = []
    pos = 0
    while pos < len(source):
        match = _TOKEN_RE.match(source, pos)
        if match is None:
            raise FormulaEvaluationError(
                FormulaErrorReason.PARSE, f"Unexpected character {source[pos]!r}", pos
            )
        kind = match.lastgroup
        text = match.group()
        if kind == "ident" and text in KEYWORDS:
            kind = "keyword"
        if kind != "ws":
            tokens.append(Token(kind, text, pos))
            if len(tokens) > settings.formula_max_tokens:
                raise FormulaEvaluationError(
                    FormulaErrorReason.LIMIT,
                    f"Formula is too complex (more than {settings.formula_max_tokens} tokens)",
                )
        pos = match.end()

    tokens.append(Token("eof", "", len(source)))
    return tokens


# ---- Syntax tree ----

@dataclass(frozen=True)
class Literal:
    value: Value
    pos: int


@dataclass(frozen=True)
class Name:
    name: str
    pos: int


@dataclass(frozen=True)
class Unary:
    op: str
    operand: "Expr"
    pos: int


@dataclass(frozen=True)
class Binary:
    op: str
    left: "Expr"
    right: "Expr"
    pos: int


@dataclass(frozen=True)
class Conditional:
    test: "Expr"
    then: "Expr"
    otherwise: "Expr"
    pos: int


@dataclass(frozen=True)
class Call:
    function: str
    args: tuple["Expr", ...]
    pos: int


Expr = Union[Literal, Name, Unary, Binary, Conditional, Call]


@dataclass(frozen=True)
class Return:
    value: Expr | None
    pos: int


@dataclass(frozen=True)
class If:
    test: Expr
    then: "Stmt"
    otherwise: "Stmt | None"
    pos: int


@dataclass(frozen=True)
class Block:
    body: tuple["Stmt", ...]
    pos: int


@dataclass(frozen=True)
class Declare:
    name: str
    value: Expr
    pos: int


@dataclass(frozen=True)
class ExprStmt:
    value: Expr
    pos: int


Stmt = Union[Return, If, Block, Declare, ExprStmt]


@dataclass(frozen=True)
class Program:
    body: tuple[Stmt, ...]
    source: str


# ---- Parser ----

class _Parser:
    def __init__(self, tokens: list[Token]):
        self.tokens = tokens
        self.index = 0
        self.depth = 0

    @property
    def current(self) -> Token:
        return self.tokens[self.index]

    def _advance(self) -> Token:
        token = self.tokens[self.index]
        if token.kind != "eof":
            self.index += 1
        return token

    def _check(self, value: str) -> bool:
        token = self.current
        return token.kind in ("op", "keyword") and token.value == value

    def _accept(self, value: str) -> bool:
        if self._check(value):
            self._advance()
            return True
        return False

    def _expect(self, value: str) -> Token:
        if not self._check(value):
            self._fail(f"Expected '{value}'")
        return self._advance()

    def _fail(self, message: str):
        token = self.current
        found = "end of formula" if token.kind == "eof" else repr(token.value)
        raise FormulaEvaluationError(FormulaErrorReason.PARSE, f"{message}, found {found}", token.pos)

    def _enter(self) -> None:
        self.depth += 1
        if self.depth > settings.formula_max_depth:
            raise FormulaEvaluationError(
                FormulaErrorReason.LIMIT,
                f"Formula is nested too deeply (limit {settings.formula_max_depth})",
                self.current.pos,
            )

    def _leave(self) -> None:
        self.depth -= 1

    # Statements

    def program(self, source: str) -> Program:
        body = []
        while self.current.kind != "eof":
            stmt = self.statement()
            if stmt is not None:
                body.append(stmt)
        if not body:
            raise FormulaEvaluationError(FormulaErrorReason.PARSE, "Formula is empty", 0)
        return Program(body=tuple(body), source=source)

    def statement(self) -> Stmt | None:
        self._enter()
        try:
            token = self.current
            if self._accept(";"):
                return None
            if self._accept("return"):
                if self._accept(";") or self._check("}") or self.current.kind == "eof":
                    return Return(None, token.pos)
                value = self.expression()
                self._accept(";")
                return Return(value, token.pos)
            if self._accept("if"):
                self._expect("(")
                test = self.expression()
                self._expect(")")
                then = self._required_statement()
                otherwise = self._required_statement() if self._accept("else") else None
                return If(test, then, otherwise, token.pos)
            if self._accept("{"):
                body = []
                while not self._check("}"):
                    if self.current.kind == "eof":
                        self._fail("Expected '}'")
                    stmt = self.statement()
                    if stmt is not None:
                        body.append(stmt)
                self._advance()
                return Block(tuple(body), token.pos)
            if token.kind == "keyword" and token.value in ("const", "let", "var"):
                self._advance()
                name_token = self.current
                if name_token.kind != "ident":
                    self._fail("Expected a name after '{}'".format(token.value))
                self._reject_unsupported(name_token)
                self._advance()
                self._expect("=")
                value = self.expression()
                self._accept(";")
                return Declare(name_token.value, value, token.pos)
            value = self.expression()
            self._accept(";")
            return ExprStmt(value, token.pos)
        finally:
            self._leave()

    def _required_statement(self) -> Stmt:
        pos = self.current.pos
        stmt = self.statement()
        return stmt if stmt is not None else Block((), pos)

    # Expressions, lowest precedence first

    def expression(self) -> Expr:
        self._enter()
        try:
            return self.conditional()
        finally:
            self._leave()

    def conditional(self) -> Expr:
        test = self.logical_or()
        if self._check("?"):
            pos = self._advance().pos
            then = self.expression()
            self._expect(":")
            otherwise = self.expression()
            return Conditional(test, then, otherwise, pos)
        return test

    def _binary_level(self, operators: tuple[str, ...], operand: Callable[[], Expr]) -> Expr:
        left = operand()
        while self.current.kind == "op" and self.current.value in operators:
            token = self._advance()
            left = Binary(token.value, left, operand(), token.pos)
        return left

    def logical_or(self) -> Expr:
        return self._binary_level(("||",), self.logical_and)

    def logical_and(self) -> Expr:
        return self._binary_level(("&&",), self.equality)

    def equality(self) -> Expr:
        return self._binary_level(("===", "!==", "==", "!="), self.comparison)

    def comparison(self) -> Expr:
        return self._binary_level(("<", "<=", ">", ">="), self.additive)

    def additive(self) -> Expr:
        return self._binary_level(("+", "-"), self.multiplicative)

    def multiplicative(self) -> Expr:
        return self._binary_level(("*", "/", "%"), self.unary)

    def unary(self) -> Expr:
        token = self.current
        if token.kind == "op" and token.value in ("-", "+", "!"):
            self._advance()
            self._enter()
            try:
                return Unary(token.value, self.unary(), token.pos)
            finally:
                self._leave()
        return self.power()

    def power(self) -> Expr:
        base = self.primary()
        if self._check("**"):
            token = self._advance()
            self._enter()
            try:
                # Right-associative: 2 ** 3 ** 2 == 2 ** 9
                return Binary("**", base, self.unary(), token.pos)
            finally:
                self._leave()
        return base

    def primary(self) -> Expr:
        token = self.current

        if token.kind == "number":
            self._advance()
            return Literal(Decimal(token.value), token.pos)
        if token.kind == "string":
            self._advance()
            return Literal(token.value[1:-1], token.pos)
        if token.kind == "keyword" and token.value in ("true", "false"):
            self._advance()
            return Literal(token.value == "true", token.pos)
        if self._accept("("):
            inner = self.expression()
            self._expect(")")
            return inner
        if token.kind == "ident":
            self._reject_unsupported(token)
            self._advance()
            if token.value == "Math":
                return self._math_member(token)
            if self._check("."):
                raise FormulaEvaluationError(
                    FormulaErrorReason.FORBIDDEN_CALL,
                    f"Property access on '{token.value}' is not allowed",
                    self.current.pos,
                )
            if self._check("("):
                return self._call(token.value, token)
            return Name(token.value, token.pos)

        self._fail("Expected a value")

    def _math_member(self, math_token: Token) -> Expr:
        self._expect(".")
        member = self.current
        if member.kind != "ident":
            self._fail("Expected a name after 'Math.'")
        self._advance()
        if member.value in MATH_CONSTANTS and not self._check("("):
            return Literal(MATH_CONSTANTS[member.value], member.pos)
        if member.value not in FUNCTIONS:
            raise FormulaEvaluationError(
                FormulaErrorReason.FORBIDDEN_CALL,
                f"Math.{member.value} is not an allowed function",
                member.pos,
            )
        if not self._check("("):
            self._fail(f"Expected '(' after Math.{member.value}")
        return self._call(member.value, math_token)

    def _call(self, function: str, token: Token) -> Call:
        if function not in FUNCTIONS:
            if function in FORMULA_VARIABLES:
                raise FormulaEvaluationError(
                    FormulaErrorReason.TYPE, f"'{function}' is not a function", token.pos
                )
            raise FormulaEvaluationError(
                FormulaErrorReason.FORBIDDEN_CALL,
                f"'{function}' is not an allowed function",
                token.pos,
            )
        self._expect("(")
        args = []
        if not self._check(")"):
            args.append(self.expression())
            while self._accept(","):
                args.append(self.expression())
        self._expect(")")
        return Call(function, tuple(args), token.pos)

    def _reject_unsupported(self, token: Token) -> None:
        if token.value in UNSUPPORTED_WORDS:
            raise FormulaEvaluationError(
                FormulaErrorReason.PARSE,
                f"'{token.value}' is not supported in formulas",
                token.pos,
            )


def parse_formula(source: str) -> Program:
    """Parse formula text into a Program; raises FormulaEvaluationError."""
    if source is None or not source.strip():
        raise FormulaEvaluationError(FormulaErrorReason.PARSE, "Formula is empty", 0)
    return _Parser(tokenize(source)).program(source)


# ---- Whitelisted functions ----

def _number_args(name: str, args: list[Value], pos: int, min_args: int, max_args: int | None) -> list[Decimal]:
    if len(args) < min_args or (max_args is not None and len(args) > max_args):
        if max_args == min_args:
            expected = f"{min_args} argument{'s' if min_args != 1 else ''}"
        else:
            expected = f"at least {min_args} argument{'s' if min_args != 1 else ''}"
        raise FormulaEvaluationError(
            FormulaErrorReason.TYPE, f"{name}() takes {expected}, got {len(args)}", pos
        )
    for arg in args:
        if not _is_number(arg):
            raise FormulaEvaluationError(
                FormulaErrorReason.TYPE, f"{name}() arguments must be numbers", pos
            )
    return args  # type: ignore[return-value]


def _ceil(x: Decimal) -> Decimal:
    return x.to_integral_value(rounding=ROUND_CEILING)


def _floor(x: Decimal) -> Decimal:
    return x.to_integral_value(rounding=ROUND_FLOOR)


def _round(x: Decimal) -> Decimal:
    # Halves round toward +infinity, as Math.round does
    return (x + Decimal("0.5")).to_integral_value(rounding=ROUND_FLOOR)


# name -> (implementation, min args, max args or None for variadic)
FUNCTIONS: dict[str, tuple[Callable[..., Decimal], int, int | None]] = {
    "ceil": (_ceil, 1, 1),
    "floor": (_floor, 1, 1),
    "round": (_round, 1, 1),
    "abs": (lambda x: abs(x), 1, 1),
    "sqrt": (lambda x: x.sqrt(), 1, 1),
    "pow": (lambda x, y: x ** y, 2, 2),
    "min": (lambda *xs: min(xs), 1, None),
    "max": (lambda *xs: max(xs), 1, None),
}


# ---- Evaluator ----

_NO_RESULT = object()


def _is_number(value: Value) -> bool:
    return isinstance(value, Decimal) and not isinstance(value, bool)


def _truthy(value: Value) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, Decimal):
        return value != 0
    return value != ""


def _type_name(value: Value) -> str:
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, Decimal):
        return "number"
    return "string"


class _Evaluator:
    def __init__(self, variables: dict[str, Value]):
        self.variables = variables

    def run(self, program: Program) -> Value:
        scope: dict[str, Value] = {}
        last_value: object = _NO_RESULT
        for stmt in program.body:
            result, last_value = self._exec(stmt, scope, last_value)
            if result is not _NO_RESULT:
                return result
        if last_value is _NO_RESULT:
            raise FormulaEvaluationError(
                FormulaErrorReason.NON_NUMERIC_RESULT, "Formula did not return a value"
            )
        return last_value

    def _exec(self, stmt: Stmt, scope: dict[str, Value], last_value: object) -> tuple[object, object]:
        """Run one statement; returns (returned value or _NO_RESULT, last expression value)."""
        if isinstance(stmt, Return):
            if stmt.value is None:
                raise FormulaEvaluationError(
                    FormulaErrorReason.NON_NUMERIC_RESULT, "return needs a value", stmt.pos
                )
            return self._eval(stmt.value, scope), last_value
        if isinstance(stmt, ExprStmt):
            return _NO_RESULT, self._eval(stmt.value, scope)
        if isinstance(stmt, Declare):
            if stmt.name in self.variables or stmt.name in FORMULA_VARIABLES or stmt.name in FUNCTIONS or stmt.name == "Math":
                raise FormulaEvaluationError(
                    FormulaErrorReason.PARSE, f"'{stmt.name}' is a reserved name", stmt.pos
                )
            if stmt.name in scope:
                raise FormulaEvaluationError(
                    FormulaErrorReason.PARSE, f"'{stmt.name}' is already declared", stmt.pos
                )
            scope[stmt.name] = self._eval(stmt.value, scope)
            return _NO_RESULT, last_value
        if isinstance(stmt, If):
            branch = stmt.then if _truthy(self._eval(stmt.test, scope)) else stmt.otherwise
            if branch is None:
                return _NO_RESULT, last_value
            return self._exec(branch, scope, last_value)
        # Block: declarations stay local to the block
        inner = dict(scope)
        for child in stmt.body:
            result, last_value = self._exec(child, inner, last_value)
            if result is not _NO_RESULT:
                return result, last_value
        return _NO_RESULT, last_value

    def _eval(self, expr: Expr, scope: dict[str, Value]) -> Value:
        if isinstance(expr, Literal):
            return expr.value
        if isinstance(expr, Name):
            return self._lookup(expr, scope)
        if isinstance(expr, Unary):
            operand = self._eval(expr.operand, scope)
            if expr.op == "!":
                return not _truthy(operand)
            self._require_numbers(expr.op, expr.pos, operand)
            return -operand if expr.op == "-" else +operand
        if isinstance(expr, Conditional):
            branch = expr.then if _truthy(self._eval(expr.test, scope)) else expr.otherwise
            return self._eval(branch, scope)
        if isinstance(expr, Call):
            impl, min_args, max_args = FUNCTIONS[expr.function]
            args = [self._eval(arg, scope) for arg in expr.args]
            numbers = _number_args(expr.function, args, expr.pos, min_args, max_args)
            return impl(*numbers)
        return self._binary(expr, scope)

    def _lookup(self, expr: Name, scope: dict[str, Value]) -> Value:
        if expr.name in scope:
            return scope[expr.name]
        if expr.name in self.variables:
            return self.variables[expr.name]
        if expr.name in FORMULA_VARIABLES:
            raise FormulaEvaluationError(
                FormulaErrorReason.UNKNOWN_NAME,
                f"'{expr.name}' is not available for this loan",
                expr.pos,
            )
        raise FormulaEvaluationError(
            FormulaErrorReason.UNKNOWN_NAME, f"Unknown variable '{expr.name}'", expr.pos
        )

    def _binary(self, expr: Binary, scope: dict[str, Value]) -> Value:
        op = expr.op
        left = self._eval(expr.left, scope)

        if op == "&&":
            return self._eval(expr.right, scope) if _truthy(left) else left
        if op == "||":
            return left if _truthy(left) else self._eval(expr.right, scope)

        right = self._eval(expr.right, scope)

        if op in ("==", "==="):
            return _type_name(left) == _type_name(right) and left == right
        if op in ("!=", "!=="):
            return not (_type_name(left) == _type_name(right) and left == right)

        self._require_numbers(op, expr.pos, left, right)
        if op == "+":
            return left + right
        if op == "-":
            return left - right
        if op == "*":
            return left * right
        if op == "/":
            return left / right
        if op == "%":
            return left % right
        if op == "**":
            return left ** right
        if op == "<":
            return left < right
        if op == "<=":
            return left <= right
        if op == ">":
            return left > right
        return left >= right

    @staticmethod
    def _require_numbers(op: str, pos: int, *values: Value) -> None:
        for value in values:
            if not _is_number(value):
                raise FormulaEvaluationError(
                    FormulaErrorReason.TYPE,
                    f"Operator '{op}' needs numbers, got {_type_name(value)}",
                    pos,
                )


def _decimal_context() -> Context:
    return Context(
        prec=settings.decimal_precision,
        rounding=ROUND_HALF_EVEN,
        Emax=999999,
        Emin=-999999,
        traps=[DivisionByZero, InvalidOperation, Overflow],
    )


def run_program(program: Program, context: FormulaContext) -> Decimal:
    """Evaluate a parsed formula against a context; raises FormulaEvaluationError."""
    evaluator = _Evaluator(context.variables())
    with localcontext(_decimal_context()):
        try:
            result = evaluator.run(program)
            if _is_number(result):
                # Literals are exact; apply the context so huge values trap here
                result = +result
        except DivisionByZero:
            raise FormulaEvaluationError(FormulaErrorReason.ARITHMETIC, "Division by zero") from None
        except Overflow:
            raise FormulaEvaluationError(FormulaErrorReason.ARITHMETIC, "Result is too large") from None
        except DecimalException:
            raise FormulaEvaluationError(
                FormulaErrorReason.ARITHMETIC, "Invalid arithmetic operation"
            ) from None

        if not _is_number(result):
            raise FormulaEvaluationError(
                FormulaErrorReason.NON_NUMERIC_RESULT,
                f"Formula must return a number, got {_type_name(result)}",
            )
        if not result.is_finite():
            raise FormulaEvaluationError(
                FormulaErrorReason.NON_NUMERIC_RESULT, "Formula must return a finite number"
            )
        if result < 0:
            raise FormulaEvaluationError(
                FormulaErrorReason.NEGATIVE_RESULT, "Formula must not return a negative amount"
            )
        return result.copy_abs() if result == 0 else result


def evaluate_formula(source: str, context: FormulaContext) -> Decimal:
    """Parse and evaluate a custom formula.

    Raises FormulaEvaluationError for every failure: bad syntax, unknown
    names, forbidden calls, type mismatches, arithmetic faults, or a result
    that is not a non-negative number.
    """
    try:
        program = parse_formula(source)
        return run_program(program, context)
    except FormulaEvaluationError as e:
        logger.debug("Custom formula rejected (%s): %s", e.reason.value, e)
        raise
