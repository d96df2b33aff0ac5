"""Error taxonomy for the calculation engine.

Every error is recoverable by the caller: the UI shows the message and omits
the figure instead of displaying a wrong number.
"""

from enum import Enum


class EngineError(Exception):
    """Base class for all engine errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInputError(EngineError, ValueError):
    """A numeric loan/moratory field or a recurrence interval is out of range."""

    def __init__(self, field_name: str, message: str):
        super().__init__(f"{field_name}: {message}")
        self.field_name = field_name


class FormulaErrorReason(Enum):
    PARSE = "parse"
    UNKNOWN_NAME = "unknown_name"
    FORBIDDEN_CALL = "forbidden_call"
    TYPE = "type"
    ARITHMETIC = "arithmetic"
    NON_NUMERIC_RESULT = "non_numeric_result"
    NEGATIVE_RESULT = "negative_result"
    LIMIT = "limit"


class FormulaEvaluationError(EngineError):
    """A custom moratory formula failed to parse, evaluate, or yield a number."""

    def __init__(self, reason: FormulaErrorReason, message: str, position: int | None = None):
        super().__init__(message)
        self.reason = reason
        self.position = position

    def __str__(self) -> str:
        if self.position is not None:
            return f"{self.message} (at character {self.position + 1})"
        return self.message


class UnsupportedRecurrenceTypeError(EngineError, ValueError):
    """RecurrenceRule.type is not one of the known recurrence types."""

    def __init__(self, recurrence_type: object):
        super().__init__(f"Unsupported recurrence type: {recurrence_type!r}")
        self.recurrence_type = recurrence_type
