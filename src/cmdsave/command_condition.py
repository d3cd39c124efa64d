# cmdsave/command_condition.py
"""
Declarative step conditions.

A condition is a closed variant: ConditionKind selects the kind and each kind
has its own operation enum. CommandCondition validates kind, operation and
value when it is built, so chain definitions typed by the user are rejected
up front. Records already in the history file are parsed leniently and
anything unreadable becomes an UnsupportedCondition, which always fails
closed at evaluation time.
"""

from __future__ import annotations

import datetime
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from .exceptions import ValidationError

logger = logging.getLogger(__name__)


class ConditionKind(str, Enum):
    EXIT_CODE = "exit_code"
    OUTPUT_CONTAINS = "output_contains"
    ENV_VAR = "env_var"
    TIME_WINDOW = "time_window"
    FILE_EXISTS = "file_exists"


class ExitCodeOperation(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    LESS_THAN = "less_than"
    GREATER_THAN = "greater_than"
    LESS_EQUALS = "less_equals"
    GREATER_EQUALS = "greater_equals"


class OutputOperation(str, Enum):
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    MATCHES = "matches"


class EnvVarOperation(str, Enum):
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"
    EQUALS = "equals"
    CONTAINS = "contains"


class TimeWindowOperation(str, Enum):
    WITHIN = "within"
    OUTSIDE = "outside"


class FileOperation(str, Enum):
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"


OPERATIONS: dict[ConditionKind, type[Enum]] = {
    ConditionKind.EXIT_CODE: ExitCodeOperation,
    ConditionKind.OUTPUT_CONTAINS: OutputOperation,
    ConditionKind.ENV_VAR: EnvVarOperation,
    ConditionKind.TIME_WINDOW: TimeWindowOperation,
    ConditionKind.FILE_EXISTS: FileOperation,
}


# ─────────────────────────────────────────────────────────────────────────────
# Value parsers (raise ValueError / re.error on malformed input)
# ─────────────────────────────────────────────────────────────────────────────
def parse_exit_code(value: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"invalid exit code value '{value}'") from None


def parse_time_window(value: str) -> tuple[datetime.time, datetime.time]:
    """Parse "HH:MM-HH:MM" into (start, end)."""
    parts = value.split("-")
    if len(parts) != 2:
        raise ValueError(f"invalid time window '{value}', expected HH:MM-HH:MM")
    try:
        start = datetime.datetime.strptime(parts[0].strip(), "%H:%M").time()
        end = datetime.datetime.strptime(parts[1].strip(), "%H:%M").time()
    except ValueError as e:
        raise ValueError(f"invalid time in window '{value}': {e}") from None
    return start, end


def parse_env_pair(value: str) -> tuple[str, str]:
    """Split "KEY=VALUE" on the first '='."""
    key, sep, expected = value.partition("=")
    if not sep:
        raise ValueError(f"invalid env_var value '{value}', expected KEY=VALUE")
    return key, expected


# ─────────────────────────────────────────────────────────────────────────────
# Condition records
# ─────────────────────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class CommandCondition:
    """
    A validated predicate gating whether a chain step runs.

    kind and operation accept their enum members or the equivalent strings;
    strings are coerced in __post_init__.
    """

    kind: ConditionKind
    operation: Enum
    value: str = ""

    def __post_init__(self) -> None:
        try:
            kind = ConditionKind(self.kind)
        except ValueError:
            raise ValidationError(
                f"Unknown condition type '{self.kind}'. "
                f"Valid types: {[k.value for k in ConditionKind]}"
            ) from None

        op_enum = OPERATIONS[kind]
        try:
            operation = op_enum(self.operation)
        except ValueError:
            raise ValidationError(
                f"Unknown operation '{self.operation}' for {kind.value} condition. "
                f"Valid operations: {[op.value for op in op_enum]}"
            ) from None

        if not isinstance(self.value, str):
            raise ValidationError(f"Condition value must be a string, got {self.value!r}")

        object.__setattr__(self, "kind", kind)
        object.__setattr__(self, "operation", operation)

        try:
            self._check_value()
        except (ValueError, re.error) as e:
            raise ValidationError(f"Invalid {kind.value} condition: {e}") from None

    def _check_value(self) -> None:
        if self.kind is ConditionKind.EXIT_CODE:
            parse_exit_code(self.value)
        elif self.kind is ConditionKind.TIME_WINDOW:
            parse_time_window(self.value)
        elif self.kind is ConditionKind.OUTPUT_CONTAINS and self.operation is OutputOperation.MATCHES:
            re.compile(self.value)
        elif self.kind is ConditionKind.ENV_VAR and self.operation in (
            EnvVarOperation.EQUALS,
            EnvVarOperation.CONTAINS,
        ):
            parse_env_pair(self.value)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind.value, "value": self.value, "operation": self.operation.value}

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, strict: bool = True) -> AnyCondition:
        """
        Build a condition from its JSON form ({"type", "operation", "value"}).

        With strict=False, invalid records come back as UnsupportedCondition
        instead of raising ValidationError.
        """
        if not isinstance(data, dict):
            if strict:
                raise ValidationError(f"Condition must be an object, got {type(data).__name__}")
            return UnsupportedCondition("", "", "", reason="condition is not an object")

        kind = data.get("type", "")
        operation = data.get("operation", "")
        value = data.get("value", "")
        try:
            return cls(kind=kind, operation=operation, value=value)
        except ValidationError as e:
            if strict:
                raise
            logger.warning(f"Keeping unsupported condition from history file: {e}")
            return UnsupportedCondition(str(kind), str(operation), str(value), reason=str(e))


@dataclass(frozen=True)
class UnsupportedCondition:
    """
    A stored condition that could not be validated.

    Preserved verbatim so saving the store does not lose it; always evaluates
    false.
    """

    kind: str
    operation: str
    value: str
    reason: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind, "value": self.value, "operation": self.operation}


AnyCondition = Union[CommandCondition, UnsupportedCondition]
