# cmdsave/condition_evaluator.py
"""
Pure evaluation of step conditions against an ExecutionContext.

evaluate() never raises: malformed values, unknown kinds or operations and
invalid regular expressions are logged as warnings and the condition counts
as false, so a broken chain definition fails closed instead of crashing a run.
"""

from __future__ import annotations

import datetime
import logging
import os
import re
from collections.abc import Callable, Iterable, Mapping

from .command_condition import (
    AnyCondition,
    CommandCondition,
    ConditionKind,
    EnvVarOperation,
    ExitCodeOperation,
    FileOperation,
    OutputOperation,
    TimeWindowOperation,
    UnsupportedCondition,
    parse_env_pair,
    parse_exit_code,
    parse_time_window,
)
from .types import ExecutionContext

logger = logging.getLogger(__name__)


def evaluate(
    conditions: Iterable[AnyCondition],
    context: ExecutionContext,
    *,
    now: datetime.datetime | None = None,
    environ: Mapping[str, str] | None = None,
) -> bool:
    """
    AND every condition together, stopping at the first false one.

    Args:
        conditions: Conditions to check; an empty list is vacuously true
        context: Outcome of the previous step
        now: Clock override for time_window conditions (defaults to local now)
        environ: Environment override for env_var conditions (defaults to os.environ)
    """
    env = os.environ if environ is None else environ
    for condition in conditions:
        if not evaluate_condition(condition, context, now=now, environ=env):
            logger.debug(f"Condition {condition.to_dict()} not satisfied")
            return False
    return True


def evaluate_condition(
    condition: AnyCondition,
    context: ExecutionContext,
    *,
    now: datetime.datetime | None = None,
    environ: Mapping[str, str] | None = None,
) -> bool:
    """Evaluate a single condition; see evaluate()."""
    if isinstance(condition, UnsupportedCondition):
        logger.warning(
            f"Unsupported condition (type '{condition.kind}', operation "
            f"'{condition.operation}'), condition will fail: {condition.reason}"
        )
        return False
    if not isinstance(condition, CommandCondition):
        logger.warning(f"Unknown condition object {condition!r}, condition will fail")
        return False

    check = _CHECKS.get(condition.kind)
    if check is None:
        logger.warning(f"Unknown condition type '{condition.kind}'")
        return False

    env = os.environ if environ is None else environ
    try:
        return check(condition, context, now, env)
    except (ValueError, re.error) as e:
        logger.warning(f"Invalid {condition.kind.value} condition, condition will fail: {e}")
        return False


# ─────────────────────────────────────────────────────────────────────────────
# Per-kind checks
# ─────────────────────────────────────────────────────────────────────────────
_Check = Callable[
    [CommandCondition, ExecutionContext, "datetime.datetime | None", Mapping[str, str]], bool
]


def _unknown_operation(condition: CommandCondition) -> bool:
    logger.warning(
        f"Unknown operation '{condition.operation}' for {condition.kind.value} condition"
    )
    return False


def _check_exit_code(condition, context, now, environ) -> bool:
    expected = parse_exit_code(condition.value)
    actual = context.last_exit_code
    op = condition.operation
    if op is ExitCodeOperation.EQUALS:
        return actual == expected
    if op is ExitCodeOperation.NOT_EQUALS:
        return actual != expected
    if op is ExitCodeOperation.LESS_THAN:
        return actual < expected
    if op is ExitCodeOperation.GREATER_THAN:
        return actual > expected
    if op is ExitCodeOperation.LESS_EQUALS:
        return actual <= expected
    if op is ExitCodeOperation.GREATER_EQUALS:
        return actual >= expected
    return _unknown_operation(condition)


def _check_output(condition, context, now, environ) -> bool:
    output = context.last_output
    op = condition.operation
    if op is OutputOperation.CONTAINS:
        return condition.value in output
    if op is OutputOperation.NOT_CONTAINS:
        return condition.value not in output
    if op is OutputOperation.STARTS_WITH:
        return output.startswith(condition.value)
    if op is OutputOperation.ENDS_WITH:
        return output.endswith(condition.value)
    if op is OutputOperation.MATCHES:
        return re.search(condition.value, output) is not None
    return _unknown_operation(condition)


def _check_env_var(condition, context, now, environ) -> bool:
    op = condition.operation
    # An empty variable counts as unset
    if op is EnvVarOperation.EXISTS:
        return bool(environ.get(condition.value, ""))
    if op is EnvVarOperation.NOT_EXISTS:
        return not environ.get(condition.value, "")
    if op is EnvVarOperation.EQUALS:
        key, expected = parse_env_pair(condition.value)
        return environ.get(key, "") == expected
    if op is EnvVarOperation.CONTAINS:
        key, expected = parse_env_pair(condition.value)
        return expected in environ.get(key, "")
    return _unknown_operation(condition)


def _check_time_window(condition, context, now, environ) -> bool:
    start_time, end_time = parse_time_window(condition.value)
    current = now or datetime.datetime.now()
    # Both bounds are anchored to the current date
    start = datetime.datetime.combine(current.date(), start_time, tzinfo=current.tzinfo)
    end = datetime.datetime.combine(current.date(), end_time, tzinfo=current.tzinfo)

    op = condition.operation
    if op is TimeWindowOperation.WITHIN:
        return start < current < end
    if op is TimeWindowOperation.OUTSIDE:
        return current < start or current > end
    return _unknown_operation(condition)


def _check_file(condition, context, now, environ) -> bool:
    try:
        os.stat(condition.value)
        found = True
    except FileNotFoundError:
        found = False
    except OSError as e:
        logger.warning(f"Cannot stat '{condition.value}', condition will fail: {e}")
        return False

    op = condition.operation
    if op is FileOperation.EXISTS:
        return found
    if op is FileOperation.NOT_EXISTS:
        return not found
    return _unknown_operation(condition)


_CHECKS: dict[ConditionKind, _Check] = {
    ConditionKind.EXIT_CODE: _check_exit_code,
    ConditionKind.OUTPUT_CONTAINS: _check_output,
    ConditionKind.ENV_VAR: _check_env_var,
    ConditionKind.TIME_WINDOW: _check_time_window,
    ConditionKind.FILE_EXISTS: _check_file,
}
