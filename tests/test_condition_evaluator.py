# tests/test_condition_evaluator.py
import datetime
import logging

import pytest

from cmdsave.command_condition import CommandCondition, UnsupportedCondition
from cmdsave.condition_evaluator import evaluate, evaluate_condition
from cmdsave.types import ExecutionContext


def cond(kind, operation, value=""):
    return CommandCondition(kind=kind, operation=operation, value=value)


def at(hour, minute=0):
    return datetime.datetime(2024, 5, 1, hour, minute)


def test_empty_condition_list_is_true():
    assert evaluate([], ExecutionContext())


@pytest.mark.parametrize(
    "operation,value,last_exit,expected",
    [
        ("equals", "0", 0, True),
        ("equals", "0", 1, False),
        ("not_equals", "0", 2, True),
        ("less_than", "2", 1, True),
        ("greater_than", "2", 1, False),
        ("less_equals", "1", 1, True),
        ("greater_equals", "3", 1, False),
    ],
)
def test_exit_code(operation, value, last_exit, expected):
    ctx = ExecutionContext(last_exit_code=last_exit)
    assert evaluate([cond("exit_code", operation, value)], ctx) is expected


def test_output_operations():
    ctx = ExecutionContext(last_output="BUILD OK: 12 tests passed\n")
    assert evaluate([cond("output_contains", "contains", "OK")], ctx)
    assert evaluate([cond("output_contains", "not_contains", "FAIL")], ctx)
    assert evaluate([cond("output_contains", "starts_with", "BUILD")], ctx)
    assert evaluate([cond("output_contains", "ends_with", "passed\n")], ctx)
    assert evaluate([cond("output_contains", "matches", r"\d+ tests")], ctx)
    assert not evaluate([cond("output_contains", "matches", r"^\d+$")], ctx)


def test_env_var_uses_injected_environment():
    env = {"DEPLOY_ENV": "staging-eu", "EMPTY": ""}
    ctx = ExecutionContext()
    assert evaluate([cond("env_var", "exists", "DEPLOY_ENV")], ctx, environ=env)
    assert evaluate([cond("env_var", "not_exists", "MISSING")], ctx, environ=env)
    # Set but empty counts as unset
    assert not evaluate([cond("env_var", "exists", "EMPTY")], ctx, environ=env)
    assert evaluate([cond("env_var", "equals", "DEPLOY_ENV=staging-eu")], ctx, environ=env)
    assert evaluate([cond("env_var", "contains", "DEPLOY_ENV=staging")], ctx, environ=env)
    assert not evaluate([cond("env_var", "equals", "DEPLOY_ENV=prod")], ctx, environ=env)


def test_time_window_within_and_outside():
    window = "09:00-17:00"
    ctx = ExecutionContext()
    assert evaluate([cond("time_window", "within", window)], ctx, now=at(10))
    assert not evaluate([cond("time_window", "within", window)], ctx, now=at(20))
    assert evaluate([cond("time_window", "outside", window)], ctx, now=at(20))
    assert not evaluate([cond("time_window", "outside", window)], ctx, now=at(10))


def test_time_window_bounds_are_exclusive():
    ctx = ExecutionContext()
    assert not evaluate([cond("time_window", "within", "09:00-17:00")], ctx, now=at(9))
    assert not evaluate([cond("time_window", "outside", "09:00-17:00")], ctx, now=at(17))


def test_time_window_does_not_wrap_midnight():
    ctx = ExecutionContext()
    assert not evaluate([cond("time_window", "within", "22:00-02:00")], ctx, now=at(23))


def test_file_exists(tmp_path):
    present = tmp_path / "flag"
    present.write_text("x")
    ctx = ExecutionContext()
    assert evaluate([cond("file_exists", "exists", str(present))], ctx)
    assert evaluate([cond("file_exists", "not_exists", str(tmp_path / "nope"))], ctx)
    assert not evaluate([cond("file_exists", "exists", str(tmp_path / "nope"))], ctx)


def test_conditions_are_anded():
    ctx = ExecutionContext(last_exit_code=0, last_output="ok")
    conditions = [
        cond("exit_code", "equals", "0"),
        cond("output_contains", "contains", "missing"),
    ]
    assert not evaluate(conditions, ctx)


def test_unsupported_condition_fails_closed(caplog):
    unsupported = UnsupportedCondition("weather", "is", "sunny", reason="unknown type")
    with caplog.at_level(logging.WARNING, logger="cmdsave"):
        assert not evaluate_condition(unsupported, ExecutionContext())
    assert "Unsupported condition" in caplog.text


def test_unsupported_condition_short_circuits_list():
    conditions = [UnsupportedCondition("weather", "is", "sunny"), cond("exit_code", "equals", "0")]
    assert not evaluate(conditions, ExecutionContext())
