__version__ = "0.1.0"

import logging

from .chain_runner import ChainRunner, ChainRunResult
from .command_chain import ChainDependency, ChainStep, CommandChain, WaitPolicy
from .command_condition import (
    CommandCondition,
    ConditionKind,
    EnvVarOperation,
    ExitCodeOperation,
    FileOperation,
    OutputOperation,
    TimeWindowOperation,
    UnsupportedCondition,
)
from .command_record import Command, Statistics, calculate_success_rate
from .condition_evaluator import evaluate, evaluate_condition
from .exceptions import (
    ChainNotFoundError,
    CmdsaveError,
    CommandNotFoundError,
    ConfigValidationError,
    CyclicDependencyError,
    DependencyFailure,
    ExecutionError,
    NotFoundError,
    StepCancelledError,
    StepTimeoutError,
    StoreError,
    ValidationError,
)
from .load_config import load_config
from .logging_config import disable_logging, get_log_file_path, setup_logging
from .record_store import RecordStore
from .recorder import execute_and_record, rerun
from .run_result import RunResult, RunState
from .step_executor import StepExecutor
from .store_config import StoreConfig
from .types import ChainState, ExecutionContext, StepOutcome

logging.getLogger("cmdsave").addHandler(logging.NullHandler())

__all__ = [
    # Version
    "__version__",
    # Records
    "Command",
    "CommandChain",
    "ChainDependency",
    "ChainStep",
    "WaitPolicy",
    "CommandCondition",
    "ConditionKind",
    "EnvVarOperation",
    "ExitCodeOperation",
    "FileOperation",
    "OutputOperation",
    "TimeWindowOperation",
    "UnsupportedCondition",
    "Statistics",
    # Core Components
    "RecordStore",
    "StoreConfig",
    "load_config",
    "evaluate",
    "evaluate_condition",
    "StepExecutor",
    "ChainRunner",
    "ChainRunResult",
    "ChainState",
    "ExecutionContext",
    "StepOutcome",
    "RunResult",
    "RunState",
    "execute_and_record",
    "rerun",
    # Utilities
    "calculate_success_rate",
    "setup_logging",
    "disable_logging",
    "get_log_file_path",
    # Exceptions
    "CmdsaveError",
    "StoreError",
    "NotFoundError",
    "CommandNotFoundError",
    "ChainNotFoundError",
    "ValidationError",
    "ConfigValidationError",
    "ExecutionError",
    "StepTimeoutError",
    "StepCancelledError",
    "DependencyFailure",
    "CyclicDependencyError",
]
