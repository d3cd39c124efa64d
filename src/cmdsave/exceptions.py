# cmdsave/exceptions.py
"""
Custom exception hierarchy for cmdsave.

All cmdsave-specific exceptions inherit from CmdsaveError to enable
catch-all error handling at the CLI boundary while still providing specific
exception types for the store, the step executor and the chain runner.
"""

from __future__ import annotations


class CmdsaveError(Exception):
    """
    Base exception for all cmdsave errors.

    Catch this to handle any cmdsave-specific error.
    """

    pass


class StoreError(CmdsaveError):
    """Raised when the history file cannot be read, parsed or written."""

    pass


# ─────────────────────────────────────────────────────────────────────────────
# Lookup failures
# ─────────────────────────────────────────────────────────────────────────────
class NotFoundError(CmdsaveError):
    """Raised when a referenced command or chain ID is absent from the store."""

    pass


class CommandNotFoundError(NotFoundError):
    """
    Raised when a command ID is not in the store.

    Example:
        >>> store.get_command(42)
        CommandNotFoundError: Command with ID 42 not found
    """

    def __init__(self, command_id: int):
        self.command_id = command_id
        super().__init__(f"Command with ID {command_id} not found")


class ChainNotFoundError(NotFoundError):
    """Raised when a chain ID is not in the store."""

    def __init__(self, chain_id: int):
        self.chain_id = chain_id
        super().__init__(f"Chain with ID {chain_id} not found")


# ─────────────────────────────────────────────────────────────────────────────
# Validation
# ─────────────────────────────────────────────────────────────────────────────
class ValidationError(CmdsaveError):
    """
    Raised for malformed user input.

    Examples include an empty command text, invalid JSON chain definitions,
    and conditions whose kind, operation or value cannot be understood.
    """

    pass


class ConfigValidationError(ValidationError):
    """
    Raised when StoreConfig validation fails or a TOML config file is malformed.

    Example:
        >>> StoreConfig(path=Path("h.json"), step_timeout_secs=0)
        ConfigValidationError: step_timeout_secs must be positive
    """

    pass


# ─────────────────────────────────────────────────────────────────────────────
# Execution
# ─────────────────────────────────────────────────────────────────────────────
class ExecutionError(CmdsaveError):
    """
    Raised when a command's child process fails or cannot be started.

    Attributes:
        command_id: ID of the command that failed
        reason: Short description of the failure (exit code, spawn error, ...)
        output: Combined stdout/stderr captured before the failure
    """

    def __init__(self, command_id: int, reason: str, output: str = ""):
        self.command_id = command_id
        self.reason = reason
        self.output = output
        message = f"Command {command_id} failed: {reason}"
        if output.strip():
            message += f"\n{output.rstrip()}"
        super().__init__(message)


class StepTimeoutError(ExecutionError):
    """
    Raised when a command exceeds its per-step deadline and is killed.

    Attributes:
        timeout_secs: The deadline that was exceeded
    """

    def __init__(self, command_id: int, timeout_secs: float, output: str = ""):
        self.timeout_secs = timeout_secs
        super().__init__(command_id, f"timed out after {timeout_secs:g} seconds", output)


class StepCancelledError(ExecutionError):
    """Raised when a command is stopped because its cancellation token fired."""

    def __init__(self, command_id: int, output: str = ""):
        super().__init__(command_id, "cancelled", output)


# ─────────────────────────────────────────────────────────────────────────────
# Chains
# ─────────────────────────────────────────────────────────────────────────────
class DependencyFailure(CmdsaveError):
    """
    Raised when a dependency chain fails, preserving which chain and why.

    Attributes:
        chain_id: The chain whose dependency failed
        dependency_id: The dependency chain that failed (last one tried for ANY)
        cause: The underlying error raised by the dependency run
    """

    def __init__(self, chain_id: int, dependency_id: int, cause: Exception, *, policy: str = "all"):
        self.chain_id = chain_id
        self.dependency_id = dependency_id
        self.cause = cause
        self.policy = policy
        if policy == "any":
            message = (
                f"Chain {chain_id}: all dependency chains failed, "
                f"last error (chain {dependency_id}): {cause}"
            )
        else:
            message = f"Chain {chain_id}: dependency chain {dependency_id} failed: {cause}"
        super().__init__(message)


class CyclicDependencyError(CmdsaveError):
    """
    Raised when chain dependencies form a cycle.

    Attributes:
        chain_id: The chain that would be re-entered
        cycle_path: Ordered list of chain IDs leading up to the re-entry
    """

    def __init__(self, chain_id: int, cycle_path: list[int]):
        self.chain_id = chain_id
        self.cycle_path = cycle_path
        cycle_display = " -> ".join(str(c) for c in [*cycle_path, chain_id])
        super().__init__(f"Dependency cycle detected: {cycle_display}")
