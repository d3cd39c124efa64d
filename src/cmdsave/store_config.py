from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from .exceptions import ConfigValidationError

logger = logging.getLogger(__name__)

HOME_ENV_VAR = "CMDSAVE_HOME"
"""When set, the history file lives at $CMDSAVE_HOME/history.json."""

DEFAULT_FILENAME = ".save_history.json"
DEV_FILENAME = "history.json"


@dataclass(frozen=True)
class StoreConfig:
    """
    Immutable configuration passed into RecordStore and StepExecutor.
    Used both when loading from TOML and when built programmatically.
    """

    path: Path
    """Location of the JSON history document (commands + chains)."""

    shell: str | None = None
    """
    Shell executable used to run command text.
    None → the platform default shell (/bin/sh on POSIX).
    """

    step_timeout_secs: float | None = None
    """
    Optional per-command deadline applied to every chain step.
    None → no deadline; a hung child blocks the chain until it exits.
    """

    cancel_grace_period: float = 3.0
    """Seconds to wait after SIGTERM before sending SIGKILL."""

    def __post_init__(self) -> None:
        if not str(self.path).strip():
            logger.warning("Invalid config: store path cannot be empty")
            raise ConfigValidationError("Store path cannot be empty")
        if not isinstance(self.path, Path):
            object.__setattr__(self, "path", Path(self.path))
        if self.step_timeout_secs is not None and self.step_timeout_secs <= 0:
            logger.warning("Invalid config: step_timeout_secs must be positive")
            raise ConfigValidationError("step_timeout_secs must be positive")
        if self.cancel_grace_period < 0:
            logger.warning("Invalid config: cancel_grace_period cannot be negative")
            raise ConfigValidationError("cancel_grace_period cannot be negative")

    @classmethod
    def default(cls) -> StoreConfig:
        """
        Build the default configuration.

        $CMDSAVE_HOME selects a development location (history.json inside it),
        otherwise the history is kept in ~/.save_history.json.
        """
        home = os.environ.get(HOME_ENV_VAR)
        if home:
            return cls(path=Path(home).expanduser() / DEV_FILENAME)
        return cls(path=Path.home() / DEFAULT_FILENAME)
