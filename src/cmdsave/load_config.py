from __future__ import annotations

import logging
from pathlib import Path
from typing import BinaryIO, TextIO

try:
    import tomllib as tomli  # Python 3.11+
except ImportError:
    import tomli  # <3.11

from .exceptions import ConfigValidationError
from .store_config import StoreConfig

logger = logging.getLogger(__name__)


# =====================================================================
#   Main loader
# =====================================================================
def load_config(path: str | Path | BinaryIO | TextIO) -> StoreConfig:
    """
    Load and validate a TOML config file into a StoreConfig.
    Resolves a relative [store] path relative to the config file location.
    """
    config_path: Path | None = None
    if not hasattr(path, "read"):
        config_path = Path(path).resolve()
        with open(config_path, "rb") as f:
            data = _parse(f)
    else:
        data = _parse(path)

    base_dir = config_path.parent if config_path else Path.cwd()

    # ────── Parse [store] section ──────
    store_dict = data.get("store", {})
    if not isinstance(store_dict, dict):
        raise ConfigValidationError("[store] must be a table")
    unknown = set(store_dict) - {"path"}
    if unknown:
        raise ConfigValidationError(f"Invalid config in [store]: unknown keys {sorted(unknown)}")

    if store_dict.get("path"):
        store_path = Path(store_dict["path"]).expanduser()
        if not store_path.is_absolute():
            store_path = base_dir / store_path
    else:
        store_path = StoreConfig.default().path

    # ────── Parse [execution] section ──────
    execution_dict = data.get("execution", {})
    if not isinstance(execution_dict, dict):
        raise ConfigValidationError("[execution] must be a table")

    try:
        config = StoreConfig(path=store_path, **execution_dict)
    except TypeError as e:
        raise ConfigValidationError(f"Invalid config in [execution]: {e}") from None

    logger.debug(
        f"Loaded config (path={config.path}, shell={config.shell}, "
        f"step_timeout_secs={config.step_timeout_secs})"
    )
    return config


def _parse(stream: BinaryIO | TextIO) -> dict:
    try:
        raw = stream.read()
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return tomli.loads(raw)
    except tomli.TOMLDecodeError as e:
        raise ConfigValidationError(f"Invalid TOML: {e}") from None
