# cmdsave/command_record.py
from __future__ import annotations

import datetime
import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from .exceptions import ValidationError

logger = logging.getLogger(__name__)

# Go-style RFC 3339 timestamps may carry nanoseconds; Python keeps microseconds.
_FRACTION_RE = re.compile(r"(\.\d{6})\d+")
_ZERO_YEAR = 1


# ─────────────────────────────────────────────────────────────────────────────
# Timestamp helpers (shared with command_chain)
# ─────────────────────────────────────────────────────────────────────────────
def now() -> datetime.datetime:
    """Current local time, timezone-aware."""
    return datetime.datetime.now().astimezone()


def parse_timestamp(value: str | None) -> datetime.datetime | None:
    """
    Parse an RFC 3339 timestamp as written to the history file.

    The zero time ("0001-01-01T00:00:00Z") and missing values map to None.
    """
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    text = _FRACTION_RE.sub(r"\1", text)
    try:
        parsed = datetime.datetime.fromisoformat(text)
    except ValueError:
        logger.warning(f"Unparseable timestamp '{value}', treating as unset")
        return None
    if parsed.year == _ZERO_YEAR:
        return None
    return parsed


def format_timestamp(value: datetime.datetime | None) -> str:
    """Inverse of parse_timestamp(); None becomes the zero time."""
    if value is None:
        return "0001-01-01T00:00:00Z"
    return value.isoformat()


# ─────────────────────────────────────────────────────────────────────────────
# Command record
# ─────────────────────────────────────────────────────────────────────────────
@dataclass
class Command:
    """
    One saved shell command plus its usage metadata.

    Owned by RecordStore; mutate it through store operations so every change
    is persisted and success_count never exceeds run_count.
    """

    raw: str
    """Command text exactly as it is passed to the shell."""

    id: int = 0
    """Unique ID assigned by RecordStore (0 = not yet stored)."""

    timestamp: datetime.datetime | None = field(default_factory=now)
    """When the command was first recorded."""

    working_dir: str | None = None
    """Directory the command was recorded in, if the user asked to save it."""

    exit_code: int = 0
    """Exit code of the most recent run."""

    tags: list[str] = field(default_factory=list)
    description: str = ""
    is_favorite: bool = False
    run_count: int = 0
    success_count: int = 0

    def __post_init__(self) -> None:
        if not self.raw.strip():
            raise ValidationError("Command cannot be empty")

    @property
    def success_rate(self) -> float:
        """Percentage of successful runs (0.0 if never run)."""
        return calculate_success_rate(self.run_count, self.success_count)

    def has_tag(self, query: str) -> bool:
        """Case-insensitive substring match against any tag."""
        query = query.lower()
        return any(query in tag.lower() for tag in self.tags)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the JSON shape used by the history file."""
        data: dict[str, Any] = {
            "command": self.raw,
            "timestamp": format_timestamp(self.timestamp),
        }
        if self.working_dir:
            data["working_dir"] = self.working_dir
        data["exit_code"] = self.exit_code
        data["id"] = self.id
        if self.tags:
            data["tags"] = list(self.tags)
        if self.description:
            data["description"] = self.description
        data["is_favorite"] = self.is_favorite
        data["run_count"] = self.run_count
        data["success_count"] = self.success_count
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Command:
        """Build a Command from a history-file record."""
        if not isinstance(data, dict):
            raise ValidationError(f"Command record must be an object, got {type(data).__name__}")
        try:
            return cls(
                raw=data.get("command", ""),
                id=int(data.get("id", 0)),
                timestamp=parse_timestamp(data.get("timestamp")),
                working_dir=data.get("working_dir") or None,
                exit_code=int(data.get("exit_code", 0)),
                tags=list(data.get("tags") or []),
                description=data.get("description", "") or "",
                is_favorite=bool(data.get("is_favorite", False)),
                run_count=int(data.get("run_count", 0)),
                success_count=int(data.get("success_count", 0)),
            )
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Invalid command record: {e}") from None

    def __repr__(self) -> str:
        return f"Command(id={self.id}, raw={self.raw!r}, runs={self.run_count})"


def calculate_success_rate(total: int, success: int) -> float:
    if total == 0:
        return 0.0
    return success / total * 100


# ─────────────────────────────────────────────────────────────────────────────
# Aggregate statistics
# ─────────────────────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class Statistics:
    """Aggregate usage numbers across every stored command."""

    total_runs: int = 0
    success_count: int = 0
    success_rate: float = 0.0
    favorite_count: int = 0
    most_used_tags: list[str] = field(default_factory=list)
    common_commands: list[str] = field(default_factory=list)

    @classmethod
    def from_commands(cls, commands: list[Command], top_n: int = 5) -> Statistics:
        tag_count: Counter[str] = Counter()
        cmd_count: Counter[str] = Counter()
        total_runs = success = favorites = 0

        for cmd in commands:
            total_runs += cmd.run_count
            success += cmd.success_count
            if cmd.is_favorite:
                favorites += 1
            tag_count.update(cmd.tags)
            cmd_count[cmd.raw] += 1

        return cls(
            total_runs=total_runs,
            success_count=success,
            success_rate=calculate_success_rate(total_runs, success),
            favorite_count=favorites,
            most_used_tags=[tag for tag, _ in tag_count.most_common(top_n)],
            common_commands=[raw for raw, _ in cmd_count.most_common(top_n)],
        )
