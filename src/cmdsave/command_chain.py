# cmdsave/command_chain.py
from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .command_condition import AnyCondition, CommandCondition
from .command_record import calculate_success_rate, format_timestamp, now, parse_timestamp
from .exceptions import ValidationError

logger = logging.getLogger(__name__)


class WaitPolicy(str, Enum):
    """How many of a dependency edge's chains must succeed."""

    ALL = "all"
    ANY = "any"


def _int_list(data: dict[str, Any], key: str) -> list[int]:
    values = data.get(key) or []
    if not isinstance(values, list):
        raise ValidationError(f"'{key}' must be a list of IDs")
    try:
        return [int(v) for v in values]
    except (TypeError, ValueError):
        raise ValidationError(f"'{key}' must contain only integer IDs, got {values!r}") from None


# ─────────────────────────────────────────────────────────────────────────────
# Dependencies
# ─────────────────────────────────────────────────────────────────────────────
@dataclass
class ChainDependency:
    """A set of chains that must finish before chain_id runs its own steps."""

    chain_id: int
    depends_on: list[int] = field(default_factory=list)
    wait_policy: WaitPolicy = WaitPolicy.ALL

    def __post_init__(self) -> None:
        try:
            self.wait_policy = WaitPolicy(self.wait_policy)
        except ValueError:
            raise ValidationError(
                f"Invalid wait_policy '{self.wait_policy}': must be 'all' or 'any'"
            ) from None

    def to_dict(self) -> dict[str, Any]:
        return {
            "chain_id": self.chain_id,
            "depends_on": list(self.depends_on),
            "wait_policy": self.wait_policy.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, strict: bool = True) -> ChainDependency:
        """
        Build a dependency from JSON.

        A missing wait_policy means "all". With strict=False an unknown policy
        is logged and treated as "all".
        """
        if not isinstance(data, dict):
            raise ValidationError(f"Dependency must be an object, got {type(data).__name__}")
        policy = data.get("wait_policy") or WaitPolicy.ALL.value
        if not strict and policy not in {p.value for p in WaitPolicy}:
            logger.warning(f"Unknown wait_policy '{policy}' in history file, using 'all'")
            policy = WaitPolicy.ALL.value
        try:
            chain_id = int(data.get("chain_id", 0))
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid dependency chain_id {data.get('chain_id')!r}") from None
        return cls(
            chain_id=chain_id,
            depends_on=_int_list(data, "depends_on"),
            wait_policy=policy,
        )


# ─────────────────────────────────────────────────────────────────────────────
# Steps
# ─────────────────────────────────────────────────────────────────────────────
@dataclass
class ChainStep:
    """
    One unit of chain execution.

    The primary command runs (together with parallel_with peers, if any) when
    every condition holds; on_success / on_failure handlers follow depending on
    the primary's outcome only.
    """

    command_id: int
    conditions: list[AnyCondition] = field(default_factory=list)
    parallel_with: list[int] = field(default_factory=list)
    on_success: list[int] = field(default_factory=list)
    on_failure: list[int] = field(default_factory=list)

    @property
    def referenced_command_ids(self) -> list[int]:
        """Every command ID the step may run, primary first."""
        return [self.command_id, *self.parallel_with, *self.on_success, *self.on_failure]

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"command_id": self.command_id}
        if self.conditions:
            data["conditions"] = [c.to_dict() for c in self.conditions]
        if self.parallel_with:
            data["parallel_with"] = list(self.parallel_with)
        if self.on_success:
            data["on_success"] = list(self.on_success)
        if self.on_failure:
            data["on_failure"] = list(self.on_failure)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, strict: bool = True) -> ChainStep:
        if not isinstance(data, dict):
            raise ValidationError(f"Step must be an object, got {type(data).__name__}")
        if "command_id" not in data:
            raise ValidationError("Step is missing 'command_id'")
        try:
            command_id = int(data["command_id"])
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid step command_id {data['command_id']!r}") from None

        raw_conditions = data.get("conditions") or []
        if not isinstance(raw_conditions, list):
            raise ValidationError("'conditions' must be a list")

        return cls(
            command_id=command_id,
            conditions=[CommandCondition.from_dict(c, strict=strict) for c in raw_conditions],
            parallel_with=_int_list(data, "parallel_with"),
            on_success=_int_list(data, "on_success"),
            on_failure=_int_list(data, "on_failure"),
        )


# ─────────────────────────────────────────────────────────────────────────────
# Chains
# ─────────────────────────────────────────────────────────────────────────────
@dataclass
class CommandChain:
    """A named, ordered workflow of steps with optional chain dependencies."""

    name: str
    id: int = 0
    description: str = ""
    steps: list[ChainStep] = field(default_factory=list)
    dependencies: list[ChainDependency] = field(default_factory=list)
    created_at: datetime.datetime | None = field(default_factory=now)
    last_run: datetime.datetime | None = None

    run_count: int = 0
    success_count: int = 0
    success_rate: float = 0.0
    """Percentage of successful runs over the chain's history."""

    def __post_init__(self) -> None:
        if not self.name.strip():
            raise ValidationError("Chain name cannot be empty")

    @property
    def dependency_ids(self) -> list[int]:
        """Every chain ID this chain depends on, in declaration order."""
        return [dep_id for dep in self.dependencies for dep_id in dep.depends_on]

    def record_run(self, succeeded: bool, when: datetime.datetime | None = None) -> None:
        """Update run statistics at the end of a chain run."""
        self.run_count += 1
        if succeeded:
            self.success_count += 1
        self.success_rate = calculate_success_rate(self.run_count, self.success_count)
        self.last_run = when or now()

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id, "name": self.name}
        if self.description:
            data["description"] = self.description
        data["steps"] = [s.to_dict() for s in self.steps]
        if self.dependencies:
            data["dependencies"] = [d.to_dict() for d in self.dependencies]
        data["created_at"] = format_timestamp(self.created_at)
        data["last_run"] = format_timestamp(self.last_run)
        data["success_rate"] = self.success_rate
        data["run_count"] = self.run_count
        data["success_count"] = self.success_count
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, strict: bool = True) -> CommandChain:
        if not isinstance(data, dict):
            raise ValidationError(f"Chain record must be an object, got {type(data).__name__}")
        try:
            run_count = int(data.get("run_count", 0))
            success_rate = float(data.get("success_rate", 0.0))
            if "success_count" in data:
                success_count = int(data["success_count"])
            else:
                # Older files only kept the rate
                success_count = round(success_rate * run_count / 100)
            chain_id = int(data.get("id", 0))
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Invalid chain record: {e}") from None

        return cls(
            name=data.get("name", "") or "",
            id=chain_id,
            description=data.get("description", "") or "",
            steps=[ChainStep.from_dict(s, strict=strict) for s in data.get("steps") or []],
            dependencies=[
                ChainDependency.from_dict(d, strict=strict) for d in data.get("dependencies") or []
            ],
            created_at=parse_timestamp(data.get("created_at")),
            last_run=parse_timestamp(data.get("last_run")),
            run_count=run_count,
            success_count=success_count,
            success_rate=success_rate,
        )

    def __repr__(self) -> str:
        return (
            f"CommandChain(id={self.id}, name={self.name!r}, steps={len(self.steps)}, "
            f"dependencies={self.dependency_ids})"
        )
