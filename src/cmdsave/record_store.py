# cmdsave/record_store.py
"""
RecordStore - in-memory table of Commands and Chains backed by one JSON file.

The document has two top-level arrays, "commands" and "chains". Files written
by older versions held a bare array of commands; load() still reads them.
Every mutating operation saves immediately. There is no file locking: one
process at a time is assumed to own the history file.
"""

from __future__ import annotations

import json
import logging
from collections import Counter, deque
from pathlib import Path
from typing import Any

from .command_chain import ChainDependency, ChainStep, CommandChain
from .command_record import Command, Statistics, now
from .exceptions import (
    ChainNotFoundError,
    CommandNotFoundError,
    CyclicDependencyError,
    StoreError,
    ValidationError,
)
from .store_config import StoreConfig

logger = logging.getLogger(__name__)


class RecordStore:
    """
    Owns every Command and CommandChain.

    IDs come from two independent counters (commands, chains) seeded from the
    highest ID seen on load, so IDs are never reused within a process.
    """

    def __init__(self, config: StoreConfig | None = None):
        self.config = config or StoreConfig.default()
        self._commands: list[Command] = []
        self._chains: list[CommandChain] = []
        self._last_id = 0
        self._last_chain_id = 0
        self._stats = Statistics()

        logger.debug(f"Initialized RecordStore (path={self.config.path})")

    @property
    def path(self) -> Path:
        return self.config.path

    # ================================================================== #
    # Persistence
    # ================================================================== #
    def load(self) -> None:
        """
        Read the history file, creating an empty one if it does not exist.

        Raises:
            StoreError: If the file cannot be read or is not valid JSON
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreError(f"Failed to create config directory: {e}") from e

        if not self.path.exists():
            logger.info(f"No history file at {self.path}, creating an empty one")
            self._commands, self._chains = [], []
            self._seed_counters()
            self.save()
            return

        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "[]")
        except OSError as e:
            raise StoreError(f"Failed to read {self.path}: {e}") from e
        except json.JSONDecodeError as e:
            raise StoreError(f"History file {self.path} is not valid JSON: {e}") from e

        try:
            if isinstance(data, list):
                logger.info("Loading legacy history file (bare command list)")
                raw_commands, raw_chains = data, []
            elif isinstance(data, dict):
                raw_commands = data.get("commands") or []
                raw_chains = data.get("chains") or []
            else:
                raise StoreError(f"History file {self.path} has an unexpected top-level type")

            self._commands = [Command.from_dict(c) for c in raw_commands]
            self._chains = [CommandChain.from_dict(c, strict=False) for c in raw_chains]
        except ValidationError as e:
            raise StoreError(f"History file {self.path} contains an invalid record: {e}") from e

        self._seed_counters()
        self._update_stats()
        logger.debug(
            f"Loaded {len(self._commands)} commands and {len(self._chains)} chains "
            f"(last_id={self._last_id}, last_chain_id={self._last_chain_id})"
        )

    def save(self) -> None:
        """
        Write the full document back.

        Not transactional: a crash mid-write can leave a truncated file.
        Success counts above run counts are clamped before writing.
        """
        clamped = [cmd.id for cmd in self._commands if _clamp_success_count(cmd)]
        if clamped:
            logger.info(f"Clamped success counts of commands {clamped} before saving")
            self._update_stats()
        document = {
            "commands": [c.to_dict() for c in self._commands],
            "chains": [c.to_dict() for c in self._chains],
        }
        try:
            self.path.write_text(json.dumps(document, indent=4), encoding="utf-8")
        except OSError as e:
            raise StoreError(f"Failed to write {self.path}: {e}") from e
        logger.debug(f"Saved {len(self._commands)} commands and {len(self._chains)} chains")

    def _seed_counters(self) -> None:
        self._last_id = max((c.id for c in self._commands), default=0)
        self._last_chain_id = max((c.id for c in self._chains), default=0)

    def next_command_id(self) -> int:
        self._last_id += 1
        return self._last_id

    def next_chain_id(self) -> int:
        self._last_chain_id += 1
        return self._last_chain_id

    # ================================================================== #
    # Command queries
    # ================================================================== #
    @property
    def commands(self) -> list[Command]:
        return list(self._commands)

    def get_command(self, command_id: int) -> Command:
        for cmd in self._commands:
            if cmd.id == command_id:
                return cmd
        raise CommandNotFoundError(command_id)

    def has_command(self, command_id: int) -> bool:
        return any(c.id == command_id for c in self._commands)

    def search(self, query: str) -> list[Command]:
        """Case-insensitive match against command text, description and tags."""
        q = query.lower()
        return [
            c
            for c in self._commands
            if q in c.raw.lower() or q in c.description.lower() or c.has_tag(q)
        ]

    def filter_by_tag(self, tag: str) -> list[Command]:
        return [c for c in self._commands if c.has_tag(tag)]

    def filter_by_dir(self, directory: str) -> list[Command]:
        return [c for c in self._commands if c.working_dir and directory in c.working_dir]

    def favorites(self) -> list[Command]:
        return [c for c in self._commands if c.is_favorite]

    def tag_counts(self) -> list[tuple[str, int]]:
        """Every tag in use with its command count, most used first, ties by name."""
        counts = Counter(tag for c in self._commands for tag in c.tags)
        return sorted(counts.items(), key=lambda item: (-item[1], item[0]))

    def stats(self) -> Statistics:
        return self._stats

    def _update_stats(self) -> None:
        self._stats = Statistics.from_commands(self._commands)

    # ================================================================== #
    # Command mutations
    # ================================================================== #
    def add_command(self, command: Command) -> Command:
        """Assign a fresh ID to command, store it and save."""
        command.id = self.next_command_id()
        _clamp_success_count(command)
        self._commands.append(command)
        self._update_stats()
        self.save()
        logger.debug(f"Added command {command.id}: {command.raw!r}")
        return command

    def record_run(self, command_id: int, exit_code: int) -> Command:
        """Count one more run of an existing command."""
        cmd = self.get_command(command_id)
        cmd.run_count += 1
        if exit_code == 0:
            cmd.success_count += 1
        cmd.exit_code = exit_code
        self._update_stats()
        self.save()
        return cmd

    def remove_commands(self, ids: list[int]) -> list[int]:
        """
        Remove every command whose ID is in ids.

        Returns:
            The IDs actually removed

        Raises:
            CommandNotFoundError: If none of the IDs matched
        """
        if not ids:
            raise ValidationError("No command IDs given")
        to_remove = set(ids)
        removed = [c.id for c in self._commands if c.id in to_remove]
        if not removed:
            raise CommandNotFoundError(ids[0])
        self._commands = [c for c in self._commands if c.id not in to_remove]
        self._update_stats()
        self.save()
        logger.info(f"Removed commands {removed}")
        return removed

    def remove_command(self, command_id: int) -> None:
        self.remove_commands([command_id])

    def set_favorite(self, command_id: int, favorite: bool = True) -> Command:
        cmd = self.get_command(command_id)
        cmd.is_favorite = favorite
        self._update_stats()
        self.save()
        return cmd

    def add_tags(self, command_id: int, tags: list[str]) -> Command:
        """Append tags that are not already present, keeping order."""
        cmd = self.get_command(command_id)
        for tag in tags:
            if tag and tag not in cmd.tags:
                cmd.tags.append(tag)
        self._update_stats()
        self.save()
        return cmd

    def manipulate_tags(
        self, command_id: int, add: list[str] | None = None, remove: list[str] | None = None
    ) -> Command:
        """Add and remove tags in one edit; the resulting list is sorted."""
        cmd = self.get_command(command_id)
        tags = set(cmd.tags)
        tags.update(t for t in add or [] if t)
        tags.difference_update(remove or [])
        cmd.tags = sorted(tags)
        self._update_stats()
        self.save()
        return cmd

    def set_description(self, command_id: int, description: str) -> Command:
        cmd = self.get_command(command_id)
        cmd.description = description
        self.save()
        return cmd

    def import_commands(self, source: str | Path) -> list[Command]:
        """
        Append commands from a JSON array file, assigning fresh IDs.

        IDs carried by the imported records are ignored so they can never
        collide with existing ones.
        """
        try:
            data = json.loads(Path(source).read_text(encoding="utf-8"))
        except OSError as e:
            raise StoreError(f"Failed to read import file: {e}") from e
        except json.JSONDecodeError as e:
            raise ValidationError(f"Failed to parse import file: {e}") from e
        if not isinstance(data, list):
            raise ValidationError("Import file must contain a JSON array of commands")

        imported = [Command.from_dict(record) for record in data]
        for cmd in imported:
            original_id = cmd.id
            cmd.id = self.next_command_id()
            _clamp_success_count(cmd)
            self._commands.append(cmd)
            logger.debug(f"Imported command {original_id} as {cmd.id}")

        self._update_stats()
        self.save()
        logger.info(f"Imported {len(imported)} commands from {source}")
        return imported

    def export_commands(self, destination: str | Path) -> int:
        """Write every command as a JSON array; returns how many were written."""
        payload = [c.to_dict() for c in self._commands]
        try:
            Path(destination).write_text(json.dumps(payload, indent=4), encoding="utf-8")
        except OSError as e:
            raise StoreError(f"Failed to write export file: {e}") from e
        return len(payload)

    # ================================================================== #
    # Chains
    # ================================================================== #
    @property
    def chains(self) -> list[CommandChain]:
        return list(self._chains)

    def get_chain(self, chain_id: int) -> CommandChain:
        for chain in self._chains:
            if chain.id == chain_id:
                return chain
        raise ChainNotFoundError(chain_id)

    def create_chain(self, name: str, description: str = "") -> CommandChain:
        """Create a chain with no steps and no dependencies."""
        return self.add_chain(name, description, steps=[], dependencies=[])

    def add_chain(
        self,
        name: str,
        description: str = "",
        steps: list[ChainStep] | None = None,
        dependencies: list[ChainDependency] | None = None,
    ) -> CommandChain:
        """
        Validate and store a new chain.

        Raises:
            CommandNotFoundError: If a step references an unknown command
            ChainNotFoundError: If a dependency references an unknown chain
            CyclicDependencyError: If the dependencies would close a cycle
        """
        steps = steps or []
        dependencies = dependencies or []
        chain = CommandChain(name=name, description=description, steps=steps)

        for step in steps:
            for command_id in step.referenced_command_ids:
                if not self.has_command(command_id):
                    raise CommandNotFoundError(command_id)

        chain.id = self._last_chain_id + 1
        for dep in dependencies:
            dep.chain_id = chain.id
            for dep_id in dep.depends_on:
                if dep_id != chain.id and not any(c.id == dep_id for c in self._chains):
                    raise ChainNotFoundError(dep_id)
        chain.dependencies = dependencies
        self._check_acyclic(chain)

        chain.id = self.next_chain_id()
        self._chains.append(chain)
        self.save()
        logger.info(f"Created chain {chain.id} '{chain.name}' with {len(steps)} steps")
        return chain

    def create_chain_from_files(
        self,
        name: str,
        description: str,
        steps_path: str | Path,
        dependencies_path: str | Path,
    ) -> CommandChain:
        """Build a chain from two JSON documents: an array of steps and an array of dependencies."""
        raw_steps = _read_json_array(steps_path, "steps")
        raw_deps = _read_json_array(dependencies_path, "dependencies")
        steps = [ChainStep.from_dict(s) for s in raw_steps]
        dependencies = [ChainDependency.from_dict(d) for d in raw_deps]
        return self.add_chain(name, description, steps, dependencies)

    def remove_chain(self, chain_id: int) -> None:
        chain = self.get_chain(chain_id)
        dependents = [c.id for c in self._chains if chain_id in c.dependency_ids and c.id != chain_id]
        if dependents:
            raise ValidationError(f"Chain {chain_id} is a dependency of chains {dependents}")
        self._chains.remove(chain)
        self.save()

    def record_chain_run(self, chain_id: int, succeeded: bool) -> CommandChain:
        chain = self.get_chain(chain_id)
        chain.record_run(succeeded)
        self.save()
        logger.debug(
            f"Chain {chain_id} run recorded (succeeded={succeeded}, runs={chain.run_count}, "
            f"success_rate={chain.success_rate:.1f}%)"
        )
        return chain

    # ------------------------------------------------------------------ #
    # Dependency graph
    # ------------------------------------------------------------------ #
    def _dependency_graph(self, extra: CommandChain | None = None) -> dict[int, list[int]]:
        graph = {c.id: c.dependency_ids for c in self._chains}
        if extra is not None:
            graph[extra.id] = extra.dependency_ids
        return graph

    def _check_acyclic(self, chain: CommandChain) -> None:
        """Topologically sort everything reachable from chain; fail on a cycle."""
        graph = self._dependency_graph(extra=chain)

        reachable: set[int] = set()
        queue = deque([chain.id])
        while queue:
            node = queue.popleft()
            if node in reachable:
                continue
            reachable.add(node)
            queue.extend(d for d in graph.get(node, []) if d in graph)

        stuck = _topological_leftovers({n: [d for d in graph[n] if d in reachable] for n in reachable})
        if stuck:
            raise CyclicDependencyError(chain.id, stuck)

    def dependency_order(self) -> list[int]:
        """
        Chain IDs ordered so every chain comes after its dependencies.

        Raises:
            CyclicDependencyError: If the stored chains contain a cycle
        """
        graph = self._dependency_graph()
        order, stuck = _kahn({n: [d for d in deps if d in graph] for n, deps in graph.items()})
        if stuck:
            raise CyclicDependencyError(stuck[0], stuck)
        return order

    # ================================================================== #
    # Integrity
    # ================================================================== #
    def verify_integrity(self) -> list[str]:
        """Return every problem found in the loaded data (empty list = healthy)."""
        problems: list[str] = []

        seen: set[int] = set()
        for cmd in self._commands:
            if cmd.id in seen:
                problems.append(f"duplicate command ID found: {cmd.id}")
            seen.add(cmd.id)

        chain_ids: set[int] = set()
        for chain in self._chains:
            if chain.id in chain_ids:
                problems.append(f"duplicate chain ID found: {chain.id}")
            chain_ids.add(chain.id)

        for chain in self._chains:
            for dep_id in chain.dependency_ids:
                if dep_id not in chain_ids:
                    problems.append(f"chain {chain.id} depends on non-existent chain {dep_id}")
            for step in chain.steps:
                for command_id in step.referenced_command_ids:
                    if command_id not in seen:
                        problems.append(
                            f"chain {chain.id} references non-existent command {command_id}"
                        )

        for cmd in self._commands:
            if cmd.timestamp is None:
                problems.append(f"command {cmd.id} has invalid timestamp")
            if cmd.success_count > cmd.run_count:
                problems.append(f"command {cmd.id} has more successes than runs")

        try:
            self.dependency_order()
        except CyclicDependencyError as e:
            problems.append(str(e))

        return problems

    def repair_integrity(self) -> list[str]:
        """
        Fix what verify_integrity() reports, where a safe fix exists, and save.

        Dangling step references and dependency cycles are reported but left
        for the user to resolve.
        """
        fixes: list[str] = []

        seen: set[int] = set()
        kept_commands = []
        for cmd in self._commands:
            if cmd.id in seen:
                fixes.append(f"removed duplicate command {cmd.id}")
                continue
            seen.add(cmd.id)
            kept_commands.append(cmd)
        self._commands = kept_commands

        chain_ids: set[int] = set()
        kept_chains = []
        for chain in self._chains:
            if chain.id in chain_ids:
                fixes.append(f"removed duplicate chain {chain.id}")
                continue
            chain_ids.add(chain.id)
            kept_chains.append(chain)
        self._chains = kept_chains

        for chain in self._chains:
            for dep in chain.dependencies:
                dangling = [d for d in dep.depends_on if d not in chain_ids]
                if dangling:
                    dep.depends_on = [d for d in dep.depends_on if d in chain_ids]
                    fixes.append(f"chain {chain.id}: dropped dependencies on {dangling}")
            chain.dependencies = [d for d in chain.dependencies if d.depends_on]

        repaired_at = now()
        for cmd in self._commands:
            if cmd.timestamp is None:
                cmd.timestamp = repaired_at
                fixes.append(f"command {cmd.id}: reset timestamp")
            if _clamp_success_count(cmd):
                fixes.append(f"command {cmd.id}: clamped success count")

        self._update_stats()
        self.save()
        return fixes

    def __repr__(self) -> str:
        return (
            f"RecordStore(path={str(self.path)!r}, commands={len(self._commands)}, "
            f"chains={len(self._chains)})"
        )


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────
def _clamp_success_count(command: Command) -> bool:
    """Enforce success_count <= run_count; returns True if a change was made."""
    if command.success_count > command.run_count:
        logger.warning(
            f"Command {command.id} has {command.success_count} successes but "
            f"{command.run_count} runs, clamping"
        )
        command.success_count = command.run_count
        return True
    return False


def _kahn(graph: dict[int, list[int]]) -> tuple[list[int], list[int]]:
    """
    Kahn's algorithm over "node depends on deps" edges.

    Returns (order, stuck) where stuck lists nodes left on or behind a cycle.
    """
    indeg = {n: 0 for n in graph}
    dependents: dict[int, list[int]] = {n: [] for n in graph}
    for node, deps in graph.items():
        for dep in set(deps):
            indeg[node] += 1
            dependents[dep].append(node)

    queue = deque(sorted(n for n, d in indeg.items() if d == 0))
    order: list[int] = []
    while queue:
        node = queue.popleft()
        order.append(node)
        for child in sorted(dependents[node]):
            indeg[child] -= 1
            if indeg[child] == 0:
                queue.append(child)

    stuck = sorted(n for n, d in indeg.items() if d > 0)
    return order, stuck


def _topological_leftovers(graph: dict[int, list[int]]) -> list[int]:
    return _kahn(graph)[1]


def _read_json_array(path: str | Path, label: str) -> list[Any]:
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except OSError as e:
        raise ValidationError(f"Error reading {label} file: {e}") from e
    except json.JSONDecodeError as e:
        raise ValidationError(f"Error parsing {label} JSON: {e}") from e
    if not isinstance(data, list):
        raise ValidationError(f"{label.capitalize()} file must contain a JSON array")
    return data
