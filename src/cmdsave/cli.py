# cmdsave/cli.py
from __future__ import annotations

import asyncio
import functools
import logging
import sys
from pathlib import Path

import click

from . import __version__
from .chain_runner import ChainRunner
from .command_record import Command, calculate_success_rate
from .exceptions import CmdsaveError
from .load_config import load_config
from .logging_config import setup_logging
from .record_store import RecordStore
from .recorder import execute_and_record, rerun
from .step_executor import StepExecutor
from .store_config import StoreConfig

logger = logging.getLogger(__name__)


def _split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def _error(message: str) -> None:
    click.secho(f"Error: {message}", fg="red", err=True)


def handle_errors(func):
    """Present any CmdsaveError as a diagnostic on stderr and exit 1."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except CmdsaveError as e:
            logger.debug("Command failed", exc_info=True)
            _error(str(e))
            sys.exit(1)

    return wrapper


def get_store(ctx: click.Context) -> RecordStore:
    """Load the store once per invocation."""
    if "store" not in ctx.obj:
        store = RecordStore(ctx.obj["config"])
        store.load()
        ctx.obj["store"] = store
    return ctx.obj["store"]


def print_command(cmd: Command) -> None:
    click.echo(f"#{cmd.id}: {cmd.raw}")
    click.echo(f"   Description: {cmd.description or 'No description'}")
    click.echo(f"   Directory: {cmd.working_dir or 'Current directory'}")
    if cmd.tags:
        click.echo(f"   Tags: {', '.join(cmd.tags)}")
    marker = " (favorite)" if cmd.is_favorite else ""
    click.echo(f"   Success rate: {cmd.success_rate:.1f}% ({cmd.run_count} runs){marker}")


# ─────────────────────────────────────────────────────────────────────────────
# Root group
# ─────────────────────────────────────────────────────────────────────────────
@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="TOML config file",
)
@click.option(
    "--store",
    "store_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="History file (overrides the config file)",
)
@click.option("-v", "--verbose", is_flag=True, default=False, help="Enable debug logging")
@click.option("--log-file", is_flag=True, default=False, help="Also write logs to the log file")
@click.version_option(__version__, prog_name="cmdsave")
@click.pass_context
def cli(ctx, config_path, store_path, verbose, log_file):
    """cmdsave: run shell commands, remember them, and chain them into workflows."""
    ctx.ensure_object(dict)
    setup_logging(level="DEBUG" if verbose else "WARNING", file=log_file, format="simple")

    try:
        config = load_config(config_path) if config_path else StoreConfig.default()
    except (CmdsaveError, OSError) as e:
        _error(f"Failed to load config: {e}")
        sys.exit(1)
    if store_path is not None:
        config = StoreConfig(
            path=store_path,
            shell=config.shell,
            step_timeout_secs=config.step_timeout_secs,
            cancel_grace_period=config.cancel_grace_period,
        )
    ctx.obj["config"] = config


# ─────────────────────────────────────────────────────────────────────────────
# Commands
# ─────────────────────────────────────────────────────────────────────────────
@cli.command(context_settings={"ignore_unknown_options": True})
@click.option("--tag", "tags", default=None, help="Comma-separated tags")
@click.option("--desc", "description", default="", help="Description")
@click.option("--dir", "save_dir", is_flag=True, default=False, help="Remember the working directory")
@click.argument("command", nargs=-1, required=True, type=click.UNPROCESSED)
@click.pass_context
@handle_errors
def run(ctx, tags, description, save_dir, command):
    """Run COMMAND and save it to the history."""
    store = get_store(ctx)
    recorded = asyncio.run(
        execute_and_record(
            store,
            " ".join(command),
            save_dir=save_dir,
            tags=_split_csv(tags),
            description=description,
        )
    )
    logger.info(f"Recorded command {recorded.id} (exit code {recorded.exit_code})")


@cli.command("rerun")
@click.argument("command_id", type=int)
@click.pass_context
@handle_errors
def rerun_command(ctx, command_id):
    """Run a saved command again."""
    asyncio.run(rerun(get_store(ctx), command_id))


@cli.command("list")
@click.option("--tag", default=None, help="Only commands with a matching tag")
@click.option("--dir", "directory", default=None, help="Only commands saved in a matching directory")
@click.option("--favorites", is_flag=True, default=False, help="Only favorite commands")
@click.pass_context
@handle_errors
def list_commands(ctx, tag, directory, favorites):
    """List saved commands."""
    store = get_store(ctx)
    commands = store.filter_by_tag(tag) if tag else store.commands
    if directory:
        in_dir = {c.id for c in store.filter_by_dir(directory)}
        commands = [c for c in commands if c.id in in_dir]
    if favorites:
        commands = [c for c in commands if c.is_favorite]

    if not commands:
        click.echo("No commands found")
        return
    for cmd in commands:
        print_command(cmd)


@cli.command()
@click.argument("query")
@click.pass_context
@handle_errors
def search(ctx, query):
    """Search command text, descriptions and tags."""
    matches = get_store(ctx).search(query)
    if not matches:
        click.echo(f"No commands matching '{query}'")
        return
    for cmd in matches:
        print_command(cmd)


@cli.command()
@click.argument("command_id", type=int)
@click.option("--unset", is_flag=True, default=False, help="Remove the favorite mark")
@click.pass_context
@handle_errors
def favorite(ctx, command_id, unset):
    """Mark a command as favorite."""
    get_store(ctx).set_favorite(command_id, not unset)
    if unset:
        click.echo(f"Removed favorite mark from command #{command_id}")
    else:
        click.echo(f"Marked command #{command_id} as favorite")


@cli.command()
@click.argument("command_id", type=int)
@click.option("--add", "add_tags", default=None, help="Comma-separated tags to add")
@click.option("--remove", "remove_tags", default=None, help="Comma-separated tags to remove")
@click.pass_context
@handle_errors
def tag(ctx, command_id, add_tags, remove_tags):
    """Add or remove tags on a command."""
    if not add_tags and not remove_tags:
        _error("tag requires --add and/or --remove")
        sys.exit(1)
    cmd = get_store(ctx).manipulate_tags(
        command_id, add=_split_csv(add_tags), remove=_split_csv(remove_tags)
    )
    click.echo(f"Tags for command #{command_id}: {', '.join(cmd.tags) or '(none)'}")


@cli.command()
@click.argument("command_id", type=int)
@click.argument("description")
@click.pass_context
@handle_errors
def describe(ctx, command_id, description):
    """Set a command's description."""
    get_store(ctx).set_description(command_id, description)
    click.echo(f"Updated description of command #{command_id}")


@cli.command()
@click.argument("command_ids", type=int, nargs=-1, required=True)
@click.pass_context
@handle_errors
def remove(ctx, command_ids):
    """Remove commands from the history."""
    removed = get_store(ctx).remove_commands(list(command_ids))
    click.echo(f"Removed {len(removed)} command(s): {', '.join(f'#{i}' for i in removed)}")


@cli.command("import")
@click.argument("source", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
@handle_errors
def import_commands(ctx, source):
    """Import commands from a JSON array file (IDs are reassigned)."""
    imported = get_store(ctx).import_commands(source)
    click.echo(f"Successfully imported {len(imported)} commands")


@cli.command("export")
@click.argument("destination", type=click.Path(dir_okay=False, path_type=Path))
@click.pass_context
@handle_errors
def export_commands(ctx, destination):
    """Export every command to a JSON array file."""
    count = get_store(ctx).export_commands(destination)
    click.echo(f"Exported {count} commands to {destination}")


@cli.command()
@click.pass_context
@handle_errors
def stats(ctx):
    """Show usage statistics."""
    s = get_store(ctx).stats()
    click.echo("Command Statistics:")
    click.echo(f"Total Runs: {s.total_runs}")
    click.echo(f"Success Rate: {s.success_rate:.2f}%")
    click.echo(f"Favorite Commands: {s.favorite_count}")
    click.echo("\nMost Used Tags:")
    for t in s.most_used_tags:
        click.echo(f"  - {t}")
    click.echo("\nMost Common Commands:")
    for c in s.common_commands:
        click.echo(f"  - {c}")


@cli.command()
@click.pass_context
@handle_errors
def tags(ctx):
    """List every tag with the number of commands carrying it."""
    counts = get_store(ctx).tag_counts()
    if not counts:
        click.echo("No tags found")
        return
    click.echo("Available tags (with usage count):")
    for name, count in counts:
        click.echo(f"  {name} ({count})")


@cli.command()
@click.option("--repair", is_flag=True, default=False, help="Fix what can be fixed automatically")
@click.pass_context
@handle_errors
def verify(ctx, repair):
    """Check the history file for integrity problems."""
    store = get_store(ctx)
    if repair:
        for fix in store.repair_integrity():
            click.echo(f"Repaired: {fix}")
    problems = store.verify_integrity()
    if problems:
        for problem in problems:
            _error(problem)
        sys.exit(1)
    click.echo("Data integrity verified successfully")


@cli.command("config-path")
@click.pass_context
def config_path(ctx):
    """Print the history file location."""
    click.echo(f"Config file location: {ctx.obj['config'].path}")


# ─────────────────────────────────────────────────────────────────────────────
# Chains
# ─────────────────────────────────────────────────────────────────────────────
@cli.group()
def chain():
    """Create, list and run command chains."""


@chain.command("create")
@click.argument("name")
@click.argument("description", default="")
@click.pass_context
@handle_errors
def chain_create(ctx, name, description):
    """Create an empty chain."""
    created = get_store(ctx).create_chain(name, description)
    click.echo(f"Created chain #{created.id}: {created.name}")


@chain.command("create-with-deps")
@click.argument("name")
@click.argument("description")
@click.argument("steps_file", type=click.Path(dir_okay=False, path_type=Path))
@click.argument("dependencies_file", type=click.Path(dir_okay=False, path_type=Path))
@click.pass_context
@handle_errors
def chain_create_with_deps(ctx, name, description, steps_file, dependencies_file):
    """Create a chain from a steps JSON file and a dependencies JSON file."""
    created = get_store(ctx).create_chain_from_files(name, description, steps_file, dependencies_file)
    click.echo(f"Successfully created chain #{created.id}: {created.name}")


@chain.command("list")
@click.pass_context
@handle_errors
def chain_list(ctx):
    """List chains."""
    chains = get_store(ctx).chains
    if not chains:
        click.echo("No command chains found")
        return
    click.echo("Available Command Chains:")
    for c in chains:
        click.echo(f"#{c.id} {c.name}")
        if c.description:
            click.echo(f"    Description: {c.description}")
        if c.dependency_ids:
            click.echo(f"    Depends on: {', '.join(f'#{d}' for d in c.dependency_ids)}")
        click.echo(
            f"    Steps: {len(c.steps)}, Runs: {c.run_count}, "
            f"Success Rate: {calculate_success_rate(c.run_count, c.success_count):.1f}%"
        )


@chain.command("run")
@click.argument("chain_id", type=int)
@click.option(
    "--continue-on-error",
    is_flag=True,
    default=False,
    help="Report a failed chain as a warning and exit 0",
)
@click.option(
    "--timeout",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Per-command deadline in seconds",
)
@click.pass_context
@handle_errors
def chain_run(ctx, chain_id, continue_on_error, timeout):
    """Run a chain and its dependencies."""
    store = get_store(ctx)
    runner = ChainRunner(store, StepExecutor(store, timeout_secs=timeout))
    try:
        asyncio.run(runner.run_chain(chain_id))
    except CmdsaveError as e:
        if not continue_on_error:
            _error(f"Error executing chain: {e}")
            sys.exit(1)
        click.secho(f"Warning: chain execution had errors: {e}", fg="yellow", err=True)
        return
    click.echo(f"Chain #{chain_id} completed successfully")


@chain.command("remove")
@click.argument("chain_id", type=int)
@click.pass_context
@handle_errors
def chain_remove(ctx, chain_id):
    """Remove a chain."""
    get_store(ctx).remove_chain(chain_id)
    click.echo(f"Removed chain #{chain_id}")


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
