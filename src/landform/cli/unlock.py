"""
CLI command for breaking a stale per-resource lock.

Commands:
    landform unlock <kind.name>    - Remove the lock file left by a dead run
"""

from __future__ import annotations

import argparse
import asyncio

from landform.cli.common import add_common_arguments, resolve_settings
from landform.cli.ux import info, success
from landform.core.errors import ConfigurationError, ExitCode, main_with_error_handling
from landform.model import ResourceKey
from landform.state import FileStateStore


@main_with_error_handling()
def unlock_command(resource: str, state_dir: str | None = None) -> int:
    """Break the lock on ``resource``. Only safe when no run holds it."""
    try:
        key = ResourceKey.parse(resource)
    except ValueError as e:
        raise ConfigurationError(str(e), {"resource": resource}) from e

    settings = resolve_settings(state_dir=state_dir)
    store = FileStateStore(settings.state_dir)
    if asyncio.run(store.break_lock(key)):
        success(f"Lock on {key} removed")
    else:
        info(f"{key} is not locked")
    return ExitCode.SUCCESS


def register_unlock_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register unlock subcommand parser."""
    unlock_parser = subparsers.add_parser("unlock", help="Break a stale resource lock")
    unlock_parser.add_argument("resource", help="Resource key as kind.name")
    add_common_arguments(unlock_parser)


def handle_unlock_command(args: argparse.Namespace) -> int:
    """Handle unlock command from CLI args."""
    return unlock_command(resource=args.resource, state_dir=getattr(args, "state_dir", None))
