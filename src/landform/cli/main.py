"""Entry point for the ``landform`` command."""

from __future__ import annotations

import argparse
import sys
from typing import Sequence

from landform import __version__
from landform.cli.apply import handle_apply_command, register_apply_parser
from landform.cli.plan import handle_plan_command, register_plan_parser
from landform.cli.unlock import handle_unlock_command, register_unlock_parser
from landform.config import get_settings
from landform.logging import configure_logging

HANDLERS = {
    "plan": handle_plan_command,
    "apply": handle_apply_command,
    "unlock": handle_unlock_command,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="landform",
        description="Reconcile declared cloud topologies with their providers",
    )
    parser.add_argument("--version", action="version", version=f"landform {__version__}")
    parser.add_argument("--log-level", help="Log level (default: LANDFORM_LOG_LEVEL or INFO)")
    subparsers = parser.add_subparsers(dest="command", required=True)
    register_plan_parser(subparsers)
    register_apply_parser(subparsers)
    register_unlock_parser(subparsers)
    return parser


def run(argv: Sequence[str] | None = None) -> int:
    """Parse ``argv`` and run the selected command; returns its exit code."""
    args = build_parser().parse_args(argv)
    configure_logging((args.log_level or get_settings().log_level).upper())
    return HANDLERS[args.command](args)


def main(argv: Sequence[str] | None = None) -> None:
    sys.exit(run(argv))
