"""
CLI command for computing a plan.

Commands:
    landform plan <topology.yaml>                 - Show planned changes
    landform plan <topology.yaml> --refresh       - Read providers first (drift)
    landform plan <topology.yaml> --format json   - Output as JSON
"""

from __future__ import annotations

import argparse
import asyncio

from rich.table import Table

from landform.cli.common import add_common_arguments, build_engine, resolve_settings
from landform.cli.ux import console, header, info, warning
from landform.core.errors import ExitCode, main_with_error_handling
from landform.declaration import load_declaration
from landform.planning import Action, Plan
from landform.state.models import Intent

ACTION_STYLES = {
    Action.CREATE: ("+", "create"),
    Action.UPDATE: ("~", "update"),
    Action.DELETE: ("-", "delete"),
    Action.NOOP: (" ", "noop"),
}


@main_with_error_handling()
def plan_command(
    declaration_file: str,
    state_dir: str | None = None,
    refresh: bool = False,
    output_format: str = "text",
) -> int:
    """
    Show what apply would change, without changing anything.

    Exit codes:
        0 - Plan computed (with or without changes)
        10 - Configuration error (cycle, unresolved reference, bad file)
        13 - State could not be read

    Args:
        declaration_file: Path to the declaration YAML
        state_dir: Override for the state directory
        refresh: Read every recorded resource back before diffing
        output_format: "text" or "json"
    """
    declaration = load_declaration(declaration_file)
    settings = resolve_settings(state_dir=state_dir)
    engine = build_engine(declaration, settings)

    async def _plan() -> tuple[Plan, list[Intent]]:
        try:
            return (
                await engine.plan(declaration, refresh=refresh),
                await engine.pending_intents(),
            )
        finally:
            await engine.adapters.aclose()

    plan, intents = asyncio.run(_plan())

    if output_format == "json":
        data = plan.to_dict()
        data["pending_intents"] = [i.model_dump(mode="json") for i in intents]
        console.print_json(data=data)
    else:
        print_plan(plan)
        for intent in intents:
            warning(
                f"{intent.key} has an unfinished {intent.action} from run {intent.run_id}; "
                "the next apply settles it"
            )
    return ExitCode.SUCCESS


def print_plan(plan: Plan) -> None:
    """Print a plan as a table plus a one-line summary."""
    header("Plan")
    table = Table(show_header=True, header_style="bold")
    table.add_column("", width=1)
    table.add_column("Resource", style="cyan")
    table.add_column("Action")
    table.add_column("Reason", style="muted")

    for item in plan:
        symbol, style = ACTION_STYLES[item.action]
        table.add_row(
            f"[{style}]{symbol}[/]",
            str(item.key),
            f"[{style}]{item.action.value}[/]",
            item.reason,
        )
    console.print(table)

    for key, reason in plan.blocked.items():
        warning(f"{key} is blocked: {reason}")

    counts = plan.summary()
    console.print()
    if plan.has_changes:
        console.print(
            f"[bold]Plan:[/bold] {counts['create']} to create, "
            f"{counts['update']} to update, {counts['delete']} to delete."
        )
    else:
        info("No changes. Actual state matches the declaration.")


def register_plan_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register plan subcommand parser."""
    plan_parser = subparsers.add_parser("plan", help="Show planned changes")
    plan_parser.add_argument("declaration_file", help="Path to declaration YAML file")
    plan_parser.add_argument(
        "--refresh",
        action="store_true",
        help="Read resources from providers to detect drift",
    )
    plan_parser.add_argument(
        "--format",
        "-f",
        dest="output_format",
        choices=["text", "json"],
        default="text",
        help="Output format (default: text)",
    )
    add_common_arguments(plan_parser)


def handle_plan_command(args: argparse.Namespace) -> int:
    """Handle plan command from CLI args."""
    return plan_command(
        declaration_file=args.declaration_file,
        state_dir=getattr(args, "state_dir", None),
        refresh=getattr(args, "refresh", False),
        output_format=getattr(args, "output_format", "text"),
    )
