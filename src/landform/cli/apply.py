"""
CLI command for applying a declaration.

Commands:
    landform apply <topology.yaml>                       - Reconcile resources
    landform apply <topology.yaml> --concurrency 4       - Limit parallel calls
    landform apply <topology.yaml> --timeout 600         - Stop scheduling after 10m
    landform apply <topology.yaml> --format json         - Output as JSON

Exit codes follow ApplyReport: 0 everything succeeded, 1 partial failure,
11 nothing could be applied, 10/12/13 for configuration, concurrency and
state errors raised before execution.
"""

from __future__ import annotations

import argparse
import asyncio
import json

from rich.table import Table

from landform.cli.common import add_common_arguments, build_engine, resolve_settings
from landform.cli.ux import console, error, header, success, warning
from landform.core.errors import main_with_error_handling
from landform.declaration import load_declaration
from landform.execution import ApplyReport, Outcome

OUTCOME_STYLES = {
    Outcome.SUCCESS: "success",
    Outcome.NOOP: "muted",
    Outcome.FAILED: "error",
    Outcome.SKIPPED: "warning",
}


@main_with_error_handling()
def apply_command(
    declaration_file: str,
    state_dir: str | None = None,
    concurrency: int | None = None,
    timeout: float | None = None,
    destroy_policy: str | None = None,
    refresh: bool = False,
    output_format: str = "text",
) -> int:
    """
    Apply a declaration: create, update and delete resources as planned.

    Args:
        declaration_file: Path to the declaration YAML
        state_dir: Override for the state directory
        concurrency: Maximum number of resources applied at once
        timeout: Seconds after which no new operations are started
        destroy_policy: "combined" or "separate"
        refresh: Read every recorded resource back before diffing
        output_format: "text" or "json"

    Returns:
        Exit code of the apply report
    """
    declaration = load_declaration(declaration_file)
    settings = resolve_settings(
        state_dir=state_dir,
        concurrency=concurrency,
        destroy_policy=destroy_policy,
    )
    engine = build_engine(declaration, settings)

    async def _apply() -> ApplyReport:
        try:
            return await engine.apply(declaration, timeout=timeout, refresh=refresh)
        finally:
            await engine.adapters.aclose()

    report = asyncio.run(_apply())

    if output_format == "json":
        console.print_json(json.dumps(report.to_dict(), default=str))
    else:
        print_report(report)
    return report.exit_code


def print_report(report: ApplyReport) -> None:
    """Print per-resource outcomes, outputs and a summary line."""
    header("Apply")
    table = Table(show_header=True, header_style="bold")
    table.add_column("Resource", style="cyan")
    table.add_column("Action")
    table.add_column("Outcome")
    table.add_column("Detail", style="muted")

    for result in report.results:
        style = OUTCOME_STYLES[result.outcome]
        detail = result.error or result.reason or ""
        if result.attempts > 1:
            detail = f"{detail} ({result.attempts} attempts)".strip()
        table.add_row(
            str(result.key),
            result.action.value if result.action else "-",
            f"[{style}]{result.outcome.value}[/]",
            detail,
        )
    console.print(table)

    if report.outputs:
        console.print()
        console.print("[bold]Outputs:[/bold]")
        for name, value in report.outputs.items():
            console.print(f"  [cyan]{name}:[/cyan] {value}")

    counts = report.summary()
    console.print()
    line = (
        f"{counts['success']} applied, {counts['no-op']} unchanged, "
        f"{counts['failed']} failed, {counts['skipped']} skipped "
        f"in {report.duration_seconds:.1f}s"
    )
    if report.cancelled:
        warning(f"Run cancelled: {line}")
    elif report.success:
        success(line)
    else:
        error(line)


def register_apply_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register apply subcommand parser."""
    apply_parser = subparsers.add_parser("apply", help="Apply a declaration")
    apply_parser.add_argument("declaration_file", help="Path to declaration YAML file")
    apply_parser.add_argument(
        "--concurrency",
        "-c",
        type=int,
        help="Maximum parallel resource operations (default: LANDFORM_CONCURRENCY or 10)",
    )
    apply_parser.add_argument(
        "--timeout",
        type=float,
        help="Stop starting new operations after this many seconds",
    )
    apply_parser.add_argument(
        "--destroy-policy",
        choices=["combined", "separate"],
        help="Run deletes with the other changes or after them",
    )
    apply_parser.add_argument(
        "--refresh",
        action="store_true",
        help="Read resources from providers to detect drift before planning",
    )
    apply_parser.add_argument(
        "--format",
        "-f",
        dest="output_format",
        choices=["text", "json"],
        default="text",
        help="Output format (default: text)",
    )
    add_common_arguments(apply_parser)


def handle_apply_command(args: argparse.Namespace) -> int:
    """Handle apply command from CLI args."""
    return apply_command(
        declaration_file=args.declaration_file,
        state_dir=getattr(args, "state_dir", None),
        concurrency=getattr(args, "concurrency", None),
        timeout=getattr(args, "timeout", None),
        destroy_policy=getattr(args, "destroy_policy", None),
        refresh=getattr(args, "refresh", False),
        output_format=getattr(args, "output_format", "text"),
    )
