"""Tideflow CLI - headless inspection and verification commands.

Command structure: tideflow <domain> <verb> [args] [--options]

Examples:
    tideflow verify --workspace ./my-repo
    tideflow checklist show
    tideflow checklist next CHECKLIST.md
    tideflow fsm show snapshot.json
    tideflow fsm transitions
"""

import asyncio
import json
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from tideflow.config.logging_setup import configure_logging
from tideflow.config.settings import TideflowSettings, get_settings
from tideflow.core.checklist import ChecklistParser
from tideflow.core.documents import FileDocumentValidator
from tideflow.core.errors import InvalidSerializedStateError
from tideflow.core.state_machine import TRANSITIONS, WorkflowFSM
from tideflow.verification.pipeline import VerificationPipeline

app = typer.Typer(
    name="tideflow",
    help="Tideflow: gated autonomous workflow tooling",
    add_completion=False,
    no_args_is_help=True,
)

checklist_app = typer.Typer(
    name="checklist",
    help="Inspect the project checklist",
    no_args_is_help=True,
)

fsm_app = typer.Typer(
    name="fsm",
    help="Inspect workflow state machine snapshots",
    no_args_is_help=True,
)

console = Console()


def _status(passed: bool) -> str:
    return "[green]PASSED[/green]" if passed else "[red]FAILED[/red]"


def _load_settings(**overrides) -> TideflowSettings:
    try:
        return get_settings(**overrides)
    except ValueError as e:
        console.print(f"[red]Error:[/red] Invalid configuration: {e}")
        raise typer.Exit(1)


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        help="Override TIDEFLOW_LOG_LEVEL (DEBUG, INFO, WARNING, ERROR)",
    ),
) -> None:
    """Configure logging before any command runs."""
    overrides = {"log_level": log_level} if log_level else {}
    settings = _load_settings(**overrides)
    configure_logging(settings.log_level, settings.log_file)


# =============================================================================
# Root-level commands
# =============================================================================


@app.command()
def verify(
    workspace_path: Optional[Path] = typer.Option(
        None,
        "--workspace",
        "-w",
        help="Workspace path (defaults to current directory)",
    ),
) -> None:
    """Run the verification pipeline (type-check, lint, tests, build).

    Example:
        tideflow verify
        tideflow verify --workspace ./my-repo
    """
    path = workspace_path or Path.cwd()
    if not path.is_dir():
        console.print(f"[red]Error:[/red] Workspace not found: {path}")
        raise typer.Exit(1)

    settings = _load_settings(workspace_root=path)
    validator = FileDocumentValidator(
        settings.resolve(settings.changelog_path),
        settings.resolve(settings.checklist_path),
    )
    pipeline = VerificationPipeline(
        path,
        settings=settings.verification,
        document_validator=validator,
    )

    console.print("\n[bold]Running verification pipeline...[/bold]\n")
    report = asyncio.run(pipeline.run_all())

    table = Table(title="Verification Report")
    table.add_column("Check", style="cyan")
    table.add_column("Status")
    table.add_column("Details", style="dim")

    table.add_row("TypeScript", _status(report.typescript.passed), f"{report.typescript.error_count} error(s)")
    table.add_row("ESLint", _status(report.eslint.passed), f"{report.eslint.error_count} error(s)")
    table.add_row(
        "Tests",
        _status(report.tests.passed),
        f"{report.tests.passed_count}/{report.tests.total} passed, {report.tests.failed} failed",
    )
    table.add_row("Build", _status(report.build.passed), f"{report.build.error_count} error(s)")
    table.add_row(
        "Ghost files",
        _status(report.ghost_files.passed),
        ", ".join(report.ghost_files.unexpected_files) or "-",
    )
    coverage = "-" if report.coverage.percentage is None else f"{report.coverage.percentage:.1f}%"
    table.add_row("Coverage", _status(report.coverage.passed), f"{coverage} (threshold {report.coverage.threshold:.0f}%)")
    table.add_row("Documentation", _status(report.documentation.passed), "")
    console.print(table)

    console.print()
    if report.passed:
        console.print("[bold green]Verification passed[/bold green]")
    else:
        console.print("[bold red]Verification failed[/bold red]")
        raise typer.Exit(1)


# =============================================================================
# Checklist commands
# =============================================================================


def _read_checklist(path: Optional[Path]):
    if path is None:
        settings = _load_settings()
        path = settings.resolve(settings.checklist_path)
    checklist_path = path
    if not checklist_path.exists():
        console.print(f"[red]Error:[/red] Checklist not found: {checklist_path}")
        raise typer.Exit(1)
    parser = ChecklistParser()
    return parser, parser.parse(checklist_path.read_text(encoding="utf-8"))


@checklist_app.command("show")
def checklist_show(
    path: Optional[Path] = typer.Argument(None, help="Checklist file (defaults to configured path)"),
) -> None:
    """List checklist items with their completion status."""
    _, items = _read_checklist(path)
    if not items:
        console.print("[dim]No checklist items found[/dim]")
        return

    table = Table(title="Checklist")
    table.add_column("ID", style="dim")
    table.add_column("Phase")
    table.add_column("Item")
    table.add_column("Status")

    for item in items:
        status = "[green]done[/green]" if item.completed else "[yellow]open[/yellow]"
        table.add_row(item.id, item.phase, item.title, status)
    console.print(table)


@checklist_app.command("progress")
def checklist_progress(
    path: Optional[Path] = typer.Argument(None, help="Checklist file (defaults to configured path)"),
) -> None:
    """Show overall and per-phase checklist progress."""
    parser, items = _read_checklist(path)
    progress = parser.calculate_progress(items)

    console.print(
        f"\n[bold]Progress:[/bold] {progress.completed}/{progress.total} ({progress.percentage}%)"
    )
    for phase, counts in progress.by_phase.items():
        console.print(f"  {phase}: {counts.completed}/{counts.total}")


@checklist_app.command("next")
def checklist_next(
    path: Optional[Path] = typer.Argument(None, help="Checklist file (defaults to configured path)"),
) -> None:
    """Show the next uncompleted checklist item."""
    parser, items = _read_checklist(path)
    item = parser.get_next_uncompleted(items)
    if item is None:
        console.print("[green]All checklist items are complete[/green]")
        return

    console.print(f"\n[bold cyan]{item.id}[/bold cyan] {item.title} [dim]({item.phase})[/dim]")
    if item.description:
        console.print(f"  {item.description}")
    for criterion in item.acceptance_criteria:
        console.print(f"  [dim]Acceptance:[/dim] {criterion}")
    for subtask in item.subtasks:
        mark = "x" if subtask.completed else " "
        console.print(f"  \\[{mark}] {subtask.title}")


# =============================================================================
# FSM commands
# =============================================================================


@fsm_app.command("show")
def fsm_show(
    snapshot: Path = typer.Argument(..., help="Serialized FSM snapshot (JSON)"),
) -> None:
    """Render a serialized workflow state machine snapshot."""
    if not snapshot.exists():
        console.print(f"[red]Error:[/red] Snapshot not found: {snapshot}")
        raise typer.Exit(1)

    try:
        fsm = WorkflowFSM.deserialize(snapshot.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, InvalidSerializedStateError) as e:
        console.print(f"[red]Error:[/red] Invalid snapshot: {e}")
        raise typer.Exit(1)

    console.print(f"\n[bold]State:[/bold] {fsm.state.value}")
    if fsm.is_terminal():
        console.print("  [dim]terminal[/dim]")
    elif fsm.is_awaiting_gate():
        console.print("  [dim]awaiting gate[/dim]")

    if not fsm.history:
        console.print("[dim]No transitions recorded[/dim]")
        return

    table = Table(title="History")
    table.add_column("Time", style="dim")
    table.add_column("From")
    table.add_column("Event", style="cyan")
    table.add_column("To")
    for entry in fsm.history:
        table.add_row(
            entry.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            entry.from_state.value,
            entry.event.value,
            entry.to_state.value,
        )
    console.print(table)


@fsm_app.command("transitions")
def fsm_transitions() -> None:
    """Print the workflow transition table."""
    table = Table(title="Workflow Transitions")
    table.add_column("From")
    table.add_column("Event", style="cyan")
    table.add_column("To")
    for state, events in TRANSITIONS.items():
        for event, target in events.items():
            table.add_row(state.value, event.value, target.value)
    console.print(table)


app.add_typer(checklist_app, name="checklist")
app.add_typer(fsm_app, name="fsm")
