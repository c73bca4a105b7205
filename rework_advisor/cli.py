"""CLI entry point for rework-advisor."""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

import rework_advisor
from rework_advisor.data.base import RecordStore, StoreUnavailableError

app = typer.Typer(
    name="rework-advisor",
    help="Ranked corrective actions for failed manufacturing tests.",
    no_args_is_help=True,
)
console = Console()

_SAMPLE_CATALOG = Path(__file__).parent / "data" / "sample_catalog.json"

_VALID_CONFIG_KEYS = ("backend", "supabase-url", "supabase-key")
_BACKENDS = ("sqlite", "supabase")

_COLORS = {
    "red": "red",
    "orange": "dark_orange",
    "yellow": "yellow",
    "slate": "grey50",
}

DbOption = typer.Option(
    None, "--db", help="SQLite database path (default ~/.rework-advisor/data.db)"
)
BackendOption = typer.Option(
    None, "--backend", "-b", help="Record store backend: sqlite or supabase"
)


@app.callback()
def main(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Show debug logging"
    ),
) -> None:
    """Ranked corrective actions for failed manufacturing tests."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=console, show_path=False)],
        )


def _resolve_db_path(db: Optional[str]) -> Optional[str]:
    """Resolve database path from CLI flag → env var → default."""
    return db or os.environ.get("REWORK_ADVISOR_DB")


def _resolve_backend(backend: Optional[str], config_value: Optional[str]) -> str:
    """Resolve backend from CLI flag → env var → config → default."""
    return (
        backend
        or os.environ.get("REWORK_ADVISOR_BACKEND")
        or config_value
        or "sqlite"
    )


def _open_store(db: Optional[str], backend: Optional[str]) -> RecordStore:
    from rework_advisor.data.store import DataStore

    try:
        local = DataStore(db_path=_resolve_db_path(db))
    except StoreUnavailableError as e:
        console.print(f"[red]Error: {e}[/]")
        raise typer.Exit(1)

    resolved = _resolve_backend(backend, local.get_config("backend"))
    if resolved == "sqlite":
        return local
    if resolved == "supabase":
        from rework_advisor.data.remote import SupabaseStore

        store = SupabaseStore(config=local)
        local.close()
        return store

    local.close()
    console.print(
        f"[red]Unknown backend: {resolved}. "
        f"Valid backends: {', '.join(_BACKENDS)}[/]"
    )
    raise typer.Exit(1)


@app.command()
def analyze(
    code: list[str] = typer.Option(
        [], "--code", "-c", help="Failure code reported by the test (repeatable)"
    ),
    voltage: Optional[float] = typer.Option(None, "--voltage", help="Voltage reading (V)"),
    pressure: Optional[float] = typer.Option(None, "--pressure", help="Pressure reading (PSI)"),
    temperature: Optional[float] = typer.Option(
        None, "--temperature", help="Temperature reading (°C)"
    ),
    work_order: Optional[str] = typer.Option(None, "--work-order", "-w", help="Work order number"),
    as_json: bool = typer.Option(False, "--json", help="Print recommendations as JSON"),
    db: Optional[str] = DbOption,
    backend: Optional[str] = BackendOption,
) -> None:
    """Rank corrective actions for a failed test."""
    from rework_advisor.core.engine import RecommendationEngine
    from rework_advisor.core.failure_codes import describe_failure_code
    from rework_advisor.core.models import AnalysisStatus, TestOutcome

    outcome = TestOutcome(
        failure_codes=frozenset(code),
        voltage=voltage,
        pressure=pressure,
        temperature=temperature,
        work_order_id=work_order,
    )

    store = _open_store(db, backend)
    try:
        result = RecommendationEngine(store).analyze(
            outcome, now=datetime.now(timezone.utc)
        )
    except StoreUnavailableError as e:
        console.print(f"[red]Failure analysis failed: {e}[/]")
        raise typer.Exit(1)
    finally:
        store.close()

    if as_json:
        typer.echo(json.dumps({
            "status": result.status.value,
            "failure_codes": sorted(outcome.failure_codes),
            "recommendations": [e.to_dict() for e in result.entries],
        }))
        return

    if outcome.passed:
        console.print("[green]No failure codes reported, nothing to analyze.[/]")
        return

    title = "Test Failed - Issues Detected"
    if work_order:
        title += f" (Work Order: {work_order})"
    console.print(f"[bold red]{title}[/]")
    for c in sorted(outcome.failure_codes):
        description = describe_failure_code(c, outcome)
        console.print(f"  [bold]{c}[/]" + (f"  {description}" if description else ""))
    console.print()

    if result.status is AnalysisStatus.NO_MATCH:
        console.print("[yellow]No matching process logs found in the database.[/]")
        return

    table = Table(title="Recommended Corrective Actions (ranked by probability of success)")
    table.add_column("#", justify="right")
    table.add_column("Process Log", style="cyan")
    table.add_column("Description")
    table.add_column("Occurrences", justify="right")
    table.add_column("Success", justify="right", style="green")
    table.add_column("Match", justify="right")
    table.add_column("Last Seen")
    table.add_column("Feedback", justify="right")
    table.add_column("Steps", justify="right")
    table.add_column("Score", justify="right", style="bold")

    for i, entry in enumerate(result.entries, start=1):
        record = entry.record
        label = entry.recency_label
        if record.total_feedback_count:
            feedback = (
                f"{record.average_feedback_rating:.1f}/3 "
                f"({record.total_feedback_count})"
            )
        else:
            feedback = "none"
        table.add_row(
            str(i),
            record.pl_number,
            record.failure_description,
            str(record.occurrence_count),
            f"{record.success_rate:g}%",
            f"{entry.similarity_score}%",
            f"[{_COLORS[label.color]}]{label.text}[/]",
            feedback,
            str(entry.step_count),
            f"{entry.combined_rank:.1f}",
        )
    console.print(table)

    console.print("\n[bold]Root causes:[/]")
    for i, entry in enumerate(result.entries, start=1):
        console.print(f"  #{i} {entry.record.root_cause}")
        console.print(
            f"     [dim]rework-advisor steps "
            f"{entry.record.corrective_instruction_id}[/]"
        )


@app.command()
def steps(
    instruction_id: str = typer.Argument(..., help="Corrective instruction id"),
    db: Optional[str] = DbOption,
    backend: Optional[str] = BackendOption,
) -> None:
    """Show the full step sequence of a corrective instruction."""
    from rework_advisor.core.resolver import resolve_instruction

    store = _open_store(db, backend)
    try:
        resolved = resolve_instruction(store, instruction_id)
    except StoreUnavailableError as e:
        console.print(f"[red]Error: {e}[/]")
        raise typer.Exit(1)
    finally:
        store.close()

    if resolved is None:
        console.print(f"[yellow]Instruction {instruction_id} not found.[/]")
        raise typer.Exit(1)

    table = Table(title=resolved.instruction.group_key)
    table.add_column("Step", justify="right", style="cyan")
    table.add_column("Title")
    table.add_column("Instruction")
    for step in resolved.steps:
        table.add_row(str(step.step_number), step.title, step.text)
    console.print(table)
    console.print(f"[dim]{len(resolved.steps)} step(s)[/]")


@app.command()
def feedback(
    process_log_id: str = typer.Argument(..., help="Process log id the rework followed"),
    rating: int = typer.Option(
        ..., "--rating", "-r", help="1 = not helpful, 2 = somewhat, 3 = very helpful"
    ),
    success: bool = typer.Option(
        True, "--success/--failed", help="Did the unit pass retest?"
    ),
    comments: Optional[str] = typer.Option(None, "--comments", help="Free-text comments"),
    technician: Optional[str] = typer.Option(None, "--technician", help="Technician name"),
    work_order: Optional[str] = typer.Option(None, "--work-order", "-w", help="Work order id"),
    instruction_id: Optional[str] = typer.Option(
        None, "--instruction", help="Corrective instruction id that was followed"
    ),
    db: Optional[str] = DbOption,
    backend: Optional[str] = BackendOption,
) -> None:
    """Record operator feedback on a corrective action."""
    from rework_advisor.core.models import ReworkFeedback

    try:
        entry = ReworkFeedback(
            process_log_id=process_log_id,
            rating=rating,
            was_successful=success,
            work_order_id=work_order,
            corrective_instruction_id=instruction_id,
            comments=(comments or "").strip() or None,
            technician_name=(technician or "").strip() or None,
        )
    except ValueError as e:
        console.print(f"[red]{e}[/]")
        raise typer.Exit(1)

    store = _open_store(db, backend)
    try:
        store.record_feedback(entry)
    except (ValueError, StoreUnavailableError) as e:
        console.print(f"[red]Failed to submit feedback: {e}[/]")
        raise typer.Exit(1)
    finally:
        store.close()

    console.print("[green]Feedback recorded. Thank you![/]")


@app.command()
def seed(
    path: Optional[Path] = typer.Argument(None, help="JSON catalog file"),
    sample: bool = typer.Option(False, "--sample", help="Load the bundled sample catalog"),
    db: Optional[str] = DbOption,
) -> None:
    """Import a process log / instruction catalog into the local database."""
    from rework_advisor.data.store import DataStore

    if sample:
        path = _SAMPLE_CATALOG
    if path is None:
        console.print("[red]Usage: rework-advisor seed <file> or --sample[/]")
        raise typer.Exit(1)
    if not path.exists():
        console.print(f"[red]Catalog file not found: {path}[/]")
        raise typer.Exit(1)

    with open(path) as f:
        try:
            catalog = json.load(f)
        except json.JSONDecodeError as e:
            console.print(f"[red]Invalid catalog JSON: {e}[/]")
            raise typer.Exit(1)

    try:
        store = DataStore(db_path=_resolve_db_path(db))
    except StoreUnavailableError as e:
        console.print(f"[red]Error: {e}[/]")
        raise typer.Exit(1)
    try:
        counts = store.load_catalog(catalog)
    except (KeyError, ValueError, StoreUnavailableError) as e:
        console.print(f"[red]Catalog import failed: {e}[/]")
        raise typer.Exit(1)
    finally:
        store.close()

    console.print(
        f"[green]Imported {counts['process_logs']} process log(s), "
        f"{counts['instructions']} instruction step(s), "
        f"{counts['feedback']} feedback entr{'y' if counts['feedback'] == 1 else 'ies'}.[/]"
    )


@app.command()
def config(
    action: str = typer.Argument(
        "get", help="Action: get or set"
    ),
    key: Optional[str] = typer.Argument(
        None, help="Config key (backend, supabase-url, supabase-key)"
    ),
    value: Optional[str] = typer.Argument(
        None, help="Value to set"
    ),
    db: Optional[str] = DbOption,
) -> None:
    """View or modify configuration."""
    from rework_advisor.data.store import DataStore

    try:
        store = DataStore(db_path=_resolve_db_path(db))
    except StoreUnavailableError as e:
        console.print(f"[red]Error: {e}[/]")
        raise typer.Exit(1)

    try:
        if action == "get":
            if key:
                val = store.get_config(key)
                if val is not None:
                    console.print(f"{key} = {val}")
                else:
                    console.print(f"[yellow]{key} is not set[/]")
            else:
                for k in _VALID_CONFIG_KEYS:
                    val = store.get_config(k)
                    console.print(f"{k} = {val or '(not set)'}")
        elif action == "set":
            if not key or value is None:
                console.print("[red]Usage: rework-advisor config set <key> <value>[/]")
                raise typer.Exit(1)
            if key not in _VALID_CONFIG_KEYS:
                console.print(
                    f"[red]Unknown config key: {key}. "
                    f"Valid keys: {', '.join(_VALID_CONFIG_KEYS)}[/]"
                )
                raise typer.Exit(1)
            if key == "backend" and value not in _BACKENDS:
                console.print(f"[red]Backend must be one of: {', '.join(_BACKENDS)}[/]")
                raise typer.Exit(1)
            store.set_config(key, value)
            console.print(f"[green]Set {key} = {value}[/]")
        else:
            console.print("[red]Unknown action. Use 'get' or 'set'.[/]")
            raise typer.Exit(1)
    finally:
        store.close()


@app.command()
def version() -> None:
    """Print version."""
    console.print(f"rework-advisor {rework_advisor.__version__}")


if __name__ == "__main__":
    app()
