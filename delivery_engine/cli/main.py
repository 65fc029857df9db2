"""
Typer CLI for the content delivery engine.

Commands:
    delivery plan LEARNER            - Compose and print a session plan
    delivery plan LEARNER --json     - Same, as JSON
    delivery mastery show LEARNER    - Show low-mastery skills
    delivery mastery reset LEARNER   - Delete a learner's mastery state
    delivery db init                 - Initialize database tables
    delivery config                  - Show engine tunables

Usage:
    delivery plan learner-1 --mode review --budget 600
    delivery plan learner-1 --mode learn --lesson lesson-3
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import sys

import typer
from loguru import logger
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from config import get_settings
from delivery_engine.core.errors import DeliveryEngineError
from delivery_engine.core.models import (
    PracticeStepItem,
    RecapStepItem,
    SessionContext,
    SessionMode,
    SessionPlan,
    TeachStepItem,
)

app = typer.Typer(help="Adaptive content delivery engine: session plans for language learners")
db_app = typer.Typer(help="Database management")
mastery_app = typer.Typer(help="Skill mastery (BKT) inspection")
app.add_typer(db_app, name="db")
app.add_typer(mastery_app, name="mastery")

console = Console()


def configure_logging(level: str | None = None) -> None:
    """Route loguru to stderr (and the configured log file, if any)."""
    settings = get_settings()
    logger.remove()
    logger.add(
        sys.stderr,
        level=level or settings.log_level,
        format="<dim>{time:HH:mm:ss}</dim> | <level>{level: <8}</level> | {message}",
    )
    if settings.log_file:
        logger.add(settings.log_file, level="DEBUG", rotation="10 MB", retention=5)


def _build_service():
    from delivery_engine.db.repository import SqlContentRepository, SqlMasteryStore, SqlPreferenceProvider
    from delivery_engine.planning.service import ContentDeliveryService

    return ContentDeliveryService.create(SqlContentRepository(), SqlMasteryStore(), SqlPreferenceProvider())


def _describe(item) -> str:
    if isinstance(item, TeachStepItem):
        return f"{item.emoji + ' ' if item.emoji else ''}{item.phrase} = {item.translation}"
    if isinstance(item, PracticeStepItem):
        return item.prompt or item.source or item.text or item.question_id
    if isinstance(item, RecapStepItem):
        return f"{item.summary.total_items} items, up to {item.summary.xp_earned} XP"
    return ""


def _print_plan(plan: SessionPlan) -> None:
    meta = plan.metadata
    rprint(f"\n[bold cyan]{plan.title}[/bold cyan]  [dim]{plan.id}[/dim]")
    rprint(
        f"  Mode: {plan.kind.value}  Steps: {meta.total_steps}  "
        f"Est: {meta.total_estimated_time_sec / 60:.1f} min  XP: {meta.potential_xp}\n"
    )

    table = Table(show_header=True)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Type", style="cyan")
    table.add_column("Method", style="magenta")
    table.add_column("Content")
    table.add_column("Sec", justify="right")
    table.add_column("Why", style="dim")

    for step in plan.steps:
        table.add_row(
            str(step.step_number),
            step.type.value,
            step.delivery_method.value if step.delivery_method else "-",
            _describe(step.item),
            f"{step.estimated_time_sec:.0f}",
            step.rationale or "",
        )
    console.print(table)

    rprint(
        f"  Due reviews available: {meta.due_reviews_included}  "
        f"New items available: {meta.new_items_included}"
    )
    if meta.delivery_methods_used:
        rprint(f"  Methods: {', '.join(m.value for m in meta.delivery_methods_used)}")


@app.command("plan")
def plan_command(
    learner_id: str = typer.Argument(..., help="Learner identifier"),
    mode: SessionMode = typer.Option(SessionMode.MIXED, "--mode", "-m", help="learn, review or mixed"),
    budget: int | None = typer.Option(None, "--budget", "-b", help="Time budget in seconds"),
    lesson: str | None = typer.Option(None, "--lesson", "-l", help="Restrict to a lesson"),
    module: str | None = typer.Option(None, "--module", help="Restrict to a module"),
    as_json: bool = typer.Option(False, "--json", help="Print the plan as JSON"),
) -> None:
    """Compose a session plan for a learner."""
    if budget is not None and budget <= 0:
        rprint("[red]✗[/red] --budget must be a positive number of seconds")
        raise typer.Exit(code=2)

    context = SessionContext(mode=mode, time_budget_sec=budget, lesson_id=lesson, module_id=module)
    service = _build_service()
    try:
        plan = asyncio.run(service.get_session_plan(learner_id, context))
    except DeliveryEngineError as exc:
        logger.error(f"Plan composition failed for {learner_id}: {exc}")
        rprint(f"[red]✗[/red] {exc}")
        raise typer.Exit(code=1) from exc

    if as_json:
        console.print_json(json.dumps(dataclasses.asdict(plan), default=str))
    else:
        _print_plan(plan)


@mastery_app.command("show")
def mastery_show(
    learner_id: str = typer.Argument(..., help="Learner identifier"),
    threshold: float | None = typer.Option(None, "--threshold", "-t", help="Mastery cutoff (default from config)"),
) -> None:
    """List skills below the mastery threshold."""
    threshold = threshold if threshold is not None else get_settings().low_mastery_threshold
    service = _build_service()
    records = asyncio.run(service.mastery.store.list_below(learner_id, threshold))

    if not records:
        rprint(f"[green]✓[/green] No skills below {threshold:.2f} for {learner_id}")
        return

    table = Table(title=f"Low mastery skills ({learner_id})", show_header=True)
    table.add_column("Skill", style="cyan")
    table.add_column("P(known)", justify="right", style="yellow")
    table.add_column("Updated", style="dim")
    for record in records:
        updated = record.last_updated.isoformat(timespec="seconds") if record.last_updated else "-"
        table.add_row(record.skill_tag, f"{record.mastery_probability:.3f}", updated)
    console.print(table)


@mastery_app.command("reset")
def mastery_reset(
    learner_id: str = typer.Argument(..., help="Learner identifier"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Delete all mastery state for a learner."""
    if not yes and not typer.confirm(f"Reset all mastery for {learner_id}?"):
        raise typer.Exit(code=1)
    service = _build_service()
    deleted = asyncio.run(service.mastery.reset(learner_id))
    rprint(f"[green]✓[/green] Removed {deleted} skill records")


@db_app.command("init")
def db_init() -> None:
    """
    Initialize database tables from SQLAlchemy models.

    Safe to run multiple times (idempotent).
    """
    from delivery_engine.db.database import init_db

    logger.info("Initializing database tables...")
    init_db()
    rprint("[green]✓[/green] Database initialized!")


@app.command("config")
def show_config() -> None:
    """Show engine tunables."""
    table = Table(title="Engine configuration", show_header=True)
    table.add_column("Section", style="cyan")
    table.add_column("Setting")
    table.add_column("Value", justify="right", style="green")
    for section, values in get_settings().get_engine_config().items():
        for name, value in values.items():
            table.add_row(section, name, str(value))
    console.print(table)


# =============================================================================
# Entry Point
# =============================================================================


def main() -> None:
    """CLI entry point."""
    configure_logging()
    app()


if __name__ == "__main__":
    main()
