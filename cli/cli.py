"""CLI for the field service scheduler.

Developer and operator commands that exercise the same scheduling code
paths as the API: preview cadence occurrences without a database, generate
jobs for one plan, run the horizon sweep, and manage the local database.
"""

import os
from datetime import date, timedelta

import redis
import typer
import uvicorn
from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from sqlalchemy import text

from app.config.settings import settings
from app.core.logger import setup_logger
from app.db.models import Base
from app.db.session import get_engine, get_session
from app.scheduling.cadence import resolve_occurrences
from app.scheduling.errors import SchedulingError
from app.scheduling.generation import generate_for_plan
from app.scheduling.orchestrator import generate_for_all_active_plans
from app.scheduling.types import LAST_DAY_OF_MONTH, Cadence, parse_weekdays

# Initialize Rich console for output
console = Console()

# Initialize Typer app
app = typer.Typer(
    name="fieldservice-cli",
    help="Field service scheduler CLI - cadence previews and job generation",
    add_completion=False,
)

DEFAULT_HOST = os.getenv("SERVER_HOST", "127.0.0.1")


def _parse_date(value: str | None, default: date) -> date:
    if value is None:
        return default
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise typer.BadParameter(f"Invalid date {value!r}, expected YYYY-MM-DD") from e


@app.callback()
def main(
    log_level: str = typer.Option(settings.log_level, "--log-level", help="Logging level"),
) -> None:
    setup_logger(level=log_level.upper(), log_file=settings.log_file, serialize=settings.log_json)


@app.command()
def server(
    host: str = typer.Option(DEFAULT_HOST, "--host", "-h", help="Host to bind to"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to bind to"),
    reload: bool = typer.Option(False, "--reload", help="Enable auto-reload"),
) -> None:
    """Run the FastAPI server."""
    logger.info(f"Starting FastAPI server on {host}:{port} (reload={reload})")
    uvicorn.run("app.main:app", host=host, port=port, reload=reload)


@app.command()
def occurrences(
    cadence: str = typer.Argument(..., help="weekly, twiceWeekly, biweekly, monthly or twiceMonthly"),
    weekday: list[str] = typer.Option([], "--weekday", "-w", help="Anchor weekday (repeat for twiceWeekly)"),
    day_of_month: int | None = typer.Option(
        None, "--day", "-d", help=f"Anchor day of month (1-31, {LAST_DAY_OF_MONTH} for last day)"
    ),
    start: str | None = typer.Option(None, "--start", help="Range start YYYY-MM-DD (default: today)"),
    end: str | None = typer.Option(None, "--end", help="Range end YYYY-MM-DD (default: start + horizon)"),
) -> None:
    """Preview the dates a cadence produces in a range. No database access."""
    try:
        parsed = Cadence.parse(cadence)
    except ValueError as e:
        raise typer.BadParameter(str(e)) from e

    range_start = _parse_date(start, date.today())
    range_end = _parse_date(end, range_start + timedelta(days=settings.default_horizon_days))
    anchor = parse_weekdays(weekday) if parsed.uses_weekdays else day_of_month

    dates = resolve_occurrences(parsed, anchor, range_start, range_end)
    if not dates:
        console.print(
            Panel(
                Text("No occurrences", style="bold yellow"),
                subtitle=f"{parsed.value} {range_start.isoformat()}..{range_end.isoformat()} (check the anchor)",
                border_style="yellow",
            )
        )
        return

    table = Table(title=f"{parsed.value} occurrences {range_start.isoformat()}..{range_end.isoformat()}")
    table.add_column("#", justify="right")
    table.add_column("Date")
    table.add_column("Weekday")
    for index, day in enumerate(dates, start=1):
        table.add_row(str(index), day.isoformat(), day.strftime("%a"))
    console.print(table)


@app.command()
def generate(
    plan_id: str = typer.Argument(..., help="Service plan id"),
    horizon_days: int | None = typer.Option(None, "--horizon", help="Days ahead to generate"),
) -> None:
    """Generate missing jobs for one plan."""
    try:
        result = generate_for_plan(plan_id, horizon_days)
    except SchedulingError as e:
        console.print(Panel(Text(e.message, style="bold red"), subtitle=e.code, border_style="red"))
        raise typer.Exit(1) from e

    style = "bold green" if result.count else "bold yellow"
    console.print(Panel(Text(result.message, style=style), subtitle=f"plan {plan_id}", border_style="green"))


@app.command()
def sweep(
    org_id: str | None = typer.Option(None, "--org", help="Only sweep this org"),
    horizon_days: int | None = typer.Option(None, "--horizon", help="Days ahead to generate"),
) -> None:
    """Generate jobs for every active plan."""
    result = generate_for_all_active_plans(org_id=org_id, horizon_days=horizon_days)

    summary = f"{result.plans_processed} plans processed, {result.jobs_generated} jobs generated"
    if not result.failures:
        console.print(Panel(Text(summary, style="bold green"), border_style="green"))
        return

    table = Table(title=f"{len(result.failures)} plan(s) failed")
    table.add_column("Plan")
    table.add_column("Error")
    table.add_column("Message")
    for failure in result.failures:
        table.add_row(failure.plan_id, failure.error_type, failure.message)
    console.print(Panel(Text(summary, style="bold yellow"), border_style="yellow"))
    console.print(table)
    raise typer.Exit(1)


@app.command("init-db")
def init_db() -> None:
    """Create all tables that do not exist yet."""
    Base.metadata.create_all(bind=get_engine())
    console.print(Panel(Text("Database tables created", style="bold green"), subtitle=settings.database_url))


@app.command("check-db")
def check_db() -> None:
    """Verify Redis and database connections are working."""
    results: list[tuple[str, bool, str]] = []

    try:
        redis_client = redis.from_url(settings.redis_url, decode_responses=True)
        redis_client.ping()
        results.append(("Redis", True, f"Connected to {settings.redis_url}"))
    except Exception as e:
        results.append(("Redis", False, f"Connection failed: {e!s}"))

    db_type = "PostgreSQL" if "postgres" in settings.database_url.lower() else "SQLite"
    try:
        with get_session() as db:
            db.execute(text("SELECT 1"))
        results.append((db_type, True, "Connected to database"))
    except Exception as e:
        results.append((db_type, False, f"Connection failed: {e!s}"))

    all_ok = all(ok for _, ok, _ in results)
    details = "\n".join([f"  {'✓' if ok else '✗'} {name}: {message}" for name, ok, message in results])
    console.print(
        Panel(
            Text(
                "All connections OK" if all_ok else "Some connections failed",
                style="bold green" if all_ok else "bold red",
            ),
            subtitle=details,
            border_style="green" if all_ok else "red",
        )
    )
    if not all_ok:
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
