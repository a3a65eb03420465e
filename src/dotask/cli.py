"""Typer CLI for dotask."""

from __future__ import annotations

import random
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.markup import escape

from dotask.config import Settings, load_settings
from dotask.daemon import DaemonController, DaemonError
from dotask.logging_setup import setup_logging
from dotask.models import Task, TaskStore
from dotask.persistence import TaskFile, format_due
from dotask.server import BindError, run_daemon
from dotask.timewindow import (
    compose_due,
    days_until_sunday,
    due_this_week,
    due_today,
    due_within,
    overdue,
    parse_date_input,
)

app = typer.Typer(
    name="dotask",
    help="Dated to-do list for the terminal, with a tiny web view.",
    invoke_without_command=True,
)
console = Console()
err_console = Console(stderr=True)

NO_TASKS_MESSAGES = (
    "No tasks for this date! Enjoy your free time.",
    "You're all caught up! Maybe start something new?",
    "Nothing to do! A perfect time for a break.",
    "No tasks here! How about planning ahead?",
    "You're task-free! Go do something fun.",
    "No pending tasks! Maybe check your goals?",
    "All clear! Time to relax or explore new ideas.",
    "No deadlines today! Make the most of it.",
    "Nothing due now! Maybe organize your workspace?",
    "You're ahead of schedule! Keep up the great work.",
)


@dataclass
class Session:
    """Per-invocation state shared by the callback and the commands."""

    settings: Settings
    in_file: TaskFile
    out_file: TaskFile
    css_file: Path | None
    quiet: bool


def _session(ctx: typer.Context) -> Session:
    return ctx.obj


def _load(session: Session) -> TaskStore:
    result = session.in_file.load()
    if not result.readable:
        if session.in_file.path.exists():
            err_console.print(f"[red]Task file {escape(str(session.in_file.path))} can not be read.[/red]")
            raise typer.Exit(1)
        if not session.quiet:
            console.print(f"[dim]No task file at {escape(str(session.in_file.path))} yet, starting empty.[/dim]")
    return result.tasks


def _save(session: Session, tasks: TaskStore) -> None:
    session.out_file.save(tasks)


def _print_tasks(session: Session, tasks: TaskStore, title: str) -> None:
    if not session.quiet:
        console.print(f"[bold]{escape(title)}[/bold]:")
    for i, t in enumerate(tasks.sorted_view()):
        line = f"{i}: {escape(t.name)} ({format_due(t.due)})"
        if t.desc:
            line += f": {escape(t.desc)}"
        console.print(line, highlight=False)
    if len(tasks) == 0 and not session.quiet:
        console.print(f"  {random.choice(NO_TASKS_MESSAGES)}")


def _query(ctx: typer.Context, select, title: str) -> None:
    session = _session(ctx)
    tasks = _load(session)
    _print_tasks(session, select(tasks), title)
    _save(session, tasks)


@app.callback()
def main(
    ctx: typer.Context,
    in_file: Annotated[Optional[Path], typer.Option("--in-file", help="Task file to read")] = None,
    out_file: Annotated[Optional[Path], typer.Option("--out-file", help="Task file to write (defaults to --in-file)")] = None,
    css_file: Annotated[Optional[Path], typer.Option("--css-file", help="Stylesheet inlined into the web view")] = None,
    quiet: Annotated[bool, typer.Option("--quiet", "-q", help="Do not show headers and notices")] = False,
) -> None:
    """List, add and complete dated tasks. Without a command, lists every task."""
    settings = load_settings()
    setup_logging(log_dir=settings.log_dir, console_level=settings.log_level_value)

    source = in_file or settings.tasks_file
    ctx.obj = Session(
        settings=settings,
        in_file=TaskFile(source),
        out_file=TaskFile(out_file or source),
        css_file=css_file or settings.css_file,
        quiet=quiet,
    )
    if ctx.invoked_subcommand is None:
        _query(ctx, lambda tasks: tasks, "Tasks")


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


@app.command("list")
def list_tasks(ctx: typer.Context) -> None:
    """Show every task."""
    _query(ctx, lambda tasks: tasks, "Tasks")


@app.command()
def today(ctx: typer.Context) -> None:
    """Show tasks due today."""
    _query(ctx, due_today, "Tasks for today")


@app.command()
def week(ctx: typer.Context) -> None:
    """Show tasks due this week (up to the end of Sunday)."""
    left = days_until_sunday()
    title = "Tasks before Sunday" if left else "Tasks for today (Sunday)"
    _query(ctx, due_this_week, title)


@app.command("overdue")
def overdue_tasks(ctx: typer.Context) -> None:
    """Show tasks that are past their due time."""
    _query(ctx, overdue, "Overdue tasks")


@app.command("in")
def in_days(
    ctx: typer.Context,
    days: Annotated[int, typer.Argument(min=0, help="Number of days from today")],
) -> None:
    """Show tasks due in the next N days."""
    _query(ctx, lambda tasks: due_within(tasks, days), f"Tasks for {days} days")


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


@app.command()
def done(
    ctx: typer.Context,
    index: Annotated[int, typer.Argument(help="Task number as shown by list")],
) -> None:
    """Mark task N as completed (removes it)."""
    session = _session(ctx)
    tasks = _load(session)
    removed = tasks.remove_at(index)
    if removed is None:
        err_console.print(f"[red]No task {index}; there are {len(tasks)}.[/red]")
        raise typer.Exit(1)
    _save(session, tasks)
    if not session.quiet:
        console.print(f"[green]Done: {escape(removed.name)}[/green]")


@app.command()
def clear(ctx: typer.Context) -> None:
    """Mark every task as completed."""
    session = _session(ctx)
    tasks = _load(session)
    count = len(tasks)
    tasks.clear()
    _save(session, tasks)
    if not session.quiet:
        console.print(f"[green]Cleared {count} task(s).[/green]")


@app.command()
def add(
    ctx: typer.Context,
    name: Annotated[str, typer.Option(prompt="Task name", help="Task name")],
    desc: Annotated[str, typer.Option(prompt="  Desc", help="Optional description", show_default=False)] = "",
    date: Annotated[
        str,
        typer.Option(
            prompt="  | +N: N days from today\n"
            "  | DD: Day DD of current month\n"
            "  | DD/MM: Day DD of MM month\n"
            "  | DD/MM/YYYY: Day DD of MM month of year YYYY\n"
            "  Date format",
            help="+N, DD, DD/MM or DD/MM/YYYY",
        ),
    ] = "+0",
    time: Annotated[
        str,
        typer.Option(
            prompt="  | +N: N hours from now\n"
            "  | HH MM: hour HH and minutes MM\n"
            "  | Empty: 23:59:59\n"
            "  Time format",
            help="+N, 'HH MM' or HH:MM; empty for end of day",
            show_default=False,
        ),
    ] = "",
) -> None:
    """Add a new task, prompting for anything not given as an option."""
    session = _session(ctx)
    name = name.strip()
    if not name:
        return
    if "]" in name or "\n" in name:
        err_console.print("[red]Task names can not contain ']' or line breaks.[/red]")
        raise typer.Exit(1)

    try:
        due = compose_due(parse_date_input(date), time)
    except ValueError as e:
        err_console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(1)

    tasks = _load(session)
    tasks.append(Task(due=due, name=name, desc=desc.strip() or None))
    _save(session, tasks)
    if not session.quiet:
        console.print(f"[green]Added '{escape(name)}' due {format_due(due)}[/green]")


# ---------------------------------------------------------------------------
# Daemon
# ---------------------------------------------------------------------------


@app.command()
def serve(ctx: typer.Context) -> None:
    """Start the web view as a background daemon, replacing any running one."""
    session = _session(ctx)
    tasks = _load(session)
    css_file = session.css_file
    if css_file is not None and not css_file.is_file():
        err_console.print(f"[red]Stylesheet {escape(str(css_file))} not found.[/red]")
        raise typer.Exit(1)

    # From here on the daemon owns the store and saves it itself.
    try:
        run_daemon(
            tasks,
            session.out_file,
            session.settings,
            css_file=css_file,
            on_ready=lambda url: console.print(url, highlight=False),
        )
    except (DaemonError, BindError) as e:
        err_console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(1)


@app.command()
def die(ctx: typer.Context) -> None:
    """Stop the running daemon. It saves its own tasks on the way out."""
    session = _session(ctx)
    controller = DaemonController(session.settings.pid_file, session.settings.lock_file)
    try:
        stopped = controller.stop()
    except DaemonError as e:
        err_console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(1)
    controller.cleanup()
    if not session.quiet:
        if stopped:
            console.print(f"[green]Stopped daemon {', '.join(map(str, stopped))}.[/green]")
        else:
            console.print("No daemon running.")
