"""MCP server for dotask: exposes the task file to AI assistants."""

from __future__ import annotations

from datetime import datetime

from mcp.server.fastmcp import FastMCP

from dotask.config import load_settings
from dotask.models import Task, TaskStore
from dotask.persistence import TaskFile, format_due
from dotask.timewindow import due_this_week, due_today, due_within, local_timestamp, overdue

mcp = FastMCP(
    "dotask",
    instructions="""\
dotask is a personal to-do list. Every task has a name, a due time and an \
optional description. Tasks are always shown sorted by due time and numbered \
from 0; those numbers are what complete_task expects. Numbers shift whenever a \
task is added or completed, so list the tasks again before completing another \
one.

Use list_tasks with window "today", "week", "overdue" or "all", or pass days \
to see everything due within that many days. Completing a task removes it.\
""",
)


def _get_file() -> TaskFile:
    return TaskFile(load_settings().tasks_file)


def _load_for_update(task_file: TaskFile) -> TaskStore:
    """Load tasks that are about to be rewritten. Refuses when an existing
    file could not be read, so it is never overwritten with an empty list.
    """
    result = task_file.load()
    if not result.readable and task_file.path.exists():
        raise ValueError(f"task file {task_file.path} can not be read")
    return result.tasks


def _render(tasks: TaskStore) -> str:
    lines = []
    for i, t in enumerate(tasks.sorted_view()):
        line = f"{i}: {t.name} ({format_due(t.due)})"
        if t.desc:
            line += f": {t.desc}"
        lines.append(line)
    return "\n".join(lines) if lines else "No tasks."


@mcp.tool()
def list_tasks(window: str = "all", days: int | None = None) -> str:
    """List tasks, numbered by due date.

    Args:
        window: One of "all", "today", "week", "overdue". Ignored when days is given.
        days: Show tasks due within this many days from today
    """
    tasks = _get_file().load().tasks
    if days is not None:
        if days < 0:
            return "Error: days must not be negative."
        return _render(due_within(tasks, days))
    selectors = {
        "all": lambda s: s,
        "today": due_today,
        "week": due_this_week,
        "overdue": overdue,
    }
    if window not in selectors:
        return f"Error: unknown window {window!r}. Use: {', '.join(selectors)}"
    return _render(selectors[window](tasks))


@mcp.tool()
def add_task(name: str, due: str, description: str | None = None) -> str:
    """Add a new task.

    Args:
        name: Task name (must not contain "]" or line breaks)
        due: Due time as "YYYY-MM-DD HH:MM" (local time) or "YYYY-MM-DD" for end of day
        description: Optional free-text note
    """
    name = name.strip()
    if not name or "]" in name or "\n" in name:
        return "Error: name must be non-empty and contain no ']' or line breaks."
    try:
        if len(due.strip()) == 10:
            dt = datetime.strptime(due.strip(), "%Y-%m-%d").replace(hour=23, minute=59, second=59)
        else:
            dt = datetime.strptime(due.strip(), "%Y-%m-%d %H:%M")
    except ValueError:
        return "Error: due must be 'YYYY-MM-DD HH:MM' or 'YYYY-MM-DD'."

    task_file = _get_file()
    try:
        tasks = _load_for_update(task_file)
    except ValueError as e:
        return f"Error: {e}."
    task = Task(due=local_timestamp(dt), name=name, desc=(description or "").strip() or None)
    tasks.append(task)
    task_file.save(tasks)
    return f"Added '{name}' due {format_due(task.due)}"


@mcp.tool()
def complete_task(index: int) -> str:
    """Mark a task as done, removing it.

    Args:
        index: Task number as shown by list_tasks with window "all"
    """
    task_file = _get_file()
    try:
        tasks = _load_for_update(task_file)
    except ValueError as e:
        return f"Error: {e}."
    removed = tasks.remove_at(index)
    if removed is None:
        return f"Error: no task {index}; there are {len(tasks)}."
    task_file.save(tasks)
    return f"Completed '{removed.name}'."


@mcp.tool()
def clear_tasks() -> str:
    """Mark every task as done."""
    task_file = _get_file()
    try:
        tasks = _load_for_update(task_file)
    except ValueError as e:
        return f"Error: {e}."
    count = len(tasks)
    tasks.clear()
    task_file.save(tasks)
    return f"Cleared {count} task(s)."


def main():
    """Entry point for the MCP server."""
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
