"""Plain-text file persistence for tasks.

Each task is one block, blocks separated by a blank line::

    [Pay rent]
      date: Mon Oct  5 14:03:00 2026
      desc: transfer before noon

The ``desc:`` line is optional. Dates always use English day and month names
so a file written under one locale reads back under any other.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from dotask.models import Task, TaskStore
from dotask.timewindow import local_timestamp

logger = logging.getLogger(__name__)

DEFAULT_TASKS_FILE = Path("~/.dotask/todo.out").expanduser()
MAX_LINE_LENGTH = 8192

WEEKDAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def format_due(due: int) -> str:
    """Render epoch seconds like the C locale's ``%c``."""
    dt = datetime.fromtimestamp(due)
    return (
        f"{WEEKDAYS[dt.weekday()]} {MONTHS[dt.month - 1]} {dt.day:>2} "
        f"{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d} {dt.year}"
    )


def parse_due(text: str) -> int:
    """Inverse of ``format_due``. Raises ValueError on malformed input.

    The weekday is checked for shape only; the calendar date decides.
    """
    parts = text.split()
    if len(parts) != 5:
        raise ValueError(f"expected 5 fields, got {len(parts)}")
    weekday, month, day, clock, year = parts
    if weekday not in WEEKDAYS:
        raise ValueError(f"unknown weekday {weekday!r}")
    if month not in MONTHS:
        raise ValueError(f"unknown month {month!r}")
    hh, mm, ss = (int(x) for x in clock.split(":"))
    dt = datetime(int(year), MONTHS.index(month) + 1, int(day), hh, mm, ss)
    return local_timestamp(dt)


@dataclass
class LoadResult:
    """What came out of a load: the tasks plus every diagnostic raised."""

    tasks: TaskStore
    warnings: list[str] = field(default_factory=list)
    readable: bool = True


class _Decoder:
    def __init__(self) -> None:
        self.tasks = TaskStore()
        self.warnings: list[str] = []
        self._pending: Task | None = None

    def warn(self, message: str) -> None:
        self.warnings.append(message)
        logger.warning(message)

    def commit(self) -> None:
        task = self._pending
        self._pending = None
        if task is None:
            return
        if not self.tasks.append(task):
            reason = "missing name" if not task.name else "missing or invalid date"
            self.warn(f"Discarding task [{task.name}]: {reason}")

    def _current(self) -> Task:
        if self._pending is None:
            self._pending = Task(due=0, name="")
        return self._pending

    def feed(self, lineno: int, line: str | bytes) -> None:
        if isinstance(line, bytes):
            try:
                line = line.decode("utf-8")
            except UnicodeDecodeError:
                self.warn(f"Line {lineno}: not valid UTF-8, bad bytes replaced")
                line = line.decode("utf-8", errors="replace")
        line = line.rstrip("\r\n")
        if len(line) > MAX_LINE_LENGTH:
            self.warn(f"Line {lineno} truncated to {MAX_LINE_LENGTH} characters")
            line = line[:MAX_LINE_LENGTH]

        if not line.strip():
            return

        if line.startswith("["):
            self.commit()
            end = line.find("]")
            if end < 0:
                self.warn(f"Line {lineno}: missing ']' in task name")
                name = line[1:]
            else:
                name = line[1:end]
            self._pending = Task(due=0, name=name)
            return

        if line.startswith(" "):
            body = line.lstrip(" ")
            if body.startswith("date: "):
                value = body[len("date: "):]
                try:
                    self._current().due = parse_due(value)
                except ValueError as e:
                    self.warn(f"Line {lineno}: can not load date {value!r} ({e})")
                    self._current().due = 0
                return
            if body.startswith("desc: "):
                self._current().desc = body[len("desc: "):] or None
                return

        self.warn(f"Line {lineno}: unknown token: {line}")


def decode(lines: Iterable[str | bytes]) -> LoadResult:
    """Parse task blocks. Never raises on bad content; see ``LoadResult.warnings``.

    Byte lines are decoded one at a time, so a stray non-UTF-8 byte costs a
    warning for its own line only.
    """
    decoder = _Decoder()
    for lineno, line in enumerate(lines, start=1):
        decoder.feed(lineno, line)
    decoder.commit()
    return LoadResult(tasks=decoder.tasks, warnings=decoder.warnings)


def _flatten(text: str) -> str:
    return " ".join(text.splitlines())


def encode(tasks: TaskStore) -> str:
    """Serialize in insertion order. Invalid tasks are skipped."""
    out: list[str] = []
    for task in tasks:
        if not task.is_valid:
            continue
        out.append(f"[{_flatten(task.name)}]\n")
        out.append(f"  date: {format_due(task.due)}\n")
        if task.desc:
            out.append(f"  desc: {_flatten(task.desc)}\n")
        out.append("\n")
    return "".join(out)


class TaskFile:
    """Reads and writes the task file."""

    def __init__(self, path: str | Path = DEFAULT_TASKS_FILE):
        self.path = Path(path).expanduser()

    def load(self) -> LoadResult:
        """Decode the file. A missing or unreadable file yields an empty store
        with ``readable=False``; deciding whether that is fatal is up to the caller.
        """
        try:
            with self.path.open("rb") as f:
                result = decode(f)
        except OSError as e:
            logger.info("Task file %s can not be read: %s", self.path, e)
            return LoadResult(tasks=TaskStore(), warnings=[], readable=False)
        logger.debug("Loaded %d task(s) from %s", len(result.tasks), self.path)
        return result

    def save(self, tasks: TaskStore) -> int:
        """Write ``tasks`` to disk and return how many were written.

        The new content goes to a sibling temp file first and is renamed over
        the old one, so readers see either the old file or the new one.
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(f".{self.path.name}.{os.getpid()}.tmp")
        try:
            tmp_path.write_text(encode(tasks), encoding="utf-8")
            os.replace(tmp_path, self.path)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise
        logger.debug("Saved %d task(s) to %s", len(tasks), self.path)
        return len(tasks)
