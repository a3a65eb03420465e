"""Task record and the in-memory task store."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass


@dataclass
class Task:
    """A single dated to-do item."""

    due: int  # seconds since the epoch; 0 means "not set"
    name: str
    desc: str | None = None

    @property
    def is_valid(self) -> bool:
        return bool(self.name) and self.due != 0


class TaskStore:
    """Ordered collection of tasks.

    Iteration yields tasks in insertion order. Indices accepted by
    ``remove_at`` refer to positions in ``sorted_view()`` at the time of the
    call, so the same number can name a different task once the store changes.
    """

    def __init__(self, tasks: Iterable[Task] = ()) -> None:
        self._tasks: list[Task] = []
        for task in tasks:
            self.append(task)

    def __len__(self) -> int:
        return len(self._tasks)

    def __iter__(self) -> Iterator[Task]:
        return iter(self._tasks)

    def __repr__(self) -> str:
        return f"TaskStore({self._tasks!r})"

    def append(self, task: Task) -> bool:
        """Add ``task`` if it is valid. Returns whether it was added."""
        if not task.is_valid:
            return False
        self._tasks.append(task)
        return True

    def _sorted_positions(self) -> list[int]:
        # sorted() is stable, so equal due times keep insertion order
        return sorted(range(len(self._tasks)), key=lambda i: self._tasks[i].due)

    def sorted_view(self) -> list[Task]:
        return [self._tasks[i] for i in self._sorted_positions()]

    def remove_at(self, sorted_index: int) -> Task | None:
        """Remove the task at ``sorted_index`` of the current sorted view.

        Out-of-range indices leave the store untouched and return None.
        """
        if not 0 <= sorted_index < len(self._tasks):
            return None
        position = self._sorted_positions()[sorted_index]
        return self._tasks.pop(position)

    def clear(self) -> None:
        self._tasks.clear()

    def filter_before(self, cutoff: float) -> TaskStore:
        """Return a new store holding the tasks due at or before ``cutoff``."""
        return TaskStore(t for t in self._tasks if t.due <= cutoff)
