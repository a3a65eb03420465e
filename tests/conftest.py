import logging

import pytest

from dotask.models import Task, TaskStore

from helpers import at


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Point every configurable path into tmp_path and undo logging setup."""
    monkeypatch.setenv("DOTASK_TASKS_FILE", str(tmp_path / "todo.out"))
    monkeypatch.setenv("DOTASK_PID_FILE", str(tmp_path / "daemon-pid"))
    monkeypatch.setenv("DOTASK_LOCK_FILE", str(tmp_path / "daemon.lock"))
    monkeypatch.setenv("DOTASK_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.delenv("DOTASK_CSS_FILE", raising=False)

    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    yield
    for h in list(root.handlers):
        if h not in saved_handlers:
            root.removeHandler(h)
            h.close()
    for h in saved_handlers:
        if h not in root.handlers:
            root.addHandler(h)
    root.setLevel(saved_level)
    logging.captureWarnings(False)


@pytest.fixture
def three_tasks() -> TaskStore:
    """Inserted out of date order on purpose."""
    return TaskStore([
        Task(due=at(2026, 3, 12, 10, 0), name="Tomorrow"),
        Task(due=at(2026, 3, 10, 10, 0), name="Yesterday", desc="late already"),
        Task(due=at(2026, 3, 11, 8, 0), name="Today"),
    ])
