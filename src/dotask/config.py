"""Settings loaded from ``DOTASK_*`` environment variables (+ optional .env).

Command line options override these per invocation; see ``dotask.cli``.
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from dotask.persistence import DEFAULT_TASKS_FILE

ENV_PREFIX = "DOTASK"

_TMP = Path(tempfile.gettempdir())


def _k(suffix: str) -> str:
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


def _env_optional_path(name: str) -> Path | None:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- Files ----
    tasks_file: Path
    css_file: Path | None

    # ---- Daemon ----
    pid_file: Path
    lock_file: Path

    # ---- HTTP ----
    host: str
    base_port: int
    port_attempts: int
    backlog: int
    request_line_limit: int

    # ---- Logging ----
    log_dir: Path
    log_level: str

    @property
    def log_level_value(self) -> int:
        level = logging.getLevelName(self.log_level.upper())
        return level if isinstance(level, int) else logging.WARNING


def load_settings() -> Settings:
    """Build settings from the environment. A local .env never overrides real
    environment variables.
    """
    load_dotenv(override=False)
    return Settings(
        tasks_file=_env_path(_k("TASKS_FILE"), DEFAULT_TASKS_FILE),
        css_file=_env_optional_path(_k("CSS_FILE")),
        pid_file=_env_path(_k("PID_FILE"), _TMP / "dotask-daemon-pid"),
        lock_file=_env_path(_k("LOCK_FILE"), _TMP / "dotask-daemon.lock"),
        host=_env(_k("HOST"), "127.0.0.1"),
        base_port=_env_int(_k("PORT"), 5002),
        port_attempts=_env_int(_k("PORT_ATTEMPTS"), 10),
        backlog=_env_int(_k("BACKLOG"), 16),
        request_line_limit=_env_int(_k("REQUEST_LINE_LIMIT"), 1024),
        log_dir=_env_path(_k("LOG_DIR"), Path("~/.dotask").expanduser()),
        log_level=_env(_k("LOG_LEVEL"), "WARNING"),
    )
