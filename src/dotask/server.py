"""Single-page HTTP view of the task list, served by a background daemon.

The accept-loop process owns the ``TaskStore``. Every connection is handed to
a forked worker that reads and parses the request line, sends the parsed
request to the owner over a pipe, and renders the snapshot the owner sends
back. Mutations therefore happen in one place, in arrival order, and are
written to the task file before the owner replies.
"""

from __future__ import annotations

import errno
import html
import logging
import os
import signal
import socket
import sys
from collections.abc import Callable
from dataclasses import dataclass
from multiprocessing import Pipe
from multiprocessing.connection import Connection, wait
from pathlib import Path
from urllib.parse import parse_qs, urlsplit

from dotask.config import Settings
from dotask.daemon import DaemonController, daemonize, detach_stdio
from dotask.models import Task, TaskStore
from dotask.persistence import TaskFile, format_due

logger = logging.getLogger(__name__)

QUIT_BUTTON = -1
DEFAULT_REQUEST_LINE_LIMIT = 1024


class BindError(RuntimeError):
    """No port in the retry window could be bound."""


@dataclass(frozen=True)
class Request:
    """A parsed ``GET /`` request. ``button`` is None for a plain page view."""

    button: int | None = None

    @property
    def quit(self) -> bool:
        return self.button == QUIT_BUTTON


# ---------------------------------------------------------------------------
# Request parsing and page rendering (used by workers)
# ---------------------------------------------------------------------------


def read_request_line(sock: socket.socket, limit: int = DEFAULT_REQUEST_LINE_LIMIT) -> bytes | None:
    """Read up to the first newline, never more than ``limit`` bytes.

    Returns None when the client sent nothing, the read failed, or the line
    did not fit in ``limit`` bytes.
    """
    buf = bytearray()
    while len(buf) < limit:
        try:
            chunk = sock.recv(limit - len(buf))
        except OSError as e:
            logger.info("Read failed: %s", e)
            return None
        if not chunk:
            break
        buf += chunk
        newline = buf.find(b"\n")
        if newline >= 0:
            return bytes(buf[: newline + 1])
    if not buf:
        return None
    if len(buf) >= limit:
        logger.info("Request line longer than %d bytes, dropping", limit)
        return None
    return bytes(buf)


def parse_request_line(line: bytes) -> Request | None:
    """Parse ``GET /[?button=N] HTTP/x.y``. Anything else gives None."""
    try:
        text = line.decode("ascii").strip()
    except UnicodeDecodeError:
        return None
    parts = text.split()
    if len(parts) != 3:
        return None
    method, target, version = parts
    if method != "GET" or not version.startswith("HTTP/"):
        return None
    url = urlsplit(target)
    if url.path != "/":
        return None
    buttons = parse_qs(url.query).get("button")
    if not buttons:
        return Request()
    try:
        return Request(button=int(buttons[0]))
    except ValueError:
        return None


def read_stylesheet(path: str | Path | None) -> str | None:
    if path is None:
        return None
    try:
        return Path(path).read_text(encoding="utf-8")
    except OSError as e:
        logger.warning("Can not read stylesheet %s: %s", path, e)
        return None


def _button(index: int, label: str) -> str:
    return (
        '<form action="/" method="GET" style="display:inline;">'
        f'<input type="hidden" name="button" value="{index}">'
        f'<button type="submit">{label}</button>'
        "</form>"
    )


def render_page(tasks: list[Task], stylesheet: str | None = None) -> str:
    """Full HTML document for ``tasks``, which must already be date-sorted."""
    out = ["<!DOCTYPE html>", "<html>", "<head>", '<meta charset="utf-8">', "<title>Todo</title>"]
    if stylesheet is not None:
        out += ["<style>", stylesheet, "</style>"]
    out += ["</head>", "<body>", "<h1>Tasks</h1>", "<dl>"]
    for index, task in enumerate(tasks):
        out.append(f"<dt>{html.escape(task.name)}{_button(index, 'Done')}</dt>")
        out.append(f"<dd>{html.escape(format_due(task.due))}</dd>")
        if task.desc:
            out.append(f"<dd><p>{html.escape(task.desc)}</p></dd>")
    out += ["</dl>", "<br>", _button(QUIT_BUTTON, "Save and quit"), "</body>", "</html>"]
    return "".join(out)


def build_response(body: str) -> bytes:
    payload = body.encode("utf-8")
    head = (
        "HTTP/1.1 200 OK\r\n"
        "Content-Type: text/html; charset=utf-8\r\n"
        f"Content-Length: {len(payload)}\r\n"
        "Connection: close\r\n"
        "\r\n"
    )
    return head.encode("ascii") + payload


def handle_connection(
    client: socket.socket,
    channel: Connection,
    *,
    css_file: str | Path | None = None,
    request_line_limit: int = DEFAULT_REQUEST_LINE_LIMIT,
) -> bool:
    """Serve one connection. Returns whether a page was sent."""
    with client:
        line = read_request_line(client, request_line_limit)
        request = parse_request_line(line) if line else None
        if request is None:
            logger.info("Dropping malformed request %r", line)
            return False

        channel.send(request)
        snapshot = channel.recv()
        if request.quit:
            return False

        body = render_page(snapshot, read_stylesheet(css_file))
        client.sendall(build_response(body))
        return True


# ---------------------------------------------------------------------------
# Owner side
# ---------------------------------------------------------------------------


def bind_listener(
    host: str,
    base_port: int,
    attempts: int,
    backlog: int = 16,
) -> tuple[socket.socket, int]:
    """Listen on ``base_port``, or the next free one up to ``attempts`` further."""
    for port in range(base_port, base_port + attempts + 1):
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, port))
        except OSError as e:
            sock.close()
            if e.errno == errno.EADDRINUSE:
                logger.info("Port %d in use, trying the next one", port)
                continue
            raise BindError(f"bind {host}:{port}: {e}") from e
        sock.listen(backlog)
        # port 0 asks the kernel to pick one
        return sock, sock.getsockname()[1]
    raise BindError(f"no free port in {base_port}-{base_port + attempts}")


class TaskServer:
    def __init__(
        self,
        tasks: TaskStore,
        task_file: TaskFile,
        *,
        css_file: str | Path | None = None,
        request_line_limit: int = DEFAULT_REQUEST_LINE_LIMIT,
    ):
        self.tasks = tasks
        self.task_file = task_file
        self.css_file = css_file
        self.request_line_limit = request_line_limit
        self.port: int | None = None
        self._listener: socket.socket | None = None
        self._workers: dict[Connection, int] = {}
        self._running = False

    def bind(self, host: str, base_port: int, attempts: int, backlog: int = 16) -> int:
        self._listener, self.port = bind_listener(host, base_port, attempts, backlog)
        logger.info("Listening on %s:%d", host, self.port)
        return self.port

    def apply(self, request: Request) -> list[Task]:
        """Apply ``request`` to the store and return the sorted snapshot."""
        if request.button is not None and not request.quit:
            removed = self.tasks.remove_at(request.button)
            if removed is None:
                logger.info("Ignoring out of range index %d", request.button)
            else:
                logger.info("Done: %s", removed.name)
                self.task_file.save(self.tasks)
        return self.tasks.sorted_view()

    def serve_forever(self) -> None:
        """Run until "save and quit". The store is saved on the way out,
        whatever the reason.
        """
        if self._listener is None:
            raise RuntimeError("bind() must be called first")
        self._running = True
        try:
            while self._running:
                for ready in wait([self._listener, *self._workers]):
                    if ready is self._listener:
                        self._accept()
                    else:
                        self._service(ready)
                self._collect_children()
        finally:
            self.close()

    def close(self) -> None:
        self.task_file.save(self.tasks)
        for channel in self._workers:
            channel.close()
        self._workers.clear()
        if self._listener is not None:
            self._listener.close()
            self._listener = None
        logger.info("Server stopped, %d task(s) saved", len(self.tasks))

    def _accept(self) -> None:
        # accept errors propagate: a broken listening socket ends the server
        client, addr = self._listener.accept()
        logger.debug("Connection from %s:%d", *addr[:2])
        self._spawn_worker(client)

    def _spawn_worker(self, client: socket.socket) -> None:
        owner_end, worker_end = Pipe()
        try:
            pid = os.fork()
        except OSError:
            logger.exception("Can not fork a worker")
            for c in (client, owner_end, worker_end):
                c.close()
            return

        if pid == 0:
            status = 1
            try:
                signal.signal(signal.SIGTERM, signal.SIG_DFL)
                signal.signal(signal.SIGINT, signal.SIG_DFL)
                self._listener.close()
                owner_end.close()
                for channel in self._workers:
                    channel.close()
                handle_connection(
                    client,
                    worker_end,
                    css_file=self.css_file,
                    request_line_limit=self.request_line_limit,
                )
                status = 0
            except Exception:
                logger.exception("Worker failed")
            finally:
                os._exit(status)

        worker_end.close()
        client.close()
        self._workers[owner_end] = pid

    def _service(self, channel: Connection) -> None:
        pid = self._workers.pop(channel)
        with channel:
            try:
                request = channel.recv()
            except (EOFError, OSError):
                logger.debug("Worker %d hung up without a request", pid)
                return
            snapshot = self.apply(request)
            if request.quit:
                logger.info("Save and quit requested")
                self._running = False
            try:
                channel.send(snapshot)
            except OSError as e:
                logger.info("Worker %d went away: %s", pid, e)

    def _collect_children(self) -> None:
        while True:
            try:
                pid, _ = os.waitpid(-1, os.WNOHANG)
            except ChildProcessError:
                return
            if pid == 0:
                return


def _exit_on_signal(signum: int, _frame) -> None:
    logger.info("Received %s", signal.Signals(signum).name)
    sys.exit(0)


def run_daemon(
    tasks: TaskStore,
    task_file: TaskFile,
    settings: Settings,
    *,
    css_file: str | Path | None = None,
    on_ready: Callable[[str], None] = print,
    detach: bool = True,
) -> None:
    """Detach, take over the daemon record, and serve until told to stop.

    Returns only in the daemon process; the invoking process exits inside
    ``daemonize``. With ``detach=False`` the caller itself becomes the
    daemon and keeps its terminal.
    """
    if detach:
        daemonize()
    controller = DaemonController(settings.pid_file, settings.lock_file)
    controller.claim()
    try:
        server = TaskServer(
            tasks,
            task_file,
            css_file=css_file,
            request_line_limit=settings.request_line_limit,
        )
        port = server.bind(settings.host, settings.base_port, settings.port_attempts, settings.backlog)
        shown_host = "127.0.0.1" if settings.host in ("", "0.0.0.0") else settings.host
        on_ready(f"http://{shown_host}:{port}")
        if detach:
            detach_stdio()

        signal.signal(signal.SIGTERM, _exit_on_signal)
        signal.signal(signal.SIGINT, _exit_on_signal)
        server.serve_forever()
    finally:
        controller.release()
