"""
Logging utility with timestamps and timing support.
Provides structured, colourful console output for scan jobs.
Optionally writes each job's log lines to its own file when
WRITE_TO_FILE is set.

All mutable per-job state (timers, bound job id, log-file handle)
is stored in ``contextvars.ContextVar`` so that concurrent scan
tasks do not interfere with each other.
"""

from __future__ import annotations

import contextvars
import io
import os
import pathlib
import re
import sys
import time
from datetime import UTC, datetime

# ============================================================================
# Per-job state (isolated via contextvars)
# ============================================================================

_timers_var: contextvars.ContextVar[dict[str, float]] = contextvars.ContextVar("_timers_var")
_job_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar("_job_id_var", default=None)
_log_file_stream_var: contextvars.ContextVar[io.TextIOWrapper | None] = contextvars.ContextVar("_log_file_stream_var", default=None)

_ANSI_RE = re.compile(r"\033\[[0-9;]*m")


def _get_timers() -> dict[str, float]:
    """Return the per-context timer dict, creating it on first access."""
    try:
        return _timers_var.get()
    except LookupError:
        timers: dict[str, float] = {}
        _timers_var.set(timers)
        return timers


def bind_job(job_id: str | None) -> None:
    """Tag every subsequent log line in this task with *job_id*."""
    _job_id_var.set(job_id)
    _timers_var.set({})


def current_job() -> str | None:
    """Return the job id bound to the running task, if any."""
    return _job_id_var.get()


# ============================================================================
# File Logging
# ============================================================================

_write_to_file = os.environ.get("WRITE_TO_FILE", "").lower() == "true"


def configure_file_logging(enabled: bool) -> None:
    """Enable or disable per-job log files at runtime."""
    global _write_to_file
    _write_to_file = enabled


def start_log_file(job_id: str) -> None:
    """Start a new log file for a single scan job."""
    if not _write_to_file:
        return

    end_log_file()

    logs_dir = pathlib.Path.cwd() / ".logs"
    logs_dir.mkdir(parents=True, exist_ok=True)

    safe_id = "".join(c if c.isalnum() or c == "-" else "_" for c in job_id)[:64]
    now = datetime.now(UTC)
    log_file_path = logs_dir / f"{safe_id}_{now.strftime('%Y-%m-%d_%H-%M-%S')}.log"

    try:
        stream = open(log_file_path, "a", encoding="utf-8")  # noqa: SIM115
    except OSError as exc:
        print(f"\033[31m✗ [Logger] Failed to open log file: {exc}\033[0m", file=sys.stderr)
        return

    _log_file_stream_var.set(stream)
    stream.write(f"\n{'=' * 80}\n  Scan Job {job_id}\n  Started: {now.isoformat()}\n{'=' * 80}\n")


def end_log_file() -> None:
    """Flush and close the current job's log file."""
    stream = _log_file_stream_var.get(None)
    if stream is None:
        return
    try:
        stream.flush()
        stream.close()
    except OSError:
        print("\033[33m⚠ [Logger] Failed to flush/close log file stream\033[0m", file=sys.stderr)
    _log_file_stream_var.set(None)


def _write_to_log_file(line: str) -> None:
    """Write a line to the job log file (without ANSI colours)."""
    stream = _log_file_stream_var.get(None)
    if stream is None:
        return
    stream.write(_ANSI_RE.sub("", line) + "\n")
    stream.flush()


# ============================================================================
# ANSI Colours
# ============================================================================

_RESET = "\033[0m"
_BOLD = "\033[1m"
_DIM = "\033[2m"
_GRAY = "\033[90m"
_BLUE = "\033[34m"

# level -> (colour, symbol)
_LEVELS: dict[str, tuple[str, str]] = {
    "info": ("\033[36m", "ℹ"),
    "success": ("\033[32m", "✓"),
    "warn": ("\033[33m", "⚠"),
    "error": ("\033[31m", "✗"),
    "debug": (_GRAY, "•"),
    "timing": ("\033[35m", "⏱"),
}

# Lists up to this length are printed in full (hosts, flags, cookies).
_MAX_INLINE_ITEMS = 5
_MAX_STRING_LENGTH = 200


def _get_timestamp() -> str:
    """Return the current UTC time as HH:MM:SS.mmm."""
    now = datetime.now(UTC)
    return now.strftime("%H:%M:%S.") + f"{now.microsecond // 1000:03d}"


def _format_duration(ms: float) -> str:
    if ms < 1000:
        return f"{int(ms)}ms"
    return f"{ms / 1000:.2f}s"


def _format_value(value: object) -> str:
    """Render *value* for a ``key=value`` pair."""
    if value is None or isinstance(value, bool):
        return f"{_DIM}{value}{_RESET}"
    if isinstance(value, (int, float)):
        return f"\033[33m{value}{_RESET}"
    if isinstance(value, str):
        if len(value) > _MAX_STRING_LENGTH:
            value = value[: _MAX_STRING_LENGTH - 3] + "..."
        return f'\033[32m"{value}"{_RESET}'
    if isinstance(value, (list, tuple, set)):
        items = list(value)
        if len(items) <= _MAX_INLINE_ITEMS:
            return f"\033[36m[{', '.join(str(item) for item in items)}]{_RESET}"
        return f"\033[36m[{len(items)} items]{_RESET}"
    return str(value)


# ============================================================================
# Logger Class
# ============================================================================


class Logger:
    """Structured logger with context prefix, job tagging and timing support."""

    def __init__(self, context: str = "Worker") -> None:
        self._context = context

    def _emit(self, line: str) -> None:
        print(line, file=sys.stderr)
        _write_to_log_file(line)

    def _log(self, level: str, message: str, data: dict[str, object] | None = None) -> None:
        colour, symbol = _LEVELS.get(level, _LEVELS["info"])
        parts = [f"{_GRAY}[{_get_timestamp()}]{_RESET}", f"{colour}{symbol}{_RESET}", f"{_BOLD}[{self._context}]{_RESET}"]

        job_id = _job_id_var.get()
        if job_id:
            parts.append(f"{_DIM}job={job_id[:8]}{_RESET}")

        parts.append(message)
        if data:
            parts.extend(f"{_DIM}{key}={_RESET}{_format_value(value)}" for key, value in data.items())
        self._emit(" ".join(parts))

    def info(self, message: str, data: dict[str, object] | None = None) -> None:
        self._log("info", message, data)

    def success(self, message: str, data: dict[str, object] | None = None) -> None:
        self._log("success", message, data)

    def warn(self, message: str, data: dict[str, object] | None = None) -> None:
        self._log("warn", message, data)

    def error(self, message: str, data: dict[str, object] | None = None) -> None:
        self._log("error", message, data)

    def debug(self, message: str, data: dict[str, object] | None = None) -> None:
        self._log("debug", message, data)

    def start_timer(self, label: str) -> None:
        """Start a named timer, scoped to this logger's context and the current task."""
        _get_timers()[f"{self._context}:{label}"] = time.monotonic()
        self._log("timing", f"Starting: {label}")

    def end_timer(self, label: str, message: str | None = None) -> float:
        """Stop a named timer, log the elapsed time and return it in ms.

        Returns ``0.0`` (and warns) when the timer was never started.
        """
        started = _get_timers().pop(f"{self._context}:{label}", None)
        if started is None:
            self.warn(f'Timer "{label}" was not started')
            return 0.0

        duration = (time.monotonic() - started) * 1000
        self._log("timing", f"{message or f'Completed: {label}'} {_DIM}took{_RESET} {_format_duration(duration)}")
        return duration

    def section(self, title: str) -> None:
        """Print a prominent divider with *title*."""
        rule = f"{_BLUE}{'─' * 60}{_RESET}"
        for line in ("", rule, f"{_BLUE}{_BOLD}  {title}{_RESET}", rule, ""):
            self._emit(line)


def create_logger(context: str) -> Logger:
    """Create a logger for a specific module."""
    return Logger(context)
