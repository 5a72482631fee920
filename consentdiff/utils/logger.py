"""
Logging utility with timestamps, trace ids and timing support.
Provides structured, colourful console output for each probe stage.
Optionally appends logs to a per-run file when WRITE_TO_FILE is set.

All mutable per-run state (trace id, timers, log buffer, log-file
handle) lives in ``contextvars.ContextVar`` so that concurrent probe
runs served by the same process do not interleave their state.
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
# Per-run state (isolated via contextvars)
# ============================================================================

_trace_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar("_trace_id_var", default=None)
_timers_var: contextvars.ContextVar[dict[str, tuple[float, str]]] = contextvars.ContextVar("_timers_var")
_log_buffer_var: contextvars.ContextVar[list[str]] = contextvars.ContextVar("_log_buffer_var")
_log_file_stream_var: contextvars.ContextVar[io.TextIOWrapper | None] = contextvars.ContextVar(
    "_log_file_stream_var", default=None
)

_ANSI_RE = re.compile(r"\033\[[0-9;]*m")


def _get_timers() -> dict[str, tuple[float, str]]:
    """Return the per-context timer dict, creating it on first access."""
    try:
        return _timers_var.get()
    except LookupError:
        timers: dict[str, tuple[float, str]] = {}
        _timers_var.set(timers)
        return timers


def _get_log_buffer() -> list[str]:
    """Return the per-context log buffer, creating it on first access."""
    try:
        return _log_buffer_var.get()
    except LookupError:
        buf: list[str] = []
        _log_buffer_var.set(buf)
        return buf


def bind_trace_id(trace_id: str | None) -> None:
    """Tag every subsequent line in this context with *trace_id*."""
    _trace_id_var.set(trace_id)


def current_trace_id() -> str | None:
    """Return the trace id bound to the current context, if any."""
    return _trace_id_var.get()


def get_log_buffer() -> list[str]:
    """Return a copy of the accumulated log lines (ANSI-stripped)."""
    return list(_get_log_buffer())


def clear_log_buffer() -> None:
    """Reset the buffer and timers before the next run."""
    _get_log_buffer().clear()
    _get_timers().clear()


# ============================================================================
# File Logging
# ============================================================================

_write_to_file = os.environ.get("WRITE_TO_FILE", "").lower() == "true"


def start_log_file(trace_id: str, host: str) -> None:
    """Open ``.logs/<host>_<trace>.log`` for the current run."""
    if not _write_to_file:
        return

    end_log_file()

    logs_dir = pathlib.Path.cwd() / ".logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    safe_host = "".join(c if c.isalnum() or c in ".-" else "_" for c in host.removeprefix("www."))[:50]
    path = logs_dir / f"{safe_host}_{trace_id[:8]}.log"

    try:
        stream = open(path, "a", encoding="utf-8")  # noqa: SIM115
    except OSError as exc:
        print(f"\033[31m✗ [Logger] Failed to open log file: {exc}\033[0m", file=sys.stderr)
        return

    _log_file_stream_var.set(stream)
    stream.write(f"\n{'=' * 80}\n  Probe {trace_id} - {host}\n  Started: {datetime.now(UTC).isoformat()}\n{'=' * 80}\n")


def end_log_file() -> None:
    """Flush and close the current log file."""
    stream = _log_file_stream_var.get(None)
    if stream is None:
        return
    try:
        stream.flush()
        stream.close()
    except OSError:
        print("\033[33m⚠ [Logger] Failed to flush/close log file stream\033[0m", file=sys.stderr)
    _log_file_stream_var.set(None)


def _emit(line: str) -> None:
    """Write *line* to stderr, the optional log file, and the buffer."""
    print(line, file=sys.stderr)
    clean = _ANSI_RE.sub("", line)
    stream = _log_file_stream_var.get(None)
    if stream is not None:
        stream.write(clean + "\n")
        stream.flush()
    _get_log_buffer().append(clean)


# ============================================================================
# ANSI Colours
# ============================================================================

_colours = {
    "reset": "\033[0m",
    "bright": "\033[1m",
    "dim": "\033[2m",
    "cyan": "\033[36m",
    "green": "\033[32m",
    "yellow": "\033[33m",
    "red": "\033[31m",
    "magenta": "\033[35m",
    "blue": "\033[34m",
    "gray": "\033[90m",
}

_level_colour = {
    "info": _colours["cyan"],
    "success": _colours["green"],
    "warn": _colours["yellow"],
    "error": _colours["red"],
    "debug": _colours["gray"],
    "timing": _colours["magenta"],
}

_level_symbol = {
    "info": "ℹ",
    "success": "✓",
    "warn": "⚠",
    "error": "✗",
    "debug": "•",
    "timing": "⏱",
}


def _get_timestamp() -> str:
    """Return the current UTC time as HH:MM:SS.mmm."""
    now = datetime.now(UTC)
    return now.strftime("%H:%M:%S.") + f"{now.microsecond // 1000:03d}"


def _format_duration(ms: float) -> str:
    """Format a duration in milliseconds for display."""
    if ms < 1000:
        return f"{int(ms)}ms"
    return f"{ms / 1000:.2f}s"


def _format_value(value: object) -> str:
    """Return an ANSI-coloured representation of *value*."""
    c = _colours
    if value is None:
        return f"{c['dim']}None{c['reset']}"
    if isinstance(value, bool):
        return f"{c['green']}True{c['reset']}" if value else f"{c['red']}False{c['reset']}"
    if isinstance(value, (int, float)):
        return f"{c['yellow']}{value}{c['reset']}"
    if isinstance(value, str):
        display = value[:197] + "..." if len(value) > 200 else value
        return f'{c["green"]}"{display}"{c["reset"]}'
    if isinstance(value, (list, tuple, set)):
        return f"{c['cyan']}[{len(value)} items]{c['reset']}"
    if isinstance(value, dict):
        return f"{c['cyan']}{{{len(value)} keys}}{c['reset']}"
    return str(value)


# ============================================================================
# Logger Class
# ============================================================================


class Logger:
    """Structured logger with context prefix, trace id and timers."""

    def __init__(self, context: str = "Probe") -> None:
        """Create a logger that prefixes messages with *context*."""
        self._context = context

    def _log(self, level: str, message: str, data: dict[str, object] | None = None) -> None:
        """Format and emit a log line at the given level."""
        c = _colours
        colour = _level_colour.get(level, c["cyan"])
        symbol = _level_symbol.get(level, "ℹ")
        trace_id = _trace_id_var.get()
        trace = f" {c['dim']}<{trace_id[:8]}>{c['reset']}" if trace_id else ""

        line = (
            f"{c['gray']}[{_get_timestamp()}]{c['reset']}{trace} {colour}{symbol}{c['reset']} "
            f"{c['bright']}[{self._context}]{c['reset']} {message}"
        )
        if data:
            line += " " + " ".join(f"{c['dim']}{k}={c['reset']}{_format_value(v)}" for k, v in data.items())
        _emit(line)

    def info(self, message: str, data: dict[str, object] | None = None) -> None:
        """Log an informational message."""
        self._log("info", message, data)

    def success(self, message: str, data: dict[str, object] | None = None) -> None:
        """Log a success message."""
        self._log("success", message, data)

    def warn(self, message: str, data: dict[str, object] | None = None) -> None:
        """Log a warning message."""
        self._log("warn", message, data)

    def error(self, message: str, data: dict[str, object] | None = None) -> None:
        """Log an error message."""
        self._log("error", message, data)

    def debug(self, message: str, data: dict[str, object] | None = None) -> None:
        """Log a debug-level message."""
        self._log("debug", message, data)

    def start_timer(self, label: str) -> None:
        """Start a named timer for performance measurement."""
        key = f"{self._context}:{label}"
        _get_timers()[key] = (time.monotonic() * 1000, _get_timestamp())
        self._log("timing", f"Starting: {label}")

    def end_timer(self, label: str, message: str | None = None) -> float:
        """Stop a named timer, log and return the elapsed milliseconds."""
        key = f"{self._context}:{label}"
        entry = _get_timers().pop(key, None)
        if entry is None:
            self.warn(f'Timer "{label}" was not started')
            return 0.0

        start_ms, start_ts = entry
        duration = time.monotonic() * 1000 - start_ms
        c = _colours
        self._log(
            "timing",
            f"{message or f'Completed: {label}'} {c['dim']}took{c['reset']} "
            f"{c['magenta']}{_format_duration(duration)}{c['reset']} {c['dim']}(started {start_ts}){c['reset']}",
        )
        return duration

    def section(self, title: str) -> None:
        """Print a prominent section divider with *title*."""
        c = _colours
        line = "─" * 60
        for ln in ("", f"{c['blue']}{line}{c['reset']}", f"{c['blue']}{c['bright']}  {title}{c['reset']}",
                   f"{c['blue']}{line}{c['reset']}", ""):
            _emit(ln)

    def subsection(self, title: str) -> None:
        """Print a smaller sub-section header."""
        _emit(f"\n{_colours['cyan']}  ▸ {title}{_colours['reset']}")


def create_logger(context: str) -> Logger:
    """Create a logger for a specific module."""
    return Logger(context)
