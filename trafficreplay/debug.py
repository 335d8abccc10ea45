"""Verbosity controlled debug output written to standard error."""

from __future__ import annotations

import sys
import threading
import time

_lock = threading.Lock()
_verbose = 0
_previous = time.monotonic()


def set_verbose(level: int) -> None:
    """Set the verbosity level; messages at or below it are printed."""
    global _verbose
    _verbose = level


def _format_elapsed(seconds: float) -> str:
    nanos = int(seconds * 1e9)
    if nanos < 1_000:
        return f"{nanos}ns"
    if nanos < 1_000_000:
        return f"{nanos / 1e3:g}µs"
    if nanos < 1_000_000_000:
        return f"{nanos / 1e6:g}ms"
    return f"{seconds:g}s"


def debug(level: int, *args: object) -> None:
    """Print ``args`` to stderr if the verbosity is at least ``level``."""
    global _previous
    if _verbose < level:
        return
    with _lock:
        now = time.monotonic()
        elapsed = now - _previous
        _previous = now
        line = " ".join(str(arg) for arg in args)
        sys.stderr.write(f"[DEBUG][elapsed {_format_elapsed(elapsed)}]: {line}\n")