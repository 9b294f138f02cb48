"""CLI progress helpers."""

from __future__ import annotations

import os
import shutil
import sys
import time
from typing import TextIO

from .providers.base import ProgressSnapshot
from .session.state import SectionView, SessionState

_BOLD = "\x1b[1m"
_GREY = "\x1b[38;2;150;157;165m"
_RESET = "\x1b[0m"


def format_progress(snapshot: ProgressSnapshot | None) -> str:
    if snapshot is None:
        return "Working..."
    parts = [f"{snapshot.percent}%"]
    if snapshot.current_step is not None and snapshot.total_steps is not None:
        parts.append(f"{snapshot.current_step}/{snapshot.total_steps}")
    if snapshot.eta_seconds is not None:
        parts.append(f"ETA {max(0, round(snapshot.eta_seconds))}s")
    return " · ".join(parts)


def progress_line(label: str, start: float | None = None, done: bool = False) -> tuple[str, float]:
    now = time.monotonic()
    origin = now if start is None else start
    elapsed = max(0, int(now - origin))
    minutes = elapsed // 60
    seconds = elapsed % 60
    suffix = "done" if done else "ctrl-c to interrupt"
    return f"• {label} ({minutes}m {seconds:02d}s • {suffix})", origin


def progress_once(label: str) -> float:
    line, origin = progress_line(label)
    print(line)
    return origin


def elapsed_line(label: str, seconds: float, width: int | None = None) -> str:
    duration = _format_duration(int(max(0, seconds)))
    resolved_width = width if width is not None else _resolve_terminal_width(sys.stdout, 100)
    line = _separator_line(f"{label} {duration}", resolved_width)
    return f"{_GREY}{line}{_RESET}"


class SectionProgressRenderer:
    """Renders section views as they change.

    On a TTY the in-flight status is redrawn in place; otherwise only settled
    sections are printed, one line each.
    """

    def __init__(self, stream: TextIO | None = None) -> None:
        self.stream = stream or sys.stdout
        self._enabled = bool(getattr(self.stream, "isatty", lambda: False)())
        self._last_state: dict[str, SessionState] = {}

    def __call__(self, view: SectionView) -> None:
        previous = self._last_state.get(view.title)
        self._last_state[view.title] = view.state
        if view.state is SessionState.IDLE:
            if previous is None or previous is SessionState.IDLE:
                return
            self._write_line(_settled_line(view), newline=True)
            return
        if not self._enabled:
            return
        label = f"{view.title}: {format_progress(view.progress)}"
        self._write_line(f"{_BOLD}{label}{_RESET}", newline=False)

    def _write_line(self, line: str, newline: bool) -> None:
        if not self._enabled:
            self.stream.write(f"{line}\n")
            self.stream.flush()
            return
        self.stream.write("\r")
        self.stream.write(line)
        self.stream.write("\033[K")
        if newline:
            self.stream.write("\n")
        self.stream.flush()


def _settled_line(view: SectionView) -> str:
    if view.last_error:
        return f"✗ {view.title}: {view.last_error}"
    count = len(view.gallery)
    noun = "variant" if count == 1 else "variants"
    return f"✓ {view.title}: {count} {noun}"


def _format_duration(seconds: int) -> str:
    minutes, secs = divmod(seconds, 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h {minutes}m {secs:02d}s"
    if minutes:
        return f"{minutes}m {secs:02d}s"
    return f"{secs}s"


def _separator_line(label: str, width: int) -> str:
    content = f" {label} "
    if width <= len(content) + 2:
        return content.strip()
    remaining = width - len(content)
    left = remaining // 2
    right = remaining - left
    return f"{'─' * left}{content}{'─' * right}"


def _resolve_terminal_width(stream: TextIO | None, fallback: int) -> int:
    if stream and hasattr(stream, "fileno"):
        try:
            return os.get_terminal_size(stream.fileno()).columns
        except OSError:
            pass
    try:
        return shutil.get_terminal_size(fallback=(fallback, 20)).columns
    except Exception:
        return fallback
