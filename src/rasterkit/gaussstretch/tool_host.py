# src/rasterkit/gaussstretch/tool_host.py
"""
Host services handed to a running tool: progress, feedback, cancellation,
exception logging and the completion hand-off.

The algorithm never reaches for a global host; the caller injects one.
"""
from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional

log = logging.getLogger(__name__)

ProgressCB = Optional[Callable[[int, int], bool]]  # (done,total)->continue?

RESET_LABEL = "Progress: "


class ToolHost:
    """
    Base host. Logs feedback and progress; subclasses override the `_emit_*`
    hooks to route them somewhere visible.
    """

    def __init__(self):
        self._cancel = threading.Event()
        self._prev_progress: int | None = None
        self._prev_label: str | None = None
        self.returned: list[Any] = []
        self.completed = 0

    # ---- progress (duplicates suppressed here, not in the algorithm) ----
    def update_progress(self, label: str, progress: int) -> None:
        progress = int(max(0, min(100, progress)))
        if progress == self._prev_progress and label == self._prev_label:
            return
        self._prev_progress = progress
        self._prev_label = label
        self._emit_progress(label, progress)

    def reset_progress(self) -> None:
        self.update_progress(RESET_LABEL, 0)

    # ---- feedback / logging ----
    def show_feedback(self, message: str) -> None:
        self._emit_feedback(message)

    def log_exception(self, message: str, exc: BaseException) -> None:
        log.error("%s: %s", message, exc, exc_info=(type(exc), exc, exc.__traceback__))

    # ---- cancellation ----
    def cancel(self) -> None:
        self._cancel.set()

    def is_cancelled(self) -> bool:
        return self._cancel.is_set()

    # ---- completion ----
    def return_data(self, obj: Any) -> None:
        self.returned.append(obj)

    def tool_complete(self) -> None:
        self.completed += 1

    # ---- hooks ----
    def _emit_progress(self, label: str, progress: int) -> None:
        log.debug("%s%d%%", label, progress)

    def _emit_feedback(self, message: str) -> None:
        log.info(message)


class ConsoleHost(ToolHost):
    """Prints progress lines for the CLI."""

    def _emit_progress(self, label: str, progress: int) -> None:
        print(f"PROGRESS: {label}{progress}%", flush=True)

    def _emit_feedback(self, message: str) -> None:
        log.info(message)
        print(message, flush=True)


class CallbackHost(ToolHost):
    """
    Adapts a progress_cb(done, total) -> bool callback.  Returning False
    from the callback requests cancellation.
    """

    def __init__(self, progress_cb: ProgressCB = None):
        super().__init__()
        self._cb = progress_cb

    def _emit_progress(self, label: str, progress: int) -> None:
        if self._cb is None:
            return
        if self._cb(progress, 100) is False:
            self.cancel()
