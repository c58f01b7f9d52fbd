# src/rasterkit/gaussstretch/pipeline.py
from __future__ import annotations

import logging

from PyQt6.QtCore import QObject, QThread, pyqtSignal

from rasterkit.gaussstretch.gaussstretch_headless import run_gaussian_stretch_on_file
from rasterkit.gaussstretch.tool_host import ToolHost

log = logging.getLogger(__name__)


class _SignalHost(ToolHost):
    """ToolHost that forwards everything to a runner's signals."""

    def __init__(self, runner: "StretchRunner"):
        super().__init__()
        self._runner = runner

    def _emit_progress(self, label: str, progress: int) -> None:
        self._runner.progress.emit(label, progress)

    def _emit_feedback(self, message: str) -> None:
        log.info(message)
        self._runner.feedback.emit(message)

    def return_data(self, obj) -> None:
        super().return_data(obj)
        self._runner.dataReturned.emit(str(obj))


class StretchRunner(QObject):
    progress = pyqtSignal(str, int)       # label, percent
    feedback = pyqtSignal(str)
    dataReturned = pyqtSignal(str)        # output path
    finished = pyqtSignal(bool, str)      # ok, message

    def __init__(self, preset: dict, *, default_nodata: float | None = None,
                 memmap_threshold_mb: float | None = None):
        super().__init__()
        self.preset = dict(preset)
        self.host = _SignalHost(self)
        self._started = False
        self._kwargs = {}
        if default_nodata is not None:
            self._kwargs["default_nodata"] = default_nodata
        if memmap_threshold_mb is not None:
            self._kwargs["memmap_threshold_mb"] = memmap_threshold_mb

    def cancel(self):
        self.host.cancel()

    def is_active(self) -> bool:
        return self.host.completed == 0 and self._started

    def run(self):
        self._started = True
        try:
            out = run_gaussian_stretch_on_file(self.preset, host=self.host, **self._kwargs)
        except Exception as e:
            # already reported through feedback
            self.finished.emit(False, str(e) or type(e).__name__)
            return
        self.finished.emit(True, out)


def run_stretch_async(parent, preset: dict, **kwargs):
    """
    Run a stretch on a worker QThread.  `parent` may expose update_status(str)
    for status-bar messages.  Returns (runner, thread); keep references
    until `finished` fires.
    """
    runner = StretchRunner(preset, **kwargs)
    t = QThread(parent)
    runner.moveToThread(t)

    def _done(ok, msg):
        if hasattr(parent, "update_status"):
            parent.update_status(f"[Gaussian Stretch] {'done' if ok else 'failed'}: {msg}")

    # may run on the worker thread; quit() is safe there, wait() is not
    runner.finished.connect(t.quit)
    t.finished.connect(runner.deleteLater)
    t.finished.connect(t.deleteLater)

    def _prog(label, pct):
        if hasattr(parent, "update_status"):
            parent.update_status(f"[Gaussian Stretch] {label}{pct}%")

    runner.progress.connect(_prog)
    runner.finished.connect(_done)
    t.started.connect(runner.run)
    t.start()
    return runner, t
