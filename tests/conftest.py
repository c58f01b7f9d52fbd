import json

import numpy as np
import pytest

from rasterkit.gaussstretch.tool_host import ToolHost


class RecordingHost(ToolHost):
    """Keeps every progress/feedback call; optionally cancels after N progress updates."""

    def __init__(self, cancel_after=None):
        super().__init__()
        self.progress = []
        self.feedback = []
        self.cancel_after = cancel_after

    def _emit_progress(self, label, progress):
        self.progress.append((label, progress))
        if self.cancel_after is not None and len(self.progress) >= self.cancel_after:
            self.cancel()

    def _emit_feedback(self, message):
        self.feedback.append(message)


@pytest.fixture
def host():
    return RecordingHost()


@pytest.fixture(scope="session")
def qapp():
    from PyQt6.QtCore import QCoreApplication
    app = QCoreApplication.instance() or QCoreApplication([])
    yield app


@pytest.fixture
def ramp():
    """6x10 float raster with a few no-data (-9999) cells."""
    a = np.arange(60, dtype=np.float64).reshape(6, 10) * 1.5 - 20.0
    a[0, 0] = -9999.0
    a[3, 7] = -9999.0
    a[5, 9] = -9999.0
    return a


def write_npy(path, arr, nodata=None, **extra):
    np.save(path, arr)
    if nodata is not None or extra:
        meta = dict(extra)
        if nodata is not None:
            meta["nodata"] = nodata
        with open(f"{path}.json", "w", encoding="utf-8") as f:
            json.dump(meta, f)
    return str(path)


def read_sidecar(path):
    with open(f"{path}.json", "r", encoding="utf-8") as f:
        return json.load(f)


@pytest.fixture
def npy_raster(tmp_path, ramp):
    return write_npy(tmp_path / "in.npy", ramp, nodata=-9999.0)
