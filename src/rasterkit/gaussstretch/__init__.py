"""
RasterKit Gaussian Contrast Stretch

Fits the histogram of a single-band raster to a truncated normal
distribution.  The algorithm lives in imageops.stretch; file runners in
gaussstretch_headless; the Qt worker in pipeline.
"""

from .gaussstretch_headless import run_gaussian_stretch_on_array, run_gaussian_stretch_on_file
from .tool_host import CallbackHost, ConsoleHost, ToolHost

__all__ = [
    "run_gaussian_stretch_on_array",
    "run_gaussian_stretch_on_file",
    "ToolHost",
    "ConsoleHost",
    "CallbackHost",
]

# Expose main entry point for package script
from .__main__ import main
__all__.append("main")
