# imageops/stretch.py
"""
Gaussian contrast stretch (histogram matching to a truncated normal).

Pipeline:
    1. build_histogram        - empirical histogram of valid pixels
    2. empirical_cdf          - prefix sum / valid count
    3. reference_cdf          - discretised Gaussian CDF over +-cutoff_sd
    4. match pass             - per pixel: empirical CDF -> reference bin

The row passes run on Numba kernels in blocks of rows; cancellation and
progress are polled between blocks through the injected ToolHost.
"""
from __future__ import annotations

import logging
import math

import numpy as np

from rasterkit.gaussstretch.legacy.numba_utils import (
    histogram_rows_numba,
    match_rows_numba,
)

log = logging.getLogger(__name__)

DEFAULT_NUM_BINS = 50000
DEFAULT_CUTOFF_SD = 3.0
DEFAULT_NUM_OUTPUT_BINS = 1024
DEFAULT_CHUNK_ROWS = 256

LOOP1_LABEL = "Loop 1 of 3: "
LOOP2_LABEL = "Loop 2 of 3: "
LOOP3_LABEL = "Loop 3 of 3: "


class StretchConfigError(ValueError):
    """Invalid numeric parameters (bin counts, cutoff, value range)."""


class StretchCancelled(Exception):
    """Raised when the host reports cancellation at a row boundary."""


# ---------------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------------

def _poll(host, label: str, rows_done: int, rows: int) -> None:
    if host is None:
        return
    if host.is_cancelled():
        raise StretchCancelled(label.strip())
    host.update_progress(label, int(100 * rows_done / max(1, rows)))


def _check_range(min_value: float, max_value: float, num_bins: int) -> float:
    if num_bins < 1:
        raise StretchConfigError(f"num_bins must be >= 1 (got {num_bins})")
    if not (math.isfinite(min_value) and math.isfinite(max_value)):
        raise StretchConfigError(f"Value range must be finite (got {min_value}..{max_value})")
    if not min_value < max_value:
        raise StretchConfigError(
            f"Minimum value must be less than maximum value (got {min_value}..{max_value})"
        )
    return (max_value - min_value) / num_bins


def bin_index(value: float, min_value: float, bin_size: float, num_bins: int) -> int:
    """Histogram bin of a single value, clamped to [0, num_bins - 1]."""
    f = (value - min_value) / bin_size
    if f < 0.0:
        return 0
    if f >= num_bins:
        return num_bins - 1
    return int(f)


def valid_range(image: np.ndarray, nodata: float) -> tuple[float, float]:
    """(min, max) over pixels that are neither NaN nor the no-data sentinel."""
    a = np.asarray(image, dtype=np.float64)
    mask = ~np.isnan(a)
    if not math.isnan(nodata):
        mask &= a != nodata
    if not mask.any():
        return 0.0, 0.0
    v = a[mask]
    return float(v.min()), float(v.max())


# ---------------------------------------------------------------------------
# 1. histogram
# ---------------------------------------------------------------------------

def build_histogram(reader,
                    nodata: float,
                    min_value: float,
                    max_value: float,
                    num_bins: int = DEFAULT_NUM_BINS,
                    host=None,
                    chunk_rows: int = DEFAULT_CHUNK_ROWS) -> tuple[np.ndarray, int]:
    """
    Count valid pixels of `reader` into `num_bins` equal-width bins.

    reader: anything with .rows, .cols and .get_rows(start, stop) -> 2-D float64.
    Returns (histogram int64[num_bins], num_cells).
    """
    bin_size = _check_range(float(min_value), float(max_value), int(num_bins))
    rows, cols = int(reader.rows), int(reader.cols)
    if rows < 1 or cols < 1:
        raise StretchConfigError(f"Raster must be at least 1x1 (got {rows}x{cols})")
    chunk_rows = max(1, int(chunk_rows))

    histogram = np.zeros(num_bins, dtype=np.int64)
    num_cells = 0

    _poll(host, LOOP1_LABEL, 0, rows)
    for start in range(0, rows, chunk_rows):
        stop = min(rows, start + chunk_rows)
        block = np.ascontiguousarray(reader.get_rows(start, stop), dtype=np.float64)
        partial, n = histogram_rows_numba(block, float(nodata), float(min_value),
                                          float(bin_size), int(num_bins))
        histogram += partial
        num_cells += int(n)
        _poll(host, LOOP1_LABEL, stop, rows)

    log.debug("histogram: %d valid cells in %dx%d raster", num_cells, rows, cols)
    return histogram, num_cells


# ---------------------------------------------------------------------------
# 2./3. CDFs
# ---------------------------------------------------------------------------

def empirical_cdf(histogram: np.ndarray, num_cells: int) -> np.ndarray:
    """Normalised prefix sum of histogram counts."""
    cdf = np.cumsum(np.asarray(histogram, dtype=np.float64))
    if num_cells <= 0:
        return np.zeros_like(cdf)
    cdf /= float(num_cells)
    return cdf


def reference_cdf(num_output_bins: int, cutoff_sd: float) -> np.ndarray:
    """
    Cumulative standard-normal density sampled at `num_output_bins` points
    over [-cutoff_sd, +cutoff_sd], normalised so the last entry is 1.0.
    The missing tail mass is absorbed by that final normalisation.
    """
    n = int(num_output_bins)
    if n < 2:
        raise StretchConfigError(f"num_output_bins must be >= 2 (got {num_output_bins})")
    cutoff_sd = float(cutoff_sd)
    if not (math.isfinite(cutoff_sd) and cutoff_sd > 0):
        raise StretchConfigError(f"cutoff_sd must be > 0 (got {cutoff_sd})")

    i = np.arange(n, dtype=np.float64)
    x = i / (n - 1) * 2.0 * cutoff_sd - cutoff_sd
    density = np.exp(-x * x / 2.0) / math.sqrt(2.0 * math.pi)
    ref = np.cumsum(density)
    ref /= ref[-1]
    return ref


def decile_start_table(ref_cdf: np.ndarray) -> np.ndarray:
    """
    table[d] = last index i with ref_cdf[i] < d/10 (0 if none), d = 1..9;
    table[10] = last index with ref_cdf[i] <= 1.  table[0] is unused.
    """
    ref = np.asarray(ref_cdf, dtype=np.float64)
    table = np.zeros(11, dtype=np.int64)
    for d in range(1, 10):
        k = int(np.searchsorted(ref, d / 10.0, side="left"))
        table[d] = max(k - 1, 0)
    k = int(np.searchsorted(ref, 1.0, side="right"))
    table[10] = max(k - 1, 0)
    return table


# ---------------------------------------------------------------------------
# 4. quantile inversion
# ---------------------------------------------------------------------------

def match_quantile(p: float, ref_cdf: np.ndarray) -> int:
    """
    Output bin for empirical CDF value p.

    Exact hit -> that index (the last one if the value repeats);
    overshoot -> the index before the first value above p (0 at the start).
    """
    k = int(np.searchsorted(ref_cdf, p, side="right"))
    return max(k - 1, 0)


def match_quantile_scan(p: float, ref_cdf: np.ndarray, start_table: np.ndarray) -> int:
    """Linear scan from the decile hint; same result as match_quantile."""
    n = len(ref_cdf)
    d = min(10, max(0, int(math.floor(p * 10))))
    out = 0
    for i in range(int(start_table[d]), n):
        v = ref_cdf[i]
        if v > p:
            out = i - 1 if i > 0 else i
            break
        out = i
    return out


def quantile_lookup_table(cdf: np.ndarray, ref_cdf: np.ndarray) -> np.ndarray:
    """Output bin for every histogram bin (int64[num_bins])."""
    k = np.searchsorted(ref_cdf, cdf, side="right").astype(np.int64)
    return np.maximum(k - 1, 0)


def match_pass(reader,
               writer,
               nodata: float,
               min_value: float,
               max_value: float,
               lut: np.ndarray,
               host=None,
               chunk_rows: int = DEFAULT_CHUNK_ROWS,
               out_nodata: float | None = None) -> None:
    """Third pass: write lut[bin(z)] for every valid pixel, no-data elsewhere."""
    num_bins = int(len(lut))
    bin_size = _check_range(float(min_value), float(max_value), num_bins)
    rows = int(reader.rows)
    chunk_rows = max(1, int(chunk_rows))
    fill = float(nodata if out_nodata is None else out_nodata)

    _poll(host, LOOP3_LABEL, 0, rows)
    for start in range(0, rows, chunk_rows):
        stop = min(rows, start + chunk_rows)
        block = np.ascontiguousarray(reader.get_rows(start, stop), dtype=np.float64)
        out = match_rows_numba(block, float(nodata), float(min_value), float(bin_size),
                               lut, fill)
        writer.set_rows(start, out)
        _poll(host, LOOP3_LABEL, stop, rows)


def gaussian_stretch(reader,
                     writer,
                     cutoff_sd: float = DEFAULT_CUTOFF_SD,
                     num_output_bins: int = DEFAULT_NUM_OUTPUT_BINS,
                     num_bins: int = DEFAULT_NUM_BINS,
                     host=None,
                     chunk_rows: int = DEFAULT_CHUNK_ROWS) -> int:
    """
    Run all passes from `reader` into `writer`. Returns the valid-cell count.
    Parameters are validated before the first pixel is read.
    """
    ref = reference_cdf(num_output_bins, cutoff_sd)

    nodata = float(reader.nodata)
    min_value, max_value = float(reader.min_value), float(reader.max_value)
    if min_value == max_value and math.isfinite(min_value):
        # constant raster: one bin of non-zero width keeps the binning defined
        max_value = min_value + 1.0

    histogram, num_cells = build_histogram(reader, nodata, min_value, max_value,
                                           num_bins, host=host, chunk_rows=chunk_rows)

    if host is not None:
        host.update_progress(LOOP2_LABEL, 0)
    cdf = empirical_cdf(histogram, num_cells)
    del histogram
    lut = quantile_lookup_table(cdf, ref)
    if host is not None:
        host.update_progress(LOOP2_LABEL, 100)

    match_pass(reader, writer, nodata, min_value, max_value, lut,
               host=host, chunk_rows=chunk_rows, out_nodata=writer.nodata)
    return num_cells


# ---------------------------------------------------------------------------
# In-memory convenience
# ---------------------------------------------------------------------------

class _ArrayRows:
    """Minimal reader/writer over a 2-D ndarray."""

    def __init__(self, arr: np.ndarray, nodata: float,
                 min_value: float | None = None, max_value: float | None = None):
        self.arr = arr
        self.rows, self.cols = arr.shape
        self.nodata = nodata
        if min_value is None or max_value is None:
            lo, hi = valid_range(arr, nodata)
            min_value = lo if min_value is None else min_value
            max_value = hi if max_value is None else max_value
        self.min_value = min_value
        self.max_value = max_value

    def get_rows(self, start: int, stop: int) -> np.ndarray:
        return self.arr[start:stop]

    def set_rows(self, start: int, values: np.ndarray) -> None:
        self.arr[start:start + values.shape[0]] = values


def gaussian_stretch_array(image: np.ndarray,
                           nodata: float,
                           cutoff_sd: float = DEFAULT_CUTOFF_SD,
                           num_output_bins: int = DEFAULT_NUM_OUTPUT_BINS,
                           num_bins: int = DEFAULT_NUM_BINS,
                           min_value: float | None = None,
                           max_value: float | None = None,
                           host=None,
                           chunk_rows: int = DEFAULT_CHUNK_ROWS) -> np.ndarray:
    """
    image: 2-D array. Returns float64 array of matched bin indices with
    `nodata` at invalid positions.
    """
    img = np.asarray(image, dtype=np.float64)
    if img.ndim != 2:
        raise StretchConfigError(f"Expected a single-band 2-D image, got shape {img.shape}")

    src = _ArrayRows(img, float(nodata), min_value, max_value)
    dst = _ArrayRows(np.empty_like(img), float(nodata), 0.0, 0.0)
    gaussian_stretch(src, dst, cutoff_sd=cutoff_sd, num_output_bins=num_output_bins,
                     num_bins=num_bins, host=host, chunk_rows=chunk_rows)
    return dst.arr
