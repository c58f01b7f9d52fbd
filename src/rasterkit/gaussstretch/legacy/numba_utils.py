#src.rasterkit.gaussstretch.legacy.numba_utils.py
import numpy as np
from numba import njit, prange, get_num_threads

# NOTE: no fastmath here; it would let LLVM drop the NaN checks.


@njit
def _is_valid(z, nodata, nodata_is_nan):
    if z != z:
        return False
    if nodata_is_nan:
        return True
    return z != nodata


@njit
def _bin_of(z, min_value, bin_size, num_bins):
    f = (z - min_value) / bin_size
    if f < 0.0:
        return 0
    if f >= num_bins:
        return num_bins - 1
    return int(f)


@njit(parallel=True)
def histogram_rows_numba(block, nodata, min_value, bin_size, num_bins):
    """
    Histogram of a block of rows.  Each worker strides over its own rows into
    a private partial histogram; partials are summed afterwards.
    Returns (hist int64[num_bins], valid_count).
    """
    H, W = block.shape
    nodata_is_nan = nodata != nodata
    nt = max(1, min(H, get_num_threads()))
    partial = np.zeros((nt, num_bins), dtype=np.int64)
    counts = np.zeros(nt, dtype=np.int64)
    for t in prange(nt):
        for y in range(t, H, nt):
            for x in range(W):
                z = block[y, x]
                if _is_valid(z, nodata, nodata_is_nan):
                    partial[t, _bin_of(z, min_value, bin_size, num_bins)] += 1
                    counts[t] += 1

    hist = np.zeros(num_bins, dtype=np.int64)
    for t in range(nt):
        for b in range(num_bins):
            hist[b] += partial[t, b]
    return hist, counts.sum()


@njit(parallel=True)
def match_rows_numba(block, nodata, min_value, bin_size, lut, fill):
    """
    out[y, x] = lut[bin(block[y, x])] for valid pixels, `fill` otherwise.
    Rows are independent and write disjoint output rows.
    """
    H, W = block.shape
    num_bins = lut.shape[0]
    nodata_is_nan = nodata != nodata
    out = np.empty((H, W), dtype=np.float64)
    for y in prange(H):
        for x in range(W):
            z = block[y, x]
            if _is_valid(z, nodata, nodata_is_nan):
                out[y, x] = lut[_bin_of(z, min_value, bin_size, num_bins)]
            else:
                out[y, x] = fill
    return out
