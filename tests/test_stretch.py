import math

import numpy as np
import pytest

from rasterkit.gaussstretch.imageops.stretch import (
    LOOP1_LABEL,
    LOOP2_LABEL,
    LOOP3_LABEL,
    StretchCancelled,
    StretchConfigError,
    _ArrayRows,
    bin_index,
    build_histogram,
    decile_start_table,
    empirical_cdf,
    gaussian_stretch_array,
    match_quantile,
    match_quantile_scan,
    quantile_lookup_table,
    reference_cdf,
    valid_range,
)

from conftest import RecordingHost

SMALL_REF = np.array([0.1, 0.3, 0.5, 0.7, 0.9, 1.0])


# ---------------------------------------------------------------------------
# histogram
# ---------------------------------------------------------------------------

def test_histogram_counts_only_valid_cells(ramp):
    lo, hi = valid_range(ramp, -9999.0)
    hist, n = build_histogram(_ArrayRows(ramp, -9999.0), -9999.0, lo, hi, num_bins=100,
                              chunk_rows=2)
    assert n == 57
    assert hist.sum() == n
    assert hist.dtype == np.int64


def test_histogram_nan_is_never_counted():
    a = np.array([[1.0, np.nan, 3.0], [np.nan, 2.0, 0.0]])
    hist, n = build_histogram(_ArrayRows(a, 0.0), 0.0, 1.0, 3.0, num_bins=10)
    assert n == 3
    assert hist.sum() == 3


def test_histogram_nan_nodata():
    a = np.array([[1.0, np.nan], [2.0, 3.0]])
    hist, n = build_histogram(_ArrayRows(a, math.nan), math.nan, 1.0, 3.0, num_bins=4)
    assert n == 3
    assert hist[0] == 1 and hist[-1] == 1


def test_histogram_chunking_does_not_change_result(ramp):
    lo, hi = valid_range(ramp, -9999.0)
    h1, n1 = build_histogram(_ArrayRows(ramp, -9999.0), -9999.0, lo, hi, 500, chunk_rows=1)
    h2, n2 = build_histogram(_ArrayRows(ramp, -9999.0), -9999.0, lo, hi, 500, chunk_rows=100)
    assert n1 == n2
    np.testing.assert_array_equal(h1, h2)


def test_histogram_rejects_bad_range():
    a = np.ones((2, 2))
    with pytest.raises(StretchConfigError):
        build_histogram(_ArrayRows(a, 0.0), 0.0, 2.0, 1.0, 10)
    with pytest.raises(StretchConfigError):
        build_histogram(_ArrayRows(a, 0.0), 0.0, 0.0, math.inf, 10)
    with pytest.raises(StretchConfigError):
        build_histogram(_ArrayRows(a, 0.0), 0.0, 0.0, 1.0, 0)


def test_bin_index_clamps_both_ends():
    assert bin_index(-5.0, 0.0, 0.1, 10) == 0
    assert bin_index(0.0, 0.0, 0.1, 10) == 0
    assert bin_index(0.55, 0.0, 0.1, 10) == 5
    assert bin_index(1.0, 0.0, 0.1, 10) == 9
    assert bin_index(100.0, 0.0, 0.1, 10) == 9


def test_histogram_reports_loop1_progress(ramp):
    host = RecordingHost()
    lo, hi = valid_range(ramp, -9999.0)
    build_histogram(_ArrayRows(ramp, -9999.0), -9999.0, lo, hi, 100, host=host, chunk_rows=3)
    assert host.progress == [(LOOP1_LABEL, 0), (LOOP1_LABEL, 50), (LOOP1_LABEL, 100)]


# ---------------------------------------------------------------------------
# CDFs
# ---------------------------------------------------------------------------

def test_empirical_cdf_is_monotone_and_ends_at_one():
    hist = np.array([3, 0, 5, 2, 0], dtype=np.int64)
    cdf = empirical_cdf(hist, 10)
    assert np.all(np.diff(cdf) >= 0)
    assert cdf[-1] == 1.0
    np.testing.assert_allclose(cdf, [0.3, 0.3, 0.8, 1.0, 1.0])


def test_empirical_cdf_without_valid_cells_is_zero():
    cdf = empirical_cdf(np.zeros(4, dtype=np.int64), 0)
    np.testing.assert_array_equal(cdf, np.zeros(4))


@pytest.mark.parametrize("n,c", [(2, 1.0), (9, 3.0), (1024, 3.0), (255, 0.5)])
def test_reference_cdf_properties(n, c):
    ref = reference_cdf(n, c)
    assert len(ref) == n
    assert ref[0] >= 0
    assert ref[-1] == 1.0
    assert np.all(np.diff(ref) >= 0)


def test_reference_cdf_is_symmetric():
    ref = reference_cdf(101, 3.0)
    density = np.diff(np.concatenate([[0.0], ref]))
    np.testing.assert_allclose(density, density[::-1], rtol=1e-9)


@pytest.mark.parametrize("n,c", [(1, 3.0), (0, 3.0), (10, 0.0), (10, -1.0), (10, math.nan)])
def test_reference_cdf_rejects_bad_parameters(n, c):
    with pytest.raises(StretchConfigError):
        reference_cdf(n, c)


# ---------------------------------------------------------------------------
# decile table / quantile inversion
# ---------------------------------------------------------------------------

def test_decile_table_on_small_reference():
    table = decile_start_table(SMALL_REF)
    assert table.tolist() == [0, 0, 0, 0, 1, 1, 2, 2, 3, 3, 5]


def test_decile_table_contract_on_gaussian_reference():
    ref = reference_cdf(1024, 3.0)
    table = decile_start_table(ref)
    for d in range(1, 10):
        below = np.nonzero(ref < d / 10.0)[0]
        assert table[d] == (below[-1] if len(below) else 0)
    assert table[10] == len(ref) - 1


def test_exact_hit_and_overshoot():
    assert match_quantile(0.5, SMALL_REF) == 2
    assert match_quantile(0.55, SMALL_REF) == 2
    assert match_quantile(0.05, SMALL_REF) == 0
    assert match_quantile(1.0, SMALL_REF) == 5


def test_repeated_reference_value_maps_to_last_occurrence():
    ref = np.array([0.2, 0.5, 0.5, 0.5, 1.0])
    assert match_quantile(0.5, ref) == 3


def test_scan_agrees_with_binary_search():
    table = decile_start_table(SMALL_REF)
    for p in np.linspace(0.0, 1.0, 201).tolist() + SMALL_REF.tolist():
        assert match_quantile_scan(p, SMALL_REF, table) == match_quantile(p, SMALL_REF)

    ref = reference_cdf(1024, 3.0)
    table = decile_start_table(ref)
    samples = np.concatenate([np.linspace(0.0, 1.0, 1001), ref[::7]])
    for p in samples:
        assert match_quantile_scan(float(p), ref, table) == match_quantile(float(p), ref)


def test_lookup_table_matches_pointwise_inversion():
    ref = reference_cdf(64, 2.5)
    cdf = empirical_cdf(np.array([1, 4, 0, 9, 2, 0, 0, 7], dtype=np.int64), 23)
    lut = quantile_lookup_table(cdf, ref)
    assert lut.tolist() == [match_quantile(float(p), ref) for p in cdf]
    assert np.all(np.diff(lut) >= 0)


# ---------------------------------------------------------------------------
# end to end (in memory)
# ---------------------------------------------------------------------------

def test_one_by_four_scenario():
    img = np.array([[1.0, 5.0, -9999.0, 9.0]])
    out = gaussian_stretch_array(img, -9999.0, cutoff_sd=3.0, num_output_bins=9)
    assert out[0, 2] == -9999.0
    valid = out[0, [0, 1, 3]]
    assert np.all(np.diff(valid) >= 0)
    assert valid.tolist() == [2.0, 4.0, 8.0]


def test_mapping_is_monotone(ramp):
    rng = np.random.default_rng(7)
    img = rng.normal(100.0, 15.0, size=(40, 37))
    img[rng.random(img.shape) < 0.05] = -1.0
    out = gaussian_stretch_array(img, -1.0, num_output_bins=256, chunk_rows=7)
    valid = img != -1.0
    order = np.argsort(img[valid], kind="stable")
    assert np.all(np.diff(out[valid][order]) >= 0)
    assert out[valid].min() >= 0
    assert out[valid].max() <= 255


def test_nodata_positions_preserved(ramp):
    out = gaussian_stretch_array(ramp, -9999.0)
    np.testing.assert_array_equal(out == -9999.0, ramp == -9999.0)


def test_nan_pixels_become_nodata():
    img = np.array([[1.0, np.nan], [3.0, 4.0]])
    out = gaussian_stretch_array(img, math.nan, num_output_bins=8)
    assert math.isnan(out[0, 1])
    assert not np.isnan(out[[0, 1, 1], [0, 0, 1]]).any()


def test_constant_raster_maps_to_single_index():
    img = np.full((3, 4), 7.0)
    img[1, 1] = -1.0
    hist, n = build_histogram(_ArrayRows(img, -1.0), -1.0, 7.0, 8.0, 100)
    assert n == 11
    assert np.count_nonzero(hist) == 1 and hist.max() == 11

    out = gaussian_stretch_array(img, -1.0, num_output_bins=16)
    valid = out[img != -1.0]
    assert len(np.unique(valid)) == 1
    assert out[1, 1] == -1.0


def test_all_nodata_raster_stays_nodata():
    img = np.full((2, 3), -9999.0)
    out = gaussian_stretch_array(img, -9999.0)
    assert np.all(out == -9999.0)


def test_two_runs_are_bit_identical(ramp):
    a = gaussian_stretch_array(ramp, -9999.0, chunk_rows=1)
    b = gaussian_stretch_array(ramp, -9999.0, chunk_rows=4)
    assert a.tobytes() == b.tobytes()


def test_progress_walks_three_loops(ramp):
    host = RecordingHost()
    gaussian_stretch_array(ramp, -9999.0, host=host, chunk_rows=2)
    labels = [label for label, _ in host.progress]
    assert labels[0] == LOOP1_LABEL
    assert labels[-1] == LOOP3_LABEL
    assert (LOOP2_LABEL, 0) in host.progress and (LOOP2_LABEL, 100) in host.progress
    assert host.progress[-1] == (LOOP3_LABEL, 100)


def test_cancellation_between_row_blocks(ramp):
    host = RecordingHost(cancel_after=2)
    with pytest.raises(StretchCancelled):
        gaussian_stretch_array(ramp, -9999.0, host=host, chunk_rows=1)
    assert all(label == LOOP1_LABEL for label, _ in host.progress)


def test_rejects_non_2d_input():
    with pytest.raises(StretchConfigError):
        gaussian_stretch_array(np.zeros((2, 2, 3)), 0.0)
