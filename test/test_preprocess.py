import logging

import numpy as np
import pytest

from appj_sysid.exceptions import InsufficientDataError
from appj_sysid.preprocess import (
    SteadyState,
    center,
    compute_steady_state,
    normalize,
    preprocess,
    to_deviation,
    trim,
)
from appj_sysid.split import IOSegments, split_data


@pytest.mark.parametrize("k", [0, 1, 4, 9])
def test_trim_removes_leading_rows(k):
    table = np.arange(40, dtype=float).reshape(10, 4)
    trimmed = trim(table, k)
    assert trimmed.shape[0] == 10 - k
    np.testing.assert_array_equal(trimmed, table[k:])


def test_trim_needs_more_rows_than_k():
    with pytest.raises(InsufficientDataError):
        trim(np.zeros((4, 3)), 4)


def test_normalize_scales_only_the_intensity_column():
    table = np.ones((5, 3)) * 120.0
    out = normalize(table, I_col=1, I_norm_factor=120.0)
    np.testing.assert_array_equal(out[:, 1], np.ones(5))
    np.testing.assert_array_equal(out[:, [0, 2]], table[:, [0, 2]])
    # input untouched
    assert table[0, 1] == 120.0


def test_normalize_without_column_warns_and_skips(caplog):
    table = np.random.default_rng(1).normal(size=(6, 3))
    with caplog.at_level(logging.WARNING):
        out = normalize(table, I_col=None, I_norm_factor=10.0)
    np.testing.assert_array_equal(out, table)
    warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
    assert len(warnings) == 1
    assert "NOT normalized" in warnings[0].getMessage()


def test_preprocess_trims_then_normalizes(make_config, process_table):
    config = make_config(norm_intensity=True, I_col=1, I_norm_factor=4.0, trim_rows=4)
    out = preprocess(process_table, config)
    assert out.shape == (100, 4)
    np.testing.assert_allclose(out[:, 1], process_table[4:, 1] / 4.0)
    np.testing.assert_array_equal(out[:, 0], process_table[4:, 0])


def test_steady_state_is_mean_of_leading_rows():
    u = np.arange(20, dtype=float).reshape(10, 2)
    y = 2 * u
    ss = compute_steady_state(u, y, 4)
    np.testing.assert_allclose(ss.uss, u[:4].mean(axis=0))
    np.testing.assert_allclose(ss.yss, y[:4].mean(axis=0))


def test_steady_state_needs_enough_rows():
    with pytest.raises(InsufficientDataError):
        compute_steady_state(np.zeros((3, 1)), np.zeros((3, 1)), 10)


def test_steady_state_is_read_only():
    ss = SteadyState(uss=[1.0, 2.0], yss=[3.0])
    with pytest.raises(ValueError):
        ss.uss[0] = 5.0


@pytest.mark.parametrize("seed", [0, 1, 2])
@pytest.mark.parametrize("num_pts", [1, 5, 10])
def test_centered_leading_window_has_zero_mean(seed, num_pts):
    rng = np.random.default_rng(seed)
    table = rng.normal(loc=50.0, scale=3.0, size=(40, 4))
    segments = split_data(table, (0, 1), (2, 3), valid_split=0.25)
    ss = compute_steady_state(segments.u_train, segments.y_train, num_pts)
    centered = center(segments, ss)

    np.testing.assert_allclose(centered.u_train[:num_pts].mean(axis=0), 0.0, atol=1e-12)
    np.testing.assert_allclose(centered.y_train[:num_pts].mean(axis=0), 0.0, atol=1e-12)
    # validation is shifted by the training offsets
    np.testing.assert_allclose(centered.y_valid, segments.y_valid - ss.yss)
    np.testing.assert_allclose(centered.u_valid, segments.u_valid - ss.uss)


def test_to_deviation_without_centering_warns(make_config, caplog):
    config = make_config(center_data=False)
    segments = IOSegments(u_train=np.ones((12, 2)), y_train=np.ones((12, 2)) * 3.0)
    with caplog.at_level(logging.WARNING):
        data, ss = to_deviation(segments, config)

    assert data is segments
    np.testing.assert_array_equal(ss.uss, np.zeros(2))
    np.testing.assert_array_equal(ss.yss, np.zeros(2))
    assert "not centered" in caplog.text


def test_to_deviation_centers_on_training_window(make_config):
    config = make_config(num_pts2center=3)
    u = np.arange(24, dtype=float).reshape(12, 2)
    segments = IOSegments(u_train=u, y_train=u + 1.0)
    data, ss = to_deviation(segments, config)
    np.testing.assert_allclose(ss.uss, u[:3].mean(axis=0))
    np.testing.assert_allclose(data.u_train[:3].mean(axis=0), 0.0)
