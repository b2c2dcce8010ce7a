# SPDX-License-Identifier: MIT
"""
Tests for rfsppy.metrics
"""

import numpy as np
import pytest

from rfsppy.metrics import (
    accuracy,
    compute_metrics,
    explained_variance,
    interval_coverage,
    mae,
    mean_error,
    r2,
    rmse,
)


# --------------------------------------------------------------------------- #
# Regression metrics
# --------------------------------------------------------------------------- #


def test_perfect_fit():
    y = [1.0, 2.0, 3.0, 4.0]

    assert mae(y, y) == 0.0
    assert rmse(y, y) == 0.0
    assert mean_error(y, y) == 0.0
    assert r2(y, y) == 1.0
    assert explained_variance(y, y) == 1.0


def test_paired_nans_dropped():
    y = [1.0, 2.0, np.nan, 4.0]
    yhat = [1.0, 3.0, 7.0, 5.0]

    # Clean pairs: (1,1), (2,3), (4,5)
    assert np.isclose(mae(y, yhat), 2.0 / 3.0)
    assert np.isclose(rmse(y, yhat), np.sqrt(2.0 / 3.0))
    assert np.isclose(mean_error(y, yhat), 2.0 / 3.0)


def test_constant_bias_r2_vs_explained_variance():
    y = np.array([1.0, 2.0, 3.0, 4.0])
    yhat = y + 1.0

    # bias hurts R2 but not EV
    assert r2(y, yhat) < 1.0
    assert np.isclose(explained_variance(y, yhat), 1.0)


def test_degenerate_cases_return_nan():
    assert np.isnan(mae([], []))
    assert np.isnan(r2([1.0], [1.0]))
    assert np.isnan(r2([2.0, 2.0, 2.0], [1.0, 2.0, 3.0]))


def test_shape_mismatch_raises():
    with pytest.raises(ValueError):
        mae([1.0, 2.0], [1.0, 2.0, 3.0])


def test_compute_metrics_keys():
    out = compute_metrics([1.0, 2.0, 3.0], [1.5, 2.0, 2.5])
    assert set(out.keys()) == {"ME", "MAE", "RMSE", "R2", "EV"}
    assert np.isclose(out["MAE"], 1.0 / 3.0)


# --------------------------------------------------------------------------- #
# Interval coverage / accuracy
# --------------------------------------------------------------------------- #


def test_interval_coverage():
    y = [1.0, 2.0, 3.0, np.nan]
    lo = [0.0, 2.5, 3.0, 0.0]
    hi = [2.0, 3.0, 3.0, 1.0]
    # 1 in, 2 out, 3 on both bounds (in), NaN dropped
    assert np.isclose(interval_coverage(y, lo, hi), 2.0 / 3.0)


def test_accuracy_with_labels_and_missing():
    y = ["a", "b", "a", None]
    yhat = ["a", "a", "a", "b"]
    assert np.isclose(accuracy(y, yhat), 2.0 / 3.0)

    with pytest.raises(ValueError):
        accuracy(["a"], ["a", "b"])
