# SPDX-License-Identifier: MIT
"""
rfsppy.metrics
==============

Accuracy metrics used by cross-validation.

Regression (paired series):

- ME   (mean error, bias)
- MAE  (mean absolute error)
- RMSE (root-mean-square error)
- R2   (coefficient of determination)
- EV   (share of variance explained, ``1 - var(residual) / var(observed)``)

Quantile output:

- ``interval_coverage``: share of observations inside ``[lower, upper]``.

Classification:

- ``accuracy``: share of correctly predicted labels.

Input arrays are converted to float and paired NaNs are dropped before
computing; degenerate cases (empty series, zero variance) return NaN
instead of raising.
"""

from __future__ import annotations

from typing import Dict, Tuple

import numpy as np
import pandas as pd


# --------------------------------------------------------------------------- #
# Basic metric primitives
# --------------------------------------------------------------------------- #


def _to_clean_pairs(y_true, y_pred) -> Tuple[np.ndarray, np.ndarray]:
    """
    Convert inputs to paired float arrays and drop NaNs pairwise.
    """
    yt = np.asarray(y_true, dtype="float64")
    yp = np.asarray(y_pred, dtype="float64")

    if yt.shape != yp.shape:
        raise ValueError(
            f"y_true and y_pred must have the same shape. "
            f"Got {yt.shape} vs {yp.shape}."
        )

    mask = ~(np.isnan(yt) | np.isnan(yp))
    return yt[mask], yp[mask]


def mean_error(y_true, y_pred) -> float:
    """Mean of ``y_pred - y_true``; positive means over-prediction."""
    yt, yp = _to_clean_pairs(y_true, y_pred)
    if yt.size == 0:
        return float("nan")
    return float(np.mean(yp - yt))


def mae(y_true, y_pred) -> float:
    yt, yp = _to_clean_pairs(y_true, y_pred)
    if yt.size == 0:
        return float("nan")
    return float(np.mean(np.abs(yt - yp)))


def rmse(y_true, y_pred) -> float:
    yt, yp = _to_clean_pairs(y_true, y_pred)
    if yt.size == 0:
        return float("nan")
    diff = yt - yp
    return float(np.sqrt(np.mean(diff * diff)))


def r2(y_true, y_pred) -> float:
    """
    Coefficient of determination R².

    NaN if fewer than two pairs remain or ``y_true`` is constant.
    """
    yt, yp = _to_clean_pairs(y_true, y_pred)
    if yt.size < 2:
        return float("nan")

    ss_tot = float(np.sum((yt - np.mean(yt)) ** 2))
    if ss_tot == 0.0:
        return float("nan")
    ss_res = float(np.sum((yt - yp) ** 2))
    return float(1.0 - ss_res / ss_tot)


def explained_variance(y_true, y_pred) -> float:
    """
    Share of the variance of ``y_true`` explained by ``y_pred``:
    ``1 - var(y_true - y_pred) / var(y_true)``. Unlike R² it ignores a
    constant bias.
    """
    yt, yp = _to_clean_pairs(y_true, y_pred)
    if yt.size < 2:
        return float("nan")
    var_y = float(np.var(yt))
    if var_y == 0.0:
        return float("nan")
    return float(1.0 - np.var(yt - yp) / var_y)


def interval_coverage(y_true, lower, upper) -> float:
    """Share of observations with ``lower <= y <= upper`` (NaN rows dropped)."""
    yt = np.asarray(y_true, dtype="float64")
    lo = np.asarray(lower, dtype="float64")
    hi = np.asarray(upper, dtype="float64")
    if not (yt.shape == lo.shape == hi.shape):
        raise ValueError("y_true, lower and upper must have the same shape.")
    mask = ~(np.isnan(yt) | np.isnan(lo) | np.isnan(hi))
    if not mask.any():
        return float("nan")
    inside = (yt[mask] >= lo[mask]) & (yt[mask] <= hi[mask])
    return float(np.mean(inside))


def accuracy(y_true, y_pred) -> float:
    """Share of matching labels; rows where either side is missing are dropped."""
    yt = pd.Series(y_true).reset_index(drop=True)
    yp = pd.Series(y_pred).reset_index(drop=True)
    if len(yt) != len(yp):
        raise ValueError(f"y_true and y_pred differ in length: {len(yt)} vs {len(yp)}.")
    mask = yt.notna() & yp.notna()
    if not mask.any():
        return float("nan")
    return float(np.mean(yt[mask].to_numpy() == yp[mask].to_numpy()))


# --------------------------------------------------------------------------- #
# High-level helper
# --------------------------------------------------------------------------- #


def compute_metrics(y_true, y_pred) -> Dict[str, float]:
    """
    Compute ME, MAE, RMSE, R2 and EV for a paired series.

    Returns
    -------
    dict
        Keys "ME", "MAE", "RMSE", "R2", "EV"; values may be NaN in
        degenerate cases.
    """
    return {
        "ME": mean_error(y_true, y_pred),
        "MAE": mae(y_true, y_pred),
        "RMSE": rmse(y_true, y_pred),
        "R2": r2(y_true, y_pred),
        "EV": explained_variance(y_true, y_pred),
    }


__all__ = [
    "mean_error",
    "mae",
    "rmse",
    "r2",
    "explained_variance",
    "interval_coverage",
    "accuracy",
    "compute_metrics",
]
