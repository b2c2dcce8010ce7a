# SPDX-License-Identifier: MIT
"""
rfsppy.evaluate
===============

K-fold cross-validation of a :class:`~rfsppy.models.ModelSpec` on a
:class:`~rfsppy.assemble.RegressionMatrix`.

For each fold we:

1. Split the matrix rows into a training and a held-out part, either
   at random (:class:`sklearn.model_selection.KFold`) or by group
   (:class:`sklearn.model_selection.GroupKFold`, e.g. a station id so
   that repeated observations of one location never sit on both sides).
2. Fit the ModelSpec on the training rows with :func:`~rfsppy.models.fit_model`.
3. Predict the held-out rows with :func:`~rfsppy.models.predict_frame`.

Metrics per fold and over all held-out rows:

- regression / quantile: ME, MAE, RMSE, R2, EV (on the mean or the
  median), plus ``coverage`` of the outer quantile band in quantile mode;
- classification / probability: ``accuracy``.

Buffer-distance columns are kept as they are in every fold: distances to
held-out points remain ordinary predictors.
"""

from __future__ import annotations

import dataclasses
import logging
import time
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
from sklearn.model_selection import GroupKFold, KFold
from tqdm.auto import tqdm

from .assemble import RegressionMatrix
from .features import validate_required_columns
from .metrics import accuracy, compute_metrics, interval_coverage
from .models import CLASSIFIER_MODES, ModelSpec, fit_model, predict_frame

logger = logging.getLogger(__name__)


# --------------------------------------------------------------------------- #
# Internal helpers
# --------------------------------------------------------------------------- #


def _fold_splits(
    data: pd.DataFrame,
    *,
    n_folds: int,
    group_col: Optional[str],
    seed: int,
) -> List[Tuple[np.ndarray, np.ndarray]]:
    n = len(data)
    dummy = np.zeros(n)
    if group_col is not None:
        groups = data[group_col].to_numpy()
        k = min(int(n_folds), int(pd.unique(groups).size))
        if k < 2:
            raise ValueError(
                f"[cross_validate] need at least 2 distinct '{group_col}' values, got {k}."
            )
        return list(GroupKFold(n_splits=k).split(dummy, groups=groups))

    k = min(int(n_folds), n)
    if k < 2:
        raise ValueError(f"[cross_validate] need at least 2 rows, got {n}.")
    return list(KFold(n_splits=k, shuffle=True, random_state=int(seed)).split(dummy))


def _point_prediction(spec: ModelSpec, preds: pd.DataFrame, prefix: str) -> pd.Series:
    if spec.mode == "quantile":
        median_q = min(spec.quantiles, key=lambda q: abs(q - 0.5))
        return preds[f"{prefix}.q{median_q:g}"]
    if spec.mode == "probability":
        proba_cols = list(preds.columns)
        labels = [c[len(prefix) + 1:] for c in proba_cols]
        arr = preds[proba_cols].to_numpy(dtype=float)
        out = pd.Series([None] * len(preds), index=preds.index, dtype=object)
        ok = ~np.isnan(arr).any(axis=1)
        if ok.any():
            out[ok] = [labels[i] for i in np.argmax(arr[ok], axis=1)]
        return out
    return preds[prefix]


def _score(spec: ModelSpec, fold_preds: pd.DataFrame) -> Dict[str, float]:
    if spec.mode in CLASSIFIER_MODES:
        y_obs = fold_preds["y_obs"]
        if spec.mode == "probability":
            y_obs = y_obs.astype(str)
        return {"accuracy": accuracy(y_obs, fold_preds["y_mod"])}

    out = compute_metrics(
        fold_preds["y_obs"].to_numpy(dtype=float),
        fold_preds["y_mod"].to_numpy(dtype=float),
    )
    if spec.mode == "quantile":
        out["coverage"] = interval_coverage(
            fold_preds["y_obs"].to_numpy(dtype=float),
            fold_preds["lower"].to_numpy(dtype=float),
            fold_preds["upper"].to_numpy(dtype=float),
        )
    return out


# --------------------------------------------------------------------------- #
# Public evaluator
# --------------------------------------------------------------------------- #


def cross_validate(
    matrix: RegressionMatrix,
    spec: ModelSpec,
    *,
    n_folds: int = 5,
    group_col: Optional[str] = None,
    seed: int = 42,
    show_progress: bool = False,
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Cross-validate ``spec`` on ``matrix``.

    Parameters
    ----------
    matrix : RegressionMatrix
        Assembled table.
    spec : ModelSpec
        Model configuration; ``spec.mode`` selects the metrics.
    n_folds : int, default 5
        Number of folds (capped by the number of rows / groups).
    group_col : str or None
        Column of ``matrix.data`` whose values are kept together in one
        fold (e.g. station id for spatiotemporal data).
    seed : int, default 42
        Shuffle seed for ungrouped folds.
    show_progress : bool
        Show a per-fold progress bar and summary lines.

    Returns
    -------
    report : DataFrame
        One row per fold plus a final ``fold == "all"`` row with metrics
        over every held-out prediction. Columns: ``fold``, ``rows_train``,
        ``rows_test``, ``seconds`` and the metric columns.
    preds : DataFrame
        Per-row held-out predictions: ``row`` (position in
        ``matrix.data``), ``fold``, ``y_obs``, ``y_mod`` (+ ``lower``,
        ``upper`` in quantile mode).
    """
    data = matrix.data
    required = [spec.target_col] + list(spec.covariate_cols)
    if group_col is not None:
        required.append(group_col)
    validate_required_columns(data, required, context="cross_validate")

    splits = _fold_splits(data, n_folds=n_folds, group_col=group_col, seed=seed)
    prefix = "pred"

    rows_report: List[Dict[str, Any]] = []
    preds_list: List[pd.DataFrame] = []

    folds = list(enumerate(splits, start=1))
    iterator = tqdm(folds, desc="Cross-validation", unit="fold") if show_progress else folds

    for fold, (train_idx, test_idx) in iterator:
        t0 = time.perf_counter()

        train = dataclasses.replace(matrix, data=data.iloc[train_idx].reset_index(drop=True))
        test_df = data.iloc[test_idx]

        handle = fit_model(train, spec)
        preds = predict_frame(handle, test_df, prefix=prefix)

        fold_preds = pd.DataFrame(
            {
                "row": test_idx,
                "fold": fold,
                "y_obs": test_df[spec.target_col].to_numpy(),
                "y_mod": _point_prediction(spec, preds, prefix).to_numpy(),
            }
        )
        if spec.mode == "quantile":
            fold_preds["lower"] = preds[f"{prefix}.q{spec.quantiles[0]:g}"].to_numpy()
            fold_preds["upper"] = preds[f"{prefix}.q{spec.quantiles[-1]:g}"].to_numpy()

        sec = time.perf_counter() - t0
        row: Dict[str, Any] = {
            "fold": fold,
            "rows_train": int(len(train_idx)),
            "rows_test": int(len(test_idx)),
            "seconds": float(sec),
        }
        row.update(_score(spec, fold_preds))
        rows_report.append(row)
        preds_list.append(fold_preds)

        if show_progress:
            scores = "  ".join(
                f"{k}={v:.3f}" for k, v in row.items() if k not in ("fold", "rows_train", "rows_test", "seconds")
            )
            tqdm.write(
                f"fold {fold}: {sec:.2f}s  (train={len(train_idx):,}  test={len(test_idx):,})  {scores}"
            )

    preds_all = pd.concat(preds_list, axis=0, ignore_index=True)
    preds_all = preds_all.sort_values("row", kind="mergesort").reset_index(drop=True)

    overall: Dict[str, Any] = {
        "fold": "all",
        "rows_train": int(np.mean([r["rows_train"] for r in rows_report])),
        "rows_test": int(len(preds_all)),
        "seconds": float(sum(r["seconds"] for r in rows_report)),
    }
    overall.update(_score(spec, preds_all))
    rows_report.append(overall)

    report = pd.DataFrame(rows_report)
    logger.info(
        "cross_validate: %d folds on %d rows (mode=%s)", len(splits), len(data), spec.mode
    )
    return report, preds_all


__all__ = ["cross_validate"]
