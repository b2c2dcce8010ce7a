# SPDX-License-Identifier: MIT
"""
Model factory and fit/predict layer for rfsppy.

The regression engine is scikit-learn's tree ensembles. This module
wraps them behind an explicit configuration object instead of a
free-form formula:

- :class:`ModelSpec`   – target, covariates, optional case weights, and
  the output mode.
- :func:`make_model`   – configured, unfitted estimator.
- :func:`fit_model`    – fit a :class:`ModelSpec` on a
  :class:`~rfsppy.assemble.RegressionMatrix`, returning a
  :class:`ModelHandle`.
- :func:`predict_frame` / :func:`predict_grid` – predictions on a table
  or on every cell of a :class:`~rfsppy.grid.Grid`.

Modes
-----
"regression"     : single mean estimate, column ``pred``.
"quantile"       : quantiles of the per-tree prediction distribution,
                   columns ``pred.q<q>`` plus ``pred.sd`` (half-width of
                   the outer quantile band). Defaults to 0.159 / 0.5 /
                   0.841, i.e. median +/- one standard deviation for a
                   normal predictive distribution.
"classification" : class label, column ``pred``.
"probability"    : per-class probabilities, columns ``pred.<class>``.

Supported model kinds
---------------------
"rf"  : RandomForestRegressor
"etr" : ExtraTreesRegressor
"rfc" : RandomForestClassifier
"etc" : ExtraTreesClassifier
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from sklearn.ensemble import (
    ExtraTreesClassifier,
    ExtraTreesRegressor,
    RandomForestClassifier,
    RandomForestRegressor,
)

from .assemble import RegressionMatrix
from .exceptions import SchemaMismatch
from .features import validate_required_columns
from .grid import Grid

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Registry of supported models
# ---------------------------------------------------------------------------

SUPPORTED_MODELS: Dict[str, Tuple[str, Any]] = {
    "rf": ("RandomForestRegressor", RandomForestRegressor),
    "etr": ("ExtraTreesRegressor", ExtraTreesRegressor),
    "rfc": ("RandomForestClassifier", RandomForestClassifier),
    "etc": ("ExtraTreesClassifier", ExtraTreesClassifier),
}

CLASSIFIER_KINDS = frozenset({"rfc", "etc"})

MODES = ("regression", "classification", "quantile", "probability")
CLASSIFIER_MODES = frozenset({"classification", "probability"})

DEFAULT_QUANTILES: Tuple[float, ...] = (0.159, 0.5, 0.841)

# rows per prediction chunk; quantile mode holds n_trees x chunk values
PREDICT_CHUNK = 50_000


# ---------------------------------------------------------------------------
# Default hyperparameters per model kind
# ---------------------------------------------------------------------------


def _default_params(kind: str) -> Dict[str, Any]:
    """
    Return a dict of default hyperparameters for a given model kind.

    ``n_estimators`` is the number of trees and ``max_features`` the
    number of candidate covariates per split.
    """
    if kind in ("rf", "rfc"):
        return {
            "n_estimators": 500,
            "max_depth": None,
            "min_samples_split": 2,
            "min_samples_leaf": 1,
            "max_features": "sqrt",
            "bootstrap": True,
            "n_jobs": -1,
            "random_state": 42,
        }
    if kind in ("etr", "etc"):
        return {
            "n_estimators": 500,
            "max_depth": None,
            "min_samples_split": 2,
            "min_samples_leaf": 1,
            "max_features": "sqrt",
            "bootstrap": False,
            "n_jobs": -1,
            "random_state": 42,
        }
    return {}


def _default_kind(mode: str) -> str:
    return "rfc" if mode in CLASSIFIER_MODES else "rf"


def _check_mode(mode: str) -> str:
    m = (mode or "regression").lower()
    if m not in MODES:
        raise ValueError(f"Unsupported mode '{mode}'. Supported modes are: {list(MODES)}.")
    return m


# ---------------------------------------------------------------------------
# Public factory
# ---------------------------------------------------------------------------


def make_model(
    model_kind: Optional[str] = None,
    model_params: Optional[Mapping[str, Any]] = None,
    *,
    mode: str = "regression",
):
    """
    Create a configured, unfitted scikit-learn tree ensemble.

    Parameters
    ----------
    model_kind : str or None
        One of ``SUPPORTED_MODELS`` (case-insensitive). None picks "rf"
        for regression/quantile modes and "rfc" for classification/
        probability modes.
    model_params : mapping or None
        Hyperparameters overriding the kind's defaults.
    mode : str, default "regression"
        Output mode the estimator will be used for.

    Raises
    ------
    ValueError
        If the kind is unknown or does not suit the mode (e.g. a
        regressor for probability output).
    """
    m = _check_mode(mode)
    kind = (model_kind or _default_kind(m)).lower()

    if kind not in SUPPORTED_MODELS:
        raise ValueError(
            f"Unsupported model_kind '{model_kind}'. "
            f"Supported kinds are: {sorted(SUPPORTED_MODELS.keys())}."
        )

    wants_classifier = m in CLASSIFIER_MODES
    if wants_classifier != (kind in CLASSIFIER_KINDS):
        raise ValueError(
            f"model_kind '{kind}' cannot be used in mode '{m}'. "
            f"Classifier kinds {sorted(CLASSIFIER_KINDS)} go with modes "
            f"{sorted(CLASSIFIER_MODES)}; the others with regression/quantile."
        )

    _, ctor = SUPPORTED_MODELS[kind]

    params = _default_params(kind)
    if model_params:
        params.update(dict(model_params))

    return ctor(**params)


# ---------------------------------------------------------------------------
# Configuration and handle
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ModelSpec:
    """
    Explicit model configuration.

    Attributes
    ----------
    target_col : str
        Response column.
    covariate_cols : tuple of str
        Predictor columns, in the order they are fed to the estimator.
    weight_col : str or None
        Case-weight column passed as ``sample_weight``.
    mode : str
        One of ``MODES``.
    model_kind : str or None
        One of ``SUPPORTED_MODELS``; None picks a default for ``mode``.
    model_params : mapping or None
        Hyperparameter overrides (e.g. ``{"n_estimators": 150,
        "max_features": 3}``).
    quantiles : tuple of float
        Quantiles reported in quantile mode.
    """

    target_col: str
    covariate_cols: Tuple[str, ...]
    weight_col: Optional[str] = None
    mode: str = "regression"
    model_kind: Optional[str] = None
    model_params: Optional[Mapping[str, Any]] = None
    quantiles: Tuple[float, ...] = DEFAULT_QUANTILES

    def __post_init__(self) -> None:
        object.__setattr__(self, "mode", _check_mode(self.mode))
        covs = tuple(self.covariate_cols)
        if not covs:
            raise ValueError("ModelSpec needs at least one covariate column.")
        if self.target_col in covs:
            raise ValueError(f"Target '{self.target_col}' is also listed as a covariate.")
        object.__setattr__(self, "covariate_cols", covs)

        qs = tuple(sorted(float(q) for q in self.quantiles))
        if not qs or any(not (0.0 < q < 1.0) for q in qs):
            raise ValueError(f"quantiles must lie strictly between 0 and 1, got {self.quantiles}.")
        object.__setattr__(self, "quantiles", qs)

    @classmethod
    def from_matrix(
        cls,
        matrix: RegressionMatrix,
        *,
        mode: str = "regression",
        model_kind: Optional[str] = None,
        model_params: Optional[Mapping[str, Any]] = None,
        quantiles: Sequence[float] = DEFAULT_QUANTILES,
        use_weights: bool = True,
    ) -> "ModelSpec":
        """Spec using every predictor column of ``matrix``."""
        return cls(
            target_col=matrix.target_col,
            covariate_cols=tuple(matrix.feature_cols),
            weight_col=matrix.weight_col if use_weights else None,
            mode=mode,
            model_kind=model_kind,
            model_params=model_params,
            quantiles=tuple(quantiles),
        )


@dataclass
class ModelHandle:
    """Fitted estimator plus everything needed to predict with it."""

    estimator: Any
    spec: ModelSpec
    feature_names: List[str]
    categories: Dict[str, List[Any]] = field(default_factory=dict)
    n_train: int = 0

    @property
    def is_classifier(self) -> bool:
        return self.spec.mode in CLASSIFIER_MODES

    @property
    def classes_(self) -> Optional[List[Any]]:
        classes = getattr(self.estimator, "classes_", None)
        return None if classes is None else list(classes)


# ---------------------------------------------------------------------------
# Design matrix
# ---------------------------------------------------------------------------


def _categorical_levels(frame: pd.DataFrame, cols: Sequence[str]) -> Dict[str, List[Any]]:
    out: Dict[str, List[Any]] = {}
    for c in cols:
        s = frame[c]
        if isinstance(s.dtype, pd.CategoricalDtype):
            out[c] = list(s.cat.categories)
        elif s.dtype == object or pd.api.types.is_string_dtype(s.dtype):
            out[c] = sorted(pd.unique(s.dropna()).tolist(), key=str)
    return out


def _design_matrix(
    frame: pd.DataFrame,
    feature_names: Sequence[str],
    categories: Mapping[str, Sequence[Any]],
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Float design matrix in ``feature_names`` order; categorical columns are
    integer-coded with the levels seen at fit time. Returns ``(X, valid)``
    where ``valid`` flags rows without NaN.
    """
    X = np.empty((len(frame), len(feature_names)), dtype=float)
    for j, c in enumerate(feature_names):
        if c in categories:
            codes = pd.Categorical(frame[c], categories=list(categories[c])).codes.astype(float)
            codes[codes < 0] = np.nan
            X[:, j] = codes
        else:
            X[:, j] = pd.to_numeric(frame[c], errors="coerce").to_numpy(dtype=float)
    valid = ~np.isnan(X).any(axis=1)
    return X, valid


# ---------------------------------------------------------------------------
# Fit
# ---------------------------------------------------------------------------


def fit_model(matrix: RegressionMatrix, spec: ModelSpec) -> ModelHandle:
    """
    Fit ``spec`` on ``matrix``.

    Rows with unusable predictors are skipped (a matrix built by
    :func:`~rfsppy.assemble.assemble_regression_matrix` has none). Errors
    raised by the estimator propagate unchanged.
    """
    data = matrix.data
    required = [spec.target_col] + list(spec.covariate_cols)
    if spec.weight_col is not None:
        required.append(spec.weight_col)
    validate_required_columns(data, required, context="fit_model")

    if data.empty:
        raise ValueError("[fit_model] regression matrix has no rows.")

    feats = list(spec.covariate_cols)
    categories = _categorical_levels(data, feats)
    X, valid = _design_matrix(data, feats, categories)

    y_raw = data[spec.target_col]
    if spec.mode in CLASSIFIER_MODES:
        y = y_raw.to_numpy()
        valid &= y_raw.notna().to_numpy()
    else:
        y = pd.to_numeric(y_raw, errors="coerce").to_numpy(dtype=float)
        valid &= np.isfinite(y)

    sample_weight = None
    if spec.weight_col is not None:
        sample_weight = pd.to_numeric(data[spec.weight_col], errors="coerce").to_numpy(dtype=float)
        valid &= np.isfinite(sample_weight)

    n_skip = int((~valid).sum())
    if n_skip:
        logger.warning("fit_model: %d of %d rows skipped (unusable values).", n_skip, len(data))
    if not valid.any():
        raise ValueError("[fit_model] no usable rows left to fit.")

    estimator = make_model(spec.model_kind, spec.model_params, mode=spec.mode)
    fit_kwargs: Dict[str, Any] = {}
    if sample_weight is not None:
        fit_kwargs["sample_weight"] = sample_weight[valid]
    estimator.fit(X[valid], y[valid], **fit_kwargs)

    logger.info(
        "fit_model: %s on %d rows x %d features (mode=%s, weights=%s)",
        type(estimator).__name__,
        int(valid.sum()),
        len(feats),
        spec.mode,
        spec.weight_col,
    )

    return ModelHandle(
        estimator=estimator,
        spec=spec,
        feature_names=feats,
        categories=categories,
        n_train=int(valid.sum()),
    )


# ---------------------------------------------------------------------------
# Predict
# ---------------------------------------------------------------------------


def _resolve_predict_mode(handle: ModelHandle, mode: Optional[str]) -> str:
    m = handle.spec.mode if mode is None else _check_mode(mode)
    if (m in CLASSIFIER_MODES) != handle.is_classifier:
        raise ValueError(
            f"A model fitted in mode '{handle.spec.mode}' cannot predict in mode '{m}'."
        )
    return m


def _quantile_name(prefix: str, q: float) -> str:
    return f"{prefix}.q{q:g}"


def _per_tree_quantiles(estimator, X: np.ndarray, quantiles: Sequence[float]) -> np.ndarray:
    per_tree = np.stack([tree.predict(X) for tree in estimator.estimators_], axis=0)
    return np.quantile(per_tree, list(quantiles), axis=0)


def predict_frame(
    handle: ModelHandle,
    frame: pd.DataFrame,
    *,
    mode: Optional[str] = None,
    quantiles: Optional[Sequence[float]] = None,
    prefix: str = "pred",
) -> pd.DataFrame:
    """
    Predict for every row of ``frame``.

    Rows with a missing (or unseen categorical) predictor get NaN output.

    Returns
    -------
    DataFrame
        Index aligned with ``frame``; columns depend on the mode (see the
        module docstring).

    Raises
    ------
    SchemaMismatch
        If ``frame`` lacks a predictor the model was fitted on.
    """
    m = _resolve_predict_mode(handle, mode)
    absent = [c for c in handle.feature_names if c not in frame.columns]
    if absent:
        raise SchemaMismatch(f"Prediction table lacks model predictors: {absent[:10]}.")

    qs = tuple(sorted(quantiles)) if quantiles is not None else handle.spec.quantiles
    X, valid = _design_matrix(frame, handle.feature_names, handle.categories)
    est = handle.estimator
    n = len(frame)

    out: Dict[str, np.ndarray] = {}
    if m == "regression":
        out[prefix] = np.full(n, np.nan)
    elif m == "quantile":
        for q in qs:
            out[_quantile_name(prefix, q)] = np.full(n, np.nan)
        out[f"{prefix}.sd"] = np.full(n, np.nan)
    elif m == "classification":
        out[prefix] = np.full(n, None, dtype=object)
    else:
        for cls in handle.classes_ or []:
            out[f"{prefix}.{cls}"] = np.full(n, np.nan)

    rows = np.flatnonzero(valid)
    for start in range(0, rows.size, PREDICT_CHUNK):
        idx = rows[start:start + PREDICT_CHUNK]
        Xc = X[idx]
        if m == "regression":
            out[prefix][idx] = est.predict(Xc)
        elif m == "quantile":
            qv = _per_tree_quantiles(est, Xc, qs)
            for k, q in enumerate(qs):
                out[_quantile_name(prefix, q)][idx] = qv[k]
            out[f"{prefix}.sd"][idx] = (qv[-1] - qv[0]) / 2.0
        elif m == "classification":
            out[prefix][idx] = est.predict(Xc)
        else:
            proba = est.predict_proba(Xc)
            for k, cls in enumerate(handle.classes_ or []):
                out[f"{prefix}.{cls}"][idx] = proba[:, k]

    return pd.DataFrame(out, index=frame.index)


def predict_grid(
    handle: ModelHandle,
    grid: Grid,
    *,
    mode: Optional[str] = None,
    quantiles: Optional[Sequence[float]] = None,
    constants: Optional[Mapping[str, Any]] = None,
    prefix: str = "pred",
) -> Grid:
    """
    Predict on every cell of ``grid``.

    Parameters
    ----------
    handle : ModelHandle
        Fitted model.
    grid : Grid
        Grid carrying every covariate and distance layer the model uses.
    mode, quantiles : optional
        Override the handle's mode / quantiles.
    constants : mapping or None
        Predictors held constant over the grid, e.g. ``{"cdate": 120.0}``
        for a spatiotemporal time slice or ``{"type": "zinc"}`` for one
        target of a stacked model.
    prefix : str
        Output layer prefix.

    Returns
    -------
    Grid
        New grid with the same geometry whose layers are the predictions.
        In classification mode ``pred`` holds the index of the predicted
        class in ``handle.classes_``.
    """
    consts = dict(constants or {})
    from_grid = [c for c in handle.feature_names if c not in consts]
    absent = [c for c in from_grid if c not in grid.layers]
    if absent:
        raise SchemaMismatch(
            f"Grid lacks layers required by the model: {absent[:10]} "
            f"(pass them as constants if they do not vary in space)."
        )

    frame = grid.to_frame(layers=from_grid)
    for name, value in consts.items():
        frame[name] = value

    m = _resolve_predict_mode(handle, mode)
    preds = predict_frame(handle, frame, mode=m, quantiles=quantiles, prefix=prefix)

    layers: Dict[str, np.ndarray] = {}
    if m == "classification":
        # labels may come back as object or string dtype; store class indices
        lookup = {c: float(i) for i, c in enumerate(handle.classes_ or [])}
        labels = preds[prefix].tolist()
        layers[prefix] = np.array([lookup.get(v, np.nan) for v in labels], dtype=float)
    else:
        for col in preds.columns:
            layers[col] = preds[col].to_numpy(dtype=float)

    return Grid(
        xmin=grid.xmin,
        ymin=grid.ymin,
        cell_size=grid.cell_size,
        nx=grid.nx,
        ny=grid.ny,
        crs=grid.crs,
        layers=layers,
    )


def feature_importances(handle: ModelHandle) -> pd.Series:
    """Impurity-based importances, largest first."""
    imp = getattr(handle.estimator, "feature_importances_", None)
    if imp is None:
        raise ValueError("Estimator does not expose feature_importances_.")
    return pd.Series(imp, index=handle.feature_names, name="importance").sort_values(
        ascending=False
    )


__all__ = [
    "SUPPORTED_MODELS",
    "MODES",
    "DEFAULT_QUANTILES",
    "make_model",
    "ModelSpec",
    "ModelHandle",
    "fit_model",
    "predict_frame",
    "predict_grid",
    "feature_importances",
]
