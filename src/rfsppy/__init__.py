# SPDX-License-Identifier: MIT
"""
rfsppy
======

Random forest for spatial data: spatial and spatiotemporal prediction
with an off-the-shelf regression forest whose inputs are augmented with
**buffer distances**, i.e. one distance-to-sample-point surface per
sampled location, next to the ordinary covariates.

Main entry points
-----------------

- :func:`buffer_distances` / :func:`add_buffer_distances` – N reference
  points x M grid cells -> N distance layers.
- :func:`assemble_regression_matrix` – overlay observations on grid
  layers, drop and count unusable rows, produce a model-ready table.
- :func:`stack_regression_matrices` / :func:`assemble_stacked` – melt
  several targets into one matrix for a joint (multivariate) model.
- :func:`fit_model` / :func:`predict_grid` – scikit-learn forest in
  regression, quantile, classification or probability mode.
- :func:`fit_rfsp` – the whole pipeline in one call.
- :func:`cross_validate` – k-fold (optionally grouped) accuracy
  assessment.

Core submodules
---------------

- :mod:`rfsppy.grid`       – regular grid with named layers
- :mod:`rfsppy.distances`  – buffer-distance generation
- :mod:`rfsppy.assemble`   – regression-matrix assembly and stacking
- :mod:`rfsppy.models`     – model factory, ModelSpec, fit / predict
- :mod:`rfsppy.metrics`    – ME / MAE / RMSE / R2 / EV / accuracy
- :mod:`rfsppy.evaluate`   – cross-validation
- :mod:`rfsppy.features`   – column checks and time covariates
- :mod:`rfsppy.exceptions` – error taxonomy
"""

from __future__ import annotations

# Errors
from .exceptions import (
    RFspError,
    EmptyReferenceSet,
    CoordinateSystemMismatch,
    InvalidGeometry,
    NoContainingCell,
    SchemaMismatch,
)

# Grid
from .grid import Grid, grid_from_frame

# Buffer distances
from .distances import (
    LARGE_REFERENCE_SET,
    estimate_buffer_cost,
    unique_reference_points,
    buffer_distances,
    add_buffer_distances,
    buffer_distance_frame,
)

# Regression matrix
from .assemble import (
    RegressionMatrix,
    overlay_points,
    assemble_regression_matrix,
    stack_regression_matrices,
    assemble_stacked,
)

# Models
from .models import (
    SUPPORTED_MODELS,
    MODES,
    ModelSpec,
    ModelHandle,
    make_model,
    fit_model,
    predict_frame,
    predict_grid,
    feature_importances,
)

# Metrics / evaluation
from .metrics import compute_metrics
from .evaluate import cross_validate

# Features / utilities
from .features import (
    validate_required_columns,
    ensure_datetime_naive,
    add_time_covariates,
)

# Pipeline
from .api import fit_rfsp


__all__ = [
    # Errors
    "RFspError",
    "EmptyReferenceSet",
    "CoordinateSystemMismatch",
    "InvalidGeometry",
    "NoContainingCell",
    "SchemaMismatch",
    # Grid
    "Grid",
    "grid_from_frame",
    # Buffer distances
    "LARGE_REFERENCE_SET",
    "estimate_buffer_cost",
    "unique_reference_points",
    "buffer_distances",
    "add_buffer_distances",
    "buffer_distance_frame",
    # Regression matrix
    "RegressionMatrix",
    "overlay_points",
    "assemble_regression_matrix",
    "stack_regression_matrices",
    "assemble_stacked",
    # Models
    "SUPPORTED_MODELS",
    "MODES",
    "ModelSpec",
    "ModelHandle",
    "make_model",
    "fit_model",
    "predict_frame",
    "predict_grid",
    "feature_importances",
    # Metrics / evaluation
    "compute_metrics",
    "cross_validate",
    # Features / utilities
    "validate_required_columns",
    "ensure_datetime_naive",
    "add_time_covariates",
    # Pipeline
    "fit_rfsp",
]


# Sync this with pyproject.toml if you bump the version
__version__ = "0.1.0"
