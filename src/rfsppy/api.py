# SPDX-License-Identifier: MIT
"""
rfsppy.api
==========

High-level pipeline tying the pieces together:

1. :func:`~rfsppy.distances.unique_reference_points` – one reference
   point per location (observations may repeat over time). Rows with a
   non-finite coordinate give no reference point; the assembler then
   counts them as outside the grid.
2. :func:`~rfsppy.distances.add_buffer_distances` – distance layers on
   a new copy of the grid.
3. :func:`~rfsppy.assemble.assemble_regression_matrix` – overlay and
   missing-value policy.
4. :func:`~rfsppy.models.fit_model` – fit the regression forest.

The returned grid carries the distance layers, so predictions are one
call away::

    handle, matrix, grid_d = fit_rfsp(obs, grid, id_col="id", x_col="x",
                                      y_col="y", target_col="zinc")
    pred = predict_grid(handle, grid_d)
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .assemble import RegressionMatrix, assemble_regression_matrix
from .distances import DEFAULT_PREFIX, add_buffer_distances, unique_reference_points
from .features import validate_required_columns
from .grid import Grid
from .models import DEFAULT_QUANTILES, ModelHandle, ModelSpec, fit_model

logger = logging.getLogger(__name__)


def _with_finite_coordinates(observations: pd.DataFrame, *, x_col: str, y_col: str) -> pd.DataFrame:
    """Rows usable as reference points; the rest are logged and left to the assembler."""
    validate_required_columns(observations, [x_col, y_col], context="fit_rfsp")
    x = pd.to_numeric(observations[x_col], errors="coerce").to_numpy(dtype=float)
    y = pd.to_numeric(observations[y_col], errors="coerce").to_numpy(dtype=float)
    ok = np.isfinite(x) & np.isfinite(y)
    n_bad = int((~ok).sum())
    if n_bad:
        logger.warning(
            "fit_rfsp: %d of %d observations have a non-finite coordinate and "
            "give no reference point.",
            n_bad,
            len(observations),
        )
    return observations.loc[ok]


def fit_rfsp(
    observations: pd.DataFrame,
    grid: Grid,
    *,
    # schema
    id_col: str,
    x_col: str,
    y_col: str,
    target_col: str,
    # predictors
    covariate_cols: Optional[Sequence[str]] = None,
    extra_cols: Optional[Sequence[str]] = None,
    weight_col: Optional[str] = None,
    use_distances: bool = True,
    distance_prefix: str = DEFAULT_PREFIX,
    # model
    mode: str = "regression",
    model_kind: Optional[str] = None,
    model_params: Optional[Mapping[str, Any]] = None,
    quantiles: Sequence[float] = DEFAULT_QUANTILES,
    # geometry / UX
    crs: Optional[Any] = None,
    n_jobs: Optional[int] = None,
    show_progress: bool = False,
) -> Tuple[ModelHandle, RegressionMatrix, Grid]:
    """
    Fit a buffer-distance random forest in one call.

    Parameters
    ----------
    observations : DataFrame
        Point observations; ``id_col`` identifies the location (repeated
        for spatiotemporal data).
    grid : Grid
        Covariate grid; it is not modified.
    id_col, x_col, y_col, target_col : str
        Column names in ``observations``.
    covariate_cols : sequence of str or None
        Grid layers used as covariates. Default: all grid layers.
    extra_cols : sequence of str or None
        Predictors carried on ``observations`` (e.g. time covariates from
        :func:`~rfsppy.features.add_time_covariates`).
    weight_col : str or None
        Case weights, used as ``sample_weight``.
    use_distances : bool, default True
        If False, skip buffer distances (plain covariate forest).
    distance_prefix : str
        Name prefix of the generated distance layers.
    mode, model_kind, model_params, quantiles :
        Passed to :class:`~rfsppy.models.ModelSpec`.
    crs : any, optional
        CRS of the observation coordinates; checked against ``grid.crs``.
    n_jobs : int or None
        Parallel workers for distance generation.
    show_progress : bool
        Progress bar while generating distances.

    Returns
    -------
    (handle, matrix, grid_with_distances)
    """
    if covariate_cols is None:
        covs = [n for n in grid.layer_names if not n.startswith(distance_prefix)]
    else:
        covs = list(covariate_cols)

    work_grid = grid
    if use_distances:
        located = _with_finite_coordinates(observations, x_col=x_col, y_col=y_col)
        points = unique_reference_points(located, id_col=id_col, x_col=x_col, y_col=y_col)
        work_grid = add_buffer_distances(
            grid,
            points,
            id_col=id_col,
            x_col=x_col,
            y_col=y_col,
            crs=crs,
            prefix=distance_prefix,
            n_jobs=n_jobs,
            show_progress=show_progress,
        )
        dists = [n for n in work_grid.layer_names if n not in grid.layers]
    else:
        dists = []

    matrix = assemble_regression_matrix(
        observations,
        work_grid,
        target_col=target_col,
        x_col=x_col,
        y_col=y_col,
        covariate_cols=covs,
        distance_cols=dists,
        extra_cols=extra_cols,
        weight_col=weight_col,
        keep_cols=[id_col] if id_col != target_col else None,
        distance_prefix=distance_prefix,
    )

    spec = ModelSpec.from_matrix(
        matrix,
        mode=mode,
        model_kind=model_kind,
        model_params=model_params,
        quantiles=quantiles,
    )
    handle = fit_model(matrix, spec)

    logger.info(
        "fit_rfsp[%s]: %d reference points, %d rows used, %d dropped",
        target_col,
        len(dists),
        matrix.n_rows,
        matrix.n_dropped,
    )
    return handle, matrix, work_grid


__all__ = ["fit_rfsp"]
