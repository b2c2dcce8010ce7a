# SPDX-License-Identifier: MIT
"""
rfsppy.distances
================

Buffer-distance covariates.

For N reference points and a grid with M cells, :func:`buffer_distances`
produces N layers of M values, where layer *i*, cell *j* is the planar
Euclidean distance between the centre of cell *j* and point *i*. Feeding
these layers to a regression forest next to ordinary covariates lets the
forest learn spatial autocorrelation without a variogram.

Cost is O(N * M) in time and memory. The method is practical for up to
roughly a thousand reference points; use :func:`estimate_buffer_cost`
before running on large sets.

Public helpers
--------------
- :func:`buffer_distances`        – ordered ``{layer_name: (ny, nx) array}``.
- :func:`add_buffer_distances`    – same layers attached to a new Grid.
- :func:`buffer_distance_frame`   – flat ``(M, N)`` table.
- :func:`estimate_buffer_cost`    – N, M and memory footprint.
- :func:`unique_reference_points` – one row per spatial identity, for
  spatiotemporal tables where a station repeats over time.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from pyproj import CRS
from pyproj.exceptions import CRSError
from tqdm.auto import tqdm

from .exceptions import (
    CoordinateSystemMismatch,
    EmptyReferenceSet,
    InvalidGeometry,
    SchemaMismatch,
)
from .features import validate_required_columns
from .grid import Grid

logger = logging.getLogger(__name__)

#: Reference-set size above which a scaling warning is logged.
LARGE_REFERENCE_SET = 1000

DEFAULT_PREFIX = "layer."


# --------------------------------------------------------------------------- #
# Internal helpers
# --------------------------------------------------------------------------- #


def _as_crs(value: Any, what: str) -> CRS:
    try:
        return CRS.from_user_input(value)
    except CRSError as err:
        raise CoordinateSystemMismatch(f"Unrecognised CRS for {what}: {value!r}") from err


def _check_crs(points_crs: Any, grid: Grid) -> None:
    """
    Both CRS known and different -> CoordinateSystemMismatch.
    An unknown (None) CRS on either side is taken to be the other one.
    """
    if points_crs is None or grid.crs is None:
        return
    a = _as_crs(points_crs, "reference points")
    b = _as_crs(grid.crs, "grid")
    if a != b:
        raise CoordinateSystemMismatch(
            f"Reference points CRS ({a.to_string()}) differs from grid CRS "
            f"({b.to_string()}). Reproject before computing buffer distances."
        )


def _validate_points(
    points: pd.DataFrame,
    *,
    id_col: str,
    x_col: str,
    y_col: str,
) -> pd.DataFrame:
    if len(points) == 0:
        raise EmptyReferenceSet("buffer_distances needs at least one reference point.")

    validate_required_columns(points, [id_col, x_col, y_col], context="buffer_distances")

    pts = points[[id_col, x_col, y_col]].copy()
    pts[x_col] = pd.to_numeric(pts[x_col], errors="coerce")
    pts[y_col] = pd.to_numeric(pts[y_col], errors="coerce")

    dup = pts[id_col].duplicated(keep=False)
    if dup.any():
        ids = pd.unique(pts.loc[dup, id_col]).tolist()
        raise InvalidGeometry(
            f"Reference point ids must be unique; duplicated ids: {ids[:10]}. "
            f"Use unique_reference_points() for spatiotemporal tables."
        )

    # layer names are built from str(id), so 1 and "1" would share a layer
    as_text = pts[id_col].map(str)
    clash = as_text.duplicated(keep=False)
    if clash.any():
        ids = pts.loc[clash, id_col].tolist()
        raise InvalidGeometry(
            f"Reference point ids {ids[:10]!r} map to the same layer name; "
            f"make the ids distinct as text."
        )

    bad = ~(np.isfinite(pts[x_col].to_numpy(dtype=float)) & np.isfinite(pts[y_col].to_numpy(dtype=float)))
    if bad.any():
        first = pts.loc[bad].iloc[0]
        raise InvalidGeometry(
            f"Reference point '{first[id_col]}' has a non-finite coordinate "
            f"({first[x_col]}, {first[y_col]}); {int(bad.sum())} point(s) affected."
        )

    return pts.reset_index(drop=True)


def _distance_layer(centers: np.ndarray, x: float, y: float, shape) -> np.ndarray:
    return np.hypot(centers[:, 0] - x, centers[:, 1] - y).reshape(shape)


# --------------------------------------------------------------------------- #
# Public API
# --------------------------------------------------------------------------- #


def estimate_buffer_cost(n_points: int, grid: Grid) -> Dict[str, int]:
    """
    Size of the output of :func:`buffer_distances` before running it.

    Returns
    -------
    dict
        ``{"n_points": N, "n_cells": M, "n_values": N*M, "bytes": 8*N*M}``
    """
    n = int(n_points)
    m = int(grid.n_cells)
    return {"n_points": n, "n_cells": m, "n_values": n * m, "bytes": 8 * n * m}


def unique_reference_points(
    observations: pd.DataFrame,
    *,
    id_col: str,
    x_col: str,
    y_col: str,
) -> pd.DataFrame:
    """
    Collapse a (possibly spatiotemporal) observation table to one row per
    spatial identity, keeping first-appearance order.

    Raises
    ------
    InvalidGeometry
        If one id appears with more than one coordinate pair.
    """
    validate_required_columns(
        observations, [id_col, x_col, y_col], context="unique_reference_points"
    )
    pts = observations[[id_col, x_col, y_col]].dropna(subset=[id_col])

    n_coords = pts.drop_duplicates().groupby(id_col, sort=False).size()
    moving = n_coords[n_coords > 1]
    if not moving.empty:
        raise InvalidGeometry(
            f"Ids bound to more than one location: {moving.index.tolist()[:10]}."
        )

    return pts.drop_duplicates(subset=[id_col], keep="first").reset_index(drop=True)


def buffer_distances(
    points: pd.DataFrame,
    grid: Grid,
    *,
    id_col: str,
    x_col: str,
    y_col: str,
    crs: Optional[Any] = None,
    prefix: str = DEFAULT_PREFIX,
    n_jobs: Optional[int] = None,
    show_progress: bool = False,
) -> Dict[str, np.ndarray]:
    """
    Compute one distance layer per reference point.

    Parameters
    ----------
    points : DataFrame
        Reference points, one row each, with unique ids.
    grid : Grid
        Target grid. Its existing layers are not used or modified.
    id_col, x_col, y_col : str
        Column names for the point id and planar coordinates.
    crs : any, optional
        CRS of the point coordinates. Compared to ``grid.crs`` with
        :class:`pyproj.CRS`; ``None`` means "same as the grid".
    prefix : str, default "layer."
        Layer names are ``f"{prefix}{point_id}"``.
    n_jobs : int or None
        If set (and not 1), layers are computed in parallel threads via
        joblib. Output order does not depend on it.
    show_progress : bool
        Show a progress bar over reference points.

    Returns
    -------
    dict
        Ordered ``{layer_name: ndarray (ny, nx)}`` in input point order.

    Raises
    ------
    EmptyReferenceSet, CoordinateSystemMismatch, InvalidGeometry
    """
    pts = _validate_points(points, id_col=id_col, x_col=x_col, y_col=y_col)
    _check_crs(crs, grid)

    cost = estimate_buffer_cost(len(pts), grid)
    if cost["n_points"] > LARGE_REFERENCE_SET:
        logger.warning(
            "buffer_distances: %d reference points x %d cells = %d values (%.1f MB); "
            "buffer distances scale poorly beyond ~%d points.",
            cost["n_points"],
            cost["n_cells"],
            cost["n_values"],
            cost["bytes"] / 1e6,
            LARGE_REFERENCE_SET,
        )
    else:
        logger.debug(
            "buffer_distances: %d points x %d cells", cost["n_points"], cost["n_cells"]
        )

    names: List[str] = [f"{prefix}{pid}" for pid in pts[id_col].tolist()]
    xs = pts[x_col].to_numpy(dtype=float)
    ys = pts[y_col].to_numpy(dtype=float)
    centers = grid.cell_centers()

    indices = range(len(pts))
    iterator = tqdm(indices, desc="Buffer distances", unit="pt") if show_progress else indices

    if n_jobs is None or n_jobs == 1:
        layers = [_distance_layer(centers, xs[i], ys[i], grid.shape) for i in iterator]
    else:
        layers = Parallel(n_jobs=n_jobs, prefer="threads")(
            delayed(_distance_layer)(centers, xs[i], ys[i], grid.shape) for i in iterator
        )

    return dict(zip(names, layers))


def add_buffer_distances(
    grid: Grid,
    points: pd.DataFrame,
    *,
    id_col: str,
    x_col: str,
    y_col: str,
    crs: Optional[Any] = None,
    prefix: str = DEFAULT_PREFIX,
    n_jobs: Optional[int] = None,
    show_progress: bool = False,
) -> Grid:
    """
    Return a new Grid holding ``grid``'s layers plus one distance layer
    per reference point.

    Raises
    ------
    SchemaMismatch
        If a distance layer name collides with an existing layer.
    """
    layers = buffer_distances(
        points,
        grid,
        id_col=id_col,
        x_col=x_col,
        y_col=y_col,
        crs=crs,
        prefix=prefix,
        n_jobs=n_jobs,
        show_progress=show_progress,
    )
    clash = [name for name in layers if name in grid.layers]
    if clash:
        raise SchemaMismatch(
            f"Distance layers would overwrite existing grid layers: {clash[:10]}. "
            f"Choose another prefix."
        )
    return grid.with_layers(layers)


def buffer_distance_frame(
    points: pd.DataFrame,
    grid: Grid,
    *,
    id_col: str,
    x_col: str,
    y_col: str,
    crs: Optional[Any] = None,
    prefix: str = DEFAULT_PREFIX,
    n_jobs: Optional[int] = None,
) -> pd.DataFrame:
    """
    Buffer distances as a flat table: one row per cell (row-major cell
    order), one column per reference point.
    """
    layers = buffer_distances(
        points,
        grid,
        id_col=id_col,
        x_col=x_col,
        y_col=y_col,
        crs=crs,
        prefix=prefix,
        n_jobs=n_jobs,
    )
    return pd.DataFrame({name: arr.ravel() for name, arr in layers.items()})


__all__ = [
    "LARGE_REFERENCE_SET",
    "DEFAULT_PREFIX",
    "estimate_buffer_cost",
    "unique_reference_points",
    "buffer_distances",
    "add_buffer_distances",
    "buffer_distance_frame",
]
