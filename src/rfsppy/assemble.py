# SPDX-License-Identifier: MIT
"""
rfsppy.assemble
===============

Regression-matrix assembly.

This module joins point observations with grid layers (ordinary
covariates and buffer distances) and produces a flat, model-ready table:

1. **Overlay** – every observation is matched to the grid cell that
   contains it (see :mod:`rfsppy.grid` for the boundary rule) and the
   requested layers are sampled there.
2. **Exclusion** – observations outside the grid, and rows with a
   missing target / covariate / distance / weight value, are dropped.
   Both counts are kept on the result and logged at WARNING level; they
   are never raised.
3. **Schema** – the output column order is fixed:
   ``[keep_cols..., target, covariates..., extras..., distances..., weight]``.

For multivariate models, :func:`stack_regression_matrices` melts K
single-target matrices into one long matrix with a shared value column
and a categorical column naming the source target of every row.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .distances import DEFAULT_PREFIX
from .exceptions import SchemaMismatch
from .features import validate_required_columns
from .grid import Grid

logger = logging.getLogger(__name__)


# --------------------------------------------------------------------------- #
# Result type
# --------------------------------------------------------------------------- #


@dataclass(frozen=True, eq=False)
class RegressionMatrix:
    """
    Assembled regression table plus its column schema.

    Attributes
    ----------
    data : DataFrame
        One row per retained observation, columns in schema order.
    target_col : str
        Response column.
    covariate_cols : tuple of str
        Columns sampled from ordinary grid layers.
    distance_cols : tuple of str
        Columns sampled from buffer-distance layers.
    extra_cols : tuple of str
        Covariates carried from the observation table (e.g. time).
    weight_col : str or None
        Case-weight column, carried unmodified.
    group_col : str or None
        Categorical column identifying the source target in a stacked
        matrix; it is also used as a predictor.
    n_outside : int
        Observations dropped because no grid cell contains them.
    n_missing : int
        Observations dropped because a required value is missing.
    """

    data: pd.DataFrame
    target_col: str
    covariate_cols: Tuple[str, ...] = ()
    distance_cols: Tuple[str, ...] = ()
    extra_cols: Tuple[str, ...] = ()
    weight_col: Optional[str] = None
    group_col: Optional[str] = None
    n_outside: int = 0
    n_missing: int = 0

    @property
    def feature_cols(self) -> List[str]:
        feats = list(self.covariate_cols) + list(self.extra_cols) + list(self.distance_cols)
        if self.group_col is not None:
            feats.append(self.group_col)
        return feats

    @property
    def n_rows(self) -> int:
        return int(len(self.data))

    @property
    def n_dropped(self) -> int:
        return int(self.n_outside + self.n_missing)

    def __len__(self) -> int:
        return self.n_rows

    def __repr__(self) -> str:
        return (
            f"RegressionMatrix(rows={self.n_rows}, target={self.target_col!r}, "
            f"covariates={len(self.covariate_cols)}, distances={len(self.distance_cols)}, "
            f"extras={len(self.extra_cols)}, weight={self.weight_col!r}, "
            f"group={self.group_col!r}, dropped={self.n_outside}+{self.n_missing})"
        )


# --------------------------------------------------------------------------- #
# Overlay
# --------------------------------------------------------------------------- #


def overlay_points(
    observations: pd.DataFrame,
    grid: Grid,
    *,
    x_col: str,
    y_col: str,
    layers: Optional[Sequence[str]] = None,
) -> pd.DataFrame:
    """
    Sample grid layers at observation locations.

    Returns
    -------
    DataFrame
        Index aligned with ``observations``; column ``cell`` holds the
        containing cell number (``-1`` when outside the grid), followed by
        one column per layer (NaN when outside).
    """
    validate_required_columns(observations, [x_col, y_col], context="overlay_points")
    names = grid.layer_names if layers is None else list(layers)

    cells = grid.cell_index(
        pd.to_numeric(observations[x_col], errors="coerce").to_numpy(dtype=float),
        pd.to_numeric(observations[y_col], errors="coerce").to_numpy(dtype=float),
    )
    inside = cells >= 0

    out: Dict[str, np.ndarray] = {"cell": cells}
    for name in names:
        flat = grid.layer(name).ravel()
        values = np.full(cells.shape, np.nan, dtype=float)
        values[inside] = flat[cells[inside]]
        out[name] = values

    return pd.DataFrame(out, index=observations.index)


# --------------------------------------------------------------------------- #
# Single-target assembly
# --------------------------------------------------------------------------- #


def _resolve_layers(
    grid: Grid,
    covariate_cols: Optional[Sequence[str]],
    distance_cols: Optional[Sequence[str]],
    distance_prefix: str,
) -> Tuple[List[str], List[str]]:
    if distance_cols is None:
        dists = [n for n in grid.layer_names if n.startswith(distance_prefix)]
    else:
        dists = list(distance_cols)

    if covariate_cols is None:
        taken = set(dists)
        covs = [n for n in grid.layer_names if n not in taken]
    else:
        covs = list(covariate_cols)

    absent = [n for n in covs + dists if n not in grid.layers]
    if absent:
        raise SchemaMismatch(
            f"Layers not found in grid: {absent[:10]}. "
            f"Available layers include: {grid.layer_names[:12]}"
        )
    return covs, dists


def assemble_regression_matrix(
    observations: pd.DataFrame,
    grid: Grid,
    *,
    target_col: str,
    x_col: str,
    y_col: str,
    covariate_cols: Optional[Sequence[str]] = None,
    distance_cols: Optional[Sequence[str]] = None,
    extra_cols: Optional[Sequence[str]] = None,
    weight_col: Optional[str] = None,
    keep_cols: Optional[Sequence[str]] = None,
    distance_prefix: str = DEFAULT_PREFIX,
) -> RegressionMatrix:
    """
    Build a :class:`RegressionMatrix` from point observations and a grid.

    Parameters
    ----------
    observations : DataFrame
        One row per observation (location, optionally time).
    grid : Grid
        Grid carrying covariate and buffer-distance layers.
    target_col : str
        Response column in ``observations``.
    x_col, y_col : str
        Observation coordinates, in the grid's CRS.
    covariate_cols : sequence of str or None
        Grid layers to use as covariates. Default: every layer that is
        not a distance layer.
    distance_cols : sequence of str or None
        Buffer-distance layers. Default: layers whose name starts with
        ``distance_prefix``. Pass ``[]`` to build a matrix without them.
    extra_cols : sequence of str or None
        Covariates taken from ``observations`` itself (e.g. ``cdate``).
    weight_col : str or None
        Case weights in ``observations``; copied without transformation.
    keep_cols : sequence of str or None
        Identifier columns copied to the front of the output (not used
        as predictors).
    distance_prefix : str
        Prefix identifying distance layers when ``distance_cols`` is None.

    Returns
    -------
    RegressionMatrix
    """
    extras = list(extra_cols or [])
    keep = list(keep_cols or [])
    required = [x_col, y_col, target_col] + extras + keep
    if weight_col is not None:
        required.append(weight_col)
    validate_required_columns(observations, required, context="assemble_regression_matrix")

    covs, dists = _resolve_layers(grid, covariate_cols, distance_cols, distance_prefix)

    schema = keep + [target_col] + covs + extras + dists
    if weight_col is not None:
        schema.append(weight_col)
    dup = pd.Index(schema)
    if dup.has_duplicates:
        raise SchemaMismatch(
            f"Column names used more than once in the matrix schema: "
            f"{dup[dup.duplicated()].unique().tolist()}"
        )

    obs = observations.reset_index(drop=True)
    ov = overlay_points(obs, grid, x_col=x_col, y_col=y_col, layers=covs + dists)

    parts = [obs[keep + [target_col]], ov[covs], obs[extras], ov[dists]]
    if weight_col is not None:
        parts.append(obs[[weight_col]])
    frame = pd.concat(parts, axis=1)[schema]

    outside = ov["cell"].to_numpy() < 0
    n_outside = int(outside.sum())

    value_cols = [c for c in schema if c not in keep]
    incomplete = frame[value_cols].isna().any(axis=1).to_numpy()
    missing = incomplete & ~outside
    n_missing = int(missing.sum())

    if n_outside:
        logger.warning(
            "assemble_regression_matrix[%s]: %d of %d observations fall outside the grid "
            "and were dropped.",
            target_col,
            n_outside,
            len(obs),
        )
    if n_missing:
        logger.warning(
            "assemble_regression_matrix[%s]: %d of %d observations have missing "
            "target/covariate values and were dropped.",
            target_col,
            n_missing,
            len(obs),
        )

    data = frame.loc[~(outside | missing)].reset_index(drop=True)
    logger.info(
        "assemble_regression_matrix[%s]: %d rows, %d covariates, %d distances, %d extras",
        target_col,
        len(data),
        len(covs),
        len(dists),
        len(extras),
    )

    return RegressionMatrix(
        data=data,
        target_col=target_col,
        covariate_cols=tuple(covs),
        distance_cols=tuple(dists),
        extra_cols=tuple(extras),
        weight_col=weight_col,
        n_outside=n_outside,
        n_missing=n_missing,
    )


# --------------------------------------------------------------------------- #
# Multivariate stacking
# --------------------------------------------------------------------------- #


def _block_signature(block: RegressionMatrix) -> Tuple:
    return (
        block.covariate_cols,
        block.extra_cols,
        block.distance_cols,
        block.weight_col,
        block.group_col,
    )


def _stacked_columns(first: RegressionMatrix, value_col: str, group_col: str) -> List[str]:
    out: List[str] = []
    for c in first.data.columns:
        if c == first.target_col:
            out.extend([value_col, group_col])
        else:
            out.append(c)
    return out


def stack_regression_matrices(
    blocks: Mapping[str, RegressionMatrix],
    *,
    value_col: str = "value",
    group_col: str = "type",
) -> RegressionMatrix:
    """
    Melt K single-target matrices into one long matrix.

    Each block's target column is renamed to ``value_col`` and a
    categorical ``group_col`` with the block name is added; shared
    columns are replicated as-is. Categories follow the order of
    ``blocks``.

    Invariants: ``len(result) == sum(len(b) for b in blocks)`` and
    ``group_col`` has exactly K categories.

    Raises
    ------
    SchemaMismatch
        If blocks do not share the same non-target columns, or if
        ``value_col`` / ``group_col`` collide with existing columns.
    """
    if not blocks:
        raise ValueError("stack_regression_matrices needs at least one block.")

    names = list(blocks.keys())
    first_name = names[0]
    first = blocks[first_name]
    ref_cols = [c for c in first.data.columns if c != first.target_col]
    ref_sig = _block_signature(first)

    for name in names[1:]:
        block = blocks[name]
        cols = [c for c in block.data.columns if c != block.target_col]
        if set(cols) != set(ref_cols) or _block_signature(block) != ref_sig:
            only_here = sorted(set(cols) - set(ref_cols))
            only_ref = sorted(set(ref_cols) - set(cols))
            raise SchemaMismatch(
                f"Block '{name}' does not match block '{first_name}': "
                f"extra columns {only_here[:10]}, missing columns {only_ref[:10]}."
            )

    clash = [c for c in (value_col, group_col) if c in ref_cols]
    if clash or value_col == group_col:
        raise SchemaMismatch(
            f"value_col/group_col {clash or [group_col]} collide with matrix columns."
        )

    order = _stacked_columns(first, value_col, group_col)
    pieces: List[pd.DataFrame] = []
    for name in names:
        block = blocks[name]
        piece = block.data.rename(columns={block.target_col: value_col})
        piece[group_col] = name
        pieces.append(piece[order])
        if block.n_rows == 0:
            logger.warning("stack_regression_matrices: block '%s' has no rows.", name)

    data = pd.concat(pieces, axis=0, ignore_index=True)
    data[group_col] = pd.Categorical(data[group_col], categories=names)

    return RegressionMatrix(
        data=data,
        target_col=value_col,
        covariate_cols=first.covariate_cols,
        distance_cols=first.distance_cols,
        extra_cols=first.extra_cols,
        weight_col=first.weight_col,
        group_col=group_col,
        n_outside=int(sum(b.n_outside for b in blocks.values())),
        n_missing=int(sum(b.n_missing for b in blocks.values())),
    )


def assemble_stacked(
    observations: pd.DataFrame,
    grid: Grid,
    *,
    target_cols: Sequence[str],
    x_col: str,
    y_col: str,
    covariate_cols: Optional[Sequence[str]] = None,
    distance_cols: Optional[Sequence[str]] = None,
    extra_cols: Optional[Sequence[str]] = None,
    weight_col: Optional[str] = None,
    keep_cols: Optional[Sequence[str]] = None,
    distance_prefix: str = DEFAULT_PREFIX,
    value_col: str = "value",
    group_col: str = "type",
) -> RegressionMatrix:
    """
    Assemble one block per target column of a wide observation table and
    stack them (see :func:`stack_regression_matrices`).

    Every block applies its own missing-value policy, so a location with
    a missing value for one target still contributes to the others.
    """
    if not target_cols:
        raise ValueError("assemble_stacked needs at least one target column.")

    blocks: Dict[str, RegressionMatrix] = {}
    for target in target_cols:
        blocks[str(target)] = assemble_regression_matrix(
            observations,
            grid,
            target_col=target,
            x_col=x_col,
            y_col=y_col,
            covariate_cols=covariate_cols,
            distance_cols=distance_cols,
            extra_cols=extra_cols,
            weight_col=weight_col,
            keep_cols=keep_cols,
            distance_prefix=distance_prefix,
        )

    return stack_regression_matrices(blocks, value_col=value_col, group_col=group_col)


__all__ = [
    "RegressionMatrix",
    "overlay_points",
    "assemble_regression_matrix",
    "stack_regression_matrices",
    "assemble_stacked",
]
