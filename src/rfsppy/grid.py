# SPDX-License-Identifier: MIT
"""
rfsppy.grid
===========

Regular prediction grid with named numeric layers.

A :class:`Grid` is a regular tessellation of square (or rectangular)
cells over a bounding box, plus an ordered set of named layers
("covariates") that all share the same cell geometry:

- origin at the south-west corner ``(xmin, ymin)``;
- ``nx`` columns growing east, ``ny`` rows growing north;
- every layer is a float array of shape ``(ny, nx)``, row 0 being the
  southern-most row;
- cells are numbered row-major, ``j = row * nx + col``, which is also
  the row order of :meth:`Grid.cell_centers` and :meth:`Grid.to_frame`.

Grids are values: adding or dropping layers returns a **new** Grid and
never touches the layers of the original one.

Cell lookup rule
----------------
Cells are half-open intervals ``[lo, hi)`` in both axes, so a point on
an interior boundary belongs to the cell to its upper-right (east /
north). Points exactly on the outer east or north edge of the grid are
folded into the last column / row so that the whole closed bounding box
is covered.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .exceptions import NoContainingCell, SchemaMismatch
from .features import validate_required_columns


CellSize = Union[float, Tuple[float, float]]


def _as_cell_size(cell_size: CellSize) -> Tuple[float, float]:
    if np.isscalar(cell_size):
        dx = dy = float(cell_size)  # type: ignore[arg-type]
    else:
        dx, dy = (float(v) for v in cell_size)  # type: ignore[union-attr]
    if not (np.isfinite(dx) and np.isfinite(dy)) or dx <= 0.0 or dy <= 0.0:
        raise ValueError(f"cell_size must be positive and finite, got {cell_size!r}.")
    return dx, dy


@dataclass(frozen=True, eq=False)
class Grid:
    """
    Regular grid with named layers.

    Parameters
    ----------
    xmin, ymin : float
        South-west corner of the grid.
    cell_size : float or (float, float)
        Cell width and height. A scalar means square cells.
    nx, ny : int
        Number of columns and rows.
    crs : any, optional
        Coordinate reference system metadata (EPSG code, WKT, PROJ string
        or ``pyproj.CRS``). ``None`` means "unknown / planar".
    layers : mapping of str -> array-like, optional
        Layer values, each reshapeable to ``(ny, nx)``.
    """

    xmin: float
    ymin: float
    cell_size: CellSize
    nx: int
    ny: int
    crs: Optional[Any] = None
    layers: Mapping[str, np.ndarray] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "cell_size", _as_cell_size(self.cell_size))
        if int(self.nx) < 1 or int(self.ny) < 1:
            raise ValueError(f"Grid needs at least one cell, got nx={self.nx}, ny={self.ny}.")
        if not (np.isfinite(self.xmin) and np.isfinite(self.ymin)):
            raise ValueError("Grid origin (xmin, ymin) must be finite.")
        object.__setattr__(self, "nx", int(self.nx))
        object.__setattr__(self, "ny", int(self.ny))
        object.__setattr__(self, "xmin", float(self.xmin))
        object.__setattr__(self, "ymin", float(self.ymin))

        frozen: Dict[str, np.ndarray] = {}
        for name, values in dict(self.layers).items():
            frozen[str(name)] = self._coerce_layer(str(name), values)
        object.__setattr__(self, "layers", frozen)

    # ------------------------------------------------------------------ #
    # Constructors
    # ------------------------------------------------------------------ #

    @classmethod
    def from_bounds(
        cls,
        xmin: float,
        ymin: float,
        xmax: float,
        ymax: float,
        cell_size: CellSize,
        *,
        crs: Optional[Any] = None,
    ) -> "Grid":
        """
        Build an empty grid covering ``[xmin, xmax] x [ymin, ymax]``.

        The number of cells is rounded up, so the grid may extend slightly
        beyond ``xmax`` / ``ymax``.
        """
        dx, dy = _as_cell_size(cell_size)
        if xmax <= xmin or ymax <= ymin:
            raise ValueError("Bounds must satisfy xmin < xmax and ymin < ymax.")
        nx = int(np.ceil((xmax - xmin) / dx - 1e-9))
        ny = int(np.ceil((ymax - ymin) / dy - 1e-9))
        return cls(xmin=xmin, ymin=ymin, cell_size=(dx, dy), nx=max(nx, 1), ny=max(ny, 1), crs=crs)

    # ------------------------------------------------------------------ #
    # Geometry
    # ------------------------------------------------------------------ #

    @property
    def dx(self) -> float:
        return self.cell_size[0]  # type: ignore[index]

    @property
    def dy(self) -> float:
        return self.cell_size[1]  # type: ignore[index]

    @property
    def xmax(self) -> float:
        return self.xmin + self.nx * self.dx

    @property
    def ymax(self) -> float:
        return self.ymin + self.ny * self.dy

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.ny, self.nx)

    @property
    def n_cells(self) -> int:
        return self.nx * self.ny

    @property
    def layer_names(self) -> List[str]:
        return list(self.layers.keys())

    def cell_centers(self) -> np.ndarray:
        """
        Return the ``(n_cells, 2)`` array of cell-centre coordinates in
        row-major cell order.
        """
        xs = self.xmin + (np.arange(self.nx, dtype=float) + 0.5) * self.dx
        ys = self.ymin + (np.arange(self.ny, dtype=float) + 0.5) * self.dy
        xx, yy = np.meshgrid(xs, ys)
        return np.column_stack([xx.ravel(), yy.ravel()])

    def cell_index(self, x, y) -> np.ndarray:
        """
        Vectorized point-in-cell lookup.

        Returns an int64 array of cell numbers, ``-1`` for coordinates
        that are non-finite or outside the grid.
        """
        x = np.asarray(x, dtype=float)
        y = np.asarray(y, dtype=float)
        fx = (x - self.xmin) / self.dx
        fy = (y - self.ymin) / self.dy

        inside = (
            np.isfinite(fx)
            & np.isfinite(fy)
            & (fx >= 0.0)
            & (fx <= self.nx)
            & (fy >= 0.0)
            & (fy <= self.ny)
        )

        out = np.full(fx.shape, -1, dtype=np.int64)
        if inside.any():
            col = np.minimum(np.floor(fx[inside]).astype(np.int64), self.nx - 1)
            row = np.minimum(np.floor(fy[inside]).astype(np.int64), self.ny - 1)
            out[inside] = row * self.nx + col
        return out

    def locate(self, x: float, y: float) -> int:
        """
        Strict single-point lookup.

        Raises
        ------
        NoContainingCell
            If ``(x, y)`` is outside the grid.
        """
        j = int(self.cell_index(np.array([x]), np.array([y]))[0])
        if j < 0:
            raise NoContainingCell(
                f"Point ({x}, {y}) is outside grid extent "
                f"[{self.xmin}, {self.xmax}] x [{self.ymin}, {self.ymax}]."
            )
        return j

    def same_geometry(self, other: "Grid") -> bool:
        return (
            self.nx == other.nx
            and self.ny == other.ny
            and np.isclose(self.xmin, other.xmin)
            and np.isclose(self.ymin, other.ymin)
            and np.isclose(self.dx, other.dx)
            and np.isclose(self.dy, other.dy)
        )

    # ------------------------------------------------------------------ #
    # Layers
    # ------------------------------------------------------------------ #

    def _coerce_layer(self, name: str, values) -> np.ndarray:
        arr = np.asarray(values, dtype=float)
        if arr.size != self.n_cells:
            raise SchemaMismatch(
                f"Layer '{name}' has {arr.size} values; grid has "
                f"{self.n_cells} cells ({self.ny} x {self.nx})."
            )
        arr = np.array(arr.reshape(self.shape), dtype=float, copy=True)
        arr.setflags(write=False)
        return arr

    def layer(self, name: str) -> np.ndarray:
        try:
            return self.layers[name]
        except KeyError:
            raise SchemaMismatch(
                f"Layer '{name}' not found in grid. Available layers: {self.layer_names[:12]}"
            ) from None

    def with_layers(self, new_layers: Mapping[str, Any]) -> "Grid":
        """
        Return a new Grid with ``new_layers`` added (or replaced).
        Layer order: existing layers first, then new names in the given order.
        """
        merged: Dict[str, Any] = dict(self.layers)
        merged.update(dict(new_layers))
        return Grid(
            xmin=self.xmin,
            ymin=self.ymin,
            cell_size=self.cell_size,
            nx=self.nx,
            ny=self.ny,
            crs=self.crs,
            layers=merged,
        )

    def with_layer(self, name: str, values) -> "Grid":
        return self.with_layers({name: values})

    def drop_layers(self, names: Iterable[str]) -> "Grid":
        drop = set(names)
        return Grid(
            xmin=self.xmin,
            ymin=self.ymin,
            cell_size=self.cell_size,
            nx=self.nx,
            ny=self.ny,
            crs=self.crs,
            layers={k: v for k, v in self.layers.items() if k not in drop},
        )

    def to_frame(self, layers: Optional[Sequence[str]] = None) -> pd.DataFrame:
        """
        Flatten the grid into a table with one row per cell:
        ``[cell, x, y, <layers...>]``.
        """
        names = self.layer_names if layers is None else list(layers)
        centers = self.cell_centers()
        out = pd.DataFrame(
            {
                "cell": np.arange(self.n_cells, dtype=np.int64),
                "x": centers[:, 0],
                "y": centers[:, 1],
            }
        )
        for name in names:
            out[name] = self.layer(name).ravel()
        return out

    def __repr__(self) -> str:
        return (
            f"Grid(xmin={self.xmin}, ymin={self.ymin}, cell_size={self.cell_size}, "
            f"nx={self.nx}, ny={self.ny}, crs={self.crs!r}, layers={self.layer_names})"
        )


# --------------------------------------------------------------------------- #
# Grid from a pixel table
# --------------------------------------------------------------------------- #


def _infer_spacing(values: np.ndarray) -> float:
    u = np.unique(values)
    if u.size < 2:
        raise ValueError(
            "Cannot infer cell size from a single row/column of pixels; pass cell_size."
        )
    return float(np.min(np.diff(u)))


def grid_from_frame(
    data: pd.DataFrame,
    *,
    x_col: str,
    y_col: str,
    layer_cols: Optional[Sequence[str]] = None,
    cell_size: Optional[CellSize] = None,
    crs: Optional[Any] = None,
) -> Grid:
    """
    Build a :class:`Grid` from a table of pixel centres.

    Each row of ``data`` is one pixel (cell centre + layer values), as in a
    gridded covariate table. Cells of the bounding box without a row are
    filled with NaN.

    Parameters
    ----------
    data : DataFrame
        Pixel table.
    x_col, y_col : str
        Cell-centre coordinate columns.
    layer_cols : sequence of str or None
        Columns to turn into layers. Default: every other numeric column.
    cell_size : float or (float, float) or None
        Pixel size. If None, the smallest spacing between distinct
        x (resp. y) values is used.
    crs : any, optional
        CRS metadata attached to the grid.
    """
    validate_required_columns(data, [x_col, y_col], context="grid_from_frame")
    if data.empty:
        raise ValueError("[grid_from_frame] pixel table is empty.")

    x = data[x_col].to_numpy(dtype=float)
    y = data[y_col].to_numpy(dtype=float)
    if not (np.isfinite(x).all() and np.isfinite(y).all()):
        raise ValueError("[grid_from_frame] pixel coordinates must be finite.")

    if cell_size is None:
        dx, dy = _infer_spacing(x), _infer_spacing(y)
    else:
        dx, dy = _as_cell_size(cell_size)

    xmin = float(x.min()) - dx / 2.0
    ymin = float(y.min()) - dy / 2.0
    nx = int(np.rint((x.max() - x.min()) / dx)) + 1
    ny = int(np.rint((y.max() - y.min()) / dy)) + 1

    col = np.rint((x - xmin) / dx - 0.5).astype(np.int64)
    row = np.rint((y - ymin) / dy - 0.5).astype(np.int64)

    if layer_cols is None:
        layer_cols = [
            c
            for c in data.columns
            if c not in (x_col, y_col) and pd.api.types.is_numeric_dtype(data[c])
        ]
    else:
        validate_required_columns(data, layer_cols, context="grid_from_frame")

    layers: Dict[str, np.ndarray] = {}
    for name in layer_cols:
        arr = np.full((ny, nx), np.nan, dtype=float)
        arr[row, col] = pd.to_numeric(data[name], errors="coerce").to_numpy(dtype=float)
        layers[str(name)] = arr

    return Grid(xmin=xmin, ymin=ymin, cell_size=(dx, dy), nx=nx, ny=ny, crs=crs, layers=layers)


__all__ = ["Grid", "grid_from_frame"]
