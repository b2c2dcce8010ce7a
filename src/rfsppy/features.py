# SPDX-License-Identifier: MIT
"""
rfsppy.features
===============

Small table helpers shared by the distance generator, the matrix
assembler and the model layer:

- Validate required columns in user-provided DataFrames.
- Normalize datetime columns to timezone-free pandas datetimes.
- Derive numeric time covariates for spatiotemporal models
  (cumulative days, day-of-year and its cyclic encoding).

In a spatiotemporal setting, time enters the model as ordinary numeric
covariates carried on the observation table; buffer distances depend on
location only.
"""

from __future__ import annotations

from typing import Optional, Sequence, Union

import numpy as np
import pandas as pd


# ---------------------------------------------------------------------------
# Validation helper
# ---------------------------------------------------------------------------


def validate_required_columns(
    df: pd.DataFrame,
    required: Sequence[str],
    context: Optional[str] = None,
) -> None:
    """
    Raise a ValueError if any required columns are missing.

    Parameters
    ----------
    df : DataFrame
        Input table.
    required : sequence of str
        Column names that must be present.
    context : str or None, default None
        Optional string to prepend to the error message (e.g., the
        calling function name).
    """
    missing = [c for c in required if c not in df.columns]
    if not missing:
        return

    prefix = f"[{context}] " if context else ""
    raise ValueError(
        f"{prefix}missing required columns {missing}. "
        f"Available columns include: {list(df.columns)[:12]}..."
    )


# ---------------------------------------------------------------------------
# Datetime utilities
# ---------------------------------------------------------------------------


def ensure_datetime_naive(s: pd.Series) -> pd.Series:
    """
    Ensure that a Series is converted to timezone-free ``datetime64[ns]``.

    Unparsable values become ``NaT``; timezone-aware values lose their
    timezone.
    """
    s = pd.to_datetime(s, errors="coerce")
    if isinstance(s.dtype, pd.DatetimeTZDtype):
        s = s.dt.tz_localize(None)
    return s


# ---------------------------------------------------------------------------
# Time covariates
# ---------------------------------------------------------------------------


def add_cyclic_doy(
    df: pd.DataFrame,
    *,
    doy_col: str = "doy",
    prefix: str = "doy",
    inplace: bool = False,
) -> pd.DataFrame:
    """
    Add sine/cosine cyclic encodings for a day-of-year column.

    New columns are ``f"{prefix}_sin"`` and ``f"{prefix}_cos"``.
    """
    out = df if inplace else df.copy()

    if doy_col not in out.columns:
        raise ValueError(f"Column '{doy_col}' not found for cyclic encoding.")

    doy_values = pd.to_numeric(out[doy_col], errors="coerce").astype(float).to_numpy()
    # 365.25 keeps leap years approximately consistent
    phase = 2.0 * np.pi * doy_values / 365.25

    out[f"{prefix}_sin"] = np.sin(phase)
    out[f"{prefix}_cos"] = np.cos(phase)

    return out


def add_time_covariates(
    df: pd.DataFrame,
    date_col: str,
    *,
    origin: Optional[Union[str, pd.Timestamp]] = None,
    add_cyclic: bool = True,
    inplace: bool = False,
) -> pd.DataFrame:
    """
    Add numeric time covariates derived from ``date_col``:

    - ``cdate`` – days since ``origin`` (float, fractional for sub-daily
      timestamps). Defaults to the earliest date in ``df``.
    - ``doy``   – day-of-year (NaN where the date is missing).
    - ``doy_sin`` / ``doy_cos`` when ``add_cyclic=True``.

    Rows with unparsable dates keep NaN covariates; the matrix assembler's
    missing-value policy removes them later if these columns are used.

    Parameters
    ----------
    df : DataFrame
        Observation table.
    date_col : str
        Name of the date/datetime column.
    origin : str or Timestamp or None
        Reference date for ``cdate``. Pass the same origin for training
        observations and prediction slices so both share one time axis.
    add_cyclic : bool, default True
        Whether to append sine/cosine encodings of day-of-year.
    inplace : bool, default False
        If True, mutate ``df`` in place and return it.
    """
    out = df if inplace else df.copy()
    validate_required_columns(out, [date_col], context="add_time_covariates")

    dates = ensure_datetime_naive(out[date_col])
    out[date_col] = dates

    if origin is None:
        origin_ts = dates.min()
    else:
        origin_ts = pd.Timestamp(origin)

    out["cdate"] = (dates - origin_ts) / pd.Timedelta(days=1)
    out["doy"] = dates.dt.dayofyear

    if add_cyclic:
        add_cyclic_doy(out, doy_col="doy", prefix="doy", inplace=True)

    return out


__all__ = [
    "validate_required_columns",
    "ensure_datetime_naive",
    "add_cyclic_doy",
    "add_time_covariates",
]
