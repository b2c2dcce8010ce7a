# SPDX-License-Identifier: MIT
"""
Tests for rfsppy.features
"""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from rfsppy.features import (
    add_cyclic_doy,
    add_time_covariates,
    ensure_datetime_naive,
    validate_required_columns,
)


# --------------------------------------------------------------------------- #
# validate_required_columns
# --------------------------------------------------------------------------- #


def test_validate_required_columns_ok():
    df = pd.DataFrame({"a": [1], "b": [2], "c": [3]})
    validate_required_columns(df, ["a", "b"])


def test_validate_required_columns_raises_with_context():
    df = pd.DataFrame({"a": [1], "b": [2]})

    with pytest.raises(ValueError) as exc:
        validate_required_columns(df, ["a", "c"], context="my_func")

    msg = str(exc.value)
    assert "[my_func]" in msg
    assert "['c']" in msg


# --------------------------------------------------------------------------- #
# ensure_datetime_naive
# --------------------------------------------------------------------------- #


def test_ensure_datetime_naive_parses_strings_and_is_naive():
    s = pd.Series(["2020-01-01", "2020-01-02", "not-a-date"])
    out = ensure_datetime_naive(s)

    assert pd.api.types.is_datetime64_dtype(out)
    assert out.isna().sum() == 1


def test_ensure_datetime_naive_drops_timezone():
    tz_aware = pd.to_datetime(pd.Series(["2020-01-01", "2020-01-02"])).dt.tz_localize("UTC")
    out = ensure_datetime_naive(tz_aware)
    assert getattr(out.dt, "tz", None) is None


# --------------------------------------------------------------------------- #
# Time covariates
# --------------------------------------------------------------------------- #


def test_add_time_covariates_cdate_from_earliest_date():
    df = pd.DataFrame({"date": ["2001-01-03", "2001-01-01", "2001-02-01"]})
    out = add_time_covariates(df, "date", add_cyclic=False)

    assert out["cdate"].tolist() == [2.0, 0.0, 31.0]
    assert out["doy"].tolist() == [3, 1, 32]
    assert "doy_sin" not in out.columns
    # input untouched
    assert "cdate" not in df.columns


def test_add_time_covariates_with_origin_and_cyclic():
    df = pd.DataFrame({"date": pd.date_range("2001-01-01", periods=5, freq="D")})
    out = add_time_covariates(df, "date", origin="2000-12-31")

    assert out["cdate"].tolist() == [1.0, 2.0, 3.0, 4.0, 5.0]
    assert np.isfinite(out["doy_sin"]).all()
    assert (out["doy_cos"].abs() <= 1.0 + 1e-12).all()


def test_add_time_covariates_bad_dates_give_nan():
    df = pd.DataFrame({"date": ["2001-01-01", "garbage"]})
    out = add_time_covariates(df, "date")

    assert out["cdate"].iloc[0] == 0.0
    assert np.isnan(out["cdate"].iloc[1])
    assert np.isnan(out["doy_sin"].iloc[1])


def test_add_cyclic_doy_requires_column():
    with pytest.raises(ValueError):
        add_cyclic_doy(pd.DataFrame({"x": [1]}), doy_col="doy")
