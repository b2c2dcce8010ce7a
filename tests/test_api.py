# SPDX-License-Identifier: MIT
"""
Tests for rfsppy.api (end-to-end pipeline)
"""

from __future__ import annotations

import logging

import numpy as np
import pandas as pd
import pytest

from rfsppy import (
    CoordinateSystemMismatch,
    Grid,
    add_time_covariates,
    fit_rfsp,
    predict_grid,
)

FAST = {"n_estimators": 20, "n_jobs": 1}


def _make_grid(n: int = 8, crs=None) -> Grid:
    g = Grid(xmin=0.0, ymin=0.0, cell_size=1.0, nx=n, ny=n, crs=crs)
    c = g.cell_centers()
    return g.with_layer("elev", c[:, 0] + 0.5 * c[:, 1])


def _make_obs_df(n: int = 30, seed: int = 7) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    x = rng.uniform(0.0, 8.0, n)
    y = rng.uniform(0.0, 8.0, n)
    return pd.DataFrame(
        {
            "id": [f"P{i:02d}" for i in range(n)],
            "x": x,
            "y": y,
            "zinc": 2.0 * (x + 0.5 * y) + rng.normal(0.0, 0.1, n),
        }
    )


# --------------------------------------------------------------------------- #
# Spatial
# --------------------------------------------------------------------------- #


def test_fit_rfsp_spatial_pipeline():
    obs = _make_obs_df()
    grid = _make_grid()

    handle, matrix, grid_d = fit_rfsp(
        obs, grid, id_col="id", x_col="x", y_col="y", target_col="zinc", model_params=FAST
    )

    expected_dists = [f"layer.P{i:02d}" for i in range(30)]
    assert grid.layer_names == ["elev"]
    assert grid_d.layer_names == ["elev"] + expected_dists
    assert list(matrix.distance_cols) == expected_dists
    assert handle.feature_names == ["elev"] + expected_dists
    assert list(matrix.data.columns)[:2] == ["id", "zinc"]
    assert len(matrix) == 30

    pred = predict_grid(handle, grid_d)
    assert pred.shape == grid.shape
    assert np.isfinite(pred.layer("pred")).all()


def test_fit_rfsp_without_distances():
    obs = _make_obs_df()
    grid = _make_grid()

    handle, matrix, grid_d = fit_rfsp(
        obs,
        grid,
        id_col="id",
        x_col="x",
        y_col="y",
        target_col="zinc",
        use_distances=False,
        model_params=FAST,
    )

    assert grid_d is grid
    assert handle.feature_names == ["elev"]
    assert matrix.distance_cols == ()


def test_fit_rfsp_counts_outside_observations():
    obs = _make_obs_df()
    obs.loc[0, ["x", "y"]] = [20.0, 20.0]

    _, matrix, grid_d = fit_rfsp(
        obs, _make_grid(), id_col="id", x_col="x", y_col="y", target_col="zinc", model_params=FAST
    )

    assert matrix.n_outside == 1
    assert len(matrix) == 29
    # the outside point still contributes a distance layer
    assert "layer.P00" in grid_d.layers


def test_fit_rfsp_skips_observations_without_coordinates(caplog):
    obs = _make_obs_df()
    obs.loc[3, "x"] = np.nan

    with caplog.at_level(logging.WARNING, logger="rfsppy.api"):
        _, matrix, grid_d = fit_rfsp(
            obs, _make_grid(), id_col="id", x_col="x", y_col="y", target_col="zinc", model_params=FAST
        )

    assert "non-finite coordinate" in caplog.text
    assert "layer.P03" not in grid_d.layers
    assert len(matrix.distance_cols) == 29
    assert matrix.n_outside == 1
    assert len(matrix) == 29


def test_fit_rfsp_quantile_mode():
    handle, _, grid_d = fit_rfsp(
        _make_obs_df(),
        _make_grid(),
        id_col="id",
        x_col="x",
        y_col="y",
        target_col="zinc",
        mode="quantile",
        quantiles=(0.1, 0.5, 0.9),
        model_params=FAST,
    )

    out = predict_grid(handle, grid_d)
    assert out.layer_names == ["pred.q0.1", "pred.q0.5", "pred.q0.9", "pred.sd"]
    assert (out.layer("pred.q0.1") <= out.layer("pred.q0.9")).all()


def test_fit_rfsp_crs_mismatch():
    with pytest.raises(CoordinateSystemMismatch):
        fit_rfsp(
            _make_obs_df(),
            _make_grid(crs="EPSG:28992"),
            id_col="id",
            x_col="x",
            y_col="y",
            target_col="zinc",
            crs="EPSG:32633",
            model_params=FAST,
        )


# --------------------------------------------------------------------------- #
# Spatiotemporal
# --------------------------------------------------------------------------- #


def test_fit_rfsp_spatiotemporal_with_time_covariate():
    rng = np.random.default_rng(11)
    n_stations, n_days = 6, 4
    xs = rng.uniform(0.0, 8.0, n_stations)
    ys = rng.uniform(0.0, 8.0, n_stations)

    rows = []
    for i in range(n_stations):
        for k, d in enumerate(pd.date_range("2020-03-01", periods=n_days, freq="7D")):
            rows.append({"station": f"S{i}", "x": xs[i], "y": ys[i], "date": d, "tmax": xs[i] + k})
    obs = add_time_covariates(pd.DataFrame(rows), "date", origin="2020-01-01")

    handle, matrix, grid_d = fit_rfsp(
        obs,
        _make_grid(),
        id_col="station",
        x_col="x",
        y_col="y",
        target_col="tmax",
        extra_cols=["cdate"],
        model_params=FAST,
    )

    # one distance layer per station, not per observation
    assert len(matrix.distance_cols) == n_stations
    assert len(matrix) == n_stations * n_days
    assert "cdate" in handle.feature_names

    slice_pred = predict_grid(handle, grid_d, constants={"cdate": 70.0})
    assert np.isfinite(slice_pred.layer("pred")).all()
