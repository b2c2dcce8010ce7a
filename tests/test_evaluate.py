# SPDX-License-Identifier: MIT
"""
Tests for rfsppy.evaluate
"""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from rfsppy.assemble import assemble_regression_matrix
from rfsppy.distances import add_buffer_distances, unique_reference_points
from rfsppy.evaluate import cross_validate
from rfsppy.features import add_time_covariates
from rfsppy.grid import Grid
from rfsppy.models import ModelSpec

FAST = {"n_estimators": 20, "n_jobs": 1}


def _make_grid(n: int = 8) -> Grid:
    g = Grid(xmin=0.0, ymin=0.0, cell_size=1.0, nx=n, ny=n)
    c = g.cell_centers()
    return g.with_layer("elev", c[:, 0] + 0.5 * c[:, 1])


def _make_obs_df(n: int = 40, seed: int = 0) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    x = rng.uniform(0.0, 8.0, n)
    y = rng.uniform(0.0, 8.0, n)
    zinc = 2.0 * (x + 0.5 * y) + rng.normal(0.0, 0.1, n)
    return pd.DataFrame(
        {
            "id": [f"P{i:02d}" for i in range(n)],
            "x": x,
            "y": y,
            "zinc": zinc,
            "cls": np.where(zinc > np.median(zinc), "high", "low"),
        }
    )


def _make_spatiotemporal_df(n_stations: int = 8, n_days: int = 3) -> pd.DataFrame:
    rng = np.random.default_rng(3)
    xs = rng.uniform(0.0, 8.0, n_stations)
    ys = rng.uniform(0.0, 8.0, n_stations)
    dates = pd.date_range("2020-01-01", periods=n_days, freq="D")

    rows = []
    for i in range(n_stations):
        for k, d in enumerate(dates):
            rows.append(
                {
                    "station": f"S{i}",
                    "x": xs[i],
                    "y": ys[i],
                    "date": d,
                    "tmax": xs[i] + 0.5 * ys[i] + k,
                }
            )
    return add_time_covariates(pd.DataFrame(rows), "date")


# --------------------------------------------------------------------------- #
# Random folds
# --------------------------------------------------------------------------- #


def test_cross_validate_regression_report_and_predictions():
    obs = _make_obs_df()
    grid = add_buffer_distances(_make_grid(), obs, id_col="id", x_col="x", y_col="y")
    matrix = assemble_regression_matrix(
        obs, grid, target_col="zinc", x_col="x", y_col="y", keep_cols=["id"]
    )
    spec = ModelSpec.from_matrix(matrix, model_params=FAST)

    report, preds = cross_validate(matrix, spec, n_folds=4)

    assert len(report) == 5
    assert report["fold"].tolist() == [1, 2, 3, 4, "all"]
    for col in ["rows_train", "rows_test", "seconds", "ME", "MAE", "RMSE", "R2", "EV"]:
        assert col in report.columns
    assert report["rows_test"].iloc[:4].sum() == 40
    assert report["rows_test"].iloc[-1] == 40

    assert list(preds.columns) == ["row", "fold", "y_obs", "y_mod"]
    assert preds["row"].tolist() == list(range(40))
    assert np.allclose(preds["y_obs"].to_numpy(dtype=float), matrix.data["zinc"].to_numpy())
    assert np.isfinite(preds["y_mod"].to_numpy(dtype=float)).all()


def test_cross_validate_covariate_forest_is_accurate():
    obs = _make_obs_df(n=60)
    matrix = assemble_regression_matrix(
        obs, _make_grid(), target_col="zinc", x_col="x", y_col="y", distance_cols=[]
    )
    spec = ModelSpec.from_matrix(matrix, model_params=FAST)

    report, _ = cross_validate(matrix, spec, n_folds=5, seed=1)
    overall = report.iloc[-1]
    assert overall["R2"] > 0.8
    assert overall["RMSE"] < 3.0


def test_cross_validate_quantile_coverage():
    obs = _make_obs_df()
    matrix = assemble_regression_matrix(
        obs, _make_grid(), target_col="zinc", x_col="x", y_col="y", distance_cols=[]
    )
    spec = ModelSpec.from_matrix(matrix, mode="quantile", model_params=FAST)

    report, preds = cross_validate(matrix, spec, n_folds=4)

    assert "coverage" in report.columns
    assert ((report["coverage"] >= 0.0) & (report["coverage"] <= 1.0)).all()
    assert (preds["lower"] <= preds["upper"]).all()


def test_cross_validate_probability_accuracy():
    obs = _make_obs_df()
    matrix = assemble_regression_matrix(
        obs, _make_grid(), target_col="cls", x_col="x", y_col="y", distance_cols=[]
    )
    spec = ModelSpec.from_matrix(matrix, mode="probability", model_params=FAST)

    report, preds = cross_validate(matrix, spec, n_folds=4)

    assert "accuracy" in report.columns
    assert 0.0 <= report["accuracy"].iloc[-1] <= 1.0
    assert set(preds["y_mod"]) <= {"high", "low"}


# --------------------------------------------------------------------------- #
# Grouped folds
# --------------------------------------------------------------------------- #


def test_grouped_folds_keep_stations_together():
    obs = _make_spatiotemporal_df()
    points = unique_reference_points(obs, id_col="station", x_col="x", y_col="y")
    grid = add_buffer_distances(_make_grid(), points, id_col="station", x_col="x", y_col="y")
    matrix = assemble_regression_matrix(
        obs,
        grid,
        target_col="tmax",
        x_col="x",
        y_col="y",
        extra_cols=["cdate"],
        keep_cols=["station"],
    )
    spec = ModelSpec.from_matrix(matrix, model_params=FAST)

    report, preds = cross_validate(matrix, spec, n_folds=4, group_col="station")

    assert len(report) == 5
    merged = preds.merge(matrix.data[["station"]], left_on="row", right_index=True)
    assert merged.groupby("station")["fold"].nunique().max() == 1
    assert len(preds) == 24


def test_cross_validate_needs_two_groups():
    obs = _make_obs_df(n=10).assign(site="only")
    matrix = assemble_regression_matrix(
        obs,
        _make_grid(),
        target_col="zinc",
        x_col="x",
        y_col="y",
        keep_cols=["site"],
        distance_cols=[],
    )
    spec = ModelSpec.from_matrix(matrix, model_params=FAST)

    with pytest.raises(ValueError):
        cross_validate(matrix, spec, group_col="site")


def test_cross_validate_missing_group_column():
    obs = _make_obs_df(n=10)
    matrix = assemble_regression_matrix(
        obs, _make_grid(), target_col="zinc", x_col="x", y_col="y", distance_cols=[]
    )
    spec = ModelSpec.from_matrix(matrix, model_params=FAST)

    with pytest.raises(ValueError):
        cross_validate(matrix, spec, group_col="station")
