import pytest  # noqa: F401
import os
import numpy as np
import polars as pl
import xarray as xr

from rk_gridding.cli import run
from rk_gridding.config import parse_config
from rk_gridding.grid import grid_from_resolution
from rk_gridding.io import load_dataset, load_sample, write_grid


def new_dataframe(n: int = 50, seed: int = 9) -> pl.DataFrame:
    rng = np.random.default_rng(seed)
    easting = 100 * rng.random(n)
    northing = 100 * rng.random(n)
    depth = 20 + 0.5 * easting
    return pl.DataFrame(
        {
            "easting": easting,
            "northing": northing,
            "depth": depth,
            "z": 0.1 * depth + np.sin(northing / 15),
        }
    )


def new_grid() -> xr.Dataset:
    grid = grid_from_resolution(10, [(5, 100), (5, 100)])
    _, easting = np.meshgrid(
        grid["northing"].values, grid["easting"].values, indexing="ij"
    )
    grid["depth"] = (("northing", "easting"), 20 + 0.5 * easting)
    return grid


@pytest.mark.parametrize("ext", ["csv", "parquet"])
def test_load_sample(tmp_path, ext):
    df = new_dataframe()
    path = os.path.join(tmp_path, f"sample.{ext}")
    if ext == "csv":
        df.write_csv(path)
    else:
        df.write_parquet(path)

    sample = load_sample(path, "z", covariates=["depth"])
    assert len(sample) == 50
    assert np.allclose(sample.values, df.get_column("z").to_numpy())


def test_load_sample_errors(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_sample(os.path.join(tmp_path, "missing.csv"), "z")

    path = os.path.join(tmp_path, "sample.txt")
    with open(path, "w") as io:
        io.write("z\n1\n")
    with pytest.raises(ValueError):
        load_sample(path, "z")


def test_grid_round_trip(tmp_path):
    grid = new_grid()
    path = os.path.join(tmp_path, "grid_{depth:03d}m.nc")
    write_grid(grid, path.format(depth=5))

    loaded = load_dataset(path, depth=5)
    assert np.allclose(loaded["depth"].values, grid["depth"].values)

    with pytest.raises(FileNotFoundError):
        load_dataset(path, depth=10)
    with pytest.raises(FileNotFoundError):
        load_dataset(os.path.join(tmp_path, "missing.nc"))


def test_run(tmp_path):
    sample_path = os.path.join(tmp_path, "sample.csv")
    grid_path = os.path.join(tmp_path, "grid.nc")
    output_path = os.path.join(tmp_path, "out.nc")
    cv_path = os.path.join(tmp_path, "cv.csv")
    new_dataframe().write_csv(sample_path)
    write_grid(new_grid(), grid_path)

    config = parse_config(
        {
            "sample": {"response": "z", "covariates": ["northing", "depth"]},
            "variogram": {
                "bin_width": 10,
                "cutoff": 60,
                "shapes": ["exponential"],
            },
            "cross_validation": {"folds": 3, "seed": 1},
        }
    )
    run(config, sample_path, grid_path, output_path, cv_path)

    out = load_dataset(output_path)
    assert out["prediction"].shape == (10, 10)
    assert np.isfinite(out["prediction"].values).all()
    covariates = out.attrs["trend_covariates"]
    assert covariates in {"northing", "depth", "northing, depth"}

    summary = pl.read_csv(cv_path)
    assert summary.height == 3
    assert "mean_rmse" in summary.columns
