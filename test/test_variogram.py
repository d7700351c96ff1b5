import pytest  # noqa: F401
import numpy as np
import polars as pl
import xarray as xr

from rk_gridding.sample import SpatialSample
from rk_gridding.types import VariogramShape
from rk_gridding.utils import InvalidParameterError
from rk_gridding.variogram import (
    VariogramModel,
    bin_semivariance,
    drift_residuals,
    empirical_variogram,
    semivariance,
    variogram_to_covariance,
)


@pytest.mark.parametrize("shape", list(VariogramShape))
def test_zero_at_origin(shape):
    model = VariogramModel(shape, nugget=0.3, psill=1.2, range=5.0)
    out = model.fit(np.array([0.0, 1e-6, 1.0]))

    assert out[0] == 0.0
    assert out[1] >= 0.3


@pytest.mark.parametrize("shape", list(VariogramShape))
def test_non_decreasing(shape):
    model = VariogramModel(shape, nugget=0.1, psill=2.0, range=7.0)
    h = np.linspace(0, 30, 301)
    gamma = model.fit(h)

    assert np.all(np.diff(gamma) >= 0)
    assert np.all(gamma <= model.sill + 1e-12)


@pytest.mark.parametrize("shape", ["spherical", "linear"])
def test_bounded_shapes_reach_sill(shape):
    model = VariogramModel(shape, nugget=0.5, psill=1.5, range=10.0)
    gamma = model.fit(np.array([10.0, 15.0, 100.0]))

    assert np.allclose(gamma, 2.0)


def test_semivariance_values():
    h = np.array([2.0])
    expected = {
        "exponential": 1 - np.exp(-0.5),
        "gaussian": 1 - np.exp(-0.25),
        "spherical": 1.5 * 0.5 - 0.5 * 0.125,
        "linear": 0.5,
    }
    for shape, value in expected.items():
        assert np.isclose(semivariance(h, shape, 0.0, 1.0, 4.0)[0], value)

    with pytest.raises(ValueError):
        semivariance(h, "matern", 0.0, 1.0, 4.0)


@pytest.mark.parametrize(
    "nugget, psill, range",
    [(-0.1, 1.0, 1.0), (0.0, -1.0, 1.0), (0.0, 1.0, 0.0), (0.0, 1.0, -2.0)],
)
def test_invalid_model(nugget, psill, range):
    with pytest.raises(InvalidParameterError):
        VariogramModel("exponential", nugget, psill, range)


def test_model_with_dataarray():
    model = VariogramModel("exponential", nugget=0.0, psill=4.0, range=3.0)
    dist = xr.DataArray(
        np.array([[0.0, 3.0], [3.0, 0.0]]), dims=["index_1", "index_2"]
    )
    gamma = model.fit(dist)
    cov = model.covariance(dist)

    assert isinstance(gamma, xr.DataArray)
    assert gamma.name == "variogram"
    assert cov.name == "covariance"
    assert np.allclose(cov.values.diagonal(), 4.0)
    assert np.isclose(cov.values[0, 1], 4.0 * np.exp(-1))


def test_variogram_to_covariance():
    gamma = np.array([[0.0, 0.5], [0.5, 0.0]])
    assert np.allclose(variogram_to_covariance(gamma, 2.0), 2.0 - gamma)


def test_bin_semivariance():
    # Pairs: d=1, g=2 ; d=3, g=18 ; d=2, g=8
    coords = np.array([0.0, 1.0, 3.0])
    values = np.array([0.0, 2.0, 6.0])

    curve = bin_semivariance(coords, values, bin_width=1.5, cutoff=3.0)
    assert np.allclose(curve.lag, [0.75, 2.25, 3.75])
    assert np.allclose(curve.gamma, [2.0, 8.0, 18.0])
    assert np.all(curve.npairs == [1, 1, 1])

    curve = bin_semivariance(coords, values, bin_width=2.0, cutoff=3.0)
    assert np.allclose(curve.lag, [1.0, 3.0])
    assert np.allclose(curve.gamma, [2.0, 13.0])
    assert np.all(curve.npairs == [1, 2])

    curve = bin_semivariance(coords, values, bin_width=2.0, cutoff=2.5)
    assert np.allclose(curve.gamma, [2.0, 8.0])

    assert np.allclose(curve.weights, curve.npairs / curve.lag**2)


def test_bin_semivariance_omits_empty_bins():
    coords = np.array([[0.0, 0.0], [3.0, 4.0]])
    values = np.array([1.0, 3.0])
    curve = bin_semivariance(coords, values, bin_width=1.0, cutoff=10.0)

    assert len(curve) == 1
    assert np.allclose(curve.lag, [5.5])
    assert np.allclose(curve.gamma, [2.0])

    frame = curve.to_frame()
    assert frame.columns == ["lag", "gamma", "npairs"]
    assert frame.height == 1


def test_bin_semivariance_empty():
    coords = np.array([0.0, 10.0, 20.0])
    values = np.array([1.0, 2.0, 3.0])
    curve = bin_semivariance(coords, values, bin_width=1.0, cutoff=5.0)

    assert curve.is_empty
    assert len(curve.gamma) == 0

    curve = bin_semivariance(coords[:1], values[:1], 1.0, 5.0)
    assert curve.is_empty


@pytest.mark.parametrize("bin_width, cutoff", [(0.0, 1.0), (1.0, 0.0)])
def test_bin_semivariance_invalid(bin_width, cutoff):
    with pytest.raises(InvalidParameterError):
        bin_semivariance(np.arange(3.0), np.arange(3.0), bin_width, cutoff)


def test_drift_residuals():
    x = np.linspace(0, 10, 21)
    values = 1.0 + 2.0 * x

    assert np.allclose(drift_residuals(values, x[:, None]), 0.0)
    no_drift = drift_residuals(values, np.empty((21, 0)))
    assert np.allclose(no_drift, values - values.mean())


def test_empirical_variogram_with_drift():
    rng = np.random.default_rng(7)
    n = 40
    easting = 100 * rng.random(n)
    northing = 100 * rng.random(n)
    df = pl.DataFrame(
        {
            "easting": easting,
            "northing": northing,
            "z": 3.0 + 0.5 * northing,
        }
    )
    sample = SpatialSample.from_frame(df, "z", covariates=["northing"])

    raw = empirical_variogram(sample, bin_width=10.0, cutoff=50.0)
    detrended = empirical_variogram(
        sample, bin_width=10.0, cutoff=50.0, drift=["northing"]
    )

    assert np.max(raw.gamma) > 1.0
    assert np.allclose(detrended.gamma, 0.0)
    assert raw.cutoff == 50.0
    assert np.all(raw.lag - 5.0 <= 50.0)
