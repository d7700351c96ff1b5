"""
Tests of the Kriging solvers. The three point line example uses observations
{10, 12, 14} at positions {0, 10, 20} with an exponential variogram with
nugget 0, sill 1 and range 5.
"""

import pytest  # noqa: F401
import warnings
import numpy as np

from rk_gridding.kriging import (
    ExternalDriftKriging,
    Kriging,
    OrdinaryKriging,
    SimpleKriging,
    factorise_system,
    kriging_system,
)
from rk_gridding.utils import (
    DegenerateKrigingSystemError,
    InsufficientDataError,
    InvalidParameterError,
)
from rk_gridding.variogram import VariogramModel


def _line_example() -> tuple[VariogramModel, np.ndarray, np.ndarray]:
    variogram = VariogramModel("exponential", nugget=0.0, psill=1.0, range=5.0)
    coords = np.array([0.0, 10.0, 20.0])
    values = np.array([10.0, 12.0, 14.0])
    return variogram, coords, values


def _random_points(n: int, seed: int) -> tuple[np.ndarray, np.ndarray]:
    rng = np.random.default_rng(seed)
    coords = 100 * rng.random((n, 2))
    values = np.sin(coords[:, 0] / 15) + 0.02 * coords[:, 1]
    return coords, values


def test_line_example_known_point():
    variogram, coords, values = _line_example()
    krige = OrdinaryKriging(variogram, coords, values)

    pred, var = krige.predict(np.array([10.0]), return_variance=True)
    assert np.isclose(pred[0], 12.0, rtol=0, atol=1e-10)
    assert np.isclose(var[0], 0.0, atol=1e-10)


def test_line_example_extrapolation():
    variogram, coords, values = _line_example()
    krige = OrdinaryKriging(variogram, coords, values)

    pred, var = krige.predict(np.array([30.0]), return_variance=True)
    tol = 3 * np.sqrt(var[0])
    assert np.isfinite(pred[0])
    assert values.min() - tol <= pred[0] <= values.max() + tol
    assert 0 < var[0] < 2 * variogram.sill


def test_system_shape():
    variogram, coords, _ = _line_example()

    assert kriging_system(variogram, coords, unbiased=False).shape == (3, 3)
    system = kriging_system(variogram, coords)
    assert system.shape == (4, 4)
    assert np.allclose(system[:3, 3], 1)
    assert system[3, 3] == 0
    assert np.allclose(np.diag(system)[:3], 0)

    drift = np.array([[1.0, 0.0], [2.0, 1.0], [4.0, 0.0]])
    system = kriging_system(variogram, coords, drift=drift)
    assert system.shape == (6, 6)
    assert np.allclose(system[:3, 4:], drift)
    assert np.allclose(system[4:, :3], drift.T)
    assert np.allclose(system[3:, 3:], 0)

    with pytest.raises(ValueError):
        kriging_system(variogram, coords, drift=drift, unbiased=False)


@pytest.mark.parametrize("nugget", [0.0, 0.1])
def test_exactness(nugget):
    coords, values = _random_points(30, 3)
    variogram = VariogramModel(
        "exponential", nugget=nugget, psill=1.0, range=20.0
    )

    for krige in [
        OrdinaryKriging(variogram, coords, values),
        SimpleKriging(variogram, coords, values, mean=values.mean()),
        ExternalDriftKriging(
            variogram, coords, values, drift=coords[:, 1:]
        ),
    ]:
        drift = coords[:, 1:] if krige.method == "external_drift" else None
        pred, var = krige.predict(coords, drift=drift, return_variance=True)
        assert np.allclose(pred, values, atol=1e-8)
        assert np.allclose(var, 0.0, atol=1e-8)


def test_duplicate_points():
    variogram = VariogramModel("exponential", nugget=0.0, psill=1.0, range=5.0)
    coords = np.array([[0.0, 0.0], [0.0, 0.0], [5.0, 5.0]])
    values = np.array([1.0, 3.0, 2.0])

    with pytest.raises(DegenerateKrigingSystemError):
        OrdinaryKriging(variogram, coords, values)
    with pytest.raises(DegenerateKrigingSystemError):
        SimpleKriging(variogram, coords, values)


def test_factorise_system():
    with pytest.raises(DegenerateKrigingSystemError):
        factorise_system(np.ones((3, 3)))
    with pytest.raises(DegenerateKrigingSystemError):
        factorise_system(np.ones((3, 3)), max_condition=np.inf)
    with pytest.raises(DegenerateKrigingSystemError):
        factorise_system(np.diag([1.0, 1e-14]))
    with pytest.raises(DegenerateKrigingSystemError):
        factorise_system(np.array([[1.0, np.nan], [0.0, 1.0]]))

    lu, piv = factorise_system(np.array([[2.0, 1.0], [1.0, 2.0]]))
    assert lu.shape == (2, 2)
    assert piv.shape == (2,)


def test_external_drift_reproduces_linear_trend():
    coords, _ = _random_points(40, 11)
    drift = coords[:, 1:]
    values = 3.0 + 2.0 * drift[:, 0]
    variogram = VariogramModel("exponential", nugget=0.1, psill=1.0, range=15.0)

    krige = ExternalDriftKriging(variogram, coords, values, drift=drift)
    assert krige.n_drift == 1

    query = np.array([[50.0, 25.0], [10.0, 90.0], [300.0, -40.0]])
    pred = krige.predict(query, drift=query[:, 1:])
    assert np.allclose(pred, 3.0 + 2.0 * query[:, 1])


def test_external_drift_degenerate():
    coords, values = _random_points(20, 5)
    variogram = VariogramModel("exponential", nugget=0.0, psill=1.0, range=20.0)

    constant = np.ones((20, 1))
    with pytest.raises(DegenerateKrigingSystemError):
        ExternalDriftKriging(variogram, coords, values, drift=constant)

    collinear = np.column_stack([coords[:, 0], 2 * coords[:, 0] + 1])
    with pytest.raises(DegenerateKrigingSystemError):
        ExternalDriftKriging(variogram, coords, values, drift=collinear)


def test_external_drift_invalid():
    coords, values = _random_points(3, 5)
    variogram = VariogramModel("exponential", nugget=0.0, psill=1.0, range=20.0)

    with pytest.raises(InsufficientDataError):
        ExternalDriftKriging(
            variogram,
            coords,
            values,
            drift=np.column_stack([coords, coords[:, 0] ** 2]),
        )

    krige = ExternalDriftKriging(variogram, coords, values, drift=coords[:, 1:])
    with pytest.raises(ValueError):
        krige.predict(coords)
    with pytest.raises(ValueError):
        krige.predict(coords, drift=coords)
    with pytest.raises(InvalidParameterError):
        krige.predict(coords[:1], drift=np.array([[np.nan]]))


def test_simple_kriging_far_from_data():
    coords, values = _random_points(20, 2)
    variogram = VariogramModel("spherical", nugget=0.2, psill=1.0, range=10.0)
    krige = SimpleKriging(variogram, coords, values, mean=5.0)

    pred, var = krige.predict(np.array([[1e4, 1e4]]), return_variance=True)
    assert np.isclose(pred[0], 5.0)
    assert np.isclose(var[0], variogram.sill)


def test_simple_and_ordinary_differ():
    coords, values = _random_points(25, 8)
    variogram = VariogramModel("exponential", nugget=0.0, psill=1.0, range=5.0)
    query = np.array([[200.0, 200.0]])

    ok = OrdinaryKriging(variogram, coords, values).predict(query)
    sk = SimpleKriging(variogram, coords, values, mean=0.0).predict(query)
    # Far from the data OK tends to a weighted mean, SK to the known mean
    assert np.isclose(sk[0], 0.0, atol=1e-6)
    assert values.min() <= ok[0] <= values.max()


def test_variance_nonnegative_and_batches():
    coords, values = _random_points(30, 13)
    variogram = VariogramModel("gaussian", nugget=0.05, psill=1.0, range=15.0)
    krige = OrdinaryKriging(variogram, coords, values)

    x, y = np.meshgrid(np.linspace(0, 100, 15), np.linspace(0, 100, 15))
    query = np.column_stack([x.ravel(), y.ravel()])

    pred, var = krige.predict(query, return_variance=True)
    assert pred.shape == (225,)
    assert np.all(var >= 0)
    assert np.all(var <= variogram.sill * 2)

    pred_b, var_b = krige.predict(
        query, return_variance=True, batch_size=16, max_workers=4
    )
    assert np.allclose(pred, pred_b)
    assert np.allclose(var, var_b)

    assert krige.predict(np.empty((0, 2))).shape == (0,)
    with pytest.raises(InvalidParameterError):
        krige.predict(query, batch_size=0)
    with pytest.raises(ValueError):
        krige.predict(np.zeros((2, 3)))


def test_threaded_predict_keeps_warning_filters():
    coords, values = _random_points(30, 13)
    variogram = VariogramModel("spherical", nugget=0.0, psill=1.0, range=30.0)
    query = np.column_stack([np.linspace(0, 100, 200), np.linspace(0, 50, 200)])

    before = list(warnings.filters)
    krige = OrdinaryKriging(variogram, coords, values)
    krige.predict(query, batch_size=8, max_workers=8)
    assert warnings.filters == before


def test_invalid_observations():
    variogram, coords, values = _line_example()

    with pytest.raises(TypeError):
        Kriging(variogram, coords, values)
    with pytest.raises(ValueError):
        OrdinaryKriging(variogram, coords, values[:2])
    with pytest.raises(InsufficientDataError):
        OrdinaryKriging(variogram, np.empty((0, 2)), np.empty(0))
    with pytest.raises(InvalidParameterError):
        OrdinaryKriging(variogram, coords, np.array([1.0, np.nan, 2.0]))


def test_inputs_not_modified():
    variogram, coords, values = _line_example()
    coords_in, values_in = coords.copy(), values.copy()
    krige = OrdinaryKriging(variogram, coords, values)
    krige.predict(np.array([5.0, 25.0]))

    assert np.array_equal(coords, coords_in)
    assert np.array_equal(values, values_in)
    assert krige.variogram is variogram
