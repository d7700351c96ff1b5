import pytest  # noqa: F401
import os

from rk_gridding.config import get_recurse, load_config, parse_config
from rk_gridding.types import VariogramShape
from rk_gridding.utils import InvalidParameterError

CONFIG_YAML = """
sample:
  response: temperature
  covariates: [northing, depth]
variogram:
  bin_width: 5000
  cutoff: 60000
  shapes: [Exponential, spherical]
cross_validation:
  folds: 4
  seed: 0
  policy: fewest_within_one_se
  subsets: [[northing], [northing, depth]]
trend:
  smoothing:
    default: {n_splines: 8}
    depth: {lam: 2.5}
kriging:
  method: simple
  batch_size: 128
logging:
  level: warn
"""


def test_get_recurse():
    config = {"a": {"b": {"c": 1}, "d": None}}

    assert get_recurse(config, "a", "b", "c") == 1
    assert get_recurse(config, "a", "x", default=3) == 3
    assert get_recurse(config, "a", "b", "c", "e", default=4) == 4
    assert get_recurse(config, "a", "d", default=5) == 5


def test_parse_minimal():
    config = parse_config(
        {
            "sample": {"response": "z"},
            "variogram": {"bin_width": 1, "cutoff": 10},
        }
    )

    assert config.sample.coords == ("easting", "northing")
    assert config.sample.covariates == ("northing", "easting")
    assert config.variogram.bin_width == 1.0
    assert config.variogram.shapes == tuple(VariogramShape)
    assert config.cross_validation.folds == 5
    assert config.cross_validation.seed == 42
    assert config.cross_validation.subsets is None
    assert config.kriging.method == "ordinary"
    assert config.logging.level == "info"


@pytest.mark.parametrize(
    "config",
    [
        {"variogram": {"bin_width": 1, "cutoff": 10}},
        {"sample": {"response": "z"}, "variogram": {"cutoff": 10}},
        {
            "sample": {"response": "z"},
            "variogram": {"bin_width": 0, "cutoff": 10},
        },
        {
            "sample": {"response": "z", "coords": ["x"]},
            "variogram": {"bin_width": 1, "cutoff": 10},
        },
        {
            "sample": {"response": "z"},
            "variogram": {"bin_width": 1, "cutoff": 10},
            "cross_validation": {"policy": "lowest_rmse"},
        },
        {
            "sample": {"response": "z"},
            "variogram": {"bin_width": 1, "cutoff": 10},
            "cross_validation": {"folds": 1},
        },
        {
            "sample": {"response": "z"},
            "variogram": {"bin_width": 1, "cutoff": 10},
            "kriging": {"method": "universal"},
        },
        {
            "sample": {"response": "z"},
            "variogram": {"bin_width": 1, "cutoff": 10},
            "kriging": {"batch_size": 0},
        },
    ],
)
def test_parse_invalid(config):
    with pytest.raises(InvalidParameterError):
        parse_config(config)


def test_load_config(tmp_path):
    path = os.path.join(tmp_path, "config.yaml")
    with open(path, "w") as io:
        io.write(CONFIG_YAML)
    config = load_config(path)

    assert config.sample.response == "temperature"
    assert config.variogram.shapes == (
        VariogramShape.EXPONENTIAL,
        VariogramShape.SPHERICAL,
    )
    assert config.cross_validation.folds == 4
    assert config.cross_validation.seed == 0
    assert config.cross_validation.policy == "fewest_within_one_se"
    assert config.cross_validation.subsets == (
        ("northing",),
        ("northing", "depth"),
    )
    assert config.kriging.method == "simple"
    assert config.kriging.batch_size == 128
    assert config.logging.level == "warn"

    depth = config.trend.term("depth")
    assert depth.n_splines == 8
    assert depth.lam == 2.5
    northing = config.trend.term("northing")
    assert northing.n_splines == 8
    assert northing.lam == 0.6

    estimator = config.trend.estimator(["northing", "depth"])
    assert estimator.covariates == ("northing", "depth")

    with pytest.raises(FileNotFoundError):
        load_config(os.path.join(tmp_path, "missing.yaml"))


def test_unknown_smoothing_parameter():
    config = parse_config(
        {
            "sample": {"response": "z"},
            "variogram": {"bin_width": 1, "cutoff": 10},
            "trend": {"smoothing": {"depth": {"knots": 3}}},
        }
    )
    with pytest.raises(InvalidParameterError):
        config.trend.term("depth")
