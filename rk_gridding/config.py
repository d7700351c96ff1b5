"""
Configuration
-------------

Run configuration for regression-kriging, loaded from a YAML file.

Example configuration:

.. code-block:: yaml

    sample:
      response: temperature
      coords: [easting, northing]
      covariates: [northing, easting, depth]
    variogram:
      bin_width: 5000
      cutoff: 60000
      shapes: [exponential, spherical, gaussian, linear]
    cross_validation:
      folds: 5
      seed: 42
    trend:
      smoothing:
        default: {n_splines: 10, lam: 0.6}
        depth: {n_splines: 8}
    kriging:
      method: ordinary
    logging:
      level: info
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
import os
from typing import Any, get_args
import yaml

from .constants import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_FIT_MAX_ITER,
    DEFAULT_FOLDS,
    DEFAULT_GAM_MAX_ITER,
    DEFAULT_GAM_TOL,
    DEFAULT_LAM,
    DEFAULT_MAX_CONDITION,
    DEFAULT_N_SPLINES,
    DEFAULT_SEED,
    DEFAULT_SPLINE_ORDER,
    EASTING,
    NORTHING,
)
from .trend import SmoothTerm, TrendEstimator
from .types import KrigMethod, SelectionPolicy, VariogramShape
from .utils import InvalidParameterError


def get_recurse(config: dict, *keys, default: Any = None) -> Any:
    """Get a value from a nested dictionary, or default if any key is absent"""
    value = config
    for key in keys:
        if not isinstance(value, dict) or key not in value:
            return default
        value = value[key]
    return default if value is None else value


@dataclass(frozen=True)
class SampleConfig:
    """Names of the response, coordinate and candidate covariate columns"""

    response: str
    coords: tuple[str, str] = (EASTING, NORTHING)
    covariates: tuple[str, ...] = (NORTHING, EASTING)


@dataclass(frozen=True)
class VariogramConfig:
    """Empirical variogram binning and model fitting settings"""

    bin_width: float
    cutoff: float
    shapes: tuple[VariogramShape, ...] = tuple(VariogramShape)
    nugget: float | None = None
    psill: float | None = None
    range: float | None = None
    max_iter: int = DEFAULT_FIT_MAX_ITER

    def __post_init__(self) -> None:
        if not self.bin_width > 0:
            raise InvalidParameterError("variogram.bin_width must be > 0")
        if not self.cutoff > 0:
            raise InvalidParameterError("variogram.cutoff must be > 0")
        if not self.shapes:
            raise InvalidParameterError("variogram.shapes must not be empty")
        return None


@dataclass(frozen=True)
class CrossValidationConfig:
    """Cross validation and covariate selection settings"""

    folds: int = DEFAULT_FOLDS
    seed: int = DEFAULT_SEED
    subsets: tuple[tuple[str, ...], ...] | None = None
    policy: SelectionPolicy = "lowest_mean_rmse"
    override: tuple[str, ...] | None = None
    max_workers: int | None = None

    def __post_init__(self) -> None:
        if self.folds < 2:
            raise InvalidParameterError("cross_validation.folds must be >= 2")
        if self.policy not in get_args(SelectionPolicy):
            raise InvalidParameterError(
                f"Unknown cross_validation.policy {self.policy}. "
                + "Expected one of "
                + ", ".join(get_args(SelectionPolicy))
            )
        return None


@dataclass(frozen=True)
class TrendConfig:
    """Smoothing specification of the trend model, per covariate"""

    smoothing: dict[str, dict[str, Any]] = field(default_factory=dict)
    max_iter: int = DEFAULT_GAM_MAX_ITER
    tol: float = DEFAULT_GAM_TOL
    gridsearch: bool = False
    lam_grid: tuple[float, ...] | None = None

    def term(self, covariate: str) -> SmoothTerm:
        """Get the smoothing specification of a covariate"""
        spec = {
            "n_splines": DEFAULT_N_SPLINES,
            "spline_order": DEFAULT_SPLINE_ORDER,
            "lam": DEFAULT_LAM,
        }
        spec.update(self.smoothing.get("default", {}))
        spec.update(self.smoothing.get(covariate, {}))
        unknown = set(spec) - {"n_splines", "spline_order", "lam"}
        if unknown:
            raise InvalidParameterError(
                "Unknown smoothing parameters: " + ", ".join(sorted(unknown))
            )
        return SmoothTerm(
            covariate=covariate,
            n_splines=int(spec["n_splines"]),
            spline_order=int(spec["spline_order"]),
            lam=float(spec["lam"]),
        )

    def estimator(self, covariates: Sequence[str]) -> TrendEstimator:
        """Build a TrendEstimator for a set of covariates"""
        return TrendEstimator(
            [self.term(c) for c in covariates],
            max_iter=self.max_iter,
            tol=self.tol,
            gridsearch=self.gridsearch,
            lam_grid=self.lam_grid,
        )


@dataclass(frozen=True)
class KrigingConfig:
    """Residual Kriging settings"""

    method: KrigMethod = "ordinary"
    max_condition: float = DEFAULT_MAX_CONDITION
    batch_size: int = DEFAULT_BATCH_SIZE
    max_workers: int | None = None

    def __post_init__(self) -> None:
        if self.method not in get_args(KrigMethod):
            raise InvalidParameterError(
                f"Unknown kriging.method {self.method}. Expected one of "
                + ", ".join(get_args(KrigMethod))
            )
        if self.batch_size < 1:
            raise InvalidParameterError("kriging.batch_size must be >= 1")
        return None


@dataclass(frozen=True)
class LoggingConfig:
    """Logging level and optional log file"""

    level: str = "info"
    file: str | None = None


@dataclass(frozen=True)
class Config:
    """Full run configuration"""

    sample: SampleConfig
    variogram: VariogramConfig
    cross_validation: CrossValidationConfig = field(
        default_factory=CrossValidationConfig
    )
    trend: TrendConfig = field(default_factory=TrendConfig)
    kriging: KrigingConfig = field(default_factory=KrigingConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _tuple_or_none(value: Any) -> tuple | None:
    return None if value is None else tuple(value)


def parse_config(config: dict) -> Config:
    """
    Parse a configuration dictionary, typically loaded from YAML.

    Parameters
    ----------
    config : dict
        Nested configuration, see the module documentation.

    Returns
    -------
    config : Config
    """
    response = get_recurse(config, "sample", "response")
    if response is None:
        raise InvalidParameterError("sample.response must be set")
    bin_width = get_recurse(config, "variogram", "bin_width")
    cutoff = get_recurse(config, "variogram", "cutoff")
    if bin_width is None or cutoff is None:
        raise InvalidParameterError(
            "variogram.bin_width and variogram.cutoff must be set"
        )

    sample = SampleConfig(
        response=response,
        coords=tuple(
            get_recurse(config, "sample", "coords", default=(EASTING, NORTHING))
        ),
        covariates=tuple(
            get_recurse(
                config, "sample", "covariates", default=(NORTHING, EASTING)
            )
        ),
    )
    if len(sample.coords) != 2:
        raise InvalidParameterError("sample.coords must name 2 columns")

    shapes = get_recurse(config, "variogram", "shapes")
    variogram = VariogramConfig(
        bin_width=float(bin_width),
        cutoff=float(cutoff),
        shapes=tuple(VariogramShape(str(s).lower()) for s in shapes)
        if shapes is not None
        else tuple(VariogramShape),
        nugget=get_recurse(config, "variogram", "nugget"),
        psill=get_recurse(config, "variogram", "psill"),
        range=get_recurse(config, "variogram", "range"),
        max_iter=int(
            get_recurse(
                config, "variogram", "max_iter", default=DEFAULT_FIT_MAX_ITER
            )
        ),
    )

    subsets = get_recurse(config, "cross_validation", "subsets")
    cross_validation = CrossValidationConfig(
        folds=int(
            get_recurse(
                config, "cross_validation", "folds", default=DEFAULT_FOLDS
            )
        ),
        seed=int(
            get_recurse(
                config, "cross_validation", "seed", default=DEFAULT_SEED
            )
        ),
        subsets=None
        if subsets is None
        else tuple(tuple(subset) for subset in subsets),
        policy=get_recurse(
            config, "cross_validation", "policy", default="lowest_mean_rmse"
        ),
        override=_tuple_or_none(
            get_recurse(config, "cross_validation", "override")
        ),
        max_workers=get_recurse(config, "cross_validation", "max_workers"),
    )

    trend = TrendConfig(
        smoothing=get_recurse(config, "trend", "smoothing", default={}),
        max_iter=int(
            get_recurse(
                config, "trend", "max_iter", default=DEFAULT_GAM_MAX_ITER
            )
        ),
        tol=float(get_recurse(config, "trend", "tol", default=DEFAULT_GAM_TOL)),
        gridsearch=bool(
            get_recurse(config, "trend", "gridsearch", default=False)
        ),
        lam_grid=_tuple_or_none(get_recurse(config, "trend", "lam_grid")),
    )

    kriging = KrigingConfig(
        method=get_recurse(config, "kriging", "method", default="ordinary"),
        max_condition=float(
            get_recurse(
                config,
                "kriging",
                "max_condition",
                default=DEFAULT_MAX_CONDITION,
            )
        ),
        batch_size=int(
            get_recurse(
                config, "kriging", "batch_size", default=DEFAULT_BATCH_SIZE
            )
        ),
        max_workers=get_recurse(config, "kriging", "max_workers"),
    )

    logging_config = LoggingConfig(
        level=get_recurse(config, "logging", "level", default="info"),
        file=get_recurse(config, "logging", "file"),
    )

    return Config(
        sample=sample,
        variogram=variogram,
        cross_validation=cross_validation,
        trend=trend,
        kriging=kriging,
        logging=logging_config,
    )


def load_config(path: str) -> Config:
    """Load a Config from a YAML file"""
    if not os.path.isfile(path):
        raise FileNotFoundError(f"Config file: {path} not found")
    with open(path, "r") as io:
        config = yaml.safe_load(io) or {}
    return parse_config(config)
