"""
Regression-kriging of point observations onto gridded fields. A smooth
covariate trend is fitted with a generalised additive model and its residuals
are interpolated by Kriging, with the trend covariates selected by k-fold
cross validation of Kriging with External Drift.
"""

from .cross_validation import covariate_subsets, cross_validate
from .grid import assign_to_grid, grid_from_resolution, valid_cells
from .kriging import ExternalDriftKriging, OrdinaryKriging, SimpleKriging
from .regression_kriging import RegressionKriging, RegressionKrigingFit
from .sample import SpatialSample
from .trend import SmoothTerm, TrendEstimator
from .types import VariogramShape
from .variogram import VariogramModel, empirical_variogram
from .variogram_fit import fit_variogram, fit_variogram_shapes

__all__ = [
    "ExternalDriftKriging",
    "OrdinaryKriging",
    "RegressionKriging",
    "RegressionKrigingFit",
    "SimpleKriging",
    "SmoothTerm",
    "SpatialSample",
    "TrendEstimator",
    "VariogramModel",
    "VariogramShape",
    "assign_to_grid",
    "covariate_subsets",
    "cross_validate",
    "empirical_variogram",
    "fit_variogram",
    "fit_variogram_shapes",
    "grid_from_resolution",
    "valid_cells",
]

__version__ = "0.1.0"
