"""Constants and defaults used by various functions and methods"""

# Variogram fitting
DEFAULT_FIT_MAX_ITER: int = 1000  # function evaluations for curve_fit
RANGE_FLOOR_FRACTION: float = 1e-6  # lower bound on range, fraction of lag
SILL_ZERO_TOL: float = 1e-12  # total sill below this is a pure-trend field

# Kriging
DEFAULT_MAX_CONDITION: float = 1e12  # 2-norm condition number limit
DEFAULT_BATCH_SIZE: int = 2048  # query points solved per batch

# Cross validation
DEFAULT_FOLDS: int = 5
DEFAULT_SEED: int = 42

# Trend (pyGAM defaults)
DEFAULT_N_SPLINES: int = 10
DEFAULT_SPLINE_ORDER: int = 3
DEFAULT_LAM: float = 0.6
DEFAULT_GAM_MAX_ITER: int = 100
DEFAULT_GAM_TOL: float = 1e-4

# Default coordinate names (projected, planar metres)
EASTING: str = "easting"
NORTHING: str = "northing"
