"""Types, Enums and Literals used by rk_gridding functions and methods."""

from enum import StrEnum
from typing import Literal


class VariogramShape(StrEnum):
    """Parametric variogram shapes available for fitting and kriging"""

    EXPONENTIAL = "exponential"
    SPHERICAL = "spherical"
    LINEAR = "linear"
    GAUSSIAN = "gaussian"


KrigMethod = Literal["simple", "ordinary"]

SelectionPolicy = Literal["lowest_mean_rmse", "fewest_within_one_se"]
