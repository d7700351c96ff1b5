"""
Trend
-----

Smooth, covariate-driven trend models for regression-kriging. The trend is a
generalised additive model (pyGAM LinearGAM) with one penalised B-spline
smooth term per covariate.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from functools import reduce
import logging
import operator
import numpy as np
import xarray as xr
from pygam import LinearGAM, s
from pygam.utils import OptimizationError

from .constants import (
    DEFAULT_GAM_MAX_ITER,
    DEFAULT_GAM_TOL,
    DEFAULT_LAM,
    DEFAULT_N_SPLINES,
    DEFAULT_SPLINE_ORDER,
)
from .grid import valid_cells, assign_to_grid
from .sample import SpatialSample
from .utils import (
    FitDidNotConvergeError,
    InsufficientDataError,
    InvalidParameterError,
)


@dataclass(frozen=True)
class SmoothTerm:
    """
    Smoothing specification for one covariate of the trend model.

    Parameters
    ----------
    covariate : str
        Name of the covariate.
    n_splines : int
        Number of B-spline basis functions.
    spline_order : int
        Order of the B-splines, 3 is cubic.
    lam : float
        Smoothing penalty. Larger values give smoother functions.
    """

    covariate: str
    n_splines: int = DEFAULT_N_SPLINES
    spline_order: int = DEFAULT_SPLINE_ORDER
    lam: float = DEFAULT_LAM

    def __post_init__(self) -> None:
        if self.spline_order < 0:
            raise InvalidParameterError("spline_order must be >= 0")
        if self.n_splines <= self.spline_order:
            raise InvalidParameterError("n_splines must exceed spline_order")
        if self.lam < 0:
            raise InvalidParameterError("lam must be >= 0")
        return None


class TrendEstimator:
    """
    Fit a smooth additive regression of the response on covariates.

    Parameters
    ----------
    terms : Sequence[SmoothTerm]
        One smoothing specification per covariate.
    max_iter : int
        Maximum number of PIRLS iterations.
    tol : float
        Convergence tolerance of PIRLS.
    gridsearch : bool
        Choose the smoothing penalties by generalised cross validation over
        `lam_grid`, instead of using the values of the terms.
    lam_grid : Sequence[float] | None
        Penalties to search. Defaults to pyGAM's grid.
    """

    def __init__(
        self,
        terms: Sequence[SmoothTerm],
        max_iter: int = DEFAULT_GAM_MAX_ITER,
        tol: float = DEFAULT_GAM_TOL,
        gridsearch: bool = False,
        lam_grid: Sequence[float] | None = None,
    ) -> None:
        if not terms:
            raise InvalidParameterError("At least one smooth term is required")
        covariates = [t.covariate for t in terms]
        if len(set(covariates)) != len(covariates):
            raise InvalidParameterError("Duplicate covariate in smooth terms")
        if max_iter < 1:
            raise InvalidParameterError("max_iter must be >= 1")
        self.terms = tuple(terms)
        self.max_iter = max_iter
        self.tol = tol
        self.gridsearch = gridsearch
        self.lam_grid = None if lam_grid is None else np.asarray(lam_grid)
        return None

    @property
    def covariates(self) -> tuple[str, ...]:
        """Names of the covariates, in term order"""
        return tuple(t.covariate for t in self.terms)

    def _model(self) -> LinearGAM:
        smooths = [
            s(
                i,
                n_splines=t.n_splines,
                spline_order=t.spline_order,
                lam=t.lam,
            )
            for i, t in enumerate(self.terms)
        ]
        return LinearGAM(
            reduce(operator.add, smooths),
            max_iter=self.max_iter,
            tol=self.tol,
        )

    def fit(self, sample: SpatialSample) -> "TrendFit":
        """
        Fit the trend model to a sample.

        Parameters
        ----------
        sample : SpatialSample
            The point sample, must contain all covariates of the terms.

        Returns
        -------
        fit : TrendFit

        Raises
        ------
        InsufficientDataError
            If the sample has fewer than 2 points.
        FitDidNotConvergeError
            If PIRLS does not converge or the fitted values are not finite.
        """
        if len(sample) < 2:
            raise InsufficientDataError("Trend fit requires at least 2 points")
        X = sample.covariate_array(self.covariates)
        y = sample.values

        gam = self._model()
        try:
            if self.gridsearch:
                grid = {} if self.lam_grid is None else {"lam": self.lam_grid}
                gam = gam.gridsearch(X, y, progress=False, **grid)
                if not hasattr(gam, "coef_"):
                    raise FitDidNotConvergeError(
                        "No trend model in the penalty grid could be fitted"
                    )
            else:
                gam = gam.fit(X, y)
        except OptimizationError as e:
            raise FitDidNotConvergeError(
                f"Trend model did not converge: {e}"
            ) from e

        # PIRLS stops early once the change in coefficients is below tol
        diffs = getattr(gam, "logs_", {}).get("diffs", [])
        if diffs and len(diffs) >= self.max_iter and diffs[-1] >= self.tol:
            raise FitDidNotConvergeError(
                f"Trend model did not converge in {self.max_iter} iterations "
                + f"(last change = {diffs[-1]:.3g}, tol = {self.tol:.3g})"
            )

        fitted = np.asarray(gam.predict(X), dtype=float)
        if not np.isfinite(fitted).all():
            raise FitDidNotConvergeError("Trend model has non-finite values")

        r2 = gam.statistics_["pseudo_r2"]["explained_deviance"]
        logging.info(
            "Fitted trend on "
            + ", ".join(self.covariates)
            + f" (explained deviance = {r2:.3f})"
        )
        return TrendFit(
            model=gam,
            covariates=self.covariates,
            fitted=fitted,
            residuals=y - fitted,
        )


@dataclass(frozen=True)
class TrendFit:
    """
    A fitted trend model.

    Parameters
    ----------
    model : pygam.LinearGAM
        The fitted GAM.
    covariates : tuple[str, ...]
        Names of the covariates, in the column order of the model.
    fitted : numpy.ndarray
        Fitted value at each training point.
    residuals : numpy.ndarray
        Observed minus fitted value at each training point.
    """

    model: LinearGAM
    covariates: tuple[str, ...]
    fitted: np.ndarray
    residuals: np.ndarray

    def predict(self, X: np.ndarray) -> np.ndarray:
        """Evaluate the trend for covariate values X, shape (m, p)"""
        X = np.asarray(X, dtype=float).reshape(-1, len(self.covariates))
        if len(X) == 0:
            return np.empty(0, dtype=float)
        return np.asarray(self.model.predict(X), dtype=float)

    def predict_grid(
        self,
        grid: xr.Dataset,
        coord_names: Sequence[str] | None = None,
    ) -> xr.DataArray:
        """
        Evaluate the trend over the covariate layers of a Grid. Invalid cells
        are NaN.

        Parameters
        ----------
        grid : xarray.Dataset
            Grid with one data variable per covariate.
        coord_names : Sequence[str] | None
            Names of the grid's two coordinates. Defaults to
            ("northing", "easting").

        Returns
        -------
        trend : xarray.DataArray
        """
        cells = valid_cells(grid, self.covariates, coord_names)
        values = self.predict(cells.select(list(self.covariates)).to_numpy())
        return assign_to_grid(
            values, cells.get_column("grid_idx").to_numpy(), grid, "trend"
        )
