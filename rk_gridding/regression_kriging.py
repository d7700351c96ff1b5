"""
Regression Kriging
------------------

Predict a field as a smooth covariate trend plus Kriged residuals of that
trend.

1. Fit the trend model (TrendEstimator) to the sample and attach its
   residuals to the sample.
2. Estimate and fit a variogram of the residuals, without drift.
3. Krige the residuals onto every valid cell of the grid.
4. Sum the trend and Kriged residual at each cell.

If the residuals show no spatial variance (fitted sill of 0), or no residual
variogram can be fitted, the Kriged residual is 0 and the prediction is the
trend alone.
"""

from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
import logging
from warnings import catch_warnings, simplefilter, warn
import numpy as np
import xarray as xr
from scipy.optimize import OptimizeWarning

from .constants import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_FIT_MAX_ITER,
    DEFAULT_MAX_CONDITION,
    SILL_ZERO_TOL,
)
from .grid import MASK_VAR, assign_to_grid, valid_cells
from .kriging import Kriging, OrdinaryKriging, SimpleKriging
from .sample import SpatialSample
from .trend import TrendEstimator, TrendFit
from .types import KrigMethod, VariogramShape
from .utils import (
    DegenerateKrigingSystemError,
    FitDidNotConvergeError,
    InsufficientDataError,
    InvalidParameterError,
    batched,
)
from .variogram import VariogramCurve, VariogramModel, empirical_variogram
from .variogram_fit import fit_variogram_shapes


class RegressionKriging:
    """
    Class for Regression Kriging.

    Parameters
    ----------
    trend : TrendEstimator
        The trend model, its covariates must be layers of the prediction grid.
    bin_width : float
        Lag bin width for the residual variogram.
    cutoff : float
        Maximum lag for the residual variogram.
    shapes : Sequence[VariogramShape | str] | None
        Candidate residual variogram shapes, the best by weighted RSS is kept.
        Defaults to all shapes.
    nugget, psill, range : float | None
        Optional starting values for the variogram fit.
    method : KrigMethod
        "ordinary" (default) or "simple" (known zero mean) Kriging of the
        residuals.
    max_iter : int
        Maximum number of function evaluations for each variogram fit.
    max_condition : float
        Largest acceptable condition number of the Kriging system.
    batch_size : int
        Number of grid cells solved together.
    max_workers : int | None
        Solve batches of grid cells on a thread pool with this many workers.
    """

    def __init__(
        self,
        trend: TrendEstimator,
        bin_width: float,
        cutoff: float,
        shapes: Sequence[VariogramShape | str] | None = None,
        nugget: float | None = None,
        psill: float | None = None,
        range: float | None = None,
        method: KrigMethod = "ordinary",
        max_iter: int = DEFAULT_FIT_MAX_ITER,
        max_condition: float = DEFAULT_MAX_CONDITION,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_workers: int | None = None,
    ) -> None:
        if method not in ("ordinary", "simple"):
            raise InvalidParameterError(
                f"Kriging method {method} is not implemented. "
                'Expected one of "simple" or "ordinary"'
            )
        if not bin_width > 0:
            raise InvalidParameterError("bin_width must be > 0")
        if not cutoff > 0:
            raise InvalidParameterError("cutoff must be > 0")
        if batch_size < 1:
            raise InvalidParameterError("batch_size must be >= 1")
        self.trend = trend
        self.bin_width = bin_width
        self.cutoff = cutoff
        self.shapes = shapes
        self.nugget = nugget
        self.psill = psill
        self.range = range
        self.method = method
        self.max_iter = max_iter
        self.max_condition = max_condition
        self.batch_size = batch_size
        self.max_workers = max_workers
        return None

    def fit(self, sample: SpatialSample) -> "RegressionKrigingFit":
        """
        Fit the trend and the residual variogram.

        Parameters
        ----------
        sample : SpatialSample
            The point sample.

        Returns
        -------
        fit : RegressionKrigingFit
        """
        trend_fit = self.trend.fit(sample)
        sample = sample.with_residual(trend_fit.residuals)

        curve = empirical_variogram(
            sample, self.bin_width, self.cutoff, column=sample.residual
        )
        variogram: VariogramModel | None = None
        try:
            with catch_warnings():
                # Parameter covariance of the fit is not used
                simplefilter("ignore", OptimizeWarning)
                variogram = fit_variogram_shapes(
                    curve,
                    shapes=self.shapes,
                    nugget=self.nugget,
                    psill=self.psill,
                    range=self.range,
                    max_iter=self.max_iter,
                ).model
        except (InsufficientDataError, FitDidNotConvergeError) as e:
            warn(f"Residual variogram not fitted, using trend only: {e}")

        if variogram is not None and variogram.sill <= SILL_ZERO_TOL:
            warn("Residual variogram has zero sill, using trend only")
            variogram = None

        return RegressionKrigingFit(
            trend=trend_fit,
            sample=sample,
            curve=curve,
            variogram=variogram,
            method=self.method,
            max_condition=self.max_condition,
            batch_size=self.batch_size,
            max_workers=self.max_workers,
        )


@dataclass(frozen=True)
class RegressionKrigingFit:
    """
    A fitted regression-kriging model.

    Parameters
    ----------
    trend : TrendFit
        The fitted trend.
    sample : SpatialSample
        The training sample with residuals attached.
    curve : VariogramCurve
        Empirical variogram of the residuals.
    variogram : VariogramModel | None
        Fitted residual variogram. None if the prediction is the trend alone.
    method : KrigMethod
        Kriging method for the residuals.
    max_condition : float
    batch_size : int
    max_workers : int | None
    """

    trend: TrendFit
    sample: SpatialSample
    curve: VariogramCurve
    variogram: VariogramModel | None
    method: KrigMethod = "ordinary"
    max_condition: float = DEFAULT_MAX_CONDITION
    batch_size: int = DEFAULT_BATCH_SIZE
    max_workers: int | None = None

    @property
    def trend_only(self) -> bool:
        """True if the residual field is taken to be 0"""
        return self.variogram is None

    def _kriging(self) -> Kriging:
        if self.variogram is None:
            raise ValueError(
                "No residual variogram, the prediction is the trend alone"
            )
        match self.method:
            case "simple":
                return SimpleKriging(
                    self.variogram,
                    self.sample.coordinates,
                    self.sample.residuals,
                    mean=0.0,
                    max_condition=self.max_condition,
                )
            case "ordinary":
                return OrdinaryKriging(
                    self.variogram,
                    self.sample.coordinates,
                    self.sample.residuals,
                    max_condition=self.max_condition,
                )
            case _:
                raise InvalidParameterError(
                    f"Unknown Kriging method {self.method}"
                )

    def krige_residuals(
        self, coords: np.ndarray
    ) -> tuple[np.ndarray, np.ndarray, int]:
        """
        Krige the residuals at a set of positions.

        Positions in a batch with a degenerate Kriging system are NaN.

        Parameters
        ----------
        coords : numpy.ndarray
            Positions, shape (m, 2).

        Returns
        -------
        residual : numpy.ndarray
            Kriged residual at each position.
        variance : numpy.ndarray
            Kriging variance at each position.
        n_degenerate : int
            Number of positions left as NaN.
        """
        coords = np.asarray(coords, dtype=float).reshape(-1, 2)
        m = len(coords)
        if self.trend_only:
            prior = float(np.var(self.sample.residuals))
            return np.zeros(m), np.full(m, prior), 0

        residual = np.full(m, np.nan)
        variance = np.full(m, np.nan)
        try:
            krige = self._kriging()
        except DegenerateKrigingSystemError as e:
            logging.error(f"Residual Kriging system is degenerate: {e}")
            return residual, variance, m

        batches = [
            np.asarray(b, dtype=int)
            for b in batched(range(m), self.batch_size)
        ]

        def _run(idx: np.ndarray) -> bool:
            try:
                pred, var = krige.predict(coords[idx], return_variance=True)
            except DegenerateKrigingSystemError as e:
                logging.warning(f"{len(idx)} cells left as no-data: {e}")
                return False
            residual[idx] = pred
            variance[idx] = var
            return True

        if self.max_workers is not None and self.max_workers > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                list(pool.map(_run, batches))
        else:
            for idx in batches:
                _run(idx)

        return residual, variance, int(np.isnan(residual).sum())

    def predict_points(
        self,
        coords: np.ndarray,
        X: np.ndarray,
    ) -> tuple[np.ndarray, np.ndarray]:
        """
        Predict the trend and Kriged residual at a set of positions.

        Parameters
        ----------
        coords : numpy.ndarray
            Positions, shape (m, 2).
        X : numpy.ndarray
            Trend covariates at the positions, shape (m, p).

        Returns
        -------
        trend : numpy.ndarray
        residual : numpy.ndarray
            The prediction is trend + residual.
        """
        residual, _, _ = self.krige_residuals(coords)
        return self.trend.predict(X), residual

    def predict(
        self,
        grid: xr.Dataset,
        coord_names: Sequence[str] | None = None,
        mask_var: str = MASK_VAR,
    ) -> xr.Dataset:
        """
        Predict the field at every valid cell of a grid.

        Parameters
        ----------
        grid : xarray.Dataset
            The grid, with a layer for each trend covariate and optionally a
            mask. Coordinates must be in the same frame as the sample.
        coord_names : Sequence[str] | None
            Names of the grid's two coordinates, ordered as (northing,
            easting). Defaults to ("northing", "easting").
        mask_var : str
            Name of the grid's mask variable.

        Returns
        -------
        out : xarray.Dataset
            Dataset with "trend", "residual", "residual_variance" and
            "prediction" variables. No-data cells are NaN. Cells where the
            residual could not be Kriged have a trend value but no residual or
            prediction.
        """
        cells = valid_cells(grid, self.trend.covariates, coord_names, mask_var)
        names = cells.columns[1:3]
        grid_idx = cells.get_column("grid_idx").to_numpy()
        logging.info(f"Predicting {len(grid_idx)} valid grid cells")

        trend = self.trend.predict(
            cells.select(list(self.trend.covariates)).to_numpy()
        )
        # Sample coordinates are (easting, northing)
        coord_map = dict(zip(self.sample.coords, (0, 1)))
        xy = np.empty((len(grid_idx), 2))
        for name in names:
            if name not in coord_map:
                raise InvalidParameterError(
                    f"Grid coordinate {name} is not a sample coordinate"
                )
            xy[:, coord_map[name]] = cells.get_column(name).to_numpy()

        residual, variance, n_degenerate = self.krige_residuals(xy)
        prediction = trend + residual

        if n_degenerate:
            warn(
                f"{n_degenerate} grid cells left as no-data due to a "
                + "degenerate Kriging system"
            )

        def _to_grid(values: np.ndarray, name: str) -> xr.DataArray:
            return assign_to_grid(values, grid_idx, grid, name, names)

        out = xr.Dataset(
            {
                "trend": _to_grid(trend, "trend"),
                "residual": _to_grid(residual, "residual"),
                "residual_variance": _to_grid(variance, "residual_variance"),
                "prediction": _to_grid(prediction, "prediction"),
            }
        )
        out.attrs.update(
            {
                "trend_covariates": ", ".join(self.trend.covariates),
                "kriging_method": self.method,
                "n_degenerate": n_degenerate,
            }
        )
        if self.variogram is not None:
            out.attrs.update(
                {
                    "variogram_shape": str(self.variogram.shape),
                    "variogram_nugget": self.variogram.nugget,
                    "variogram_psill": self.variogram.psill,
                    "variogram_range": self.variogram.range,
                }
            )
        return out
