"""
Variogram Fitting
-----------------

Fit parametric variogram models to empirical variograms by weighted
non-linear least squares.

The weights for each lag bin are the number of pairs divided by the square of
the lag (Cressie, 1985), so that well supported, short lag bins dominate the
fit. The quantity minimised is:

.. math::
    \\sum_k \\frac{N_k}{h_k^2} (\\hat{\\gamma}_k - \\gamma(h_k; \\theta))^2
"""

from collections.abc import Iterable
from dataclasses import dataclass
import logging
import numpy as np
from scipy.optimize import curve_fit

from .constants import DEFAULT_FIT_MAX_ITER, RANGE_FLOOR_FRACTION
from .types import VariogramShape
from .utils import (
    FitDidNotConvergeError,
    InsufficientDataError,
    InvalidParameterError,
)
from .variogram import VariogramCurve, VariogramModel, semivariance


@dataclass(frozen=True)
class VariogramFit:
    """
    Result of fitting a VariogramModel to a VariogramCurve.

    Parameters
    ----------
    model : VariogramModel
        The fitted model.
    wrss : float
        Weighted residual sum of squares of the fit.
    nfev : int
        Number of function evaluations used by the optimizer.
    """

    model: VariogramModel
    wrss: float
    nfev: int


def weighted_rss(curve: VariogramCurve, model: VariogramModel) -> float:
    """Cressie-weighted residual sum of squares of a model against a curve"""
    resid = curve.gamma - model.fit(curve.lag)
    return float(np.sum(curve.weights * np.square(resid)))


def initial_variogram(
    curve: VariogramCurve,
    shape: VariogramShape | str = VariogramShape.EXPONENTIAL,
    nugget: float | None = None,
    psill: float | None = None,
    range: float | None = None,
) -> VariogramModel:
    """
    Get starting parameters for fitting a variogram shape to a curve. Any
    parameter not supplied is estimated from the curve: nugget 0, partial sill
    the largest semivariance, range one third of the largest lag.

    Parameters
    ----------
    curve : VariogramCurve
        The empirical variogram.
    shape : VariogramShape | str
        The model shape.
    nugget, psill, range : float | None
        Optionally fixed starting values.

    Returns
    -------
    initial : VariogramModel
    """
    if curve.is_empty:
        raise InsufficientDataError(
            "Empirical variogram is empty, fewer than 2 points within cutoff"
        )
    return VariogramModel(
        shape=VariogramShape(shape),
        nugget=0.0 if nugget is None else nugget,
        psill=float(np.max(curve.gamma)) if psill is None else psill,
        range=float(np.max(curve.lag)) / 3 if range is None else range,
    )


def fit_variogram(
    curve: VariogramCurve,
    initial: VariogramModel,
    max_iter: int = DEFAULT_FIT_MAX_ITER,
) -> VariogramFit:
    """
    Fit a single variogram shape to an empirical variogram.

    Parameters are bounded to nugget >= 0, psill >= 0 and range > 0.

    Parameters
    ----------
    curve : VariogramCurve
        The empirical variogram.
    initial : VariogramModel
        Shape and starting nugget, partial sill and range of the model.
    max_iter : int
        Maximum number of function evaluations for the optimizer.

    Returns
    -------
    fit : VariogramFit

    Raises
    ------
    InsufficientDataError
        If the curve is empty.
    FitDidNotConvergeError
        If the optimizer does not reach a minimum within `max_iter`
        evaluations, or returns non-finite parameters.

    Warns
    -----
    scipy.optimize.OptimizeWarning
        If the parameter covariance cannot be estimated, which does not affect
        the fit.
    """
    if curve.is_empty:
        raise InsufficientDataError(
            "Empirical variogram is empty, fewer than 2 points within cutoff"
        )
    if max_iter < 1:
        raise InvalidParameterError("max_iter must be >= 1")

    shape = initial.shape

    def _model(h: np.ndarray, nugget, psill, range) -> np.ndarray:
        return semivariance(h, shape, nugget, psill, range)

    range_floor = RANGE_FLOOR_FRACTION * curve.bin_width
    p0 = [initial.nugget, initial.psill, max(initial.range, range_floor)]
    # Minimises sum(((y - f) / sigma) ** 2), so sigma ** -2 is the weight
    sigma = 1.0 / np.sqrt(curve.weights)

    try:
        popt, _, infodict, _, _ = curve_fit(
            _model,
            curve.lag,
            curve.gamma,
            p0=p0,
            sigma=sigma,
            absolute_sigma=True,
            bounds=([0.0, 0.0, range_floor], [np.inf, np.inf, np.inf]),
            method="trf",
            max_nfev=max_iter,
            full_output=True,
        )
    except RuntimeError as e:
        raise FitDidNotConvergeError(
            f"{shape} variogram fit did not converge: {e}"
        ) from e

    if not np.isfinite(popt).all():
        raise FitDidNotConvergeError(
            f"{shape} variogram fit gave non-finite parameters"
        )

    nugget, psill, range = (float(p) for p in popt)
    model = VariogramModel(
        shape=shape,
        nugget=max(nugget, 0.0),
        psill=max(psill, 0.0),
        range=max(range, range_floor),
    )
    fit = VariogramFit(
        model=model,
        wrss=weighted_rss(curve, model),
        nfev=int(infodict["nfev"]),
    )
    logging.debug(f"Fitted {model} with weighted RSS {fit.wrss:.6g}")
    return fit


def _fit_with_retries(
    curve: VariogramCurve,
    initial: VariogramModel,
    max_iter: int,
) -> VariogramFit:
    # Retry from a shorter, then a longer starting range
    starts = [initial.range, initial.range / 2, initial.range * 2]
    for start in starts[:-1]:
        try:
            return fit_variogram(
                curve,
                VariogramModel(
                    initial.shape, initial.nugget, initial.psill, start
                ),
                max_iter=max_iter,
            )
        except FitDidNotConvergeError as e:
            logging.debug(f"Retrying {initial.shape} fit: {e}")
    return fit_variogram(
        curve,
        VariogramModel(
            initial.shape, initial.nugget, initial.psill, starts[-1]
        ),
        max_iter=max_iter,
    )


def fit_variogram_shapes(
    curve: VariogramCurve,
    shapes: Iterable[VariogramShape | str] | None = None,
    nugget: float | None = None,
    psill: float | None = None,
    range: float | None = None,
    max_iter: int = DEFAULT_FIT_MAX_ITER,
) -> VariogramFit:
    """
    Fit each candidate shape to an empirical variogram and return the fit with
    the lowest weighted residual sum of squares.

    A shape that does not converge is retried with the starting range halved
    and doubled. If no candidate shape converges, a linear model is tried
    before giving up.

    Parameters
    ----------
    curve : VariogramCurve
        The empirical variogram.
    shapes : Iterable[VariogramShape | str] | None
        Candidate shapes. Defaults to all available shapes.
    nugget, psill, range : float | None
        Optional starting values, see `initial_variogram`.
    max_iter : int
        Maximum number of function evaluations for each fit.

    Returns
    -------
    fit : VariogramFit
        The best fit.

    Raises
    ------
    InsufficientDataError
        If the curve is empty.
    FitDidNotConvergeError
        If no shape, including the linear fallback, converges.
    """
    shapes = [VariogramShape(s) for s in (shapes or list(VariogramShape))]
    if not shapes:
        raise InvalidParameterError("At least one variogram shape is required")

    fits: list[VariogramFit] = []
    for shape in shapes:
        initial = initial_variogram(curve, shape, nugget, psill, range)
        try:
            fits.append(_fit_with_retries(curve, initial, max_iter))
        except FitDidNotConvergeError as e:
            logging.warning(str(e))

    if not fits and VariogramShape.LINEAR not in shapes:
        logging.warning("No variogram shape converged, trying linear model")
        initial = initial_variogram(
            curve, VariogramShape.LINEAR, nugget, psill, range
        )
        fits.append(_fit_with_retries(curve, initial, max_iter))

    if not fits:
        raise FitDidNotConvergeError(
            "No variogram shape converged: "
            + ", ".join(str(s) for s in shapes)
        )

    best = min(fits, key=lambda f: f.wrss)
    logging.info(
        f"Best variogram {best.model.shape}: nugget={best.model.nugget:.4g}, "
        + f"psill={best.model.psill:.4g}, range={best.model.range:.4g}"
    )
    return best
