"""
Variograms
----------

Parametric variogram models, and estimation of empirical (binned) variograms
from point samples.

A variogram model is a tagged variant: the shape is selected by
`VariogramShape` and evaluated by `semivariance`. All models are zero at zero
distance, the nugget is the discontinuity at the origin.
"""

from collections.abc import Sequence
from dataclasses import dataclass
import logging
import numpy as np
import polars as pl
import xarray as xr
from sklearn.linear_model import LinearRegression

from .distances import pair_distances
from .sample import SpatialSample
from .types import VariogramShape
from .utils import InvalidParameterError


def semivariance(
    distance: np.ndarray,
    shape: VariogramShape | str,
    nugget: float,
    psill: float,
    range: float,
) -> np.ndarray:
    r"""
    Evaluate a variogram model at a set of distances.

    For distance :math:`h > 0` and range :math:`r`:

    * exponential : :math:`c_0 + c (1 - e^{-h / r})`
    * gaussian : :math:`c_0 + c (1 - e^{-(h / r)^2})`
    * spherical : :math:`c_0 + c (1.5 h / r - 0.5 (h / r)^3)` for
      :math:`h < r`, else :math:`c_0 + c`
    * linear : :math:`c_0 + c h / r` for :math:`h < r`, else :math:`c_0 + c`

    Where :math:`c_0` is the nugget and :math:`c` is the partial sill. The
    value at :math:`h = 0` is 0.

    Parameters
    ----------
    distance : numpy.ndarray
        Distances, any shape.
    shape : VariogramShape | str
        The model shape.
    nugget : float
        Variance at zero lag (the limit as distance approaches 0).
    psill : float
        Partial sill, the variance added between zero lag and the range.
    range : float
        The range parameter.

    Returns
    -------
    gamma : numpy.ndarray
        Semivariance with the same shape as distance.
    """
    h = np.asarray(distance, dtype=float)
    scaled = h / range
    match VariogramShape(shape):
        case VariogramShape.EXPONENTIAL:
            structure = 1.0 - np.exp(-scaled)
        case VariogramShape.GAUSSIAN:
            structure = 1.0 - np.exp(-np.square(scaled))
        case VariogramShape.SPHERICAL:
            clipped = np.minimum(scaled, 1.0)
            structure = 1.5 * clipped - 0.5 * np.power(clipped, 3)
        case VariogramShape.LINEAR:
            structure = np.minimum(scaled, 1.0)
        case _:
            raise ValueError(f"Unexpected variogram shape {shape}")
    gamma = nugget + psill * structure
    return np.where(h > 0, gamma, 0.0)


@dataclass(frozen=True)
class VariogramModel:
    """
    A fitted or specified variogram model.

    Parameters
    ----------
    shape : VariogramShape
        Shape of the variogram, one of exponential, spherical, linear or
        gaussian.
    nugget : float
        Variance at zero lag, must be non-negative.
    psill : float
        Partial sill, the additional variance reached at the range. Must be
        non-negative.
    range : float
        Distance at which spatial correlation becomes negligible. Must be
        positive. For the exponential and gaussian shapes this is the scale
        parameter, the practical range is 3 and sqrt(3) times larger.
    """

    shape: VariogramShape
    nugget: float
    psill: float
    range: float

    def __post_init__(self) -> None:
        object.__setattr__(self, "shape", VariogramShape(self.shape))
        if not np.isfinite([self.nugget, self.psill, self.range]).all():
            raise InvalidParameterError("Variogram parameters must be finite")
        if self.nugget < 0:
            raise InvalidParameterError("nugget must be >= 0")
        if self.psill < 0:
            raise InvalidParameterError("psill must be >= 0")
        if self.range <= 0:
            raise InvalidParameterError("range must be > 0")
        return None

    @property
    def sill(self) -> float:
        """Total sill, nugget + partial sill"""
        return self.nugget + self.psill

    def fit(
        self, distance_matrix: np.ndarray | xr.DataArray
    ) -> np.ndarray | xr.DataArray:
        """Fit the VariogramModel to a distance matrix"""
        out = semivariance(
            np.asarray(distance_matrix),
            self.shape,
            self.nugget,
            self.psill,
            self.range,
        )
        if isinstance(distance_matrix, xr.DataArray):
            return distance_matrix.copy(data=out).rename("variogram")
        return out

    def covariance(
        self, distance_matrix: np.ndarray | xr.DataArray
    ) -> np.ndarray | xr.DataArray:
        """Covariance implied by the VariogramModel for a distance matrix"""
        return variogram_to_covariance(self.fit(distance_matrix), self.sill)


def variogram_to_covariance(
    variogram: np.ndarray | xr.DataArray,
    variance: np.ndarray | float,
) -> np.ndarray | xr.DataArray:
    """
    Convert a variogram matrix to a covariance matrix.

    This is given by:
        covariance = variance - variogram

    Parameters
    ----------
    variogram : numpy.ndarray | xarray.DataArray
        The variogram matrix, output of VariogramModel.fit.
    variance : numpy.ndarray | float
        The variance, the total sill of the variogram.

    Returns
    -------
    cov : numpy.ndarray | xarray.DataArray
        The covariance matrix
    """
    cov = variance - variogram
    if isinstance(cov, xr.DataArray):
        cov.name = "covariance"
    return cov


@dataclass(frozen=True)
class VariogramCurve:
    """
    An empirical variogram: semivariance averaged into contiguous distance
    bins of width `bin_width`, starting at 0, up to `cutoff`. Bins without any
    pairs are omitted.

    Parameters
    ----------
    lag : numpy.ndarray
        Midpoint of each bin.
    gamma : numpy.ndarray
        Mean semivariance of the pairs in each bin.
    npairs : numpy.ndarray
        Number of pairs in each bin.
    bin_width : float
    cutoff : float
    """

    lag: np.ndarray
    gamma: np.ndarray
    npairs: np.ndarray
    bin_width: float
    cutoff: float

    def __len__(self) -> int:
        return len(self.lag)

    @property
    def is_empty(self) -> bool:
        """True if no pairs fell within the cutoff"""
        return len(self) == 0

    @property
    def weights(self) -> np.ndarray:
        """Cressie weights, number of pairs divided by squared lag"""
        return self.npairs / np.square(self.lag)

    def to_frame(self) -> pl.DataFrame:
        """Get the curve as a DataFrame with columns lag, gamma and npairs"""
        return pl.DataFrame(
            {"lag": self.lag, "gamma": self.gamma, "npairs": self.npairs}
        )


def bin_semivariance(
    coords: np.ndarray,
    values: np.ndarray,
    bin_width: float,
    cutoff: float,
) -> VariogramCurve:
    r"""
    Compute the empirical variogram of values at a set of positions.

    For each unordered pair of points :math:`(i, j)` separated by distance
    :math:`h \le` cutoff, the semivariance :math:`0.5 (z_i - z_j)^2` is
    assigned to bin :math:`\lfloor h / w \rfloor`. Each bin's value is the mean
    over its pairs.

    Parameters
    ----------
    coords : numpy.ndarray
        Positions, shape (n, d).
    values : numpy.ndarray
        Values at the positions, length n.
    bin_width : float
        Width of each lag bin, must be positive.
    cutoff : float
        Maximum pair distance to include, must be positive.

    Returns
    -------
    curve : VariogramCurve
        The binned semivariance. Empty if no pairs are within the cutoff.
    """
    if not bin_width > 0:
        raise InvalidParameterError("bin_width must be > 0")
    if not cutoff > 0:
        raise InvalidParameterError("cutoff must be > 0")
    values = np.asarray(values, dtype=float)
    if len(values) != len(coords):
        raise ValueError("coords and values must have the same length")

    dist = pair_distances(coords)
    # Same condensed ordering as the distances
    gamma = 0.5 * pair_distances(values[:, None]) ** 2

    within = dist <= cutoff
    dist, gamma = dist[within], gamma[within]
    if dist.size == 0:
        logging.debug("No pairs within cutoff, empirical variogram is empty")
        empty = np.empty(0, dtype=float)
        return VariogramCurve(
            empty, empty, np.empty(0, dtype=int), bin_width, cutoff
        )

    bins = np.floor(dist / bin_width).astype(int)
    npairs = np.bincount(bins)
    sums = np.bincount(bins, weights=gamma)
    present = np.flatnonzero(npairs)

    return VariogramCurve(
        lag=(present + 0.5) * bin_width,
        gamma=sums[present] / npairs[present],
        npairs=npairs[present],
        bin_width=bin_width,
        cutoff=cutoff,
    )


def drift_residuals(values: np.ndarray, drift: np.ndarray) -> np.ndarray:
    """
    Residuals of an ordinary least-squares regression of values on an
    intercept and drift covariates. With no drift columns this removes the
    mean, which does not change the semivariance of any pair.

    Parameters
    ----------
    values : numpy.ndarray
        Response values, length n.
    drift : numpy.ndarray
        Drift covariates, shape (n, p). p can be 0.

    Returns
    -------
    residuals : numpy.ndarray
    """
    values = np.asarray(values, dtype=float)
    drift = np.asarray(drift, dtype=float).reshape(len(values), -1)
    if drift.shape[1] == 0:
        return values - values.mean()
    model = LinearRegression().fit(drift, values)
    return values - model.predict(drift)


def empirical_variogram(
    sample: SpatialSample,
    bin_width: float,
    cutoff: float,
    column: str | None = None,
    drift: Sequence[str] = (),
) -> VariogramCurve:
    """
    Estimate the empirical variogram of a SpatialSample.

    Parameters
    ----------
    sample : SpatialSample
        The point sample.
    bin_width : float
        Width of each lag bin, in the units of the sample coordinates.
    cutoff : float
        Maximum pair distance to include.
    column : str | None
        Column to compute the variogram of. Defaults to the sample's response.
        Set to `sample.residual` for a residual variogram.
    drift : Sequence[str]
        Optional drift covariates. If set, the variogram is computed from the
        residuals of a linear regression of the column on these covariates.

    Returns
    -------
    curve : VariogramCurve
    """
    column = column or sample.response
    values = sample.data.get_column(column).to_numpy().astype(float)
    if drift:
        values = drift_residuals(values, sample.covariate_array(drift))
    return bin_semivariance(sample.coordinates, values, bin_width, cutoff)
