"""
Functions and classes for performing Kriging.

Interpolation of point observations using a fitted variogram. Available
methods are Simple Kriging (known mean), Ordinary Kriging (unknown constant
mean) and Kriging with External Drift (mean is a linear function of
covariates).

The Kriging system for the observations is built and factorised once, and is
then shared read-only by every batch of prediction points. Each prediction
point is solved independently.
"""

from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
import logging
import numpy as np
from scipy.linalg import lu_factor, lu_solve

from .constants import DEFAULT_BATCH_SIZE, DEFAULT_MAX_CONDITION
from .distances import _as_points, cross_distances, pairwise_distances
from .utils import (
    DegenerateKrigingSystemError,
    InsufficientDataError,
    InvalidParameterError,
    adjust_small_negative,
    batched,
)
from .variogram import VariogramModel


def kriging_system(
    variogram: VariogramModel,
    coords: np.ndarray,
    drift: np.ndarray | None = None,
    unbiased: bool = True,
) -> np.ndarray:
    r"""
    Build the (augmented) variogram matrix of a Kriging system.

    .. math::
        \begin{bmatrix}
            \Gamma & 1 & F \\
            1^T & 0 & 0 \\
            F^T & 0 & 0
        \end{bmatrix}

    Where :math:`\Gamma_{ij} = \gamma(h_{ij})` is the semivariance between
    observations :math:`i` and :math:`j`, the row and column of ones are the
    unbiasedness constraint for an unknown constant mean, and :math:`F`
    contains the drift covariates at the observations (the universal Kriging
    constraints).

    Parameters
    ----------
    variogram : VariogramModel
        The fitted variogram.
    coords : numpy.ndarray
        Positions of the observations, shape (n, d).
    drift : numpy.ndarray | None
        Drift covariates at the observations, shape (n, p). Requires
        `unbiased`.
    unbiased : bool
        Add the constant mean constraint. If False and drift is None, the
        matrix is just :math:`\Gamma`.

    Returns
    -------
    system : numpy.ndarray
        Square matrix of size n, n + 1 or n + 1 + p.
    """
    gamma = variogram.fit(pairwise_distances(coords))
    n = gamma.shape[0]
    if not unbiased:
        if drift is not None:
            raise ValueError("Drift terms require the unbiased constraint")
        return gamma

    constraints = np.ones((n, 1))
    if drift is not None:
        drift = np.asarray(drift, dtype=float).reshape(n, -1)
        constraints = np.concatenate((constraints, drift), axis=1)
    n_con = constraints.shape[1]
    return np.block(
        [
            [gamma, constraints],
            [constraints.T, np.zeros((n_con, n_con))],
        ]
    )


def factorise_system(
    system: np.ndarray,
    max_condition: float = DEFAULT_MAX_CONDITION,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Check the conditioning of a Kriging system and compute its LU
    factorisation with partial pivoting.

    Parameters
    ----------
    system : numpy.ndarray
        Square Kriging system matrix.
    max_condition : float
        Largest acceptable 2-norm condition number.

    Returns
    -------
    lu, piv : numpy.ndarray
        LU factorisation, see scipy.linalg.lu_factor.

    Raises
    ------
    DegenerateKrigingSystemError
        If the system is singular or its condition number exceeds
        `max_condition`. Typical causes are duplicate observation positions
        and collinear drift covariates.
    """
    if not np.isfinite(system).all():
        raise DegenerateKrigingSystemError(
            "Kriging system contains non-finite values"
        )
    with np.errstate(divide="ignore", invalid="ignore"):
        cond = np.linalg.cond(system)
    if not np.isfinite(cond) or cond > max_condition:
        raise DegenerateKrigingSystemError(
            f"Kriging system is singular or ill-conditioned (cond={cond:.3g}). "
            + "Check for duplicate positions or collinear drift covariates."
        )
    lu, piv = lu_factor(system, check_finite=False)
    if not np.all(np.diag(lu)):
        raise DegenerateKrigingSystemError(
            "Kriging system is singular, its LU factorisation has a zero pivot"
        )
    return lu, piv


class Kriging(ABC):
    """
    Class for Kriging.

    Do not use this class, use SimpleKriging, OrdinaryKriging or
    ExternalDriftKriging classes.

    Parameters
    ----------
    variogram : VariogramModel
        The fitted variogram. It is not modified.
    coords : numpy.ndarray
        Positions of the observations, shape (n, d). A vector is interpreted as
        positions along a line.
    values : numpy.ndarray
        Observed values, length n.
    max_condition : float
        Largest acceptable condition number of the Kriging system.
    """

    method: str

    def __init__(
        self,
        variogram: VariogramModel,
        coords: np.ndarray,
        values: np.ndarray,
        max_condition: float = DEFAULT_MAX_CONDITION,
    ) -> None:
        if not hasattr(self, "method"):
            raise TypeError(
                "Do not use the generic class directly, "
                + "use SimpleKriging, OrdinaryKriging or ExternalDriftKriging"
            )
        self.variogram = variogram
        self.coords = _as_points(coords).copy()
        self.values = np.asarray(values, dtype=float).copy()
        if self.values.ndim != 1 or len(self.values) != len(self.coords):
            raise ValueError("values must be a vector aligned with coords")
        if len(self.values) == 0:
            raise InsufficientDataError("Kriging requires observations")
        if not np.isfinite(self.coords).all() or not np.isfinite(
            self.values
        ).all():
            raise InvalidParameterError("Observations must be finite")
        # Scaling the variogram rows does not change the weights
        self.scale = variogram.sill if variogram.sill > 0 else 1.0
        self.max_condition = max_condition
        self.lu_piv = factorise_system(self.system_matrix(), max_condition)
        return None

    @property
    def n_obs(self) -> int:
        """Number of observations"""
        return len(self.values)

    @abstractmethod
    def system_matrix(self) -> np.ndarray:
        """The (scaled) Kriging system matrix for the observations"""
        raise NotImplementedError(
            "`system_matrix` not implemented for default class"
        )

    @abstractmethod
    def _rhs(
        self, coords: np.ndarray, drift: np.ndarray | None
    ) -> np.ndarray:
        raise NotImplementedError("`_rhs` not implemented for default class")

    @abstractmethod
    def _estimate(
        self, solution: np.ndarray, rhs: np.ndarray
    ) -> tuple[np.ndarray, np.ndarray]:
        raise NotImplementedError(
            "`_estimate` not implemented for default class"
        )

    def _solve_batch(
        self, coords: np.ndarray, drift: np.ndarray | None
    ) -> tuple[np.ndarray, np.ndarray]:
        rhs = self._rhs(coords, drift)
        solution = lu_solve(self.lu_piv, rhs.T).T
        if not np.isfinite(solution).all():
            raise DegenerateKrigingSystemError(
                "Non-finite Kriging weights for prediction points"
            )
        return self._estimate(solution, rhs)

    def predict(
        self,
        coords: np.ndarray,
        drift: np.ndarray | None = None,
        return_variance: bool = False,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_workers: int | None = None,
    ) -> np.ndarray | tuple[np.ndarray, np.ndarray]:
        """
        Predict values at a set of positions.

        Parameters
        ----------
        coords : numpy.ndarray
            Positions to predict at, shape (m, d).
        drift : numpy.ndarray | None
            Drift covariates at the prediction positions, shape (m, p).
            Required for ExternalDriftKriging, ignored otherwise.
        return_variance : bool
            Also return the Kriging variance at each position.
        batch_size : int
            Number of positions solved together.
        max_workers : int | None
            Solve batches on a thread pool with this many workers. By default
            batches are solved sequentially.

        Returns
        -------
        prediction : numpy.ndarray
            Predicted values, length m.
        variance : numpy.ndarray
            Kriging variance, length m. Only if `return_variance` is set.
        """
        coords = _as_points(coords)
        if coords.shape[1] != self.coords.shape[1]:
            raise ValueError("Prediction positions have the wrong dimension")
        if drift is not None:
            drift = np.asarray(drift, dtype=float).reshape(len(coords), -1)
        if batch_size < 1:
            raise InvalidParameterError("batch_size must be >= 1")

        batches = [
            np.asarray(b, dtype=int)
            for b in batched(range(len(coords)), batch_size)
        ]

        def _run(idx: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
            return self._solve_batch(
                coords[idx], None if drift is None else drift[idx]
            )

        if max_workers is not None and max_workers > 1 and len(batches) > 1:
            logging.debug(
                f"Solving {len(batches)} batches on {max_workers} workers"
            )
            with ThreadPoolExecutor(max_workers=max_workers) as pool:
                results = list(pool.map(_run, batches))
        else:
            results = [_run(idx) for idx in batches]

        if results:
            prediction = np.concatenate([r[0] for r in results])
            variance = np.concatenate([r[1] for r in results])
        else:
            prediction = variance = np.empty(0, dtype=float)

        if return_variance:
            return prediction, variance
        return prediction


class SimpleKriging(Kriging):
    r"""
    Class for SimpleKriging.

    Kriging of a field with a known, constant mean (by default 0, for
    residual fields). The system is expressed in terms of the covariance
    :math:`C(h) = \sigma^2 - \gamma(h)`:

    .. math::
        \hat{z}_0 = \mu + c_0^T C^{-1} (z - \mu)

    Parameters
    ----------
    variogram : VariogramModel
        The fitted variogram, must have a positive sill.
    coords : numpy.ndarray
        Positions of the observations.
    values : numpy.ndarray
        Observed values.
    mean : float
        The known mean of the field.
    max_condition : float
        Largest acceptable condition number of the Kriging system.
    """

    method: str = "simple"

    def __init__(
        self,
        variogram: VariogramModel,
        coords: np.ndarray,
        values: np.ndarray,
        mean: float = 0.0,
        max_condition: float = DEFAULT_MAX_CONDITION,
    ) -> None:
        self.mean = mean
        super().__init__(variogram, coords, values, max_condition)
        return None

    def system_matrix(self) -> np.ndarray:
        """The scaled covariance matrix between observations"""
        gamma = kriging_system(self.variogram, self.coords, unbiased=False)
        return (self.variogram.sill - gamma) / self.scale

    def _rhs(
        self, coords: np.ndarray, drift: np.ndarray | None
    ) -> np.ndarray:
        dist = cross_distances(coords, self.coords)
        return self.variogram.covariance(dist) / self.scale

    def _estimate(
        self, solution: np.ndarray, rhs: np.ndarray
    ) -> tuple[np.ndarray, np.ndarray]:
        prediction = solution @ (self.values - self.mean) + self.mean
        variance = self.variogram.sill - self.scale * np.sum(
            solution * rhs, axis=1
        )
        return prediction, adjust_small_negative(variance)


class OrdinaryKriging(Kriging):
    r"""
    Class for OrdinaryKriging.

    Kriging of a field with an unknown constant mean. The variogram matrix
    :math:`\Gamma` is extended by one row and one column of ones, except at
    the diagonal point, which is 0, constraining the Kriging weights to sum
    to 1. The right-hand side for each prediction point is the semivariance
    to each observation, extended by a value of 1.

    The Kriging variance is :math:`\lambda^T \gamma_0 + \mu`, where
    :math:`\mu` is the Lagrange multiplier.

    Parameters
    ----------
    variogram : VariogramModel
        The fitted variogram.
    coords : numpy.ndarray
        Positions of the observations.
    values : numpy.ndarray
        Observed values.
    max_condition : float
        Largest acceptable condition number of the Kriging system.
    """

    method: str = "ordinary"

    def system_matrix(self) -> np.ndarray:
        """The scaled, augmented variogram matrix"""
        system = kriging_system(self.variogram, self.coords, drift=None)
        system[: self.n_obs, : self.n_obs] /= self.scale
        return system

    def _constraint_rhs(
        self, coords: np.ndarray, drift: np.ndarray | None
    ) -> np.ndarray:
        return np.ones((len(coords), 1))

    def _rhs(
        self, coords: np.ndarray, drift: np.ndarray | None
    ) -> np.ndarray:
        dist = cross_distances(coords, self.coords)
        gamma = self.variogram.fit(dist) / self.scale
        return np.concatenate(
            (gamma, self._constraint_rhs(coords, drift)), axis=1
        )

    def _estimate(
        self, solution: np.ndarray, rhs: np.ndarray
    ) -> tuple[np.ndarray, np.ndarray]:
        weights = solution[:, : self.n_obs]
        prediction = weights @ self.values
        variance = self.scale * np.sum(solution * rhs, axis=1)
        return prediction, adjust_small_negative(variance)


class ExternalDriftKriging(OrdinaryKriging):
    r"""
    Class for Kriging with External Drift (universal Kriging with covariate
    drift terms).

    The mean of the field is a linear function of drift covariates. In
    addition to the OrdinaryKriging constraint, the system is extended by one
    row and column per drift covariate holding its values at the
    observations, and the right-hand side for each prediction point is
    extended by the covariate values at that point. This forces the Kriging
    weights to reproduce each covariate exactly.

    Drift covariates are centred and scaled by their mean and standard
    deviation at the observations. This does not change the weights.

    Parameters
    ----------
    variogram : VariogramModel
        The fitted variogram, typically of the residuals from a linear
        regression on the drift covariates.
    coords : numpy.ndarray
        Positions of the observations.
    values : numpy.ndarray
        Observed values.
    drift : numpy.ndarray
        Drift covariates at the observations, shape (n, p).
    max_condition : float
        Largest acceptable condition number of the Kriging system.
    """

    method: str = "external_drift"

    def __init__(
        self,
        variogram: VariogramModel,
        coords: np.ndarray,
        values: np.ndarray,
        drift: np.ndarray,
        max_condition: float = DEFAULT_MAX_CONDITION,
    ) -> None:
        n = len(np.asarray(values))
        drift = np.asarray(drift, dtype=float).reshape(n, -1)
        if n <= drift.shape[1]:
            raise InsufficientDataError(
                f"{n} observations cannot constrain "
                + f"{drift.shape[1]} drift covariates and a mean"
            )
        if not np.isfinite(drift).all():
            raise InvalidParameterError("Drift covariates must be finite")
        self.drift_mean = drift.mean(axis=0)
        self.drift_scale = drift.std(axis=0)
        if np.any(self.drift_scale == 0):
            raise DegenerateKrigingSystemError(
                "Constant drift covariate is collinear with the mean"
            )
        self.drift = self._standardise(drift)
        super().__init__(variogram, coords, values, max_condition)
        return None

    @property
    def n_drift(self) -> int:
        """Number of drift covariates"""
        return self.drift.shape[1]

    def _standardise(self, drift: np.ndarray) -> np.ndarray:
        return (drift - self.drift_mean) / self.drift_scale

    def system_matrix(self) -> np.ndarray:
        """The scaled variogram matrix, augmented with drift constraints"""
        system = kriging_system(self.variogram, self.coords, drift=self.drift)
        system[: self.n_obs, : self.n_obs] /= self.scale
        return system

    def _constraint_rhs(
        self, coords: np.ndarray, drift: np.ndarray | None
    ) -> np.ndarray:
        if drift is None:
            raise ValueError(
                "Drift covariates are required at prediction points"
            )
        if drift.shape != (len(coords), self.n_drift):
            raise ValueError(
                f"Expected drift with shape ({len(coords)}, {self.n_drift})"
            )
        if not np.isfinite(drift).all():
            raise InvalidParameterError(
                "Drift covariates at prediction points must be finite"
            )
        return np.concatenate(
            (np.ones((len(coords), 1)), self._standardise(drift)), axis=1
        )
