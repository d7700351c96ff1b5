"""
Cross Validation
----------------

K-fold cross validation of Kriging with External Drift, used to rank
candidate sets of drift covariates by predictive error.

For every fold and every candidate covariate subset a variogram is estimated
and fitted on the training points (using the subset as drift), the held-out
points are predicted by Kriging with External Drift, and the RMSE of the
predictions is recorded. Each (fold, subset) evaluation is independent, it
only reads the sample.
"""

from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from itertools import combinations
import logging
from warnings import catch_warnings, simplefilter, warn
import numpy as np
import polars as pl
from scipy.optimize import OptimizeWarning
from sklearn.model_selection import KFold

from .constants import DEFAULT_FIT_MAX_ITER, DEFAULT_MAX_CONDITION
from .kriging import ExternalDriftKriging
from .sample import SpatialSample
from .types import SelectionPolicy, VariogramShape
from .utils import (
    DegenerateKrigingSystemError,
    FitDidNotConvergeError,
    InsufficientDataError,
    InvalidParameterError,
    rmse,
)
from .variogram import empirical_variogram
from .variogram_fit import fit_variogram_shapes

Subset = tuple[str, ...]

# Errors caused by the data in a fold, these do not stop cross validation
FOLD_ERRORS = (
    InsufficientDataError,
    FitDidNotConvergeError,
    DegenerateKrigingSystemError,
)


def subset_label(subset: Sequence[str]) -> str:
    """Label for a covariate subset, e.g. "northing+depth" """
    return "+".join(subset) if subset else "(none)"


def covariate_subsets(
    covariates: Sequence[str],
    include_empty: bool = False,
) -> list[Subset]:
    """
    Get the power set of a list of covariates, ordered by size and then by
    the order of the input list.

    Examples
    --------
    >>> covariate_subsets(["northing", "easting"])
    [("northing",), ("easting",), ("northing", "easting")]

    Parameters
    ----------
    covariates : Sequence[str]
        Names of candidate covariates.
    include_empty : bool
        Include the empty subset (Ordinary Kriging without drift).

    Returns
    -------
    subsets : list[tuple[str, ...]]
    """
    if len(set(covariates)) != len(covariates):
        raise InvalidParameterError("Covariate names must be unique")
    start = 0 if include_empty else 1
    return [
        subset
        for size in range(start, len(covariates) + 1)
        for subset in combinations(covariates, size)
    ]


def kfold_indices(
    n: int,
    k: int,
    seed: int,
) -> list[tuple[np.ndarray, np.ndarray]]:
    """
    Split n sample positions into k near-equal folds after a seeded shuffle.

    Parameters
    ----------
    n : int
        Number of points.
    k : int
        Number of folds, 2 <= k < n.
    seed : int
        Random seed of the shuffle, fixes the assignment.

    Returns
    -------
    folds : list[tuple[numpy.ndarray, numpy.ndarray]]
        Train and test indices for each fold.
    """
    if k < 2:
        raise InvalidParameterError("Number of folds must be >= 2")
    if k >= n:
        raise InvalidParameterError(
            f"Number of folds ({k}) must be less than sample size ({n})"
        )
    splitter = KFold(n_splits=k, shuffle=True, random_state=seed)
    return list(splitter.split(np.arange(n)))


def evaluate_fold(
    train: SpatialSample,
    test: SpatialSample,
    subset: Subset,
    bin_width: float,
    cutoff: float,
    shapes: Sequence[VariogramShape | str] | None = None,
    max_iter: int = DEFAULT_FIT_MAX_ITER,
    max_condition: float = DEFAULT_MAX_CONDITION,
) -> float:
    """
    Fit a variogram on the training points with the subset as drift, predict
    the test points by Kriging with External Drift and compute the RMSE.

    Raises
    ------
    InsufficientDataError
        If the training set cannot support the drift, or the variogram is
        empty.
    FitDidNotConvergeError
        If no variogram shape can be fitted.
    DegenerateKrigingSystemError
        If the Kriging system is singular.
    """
    if len(train) <= len(subset) + 1:
        raise InsufficientDataError(
            f"{len(train)} training points for {len(subset)} covariates"
        )
    curve = empirical_variogram(train, bin_width, cutoff, drift=subset)
    fit = fit_variogram_shapes(curve, shapes=shapes, max_iter=max_iter)
    krige = ExternalDriftKriging(
        fit.model,
        train.coordinates,
        train.values,
        drift=train.covariate_array(subset),
        max_condition=max_condition,
    )
    predicted = krige.predict(
        test.coordinates, drift=test.covariate_array(subset)
    )
    return rmse(predicted, test.values)


@dataclass(frozen=True)
class CrossValidationResult:
    """
    Result of cross validation of candidate covariate subsets.

    Parameters
    ----------
    folds : polars.DataFrame
        One row per (subset, fold) with columns "subset", "n_covariates",
        "fold", "rmse" (null if the fold failed) and "error" (the name of the
        error class if the fold failed).
    subsets : dict[str, tuple[str, ...]]
        Mapping of subset labels to covariate names.
    k : int
        Number of folds.
    seed : int
        Random seed of the fold assignment.
    """

    folds: pl.DataFrame
    subsets: dict[str, Subset]
    k: int
    seed: int

    def summary(self) -> pl.DataFrame:
        """
        Per-subset mean and standard deviation of RMSE over the folds that
        succeeded. A subset is excluded from selection if fewer than half of
        its folds succeeded.
        """
        return (
            self.folds.group_by("subset", "n_covariates", maintain_order=True)
            .agg(
                pl.col("rmse").mean().alias("mean_rmse"),
                pl.col("rmse").std().alias("std_rmse"),
                pl.col("rmse").is_not_null().sum().alias("n_ok"),
                pl.len().alias("n_folds"),
            )
            .with_columns(
                (2 * pl.col("n_ok") < pl.col("n_folds")).alias("excluded")
            )
        )

    def ranking(self) -> pl.DataFrame:
        """
        Eligible subsets ordered by mean RMSE, then standard deviation of RMSE,
        then the number of covariates.
        """
        return (
            self.summary()
            .filter(~pl.col("excluded"))
            .sort(
                ["mean_rmse", "std_rmse", "n_covariates"],
                nulls_last=True,
                maintain_order=True,
            )
        )

    def select(
        self,
        policy: SelectionPolicy
        | Callable[[pl.DataFrame], Sequence[str]] = "lowest_mean_rmse",
        override: Sequence[str] | None = None,
    ) -> Subset:
        """
        Select a covariate subset for the trend model.

        Parameters
        ----------
        policy : SelectionPolicy | Callable
            "lowest_mean_rmse" picks the first subset of the ranking.
            "fewest_within_one_se" picks the subset with the fewest
            covariates whose mean RMSE is within one standard error of the
            best. A callable receives the ranking DataFrame and returns the
            chosen covariates.
        override : Sequence[str] | None
            Force a subset, which must be one of the candidates.

        Returns
        -------
        subset : tuple[str, ...]
        """
        if override is not None:
            label = subset_label(override)
            if label not in self.subsets:
                raise InvalidParameterError(
                    f"Override subset {label} is not a candidate"
                )
            logging.info(f"Covariate subset set by override: {label}")
            return self.subsets[label]

        ranking = self.ranking()
        if ranking.is_empty():
            raise InsufficientDataError(
                "No covariate subset succeeded in at least half of the folds"
            )

        if callable(policy):
            chosen = tuple(policy(ranking))
            label = subset_label(chosen)
            if label not in self.subsets:
                raise InvalidParameterError(
                    f"Selection policy returned unknown subset {label}"
                )
        else:
            match policy:
                case "lowest_mean_rmse":
                    label = ranking.item(0, "subset")
                case "fewest_within_one_se":
                    best = ranking.row(0, named=True)
                    se = (best["std_rmse"] or 0.0) / np.sqrt(best["n_ok"])
                    label = (
                        ranking.filter(
                            pl.col("mean_rmse") <= best["mean_rmse"] + se
                        )
                        .sort("n_covariates", maintain_order=True)
                        .item(0, "subset")
                    )
                case _:
                    raise InvalidParameterError(
                        f"Unknown selection policy: {policy}"
                    )

        logging.info(f"Selected covariate subset: {label}")
        return self.subsets[label]


def cross_validate(
    sample: SpatialSample,
    candidates: Sequence[Sequence[str]],
    bin_width: float,
    cutoff: float,
    k: int,
    seed: int,
    shapes: Sequence[VariogramShape | str] | None = None,
    max_iter: int = DEFAULT_FIT_MAX_ITER,
    max_condition: float = DEFAULT_MAX_CONDITION,
    max_workers: int | None = None,
) -> CrossValidationResult:
    """
    K-fold cross validation of Kriging with External Drift for each candidate
    subset of drift covariates.

    Data errors in a single (fold, subset) evaluation are recorded and do not
    stop the cross validation.

    Parameters
    ----------
    sample : SpatialSample
        The point sample.
    candidates : Sequence[Sequence[str]]
        Candidate drift covariate subsets, e.g. from `covariate_subsets`.
    bin_width : float
        Lag bin width for the empirical variograms.
    cutoff : float
        Maximum lag for the empirical variograms.
    k : int
        Number of folds.
    seed : int
        Random seed of the fold assignment.
    shapes : Sequence[VariogramShape | str] | None
        Candidate variogram shapes. Defaults to all shapes.
    max_iter : int
        Maximum number of function evaluations for each variogram fit.
    max_condition : float
        Largest acceptable condition number of a Kriging system.
    max_workers : int | None
        Evaluate (fold, subset) pairs on a thread pool with this many workers.

    Returns
    -------
    result : CrossValidationResult
    """
    if not candidates:
        raise InvalidParameterError("At least one candidate subset is required")
    subsets: dict[str, Subset] = {}
    for candidate in candidates:
        subsets[subset_label(candidate)] = tuple(candidate)
    folds = kfold_indices(len(sample), k, seed)

    tasks = [
        (label, i, train_idx, test_idx)
        for label in subsets
        for i, (train_idx, test_idx) in enumerate(folds)
    ]

    def _run(task) -> tuple[float | None, str | None]:
        label, i, train_idx, test_idx = task
        try:
            score = evaluate_fold(
                sample.subset(train_idx),
                sample.subset(test_idx),
                subsets[label],
                bin_width=bin_width,
                cutoff=cutoff,
                shapes=shapes,
                max_iter=max_iter,
                max_condition=max_condition,
            )
        except FOLD_ERRORS as e:
            logging.warning(f"Subset {label}, fold {i} failed: {e}")
            return None, type(e).__name__
        logging.debug(f"Subset {label}, fold {i}: RMSE = {score:.6g}")
        return score, None

    # Parameter covariance of the variogram fits is not used. Warning filters
    # are process-wide and are only changed outside the worker threads.
    with catch_warnings():
        simplefilter("ignore", OptimizeWarning)
        if max_workers is not None and max_workers > 1:
            with ThreadPoolExecutor(max_workers=max_workers) as pool:
                outcomes = list(pool.map(_run, tasks))
        else:
            outcomes = [_run(task) for task in tasks]

    fold_table = pl.DataFrame(
        {
            "subset": [t[0] for t in tasks],
            "n_covariates": [len(subsets[t[0]]) for t in tasks],
            "fold": [t[1] for t in tasks],
            "rmse": [o[0] for o in outcomes],
            "error": [o[1] for o in outcomes],
        },
        schema={
            "subset": pl.String,
            "n_covariates": pl.Int64,
            "fold": pl.Int64,
            "rmse": pl.Float64,
            "error": pl.String,
        },
    )
    result = CrossValidationResult(
        folds=fold_table, subsets=subsets, k=k, seed=seed
    )

    excluded = result.summary().filter(pl.col("excluded"))
    for label in excluded.get_column("subset"):
        warn(
            f"Subset {label} excluded from selection: "
            + "fewer than half of its folds succeeded"
        )
    return result
