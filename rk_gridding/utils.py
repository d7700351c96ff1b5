r"""Utility functions and error classes for `rk_gridding`"""

from collections.abc import Iterable
import inspect
from itertools import islice
import logging
import numpy as np
import polars as pl
from warnings import warn


class RKGriddingError(Exception):
    """Base error class for rk_gridding"""

    pass


class InsufficientDataError(RKGriddingError):
    """Too few points for a lag bin, a fold split or a model fit"""

    pass


class FitDidNotConvergeError(RKGriddingError):
    """An optimizer exceeded its iteration or tolerance budget"""

    pass


class DegenerateKrigingSystemError(RKGriddingError):
    """The kriging system is singular or ill-conditioned"""

    pass


class InvalidParameterError(RKGriddingError, ValueError):
    """A caller supplied an invalid configuration value"""

    pass


class ColumnNotFoundError(RKGriddingError, KeyError):
    """Error class for Column Not Being Found"""

    pass


def check_cols(
    df: pl.DataFrame,
    cols: list[str],
) -> None:
    """Check that all columns in a list of columns are in a DataFrame"""
    # Get name of function that is calling this
    calling_func = str(inspect.stack()[1][3])

    missing_cols = [c for c in cols if c not in df.columns]
    if missing_cols:
        raise ColumnNotFoundError(
            calling_func
            + ": DataFrame is missing required columns: "
            + ", ".join(missing_cols)
        )
    return None


def adjust_small_negative(arr: np.ndarray) -> np.ndarray:
    """
    Adjusts small negative values (with absolute value < 1e-8) in an array of
    variances to 0.

    Raises a warning if any small negative values are detected.

    Parameters
    ----------
    arr : np.ndarray[float]
        Kriging variances, may contain round-off below zero.

    Returns
    -------
    ret : np.ndarray[float]
        A copy of the input with small negative values set to 0.
    """
    small_negative_check = np.logical_and(
        np.isclose(arr, 0, atol=1e-08), arr < 0.0
    )
    ret = arr.copy()
    if small_negative_check.any():
        warn("Small negative vals are detected. Setting to 0.")
        logging.debug(f"Small negative values: {arr[small_negative_check]}")
        ret[small_negative_check] = 0.0
    return ret


def batched(iterable: Iterable, n: int, *, strict: bool = False):
    """
    Implementation of itertools.batched for use if python version is < 3.12.

    Examples
    --------
    >>> list(batched("ABCDEFG", 3))
    [("A", "B", "C"), ("D", "E", "F"), ("G", )]
    """
    if n < 1:
        raise ValueError("'n' must be >= 1")
    iterator = iter(iterable)
    while batch := tuple(islice(iterator, n)):
        if strict and len(batch) != n:
            raise ValueError("batched(): incomplete batch")
        yield batch


def _get_logging_level(level: str) -> int:
    match level.lower():
        case "debug":
            level_i = 10
        case "info":
            level_i = 20
        case "warn" | "warning":
            level_i = 30
        case "error":
            level_i = 40
        case "critical":
            level_i = 50
        case _:
            raise ValueError(f"Unknown logging level: {level}")
    return level_i


def init_logging(
    file: str | None = None,
    level: str = "DEBUG",
) -> None:
    """
    Initialise the logger

    Parameters
    ----------
    file : str
        File to send log messages to. If set to None (default) then print log
        messages to STDout
    level : str
        Level of logging, one of: "debug", "info", "warn", "error", "critical".

    Returns
    -------
    None
    """
    level_i: int = _get_logging_level(level)

    logging.basicConfig(
        filename=file,
        filemode="a",
        encoding="utf-8",
        format="%(levelname)s at %(asctime)s : %(message)s",
        level=level_i,
        force=True,
    )
    logging.captureWarnings(True)
    return None


def rmse(predicted: np.ndarray, observed: np.ndarray) -> float:
    """Root-mean-square error between predictions and observations"""
    predicted = np.asarray(predicted, dtype=float)
    observed = np.asarray(observed, dtype=float)
    if predicted.shape != observed.shape:
        raise ValueError("predicted and observed must have the same shape")
    if predicted.size == 0:
        raise InsufficientDataError("Cannot compute RMSE of an empty fold")
    return float(np.sqrt(np.mean(np.square(predicted - observed))))
