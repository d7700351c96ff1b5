"""
Functions for calculating distances between points in a planar (projected)
coordinate frame.

All coordinates are expected to be in the same linear unit, typically metres
of a projected coordinate reference system. Reprojection from geographic
coordinates is done before data reaches this library.
"""

import numpy as np
from scipy.spatial.distance import cdist, pdist, squareform


def _as_points(coords: np.ndarray) -> np.ndarray:
    coords = np.asarray(coords, dtype=float)
    if coords.ndim == 1:
        # Points along a line
        coords = coords[:, None]
    if coords.ndim != 2:
        raise ValueError("coords must be a (n, d) array of positions")
    return coords


def pairwise_distances(coords: np.ndarray) -> np.ndarray:
    """
    Compute the Euclidean distance matrix between all pairs of positions.

    Parameters
    ----------
    coords : numpy.ndarray
        Array of positions with shape (n, d). A vector is interpreted as n
        positions along a line.

    Returns
    -------
    dist : numpy.ndarray
        Symmetric (n, n) matrix of distances with zeros on the diagonal.
    """
    coords = _as_points(coords)
    if coords.shape[0] < 2:
        return np.zeros((coords.shape[0], coords.shape[0]))
    return squareform(pdist(coords, metric="euclidean"))


def pair_distances(coords: np.ndarray) -> np.ndarray:
    """
    Compute the Euclidean distance for every unordered pair of positions, in
    the condensed ordering used by scipy.spatial.distance.pdist.

    Parameters
    ----------
    coords : numpy.ndarray
        Array of positions with shape (n, d).

    Returns
    -------
    dist : numpy.ndarray
        Vector of n * (n - 1) / 2 distances.
    """
    coords = _as_points(coords)
    return pdist(coords, metric="euclidean")


def cross_distances(
    coords_a: np.ndarray,
    coords_b: np.ndarray,
) -> np.ndarray:
    """
    Compute the Euclidean distances between two sets of positions.

    Parameters
    ----------
    coords_a : numpy.ndarray
        Array of positions with shape (n, d).
    coords_b : numpy.ndarray
        Array of positions with shape (m, d).

    Returns
    -------
    dist : numpy.ndarray
        (n, m) matrix of distances.
    """
    coords_a = _as_points(coords_a)
    coords_b = _as_points(coords_b)
    if coords_a.shape[1] != coords_b.shape[1]:
        raise ValueError("Positions must have the same number of dimensions")
    return cdist(coords_a, coords_b, metric="euclidean")
