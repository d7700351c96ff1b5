"""
Grid
----

Functions for creating output grids, extracting the valid cells of a grid and
mapping values back onto a grid.

A Grid is an xarray.Dataset with two dimension coordinates (by default
"northing" and "easting", the cell centres), one data variable per covariate
layer and an optional boolean "mask" variable that is True for cells inside
the sampling domain. Cells outside the mask, or with a non-finite value in any
required covariate layer, are no-data.
"""

from collections.abc import Iterable, Sequence
import numpy as np
import polars as pl
import xarray as xr

from .constants import EASTING, NORTHING
from .utils import ColumnNotFoundError

MASK_VAR: str = "mask"


def _coord_names(
    grid: xr.Dataset | xr.DataArray,
    coord_names: Sequence[str] | None,
) -> tuple[str, str]:
    names = tuple(coord_names or (NORTHING, EASTING))
    if len(names) != 2:
        raise ValueError("A grid must have exactly 2 coordinates")
    missing = [c for c in names if c not in grid.coords]
    if missing:
        raise ColumnNotFoundError(
            "Grid is missing coordinates: " + ", ".join(missing)
        )
    return names[0], names[1]


def grid_from_resolution(
    resolution: float | list[float],
    bounds: list[tuple[float, float]],
    coord_names: list[str] = [NORTHING, EASTING],
) -> xr.Dataset:
    """
    Generate a grid from a resolution value, or a list of resolutions for
    given boundaries and coordinate names.

    Note that all list inputs must have the same length, the ordering of values
    in the lists is assumed align.

    Parameters
    ----------
    resolution : float | list[float]
        Resolution of the grid. Can be a single resolution value that will be
        applied to all coordinates, or a list of values mapping a resolution
        value to each of the coordinates.
    bounds : list[tuple[float, float]]
        A list of bounds of the form `(lower_bound, upper_bound)` indicating
        the bounding box of the returned grid. The lower bound is the first
        cell centre.
    coord_names : list[str]
        List of coordinate names

    Returns
    -------
    grid : xarray.Dataset:
        The grid defined by the resolution and bounding box, without any
        covariate layers.
    """
    if not isinstance(resolution, Iterable):
        resolution = [resolution for _ in range(len(bounds))]
    if len(resolution) != len(coord_names) or len(bounds) != len(coord_names):
        raise ValueError("Input lists must have the same length")
    coords = {
        c_name: np.arange(lbound, ubound, res)
        for c_name, (lbound, ubound), res in zip(
            coord_names, bounds, resolution
        )
    }
    return xr.Dataset(coords=xr.Coordinates(coords))


def _layer(
    grid: xr.Dataset,
    name: str,
    coord_names: tuple[str, str],
    mesh: dict[str, np.ndarray],
) -> np.ndarray:
    if name in mesh:
        return mesh[name]
    if name not in grid.data_vars:
        raise ColumnNotFoundError(f"Grid is missing covariate layer {name}")
    return grid[name].transpose(*coord_names).values.astype(float)


def valid_cells(
    grid: xr.Dataset,
    covariates: Sequence[str] = (),
    coord_names: Sequence[str] | None = None,
    mask_var: str = MASK_VAR,
) -> pl.DataFrame:
    """
    Get the valid cells of a grid as a DataFrame.

    Parameters
    ----------
    grid : xarray.Dataset
        The grid, with a layer for each covariate. A covariate can also be one
        of the grid's coordinates.
    covariates : Sequence[str]
        Covariate layers required at each cell. Cells where any of these are
        not finite are excluded.
    coord_names : Sequence[str] | None
        Names of the grid's two coordinates, defaults to
        ("northing", "easting").
    mask_var : str
        Name of the mask variable. If the grid does not contain this variable,
        all cells are inside the domain.

    Returns
    -------
    cells : polars.DataFrame
        One row per valid cell with a "grid_idx" column (the 1d index of the
        cell, "C" ordering over `coord_names`), the coordinate columns and the
        covariate columns.
    """
    names = _coord_names(grid, coord_names)
    axes = [grid[c].values.astype(float) for c in names]
    mesh = dict(zip(names, np.meshgrid(*axes, indexing="ij")))

    valid = np.ones(mesh[names[0]].shape, dtype=bool)
    if mask_var in grid.data_vars:
        mask = grid[mask_var].fillna(0).transpose(*names).values
        valid &= mask.astype(bool)

    layers = {name: _layer(grid, name, names, mesh) for name in covariates}
    for values in layers.values():
        valid &= np.isfinite(values)

    grid_idx = np.flatnonzero(valid)
    columns = {"grid_idx": grid_idx}
    columns.update({c: mesh[c].ravel()[grid_idx] for c in names})
    columns.update(
        {c: v.ravel()[grid_idx] for c, v in layers.items() if c not in names}
    )
    return pl.DataFrame(columns)


def assign_to_grid(
    values: np.ndarray,
    grid_idx: np.ndarray,
    grid: xr.Dataset | xr.DataArray,
    name: str | None = None,
    coord_names: Sequence[str] | None = None,
) -> xr.DataArray:
    """
    Assign a vector of values to a grid, using a list of grid index values. The
    default value for grid values is NaN (no-data).

    Parameters
    ----------
    values : numpy.ndarray
        The values to map onto the output grid.
    grid_idx : numpy.ndarray
        The 1d index of the grid (assuming "C" style ravelling over
        `coord_names`) for each value, see `valid_cells`.
    grid : xarray.Dataset | xarray.DataArray
        The grid used to define the output grid.
    name : str | None
        Name of the output DataArray.
    coord_names : Sequence[str] | None
        Names of the grid's two coordinates, defaults to
        ("northing", "easting").

    Returns
    -------
    out_grid : xarray.DataArray
        A new grid containing the values mapped onto the grid.
    """
    names = _coord_names(grid, coord_names)
    coords = {c: grid[c].values for c in names}
    shape = tuple(len(v) for v in coords.values())
    out_grid = xr.DataArray(
        data=np.full(shape, np.nan, dtype="float"),
        coords=coords,
        dims=names,
        name=name,
    )
    coords_to_assign = np.unravel_index(
        np.asarray(grid_idx, dtype=int), shape, "C"
    )
    out_grid.values[coords_to_assign] = values
    return out_grid
