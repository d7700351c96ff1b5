"""
Functions for loading samples and grids produced by the external loaders, and
for writing output grids.
"""

from collections.abc import Sequence
import os
import polars as pl
import xarray as xr

from .constants import EASTING, NORTHING
from .sample import SpatialSample


def load_dataset(
    path,
    **kwargs,
) -> xr.Dataset:
    """
    Load an xarray.Dataset from a netCDF file. Can input a filename or a
    string to format with keyword arguments.

    Parameters
    ----------
    path : str
        Full filename (including path), or filename with replacements using
        str.format with named replacements. For example:
            /path/to/grid_{depth:03d}m.nc
    **kwargs
        Keywords arguments matching the replacements in the input path.

    Returns
    -------
    arr : xarray.Dataset
        The netcdf dataset as an xarray.Dataset.
    """
    if os.path.isfile(path):
        filename = path
    elif kwargs:
        if not os.path.isdir(os.path.dirname(path)):
            raise FileNotFoundError(f"Grid path: {path} not found")
        filename = path.format(**kwargs)
        if not os.path.isfile(filename):
            raise FileNotFoundError(f"Grid file: {filename} not found")
    else:
        raise FileNotFoundError("Cannot determine filename")

    return xr.open_dataset(filename, engine="netcdf4")


def load_sample(
    path: str,
    response: str,
    coords: Sequence[str] = (EASTING, NORTHING),
    covariates: Sequence[str] = (),
) -> SpatialSample:
    """
    Load a SpatialSample from a CSV or Parquet file. Coordinates must already
    be projected and covariates joined.

    Parameters
    ----------
    path : str
        Path to a ".csv" or ".parquet" file.
    response : str
        Name of the response column.
    coords : Sequence[str]
        Names of the easting and northing columns.
    covariates : Sequence[str]
        Names of covariate columns required by the analysis.

    Returns
    -------
    sample : SpatialSample
        Rows with missing values are dropped.
    """
    if not os.path.isfile(path):
        raise FileNotFoundError(f"Sample file: {path} not found")
    match os.path.splitext(path)[1].lower():
        case ".csv":
            df = pl.read_csv(path)
        case ".parquet" | ".pq":
            df = pl.read_parquet(path)
        case ext:
            raise ValueError(f"Unknown sample file extension: {ext}")
    return SpatialSample.from_frame(df, response, coords, covariates)


def write_grid(out: xr.Dataset, path: str) -> None:
    """Write an output grid to a netCDF file"""
    out.to_netcdf(path, engine="netcdf4")
    return None
