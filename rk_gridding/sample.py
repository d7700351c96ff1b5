"""
Spatial Sample
--------------

Container for point observations, their projected coordinates, covariates
and (after regression) residuals.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
import logging
import numpy as np
import polars as pl

from .constants import EASTING, NORTHING
from .utils import InsufficientDataError, check_cols


@dataclass(frozen=True)
class SpatialSample:
    """
    An ordered, immutable collection of point observations.

    Each row of `data` is a point with a planar coordinate, zero or more
    covariate values and a single response value. The coordinate columns can
    also be used as covariates (e.g. "northing" as a drift term).

    Do not construct directly from untrusted data, use
    `SpatialSample.from_frame`, which removes incomplete rows.

    Parameters
    ----------
    data : polars.DataFrame
        The observations.
    response : str
        Name of the response column.
    coords : tuple[str, str]
        Names of the easting and northing columns, in that order.
    covariates : tuple[str, ...]
        Names of the covariate columns. May include the coordinate columns.
    residual : str
        Name of the residual column attached by `with_residual`.
    """

    data: pl.DataFrame
    response: str
    coords: tuple[str, str] = (EASTING, NORTHING)
    covariates: tuple[str, ...] = field(default_factory=tuple)
    residual: str = "residual"

    def __post_init__(self) -> None:
        check_cols(
            self.data,
            [self.response, *self.coords, *self.covariates],
        )
        return None

    @classmethod
    def from_frame(
        cls,
        df: pl.DataFrame,
        response: str,
        coords: Sequence[str] = (EASTING, NORTHING),
        covariates: Sequence[str] = (),
    ) -> "SpatialSample":
        """
        Create a SpatialSample from a DataFrame, dropping any rows with missing
        (null or NaN) response, coordinate or covariate values.

        Duplicate coordinates are reported as a warning. They are not removed,
        a kriging system built from them is degenerate.

        Parameters
        ----------
        df : polars.DataFrame
            Observations, coordinates already projected to a planar frame.
        response : str
            Name of the response column.
        coords : Sequence[str]
            Names of the easting and northing columns.
        covariates : Sequence[str]
            Names of covariate columns required by the analysis.

        Returns
        -------
        sample : SpatialSample
        """
        coords = tuple(coords)
        if len(coords) != 2:
            raise ValueError("coords must name exactly 2 columns")
        covariates = tuple(covariates)
        required = list(dict.fromkeys([response, *coords, *covariates]))
        check_cols(df, required)

        n_in = df.height
        df = df.drop_nulls(subset=required).filter(
            pl.all_horizontal(
                [pl.col(c).cast(pl.Float64).is_finite() for c in required]
            )
        )
        if df.height < n_in:
            logging.info(
                f"Dropped {n_in - df.height} of {n_in} rows with missing values"
            )
        if df.is_empty():
            raise InsufficientDataError("No complete rows in input DataFrame")

        n_dupes = df.height - df.select(list(coords)).unique().height
        if n_dupes:
            logging.warning(
                f"{n_dupes} rows share coordinates with an earlier row"
            )

        return cls(
            data=df,
            response=response,
            coords=coords,
            covariates=covariates,
        )

    def __len__(self) -> int:
        return self.data.height

    @property
    def coordinates(self) -> np.ndarray:
        """Coordinates as a (n, 2) array of (easting, northing)"""
        return self.data.select(list(self.coords)).to_numpy().astype(float)

    @property
    def values(self) -> np.ndarray:
        """The response values"""
        return self.data.get_column(self.response).to_numpy().astype(float)

    @property
    def residuals(self) -> np.ndarray:
        """The attached residual values, see `with_residual`"""
        if self.residual not in self.data.columns:
            raise KeyError("No residuals attached to this sample")
        return self.data.get_column(self.residual).to_numpy().astype(float)

    def covariate_array(self, names: Sequence[str]) -> np.ndarray:
        """
        Get covariate values as a (n, len(names)) array. An empty list of
        names gives an array with 0 columns.
        """
        names = list(names)
        check_cols(self.data, names)
        if not names:
            return np.empty((len(self), 0), dtype=float)
        return self.data.select(names).to_numpy().astype(float)

    def subset(self, idx: np.ndarray | Sequence[int]) -> "SpatialSample":
        """Get a new SpatialSample containing the rows at positions idx"""
        return SpatialSample(
            data=self.data[np.asarray(idx, dtype=int)],
            response=self.response,
            coords=self.coords,
            covariates=self.covariates,
            residual=self.residual,
        )

    def with_residual(self, residuals: np.ndarray) -> "SpatialSample":
        """
        Get a new SpatialSample with residual values attached as the
        `residual` column.
        """
        residuals = np.asarray(residuals, dtype=float)
        if residuals.shape != (len(self),):
            raise ValueError(
                "residuals must be a vector with one value per sample point"
            )
        return SpatialSample(
            data=self.data.with_columns(pl.Series(self.residual, residuals)),
            response=self.response,
            coords=self.coords,
            covariates=self.covariates,
            residual=self.residual,
        )
