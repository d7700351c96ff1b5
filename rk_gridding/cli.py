"""
Command line runner for regression-kriging.

Cross validates the candidate drift covariate subsets, selects the subset for
the trend, fits regression-kriging and predicts the grid.
"""

import argparse
import logging

from .config import Config, load_config
from .cross_validation import covariate_subsets, cross_validate
from .io import load_dataset, load_sample, write_grid
from .regression_kriging import RegressionKriging
from .utils import init_logging

parser = argparse.ArgumentParser(
    description="Regression-kriging of point samples onto a grid"
)
parser.add_argument(
    "-config",
    dest="config",
    required=True,
    help="YAML file containing configuration settings",
)
parser.add_argument(
    "-sample",
    dest="sample",
    required=True,
    help="CSV or Parquet file of samples with projected coordinates",
)
parser.add_argument(
    "-grid",
    dest="grid",
    required=True,
    help="netCDF file containing the grid, covariate layers and mask",
)
parser.add_argument(
    "-output",
    dest="output",
    required=True,
    help="netCDF file to write the predicted grid to",
)
parser.add_argument(
    "-cv_output",
    dest="cv_output",
    required=False,
    default=None,
    help="CSV file to write the cross validation summary to",
)


def run(
    config: Config,
    sample_path: str,
    grid_path: str,
    output_path: str,
    cv_output_path: str | None = None,
) -> None:
    """Run cross validation and regression-kriging from a Config"""
    sample = load_sample(
        sample_path,
        config.sample.response,
        config.sample.coords,
        config.sample.covariates,
    )
    logging.info(f"Loaded {len(sample)} samples from {sample_path}")

    cv = config.cross_validation
    candidates = cv.subsets or covariate_subsets(config.sample.covariates)
    result = cross_validate(
        sample,
        candidates,
        bin_width=config.variogram.bin_width,
        cutoff=config.variogram.cutoff,
        k=cv.folds,
        seed=cv.seed,
        shapes=config.variogram.shapes,
        max_iter=config.variogram.max_iter,
        max_condition=config.kriging.max_condition,
        max_workers=cv.max_workers,
    )
    summary = result.summary()
    logging.info(f"Cross validation summary:\n{summary}")
    if cv_output_path is not None:
        summary.write_csv(cv_output_path)

    covariates = result.select(cv.policy, cv.override)

    model = RegressionKriging(
        trend=config.trend.estimator(covariates),
        bin_width=config.variogram.bin_width,
        cutoff=config.variogram.cutoff,
        shapes=config.variogram.shapes,
        nugget=config.variogram.nugget,
        psill=config.variogram.psill,
        range=config.variogram.range,
        method=config.kriging.method,
        max_iter=config.variogram.max_iter,
        max_condition=config.kriging.max_condition,
        batch_size=config.kriging.batch_size,
        max_workers=config.kriging.max_workers,
    )
    fit = model.fit(sample)

    grid = load_dataset(grid_path)
    out = fit.predict(grid, coord_names=config.sample.coords[::-1])
    write_grid(out, output_path)
    logging.info(f"Wrote prediction grid to {output_path}")
    return None


def main() -> None:
    """Entry point of the rk-gridding command"""
    args = parser.parse_args()
    config = load_config(args.config)
    init_logging(config.logging.file, config.logging.level)
    run(config, args.sample, args.grid, args.output, args.cv_output)
    return None


if __name__ == "__main__":
    main()
