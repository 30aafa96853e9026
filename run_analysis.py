"""Run a spline variational analysis from a YAML configuration"""

import argparse
from pathlib import Path

import numpy as np
import pandas as pd

from splinevar import AnalysisConfig, VarDriver
from splinevar.utils.logger import get_logger

LOGGER = get_logger(__name__)


def main():
    parser = argparse.ArgumentParser(description="Spline based 3D variational analysis")
    parser.add_argument("config", help="YAML analysis configuration")
    parser.add_argument("--observations", help="Whitespace separated 14 column observation table")
    parser.add_argument("--background", help="Flat mish background saved with numpy.save")
    parser.add_argument("--estimates", help="CSV of scattered background estimates")
    parser.add_argument("--mean-u", type=float, default=0.0, help="Domain translation removed from u (m/s)")
    parser.add_argument("--mean-v", type=float, default=0.0, help="Domain translation removed from v (m/s)")
    parser.add_argument("--output", default="analysis", help="Output directory")
    args = parser.parse_args()

    config = AnalysisConfig.from_yaml(args.config)
    driver = VarDriver(config)
    background = np.load(args.background) if args.background else None
    estimates = pd.read_csv(args.estimates) if args.estimates else None
    result = driver.run(background, args.observations, estimates, args.mean_u, args.mean_v)

    out = Path(args.output)
    out.mkdir(parents=True, exist_ok=True)
    result.nodes.to_netcdf(out / "analysis_nodes.nc", engine="netcdf4")
    result.mish.to_netcdf(out / "analysis_mish.nc", engine="netcdf4")
    np.save(out / "analysis_mish_flat.npy", result.to_flat())
    result.history.to_csv(out / "history.csv", index=False)
    result.statistics.to_csv(out / "statistics.csv")
    LOGGER.info("Wrote the analysis to %s", out)


if __name__ == "__main__":
    main()
