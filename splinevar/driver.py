"""
Analysis driver.

Sizes the grid (with ghost margins for zero boundary conditions), excludes
observations that cannot be assimilated, optionally grids and adjusts a
background from scattered estimates, runs the outer loop of the cost function
and packages the analysis.
"""
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import numpy as np
import pandas as pd
import torch
import xarray as xr

from splinevar.data.background import (
    background_observations,
    interpolate_background,
    load_background,
    state_to_dataset,
    state_to_flat,
    to_perturbations,
)
from splinevar.data.observations import ObservationSet
from splinevar.models.config import AnalysisConfig
from splinevar.models.cost_function import CostFunction3D
from splinevar.models.grid import Grid3D
from splinevar.models.reference_state import ReferenceState
from splinevar.utils.constants import VARIABLES
from splinevar.utils.logger import get_logger

LOGGER = get_logger(__name__)


@dataclass
class AnalysisResult:
    analysis: torch.Tensor
    nodes: xr.Dataset
    mish: xr.Dataset
    history: pd.DataFrame
    statistics: pd.DataFrame

    def to_flat(self) -> np.ndarray:
        """Mish analysis in the legacy flat layout"""
        return state_to_flat(self.analysis).cpu().numpy()


class VarDriver:
    def __init__(self, config: AnalysisConfig, dtype=torch.float64):
        self.config = config
        self.dtype = dtype
        self.device = torch.device(config.device)
        if config.num_threads:
            torch.set_num_threads(config.num_threads)
        self.grid = Grid3D.from_bounds(config.bounds, config.zero_bc_axes())
        self.reference = ReferenceState(config.reference_state)

    def load_observations(self, observations) -> ObservationSet:
        """Observations from a set, an ``[N, 14]`` array or a table file, restricted to the usable domain"""
        if observations is None:
            return ObservationSet.empty(dtype=self.dtype, device=self.device)
        if isinstance(observations, (str, Path)):
            observations = ObservationSet.read_table(observations, dtype=self.dtype, device=self.device)
        elif not isinstance(observations, ObservationSet):
            observations = ObservationSet(observations, dtype=self.dtype, device=self.device)
        usable = observations.within(self.grid)
        LOGGER.info("Observation types: %s", usable.type_counts().to_dict())
        return usable

    def prepare_background(
        self, background=None, estimates: Optional[pd.DataFrame] = None, mean_u: float = 0.0, mean_v: float = 0.0
    ) -> torch.Tensor:
        """
        Mish background of the main pass.

        Scattered ``estimates`` take precedence over ``background``; they are
        gridded with the background radius of influence and, when requested,
        adjusted by an analysis pass that uses them as observations.
        """
        if estimates is None:
            return load_background(background, self.grid, self.dtype, self.device)
        cfg = self.config
        roi = cfg.background_roi or 1.25 * cfg.xincr
        perturbations = to_perturbations(estimates, self.reference, mean_u, mean_v)
        gridded, _ = interpolate_background(perturbations, self.grid, roi, self.dtype, self.device)
        if not cfg.adjust_background:
            return gridded
        bg_filter = roi / cfg.xincr
        adjust_cfg = cfg
        if max(cfg.x_filter, cfg.y_filter) < bg_filter:
            LOGGER.info("Raising the horizontal filter to %.2f increments for the background adjustment", bg_filter)
            adjust_cfg = cfg.with_horizontal_filter(bg_filter)
        obs = background_observations(perturbations).within(self.grid)
        LOGGER.info("Adjusting the background with %d estimates", len(obs))
        cost = self._run_passes(adjust_cfg, gridded, obs)
        return cost.finalize()

    def _run_passes(self, cfg: AnalysisConfig, background: torch.Tensor, observations: ObservationSet) -> CostFunction3D:
        cost = CostFunction3D(self.grid, cfg, dtype=self.dtype)
        cost.initialize(background, observations)
        histories = []
        for iteration in range(cfg.outer_loops):
            LOGGER.info("Outer loop %d of %d", iteration + 1, cfg.outer_loops)
            cost.init_state(iteration)
            histories.append(cost.minimize().assign(outer_loop=iteration))
            cost.update_bg()
        self._history = pd.concat(histories, ignore_index=True)
        return cost

    def run(
        self,
        background=None,
        observations=None,
        estimates: Optional[pd.DataFrame] = None,
        mean_u: float = 0.0,
        mean_v: float = 0.0,
    ) -> AnalysisResult:
        """Full analysis: background preparation, outer loop and output"""
        background = self.prepare_background(background, estimates, mean_u, mean_v)
        observations = self.load_observations(observations)
        cost = self._run_passes(self.config, background, observations)
        nodes = self.node_dataset(cost)
        statistics = cost.statistics
        analysis = cost.finalize()
        mish = state_to_dataset(analysis, self.grid, "mish", attrs=self._attrs())
        return AnalysisResult(analysis, nodes, mish, self._history, statistics)

    def _attrs(self) -> dict:
        cfg = self.config
        return {
            "reference_state": self.reference.name,
            "filter_lengths": list(cfg.filter_lengths),
            "mass_continuity_weight": cfg.mc_weight,
            "obs_interpolation": cfg.obs_interpolation,
        }

    def node_dataset(self, cost: CostFunction3D) -> xr.Dataset:
        """
        Analysis on the nodes with total fields, horizontal divergence and
        vertical vorticity. Derivatives come from the derivative basis tables
        and horizontal gradients of density are neglected, so both kinematic
        fields are momentum derivatives divided by the local density (1/s).
        """
        coeffs = cost.analysis_coefficients
        transform = cost.transform
        with torch.no_grad():
            nodal = transform.synthesize(coeffs, "nodes")
            ddx = transform.synthesize(coeffs, "nodes", (1, 0, 0)).cpu().numpy()
            ddy = transform.synthesize(coeffs, "nodes", (0, 1, 0)).cpu().numpy()
        ds = state_to_dataset(nodal, self.grid, "nodes", attrs=self._attrs())
        fields = {name: ds[name].values for name in VARIABLES}
        totals = self.reference.totals(fields, self.grid.z.nodes)
        for name, values in totals.items():
            ds[name] = (("x", "y", "z"), values)
        rho = totals["rho"]
        # momenta in kg m^-2 s^-1 over km
        ds["divergence"] = (("x", "y", "z"), 1.0e-3 * (ddx[0] + ddy[1]) / rho)
        ds["vorticity"] = (("x", "y", "z"), 1.0e-3 * (ddx[1] - ddy[0]) / rho)
        return ds
