import numpy as np
import pytest
import torch

from splinevar.data.observations import Observation, ObservationSet, ObservationType
from splinevar.models.config import AnalysisConfig
from splinevar.models.grid import Grid3D
from splinevar.utils.constants import NUM_VARS


def random_observations(grid: Grid3D, count: int = 20, seed: int = 0) -> ObservationSet:
    """Observations of random variables at random positions well inside the grid"""
    rng = np.random.default_rng(seed)
    obs = []
    for _ in range(count):
        pos = [rng.uniform(a.min + a.incr, a.max - a.incr) for a in grid.axes]
        weights = np.zeros(NUM_VARS)
        weights[rng.integers(NUM_VARS)] = 1.0
        # a few wind projections like Doppler radials
        if rng.uniform() < 0.3:
            weights[:3] = rng.normal(size=3)
        obs.append(
            Observation(
                float(rng.normal()),
                float(rng.uniform(0.5, 2.0)),
                *pos,
                type=int(rng.choice([ObservationType.DROPSONDE, ObservationType.RADAR])),
                weights=weights,
            )
        )
    return ObservationSet.from_observations(obs)


@pytest.fixture
def small_config():
    """A 6x6x6 node analysis"""
    return AnalysisConfig(
        xmin=0.0, xmax=5.0, xincr=1.0,
        ymin=0.0, ymax=5.0, yincr=1.0,
        zmin=0.5, zmax=3.0, zincr=0.5,
        x_filter=1.5, y_filter=1.5, z_filter=1.0,
        max_iterations=50,
    )


@pytest.fixture
def small_grid(small_config):
    return Grid3D.from_bounds(small_config.bounds, small_config.zero_bc_axes())


@pytest.fixture
def observations(small_grid):
    return random_observations(small_grid)


@pytest.fixture
def rng():
    torch.manual_seed(1234)
    return np.random.default_rng(1234)


@pytest.fixture
def observation_factory():
    return random_observations
