"""
Grid metadata for the analysis domain.

Each axis carries its bounds, increment and node count. The analysis state
lives on the nodes, while the background field and the observation operator
are defined on the "mish": two Gauss points per cell per axis, eight sub-points
per 3-D cell.
"""
import math
from dataclasses import dataclass, replace
from typing import Tuple

import numpy as np

from splinevar.utils.constants import AXES, GAUSS_OFFSET, MIN_NODES, MISH_POINTS_PER_CELL, NUM_VARS
from splinevar.utils.errors import ConfigurationError
from splinevar.utils.logger import get_logger

LOGGER = get_logger(__name__)


@dataclass(frozen=True)
class GridAxis:
    name: str
    min: float
    max: float
    incr: float
    guard: bool = False

    def __post_init__(self):
        if not (self.incr > 0 and math.isfinite(self.incr)):
            raise ConfigurationError(f"{self.name} increment must be positive, got {self.incr}")
        if not self.max > self.min:
            raise ConfigurationError(f"{self.name} max ({self.max}) must exceed min ({self.min})")
        if self.num_nodes < MIN_NODES:
            raise ConfigurationError(
                f"{self.name} dimension has {self.num_nodes} nodes, the basis and recursive "
                f"filter stencil needs at least {MIN_NODES}"
            )

    @property
    def num_nodes(self) -> int:
        return int(math.floor((self.max - self.min) / self.incr + 1e-6)) + 1

    @property
    def num_cells(self) -> int:
        return self.num_nodes - 1

    @property
    def num_mish(self) -> int:
        return MISH_POINTS_PER_CELL * self.num_cells

    @property
    def nodes(self) -> np.ndarray:
        return self.min + self.incr * np.arange(self.num_nodes, dtype=np.float64)

    @property
    def last(self) -> float:
        """Last node, short of max when the extent is not a whole number of increments"""
        return self.min + self.incr * self.num_cells

    @property
    def mish(self) -> np.ndarray:
        """Gauss point coordinates, ordered (cell, offset) with the negative offset first"""
        cells = np.arange(self.num_cells, dtype=np.float64)
        offsets = np.array([-GAUSS_OFFSET, GAUSS_OFFSET])
        return (self.min + self.incr * (cells[:, None] + 0.5 + offsets[None, :])).reshape(-1)

    @property
    def quadrature_weight(self) -> float:
        # two point Gauss-Legendre rule on a cell of width incr
        return 0.5 * self.incr

    def with_ghost_margin(self) -> "GridAxis":
        """Extend the axis by one increment on each side for a zero boundary condition"""
        return replace(self, min=self.min - self.incr, max=self.max + self.incr, guard=True)

    def usable(self, coords: np.ndarray) -> np.ndarray:
        """Mask of coordinates that may be assimilated on this axis"""
        eps = 1e-9 * self.incr
        inside = (coords >= self.min - eps) & (coords <= self.last + eps)
        if self.guard:
            inside &= (coords >= self.min + self.incr - eps) & (coords <= self.last - self.incr + eps)
        return inside


@dataclass(frozen=True)
class Grid3D:
    x: GridAxis
    y: GridAxis
    z: GridAxis

    @classmethod
    def from_bounds(cls, bounds, zero_bc=(False, False, False)) -> "Grid3D":
        """
        Build the internal grid, extending every axis that carries a zero boundary
        condition by a ghost margin before any state sizing happens.

        Args:
            bounds: three (min, max, increment) triples for x, y and z
            zero_bc: per axis flag, True when R0 is requested on that axis
        """
        axes = []
        for name, (lo, hi, incr), zero in zip(AXES, bounds, zero_bc):
            axis = GridAxis(name, float(lo), float(hi), float(incr))
            if zero:
                axis = axis.with_ghost_margin()
            axes.append(axis)
        grid = cls(*axes)
        LOGGER.info(
            "Grid nodes %s, mish %s, ghost margins %s",
            grid.node_shape,
            grid.mish_shape,
            tuple(a.guard for a in grid.axes),
        )
        return grid

    @property
    def axes(self) -> Tuple[GridAxis, GridAxis, GridAxis]:
        return (self.x, self.y, self.z)

    @property
    def node_shape(self) -> Tuple[int, int, int]:
        return tuple(a.num_nodes for a in self.axes)

    @property
    def mish_shape(self) -> Tuple[int, int, int]:
        return tuple(a.num_mish for a in self.axes)

    @property
    def state_size(self) -> int:
        return NUM_VARS * int(np.prod(self.node_shape))

    @property
    def mish_size(self) -> int:
        return NUM_VARS * int(np.prod(self.mish_shape))

    def usable(self, x: np.ndarray, y: np.ndarray, z: np.ndarray) -> np.ndarray:
        """Mask of positions inside the domain and outside every guard band"""
        return self.x.usable(x) & self.y.usable(y) & self.z.usable(z)
