"""
Observation operator ``H`` and its adjoint.

Each observation is reduced to a sparse stencil of (flat grid index, weight)
pairs built once at initialisation:

* ``linear``: trilinear interpolation from the 8 mish points surrounding the
  observation, applied to the mish state.
* ``spline``: the boundary-modified cubic basis evaluated at the observation,
  4 nodes per axis and 64 coefficients per observation, applied to the
  coefficient state. Because the basis depends on the boundary conditions the
  stencil is built per group of variables sharing the same conditions.

The forward operator gathers, the adjoint scatters with ``index_add_`` so that
contributions of many observations to the same point are summed without
conflicts.
"""
from typing import Dict, List, Tuple

import numpy as np
import torch

from splinevar.data.observations import ObservationSet
from splinevar.models.basis import basis_matrix
from splinevar.models.boundary import BoundaryTable
from splinevar.models.grid import Grid3D
from splinevar.utils.constants import NUM_VARS
from splinevar.utils.errors import ConfigurationError
from splinevar.utils.logger import get_logger

LOGGER = get_logger(__name__)

MODES = ("linear", "spline")


def _linear_stencil(coords: np.ndarray, points: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Two point linear interpolation stencil on a monotonic, possibly irregular axis"""
    idx = np.searchsorted(points, coords, side="right") - 1
    idx = np.clip(idx, 0, points.size - 2)
    t = (coords - points[idx]) / (points[idx + 1] - points[idx])
    # beyond the outermost Gauss points the edge value is held
    t = np.clip(t, 0.0, 1.0)
    return np.stack([idx, idx + 1], axis=1), np.stack([1.0 - t, t], axis=1)


def _spline_stencil(coords: np.ndarray, axis, bc, lam: float) -> Tuple[np.ndarray, np.ndarray]:
    """Four nonzero boundary-modified basis values per coordinate"""
    values = basis_matrix(coords, axis, bc, 0, lam)
    k = min(4, values.shape[1])
    idx = np.argsort(-np.abs(values), axis=1, kind="stable")[:, :k]
    return idx, np.take_along_axis(values, idx, axis=1)


def _combine(stencils, shape) -> Tuple[np.ndarray, np.ndarray]:
    """Outer product of the per-axis stencils into flat C-order indices"""
    (ix, wx), (iy, wy), (iz, wz) = stencils
    n = ix.shape[0]
    width = ix.shape[1] * iy.shape[1] * iz.shape[1]
    flat = (ix[:, :, None, None] * shape[1] + iy[:, None, :, None]) * shape[2] + iz[:, None, None, :]
    weight = wx[:, :, None, None] * wy[:, None, :, None] * wz[:, None, None, :]
    return flat.reshape(n, width), weight.reshape(n, width)


class ObservationOperator:
    """
    Args:
        grid: analysis grid
        observations: observations already restricted to the usable domain
        bc_table: boundary conditions, needed by the ``spline`` mode
        mode: ``linear`` (mish state) or ``spline`` (coefficient state)
    """

    def __init__(
        self,
        grid: Grid3D,
        observations: ObservationSet,
        bc_table: BoundaryTable = None,
        mode: str = "linear",
        dtype=torch.float64,
        device=None,
    ):
        if mode not in MODES:
            raise ConfigurationError(f"Unknown observation interpolation {mode!r}, expected one of {MODES}")
        if mode == "spline" and bc_table is None:
            raise ConfigurationError("Spline observation interpolation needs the boundary table")
        self.grid = grid
        self.mode = mode
        self.observations = observations
        self.dtype = dtype
        self.device = device
        self.inverse_error = observations.inverse_error.to(dtype=dtype, device=device)
        self.projection = observations.weights.to(dtype=dtype, device=device)
        self.values = observations.values.to(dtype=dtype, device=device)
        pos = observations.positions.cpu().numpy()
        if mode == "linear":
            self.state_shape = grid.mish_shape
            stencils = [_linear_stencil(pos[:, a], axis.mish) for a, axis in enumerate(grid.axes)]
            index, weight = _combine(stencils, self.state_shape)
            self._groups = [(list(range(NUM_VARS)), self._rows(np.ones(len(pos), dtype=bool)), index, weight)]
        else:
            self.state_shape = grid.node_shape
            self._groups = self._spline_groups(pos, bc_table)
        self._groups = [
            (
                vars_,
                rows,
                torch.as_tensor(index, dtype=torch.long, device=device),
                torch.as_tensor(weight, dtype=dtype, device=device),
            )
            for vars_, rows, index, weight in self._groups
        ]
        LOGGER.info("Observation operator (%s) over %d observations", mode, len(observations))

    def _rows(self, mask: np.ndarray) -> torch.Tensor:
        return torch.as_tensor(np.nonzero(mask)[0], dtype=torch.long, device=self.device)

    def _spline_groups(self, pos: np.ndarray, bc_table: BoundaryTable) -> List:
        by_bc: Dict[Tuple, List[int]] = {}
        for v in range(NUM_VARS):
            key = tuple(bc_table.pair(v, a) for a in range(3))
            by_bc.setdefault(key, []).append(v)
        weights = self.projection.cpu().numpy()
        groups = []
        for key, vars_ in by_bc.items():
            mask = np.any(weights[:, vars_] != 0.0, axis=1)
            if not mask.any():
                continue
            sub = pos[mask]
            stencils = [
                _spline_stencil(sub[:, a], axis, key[a], bc_table.lam) for a, axis in enumerate(self.grid.axes)
            ]
            index, weight = _combine(stencils, self.state_shape)
            groups.append((vars_, self._rows(mask), index, weight))
        return groups

    def __len__(self) -> int:
        return len(self.values)

    def forward(self, state: torch.Tensor) -> torch.Tensor:
        """Model equivalent of every observation from a [var, x, y, z] state"""
        out = state.new_zeros(len(self))
        flat = state.reshape(NUM_VARS, -1)
        for vars_, rows, index, weight in self._groups:
            for v in vars_:
                interp = (flat[v][index] * weight).sum(dim=1)
                out.index_add_(0, rows, interp * self.projection[rows, v])
        return out

    def adjoint(self, y: torch.Tensor) -> torch.Tensor:
        """Scatter per-observation sensitivities back onto the state"""
        flat = y.new_zeros((NUM_VARS, int(np.prod(self.state_shape))))
        for vars_, rows, index, weight in self._groups:
            for v in vars_:
                contrib = (y[rows] * self.projection[rows, v])[:, None] * weight
                flat[v].index_add_(0, index.reshape(-1), contrib.reshape(-1))
        return flat.reshape((NUM_VARS,) + tuple(self.state_shape))

    def innovation(self, background: torch.Tensor) -> torch.Tensor:
        """Observation minus the background equivalent"""
        return self.values - self.forward(background)
