"""
Cubic B-spline basis functions and the cached lookup of their values.

The free basis function of node ``m`` is the cardinal cubic B-spline centred on
``xmin + m*dx`` with support ``[-2dx, 2dx]``. Boundary-modified values fold the
exterior nodes ``-1`` and ``M+1`` into the retained ones through the reduction
matrix of :mod:`splinevar.models.boundary`.

Basis evaluation sits on the hot path of every transform, so values at all mish
points (and at the nodes) are precomputed once per grid for every derivative
order and boundary pair actually used, and transforms only contract against
those tables.
"""
from typing import Dict, Tuple

import numpy as np
import torch

from splinevar.models.boundary import BCPair, BoundaryCondition, BoundaryTable, eliminated_nodes, reduction_matrix
from splinevar.models.grid import Grid3D, GridAxis
from splinevar.utils.errors import NumericalSetupError
from splinevar.utils.logger import get_logger

LOGGER = get_logger(__name__)

MAX_DERIVATIVE = 2


def _cubic(t: np.ndarray, derivative: int) -> np.ndarray:
    """Cardinal cubic B-spline in units of the node spacing"""
    a = np.abs(t)
    s = np.sign(t)
    out = np.zeros_like(a)
    inner = a < 1.0
    outer = (a >= 1.0) & (a < 2.0)
    r = 2.0 - a
    if derivative == 0:
        out[inner] = 2.0 / 3.0 - a[inner] ** 2 + 0.5 * a[inner] ** 3
        out[outer] = r[outer] ** 3 / 6.0
    elif derivative == 1:
        out[inner] = s[inner] * (-2.0 * a[inner] + 1.5 * a[inner] ** 2)
        out[outer] = -s[outer] * 0.5 * r[outer] ** 2
    elif derivative == 2:
        out[inner] = -2.0 + 3.0 * a[inner]
        out[outer] = r[outer]
    else:
        raise ValueError(f"Expected derivative order 0..{MAX_DERIVATIVE}, got {derivative}")
    return out


def basis(m, x, xmin: float, dx: float, derivative: int = 0) -> np.ndarray:
    """
    Free cubic B-spline of node ``m`` (or its derivative) evaluated at ``x``.

    Args:
        m: node index, may lie outside ``0..M`` for exterior nodes
        x: coordinates
        xmin: coordinate of node 0
        dx: node spacing
        derivative: 0, 1 or 2

    Returns:
        Array broadcast from ``m`` and ``x``
    """
    t = (np.asarray(x, dtype=np.float64) - xmin) / dx - np.asarray(m, dtype=np.float64)
    return _cubic(t, derivative) / dx**derivative


def basis_matrix(
    x,
    axis: GridAxis,
    bc: BCPair,
    derivative: int = 0,
    lam: float = 0.0,
) -> np.ndarray:
    """
    Boundary-modified basis of every node of ``axis`` at the coordinates ``x``.

    Returns:
        Array of shape [len(x), num_nodes]
    """
    x = np.atleast_1d(np.asarray(x, dtype=np.float64))
    n = axis.num_nodes
    R = reduction_matrix(n, axis.incr, bc[0], bc[1], lam)
    extended = np.arange(-1, n + 1)
    phi = basis(extended[None, :], x[:, None], axis.min, axis.incr, derivative)
    return phi @ R


def basis_bc(
    m: int,
    x,
    axis: GridAxis,
    bc: BCPair,
    derivative: int = 0,
    lam: float = 0.0,
) -> np.ndarray:
    """
    Value of the boundary-modified basis function of node ``m`` at ``x``: the free
    value plus the contribution of every exterior node folded onto ``m``.
    """
    x = np.atleast_1d(np.asarray(x, dtype=np.float64))
    R = reduction_matrix(axis.num_nodes, axis.incr, bc[0], bc[1], lam)
    value = np.zeros_like(x)
    for e in np.nonzero(R[:, m])[0]:
        value += R[e, m] * basis(e - 1, x, axis.min, axis.incr, derivative)
    return value


class BasisLookup:
    """
    Precomputed boundary-modified basis values.

    ``table(axis, bc, derivative, target)`` is a tensor of shape
    ``[num_points, num_nodes]`` indexed by (mish point or node, node); the full
    arena is keyed by (axis, boundary pair, derivative order, target).
    """

    def __init__(self, grid: Grid3D, bc_table: BoundaryTable, dtype=torch.float64, device=None):
        self.grid = grid
        self.bc_table = bc_table
        self.dtype = dtype
        self.device = device
        self._tables: Dict[Tuple[int, BCPair, int, str], torch.Tensor] = {}
        self._active: Dict[Tuple[int, BCPair], torch.Tensor] = {}
        self._fill()

    def _fill(self):
        lam = self.bc_table.lam
        for a, axis in enumerate(self.grid.axes):
            for bc in self.bc_table.unique_pairs(a):
                R = reduction_matrix(axis.num_nodes, axis.incr, bc[0], bc[1], lam)
                self._active[(a, bc)] = torch.as_tensor(
                    ~eliminated_nodes(R), dtype=torch.bool, device=self.device
                )
                for target, coords in (("mish", axis.mish), ("nodes", axis.nodes)):
                    for d in range(MAX_DERIVATIVE + 1):
                        values = basis_matrix(coords, axis, bc, d, lam)
                        if not np.all(np.isfinite(values)):
                            raise NumericalSetupError(
                                f"Non-finite basis values on {axis.name} for {bc[0].name}/{bc[1].name}"
                            )
                        self._tables[(a, bc, d, target)] = torch.as_tensor(
                            values, dtype=self.dtype, device=self.device
                        )
        LOGGER.debug("Filled %d basis lookup tables", len(self._tables))

    def table(self, axis: int, bc: BCPair, derivative: int = 0, target: str = "mish") -> torch.Tensor:
        return self._tables[(axis, bc, derivative, target)]

    def active(self, axis: int, bc: BCPair) -> torch.Tensor:
        """Mask of coefficients that survive the boundary condition on ``axis``"""
        return self._active[(axis, bc)]

    def __len__(self) -> int:
        return len(self._tables)
