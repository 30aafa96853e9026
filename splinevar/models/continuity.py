"""
Weak anelastic mass continuity constraint.

The momentum variables are density weighted, so the continuity residual is
the divergence ``d(rhou)/dx + d(rhov)/dy + d(rhow)/dz`` on the mish, taken with
finite differences on the (irregular) Gauss point spacing.
"""
import numpy as np
import torch

from splinevar.models.grid import Grid3D
from splinevar.utils.constants import NUM_VARS


def difference_matrix(points: np.ndarray) -> np.ndarray:
    """First derivative on irregular points: centred in the interior, one-sided at the ends"""
    n = points.size
    D = np.zeros((n, n), dtype=np.float64)
    h = np.diff(points)
    D[0, 0], D[0, 1] = -1.0 / h[0], 1.0 / h[0]
    D[-1, -2], D[-1, -1] = -1.0 / h[-1], 1.0 / h[-1]
    for i in range(1, n - 1):
        h1, h2 = h[i - 1], h[i]
        D[i, i - 1] = -h2 / (h1 * (h1 + h2))
        D[i, i] = (h2 - h1) / (h1 * h2)
        D[i, i + 1] = h1 / (h2 * (h1 + h2))
    return D


def _along(field: torch.Tensor, mat: torch.Tensor, dim: int) -> torch.Tensor:
    return torch.tensordot(mat, field, dims=([1], [dim])).movedim(0, dim)


class MassContinuity:
    def __init__(self, grid: Grid3D, weight: float, dtype=torch.float64, device=None):
        self.grid = grid
        self.weight = float(weight)
        self._diff = [torch.as_tensor(difference_matrix(a.mish), dtype=dtype, device=device) for a in grid.axes]

    @property
    def enabled(self) -> bool:
        return self.weight > 0.0

    def residual(self, U: torch.Tensor) -> torch.Tensor:
        return sum(_along(U[a], self._diff[a], a) for a in range(3))

    def residual_transpose(self, r: torch.Tensor) -> torch.Tensor:
        out = r.new_zeros((NUM_VARS,) + tuple(r.shape))
        for a in range(3):
            out[a] = _along(r, self._diff[a].T, a)
        return out

    def cost(self, U: torch.Tensor) -> torch.Tensor:
        r = self.residual(U)
        return self.weight * (r * r).sum()

    def gradient(self, U: torch.Tensor) -> torch.Tensor:
        return 2.0 * self.weight * self.residual_transpose(self.residual(U))
