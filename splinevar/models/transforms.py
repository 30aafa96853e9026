"""
State transforms between the control variable, spline coefficients, nodal
values and mish values, together with their exact adjoints.

All spline operators are separable: the 3-D synthesis of one variable is the
contraction of its coefficient block with one basis table per axis, and the
adjoint contracts with the transposed tables. Variables are processed one at a
time because each may carry its own boundary conditions.
"""
from typing import Optional, Sequence, Tuple

import torch

from splinevar.models.basis import BasisLookup
from splinevar.models.boundary import BoundaryTable
from splinevar.models.grid import Grid3D
from splinevar.models.recursive_filter import RecursiveFilter
from splinevar.utils.constants import NUM_VARS
from splinevar.utils.errors import NumericalSetupError
from splinevar.utils.logger import get_logger

LOGGER = get_logger(__name__)


def contract(field: torch.Tensor, mats: Sequence[torch.Tensor]) -> torch.Tensor:
    """Apply one matrix along each of the three dimensions of ``field``"""
    out = field
    for dim, mat in enumerate(mats):
        out = torch.tensordot(mat, out, dims=([1], [dim])).movedim(0, dim)
    return out


class StateTransform:
    """
    Forward/adjoint operator pairs of the analysis.

    ``filter_transform`` maps the control variable ``q`` to coefficients
    ``A = P sigma F q`` (``F`` the recursive filter, ``sigma`` the background error
    of each variable, ``P`` the boundary projection); ``synthesize`` evaluates the
    spline from ``A`` at the nodes or at the mish points.
    """

    def __init__(
        self,
        grid: Grid3D,
        bc_table: BoundaryTable,
        lookup: Optional[BasisLookup] = None,
        filter_lengths: Tuple[float, float, float] = (0.0, 0.0, 0.0),
        filter_passes: int = 2,
        bg_error: Optional[Sequence[float]] = None,
        dtype=torch.float64,
        device=None,
    ):
        self.grid = grid
        self.bc_table = bc_table
        self.dtype = dtype
        self.device = device
        self.lookup = lookup or BasisLookup(grid, bc_table, dtype=dtype, device=device)
        self.filters = tuple(RecursiveFilter(length, filter_passes) for length in filter_lengths)
        bg_error = [1.0] * NUM_VARS if bg_error is None else list(bg_error)
        self.bg_error = torch.as_tensor(bg_error, dtype=dtype, device=device)
        self._mask = self._build_mask()
        self._gram_pinv = self._setup_splines()

    def _pair(self, var: int, axis: int):
        return self.bc_table.pair(var, axis)

    def _build_mask(self) -> torch.Tensor:
        masks = []
        for v in range(NUM_VARS):
            ax = [self.lookup.active(a, self._pair(v, a)) for a in range(3)]
            masks.append(ax[0][:, None, None] & ax[1][None, :, None] & ax[2][None, None, :])
        return torch.stack(masks).to(self.dtype)

    def _setup_splines(self):
        """Pseudo-inverse of the per-axis Gram matrices used by the least squares refit"""
        pinv = {}
        for a, axis in enumerate(self.grid.axes):
            for bc in self.bc_table.unique_pairs(a):
                S = self.lookup.table(a, bc, 0, "mish")
                gram = axis.quadrature_weight * S.T @ S
                inv = torch.linalg.pinv(gram, hermitian=True)
                if not torch.isfinite(inv).all():
                    raise NumericalSetupError(f"Spline setup failed on axis {axis.name}")
                pinv[(a, bc)] = inv
        return pinv

    def _tables(self, var: int, target: str, derivative, transpose: bool = False):
        mats = []
        for a in range(3):
            t = self.lookup.table(a, self._pair(var, a), derivative[a], target)
            mats.append(t.T if transpose else t)
        return mats

    def _output_shape(self, target: str):
        return self.grid.mish_shape if target == "mish" else self.grid.node_shape

    def synthesize(self, A: torch.Tensor, target: str = "mish", derivative=(0, 0, 0)) -> torch.Tensor:
        """Evaluate the spline with coefficients ``A`` [var, x, y, z] at the mish or the nodes"""
        out = A.new_zeros((NUM_VARS,) + self._output_shape(target))
        for v in range(NUM_VARS):
            out[v] = contract(A[v], self._tables(v, target, derivative))
        return out

    def synthesize_transpose(self, U: torch.Tensor, target: str = "mish", derivative=(0, 0, 0)) -> torch.Tensor:
        """Adjoint of :meth:`synthesize`, scatters point values back onto the coefficients"""
        out = U.new_zeros((NUM_VARS,) + self.grid.node_shape)
        for v in range(NUM_VARS):
            out[v] = contract(U[v], self._tables(v, target, derivative, transpose=True))
        return out

    def solve_bc(self, A: torch.Tensor) -> torch.Tensor:
        """Overwrite coefficients eliminated by the boundary conditions with zero"""
        return A * self._mask

    def _filter(self, x: torch.Tensor, transpose: bool) -> torch.Tensor:
        out = x
        order = range(2, -1, -1) if transpose else range(3)
        for a in order:
            f = self.filters[a]
            # dimension 0 holds the variables
            out = f.apply_transpose(out, a + 1) if transpose else f.apply(out, a + 1)
        return out

    def filter_transform(self, q: torch.Tensor) -> torch.Tensor:
        """Control variable to spline coefficients"""
        c = self._filter(q, transpose=False) * self.bg_error[:, None, None, None]
        return self.solve_bc(c)

    def filter_transpose(self, g: torch.Tensor) -> torch.Tensor:
        """Adjoint of :meth:`filter_transform`"""
        c = self.solve_bc(g) * self.bg_error[:, None, None, None]
        return self._filter(c, transpose=True)

    def project(self, U: torch.Tensor) -> torch.Tensor:
        """Gauss quadrature projection of mish values onto each basis function"""
        w = [axis.quadrature_weight for axis in self.grid.axes]
        return self.synthesize_transpose(U, "mish") * (w[0] * w[1] * w[2])

    def fit(self, U: torch.Tensor) -> torch.Tensor:
        """Least squares spline coefficients reproducing the mish values ``U``"""
        B = self.project(U)
        out = torch.zeros_like(B)
        for v in range(NUM_VARS):
            mats = [self._gram_pinv[(a, self._pair(v, a))] for a in range(3)]
            out[v] = contract(B[v], mats)
        return self.solve_bc(out)
