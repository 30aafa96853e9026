"""
Recursive filter used as the square root of the background error covariance.

One sweep is the first order filter ``y[i] = alpha*y[i-1] + (1-alpha)*x[i]``
started from ``y[0] = (1-alpha)*x[0]``. Its matrix ``F`` is lower triangular, and
the backward sweep run from the other end is exactly ``F^T``. Each pass is a
forward sweep followed by a backward sweep, ``F^T F``, so any number of passes
stays symmetric and the filter is its own adjoint.

The impulse response of ``n`` passes has variance ``2*n*alpha/(1-alpha)^2``;
alpha is chosen so that this equals the squared length scale (grid units).
"""
import math

import torch

from splinevar.utils.errors import ConfigurationError, NumericalSetupError


def filter_coefficient(length_scale: float, passes: int) -> float:
    if length_scale <= 0.0:
        return 0.0
    e = length_scale**2 / (2.0 * passes)
    alpha = ((2.0 * e + 1.0) - math.sqrt(4.0 * e + 1.0)) / (2.0 * e)
    if not math.isfinite(alpha) or not 0.0 <= alpha < 1.0:
        raise NumericalSetupError(
            f"Recursive filter coefficient {alpha} is invalid for length scale {length_scale}"
        )
    return alpha


class RecursiveFilter:
    """
    Smoothing filter along one tensor dimension.

    Args:
        length_scale: e-folding scale in grid increments, 0 disables the filter
        passes: number of forward/backward sweep pairs
    """

    def __init__(self, length_scale: float, passes: int = 2):
        if passes < 1:
            raise ConfigurationError(f"Recursive filter needs at least one pass, got {passes}")
        self.length_scale = float(length_scale)
        self.passes = int(passes)
        self.alpha = filter_coefficient(self.length_scale, self.passes)

    @property
    def is_identity(self) -> bool:
        return self.alpha == 0.0

    def _forward_sweep(self, x: torch.Tensor) -> torch.Tensor:
        a, b = self.alpha, 1.0 - self.alpha
        y = torch.empty_like(x)
        y[0] = b * x[0]
        for i in range(1, x.size(0)):
            y[i] = a * y[i - 1] + b * x[i]
        return y

    def _backward_sweep(self, x: torch.Tensor) -> torch.Tensor:
        a, b = self.alpha, 1.0 - self.alpha
        y = torch.empty_like(x)
        n = x.size(0)
        y[n - 1] = b * x[n - 1]
        for i in range(n - 2, -1, -1):
            y[i] = a * y[i + 1] + b * x[i]
        return y

    def apply(self, x: torch.Tensor, dim: int) -> torch.Tensor:
        """Filter every line of ``x`` along ``dim``; all other dimensions are vectorised"""
        if self.is_identity:
            return x.clone()
        y = x.movedim(dim, 0)
        for _ in range(self.passes):
            y = self._backward_sweep(self._forward_sweep(y))
        return y.movedim(0, dim).contiguous()

    def apply_transpose(self, x: torch.Tensor, dim: int) -> torch.Tensor:
        """Adjoint: the transposed sweeps in reverse order, ``(F^T F)^T = F^T F``"""
        if self.is_identity:
            return x.clone()
        y = x.movedim(dim, 0)
        for _ in range(self.passes):
            # the adjoint of the backward sweep is the forward sweep and vice versa
            y = self._backward_sweep(self._forward_sweep(y))
        return y.movedim(0, dim).contiguous()
