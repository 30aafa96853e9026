import math

import pytest
import torch

from splinevar.models.recursive_filter import RecursiveFilter, filter_coefficient
from splinevar.utils.errors import ConfigurationError, NumericalSetupError


def test_zero_length_is_identity():
    """A zero length scale leaves the input unchanged."""
    x = torch.randn(5, 8, dtype=torch.float64)
    f = RecursiveFilter(0.0)
    assert f.is_identity
    assert torch.equal(f.apply(x, 1), x)


def test_coefficient():
    """The smoothing coefficient reproduces the requested variance."""
    for length, passes in [(1.0, 1), (2.0, 2), (4.0, 4)]:
        alpha = filter_coefficient(length, passes)
        assert 0.0 < alpha < 1.0
        assert math.isclose(2 * passes * alpha / (1 - alpha) ** 2, length**2)
    with pytest.raises(ConfigurationError, match="at least one pass"):
        RecursiveFilter(2.0, passes=0)


def test_non_finite_length_scale():
    """A length scale that gives no finite coefficient is rejected at setup."""
    for length in (float("nan"), float("inf")):
        with pytest.raises(NumericalSetupError, match="coefficient"):
            RecursiveFilter(length)


def test_filter_is_self_adjoint():
    """<F x, y> == <x, F^T y> along every dimension."""
    torch.manual_seed(0)
    f = RecursiveFilter(2.5, passes=2)
    x = torch.randn(6, 7, 8, dtype=torch.float64)
    y = torch.randn(6, 7, 8, dtype=torch.float64)
    for dim in range(3):
        lhs = (f.apply(x, dim) * y).sum()
        rhs = (x * f.apply_transpose(y, dim)).sum()
        assert torch.isclose(lhs, rhs, rtol=1e-12)
        # F^T F is symmetric, so the transpose equals the forward filter
        assert torch.allclose(f.apply(y, dim), f.apply_transpose(y, dim))


def test_filter_smooths():
    """An impulse spreads symmetrically with decaying amplitude."""
    x = torch.zeros(41, dtype=torch.float64)
    x[20] = 1.0
    y = RecursiveFilter(3.0, passes=4).apply(x, 0)
    assert y[20] < 1.0
    assert torch.isclose(y[19], y[21], rtol=1e-10)
    assert (y[20:30] > 0).all() and (torch.diff(y[20:30]) < 0).all()
