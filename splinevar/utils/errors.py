"""Exceptions and warnings raised by the analysis engine"""


class ConfigurationError(ValueError):
    """Invalid grid, boundary condition, reference state or option value."""


class NumericalSetupError(ArithmeticError):
    """Filter or spline setup produced a non-finite result."""


class StateError(RuntimeError):
    """A cost function operation was called out of lifecycle order."""


class DivergenceWarning(RuntimeWarning):
    """The cost did not decrease between minimizer iterations."""
