"""Logging, configuration, validation and errors"""

from .errors import ConfigurationError, DivergenceWarning, NumericalSetupError, StateError
from .logger import get_logger
