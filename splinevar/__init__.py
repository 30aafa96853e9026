"""Main import for the spline variational analysis"""

from .data.observations import Observation, ObservationSet, ObservationType
from .driver import AnalysisResult, VarDriver
from .models.config import AnalysisConfig
from .models.cost_function import CostFunction3D, CostState
