"""Models"""

from .boundary import BoundaryCondition, BoundaryTable
from .grid import Grid3D, GridAxis
from .basis import BasisLookup
from .recursive_filter import RecursiveFilter
from .transforms import StateTransform
from .config import AnalysisConfig
from .continuity import MassContinuity
from .observation_operator import ObservationOperator
from .reference_state import ReferenceState
from .cost_function import CostFunction3D, CostState
