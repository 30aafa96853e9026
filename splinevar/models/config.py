from dataclasses import dataclass, field, replace
from typing import Any, Dict, Mapping, Optional, Tuple

from splinevar.models.boundary import BoundaryTable
from splinevar.utils.config import YAMLConfig
from splinevar.utils.constants import NUM_VARS
from splinevar.utils.errors import ConfigurationError


@dataclass(frozen=True)
class AnalysisConfig:
    """
    Configuration of one variational analysis.

    Attributes:
        xmin, xmax, xincr: x axis bounds and node increment (km)
        ymin, ymax, yincr: y axis bounds and node increment (km)
        zmin, zmax, zincr: z axis bounds and node increment (km)
        horizontal_bc: boundary condition of every variable on both x and y edges
        vertical_bc: boundary condition of every variable on both z edges
        boundary_conditions: per variable overrides, ``{var: {axis: (left, right)}}``
        bc_lambda: coefficient of the mixed R1T10 condition
        x_filter, y_filter, z_filter: recursive filter length scales in grid increments
        filter_passes: number of forward/backward filter sweep pairs
        bg_error: background error standard deviation of each variable
        mc_weight: weight of the mass continuity penalty, 0 disables it
        max_iterations: iteration cap of the minimizer
        gradient_tolerance: convergence when |grad| <= tolerance * max(1, |grad_0|)
        cost_tolerance: convergence when the relative cost decrease falls below it
        outer_loops: number of outer loop passes
        obs_interpolation: ``linear`` mish interpolation or ``spline`` basis evaluation
        reference_state: name of the reference sounding
        adjust_background: run a background adjustment pass before the analysis
        background_roi: radius of influence used to grid background estimates (km)
        num_threads: intra-op threads for torch, None keeps the default
        device: torch device of the state buffers
    """

    xmin: float = 0.0
    xmax: float = 10.0
    xincr: float = 1.0
    ymin: float = 0.0
    ymax: float = 10.0
    yincr: float = 1.0
    zmin: float = 0.0
    zmax: float = 10.0
    zincr: float = 1.0

    horizontal_bc: str = "R1T1"
    vertical_bc: str = "R1T1"
    boundary_conditions: Dict[str, Dict[str, Tuple[str, str]]] = field(default_factory=dict)
    bc_lambda: float = 0.0

    x_filter: float = 2.0
    y_filter: float = 2.0
    z_filter: float = 2.0
    filter_passes: int = 2
    bg_error: Tuple[float, ...] = (1.0,) * NUM_VARS

    mc_weight: float = 0.0
    max_iterations: int = 100
    gradient_tolerance: float = 1e-6
    cost_tolerance: float = 1e-12
    outer_loops: int = 1

    obs_interpolation: str = "linear"
    reference_state: str = "jordan"
    adjust_background: bool = False
    background_roi: float = 0.0

    num_threads: Optional[int] = None
    device: str = "cpu"

    def __post_init__(self):
        """Validate values and normalise sequences after object creation"""
        object.__setattr__(self, "bg_error", tuple(float(e) for e in self.bg_error))
        if len(self.bg_error) != NUM_VARS:
            raise ConfigurationError(f"bg_error needs {NUM_VARS} values, got {len(self.bg_error)}")
        if any(e < 0 for e in self.bg_error):
            raise ConfigurationError("bg_error values must be non-negative")
        for name in ("x_filter", "y_filter", "z_filter", "mc_weight", "background_roi"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must be non-negative")
        for name in ("max_iterations", "outer_loops", "filter_passes"):
            value = getattr(self, name)
            if not (isinstance(value, int) and value >= 1):
                raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")
        if self.obs_interpolation not in ("linear", "spline"):
            raise ConfigurationError(f"Unknown obs_interpolation {self.obs_interpolation!r}")
        # parse eagerly so unknown tags fail at construction
        self.bc_table()

    @property
    def bounds(self):
        return (
            (self.xmin, self.xmax, self.xincr),
            (self.ymin, self.ymax, self.yincr),
            (self.zmin, self.zmax, self.zincr),
        )

    @property
    def filter_lengths(self) -> Tuple[float, float, float]:
        return (self.x_filter, self.y_filter, self.z_filter)

    def bc_table(self) -> BoundaryTable:
        return BoundaryTable.build(
            self.horizontal_bc, self.vertical_bc, self.boundary_conditions, self.bc_lambda
        )

    def zero_bc_axes(self) -> Tuple[bool, bool, bool]:
        table = self.bc_table()
        return tuple(table.has_zero_bc(a) for a in range(3))

    def with_horizontal_filter(self, length: float) -> "AnalysisConfig":
        """Copy of the configuration with a different horizontal filter length"""
        return replace(self, x_filter=float(length), y_filter=float(length))

    @classmethod
    def from_dict(cls, cfg: Mapping[str, Any]) -> "AnalysisConfig":
        """Build from a nested mapping laid out like the YAML file"""
        c = YAMLConfig.from_mapping(cfg)
        kwargs = {}
        for axis in ("x", "y", "z"):
            for key in ("min", "max", "incr"):
                value = c.get(f"grid:{axis}:{key}")
                if value is not None:
                    kwargs[f"{axis}{key}"] = float(value)
            value = c.get(f"filter:{axis}")
            if value is not None:
                kwargs[f"{axis}_filter"] = float(value)
        mapping = {
            "boundary:horizontal": "horizontal_bc",
            "boundary:vertical": "vertical_bc",
            "boundary:lambda": "bc_lambda",
            "filter:passes": "filter_passes",
            "background:error": "bg_error",
            "background:adjust": "adjust_background",
            "background:roi": "background_roi",
            "mass_continuity_weight": "mc_weight",
            "minimizer:max_iterations": "max_iterations",
            "minimizer:gradient_tolerance": "gradient_tolerance",
            "minimizer:cost_tolerance": "cost_tolerance",
            "minimizer:outer_loops": "outer_loops",
            "observations:interpolation": "obs_interpolation",
            "reference_state": "reference_state",
            "runtime:num_threads": "num_threads",
            "runtime:device": "device",
        }
        for key, name in mapping.items():
            value = c.get(key)
            if value is not None:
                kwargs[name] = value
        overrides = c.get("boundary:variables")
        if overrides:
            kwargs["boundary_conditions"] = {
                var: {axis: tuple(tags) if not isinstance(tags, str) else (tags, tags) for axis, tags in axes.items()}
                for var, axes in overrides.items()
            }
        if isinstance(kwargs.get("bg_error"), (int, float)):
            kwargs["bg_error"] = (float(kwargs["bg_error"]),) * NUM_VARS
        return cls(**kwargs)

    @classmethod
    def from_yaml(cls, path: str) -> "AnalysisConfig":
        return cls.from_dict(YAMLConfig(path).to_dict())
