import pytest
import yaml

from splinevar.models.boundary import BoundaryCondition
from splinevar.models.config import AnalysisConfig
from splinevar.utils.config import YAMLConfig
from splinevar.utils.errors import ConfigurationError

CONFIG = {
    "grid": {
        "x": {"min": -10.0, "max": 10.0, "incr": 2.0},
        "y": {"min": -8.0, "max": 8.0, "incr": 2.0},
        "z": {"min": 0.5, "max": 5.0, "incr": 0.5},
    },
    "boundary": {
        "horizontal": "R0",
        "vertical": "R1T2",
        "variables": {"rhow": {"z": ["R1T0", "R1T0"]}, "qr": {"x": "R1T1"}},
    },
    "filter": {"x": 3.0, "y": 3.0, "z": 1.0, "passes": 4},
    "background": {"error": 2.0, "roi": 12.0},
    "mass_continuity_weight": 0.5,
    "minimizer": {"max_iterations": 25, "outer_loops": 2},
    "observations": {"interpolation": "spline"},
    "runtime": {"num_threads": 2},
}


def test_from_dict():
    """Nested keys map onto the configuration fields."""
    cfg = AnalysisConfig.from_dict(CONFIG)
    assert cfg.bounds == ((-10.0, 10.0, 2.0), (-8.0, 8.0, 2.0), (0.5, 5.0, 0.5))
    assert cfg.filter_lengths == (3.0, 3.0, 1.0)
    assert cfg.filter_passes == 4
    assert cfg.bg_error == (2.0,) * 7
    assert cfg.mc_weight == 0.5
    assert cfg.outer_loops == 2 and cfg.max_iterations == 25
    assert cfg.obs_interpolation == "spline"
    assert cfg.num_threads == 2
    table = cfg.bc_table()
    assert table.pair(2, 2) == (BoundaryCondition.R1T0, BoundaryCondition.R1T0)
    assert table.pair(6, 0) == (BoundaryCondition.R1T1, BoundaryCondition.R1T1)
    assert cfg.zero_bc_axes() == (True, True, False)


def test_from_yaml(tmp_path):
    """A YAML file gives the same configuration as the mapping."""
    path = tmp_path / "analysis.yaml"
    path.write_text(yaml.safe_dump(CONFIG))
    assert AnalysisConfig.from_yaml(str(path)) == AnalysisConfig.from_dict(CONFIG)


def test_yaml_config_keys(tmp_path):
    """Colon separated keys reach nested values, missing keys raise KeyError."""
    path = tmp_path / "analysis.yaml"
    path.write_text(yaml.safe_dump(CONFIG))
    c = YAMLConfig(str(path))
    assert c["grid:x:incr"] == 2.0
    assert "filter:passes" in c
    assert "filter:t" not in c
    assert c.get("minimizer:cost_tolerance", 1e-9) == 1e-9
    assert len(c) == len(CONFIG)
    with pytest.raises(KeyError):
        c["grid:w:min"]


def test_invalid_values():
    """Invalid values are configuration errors at construction."""
    with pytest.raises(ConfigurationError, match="bg_error needs 7"):
        AnalysisConfig(bg_error=(1.0, 1.0))
    with pytest.raises(ConfigurationError, match="non-negative"):
        AnalysisConfig(x_filter=-1.0)
    with pytest.raises(ConfigurationError, match="max_iterations"):
        AnalysisConfig(max_iterations=0)
    with pytest.raises(ConfigurationError, match="obs_interpolation"):
        AnalysisConfig(obs_interpolation="nearest")
    with pytest.raises(ConfigurationError, match="Unknown boundary condition"):
        AnalysisConfig(horizontal_bc="R9")


def test_with_horizontal_filter():
    """Rescaling the filter returns a new configuration and leaves the original alone."""
    cfg = AnalysisConfig()
    wide = cfg.with_horizontal_filter(5.0)
    assert wide.filter_lengths == (5.0, 5.0, cfg.z_filter)
    assert cfg.filter_lengths == (2.0, 2.0, 2.0)
