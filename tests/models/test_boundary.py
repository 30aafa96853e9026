import numpy as np
import pytest

from splinevar.models.boundary import BoundaryCondition, BoundaryTable, eliminated_nodes, reduction_matrix
from splinevar.utils.errors import ConfigurationError

# value, first and second derivative stencils of the extended coefficients at a node
STENCIL = {
    0: np.array([1.0, 4.0, 1.0]) / 6.0,
    1: np.array([-1.0, 0.0, 1.0]) / 2.0,
    2: np.array([1.0, -2.0, 1.0]),
}


def _edge_values(tag, lam=0.0, seed=0):
    """Value and derivatives at the left edge for random retained coefficients"""
    R = reduction_matrix(8, 1.0, tag, tag, lam)
    coeffs = np.random.default_rng(seed).normal(size=8)
    ext = R @ coeffs
    return {d: float(STENCIL[d] @ ext[:3]) for d in STENCIL}, R


def test_parse_tags():
    """Tags are parsed case insensitively, unknown tags are configuration errors."""
    assert BoundaryCondition.parse("r1t1") is BoundaryCondition.R1T1
    assert BoundaryCondition.parse(BoundaryCondition.R3) is BoundaryCondition.R3
    with pytest.raises(ConfigurationError, match="Unknown boundary condition"):
        BoundaryCondition.parse("R4")


def test_edge_constraints_hold():
    """Every condition constrains the expected derivatives at the edge."""
    constrained = {
        "R1T0": [0],
        "R1T1": [1],
        "R1T2": [2],
        "R2T10": [0, 1],
        "R2T20": [0, 2],
        "R3": [0, 1, 2],
    }
    for tag, orders in constrained.items():
        values, _ = _edge_values(tag)
        for d in orders:
            assert abs(values[d]) < 1e-12, (tag, d)


def test_mixed_condition():
    """R1T10 sets the outward derivative to lambda times the value; lambda=0 is R1T1."""
    values, _ = _edge_values("R1T10", lam=0.5)
    assert values[1] != 0.0
    np.testing.assert_allclose(-values[1], 0.5 * values[0], atol=1e-12)
    np.testing.assert_allclose(reduction_matrix(6, 1.0, "R1T10", "R1T10"), reduction_matrix(6, 1.0, "R1T1", "R1T1"))
    with pytest.raises(ConfigurationError, match="singular"):
        reduction_matrix(6, 1.0, "R1T10", "R1T1", lam=3.0)


def test_eliminated_coefficients():
    """Rank 2 and 3 conditions remove interior coefficients, periodic removes the last node."""
    assert not eliminated_nodes(reduction_matrix(6, 1.0, "R1T1", "R1T1")).any()
    assert np.nonzero(eliminated_nodes(reduction_matrix(6, 1.0, "R2T10", "R1T1")))[0].tolist() == [0]
    assert np.nonzero(eliminated_nodes(reduction_matrix(6, 1.0, "R3", "R3")))[0].tolist() == [0, 1, 4, 5]
    assert np.nonzero(eliminated_nodes(reduction_matrix(6, 1.0, "PERIODIC", "PERIODIC")))[0].tolist() == [5]


def test_zero_condition_drops_exterior():
    """R0 sets the exterior coefficient to zero and keeps the rest."""
    R = reduction_matrix(6, 1.0, "R0", "R0")
    assert not R[0].any() and not R[-1].any()
    np.testing.assert_allclose(R[1:-1], np.eye(6))


def test_periodic_must_pair():
    """A one sided periodic condition is rejected."""
    with pytest.raises(ConfigurationError, match="PERIODIC"):
        reduction_matrix(6, 1.0, "PERIODIC", "R1T1")
    with pytest.raises(ConfigurationError, match="PERIODIC"):
        BoundaryTable.build(overrides={"rhou": {"x": ["PERIODIC", "R0"]}})


def test_boundary_table():
    """Defaults apply to every variable, overrides replace single axes."""
    table = BoundaryTable.build("R1T1", "R1T2", {"rhow": {"z": ["R1T0", "R1T0"]}, "qr": {"x": "R0"}})
    assert table.pair(0, 0) == (BoundaryCondition.R1T1, BoundaryCondition.R1T1)
    assert table.pair(0, 2) == (BoundaryCondition.R1T2, BoundaryCondition.R1T2)
    assert table.pair(2, 2) == (BoundaryCondition.R1T0, BoundaryCondition.R1T0)
    assert table.has_zero_bc(0) and not table.has_zero_bc(1)
    assert len(table.unique_pairs(2)) == 2
    assert table.as_dict()["rhow"]["z"] == ("R1T0", "R1T0")
    with pytest.raises(ConfigurationError, match="unknown variables"):
        BoundaryTable.build(overrides={"theta": {"x": "R0"}})
    with pytest.raises(ConfigurationError, match="Unknown axis"):
        BoundaryTable.build(overrides={"rhou": {"t": "R0"}})
