"""
Boundary conditions for the cubic B-spline basis.

A spline on an axis with nodes ``0..M`` is expanded over the extended node set
``-1..M+1``. A boundary condition removes the exterior coefficient (and, for the
rank-2 and rank-3 conditions, interior ones too) by writing it as a linear
combination of the retained coefficients. The combination is stored as a
reduction matrix ``R`` of shape ``[M+3, M+1]`` so that
``extended_coefficients = R @ coefficients``. Any field synthesised through
``R`` satisfies the condition exactly, whatever the retained coefficients are.

At a node the cubic B-spline values are ``(1, 4, 1) / 6``, the first derivatives
``(-1, 0, 1) / 2h`` and the second derivatives ``(1, -2, 1) / h^2``; every
reduction below follows from these stencils.
"""
import enum
from dataclasses import dataclass
from typing import Dict, Iterable, Mapping, Optional, Sequence, Tuple

import numpy as np

from splinevar.utils.constants import AXES, NUM_VARS, VARIABLES
from splinevar.utils.errors import ConfigurationError


class BoundaryCondition(enum.IntEnum):
    R0 = -1
    R1T0 = 0
    R1T1 = 1
    R1T2 = 2
    R1T10 = 3
    R2T10 = 4
    R2T20 = 5
    R3 = 6
    PERIODIC = 7

    @classmethod
    def parse(cls, tag) -> "BoundaryCondition":
        if isinstance(tag, cls):
            return tag
        try:
            return cls[str(tag).strip().upper()]
        except KeyError:
            raise ConfigurationError(f"Unknown boundary condition tag: {tag!r}") from None


BCPair = Tuple[BoundaryCondition, BoundaryCondition]


def _apply_edge(R: np.ndarray, bc: BoundaryCondition, ext, col, dx: float, lam: float):
    """Fill the rows of one edge. ``ext`` are the extended rows (outer, edge, inner)
    and ``col`` the retained columns (edge, inner) ordered from the boundary inwards."""
    outer, edge, inner = ext
    c_edge, c_inner = col
    if bc == BoundaryCondition.R0:
        R[outer, :] = 0.0
    elif bc == BoundaryCondition.R1T0:
        R[outer, c_edge] = -4.0
        R[outer, c_inner] = -1.0
    elif bc == BoundaryCondition.R1T1:
        R[outer, c_inner] = 1.0
    elif bc == BoundaryCondition.R1T2:
        R[outer, c_edge] = 2.0
        R[outer, c_inner] = -1.0
    elif bc == BoundaryCondition.R1T10:
        # outward derivative equal to lambda times the value
        c = lam * dx / 3.0
        if abs(1.0 - c) < 1e-12:
            raise ConfigurationError(f"R1T10 is singular for lambda={lam} and increment={dx}")
        R[outer, c_edge] = 4.0 * c / (1.0 - c)
        R[outer, c_inner] = (1.0 + c) / (1.0 - c)
    elif bc == BoundaryCondition.R2T10:
        R[outer, c_inner] = 1.0
        R[edge, c_edge] = 0.0
        R[edge, c_inner] = -0.5
    elif bc == BoundaryCondition.R2T20:
        R[outer, c_inner] = -1.0
        R[edge, c_edge] = 0.0
    elif bc == BoundaryCondition.R3:
        R[outer, :] = 0.0
        R[edge, c_edge] = 0.0
        R[inner, c_inner] = 0.0
    else:
        raise ConfigurationError(f"{bc.name} cannot be applied to a single edge")


def reduction_matrix(
    num_nodes: int,
    dx: float,
    left: BoundaryCondition,
    right: BoundaryCondition,
    lam: float = 0.0,
) -> np.ndarray:
    """
    Build the reduction matrix mapping node coefficients onto the extended set.

    Args:
        num_nodes: number of nodes on the axis (M+1)
        dx: node increment
        left: condition at the first node
        right: condition at the last node
        lam: coefficient of the mixed R1T10 condition

    Returns:
        Array of shape [num_nodes + 2, num_nodes]
    """
    left, right = BoundaryCondition.parse(left), BoundaryCondition.parse(right)
    n = num_nodes
    R = np.zeros((n + 2, n), dtype=np.float64)
    R[np.arange(1, n + 1), np.arange(n)] = 1.0

    if (left == BoundaryCondition.PERIODIC) != (right == BoundaryCondition.PERIODIC):
        raise ConfigurationError("PERIODIC must be set on both edges of an axis")
    if left == BoundaryCondition.PERIODIC:
        # the last node coincides with the first one
        R[n, n - 1] = 0.0
        R[n, 0] = 1.0
        R[0, n - 2] = 1.0
        R[n + 1, 1] = 1.0
        return R

    _apply_edge(R, left, (0, 1, 2), (0, 1), dx, lam)
    _apply_edge(R, right, (n + 1, n, n - 1), (n - 1, n - 2), dx, lam)
    return R


def eliminated_nodes(R: np.ndarray) -> np.ndarray:
    """Boolean mask of coefficients that no longer contribute to the field"""
    return ~np.any(R != 0.0, axis=0)


@dataclass(frozen=True)
class BoundaryTable:
    """
    Immutable table of boundary conditions, one ``(left, right)`` pair per
    variable per axis.
    """

    pairs: Tuple[Tuple[BCPair, BCPair, BCPair], ...]
    lam: float = 0.0

    @classmethod
    def build(
        cls,
        horizontal: str = "R1T1",
        vertical: str = "R1T1",
        overrides: Optional[Mapping[str, Mapping[str, Sequence[str]]]] = None,
        lam: float = 0.0,
    ) -> "BoundaryTable":
        h = BoundaryCondition.parse(horizontal)
        v = BoundaryCondition.parse(vertical)
        table = []
        overrides = overrides or {}
        unknown = set(overrides) - set(VARIABLES)
        if unknown:
            raise ConfigurationError(f"Boundary conditions given for unknown variables: {sorted(unknown)}")
        for name in VARIABLES:
            per_axis = {"x": (h, h), "y": (h, h), "z": (v, v)}
            for axis, tags in overrides.get(name, {}).items():
                if axis not in AXES:
                    raise ConfigurationError(f"Unknown axis {axis!r} for variable {name}")
                if isinstance(tags, str):
                    tags = (tags, tags)
                if len(tags) != 2:
                    raise ConfigurationError(
                        f"Expected a (left, right) pair for {name}:{axis}, got {tags!r}"
                    )
                per_axis[axis] = (BoundaryCondition.parse(tags[0]), BoundaryCondition.parse(tags[1]))
            for axis, (bl, br) in per_axis.items():
                if (bl == BoundaryCondition.PERIODIC) != (br == BoundaryCondition.PERIODIC):
                    raise ConfigurationError(f"PERIODIC must be set on both edges of {name}:{axis}")
            table.append((per_axis["x"], per_axis["y"], per_axis["z"]))
        return cls(pairs=tuple(table), lam=float(lam))

    def pair(self, var: int, axis: int) -> BCPair:
        return self.pairs[var][axis]

    def unique_pairs(self, axis: int) -> Iterable[BCPair]:
        return sorted({self.pairs[v][axis] for v in range(NUM_VARS)})

    def has_zero_bc(self, axis: int) -> bool:
        """True when any variable asks for R0 on either edge of the axis"""
        return any(BoundaryCondition.R0 in self.pairs[v][axis] for v in range(NUM_VARS))

    def as_dict(self) -> Dict[str, Dict[str, Tuple[str, str]]]:
        return {
            name: {axis: (p[0].name, p[1].name) for axis, p in zip(AXES, self.pairs[v])}
            for v, name in enumerate(VARIABLES)
        }
