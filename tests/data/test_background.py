import numpy as np
import pandas as pd
import pytest
import torch
import xarray as xr

from splinevar.data.background import (
    background_observations,
    dataset_to_state,
    flat_to_state,
    interpolate_background,
    load_background,
    state_to_dataset,
    state_to_flat,
    to_perturbations,
)
from splinevar.data.observations import ObservationType
from splinevar.models.grid import Grid3D
from splinevar.models.reference_state import ReferenceState
from splinevar.utils.constants import NUM_VARS, VARIABLES


@pytest.fixture
def grid():
    return Grid3D.from_bounds(((0, 10, 1), (0, 10, 1), (0.5, 3.0, 0.5)))


def _column(x, y, heights, **values):
    rows = []
    for z in heights:
        row = {"x": x, "y": y, "z": z}
        row.update({name: (v(z) if callable(v) else v) for name, v in values.items()})
        rows.append(row)
    return pd.DataFrame(rows)


def test_flat_layout(grid):
    """The legacy flat layout has the variable fastest, then x, y and z."""
    shape = grid.mish_shape
    flat = torch.arange(NUM_VARS * int(np.prod(shape)), dtype=torch.float64)
    state = flat_to_state(flat, shape)
    nx, ny, _ = shape
    v, i, j, k = 4, 3, 2, 1
    assert state[v, i, j, k] == v + NUM_VARS * (i + nx * (j + ny * k))
    assert torch.equal(state_to_flat(state), flat)
    with pytest.raises(ValueError, match="background values"):
        flat_to_state(flat[:-1], shape)


def test_load_background(grid):
    """Flat arrays, 4-D arrays, datasets and None all give the mish state."""
    torch.manual_seed(0)
    state = torch.randn((NUM_VARS,) + grid.mish_shape, dtype=torch.float64)
    assert torch.equal(load_background(state_to_flat(state), grid), state)
    assert torch.equal(load_background(state.numpy(), grid), state)
    assert torch.allclose(load_background(state_to_dataset(state, grid), grid), state)
    assert (load_background(None, grid) == 0).all()
    with pytest.raises(ValueError, match="mish state shape"):
        load_background(state[:, :-1], grid)


def test_dataset_missing_variables(grid):
    """Variables absent from a dataset are zero."""
    values = np.ones(grid.mish_shape)
    ds = xr.Dataset({"tempk": (("x", "y", "z"), values)})
    state = dataset_to_state(ds)
    assert (state[3] == 1).all() and (state[VARIABLES.index("rhou")] == 0).all()
    with pytest.raises(ValueError, match="at least one"):
        dataset_to_state(xr.Dataset())


def test_gridding_single_column(grid):
    """A column spreads within the radius of influence and is held below its lowest level."""
    pert = _column(5.0, 5.0, [1.0, 2.0, 4.0], rhou=lambda z: z, rhov=1.0, rhow=0.0, tempk=2.0, qv=0.0, rhoa=0.0, qr=0.0)
    state, weights = interpolate_background(pert, grid, roi=2.0)
    xm, ym, zm = grid.x.mish, grid.y.mish, grid.z.mish
    near = (np.argmin(np.abs(xm - 5.0)), np.argmin(np.abs(ym - 5.0)))
    assert torch.allclose(state[1, near[0], near[1]], torch.ones(len(zm), dtype=torch.float64))
    assert torch.allclose(state[3, near[0], near[1]], torch.full((len(zm),), 2.0, dtype=torch.float64))
    profile = state[0, near[0], near[1]].numpy()
    # below the column the lowest estimate is held, above it the value is interpolated in log height
    np.testing.assert_allclose(profile[zm < 1.0], 1.0)
    expected = np.interp(np.log(zm), np.log([1.0, 2.0, 4.0]), [1.0, 2.0, 4.0])
    np.testing.assert_allclose(profile, expected)
    # far corners are out of reach
    assert float(weights[0, 0, 0]) == 0.0 and (state[:, 0, 0] == 0).all()
    with pytest.raises(ValueError, match="radius of influence"):
        interpolate_background(pert, grid, roi=0.0)


def test_gridding_below_ground_levels():
    """Ghost levels at or below z = 0 take the lowest estimate of the column."""
    grid = Grid3D.from_bounds(((0, 10, 1), (0, 10, 1), (0.0, 3.0, 0.5)), zero_bc=(False, False, True))
    zm = grid.z.mish
    assert (zm < 0).any()
    pert = _column(5.0, 5.0, [0.5, 2.0], rhou=lambda z: 2.0 * z, rhov=0.0, rhow=0.0, tempk=0.0, qv=0.0, rhoa=0.0, qr=0.0)
    state, weights = interpolate_background(pert, grid, roi=2.0)
    i = np.argmin(np.abs(grid.x.mish - 5.0))
    j = np.argmin(np.abs(grid.y.mish - 5.0))
    assert (weights[i, j] > 0).all()
    profile = state[0, i, j].numpy()
    np.testing.assert_allclose(profile[zm <= 0.5], 1.0)
    np.testing.assert_allclose(profile[zm >= 2.0], 4.0)


def test_gridding_weighted_average(grid):
    """Overlapping columns blend with Gaussian weights."""
    left = _column(4.0, 5.0, [1.0, 3.0], rhou=1.0, rhov=0.0, rhow=0.0, tempk=0.0, qv=0.0, rhoa=0.0, qr=0.0)
    right = _column(6.0, 5.0, [1.0, 3.0], rhou=3.0, rhov=0.0, rhow=0.0, tempk=0.0, qv=0.0, rhoa=0.0, qr=0.0)
    state, _ = interpolate_background(pd.concat([left, right]), grid, roi=3.0)
    values = state[0].numpy()
    assert ((values == 0) | ((values >= 1 - 1e-12) & (values <= 3 + 1e-12))).all()
    # mish points closer to the left column lean towards its value
    i = np.argmin(np.abs(grid.x.mish - 4.2))
    j = np.argmin(np.abs(grid.y.mish - 5.0))
    assert 1.0 < values[i, j, 0] < 2.0


def test_perturbations_and_observations():
    """Physical estimates become perturbations and background observations."""
    ref = ReferenceState()
    z = 2.0
    estimates = pd.DataFrame(
        [
            {
                "x": 1.0, "y": 2.0, "z": z, "u": 12.0, "v": -3.0, "w": 0.5,
                "temperature": ref.temperature(z) + 1.5, "qv": ref.qv(z), "rhoa": ref.rhoa(z),
            }
        ]
    )
    pert = to_perturbations(estimates, ref, mean_u=2.0)
    rho = ref.rhoa(z) * (1.0 + ref.qv(z) / 1000.0)
    assert pert["rhou"].iloc[0] == pytest.approx(rho * 10.0)
    assert pert["tempk"].iloc[0] == pytest.approx(1.5)
    assert pert["qv"].iloc[0] == pytest.approx(0.0, abs=1e-12)
    assert pert["rhoa"].iloc[0] == pytest.approx(0.0, abs=1e-12)
    obs = background_observations(pert)
    assert len(obs) == NUM_VARS
    assert (obs.types == ObservationType.BACKGROUND).all()
    assert (obs.inverse_error == 1.0).all()
    assert torch.equal(obs.weights, torch.eye(NUM_VARS, dtype=torch.float64))
    assert obs.values[-1] == 0.0
    with pytest.raises(ValueError, match="missing columns"):
        to_perturbations(estimates.drop(columns=["rhoa"]), ref)
