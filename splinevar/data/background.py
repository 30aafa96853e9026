"""
Background fields on the mish.

A background arrives either as a mish array (flat in the legacy layout, or
4-D ``[var, x, y, z]``), as an ``xarray.Dataset`` with one data variable per
analysis variable, or as scattered estimates (soundings, model columns) that
are gridded here: Gaussian weighting ``exp(-r^2/R^2)`` in the horizontal within
the radius of influence ``R``, linear interpolation in log height in the
vertical, with values below the lowest estimate of a column held constant.
"""
from typing import Optional, Tuple

import einops
import numpy as np
import pandas as pd
import torch
import xarray as xr

from splinevar.data.observations import Observation, ObservationSet, ObservationType
from splinevar.models.grid import Grid3D
from splinevar.models.reference_state import ReferenceState, bhyp_transform
from splinevar.utils.constants import NUM_VARS, RHOA_SCALE, VARIABLES
from splinevar.utils.input_validation import as_tensor, validate_mish_state
from splinevar.utils.logger import get_logger

LOGGER = get_logger(__name__)

# columns of a table of scattered background estimates
ESTIMATE_COLUMNS = ("x", "y", "z", "u", "v", "w", "temperature", "qv", "rhoa")


def flat_to_state(flat, shape: Tuple[int, int, int], dtype=torch.float64, device=None) -> torch.Tensor:
    """Legacy flat layout, ``var`` fastest then x, y and z, to a ``[var, x, y, z]`` tensor"""
    flat = as_tensor(flat, dtype, device).reshape(-1)
    expected = NUM_VARS * int(np.prod(shape))
    if flat.numel() != expected:
        raise ValueError(f"Expected {expected} background values for mish {tuple(shape)}, got {flat.numel()}")
    nx, ny, nz = shape
    return einops.rearrange(flat, "(z y x v) -> v x y z", v=NUM_VARS, x=nx, y=ny, z=nz)


def state_to_flat(state: torch.Tensor) -> torch.Tensor:
    """Inverse of :func:`flat_to_state`"""
    return einops.rearrange(state, "v x y z -> (z y x v)").contiguous()


def dataset_to_state(ds: xr.Dataset, dtype=torch.float64, device=None) -> torch.Tensor:
    """Stack the analysis variables of a dataset with dims ``(x, y, z)``, missing ones are zero"""
    present = [name for name in VARIABLES if name in ds.data_vars]
    if not present:
        raise ValueError(f"Expected at least one of {VARIABLES} in the background dataset")
    shape = tuple(ds[present[0]].transpose("x", "y", "z").shape)
    arrays = []
    for name in VARIABLES:
        if name in ds.data_vars:
            arrays.append(ds[name].transpose("x", "y", "z").values)
        else:
            arrays.append(np.zeros(shape))
    return torch.as_tensor(np.stack(arrays).astype(np.float64), dtype=dtype, device=device)


def load_background(source, grid: Grid3D, dtype=torch.float64, device=None) -> torch.Tensor:
    """Any supported background representation to a validated mish state; None gives zeros"""
    if source is None:
        return torch.zeros((NUM_VARS,) + grid.mish_shape, dtype=dtype, device=device)
    if isinstance(source, xr.Dataset):
        state = dataset_to_state(source, dtype, device)
    else:
        state = as_tensor(source, dtype, device)
        if state.ndim == 1:
            state = flat_to_state(state, grid.mish_shape, dtype, device)
    return validate_mish_state(state, grid.mish_shape)


def to_perturbations(
    estimates: pd.DataFrame, reference: ReferenceState, mean_u: float = 0.0, mean_v: float = 0.0
) -> pd.DataFrame:
    """
    Convert physical estimates to analysis variables about the reference state.

    Args:
        estimates: table with :data:`ESTIMATE_COLUMNS`, heights in km, ``qv`` in g/kg
        reference: reference sounding
        mean_u, mean_v: domain translation removed from the winds
    Returns:
        Table with x, y, z and one column per analysis variable
    """
    missing = [c for c in ESTIMATE_COLUMNS if c not in estimates.columns]
    if missing:
        raise ValueError(f"Background estimates are missing columns {missing}")
    z = estimates["z"].to_numpy(dtype=np.float64)
    rhoa = estimates["rhoa"].to_numpy(dtype=np.float64)
    qv = estimates["qv"].to_numpy(dtype=np.float64)
    rho = rhoa * (1.0 + qv / 1000.0)
    out = estimates[["x", "y", "z"]].copy()
    out["rhou"] = rho * (estimates["u"].to_numpy() - mean_u)
    out["rhov"] = rho * (estimates["v"].to_numpy() - mean_v)
    out["rhow"] = rho * estimates["w"].to_numpy()
    out["tempk"] = estimates["temperature"].to_numpy() - reference.temperature(z)
    out["qv"] = bhyp_transform(qv) - reference.qv_bhyp(z)
    out["rhoa"] = (rhoa - reference.rhoa(z)) * RHOA_SCALE
    # precipitation is never part of a background estimate
    out["qr"] = 0.0
    return out


def interpolate_background(
    perturbations: pd.DataFrame, grid: Grid3D, roi: float, dtype=torch.float64, device=None
) -> Tuple[torch.Tensor, torch.Tensor]:
    """
    Grid scattered perturbations onto the mish.

    Estimates sharing an (x, y) position form a column; each column is
    interpolated linearly in log height to the mish levels and spread
    horizontally with a Gaussian weight. Mish points no column reaches keep a
    zero background.

    Returns:
        The mish state and the summed weight at every mish point
    """
    if roi <= 0:
        raise ValueError(f"Expected a positive radius of influence, got {roi}")
    xm, ym, zm = grid.x.mish, grid.y.mish, grid.z.mish
    r2 = roi * roi
    reach = roi * np.sqrt(2.0)
    acc = np.zeros((NUM_VARS,) + grid.mish_shape)
    weights = np.zeros(grid.mish_shape)
    columns = 0
    for (cx, cy), column in perturbations.groupby(["x", "y"], sort=False):
        column = column[column["z"] > 0].sort_values("z")
        if column.empty:
            continue
        ix = np.nonzero(np.abs(xm - cx) <= reach)[0]
        iy = np.nonzero(np.abs(ym - cy) <= reach)[0]
        if ix.size == 0 or iy.size == 0:
            continue
        dist2 = (xm[ix, None] - cx) ** 2 + (ym[None, iy] - cy) ** 2
        w = np.where(dist2 < r2, np.exp(-dist2 / r2), 0.0)
        if not w.any():
            continue
        heights = column["z"].to_numpy(dtype=np.float64)
        log_z = np.log(heights)
        # mish levels below the lowest estimate, ghost levels at or under z = 0 included, take its value
        log_zm = np.log(np.maximum(zm, heights[0]))
        profile = np.stack([np.interp(log_zm, log_z, column[name].to_numpy(dtype=np.float64)) for name in VARIABLES])
        acc[:, ix[:, None], iy[None, :], :] += w[None, :, :, None] * profile[:, None, None, :]
        weights[ix[:, None], iy[None, :], :] += w[:, :, None]
        columns += 1
    filled = weights > 0
    acc[:, filled] /= weights[filled]
    LOGGER.info(
        "Gridded %d background columns with a %.2f km radius of influence, %d of %d mish points empty",
        columns,
        roi,
        int((~filled).sum()),
        filled.size,
    )
    return (
        torch.as_tensor(acc, dtype=dtype, device=device),
        torch.as_tensor(weights, dtype=dtype, device=device),
    )


def background_observations(perturbations: pd.DataFrame, error: float = 1.0, time: float = 0.0) -> ObservationSet:
    """One observation per estimate and variable, used by the background adjustment pass; qr is observed as zero"""
    obs = []
    for row in perturbations.itertuples(index=False):
        for v, name in enumerate(VARIABLES):
            obs.append(
                Observation.single(
                    v, getattr(row, name), error, row.x, row.y, row.z, type=ObservationType.BACKGROUND, time=time
                )
            )
    return ObservationSet.from_observations(obs)


def state_to_dataset(state: torch.Tensor, grid: Grid3D, target: str = "mish", attrs: Optional[dict] = None) -> xr.Dataset:
    """Analysis variables of a ``[var, x, y, z]`` state as a dataset on the mish or the nodes"""
    axes = grid.axes
    coords = {a.name: (a.mish if target == "mish" else a.nodes) for a in axes}
    arr = state.detach().cpu().numpy()
    data_vars = {name: (("x", "y", "z"), arr[v]) for v, name in enumerate(VARIABLES)}
    return xr.Dataset(data_vars=data_vars, coords=coords, attrs=attrs or {})
