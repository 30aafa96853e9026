import numpy as np
import torch

from splinevar.utils.constants import NUM_VARS, OBS_FIELDS


def as_tensor(x, dtype=torch.float64, device=None) -> torch.Tensor:
    if isinstance(x, torch.Tensor):
        return x.to(dtype=dtype, device=device)
    if isinstance(x, np.ndarray) or isinstance(x, (list, tuple)):
        return torch.as_tensor(np.asarray(x, dtype=np.float64), dtype=dtype, device=device)
    raise TypeError(f"Expected input to be torch.Tensor or numpy.ndarray, got {type(x)}")


def validate_observation_array(obs: torch.Tensor) -> torch.Tensor:
    if obs.ndim == 1:
        if obs.numel() % OBS_FIELDS != 0:
            raise ValueError(
                f"Expected flat observation array with a multiple of {OBS_FIELDS} values, "
                f"got {obs.numel()}"
            )
        obs = obs.reshape(-1, OBS_FIELDS)
    if obs.ndim != 2 or obs.size(1) != OBS_FIELDS:
        raise ValueError(f"Expected observation shape [obs, {OBS_FIELDS}], got {tuple(obs.shape)}")
    if not torch.isfinite(obs).all():
        raise ValueError("Observation array contains non-finite values")
    return obs


def validate_mish_state(state: torch.Tensor, mish_shape) -> torch.Tensor:
    expected = (NUM_VARS,) + tuple(mish_shape)
    if tuple(state.shape) != expected:
        raise ValueError(f"Expected mish state shape {expected}, got {tuple(state.shape)}")
    if not torch.isfinite(state).all():
        raise ValueError("Mish state contains non-finite values")
    return state


def validate_control_vector(q: torch.Tensor, size: int) -> torch.Tensor:
    if q.ndim != 1 or q.numel() != size:
        raise ValueError(f"Expected control vector of length {size}, got {tuple(q.shape)}")
    return q
