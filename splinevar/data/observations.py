"""
Observation tuples.

Every observation is reduced upstream to one scalar measurement with its
inverse error, position, a type label, a time and one projection weight per
analysis variable: ``(value, inverse_error, x, y, z, type, time, weight[7])``.
Most observations populate one weight, Doppler velocities a vector of
directional cosines. The type is a label for diagnostics only.
"""
import enum
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Sequence, Union

import numpy as np
import pandas as pd
import torch

from splinevar.utils.constants import NUM_VARS, OBS_COLUMNS, OBS_FIELDS
from splinevar.utils.input_validation import as_tensor, validate_observation_array
from splinevar.utils.logger import get_logger

LOGGER = get_logger(__name__)


class ObservationType(enum.IntEnum):
    BACKGROUND = -1
    DROPSONDE = 0
    FLIGHTLEVEL = 1
    SFMR = 2
    QSCAT = 3
    ASCAT = 4
    AMV = 5
    LIDAR = 6
    RADAR = 7
    INSITU = 8
    MTP = 9
    MESONET = 10
    AERI = 11
    PSEUDO_W = 12

    @classmethod
    def label(cls, tag) -> str:
        try:
            return cls(int(tag)).name.lower()
        except ValueError:
            return f"type_{int(tag)}"


@dataclass(frozen=True)
class Observation:
    value: float
    inverse_error: float
    x: float
    y: float
    z: float
    type: int = ObservationType.BACKGROUND
    time: float = 0.0
    weights: Sequence[float] = (0.0,) * NUM_VARS

    def __post_init__(self):
        if len(self.weights) != NUM_VARS:
            raise ValueError(f"Expected {NUM_VARS} projection weights, got {len(self.weights)}")
        object.__setattr__(self, "weights", tuple(float(w) for w in self.weights))

    @classmethod
    def single(cls, var: int, value: float, error: float, x: float, y: float, z: float, **kwargs):
        """Direct observation of one variable with the given (not inverse) error"""
        weights = [0.0] * NUM_VARS
        weights[var] = 1.0
        return cls(value, 1.0 / error, x, y, z, weights=weights, **kwargs)

    def as_tuple(self):
        return (self.value, self.inverse_error, self.x, self.y, self.z, float(self.type), self.time) + self.weights


class ObservationSet:
    """
    Read-only collection of observation tuples stored as an ``[N, 14]`` tensor.
    """

    def __init__(self, data, dtype=torch.float64, device=None):
        data = as_tensor(data, dtype=dtype, device=device)
        if data.numel() == 0:
            data = data.reshape(0, OBS_FIELDS)
        self._data = validate_observation_array(data)
        if (self._data[:, 1] < 0).any():
            raise ValueError("Inverse errors must be non-negative")

    @classmethod
    def from_observations(cls, observations: Iterable[Observation], **kwargs) -> "ObservationSet":
        rows = [ob.as_tuple() for ob in observations]
        return cls(np.asarray(rows, dtype=np.float64).reshape(-1, OBS_FIELDS), **kwargs)

    @classmethod
    def empty(cls, **kwargs) -> "ObservationSet":
        return cls(np.zeros((0, OBS_FIELDS)), **kwargs)

    @classmethod
    def from_dataframe(cls, df: pd.DataFrame, **kwargs) -> "ObservationSet":
        missing = [c for c in OBS_COLUMNS if c not in df.columns]
        if missing:
            raise ValueError(f"Observation table is missing columns {missing}")
        return cls(df[list(OBS_COLUMNS)].to_numpy(dtype=np.float64), **kwargs)

    @classmethod
    def read_table(cls, path: Union[str, Path], **kwargs) -> "ObservationSet":
        """Whitespace separated table, one 14-field observation per line, no header"""
        df = pd.read_csv(path, sep=r"\s+", header=None, names=list(OBS_COLUMNS), engine="python")
        LOGGER.info("Read %d observations from %s", len(df), path)
        return cls.from_dataframe(df, **kwargs)

    def write_table(self, path: Union[str, Path]):
        self.to_dataframe().to_csv(path, sep="\t", header=False, index=False)

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame(self._data.cpu().numpy(), columns=list(OBS_COLUMNS))

    def to_numpy(self) -> np.ndarray:
        return self._data.cpu().numpy().copy()

    def __len__(self) -> int:
        return self._data.size(0)

    def subset(self, mask) -> "ObservationSet":
        mask = torch.as_tensor(mask, dtype=torch.bool, device=self._data.device)
        return ObservationSet(self._data[mask], dtype=self._data.dtype, device=self._data.device)

    def concat(self, other: "ObservationSet") -> "ObservationSet":
        return ObservationSet(
            torch.cat([self._data, other._data.to(self._data)]), dtype=self._data.dtype, device=self._data.device
        )

    @property
    def values(self) -> torch.Tensor:
        return self._data[:, 0]

    @property
    def inverse_error(self) -> torch.Tensor:
        return self._data[:, 1]

    @property
    def positions(self) -> torch.Tensor:
        return self._data[:, 2:5]

    @property
    def types(self) -> torch.Tensor:
        return self._data[:, 5]

    @property
    def times(self) -> torch.Tensor:
        return self._data[:, 6]

    @property
    def weights(self) -> torch.Tensor:
        return self._data[:, 7:]

    def within(self, grid) -> "ObservationSet":
        """
        Drop observations outside the domain or inside a zero boundary guard band.
        Exclusion is local recovery, never fatal.
        """
        pos = self.positions.cpu().numpy()
        mask = grid.usable(pos[:, 0], pos[:, 1], pos[:, 2])
        excluded = int((~mask).sum())
        if excluded:
            LOGGER.info("Excluded %d of %d observations outside the usable domain", excluded, len(self))
        return self.subset(mask)

    def type_counts(self) -> pd.Series:
        labels = [ObservationType.label(t) for t in self.types.cpu().numpy()]
        return pd.Series(labels, dtype="object").value_counts()


def doppler_weights(azimuth_deg, elevation_deg) -> np.ndarray:
    """Directional cosines of a radial velocity onto (rhou, rhov, rhow)"""
    az = np.deg2rad(np.asarray(azimuth_deg, dtype=np.float64))
    el = np.deg2rad(np.asarray(elevation_deg, dtype=np.float64))
    return np.stack([np.sin(az) * np.cos(el), np.cos(az) * np.cos(el), np.sin(el)], axis=-1)


def doppler_observation(
    radial_velocity: float,
    azimuth_deg: float,
    elevation_deg: float,
    x: float,
    y: float,
    z: float,
    spectrum_width: float = 0.0,
    fall_speed: float = 0.0,
    mean_u: float = 0.0,
    mean_v: float = 0.0,
    fall_speed_error: float = 2.0,
    min_error: float = 1.0,
    obs_type: int = ObservationType.RADAR,
    time: float = 0.0,
) -> Observation:
    """
    Radial velocity observation with the hydrometeor fall speed and the domain
    translation removed, weighted by its directional cosines.
    """
    wu, wv, ww = doppler_weights(azimuth_deg, elevation_deg)
    value = radial_velocity - fall_speed * ww - mean_u * wu - mean_v * wv
    error = max(spectrum_width + abs(ww) * fall_speed_error, min_error)
    weights = [0.0] * NUM_VARS
    weights[0], weights[1], weights[2] = wu, wv, ww
    return Observation(float(value), 1.0 / error, x, y, z, int(obs_type), time, weights)
