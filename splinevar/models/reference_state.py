"""
Reference atmospheres.

The analysis carries perturbations of temperature, moisture and density about
a horizontally uniform reference sounding. A profile is defined by temperature
and water vapour mixing ratio at a set of heights; between levels both are
interpolated linearly, pressure is integrated hydrostatically from the surface
value using the virtual temperature, and density follows from the ideal gas
law.

Moisture is analysed in a transformed space whose inverse is positive for any
real argument, so the total mixing ratio of an analysis can never go
negative.
"""
from typing import Dict

import numpy as np

from splinevar.utils.constants import GRAVITY, RD, RHOA_SCALE
from splinevar.utils.errors import ConfigurationError

# smoothing scale of the moisture transform (g/kg)
BHYP_EPSILON = 0.1

# Mean tropical (West Indies hurricane season) sounding
_JORDAN = {
    "surface_pressure": 1015.1,
    "height": np.array(
        [0.0, 0.5, 1.0, 1.5, 2.0, 2.5, 3.0, 4.0, 5.0, 6.0, 7.0, 8.0, 9.0, 10.0, 11.0, 12.0, 13.0, 14.0, 15.0, 16.0,
         17.0, 18.0, 20.0]
    ),
    "temperature": np.array(
        [299.5, 296.6, 294.0, 291.6, 289.3, 287.0, 284.6, 279.6, 273.9, 267.8, 261.3, 254.2, 246.4, 238.0, 229.1,
         220.0, 211.4, 204.0, 198.3, 194.5, 195.5, 199.3, 207.0]
    ),
    "qv": np.array(
        [18.6, 16.4, 14.6, 12.6, 10.9, 9.1, 7.5, 5.2, 3.4, 2.1, 1.3, 0.8, 0.45, 0.25, 0.12, 0.06, 0.03, 0.015, 0.01,
         0.005, 0.003, 0.003, 0.003]
    ),
}

PROFILES: Dict[str, Dict] = {"jordan": _JORDAN}


def bhyp_transform(qv):
    """Mixing ratio (g/kg, positive) to the analysis moisture variable"""
    qv = np.asarray(qv, dtype=np.float64)
    return qv - BHYP_EPSILON**2 / qv


def bhyp_inverse(b):
    """Analysis moisture variable back to a positive mixing ratio"""
    b = np.asarray(b, dtype=np.float64)
    return 0.5 * (b + np.sqrt(b * b + 4.0 * BHYP_EPSILON**2))


class ReferenceState:
    """
    Args:
        name: profile name, one of :data:`PROFILES`
        resolution: vertical step of the hydrostatic integration (km)
    """

    def __init__(self, name: str = "jordan", resolution: float = 0.01):
        key = str(name).lower()
        if key not in PROFILES:
            raise ConfigurationError(f"Unknown reference state profile {name!r}, expected one of {sorted(PROFILES)}")
        self.name = key
        profile = PROFILES[key]
        self._height = profile["height"]
        self._temperature = profile["temperature"]
        self._qv = profile["qv"]
        top = self._height[-1]
        self._z = np.arange(0.0, top + resolution, resolution)
        tv = self.temperature(self._z) * (1.0 + 0.61e-3 * self.qv(self._z))
        # dln(p)/dz = -g / (Rd Tv), z in km
        dlnp = -GRAVITY * 1000.0 / (RD * tv)
        lnp = np.concatenate([[0.0], np.cumsum(0.5 * (dlnp[1:] + dlnp[:-1]) * np.diff(self._z))])
        self._lnp = np.log(profile["surface_pressure"]) + lnp

    def temperature(self, z):
        """Temperature (K) at height ``z`` (km)"""
        return np.interp(z, self._height, self._temperature)

    def qv(self, z):
        """Water vapour mixing ratio (g/kg)"""
        return np.interp(z, self._height, self._qv)

    def qv_bhyp(self, z):
        return bhyp_transform(self.qv(z))

    def pressure(self, z):
        """Pressure (hPa), log-linear between integration levels"""
        return np.exp(np.interp(z, self._z, self._lnp))

    def rho(self, z):
        """Moist air density (kg m^-3)"""
        tv = self.temperature(z) * (1.0 + 0.61e-3 * self.qv(z))
        return self.pressure(z) * 100.0 / (RD * tv)

    def rhoa(self, z):
        """Dry air density (kg m^-3)"""
        return self.rho(z) / (1.0 + 1.0e-3 * self.qv(z))

    def totals(self, fields: Dict[str, np.ndarray], z: np.ndarray) -> Dict[str, np.ndarray]:
        """
        Full fields from analysed perturbations.

        Args:
            fields: perturbation arrays keyed by variable name, height on the last axis
            z: heights (km) of the last axis
        """
        tbar = self.temperature(z)
        qbar = self.qv_bhyp(z)
        rhobar = self.rhoa(z)
        temperature = fields["tempk"] + tbar
        qv = bhyp_inverse(fields["qv"] + qbar)
        rhoa = fields["rhoa"] / RHOA_SCALE + rhobar
        rho = rhoa * (1.0 + 1.0e-3 * qv)
        return {
            "temperature": temperature,
            "qv_total": qv,
            "rhoa_total": rhoa,
            "rho": rho,
            "u": fields["rhou"] / rho,
            "v": fields["rhov"] / rho,
            "w": fields["rhow"] / rho,
        }
