"""Observations, backgrounds and hydrometeor relationships"""

from .observations import Observation, ObservationSet, ObservationType, doppler_observation
