from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from sunstack_backend.ephemeris import body_alt_az
from sunstack_backend.errors import ConfigError
from sunstack_backend.parallactic import parallactic_angle
from sunstack_backend.timestamp import ticks_to_unix


@dataclass(frozen=True)
class TargetPosition:
    """Parallactic angle, altitude and azimuth of a target, all in degrees."""
    rotation: float
    altitude: float
    azimuth: float


class Target(Enum):
    SUN = "sun"
    MOON = "moon"
    NONE = "none"

    @classmethod
    def from_string(cls, s: str) -> "Target":
        try:
            return cls(str(s).strip().lower())
        except ValueError:
            raise ConfigError(f"Invalid target: '{s}'. Valid options: sun, moon, none")

    def position_from_lat_lon_and_time(self, latitude: float, longitude: float, ticks: int) -> TargetPosition:
        """Position of the body at a capture timestamp given in .NET ticks."""
        if self is Target.NONE:
            return TargetPosition(rotation=0.0, altitude=0.0, azimuth=0.0)

        altitude, azimuth = body_alt_az(self.value, latitude, longitude, ticks_to_unix(ticks))
        return TargetPosition(
            rotation=parallactic_angle(latitude, azimuth, altitude),
            altitude=altitude,
            azimuth=azimuth,
        )
