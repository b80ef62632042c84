"""Parallactic angle from observer latitude and the target's horizontal coordinates."""

import math


def parallactic_angle(latitude: float, azimuth: float, altitude: float) -> float:
    """
    Parallactic angle q in degrees.

    All inputs are in degrees; azimuth is measured from north through east.
    The hour angle H and declination dec are recovered from (A, h) and
    the latitude phi:

        sin(dec) = sin(phi) sin(h) + cos(phi) cos(h) cos(A)
        tan(q)   = -sin(A) cos(phi) / (sin(phi) cos(h) - cos(phi) sin(h) cos(A))

    which is the same angle as the textbook form in (H, dec).
    """
    phi = math.radians(latitude)
    az = math.radians(azimuth)
    alt = math.radians(altitude)

    y = -math.sin(az) * math.cos(phi)
    x = math.sin(phi) * math.cos(alt) - math.cos(phi) * math.sin(alt) * math.cos(az)
    if abs(x) < 1e-15 and abs(y) < 1e-15:
        # Target at the pole or zenith: angle is undefined
        return 0.0
    return math.degrees(math.atan2(y, x))
