"""
Solar and lunar horizontal coordinates via astropy.

IERS table downloads are disabled; the tables bundled with astropy are used.
"""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


def body_alt_az(body: str, latitude: float, longitude: float, unix_seconds: float) -> tuple[float, float]:
    """Return (altitude, azimuth) in degrees of 'sun' or 'moon' for an observer."""
    import astropy.units as u
    from astropy.coordinates import AltAz, EarthLocation, get_body
    from astropy.time import Time
    from astropy.utils import iers

    with iers.conf.set_temp("auto_download", False), iers.conf.set_temp("iers_degraded_accuracy", "warn"):
        t = Time(unix_seconds, format="unix", scale="utc")
        location = EarthLocation(lat=latitude * u.deg, lon=longitude * u.deg, height=0 * u.m)
        coord = get_body(body, t, location)
        altaz = coord.transform_to(AltAz(obstime=t, location=location))

    alt = float(altaz.alt.to_value(u.deg))
    az = float(altaz.az.to_value(u.deg))
    logger.debug("%s at %.3f: alt=%.4f az=%.4f", body, unix_seconds, alt, az)
    return alt, az
