"""Great-circle geometry helpers.

Radii involved in crowd detection are tens of metres, but inclusion has
to stay correct at any latitude, so everything goes through the
Haversine formula rather than a planar approximation.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Final

# Mean Earth radius (IUGG), metres.
EARTH_RADIUS_M: Final[float] = 6_371_008.8

# Length of one degree of latitude on the spherical model, metres.
METERS_PER_DEGREE_LAT: Final[float] = EARTH_RADIUS_M * math.pi / 180.0


@dataclass(slots=True, frozen=True)
class GeoPoint:
    """A WGS84 coordinate in decimal degrees."""

    latitude: float
    longitude: float

    @property
    def is_valid(self) -> bool:
        return is_valid_coordinate(self.latitude, self.longitude)


def is_valid_coordinate(latitude: float, longitude: float) -> bool:
    """Return *True* for a finite latitude in [-90, 90] and longitude in [-180, 180]."""
    if not (math.isfinite(latitude) and math.isfinite(longitude)):
        return False
    return -90.0 <= latitude <= 90.0 and -180.0 <= longitude <= 180.0


def haversine_distance(
    lat1: float, lon1: float, lat2: float, lon2: float
) -> float:
    """Calculate the great-circle distance between two points on Earth.

    Parameters
    ----------
    lat1, lon1:
        Latitude and longitude of point 1 in decimal degrees.
    lat2, lon2:
        Latitude and longitude of point 2 in decimal degrees.

    Returns
    -------
    float
        Distance in metres.
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2
    )
    # Clamp against rounding pushing ``a`` just past 1 for antipodal points.
    a = min(1.0, max(0.0, a))
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_M * c


def distance_between(a: GeoPoint, b: GeoPoint) -> float:
    return haversine_distance(a.latitude, a.longitude, b.latitude, b.longitude)


def offset_point(origin: GeoPoint, north_m: float, east_m: float) -> GeoPoint:
    """Return the point *north_m* / *east_m* metres from *origin*.

    Local tangent-plane approximation; intended for generating nearby
    points (tests, demos), not for distance checks.
    """
    dlat = north_m / METERS_PER_DEGREE_LAT
    cos_lat = math.cos(math.radians(origin.latitude))
    dlon = east_m / (METERS_PER_DEGREE_LAT * cos_lat) if cos_lat > 1e-12 else 0.0
    return GeoPoint(origin.latitude + dlat, origin.longitude + dlon)


def latitude_band(latitude: float, band_height_m: float) -> int:
    """Index of the horizontal band of height *band_height_m* containing *latitude*.

    Bands depend on latitude only, so two points within *band_height_m*
    of each other always fall in the same or adjacent bands, including
    at the poles and across the antimeridian.
    """
    band_deg = band_height_m / METERS_PER_DEGREE_LAT
    return math.floor((latitude + 90.0) / band_deg)


def latitude_span(radius_m: float) -> float:
    """Degrees of latitude covered by *radius_m* metres along a meridian."""
    return radius_m / METERS_PER_DEGREE_LAT
