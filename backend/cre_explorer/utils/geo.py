"""Shared geospatial utilities."""

from dataclasses import dataclass
from math import sqrt

from cre_explorer.utils.numbers import round_half_up

# Degree lengths at NYC's latitude (~40.7N)
MILES_PER_DEGREE_LAT = 69.0
MILES_PER_DEGREE_LNG = 53.0


@dataclass(frozen=True)
class GeoBounds:
    """Axis-aligned lat/lng box, inclusive on every edge."""
    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    def contains(self, lat: float | None, lng: float | None) -> bool:
        if lat is None or lng is None:
            return False
        return self.min_lat <= lat <= self.max_lat and self.min_lng <= lng <= self.max_lng


def bounding_box(lat: float, lng: float, radius_miles: float) -> GeoBounds:
    """Box of +/- radius around a point, using the flat NYC degree lengths."""
    lat_buffer = radius_miles / MILES_PER_DEGREE_LAT
    lng_buffer = radius_miles / MILES_PER_DEGREE_LNG
    return GeoBounds(
        min_lat=lat - lat_buffer,
        max_lat=lat + lat_buffer,
        min_lng=lng - lng_buffer,
        max_lng=lng + lng_buffer,
    )


def planar_distance_miles(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Equirectangular distance in miles; accurate enough within a borough.

    Args:
        lat1: Latitude of point 1 (decimal degrees)
        lng1: Longitude of point 1 (decimal degrees)
        lat2: Latitude of point 2 (decimal degrees)
        lng2: Longitude of point 2 (decimal degrees)

    Returns:
        Distance in miles.
    """
    dlat = (lat2 - lat1) * MILES_PER_DEGREE_LAT
    dlng = (lng2 - lng1) * MILES_PER_DEGREE_LNG
    return sqrt(dlat ** 2 + dlng ** 2)


def grid_index(value: float, cell_size: float) -> int:
    """Index of the grid cell whose center is nearest to value."""
    return int(round_half_up(value / cell_size))


def grid_center(index: int, cell_size: float) -> float:
    return index * cell_size
