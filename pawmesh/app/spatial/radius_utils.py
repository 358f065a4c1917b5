"""
radius_utils.py — Great-circle distance and radius checks for broadcasts.

Provides:
    - Coordinate value object with range validation
    - Haversine distance between two (lat, lon) points
    - Bounding-box pre-filter for proximity queries at scale (antimeridian
      and pole aware)
    - Strict point-in-radius check used for audience selection

Distances are returned in **meters** (broadcast radii are stored in
meters). Coordinates are in **decimal degrees**.

Mathematical Foundation — Haversine Formula
============================================
Given two points P₁(φ₁, λ₁) and P₂(φ₂, λ₂):

    a = sin²(Δφ / 2) + cos(φ₁) · cos(φ₂) · sin²(Δλ / 2)
    c = 2 · atan2(√a, √(1 − a))
    d = R · c

Where R is Earth's mean radius. Accurate to ~0.5%, which is well inside
the granularity of the tier radii (10 km and up).
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Tuple

EARTH_RADIUS_M: float = 6_371_008.8  # IAU mean radius


@dataclass(frozen=True)
class Coordinate:
    """A geographic point in decimal degrees."""
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        if not (-90.0 <= self.latitude <= 90.0):
            raise ValueError(
                f"Latitude must be in [-90, 90], got {self.latitude}"
            )
        if not (-180.0 <= self.longitude <= 180.0):
            raise ValueError(
                f"Longitude must be in [-180, 180], got {self.longitude}"
            )

    @property
    def lat_rad(self) -> float:
        return math.radians(self.latitude)

    @property
    def lon_rad(self) -> float:
        return math.radians(self.longitude)


def haversine_m(point1: Coordinate, point2: Coordinate) -> float:
    """
    Great-circle distance in meters.

    >>> round(haversine_m(Coordinate(0, 0), Coordinate(0, 0)), 1)
    0.0
    >>> round(haversine_m(Coordinate(0, 0), Coordinate(0, 1)) / 1000, 1)
    111.2
    """
    d_lat = point2.lat_rad - point1.lat_rad
    d_lon = point2.lon_rad - point1.lon_rad

    a = (
        math.sin(d_lat / 2.0) ** 2
        + math.cos(point1.lat_rad)
        * math.cos(point2.lat_rad)
        * math.sin(d_lon / 2.0) ** 2
    )

    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))
    return EARTH_RADIUS_M * c


@dataclass(frozen=True)
class BoundingBox:
    """
    Lat/lon pre-filter region for a circle.

    `lon_ranges` holds one (min_lon, max_lon) interval, or two when the
    circle crosses the ±180° meridian.
    """
    min_lat: float
    max_lat: float
    lon_ranges: Tuple[Tuple[float, float], ...]

    def contains(self, lat: float, lon: float) -> bool:
        if not (self.min_lat <= lat <= self.max_lat):
            return False
        return any(lo <= lon <= hi for lo, hi in self.lon_ranges)


def bounding_box(center: Coordinate, radius_m: float) -> BoundingBox:
    """
    Lat/lon region that fully contains the circle (center, radius_m).

    Used as a cheap pre-filter (also expressible as plain SQL range
    predicates) so Haversine only runs on candidates that might be inside.
    A circle reaching a pole spans every longitude. A circle crossing the
    antimeridian yields two longitude intervals.
    """
    angular_deg = math.degrees(radius_m / EARTH_RADIUS_M)

    min_lat = center.latitude - angular_deg
    max_lat = center.latitude + angular_deg
    if min_lat <= -90.0 or max_lat >= 90.0:
        return BoundingBox(
            max(min_lat, -90.0), min(max_lat, 90.0), ((-180.0, 180.0),),
        )

    # Longitude delta widens toward the poles
    ratio = math.sin(math.radians(angular_deg)) / math.cos(center.lat_rad)
    if ratio >= 1.0:
        return BoundingBox(min_lat, max_lat, ((-180.0, 180.0),))
    delta_lon = math.degrees(math.asin(ratio))

    min_lon = center.longitude - delta_lon
    max_lon = center.longitude + delta_lon
    if min_lon < -180.0:
        ranges = ((min_lon + 360.0, 180.0), (-180.0, max_lon))
    elif max_lon > 180.0:
        ranges = ((min_lon, 180.0), (-180.0, max_lon - 360.0))
    else:
        ranges = ((min_lon, max_lon),)
    return BoundingBox(min_lat, max_lat, ranges)


def is_strictly_inside(
    center: Coordinate, point: Coordinate, radius_m: float,
) -> Tuple[bool, float]:
    """
    Whether `point` lies strictly inside the circle, plus the distance.

    A point exactly on the boundary is outside.

    >>> is_strictly_inside(Coordinate(0, 0), Coordinate(0, 0), 1.0)
    (True, 0.0)
    """
    if radius_m <= 0:
        raise ValueError(f"Radius must be positive, got {radius_m}")

    dist = haversine_m(center, point)
    return (dist < radius_m, dist)
