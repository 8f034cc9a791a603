"""Spherical distance and planar point-in-polygon primitives.

Distances use the haversine formula on a sphere (no ellipsoidal correction).
Polygon tests run in planar (lng, lat) space: x = longitude, y = latitude.
"""

from __future__ import annotations

import math
from typing import Iterable, Sequence

import numpy as np
from pydantic import BaseModel

EARTH_RADIUS_M = 6_371_000.0


class GeoPoint(BaseModel):
    """A WGS84 position in degrees."""
    lat: float
    lng: float


class BoundingBox(BaseModel):
    """Axis-aligned lat/lng extent of a drawn area."""
    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    def viewbox(self) -> str:
        """Nominatim ``viewbox`` value: left,top,right,bottom."""
        return f"{self.min_lng},{self.max_lat},{self.max_lng},{self.min_lat}"


def distance_meters(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle distance between two points in meters."""
    phi1 = math.radians(a.lat)
    phi2 = math.radians(b.lat)
    d_phi = math.radians(b.lat - a.lat)
    d_lambda = math.radians(b.lng - a.lng)

    h = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def distances_meters(
    points: Sequence[tuple[float, float]], center: GeoPoint
) -> np.ndarray:
    """Vectorised haversine from many (lat, lng) pairs to one center.

    Returns a float array aligned with ``points``.
    """
    if len(points) == 0:
        return np.zeros(0)
    coords = np.radians(np.asarray(points, dtype=float))
    lat = coords[:, 0]
    lng = coords[:, 1]
    c_lat = math.radians(center.lat)
    c_lng = math.radians(center.lng)

    h = (
        np.sin((c_lat - lat) / 2) ** 2
        + np.cos(lat) * math.cos(c_lat) * np.sin((c_lng - lng) / 2) ** 2
    )
    return EARTH_RADIUS_M * 2 * np.arctan2(np.sqrt(h), np.sqrt(1 - h))


def is_inside_polygon(point: GeoPoint, vertices: Sequence[GeoPoint]) -> bool:
    """Ray-casting point-in-polygon test (even-odd rule).

    Casts a horizontal ray from the point towards +lng and counts how many
    polygon edges it crosses. Odd count = inside. Edges are half-open in
    latitude so a ray through a shared vertex is counted once.
    """
    n = len(vertices)
    if n < 3:
        return False
    x, y = point.lng, point.lat
    inside = False
    j = n - 1
    for i in range(n):
        xi, yi = vertices[i].lng, vertices[i].lat
        xj, yj = vertices[j].lng, vertices[j].lat
        if ((yi > y) != (yj > y)) and (
            x < (xj - xi) * (y - yi) / (yj - yi) + xi
        ):
            inside = not inside
        j = i
    return inside


def bounding_box(vertices: Iterable[GeoPoint]) -> BoundingBox:
    """Extent of a vertex list.

    Raises:
        ValueError: If ``vertices`` is empty.
    """
    pts = list(vertices)
    if not pts:
        raise ValueError("Cannot derive a bounding box from zero vertices")
    lats = [p.lat for p in pts]
    lngs = [p.lng for p in pts]
    return BoundingBox(
        min_lat=min(lats),
        max_lat=max(lats),
        min_lng=min(lngs),
        max_lng=max(lngs),
    )
