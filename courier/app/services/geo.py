# courier/app/services/geo.py
"""Point-in-polygon geometry for delivery zone boundaries.

Rings are sequences of (lat, lng) pairs; a ring may repeat its first vertex
at the end or leave the closing edge implicit. Containment is evaluated by
shapely on (lng, lat) coordinates, the same axis order GeoJSON uses.

Edge policy: a point lying exactly on an edge or a vertex counts as inside
(``Polygon.covers``). A customer standing on the drawn border is served by
that zone.
"""
from __future__ import annotations

from typing import Any, Optional, Sequence

from shapely.geometry import Point, Polygon

LatLng = tuple[float, float]


def normalize_ring(ring: Sequence[Sequence[float]]) -> list[LatLng]:
    """Drop the repeated closing vertex and consecutive duplicates."""
    points: list[LatLng] = []
    for vertex in ring:
        point = (float(vertex[0]), float(vertex[1]))
        if not points or points[-1] != point:
            points.append(point)
    if len(points) > 1 and points[0] == points[-1]:
        points.pop()
    return points


def to_polygon(ring: Sequence[Sequence[float]]) -> Optional[Polygon]:
    """Build a shapely polygon from (lat, lng) pairs, or None for a degenerate ring."""
    vertices = normalize_ring(ring)
    if len(set(vertices)) < 3:
        return None
    polygon = Polygon([(lng, lat) for lat, lng in vertices])
    # Collinear vertices enclose nothing
    if polygon.area == 0:
        return None
    return polygon


def contains(point: LatLng, ring: Sequence[Sequence[float]]) -> bool:
    """
    Return True if ``point`` (lat, lng) lies inside or on the boundary of ``ring``.

    Rings with fewer than three distinct vertices never contain anything.
    """
    polygon = to_polygon(ring)
    if polygon is None:
        return False
    lat, lng = float(point[0]), float(point[1])
    return bool(polygon.covers(Point(lng, lat)))


def ring_from_boundary(boundary: Optional[dict[str, Any]]) -> Optional[list[LatLng]]:
    """
    Extract the outer ring of a GeoJSON-style Polygon as (lat, lng) pairs.

    GeoJSON stores positions as [lng, lat]; zones are drawn on a map editor
    that emits that layout. Returns None when there is no usable boundary.
    """
    if not boundary or boundary.get("type") != "Polygon":
        return None
    coordinates = boundary.get("coordinates") or []
    if not coordinates or not coordinates[0]:
        return None
    return [(float(pos[1]), float(pos[0])) for pos in coordinates[0]]


def boundary_from_ring(ring: Sequence[Sequence[float]]) -> dict[str, Any]:
    """Build a closed GeoJSON Polygon from (lat, lng) pairs."""
    vertices = normalize_ring(ring)
    positions = [[lng, lat] for lat, lng in vertices]
    if positions:
        positions.append(list(positions[0]))
    return {"type": "Polygon", "coordinates": [positions]}
