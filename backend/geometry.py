"""Geodesic helpers for matching points against a route polyline.

Distances are in kilometres. Segment projection is done in a planar
approximation (longitude as x, latitude as y, in degrees), which is accurate
enough at the scale of a single polyline segment on a national road network.
"""

import math
from typing import Sequence

from googlemaps import convert

from errors import InvalidInput
from models import Coordinate

EARTH_RADIUS_KM: float = 6371.0


def _haversine(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    lat1_r, lat2_r = math.radians(lat1), math.radians(lat2)
    dlat = lat2_r - lat1_r
    dlng = math.radians(lng2 - lng1)
    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def haversine_km(a: Coordinate, b: Coordinate) -> float:
    """Returns the great-circle distance between two points."""
    return _haversine(a.lat, a.lng, b.lat, b.lng)


def _project(p: Coordinate, start: Coordinate, end: Coordinate) -> tuple[Coordinate, float]:
    """Returns the closest point on [start, end] to p and its parameter t in [0, 1]."""
    dx = end.lng - start.lng
    dy = end.lat - start.lat
    length_sq = dx * dx + dy * dy
    if length_sq == 0:
        return start, 0.0
    t = ((p.lng - start.lng) * dx + (p.lat - start.lat) * dy) / length_sq
    t = max(0.0, min(1.0, t))
    return Coordinate(lat=start.lat + t * dy, lng=start.lng + t * dx), t


def point_to_segment_km(p: Coordinate, start: Coordinate, end: Coordinate) -> float:
    """Returns the distance from p to the segment [start, end].

    A degenerate segment (start == end) reduces to point-to-point distance.
    """
    closest, _ = _project(p, start, end)
    return haversine_km(p, closest)


def point_to_polyline_km(p: Coordinate, polyline: Sequence[Coordinate]) -> float:
    """Returns the minimum distance from p to any segment of the polyline.

    Raises:
        InvalidInput: If the polyline is empty.
    """
    return locate_on_polyline(p, polyline)[0]


def cumulative_lengths_km(polyline: Sequence[Coordinate]) -> list[float]:
    """Returns the running route length at each vertex, starting at 0."""
    lengths = [0.0]
    for prev, cur in zip(polyline, polyline[1:]):
        lengths.append(lengths[-1] + haversine_km(prev, cur))
    return lengths[: len(polyline)]


def polyline_length_km(polyline: Sequence[Coordinate]) -> float:
    if len(polyline) < 2:
        return 0.0
    return cumulative_lengths_km(polyline)[-1]


def locate_on_polyline(
    p: Coordinate,
    polyline: Sequence[Coordinate],
    cumulative: Sequence[float] | None = None,
) -> tuple[float, float]:
    """Finds where p sits relative to the polyline.

    Args:
        p: The point to locate.
        polyline: Route vertices in travel order.
        cumulative: Optional precomputed ``cumulative_lengths_km(polyline)``
            so callers matching many points walk the route only once.

    Returns:
        ``(distance_to_route, distance_from_start)`` in km. The along-route
        distance is the route length before the nearest segment plus the
        partial distance into it. Ties go to the earliest segment.

    Raises:
        InvalidInput: If the polyline is empty.
    """
    if not polyline:
        raise InvalidInput("Route polyline is empty.")
    if len(polyline) == 1:
        return haversine_km(p, polyline[0]), 0.0

    if cumulative is None:
        cumulative = cumulative_lengths_km(polyline)

    best_distance = math.inf
    best_along = 0.0
    for i, (start, end) in enumerate(zip(polyline, polyline[1:])):
        closest, _ = _project(p, start, end)
        distance = haversine_km(p, closest)
        if distance < best_distance:
            best_distance = distance
            best_along = cumulative[i] + haversine_km(start, closest)
    return best_distance, best_along


def bearing_deg(a: Coordinate, b: Coordinate) -> float:
    """Returns the initial bearing in degrees (0-360) from a to b."""
    lat1, lat2 = math.radians(a.lat), math.radians(b.lat)
    dlng = math.radians(b.lng - a.lng)
    x = math.sin(dlng) * math.cos(lat2)
    y = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(dlng)
    return (math.degrees(math.atan2(x, y)) + 360) % 360


def decode_polyline(encoded: str) -> list[Coordinate]:
    """Decodes a Google-encoded polyline string."""
    return [
        Coordinate(lat=point["lat"], lng=point["lng"])
        for point in convert.decode_polyline(encoded)
    ]
