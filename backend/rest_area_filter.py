"""Route-relative rest-area selection.

Three pure stages, run in order by ``select_rest_areas``:
  1.  Proximity: keep rest areas within ``max_distance`` of the polyline and
      place each one along the route.
  2.  Direction: drop rest areas on the opposite carriageway
      (see ``direction_filter``).
  3.  Spacing: keep the best rest area per cluster, enforce ``min_interval``
      between picks and cap the count at ``max_results``.

None of these stages performs I/O or raises for well-formed input.
"""

import logging
from typing import Sequence

from direction_filter import filter_by_direction
from errors import InvalidInput
from geometry import cumulative_lengths_km, locate_on_polyline
from models import Coordinate, FilterOptions, FilterResult, Interchange, RestArea
from normalization import is_domestic

logger = logging.getLogger(__name__)


def _travel_order(result: FilterResult) -> tuple[float, str]:
    return result.distance_from_start, result.rest_area.id


def filter_by_proximity(
    polyline: Sequence[Coordinate],
    candidates: Sequence[RestArea],
    max_distance: float,
) -> list[FilterResult]:
    """Keeps rest areas within ``max_distance`` km of the route.

    Rest areas with no position, or a position outside the national bounding
    box, are dropped. Output is ordered by ``distance_from_start`` with ties
    broken by id.

    Raises:
        InvalidInput: If the polyline is empty.
    """
    if not polyline:
        raise InvalidInput("Route polyline is empty.")

    cumulative = cumulative_lengths_km(polyline)
    matched: list[FilterResult] = []
    skipped = 0
    for rest_area in candidates:
        if not is_domestic(rest_area.coordinates):
            skipped += 1
            continue
        distance, along = locate_on_polyline(rest_area.coordinates, polyline, cumulative)
        if distance <= max_distance:
            matched.append(
                FilterResult(
                    rest_area=rest_area,
                    distance_to_route=distance,
                    distance_from_start=along,
                )
            )

    matched.sort(key=_travel_order)
    logger.info(
        "Proximity filter: %d of %d rest areas within %.1fkm (%d without position)",
        len(matched),
        len(candidates),
        max_distance,
        skipped,
    )
    return matched


def _representative_key(result: FilterResult) -> tuple[float, float, float, str]:
    return (
        -result.confidence,
        result.distance_to_route,
        result.distance_from_start,
        result.rest_area.id,
    )


def select_spaced(
    results: Sequence[FilterResult],
    min_interval: float,
    max_results: int,
) -> list[FilterResult]:
    """Picks well-spaced rest areas in travel order.

    Rest areas are grouped into windows that start at each cluster's first
    member and span ``min_interval``. The highest-confidence member of each
    window represents it (ties: closer to the route, then earlier, then id).
    Representatives are then walked greedily so consecutive picks are at
    least ``min_interval`` apart, and the earliest ``max_results`` are kept.
    """
    ordered = sorted(results, key=_travel_order)
    if not ordered:
        return []

    clusters: list[list[FilterResult]] = [[ordered[0]]]
    for result in ordered[1:]:
        anchor = clusters[-1][0].distance_from_start
        if result.distance_from_start - anchor < min_interval:
            clusters[-1].append(result)
        else:
            clusters.append([result])

    representatives = [min(cluster, key=_representative_key) for cluster in clusters]

    selected: list[FilterResult] = []
    for result in representatives:
        if (
            not selected
            or result.distance_from_start - selected[-1].distance_from_start >= min_interval
        ):
            selected.append(result)

    return selected[:max_results]


def filter_by_section(
    results: Sequence[FilterResult],
    start_km: float | None = None,
    end_km: float | None = None,
) -> list[FilterResult]:
    """Keeps results whose ``distance_from_start`` lies in [start_km, end_km]."""
    return [
        result
        for result in results
        if (start_km is None or result.distance_from_start >= start_km)
        and (end_km is None or result.distance_from_start <= end_km)
    ]


def select_rest_areas(
    polyline: Sequence[Coordinate],
    candidates: Sequence[RestArea],
    interchanges: Sequence[Interchange],
    options: FilterOptions | None = None,
    start_km: float | None = None,
    end_km: float | None = None,
) -> list[FilterResult]:
    """Runs proximity, direction and spacing selection end to end.

    Args:
        polyline: Route vertices in travel order.
        candidates: Unfiltered rest areas.
        interchanges: Interchanges used for direction inference.
        options: Tuning parameters; defaults apply when omitted.
        start_km: Optional lower bound on ``distance_from_start``.
        end_km: Optional upper bound on ``distance_from_start``.

    Returns:
        Selected rest areas in travel order. An empty list is a valid result.
    """
    options = options or FilterOptions()
    if start_km is not None and end_km is not None and start_km > end_km:
        raise InvalidInput("startKm must not exceed endKm.")

    nearby = filter_by_proximity(polyline, candidates, options.max_distance)
    assessed = filter_by_direction(nearby, polyline, interchanges, options)
    kept = filter_by_section(
        [result for result in assessed if result.included], start_km, end_km
    )
    selected = select_spaced(kept, options.min_interval, options.max_results)
    logger.info(
        "Selected %d rest areas (min_interval=%.1fkm, max_results=%d)",
        len(selected),
        options.min_interval,
        options.max_results,
    )
    return selected
