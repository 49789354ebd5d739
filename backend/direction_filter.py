"""Carriageway direction filter for rest areas matched to a route.

A rest area on a divided highway is only reachable from one carriageway. This
module decides, for each rest area near the route, whether it sits on the
carriageway the driver is travelling. It is a heuristic: it uses the route's
overall bearing, free-text direction labels and the ordinal weights of
interchanges along the highway. It never consults turn restrictions or lane
topology, so looping or branching highways can produce wrong answers. Every
decision carries a confidence and inferred directions are never reported as
certain.
"""

import logging
from typing import Sequence

from geometry import cumulative_lengths_km, locate_on_polyline
from models import (
    Coordinate,
    Direction,
    DirectionAssessment,
    DirectionKeywords,
    FilterOptions,
    FilterResult,
    Interchange,
    RestArea,
)
from normalization import normalize_route_name

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Direction-inference rules. The confidence numbers are tunable defaults.
# ---------------------------------------------------------------------------

# Below this many degrees of both lat and lng change the route bearing is
# ambiguous.
AMBIGUOUS_BEARING_DEG: float = 0.5

# Interchanges farther than this from the polyline are not on the traversed
# stretch of the highway.
IC_SEARCH_RADIUS_KM: float = 3.0

# Interchange weights follow the distance markers, which rise toward the
# 종점. On the radial expressways that is the 상행 side.
WEIGHT_INCREASING_DIRECTION: Direction = Direction.UP

# Confidence when only one interchange is found (ordering cannot be read).
SINGLE_IC_CONFIDENCE: float = 0.5
# With two or more interchanges: base + span * share of agreeing pairs.
MULTI_IC_BASE_CONFIDENCE: float = 0.6
MULTI_IC_CONFIDENCE_SPAN: float = 0.35
# Confidence when no interchange on the highway is near the route.
NO_IC_CONFIDENCE: float = 0.2

_OPPOSITE = {Direction.UP: Direction.DOWN, Direction.DOWN: Direction.UP}


def route_bearing_direction(polyline: Sequence[Coordinate]) -> Direction:
    """Classifies the route's macro bearing from its first and last point.

    North- or westbound travel maps to ``UP``, south- or eastbound to
    ``DOWN``. Returns ``UNKNOWN`` when both deltas are below
    ``AMBIGUOUS_BEARING_DEG``.
    """
    if len(polyline) < 2:
        return Direction.UNKNOWN
    dlat = polyline[-1].lat - polyline[0].lat
    dlng = polyline[-1].lng - polyline[0].lng
    if max(abs(dlat), abs(dlng)) < AMBIGUOUS_BEARING_DEG:
        return Direction.UNKNOWN
    if abs(dlat) >= abs(dlng):
        return Direction.UP if dlat > 0 else Direction.DOWN
    return Direction.DOWN if dlng > 0 else Direction.UP


def normalize_direction(
    raw: str | None,
    keywords: DirectionKeywords | None = None,
) -> Direction:
    """Maps a free-text direction label to a ``Direction``.

    Exact enum names match first, then BOTH keywords, then UP, then DOWN.
    """
    if not raw:
        return Direction.UNKNOWN
    keywords = keywords or DirectionKeywords()
    text = raw.strip()
    if text.upper() in Direction.__members__:
        return Direction[text.upper()]
    if any(word in text for word in keywords.both):
        return Direction.BOTH
    if any(word in text for word in keywords.up):
        return Direction.UP
    if any(word in text for word in keywords.down):
        return Direction.DOWN
    return Direction.UNKNOWN


def rest_area_direction(rest_area: RestArea, keywords: DirectionKeywords | None = None) -> Direction:
    """Uses the persisted direction when known, otherwise the raw label."""
    if rest_area.route_direction not in (None, Direction.UNKNOWN):
        return rest_area.route_direction
    return normalize_direction(rest_area.direction, keywords)


def _same_highway(rest_area: RestArea, interchange: Interchange) -> bool:
    if rest_area.route_code and interchange.route_no:
        if rest_area.route_code == interchange.route_no:
            return True
    name = normalize_route_name(rest_area.route_name)
    return bool(name) and name == normalize_route_name(interchange.route_name)


def infer_travel_direction(
    rest_area: RestArea,
    polyline: Sequence[Coordinate],
    interchanges: Sequence[Interchange],
    cumulative: Sequence[float] | None = None,
) -> DirectionAssessment:
    """Infers which carriageway the route drives on the rest area's highway.

    Interchanges on the same highway that lie near the polyline are ordered by
    where the route passes them. The weights of the first and last bracket
    the traversal: rising weights mean travel toward
    ``WEIGHT_INCREASING_DIRECTION``. Consecutive pairs that agree with that
    overall ordering raise the confidence.
    """
    if cumulative is None:
        cumulative = cumulative_lengths_km(polyline)

    passed: list[tuple[float, str, int]] = []
    for interchange in interchanges:
        if interchange.coordinates is None or not _same_highway(rest_area, interchange):
            continue
        distance, along = locate_on_polyline(interchange.coordinates, polyline, cumulative)
        if distance <= IC_SEARCH_RADIUS_KM:
            passed.append((along, interchange.id, interchange.weight))

    if not passed:
        return DirectionAssessment.unknown(NO_IC_CONFIDENCE)

    passed.sort()
    weights = [weight for _, _, weight in passed]
    overall = weights[-1] - weights[0]
    if len(weights) == 1 or overall == 0:
        bearing = route_bearing_direction(polyline)
        if bearing is Direction.UNKNOWN:
            return DirectionAssessment.unknown(SINGLE_IC_CONFIDENCE)
        return DirectionAssessment.inferred(bearing, SINGLE_IC_CONFIDENCE)

    pairs = list(zip(weights, weights[1:]))
    agreeing = sum(1 for a, b in pairs if (b - a) * overall > 0)
    confidence = MULTI_IC_BASE_CONFIDENCE + MULTI_IC_CONFIDENCE_SPAN * agreeing / len(pairs)
    direction = (
        WEIGHT_INCREASING_DIRECTION if overall > 0 else _OPPOSITE[WEIGHT_INCREASING_DIRECTION]
    )
    return DirectionAssessment.inferred(direction, min(confidence, 0.95))


def _uncertain(
    result: FilterResult,
    assessment: DirectionAssessment,
    options: FilterOptions,
    reason: str,
) -> FilterResult:
    """Applies the strict/lenient confidence gate to an uncertain assessment."""
    keep = (
        assessment.confidence >= options.confidence_threshold
        if options.direction_strict_mode
        else True
    )
    return result.model_copy(
        update={
            "confidence": assessment.confidence,
            "included": keep,
            "assessment": assessment,
            "reason": reason,
        }
    )


def assess(
    result: FilterResult,
    polyline: Sequence[Coordinate],
    interchanges: Sequence[Interchange],
    options: FilterOptions,
    route_direction: Direction | None = None,
    cumulative: Sequence[float] | None = None,
    inference_cache: dict[tuple[str, str], DirectionAssessment] | None = None,
) -> FilterResult:
    """Decides whether a proximity match is on the driver's carriageway.

    ``inference_cache`` lets callers share interchange inferences between
    rest areas on the same highway.
    """
    if not options.enable_direction_filter:
        return result.model_copy(
            update={"confidence": 1.0, "included": True, "reason": "direction filter disabled"}
        )

    if route_direction is None:
        route_direction = route_bearing_direction(polyline)
    candidate = rest_area_direction(result.rest_area, options.direction_keywords)

    if candidate is Direction.BOTH:
        return result.model_copy(
            update={
                "confidence": 1.0,
                "included": True,
                "assessment": DirectionAssessment.certain(Direction.BOTH),
                "reason": "serves both directions",
            }
        )

    if candidate is not Direction.UNKNOWN and route_direction is not Direction.UNKNOWN:
        matches = candidate is route_direction
        return result.model_copy(
            update={
                "confidence": 1.0 if matches else 0.0,
                "included": matches,
                "assessment": DirectionAssessment.certain(candidate),
                "reason": "matches route bearing" if matches else "opposite carriageway",
            }
        )

    rest_area = result.rest_area
    key = (rest_area.route_code or "", normalize_route_name(rest_area.route_name))
    if inference_cache is not None and key in inference_cache:
        inference = inference_cache[key]
    else:
        inference = infer_travel_direction(rest_area, polyline, interchanges, cumulative)
        if inference_cache is not None:
            inference_cache[key] = inference

    if candidate is Direction.UNKNOWN:
        return _uncertain(result, inference, options, "direction inferred from interchanges")

    # Known rest-area direction on a route whose bearing is ambiguous.
    if inference.kind == "inferred":
        if candidate is inference.direction:
            return _uncertain(result, inference, options, "matches interchange ordering")
        return result.model_copy(
            update={
                "confidence": 0.0,
                "included": False,
                "assessment": inference,
                "reason": "opposite carriageway by interchange ordering",
            }
        )
    return _uncertain(result, inference, options, "route bearing ambiguous")


def filter_by_direction(
    results: Sequence[FilterResult],
    polyline: Sequence[Coordinate],
    interchanges: Sequence[Interchange],
    options: FilterOptions,
) -> list[FilterResult]:
    """Assesses every proximity match and returns all of them, annotated.

    Callers keep the entries whose ``included`` flag is set. Input order is
    preserved.
    """
    route_direction = route_bearing_direction(polyline)
    cumulative = cumulative_lengths_km(polyline) if polyline else []
    cache: dict[tuple[str, str], DirectionAssessment] = {}
    assessed = [
        assess(result, polyline, interchanges, options, route_direction, cumulative, cache)
        for result in results
    ]
    logger.info(
        "Direction filter: route=%s, kept %d of %d rest areas",
        route_direction.value,
        sum(1 for r in assessed if r.included),
        len(assessed),
    )
    return assessed
