"""Stop recommendations over an assembled rest-area list.

Walks the rest areas in travel order and flags the ones that line up with the
driver's fuel and meal rhythm or offer facilities they asked for.
"""

import logging

from models import Recommendation, RestAreaItem

logger = logging.getLogger(__name__)

# A stop counts as due once this share of the interval has elapsed.
DUE_FRACTION: float = 0.8

FUEL_FACILITY_KEYWORDS: tuple[str, ...] = ("주유소", "LPG", "충전소")
MEAL_FACILITY_KEYWORDS: tuple[str, ...] = ("식당", "푸드코트", "음식점")


def _has_any(facilities: list[str], keywords: tuple[str, ...]) -> bool:
    return any(keyword in facility for facility in facilities for keyword in keywords)


def recommend_stops(
    rest_areas: list[RestAreaItem],
    fuel_stop_interval: float,
    meal_stop_interval: float,
    preferred_facilities: list[str] | None = None,
) -> list[Recommendation]:
    """Returns recommendations in travel order.

    Args:
        rest_areas: Assembled rest areas, ordered by ``distance_from_start``.
        fuel_stop_interval: Kilometres between fuel stops.
        meal_stop_interval: Hours between meal stops.
        preferred_facilities: Facility names the driver wants to see.

    Returns:
        One ``Recommendation`` per rest area with at least one reason. A
        fuel stop, or two or more reasons, is ``high`` priority; a meal stop
        alone is ``medium``; a preferred-facility match alone is ``low``.
    """
    preferred = [name for name in (preferred_facilities or []) if name.strip()]
    last_fuel_km = 0.0
    last_meal_min = 0
    recommendations: list[Recommendation] = []

    for item in rest_areas:
        reasons: list[str] = []
        fuel_due = False
        meal_due = False

        if (
            item.distance_from_start - last_fuel_km >= fuel_stop_interval * DUE_FRACTION
            and _has_any(item.facilities, FUEL_FACILITY_KEYWORDS)
        ):
            fuel_due = True
            reasons.append(f"주유 권장 지점 ({item.distance_from_start:.0f}km)")
            last_fuel_km = item.distance_from_start

        if item.estimated_time - last_meal_min >= meal_stop_interval * 60 * DUE_FRACTION and (
            item.stores or _has_any(item.facilities, MEAL_FACILITY_KEYWORDS)
        ):
            meal_due = True
            reasons.append(f"식사 권장 시간 (출발 후 {item.estimated_time}분)")
            last_meal_min = item.estimated_time

        matched = [
            name for name in preferred if any(name in facility for facility in item.facilities)
        ]
        if matched:
            reasons.append(f"선호 시설: {', '.join(matched)}")

        if not reasons:
            continue
        if fuel_due or len(reasons) >= 2:
            priority = "high"
        elif meal_due:
            priority = "medium"
        else:
            priority = "low"
        recommendations.append(
            Recommendation(rest_area_name=item.name, reasons=reasons, priority=priority)
        )

    logger.info("Recommended %d of %d rest areas", len(recommendations), len(rest_areas))
    return recommendations
