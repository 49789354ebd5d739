"""Rest-area search along a driving route.

Pipeline for one origin/destination pair:
  1.  Validate the endpoints.
  2.  Resolve the driving route through the routing provider.
  3.  Load rest areas and interchanges from the datastore.
  4.  Select rest areas near the route, on the right carriageway, spaced out.
  5.  Enrich the selection with stores and facilities.
  6.  Assemble travel-ordered items and a summary.

Every run is request-scoped; nothing is shared between concurrent calls
except the upstream services.
"""

import logging
from datetime import datetime, timezone
from typing import Protocol

from enrichment import RestAreaDetailSource, enrich_rest_areas
from errors import InvalidInput, RestAreaDataUnavailable
from models import (
    AnalysisSummary,
    Coordinate,
    EnrichedRestArea,
    EnrichmentOptions,
    FilterOptions,
    RestAreaItem,
    RestAreaSearchResponse,
    RouteData,
    RouteInfo,
)
from normalization import is_domestic
from rest_area_filter import select_rest_areas
from rest_area_store import RestAreaStore

logger = logging.getLogger(__name__)

# Speed assumed for time estimates when the route reports no duration.
FALLBACK_SPEED_KMH: float = 80.0


class RoutingClient(Protocol):
    async def directions(self, origin: Coordinate, destination: Coordinate) -> RouteData: ...


def validate_endpoint(coord: Coordinate, label: str) -> None:
    """Rejects coordinates outside the national bounding box.

    Raises:
        InvalidInput: If the coordinate is out of range.
    """
    if not is_domestic(coord):
        raise InvalidInput(
            f"{label} ({coord.lat}, {coord.lng}) is outside the supported area."
        )


def _minutes_per_km(route: RouteData) -> float:
    if route.total_duration > 0 and route.total_distance > 0:
        return route.total_duration / route.total_distance
    return 60.0 / FALLBACK_SPEED_KMH


def assemble(
    route: RouteData,
    enriched: list[EnrichedRestArea],
) -> RestAreaSearchResponse:
    """Builds the response items and summary, keeping the selection order."""
    minutes_per_km = _minutes_per_km(route)
    items: list[RestAreaItem] = []
    for index, entry in enumerate(enriched):
        result = entry.result
        rest_area = result.rest_area
        distance_to_next = None
        time_to_next = None
        if index + 1 < len(enriched):
            gap = enriched[index + 1].result.distance_from_start - result.distance_from_start
            distance_to_next = round(gap, 1)
            time_to_next = max(1, round(gap * minutes_per_km))
        items.append(
            RestAreaItem(
                id=rest_area.id,
                name=rest_area.name,
                location=rest_area.coordinates,
                route_name=rest_area.route_name,
                direction=rest_area.direction,
                distance_from_start=round(result.distance_from_start, 1),
                estimated_time=round(result.distance_from_start * minutes_per_km),
                distance_to_next=distance_to_next,
                time_to_next=time_to_next,
                distance_to_route=round(result.distance_to_route, 2),
                confidence=round(result.confidence, 2),
                facilities=entry.facilities,
                stores=entry.stores,
                data_quality=entry.data_quality,
                collection_time=entry.collection_time,
            )
        )

    gaps = [b.distance_from_start - a.distance_from_start for a, b in zip(items, items[1:])]
    ok = sum(1 for entry in enriched if entry.data_quality != "low")
    summary = AnalysisSummary(
        total_rest_areas=len(items),
        average_interval=round(sum(gaps) / len(gaps), 1) if gaps else 0.0,
        data_collection_time=datetime.now(timezone.utc).isoformat(),
        success_rate=round(ok / len(enriched), 2) if enriched else 1.0,
    )
    return RestAreaSearchResponse(
        route_info=RouteInfo(
            total_distance=route.total_distance,
            total_duration=route.total_duration,
            highway_sections=route.highway_sections,
        ),
        rest_areas=items,
        analysis_summary=summary,
    )


async def find_rest_areas(
    origin: Coordinate,
    destination: Coordinate,
    *,
    routing: RoutingClient,
    store: RestAreaStore,
    details: RestAreaDetailSource,
    filter_options: FilterOptions | None = None,
    enrichment_options: EnrichmentOptions | None = None,
    start_km: float | None = None,
    end_km: float | None = None,
) -> RestAreaSearchResponse:
    """Finds rest areas along the driving route from origin to destination.

    Args:
        origin: Route start.
        destination: Route end.
        routing: Driving-route provider.
        store: Datastore holding rest areas and interchanges.
        details: Source for store and facility lookups.
        filter_options: Selection tuning; defaults apply when omitted.
        enrichment_options: Enrichment tuning; defaults apply when omitted.
        start_km: Optional start of the route section to search.
        end_km: Optional end of the route section to search.

    Returns:
        A ``RestAreaSearchResponse``. An empty ``rest_areas`` list means no
        rest area qualified, not a failure.

    Raises:
        InvalidInput: If an endpoint or the section bounds are invalid.
        RoutingUnavailable: If the routing provider fails.
        RestAreaDataUnavailable: If the datastore fails, or if every
            enrichment of a non-empty selection fails.
    """
    filter_options = filter_options or FilterOptions()
    enrichment_options = enrichment_options or EnrichmentOptions()
    validate_endpoint(origin, "origin")
    validate_endpoint(destination, "destination")
    for label, bound in (("startKm", start_km), ("endKm", end_km)):
        if bound is not None and bound < 0:
            raise InvalidInput(f"{label} must not be negative.")
    if start_km is not None and end_km is not None and start_km > end_km:
        raise InvalidInput("startKm must not be greater than endKm.")

    logger.info(
        "Rest-area search: (%f, %f) -> (%f, %f)",
        origin.lat,
        origin.lng,
        destination.lat,
        destination.lng,
    )

    route = await routing.directions(origin, destination)
    logger.info(
        "Route resolved: %.1fkm, %dmin, %d points",
        route.total_distance,
        route.total_duration,
        len(route.polyline),
    )

    rest_areas = await store.list_rest_areas()
    interchanges = await store.list_interchanges()

    selected = select_rest_areas(
        route.polyline,
        rest_areas,
        interchanges,
        filter_options,
        start_km=start_km,
        end_km=end_km,
    )

    enriched = await enrich_rest_areas(selected, details, enrichment_options)
    wants_enrichment = enrichment_options.include_stores or enrichment_options.include_facilities
    if enriched and wants_enrichment and all(e.data_quality == "low" for e in enriched):
        raise RestAreaDataUnavailable("Enrichment failed for every selected rest area.")

    return assemble(route, enriched)
