"""Hyugepick backend service.

Exposes endpoints for finding highway rest areas along a driving route,
stop recommendations, address geocoding, rest-area detail lookups, and the
open-data sync jobs.
"""

import logging
from typing import AsyncIterator

from fastapi import Depends, FastAPI, HTTPException, Query

import recommendations
import rest_area_sync
import route_service
import routing
from errors import (
    InvalidInput,
    RestAreaDataUnavailable,
    RoutingUnavailable,
    SyncInProgress,
    UpstreamUnavailable,
)
from highway_api import HighwayApiClient
from models import (
    Coordinate,
    EnrichmentOptions,
    FilterOptions,
    GeocodeRequest,
    GeocodeResponse,
    RecommendationRequest,
    RecommendationResponse,
    RestAreaSearchRequest,
    RestAreaSearchResponse,
    Store,
    SyncResponse,
)
from rest_area_store import RestAreaStore

logging.basicConfig(level=logging.INFO)

app = FastAPI(
    title="Hyugepick Backend",
    description="Highway rest areas along a route, filtered by carriageway direction.",
    version="0.1.0",
)


# ---------------------------------------------------------------------------
# Upstream clients
# ---------------------------------------------------------------------------


async def get_routing_client() -> AsyncIterator[route_service.RoutingClient]:
    client = routing.get_routing_client()
    try:
        yield client
    finally:
        await client.aclose()


async def get_store() -> AsyncIterator[RestAreaStore]:
    store = RestAreaStore()
    try:
        yield store
    finally:
        await store.aclose()


async def get_highway_api() -> AsyncIterator[HighwayApiClient]:
    client = HighwayApiClient()
    try:
        yield client
    finally:
        await client.aclose()


async def get_detail_source() -> AsyncIterator[HighwayApiClient]:
    """Highway API client for enrichment, which runs its own retries."""
    client = HighwayApiClient(retries=0)
    try:
        yield client
    finally:
        await client.aclose()


async def get_maps_client():
    """Google Maps client for geocoding; ``None`` builds one from the environment."""
    return None


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@app.get("/health")
async def health() -> dict[str, str]:
    """Health check endpoint used by the platform to verify the service is live."""
    return {"status": "ok"}


async def _search(
    origin: Coordinate,
    destination: Coordinate,
    filter_options: FilterOptions,
    enrichment_options: EnrichmentOptions,
    routing_client: route_service.RoutingClient,
    store: RestAreaStore,
    details: HighwayApiClient,
    start_km: float | None = None,
    end_km: float | None = None,
) -> RestAreaSearchResponse:
    """Runs the rest-area search and maps pipeline errors to HTTP errors."""
    try:
        return await route_service.find_rest_areas(
            origin,
            destination,
            routing=routing_client,
            store=store,
            details=details,
            filter_options=filter_options,
            enrichment_options=enrichment_options,
            start_km=start_km,
            end_km=end_km,
        )
    except InvalidInput as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except RoutingUnavailable as exc:
        logging.warning("Routing failed: %s", exc)
        raise HTTPException(
            status_code=502,
            detail="Failed to calculate a route. Please try again.",
        ) from exc
    except RestAreaDataUnavailable as exc:
        logging.warning("Rest-area data unavailable: %s", exc)
        raise HTTPException(
            status_code=503,
            detail="Rest-area information is temporarily unavailable. Please try again.",
        ) from exc
    except Exception as exc:  # noqa: BLE001
        logging.exception("route_service.find_rest_areas failed")
        raise HTTPException(
            status_code=500,
            detail="Failed to search rest areas. Please try again.",
        ) from exc


def _options(request: RestAreaSearchRequest) -> tuple[FilterOptions, EnrichmentOptions]:
    try:
        return request.filter_options(), request.enrichment_options()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post("/route/rest-areas", response_model=RestAreaSearchResponse)
async def search_rest_areas(
    request: RestAreaSearchRequest,
    routing_client: route_service.RoutingClient = Depends(get_routing_client),
    store: RestAreaStore = Depends(get_store),
    details: HighwayApiClient = Depends(get_detail_source),
) -> RestAreaSearchResponse:
    """Finds rest areas along the driving route between two points.

    Runs a six-step pipeline:
    1. Validates origin and destination against the national bounding box.
    2. Resolves the driving route through the routing provider.
    3. Loads rest areas and interchanges from the datastore.
    4. Keeps rest areas within ``maxDistance`` of the route on the travelled
       carriageway, spaced at least ``minInterval`` apart.
    5. Fetches stores and facilities with bounded concurrency.
    6. Assembles the travel-ordered list and summary.

    Args:
        request: Origin, destination and optional tuning parameters.

    Returns:
        ``RestAreaSearchResponse`` with route info, rest areas and a summary.

    Raises:
        HTTPException 400: If coordinates or tuning values are invalid.
        HTTPException 502: If the routing provider fails.
        HTTPException 503: If rest-area data cannot be loaded or enriched.
        HTTPException 500: On unexpected errors.
    """
    filter_options, enrichment_options = _options(request)
    return await _search(
        request.origin,
        request.destination,
        filter_options,
        enrichment_options,
        routing_client,
        store,
        details,
    )


@app.get("/route/rest-areas", response_model=RestAreaSearchResponse)
async def search_rest_areas_in_section(
    origin_lat: float = Query(..., alias="originLat"),
    origin_lng: float = Query(..., alias="originLng"),
    dest_lat: float = Query(..., alias="destLat"),
    dest_lng: float = Query(..., alias="destLng"),
    start_km: float | None = Query(None, alias="startKm"),
    end_km: float | None = Query(None, alias="endKm"),
    routing_client: route_service.RoutingClient = Depends(get_routing_client),
    store: RestAreaStore = Depends(get_store),
    details: HighwayApiClient = Depends(get_detail_source),
) -> RestAreaSearchResponse:
    """Finds rest areas within ``[startKm, endKm]`` of the route from the origin.

    Same pipeline and errors as ``POST /route/rest-areas`` with default
    tuning; only rest areas whose distance from the origin falls inside the
    section are considered for spacing.
    """
    return await _search(
        Coordinate(lat=origin_lat, lng=origin_lng),
        Coordinate(lat=dest_lat, lng=dest_lng),
        FilterOptions(),
        EnrichmentOptions(),
        routing_client,
        store,
        details,
        start_km=start_km,
        end_km=end_km,
    )


@app.post("/route/rest-areas/recommendations", response_model=RecommendationResponse)
async def recommend_rest_areas(
    request: RecommendationRequest,
    routing_client: route_service.RoutingClient = Depends(get_routing_client),
    store: RestAreaStore = Depends(get_store),
    details: HighwayApiClient = Depends(get_detail_source),
) -> RecommendationResponse:
    """Finds rest areas along the route and flags the best places to stop.

    Args:
        request: Search parameters plus fuel interval (km), meal interval
            (hours) and preferred facilities.

    Returns:
        ``RecommendationResponse``: the search response plus recommendations.

    Raises:
        HTTPException: Same statuses as ``POST /route/rest-areas``.
    """
    filter_options, enrichment_options = _options(request)
    result = await _search(
        request.origin,
        request.destination,
        filter_options,
        enrichment_options,
        routing_client,
        store,
        details,
    )
    stops = recommendations.recommend_stops(
        result.rest_areas,
        request.fuel_stop_interval,
        request.meal_stop_interval,
        request.preferred_facilities,
    )
    return RecommendationResponse(**result.model_dump(), recommendations=stops)


@app.post("/geocode-address", response_model=GeocodeResponse)
async def geocode_address(
    request: GeocodeRequest,
    maps_client=Depends(get_maps_client),
) -> GeocodeResponse:
    """Geocodes a human-readable address to lat/lng coordinates.

    Lets clients turn typed origins and destinations into coordinates for
    the rest-area search.

    Raises:
        HTTPException 400: If address is empty.
        HTTPException 404: If the address could not be geocoded.
        HTTPException 502: If the upstream Google Maps API call fails.
    """
    if not request.address.strip():
        raise HTTPException(
            status_code=400,
            detail="address must not be empty.",
        )
    try:
        result = routing.geocode(request.address, maps_client=maps_client)
    except UpstreamUnavailable as exc:
        raise HTTPException(
            status_code=502,
            detail="Failed to geocode the address. Please try again.",
        ) from exc
    if result is None:
        raise HTTPException(
            status_code=404,
            detail=f"Could not geocode address: {request.address!r}",
        )
    return result


@app.get("/rest-areas/{code}/foods", response_model=list[Store])
async def rest_area_foods(
    code: str,
    api: HighwayApiClient = Depends(get_highway_api),
) -> list[Store]:
    """Returns the best-selling food counters of one rest area."""
    try:
        return await api.fetch_stores(code)
    except UpstreamUnavailable as exc:
        raise HTTPException(
            status_code=502,
            detail="Failed to load rest-area foods. Please try again.",
        ) from exc


@app.get("/rest-areas/{code}/facilities", response_model=list[str])
async def rest_area_facilities(
    code: str,
    api: HighwayApiClient = Depends(get_highway_api),
) -> list[str]:
    """Returns the convenience facilities of one rest area."""
    try:
        return await api.fetch_facilities(code)
    except UpstreamUnavailable as exc:
        raise HTTPException(
            status_code=502,
            detail="Failed to load rest-area facilities. Please try again.",
        ) from exc


async def _sync(job, api: HighwayApiClient, store: RestAreaStore) -> SyncResponse:
    try:
        return await job(api, store)
    except SyncInProgress as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except UpstreamUnavailable as exc:
        raise HTTPException(
            status_code=502,
            detail="Sync failed while talking to an upstream service.",
        ) from exc
    except Exception as exc:  # noqa: BLE001
        logging.exception("%s failed", getattr(job, "__name__", "sync"))
        raise HTTPException(status_code=500, detail="Sync failed.") from exc


@app.post("/sync/rest-areas", response_model=SyncResponse)
async def sync_rest_areas(
    api: HighwayApiClient = Depends(get_highway_api),
    store: RestAreaStore = Depends(get_store),
) -> SyncResponse:
    """Refreshes the rest-area table from the expressway open-data feed.

    Raises:
        HTTPException 409: If a sync is already running.
        HTTPException 502: If the feed or the datastore fails.
    """
    return await _sync(rest_area_sync.sync_rest_areas, api, store)


@app.post("/sync/interchanges", response_model=SyncResponse)
async def sync_interchanges(
    api: HighwayApiClient = Depends(get_highway_api),
    store: RestAreaStore = Depends(get_store),
) -> SyncResponse:
    """Refreshes the interchange table, recomputing weights and adjacency.

    Raises:
        HTTPException 409: If a sync is already running.
        HTTPException 502: If the feed or the datastore fails.
    """
    return await _sync(rest_area_sync.sync_interchanges, api, store)
