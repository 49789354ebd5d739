"""Routing and geocoding providers.

Two interchangeable driving-route providers produce a ``RouteData``:
  - ``KakaoRoutingClient``: Kakao Mobility directions (default; covers Korean
    expressways with per-road names and vertexes).
  - ``GoogleRoutingClient``: Google Maps Directions through ``googlemaps``.

``ROUTING_PROVIDER`` selects the default. Address geocoding always goes
through ``googlemaps``.
"""

import logging
import os
import re
from typing import Any

import googlemaps
import httpx

from errors import RoutingUnavailable
from geometry import decode_polyline
from models import Coordinate, GeocodeResponse, HighwaySection, RouteData
from normalization import normalize_route_name
from retry import with_retries

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Provider settings
# ---------------------------------------------------------------------------

KAKAO_DIRECTIONS_URL: str = "https://apis-navi.kakaomobility.com/v1/directions"
REQUEST_TIMEOUT_S: float = 20.0

# Road names containing one of these are expressway stretches.
HIGHWAY_NAME_KEYWORDS: tuple[str, ...] = ("고속도로", "고속국도", "Expressway", "expressway")
_HIGHWAY_NAME_IN_TEXT = re.compile(r"([가-힣A-Za-z0-9]+(?:고속도로|고속국도))")
_TAGS = re.compile(r"<[^>]+>")


def _is_highway_name(name: str) -> bool:
    return any(keyword in name for keyword in HIGHWAY_NAME_KEYWORDS)


def _merge_sections(stretches: list[tuple[str, float]]) -> list[HighwaySection]:
    """Collapses consecutive stretches on the same expressway."""
    sections: list[HighwaySection] = []
    for name, distance_km in stretches:
        if sections and sections[-1].name == name:
            sections[-1].distance = round(sections[-1].distance + distance_km, 1)
        else:
            sections.append(HighwaySection(name=name, distance=round(distance_km, 1)))
    return sections


def _dedupe(points: list[Coordinate]) -> list[Coordinate]:
    deduped: list[Coordinate] = []
    for point in points:
        if not deduped or deduped[-1] != point:
            deduped.append(point)
    return deduped


def _route_or_fail(
    polyline: list[Coordinate],
    distance_m: float,
    duration_s: float,
    stretches: list[tuple[str, float]],
) -> RouteData:
    if len(polyline) < 2:
        raise RoutingUnavailable("Routing provider returned no usable path.")
    return RouteData(
        polyline=polyline,
        total_distance=round(distance_m / 1000, 1),
        total_duration=int(round(duration_s / 60)),
        highway_sections=_merge_sections(stretches),
    )


# ---------------------------------------------------------------------------
# Kakao Mobility
# ---------------------------------------------------------------------------


class KakaoRoutingClient:
    """Driving directions from Kakao Mobility.

    Args:
        api_key: REST API key. Read from ``KAKAO_REST_API_KEY`` if omitted.
        http_client: Optional pre-constructed ``httpx.AsyncClient``.
    """

    def __init__(
        self,
        api_key: str | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
        retries: int = 2,
        backoff_base_s: float = 0.5,
    ):
        self._api_key = api_key if api_key is not None else os.environ.get("KAKAO_REST_API_KEY", "")
        self._client = http_client or httpx.AsyncClient(timeout=REQUEST_TIMEOUT_S)
        self._owns_client = http_client is None
        self._retries = retries
        self._backoff_base_s = backoff_base_s

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def directions(self, origin: Coordinate, destination: Coordinate) -> RouteData:
        """Returns the recommended driving route between two points.

        Raises:
            RoutingUnavailable: On missing credentials, transport or HTTP
                failures after retries, or a response without a route.
        """
        if not self._api_key:
            raise RoutingUnavailable("KAKAO_REST_API_KEY is not configured.")

        async def _call() -> dict[str, Any]:
            response = await self._client.get(
                KAKAO_DIRECTIONS_URL,
                params={
                    "origin": f"{origin.lng},{origin.lat}",
                    "destination": f"{destination.lng},{destination.lat}",
                    "priority": "RECOMMEND",
                },
                headers={"Authorization": f"KakaoAK {self._api_key}"},
            )
            response.raise_for_status()
            return response.json()

        try:
            payload = await with_retries(
                _call,
                retries=self._retries,
                base_delay=self._backoff_base_s,
                description="Kakao directions",
            )
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Kakao directions failed: %s", exc)
            raise RoutingUnavailable("Routing provider request failed.") from exc

        routes = payload.get("routes") or []
        if not routes or routes[0].get("result_code", 0) != 0:
            message = routes[0].get("result_msg", "") if routes else "no routes"
            logger.warning("Kakao directions returned no route: %s", message)
            raise RoutingUnavailable("Routing provider returned no route.")
        return parse_kakao_route(routes[0])


def _vertex_points(vertexes: list[Any]) -> list[Coordinate]:
    """Reads flat ``[x0, y0, x1, y1, ...]`` vertexes, skipping unreadable pairs."""
    points: list[Coordinate] = []
    for i in range(0, len(vertexes) - 1, 2):
        try:
            points.append(Coordinate(lat=float(vertexes[i + 1]), lng=float(vertexes[i])))
        except (TypeError, ValueError):
            logger.warning("Skipping malformed route vertex: %r", vertexes[i : i + 2])
    return points


def parse_kakao_route(route: dict[str, Any]) -> RouteData:
    """Builds ``RouteData`` from one entry of a Kakao ``routes`` array.

    Road vertexes are flat ``[x0, y0, x1, y1, ...]`` lists with x as
    longitude.
    """
    points: list[Coordinate] = []
    stretches: list[tuple[str, float]] = []
    for section in route.get("sections", []):
        for road in section.get("roads", []):
            points.extend(_vertex_points(road.get("vertexes") or []))
            name = road.get("name", "")
            if _is_highway_name(name):
                stretches.append((normalize_route_name(name), road.get("distance", 0) / 1000))

    summary = route.get("summary") or {}
    try:
        distance_m = float(summary.get("distance", 0))
        duration_s = float(summary.get("duration", 0))
    except (TypeError, ValueError) as exc:
        raise RoutingUnavailable("Routing provider returned a malformed summary.") from exc
    return _route_or_fail(_dedupe(points), distance_m, duration_s, stretches)


# ---------------------------------------------------------------------------
# Google Maps
# ---------------------------------------------------------------------------


def _maps_client() -> googlemaps.Client:
    return googlemaps.Client(
        key=os.environ.get("GOOGLE_MAPS_API_KEY", ""),
        retry_timeout=REQUEST_TIMEOUT_S,
    )


class GoogleRoutingClient:
    """Driving directions from the Google Maps Directions API.

    Args:
        maps_client: Optional pre-constructed Google Maps client. Created from
            ``GOOGLE_MAPS_API_KEY`` if omitted.
    """

    def __init__(self, maps_client: googlemaps.Client | None = None):
        self._maps = maps_client

    async def aclose(self) -> None:
        return None

    async def directions(self, origin: Coordinate, destination: Coordinate) -> RouteData:
        try:
            maps = self._maps or _maps_client()
            result = maps.directions(
                origin=f"{origin.lat},{origin.lng}",
                destination=f"{destination.lat},{destination.lng}",
                mode="driving",
                language="ko",
                region="kr",
            )
        except Exception as exc:  # noqa: BLE001
            logger.error("Directions API error: %s", exc)
            raise RoutingUnavailable("Routing provider request failed.") from exc

        if not result:
            raise RoutingUnavailable("Routing provider returned no route.")
        return parse_google_route(result[0])


def parse_google_route(directions_result: dict[str, Any]) -> RouteData:
    """Builds ``RouteData`` from one Directions API route.

    Step-level polylines follow the road geometry more closely than the
    simplified overview polyline, so they are used when present.
    """
    points: list[Coordinate] = []
    stretches: list[tuple[str, float]] = []
    distance_m = 0.0
    duration_s = 0.0
    for leg in directions_result.get("legs", []):
        distance_m += leg.get("distance", {}).get("value", 0)
        duration_s += leg.get("duration", {}).get("value", 0)
        for step in leg.get("steps", []):
            step_encoded = step.get("polyline", {}).get("points", "")
            if step_encoded:
                points.extend(decode_polyline(step_encoded))
            text = _TAGS.sub("", step.get("html_instructions", ""))
            match = _HIGHWAY_NAME_IN_TEXT.search(text)
            if match:
                stretches.append(
                    (
                        normalize_route_name(match.group(1)),
                        step.get("distance", {}).get("value", 0) / 1000,
                    )
                )

    if not points:
        overview = directions_result.get("overview_polyline", {}).get("points", "")
        points = decode_polyline(overview) if overview else []

    return _route_or_fail(_dedupe(points), distance_m, duration_s, stretches)


# ---------------------------------------------------------------------------
# Factory and geocoding
# ---------------------------------------------------------------------------


def get_routing_client(provider: str | None = None):
    """Returns the routing client named by ``provider`` or ``ROUTING_PROVIDER``."""
    provider = (provider or os.environ.get("ROUTING_PROVIDER", "") or "kakao").lower()
    if provider == "google":
        return GoogleRoutingClient()
    if provider == "kakao":
        return KakaoRoutingClient()
    raise ValueError(f"Unknown routing provider: {provider!r}")


def geocode(address: str, maps_client: googlemaps.Client | None = None) -> GeocodeResponse | None:
    """Resolves an address to coordinates; ``None`` if nothing matched.

    Raises:
        ValueError: If the address is blank.
        RoutingUnavailable: If the geocoding call fails.
    """
    address = address.strip()
    if not address:
        raise ValueError("address must not be empty.")
    try:
        maps = maps_client or _maps_client()
        result = maps.geocode(address, language="ko", region="kr")
    except Exception as exc:  # noqa: BLE001
        logger.error("Geocoding API error: %s", exc)
        raise RoutingUnavailable("Geocoding request failed.") from exc
    if not result:
        return None
    location = result[0]["geometry"]["location"]
    return GeocodeResponse(
        lat=float(location["lat"]),
        lng=float(location["lng"]),
        formatted_address=result[0].get("formatted_address", address),
    )
