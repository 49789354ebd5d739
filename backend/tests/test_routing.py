"""Tests for routing.py.

Kakao requests go through ``httpx.MockTransport``; Google calls use a minimal
mock of ``googlemaps.Client``.
"""

import httpx
import pytest
from googlemaps import convert

import routing
from errors import RoutingUnavailable
from models import Coordinate

# ---------------------------------------------------------------------------
# Fixtures and helpers
# ---------------------------------------------------------------------------

SEOUL = Coordinate(lat=37.5665, lng=126.9780)
BUSAN = Coordinate(lat=35.1796, lng=129.0756)


def _kakao_route(result_code=0):
    return {
        "result_code": result_code,
        "result_msg": "길찾기 성공" if result_code == 0 else "경로 없음",
        "summary": {"distance": 395000, "duration": 16200},
        "sections": [
            {
                "roads": [
                    {"name": "세종대로", "distance": 3000, "vertexes": [126.978, 37.5665, 127.0, 37.5]},
                    {"name": "경부고속도로", "distance": 200000, "vertexes": [127.0, 37.5, 127.38, 36.35]},
                    {"name": "경부고속도로", "distance": 120000, "vertexes": [127.38, 36.35, 128.6, 35.87]},
                    {"name": "중앙로", "distance": 72000, "vertexes": [128.6, 35.87, 129.0756, 35.1796]},
                ]
            }
        ],
    }


def _kakao(handler, **kwargs):
    return routing.KakaoRoutingClient(
        api_key="kakao-key",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        backoff_base_s=0,
        **kwargs,
    )


def _google_directions_result():
    return [
        {
            "overview_polyline": {"points": convert.encode_polyline([(37.5665, 126.978), (35.1796, 129.0756)])},
            "legs": [
                {
                    "distance": {"value": 400000},
                    "duration": {"value": 18000},
                    "steps": [
                        {
                            "distance": {"value": 5000},
                            "html_instructions": "<b>세종대로</b>를 따라 이동",
                            "polyline": {"points": convert.encode_polyline([(37.5665, 126.978), (37.5, 127.0)])},
                        },
                        {
                            "distance": {"value": 395000},
                            "html_instructions": "<b>경부고속도로</b>에 진입",
                            "polyline": {"points": convert.encode_polyline([(37.5, 127.0), (35.1796, 129.0756)])},
                        },
                    ],
                }
            ],
        }
    ]


class _MockMapsClient:
    """Minimal mock of googlemaps.Client for testing."""

    def __init__(self, directions_result=None, geocode_result=None, error=None):
        self._directions = directions_result
        self._geocode = geocode_result
        self._error = error
        self.geocode_calls = []

    def directions(self, **kwargs):
        if self._error:
            raise self._error
        return self._directions

    def geocode(self, address, **kwargs):
        self.geocode_calls.append(address)
        if self._error:
            raise self._error
        return self._geocode


# ---------------------------------------------------------------------------
# Kakao
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_kakao_directions_builds_route():
    seen = {}

    def handler(request):
        seen["params"] = dict(request.url.params)
        seen["auth"] = request.headers["Authorization"]
        return httpx.Response(200, json={"routes": [_kakao_route()]})

    route = await _kakao(handler).directions(SEOUL, BUSAN)
    assert seen["params"]["origin"] == "126.978,37.5665"
    assert seen["params"]["destination"] == "129.0756,35.1796"
    assert seen["auth"] == "KakaoAK kakao-key"
    assert route.total_distance == 395.0
    assert route.total_duration == 270
    # Shared vertexes between roads are collapsed.
    assert len(route.polyline) == 5
    assert route.polyline[0] == Coordinate(lat=37.5665, lng=126.978)
    assert [(s.name, s.distance) for s in route.highway_sections] == [("경부선", 320.0)]


@pytest.mark.asyncio
async def test_kakao_no_route_raises():
    def handler(request):
        return httpx.Response(200, json={"routes": [_kakao_route(result_code=104)]})

    with pytest.raises(RoutingUnavailable):
        await _kakao(handler).directions(SEOUL, BUSAN)


@pytest.mark.asyncio
async def test_kakao_server_error_is_retried_then_raises():
    attempts = []

    def handler(request):
        attempts.append(1)
        return httpx.Response(502)

    with pytest.raises(RoutingUnavailable):
        await _kakao(handler, retries=2).directions(SEOUL, BUSAN)
    assert len(attempts) == 3


@pytest.mark.asyncio
async def test_kakao_without_key_raises():
    client = routing.KakaoRoutingClient(
        api_key="",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200))),
    )
    with pytest.raises(RoutingUnavailable):
        await client.directions(SEOUL, BUSAN)


def test_parse_kakao_route_without_vertexes_raises():
    with pytest.raises(RoutingUnavailable):
        routing.parse_kakao_route({"summary": {"distance": 1, "duration": 1}, "sections": []})


def test_parse_kakao_route_skips_malformed_vertexes():
    route = routing.parse_kakao_route(
        {
            "summary": {"distance": 10000, "duration": 600},
            "sections": [
                {"roads": [{"name": "국도", "vertexes": [127.0, 37.5, "bad", None, 127.1, 37.4]}]}
            ],
        }
    )
    assert route.polyline == [
        Coordinate(lat=37.5, lng=127.0),
        Coordinate(lat=37.4, lng=127.1),
    ]


def test_parse_kakao_route_malformed_summary_raises():
    with pytest.raises(RoutingUnavailable):
        routing.parse_kakao_route(
            {
                "summary": {"distance": "far", "duration": 1},
                "sections": [{"roads": [{"vertexes": [127.0, 37.5, 127.1, 37.4]}]}],
            }
        )


# ---------------------------------------------------------------------------
# Google
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_google_directions_uses_step_polylines():
    client = routing.GoogleRoutingClient(_MockMapsClient(_google_directions_result()))
    route = await client.directions(SEOUL, BUSAN)
    assert len(route.polyline) == 3
    assert route.total_distance == 400.0
    assert route.total_duration == 300
    assert [(s.name, s.distance) for s in route.highway_sections] == [("경부선", 395.0)]


@pytest.mark.asyncio
async def test_google_falls_back_to_overview_polyline():
    result = _google_directions_result()
    for step in result[0]["legs"][0]["steps"]:
        step.pop("polyline")
    route = await routing.GoogleRoutingClient(_MockMapsClient(result)).directions(SEOUL, BUSAN)
    assert len(route.polyline) == 2


@pytest.mark.asyncio
async def test_google_empty_result_raises():
    with pytest.raises(RoutingUnavailable):
        await routing.GoogleRoutingClient(_MockMapsClient([])).directions(SEOUL, BUSAN)


@pytest.mark.asyncio
async def test_google_api_error_raises():
    client = routing.GoogleRoutingClient(_MockMapsClient(error=RuntimeError("quota")))
    with pytest.raises(RoutingUnavailable):
        await client.directions(SEOUL, BUSAN)


# ---------------------------------------------------------------------------
# Factory and geocoding
# ---------------------------------------------------------------------------


def test_get_routing_client_by_name(monkeypatch):
    monkeypatch.delenv("ROUTING_PROVIDER", raising=False)
    assert isinstance(routing.get_routing_client(), routing.KakaoRoutingClient)
    assert isinstance(routing.get_routing_client("google"), routing.GoogleRoutingClient)
    monkeypatch.setenv("ROUTING_PROVIDER", "GOOGLE")
    assert isinstance(routing.get_routing_client(), routing.GoogleRoutingClient)
    with pytest.raises(ValueError):
        routing.get_routing_client("osrm")


def test_geocode_returns_first_match():
    maps = _MockMapsClient(
        geocode_result=[
            {
                "geometry": {"location": {"lat": 37.5665, "lng": 126.978}},
                "formatted_address": "대한민국 서울특별시 중구",
            }
        ]
    )
    result = routing.geocode("  서울시청 ", maps_client=maps)
    assert maps.geocode_calls == ["서울시청"]
    assert result.lat == 37.5665
    assert result.formatted_address == "대한민국 서울특별시 중구"


def test_geocode_no_match_returns_none():
    assert routing.geocode("없는주소", maps_client=_MockMapsClient(geocode_result=[])) is None


def test_geocode_blank_address_raises():
    with pytest.raises(ValueError):
        routing.geocode("   ", maps_client=_MockMapsClient())


def test_geocode_api_error_raises_routing_unavailable():
    with pytest.raises(RoutingUnavailable):
        routing.geocode("서울", maps_client=_MockMapsClient(error=RuntimeError("down")))
