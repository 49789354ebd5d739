"""Async client for the Korea Expressway Corporation open-data API.

Covers the four feeds the backend uses:
  - ``locationinfo/locationinfoRest``: rest-area locations (paginated).
  - ``locationinfo/locationinfoIc``: interchange locations (paginated).
  - ``restinfo/restBestfoodList``: best-selling food per rest area.
  - ``restinfo/restConvList``: convenience facilities per rest area.

All calls are idempotent reads and are retried on transient failures.
"""

import logging
import os
from typing import Any

import httpx

from errors import RestAreaDataUnavailable
from models import Interchange, RestArea, Store
from normalization import extract_coordinates, is_domestic, normalize_rest_area, normalize_route_name
from retry import with_retries

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Feed settings
# ---------------------------------------------------------------------------

DEFAULT_BASE_URL: str = "https://data.ex.co.kr/openapi"
REST_AREA_PATH: str = "locationinfo/locationinfoRest"
INTERCHANGE_PATH: str = "locationinfo/locationinfoIc"
BEST_FOOD_PATH: str = "restinfo/restBestfoodList"
FACILITY_PATH: str = "restinfo/restConvList"

PAGE_SIZE: int = 100
MAX_PAGES: int = 50
REQUEST_TIMEOUT_S: float = 30.0
POPULAR_ITEM_LIMIT: int = 3

# gudClssCd values in the rest-area feed.
_GUIDE_DIRECTIONS: dict[str, str] = {"0": "서울방향", "1": "부산방향"}


class HighwayApiClient:
    """Thin async wrapper over the open-data endpoints.

    Args:
        api_key: Service key. Read from ``HIGHWAY_API_KEY`` if omitted.
        base_url: API root. Read from ``HIGHWAY_API_URL`` if omitted.
        http_client: Optional pre-constructed ``httpx.AsyncClient``; tests
            pass one backed by ``httpx.MockTransport``.
        retries: Retry bound for each request.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
        retries: int = 2,
        backoff_base_s: float = 0.5,
    ):
        self._api_key = api_key if api_key is not None else os.environ.get("HIGHWAY_API_KEY", "")
        self._base_url = (
            base_url or os.environ.get("HIGHWAY_API_URL", "") or DEFAULT_BASE_URL
        ).rstrip("/")
        self._client = http_client or httpx.AsyncClient(timeout=REQUEST_TIMEOUT_S)
        self._owns_client = http_client is None
        self._retries = retries
        self._backoff_base_s = backoff_base_s

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "HighwayApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # -----------------------------------------------------------------------
    # Transport
    # -----------------------------------------------------------------------

    async def _get(self, path: str, **params: Any) -> dict[str, Any]:
        if not self._api_key:
            raise RestAreaDataUnavailable("HIGHWAY_API_KEY is not configured.")
        query = {"key": self._api_key, "type": "json", **params}
        url = f"{self._base_url}/{path}"

        async def _call() -> dict[str, Any]:
            response = await self._client.get(url, params=query)
            response.raise_for_status()
            return response.json()

        try:
            payload = await with_retries(
                _call,
                retries=self._retries,
                base_delay=self._backoff_base_s,
                description=f"GET {path}",
            )
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Highway API request %s failed: %s", path, exc)
            raise RestAreaDataUnavailable(f"Highway API request failed: {path}") from exc

        if not isinstance(payload, dict):
            raise RestAreaDataUnavailable(f"Unexpected payload from {path}")
        return payload

    async def _get_all_pages(self, path: str) -> list[dict[str, Any]]:
        """Walks ``pageNo`` until a short or empty page, capped at ``MAX_PAGES``."""
        items: list[dict[str, Any]] = []
        for page in range(1, MAX_PAGES + 1):
            payload = await self._get(path, numOfRows=PAGE_SIZE, pageNo=page)
            page_items = payload.get("list") or []
            items.extend(page_items)
            if len(page_items) < PAGE_SIZE:
                break
        logger.info("Fetched %d records from %s", len(items), path)
        return items

    # -----------------------------------------------------------------------
    # Feeds
    # -----------------------------------------------------------------------

    async def fetch_rest_area_records(self) -> list[dict[str, Any]]:
        """Returns raw rest-area rows with ``direction`` filled from ``gudClssCd``."""
        records = await self._get_all_pages(REST_AREA_PATH)
        for record in records:
            if not record.get("direction"):
                record["direction"] = _GUIDE_DIRECTIONS.get(str(record.get("gudClssCd", "")), "")
        return records

    async def fetch_rest_areas(self) -> list[RestArea]:
        rest_areas = []
        for record in await self.fetch_rest_area_records():
            rest_area = normalize_rest_area(record)
            if rest_area is not None:
                rest_areas.append(rest_area)
        return rest_areas

    async def fetch_interchanges(self) -> list[Interchange]:
        return build_interchanges(await self._get_all_pages(INTERCHANGE_PATH))

    async def fetch_stores(self, rest_area_code: str) -> list[Store]:
        """Groups the best-food list by counter, keeping the top menu items."""
        payload = await self._get(BEST_FOOD_PATH, stdRestCd=rest_area_code)
        stores: dict[str, Store] = {}
        rows = sorted(payload.get("list") or [], key=lambda row: _rank(row.get("rn")))
        for row in rows:
            store_name = str(row.get("cmpnNm") or row.get("stdRestNm") or "").strip()
            food = str(row.get("foodNm") or "").strip()
            if not store_name:
                continue
            store = stores.setdefault(
                store_name,
                Store(
                    store_name=store_name,
                    store_code=str(row.get("seq") or row.get("cmpnCd") or ""),
                    store_type=str(row.get("foodMaterial") or "food"),
                ),
            )
            if food and len(store.popular_items) < POPULAR_ITEM_LIMIT:
                store.popular_items.append(food)
        return list(stores.values())

    async def fetch_facilities(self, rest_area_code: str) -> list[str]:
        payload = await self._get(FACILITY_PATH, stdRestCd=rest_area_code)
        names = {str(row.get("psName") or "").strip() for row in payload.get("list") or []}
        return sorted(name for name in names if name)


def _rank(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 1_000_000


def build_interchanges(records: list[dict[str, Any]]) -> list[Interchange]:
    """Turns raw interchange rows into weighted, linked ``Interchange`` records.

    Rows are grouped by route code and sorted by their distance marker
    (``startValue``); the weight is the 1-based position in that order and
    prev/next point at the neighbours. Rows without a domestic position are
    dropped before weighting.
    """
    by_route: dict[str, list[dict[str, Any]]] = {}
    for record in records:
        route_code = str(record.get("routeCode") or record.get("routeNo") or "").strip()
        code = str(record.get("unitCode") or record.get("icCode") or "").strip()
        if not route_code or not code:
            continue
        if not is_domestic(extract_coordinates(record)):
            continue
        by_route.setdefault(route_code, []).append(record)

    interchanges: list[Interchange] = []
    for route_code in sorted(by_route):
        rows = sorted(
            by_route[route_code],
            key=lambda row: (_marker(row.get("startValue")), str(row.get("unitCode") or row.get("icCode"))),
        )
        ids = [str(row.get("unitCode") or row.get("icCode")).strip() for row in rows]
        for index, row in enumerate(rows):
            interchanges.append(
                Interchange(
                    id=ids[index],
                    name=str(row.get("unitName") or row.get("icName") or "").strip(),
                    route_name=normalize_route_name(str(row.get("routeName") or "")),
                    route_no=route_code,
                    weight=index + 1,
                    coordinates=extract_coordinates(row),
                    distance_from_start=_marker(row.get("startValue"), None),
                    prev_id=ids[index - 1] if index > 0 else None,
                    next_id=ids[index + 1] if index + 1 < len(ids) else None,
                )
            )
    logger.info("Built %d interchanges across %d routes", len(interchanges), len(by_route))
    return interchanges


def _marker(value: Any, default: float | None = float("inf")) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default
