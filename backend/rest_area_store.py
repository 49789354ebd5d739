"""Async access to the rest-area datastore through its PostgREST interface.

Tables:
  - ``rest_areas``: one row per rest area, keyed by ``unit_code``.
  - ``interchanges``: weighted interchanges, keyed by ``id``.
  - ``sync_logs``: one row per ingestion run.

The route pipeline only reads; ``rest_area_sync`` is the only writer.
"""

import logging
import os
from datetime import datetime, timezone
from typing import Any, Iterable

import httpx

from errors import RestAreaDataUnavailable
from models import Interchange, RestArea
from normalization import normalize_interchanges, normalize_rest_areas
from retry import with_retries

logger = logging.getLogger(__name__)

PAGE_SIZE: int = 1000
REQUEST_TIMEOUT_S: float = 15.0


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class RestAreaStore:
    """Reads and writes rest-area tables over PostgREST.

    Args:
        url: Project URL. Read from ``SUPABASE_URL`` if omitted.
        key: Service or anon key. Read from ``SUPABASE_KEY`` if omitted.
        http_client: Optional pre-constructed ``httpx.AsyncClient``.
        retries: Retry bound for reads.
    """

    def __init__(
        self,
        url: str | None = None,
        key: str | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
        retries: int = 2,
        backoff_base_s: float = 0.5,
    ):
        base = url if url is not None else os.environ.get("SUPABASE_URL", "")
        self._rest_url = f"{base.rstrip('/')}/rest/v1"
        self._configured = bool(base)
        api_key = key if key is not None else os.environ.get("SUPABASE_KEY", "")
        self._headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        self._client = http_client or httpx.AsyncClient(timeout=REQUEST_TIMEOUT_S)
        self._owns_client = http_client is None
        self._retries = retries
        self._backoff_base_s = backoff_base_s

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "RestAreaStore":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # -----------------------------------------------------------------------
    # Transport
    # -----------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        table: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        prefer: str | None = None,
        retry: bool = True,
    ) -> Any:
        if not self._configured:
            raise RestAreaDataUnavailable("SUPABASE_URL is not configured.")
        headers = dict(self._headers)
        if prefer:
            headers["Prefer"] = prefer

        async def _call() -> Any:
            response = await self._client.request(
                method,
                f"{self._rest_url}/{table}",
                params=params,
                json=json,
                headers=headers,
            )
            response.raise_for_status()
            return response.json() if response.content else None

        try:
            return await with_retries(
                _call,
                retries=self._retries if retry else 0,
                base_delay=self._backoff_base_s,
                description=f"{method} {table}",
            )
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Datastore %s %s failed: %s", method, table, exc)
            raise RestAreaDataUnavailable(f"Datastore request failed: {table}") from exc

    async def _select_all(self, table: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        rows: list[dict[str, Any]] = []
        offset = 0
        while True:
            page = await self._request(
                "GET",
                table,
                params={**params, "limit": PAGE_SIZE, "offset": offset},
            )
            page = page or []
            rows.extend(page)
            if len(page) < PAGE_SIZE:
                return rows
            offset += PAGE_SIZE

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    async def list_rest_areas(self, route_names: Iterable[str] | None = None) -> list[RestArea]:
        """Returns all rest areas, optionally limited to the given highways."""
        params: dict[str, Any] = {"select": "*", "order": "unit_code.asc"}
        names = sorted(set(route_names or ()))
        if names:
            params["route_name"] = f"in.({','.join(names)})"
        rows = await self._select_all("rest_areas", params)
        rest_areas = normalize_rest_areas(rows)
        logger.info("Loaded %d rest areas from the datastore", len(rest_areas))
        return rest_areas

    async def list_interchanges(self, route_names: Iterable[str] | None = None) -> list[Interchange]:
        params: dict[str, Any] = {"select": "*", "order": "route_no.asc,weight.asc"}
        names = sorted(set(route_names or ()))
        if names:
            params["route_name"] = f"in.({','.join(names)})"
        rows = await self._select_all("interchanges", params)
        return normalize_interchanges(rows)

    # -----------------------------------------------------------------------
    # Writes (sync job only)
    # -----------------------------------------------------------------------

    async def upsert(self, table: str, rows: list[dict[str, Any]], on_conflict: str) -> int:
        """Inserts or merges rows on ``on_conflict``; returns the row count sent."""
        if not rows:
            return 0
        await self._request(
            "POST",
            table,
            params={"on_conflict": on_conflict},
            json=rows,
            prefer="resolution=merge-duplicates,return=minimal",
        )
        return len(rows)

    async def start_sync_log(self, sync_type: str, source: str) -> str | None:
        """Creates a ``sync_logs`` row in ``started`` state and returns its id."""
        created = await self._request(
            "POST",
            "sync_logs",
            json={
                "sync_type": sync_type,
                "source": source,
                "status": "started",
                "started_at": _utc_now(),
            },
            prefer="return=representation",
            retry=False,
        )
        if isinstance(created, list) and created:
            return str(created[0].get("id"))
        return None

    async def finish_sync_log(
        self,
        log_id: str | None,
        *,
        status: str,
        fetched: int = 0,
        upserted: int = 0,
        error_message: str | None = None,
    ) -> None:
        if log_id is None:
            return
        await self._request(
            "PATCH",
            "sync_logs",
            params={"id": f"eq.{log_id}"},
            json={
                "status": status,
                "records_fetched": fetched,
                "records_upserted": upserted,
                "error_message": error_message,
                "completed_at": _utc_now(),
            },
            prefer="return=minimal",
            retry=False,
        )
