"""Ingestion of rest areas and interchanges from the open-data API.

Pulls the full feeds, normalizes them and upserts them into the datastore.
Each run writes a ``sync_logs`` row that ends as ``completed`` or ``failed``.
Only one sync may run at a time per process.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

from direction_filter import normalize_direction
from errors import SyncInProgress
from highway_api import HighwayApiClient
from models import Interchange, RestArea, SyncResponse
from normalization import is_domestic, normalize_rest_area
from rest_area_store import RestAreaStore

logger = logging.getLogger(__name__)

SYNC_SOURCE: str = "data.ex.co.kr"

_sync_lock = asyncio.Lock()


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def rest_area_row(rest_area: RestArea, synced_at: str) -> dict[str, Any]:
    """Maps a ``RestArea`` to a ``rest_areas`` table row."""
    return {
        "unit_code": rest_area.id,
        "name": rest_area.name,
        "route_name": rest_area.route_name,
        "route_code": rest_area.route_code,
        "direction": rest_area.direction,
        "route_direction": normalize_direction(rest_area.direction).value,
        "lat": rest_area.coordinates.lat if rest_area.coordinates else None,
        "lng": rest_area.coordinates.lng if rest_area.coordinates else None,
        "address": rest_area.address,
        "phone": rest_area.phone,
        "data_source": SYNC_SOURCE,
        "last_synced_at": synced_at,
    }


def interchange_row(interchange: Interchange, synced_at: str) -> dict[str, Any]:
    """Maps an ``Interchange`` to an ``interchanges`` table row."""
    return {
        "id": interchange.id,
        "name": interchange.name,
        "route_name": interchange.route_name,
        "route_no": interchange.route_no,
        "direction": interchange.direction,
        "weight": interchange.weight,
        "distance_from_start": interchange.distance_from_start,
        "lat": interchange.coordinates.lat if interchange.coordinates else None,
        "lng": interchange.coordinates.lng if interchange.coordinates else None,
        "prev_ic": interchange.prev_id,
        "next_ic": interchange.next_id,
        "last_synced_at": synced_at,
    }


async def _run(sync_type: str, store: RestAreaStore, collect) -> SyncResponse:
    """Runs one sync under the process-wide lock, logging it to ``sync_logs``.

    ``collect`` is an async callable returning ``(fetched, rows, skipped)``.

    Raises:
        SyncInProgress: If another sync holds the lock.
    """
    if _sync_lock.locked():
        raise SyncInProgress(f"A sync is already running; {sync_type} sync rejected.")

    async with _sync_lock:
        started_at = _utc_now()
        log_id = await store.start_sync_log(sync_type, SYNC_SOURCE)
        logger.info("Sync %s started (log %s)", sync_type, log_id)
        try:
            fetched, rows, skipped = await collect()
            table, key = (
                ("rest_areas", "unit_code") if sync_type == "rest_areas" else ("interchanges", "id")
            )
            upserted = await store.upsert(table, rows, on_conflict=key)
        except Exception as exc:
            logger.exception("Sync %s failed", sync_type)
            await store.finish_sync_log(log_id, status="failed", error_message=str(exc))
            raise

        await store.finish_sync_log(
            log_id, status="completed", fetched=fetched, upserted=upserted
        )
        logger.info(
            "Sync %s completed: fetched=%d upserted=%d skipped=%d",
            sync_type,
            fetched,
            upserted,
            skipped,
        )
        return SyncResponse(
            sync_type=sync_type,
            status="completed",
            fetched=fetched,
            upserted=upserted,
            skipped=skipped,
            started_at=started_at,
            completed_at=_utc_now(),
        )


async def sync_rest_areas(api: HighwayApiClient, store: RestAreaStore) -> SyncResponse:
    """Refreshes the ``rest_areas`` table from the rest-area feed.

    Records without a domestic position are skipped.
    """

    async def collect() -> tuple[int, list[dict[str, Any]], int]:
        records = await api.fetch_rest_area_records()
        synced_at = _utc_now()
        rows: dict[str, dict[str, Any]] = {}
        skipped = 0
        for record in records:
            rest_area = normalize_rest_area(record)
            if rest_area is None or not is_domestic(rest_area.coordinates):
                skipped += 1
                continue
            rows[rest_area.id] = rest_area_row(rest_area, synced_at)
        return len(records), list(rows.values()), skipped

    return await _run("rest_areas", store, collect)


async def sync_interchanges(api: HighwayApiClient, store: RestAreaStore) -> SyncResponse:
    """Refreshes the ``interchanges`` table with weighted, linked interchanges."""

    async def collect() -> tuple[int, list[dict[str, Any]], int]:
        interchanges = await api.fetch_interchanges()
        synced_at = _utc_now()
        rows: dict[str, dict[str, Any]] = {}
        for interchange in interchanges:
            rows.setdefault(interchange.id, interchange_row(interchange, synced_at))
        return len(interchanges), list(rows.values()), len(interchanges) - len(rows)

    return await _run("interchanges", store, collect)
