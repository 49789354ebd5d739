"""Tests for rest_area_sync.py with fake feed and datastore clients."""

import pytest

import rest_area_sync
from errors import RestAreaDataUnavailable, SyncInProgress
from models import Coordinate, Interchange

# ---------------------------------------------------------------------------
# Fixtures and helpers
# ---------------------------------------------------------------------------


def _record(code, lat="36.5", lng="127.4", direction="부산방향"):
    return {
        "unitCode": code,
        "unitName": f"휴게소{code}",
        "routeName": "경부고속도로",
        "routeNo": "0010",
        "yValue": lat,
        "xValue": lng,
        "direction": direction,
    }


def _interchange(ic_id, weight):
    return Interchange(
        id=ic_id,
        name=f"{ic_id}IC",
        route_name="경부선",
        route_no="0010",
        weight=weight,
        coordinates=Coordinate(lat=36.0 + weight * 0.1, lng=127.5),
    )


class _FakeApi:
    def __init__(self, records=(), interchanges=(), error=None):
        self.records = list(records)
        self.interchanges = list(interchanges)
        self.error = error

    async def fetch_rest_area_records(self):
        if self.error:
            raise self.error
        return self.records

    async def fetch_interchanges(self):
        if self.error:
            raise self.error
        return self.interchanges


class _FakeStore:
    def __init__(self, upsert_error=None):
        self.upsert_error = upsert_error
        self.upserts = []
        self.logs = {}

    async def start_sync_log(self, sync_type, source):
        log_id = str(len(self.logs) + 1)
        self.logs[log_id] = {"sync_type": sync_type, "source": source, "status": "started"}
        return log_id

    async def finish_sync_log(self, log_id, *, status, fetched=0, upserted=0, error_message=None):
        self.logs[log_id].update(
            status=status, fetched=fetched, upserted=upserted, error_message=error_message
        )

    async def upsert(self, table, rows, on_conflict):
        if self.upsert_error:
            raise self.upsert_error
        self.upserts.append((table, rows, on_conflict))
        return len(rows)


# ---------------------------------------------------------------------------
# Rest areas
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_sync_rest_areas_upserts_normalized_rows():
    api = _FakeApi(
        [
            _record("000001"),
            _record("000002", direction="서울방향"),
            _record("000001", direction="부산방향"),
            _record("000003", lat="0", lng="0"),
            _record("000004", lat="", lng=""),
        ]
    )
    store = _FakeStore()
    result = await rest_area_sync.sync_rest_areas(api, store)

    assert result.status == "completed"
    assert result.fetched == 5
    assert result.upserted == 2
    assert result.skipped == 2
    table, rows, key = store.upserts[0]
    assert (table, key) == ("rest_areas", "unit_code")
    by_code = {row["unit_code"]: row for row in rows}
    assert by_code["000001"]["route_name"] == "경부선"
    assert by_code["000001"]["route_direction"] == "DOWN"
    assert by_code["000002"]["route_direction"] == "UP"
    assert by_code["000001"]["data_source"] == "data.ex.co.kr"
    assert store.logs["1"]["status"] == "completed"
    assert store.logs["1"]["upserted"] == 2


@pytest.mark.asyncio
async def test_feed_failure_marks_log_failed_and_reraises():
    store = _FakeStore()
    with pytest.raises(RestAreaDataUnavailable):
        await rest_area_sync.sync_rest_areas(
            _FakeApi(error=RestAreaDataUnavailable("feed down")), store
        )
    assert store.logs["1"]["status"] == "failed"
    assert "feed down" in store.logs["1"]["error_message"]
    assert store.upserts == []


@pytest.mark.asyncio
async def test_upsert_failure_marks_log_failed():
    store = _FakeStore(upsert_error=RestAreaDataUnavailable("db down"))
    with pytest.raises(RestAreaDataUnavailable):
        await rest_area_sync.sync_rest_areas(_FakeApi([_record("000001")]), store)
    assert store.logs["1"]["status"] == "failed"


# ---------------------------------------------------------------------------
# Interchanges
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_sync_interchanges_dedupes_by_id():
    api = _FakeApi(
        interchanges=[_interchange("A", 1), _interchange("B", 2), _interchange("A", 3)]
    )
    store = _FakeStore()
    result = await rest_area_sync.sync_interchanges(api, store)

    assert (result.fetched, result.upserted, result.skipped) == (3, 2, 1)
    table, rows, key = store.upserts[0]
    assert (table, key) == ("interchanges", "id")
    assert [(row["id"], row["weight"]) for row in rows] == [("A", 1), ("B", 2)]


# ---------------------------------------------------------------------------
# Locking
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_concurrent_sync_is_rejected():
    store = _FakeStore()
    async with rest_area_sync._sync_lock:
        with pytest.raises(SyncInProgress):
            await rest_area_sync.sync_interchanges(_FakeApi(), store)
    assert store.logs == {}

    result = await rest_area_sync.sync_interchanges(_FakeApi(), store)
    assert result.status == "completed"
