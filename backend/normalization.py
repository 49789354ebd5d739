"""Boundary adapters that turn heterogeneous upstream records into models.

Rest-area and interchange rows arrive from the datastore and from the
expressway open-data feed with several historical field-naming conventions.
Everything is normalized here so the pipeline only ever sees ``RestArea``,
``Interchange`` and ``Coordinate``.
"""

import logging
import math
import re
from typing import Any, Mapping

from pydantic import ValidationError

from models import Coordinate, Direction, Interchange, RestArea, Store

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Bounds
# ---------------------------------------------------------------------------

# National bounding box for rest areas and interchanges.
DOMESTIC_LAT_RANGE: tuple[float, float] = (33.0, 39.0)
DOMESTIC_LNG_RANGE: tuple[float, float] = (124.0, 132.0)

# Field pairs tried in order; the first structurally valid pair wins.
# Each entry is (lat_key, lng_key).
_FLAT_COORDINATE_KEYS: tuple[tuple[str, str], ...] = (
    ("lat", "lng"),
    ("latitude", "longitude"),
    ("y", "x"),
    ("yValue", "xValue"),
)

# Suffixes the feeds append to highway names; "경부고속도로" -> "경부선".
_ROUTE_NAME_SUFFIX = re.compile(r"(고속도로|고속국도|자동차도|고속화도로)$")


def _to_float(value: Any) -> float | None:
    """Parses a number or numeric string; rejects bools, blanks and NaN."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def _valid_pair(lat: Any, lng: Any) -> Coordinate | None:
    lat_f, lng_f = _to_float(lat), _to_float(lng)
    if lat_f is None or lng_f is None:
        return None
    if not (-90.0 <= lat_f <= 90.0 and -180.0 <= lng_f <= 180.0):
        return None
    return Coordinate(lat=lat_f, lng=lng_f)


def extract_coordinates(record: Mapping[str, Any]) -> Coordinate | None:
    """Pulls a coordinate out of a loosely shaped record.

    Tries ``lat``/``lng``, then nested ``coordinates.lat``/``coordinates.lng``,
    then ``latitude``/``longitude``, then ``x``/``y`` (x is longitude), then the
    open-data feed's ``xValue``/``yValue``. Returns ``None`` when no pair is
    usable; a missing position is never defaulted to (0, 0).
    """
    lat_key, lng_key = _FLAT_COORDINATE_KEYS[0]
    coord = _valid_pair(record.get(lat_key), record.get(lng_key))
    if coord is not None:
        return coord

    nested = record.get("coordinates")
    if isinstance(nested, Mapping):
        coord = _valid_pair(nested.get("lat"), nested.get("lng"))
        if coord is not None:
            return coord
    elif isinstance(nested, Coordinate):
        return _valid_pair(nested.lat, nested.lng)

    for lat_key, lng_key in _FLAT_COORDINATE_KEYS[1:]:
        coord = _valid_pair(record.get(lat_key), record.get(lng_key))
        if coord is not None:
            return coord
    return None


def is_domestic(coord: Coordinate | None) -> bool:
    """True if the coordinate lies inside the national bounding box."""
    if coord is None:
        return False
    return (
        DOMESTIC_LAT_RANGE[0] <= coord.lat <= DOMESTIC_LAT_RANGE[1]
        and DOMESTIC_LNG_RANGE[0] <= coord.lng <= DOMESTIC_LNG_RANGE[1]
    )


def normalize_route_name(name: str | None) -> str:
    """Maps highway names to their short canonical form (``경부선``)."""
    if not name:
        return ""
    name = name.strip().replace(" ", "")
    if _ROUTE_NAME_SUFFIX.search(name):
        return _ROUTE_NAME_SUFFIX.sub("선", name)
    return name


def _first(record: Mapping[str, Any], *keys: str, default: str = "") -> str:
    for key in keys:
        value = record.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return default


def _parse_direction(value: Any) -> Direction | None:
    if isinstance(value, Direction):
        return value
    if isinstance(value, str) and value.strip().upper() in Direction.__members__:
        return Direction[value.strip().upper()]
    return None


def _parse_facilities(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        items = re.split(r"[,/|]", value)
    elif isinstance(value, (list, tuple, set, frozenset)):
        items = [str(item) for item in value]
    else:
        return ()
    return tuple(sorted({item.strip() for item in items if item and item.strip()}))


def _parse_stores(value: Any, rest_area_id: str) -> tuple[Store, ...] | None:
    """Parses a stored ``stores`` list, skipping entries that do not validate."""
    if not isinstance(value, list):
        return None
    stores: list[Store] = []
    for entry in value:
        try:
            stores.append(Store.model_validate(entry))
        except ValidationError as exc:
            logger.warning(
                "Skipping malformed store entry for rest area %s: %s",
                rest_area_id,
                exc.errors(include_url=False),
            )
    return tuple(stores)


def normalize_rest_area(record: Mapping[str, Any]) -> RestArea | None:
    """Builds a ``RestArea`` from a datastore row or an open-data item.

    Returns ``None`` only when the record has no identifier and no name.
    Records without a usable position are kept with ``coordinates=None`` so
    the proximity filter can drop them explicitly.
    """
    rest_area_id = _first(
        record, "unit_code", "stdRestCd", "unitCode", "svarCd", "serviceAreaCode", "id"
    )
    name = _first(record, "name", "unitName", "svarNm", "stdRestNm", "serviceAreaName")
    if not rest_area_id and not name:
        return None

    rest_area_id = rest_area_id or name
    return RestArea(
        id=rest_area_id,
        name=name or rest_area_id,
        route_name=normalize_route_name(
            _first(record, "route_name", "routeName", "routeNm")
        ),
        route_code=_first(record, "route_code", "routeCode", "routeNo", "routeCd") or None,
        direction=_first(record, "direction", "gudClssNm", "svarGsstClssNm"),
        route_direction=_parse_direction(record.get("route_direction")),
        coordinates=extract_coordinates(record),
        facilities=_parse_facilities(record.get("facilities")),
        stores=_parse_stores(record.get("stores"), rest_area_id),
        address=_first(record, "address", "svarAddr", "addr"),
        phone=_first(record, "phone", "rprsTelNo", "telNo"),
    )


def normalize_interchange(record: Mapping[str, Any]) -> Interchange | None:
    """Builds an ``Interchange`` from a datastore row; ``None`` if it has no weight."""
    weight = _to_float(record.get("weight"))
    interchange_id = _first(record, "id", "unitCode", "icCode")
    if weight is None or not interchange_id:
        logger.debug("Skipping interchange record without id/weight: %s", record)
        return None
    return Interchange(
        id=interchange_id,
        name=_first(record, "name", "unitName", "icName"),
        route_name=normalize_route_name(_first(record, "route_name", "routeName")),
        route_no=_first(record, "route_no", "routeNo", "routeCode"),
        direction=_first(record, "direction"),
        weight=int(weight),
        coordinates=extract_coordinates(record),
        distance_from_start=_to_float(
            record.get("distance_from_start", record.get("startValue"))
        ),
        prev_id=_first(record, "prev_ic", "prev_id") or None,
        next_id=_first(record, "next_ic", "next_id") or None,
    )


def normalize_rest_areas(records: list[Mapping[str, Any]]) -> list[RestArea]:
    rest_areas = []
    for record in records:
        rest_area = normalize_rest_area(record)
        if rest_area is not None:
            rest_areas.append(rest_area)
    return rest_areas


def normalize_interchanges(records: list[Mapping[str, Any]]) -> list[Interchange]:
    interchanges = []
    for record in records:
        interchange = normalize_interchange(record)
        if interchange is not None:
            interchanges.append(interchange)
    return interchanges
