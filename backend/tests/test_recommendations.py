"""Tests for recommendations.py."""

from models import Coordinate, RestAreaItem, Store
from recommendations import recommend_stops


def _item(name, km, minutes, facilities=(), stores=()):
    return RestAreaItem(
        id=name,
        name=name,
        location=Coordinate(lat=36.0, lng=127.0),
        distance_from_start=km,
        estimated_time=minutes,
        distance_to_route=0.1,
        confidence=1.0,
        facilities=list(facilities),
        stores=list(stores),
        data_quality="high",
    )


def test_fuel_stop_is_recommended_once_interval_is_nearly_due():
    items = [
        _item("A", 50, 40, facilities=["주유소"]),
        _item("B", 125, 95, facilities=["주유소"]),
        _item("C", 200, 150, facilities=["화장실"]),
        _item("D", 240, 180, facilities=["주유소"]),
    ]
    recommendations = recommend_stops(items, fuel_stop_interval=150, meal_stop_interval=10)
    assert [r.rest_area_name for r in recommendations] == ["B"]
    assert recommendations[0].priority == "high"
    assert recommendations[0].reasons[0].startswith("주유 권장 지점")


def test_fuel_counter_resets_after_each_stop():
    items = [
        _item("A", 120, 90, facilities=["LPG 충전소"]),
        _item("B", 200, 150, facilities=["주유소"]),
        _item("C", 250, 190, facilities=["주유소"]),
    ]
    recommendations = recommend_stops(items, fuel_stop_interval=150, meal_stop_interval=10)
    # Next fuel stop is due from 120 + 150 * 0.8 = 240 km.
    assert [r.rest_area_name for r in recommendations] == ["A", "C"]


def test_meal_stop_needs_food():
    items = [
        _item("A", 100, 150, facilities=["화장실"]),
        _item("B", 120, 160, stores=[Store(store_name="한식당")]),
    ]
    recommendations = recommend_stops(items, fuel_stop_interval=1000, meal_stop_interval=3)
    assert [r.rest_area_name for r in recommendations] == ["B"]
    assert recommendations[0].priority == "medium"
    assert "160분" in recommendations[0].reasons[0]


def test_meal_stop_from_facility_keyword():
    items = [_item("A", 100, 150, facilities=["푸드코트"])]
    recommendations = recommend_stops(items, fuel_stop_interval=1000, meal_stop_interval=3)
    assert recommendations[0].priority == "medium"


def test_preferred_facility_alone_is_low_priority():
    items = [_item("A", 10, 8, facilities=["전기차 충전기", "수유실"])]
    recommendations = recommend_stops(
        items, fuel_stop_interval=1000, meal_stop_interval=10, preferred_facilities=["수유실", " "]
    )
    assert len(recommendations) == 1
    assert recommendations[0].priority == "low"
    assert recommendations[0].reasons == ["선호 시설: 수유실"]


def test_two_reasons_are_high_priority():
    items = [_item("A", 100, 150, facilities=["수유실"], stores=[Store(store_name="한식당")])]
    recommendations = recommend_stops(
        items, fuel_stop_interval=1000, meal_stop_interval=3, preferred_facilities=["수유실"]
    )
    assert recommendations[0].priority == "high"
    assert len(recommendations[0].reasons) == 2


def test_no_rest_areas_no_recommendations():
    assert recommend_stops([], fuel_stop_interval=150, meal_stop_interval=3) == []
