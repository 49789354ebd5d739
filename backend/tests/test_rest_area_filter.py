"""Tests for rest_area_filter.py: proximity, spacing and the full selection."""

import pytest

import rest_area_filter
from errors import InvalidInput
from geometry import haversine_km, point_to_polyline_km
from models import Coordinate, FilterOptions, FilterResult, Interchange, RestArea

# ---------------------------------------------------------------------------
# Fixtures and helpers
# ---------------------------------------------------------------------------

SEOUL = Coordinate(lat=37.5665, lng=126.9780)
DAEJEON = Coordinate(lat=36.3504, lng=127.3845)
DAEGU = Coordinate(lat=35.8714, lng=128.6014)
BUSAN = Coordinate(lat=35.1796, lng=129.0756)
SEOUL_BUSAN = [SEOUL, DAEJEON, DAEGU, BUSAN]

# Straight southbound route along the 127.0 meridian.
MERIDIAN = [Coordinate(lat=37.5, lng=127.0), Coordinate(lat=35.5, lng=127.0)]
# Degrees of longitude per km at 36.5N.
LNG_PER_KM = 1 / 89.49


def _on_segment(a, b, t, offset_lng=0.0):
    return Coordinate(
        lat=a.lat + (b.lat - a.lat) * t,
        lng=a.lng + (b.lng - a.lng) * t + offset_lng,
    )


def _rest_area(rest_area_id, coord, direction="부산방향", route_name="경부선"):
    return RestArea(
        id=rest_area_id,
        name=f"휴게소{rest_area_id}",
        route_name=route_name,
        route_code="0010",
        direction=direction,
        coordinates=coord,
    )


def _result(rest_area_id, km, confidence=1.0, distance_to_route=0.1):
    return FilterResult(
        rest_area=_rest_area(rest_area_id, Coordinate(lat=36.0, lng=127.0)),
        distance_to_route=distance_to_route,
        distance_from_start=km,
        confidence=confidence,
    )


def _seoul_busan_candidates():
    """Rest areas spread along every Seoul-Busan leg, both carriageways."""
    candidates = []
    directions = ["부산방향", "서울방향", "양방향", ""]
    n = 0
    for a, b in zip(SEOUL_BUSAN, SEOUL_BUSAN[1:]):
        for step in range(1, 20):
            t = step / 20
            direction = directions[n % len(directions)]
            offset = (n % 3) * 0.01
            candidates.append(_rest_area(f"R{n:03d}", _on_segment(a, b, t, offset), direction))
            n += 1
    # Far away from the route and missing positions.
    candidates.append(_rest_area("FAR", Coordinate(lat=37.8, lng=129.0)))
    candidates.append(_rest_area("NOPOS", None))
    candidates.append(_rest_area("JAPAN", Coordinate(lat=35.0, lng=135.0)))
    return candidates


# ---------------------------------------------------------------------------
# Proximity filter
# ---------------------------------------------------------------------------


def test_proximity_keeps_candidates_within_distance():
    near = _rest_area("NEAR", Coordinate(lat=36.5, lng=127.0 + 3 * LNG_PER_KM))
    far = _rest_area("FAR", Coordinate(lat=36.5, lng=127.0 + 8 * LNG_PER_KM))
    results = rest_area_filter.filter_by_proximity(MERIDIAN, [near, far], 5.0)
    assert [r.rest_area.id for r in results] == ["NEAR"]
    assert results[0].distance_to_route == pytest.approx(3.0, abs=0.05)
    assert results[0].distance_from_start == pytest.approx(
        haversine_km(MERIDIAN[0], Coordinate(lat=36.5, lng=127.0)), abs=0.01
    )


def test_proximity_drops_missing_and_foreign_positions():
    candidates = [
        _rest_area("NOPOS", None),
        _rest_area("ORIGIN", Coordinate(lat=0.0, lng=0.0)),
        _rest_area("OK", Coordinate(lat=36.0, lng=127.0)),
    ]
    results = rest_area_filter.filter_by_proximity(MERIDIAN, candidates, 5.0)
    assert [r.rest_area.id for r in results] == ["OK"]


def test_proximity_orders_by_distance_then_id():
    same_spot = Coordinate(lat=36.0, lng=127.0)
    candidates = [
        _rest_area("B", same_spot),
        _rest_area("C", Coordinate(lat=37.0, lng=127.0)),
        _rest_area("A", same_spot),
    ]
    results = rest_area_filter.filter_by_proximity(MERIDIAN, candidates, 5.0)
    assert [r.rest_area.id for r in results] == ["C", "A", "B"]


def test_proximity_is_monotonic_in_max_distance():
    candidates = _seoul_busan_candidates()
    previous: set[str] = set()
    for max_distance in (0.5, 1.0, 2.0, 5.0, 20.0, 100.0):
        ids = {
            r.rest_area.id
            for r in rest_area_filter.filter_by_proximity(SEOUL_BUSAN, candidates, max_distance)
        }
        assert previous <= ids
        previous = ids


def test_proximity_empty_polyline_raises():
    with pytest.raises(InvalidInput):
        rest_area_filter.filter_by_proximity([], [], 5.0)


# ---------------------------------------------------------------------------
# Spacing selector
# ---------------------------------------------------------------------------


def test_spacing_picks_highest_confidence_in_cluster():
    results = [
        _result("A", 10.0, confidence=0.5),
        _result("B", 12.0, confidence=1.0),
        _result("C", 15.0, confidence=0.7),
        _result("D", 40.0),
    ]
    selected = rest_area_filter.select_spaced(results, 8.0, 10)
    assert [r.rest_area.id for r in selected] == ["B", "D"]


def test_spacing_breaks_confidence_ties_by_distance_to_route():
    results = [
        _result("A", 10.0, distance_to_route=2.0),
        _result("B", 11.0, distance_to_route=0.5),
    ]
    selected = rest_area_filter.select_spaced(results, 8.0, 10)
    assert [r.rest_area.id for r in selected] == ["B"]


def test_spacing_rechecks_representatives_globally():
    # Cluster 1 starts at 0 and its best member sits at 7; cluster 2 starts
    # at 10, only 3 km later, so it must yield to the first pick.
    results = [
        _result("A", 0.0, confidence=0.4),
        _result("B", 7.0, confidence=0.9),
        _result("C", 10.0),
        _result("D", 30.0),
    ]
    selected = rest_area_filter.select_spaced(results, 10.0, 10)
    assert [r.rest_area.id for r in selected] == ["B", "D"]


def test_spacing_truncates_to_earliest():
    results = [_result(f"R{i}", i * 10.0) for i in range(10)]
    selected = rest_area_filter.select_spaced(results, 5.0, 3)
    assert [r.rest_area.id for r in selected] == ["R0", "R1", "R2"]


@pytest.mark.parametrize("min_interval", [0.0, 3.0, 10.0, 25.0])
@pytest.mark.parametrize("max_results", [1, 4, 50])
def test_spacing_properties(min_interval, max_results):
    results = [
        _result(f"R{i:02d}", i * 2.7, confidence=0.3 + (i % 4) * 0.2) for i in range(40)
    ]
    selected = rest_area_filter.select_spaced(results, min_interval, max_results)
    kms = [r.distance_from_start for r in selected]
    assert len(selected) <= max_results
    assert kms == sorted(kms)
    for a, b in zip(kms, kms[1:]):
        assert b - a >= min_interval


def test_spacing_empty_input():
    assert rest_area_filter.select_spaced([], 8.0, 5) == []


def test_section_filter_is_inclusive():
    results = [_result("A", 9.9), _result("B", 10.0), _result("C", 20.0), _result("D", 20.1)]
    kept = rest_area_filter.filter_by_section(results, 10.0, 20.0)
    assert [r.rest_area.id for r in kept] == ["B", "C"]


# ---------------------------------------------------------------------------
# Full selection
# ---------------------------------------------------------------------------


def test_seoul_to_busan_scenario():
    options = FilterOptions(
        max_distance=5,
        min_interval=20,
        max_results=15,
        enable_direction_filter=True,
        direction_strict_mode=False,
        confidence_threshold=0.3,
    )
    selected = rest_area_filter.select_rest_areas(
        SEOUL_BUSAN, _seoul_busan_candidates(), [], options
    )
    assert 0 < len(selected) <= 15
    kms = [r.distance_from_start for r in selected]
    for a, b in zip(kms, kms[1:]):
        assert b - a >= 20
    for result in selected:
        assert result.rest_area.direction != "서울방향"
        assert result.distance_to_route <= 5
        assert result.rest_area.id not in {"FAR", "NOPOS", "JAPAN"}


def test_both_direction_candidate_three_km_away_is_selected():
    both = _rest_area("BOTH", Coordinate(lat=36.5, lng=127.0 + 3 * LNG_PER_KM), "BOTH")
    for polyline in (MERIDIAN, list(reversed(MERIDIAN))):
        selected = rest_area_filter.select_rest_areas(
            polyline, [both], [], FilterOptions(max_distance=5)
        )
        assert [r.rest_area.id for r in selected] == ["BOTH"]


def test_candidate_beyond_max_distance_never_selected_even_if_direction_matches():
    far = _rest_area("FAR", Coordinate(lat=36.5, lng=127.0 + 6 * LNG_PER_KM), "부산방향")
    assert point_to_polyline_km(far.coordinates, MERIDIAN) > 5
    selected = rest_area_filter.select_rest_areas(
        MERIDIAN, [far], [], FilterOptions(max_distance=5)
    )
    assert selected == []


def test_selection_is_idempotent():
    candidates = _seoul_busan_candidates()
    interchanges = [
        Interchange(
            id=f"IC{i}",
            name=f"IC{i}",
            route_name="경부선",
            route_no="0010",
            weight=100 - i,
            coordinates=_on_segment(SEOUL, DAEJEON, i / 10),
        )
        for i in range(1, 10)
    ]
    first = rest_area_filter.select_rest_areas(SEOUL_BUSAN, candidates, interchanges)
    second = rest_area_filter.select_rest_areas(SEOUL_BUSAN, candidates, interchanges)
    assert first == second
    assert [r.rest_area.id for r in first] == [r.rest_area.id for r in second]


def test_section_search_limits_distance_from_start():
    selected = rest_area_filter.select_rest_areas(
        SEOUL_BUSAN,
        _seoul_busan_candidates(),
        [],
        FilterOptions(min_interval=10),
        start_km=100,
        end_km=200,
    )
    assert selected
    assert all(100 <= r.distance_from_start <= 200 for r in selected)


def test_section_bounds_must_be_ordered():
    with pytest.raises(InvalidInput):
        rest_area_filter.select_rest_areas(
            SEOUL_BUSAN, [], [], FilterOptions(), start_km=200, end_km=100
        )


def test_no_candidates_is_an_empty_result():
    assert rest_area_filter.select_rest_areas(SEOUL_BUSAN, [], [], FilterOptions()) == []
