"""Pydantic models for the Hyugepick rest-area backend."""

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Coordinate(BaseModel):
    """A WGS84 point. Domain validity is checked by ``normalization.is_domestic``."""

    model_config = ConfigDict(frozen=True)

    lat: float
    lng: float


class Direction(str, Enum):
    """Carriageway direction on a highway.

    ``UP`` is the 상행 carriageway (toward the Seoul end of the network) and
    ``DOWN`` the 하행 carriageway.
    """

    UP = "UP"
    DOWN = "DOWN"
    BOTH = "BOTH"
    UNKNOWN = "UNKNOWN"


# ---------------------------------------------------------------------------
# Domain records
# ---------------------------------------------------------------------------


class Store(BaseModel):
    """A food counter or shop inside a rest area."""

    store_name: str
    store_code: str = ""
    store_type: str = ""
    popular_items: list[str] = Field(default_factory=list)
    """Best-selling menu items, at most three."""


class RestArea(BaseModel):
    """A rest-area snapshot as read from the datastore or the open-data feed."""

    model_config = ConfigDict(frozen=True)

    id: str
    """Standard rest-area code, also used for store/facility lookups."""

    name: str
    route_name: str = ""
    """Canonical highway name, e.g. ``경부선``."""

    route_code: str | None = None
    direction: str = ""
    """Raw direction text from the source, e.g. ``서울방향``."""

    route_direction: Direction | None = None
    """Persisted, already-normalized direction when the datastore has one."""

    coordinates: Coordinate | None = None
    """``None`` means the record had no usable position."""

    facilities: tuple[str, ...] = ()
    stores: tuple[Store, ...] | None = None
    address: str = ""
    phone: str = ""


class Interchange(BaseModel):
    """A highway interchange used as a directional reference point."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    route_name: str = ""
    route_no: str = ""
    direction: str = ""
    weight: int
    """Ordinal position along the highway's distance markers (기점 = 1)."""

    coordinates: Coordinate | None = None
    distance_from_start: float | None = None
    """Distance marker from the highway origin in kilometres."""

    prev_id: str | None = None
    next_id: str | None = None


# ---------------------------------------------------------------------------
# Pipeline configuration and results
# ---------------------------------------------------------------------------


class DirectionKeywords(BaseModel):
    """Keyword table used to normalize free-text direction strings.

    The defaults were tuned against the expressway open-data feed and are
    not exhaustive; callers may replace any list.
    """

    model_config = ConfigDict(frozen=True)

    both: tuple[str, ...] = ("양방향", "상하행", "통합")
    up: tuple[str, ...] = ("상행", "서울", "북")
    down: tuple[str, ...] = ("하행", "부산", "남")


class FilterOptions(BaseModel):
    """Tuning parameters for one run of the rest-area pipeline."""

    model_config = ConfigDict(frozen=True)

    max_distance: float = Field(5.0, gt=0)
    """Maximum distance in km between a rest area and the route polyline."""

    min_interval: float = Field(8.0, ge=0)
    """Minimum spacing in km between consecutive selected rest areas."""

    max_results: int = Field(20, ge=1)
    enable_direction_filter: bool = True
    direction_strict_mode: bool = False
    confidence_threshold: float = Field(0.3, ge=0.0, le=1.0)
    direction_keywords: DirectionKeywords = Field(default_factory=DirectionKeywords)


class EnrichmentOptions(BaseModel):
    """Controls store and facility lookups for selected rest areas."""

    model_config = ConfigDict(frozen=True)

    include_stores: bool = True
    include_facilities: bool = True
    max_concurrent: int = Field(3, ge=1)
    timeout_s: float = Field(15.0, gt=0)
    retry_count: int = Field(2, ge=0)


class DirectionAssessment(BaseModel):
    """How sure the direction filter is about a rest area's orientation.

    ``certain`` comes from an explicit direction, ``inferred`` from the
    interchange-weight heuristic and ``unknown`` when neither applies. An
    inferred assessment never carries full confidence.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["certain", "inferred", "unknown"]
    direction: Direction = Direction.UNKNOWN
    confidence: float = Field(ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _inferred_below_certainty(self) -> "DirectionAssessment":
        if self.kind == "inferred" and self.confidence >= 1.0:
            raise ValueError("an inferred direction cannot be certain")
        return self

    @classmethod
    def certain(cls, direction: Direction) -> "DirectionAssessment":
        return cls(kind="certain", direction=direction, confidence=1.0)

    @classmethod
    def inferred(cls, direction: Direction, confidence: float) -> "DirectionAssessment":
        return cls(kind="inferred", direction=direction, confidence=confidence)

    @classmethod
    def unknown(cls, confidence: float) -> "DirectionAssessment":
        return cls(kind="unknown", confidence=confidence)


class FilterResult(BaseModel):
    """A rest area annotated with its position relative to the route."""

    model_config = ConfigDict(frozen=True)

    rest_area: RestArea
    distance_to_route: float
    """Shortest distance from the rest area to the polyline in km."""

    distance_from_start: float
    """Along-route distance from the origin to the nearest projection in km."""

    confidence: float = 1.0
    included: bool = True
    assessment: DirectionAssessment | None = None
    reason: str = ""


class EnrichedRestArea(BaseModel):
    """A selected rest area with its fetched stores and facilities."""

    result: FilterResult
    facilities: list[str] = Field(default_factory=list)
    stores: list[Store] = Field(default_factory=list)
    data_quality: Literal["high", "medium", "low"] = "high"
    collection_time: str = ""


# ---------------------------------------------------------------------------
# Routing models
# ---------------------------------------------------------------------------


class HighwaySection(BaseModel):
    """A stretch of the route driven on a named expressway."""

    name: str
    distance: float
    """Length of the stretch in km."""


class RouteData(BaseModel):
    """A driving route resolved by the routing provider."""

    polyline: list[Coordinate]
    total_distance: float
    """Route length in km."""

    total_duration: int
    """Driving time in minutes."""

    highway_sections: list[HighwaySection] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# API models
# ---------------------------------------------------------------------------


class RestAreaSearchRequest(BaseModel):
    """Request body for ``POST /route/rest-areas``. Accepts camelCase keys."""

    model_config = ConfigDict(populate_by_name=True)

    origin: Coordinate
    destination: Coordinate
    max_distance: float | None = Field(None, alias="maxDistance")
    min_interval: float | None = Field(None, alias="minInterval")
    max_results: int | None = Field(None, alias="maxResults")
    enable_direction_filter: bool | None = Field(None, alias="enableDirectionFilter")
    direction_strict_mode: bool | None = Field(None, alias="directionStrictMode")
    confidence_threshold: float | None = Field(None, alias="confidenceThreshold")
    include_stores: bool = Field(True, alias="includeStores")
    include_facilities: bool = Field(True, alias="includeFacilities")

    def filter_options(self) -> FilterOptions:
        """Builds ``FilterOptions``, keeping defaults for omitted fields."""
        overrides = {
            "max_distance": self.max_distance,
            "min_interval": self.min_interval,
            "max_results": self.max_results,
            "enable_direction_filter": self.enable_direction_filter,
            "direction_strict_mode": self.direction_strict_mode,
            "confidence_threshold": self.confidence_threshold,
        }
        return FilterOptions(**{k: v for k, v in overrides.items() if v is not None})

    def enrichment_options(self) -> EnrichmentOptions:
        return EnrichmentOptions(
            include_stores=self.include_stores,
            include_facilities=self.include_facilities,
        )


class RecommendationRequest(RestAreaSearchRequest):
    """Request body for ``POST /route/rest-areas/recommendations``."""

    fuel_stop_interval: float = Field(150.0, alias="fuelStopInterval", gt=0)
    """Kilometres between fuel stops."""

    meal_stop_interval: float = Field(3.0, alias="mealStopInterval", gt=0)
    """Hours between meal stops."""

    preferred_facilities: list[str] = Field(
        default_factory=list, alias="preferredFacilities"
    )


class RouteInfo(BaseModel):
    total_distance: float
    total_duration: int
    highway_sections: list[HighwaySection] = Field(default_factory=list)


class RestAreaItem(BaseModel):
    """One rest area in the response, in travel order."""

    id: str
    name: str
    location: Coordinate
    route_name: str = ""
    direction: str = ""
    distance_from_start: float
    """Kilometres from the origin, one decimal place."""

    estimated_time: int
    """Minutes from the origin."""

    distance_to_next: float | None = None
    time_to_next: int | None = None
    distance_to_route: float
    confidence: float
    facilities: list[str] = Field(default_factory=list)
    stores: list[Store] = Field(default_factory=list)
    data_quality: Literal["high", "medium", "low"]
    collection_time: str = ""


class AnalysisSummary(BaseModel):
    total_rest_areas: int
    average_interval: float
    """Mean spacing between consecutive rest areas in km."""

    data_collection_time: str
    success_rate: float
    """Share of rest areas whose enrichment was not ``low`` quality."""


class RestAreaSearchResponse(BaseModel):
    """Response for the rest-area search endpoints."""

    route_info: RouteInfo
    rest_areas: list[RestAreaItem]
    analysis_summary: AnalysisSummary


class Recommendation(BaseModel):
    rest_area_name: str
    reasons: list[str]
    priority: Literal["high", "medium", "low"]


class RecommendationResponse(RestAreaSearchResponse):
    recommendations: list[Recommendation] = Field(default_factory=list)


class GeocodeRequest(BaseModel):
    """Request body for the /geocode-address endpoint."""

    address: str


class GeocodeResponse(BaseModel):
    """Response from the /geocode-address endpoint."""

    lat: float
    lng: float
    formatted_address: str


class SyncResponse(BaseModel):
    """Outcome of a rest-area or interchange sync run."""

    sync_type: Literal["rest_areas", "interchanges"]
    status: Literal["completed", "failed"]
    fetched: int
    upserted: int
    skipped: int = 0
    started_at: str
    completed_at: str
