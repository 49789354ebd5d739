"""Exception types raised by the rest-area pipeline and its upstream clients."""


class InvalidInput(ValueError):
    """Malformed or out-of-range input, such as bad coordinates or an empty polyline."""


class UpstreamUnavailable(Exception):
    """An external provider failed after bounded retries."""


class RoutingUnavailable(UpstreamUnavailable):
    """The routing or geocoding provider could not produce a route."""


class RestAreaDataUnavailable(UpstreamUnavailable):
    """Rest-area, interchange or enrichment data could not be loaded."""


class EnrichmentPartialFailure(Exception):
    """A single rest area's store or facility lookup failed.

    Raised inside one enrichment task and recovered locally; it never reaches
    the HTTP layer.
    """

    def __init__(self, rest_area_id: str, message: str = ""):
        super().__init__(message or f"Enrichment failed for {rest_area_id}")
        self.rest_area_id = rest_area_id


class SyncInProgress(Exception):
    """A rest-area or interchange sync is already running."""
