"""Store and facility enrichment for selected rest areas.

Each rest area is enriched in its own task. At most
``EnrichmentOptions.max_concurrent`` tasks talk to the upstream at once, every
call has its own timeout, and transient failures are retried with
exponential backoff. A failure only lowers that rest area's ``data_quality``;
it never removes the rest area or fails its siblings.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Protocol, Sequence, TypeVar

from errors import EnrichmentPartialFailure, UpstreamUnavailable
from models import EnrichedRestArea, EnrichmentOptions, FilterResult, Store
from retry import is_retryable, with_retries

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Base delay for enrichment retries; doubles on each attempt.
ENRICHMENT_BACKOFF_BASE_S: float = 0.5


class RestAreaDetailSource(Protocol):
    """Anything that can look up stores and facilities by rest-area code."""

    async def fetch_stores(self, rest_area_code: str) -> list[Store]: ...

    async def fetch_facilities(self, rest_area_code: str) -> list[str]: ...


def _is_transient(exc: BaseException) -> bool:
    """Timeouts and retryable transport or HTTP errors, also when wrapped.

    Upstream clients wrap their final error in ``UpstreamUnavailable``; only
    a retryable cause makes that wrapper worth another attempt.
    """
    if is_retryable(exc):
        return True
    if isinstance(exc, UpstreamUnavailable):
        return exc.__cause__ is not None and is_retryable(exc.__cause__)
    return False


async def _fetch_part(
    rest_area_id: str,
    part: str,
    fetch: Callable[[], Awaitable[T]],
    options: EnrichmentOptions,
    backoff_base_s: float,
) -> T:
    """Runs one lookup with a per-attempt timeout and bounded retries.

    Raises:
        EnrichmentPartialFailure: If every attempt failed.
    """
    try:
        return await with_retries(
            lambda: asyncio.wait_for(fetch(), timeout=options.timeout_s),
            retries=options.retry_count,
            base_delay=backoff_base_s,
            description=f"{part} lookup for {rest_area_id}",
            retry_on=_is_transient,
        )
    except Exception as exc:  # noqa: BLE001
        raise EnrichmentPartialFailure(rest_area_id, f"{part} lookup failed: {exc}") from exc


async def enrich_one(
    result: FilterResult,
    source: RestAreaDetailSource,
    options: EnrichmentOptions,
    semaphore: asyncio.Semaphore,
    backoff_base_s: float = ENRICHMENT_BACKOFF_BASE_S,
) -> EnrichedRestArea:
    """Enriches a single rest area, recording partial failures as lower quality."""
    rest_area = result.rest_area
    facilities = set(rest_area.facilities)
    stores = list(rest_area.stores or ())
    requested = 0
    succeeded = 0

    async with semaphore:
        if options.include_facilities:
            requested += 1
            try:
                fetched = await _fetch_part(
                    rest_area.id,
                    "facility",
                    lambda: source.fetch_facilities(rest_area.id),
                    options,
                    backoff_base_s,
                )
                facilities.update(fetched)
                succeeded += 1
            except EnrichmentPartialFailure as exc:
                logger.warning("%s", exc)

        if options.include_stores:
            requested += 1
            try:
                stores = await _fetch_part(
                    rest_area.id,
                    "store",
                    lambda: source.fetch_stores(rest_area.id),
                    options,
                    backoff_base_s,
                )
                succeeded += 1
            except EnrichmentPartialFailure as exc:
                logger.warning("%s", exc)

    if succeeded == requested:
        quality = "high"
    elif succeeded > 0:
        quality = "medium"
    else:
        quality = "low"

    return EnrichedRestArea(
        result=result,
        facilities=sorted(facilities),
        stores=stores if options.include_stores else [],
        data_quality=quality,
        collection_time=datetime.now(timezone.utc).isoformat(),
    )


async def enrich_rest_areas(
    selected: Sequence[FilterResult],
    source: RestAreaDetailSource,
    options: EnrichmentOptions | None = None,
    backoff_base_s: float = ENRICHMENT_BACKOFF_BASE_S,
) -> list[EnrichedRestArea]:
    """Enriches selected rest areas concurrently, preserving their order.

    Cancelling the caller cancels every in-flight lookup.
    """
    options = options or EnrichmentOptions()
    if not selected:
        return []
    semaphore = asyncio.Semaphore(options.max_concurrent)
    enriched = await asyncio.gather(
        *(enrich_one(result, source, options, semaphore, backoff_base_s) for result in selected)
    )
    # gather returns results in submission order regardless of completion order.
    ordered = list(enriched)
    logger.info(
        "Enriched %d rest areas (%d low quality)",
        len(ordered),
        sum(1 for item in ordered if item.data_quality == "low"),
    )
    return ordered
