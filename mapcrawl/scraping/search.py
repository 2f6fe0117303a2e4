"""SEARCH stage: tile a search job, scroll each tile's results and enqueue place details."""
from __future__ import annotations

import logging

from ..geo import tiles_for_search_job
from ..maps_urls import build_place_unique_key, build_search_url, extract_place_id_from_url
from ..models import PlaceDetailRequest, SearchJob, SearchRequest
from .context import CrawlContext
from .sidebar import collect_sidebar_places

logger = logging.getLogger(__name__)


def effective_search_term(job: SearchJob) -> str:
    parts = [p for p in (job.search_term, job.location_text) if p]
    return " ".join(parts).strip()


def handle_search_request(ctx: CrawlContext, request: SearchRequest) -> int:
    """Returns the number of PLACE_DETAIL requests enqueued for the job."""
    job = request.search_job
    tiles = tiles_for_search_job(job, ctx.settings)
    logger.info("Search job %s: %s tiles", job.id, len(tiles))

    enqueued = 0
    for tile in tiles:
        if enqueued >= job.max_places_per_search:
            break

        url = build_search_url(
            effective_search_term(job) or None, job.category, tile.center, tile.zoom, job.language
        )
        logger.info("Search job %s: processing tile %s %s", job.id, tile.id, url)

        try:
            places = collect_sidebar_places(ctx, url, tile, job.max_places_per_search)
        except Exception as exc:
            logger.warning(
                "Tile %s of job %s failed, marking session bad and retrying the request: %s",
                tile.id,
                job.id,
                exc,
            )
            ctx.session.mark_bad()
            raise

        for place in places:
            if not place.place_url:
                continue
            place_id = extract_place_id_from_url(place.place_url)
            unique_key = build_place_unique_key(place_id, place.place_url)
            if not unique_key:
                continue
            if ctx.place_dedup.is_duplicate(unique_key):
                ctx.stats.inc("dedup_skips_places")
                continue

            ctx.queue.add(
                place.place_url,
                unique_key,
                PlaceDetailRequest(search_job_id=job.id, place_url=place.place_url, place_id=place_id),
            )
            enqueued += 1
            ctx.stats.inc("places_enqueued")
            if enqueued >= job.max_places_per_search:
                logger.info("Search job %s reached max places per search (%s)", job.id, enqueued)
                break

    logger.info("Finished search job %s: tiles=%s enqueued=%s", job.id, len(tiles), enqueued)
    return enqueued
