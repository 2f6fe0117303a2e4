"""PLACE_DETAIL stage: parse one place, enrich it, persist it and start its review chain."""
from __future__ import annotations

import logging
from typing import Optional

from ..blocking import raise_if_blocked
from ..enrichment.contacts import run_contacts_enrichment
from ..enrichment.leads import run_leads_enrichment
from ..enrichment.social import enrich_social_profiles
from ..errors import PlaceParseError, RenderError, RenderTimeoutError
from ..maps_urls import extract_place_id_from_url, extract_url_identifiers, reviews_unique_key
from ..models import Place, PlaceDetailRequest, ReviewsRequest, utc_now_iso
from ..reporting import COLLECTION_LEADS, COLLECTION_PLACES
from .context import CrawlContext
from .place_parser import build_place, canonical_place_url, extract_place_dom, synthetic_place_id

logger = logging.getLogger(__name__)


def resolve_place_identity(place: Place, request: PlaceDetailRequest, page_url: str) -> Place:
    """Merge identifiers: URL params win over the request, which wins over the DOM."""
    identifiers = extract_url_identifiers(page_url or "")
    canonical_url = canonical_place_url(page_url) or place.google_maps_url

    place.place_id = identifiers["place_id"] or request.place_id or place.place_id
    place.cid = identifiers["cid"] or place.cid
    place.google_maps_url = canonical_url
    place.id = (
        place.place_id
        or place.cid
        or canonical_url
        or synthetic_place_id(place.title, place.address.full_address, request.place_url)
    )
    place.search_job_id = request.search_job_id
    place.updated_at = utc_now_iso()
    return place


def _enrich(ctx: CrawlContext, place: Place) -> None:
    crawl_input = ctx.crawl_input
    if not place.website or ctx.fetcher is None:
        return
    settings = ctx.settings

    if crawl_input.enrich_contacts:
        try:
            result = run_contacts_enrichment(place.website, ctx.fetcher, max_pages=settings.enrichment_max_pages)
            if result is not None:
                place.enrichment.contacts = result.contacts
                place.additional_info["contactPageUrls"] = result.contact_page_urls
                ctx.stats.inc("contacts_enriched")
        except Exception as exc:
            logger.warning("Contacts enrichment failed for %s: %s", place.google_maps_url, exc)

    if crawl_input.enrich_leads:
        try:
            leads = run_leads_enrichment(
                place.website,
                place.place_id or place.id,
                ctx.fetcher,
                max_pages=settings.enrichment_max_pages,
            )
            if leads:
                ctx.sink.append(COLLECTION_LEADS, [lead.to_record() for lead in leads])
                place.enrichment.leads = (place.enrichment.leads or []) + leads
                ctx.stats.inc("leads_enriched", len(leads))
        except Exception as exc:
            logger.warning("Leads enrichment failed for %s: %s", place.google_maps_url, exc)

    if crawl_input.enrich_social_profiles:
        try:
            profiles = enrich_social_profiles(place.website, crawl_input.enrich_social_profiles, ctx.fetcher)
            if profiles:
                place.enrichment.social_profiles = (place.enrichment.social_profiles or []) + profiles
                ctx.stats.inc("social_profiles_enriched", len(profiles))
        except Exception as exc:
            logger.warning("Social enrichment failed for %s: %s", place.google_maps_url, exc)


def _enqueue_reviews(ctx: CrawlContext, place: Place, request: PlaceDetailRequest) -> None:
    place_url = place.google_maps_url or request.place_url
    review_place_id = place.place_id or extract_place_id_from_url(place_url) or place.id
    added = ctx.queue.add(
        place_url,
        reviews_unique_key(place_url, 0),
        ReviewsRequest(
            search_job_id=request.search_job_id,
            place_id=review_place_id,
            place_url=place_url,
            offset=0,
            accumulated_count=0,
            max_reviews=ctx.crawl_input.max_reviews,
        ),
    )
    if added:
        ctx.stats.inc("review_requests_enqueued")
        logger.info("Enqueued reviews for place %s (max %s)", review_place_id, ctx.crawl_input.max_reviews)


def handle_place_detail_request(ctx: CrawlContext, request: PlaceDetailRequest) -> Optional[Place]:
    settings = ctx.settings
    renderer = ctx.renderer
    target_url = request.place_url

    try:
        renderer.navigate(target_url, wait_until="networkidle", timeout_ms=settings.navigation_timeout_ms)
    except RenderError as exc:
        logger.warning("Error while navigating to place detail %s: %s", target_url, exc)

    try:
        renderer.wait_for_load(settings.wait_timeout_ms)
        renderer.pause(settings.detail_settle_ms)
    except RenderTimeoutError as exc:
        logger.warning("Timeout while waiting for place detail panel %s: %s", target_url, exc)

    raise_if_blocked(ctx, "on place detail page")

    page_url = renderer.current_url() or target_url
    try:
        place = build_place(renderer.query_dom(extract_place_dom), page_url)
    except (PlaceParseError, ValueError, TypeError, KeyError) as exc:
        logger.error("Failed to parse place detail; skipping %s: %s", target_url, exc)
        return None

    resolve_place_identity(place, request, page_url)
    _enrich(ctx, place)

    if not place.title or not place.has_location:
        logger.warning(
            "Place detail is missing critical fields: url=%s title=%r has_location=%s",
            place.google_maps_url,
            place.title,
            place.has_location,
        )

    ctx.sink.append(COLLECTION_PLACES, [place.to_record()])
    ctx.stats.inc("places_scraped")
    logger.info("Saved place %s (%s)", place.id, place.title)

    if ctx.crawl_input.extract_reviews and ctx.crawl_input.max_reviews > 0:
        _enqueue_reviews(ctx, place, request)
    return place
