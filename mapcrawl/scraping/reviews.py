"""REVIEWS stage: one bounded slice of a place's review list.

Each request scrapes at most min(remaining budget, per-request cap) new
reviews and, when that target is met and the place still has budget left,
chains a follow-up request at offset + scraped. Long review lists are thus
processed as a series of small retryable requests.
"""
from __future__ import annotations

import hashlib
import logging
from dataclasses import replace
from typing import List

from ..blocking import raise_if_blocked
from ..config import DEFAULT_MAX_REVIEWS
from ..errors import RenderError, RenderTimeoutError
from ..maps_urls import extract_place_id_from_url, normalize_place_url, reviews_unique_key
from ..models import Review, ReviewsRequest, request_to_user_data, utc_now_iso
from ..reporting import COLLECTION_REVIEWS
from .context import CrawlContext
from .reviews_parser import REVIEW_CARD_SELECTOR, ParsedReview, extract_review_cards

logger = logging.getLogger(__name__)

REVIEWS_CONTAINER_SELECTOR = 'div[aria-label*="reviews" i], div[aria-label*="google reviews" i], div[role="main"]'
OPEN_PANEL_SELECTORS = (
    'button[aria-label*="reviews" i]',
    'button[jsaction*="pane.reviewChart.moreReviews"]',
    'a[href*="reviews"]',
)


def review_content_hash(review: ParsedReview) -> str:
    base = f"{review.reviewer_name or ''}|{review.text or ''}|{review.published_at or ''}"
    return hashlib.sha256(base.encode("utf-8")).hexdigest()


def build_review_unique_key(place_key: str, review: ParsedReview) -> str:
    if review.review_id:
        return f"place:{place_key}::reviewId:{review.review_id}"
    return f"place:{place_key}::hash:{review_content_hash(review)}"


def open_reviews_panel(ctx: CrawlContext) -> bool:
    """Try each panel selector in order; True once review cards are visible."""
    renderer = ctx.renderer
    if renderer.has_element(REVIEW_CARD_SELECTOR):
        return True
    for selector in OPEN_PANEL_SELECTORS:
        if not renderer.click(selector):
            continue
        renderer.pause(ctx.settings.panel_open_pause_ms)
        if renderer.has_element(REVIEW_CARD_SELECTOR):
            logger.info("Opened reviews panel using %s", selector)
            return True
    logger.warning("Unable to open reviews panel; proceeding with visible content only: %s", ctx.url)
    return False


def _to_review(parsed: ParsedReview, unique_key: str, place_id: str, request: ReviewsRequest, now: str) -> Review:
    return Review(
        id=parsed.review_id or unique_key,
        place_id=place_id,
        search_job_id=request.search_job_id or None,
        reviewer_name=parsed.reviewer_name,
        reviewer_profile_url=parsed.reviewer_profile_url,
        reviewer_photo_url=parsed.reviewer_photo_url,
        text=parsed.text,
        rating=parsed.rating,
        likes_count=parsed.likes_count,
        is_local_guide=parsed.is_local_guide,
        review_images=list(parsed.review_images),
        owner_response=parsed.owner_response,
        published_at=parsed.published_at,
        scraped_at=now,
    )


def handle_reviews_request(ctx: CrawlContext, request: ReviewsRequest) -> int:
    """Returns the number of new reviews persisted by this request."""
    settings = ctx.settings
    renderer = ctx.renderer

    max_reviews = request.max_reviews if request.max_reviews >= 0 else DEFAULT_MAX_REVIEWS
    accumulated = request.accumulated_count
    target = min(max_reviews - accumulated, settings.max_reviews_per_request)
    if target <= 0:
        logger.info("Review budget already reached for %s (%s/%s)", request.place_id, accumulated, max_reviews)
        return 0

    raw_url = request.place_url or ctx.url
    try:
        current = renderer.current_url()
        if not current or normalize_place_url(current) != normalize_place_url(raw_url):
            renderer.navigate(raw_url, wait_until="networkidle", timeout_ms=settings.navigation_timeout_ms)
    except RenderError as exc:
        logger.warning("Error while navigating to place page for reviews %s: %s", raw_url, exc)

    raise_if_blocked(ctx, "before opening reviews")
    open_reviews_panel(ctx)

    try:
        renderer.wait_for_selector(REVIEW_CARD_SELECTOR, settings.wait_timeout_ms)
    except RenderTimeoutError as exc:
        logger.warning("No review cards found for %s: %s", raw_url, exc)
        return 0

    place_key = request.place_id or extract_place_id_from_url(raw_url) or normalize_place_url(raw_url)

    scraped = 0
    stagnant = 0
    buffer: List[Review] = []

    def flush() -> None:
        if buffer:
            ctx.sink.append(COLLECTION_REVIEWS, [r.to_record() for r in buffer])
            buffer.clear()

    try:
        for _ in range(settings.reviews_max_scrolls):
            new_this_pass = 0
            now = utc_now_iso()
            for parsed in renderer.query_dom(extract_review_cards):
                if scraped >= target:
                    break
                unique_key = build_review_unique_key(place_key, parsed)
                if ctx.review_dedup.is_duplicate(unique_key):
                    ctx.stats.inc("dedup_skips_reviews")
                    continue
                buffer.append(_to_review(parsed, unique_key, place_key, request, now))
                scraped += 1
                new_this_pass += 1
                if len(buffer) >= settings.review_flush_size:
                    flush()

            if scraped >= target:
                logger.info("Reached per-request review target for %s: %s", place_key, scraped)
                break

            stagnant = stagnant + 1 if new_this_pass == 0 else 0
            if stagnant >= settings.stagnation_passes:
                logger.info("No new reviews after %s scrolls; assuming end of list for %s", stagnant, place_key)
                break

            renderer.scroll_by(REVIEWS_CONTAINER_SELECTOR)
            ctx.scroll_pause()
            raise_if_blocked(ctx, "while scrolling reviews")
    except Exception:
        # Buffered keys are already marked seen.
        flush()
        _record_partial_progress(ctx, request, scraped)
        raise

    flush()
    if scraped:
        ctx.stats.inc("reviews_scraped", scraped)

    total_after = accumulated + scraped
    logger.info("Finished reviews for %s: scraped=%s total=%s max=%s", place_key, scraped, total_after, max_reviews)

    if scraped >= target and total_after < max_reviews:
        next_offset = request.offset + scraped
        follow_up = replace(request, offset=next_offset, accumulated_count=total_after, max_reviews=max_reviews)
        if ctx.queue.add(raw_url, reviews_unique_key(raw_url, next_offset), follow_up):
            ctx.stats.inc("review_requests_enqueued")
            logger.info("Enqueued follow-up reviews for %s at offset %s", place_key, next_offset)
    return scraped


def _record_partial_progress(ctx: CrawlContext, request: ReviewsRequest, scraped: int) -> None:
    """Persist the progress of an interrupted slice so the retry keeps the accumulated count."""
    if not scraped:
        return
    ctx.stats.inc("reviews_scraped", scraped)
    if not ctx.unique_key:
        return
    progressed = replace(
        request,
        offset=request.offset + scraped,
        accumulated_count=request.accumulated_count + scraped,
    )
    ctx.queue.update_user_data(ctx.unique_key, request_to_user_data(progressed))
