import math

import pytest

from fakes import FakeRenderer, fast_settings, make_context, parsed_review

from mapcrawl.errors import RenderError, SoftBlockError
from mapcrawl.maps_urls import reviews_unique_key
from mapcrawl.models import ReviewsRequest
from mapcrawl.reporting import COLLECTION_REVIEWS
from mapcrawl.scraping.reviews import (
    OPEN_PANEL_SELECTORS,
    build_review_unique_key,
    handle_reviews_request,
)
from mapcrawl.scraping.reviews_parser import REVIEW_CARD_SELECTOR, ParsedReview

PLACE_URL = "https://www.google.com/maps/place/Cafe+Nero/@52.2297,21.0122,17z"


def _reviews_request(max_reviews, offset=0, accumulated=0):
    return ReviewsRequest(
        search_job_id="job-1",
        place_id="0xabc",
        place_url=PLACE_URL,
        offset=offset,
        accumulated_count=accumulated,
        max_reviews=max_reviews,
    )


def _run_queue(ctx):
    """Process queued requests the way a worker does; returns the handled keys."""
    handled = []
    while True:
        queued = ctx.queue.fetch_next()
        if queued is None:
            return handled
        ctx.unique_key = queued.unique_key
        handle_reviews_request(ctx, queued.request)
        ctx.queue.mark_handled(queued.unique_key)
        handled.append(queued.unique_key)


def test_review_chain_takes_ceil_of_budget_over_cap(tmp_path):
    max_reviews, cap = 25, 10
    renderer = FakeRenderer(reviews=[parsed_review(i) for i in range(40)], reviews_page_size=10)
    ctx = make_context(
        tmp_path,
        renderer,
        settings=fast_settings(max_reviews_per_request=cap, review_flush_size=4),
    )
    ctx.queue.add(PLACE_URL, reviews_unique_key(PLACE_URL, 0), _reviews_request(max_reviews))

    handled = _run_queue(ctx)

    assert len(handled) == math.ceil(max_reviews / cap)
    assert handled == [
        reviews_unique_key(PLACE_URL, 0),
        reviews_unique_key(PLACE_URL, 10),
        reviews_unique_key(PLACE_URL, 20),
    ]
    records = ctx.sink.get(COLLECTION_REVIEWS)
    assert len(records) == max_reviews
    assert len({r["id"] for r in records}) == max_reviews
    assert all(r["placeId"] == "0xabc" and r["searchJobId"] == "job-1" for r in records)
    assert ctx.stats.reviews_scraped == max_reviews
    assert ctx.stats.review_requests_enqueued == 2
    # The page is reused between slices of the same place.
    assert renderer.navigations == [PLACE_URL]


def test_reviews_are_flushed_in_batches(tmp_path):
    renderer = FakeRenderer(reviews=[parsed_review(i) for i in range(10)], reviews_page_size=10)
    ctx = make_context(tmp_path, renderer, settings=fast_settings(review_flush_size=4))

    assert handle_reviews_request(ctx, _reviews_request(10)) == 10
    assert ctx.sink.calls == [(COLLECTION_REVIEWS, 4), (COLLECTION_REVIEWS, 4), (COLLECTION_REVIEWS, 2)]


def test_end_of_list_stops_without_follow_up(tmp_path):
    renderer = FakeRenderer(reviews=[parsed_review(i) for i in range(7)], reviews_page_size=10)
    settings = fast_settings(max_reviews_per_request=10)
    ctx = make_context(tmp_path, renderer, settings=settings)

    assert handle_reviews_request(ctx, _reviews_request(25)) == 7
    assert ctx.queue.count() == 0
    assert len(ctx.sink.get(COLLECTION_REVIEWS)) == 7
    assert renderer.scrolls == settings.stagnation_passes


def test_block_mid_scroll_records_partial_progress(tmp_path):
    renderer = FakeRenderer(
        reviews=[parsed_review(i) for i in range(30)], reviews_page_size=10, block_after_scrolls=2
    )
    ctx = make_context(tmp_path, renderer, settings=fast_settings(max_reviews_per_request=25, review_flush_size=4))
    key = reviews_unique_key(PLACE_URL, 0)
    ctx.queue.add(PLACE_URL, key, _reviews_request(100))
    ctx.unique_key = ctx.queue.fetch_next().unique_key

    with pytest.raises(SoftBlockError):
        handle_reviews_request(ctx, _reviews_request(100))

    assert len(ctx.sink.get(COLLECTION_REVIEWS)) == 20
    assert ctx.stats.reviews_scraped == 20
    assert ctx.session.bad is True
    user_data = ctx.queue.get(key)["user_data"]
    assert user_data["offset"] == 20
    assert user_data["accumulatedCount"] == 20


class FailingScrollRenderer(FakeRenderer):
    """Raises a render error on one scroll, then behaves normally."""

    def __init__(self, fail_on_scroll, **kwargs):
        super().__init__(**kwargs)
        self.fail_on_scroll = fail_on_scroll
        self.scroll_calls = 0

    def scroll_by(self, selector, delta=0):
        self.scroll_calls += 1
        if self.scroll_calls == self.fail_on_scroll:
            raise RenderError("page crashed")
        super().scroll_by(selector, delta)


def test_render_error_mid_scroll_keeps_buffered_reviews_for_the_retry(tmp_path):
    renderer = FailingScrollRenderer(3, reviews=[parsed_review(i) for i in range(30)], reviews_page_size=10)
    ctx = make_context(tmp_path, renderer, settings=fast_settings(max_reviews_per_request=100, review_flush_size=100))
    key = reviews_unique_key(PLACE_URL, 0)
    ctx.queue.add(PLACE_URL, key, _reviews_request(100))
    ctx.unique_key = ctx.queue.fetch_next().unique_key

    with pytest.raises(RenderError):
        handle_reviews_request(ctx, _reviews_request(100))

    assert len(ctx.sink.get(COLLECTION_REVIEWS)) == 30
    user_data = ctx.queue.get(key)["user_data"]
    assert (user_data["offset"], user_data["accumulatedCount"]) == (30, 30)

    ctx.queue.reclaim(key, "RenderError: page crashed", 0)
    retried = ctx.queue.fetch_next()
    assert handle_reviews_request(ctx, retried.request) == 0
    assert len(ctx.sink.get(COLLECTION_REVIEWS)) == 30
    assert ctx.stats.reviews_scraped == 30


def test_missing_review_cards_returns_zero(tmp_path):
    renderer = FakeRenderer(reviews=[], missing_selectors={REVIEW_CARD_SELECTOR})
    ctx = make_context(tmp_path, renderer)

    assert handle_reviews_request(ctx, _reviews_request(10)) == 0
    assert renderer.clicks == list(OPEN_PANEL_SELECTORS)
    assert ctx.sink.get(COLLECTION_REVIEWS) == []


def test_exhausted_budget_does_nothing(tmp_path):
    renderer = FakeRenderer(reviews=[parsed_review(1)])
    ctx = make_context(tmp_path, renderer)

    assert handle_reviews_request(ctx, _reviews_request(10, offset=10, accumulated=10)) == 0
    assert renderer.navigations == []


def test_review_key_falls_back_to_content_hash():
    with_id = ParsedReview(review_id="r1", reviewer_name="Ann", text="Great")
    without_id = ParsedReview(reviewer_name="Ann", text="Great", published_at="a week ago")
    same_content = ParsedReview(reviewer_name="Ann", text="Great", published_at="a week ago")

    assert build_review_unique_key("0xabc", with_id) == "place:0xabc::reviewId:r1"
    key = build_review_unique_key("0xabc", without_id)
    assert key.startswith("place:0xabc::hash:")
    assert key == build_review_unique_key("0xabc", same_content)
    assert key != build_review_unique_key("0xdef", same_content)
