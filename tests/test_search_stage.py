import pytest

from fakes import FakeRenderer, make_context, sidebar_place

from mapcrawl.config import normalize_input
from mapcrawl.errors import RenderTimeoutError, SoftBlockError
from mapcrawl.models import PlaceDetailRequest, SearchRequest
from mapcrawl.scraping.search import effective_search_term, handle_search_request
from mapcrawl.scraping.sidebar import SIDEBAR_CONTAINER_SELECTOR, SidebarPlace


def _search_request(crawl_input):
    job = crawl_input.search_jobs[0]
    return SearchRequest(search_job_id=job.id, search_job=job)


def _drain(queue):
    out = []
    while True:
        queued = queue.fetch_next()
        if queued is None:
            return out
        out.append(queued)


def test_duplicate_summaries_enqueue_one_detail_request_each(tmp_path):
    places = [sidebar_place(i) for i in range(1, 10)] + [sidebar_place(i) for i in range(1, 4)]
    renderer = FakeRenderer(sidebar_batches=[places])
    crawl_input = normalize_input({"searchTerms": ["cafe"], "location": "Warsaw"})
    ctx = make_context(tmp_path, renderer, crawl_input=crawl_input)

    enqueued = handle_search_request(ctx, _search_request(crawl_input))

    assert enqueued == 9
    assert ctx.stats.places_enqueued == 9
    queued = _drain(ctx.queue)
    assert len(queued) == 9
    assert all(isinstance(q.request, PlaceDetailRequest) for q in queued)
    assert queued[0].unique_key == "placeId-0x1-0x1"
    assert queued[0].request.place_id == "0x1:0x1"
    assert queued[0].request.search_job_id == "job-1"
    assert "cafe%20Warsaw" in renderer.navigations[0]


def test_second_search_skips_places_already_seen(tmp_path):
    crawl_input = normalize_input({"searchTerms": ["cafe", "coffee"]})
    renderer = FakeRenderer(sidebar_batches=[[sidebar_place(1), sidebar_place(2)]])
    ctx = make_context(tmp_path, renderer, crawl_input=crawl_input)

    first, second = crawl_input.search_jobs
    assert handle_search_request(ctx, SearchRequest(search_job_id=first.id, search_job=first)) == 2
    assert handle_search_request(ctx, SearchRequest(search_job_id=second.id, search_job=second)) == 0
    assert ctx.stats.dedup_skips_places == 2
    assert ctx.queue.count() == 2


def test_max_places_caps_the_job(tmp_path):
    crawl_input = normalize_input({"searchTerms": ["cafe"], "maxCrawledPlacesPerSearch": 3})
    renderer = FakeRenderer(sidebar_batches=[[sidebar_place(i) for i in range(1, 8)]])
    ctx = make_context(tmp_path, renderer, crawl_input=crawl_input)

    assert handle_search_request(ctx, _search_request(crawl_input)) == 3
    assert ctx.queue.count() == 3


def test_growing_feed_is_scrolled_until_stagnant(tmp_path):
    batches = [
        [sidebar_place(1), sidebar_place(2)],
        [sidebar_place(1), sidebar_place(2), sidebar_place(3), sidebar_place(4)],
        [sidebar_place(i) for i in range(1, 6)],
    ]
    renderer = FakeRenderer(sidebar_batches=batches)
    ctx = make_context(tmp_path, renderer)

    assert handle_search_request(ctx, _search_request(ctx.crawl_input)) == 5
    # Three growing passes plus the stagnation passes on the last batch.
    assert renderer.sidebar_calls == 3 + ctx.settings.stagnation_passes


def test_summaries_without_url_are_ignored(tmp_path):
    ad = SidebarPlace(title="Ad", category=None, place_url=None)
    renderer = FakeRenderer(sidebar_batches=[[ad, sidebar_place(1)]])
    ctx = make_context(tmp_path, renderer)
    assert handle_search_request(ctx, _search_request(ctx.crawl_input)) == 1


def test_block_during_scrolling_enqueues_nothing_and_poisons_session(tmp_path):
    places = [sidebar_place(i) for i in range(1, 6)]
    renderer = FakeRenderer(sidebar_batches=[places], block_after_scrolls=2)
    ctx = make_context(tmp_path, renderer)

    with pytest.raises(SoftBlockError):
        handle_search_request(ctx, _search_request(ctx.crawl_input))

    assert ctx.session.bad is True
    assert ctx.stats.soft_blocks == 1
    assert ctx.queue.count() == 0


def test_missing_results_feed_fails_the_request(tmp_path):
    renderer = FakeRenderer(missing_selectors={SIDEBAR_CONTAINER_SELECTOR})
    ctx = make_context(tmp_path, renderer)

    with pytest.raises(RenderTimeoutError):
        handle_search_request(ctx, _search_request(ctx.crawl_input))
    assert ctx.session.bad is True


def test_effective_search_term_appends_location():
    job = normalize_input({"searchTerms": ["pizza"], "location": "Krakow"}).search_jobs[0]
    assert effective_search_term(job) == "pizza Krakow"
    job = normalize_input({"categories": ["bakery"]}).search_jobs[0]
    assert effective_search_term(job) == ""
