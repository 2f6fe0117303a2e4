import json
import random

import pytest

from fakes import FakeRenderer, fast_settings, parsed_review, sidebar_place

from mapcrawl.config import normalize_input
from mapcrawl.orchestrator import dispatch, retry_delay_seconds, run_crawl
from mapcrawl.reporting import ProgressReporter, read_jsonl
from mapcrawl.request_queue import RequestQueue


def _place_raw(url):
    return {"title": f"Place {url.split('/')[5]}", "categories": ["Cafe"], "bodyText": ""}


class RendererFactory:
    def __init__(self, blocked_sessions=0, **renderer_kwargs):
        self.blocked_sessions = blocked_sessions
        self.renderer_kwargs = renderer_kwargs
        self.renderers = []

    def __call__(self, session):
        blocked = len(self.renderers) < self.blocked_sessions
        renderer = FakeRenderer(blocked=blocked, **self.renderer_kwargs)
        self.renderers.append(renderer)
        return renderer


def _factory(**kwargs):
    return RendererFactory(
        sidebar_batches=[[sidebar_place(1), sidebar_place(2), sidebar_place(1)]],
        place_raw=_place_raw,
        reviews=[parsed_review(i) for i in range(40)],
        reviews_page_size=10,
        **kwargs,
    )


def test_end_to_end_crawl_writes_datasets_and_summary(tmp_path):
    out_dir = tmp_path / "out"
    storage = str(tmp_path / "state" / "crawl_state.db")
    crawl_input = normalize_input({"searchTerms": ["cafe"], "maxReviews": 15})
    factory = _factory()

    result = run_crawl(
        crawl_input,
        fast_settings(max_reviews_per_request=10),
        storage_path=storage,
        output_dir=str(out_dir),
        renderer_factory=factory,
        idle_sleep_seconds=0,
    )

    stats = result.stats
    assert result.seeded == 1
    assert stats.places_enqueued == 2
    assert stats.places_scraped == 2
    assert stats.reviews_scraped == 30
    # One search, two details, two review slices per place.
    assert stats.requests_handled == 7
    assert stats.requests_failed == 0
    assert result.dropped == []

    places = read_jsonl(str(out_dir / "places.jsonl"))
    assert sorted(p["placeId"] for p in places) == ["0x1:0x1", "0x2:0x2"]
    reviews = read_jsonl(str(out_dir / "reviews.jsonl"))
    assert len(reviews) == 30
    assert {r["placeId"] for r in reviews} == {"0x1:0x1", "0x2:0x2"}

    summary = json.loads((out_dir / "summary.json").read_text(encoding="utf-8"))
    assert summary["placesScraped"] == 2
    assert summary["reviewsScraped"] == 30
    assert summary["searchJobs"] == 1
    assert (out_dir / "summary.txt").exists()
    assert (out_dir / "progress.json").exists()
    assert all(r.closed for r in factory.renderers)


def test_rerun_on_same_storage_does_no_new_work(tmp_path):
    storage = str(tmp_path / "crawl_state.db")
    crawl_input = normalize_input({"searchTerms": ["cafe"], "extractReviews": False})
    settings = fast_settings()

    def crawl(out_name):
        return run_crawl(
            crawl_input, settings, storage, str(tmp_path / out_name), renderer_factory=_factory(), idle_sleep_seconds=0
        )

    first = crawl("a")
    second = crawl("b")

    assert first.stats.places_scraped == 2
    assert second.seeded == 0
    assert second.stats.places_scraped == 0
    assert second.stats.requests_handled == 0


def test_blocked_session_is_replaced_and_request_retried(tmp_path):
    crawl_input = normalize_input({"searchTerms": ["cafe"], "extractReviews": False})
    factory = _factory(blocked_sessions=1)

    result = run_crawl(
        crawl_input,
        fast_settings(max_request_retries=2),
        storage_path=str(tmp_path / "crawl_state.db"),
        output_dir=str(tmp_path / "out"),
        renderer_factory=factory,
        idle_sleep_seconds=0,
    )

    assert result.stats.soft_blocks == 1
    assert result.stats.requests_retried == 1
    assert result.stats.places_scraped == 2
    assert len(factory.renderers) == 2
    assert factory.renderers[0].closed is True


def test_exhausted_and_malformed_requests_are_dropped(tmp_path):
    storage = str(tmp_path / "crawl_state.db")
    queue = RequestQueue(storage)
    queue.add_request("https://maps/bad", "bad-request", {"requestType": "BOGUS"})
    queue.close()

    crawl_input = normalize_input({"searchTerms": ["cafe"]})
    result = run_crawl(
        crawl_input,
        fast_settings(max_request_retries=1),
        storage_path=storage,
        output_dir=str(tmp_path / "out"),
        renderer_factory=_factory(blocked_sessions=100),
        idle_sleep_seconds=0,
    )

    assert result.stats.requests_failed == 2
    assert result.stats.requests_retried == 1
    assert "bad-request" in result.dropped
    assert len(result.dropped) == 2

    queue = RequestQueue(storage)
    assert queue.count("failed") == 2
    assert queue.is_finished()
    summary = json.loads((tmp_path / "out" / "summary.json").read_text(encoding="utf-8"))
    assert summary["requests"]["failed"] == 2


def test_retry_delay_grows_and_is_capped():
    settings = fast_settings(retry_backoff_base=1.0, retry_backoff_max=5.0)
    rng = random.Random(7)
    delays = [retry_delay_seconds(n, settings, rng) for n in range(5)]
    assert 1.0 <= delays[0] <= 2.0
    assert 2.0 <= delays[1] <= 3.0
    assert all(5.0 <= d <= 6.0 for d in delays[3:])


def test_dispatch_rejects_unknown_request():
    with pytest.raises(TypeError):
        dispatch(None, object())


def test_renderer_launch_failure_is_retried_on_a_new_session(tmp_path):
    crawl_input = normalize_input({"searchTerms": ["cafe"], "extractReviews": False})
    factory = _factory()
    launched = []

    def flaky_factory(session):
        launched.append(session.id)
        if len(launched) == 1:
            raise RuntimeError("browser failed to launch")
        return factory(session)

    result = run_crawl(
        crawl_input,
        fast_settings(max_request_retries=2),
        storage_path=str(tmp_path / "crawl_state.db"),
        output_dir=str(tmp_path / "out"),
        renderer_factory=flaky_factory,
        idle_sleep_seconds=0,
    )

    assert result.stats.requests_retried == 1
    assert result.stats.places_scraped == 2
    assert len(set(launched)) == 2
    assert len(factory.renderers) == 1


def test_progress_write_failure_does_not_stop_the_crawl(tmp_path, monkeypatch):
    def failing_advance(self, count=1):
        raise OSError("disk full")

    monkeypatch.setattr(ProgressReporter, "advance", failing_advance)
    crawl_input = normalize_input({"searchTerms": ["cafe"], "extractReviews": False})

    result = run_crawl(
        crawl_input,
        fast_settings(),
        storage_path=str(tmp_path / "crawl_state.db"),
        output_dir=str(tmp_path / "out"),
        renderer_factory=_factory(),
        idle_sleep_seconds=0,
    )

    assert result.stats.requests_handled == 3
    assert result.stats.requests_failed == 0
    assert RequestQueue(str(tmp_path / "crawl_state.db")).is_finished()
