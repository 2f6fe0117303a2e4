"""Crawl orchestration: seed the queue, run workers, merge stats, write the summary."""
from __future__ import annotations

import logging
import os
import random
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from . import config
from .config import CrawlInput, CrawlSettings
from .dedup import DedupStore, open_place_dedup, open_review_dedup
from .enrichment.fetcher import WebsiteFetcher
from .errors import CrawlError
from .http import HttpClient
from .maps_urls import build_search_url
from .models import CrawlRequest, PlaceDetailRequest, ReviewsRequest, SearchRequest, utc_now_iso
from .render import Renderer, RendererFactory, playwright_renderer_factory
from .reporting import JsonlDatasetSink, ProgressReporter, RecordSink, ensure_dir, write_run_summary
from .request_queue import QueuedRequest, RequestQueue
from .scraping.context import CrawlContext
from .scraping.place_detail import handle_place_detail_request
from .scraping.reviews import handle_reviews_request
from .scraping.search import effective_search_term, handle_search_request
from .sessions import Session, SessionPool
from .stats import RunStats

logger = logging.getLogger(__name__)

IDLE_SLEEP_SECONDS = 0.5


@dataclass
class CrawlResult:
    stats: RunStats
    summary: Dict[str, Any]
    seeded: int = 0
    dropped: List[str] = field(default_factory=list)


def dispatch(ctx: CrawlContext, request: CrawlRequest) -> None:
    if isinstance(request, SearchRequest):
        handle_search_request(ctx, request)
    elif isinstance(request, PlaceDetailRequest):
        handle_place_detail_request(ctx, request)
    elif isinstance(request, ReviewsRequest):
        handle_reviews_request(ctx, request)
    else:
        raise TypeError(f"Unhandled request type: {type(request).__name__}")


def seed_search_requests(queue: RequestQueue, crawl_input: CrawlInput) -> int:
    seeded = 0
    for job in crawl_input.search_jobs:
        url = build_search_url(effective_search_term(job) or None, job.category, None, None, job.language)
        if queue.add(url, f"{job.id}::{url}", SearchRequest(search_job_id=job.id, search_job=job)):
            seeded += 1
    logger.info("Seeded %s search requests (%s jobs)", seeded, len(crawl_input.search_jobs))
    return seeded


def retry_delay_seconds(retry_count: int, settings: CrawlSettings, rng: random.Random) -> float:
    base = min(settings.retry_backoff_base * (2 ** retry_count), settings.retry_backoff_max)
    return base + rng.uniform(0, settings.retry_backoff_base)


class CrawlWorker:
    """Pulls requests one at a time until the queue is drained.

    Owns its session, renderer and RunStats; the renderer is created on the
    worker thread and replaced whenever the session is retired.
    """

    def __init__(
        self,
        index: int,
        settings: CrawlSettings,
        crawl_input: CrawlInput,
        queue: RequestQueue,
        sink: RecordSink,
        place_dedup: DedupStore,
        review_dedup: DedupStore,
        session_pool: SessionPool,
        renderer_factory: RendererFactory,
        fetcher: Optional[WebsiteFetcher] = None,
        progress: Optional[ProgressReporter] = None,
        idle_sleep_seconds: float = IDLE_SLEEP_SECONDS,
        stop_event: Optional[threading.Event] = None,
    ) -> None:
        self.index = index
        self.settings = settings
        self.crawl_input = crawl_input
        self.queue = queue
        self.sink = sink
        self.place_dedup = place_dedup
        self.review_dedup = review_dedup
        self.session_pool = session_pool
        self.renderer_factory = renderer_factory
        self.fetcher = fetcher
        self.progress = progress
        self.idle_sleep_seconds = max(0.0, float(idle_sleep_seconds))
        self.stop_event = stop_event or threading.Event()
        self.stats = RunStats()
        self.dropped: List[str] = []
        self.rng = random.Random()
        self._session: Optional[Session] = None
        self._renderer: Optional[Renderer] = None

    def run(self) -> RunStats:
        try:
            while not self.stop_event.is_set():
                queued = self.queue.fetch_next()
                if queued is None:
                    if self.queue.is_finished():
                        break
                    time.sleep(self.idle_sleep_seconds)
                    continue
                self.process(queued)
        finally:
            self._close_renderer()
        logger.info(
            "Worker %s finished: handled=%s failed=%s",
            self.index,
            self.stats.requests_handled,
            self.stats.requests_failed,
        )
        return self.stats

    def _ensure_session(self) -> Session:
        session = self._session
        if session is not None and self._renderer is not None and self.session_pool.is_usable(session):
            return session
        if session is not None:
            self.session_pool.retire(session)
            self._session = None
        self._close_renderer()
        session = self.session_pool.acquire()
        self._renderer = self.renderer_factory(session)
        self._session = session
        return session

    def _close_renderer(self) -> None:
        if self._renderer is None:
            return
        try:
            self._renderer.close()
        except Exception as exc:
            logger.debug("Worker %s: error closing renderer: %s", self.index, exc)
        self._renderer = None

    def process(self, queued: QueuedRequest) -> None:
        try:
            request = queued.request
        except (KeyError, TypeError, ValueError) as exc:
            logger.error("Dropping malformed request %s: %s", queued.unique_key, exc)
            self.queue.mark_failed(queued.unique_key, f"malformed: {exc}")
            self.stats.inc("requests_failed")
            self.dropped.append(queued.unique_key)
            return

        session: Optional[Session] = None
        try:
            session = self._ensure_session()
            session.mark_used()
            ctx = CrawlContext(
                settings=self.settings,
                crawl_input=self.crawl_input,
                renderer=self._renderer,
                session=session,
                queue=self.queue,
                sink=self.sink,
                place_dedup=self.place_dedup,
                review_dedup=self.review_dedup,
                stats=self.stats,
                fetcher=self.fetcher,
                url=queued.url,
                unique_key=queued.unique_key,
                rng=self.rng,
            )
            dispatch(ctx, request)
        except Exception as exc:
            self._handle_failure(queued, request, session, exc)
        else:
            self.queue.mark_handled(queued.unique_key)
            self.stats.inc("requests_handled")
        finally:
            self._advance_progress()

    def _advance_progress(self) -> None:
        if self.progress is None:
            return
        try:
            self.progress.advance()
        except Exception as exc:
            logger.warning("Worker %s: failed to update progress: %s", self.index, exc)

    def _handle_failure(
        self, queued: QueuedRequest, request: CrawlRequest, session: Optional[Session], exc: Exception
    ) -> None:
        # Errors outside the crawl taxonomy usually mean a broken browser.
        if session is not None and not isinstance(exc, CrawlError):
            session.mark_bad()
        error = f"{type(exc).__name__}: {exc}"
        if queued.retry_count < self.settings.max_request_retries:
            delay = retry_delay_seconds(queued.retry_count, self.settings, self.rng)
            logger.warning(
                "%s request %s failed (attempt %s), retrying in %.1fs: %s",
                request.request_type,
                queued.unique_key,
                queued.retry_count + 1,
                delay,
                error,
            )
            self.queue.reclaim(queued.unique_key, error, delay)
            self.stats.inc("requests_retried")
            return
        logger.error(
            "%s request %s failed after %s retries, dropping: %s",
            request.request_type,
            queued.unique_key,
            queued.retry_count,
            error,
        )
        self.queue.mark_failed(queued.unique_key, error)
        self.stats.inc("requests_failed")
        self.dropped.append(queued.unique_key)


def build_summary(stats: RunStats, crawl_input: CrawlInput, started_at: str) -> Dict[str, Any]:
    summary: Dict[str, Any] = {
        "startedAt": started_at,
        "finishedAt": utc_now_iso(),
        "searchJobs": len(crawl_input.search_jobs),
    }
    summary.update(stats.to_summary())
    return summary


def run_crawl(
    crawl_input: CrawlInput,
    settings: Optional[CrawlSettings] = None,
    storage_path: str = config.STORAGE_DB_PATH,
    output_dir: str = config.OUTPUT_DIR,
    renderer_factory: Optional[RendererFactory] = None,
    sink: Optional[RecordSink] = None,
    fetcher: Optional[WebsiteFetcher] = None,
    session_pool: Optional[SessionPool] = None,
    idle_sleep_seconds: float = IDLE_SLEEP_SECONDS,
) -> CrawlResult:
    settings = settings or CrawlSettings()
    started_at = utc_now_iso()
    ensure_dir(output_dir)
    storage_dir = os.path.dirname(storage_path)
    if storage_dir:
        ensure_dir(storage_dir)

    queue = RequestQueue(storage_path)
    place_dedup = open_place_dedup(storage_path, settings.place_dedup_max_size)
    review_dedup = open_review_dedup(storage_path, settings.review_dedup_max_size)
    sink = sink or JsonlDatasetSink(output_dir)
    if fetcher is None and crawl_input.enrichment_enabled:
        fetcher = WebsiteFetcher(
            HttpClient(timeout=settings.enrichment_timeout_seconds),
            delay_seconds=settings.enrichment_delay_seconds,
        )
    renderer_factory = renderer_factory or playwright_renderer_factory(
        headless=settings.headless, locale=crawl_input.language
    )
    session_pool = session_pool or SessionPool(crawl_input.proxy_urls, settings.session_max_usage)

    try:
        seeded = seed_search_requests(queue, crawl_input)

        workers: List[CrawlWorker] = []
        progress = ProgressReporter(
            os.path.join(output_dir, "progress.json"),
            log_every=config.PROGRESS_LOG_EVERY,
            write_interval_seconds=config.PROGRESS_WRITE_INTERVAL_SECONDS,
            logger=logger,
            counters=lambda: {
                "places_scraped": sum(w.stats.places_scraped for w in workers),
                "reviews_scraped": sum(w.stats.reviews_scraped for w in workers),
                "pending": queue.count("pending"),
            },
        )
        progress.set_stage("crawl")

        worker_count = max(1, settings.max_concurrency)
        workers.extend(
            CrawlWorker(
                index=i,
                settings=settings,
                crawl_input=crawl_input,
                queue=queue,
                sink=sink,
                place_dedup=place_dedup,
                review_dedup=review_dedup,
                session_pool=session_pool,
                renderer_factory=renderer_factory,
                fetcher=fetcher,
                progress=progress,
                idle_sleep_seconds=idle_sleep_seconds,
            )
            for i in range(worker_count)
        )
        logger.info("Starting crawl with %s workers", worker_count)
        with ThreadPoolExecutor(max_workers=worker_count, thread_name_prefix="crawl-worker") as pool:
            futures = [pool.submit(worker.run) for worker in workers]
            for future in futures:
                future.result()

        stats = RunStats.merged(w.stats for w in workers)
        summary = build_summary(stats, crawl_input, started_at)
        write_run_summary(output_dir, summary)
        progress.set_stage("done")
        logger.info(
            "Crawl finished: places=%s reviews=%s failed_requests=%s",
            stats.places_scraped,
            stats.reviews_scraped,
            stats.requests_failed,
        )
        dropped = [key for w in workers for key in w.dropped]
        return CrawlResult(stats=stats, summary=summary, seeded=seeded, dropped=dropped)
    finally:
        place_dedup.store.close()
        review_dedup.store.close()
        queue.close()
