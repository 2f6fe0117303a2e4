"""Per-request handler context."""
from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Optional

from ..config import CrawlInput, CrawlSettings
from ..dedup import DedupStore
from ..enrichment.fetcher import WebsiteFetcher
from ..render import Renderer
from ..reporting import RecordSink
from ..request_queue import RequestQueue
from ..sessions import Session
from ..stats import RunStats


@dataclass
class CrawlContext:
    """Everything a stage handler may touch while processing one request.

    Stages never see other workers' state; `stats` belongs to the worker that
    owns this context and is merged by the orchestrator at the end of the run.
    """

    settings: CrawlSettings
    crawl_input: CrawlInput
    renderer: Renderer
    session: Session
    queue: RequestQueue
    sink: RecordSink
    place_dedup: DedupStore
    review_dedup: DedupStore
    stats: RunStats
    fetcher: Optional[WebsiteFetcher] = None
    url: str = ""
    unique_key: str = ""
    rng: random.Random = field(default_factory=random.Random)

    def scroll_pause(self) -> None:
        low, high = self.settings.scroll_pause_ms
        self.renderer.pause(self.rng.randint(min(low, high), max(low, high)))
