"""Polite page fetching for website enrichment.

Every fetch honours the robots.txt rules of the target origin, read with
`urllib.robotparser`. Rules are fetched once per origin and cached; an
unreachable or missing robots.txt means no restrictions.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional
from urllib.robotparser import RobotFileParser

import requests

from ..http import USER_AGENT, HttpClient
from .extractors import site_origin

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FetchResult:
    url: str
    final_url: str
    status_code: int
    content_type: str
    text: str
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return not self.error and 200 <= self.status_code < 400


FetchFn = Callable[[str], FetchResult]


def parse_robots(text: str) -> RobotFileParser:
    parser = RobotFileParser()
    parser.parse((text or "").splitlines())
    return parser


def is_url_allowed(url: str, rules: Optional[RobotFileParser], user_agent: str = USER_AGENT) -> bool:
    if rules is None:
        return True
    return rules.can_fetch(user_agent, url)


class WebsiteFetcher:
    def __init__(
        self,
        http_client: Optional[HttpClient] = None,
        fetcher: Optional[FetchFn] = None,
        delay_seconds: float = 0.2,
    ) -> None:
        self.http_client = http_client or HttpClient()
        self.fetcher = fetcher
        self.delay_seconds = max(0.0, float(delay_seconds))
        self._robots: Dict[str, Optional[RobotFileParser]] = {}
        self._lock = threading.Lock()

    def _fetch(self, url: str) -> FetchResult:
        if self.fetcher is not None:
            return self.fetcher(url)
        try:
            status, final_url, content_type, text = self.http_client.get_text(url)
        except requests.RequestException as exc:
            return FetchResult(
                url=url,
                final_url=url,
                status_code=0,
                content_type="",
                text="",
                error=f"request_error: {exc}",
            )
        return FetchResult(
            url=url,
            final_url=final_url,
            status_code=status,
            content_type=content_type,
            text=text,
        )

    def robots_rules(self, origin: str) -> Optional[RobotFileParser]:
        with self._lock:
            if origin in self._robots:
                return self._robots[origin]
        result = self._fetch(f"{origin}/robots.txt")
        rules = parse_robots(result.text) if result.ok else None
        if not result.ok:
            logger.debug("No usable robots.txt for %s (%s)", origin, result.error or result.status_code)
        with self._lock:
            self._robots[origin] = rules
        return rules

    def fetch_page(self, url: str) -> Optional[FetchResult]:
        """Fetch an HTML page; None when disallowed, unreachable or an HTTP error."""
        origin = site_origin(url)
        if origin is None:
            return None
        if not is_url_allowed(url, self.robots_rules(origin), self.http_client.user_agent):
            logger.info("Skipping enrichment fetch disallowed by robots.txt: %s", url)
            return None

        result = self._fetch(url)
        if self.delay_seconds:
            time.sleep(self.delay_seconds)
        if not result.ok:
            logger.debug("Enrichment fetch failed for %s: %s", url, result.error or f"http_{result.status_code}")
            return None
        if not result.text:
            return None
        return result
