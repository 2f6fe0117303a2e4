"""HTTP client with retry/backoff for website enrichment."""
from __future__ import annotations

import logging
import random
import time
from typing import Dict, Optional, Tuple

import requests

logger = logging.getLogger(__name__)

USER_AGENT = "MapCrawlEnrichmentBot/1.0 (+contact-discovery)"
MAX_RESPONSE_BYTES = 1_500_000
RETRY_STATUSES = (429, 500, 502, 503, 504)


class HttpClient:
    def __init__(
        self,
        timeout: int = 15,
        retry_max: int = 3,
        backoff_base: float = 0.5,
        backoff_max: float = 8.0,
        max_bytes: int = MAX_RESPONSE_BYTES,
        user_agent: str = USER_AGENT,
    ) -> None:
        self.timeout = timeout
        self.retry_max = max(1, int(retry_max))
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.max_bytes = max_bytes
        self.user_agent = user_agent
        self.session = requests.Session()

    def get_text(
        self, url: str, extra_headers: Optional[Dict[str, str]] = None
    ) -> Tuple[int, str, str, str]:
        """GET a page; returns (status_code, final_url, content_type, text).

        429 and 5xx responses and connection errors are retried with backoff;
        the last failure propagates as requests.RequestException.
        """
        headers = {"User-Agent": self.user_agent}
        if extra_headers:
            headers.update(extra_headers)

        for attempt in range(1, self.retry_max + 1):
            try:
                resp = self.session.get(url, headers=headers, timeout=self.timeout, stream=True)
            except requests.RequestException as exc:
                if attempt >= self.retry_max:
                    raise
                logger.debug("GET %s failed (attempt %s): %s", url, attempt, exc)
                self._sleep_backoff(attempt)
                continue

            status = resp.status_code
            if status in RETRY_STATUSES:
                logger.warning("HTTP %s from %s (attempt %s)", status, url, attempt)
                if attempt >= self.retry_max:
                    try:
                        resp.raise_for_status()
                    finally:
                        resp.close()
                retried_after = self._sleep_retry_after(resp)
                resp.close()
                if not retried_after:
                    self._sleep_backoff(attempt)
                continue

            content_type = (resp.headers.get("content-type") or "").split(";", 1)[0].strip().lower()
            return status, str(resp.url or url), content_type, self._read_capped(resp)

        raise RuntimeError("Unexpected HTTP retry loop exit")

    def _read_capped(self, resp: requests.Response) -> str:
        chunks = []
        total = 0
        try:
            for chunk in resp.iter_content(chunk_size=16_384):
                if not chunk:
                    continue
                chunks.append(chunk)
                total += len(chunk)
                if total >= self.max_bytes:
                    break
        finally:
            resp.close()

        raw = b"".join(chunks)[: self.max_bytes]
        encoding = resp.encoding or "utf-8"
        try:
            return raw.decode(encoding, errors="ignore")
        except LookupError:
            return raw.decode("utf-8", errors="ignore")

    def _sleep_backoff(self, attempt: int) -> None:
        base = min(self.backoff_base * (2 ** (attempt - 1)), self.backoff_max)
        jitter = random.uniform(0, self.backoff_base)
        time.sleep(base + jitter)

    def _sleep_retry_after(self, resp: requests.Response) -> bool:
        retry_after = resp.headers.get("Retry-After")
        if not retry_after:
            return False
        try:
            delay = float(retry_after)
        except ValueError:
            return False
        delay = max(0.0, min(delay, self.backoff_max))
        time.sleep(delay)
        return True
