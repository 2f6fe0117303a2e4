"""Browser session identities with proxy rotation."""
from __future__ import annotations

import itertools
import logging
import threading
import uuid
from dataclasses import dataclass
from typing import List, Optional

logger = logging.getLogger(__name__)


@dataclass
class Session:
    id: str
    proxy_url: Optional[str] = None
    usage_count: int = 0
    bad: bool = False

    def mark_bad(self) -> None:
        if not self.bad:
            logger.info("Session %s marked bad (proxy=%s)", self.id, _redact_proxy(self.proxy_url))
        self.bad = True

    def mark_used(self) -> None:
        self.usage_count += 1


def _redact_proxy(proxy_url: Optional[str]) -> Optional[str]:
    if not proxy_url or "@" not in proxy_url:
        return proxy_url
    scheme, _, rest = proxy_url.partition("://")
    host = rest.rsplit("@", 1)[-1]
    return f"{scheme}://***@{host}" if scheme else f"***@{host}"


class SessionPool:
    """Hands out sessions round-robin over the proxy list.

    A session is retired once marked bad or after max_usage requests; the
    next acquire() returns a new identity on the next proxy.
    """

    def __init__(self, proxy_urls: Optional[List[str]] = None, max_usage: int = 50) -> None:
        self.proxy_urls = list(proxy_urls or [])
        self.max_usage = max(1, int(max_usage))
        self._proxies = itertools.cycle(self.proxy_urls) if self.proxy_urls else None
        self._lock = threading.Lock()
        self.created = 0
        self.retired = 0

    def acquire(self) -> Session:
        with self._lock:
            proxy = next(self._proxies) if self._proxies is not None else None
            self.created += 1
        session = Session(id=f"session_{uuid.uuid4().hex[:10]}", proxy_url=proxy)
        logger.debug("Acquired session %s (proxy=%s)", session.id, _redact_proxy(proxy))
        return session

    def is_usable(self, session: Session) -> bool:
        return not session.bad and session.usage_count < self.max_usage

    def retire(self, session: Session) -> None:
        with self._lock:
            self.retired += 1
        logger.debug("Retired session %s after %s requests (bad=%s)", session.id, session.usage_count, session.bad)
