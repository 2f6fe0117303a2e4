"""Page rendering capability used by the crawl stages.

Stages only talk to the Renderer protocol: navigate, query the DOM through a
pluggable extractor function, scroll, click and read page text. The
Playwright implementation drives a headless Chromium through the session's
proxy.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Optional, Protocol, TypeVar
from urllib.parse import urlparse

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

from .errors import RenderError, RenderTimeoutError
from .sessions import Session

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_NAVIGATION_TIMEOUT_MS = 60_000
SCROLL_TO_END = 1_000_000

_SCROLL_JS = """
([selector, delta]) => {
  const el = selector ? document.querySelector(selector) : null;
  if (el) {
    el.scrollBy(0, delta > 0 ? delta : (el.clientHeight || 400));
  } else {
    window.scrollBy(0, delta > 0 ? delta : (window.innerHeight || 400));
  }
}
"""

_BODY_TEXT_JS = "() => (document.body ? document.body.innerText : '')"


class Renderer(Protocol):
    def navigate(self, url: str, wait_until: str = "networkidle", timeout_ms: int = DEFAULT_NAVIGATION_TIMEOUT_MS) -> None: ...

    def current_url(self) -> str: ...

    def query_dom(self, extractor: Callable[[Any], T]) -> T: ...

    def scroll_by(self, selector: Optional[str], delta: int = 0) -> None: ...

    def wait_for_selector(self, selector: str, timeout_ms: int) -> None: ...

    def wait_for_load(self, timeout_ms: int) -> None: ...

    def pause(self, ms: int) -> None: ...

    def click(self, selector: str) -> bool: ...

    def has_element(self, selector: str) -> bool: ...

    def body_text(self) -> str: ...

    def close(self) -> None: ...


RendererFactory = Callable[[Session], Renderer]


def _proxy_settings(proxy_url: Optional[str]) -> Optional[dict]:
    if not proxy_url:
        return None
    parsed = urlparse(proxy_url)
    server = f"{parsed.scheme or 'http'}://{parsed.hostname}"
    if parsed.port:
        server += f":{parsed.port}"
    settings = {"server": server}
    if parsed.username:
        settings["username"] = parsed.username
    if parsed.password:
        settings["password"] = parsed.password
    return settings


class PlaywrightRenderer:
    """Sync Playwright renderer; one browser per session, one page reused across requests.

    Must be created and used on a single thread.
    """

    def __init__(
        self,
        session: Session,
        headless: bool = True,
        slowmo_ms: int = 0,
        locale: Optional[str] = None,
        sync_playwright_factory: Optional[Callable[[], Any]] = None,
    ) -> None:
        self.session = session
        self.headless = bool(headless)
        self.slowmo_ms = max(0, int(slowmo_ms))
        self.locale = locale
        self._factory = sync_playwright_factory or sync_playwright
        self._playwright = None
        self._browser = None
        self._context = None
        self._page = None

    def _ensure_page(self):
        if self._page is not None:
            return self._page
        self._playwright = self._factory().start()
        self._browser = self._playwright.chromium.launch(
            headless=self.headless,
            slow_mo=self.slowmo_ms,
            proxy=_proxy_settings(self.session.proxy_url),
        )
        context_kwargs = {}
        if self.locale:
            context_kwargs["locale"] = self.locale
        self._context = self._browser.new_context(**context_kwargs)
        self._page = self._context.new_page()
        logger.debug("Launched browser for session %s", self.session.id)
        return self._page

    def navigate(self, url: str, wait_until: str = "networkidle", timeout_ms: int = DEFAULT_NAVIGATION_TIMEOUT_MS) -> None:
        page = self._ensure_page()
        try:
            page.goto(url, wait_until=wait_until, timeout=timeout_ms)
        except PlaywrightTimeoutError as exc:
            raise RenderTimeoutError(f"Navigation timed out: {url}") from exc
        except PlaywrightError as exc:
            raise RenderError(f"Navigation failed: {url}: {exc}") from exc

    def current_url(self) -> str:
        if self._page is None:
            return ""
        return self._page.url or ""

    def query_dom(self, extractor: Callable[[Any], T]) -> T:
        return extractor(self._ensure_page())

    def scroll_by(self, selector: Optional[str], delta: int = 0) -> None:
        self._ensure_page().evaluate(_SCROLL_JS, [selector, int(delta)])

    def wait_for_selector(self, selector: str, timeout_ms: int) -> None:
        try:
            self._ensure_page().wait_for_selector(selector, timeout=timeout_ms)
        except PlaywrightTimeoutError as exc:
            raise RenderTimeoutError(f"Timed out waiting for {selector}") from exc

    def wait_for_load(self, timeout_ms: int) -> None:
        try:
            self._ensure_page().wait_for_load_state("domcontentloaded", timeout=timeout_ms)
        except PlaywrightTimeoutError as exc:
            raise RenderTimeoutError("Timed out waiting for page load") from exc

    def pause(self, ms: int) -> None:
        self._ensure_page().wait_for_timeout(ms)

    def click(self, selector: str) -> bool:
        page = self._ensure_page()
        try:
            element = page.query_selector(selector)
            if element is None:
                return False
            element.click()
        except PlaywrightError as exc:
            logger.debug("Click on %s failed: %s", selector, exc)
            return False
        return True

    def has_element(self, selector: str) -> bool:
        try:
            return self._ensure_page().query_selector(selector) is not None
        except PlaywrightError:
            return False

    def body_text(self) -> str:
        return self._ensure_page().evaluate(_BODY_TEXT_JS) or ""

    def close(self) -> None:
        for closer in (self._context, self._browser):
            if closer is None:
                continue
            try:
                closer.close()
            except PlaywrightError as exc:
                logger.debug("Error while closing browser: %s", exc)
        if self._playwright is not None:
            self._playwright.stop()
        self._playwright = None
        self._browser = None
        self._context = None
        self._page = None


def playwright_renderer_factory(headless: bool = True, locale: Optional[str] = None) -> RendererFactory:
    def factory(session: Session) -> Renderer:
        return PlaywrightRenderer(session, headless=headless, locale=locale)

    return factory
