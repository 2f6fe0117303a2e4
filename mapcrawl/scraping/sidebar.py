"""Search results sidebar: extraction and scroll-driven collection."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Optional

from ..blocking import raise_if_blocked
from ..models import TileDescriptor
from ..render import SCROLL_TO_END
from .context import CrawlContext

logger = logging.getLogger(__name__)

SIDEBAR_CONTAINER_SELECTOR = 'div[role="feed"]'

_EXTRACT_SIDEBAR_JS = """
(containers) => {
  const items = [];
  for (const container of containers) {
    const nodes = container.querySelectorAll('div[role="article"], div[jsaction][data-result-id]');
    for (const item of Array.from(nodes)) {
      const titleEl = item.querySelector('[role="heading"]')
        || item.querySelector('h3')
        || item.querySelector('div[aria-level="3"]');
      const title = ((titleEl && titleEl.textContent) || item.getAttribute('aria-label') || '').trim() || null;
      const categoryEl = item.querySelector('span[aria-hidden="true"], span[jsinstance]');
      const category = ((categoryEl && categoryEl.textContent) || '').trim() || null;
      const link = item.querySelector('a[href*="/maps/place"]');
      const placeUrl = (link && link.href) || null;
      if (!placeUrl && !title) continue;
      items.push({title, category, placeUrl});
    }
  }
  return items;
}
"""


@dataclass(frozen=True)
class SidebarPlace:
    title: Optional[str]
    category: Optional[str]
    place_url: Optional[str]


def extract_sidebar_places(page: Any) -> List[SidebarPlace]:
    rows = page.eval_on_selector_all(SIDEBAR_CONTAINER_SELECTOR, _EXTRACT_SIDEBAR_JS) or []
    return [
        SidebarPlace(title=row.get("title"), category=row.get("category"), place_url=row.get("placeUrl"))
        for row in rows
    ]


def collect_sidebar_places(
    ctx: CrawlContext, url: str, tile: TileDescriptor, max_places: int
) -> List[SidebarPlace]:
    """Scroll the results feed of one tile and return up to max_places summaries with distinct URLs.

    Raises SoftBlockError on a block page and RenderTimeoutError when the
    results feed never appears.
    """
    settings = ctx.settings
    renderer = ctx.renderer

    renderer.navigate(url, wait_until="networkidle", timeout_ms=settings.navigation_timeout_ms)
    raise_if_blocked(ctx, "before sidebar load")

    renderer.wait_for_load(settings.wait_timeout_ms)
    renderer.wait_for_selector(SIDEBAR_CONTAINER_SELECTOR, settings.wait_timeout_ms)

    collected: List[SidebarPlace] = []
    seen_urls: set[str] = set()
    previous_count = 0
    stagnant = 0

    for _ in range(settings.sidebar_max_scrolls):
        for place in renderer.query_dom(extract_sidebar_places):
            if not place.place_url or place.place_url in seen_urls:
                continue
            seen_urls.add(place.place_url)
            collected.append(place)
            if len(collected) >= max_places:
                break

        current_count = len(collected)
        if current_count >= max_places:
            break

        stagnant = stagnant + 1 if current_count == previous_count else 0
        if stagnant >= settings.stagnation_passes:
            logger.info("No new sidebar items after scrolling; stopping tile %s at %s places", tile.id, current_count)
            break

        renderer.scroll_by(SIDEBAR_CONTAINER_SELECTOR, SCROLL_TO_END)
        ctx.scroll_pause()
        raise_if_blocked(ctx, "during sidebar scrolling")
        previous_count = current_count

    logger.info("Collected %s sidebar places from tile %s", len(collected), tile.id)
    return collected[:max_places]
