"""Soft-block and captcha detection."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from .errors import SoftBlockError

if TYPE_CHECKING:
    from .render import Renderer
    from .scraping.context import CrawlContext

logger = logging.getLogger(__name__)

BLOCK_PHRASES = (
    "unusual traffic",
    "our systems have detected unusual traffic",
)
CAPTCHA_SELECTORS = (
    'iframe[src*="recaptcha"], iframe[title*="captcha" i]',
    "div.g-recaptcha, iframe[src*='hcaptcha']",
    "text=/captcha/i",
)


def is_block_text(text: Optional[str]) -> bool:
    lowered = (text or "").lower()
    return any(phrase in lowered for phrase in BLOCK_PHRASES)


def detect_soft_block(renderer: "Renderer") -> bool:
    if is_block_text(renderer.body_text()):
        return True
    return any(renderer.has_element(selector) for selector in CAPTCHA_SELECTORS)


def raise_if_blocked(ctx: "CrawlContext", where: str) -> None:
    """Raise SoftBlockError and poison the session when the current page is a block page."""
    if not detect_soft_block(ctx.renderer):
        return
    logger.warning("Soft block or captcha detected %s; retrying with a new session: %s", where, ctx.url)
    ctx.session.mark_bad()
    ctx.stats.inc("soft_blocks")
    raise SoftBlockError(f"Soft block detected {where}")
