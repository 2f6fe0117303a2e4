"""Place detail page parsing.

The DOM extractor runs in the page and returns a plain dict of raw strings;
build_place() turns that dict plus the page URL into a Place. Only the
extractor knows about Maps markup.
"""
from __future__ import annotations

import hashlib
import re
from typing import Any, Dict, List, Optional

from ..errors import PlaceParseError
from ..maps_urls import extract_coordinates, extract_url_identifiers, normalize_place_url
from ..models import Address, Place, utc_now_iso

_EXTRACT_PLACE_JS = """
() => {
  const text = (el) => ((el && el.textContent) || '').trim() || null;
  const titleEl = document.querySelector('h1.DUwDvf')
    || document.querySelector('h1[aria-level="1"]')
    || document.querySelector('h1');
  const header = (titleEl && titleEl.closest('div')) || document.querySelector('div[role="main"]');

  const categories = [];
  if (header) {
    const nodes = header.querySelectorAll(
      'button[aria-label*="category" i], button[jsaction*="pane.rating.category"], a[aria-label*="category" i]');
    for (const node of Array.from(nodes)) {
      const t = text(node);
      if (t && !categories.includes(t)) categories.push(t);
    }
  }
  let subtitle = null;
  if (header && !categories.length) {
    const el = header.querySelector('button[aria-label*="reviews" i]')
      || header.querySelector('div[aria-label*="stars" i]')
      || header.querySelector('span');
    subtitle = text(el);
  }

  let description = null;
  for (const node of Array.from(document.querySelectorAll(
      'div[aria-label*="About" i] div, section[aria-label*="About" i] div'))) {
    const t = text(node);
    if (t && t.length < 500) { description = t; break; }
  }

  const byItemId = (ids) => {
    for (const id of ids) {
      const el = document.querySelector(`[data-item-id="${id}"]`);
      if (el) return el;
    }
    return null;
  };
  const phoneEl = byItemId(['phone:tel', 'phone'])
    || document.querySelector('button[aria-label^="Phone"]')
    || document.querySelector('a[href^="tel:"]');
  const websiteContainer = byItemId(['authority'])
    || document.querySelector('a[aria-label*="website" i]');
  let website = null;
  if (websiteContainer) {
    const a = websiteContainer.matches('a[href^="http"]')
      ? websiteContainer : websiteContainer.querySelector('a[href^="http"]');
    website = (a && a.href) || null;
  }

  const hours = {};
  for (const container of Array.from(document.querySelectorAll(
      '[data-item-id*="hours"], div[aria-label*="Hours" i], section[aria-label*="Hours" i]'))) {
    const table = container.querySelector('table');
    if (!table) continue;
    for (const row of Array.from(table.querySelectorAll('tr'))) {
      const cells = row.querySelectorAll('td, th');
      if (cells.length < 2) continue;
      const day = text(cells[0]);
      const value = text(cells[1]);
      if (!day || !value) continue;
      (hours[day] = hours[day] || []).push(value);
    }
    if (Object.keys(hours).length) break;
  }
  let hoursSummary = null;
  if (!Object.keys(hours).length) {
    const el = byItemId(['hours']) || document.querySelector('button[aria-label*="Hours" i]');
    hoursSummary = el ? ((el.getAttribute('aria-label') || el.textContent || '').trim() || null) : null;
  }

  let priceLevel = null;
  if (header) {
    for (const node of Array.from(header.querySelectorAll('span, div'))) {
      const t = (node.textContent || '').trim();
      if (/^\\${1,4}$/.test(t)) { priceLevel = t; break; }
    }
  }

  const ratingEl = document.querySelector('div.F7nice span[aria-hidden="true"], span[aria-label*="stars" i]');
  const reviewsEl = document.querySelector('button[aria-label*="reviews" i], span[aria-label*="reviews" i]');
  const placeIdEl = document.querySelector('[data-place-id]');

  return {
    title: text(titleEl),
    categories,
    subtitle,
    description,
    fullAddress: text(byItemId(['address', 'address0', 'address1'])),
    plusCode: text(byItemId(['oloc', 'plus_code'])),
    phone: text(phoneEl),
    website,
    openingHours: Object.keys(hours).length ? hours : null,
    hoursSummary,
    priceLevel,
    ratingText: ratingEl ? (ratingEl.getAttribute('aria-label') || ratingEl.textContent || '') : null,
    reviewsText: reviewsEl ? (reviewsEl.getAttribute('aria-label') || reviewsEl.textContent || '') : null,
    placeId: placeIdEl ? placeIdEl.getAttribute('data-place-id') : null,
    bodyText: (document.body && document.body.innerText) || '',
  };
}
"""

_STATE_POSTAL_RE = re.compile(r"^(.*?)(\s+([A-Z0-9-]+))?$")
_NUMBER_RE = re.compile(r"([0-9]+(?:[.,][0-9]+)?)")
_COUNT_RE = re.compile(r"([0-9][0-9,.\s]*)")


def extract_place_dom(page: Any) -> Dict[str, Any]:
    return page.evaluate(_EXTRACT_PLACE_JS)


def parse_structured_address(full_address: Optional[str]) -> Address:
    """Best-effort split of a comma separated address; never raises."""
    address = Address(full_address=full_address)
    if not full_address:
        return address
    parts = [p.strip() for p in full_address.split(",") if p.strip()]
    if not parts:
        return address

    address.street = parts[0]
    if len(parts) == 2:
        address.country = parts[1]
    elif len(parts) == 3:
        address.city = parts[1]
        address.country = parts[2]
    elif len(parts) >= 4:
        address.city = parts[1]
        address.country = parts[-1]
        state_postal = parts[-2]
        match = _STATE_POSTAL_RE.match(state_postal)
        if match:
            address.state = (match.group(1) or "").strip() or None
            address.postal_code = (match.group(3) or "").strip() or None
        else:
            address.state = state_postal
    return address


def parse_rating(text: Optional[str]) -> Optional[float]:
    match = _NUMBER_RE.search(text or "")
    if not match:
        return None
    value = float(match.group(1).replace(",", "."))
    return value if 0 <= value <= 5 else None


def parse_review_count(text: Optional[str]) -> Optional[int]:
    match = _COUNT_RE.search(text or "")
    if not match:
        return None
    digits = re.sub(r"[^0-9]", "", match.group(1))
    return int(digits) if digits else None


def _subtitle_categories(subtitle: Optional[str]) -> List[str]:
    if not subtitle:
        return []
    return [p.strip() for p in subtitle.split("·") if p.strip() and re.search(r"[A-Za-z]", p)]


def synthetic_place_id(*parts: Optional[str]) -> str:
    digest = hashlib.sha1("|".join(p or "" for p in parts).encode("utf-8")).hexdigest()
    return f"synthetic-{digest[:16]}"


def canonical_place_url(page_url: Optional[str]) -> Optional[str]:
    if not page_url or page_url == "about:blank":
        return None
    return normalize_place_url(page_url)


def build_place(raw: Dict[str, Any], page_url: str) -> Place:
    if not isinstance(raw, dict):
        raise PlaceParseError(f"Place extractor returned {type(raw).__name__}, expected dict")

    identifiers = extract_url_identifiers(page_url or "")
    lat, lng = extract_coordinates(page_url or "")
    canonical_url = canonical_place_url(page_url)

    place_id = identifiers["place_id"] or raw.get("placeId") or None
    cid = identifiers["cid"]
    title = raw.get("title") or None

    categories = [c for c in (raw.get("categories") or []) if c]
    if not categories:
        categories = _subtitle_categories(raw.get("subtitle"))

    opening_hours = raw.get("openingHours") or None
    if not opening_hours and raw.get("hoursSummary"):
        opening_hours = {"general": [raw["hoursSummary"]]}

    body_text = (raw.get("bodyText") or "").lower()
    now = utc_now_iso()
    return Place(
        id=place_id or cid or canonical_url or synthetic_place_id(title, raw.get("fullAddress")),
        title=title,
        place_id=place_id,
        cid=cid,
        google_maps_url=canonical_url,
        primary_category=categories[0] if categories else None,
        categories=categories,
        description=raw.get("description") or None,
        address=parse_structured_address(raw.get("fullAddress") or None),
        lat=lat,
        lng=lng,
        plus_code=raw.get("plusCode") or None,
        phone=raw.get("phone") or None,
        website=raw.get("website") or None,
        opening_hours=opening_hours,
        price_level=raw.get("priceLevel") or None,
        permanently_closed="permanently closed" in body_text,
        temporarily_closed="temporarily closed" in body_text,
        total_reviews=parse_review_count(raw.get("reviewsText")),
        average_rating=parse_rating(raw.get("ratingText")),
        created_at=now,
        updated_at=now,
    )
