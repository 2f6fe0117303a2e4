"""Review card extraction."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

REVIEW_CARD_SELECTOR = "div[data-review-id]"

_EXTRACT_REVIEWS_JS = """
(cards) => cards.map((card) => {
  const contributor = card.querySelector('a[href*="maps/contrib"], a[href*="google.com/maps/contrib"]');
  const avatar = contributor ? contributor.querySelector('img') : null;

  let rating = null;
  const ratingEl = card.querySelector('span[aria-label*="star rating" i], span[aria-label*="stars" i]');
  if (ratingEl) {
    const m = (ratingEl.getAttribute('aria-label') || ratingEl.textContent || '').match(/([0-9]+(?:\\.[0-9]+)?)/);
    if (m) rating = Number(m[1]);
  }

  let likesCount = null;
  const likeButton = card.querySelector('button[aria-label*="helpful" i], button[aria-label*="like this review" i]');
  if (likeButton) {
    const m = (likeButton.textContent || '').trim().match(/([0-9][0-9,]*)/);
    if (m) likesCount = Number(m[1].replace(/,/g, ''));
  }

  const response = card.querySelector(
    'div[aria-label*="Response from the owner" i], div[aria-label*="Owner response" i]');
  const textEl = card.querySelector('span[lang]');
  const timeEl = card.querySelector('span[class*="rsqaWe"], span[aria-label*="review" i], span[aria-label*="ago" i]');
  const images = Array.from(card.querySelectorAll('img[src]'))
    .filter((img) => img !== avatar)
    .map((img) => img.src)
    .filter(Boolean);

  return {
    reviewId: card.getAttribute('data-review-id') || null,
    reviewerName: ((contributor && contributor.textContent) || '').trim() || null,
    reviewerProfileUrl: (contributor && contributor.href) || null,
    reviewerPhotoUrl: (avatar && avatar.src) || null,
    text: ((textEl && textEl.textContent) || '').trim() || null,
    rating,
    likesCount,
    isLocalGuide: /local guide/i.test(card.innerText || ''),
    reviewImages: images,
    ownerResponse: response ? ((response.textContent || '').trim() || null) : null,
    publishedAt: ((timeEl && timeEl.textContent) || '').trim() || null,
  };
})
"""


@dataclass(frozen=True)
class ParsedReview:
    review_id: Optional[str] = None
    reviewer_name: Optional[str] = None
    reviewer_profile_url: Optional[str] = None
    reviewer_photo_url: Optional[str] = None
    text: Optional[str] = None
    rating: Optional[float] = None
    likes_count: Optional[int] = None
    is_local_guide: bool = False
    review_images: List[str] = field(default_factory=list)
    owner_response: Optional[str] = None
    published_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ParsedReview":
        rating = data.get("rating")
        likes = data.get("likesCount")
        return cls(
            review_id=(data.get("reviewId") or "").strip() or None,
            reviewer_name=data.get("reviewerName") or None,
            reviewer_profile_url=data.get("reviewerProfileUrl") or None,
            reviewer_photo_url=data.get("reviewerPhotoUrl") or None,
            text=data.get("text") or None,
            rating=float(rating) if rating is not None else None,
            likes_count=int(likes) if likes is not None else None,
            is_local_guide=bool(data.get("isLocalGuide")),
            review_images=list(data.get("reviewImages") or []),
            owner_response=data.get("ownerResponse") or None,
            published_at=data.get("publishedAt") or None,
        )


def extract_review_cards(page: Any) -> List[ParsedReview]:
    rows = page.eval_on_selector_all(REVIEW_CARD_SELECTOR, _EXTRACT_REVIEWS_JS) or []
    return [ParsedReview.from_dict(row) for row in rows]
