"""Per-worker run statistics, merged once at the end of a crawl."""
from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Iterable


@dataclass
class RunStats:
    places_scraped: int = 0
    reviews_scraped: int = 0
    places_enqueued: int = 0
    review_requests_enqueued: int = 0
    dedup_skips_places: int = 0
    dedup_skips_reviews: int = 0
    contacts_enriched: int = 0
    leads_enriched: int = 0
    social_profiles_enriched: int = 0
    requests_handled: int = 0
    requests_retried: int = 0
    requests_failed: int = 0
    soft_blocks: int = 0

    def inc(self, name: str, delta: int = 1) -> None:
        if name not in self.__dataclass_fields__:
            raise ValueError(f"Unknown counter: {name}")
        setattr(self, name, getattr(self, name) + delta)

    def merge(self, other: "RunStats") -> "RunStats":
        for f in fields(self):
            setattr(self, f.name, getattr(self, f.name) + getattr(other, f.name))
        return self

    @classmethod
    def merged(cls, parts: Iterable["RunStats"]) -> "RunStats":
        total = cls()
        for part in parts:
            total.merge(part)
        return total

    def to_summary(self) -> Dict[str, Any]:
        data = asdict(self)
        return {
            "placesScraped": data["places_scraped"],
            "reviewsScraped": data["reviews_scraped"],
            "enrichmentStats": {
                "contactsEnrichedCount": data["contacts_enriched"],
                "leadsEnrichedCount": data["leads_enriched"],
                "socialProfilesEnrichedCount": data["social_profiles_enriched"],
            },
            "requests": {
                "handled": data["requests_handled"],
                "retried": data["requests_retried"],
                "failed": data["requests_failed"],
                "softBlocks": data["soft_blocks"],
            },
            "dedup": {
                "placesEnqueued": data["places_enqueued"],
                "placeSkips": data["dedup_skips_places"],
                "reviewRequestsEnqueued": data["review_requests_enqueued"],
                "reviewSkips": data["dedup_skips_reviews"],
            },
        }
