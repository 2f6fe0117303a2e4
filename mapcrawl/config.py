"""Crawl configuration.

Loads the crawl input (search terms, geometry, enrichment flags) from a JSON
file and normalizes it into search jobs. Tunable crawl limits live in
CrawlSettings; keep Maps URLs and selectors-independent constants here.
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .models import SOCIAL_NETWORKS, Geometry, SearchJob, geometry_from_geojson

logger = logging.getLogger(__name__)

_REPO_ROOT = Path(__file__).resolve().parent.parent

# --- Maps endpoints ---

MAPS_SEARCH_URL = "https://www.google.com/maps/search/"

# --- Input defaults ---

DEFAULT_MAX_CRAWLED_PLACES_PER_SEARCH = 500
DEFAULT_LANGUAGE = "en"
DEFAULT_MAX_REVIEWS = 5000

# --- Tiling ---

DEFAULT_TILE_SIZE_KM = 2.5
DEFAULT_ZOOM = 15
DEFAULT_POINT_RADIUS_KM = 3.0
MAX_TILES_PER_BOX = 400
GLOBAL_TILE_ZOOM = 3

# --- Dedup ---

PLACE_DEDUP_MAX_SIZE = 50_000
REVIEW_DEDUP_MAX_SIZE = 100_000

# --- Storage and outputs ---

STORAGE_DB_PATH = "crawl_state.db"
OUTPUT_DIR = "out"
PROGRESS_LOG_EVERY = 25
PROGRESS_WRITE_INTERVAL_SECONDS = 5.0

PROXY_URLS_ENV = "MAPCRAWL_PROXY_URLS"


@dataclass(frozen=True)
class CrawlSettings:
    tile_size_km: float = DEFAULT_TILE_SIZE_KM
    zoom: int = DEFAULT_ZOOM
    max_tiles_per_box: int = MAX_TILES_PER_BOX

    sidebar_max_scrolls: int = 50
    reviews_max_scrolls: int = 100
    stagnation_passes: int = 3
    scroll_pause_ms: Tuple[int, int] = (500, 1000)

    max_reviews_per_request: int = 5000
    review_flush_size: int = 100

    place_dedup_max_size: int = PLACE_DEDUP_MAX_SIZE
    review_dedup_max_size: int = REVIEW_DEDUP_MAX_SIZE

    navigation_timeout_ms: int = 60_000
    wait_timeout_ms: int = 30_000
    detail_settle_ms: int = 1000
    panel_open_pause_ms: int = 1000

    max_request_retries: int = 2
    retry_backoff_base: float = 2.0
    retry_backoff_max: float = 60.0

    max_concurrency: int = 1
    session_max_usage: int = 50
    headless: bool = True

    enrichment_timeout_seconds: int = 15
    enrichment_max_pages: int = 3
    enrichment_delay_seconds: float = 0.2


def settings_from_dict(data: Optional[Dict[str, Any]], base: Optional[CrawlSettings] = None) -> CrawlSettings:
    """Build settings from an optional `settings` section, ignoring unknown keys."""
    base = base or CrawlSettings()
    if not data:
        return base
    known = {f.name: f for f in fields(CrawlSettings)}
    values: Dict[str, Any] = {}
    for key, raw in data.items():
        if key not in known:
            logger.warning("Ignoring unknown setting %r", key)
            continue
        current = getattr(base, key)
        if isinstance(current, bool):
            values[key] = bool(raw)
        elif isinstance(current, int):
            values[key] = int(raw)
        elif isinstance(current, float):
            values[key] = float(raw)
        elif isinstance(current, tuple):
            values[key] = tuple(int(v) for v in raw)
        else:
            values[key] = raw
    merged = {f.name: getattr(base, f.name) for f in fields(CrawlSettings)}
    merged.update(values)
    return CrawlSettings(**merged)


@dataclass(frozen=True)
class CrawlInput:
    search_terms: List[str]
    categories: List[str]
    location: Optional[str]
    geometry: Optional[Geometry]
    max_places_per_search: int
    language: str
    extract_reviews: bool
    max_reviews: int
    enrich_contacts: bool
    enrich_leads: bool
    enrich_social_profiles: List[str]
    proxy_urls: List[str]
    search_jobs: List[SearchJob] = field(default_factory=list)

    @property
    def enrichment_enabled(self) -> bool:
        return self.enrich_contacts or self.enrich_leads or bool(self.enrich_social_profiles)


def _clean_strings(values: Any) -> List[str]:
    if not isinstance(values, list):
        return []
    return [v.strip() for v in values if isinstance(v, str) and v.strip()]


def _proxy_urls(raw_proxy: Any) -> List[str]:
    urls: List[str] = []
    if isinstance(raw_proxy, dict):
        urls.extend(_clean_strings(raw_proxy.get("proxyUrls")))
    env_value = os.environ.get(PROXY_URLS_ENV) or ""
    for url in env_value.split(","):
        url = url.strip()
        if url and url not in urls:
            urls.append(url)
    return urls


def normalize_input(raw: Optional[Dict[str, Any]]) -> CrawlInput:
    data: Dict[str, Any] = raw or {}

    search_terms = _clean_strings(data.get("searchTerms"))
    categories = _clean_strings(data.get("categories"))

    location = data.get("location")
    location = location.strip() if isinstance(location, str) and location.strip() else None

    max_places = data.get("maxCrawledPlacesPerSearch")
    if isinstance(max_places, (int, float)) and not isinstance(max_places, bool) and max_places > 0:
        max_places = int(max_places)
    else:
        max_places = DEFAULT_MAX_CRAWLED_PLACES_PER_SEARCH

    language = data.get("language")
    language = language.strip() if isinstance(language, str) and language.strip() else DEFAULT_LANGUAGE

    max_reviews = data.get("maxReviews")
    if isinstance(max_reviews, (int, float)) and not isinstance(max_reviews, bool) and max_reviews >= 0:
        max_reviews = int(max_reviews)
    else:
        max_reviews = DEFAULT_MAX_REVIEWS

    social = [t for t in _clean_strings(data.get("enrichSocialProfiles")) if t in SOCIAL_NETWORKS]

    geometry: Optional[Geometry] = None
    raw_geo = data.get("customGeolocation")
    if raw_geo:
        geometry = geometry_from_geojson(raw_geo)

    search_jobs = build_search_jobs(
        search_terms=search_terms,
        categories=categories,
        location=location,
        geometry=geometry,
        max_places_per_search=max_places,
        language=language,
    )

    crawl_input = CrawlInput(
        search_terms=search_terms,
        categories=categories,
        location=location,
        geometry=geometry,
        max_places_per_search=max_places,
        language=language,
        extract_reviews=data.get("extractReviews") is not False,
        max_reviews=max_reviews,
        enrich_contacts=data.get("enrichContacts") is True,
        enrich_leads=data.get("enrichLeads") is True,
        enrich_social_profiles=social,
        proxy_urls=_proxy_urls(data.get("proxy")),
        search_jobs=search_jobs,
    )
    logger.info(
        "Normalized input: terms=%s categories=%s location=%s max_places=%s language=%s "
        "reviews=%s max_reviews=%s contacts=%s leads=%s social=%s geometry=%s proxies=%s jobs=%s",
        search_terms,
        categories,
        location,
        max_places,
        language,
        crawl_input.extract_reviews,
        max_reviews,
        crawl_input.enrich_contacts,
        crawl_input.enrich_leads,
        social,
        geometry.geometry_type if geometry else None,
        len(crawl_input.proxy_urls),
        len(search_jobs),
    )
    return crawl_input


def build_search_jobs(
    search_terms: List[str],
    categories: List[str],
    location: Optional[str],
    geometry: Optional[Geometry],
    max_places_per_search: int,
    language: str,
) -> List[SearchJob]:
    terms = search_terms or [""]
    cats = categories or [""]
    jobs: List[SearchJob] = []
    counter = 0
    for term in terms:
        for category in cats:
            counter += 1
            jobs.append(
                SearchJob(
                    id=f"job-{counter}",
                    search_term=term or None,
                    category=category or None,
                    location_text=location,
                    language=language,
                    max_places_per_search=max_places_per_search,
                    geometry=geometry,
                )
            )
    return jobs


def load_input_file(path: Optional[str] = None) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """Read a crawl input JSON file.

    Returns (input, settings) where settings is the optional `settings` section.
    Raises FileNotFoundError when the file does not exist.
    """
    if path is None:
        path = str(_REPO_ROOT / "crawl_input.json")

    config_path = Path(path)
    with open(config_path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Crawl input must be a JSON object: {config_path}")

    settings = data.pop("settings", None) or {}
    return data, settings
