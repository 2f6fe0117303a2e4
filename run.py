"""CLI entrypoint."""
from __future__ import annotations

import argparse
import dataclasses
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from dotenv import load_dotenv as _load_dotenv

from mapcrawl import config
from mapcrawl.config import CrawlInput, CrawlSettings
from mapcrawl.geo import tiles_for_search_job
from mapcrawl.orchestrator import run_crawl

SEARCH_SCOPE_KEYS = ("searchTerms", "categories", "location", "customGeolocation")


def _repo_root() -> Path:
    return Path(__file__).resolve().parent


def load_env(path: str = ".env", root_dir: Optional[Path] = None) -> None:
    """Optionally load a repo-root .env file without overriding real env vars."""
    root = Path(root_dir) if root_dir else _repo_root()
    env_path = (root / path).resolve()
    if not env_path.exists():
        return
    _load_dotenv(dotenv_path=env_path, override=False)


def _split_csv(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [v.strip() for v in value.split(",") if v.strip()]


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Crawl Google Maps places, details and reviews")
    parser.add_argument("--input", type=str, default=None, help="Crawl input JSON file")
    parser.add_argument("--out", type=str, default=config.OUTPUT_DIR, help="Output directory for datasets")
    parser.add_argument("--storage", type=str, default=None, help="SQLite state file (default: <out>/crawl_state.db)")
    parser.add_argument("--preflight", action="store_true", help="Validate input and print jobs and tiles only")
    parser.add_argument("--search-term", action="append", default=None, help="Search term (repeatable)")
    parser.add_argument("--category", action="append", default=None, help="Category (repeatable)")
    parser.add_argument("--location", type=str, default=None, help="Free-text location appended to searches")
    parser.add_argument("--max-places", type=int, default=None, help="Max places per search job")
    parser.add_argument("--language", type=str, default=None)
    parser.add_argument("--max-reviews", type=int, default=None, help="Max reviews per place")
    parser.add_argument("--no-reviews", action="store_true", help="Skip review extraction")
    parser.add_argument("--enrich-contacts", action="store_true")
    parser.add_argument("--enrich-leads", action="store_true")
    parser.add_argument(
        "--enrich-social",
        type=str,
        default=None,
        help="Comma-separated networks: facebook,instagram,tiktok,youtube,twitter",
    )
    parser.add_argument("--proxy", action="append", default=None, help="Proxy URL (repeatable)")
    parser.add_argument("--concurrency", type=int, default=None, help="Number of browser workers")
    parser.add_argument("--max-retries", type=int, default=None, help="Retries per failed request")
    parser.add_argument("--headed", action="store_true", help="Show the browser window")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def apply_input_overrides(raw: Dict[str, Any], args: argparse.Namespace) -> Dict[str, Any]:
    out = dict(raw)
    if args.search_term:
        out["searchTerms"] = list(args.search_term)
    if args.category:
        out["categories"] = list(args.category)
    if args.location:
        out["location"] = args.location
    if args.max_places is not None:
        out["maxCrawledPlacesPerSearch"] = args.max_places
    if args.language:
        out["language"] = args.language
    if args.max_reviews is not None:
        out["maxReviews"] = args.max_reviews
    if args.no_reviews:
        out["extractReviews"] = False
    if args.enrich_contacts:
        out["enrichContacts"] = True
    if args.enrich_leads:
        out["enrichLeads"] = True
    if args.enrich_social is not None:
        out["enrichSocialProfiles"] = _split_csv(args.enrich_social)
    if args.proxy:
        proxy = dict(out.get("proxy") or {})
        proxy["proxyUrls"] = list(proxy.get("proxyUrls") or []) + list(args.proxy)
        out["proxy"] = proxy
    return out


def apply_settings_overrides(settings: CrawlSettings, args: argparse.Namespace) -> CrawlSettings:
    changes: Dict[str, Any] = {}
    if args.concurrency is not None:
        changes["max_concurrency"] = max(1, args.concurrency)
    if args.max_retries is not None:
        changes["max_request_retries"] = max(0, args.max_retries)
    if args.headed:
        changes["headless"] = False
    return dataclasses.replace(settings, **changes) if changes else settings


def load_crawl_config(args: argparse.Namespace) -> Tuple[CrawlInput, CrawlSettings]:
    raw: Dict[str, Any] = {}
    raw_settings: Dict[str, Any] = {}
    if args.input:
        raw, raw_settings = config.load_input_file(args.input)
    raw = apply_input_overrides(raw, args)
    if not any(raw.get(key) for key in SEARCH_SCOPE_KEYS):
        raise ValueError("Provide a search term, category, location or customGeolocation (--input or --search-term)")
    settings = apply_settings_overrides(config.settings_from_dict(raw_settings), args)
    return config.normalize_input(raw), settings


def run_preflight(crawl_input: CrawlInput, settings: CrawlSettings) -> int:
    print("Crawl preflight:")
    print(f"- search terms: {crawl_input.search_terms}")
    print(f"- categories: {crawl_input.categories}")
    print(f"- location: {crawl_input.location}")
    print(f"- geometry: {crawl_input.geometry.geometry_type if crawl_input.geometry else None}")
    print(f"- language: {crawl_input.language}")
    print(f"- max places per search: {crawl_input.max_places_per_search}")
    print(f"- reviews: {crawl_input.extract_reviews} (max {crawl_input.max_reviews})")
    print(
        f"- enrichment: contacts={crawl_input.enrich_contacts} leads={crawl_input.enrich_leads} "
        f"social={crawl_input.enrich_social_profiles}"
    )
    print(f"- proxies: {len(crawl_input.proxy_urls)}")
    print(f"- workers: {settings.max_concurrency} retries: {settings.max_request_retries}")
    total_tiles = 0
    for job in crawl_input.search_jobs:
        tiles = tiles_for_search_job(job, settings)
        total_tiles += len(tiles)
        print(f"- {job.id}: term={job.search_term!r} category={job.category!r} tiles={len(tiles)}")
    print(f"- total jobs: {len(crawl_input.search_jobs)} total tiles: {total_tiles}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    load_env()
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(threadName)s %(name)s: %(message)s",
    )

    try:
        crawl_input, settings = load_crawl_config(args)
    except (OSError, ValueError) as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 1

    if args.preflight:
        return run_preflight(crawl_input, settings)

    storage_path = args.storage or os.path.join(args.out, config.STORAGE_DB_PATH)
    result = run_crawl(crawl_input, settings, storage_path=storage_path, output_dir=args.out)

    print("Crawl summary:")
    print(f"- places scraped: {result.stats.places_scraped}")
    print(f"- reviews scraped: {result.stats.reviews_scraped}")
    print(f"- leads enriched: {result.stats.leads_enriched}")
    print(f"- requests failed: {result.stats.requests_failed}")
    print(f"- outputs: {os.path.abspath(args.out)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
