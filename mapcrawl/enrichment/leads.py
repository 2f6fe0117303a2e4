"""People leads from LinkedIn links on team and about pages."""
from __future__ import annotations

import hashlib
import logging
from typing import Dict, List
from urllib.parse import urlparse

from ..models import Lead
from .extractors import candidate_urls, extract_page, normalize_netloc, split_name_title
from .fetcher import WebsiteFetcher

logger = logging.getLogger(__name__)

TEAM_PATHS = ("/team", "/our-team", "/about", "/about-us", "/leadership", "/staff")
MAX_LEADS = 100


def lead_id(place_id: str, linkedin_url: str, anchor_text: str) -> str:
    digest = hashlib.sha1(f"{place_id}::{linkedin_url}::{anchor_text}".encode("utf-8")).hexdigest()
    return f"lead:{digest[:16]}"


def extract_linkedin_leads(html_text: str, page_url: str, place_id: str) -> List[Lead]:
    leads: List[Lead] = []

    for link in extract_page(html_text, base_url=page_url).links:
        host = normalize_netloc(urlparse(link.url).netloc)
        if host != "linkedin.com" and not host.endswith(".linkedin.com"):
            continue
        if not link.anchor_text:
            continue
        full_name, job_title = split_name_title(link.anchor_text)
        leads.append(
            Lead(
                id=lead_id(place_id, link.url, link.anchor_text),
                place_id=place_id,
                full_name=full_name,
                job_title=job_title,
                linkedin_url=link.url,
                source_url=page_url,
            )
        )
    return leads


def run_leads_enrichment(
    website_url: str,
    place_id: str,
    fetcher: WebsiteFetcher,
    max_pages: int = 3,
    max_leads: int = MAX_LEADS,
) -> List[Lead]:
    found: Dict[str, Lead] = {}
    pages_fetched = 0
    for url in candidate_urls(website_url, TEAM_PATHS):
        if pages_fetched >= max_pages or len(found) >= max_leads:
            break
        result = fetcher.fetch_page(url)
        if result is None:
            continue
        pages_fetched += 1
        for lead in extract_linkedin_leads(result.text, result.final_url, place_id):
            if lead.id not in found and len(found) < max_leads:
                found[lead.id] = lead

    if found:
        logger.debug("Leads for %s: %s from %s pages", website_url, len(found), pages_fetched)
    return list(found.values())
