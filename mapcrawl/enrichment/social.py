"""Social network profiles linked from a place's homepage."""
from __future__ import annotations

from typing import Dict, Iterable, List

from ..models import SocialProfile
from .extractors import classify_social_url, extract_page, site_origin, username_from_url
from .fetcher import WebsiteFetcher


def social_profiles_from_html(html_text: str, base_url: str, enabled_networks: Iterable[str]) -> List[SocialProfile]:
    enabled = set(enabled_networks)
    profiles: Dict[str, SocialProfile] = {}
    for link in extract_page(html_text, base_url=base_url).links:
        network = classify_social_url(link.url)
        if network is None or network not in enabled:
            continue
        key = f"{network}:{link.url}"
        if key in profiles:
            continue
        profiles[key] = SocialProfile(type=network, url=link.url, username=username_from_url(link.url))
    return list(profiles.values())


def enrich_social_profiles(
    website_url: str, enabled_networks: List[str], fetcher: WebsiteFetcher
) -> List[SocialProfile]:
    if not enabled_networks or site_origin(website_url) is None:
        return []
    result = fetcher.fetch_page(website_url.strip())
    if result is None:
        return []
    return social_profiles_from_html(result.text, result.final_url, enabled_networks)
