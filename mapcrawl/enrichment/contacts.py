"""Contact details (emails, phones, contact pages) from a place's website."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from ..models import ContactEnrichment
from .extractors import candidate_urls, extract_emails, extract_page, extract_phones
from .fetcher import WebsiteFetcher

logger = logging.getLogger(__name__)

CONTACT_PATHS = ("/contact", "/contact-us", "/kontakt", "/kontakty")
ABOUT_PATHS = ("/about", "/about-us", "/o-nas")
CONTACT_PAGE_HINTS = ("contact", "kontakt", "about", "o-nas")


@dataclass(frozen=True)
class ContactsResult:
    contacts: ContactEnrichment
    contact_page_urls: List[str]


def run_contacts_enrichment(
    website_url: str, fetcher: WebsiteFetcher, max_pages: int = 3
) -> Optional[ContactsResult]:
    urls = candidate_urls(website_url, CONTACT_PATHS + ABOUT_PATHS)
    if not urls:
        return None

    emails: List[str] = []
    phones: List[str] = []
    contact_page_urls: List[str] = []
    pages_fetched = 0

    for url in urls:
        if pages_fetched >= max_pages:
            break
        result = fetcher.fetch_page(url)
        if result is None:
            continue
        pages_fetched += 1

        if any(hint in url.lower() for hint in CONTACT_PAGE_HINTS):
            contact_page_urls.append(url)

        page = extract_page(result.text, base_url=result.final_url)
        for email in extract_emails([page.visible_text], extra_emails=page.mailto_emails):
            if email not in emails:
                emails.append(email)
        for phone in page.tel_numbers + extract_phones(page.visible_text):
            if phone not in phones:
                phones.append(phone)

    if not emails and not phones and not contact_page_urls:
        return None

    logger.debug(
        "Contacts for %s: emails=%s phones=%s pages=%s", website_url, len(emails), len(phones), pages_fetched
    )
    return ContactsResult(
        contacts=ContactEnrichment(emails=emails, phones=phones, social_profiles=[]),
        contact_page_urls=contact_page_urls,
    )
