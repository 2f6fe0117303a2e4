"""HTML extraction helpers for website enrichment."""
from __future__ import annotations

import html
import re
from dataclasses import dataclass
from html.parser import HTMLParser
from typing import Iterable, List, Optional, Tuple
from urllib.parse import urljoin, urlparse, urlunparse

EMAIL_RE = re.compile(r"\b[a-zA-Z0-9._%+\-]+@[a-zA-Z0-9.\-]+\.[A-Za-z]{2,}\b")
PHONE_RE = re.compile(r"\+?[0-9][0-9() .\-]{6,}[0-9]")
MIN_PHONE_DIGITS = 7

# Host fragment -> network, checked in order.
SOCIAL_HOSTS: Tuple[Tuple[str, str], ...] = (
    ("facebook.com", "facebook"),
    ("instagram.com", "instagram"),
    ("tiktok.com", "tiktok"),
    ("youtube.com", "youtube"),
    ("youtu.be", "youtube"),
    ("twitter.com", "twitter"),
)

LEAD_SEPARATORS_RE = re.compile(r"[|•\-–—:,]")

# Image and asset-like false positives for EMAIL_RE.
_ASSET_SUFFIXES = (".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp")


def normalize_netloc(netloc: str) -> str:
    netloc = (netloc or "").strip().lower()
    if netloc.startswith("www."):
        netloc = netloc[4:]
    if netloc.endswith(":80"):
        netloc = netloc[:-3]
    if netloc.endswith(":443"):
        netloc = netloc[:-4]
    return netloc


def site_origin(url: str) -> Optional[str]:
    parsed = urlparse((url or "").strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return None
    return f"{parsed.scheme}://{parsed.netloc}"


def candidate_urls(website_url: str, paths: Iterable[str]) -> List[str]:
    """The website itself followed by well-known paths on its origin, without duplicates."""
    origin = site_origin(website_url)
    if origin is None:
        return []
    urls = [website_url.strip()]
    for path in paths:
        url = origin + path
        if url not in urls:
            urls.append(url)
    return urls


def _strip_fragment(url: str) -> str:
    parsed = urlparse(url)
    if not parsed.fragment:
        return url
    return urlunparse(parsed._replace(fragment=""))


def absolutize_url(base_url: str, href: str) -> Optional[str]:
    href = (href or "").strip()
    if not href or href.startswith("#"):
        return None
    lowered = href.lower()
    if lowered.startswith("javascript:"):
        return None
    # mailto and tel links are handled by the caller.
    if lowered.startswith(("mailto:", "tel:")):
        return href
    return _strip_fragment(urljoin(base_url, href))


@dataclass(frozen=True)
class ExtractedLink:
    url: str
    anchor_text: str


@dataclass(frozen=True)
class ExtractedPage:
    links: List[ExtractedLink]
    mailto_emails: List[str]
    tel_numbers: List[str]
    visible_text: str


class _LinkTextParser(HTMLParser):
    def __init__(self, base_url: str) -> None:
        super().__init__(convert_charrefs=True)
        self.base_url = base_url
        self.links: List[Tuple[str, str]] = []
        self._in_script_or_style = 0
        self._current_href: Optional[str] = None
        self._current_anchor_parts: List[str] = []
        self.visible_text_parts: List[str] = []

    def handle_starttag(self, tag: str, attrs: List[Tuple[str, Optional[str]]]) -> None:
        tag = tag.lower()
        attrs_dict = {k.lower(): (v or "") for k, v in attrs}
        if tag in {"script", "style", "noscript"}:
            self._in_script_or_style += 1
            return
        if tag == "a":
            abs_href = absolutize_url(self.base_url, attrs_dict.get("href", ""))
            if abs_href:
                self._current_href = abs_href
                self._current_anchor_parts = []

    def handle_endtag(self, tag: str) -> None:
        tag = tag.lower()
        if tag in {"script", "style", "noscript"} and self._in_script_or_style:
            self._in_script_or_style -= 1
            return
        if tag == "a" and self._current_href:
            anchor_text = " ".join(p for p in self._current_anchor_parts if p).strip()
            self.links.append((self._current_href, anchor_text))
            self._current_href = None
            self._current_anchor_parts = []

    def handle_data(self, data: str) -> None:
        if not data or self._in_script_or_style:
            return
        cleaned = data.strip()
        if not cleaned:
            return
        if self._current_href is not None:
            self._current_anchor_parts.append(cleaned)
        self.visible_text_parts.append(cleaned)


def extract_page(html_text: str, base_url: str) -> ExtractedPage:
    parser = _LinkTextParser(base_url)
    parser.feed(html_text or "")
    parser.close()

    links: List[ExtractedLink] = []
    seen: set[str] = set()
    mailto_emails: set[str] = set()
    tel_numbers: List[str] = []

    for href, anchor_text in parser.links:
        lowered = href.lower()
        if lowered.startswith("mailto:"):
            email = href[len("mailto:"):].split("?", 1)[0].strip().lower()
            if email:
                mailto_emails.add(email)
            continue
        if lowered.startswith("tel:"):
            number = href[len("tel:"):].strip()
            if number and number not in tel_numbers:
                tel_numbers.append(number)
            continue
        if href in seen:
            continue
        seen.add(href)
        links.append(ExtractedLink(url=href, anchor_text=anchor_text))

    # Some sites embed mailto in raw HTML without a proper <a> tag.
    for mailto in re.findall(r"mailto:([^\"'\s>]+)", html_text or "", flags=re.IGNORECASE):
        email = mailto.split("?", 1)[0].strip().lower()
        if email:
            mailto_emails.add(email)

    visible_text = html.unescape(" ".join(parser.visible_text_parts))
    visible_text = re.sub(r"\s+", " ", visible_text).strip()

    return ExtractedPage(
        links=links,
        mailto_emails=sorted(mailto_emails),
        tel_numbers=tel_numbers,
        visible_text=visible_text,
    )


def extract_emails(texts: Iterable[str], extra_emails: Optional[Iterable[str]] = None) -> List[str]:
    emails: set[str] = set()
    for text in texts:
        if not text:
            continue
        for match in EMAIL_RE.findall(text):
            lowered = match.lower()
            if lowered.endswith(_ASSET_SUFFIXES):
                continue
            emails.add(lowered)
    if extra_emails:
        for email in extra_emails:
            email = (email or "").strip().lower()
            if email and "@" in email:
                emails.add(email)
    return sorted(emails)


def extract_phones(text: str) -> List[str]:
    phones: List[str] = []
    for match in PHONE_RE.findall(text or ""):
        cleaned = re.sub(r"\s+", " ", match).strip()
        digits = sum(ch.isdigit() for ch in cleaned)
        if len(cleaned) < 8 or digits < MIN_PHONE_DIGITS:
            continue
        if cleaned not in phones:
            phones.append(cleaned)
    return phones


def classify_social_url(url: str) -> Optional[str]:
    host = normalize_netloc(urlparse(url or "").netloc)
    if not host:
        return None
    if host == "x.com" or host.endswith(".x.com"):
        return "twitter"
    for fragment, network in SOCIAL_HOSTS:
        if host == fragment or host.endswith("." + fragment):
            return network
    return None


def username_from_url(url: str) -> Optional[str]:
    segments = [seg for seg in (urlparse(url).path or "").split("/") if seg]
    return segments[0] if segments else None


def split_name_title(text: str) -> Tuple[Optional[str], Optional[str]]:
    """Split anchor text like "Jane Doe - CEO" into (name, title)."""
    parts = [p.strip() for p in LEAD_SEPARATORS_RE.split(text or "") if p.strip()]
    if not parts:
        return None, None
    if len(parts) == 1:
        return parts[0], None
    return parts[0], parts[1]
