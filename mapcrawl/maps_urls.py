"""Google Maps URL building and identifier extraction."""
from __future__ import annotations

import base64
import re
from typing import Dict, Optional, Tuple
from urllib.parse import parse_qs, quote, unquote, urlencode, urlparse, urlunparse

from . import config
from .models import LatLng

_DATA_PLACE_ID_RE = re.compile(r"!1s([^!]+)!8m")
_CID_RE = re.compile(r"[?&]cid=(\d+)")
_AT_COORDS_RE = re.compile(r"@(-?\d+\.\d+),(-?\d+\.\d+),")
_DATA_COORDS_RE = re.compile(r"!3d(-?\d+\.\d+)!4d(-?\d+\.\d+)")


def build_search_url(
    search_term: Optional[str],
    category: Optional[str],
    tile_center: Optional[LatLng],
    zoom: Optional[int],
    language: Optional[str],
) -> str:
    parts = [p.strip() for p in (search_term, category) if p and p.strip()]
    query = " ".join(parts)

    url = config.MAPS_SEARCH_URL
    if query:
        url += f"{quote(query, safe='')}/"
    if tile_center is not None and zoom is not None:
        url += f"@{tile_center.lat},{tile_center.lng},{int(zoom)}z"
    if language:
        url += "?" + urlencode({"hl": language})
    return url


def normalize_place_url(url: str) -> str:
    try:
        parsed = urlparse(url)
    except ValueError:
        return url
    if not parsed.scheme or not parsed.netloc:
        return url
    return urlunparse(parsed._replace(query="", fragment=""))


def _query_param(url: str, name: str) -> Optional[str]:
    try:
        values = parse_qs(urlparse(url).query).get(name)
    except ValueError:
        return None
    if values and values[0]:
        return values[0]
    return None


def extract_place_id_from_url(url: str) -> Optional[str]:
    if not url:
        return None
    place_id = _query_param(url, "placeid")
    if place_id:
        return place_id

    match = _DATA_PLACE_ID_RE.search(url)
    if match:
        return unquote(match.group(1))

    match = _CID_RE.search(url)
    if match:
        return match.group(1)
    return None


def extract_coordinates(url: str) -> Tuple[Optional[float], Optional[float]]:
    path = urlparse(url).path if url else ""
    # The !3d!4d pin is the place itself; @lat,lng is only the viewport center.
    match = _DATA_COORDS_RE.search(path) or _AT_COORDS_RE.search(path)
    if not match:
        return None, None
    return float(match.group(1)), float(match.group(2))


def extract_url_identifiers(url: str) -> Dict[str, Optional[str]]:
    """`placeid` and `cid` query params of a place URL (either may be None)."""
    return {"place_id": _query_param(url, "placeid"), "cid": _query_param(url, "cid")}


def build_place_unique_key(place_id: Optional[str] = None, place_url: Optional[str] = None) -> Optional[str]:
    if place_id and place_id.strip():
        return "placeId-" + place_id.replace(":", "-")
    if place_url and place_url.strip():
        normalized = normalize_place_url(place_url)
        encoded = base64.b64encode(normalized.encode("utf-8")).decode("ascii")
        url_key = re.sub(r"[^a-zA-Z0-9]", "", encoded)[:100]
        return f"url-{url_key}"
    return None


def reviews_unique_key(place_url: str, offset: int) -> str:
    return f"{place_url}::reviews::{offset}"
