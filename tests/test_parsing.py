import pytest

from mapcrawl.errors import PlaceParseError
from mapcrawl.scraping.place_parser import (
    build_place,
    canonical_place_url,
    parse_rating,
    parse_review_count,
    parse_structured_address,
    synthetic_place_id,
)


def test_parse_place_missing_fields():
    place = build_place({}, "about:blank")
    assert place.title is None
    assert place.google_maps_url is None
    assert place.id.startswith("synthetic-")
    assert place.categories == []
    assert place.total_reviews is None
    assert place.average_rating is None
    assert place.has_location is False


def test_parse_place_categories_from_subtitle_and_hours_summary():
    place = build_place(
        {"title": "Bakery", "subtitle": "$$ · Bakery · Cafe", "hoursSummary": "Open 24 hours"},
        "https://www.google.com/maps/place/Bakery?cid=99",
    )
    assert place.categories == ["Bakery", "Cafe"]
    assert place.cid == "99"
    assert place.id == "99"
    assert place.opening_hours == {"general": ["Open 24 hours"]}


def test_parse_place_rejects_non_dict():
    with pytest.raises(PlaceParseError):
        build_place(["not", "a", "dict"], "https://www.google.com/maps/place/x")


def test_parse_rating_and_count_variants():
    assert parse_rating("4,7 stars") == 4.7
    assert parse_rating("rated 9") is None
    assert parse_rating(None) is None
    assert parse_review_count("(2,345)") == 2345
    assert parse_review_count("1 234 reviews") == 1234
    assert parse_review_count("no reviews") is None


def test_parse_structured_address_variants():
    assert parse_structured_address(None).street is None
    two = parse_structured_address("Rynek 1, Poland")
    assert (two.street, two.country) == ("Rynek 1", "Poland")
    three = parse_structured_address("Rynek 1, Krakow, Poland")
    assert (three.city, three.country) == ("Krakow", "Poland")
    full = parse_structured_address("1 Main St, Springfield, IL 62701, USA")
    assert (full.city, full.state, full.postal_code, full.country) == ("Springfield", "IL", "62701", "USA")


def test_identity_helpers():
    assert synthetic_place_id("a", None) == synthetic_place_id("a", None)
    assert synthetic_place_id("a", None) != synthetic_place_id("b", None)
    assert canonical_place_url("https://www.google.com/maps/place/X?hl=en") == "https://www.google.com/maps/place/X"
    assert canonical_place_url("") is None
