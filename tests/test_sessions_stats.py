import pytest

from mapcrawl.sessions import SessionPool, _redact_proxy
from mapcrawl.stats import RunStats


def test_sessions_rotate_proxies_and_retire():
    pool = SessionPool(["http://p1:1", "http://p2:2"], max_usage=2)
    first = pool.acquire()
    second = pool.acquire()
    third = pool.acquire()
    assert [s.proxy_url for s in (first, second, third)] == ["http://p1:1", "http://p2:2", "http://p1:1"]
    assert len({first.id, second.id, third.id}) == 3

    assert pool.is_usable(first)
    first.mark_used()
    first.mark_used()
    assert not pool.is_usable(first)

    second.mark_bad()
    assert not pool.is_usable(second)
    pool.retire(second)
    assert (pool.created, pool.retired) == (3, 1)


def test_pool_without_proxies():
    assert SessionPool().acquire().proxy_url is None


def test_proxy_credentials_are_redacted():
    assert _redact_proxy("http://user:pw@host:8080") == "http://***@host:8080"
    assert _redact_proxy("http://host:8080") == "http://host:8080"


def test_stats_merge_and_summary():
    a = RunStats(places_scraped=2, soft_blocks=1)
    b = RunStats(places_scraped=3, reviews_scraped=10)
    b.inc("dedup_skips_places", 4)
    total = RunStats.merged([a, b])

    summary = total.to_summary()
    assert summary["placesScraped"] == 5
    assert summary["reviewsScraped"] == 10
    assert summary["requests"]["softBlocks"] == 1
    assert summary["dedup"]["placeSkips"] == 4

    with pytest.raises(ValueError):
        total.inc("no_such_counter")
