from fakes import fake_fetch

from mapcrawl.enrichment.contacts import run_contacts_enrichment
from mapcrawl.enrichment.extractors import (
    candidate_urls,
    classify_social_url,
    extract_emails,
    extract_page,
    extract_phones,
    split_name_title,
)
from mapcrawl.enrichment.fetcher import WebsiteFetcher, is_url_allowed, parse_robots
from mapcrawl.enrichment.leads import extract_linkedin_leads, run_leads_enrichment
from mapcrawl.enrichment.social import enrich_social_profiles

SITE = "https://clinic.example"

HOME_HTML = """
<html><body>
  <script>var x = "hidden@script.example";</script>
  <a href="/contact">Contact</a>
  <a href="https://www.facebook.com/clinic.page">Facebook</a>
  <a href="https://x.com/clinic">X</a>
  <a href="https://instagram.com/clinic_ig/">IG</a>
  <img src="logo@2x.png">
</body></html>
"""

CONTACT_HTML = """
<html><body>
  <p>Write to office@clinic.example or call +48 22 555 12 34.</p>
  <a href="mailto:Booking@Clinic.example?subject=Hi">Book</a>
  <a href="tel:+48225551235">Call</a>
</body></html>
"""

TEAM_HTML = """
<html><body>
  <a href="https://www.linkedin.com/in/anna-nowak">Anna Nowak | Head Dentist</a>
  <a href="https://pl.linkedin.com/in/jan-kowalski">Jan Kowalski</a>
  <a href="https://www.linkedin.com/company/clinic"></a>
  <a href="https://example.org/in/other">Not LinkedIn</a>
</body></html>
"""


def _fetcher(pages, robots=None, calls=None):
    return WebsiteFetcher(fetcher=fake_fetch(pages, robots=robots, calls=calls), delay_seconds=0)


def test_contacts_from_homepage_and_contact_page():
    fetcher = _fetcher({SITE: HOME_HTML, f"{SITE}/contact": CONTACT_HTML})

    result = run_contacts_enrichment(SITE, fetcher, max_pages=3)

    assert result is not None
    assert result.contacts.emails == ["booking@clinic.example", "office@clinic.example"]
    assert "+48225551235" in result.contacts.phones
    assert "+48 22 555 12 34" in result.contacts.phones
    assert result.contact_page_urls == [f"{SITE}/contact"]


def test_contacts_none_when_site_has_nothing():
    fetcher = _fetcher({SITE: "<html><body>Welcome</body></html>"})
    assert run_contacts_enrichment(SITE, fetcher) is None
    assert run_contacts_enrichment("not-a-url", fetcher) is None


def test_contacts_respects_max_pages():
    calls = []
    pages = {SITE: HOME_HTML, f"{SITE}/contact": CONTACT_HTML, f"{SITE}/contact-us": CONTACT_HTML}
    fetcher = _fetcher(pages, calls=calls)
    run_contacts_enrichment(SITE, fetcher, max_pages=1)
    assert [c for c in calls if not c.endswith("robots.txt")] == [SITE]


def test_robots_disallow_skips_pages_and_is_cached():
    calls = []
    robots = {f"{SITE}/robots.txt": "User-agent: googlebot\nDisallow: /\n\nUser-agent: *\nDisallow: /contact\n"}
    fetcher = _fetcher({SITE: HOME_HTML, f"{SITE}/contact": CONTACT_HTML}, robots=robots, calls=calls)

    assert fetcher.fetch_page(f"{SITE}/contact") is None
    assert fetcher.fetch_page(SITE) is not None
    assert calls.count(f"{SITE}/robots.txt") == 1
    assert f"{SITE}/contact" not in calls


def test_robots_parsing_helpers():
    rules = parse_robots("User-agent: *\nDisallow: /private # comment\nDisallow:\n")
    assert is_url_allowed(f"{SITE}/public", rules)
    assert not is_url_allowed(f"{SITE}/private/x", rules)
    assert is_url_allowed(f"{SITE}/anything", None)
    assert not is_url_allowed(f"{SITE}/anything", parse_robots("User-agent: *\nDisallow: /\n"))


def test_leads_from_linkedin_links():
    leads = extract_linkedin_leads(TEAM_HTML, f"{SITE}/team", "p1")
    assert [(lead.full_name, lead.job_title) for lead in leads] == [
        ("Anna Nowak", "Head Dentist"),
        ("Jan Kowalski", None),
    ]
    assert all(lead.id.startswith("lead:") and lead.place_id == "p1" for lead in leads)
    assert leads[0].source_url == f"{SITE}/team"


def test_run_leads_dedups_across_pages_and_caps():
    fetcher = _fetcher({SITE: TEAM_HTML, f"{SITE}/team": TEAM_HTML})
    leads = run_leads_enrichment(SITE, "p1", fetcher, max_pages=3)
    assert len(leads) == 2

    fetcher = _fetcher({SITE: TEAM_HTML})
    assert len(run_leads_enrichment(SITE, "p1", fetcher, max_leads=1)) == 1


def test_social_profiles_filtered_by_enabled_networks():
    fetcher = _fetcher({SITE: HOME_HTML})
    profiles = enrich_social_profiles(SITE, ["facebook", "twitter"], fetcher)
    assert [(p.type, p.username) for p in profiles] == [("facebook", "clinic.page"), ("twitter", "clinic")]
    assert profiles[0].to_record()["extra"] == {"source": "website"}

    assert enrich_social_profiles(SITE, [], fetcher) == []


def test_extractor_helpers():
    page = extract_page(HOME_HTML, SITE + "/")
    assert f"{SITE}/contact" in [link.url for link in page.links]
    assert "hidden@script.example" not in page.visible_text

    assert extract_emails(["a@b.com x logo@2x.png"], extra_emails=["C@D.org"]) == ["a@b.com", "c@d.org"]
    assert extract_phones("call 12-34 or 022 555 12 34") == ["022 555 12 34"]
    assert classify_social_url("https://m.facebook.com/x") == "facebook"
    assert classify_social_url("https://youtu.be/abc") == "youtube"
    assert classify_social_url("https://example.com") is None
    assert split_name_title("Jane Doe: CEO") == ("Jane Doe", "CEO")
    assert candidate_urls("ftp://x", ["/a"]) == []
    assert candidate_urls(SITE, ["/contact", "/contact"]) == [SITE, f"{SITE}/contact"]
