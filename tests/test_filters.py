import pytest

from config import default_assets
from crawl.filters import (
    PRIORITY_DEFAULT,
    PRIORITY_HIGH,
    canonicalize_url,
    clean_candidate,
    is_excluded_email,
    is_same_site,
    is_valid_email,
    origin_of,
    priority_of,
    resolve_link,
    should_follow_link,
)
from errors import LinkResolutionError

ASSETS = default_assets()


@pytest.mark.parametrize(
    "candidate",
    [
        "jane@example-biz.test",
        "first.last+tag@mail.site.co.uk",
        "a_b%c-d@x-y.io",
        "a@b.co",
    ],
)
def test_valid_emails(candidate):
    assert is_valid_email(candidate)


@pytest.mark.parametrize(
    "candidate",
    [
        "",
        "plainaddress",
        "a@b.c",  # one-letter tld
        "jane doe@site.test",
        "jane@site",
        "@site.test",
        "logo@2x.png",
        "hero-image@retina.JPG",
        "brochure@files.pdf",
    ],
)
def test_invalid_emails(candidate):
    assert not is_valid_email(candidate)


def test_length_bounds_are_exclusive():
    domain = "@site.test"
    ok = "a" * (99 - len(domain)) + domain
    too_long = "a" * (100 - len(domain)) + domain
    assert len(ok) == 99 and is_valid_email(ok)
    assert len(too_long) == 100 and not is_valid_email(too_long)


def test_disallowed_substrings_are_configurable():
    assert is_valid_email("icon@2x.png", disallowed_substrings=())
    assert not is_valid_email("jane@site.test", disallowed_substrings=("jane",))


@pytest.mark.parametrize(
    "candidate, excluded",
    [
        ("noreply@shop.test", True),
        ("no-reply@shop.test", True),
        ("postmaster@shop.test", True),
        ("administrator@shop.test", True),
        ("info@sentry.io", True),
        ("abc@o123.ingest.sentry.io", True),
        ("john@example.com", True),
        ("jane@notsentry.io", False),
        ("sales@shop.test", False),
        ("reply@shop.test", False),
    ],
)
def test_excluded_emails(candidate, excluded):
    assert is_excluded_email(candidate, ASSETS.excluded_domains, ASSETS.excluded_prefixes) is excluded


def test_exclusion_uses_supplied_tables_only():
    assert not is_excluded_email("noreply@shop.test", frozenset(), ())
    assert is_excluded_email("ceo@shop.test", frozenset({"shop.test"}), ())


def test_clean_candidate():
    assert clean_candidate("  <Jane@Site.TEST>, ") == "jane@site.test"
    assert clean_candidate("%20info@site.test") == "info@site.test"


def test_canonicalize_url():
    assert canonicalize_url("HTTP://Site.Test/About/?utm=1#team") == "http://site.test/About"
    assert canonicalize_url("https://site.test") == "https://site.test/"
    assert canonicalize_url("https://site.test:8443/a/") == "https://site.test:8443/a"


def test_origin_is_scheme_and_host_only():
    assert origin_of("https://Site.test/deep/path?q=1") == "https://site.test"
    assert origin_of("http://site.test:8080/") == "http://site.test:8080"
    assert origin_of("not a url") == ""


class TestShouldFollowLink:
    origin = "https://site.test"

    def follow(self, url, visited=frozenset()):
        return should_follow_link(url, self.origin, visited, ASSETS.skip_extensions)

    def test_same_origin_page(self):
        assert self.follow("https://site.test/about")

    def test_other_scheme_is_other_origin(self):
        assert not self.follow("http://site.test/about")

    def test_other_host(self):
        assert not self.follow("https://other.test/about")
        assert not self.follow("https://blog.site.test/")

    def test_non_http(self):
        assert not self.follow("ftp://site.test/file")

    @pytest.mark.parametrize("path", ["/a.pdf", "/img/Logo.PNG", "/styles/site.css", "/app.js", "/pack.zip"])
    def test_skipped_extensions(self, path):
        assert not self.follow("https://site.test" + path)

    def test_visited_compares_canonical_form(self):
        visited = {"https://site.test/about"}
        assert not self.follow("https://site.test/about/?utm_source=x#top", visited)
        assert self.follow("https://site.test/team", visited)


def test_priority_of():
    patterns = ASSETS.priority_paths
    assert priority_of("https://site.test/contact", patterns) == PRIORITY_HIGH
    assert priority_of("https://site.test/contact-us", patterns) == PRIORITY_HIGH
    assert priority_of("https://site.test/en/about", patterns) == PRIORITY_HIGH
    assert priority_of("https://site.test/blog/2024/post", patterns) == PRIORITY_DEFAULT
    assert priority_of("https://site.test/", patterns) == PRIORITY_DEFAULT


class TestResolveLink:
    base = "https://site.test/en/about"

    def test_relative(self):
        assert resolve_link(self.base, "../team/") == "https://site.test/team"
        assert resolve_link(self.base, "contact#form") == "https://site.test/en/contact"

    @pytest.mark.parametrize(
        "href",
        ["", "#top", "mailto:a@site.test", "tel:+123", "javascript:void(0)", "http://[::1"],
    )
    def test_rejected(self, href):
        with pytest.raises(LinkResolutionError):
            resolve_link(self.base, href)


def test_canonicalize_can_keep_query():
    assert canonicalize_url("HTTPS://Shop.test/index.php/?page=contact#f", keep_query=True) == (
        "https://shop.test/index.php?page=contact"
    )
    assert canonicalize_url("https://shop.test/index.php?page=contact") == "https://shop.test/index.php"


@pytest.mark.parametrize(
    "origin, other, expected",
    [
        ("http://site.test", "https://site.test", True),
        ("https://site.test", "https://www.site.test", True),
        ("http://www.site.test", "https://site.test", True),
        ("https://site.test", "http://site.test", False),
        ("https://site.test", "https://shop.site.test", False),
        ("https://site.test", "https://other.test", False),
        ("https://site.test:8443", "https://site.test", False),
    ],
)
def test_is_same_site(origin, other, expected):
    assert is_same_site(origin, other) is expected
