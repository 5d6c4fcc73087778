import asyncio
import dataclasses

from crawl.controller import CrawlController, RequestSpacer
from crawl.filters import origin_of
from crawl.render import parse_page
from errors import RenderError
from schemas import RunStatus, VisitStatus


def crawl(target, cfg, assets, renderer, sink, **overrides):
    if overrides:
        cfg = dataclasses.replace(cfg, **overrides)
    controller = CrawlController(target, cfg, assets, renderer, sink)
    summary = asyncio.run(controller.run())
    return controller, summary


def test_email_found_in_body_text(cfg, assets, sink, make_renderer, html_page):
    renderer = make_renderer({"http://example-biz.test/": html_page("<p>Contact: Jane@Example-Biz.TEST</p>")})
    _, summary = crawl("http://example-biz.test", cfg, assets, renderer, sink)

    assert sink.records == [
        {"url": "http://example-biz.test", "email": "jane@example-biz.test", "foundOn": "http://example-biz.test/"}
    ]
    assert summary.status is RunStatus.SUCCESS
    assert summary.email_addresses == ["jane@example-biz.test"]
    assert summary.pages_visited == 1


def test_same_email_on_two_pages_emitted_once(cfg, assets, sink, make_renderer, html_page):
    renderer = make_renderer(
        {
            "https://site.test/": html_page("same@site.test", ["/about"]),
            "https://site.test/about": html_page("SAME@site.test again", ["/"]),
        }
    )
    _, summary = crawl("https://site.test/", cfg, assets, renderer, sink)

    assert [r["email"] for r in sink.records] == ["same@site.test"]
    assert summary.pages_visited == 2
    assert len(summary.emails) == 1


def test_page_ceiling_stops_the_crawl(cfg, assets, sink, make_renderer, html_page):
    links = [f"/page-{i}" for i in range(5)]
    pages = {"https://site.test/": html_page("start", links)}
    pages.update({f"https://site.test{p}": html_page(f"{p}@site.test") for p in links})
    renderer = make_renderer(pages)

    controller, summary = crawl("https://site.test", cfg, assets, renderer, sink, max_pages_per_crawl=1)

    assert renderer.calls == ["https://site.test/"]
    assert summary.pages_visited == 1
    assert summary.to_output()["pagesScraped"] == 1
    assert controller.frontier.pending_count == 0


def test_start_page_timeout_fails_the_target(cfg, assets, sink, make_renderer):
    renderer = make_renderer({"https://site.test/": RenderError("https://site.test/", "timeout", "30000ms exceeded")})
    _, summary = crawl("https://site.test", cfg, assets, renderer, sink)

    assert summary.status is RunStatus.FAILED
    assert summary.pages_visited == 0
    assert summary.pages_failed == 1
    assert "timeout" in summary.error
    assert sink.records == []


def test_unexpected_renderer_exception_is_a_page_failure(cfg, assets, sink, make_renderer):
    renderer = make_renderer({"https://site.test/": asyncio.TimeoutError()})
    _, summary = crawl("https://site.test", cfg, assets, renderer, sink)
    assert summary.status is RunStatus.FAILED
    assert summary.pages_failed == 1


def test_some_pages_failing_is_partial_failure(cfg, assets, sink, make_renderer, html_page):
    renderer = make_renderer(
        {
            "https://site.test/": html_page("hello@site.test", ["/missing", "/about"]),
            "https://site.test/about": html_page("about@site.test"),
        }
    )
    controller, summary = crawl("https://site.test", cfg, assets, renderer, sink)

    assert summary.status is RunStatus.PARTIAL_FAILURE
    assert summary.pages_visited == 2
    assert summary.pages_failed == 1
    assert controller.frontier.record("https://site.test/missing").status is VisitStatus.FAILED
    assert summary.email_addresses == ["hello@site.test", "about@site.test"]


def test_non_http_target_fails_without_fetching(cfg, assets, sink, make_renderer):
    renderer = make_renderer({})
    _, summary = crawl("ftp://site.test/", cfg, assets, renderer, sink)

    assert summary.status is RunStatus.FAILED
    assert "http" in summary.error
    assert renderer.calls == []


def test_cyclic_links_terminate_and_stay_on_origin(cfg, assets, sink, make_renderer, html_page):
    renderer = make_renderer(
        {
            "https://site.test/": html_page("", ["/a", "https://other.test/", "/logo.png"]),
            "https://site.test/a": html_page("", ["/b", "/"]),
            "https://site.test/b": html_page("", ["/a", "/", "/b#top"]),
        }
    )
    controller, summary = crawl("https://site.test", cfg, assets, renderer, sink)

    assert sorted(renderer.calls) == ["https://site.test/", "https://site.test/a", "https://site.test/b"]
    assert all(origin_of(u) == "https://site.test" for u in controller.frontier.records)
    assert summary.status is RunStatus.SUCCESS


def test_invalid_and_excluded_candidates_are_dropped(cfg, assets, sink, make_renderer, html_page):
    body = "noreply@site.test logo@2x.png tracking@sentry.io real@site.test"
    renderer = make_renderer({"https://site.test/": html_page(body)})
    _, summary = crawl("https://site.test", cfg, assets, renderer, sink)
    assert summary.email_addresses == ["real@site.test"]


def test_emission_follows_visit_order(cfg, assets, sink, make_renderer, html_page):
    renderer = make_renderer(
        {
            "https://site.test/": html_page("a1@site.test a2@site.test", ["/blog", "/contact"]),
            "https://site.test/contact": html_page("c@site.test"),
            "https://site.test/blog": html_page("b@site.test"),
        }
    )
    crawl("https://site.test", cfg, assets, renderer, sink, max_concurrency=1)

    assert renderer.calls == ["https://site.test/", "https://site.test/contact", "https://site.test/blog"]
    assert [r["email"] for r in sink.records] == ["a1@site.test", "a2@site.test", "c@site.test", "b@site.test"]


def test_concurrency_is_bounded_and_ceiling_holds(cfg, assets, sink, make_renderer, html_page):
    links = [f"/p{i}" for i in range(10)]
    pages = {"https://site.test/": html_page("", links)}
    pages.update({f"https://site.test{p}": html_page(f"user{p[1:]}@site.test") for p in links})
    renderer = make_renderer(pages, delay_s=0.01)

    _, summary = crawl("https://site.test", cfg, assets, renderer, sink, max_concurrency=3, max_pages_per_crawl=5)

    assert len(renderer.calls) == 5
    assert 1 < renderer.max_in_flight <= 3
    assert summary.pages_visited == 5
    emails = [r["email"] for r in sink.records]
    assert len(emails) == len(set(emails)) == 4


def test_max_depth_limits_link_following(cfg, assets, sink, make_renderer, html_page):
    renderer = make_renderer(
        {
            "https://site.test/": html_page("", ["/one"]),
            "https://site.test/one": html_page("", ["/two"]),
            "https://site.test/two": html_page("deep@site.test"),
        }
    )
    _, summary = crawl("https://site.test", cfg, assets, renderer, sink, max_depth=1)
    assert renderer.calls == ["https://site.test/", "https://site.test/one"]
    assert summary.email_addresses == []


def test_social_profiles_collected_when_enabled(cfg, assets, sink, make_renderer):
    html = '<html><body><a href="https://www.facebook.com/acme?ref=hp">fb</a></body></html>'
    renderer = make_renderer({"https://site.test/": html})
    _, summary = crawl("https://site.test", cfg, assets, renderer, sink, extract_social=True)
    assert summary.social_profiles == ["https://www.facebook.com/acme"]
    assert summary.to_output(include_social=True)["socialProfiles"] == ["https://www.facebook.com/acme"]


def test_request_spacer_enforces_minimum_gap():
    async def go():
        spacer = RequestSpacer(0.05)
        loop = asyncio.get_running_loop()
        starts = []
        for _ in range(3):
            await spacer.wait()
            starts.append(loop.time())
        return starts

    starts = asyncio.run(go())
    gaps = [b - a for a, b in zip(starts, starts[1:])]
    assert all(g >= 0.04 for g in gaps)


def test_start_url_query_is_kept_for_fetching(cfg, assets, sink, make_renderer, html_page):
    renderer = make_renderer(
        {
            "https://shop.test/index.php?page=contact": html_page("sales@shop.test", ["/index.php", "/about"]),
            "https://shop.test/index.php": html_page("front@shop.test"),
            "https://shop.test/about": html_page("about@shop.test"),
        }
    )
    _, summary = crawl("https://shop.test/index.php?page=contact", cfg, assets, renderer, sink)

    assert renderer.calls[0] == "https://shop.test/index.php?page=contact"
    assert "https://shop.test/index.php" not in renderer.calls
    assert sink.records[0] == {
        "url": "https://shop.test/index.php?page=contact",
        "email": "sales@shop.test",
        "foundOn": "https://shop.test/index.php?page=contact",
    }
    assert summary.email_addresses == ["sales@shop.test", "about@shop.test"]


class RedirectingRenderer:
    """Serves every page as if the site had moved from the apex to www."""

    def __init__(self, pages):
        self.pages = pages
        self.calls = []

    async def render(self, url, timeout_s):
        self.calls.append(url)
        final = url.replace("https://site.test", "https://www.site.test", 1)
        if final not in self.pages:
            raise RenderError(url, "http_status", "HTTP 404", status_code=404)
        return parse_page(url, self.pages[final], final_url=final, status_code=200)


def test_same_site_redirect_widens_link_scope(cfg, assets, sink, html_page):
    renderer = RedirectingRenderer(
        {
            "https://www.site.test/": html_page("", ["/contact", "https://elsewhere.test/"]),
            "https://www.site.test/contact": html_page("team@site.test", ["/"]),
        }
    )
    controller, summary = crawl("https://site.test", cfg, assets, renderer, sink)

    assert renderer.calls == ["https://site.test/", "https://www.site.test/contact"]
    assert summary.email_addresses == ["team@site.test"]
    assert controller.frontier.origins == {"https://site.test", "https://www.site.test"}


class BrokenSink:
    def __init__(self):
        self.records = []

    def append(self, record):
        if "email" in record:
            raise OSError("disk full")
        self.records.append(record)


def test_sink_failure_fails_the_target_without_raising(cfg, assets, make_renderer, html_page):
    links = [f"/p{i}" for i in range(4)]
    pages = {"https://site.test/": html_page("boss@site.test", links)}
    pages.update({f"https://site.test{p}": html_page("") for p in links})
    renderer = make_renderer(pages, delay_s=0.01)

    _, summary = crawl("https://site.test", cfg, assets, renderer, BrokenSink(), max_concurrency=3)

    assert summary.status is RunStatus.FAILED
    assert "OSError" in summary.error
    assert renderer.calls == ["https://site.test/"]
    assert renderer.in_flight == 0
