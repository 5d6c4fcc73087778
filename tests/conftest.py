from __future__ import annotations

import asyncio
from typing import Dict, List, Union

import pytest

from config import ScraperConfig, default_assets
from crawl.render import parse_page
from errors import RenderError
from schemas import RenderedPage
from storage import MemorySink


class FakeRenderer:
    """
    url -> html (rendered via parse_page) or an exception instance to raise.
    Unknown URLs fail like a 404.
    """

    def __init__(self, pages: Dict[str, Union[str, BaseException]], delay_s: float = 0.0) -> None:
        self.pages = pages
        self.delay_s = delay_s
        self.calls: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def render(self, url: str, timeout_s: float) -> RenderedPage:
        self.calls.append(url)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay_s:
                await asyncio.sleep(self.delay_s)
            item = self.pages.get(url)
            if item is None:
                raise RenderError(url, "http_status", "HTTP 404", status_code=404)
            if isinstance(item, BaseException):
                raise item
            return parse_page(url, item, status_code=200)
        finally:
            self.in_flight -= 1


def page(body: str, links: List[str] = ()) -> str:
    anchors = "".join(f'<a href="{href}">link</a>' for href in links)
    return f"<html><head><title>t</title></head><body>{body}{anchors}</body></html>"


@pytest.fixture
def cfg(tmp_path) -> ScraperConfig:
    return ScraperConfig(request_delay_ms=0, output_dir=tmp_path)


@pytest.fixture
def assets():
    return default_assets()


@pytest.fixture
def sink() -> MemorySink:
    return MemorySink()


@pytest.fixture
def make_renderer():
    return FakeRenderer


@pytest.fixture
def html_page():
    return page
