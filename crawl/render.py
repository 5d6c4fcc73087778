from __future__ import annotations

import asyncio
import importlib.util
import logging
from contextlib import AsyncExitStack
from typing import List, Optional, Protocol, Tuple

import httpx
from bs4 import BeautifulSoup

from config import RENDERER_BROWSER, ScraperConfig
from errors import RenderError
from schemas import RenderedPage

logger = logging.getLogger("Render")

_NON_VISIBLE_TAGS = ["script", "style", "noscript", "template"]


class PageRenderer(Protocol):
    async def render(self, url: str, timeout_s: float) -> RenderedPage:
        """Render one page or raise RenderError."""
        ...


# -----------------------------
# HTML query facility
# -----------------------------
def _split_anchors(soup: BeautifulSoup) -> Tuple[List[str], List[str]]:
    mailto: List[str] = []
    anchors: List[str] = []
    for a in soup.find_all("a", href=True):
        href = str(a.get("href") or "").strip()
        if not href:
            continue
        if href.lower().startswith("mailto:"):
            mailto.append(href)
        else:
            anchors.append(href)
    return mailto, anchors


def parse_page(
        url: str,
        html: str,
        final_url: Optional[str] = None,
        status_code: Optional[int] = None,
) -> RenderedPage:
    """
    Split rendered markup into the pieces the extractor works on:
      - visible body text (scripts/styles removed)
      - mailto hrefs
      - every other anchor href
    """
    soup = BeautifulSoup(html or "", "html.parser")
    mailto, anchors = _split_anchors(soup)

    for tag in soup(_NON_VISIBLE_TAGS):
        tag.decompose()
    root = soup.body or soup
    text = root.get_text(" ", strip=True)

    return RenderedPage(
        url=url,
        final_url=final_url or url,
        status_code=status_code,
        text=text,
        html=html or "",
        mailto_hrefs=mailto,
        anchor_hrefs=anchors,
    )


def _is_text_like(content_type: str) -> bool:
    ctype = (content_type or "").strip().lower()
    return (
            ("text" in ctype)
            or ("html" in ctype)
            or ("xml" in ctype)
            or (ctype == "")
    )


# -----------------------------
# HTTP renderer (default)
# -----------------------------
class HttpRenderer:
    """
    Plain HTTP "rendering": GET with redirects, no JavaScript.

    - navigation timeout: per-request httpx timeout
    - primary-content wait: reading the body after headers is bounded by
      content_timeout_s
    - per-page byte cap via streaming
    - non-text responses render as an empty page
    """

    def __init__(self, client: httpx.AsyncClient, content_timeout_s: float = 5.0, max_bytes: int = 2_000_000) -> None:
        self._client = client
        self._content_timeout_s = float(content_timeout_s)
        self._max_bytes = max(1, int(max_bytes))

    async def _read_capped(self, resp: httpx.Response) -> bytes:
        buf = bytearray()
        async for chunk in resp.aiter_bytes():
            if not chunk:
                continue
            remaining = self._max_bytes - len(buf)
            if remaining <= 0:
                break
            buf.extend(chunk[:remaining])
            if len(buf) >= self._max_bytes:
                break
        return bytes(buf)

    async def render(self, url: str, timeout_s: float) -> RenderedPage:
        try:
            async with self._client.stream("GET", url, timeout=timeout_s) as resp:
                status = resp.status_code
                final_url = str(resp.url)
                ctype = (resp.headers.get("content-type") or "").lower()

                if status >= 400:
                    raise RenderError(url, "http_status", f"HTTP {status}", status_code=status)

                if not _is_text_like(ctype):
                    logger.debug("Skipping body of %s (content-type %s)", url, ctype)
                    return RenderedPage(url=url, final_url=final_url, status_code=status)

                try:
                    raw = await asyncio.wait_for(self._read_capped(resp), timeout=self._content_timeout_s)
                except asyncio.TimeoutError as e:
                    raise RenderError(url, "content_timeout", "body not received in time") from e

        except httpx.TimeoutException as e:
            raise RenderError(url, "timeout", str(e) or "navigation timed out") from e
        except httpx.ConnectError as e:
            raise RenderError(url, "connect", str(e)) from e
        except httpx.ReadError as e:
            raise RenderError(url, "read", str(e)) from e
        except httpx.HTTPError as e:
            raise RenderError(url, "other", str(e)) from e

        # Decode conservatively; no charset guessing keeps results deterministic.
        body = raw.decode("utf-8", errors="ignore")
        return parse_page(url, body, final_url=final_url, status_code=status)


def make_http_client(cfg: ScraperConfig, transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    headers = {
        "User-Agent": cfg.user_agent,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.9",
    }
    limits = httpx.Limits(
        max_keepalive_connections=cfg.http_max_keepalive_connections,
        max_connections=cfg.http_max_connections,
    )
    timeout = httpx.Timeout(cfg.navigation_timeout_s, connect=cfg.navigation_timeout_s)
    return httpx.AsyncClient(
        follow_redirects=True,
        timeout=timeout,
        limits=limits,
        headers=headers,
        transport=transport,
    )


# -----------------------------
# Headless browser renderer (optional extra: playwright)
# -----------------------------
def browser_available() -> bool:
    """True when the optional Playwright extra is installed."""
    return importlib.util.find_spec("playwright") is not None


class BrowserRenderer:
    """
    Chromium via Playwright. Use as an async context manager; the browser
    lives for the whole batch and each render gets a fresh page.
    """

    def __init__(self, headless: bool = True, content_timeout_s: float = 5.0, user_agent: Optional[str] = None) -> None:
        self._headless = headless
        self._content_timeout_ms = int(content_timeout_s * 1000)
        self._user_agent = user_agent
        self._playwright = None
        self._browser = None
        self._context = None

    async def __aenter__(self) -> "BrowserRenderer":
        try:
            from playwright.async_api import async_playwright
        except ImportError as e:
            raise RuntimeError(
                "renderer='browser' needs Playwright: pip install 'contact-crawler[browser]' "
                "&& playwright install chromium"
            ) from e

        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=self._headless,
            args=["--no-sandbox", "--disable-setuid-sandbox"],
        )
        self._context = await self._browser.new_context(user_agent=self._user_agent)
        return self

    async def __aexit__(self, *exc) -> None:
        if self._context is not None:
            await self._context.close()
        if self._browser is not None:
            await self._browser.close()
        if self._playwright is not None:
            await self._playwright.stop()
        self._context = self._browser = self._playwright = None

    async def render(self, url: str, timeout_s: float) -> RenderedPage:
        from playwright.async_api import Error as PlaywrightError
        from playwright.async_api import TimeoutError as PlaywrightTimeoutError

        if self._context is None:
            raise RuntimeError("BrowserRenderer used outside 'async with'")

        page = await self._context.new_page()
        try:
            try:
                resp = await page.goto(url, timeout=int(timeout_s * 1000), wait_until="domcontentloaded")
            except PlaywrightTimeoutError as e:
                raise RenderError(url, "timeout", str(e)) from e

            status = resp.status if resp is not None else None
            if status is not None and status >= 400:
                raise RenderError(url, "http_status", f"HTTP {status}", status_code=status)

            try:
                await page.wait_for_selector("body", timeout=self._content_timeout_ms)
            except PlaywrightTimeoutError as e:
                raise RenderError(url, "content_timeout", str(e)) from e

            html = await page.content()
            return parse_page(url, html, final_url=page.url, status_code=status)
        except PlaywrightError as e:
            raise RenderError(url, "other", str(e)) from e
        finally:
            await page.close()


async def open_renderer(
        cfg: ScraperConfig,
        stack: AsyncExitStack,
        transport: Optional[httpx.AsyncBaseTransport] = None,
) -> PageRenderer:
    """Build the configured renderer; its resources close with the stack."""
    if cfg.renderer == RENDERER_BROWSER:
        browser = BrowserRenderer(
            headless=cfg.headless,
            content_timeout_s=cfg.content_timeout_s,
            user_agent=cfg.user_agent,
        )
        return await stack.enter_async_context(browser)

    client = await stack.enter_async_context(make_http_client(cfg, transport=transport))
    return HttpRenderer(client, content_timeout_s=cfg.content_timeout_s, max_bytes=cfg.max_bytes_per_page)
