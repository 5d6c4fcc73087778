from __future__ import annotations

from typing import Optional


class ScraperError(Exception):
    """Base class for everything the scraper raises on purpose."""


class InputValidationError(ScraperError, ValueError):
    """
    Bad input document (missing/duplicated url fields, bad option values).

    The only error that aborts a run; raised before any network activity.
    """


class RenderError(ScraperError):
    """
    A single page could not be rendered.

    kind: "timeout" / "content_timeout" / "connect" / "read" / "http_status" / "other"
    """

    def __init__(self, url: str, kind: str, message: str = "", status_code: Optional[int] = None) -> None:
        self.url = url
        self.kind = kind
        self.status_code = status_code
        detail = message or kind
        super().__init__(f"{kind}: {detail} ({url})")


class ExtractionError(ScraperError):
    """One extraction method failed; its contribution for the page is empty."""

    def __init__(self, method: str, message: str) -> None:
        self.method = method
        super().__init__(f"{method}: {message}")


class LinkResolutionError(ScraperError, ValueError):
    """An href could not be resolved into a crawlable absolute URL."""
