from __future__ import annotations

import dataclasses
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from config import ScraperConfig


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class VisitStatus(str, Enum):
    PENDING = "Pending"
    FETCHED = "Fetched"
    FAILED = "Failed"


class RunStatus(str, Enum):
    SUCCESS = "Success"
    PARTIAL_FAILURE = "PartialFailure"
    FAILED = "Failed"


class CrawlTarget(BaseModel):
    """One user-supplied start URL. Immutable once the run starts."""

    model_config = ConfigDict(frozen=True)

    url: str
    normalized_origin: str


class VisitRecord(BaseModel):
    """
    Lifecycle of one page within a target run (owned by the Frontier).

    Pending -> Fetched | Failed. Terminal records are never revisited.
    """

    url: str
    page_index: int
    status: VisitStatus = VisitStatus.PENDING
    discovered_at: datetime = Field(default_factory=utc_now)
    depth: int = 0
    error: Optional[str] = None

    @property
    def terminal(self) -> bool:
        return self.status is not VisitStatus.PENDING


class EmailRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    email: str  # lowercased, trimmed; unique per target
    source_url: str
    first_seen_at: datetime = Field(default_factory=utc_now)


class LinkCandidate(BaseModel):
    """Transient: produced per page, consumed by the enqueue decision."""

    model_config = ConfigDict(frozen=True)

    href: str
    resolved_url: str
    priority: int = 0
    depth: int = 0


class RenderedPage(BaseModel):
    """What the page-rendering collaborator hands back for one URL."""

    url: str
    final_url: str
    status_code: Optional[int] = None
    text: str = ""
    html: str = ""
    mailto_hrefs: List[str] = Field(default_factory=list)
    anchor_hrefs: List[str] = Field(default_factory=list)


class RunSummary(BaseModel):
    """
    Per-target outcome. Mutated only by that target's controller, then handed
    to the reporter read-only.
    """

    target_url: str
    emails: List[EmailRecord] = Field(default_factory=list)
    pages_visited: int = 0
    pages_failed: int = 0
    status: RunStatus = RunStatus.FAILED
    error: Optional[str] = None
    social_profiles: List[str] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=utc_now)
    finished_at: Optional[datetime] = None

    @property
    def email_addresses(self) -> List[str]:
        return [e.email for e in self.emails]

    def to_output(self, include_social: bool = False) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "url": self.target_url,
            "status": self.status.value,
            "emails": self.email_addresses,
            "pagesScraped": self.pages_visited,
            "pagesFailed": self.pages_failed,
            "error": self.error,
        }
        if include_social:
            out["socialProfiles"] = list(self.social_profiles)
        return out


class FinalSummary(BaseModel):
    total_urls: int
    total_emails: int
    all_emails: List[str] = Field(default_factory=list)
    results: List[RunSummary] = Field(default_factory=list)
    duration_seconds: float = 0.0

    def to_output(self, include_social: bool = False) -> Dict[str, Any]:
        return {
            "totalUrls": self.total_urls,
            "totalEmails": self.total_emails,
            "allEmails": list(self.all_emails),
            "results": [r.to_output(include_social=include_social) for r in self.results],
            "durationSeconds": round(self.duration_seconds, 3),
        }


# Input option -> ScraperConfig field (same names; camelCase accepted on input).
_CONFIG_OVERRIDES = (
    "max_concurrency",
    "max_pages_per_crawl",
    "max_depth",
    "headless",
    "navigation_timeout_ms",
    "content_timeout_ms",
    "request_delay_ms",
    "renderer",
    "html_policy",
    "extract_social",
)


class ScrapeInput(BaseModel):
    """
    Input document. Exactly one of `url` / `urls` must be given.

    Example:
      {"url": "https://example.org", "maxPagesPerCrawl": 20}
      {"urls": ["https://a.test", "https://b.test"], "maxConcurrency": 2}
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    url: Optional[str] = None
    urls: Optional[List[str]] = None

    max_concurrency: Optional[int] = Field(default=None, alias="maxConcurrency")
    max_pages_per_crawl: Optional[int] = Field(default=None, alias="maxPagesPerCrawl")
    max_depth: Optional[int] = Field(default=None, alias="maxDepth")
    headless: Optional[bool] = None
    navigation_timeout_ms: Optional[int] = Field(default=None, alias="navigationTimeoutMs")
    content_timeout_ms: Optional[int] = Field(default=None, alias="contentTimeoutMs")
    request_delay_ms: Optional[int] = Field(default=None, alias="requestDelayMs")
    renderer: Optional[str] = None
    html_policy: Optional[str] = Field(default=None, alias="htmlPolicy")
    extract_social: Optional[bool] = Field(default=None, alias="extractSocial")

    @model_validator(mode="after")
    def _exactly_one_source(self) -> "ScrapeInput":
        has_url = self.url is not None
        has_urls = self.urls is not None
        if has_url and has_urls:
            raise ValueError("'url' and 'urls' are mutually exclusive; give exactly one")
        if not has_url and not has_urls:
            raise ValueError("one of 'url' or 'urls' is required")
        if has_url and not self.url.strip():
            raise ValueError("'url' must not be empty")
        if has_urls:
            if not self.urls:
                raise ValueError("'urls' must not be empty")
            if any(not (u or "").strip() for u in self.urls):
                raise ValueError("'urls' must not contain empty entries")
        return self

    def target_urls(self) -> List[str]:
        if self.url is not None:
            return [self.url.strip()]
        return [u.strip() for u in (self.urls or [])]

    def apply_to(self, cfg: ScraperConfig) -> ScraperConfig:
        overrides = {k: getattr(self, k) for k in _CONFIG_OVERRIDES if getattr(self, k) is not None}
        if not overrides:
            return cfg
        return dataclasses.replace(cfg, **overrides)
