from __future__ import annotations

import dataclasses
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, FrozenSet, List, Optional, Tuple

logger = logging.getLogger("Config")

# -------------------------
# Renderer / extraction modes
# -------------------------
RENDERER_HTTP = "http"
RENDERER_BROWSER = "browser"
RENDERERS: Tuple[str, ...] = (RENDERER_HTTP, RENDERER_BROWSER)

# "fallback": raw-markup pass only runs when the visible-text pass found nothing.
# "merge": both passes always run and their candidates are unioned.
HTML_POLICY_FALLBACK = "fallback"
HTML_POLICY_MERGE = "merge"
HTML_POLICIES: Tuple[str, ...] = (HTML_POLICY_FALLBACK, HTML_POLICY_MERGE)

# -------------------------
# Defaults (used only if assets/crawl/* are missing)
# -------------------------
DEFAULT_EXCLUDED_DOMAINS: List[str] = [
    # analytics / tracking / error-reporting vendors
    "sentry.io",
    "sentry.wixpress.com",
    "sentry-next.wixpress.com",
    "wixpress.com",
    "google-analytics.com",
    "googletagmanager.com",
    "hotjar.com",
    "segment.io",
    "mixpanel.com",
    "robot.zapier.com",
    # placeholder domains that show up in templates
    "example.com",
    "example.org",
    "example.net",
    "domain.com",
    "email.com",
    "yourdomain.com",
    "yoursite.com",
    "company.com",
]

DEFAULT_EXCLUDED_PREFIXES: List[str] = [
    "noreply",
    "no-reply",
    "donotreply",
    "do-not-reply",
    "admin",
    "postmaster",
    "mailer-daemon",
    "webmaster",
    "abuse",
]

DEFAULT_SKIP_EXTENSIONS: List[str] = [
    ".jpg",
    ".jpeg",
    ".png",
    ".gif",
    ".svg",
    ".webp",
    ".ico",
    ".bmp",
    ".mp4",
    ".mp3",
    ".avi",
    ".mov",
    ".pdf",
    ".zip",
    ".rar",
    ".gz",
    ".doc",
    ".docx",
    ".xls",
    ".xlsx",
    ".ppt",
    ".pptx",
    ".css",
    ".js",
    ".json",
    ".xml",
    ".woff",
    ".woff2",
    ".ttf",
]

# Substrings that mark a regex hit as an asset filename (e.g. "logo@2x.png"), not a mailbox.
DEFAULT_DISALLOWED_SUBSTRINGS: List[str] = [
    ".png",
    ".jpg",
    ".jpeg",
    ".gif",
    ".svg",
    ".webp",
    ".bmp",
    ".pdf",
]

DEFAULT_PRIORITY_PATHS: List[str] = [
    "contact",
    "kontakt",
    "about",
    "about-us",
    "team",
    "staff",
    "people",
    "impressum",
    "imprint",
    "support",
]


@dataclass(frozen=True)
class CrawlAssets:
    """
    Externally supplied tables consumed by the filters.

    Loaded from assets/crawl/*.txt; the core logic never hardcodes these.
    """
    excluded_domains: FrozenSet[str]
    excluded_prefixes: Tuple[str, ...]
    skip_extensions: Tuple[str, ...]
    disallowed_substrings: Tuple[str, ...]
    priority_paths: Tuple[str, ...]


@dataclass(frozen=True)
class ScraperConfig:
    # -------------------------
    # Crawl bounds (crawl/frontier.py, crawl/controller.py)
    # -------------------------
    max_concurrency: int = 1
    max_pages_per_crawl: int = 50
    max_depth: Optional[int] = None

    # -------------------------
    # Rendering (crawl/render.py)
    # -------------------------
    renderer: str = RENDERER_HTTP
    headless: bool = True
    navigation_timeout_ms: int = 30000
    content_timeout_ms: int = 5000
    request_delay_ms: int = 500
    max_bytes_per_page: int = 2_000_000
    user_agent: str = (
        "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120 Safari/537.36"
    )
    http_max_keepalive_connections: int = 20
    http_max_connections: int = 50

    # -------------------------
    # Extraction (crawl/extract.py)
    # -------------------------
    html_policy: str = HTML_POLICY_FALLBACK
    extract_social: bool = False

    # -------------------------
    # Output (storage.py, crawl/report.py)
    # -------------------------
    output_dir: Path = Path("output")
    dataset_filename: str = "dataset.jsonl"
    metrics_filename: str = "metrics.json"
    write_csv: bool = True
    csv_filename: str = "emails.csv"

    # -------------------------
    # Assets
    # -------------------------
    assets_dir: Path = Path(__file__).resolve().parent / "assets"

    @property
    def navigation_timeout_s(self) -> float:
        return max(0.001, self.navigation_timeout_ms / 1000.0)

    @property
    def content_timeout_s(self) -> float:
        return max(0.001, self.content_timeout_ms / 1000.0)

    @property
    def request_delay_s(self) -> float:
        return max(0.0, self.request_delay_ms / 1000.0)

    @property
    def dataset_path(self) -> Path:
        return self.output_dir / self.dataset_filename

    def asset_path(self, filename: str) -> Path:
        return self.assets_dir / "crawl" / filename

    def validate(self) -> "ScraperConfig":
        """Reject nonsensical knob values early (before any target is crawled)."""
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        if self.max_pages_per_crawl < 1:
            raise ValueError("max_pages_per_crawl must be >= 1")
        if self.max_depth is not None and self.max_depth < 0:
            raise ValueError("max_depth must be >= 0")
        if self.navigation_timeout_ms <= 0 or self.content_timeout_ms <= 0:
            raise ValueError("timeouts must be positive")
        if self.request_delay_ms < 0:
            raise ValueError("request_delay_ms must be >= 0")
        if self.renderer not in RENDERERS:
            raise ValueError(f"renderer must be one of {RENDERERS}, got {self.renderer!r}")
        if self.html_policy not in HTML_POLICIES:
            raise ValueError(f"html_policy must be one of {HTML_POLICIES}, got {self.html_policy!r}")
        return self

    @classmethod
    def from_profile(cls, profile: str = "standard", **overrides) -> "ScraperConfig":
        if profile not in PROFILES:
            raise ValueError(f"Unknown profile {profile!r}; expected one of {sorted(PROFILES)}")
        return dataclasses.replace(PROFILES[profile], **overrides)

    @classmethod
    def from_env(cls, profile: str = "standard", **overrides) -> "ScraperConfig":
        """
        Profile defaults, then environment knobs, then explicit overrides.

        Env:
          MAX_CONCURRENCY, MAX_REQUESTS_PER_CRAWL, HEADLESS, TIMEOUT (ms),
          CONTENT_TIMEOUT (ms), REQUEST_DELAY (ms), SCRAPER_RENDERER
        """
        base = cls.from_profile(profile)
        env: Dict[str, object] = {}

        _maybe_int(env, "max_concurrency", "MAX_CONCURRENCY", base.max_concurrency)
        _maybe_int(env, "max_pages_per_crawl", "MAX_REQUESTS_PER_CRAWL", base.max_pages_per_crawl)
        _maybe_int(env, "navigation_timeout_ms", "TIMEOUT", base.navigation_timeout_ms)
        _maybe_int(env, "content_timeout_ms", "CONTENT_TIMEOUT", base.content_timeout_ms)
        _maybe_int(env, "request_delay_ms", "REQUEST_DELAY", base.request_delay_ms)

        raw_headless = os.environ.get("HEADLESS")
        if raw_headless is not None:
            # Anything but "false" keeps the browser headless.
            env["headless"] = raw_headless.strip().lower() != "false"

        raw_renderer = os.environ.get("SCRAPER_RENDERER")
        if raw_renderer and raw_renderer.strip():
            env["renderer"] = raw_renderer.strip().lower()

        env.update(overrides)
        return dataclasses.replace(base, **env)


def _maybe_int(out: Dict[str, object], field: str, name: str, default: int) -> None:
    raw = os.environ.get(name)
    if raw is None:
        return
    try:
        out[field] = int(raw.strip())
    except ValueError:
        logger.warning("Ignoring malformed %s=%r (keeping %d)", name, raw, default)


# Named presets; the "default depends on profile" knobs.
PROFILES: Dict[str, ScraperConfig] = {
    "quick": ScraperConfig(
        max_concurrency=1,
        max_pages_per_crawl=3,
        navigation_timeout_ms=15000,
        request_delay_ms=0,
    ),
    "standard": ScraperConfig(),
    "deep": ScraperConfig(
        max_concurrency=10,
        max_pages_per_crawl=1000,
        navigation_timeout_ms=30000,
        request_delay_ms=500,
    ),
}


# -------------------------
# Asset loading
# -------------------------
def _read_asset_lines(path: Path) -> List[str]:
    """
    Asset reader (line-based).

    Rules:
      - one entry per line
      - ignore empty lines
      - ignore comments starting with '#'
    """
    if not path.exists():
        return []
    lines: List[str] = []
    for raw in path.read_text(encoding="utf-8", errors="ignore").splitlines():
        s = raw.strip()
        if not s or s.startswith("#"):
            continue
        lines.append(s)
    return lines


def _lowered_or_default(path: Path, default: List[str]) -> List[str]:
    loaded = [x.strip().lower() for x in _read_asset_lines(path) if x.strip()]
    if not loaded:
        logger.warning("Crawl asset missing/empty: %s (using defaults)", path)
        return list(default)
    return loaded


def _as_extension(x: str) -> str:
    return x if x.startswith(".") else "." + x


def load_crawl_assets(cfg: ScraperConfig) -> CrawlAssets:
    """
    Load filter tables from assets/crawl/.

    Files:
      - excluded_domains.txt
      - excluded_prefixes.txt
      - skip_extensions.txt
      - disallowed_substrings.txt
      - priority_paths.txt

    Falls back to safe defaults if missing.
    """
    domains = _lowered_or_default(cfg.asset_path("excluded_domains.txt"), DEFAULT_EXCLUDED_DOMAINS)
    prefixes = _lowered_or_default(cfg.asset_path("excluded_prefixes.txt"), DEFAULT_EXCLUDED_PREFIXES)
    exts = _lowered_or_default(cfg.asset_path("skip_extensions.txt"), DEFAULT_SKIP_EXTENSIONS)
    substrings = _lowered_or_default(
        cfg.asset_path("disallowed_substrings.txt"), DEFAULT_DISALLOWED_SUBSTRINGS
    )
    priority = _lowered_or_default(cfg.asset_path("priority_paths.txt"), DEFAULT_PRIORITY_PATHS)

    return CrawlAssets(
        excluded_domains=frozenset(domains),
        excluded_prefixes=tuple(prefixes),
        skip_extensions=tuple(_as_extension(x) for x in exts),
        disallowed_substrings=tuple(substrings),
        priority_paths=tuple(priority),
    )


def default_assets() -> CrawlAssets:
    """Built-in tables, no filesystem access."""
    return CrawlAssets(
        excluded_domains=frozenset(DEFAULT_EXCLUDED_DOMAINS),
        excluded_prefixes=tuple(DEFAULT_EXCLUDED_PREFIXES),
        skip_extensions=tuple(DEFAULT_SKIP_EXTENSIONS),
        disallowed_substrings=tuple(DEFAULT_DISALLOWED_SUBSTRINGS),
        priority_paths=tuple(DEFAULT_PRIORITY_PATHS),
    )
