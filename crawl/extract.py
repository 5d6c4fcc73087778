from __future__ import annotations

import html
import logging
import re
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import unquote, urlparse

from config import HTML_POLICIES, HTML_POLICY_FALLBACK
from crawl.filters import clean_candidate, priority_of, resolve_link
from errors import ExtractionError, LinkResolutionError
from schemas import LinkCandidate, RenderedPage

logger = logging.getLogger("Extractor")

# -----------------------------
# Extraction regex
# -----------------------------
EMAIL_REGEX = re.compile(r"\b[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}\b")

FACEBOOK_REGEX = re.compile(
    r"(?:https?:)?//(?:www\.|m\.|web\.|business\.)?facebook\.com/[^\s\"'<>)\\]+",
    re.IGNORECASE,
)

# Path segments of share buttons / embeds rather than a page's own profile.
_SOCIAL_LOW_VALUE_SEGMENTS = {
    "sharer",
    "sharer.php",
    "share",
    "share.php",
    "plugins",
    "dialog",
    "tr",
    "login",
    "login.php",
}


@dataclass(frozen=True)
class PageContent:
    text: str
    html: str
    mailto_hrefs: Tuple[str, ...]


@dataclass(frozen=True)
class EmailStrategy:
    """
    One independent way of finding candidates on a page.

    fallback: under the "fallback" policy, only runs when every strategy before
    it found nothing.
    """
    name: str
    run: Callable[[PageContent], List[str]]
    fallback: bool = False


# -----------------------------
# Strategies
# -----------------------------
def _regex_candidates(blob: str) -> List[str]:
    if not blob:
        return []
    return EMAIL_REGEX.findall(blob)


def emails_from_text(content: PageContent) -> List[str]:
    return _regex_candidates(content.text)


def emails_from_html(content: PageContent) -> List[str]:
    if not content.html:
        return []
    try:
        markup = html.unescape(content.html)
    except Exception as e:
        raise ExtractionError("html", f"unescape failed: {e}") from e
    return _regex_candidates(markup)


def emails_from_mailto(content: PageContent) -> List[str]:
    """mailto:a@b.test?subject=hi -> a@b.test (comma lists split)."""
    out: List[str] = []
    for href in content.mailto_hrefs:
        h = (href or "").strip()
        if h[:7].lower() != "mailto:":
            continue
        addr = h[7:].split("?", 1)[0].split("#", 1)[0]
        for part in unquote(addr).split(","):
            part = part.strip()
            if part:
                out.append(part)
    return out


DEFAULT_STRATEGIES: Tuple[EmailStrategy, ...] = (
    EmailStrategy("text", emails_from_text),
    EmailStrategy("html", emails_from_html, fallback=True),
    EmailStrategy("mailto", emails_from_mailto),
)


# -----------------------------
# Social profiles (secondary artifact)
# -----------------------------
def _normalize_facebook(raw: str) -> Optional[Tuple[str, bool]]:
    """
    Returns (canonical_url, low_value) or None.

    canonical: https://www.facebook.com/<path> with query/fragment/trailing '/' removed.
    """
    s = raw.strip()
    if s.startswith("//"):
        s = "https:" + s
    u = urlparse(s)
    path = (u.path or "").rstrip("/")
    if not path:
        return None
    segments = [seg.lower() for seg in path.split("/") if seg]
    low_value = any(seg in _SOCIAL_LOW_VALUE_SEGMENTS for seg in segments)
    return "https://www.facebook.com" + path, low_value


def extract_social_profiles(markup: str) -> List[str]:
    """
    Facebook page URLs found in the markup, canonical profiles first and
    share/plugin-style URLs after them. Order within each group follows the page.
    """
    if not markup:
        return []

    seen: Dict[str, bool] = {}
    for m in FACEBOOK_REGEX.findall(html.unescape(markup)):
        norm = _normalize_facebook(m)
        if norm is None:
            continue
        url, low_value = norm
        if url not in seen:
            seen[url] = low_value

    canonical = [u for u, low in seen.items() if not low]
    shares = [u for u, low in seen.items() if low]
    return canonical + shares


# -----------------------------
# Links
# -----------------------------
def extract_links(
        page: RenderedPage,
        priority_paths: Iterable[str],
        depth: int = 0,
) -> List[LinkCandidate]:
    """
    Resolve the page's anchors into link candidates (malformed hrefs are dropped).

    Does not apply the follow filter; the frontier does that on enqueue.
    """
    base_url = page.final_url or page.url
    patterns = list(priority_paths)
    out: List[LinkCandidate] = []
    seen = set()

    for href in page.anchor_hrefs:
        try:
            resolved = resolve_link(base_url, href)
        except LinkResolutionError:
            continue
        if resolved in seen:
            continue
        seen.add(resolved)
        out.append(
            LinkCandidate(
                href=href,
                resolved_url=resolved,
                priority=priority_of(resolved, patterns),
                depth=depth,
            )
        )

    return out


# -----------------------------
# Extractor
# -----------------------------
class Extractor:
    """
    Composes the email strategies by ordered union.

    Stateless between calls: the same page content always yields the same
    candidate list. Candidates are raw (not yet validated) but already
    lowercased and trimmed.
    """

    def __init__(
            self,
            policy: str = HTML_POLICY_FALLBACK,
            extract_social: bool = False,
            strategies: Sequence[EmailStrategy] = DEFAULT_STRATEGIES,
    ) -> None:
        if policy not in HTML_POLICIES:
            raise ValueError(f"Unknown html policy {policy!r}; expected one of {HTML_POLICIES}")
        self.policy = policy
        self.extract_social = extract_social
        self.strategies = tuple(strategies)

    def _run_strategy(self, strategy: EmailStrategy, content: PageContent) -> List[str]:
        try:
            return list(strategy.run(content) or [])
        except ExtractionError as e:
            logger.warning("Extraction method failed: %s", e)
        except Exception as e:
            logger.warning("Extraction method failed: %s", ExtractionError(strategy.name, repr(e)))
        return []

    def extract(self, rendered_text: str, rendered_html: str, mailto_hrefs: Iterable[str] = ()) -> List[str]:
        content = PageContent(
            text=rendered_text or "",
            html=rendered_html or "",
            mailto_hrefs=tuple(mailto_hrefs or ()),
        )

        found: Dict[str, None] = {}
        for strategy in self.strategies:
            if strategy.fallback and self.policy == HTML_POLICY_FALLBACK and found:
                continue
            for raw in self._run_strategy(strategy, content):
                cand = clean_candidate(raw)
                if cand:
                    found.setdefault(cand, None)

        return list(found)

    def extract_page(self, page: RenderedPage) -> List[str]:
        return self.extract(page.text, page.html, page.mailto_hrefs)

    def social_profiles(self, page: RenderedPage) -> List[str]:
        if not self.extract_social:
            return []
        try:
            return extract_social_profiles(page.html)
        except Exception as e:
            logger.warning("Extraction method failed: %s", ExtractionError("social", repr(e)))
            return []
