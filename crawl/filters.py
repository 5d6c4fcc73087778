from __future__ import annotations

import re
from typing import AbstractSet, Collection, Iterable, Optional, Set
from urllib.parse import unquote, urljoin, urlparse, urlunparse

from config import DEFAULT_DISALLOWED_SUBSTRINGS
from errors import LinkResolutionError

PRIORITY_DEFAULT = 0
PRIORITY_HIGH = 10

EMAIL_MIN_LEN = 5  # exclusive
EMAIL_MAX_LEN = 100  # exclusive

# Canonical grammar: local@domain.tld
_EMAIL_FULL_RE = re.compile(r"^[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}$")

_WRAPPING_PUNCT = " \t\r\n\"'<>[](){}.,;:"

_NON_NAVIGATIONAL = ("mailto:", "tel:", "javascript:", "data:", "sms:", "callto:")


# -----------------------------
# URL helpers
# -----------------------------
def canonicalize_url(url: str, keep_query: bool = False) -> str:
    """
    Stable URL normalization for the visited set:
      - lowercase scheme/host
      - drop fragment
      - drop query (prevents tracking-param crawl explosions) unless keep_query
      - drop params and credentials
      - ensure '/' for empty path, strip trailing '/' except root
      - keep an explicit port

    keep_query=True gives the fetchable form of a user-supplied start URL.
    """
    u = urlparse((url or "").strip())
    if not u.scheme or not u.netloc:
        return (url or "").strip()

    scheme = u.scheme.lower()
    host = (u.hostname or "").lower()
    if not host:
        return (url or "").strip()

    try:
        port = u.port
    except ValueError:
        port = None
    netloc = f"{host}:{port}" if port else host

    path = u.path or "/"
    if path != "/" and path.endswith("/"):
        path = path.rstrip("/") or "/"

    query = u.query if keep_query else ""
    return urlunparse((scheme, netloc, path, "", query, ""))


def origin_of(url: str) -> str:
    """scheme://host[:port], lowercased. Empty string if the URL has no host."""
    u = urlparse((url or "").strip())
    host = (u.hostname or "").lower()
    if not u.scheme or not host:
        return ""
    try:
        port = u.port
    except ValueError:
        return ""
    netloc = f"{host}:{port}" if port else host
    return f"{u.scheme.lower()}://{netloc}"


def _host_variants(host: str) -> Set[str]:
    """'site.test' and 'www.site.test' are one site. No other subdomains."""
    h = (host or "").strip().lower()
    if not h:
        return set()
    if h.startswith("www."):
        return {h, h[len("www."):]}
    return {h, "www." + h}


def is_same_site(origin: str, other: str) -> bool:
    """
    True when `other` is the same site as `origin` reached through a redirect:
    identical, a www/apex variant, or an http -> https upgrade (or both).
    Explicit ports must match.
    """
    a, b = urlparse(origin or ""), urlparse(other or "")
    if not a.hostname or not b.hostname:
        return False
    try:
        if a.port != b.port:
            return False
    except ValueError:
        return False

    scheme_a, scheme_b = a.scheme.lower(), b.scheme.lower()
    if scheme_a != scheme_b and not (scheme_a == "http" and scheme_b == "https"):
        return False
    return b.hostname.lower() in _host_variants(a.hostname)


def is_http_url(url: str) -> bool:
    u = urlparse((url or "").strip())
    return u.scheme.lower() in ("http", "https") and bool(u.hostname)


def resolve_link(base_url: str, href: str) -> str:
    """
    Resolve an anchor href against the page URL.

    Raises LinkResolutionError for empty/fragment-only/non-navigational hrefs
    and anything that doesn't resolve to an absolute URL with a host.
    """
    h = (href or "").strip()
    if not h or h.startswith("#"):
        raise LinkResolutionError(f"not a link: {href!r}")

    hl = h.lower()
    if hl.startswith(_NON_NAVIGATIONAL):
        raise LinkResolutionError(f"non-navigational href: {href!r}")

    try:
        abs_url = urljoin(base_url, h)
        u = urlparse(abs_url)
        _ = u.port  # raises ValueError on a malformed port
    except ValueError as e:
        raise LinkResolutionError(f"malformed href {href!r}: {e}") from e

    if not u.scheme or not u.hostname:
        raise LinkResolutionError(f"unresolvable href: {href!r}")

    return canonicalize_url(abs_url)


def url_extension(url: str) -> str:
    path = urlparse(url).path or ""
    last = path.rsplit("/", 1)[-1]
    if "." not in last:
        return ""
    return "." + last.rsplit(".", 1)[-1].lower()


# -----------------------------
# Email validation
# -----------------------------
def clean_candidate(raw: str) -> str:
    """URL-decode, strip wrapping punctuation/whitespace, lowercase."""
    s = unquote((raw or "").strip())
    s = s.strip(_WRAPPING_PUNCT)
    return s.lower().strip()


def is_valid_email(
        candidate: str,
        disallowed_substrings: Iterable[str] = DEFAULT_DISALLOWED_SUBSTRINGS,
) -> bool:
    """
    True iff the candidate:
      - matches local@domain.tld (local: alnum + . _ % + -; domain: alnum . -; tld >= 2 letters)
      - has length strictly between 5 and 100
      - contains none of the disallowed (image/document extension) substrings
    """
    if not isinstance(candidate, str):
        return False
    if not (EMAIL_MIN_LEN < len(candidate) < EMAIL_MAX_LEN):
        return False
    if _EMAIL_FULL_RE.match(candidate) is None:
        return False
    low = candidate.lower()
    return not any(bad and bad.lower() in low for bad in disallowed_substrings)


def _domain_matches(domain: str, denied: str) -> bool:
    return domain == denied or domain.endswith("." + denied)


def is_excluded_email(
        candidate: str,
        excluded_domains: Collection[str],
        excluded_prefixes: Iterable[str],
) -> bool:
    """
    True when the mailbox belongs to a denylisted domain (or one of its
    subdomains) or its local part starts with a denylisted prefix.
    """
    low = (candidate or "").strip().lower()
    if "@" not in low:
        return True

    local, domain = low.rsplit("@", 1)
    for denied in excluded_domains:
        if _domain_matches(domain, denied):
            return True

    for prefix in excluded_prefixes:
        if prefix and local.startswith(prefix):
            return True

    return False


# -----------------------------
# Link filtering
# -----------------------------
def should_follow_link(
        resolved_url: str,
        origin: str,
        visited: AbstractSet[str],
        skip_extensions: Iterable[str],
) -> bool:
    """
    Pure predicate deciding whether a resolved link enters the frontier.

    False when: not http(s), different origin than the crawl target, extension
    on the skip list, or already visited/queued (visited holds canonical URLs).
    """
    if not is_http_url(resolved_url):
        return False

    if origin_of(resolved_url) != origin:
        return False

    ext = url_extension(resolved_url)
    if ext and ext in {e.lower() for e in skip_extensions}:
        return False

    return canonicalize_url(resolved_url) not in visited


def priority_of(url: str, priority_path_patterns: Iterable[str], high: int = PRIORITY_HIGH) -> int:
    """Queue-ordering hint: contact/about/team-like paths go first."""
    path = (urlparse(url).path or "").lower()
    segments = [s for s in re.split(r"[/_.\-]+", path) if s]
    joined = path.strip("/")
    for pattern in priority_path_patterns:
        p = (pattern or "").strip().lower().strip("/")
        if not p:
            continue
        if p in segments or joined == p or joined.startswith(p + "/") or ("/" + p + "/") in path + "/":
            return high
    return PRIORITY_DEFAULT


def normalize_target(url: str) -> Optional[str]:
    """Origin of a user-supplied start URL, or None if it is not http(s)."""
    if not is_http_url(url):
        return None
    return origin_of(url)
