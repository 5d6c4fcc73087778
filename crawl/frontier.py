from __future__ import annotations

import heapq
import itertools
import logging
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple

from crawl.filters import PRIORITY_HIGH, canonicalize_url, is_same_site, origin_of, should_follow_link
from schemas import CrawlTarget, LinkCandidate, VisitRecord, VisitStatus

logger = logging.getLogger("Frontier")


class FrontierState(str, Enum):
    EMPTY = "Empty"
    POPULATED = "Populated"
    DRAINING = "Draining"
    EXHAUSTED = "Exhausted"


class Frontier:
    """
    Pending page visits for one crawl target.

    - Same-site only: the target origin, plus any same-site origin a fetched
      page redirected to (http -> https, apex <-> www).
    - Every URL is fetched at most once. The visited set is keyed by the
      canonical form (no query); the start URL keeps its query for fetching.
    - Higher priority first, FIFO among equal priorities.
    - The page ceiling counts fetches started: each dequeue reserves one slot,
      so concurrent visits can never overshoot it. Entries still queued once
      the ceiling is hit are never handed out.

    Owns the VisitRecord lifecycle (Pending -> Fetched | Failed). Not
    thread-safe; the controller serializes access.
    """

    def __init__(
            self,
            target: CrawlTarget,
            max_pages: int,
            skip_extensions: Iterable[str] = (),
            max_depth: Optional[int] = None,
    ) -> None:
        if max_pages < 1:
            raise ValueError("max_pages must be >= 1")
        self.target = target
        self.max_pages = int(max_pages)
        self.max_depth = max_depth
        self._skip_extensions = tuple(skip_extensions)

        self._origins: Set[str] = {target.normalized_origin}
        self._heap: List[Tuple[int, int, str]] = []
        self._seq = itertools.count()
        self._queued: Set[str] = set()
        self._seen: Set[str] = set()  # record keys + redirect targets
        self._records: Dict[str, VisitRecord] = {}
        self._dispatched = 0

    # -----------------------------
    # Introspection
    # -----------------------------
    @property
    def records(self) -> Mapping[str, VisitRecord]:
        return dict(self._records)

    def record(self, url: str) -> VisitRecord:
        return self._records[canonicalize_url(url)]

    @property
    def origins(self) -> Set[str]:
        return set(self._origins)

    @property
    def pending_count(self) -> int:
        return len(self._heap)

    @property
    def dispatched(self) -> int:
        return self._dispatched

    @property
    def ceiling_reached(self) -> bool:
        return self._dispatched >= self.max_pages

    @property
    def pages_fetched(self) -> int:
        return sum(1 for r in self._records.values() if r.status is VisitStatus.FETCHED)

    @property
    def pages_failed(self) -> int:
        return sum(1 for r in self._records.values() if r.status is VisitStatus.FAILED)

    @property
    def state(self) -> FrontierState:
        if not self._records:
            return FrontierState.EMPTY
        if not self._heap or self.ceiling_reached:
            return FrontierState.EXHAUSTED
        if self._dispatched == 0:
            return FrontierState.POPULATED
        return FrontierState.DRAINING

    # -----------------------------
    # Queue operations
    # -----------------------------
    def _push(self, key: str, fetch_url: str, priority: int, depth: int) -> None:
        seq = next(self._seq)
        self._records[key] = VisitRecord(url=fetch_url, page_index=len(self._records), depth=depth)
        self._queued.add(key)
        self._seen.add(key)
        heapq.heappush(self._heap, (-int(priority), seq, key))

    def _accepts(self, url: str, skip_extensions: Iterable[str]) -> bool:
        origin = origin_of(url)
        if origin not in self._origins:
            return False
        return should_follow_link(url, origin, self._seen, skip_extensions)

    def seed(self, url: str) -> bool:
        """Queue the start URL (bypasses the extension filter, still same-origin)."""
        key = canonicalize_url(url)
        if key in self._seen:
            return False
        if not self._accepts(key, ()):
            logger.warning("Seed %s is outside origin %s", url, self.target.normalized_origin)
            return False
        self._push(key, canonicalize_url(url, keep_query=True), PRIORITY_HIGH, 0)
        return True

    def enqueue(self, candidate: LinkCandidate) -> bool:
        """Returns True if the candidate was queued."""
        if self.ceiling_reached:
            return False
        if self.max_depth is not None and candidate.depth > self.max_depth:
            return False
        if not self._accepts(candidate.resolved_url, self._skip_extensions):
            return False

        key = canonicalize_url(candidate.resolved_url)
        self._push(key, key, candidate.priority, candidate.depth)
        return True

    def dequeue(self) -> Optional[str]:
        """Next URL to fetch, or None when empty or the page ceiling is reached."""
        if self.ceiling_reached or not self._heap:
            return None
        _, _, key = heapq.heappop(self._heap)
        self._queued.discard(key)
        self._dispatched += 1
        return self._records[key].url

    def note_redirect(self, url: str, final_url: str) -> bool:
        """
        Record where a fetched page actually landed: the landing URL counts as
        visited, and a same-site landing origin joins the crawl scope.
        Returns True when the scope grew.
        """
        final_key = canonicalize_url(final_url)
        if not final_url or final_key == canonicalize_url(url):
            return False
        self._seen.add(final_key)

        origin = origin_of(final_url)
        if not origin or origin in self._origins:
            return False
        if not is_same_site(self.target.normalized_origin, origin):
            logger.info("%s redirected off-site to %s", url, final_url)
            return False
        self._origins.add(origin)
        logger.info("Following same-site redirect: %s -> %s", self.target.normalized_origin, origin)
        return True

    # -----------------------------
    # Visit lifecycle
    # -----------------------------
    def _terminate(self, url: str, status: VisitStatus, error: Optional[str]) -> VisitRecord:
        key = canonicalize_url(url)
        rec = self._records.get(key)
        if rec is None:
            raise ValueError(f"Unknown visit: {url}")
        if rec.terminal:
            raise ValueError(f"Visit already terminal ({rec.status.value}): {url}")
        if key in self._queued:
            raise ValueError(f"Visit was never dequeued: {url}")
        rec.status = status
        rec.error = error
        return rec

    def mark_fetched(self, url: str) -> VisitRecord:
        return self._terminate(url, VisitStatus.FETCHED, None)

    def mark_failed(self, url: str, error: str) -> VisitRecord:
        return self._terminate(url, VisitStatus.FAILED, error)

    def discard_pending(self) -> int:
        """Drop queued-but-never-dequeued entries (run end). Returns how many."""
        dropped = len(self._heap)
        for _, _, key in self._heap:
            self._records.pop(key, None)
            self._seen.discard(key)
        self._heap.clear()
        self._queued.clear()
        if dropped:
            logger.debug("Discarded %d pending URLs for %s", dropped, self.target.url)
        return dropped
