from __future__ import annotations

import asyncio
import logging
import time
from typing import Dict, List, Optional, Set

from config import CrawlAssets, ScraperConfig
from crawl.extract import Extractor, extract_links
from crawl.filters import is_excluded_email, is_valid_email, normalize_target
from crawl.frontier import Frontier
from crawl.render import PageRenderer
from errors import RenderError
from schemas import CrawlTarget, EmailRecord, RenderedPage, RunStatus, RunSummary, utc_now
from storage import OutputSink

logger = logging.getLogger("Controller")


class RequestSpacer:
    """
    Ensures >= min_delay_s between fetch starts for one target.

    Keeps traffic polite; waiting here is the only suspension besides the render call.
    """

    def __init__(self, min_delay_s: float) -> None:
        self._min_delay_s = max(0.0, float(min_delay_s))
        self._lock = asyncio.Lock()
        self._last_ts: Optional[float] = None

    async def wait(self) -> None:
        if self._min_delay_s <= 0:
            return

        async with self._lock:
            now = time.monotonic()
            if self._last_ts is not None:
                delta = now - self._last_ts
                if delta < self._min_delay_s:
                    await asyncio.sleep(self._min_delay_s - delta)
            self._last_ts = time.monotonic()


class CrawlController:
    """
    Drives one crawl target to completion.

    Owns the target's email set and run summary; visit state lives in the
    frontier. Up to cfg.max_concurrency renders may be in flight, but all
    state mutation happens under one lock, so emission order follows page
    completion order (page visit order when max_concurrency == 1).
    """

    def __init__(
            self,
            target_url: str,
            cfg: ScraperConfig,
            assets: CrawlAssets,
            renderer: PageRenderer,
            sink: OutputSink,
            extractor: Optional[Extractor] = None,
    ) -> None:
        self.target_url = (target_url or "").strip()
        self.cfg = cfg
        self.assets = assets
        self.renderer = renderer
        self.sink = sink
        self.extractor = extractor or Extractor(policy=cfg.html_policy, extract_social=cfg.extract_social)

        self.summary = RunSummary(target_url=self.target_url)
        self.target: Optional[CrawlTarget] = None
        self.frontier: Optional[Frontier] = None

        self._emails: Dict[str, EmailRecord] = {}
        self._social: Dict[str, None] = {}
        self._last_error: Optional[str] = None
        self._lock = asyncio.Lock()
        self._spacer = RequestSpacer(cfg.request_delay_s)

    # -----------------------------
    # Per-page work
    # -----------------------------
    def _accept(self, candidate: str) -> bool:
        if not is_valid_email(candidate, self.assets.disallowed_substrings):
            return False
        return not is_excluded_email(candidate, self.assets.excluded_domains, self.assets.excluded_prefixes)

    def _record_emails(self, candidates: List[str], page_url: str) -> List[EmailRecord]:
        new: List[EmailRecord] = []
        for cand in candidates:
            key = cand.strip().lower()
            if key in self._emails or not self._accept(key):
                continue
            rec = EmailRecord(email=key, source_url=page_url)
            self.sink.append({"url": self.target_url, "email": rec.email, "foundOn": rec.source_url})
            self._emails[key] = rec
            self.summary.emails.append(rec)
            new.append(rec)
        return new

    async def _fail(self, url: str, error: str) -> None:
        async with self._lock:
            self.frontier.mark_failed(url, error)
            self._last_error = error

    async def _visit(self, url: str) -> None:
        depth = self.frontier.record(url).depth

        await self._spacer.wait()
        logger.info("Processing %s", url)

        try:
            page: RenderedPage = await self.renderer.render(url, self.cfg.navigation_timeout_s)
        except RenderError as e:
            logger.warning("Request failed: %s", e)
            await self._fail(url, str(e))
            return
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Request failed: %s (%r)", url, e)
            await self._fail(url, f"other: {e!r} ({url})")
            return

        try:
            candidates = self.extractor.extract_page(page)
            links = extract_links(page, self.assets.priority_paths, depth=depth + 1)
            social = self.extractor.social_profiles(page)
        except Exception as e:
            logger.warning("Extraction failed on %s: %r", url, e)
            candidates, links, social = [], [], []

        async with self._lock:
            self.frontier.mark_fetched(url)
            self.frontier.note_redirect(url, page.final_url)
            new = self._record_emails(candidates, url)
            queued = sum(1 for link in links if self.frontier.enqueue(link))
            for profile in social:
                self._social.setdefault(profile, None)

        logger.info("Found %d emails on %s (%d new, %d links queued)", len(candidates), url, len(new), queued)

    # -----------------------------
    # Run loop
    # -----------------------------
    def _finish(self, error: Optional[str] = None) -> RunSummary:
        s = self.summary
        s.finished_at = utc_now()
        s.social_profiles = list(self._social)

        if self.frontier is None:
            s.status = RunStatus.FAILED
            s.error = error
            return s

        s.pages_visited = self.frontier.pages_fetched
        s.pages_failed = self.frontier.pages_failed

        if error is not None:
            s.status = RunStatus.FAILED
            s.error = error
        elif s.pages_visited == 0:
            s.status = RunStatus.FAILED
            s.error = self._last_error or "no pages fetched"
        elif s.pages_failed > 0:
            s.status = RunStatus.PARTIAL_FAILURE
            s.error = self._last_error
        else:
            s.status = RunStatus.SUCCESS
        return s

    async def run(self) -> RunSummary:
        origin = normalize_target(self.target_url)
        if origin is None:
            logger.error("Skipping %r: valid http(s) URL required", self.target_url)
            return self._finish(error=f"Valid http(s) URL required: {self.target_url!r}")

        self.target = CrawlTarget(url=self.target_url, normalized_origin=origin)
        self.frontier = Frontier(
            self.target,
            max_pages=self.cfg.max_pages_per_crawl,
            skip_extensions=self.assets.skip_extensions,
            max_depth=self.cfg.max_depth,
        )
        self.frontier.seed(self.target_url)

        max_in_flight = max(1, int(self.cfg.max_concurrency))
        in_flight: Set[asyncio.Task] = set()
        abort_error: Optional[str] = None
        try:
            while True:
                while len(in_flight) < max_in_flight:
                    url = self.frontier.dequeue()
                    if url is None:
                        break
                    in_flight.add(asyncio.create_task(self._visit(url)))

                if not in_flight:
                    break

                done, in_flight = await asyncio.wait(in_flight, return_when=asyncio.FIRST_COMPLETED)
                errors = [t.exception() for t in done if not t.cancelled() and t.exception() is not None]
                if errors:
                    raise errors[0]
        except Exception as e:
            # Page failures never get here; this is the sink or the frontier breaking.
            logger.error("Target %s aborted: %r", self.target_url, e)
            abort_error = f"other: {e!r}"
        finally:
            for task in in_flight:
                task.cancel()
            if in_flight:
                await asyncio.gather(*in_flight, return_exceptions=True)

        self.frontier.discard_pending()
        summary = self._finish(abort_error)
        logger.info(
            "Target %s finished: status=%s pages=%d failed=%d emails=%d",
            self.target_url,
            summary.status.value,
            summary.pages_visited,
            summary.pages_failed,
            len(summary.emails),
        )
        return summary
