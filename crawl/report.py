from __future__ import annotations

import logging
from typing import Any, Dict, List

from schemas import FinalSummary, RunSummary
from storage import OutputSink

logger = logging.getLogger("Reporter")


class Reporter:
    """
    Collects one RunSummary per target and emits the per-target and final
    summary records. Read-only with respect to the summaries it is given.
    """

    def __init__(self, sink: OutputSink, include_social: bool = False) -> None:
        self.sink = sink
        self.include_social = include_social
        self._results: List[RunSummary] = []

    @property
    def results(self) -> List[RunSummary]:
        return list(self._results)

    def add(self, summary: RunSummary) -> None:
        self._results.append(summary)
        self.sink.append(summary.to_output(include_social=self.include_social))

    def finalize(self, duration_s: float) -> FinalSummary:
        # Union across targets, first-seen order.
        all_emails: Dict[str, None] = {}
        for summary in self._results:
            for email in summary.email_addresses:
                all_emails.setdefault(email, None)

        final = FinalSummary(
            total_urls=len(self._results),
            total_emails=len(all_emails),
            all_emails=list(all_emails),
            results=self.results,
            duration_seconds=max(0.0, float(duration_s)),
        )
        self.sink.append(final.to_output(include_social=self.include_social))

        logger.info(
            "Reported %d targets, %d unique emails in %.2fs",
            final.total_urls,
            final.total_emails,
            final.duration_seconds,
        )
        return final


def summary_metrics(final: FinalSummary) -> Dict[str, Any]:
    """Run metrics for metrics.json: status counts, page totals, duration."""
    status_counts: Dict[str, int] = {}
    pages_scraped = 0
    pages_failed = 0
    for r in final.results:
        status_counts[r.status.value] = status_counts.get(r.status.value, 0) + 1
        pages_scraped += r.pages_visited
        pages_failed += r.pages_failed

    n = final.total_urls
    success_n = status_counts.get("Success", 0) + status_counts.get("PartialFailure", 0)
    return {
        "total_urls": n,
        "total_emails": final.total_emails,
        "status_counts": status_counts,
        "success_rate": (success_n / n) if n else 0.0,
        "pages_scraped": pages_scraped,
        "pages_failed": pages_failed,
        "duration_seconds": final.duration_seconds,
    }
