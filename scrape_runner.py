from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import time
from contextlib import AsyncExitStack
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
from dotenv import load_dotenv
from pydantic import ValidationError

from config import HTML_POLICIES, PROFILES, RENDERER_BROWSER, RENDERERS, ScraperConfig, load_crawl_assets
from crawl.controller import CrawlController
from crawl.render import PageRenderer, browser_available, open_renderer
from crawl.report import Reporter, summary_metrics
from errors import InputValidationError
from schemas import FinalSummary, ScrapeInput
from storage import Dataset, OutputSink, save_emails_csv, save_metrics

logger = logging.getLogger("Main")


# -----------------------------
# Input
# -----------------------------
def _format_validation_error(e: ValidationError) -> str:
    parts: List[str] = []
    for err in e.errors():
        loc = ".".join(str(x) for x in err.get("loc", ()) if x != "__root__")
        msg = str(err.get("msg", "")).removeprefix("Value error, ")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts) or str(e)


def parse_input(data: Any) -> ScrapeInput:
    """Validate an input document; the only step allowed to fail the process."""
    if not isinstance(data, dict):
        raise InputValidationError("input must be a JSON object")
    try:
        return ScrapeInput.model_validate(data)
    except ValidationError as e:
        raise InputValidationError(_format_validation_error(e)) from e


def load_input(path: str | Path) -> Dict[str, Any]:
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise InputValidationError(f"input file not found: {path}") from e
    except json.JSONDecodeError as e:
        raise InputValidationError(f"input file is not valid JSON: {path}: {e}") from e
    if not isinstance(data, dict):
        raise InputValidationError(f"input file must hold a JSON object: {path}")
    return data


def resolve_config(scrape_input: ScrapeInput, cfg: ScraperConfig) -> ScraperConfig:
    try:
        resolved = scrape_input.apply_to(cfg).validate()
    except ValueError as e:
        raise InputValidationError(str(e)) from e

    if resolved.renderer == RENDERER_BROWSER and not browser_available():
        raise InputValidationError(
            "renderer='browser' needs Playwright: pip install 'contact-crawler[browser]' "
            "&& playwright install chromium"
        )
    return resolved


def _log_configuration(urls: List[str], cfg: ScraperConfig) -> None:
    logger.info("Starting email scraper with configuration:")
    logger.info("URLs: %s", ", ".join(urls))
    logger.info("Max Concurrency: %d", cfg.max_concurrency)
    logger.info("Max Requests: %d", cfg.max_pages_per_crawl)
    logger.info("Renderer: %s (headless=%s)", cfg.renderer, cfg.headless)
    logger.info("Timeout: %dms (content wait %dms)", cfg.navigation_timeout_ms, cfg.content_timeout_ms)
    logger.info("Request Delay: %dms", cfg.request_delay_ms)
    logger.info("HTML policy: %s, social profiles: %s", cfg.html_policy, cfg.extract_social)


# -----------------------------
# Run
# -----------------------------
async def run_scrape(
        scrape_input: ScrapeInput,
        cfg: ScraperConfig,
        sink: OutputSink,
        *,
        renderer: Optional[PageRenderer] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FinalSummary:
    """
    Crawl every target (one at a time) and report.

    Raises InputValidationError before any network activity on bad input;
    every later failure ends up in the summaries instead.
    """
    cfg = resolve_config(scrape_input, cfg)
    urls = scrape_input.target_urls()
    assets = load_crawl_assets(cfg)
    _log_configuration(urls, cfg)

    reporter = Reporter(sink, include_social=cfg.extract_social)
    t0 = time.perf_counter()

    async with AsyncExitStack() as stack:
        if renderer is None:
            renderer = await open_renderer(cfg, stack, transport=transport)

        for url in urls:
            # Fresh controller per target: no frontier/email state shared across targets.
            controller = CrawlController(url, cfg, assets, renderer, sink)
            summary = await controller.run()
            reporter.add(summary)

    final = reporter.finalize(time.perf_counter() - t0)
    logger.info("Scrape complete. Found %d unique emails.", final.total_emails)
    return final


def run(
        scrape_input: ScrapeInput,
        cfg: ScraperConfig,
        sink: OutputSink,
        **kwargs: Any,
) -> FinalSummary:
    """
    Sync wrapper around run_scrape().

    Note:
      If you are running inside an existing event loop (e.g., Jupyter),
      await run_scrape(...) instead.
    """
    try:
        return asyncio.run(run_scrape(scrape_input, cfg, sink, **kwargs))
    except RuntimeError as e:
        msg = str(e).lower()
        if "running event loop" in msg or "asyncio.run()" in msg:
            raise RuntimeError(
                "run() was called from a running event loop. "
                "Use: await run_scrape(scrape_input, cfg, sink) instead."
            ) from e
        raise


def write_outputs(final: FinalSummary, cfg: ScraperConfig) -> None:
    metrics_path = save_metrics(summary_metrics(final), cfg.output_dir / cfg.metrics_filename)
    logger.info("Saved metrics: %s", metrics_path)
    if cfg.write_csv:
        csv_path = save_emails_csv(final, cfg.output_dir / cfg.csv_filename)
        logger.info("Saved emails CSV: %s", csv_path)


# -----------------------------
# CLI
# -----------------------------
def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Bounded same-site crawler that collects contact emails.")
    parser.add_argument("--input", type=str, default=None, help="Path to a JSON input document")
    parser.add_argument("--url", type=str, default=None, help="Single start URL")
    parser.add_argument("--urls", type=str, nargs="+", default=None, help="Several start URLs (crawled one by one)")
    parser.add_argument("--profile", type=str, default="standard", choices=sorted(PROFILES), help="Default knob preset")
    parser.add_argument("--output-dir", type=str, default="output", help="Directory for dataset/metrics/CSV")
    parser.add_argument("--max-concurrency", type=int, default=None, help="Pages in flight per target")
    parser.add_argument("--max-pages", type=int, default=None, help="Page ceiling per target")
    parser.add_argument("--max-depth", type=int, default=None, help="Link depth limit (start page = 0)")
    parser.add_argument("--timeout-ms", type=int, default=None, help="Navigation timeout per page")
    parser.add_argument("--delay-ms", type=int, default=None, help="Minimum spacing between fetch starts")
    parser.add_argument("--renderer", type=str, default=None, choices=list(RENDERERS), help="Page renderer")
    parser.add_argument("--html-policy", type=str, default=None, choices=list(HTML_POLICIES), help="Raw-HTML pass policy")
    parser.add_argument("--social", action="store_true", help="Also collect Facebook page URLs")
    parser.add_argument("--no-headless", action="store_true", help="Show the browser window (renderer=browser)")
    parser.add_argument("--no-csv", action="store_true", help="Skip the per-email CSV")
    parser.add_argument("--log-level", type=str, default="INFO", help="DEBUG/INFO/WARNING/ERROR")
    return parser


def _input_from_args(args: argparse.Namespace) -> Dict[str, Any]:
    data: Dict[str, Any] = load_input(args.input) if args.input else {}

    if args.url is not None:
        data["url"] = args.url
    if args.urls is not None:
        data["urls"] = args.urls

    cli_overrides = {
        "maxConcurrency": args.max_concurrency,
        "maxPagesPerCrawl": args.max_pages,
        "maxDepth": args.max_depth,
        "navigationTimeoutMs": args.timeout_ms,
        "requestDelayMs": args.delay_ms,
        "renderer": args.renderer,
        "htmlPolicy": args.html_policy,
    }
    data.update({k: v for k, v in cli_overrides.items() if v is not None})
    if args.social:
        data["extractSocial"] = True
    if args.no_headless:
        data["headless"] = False
    return data


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()

    parser = build_arg_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    output_dir = Path(args.output_dir)
    try:
        scrape_input = parse_input(_input_from_args(args))
        cfg = ScraperConfig.from_env(args.profile, output_dir=output_dir, write_csv=not args.no_csv)
        cfg = resolve_config(scrape_input, cfg)
    except InputValidationError as e:
        logger.error("Invalid input: %s", e)
        return 2

    dataset = Dataset(cfg.dataset_path)
    dataset.clear()

    try:
        final = run(scrape_input, cfg, dataset)
    except InputValidationError as e:
        logger.error("Invalid input: %s", e)
        return 2

    write_outputs(final, cfg)
    logger.info("Saved dataset: %s", dataset.path)
    return 0


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
