"""
RouteAudit - Crawler
Breadth-first, one page at a time, through a single headless Chromium
context. Produces the quick and deep page/endpoint snapshots.
"""

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Optional

from playwright.async_api import async_playwright

from routeaudit.classifier import EndpointClassifier
from routeaudit.config import CrawlConfig
from routeaudit.frontier import CrawlState, Frontier
from routeaudit.inputs import validate_start_url
from routeaudit.models import CrawlSnapshot
from routeaudit.output import DEEP_SNAPSHOT_FILE, QUICK_SNAPSHOT_FILE, utc_timestamp, write_json_atomic
from routeaudit.visitor import PageVisit, PageVisitor

logger = logging.getLogger(__name__)

VisitFn = Callable[[str], Awaitable[PageVisit]]


@dataclass
class CrawlResult:
    start_url: str
    state: CrawlState
    quick: CrawlSnapshot
    deep: CrawlSnapshot
    failed_pages: int = 0


class Crawler:
    """Drives the frontier through the page visitor and writes snapshots."""

    def __init__(
        self,
        config: Optional[CrawlConfig] = None,
        output_dir: Optional[Path] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or CrawlConfig()
        self.output_dir = Path(output_dir) if output_dir else None
        self._clock = clock

    def snapshot(self, state: CrawlState, quick: bool) -> CrawlSnapshot:
        if quick:
            return CrawlSnapshot(
                generated_at=utc_timestamp(),
                pages=state.pages(self.config.quick_pages),
                api_endpoints=state.endpoint_strings(self.config.quick_endpoint_limit),
            )
        return CrawlSnapshot(
            generated_at=utc_timestamp(),
            pages=state.pages(),
            api_endpoints=state.endpoint_strings(),
        )

    def _write(self, name: str, snapshot: CrawlSnapshot):
        if self.output_dir is not None:
            write_json_atomic(self.output_dir / name, snapshot.to_dict())

    async def crawl(self, start_url: str, max_pages: Optional[int] = None) -> CrawlResult:
        """Crawl start_url's host with a headless browser."""
        start_url = validate_start_url(start_url)
        frontier = Frontier(start_url, max_pages=max_pages or self.config.max_pages)
        classifier = EndpointClassifier(frontier.host, frontier.state.endpoints)

        launch_args = {"headless": self.config.headless, "args": list(self.config.chromium_args)}
        if self.config.executable_path:
            launch_args["executable_path"] = str(self.config.executable_path)

        async with async_playwright() as p:
            browser = await p.chromium.launch(**launch_args)
            try:
                context = await browser.new_context(ignore_https_errors=True, user_agent=self.config.user_agent)
                visitor = PageVisitor(context, self.config, observers=[classifier])
                return await self.drain(frontier, visitor.visit)
            finally:
                await browser.close()

    async def drain(self, frontier: Frontier, visit: VisitFn) -> CrawlResult:
        """Visit queued pages until the queue is empty or the page budget is spent."""
        state = frontier.state
        frontier.enqueue(frontier.start_url)
        started = self._clock()
        quick: Optional[CrawlSnapshot] = None
        failed = 0

        while frontier.should_continue():
            url = frontier.dequeue()
            if url is None:
                break
            frontier.mark_visited(url)
            logger.info("[%d/%d] Visiting %s", len(state.visited), frontier.max_pages, url)

            visit_result = await visit(url)
            if not visit_result.ok:
                failed += 1
            else:
                if visit_result.final_url:
                    frontier.mark_visited(visit_result.final_url)
                added = sum(1 for link in visit_result.links if frontier.enqueue(link))
                if added:
                    logger.debug("Queued %d new page(s) from %s", added, url)

            elapsed_ms = (self._clock() - started) * 1000.0
            if quick is None and (
                len(state.visited) >= self.config.quick_pages or elapsed_ms >= self.config.quick_time_ms
            ):
                quick = self.snapshot(state, quick=True)
                self._write(QUICK_SNAPSHOT_FILE, quick)
                logger.info("Quick snapshot: %d page(s), %d endpoint(s)", len(quick.pages), len(quick.api_endpoints))

            self._write(DEEP_SNAPSHOT_FILE, self.snapshot(state, quick=False))

        if quick is None:
            quick = self.snapshot(state, quick=True)
            self._write(QUICK_SNAPSHOT_FILE, quick)
        deep = self.snapshot(state, quick=False)
        self._write(DEEP_SNAPSHOT_FILE, deep)

        logger.info(
            "Crawl finished: %d visited, %d discovered, %d endpoint(s), %d failed",
            len(state.visited), len(state.discovered), len(state.endpoints), failed,
        )
        return CrawlResult(start_url=frontier.start_url, state=state, quick=quick, deep=deep, failed_pages=failed)
