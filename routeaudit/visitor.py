"""
RouteAudit - Page Visitor
Loads one page in the shared Playwright context, blocks heavy resources,
waits for XHR/fetch activity to settle and returns same-host links.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from playwright.async_api import BrowserContext, Error as PlaywrightError, Page, Request, Route

from routeaudit.config import CrawlConfig
from routeaudit.network import IdleTracker, NetworkExchange, NetworkObserver
from routeaudit.urls import host_of, resolve_links

logger = logging.getLogger(__name__)

# -- SPA interaction tables --------------------------------------------------------
# The first element matching each selector is clicked once.

SPA_CLICK_TARGETS: List[Dict[str, str]] = [
    {"selector": 'a[href*="login"]', "label": "login"},
    {"selector": 'a[href*="register"]', "label": "register"},
    {"selector": 'a[href*="products"]', "label": "products"},
    {"selector": 'a[href*="basket"]', "label": "basket"},
    {"selector": 'a[href*="search"]', "label": "search"},
    {"selector": 'button[aria-label*="menu"]', "label": "menu"},
    {"selector": ".mat-button", "label": "material-button"},
    {"selector": ".mat-menu-trigger", "label": "material-menu"},
    {"selector": "mat-icon", "label": "material-icon"},
]

SPA_HASH_ROUTES = ["#/search", "#/login", "#/register"]

SPA_SEARCH_INPUT = 'input[placeholder*="search" i], input[type="search"], #searchQuery'
SPA_SEARCH_TEXT = "apple"

SPA_INTERACTION_SCRIPT = """
({selectors, hashRoutes, searchSelector, searchText}) => {
  window.scrollTo(0, document.body ? document.body.scrollHeight : 0);
  const clicked = [];
  for (const selector of selectors) {
    try {
      const el = document.querySelector(selector);
      if (el) { el.click(); clicked.push(selector); }
    } catch (e) {}
  }
  if (window.location.hash === '' || window.location.hash === '#/') {
    hashRoutes.forEach((route, i) => setTimeout(() => { window.location.hash = route; }, i * 200));
  }
  const input = document.querySelector(searchSelector);
  if (input) {
    input.focus();
    input.value = searchText;
    input.dispatchEvent(new Event('input', {bubbles: true}));
    input.dispatchEvent(new Event('change', {bubbles: true}));
  }
  return clicked;
}
"""


@dataclass
class PageVisit:
    """Outcome of one page visit."""

    url: str
    final_url: Optional[str] = None
    status: Optional[int] = None
    links: List[str] = field(default_factory=list)
    idle: bool = False
    clicked: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _exchange(request: Request, status: Optional[int] = None, content_type: Optional[str] = None,
              failure: Optional[str] = None) -> NetworkExchange:
    return NetworkExchange(
        method=request.method,
        url=request.url,
        resource_type=request.resource_type or "",
        status=status,
        content_type=content_type,
        failure=failure,
    )


class PageVisitor:
    """Visits pages one at a time inside a single browser context."""

    def __init__(self, context: BrowserContext, config: CrawlConfig, observers: Sequence[NetworkObserver] = ()):
        self.context = context
        self.config = config
        self.observers = list(observers)
        self._blocked = frozenset(config.blocked_resource_types)

    async def _filter_route(self, route: Route):
        if route.request.resource_type in self._blocked:
            await route.abort()
        else:
            await route.continue_()

    def _notify(self, event: str, exchange: NetworkExchange, tracker: IdleTracker):
        for observer in (tracker, *self.observers):
            try:
                getattr(observer, event)(exchange)
            except Exception as exc:
                logger.debug("Observer %s failed on %s: %s", type(observer).__name__, event, exc)

    async def _interact(self, page: Page) -> List[str]:
        """Nudge a single-page app into fetching more data. Failures only skip the nudge."""
        try:
            clicked = await page.evaluate(SPA_INTERACTION_SCRIPT, {
                "selectors": [entry["selector"] for entry in SPA_CLICK_TARGETS],
                "hashRoutes": SPA_HASH_ROUTES,
                "searchSelector": SPA_SEARCH_INPUT,
                "searchText": SPA_SEARCH_TEXT,
            })
        except PlaywrightError as exc:
            reason = str(exc).splitlines()[0] if str(exc) else type(exc).__name__
            logger.info("SPA interaction skipped on %s: %s", page.url, reason)
            return []
        if self.config.spa_settle_ms > 0:
            await asyncio.sleep(self.config.spa_settle_ms / 1000.0)
        clicked = [c for c in (clicked or []) if isinstance(c, str)]
        logger.debug("SPA interaction on %s clicked %d element(s)", page.url, len(clicked))
        return clicked

    async def visit(self, url: str) -> PageVisit:
        """Navigate to url and collect links. Navigation errors become a skipped visit."""
        tracker = IdleTracker()
        result = PageVisit(url=url)

        def on_request(request: Request):
            self._notify("on_request_started", _exchange(request), tracker)

        async def on_finished(request: Request):
            status, content_type = None, None
            try:
                response = await request.response()
                if response is not None:
                    status = response.status
                    content_type = response.headers.get("content-type")
            except PlaywrightError:
                pass
            self._notify("on_request_finished", _exchange(request, status, content_type), tracker)

        def on_failed(request: Request):
            self._notify("on_request_failed", _exchange(request, failure=request.failure), tracker)

        page = await self.context.new_page()
        try:
            await page.route("**/*", self._filter_route)
            page.on("request", on_request)
            page.on("requestfinished", on_finished)
            page.on("requestfailed", on_failed)

            tracker.reset()
            response = await page.goto(url, wait_until="domcontentloaded", timeout=self.config.nav_timeout_ms)
            result.status = response.status if response is not None else None

            if self.config.spa_interactions and host_of(page.url) == host_of(url):
                result.clicked = await self._interact(page)

            result.idle = await tracker.wait_for_idle(
                threshold_s=self.config.idle_threshold_ms / 1000.0,
                cap_s=self.config.idle_cap_ms / 1000.0,
                poll_s=self.config.idle_poll_ms / 1000.0,
            )

            result.final_url = page.url
            if host_of(result.final_url) != host_of(url):
                logger.info("Redirected off-host to %s, not following links", result.final_url)
                return result

            hrefs = await page.eval_on_selector_all("a[href]", "els => els.map(e => e.href)")
            result.links = resolve_links([h for h in hrefs if isinstance(h, str)], result.final_url)
        except PlaywrightError as exc:
            result.error = str(exc).splitlines()[0] if str(exc) else type(exc).__name__
            logger.warning("Skipping %s: %s", url, result.error)
        finally:
            try:
                await page.close()
            except PlaywrightError:
                pass
        return result
