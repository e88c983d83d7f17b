import inspect

import pytest
from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError

from routeaudit.classifier import EndpointClassifier
from routeaudit.config import CrawlConfig
from routeaudit.models import EndpointKey
from routeaudit.network import NetworkObserver
from routeaudit.visitor import SPA_CLICK_TARGETS, SPA_HASH_ROUTES, SPA_INTERACTION_SCRIPT, PageVisitor


class FakeResponse:
    def __init__(self, status=200, headers=None):
        self.status = status
        self.headers = headers or {}


class FakeRequest:
    def __init__(self, url, resource_type="xhr", method="GET", status=200, content_type="application/json"):
        self.url = url
        self.resource_type = resource_type
        self.method = method
        self.failure = None
        self._response = FakeResponse(status, {"content-type": content_type} if content_type else {})

    async def response(self):
        return self._response


class FakeRoute:
    def __init__(self, request):
        self.request = request
        self.outcome = None

    async def abort(self):
        self.outcome = "abort"

    async def continue_(self):
        self.outcome = "continue"


class FakePage:
    """Replays scripted requests through the handlers the visitor registers."""

    def __init__(self, requests=(), final_url=None, hrefs=(), goto_error=None, evaluate_result=None,
                 evaluate_error=None, close_error=None):
        self.requests = list(requests)
        self.final_url = final_url
        self.hrefs = list(hrefs)
        self.goto_error = goto_error
        self.evaluate_result = evaluate_result
        self.evaluate_error = evaluate_error
        self.close_error = close_error
        self.url = "about:blank"
        self.handlers = {}
        self.route_pattern = None
        self.route_handler = None
        self.routes = []
        self.calls = []
        self.closed = False

    async def route(self, pattern, handler):
        self.route_pattern = pattern
        self.route_handler = handler

    def on(self, event, handler):
        self.handlers[event] = handler

    async def _emit(self, event, request):
        outcome = self.handlers[event](request)
        if inspect.isawaitable(outcome):
            await outcome

    async def goto(self, url, wait_until=None, timeout=None):
        self.calls.append(("goto", url, wait_until, timeout))
        if self.goto_error is not None:
            raise self.goto_error
        for request in self.requests:
            route = FakeRoute(request)
            self.routes.append(route)
            await self.route_handler(route)
            await self._emit("request", request)
            if route.outcome == "abort":
                request.failure = "net::ERR_FAILED"
                await self._emit("requestfailed", request)
            else:
                await self._emit("requestfinished", request)
        self.url = self.final_url or url
        return FakeResponse(200)

    async def evaluate(self, script, arg=None):
        self.calls.append(("evaluate", script, arg))
        if self.evaluate_error is not None:
            raise self.evaluate_error
        return self.evaluate_result

    async def eval_on_selector_all(self, selector, script):
        self.calls.append(("links", selector))
        return self.hrefs

    async def close(self):
        self.closed = True
        if self.close_error is not None:
            raise self.close_error


class FakeContext:
    def __init__(self, page):
        self.page = page
        self.pages_opened = 0

    async def new_page(self):
        self.pages_opened += 1
        return self.page


class RecordingObserver(NetworkObserver):
    def __init__(self):
        self.events = []

    def on_request_started(self, exchange):
        self.events.append(("started", exchange.url))

    def on_request_finished(self, exchange):
        self.events.append(("finished", exchange.url, exchange.status, exchange.content_type))

    def on_request_failed(self, exchange):
        self.events.append(("failed", exchange.url, exchange.failure))


class BrokenObserver(NetworkObserver):
    def on_request_started(self, exchange):
        raise RuntimeError("observer bug")

    def on_request_finished(self, exchange):
        raise KeyError("observer bug")


def fast_config(**overrides):
    values = dict(idle_threshold_ms=0, idle_cap_ms=50, idle_poll_ms=1, spa_settle_ms=0, nav_timeout_ms=1234)
    values.update(overrides)
    return CrawlConfig(**values)


# ── Resource blocking ───────────────────────────────────────────

@pytest.mark.parametrize("resource_type, outcome", [
    ("image", "abort"),
    ("stylesheet", "abort"),
    ("font", "abort"),
    ("media", "abort"),
    ("script", "continue"),
    ("document", "continue"),
    ("xhr", "continue"),
])
async def test_route_filter_blocks_heavy_resources(resource_type, outcome):
    visitor = PageVisitor(FakeContext(FakePage()), fast_config())
    route = FakeRoute(FakeRequest("https://site.test/x", resource_type=resource_type))
    await visitor._filter_route(route)
    assert route.outcome == outcome


async def test_visit_routes_every_request_through_the_filter():
    page = FakePage(requests=[
        FakeRequest("https://site.test/", resource_type="document", content_type="text/html"),
        FakeRequest("https://site.test/logo.png", resource_type="image", content_type=None),
    ])
    recorder = RecordingObserver()
    result = await PageVisitor(FakeContext(page), fast_config(), observers=[recorder]).visit("https://site.test/")

    assert result.ok
    assert page.route_pattern == "**/*"
    assert [r.outcome for r in page.routes] == ["continue", "abort"]
    assert ("failed", "https://site.test/logo.png", "net::ERR_FAILED") in recorder.events
    assert page.calls[0] == ("goto", "https://site.test/", "domcontentloaded", 1234)


# ── Observer fan-out ────────────────────────────────────────────

async def test_exchanges_fan_out_to_every_observer():
    page = FakePage(
        requests=[
            FakeRequest("https://site.test/", resource_type="document", content_type="text/html"),
            FakeRequest("https://site.test/api/items", status=201),
            FakeRequest("https://site.test/rest/cart", method="post", resource_type="fetch"),
        ],
        hrefs=["/login"],
    )
    recorder = RecordingObserver()
    classifier = EndpointClassifier("site.test")
    visitor = PageVisitor(FakeContext(page), fast_config(), observers=[BrokenObserver(), recorder, classifier])

    result = await visitor.visit("https://site.test/")

    assert result.ok
    assert result.idle
    assert result.links == ["https://site.test/login"]
    assert ("finished", "https://site.test/api/items", 201, "application/json") in recorder.events
    assert [e[0] for e in recorder.events] == ["started", "finished"] * 3
    assert classifier.endpoints == {
        EndpointKey("GET", "https://site.test/api/items"),
        EndpointKey("POST", "https://site.test/rest/cart"),
    }


# ── Links and redirects ─────────────────────────────────────────

async def test_links_are_resolved_and_kept_on_host():
    page = FakePage(hrefs=["/login", "https://other.test/", "mailto:team@site.test", "https://SITE.test/about/", "/login"])
    result = await PageVisitor(FakeContext(page), fast_config()).visit("https://site.test/")

    assert result.final_url == "https://site.test/"
    assert result.status == 200
    assert result.links == ["https://site.test/login", "https://site.test/about"]
    assert page.closed


async def test_off_host_redirect_yields_no_links():
    page = FakePage(final_url="https://other.test/landing", hrefs=["/login", "/about"])
    result = await PageVisitor(FakeContext(page), fast_config()).visit("https://site.test/out")

    assert result.ok
    assert result.final_url == "https://other.test/landing"
    assert result.links == []
    assert ("links", "a[href]") not in page.calls
    assert page.closed


# ── Navigation errors ───────────────────────────────────────────

@pytest.mark.parametrize("error", [
    PlaywrightError("net::ERR_NAME_NOT_RESOLVED at https://site.test/\nCall log:\n  - navigating"),
    PlaywrightTimeoutError("Timeout 1234ms exceeded."),
])
async def test_navigation_error_becomes_a_skip(error):
    page = FakePage(goto_error=error, hrefs=["/login"])
    result = await PageVisitor(FakeContext(page), fast_config()).visit("https://site.test/")

    assert not result.ok
    assert result.error == str(error).splitlines()[0]
    assert result.links == []
    assert page.closed


async def test_page_close_failure_is_ignored():
    page = FakePage(hrefs=["/a"], close_error=PlaywrightError("Target closed"))
    result = await PageVisitor(FakeContext(page), fast_config()).visit("https://site.test/")

    assert result.ok
    assert result.links == ["https://site.test/a"]
    assert page.closed


async def test_non_playwright_errors_still_close_the_page():
    page = FakePage(goto_error=RuntimeError("driver crashed"))
    with pytest.raises(RuntimeError):
        await PageVisitor(FakeContext(page), fast_config()).visit("https://site.test/")
    assert page.closed


# ── SPA interactions ────────────────────────────────────────────

async def test_spa_interactions_are_off_by_default():
    page = FakePage(hrefs=["/a"])
    result = await PageVisitor(FakeContext(page), fast_config()).visit("https://site.test/")

    assert result.clicked == []
    assert not [c for c in page.calls if c[0] == "evaluate"]


async def test_spa_interactions_run_between_navigation_and_link_collection():
    page = FakePage(hrefs=["/#/search"], evaluate_result=['a[href*="login"]', 42])
    result = await PageVisitor(FakeContext(page), fast_config(spa_interactions=True)).visit("https://site.test/")

    assert [c[0] for c in page.calls] == ["goto", "evaluate", "links"]
    _, script, arg = page.calls[1]
    assert script == SPA_INTERACTION_SCRIPT
    assert arg["selectors"] == [entry["selector"] for entry in SPA_CLICK_TARGETS]
    assert arg["hashRoutes"] == SPA_HASH_ROUTES
    assert arg["searchText"]
    assert result.clicked == ['a[href*="login"]']
    assert result.links == ["https://site.test/#/search"]


async def test_spa_interaction_failure_only_skips_the_nudge():
    page = FakePage(hrefs=["/a"], evaluate_error=PlaywrightError("Execution context was destroyed"))
    result = await PageVisitor(FakeContext(page), fast_config(spa_interactions=True)).visit("https://site.test/")

    assert result.ok
    assert result.clicked == []
    assert result.links == ["https://site.test/a"]
    assert page.closed


async def test_spa_interactions_skip_off_host_pages():
    page = FakePage(final_url="https://other.test/", hrefs=["/a"])
    result = await PageVisitor(FakeContext(page), fast_config(spa_interactions=True)).visit("https://site.test/")

    assert not [c for c in page.calls if c[0] == "evaluate"]
    assert result.links == []
