"""
RouteAudit - Network observation
Browser-independent view of intercepted exchanges, the observer interface the
page visitor fans them out to, and the idle tracker built on top of it.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Optional

ASYNC_RESOURCE_TYPES = frozenset({"xhr", "fetch"})


@dataclass(frozen=True)
class NetworkExchange:
    """One request seen by the browser (and its response, once finished)."""

    method: str
    url: str
    resource_type: str
    status: Optional[int] = None
    content_type: Optional[str] = None
    failure: Optional[str] = None

    @property
    def is_async(self) -> bool:
        return self.resource_type in ASYNC_RESOURCE_TYPES


class NetworkObserver:
    """Receives request lifecycle events from the page visitor."""

    def on_request_started(self, exchange: NetworkExchange):
        pass

    def on_request_finished(self, exchange: NetworkExchange):
        pass

    def on_request_failed(self, exchange: NetworkExchange):
        pass


class IdleTracker(NetworkObserver):
    """Counts outstanding XHR/fetch calls and the time since the last one settled."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self.outstanding = 0
        self.last_finished_at = clock()

    def reset(self):
        self.outstanding = 0
        self.last_finished_at = self._clock()

    def on_request_started(self, exchange: NetworkExchange):
        if exchange.is_async:
            self.outstanding += 1

    def on_request_finished(self, exchange: NetworkExchange):
        self._settle(exchange)

    def on_request_failed(self, exchange: NetworkExchange):
        self._settle(exchange)

    def _settle(self, exchange: NetworkExchange):
        if not exchange.is_async:
            return
        self.outstanding = max(0, self.outstanding - 1)
        self.last_finished_at = self._clock()

    def is_idle(self, threshold_s: float) -> bool:
        return self.outstanding == 0 and (self._clock() - self.last_finished_at) >= threshold_s

    async def wait_for_idle(self, threshold_s: float, cap_s: float, poll_s: float = 0.05) -> bool:
        """Poll until idle or until cap_s elapses. Returns True if idle was reached."""
        deadline = self._clock() + cap_s
        while True:
            if self.is_idle(threshold_s):
                return True
            if self._clock() >= deadline:
                return False
            await asyncio.sleep(poll_s)
