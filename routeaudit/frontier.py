"""
RouteAudit - Frontier
Crawl state plus the queue manager that owns it: normalization, same-host
filtering and dedup of discovered pages.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Deque, List, Optional, Set

from routeaudit.models import EndpointKey
from routeaudit.urls import host_of, is_http_url, normalize_page


@dataclass
class CrawlState:
    """Mutable state of one crawl session.

    Invariants: visited is a subset of discovered, a URL is queued at most
    once, and nothing in the queue has been visited.
    """

    visited: Set[str] = field(default_factory=set)
    discovered: Set[str] = field(default_factory=set)
    queue: Deque[str] = field(default_factory=deque)
    endpoints: Set[EndpointKey] = field(default_factory=set)
    # Discovery order, for snapshots
    order: List[str] = field(default_factory=list)

    def pages(self, limit: Optional[int] = None) -> List[str]:
        return list(self.order if limit is None else self.order[:limit])

    def endpoint_strings(self, limit: Optional[int] = None) -> List[str]:
        items = sorted(str(e) for e in self.endpoints)
        return items if limit is None else items[:limit]


class Frontier:
    """BFS queue manager bound to the start URL's host."""

    def __init__(self, start_url: str, max_pages: int = 20, state: Optional[CrawlState] = None):
        self.start_url = normalize_page(start_url)
        self.host = host_of(self.start_url)
        self.max_pages = max(1, int(max_pages))
        self.state = state if state is not None else CrawlState()

    def _accept(self, url: str) -> Optional[str]:
        if not is_http_url(url):
            return None
        normalized = normalize_page(url)
        if host_of(normalized) != self.host:
            return None
        return normalized

    def enqueue(self, url: str) -> bool:
        """Queue a page. False if off-host, invalid, or already seen in any form."""
        normalized = self._accept(url)
        if normalized is None:
            return False
        if normalized in self.state.visited or normalized in self.state.discovered:
            return False
        self.state.discovered.add(normalized)
        self.state.order.append(normalized)
        self.state.queue.append(normalized)
        return True

    def dequeue(self) -> Optional[str]:
        if not self.state.queue:
            return None
        return self.state.queue.popleft()

    def mark_visited(self, url: str):
        normalized = self._accept(url)
        if normalized is None:
            return
        if normalized not in self.state.discovered:
            self.state.discovered.add(normalized)
            self.state.order.append(normalized)
        self.state.visited.add(normalized)
        if normalized in self.state.queue:
            self.state.queue.remove(normalized)

    def should_continue(self) -> bool:
        return bool(self.state.queue) and len(self.state.visited) < self.max_pages

    def __len__(self) -> int:
        return len(self.state.queue)
