"""
RouteAudit - Endpoint Classifier
Turns completed XHR/fetch exchanges into API endpoint keys, skipping
transport and telemetry noise.
"""

import logging
import re
from typing import Any, Dict, List, Optional, Set
from urllib.parse import urlsplit

from routeaudit.models import EndpointKey
from routeaudit.network import NetworkExchange, NetworkObserver
from routeaudit.urls import host_of, normalize_endpoint

logger = logging.getLogger(__name__)

# -- Noise patterns ----------------------------------------------------------------
# Transport and analytics keywords only.

NOISE_PATTERNS: List[Dict[str, Any]] = [
    {"pattern": re.compile(r"^wss?://", re.IGNORECASE), "label": "websocket"},
    {"pattern": re.compile(r"/socket\.io/", re.IGNORECASE), "label": "socket.io"},
    {"pattern": re.compile(r"/sockjs(?:-node)?/", re.IGNORECASE), "label": "sockjs"},
    {"pattern": re.compile(r"/socket(?:/|\?|$)", re.IGNORECASE), "label": "socket"},
    {"pattern": re.compile(r"google-analytics\.com|googletagmanager\.com|/gtag/js", re.IGNORECASE), "label": "google-analytics"},
    {"pattern": re.compile(r"mixpanel|hotjar|matomo|amplitude|segment\.io|plausible\.io", re.IGNORECASE), "label": "analytics"},
    {"pattern": re.compile(r"/(?:collect|g/collect|j/collect)(?:\?|$)", re.IGNORECASE), "label": "collector"},
    {"pattern": re.compile(r"/telemetry(?:/|\?|$)", re.IGNORECASE), "label": "telemetry"},
    {"pattern": re.compile(r"/beacon(?:/|\?|$)", re.IGNORECASE), "label": "beacon"},
    {"pattern": re.compile(r"/(?:ping|health|healthz|heartbeat)(?:/|\?|$)", re.IGNORECASE), "label": "health-check"},
]

API_PATH_PATTERNS: List[Dict[str, Any]] = [
    {"pattern": re.compile(r"/api/", re.IGNORECASE), "label": "api"},
    {"pattern": re.compile(r"/rest/", re.IGNORECASE), "label": "rest"},
    {"pattern": re.compile(r"/graphql(?:/|\?|$)", re.IGNORECASE), "label": "graphql"},
]

STRUCTURED_CONTENT_TYPE = re.compile(r"(?:application|text)/(?:[\w.\-]+\+)?json|application/graphql", re.IGNORECASE)


def match_noise(url: str, patterns: Optional[List[Dict[str, Any]]] = None) -> Optional[str]:
    """Return the label of the first noise pattern matching url, if any."""
    for entry in (NOISE_PATTERNS if patterns is None else patterns):
        if entry["pattern"].search(url):
            return entry["label"]
    return None


def is_api_exchange(exchange: NetworkExchange, path_patterns: Optional[List[Dict[str, Any]]] = None) -> bool:
    """JSON-like response, a non-GET method, or an API-style path."""
    if exchange.content_type and STRUCTURED_CONTENT_TYPE.search(exchange.content_type):
        return True
    if exchange.method.upper() != "GET":
        return True
    path = urlsplit(exchange.url).path
    return any(e["pattern"].search(path) for e in (API_PATH_PATTERNS if path_patterns is None else path_patterns))


class EndpointClassifier(NetworkObserver):
    """Collects API endpoints for one origin host into a shared endpoint set."""

    def __init__(
        self,
        host: str,
        endpoints: Optional[Set[EndpointKey]] = None,
        noise_patterns: Optional[List[Dict[str, Any]]] = None,
    ):
        self.host = (host or "").lower()
        self.endpoints: Set[EndpointKey] = endpoints if endpoints is not None else set()
        self.noise_patterns = NOISE_PATTERNS if noise_patterns is None else noise_patterns
        self.skipped_noise = 0

    def on_request_finished(self, exchange: NetworkExchange):
        if exchange.is_async:
            self.classify(exchange)

    def classify(self, exchange: NetworkExchange) -> Optional[EndpointKey]:
        """Record the exchange as an endpoint if it qualifies; returns the key added."""
        if host_of(exchange.url) != self.host:
            return None
        label = match_noise(exchange.url, self.noise_patterns)
        if label:
            self.skipped_noise += 1
            logger.debug("Skipping %s exchange %s", label, exchange.url)
            return None
        if not is_api_exchange(exchange):
            return None

        key = EndpointKey(method=exchange.method.upper(), url=normalize_endpoint(exchange.url))
        if key not in self.endpoints:
            self.endpoints.add(key)
            logger.debug("API endpoint: %s", key)
        return key
