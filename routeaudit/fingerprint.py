"""
RouteAudit - Fingerprinter
One GET per route: status, server, technology, cookie, database and error
hints. Request failures are recorded as error hints, never raised.
"""

import logging
from typing import List

import httpx

from routeaudit.config import ProbeConfig
from routeaudit.models import Fingerprint
from routeaudit.signatures import DB_HINT_SIGNATURES, ERROR_HINT_SIGNATURES, TECH_BODY_SIGNATURES

logger = logging.getLogger(__name__)


def _cookie_names(response: httpx.Response) -> List[str]:
    names: List[str] = []
    for header in response.headers.get_list("set-cookie"):
        name = header.split("=", 1)[0].strip()
        if name and name not in names:
            names.append(name)
    return names


def _labels(signatures, text: str) -> List[str]:
    return [entry["label"] for entry in signatures if entry["pattern"].search(text)]


class Fingerprinter:
    def __init__(self, client: httpx.AsyncClient, config: ProbeConfig):
        self.client = client
        self.config = config

    async def fingerprint(self, url: str) -> Fingerprint:
        try:
            response = await self.client.get(url)
        except httpx.HTTPError as exc:
            logger.debug("Fingerprint request failed for %s: %s", url, exc)
            return Fingerprint(url=url, error_hints=(f"Request failed: {str(exc) or type(exc).__name__}",))

        body = response.text or ""
        tech: List[str] = []
        powered_by = response.headers.get("x-powered-by")
        if powered_by:
            tech.append(powered_by)
        for label in _labels(TECH_BODY_SIGNATURES, body):
            if label not in tech:
                tech.append(label)

        return Fingerprint(
            url=url,
            status=response.status_code,
            server=response.headers.get("server"),
            tech_hints=tuple(tech),
            cookies=tuple(_cookie_names(response)),
            content_type=response.headers.get("content-type"),
            db_hints=tuple(_labels(DB_HINT_SIGNATURES, body)),
            error_hints=tuple(_labels(ERROR_HINT_SIGNATURES, body)),
        )
