"""
RouteAudit - Inputs
Start-URL validation, target-file loading and deterministic target selection.
All failures here are fatal and happen before any network activity.
"""

import json
import re
from pathlib import Path
from typing import Any, List, Optional

from routeaudit.models import EndpointKey
from routeaudit.urls import is_http_url, normalize_endpoint

STATIC_ASSET_RE = re.compile(r"\.(?:png|jpe?g|gif|css|js|pdf|ico|svg|woff2?|ttf|mp4|mp3|avi|docx?)$", re.IGNORECASE)
ASSET_DIR_RE = re.compile(r"/(?:images?|img|pics?|media|assets|static)/", re.IGNORECASE)
INTERACTIVE_RE = re.compile(
    r"/(?:login|admin|dashboard|api|search|contact|register|auth|profile|account|manage|upload|download)",
    re.IGNORECASE,
)
HAS_PARAMS_RE = re.compile(r"\?[^=]+=")


class InputError(Exception):
    """Invalid start URL or target file; stops the run before any request is sent."""


def validate_start_url(url: Optional[str]) -> str:
    text = str(url or "").strip()
    if not text:
        raise InputError("A start URL is required")
    if not is_http_url(text):
        raise InputError(f"Start URL must be an absolute http(s) URL: {text!r}")
    return text


def parse_targets(data: Any) -> List[str]:
    """Flatten a target document into probe URLs.

    Accepts a flat array of URLs (legacy) or {"pages": [...], "apiEndpoints": [...]}
    where endpoints may be methodized ("POST https://host/api/x").
    """
    if isinstance(data, list):
        raw = list(data)
    elif isinstance(data, dict) and ("pages" in data or "apiEndpoints" in data):
        pages = data.get("pages") or []
        endpoints = data.get("apiEndpoints") or []
        if not isinstance(pages, list) or not isinstance(endpoints, list):
            raise InputError("'pages' and 'apiEndpoints' must be arrays")
        raw = [*pages, *endpoints]
    else:
        raise InputError("Invalid input format. Expected an array of URLs or an object with 'pages'/'apiEndpoints'")

    targets: List[str] = []
    seen = set()
    for item in raw:
        if not isinstance(item, str):
            continue
        url = EndpointKey.parse(item).url
        if not is_http_url(url):
            continue
        url = normalize_endpoint(url)
        if url not in seen:
            seen.add(url)
            targets.append(url)

    if not targets:
        raise InputError("No URLs found in input")
    return targets


def load_targets(path: Path) -> List[str]:
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as exc:
        raise InputError(f"Input file not found: {path}") from exc
    except (OSError, ValueError) as exc:
        raise InputError(f"Cannot read input file {path}: {exc}") from exc
    return parse_targets(data)


def target_cap(total: int) -> int:
    if total <= 30:
        return 15
    if total <= 60:
        return 20
    if total <= 100:
        return 25
    return 30


def is_interactive(url: str) -> bool:
    return bool(INTERACTIVE_RE.search(url) or HAS_PARAMS_RE.search(url))


def select_targets(urls: List[str], limit: Optional[int] = None) -> List[str]:
    """Drop static assets, put interactive URLs first, cap by list size."""
    kept = [u for u in urls if not STATIC_ASSET_RE.search(u.split("?", 1)[0]) and not ASSET_DIR_RE.search(u)]
    # Stable sort keeps the crawl order inside each group
    kept.sort(key=lambda u: 0 if is_interactive(u) else 1)
    cap = target_cap(len(urls)) if limit is None else max(1, int(limit))
    return kept[:cap]
