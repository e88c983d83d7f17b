"""
RouteAudit - Test Planner
Maps each target URL to the probe categories worth running against it.
Strategies are tried in order; the heuristic rule table always answers.
"""

import asyncio
import json
import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set
from urllib.parse import urlsplit

from routeaudit.ai_agent import AIAgentClient, AIAgentError, ai_agent_usable
from routeaudit.models import CATEGORY_ORDER, Fingerprint, ProbeCategory

logger = logging.getLogger(__name__)

Plan = Dict[str, List[ProbeCategory]]

C = ProbeCategory

# ── Fallback rule table ──────────────────────────────────────────
# "base" applies in every mode, "deep" is added on top in deep mode.

FALLBACK_RULES: List[Dict[str, Any]] = [
    {
        "label": "api",
        "pattern": re.compile(r"/api/|/rest/", re.IGNORECASE),
        "base": [C.IDOR, C.CORS],
        "deep": [C.JWT, C.API_VERSIONING, C.SSRF, C.INSECURE_DESIGN, C.INTEGRITY_FAILURES],
    },
    {
        "label": "query",
        "pattern": re.compile(r"\?."),
        "base": [C.SQLI, C.XSS],
        "deep": [C.DIRECTORY_TRAVERSAL, C.SSRF],
    },
    {
        "label": "auth",
        "pattern": re.compile(r"login|auth|register|signup", re.IGNORECASE),
        "base": [C.CSRF],
        "deep": [C.JWT, C.CRYPTOGRAPHIC_FAILURES],
    },
    {
        "label": "search",
        "pattern": re.compile(r"search|query|filter", re.IGNORECASE),
        "base": [C.SQLI, C.XSS],
        "deep": [C.SSRF],
    },
    {
        "label": "always",
        "pattern": None,
        "base": [C.HEADERS],
        "deep": [C.VULNERABLE_COMPONENTS, C.LOGGING_FAILURES, C.CRYPTOGRAPHIC_FAILURES],
    },
    {
        "label": "object-id",
        "pattern": re.compile(r"/\d+(?:[/?#]|$)|[?&]id=", re.IGNORECASE),
        "base": [],
        "deep": [C.IDOR],
    },
    {
        "label": "file",
        "pattern": re.compile(r"file|upload|download", re.IGNORECASE),
        "base": [],
        "deep": [C.DIRECTORY_TRAVERSAL, C.INTEGRITY_FAILURES],
    },
    {
        "label": "admin",
        "pattern": re.compile(r"admin|management|dashboard", re.IGNORECASE),
        "base": [],
        "deep": [C.INSECURE_DESIGN, C.IDOR],
    },
]


class PlannerError(Exception):
    """The planner service answered with something unusable."""


def _ordered(categories: Iterable[ProbeCategory]) -> List[ProbeCategory]:
    return sorted(set(categories), key=CATEGORY_ORDER.__getitem__)


def route_text(url: str) -> str:
    """Path plus query of url. Rules never look at the host."""
    parts = urlsplit(url)
    text = parts.path or "/"
    return f"{text}?{parts.query}" if parts.query else text


def fallback_categories(url: str, mode: str = "deep") -> List[ProbeCategory]:
    chosen: Set[ProbeCategory] = set()
    route = route_text(url)
    for rule in FALLBACK_RULES:
        pattern = rule["pattern"]
        if pattern is not None and not pattern.search(route):
            continue
        chosen.update(rule["base"])
        if mode == "deep":
            chosen.update(rule["deep"])
    return _ordered(chosen)


def fallback_plan(urls: Sequence[str], mode: str = "deep") -> Plan:
    """Deterministic plan from URL shape alone. Makes no network call."""
    return {url: fallback_categories(url, mode) for url in urls}


def refine_with_fingerprint(categories: List[ProbeCategory], fp: Optional[Fingerprint]) -> List[ProbeCategory]:
    """Drop SQL injection for routes that look NoSQL-backed, keeping the plan non-empty."""
    if fp is None or "NoSQL" not in fp.db_hints or "SQL" in fp.db_hints:
        return categories
    refined = [c for c in categories if c is not ProbeCategory.SQLI]
    return refined or [ProbeCategory.HEADERS]


# ── Strategies ───────────────────────────────────────────────────

class PlannerStrategy:
    name = "base"

    async def plan(self, urls: List[str], mode: str, fingerprints: Optional[Dict[str, Fingerprint]] = None) -> Plan:
        raise NotImplementedError


class HeuristicPlanner(PlannerStrategy):
    name = "heuristic"

    async def plan(self, urls: List[str], mode: str, fingerprints: Optional[Dict[str, Fingerprint]] = None) -> Plan:
        return fallback_plan(urls, mode)


PLANNER_PROMPT = """Given URLs, choose relevant tests from this closed list of tags:
["sqli","xss","idor","csrf","cors","headers","jwt","api_versioning","directory_traversal","cryptographic_failures","insecure_design","vulnerable_components","integrity_failures","logging_failures","ssrf"].

OWASP Top 10 2021 mapping:
- A01 Broken Access Control: idor, csrf, api_versioning
- A02 Cryptographic Failures: cryptographic_failures
- A03 Injection: sqli, xss, directory_traversal
- A04 Insecure Design: insecure_design
- A05 Security Misconfiguration: headers, cors
- A06 Vulnerable Components: vulnerable_components
- A07 Authentication Failures: jwt
- A08 Integrity Failures: integrity_failures
- A09 Logging Failures: logging_failures
- A10 SSRF: ssrf

Rules:
- API endpoints (/api/, /rest/): jwt, api_versioning, cors, idor, ssrf
- Search/query endpoints: sqli, xss, ssrf
- Authentication endpoints: csrf, jwt, cryptographic_failures
- Admin endpoints: insecure_design, idor
- File operations: directory_traversal, integrity_failures
- Always include: headers
Scan mode: {mode}. In quick mode keep each list short and favour high-impact tests.
Return STRICT JSON mapping every url to a string array, with no extra text.
Data:
{data}
JSON only."""


class RemotePlanner(PlannerStrategy):
    """Asks the configured AI provider for a plan."""

    name = "ai"

    def __init__(self, client: AIAgentClient, ai_cfg: Dict[str, Any], timeout: Optional[float] = None):
        self.client = client
        self.ai_cfg = ai_cfg
        self.timeout = float(timeout if timeout is not None else ai_cfg.get("timeout_seconds", 20))

    def build_prompt(self, urls: List[str], mode: str, fingerprints: Optional[Dict[str, Fingerprint]]) -> str:
        data = {
            "urls": urls,
            "fingerprints": [fp.to_dict() for fp in (fingerprints or {}).values()] or None,
        }
        return PLANNER_PROMPT.format(mode=mode, data=json.dumps(data, indent=2))

    async def plan(self, urls: List[str], mode: str, fingerprints: Optional[Dict[str, Fingerprint]] = None) -> Plan:
        prompt = self.build_prompt(urls, mode, fingerprints)
        try:
            raw = await asyncio.wait_for(self.client.complete_json(self.ai_cfg, prompt, max_tokens=2048), self.timeout)
        except asyncio.TimeoutError as exc:
            raise PlannerError(f"Planner did not answer within {self.timeout:.0f}s") from exc
        return self.parse_plan(raw, urls)

    @staticmethod
    def parse_plan(raw: Any, urls: List[str]) -> Plan:
        if not isinstance(raw, dict):
            raise PlannerError("Planner response is not a JSON object")
        plan: Plan = {}
        covered = 0
        for url in urls:
            tags = raw.get(url)
            if not isinstance(tags, list):
                plan[url] = [ProbeCategory.HEADERS]
                continue
            covered += 1
            categories = [c for c in (ProbeCategory.parse(t) for t in tags) if c is not None]
            plan[url] = _ordered(categories) or [ProbeCategory.HEADERS]
        if urls and not covered:
            raise PlannerError("Planner response does not cover any target URL")
        return plan


# ── Chain ────────────────────────────────────────────────────────

class ProbePlanner:
    """Tries each strategy in turn; the heuristic planner is always last."""

    def __init__(self, strategies: Optional[Sequence[PlannerStrategy]] = None):
        chain = [s for s in (strategies or []) if not isinstance(s, HeuristicPlanner)]
        chain.append(HeuristicPlanner())
        self.strategies = chain

    async def plan(self, urls: Iterable[str], mode: str = "deep",
                   fingerprints: Optional[Dict[str, Fingerprint]] = None) -> Plan:
        targets = list(dict.fromkeys(urls))
        if not targets:
            return {}

        plan: Plan = {}
        for strategy in self.strategies:
            try:
                plan = await strategy.plan(targets, mode, fingerprints)
                logger.info("Planned %d URL(s) with the %s planner", len(targets), strategy.name)
                break
            except (PlannerError, AIAgentError) as exc:
                logger.warning("%s planner failed, falling back: %s", strategy.name, exc)

        fingerprints = fingerprints or {}
        return {
            url: refine_with_fingerprint(plan.get(url) or [ProbeCategory.HEADERS], fingerprints.get(url))
            for url in targets
        }


def build_planner(ai_client: Optional[AIAgentClient], ai_cfg: Optional[Dict[str, Any]]) -> ProbePlanner:
    strategies: List[PlannerStrategy] = []
    if ai_client is not None and ai_agent_usable(ai_cfg) and ai_cfg.get("plan_tests", True):
        strategies.append(RemotePlanner(ai_client, ai_cfg))
    return ProbePlanner(strategies)
