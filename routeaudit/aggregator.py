"""
RouteAudit - Finding Aggregator
Normalizes and de-duplicates probe findings, then attaches remediation from
the first solution source that answers. Static defaults always answer.
"""

import asyncio
import dataclasses
import hashlib
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel, ValidationError, field_validator

from routeaudit.ai_agent import AIAgentClient, AIAgentError, ai_agent_usable
from routeaudit.models import (
    EFFORT_LEVELS,
    PRIORITIES,
    AuditedFinding,
    Finding,
    ResourceLink,
    Solution,
    normalize_severity,
)
from routeaudit.remediation import default_solution

logger = logging.getLogger(__name__)

CONFIDENCE_LEVELS = EFFORT_LEVELS


class SolutionError(Exception):
    """The solution service answered with something unusable."""


# ── Remote payload validation ────────────────────────────────────

def _clean_text(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    text = value.strip()
    return text or None


def _clean_level(value: Any, levels: Sequence[str]) -> Optional[str]:
    text = (_clean_text(value) or "").lower()
    if text in ("medium", "moderate"):
        text = "med"
    return text if text in levels else None


def _clean_list(value: Any) -> Optional[List[str]]:
    if not isinstance(value, list):
        return None
    items = [str(v).strip() for v in value if isinstance(v, (str, int, float)) and str(v).strip()]
    return items or None


class ResourceLinkPayload(BaseModel):
    type: str = "doc"
    title: str
    url: str
    youtube_id: Optional[str] = None

    @field_validator("type", mode="before")
    @classmethod
    def _type(cls, v):
        return _clean_text(v) or "doc"

    @field_validator("youtube_id", mode="before")
    @classmethod
    def _youtube_id(cls, v):
        return _clean_text(v)

    @field_validator("url")
    @classmethod
    def _url(cls, v: str) -> str:
        if not v.strip().lower().startswith(("http://", "https://")):
            raise ValueError("resource link must be an http(s) URL")
        return v.strip()


class SolutionPayload(BaseModel):
    """Solution service answer. Every field is optional; bad values become None."""

    solution: Optional[str] = None
    remediation_steps: Optional[List[str]] = None
    code_snippet: Optional[str] = None
    resource_links: Optional[List[ResourceLinkPayload]] = None
    cwe_cve: Optional[str] = None
    priority: Optional[str] = None
    estimated_effort: Optional[str] = None
    confidence: Optional[str] = None
    waf_rules: Optional[List[str]] = None
    notes: Optional[str] = None

    @field_validator("solution", "code_snippet", "cwe_cve", "notes", mode="before")
    @classmethod
    def _text(cls, v):
        return _clean_text(v)

    @field_validator("remediation_steps", "waf_rules", mode="before")
    @classmethod
    def _lists(cls, v):
        return _clean_list(v)

    @field_validator("resource_links", mode="before")
    @classmethod
    def _links(cls, v):
        if not isinstance(v, list):
            return None
        links = []
        for item in v:
            if not isinstance(item, dict):
                continue
            try:
                links.append(ResourceLinkPayload.model_validate(item))
            except ValidationError:
                continue
        return links or None

    @field_validator("priority", mode="before")
    @classmethod
    def _priority(cls, v):
        text = (_clean_text(v) or "").upper()
        return text if text in PRIORITIES else None

    @field_validator("estimated_effort", mode="before")
    @classmethod
    def _effort(cls, v):
        return _clean_level(v, EFFORT_LEVELS)

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, v):
        return _clean_level(v, CONFIDENCE_LEVELS)


def merge_solution(payload: SolutionPayload, fallback: Solution) -> Solution:
    """Fill every field the service left out from the category default."""
    links = fallback.resource_links
    if payload.resource_links:
        links = tuple(ResourceLink(l.type, l.title, l.url, l.youtube_id) for l in payload.resource_links)
    return Solution(
        solution=payload.solution or fallback.solution,
        remediation_steps=tuple(payload.remediation_steps or fallback.remediation_steps),
        priority=payload.priority or fallback.priority,
        code_snippet=payload.code_snippet or fallback.code_snippet,
        resource_links=links,
        cwe_cve=payload.cwe_cve or fallback.cwe_cve,
        estimated_effort=payload.estimated_effort or fallback.estimated_effort,
        confidence=payload.confidence or fallback.confidence,
        waf_rules=tuple(payload.waf_rules or ()),
        notes=payload.notes,
    )


# ── Solution sources ─────────────────────────────────────────────

class SolutionSource:
    name = "base"
    remote = False

    async def solve(self, finding: Finding) -> Solution:
        raise NotImplementedError


class DefaultSolutionSource(SolutionSource):
    name = "default"

    async def solve(self, finding: Finding) -> Solution:
        return default_solution(finding)


SOLUTION_PROMPT = """Analyze this vulnerability finding and return remediation guidance.

Finding JSON:
{finding}

Return strict JSON only with this schema:
{{"solution":"one sentence fix","remediation_steps":["step 1","step 2","verification step"],
"code_snippet":"working code or config example, or null",
"resource_links":[{{"type":"doc|blog|youtube","title":"...","url":"https://...","youtube_id":null}}],
"cwe_cve":"CWE-XXX or null","priority":"P0|P1|P2|P3","estimated_effort":"low|med|high",
"confidence":"low|med|high","waf_rules":["rule"],"notes":"context or null"}}

Rules:
- Priority: P0=critical, P1=high, P2=medium, P3=low
- Effort: low=<1 day, med=1-3 days, high=>3 days
- Headers: include nginx add_header examples
- XSS: include output encoding and CSP examples
- SQLi: include parameterized query examples"""


class RemoteSolutionSource(SolutionSource):
    """Asks the configured AI provider for remediation, at most max_calls times per run."""

    name = "ai"
    remote = True

    def __init__(self, client: AIAgentClient, ai_cfg: Dict[str, Any], timeout: Optional[float] = None,
                 max_calls: Optional[int] = None):
        self.client = client
        self.ai_cfg = ai_cfg
        self.timeout = float(timeout if timeout is not None else ai_cfg.get("timeout_seconds", 20))
        self.max_calls = int(max_calls if max_calls is not None else ai_cfg.get("max_solutions_per_run", 50))
        self.calls = 0

    @property
    def exhausted(self) -> bool:
        return self.calls >= self.max_calls

    @staticmethod
    def build_prompt(finding: Finding) -> str:
        data = {
            "route": finding.route[:500],
            "attack": finding.attack.value,
            "payload": (finding.payload or "")[:500] or None,
            "evidence": finding.evidence[:1800],
            "severity": finding.severity,
        }
        return SOLUTION_PROMPT.format(finding=json.dumps(data, ensure_ascii=True))

    async def solve(self, finding: Finding) -> Solution:
        if self.exhausted:
            raise SolutionError(f"solution budget of {self.max_calls} call(s) used up")
        self.calls += 1
        try:
            raw = await asyncio.wait_for(
                self.client.complete_json(self.ai_cfg, self.build_prompt(finding), max_tokens=1500),
                self.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise SolutionError(f"Solution service did not answer within {self.timeout:.0f}s") from exc
        try:
            payload = SolutionPayload.model_validate(raw)
        except ValidationError as exc:
            raise SolutionError(f"Invalid solution payload: {exc.error_count()} error(s)") from exc
        if payload.solution is None and payload.remediation_steps is None:
            raise SolutionError("Solution payload carries neither a solution nor remediation steps")
        return merge_solution(payload, default_solution(finding))


# ── Aggregator ───────────────────────────────────────────────────

def finding_key(finding: Finding) -> str:
    raw = f"{finding.route}|{finding.attack.value}|{finding.payload or ''}|{finding.evidence}"
    return hashlib.md5(raw.encode("utf-8")).hexdigest()


class FindingAggregator:
    """Severity normalization, de-duplication and solution attachment."""

    def __init__(
        self,
        sources: Optional[Sequence[SolutionSource]] = None,
        delay: float = 0.5,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        chain = [s for s in (sources or []) if not isinstance(s, DefaultSolutionSource)]
        chain.append(DefaultSolutionSource())
        self.sources = chain
        self.delay = delay
        self._sleep = sleep

    @staticmethod
    def normalize(findings: Iterable[Finding]) -> List[Finding]:
        seen = set()
        result: List[Finding] = []
        for finding in findings:
            finding = dataclasses.replace(finding, severity=normalize_severity(finding.severity))
            key = finding_key(finding)
            if key in seen:
                continue
            seen.add(key)
            result.append(finding)
        return result

    async def _solve(self, finding: Finding) -> Solution:
        for source in self.sources:
            if getattr(source, "exhausted", False):
                continue
            try:
                return await source.solve(finding)
            except (SolutionError, AIAgentError) as exc:
                logger.warning("%s solution source failed for %s on %s: %s",
                               source.name, finding.attack.value, finding.route, exc)
            finally:
                if source.remote and self.delay > 0:
                    await self._sleep(self.delay)
        return default_solution(finding)

    async def aggregate(self, findings: Iterable[Finding]) -> List[AuditedFinding]:
        unique = self.normalize(findings)
        audited: List[AuditedFinding] = []
        for i, finding in enumerate(unique, 1):
            logger.debug("[%d/%d] Attaching solution for %s on %s", i, len(unique), finding.attack.value, finding.route)
            audited.append(AuditedFinding(finding=finding, solution=await self._solve(finding)))
        return audited


def build_aggregator(ai_client: Optional[AIAgentClient], ai_cfg: Optional[Dict[str, Any]], delay: float = 0.5,
                     sleep: Callable[[float], Awaitable[None]] = asyncio.sleep) -> FindingAggregator:
    sources: List[SolutionSource] = []
    if ai_client is not None and ai_agent_usable(ai_cfg) and ai_cfg.get("generate_solutions", True):
        sources.append(RemoteSolutionSource(ai_client, ai_cfg))
    return FindingAggregator(sources, delay=delay, sleep=sleep)
