"""
RouteAudit - Domain records
Probe categories, fingerprints, findings and remediation records shared by
the crawler, the probe engine and the aggregator.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class ProbeCategory(str, Enum):
    """Closed set of probe tags a URL can be planned for."""

    SQLI = "sqli"
    XSS = "xss"
    IDOR = "idor"
    CSRF = "csrf"
    CORS = "cors"
    HEADERS = "headers"
    JWT = "jwt"
    SSRF = "ssrf"
    DIRECTORY_TRAVERSAL = "directory_traversal"
    CRYPTOGRAPHIC_FAILURES = "cryptographic_failures"
    INSECURE_DESIGN = "insecure_design"
    VULNERABLE_COMPONENTS = "vulnerable_components"
    INTEGRITY_FAILURES = "integrity_failures"
    LOGGING_FAILURES = "logging_failures"
    API_VERSIONING = "api_versioning"

    @classmethod
    def parse(cls, raw: Any) -> Optional["ProbeCategory"]:
        """Map a loose tag ("SQLi", " xss ") to a category, or None if unknown."""
        if isinstance(raw, cls):
            return raw
        if not isinstance(raw, str):
            return None
        try:
            return cls(raw.strip().lower())
        except ValueError:
            return None


CATEGORY_ORDER: Dict[ProbeCategory, int] = {c: i for i, c in enumerate(ProbeCategory)}

OWASP_CATEGORIES: Dict[ProbeCategory, str] = {
    ProbeCategory.IDOR: "A01 - Broken Access Control",
    ProbeCategory.CSRF: "A01 - Broken Access Control",
    ProbeCategory.API_VERSIONING: "A01 - Broken Access Control",
    ProbeCategory.CRYPTOGRAPHIC_FAILURES: "A02 - Cryptographic Failures",
    ProbeCategory.SQLI: "A03 - Injection",
    ProbeCategory.XSS: "A03 - Injection",
    ProbeCategory.DIRECTORY_TRAVERSAL: "A03 - Injection",
    ProbeCategory.INSECURE_DESIGN: "A04 - Insecure Design",
    ProbeCategory.HEADERS: "A05 - Security Misconfiguration",
    ProbeCategory.CORS: "A05 - Security Misconfiguration",
    ProbeCategory.VULNERABLE_COMPONENTS: "A06 - Vulnerable and Outdated Components",
    ProbeCategory.JWT: "A07 - Identification and Authentication Failures",
    ProbeCategory.INTEGRITY_FAILURES: "A08 - Software and Data Integrity Failures",
    ProbeCategory.LOGGING_FAILURES: "A09 - Security Logging and Monitoring Failures",
    ProbeCategory.SSRF: "A10 - Server-Side Request Forgery",
}

SEVERITIES = ("critical", "high", "medium", "low")
PRIORITIES = ("P0", "P1", "P2", "P3")
EFFORT_LEVELS = ("low", "med", "high")


def normalize_severity(raw: Any) -> str:
    """Fold a severity label into critical/high/medium/low (info and unknown become low)."""
    sev = str(raw or "").strip().lower()
    if sev == "moderate":
        sev = "medium"
    return sev if sev in SEVERITIES else "low"


@dataclass(frozen=True)
class EndpointKey:
    """An API endpoint observed during the crawl: (method, fragment-less URL)."""

    method: str
    url: str

    def __str__(self) -> str:
        return f"{self.method} {self.url}"

    @classmethod
    def parse(cls, raw: str) -> "EndpointKey":
        """Parse "POST https://x/api" (or a bare URL, treated as GET)."""
        text = str(raw or "").strip()
        head, _, rest = text.partition(" ")
        if rest and head.isalpha() and head.upper() == head:
            return cls(method=head, url=rest.strip())
        return cls(method="GET", url=text)


@dataclass(frozen=True)
class Fingerprint:
    """Single-request characterization of a route."""

    url: str
    status: Optional[int] = None
    server: Optional[str] = None
    tech_hints: Tuple[str, ...] = ()
    cookies: Tuple[str, ...] = ()
    content_type: Optional[str] = None
    db_hints: Tuple[str, ...] = ()
    error_hints: Tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "status": self.status,
            "server": self.server,
            "techHints": list(self.tech_hints),
            "cookies": list(self.cookies),
            "contentType": self.content_type,
            "dbHints": list(self.db_hints),
            "errorHints": list(self.error_hints),
        }


@dataclass(frozen=True)
class Finding:
    """A single positive probe result."""

    route: str
    attack: ProbeCategory
    evidence: str
    severity: str  # critical, high, medium, low
    payload: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "route": self.route,
            "attack": self.attack.value,
            "payload": self.payload,
            "evidence": self.evidence,
            "severity": self.severity,
        }


@dataclass(frozen=True)
class ResourceLink:
    type: str
    title: str
    url: str
    youtube_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "title": self.title,
            "url": self.url,
            "youtube_id": self.youtube_id,
        }


@dataclass(frozen=True)
class Solution:
    """Remediation guidance attached to a finding."""

    solution: str
    remediation_steps: Tuple[str, ...]
    priority: str  # P0..P3
    code_snippet: Optional[str] = None
    resource_links: Tuple[ResourceLink, ...] = ()
    cwe_cve: Optional[str] = None
    estimated_effort: str = "med"
    confidence: str = "high"
    waf_rules: Tuple[str, ...] = ()
    notes: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "solution": self.solution,
            "remediation_steps": list(self.remediation_steps),
            "code_snippet": self.code_snippet,
            "resource_links": [link.to_dict() for link in self.resource_links],
            "cwe_cve": self.cwe_cve,
            "priority": self.priority,
            "estimated_effort": self.estimated_effort,
            "confidence": self.confidence,
            "waf_rules": list(self.waf_rules),
            "notes": self.notes,
        }


@dataclass(frozen=True)
class AuditedFinding:
    """A finding paired with its remediation."""

    finding: Finding
    solution: Solution

    @property
    def severity(self) -> str:
        return self.finding.severity

    @property
    def attack(self) -> ProbeCategory:
        return self.finding.attack

    def to_dict(self) -> dict:
        data = self.finding.to_dict()
        data["owasp"] = OWASP_CATEGORIES.get(self.finding.attack, "Unknown")
        data["solution"] = self.solution.to_dict()
        return data


@dataclass
class CrawlSnapshot:
    """Pages and endpoints known at one point of a crawl."""

    generated_at: str
    pages: List[str] = field(default_factory=list)
    api_endpoints: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "generatedAt": self.generated_at,
            "pages": list(self.pages),
            "apiEndpoints": list(self.api_endpoints),
        }
