"""
RouteAudit - Probe Engine
Runs the planned probe categories against one URL concurrently.
Each probe is isolated: network errors, timeouts and parse errors only ever
cost that probe its findings.
"""

import asyncio
import base64
import binascii
import json
import logging
import re
import time
import uuid
from typing import Awaitable, Callable, Dict, Iterable, List, Optional
from urllib.parse import quote, urljoin, urlsplit, urlunsplit

import httpx
from bs4 import BeautifulSoup

from routeaudit.config import ProbeConfig
from routeaudit.models import Finding, ProbeCategory
from routeaudit.signatures import (
    CSRF_FIELD_PATTERNS,
    DESERIALIZATION_SIGNATURES,
    DISCLOSURE_HEADERS,
    EVIL_ORIGIN,
    FILE_PARAM_NAMES,
    IDOR_PARAM_NAMES,
    JWT_RE,
    OUTDATED_COMPONENT_SIGNATURES,
    SECRET_SIGNATURES,
    SECURITY_HEADERS_EXPECTED,
    SENSITIVE_PATHS,
    SQLI_BOOLEAN_PAIR,
    SQLI_ERROR_PAYLOADS,
    SQLI_ERROR_SIGNATURES,
    SSRF_ERROR_SIGNATURES,
    SSRF_METADATA_SIGNATURES,
    SSRF_PARAM_NAMES,
    SSRF_PAYLOADS,
    TRAVERSAL_PAYLOADS,
    TRAVERSAL_SIGNATURES,
    VERBOSE_ERROR_PAYLOADS,
    VERBOSE_ERROR_SIGNATURES,
    VERSION_RE,
    WEAK_JWT_ALGS,
    XSS_PAYLOAD_TEMPLATES,
    XSS_TOKEN_PREFIX,
    first_match,
)
from routeaudit.urls import host_of, is_http_url, origin_of, query_param_names, with_param

logger = logging.getLogger(__name__)

C = ProbeCategory

SERVER_VERSION_RE = re.compile(r"([A-Za-z][\w\-]*)/(\d+\.\d+(?:\.\d+)?)")
PATH_ID_RE = re.compile(r"/(\d+)(?=/|$)")
API_VERSION_RE = re.compile(r"/v(\d+)/", re.IGNORECASE)


def create_probe_client(config: ProbeConfig, transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    """Shared client for every probe: short timeout, no TLS checks, redirects followed."""
    return httpx.AsyncClient(
        verify=False,
        follow_redirects=True,
        timeout=config.request_timeout,
        headers={"User-Agent": config.user_agent},
        transport=transport,
    )


def _new_signature(signatures, body: str, baseline: str):
    """First signature present in body but absent from the baseline response."""
    for entry in signatures:
        match = entry["pattern"].search(body or "")
        if match and not entry["pattern"].search(baseline or ""):
            return entry["label"], match
    return None


def _is_html(response: httpx.Response) -> bool:
    return "html" in (response.headers.get("content-type") or "").lower()


def _cookie_attrs(set_cookie: str) -> List[str]:
    return [part.strip().lower() for part in set_cookie.split(";")[1:]]


def _cookie_name(set_cookie: str) -> str:
    return set_cookie.split("=", 1)[0].strip() or "unknown"


def _b64_json(segment: str) -> dict:
    padded = segment + "=" * (-len(segment) % 4)
    data = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8"))
    if not isinstance(data, dict):
        raise ValueError("JWT segment is not a JSON object")
    return data


def _clip(text: str, limit: int = 60) -> str:
    text = str(text or "")
    return text if len(text) <= limit else text[:limit] + "..."


class ProbeEngine:
    """Per-URL fan-out of probe categories over one shared httpx client."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        config: Optional[ProbeConfig] = None,
        mode: str = "deep",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.perf_counter,
    ):
        self.client = client
        self.config = config or ProbeConfig()
        self.mode = mode
        self.quick = mode == "quick"
        self._sleep = sleep
        self._clock = clock
        self._probes: Dict[ProbeCategory, Callable[[str], Awaitable[List[Finding]]]] = {
            C.SQLI: self._probe_sqli,
            C.XSS: self._probe_xss,
            C.IDOR: self._probe_idor,
            C.CSRF: self._probe_csrf,
            C.CORS: self._probe_cors,
            C.HEADERS: self._probe_headers,
            C.JWT: self._probe_jwt,
            C.DIRECTORY_TRAVERSAL: self._probe_directory_traversal,
            C.SSRF: self._probe_ssrf,
            C.CRYPTOGRAPHIC_FAILURES: self._probe_cryptographic_failures,
            C.INSECURE_DESIGN: self._probe_insecure_design,
            C.VULNERABLE_COMPONENTS: self._probe_vulnerable_components,
            C.INTEGRITY_FAILURES: self._probe_integrity_failures,
            C.LOGGING_FAILURES: self._probe_logging_failures,
            C.API_VERSIONING: self._probe_api_versioning,
        }

    @property
    def categories(self) -> List[ProbeCategory]:
        return list(self._probes)

    async def run(self, url: str, categories: Iterable[ProbeCategory]) -> List[Finding]:
        """Run every planned category against url and return all findings."""
        chosen = list(dict.fromkeys(c for c in categories if c in self._probes))
        if not chosen:
            return []
        results = await asyncio.gather(*(self._guarded(url, c) for c in chosen))
        findings = [f for batch in results for f in batch]
        logger.debug("%s: %d probe(s), %d finding(s)", url, len(chosen), len(findings))
        return findings

    async def _guarded(self, url: str, category: ProbeCategory) -> List[Finding]:
        try:
            return await self._probes[category](url)
        except Exception as exc:
            logger.debug("Probe %s failed on %s: %s", category.value, url, exc)
            return []

    async def _fetch(self, method: str, url: str, **kwargs) -> Optional[httpx.Response]:
        try:
            return await self.client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            logger.debug("%s %s failed: %s", method, url, str(exc) or type(exc).__name__)
            return None

    async def _pause(self):
        if self.config.request_delay > 0:
            await self._sleep(self.config.request_delay)

    def _finding(self, url: str, category: ProbeCategory, evidence: str, severity: str,
                 payload: Optional[str] = None) -> Finding:
        return Finding(route=url, attack=category, evidence=evidence, severity=severity, payload=payload)

    # ── SQL Injection ────────────────────────────────────────────────

    async def _probe_sqli(self, url: str) -> List[Finding]:
        params = query_param_names(url)
        param = params[0] if params else "q"
        baseline = await self._fetch("GET", url)
        if baseline is None:
            return []
        base_body = baseline.text
        known_errors = base_body if self.config.sqli_require_new_error else ""

        payloads = SQLI_ERROR_PAYLOADS[:2] if self.quick else SQLI_ERROR_PAYLOADS
        for payload in payloads:
            test_url = with_param(url, param, payload)
            resp = await self._fetch("GET", test_url)
            if resp is not None:
                hit = _new_signature(SQLI_ERROR_SIGNATURES, resp.text, known_errors)
                if hit:
                    label, match = hit
                    return [self._finding(
                        url, C.SQLI,
                        f"SQL error signature detected in response ({label}: '{_clip(match.group(0))}')",
                        "critical", test_url,
                    )]
            await self._pause()

        if self.quick:
            return []

        true_url = with_param(url, param, SQLI_BOOLEAN_PAIR[0])
        false_url = with_param(url, param, SQLI_BOOLEAN_PAIR[1])
        true_resp = await self._fetch("GET", true_url)
        await self._pause()
        false_resp = await self._fetch("GET", false_url)
        if true_resp is None or false_resp is None:
            return []

        base_len = max(len(base_body), 1)
        threshold = self.config.sqli_length_delta
        true_drift = abs(len(true_resp.text) - len(base_body)) / base_len
        delta = abs(len(true_resp.text) - len(false_resp.text)) / base_len
        if true_drift <= threshold and delta > threshold:
            return [self._finding(
                url, C.SQLI,
                f"Boolean condition changes the response: true/false length delta {delta * 100:.1f}%",
                "high", f"{true_url} vs {false_url}",
            )]
        return []

    # ── Cross-Site Scripting ─────────────────────────────────────────

    async def _probe_xss(self, url: str) -> List[Finding]:
        params = query_param_names(url)
        param = params[0] if params else "q"
        templates = XSS_PAYLOAD_TEMPLATES[:1] if self.quick else XSS_PAYLOAD_TEMPLATES

        reflected_token: Optional[Finding] = None
        for template in templates:
            token = XSS_TOKEN_PREFIX + uuid.uuid4().hex[:6]
            raw = template.format(t=token)
            test_url = with_param(url, param, quote(raw, safe=""))
            resp = await self._fetch("GET", test_url)
            if resp is not None:
                body = resp.text
                if raw in body:
                    return [self._finding(url, C.XSS, "XSS payload reflected unencoded in response", "high", test_url)]
                if token in body and reflected_token is None:
                    reflected_token = self._finding(
                        url, C.XSS, f"Probe token {token} reflected in response (payload encoded)", "medium", test_url,
                    )
            await self._pause()
        return [reflected_token] if reflected_token else []

    # ── IDOR ─────────────────────────────────────────────────────────

    def _idor_bodies_differ(self, a: Optional[httpx.Response], b: Optional[httpx.Response]) -> bool:
        if a is None or b is None or a.status_code != 200 or b.status_code != 200:
            return False
        min_len = self.config.idor_min_body_quick if self.quick else self.config.idor_min_body
        return a.text != b.text and len(a.text) > min_len and len(b.text) > min_len

    async def _probe_idor(self, url: str) -> List[Finding]:
        findings: List[Finding] = []
        parts = urlsplit(url)

        ids = list(PATH_ID_RE.finditer(parts.path))
        if ids:
            last = ids[-1]
            neighbor_path = parts.path[:last.start(1)] + str(int(last.group(1)) + 1) + parts.path[last.end(1):]
            neighbor = urlunsplit((parts.scheme, parts.netloc, neighbor_path, parts.query, ""))
            original, other = await asyncio.gather(self._fetch("GET", url), self._fetch("GET", neighbor))
            if self._idor_bodies_differ(original, other):
                findings.append(self._finding(
                    url, C.IDOR, "Sequential ID enumeration possible: neighbouring id returns different content",
                    "critical", neighbor,
                ))

        names = IDOR_PARAM_NAMES[:1] if self.quick else IDOR_PARAM_NAMES
        for name in names:
            first, second = with_param(url, name, "1"), with_param(url, name, "2")
            r1, r2 = await asyncio.gather(self._fetch("GET", first), self._fetch("GET", second))
            if self._idor_bodies_differ(r1, r2):
                findings.append(self._finding(
                    url, C.IDOR, f"Parameter '{name}' returns different resources for different ids",
                    "high", f"{first} vs {second}",
                ))
            await self._pause()
        return findings

    # ── CSRF ─────────────────────────────────────────────────────────

    async def _probe_csrf(self, url: str) -> List[Finding]:
        resp = await self._fetch("GET", url)
        if resp is None or not _is_html(resp):
            return []

        soup = BeautifulSoup(resp.text, "html.parser")
        post_forms = [f for f in soup.find_all("form") if str(f.get("method") or "get").strip().lower() == "post"]
        if not post_forms:
            return []

        findings: List[Finding] = []
        for form in post_forms:
            fields = [
                str(tag.get("name") or tag.get("id") or "")
                for tag in form.find_all(["input", "meta"])
            ]
            has_token = any(first_match(CSRF_FIELD_PATTERNS, name) for name in fields if name)
            if not has_token:
                action = urljoin(url, str(form.get("action") or "")) or url
                findings.append(self._finding(
                    url, C.CSRF, f"POST form without an anti-CSRF token field (action: {action})", "medium",
                ))

        if not self.quick:
            weak = [
                _cookie_name(c) for c in resp.headers.get_list("set-cookie")
                if not any(a.startswith("samesite") for a in _cookie_attrs(c))
            ]
            if weak:
                findings.append(self._finding(
                    url, C.CSRF, f"POST form served with cookies lacking SameSite: {', '.join(weak)}", "medium",
                ))
        return findings

    # ── CORS ─────────────────────────────────────────────────────────

    async def _probe_cors(self, url: str) -> List[Finding]:
        resp = await self._fetch(
            "OPTIONS", url,
            headers={"Origin": EVIL_ORIGIN, "Access-Control-Request-Method": "GET"},
        )
        if resp is None:
            return []

        acao = (resp.headers.get("access-control-allow-origin") or "").strip()
        allows_creds = (resp.headers.get("access-control-allow-credentials") or "").strip().lower() == "true"

        if self.quick:
            if acao == "*":
                return [self._finding(url, C.CORS, "CORS allows any origin (Access-Control-Allow-Origin: *)",
                                      "medium", EVIL_ORIGIN)]
            return []

        if acao == "*" and allows_creds:
            return [self._finding(url, C.CORS, "CORS wildcard (*) with Allow-Credentials: true", "high", EVIL_ORIGIN)]
        if acao == EVIL_ORIGIN:
            if allows_creds:
                return [self._finding(url, C.CORS, f"CORS reflects arbitrary origin '{EVIL_ORIGIN}' with credentials allowed",
                                      "high", EVIL_ORIGIN)]
            return [self._finding(url, C.CORS, f"CORS reflects arbitrary origin '{EVIL_ORIGIN}'", "medium", EVIL_ORIGIN)]
        return []

    # ── Security Headers ─────────────────────────────────────────────

    async def _probe_headers(self, url: str) -> List[Finding]:
        resp = await self._fetch("GET", url)
        if resp is None:
            return []

        findings: List[Finding] = []
        missing = [display for key, display in SECURITY_HEADERS_EXPECTED if key not in resp.headers]
        if missing:
            findings.append(self._finding(
                url, C.HEADERS, f"Missing security headers: {', '.join(missing)}",
                "high" if len(missing) > 3 else "medium",
            ))

        for name in DISCLOSURE_HEADERS:
            value = resp.headers.get(name)
            if value and VERSION_RE.search(value):
                findings.append(self._finding(url, C.HEADERS, f"{name} header discloses version: {value}", "low"))
        return findings

    # ── JWT ──────────────────────────────────────────────────────────

    async def _probe_jwt(self, url: str) -> List[Finding]:
        resp = await self._fetch("GET", url)
        if resp is None:
            return []

        sources = [resp.text, *resp.headers.get_list("set-cookie")]
        tokens = list(dict.fromkeys(t for text in sources for t in JWT_RE.findall(text or "")))

        findings: List[Finding] = []
        max_days = self.config.jwt_max_lifetime_days
        for token in tokens:
            segments = token.split(".")
            try:
                header = _b64_json(segments[0])
                claims = _b64_json(segments[1])
            except (ValueError, UnicodeDecodeError, binascii.Error):
                continue

            alg = str(header.get("alg", ""))
            if alg.lower() in WEAK_JWT_ALGS:
                findings.append(self._finding(url, C.JWT, f"Weak JWT algorithm detected: {alg}", "high", _clip(token, 40)))

            exp = claims.get("exp")
            if isinstance(exp, (int, float)) and not isinstance(exp, bool):
                days = (exp - time.time()) / 86400
                if days > max_days:
                    findings.append(self._finding(
                        url, C.JWT, f"JWT expires in {round(days)} days (longer than {max_days})", "medium", _clip(token, 40),
                    ))
        return findings

    # ── Directory Traversal ──────────────────────────────────────────

    async def _probe_directory_traversal(self, url: str) -> List[Finding]:
        params = query_param_names(url)
        param = next((p for p in params if p.lower() in FILE_PARAM_NAMES), "file")
        baseline = await self._fetch("GET", url)
        base_body = baseline.text if baseline is not None else ""

        payloads = TRAVERSAL_PAYLOADS[:2] if self.quick else TRAVERSAL_PAYLOADS
        for payload in payloads:
            test_url = with_param(url, param, payload)
            resp = await self._fetch("GET", test_url)
            if resp is not None:
                hit = _new_signature(TRAVERSAL_SIGNATURES, resp.text, base_body)
                if hit:
                    return [self._finding(
                        url, C.DIRECTORY_TRAVERSAL, f"System file content detected in response ({hit[0]})",
                        "critical", test_url,
                    )]
            await self._pause()
        return []

    # ── SSRF ─────────────────────────────────────────────────────────

    async def _probe_ssrf(self, url: str) -> List[Finding]:
        existing = [p for p in query_param_names(url) if p.lower() in SSRF_PARAM_NAMES]
        names = existing or list(SSRF_PARAM_NAMES)
        if self.quick:
            names = names[:2]
        baseline = await self._fetch("GET", url)
        base_body = baseline.text if baseline is not None else ""

        for name in names:
            for payload in SSRF_PAYLOADS:
                test_url = with_param(url, name, quote(payload, safe=""))
                started = self._clock()
                resp = await self._fetch("GET", test_url)
                elapsed = self._clock() - started
                if resp is not None:
                    evidence = None
                    if elapsed > self.config.ssrf_latency_threshold:
                        evidence = f"Response delayed {elapsed:.1f}s while fetching {payload}"
                    else:
                        hit = (_new_signature(SSRF_METADATA_SIGNATURES, resp.text, base_body)
                               or _new_signature(SSRF_ERROR_SIGNATURES, resp.text, base_body))
                        if hit:
                            evidence = f"Possible SSRF: server attempted to fetch {payload} ({hit[0]})"
                    if evidence:
                        return [self._finding(url, C.SSRF, evidence, "high", test_url)]
                await self._pause()
        return []

    # ── Cryptographic Failures ───────────────────────────────────────

    async def _probe_cryptographic_failures(self, url: str) -> List[Finding]:
        resp = await self._fetch("GET", url)
        if resp is None:
            return []

        findings: List[Finding] = []
        for entry in SECRET_SIGNATURES:
            match = entry["pattern"].search(resp.text)
            if match:
                findings.append(self._finding(
                    url, C.CRYPTOGRAPHIC_FAILURES,
                    f"Potentially exposed secret ({entry['label']}): {_clip(match.group(0), 12)}", "high",
                ))

        https = urlsplit(url).scheme.lower() == "https"
        if not https:
            findings.append(self._finding(
                url, C.CRYPTOGRAPHIC_FAILURES, "HTTP used instead of HTTPS: data transmitted in plain text", "medium",
            ))

        for cookie in resp.headers.get_list("set-cookie"):
            attrs = _cookie_attrs(cookie)
            name = _cookie_name(cookie)
            if https and "secure" not in attrs:
                findings.append(self._finding(url, C.CRYPTOGRAPHIC_FAILURES, f"Cookie without Secure flag: {name}", "medium"))
            if "httponly" not in attrs:
                findings.append(self._finding(url, C.CRYPTOGRAPHIC_FAILURES, f"Cookie without HttpOnly flag: {name}", "medium"))
        return findings

    # ── Insecure Design ──────────────────────────────────────────────

    async def _probe_insecure_design(self, url: str) -> List[Finding]:
        findings: List[Finding] = []
        burst = self.config.burst_size
        responses = await asyncio.gather(*(self._fetch("GET", url) for _ in range(burst)))
        if burst > 0 and all(r is not None and r.status_code == 200 for r in responses):
            findings.append(self._finding(
                url, C.INSECURE_DESIGN, f"No rate limiting detected: {burst} rapid requests all succeeded", "medium",
            ))

        origin = origin_of(url)
        soft_404 = await self._fetch("GET", f"{origin}/routeaudit-{uuid.uuid4().hex[:12]}")
        if soft_404 is not None and soft_404.status_code == 200:
            logger.debug("%s answers 200 for unknown paths, skipping sensitive path checks", origin)
            return findings

        for path in SENSITIVE_PATHS:
            test_url = origin + path
            resp = await self._fetch("GET", test_url)
            if resp is not None and resp.status_code == 200:
                findings.append(self._finding(
                    url, C.INSECURE_DESIGN, f"Administrative/debug endpoint accessible: {test_url}", "high", test_url,
                ))
            await self._pause()
        return findings

    # ── Vulnerable Components ────────────────────────────────────────

    async def _probe_vulnerable_components(self, url: str) -> List[Finding]:
        resp = await self._fetch("GET", url)
        if resp is None:
            return []

        findings: List[Finding] = []
        server = resp.headers.get("server") or ""
        version = SERVER_VERSION_RE.search(server)
        if version:
            findings.append(self._finding(
                url, C.VULNERABLE_COMPONENTS, f"Server version disclosed: {version.group(0)} (may be outdated)", "medium",
            ))

        haystack = "\n".join([server, resp.headers.get("x-powered-by") or "", resp.text])
        for entry in OUTDATED_COMPONENT_SIGNATURES:
            match = entry["pattern"].search(haystack)
            if match:
                findings.append(self._finding(
                    url, C.VULNERABLE_COMPONENTS,
                    f"Potentially vulnerable component detected: {entry['label']} ({_clip(match.group(0), 40)})", "high",
                ))
        return findings

    # ── Integrity Failures ───────────────────────────────────────────

    async def _probe_integrity_failures(self, url: str) -> List[Finding]:
        resp = await self._fetch("GET", url)
        if resp is None:
            return []

        findings: List[Finding] = []
        host = host_of(url)
        if _is_html(resp):
            soup = BeautifulSoup(resp.text, "html.parser")
            tags = [(t, t.get("src")) for t in soup.find_all("script", src=True)]
            tags += [
                (t, t.get("href")) for t in soup.find_all("link", href=True)
                if "stylesheet" in [r.lower() for r in (t.get("rel") or [])]
            ]
            for tag, ref in tags:
                resource = urljoin(url, str(ref or ""))
                if not is_http_url(resource) or host_of(resource) == host:
                    continue
                if not tag.get("integrity"):
                    findings.append(self._finding(
                        url, C.INTEGRITY_FAILURES, f"External resource without integrity check: {resource}", "medium",
                    ))

        hit = first_match(DESERIALIZATION_SIGNATURES, resp.text)
        if hit:
            findings.append(self._finding(
                url, C.INTEGRITY_FAILURES, f"Potentially unsafe deserialization pattern detected: {hit[0]}", "high",
            ))
        return findings

    # ── Logging Failures ─────────────────────────────────────────────

    async def _probe_logging_failures(self, url: str) -> List[Finding]:
        baseline = await self._fetch("GET", url)
        base_body = baseline.text if baseline is not None else ""

        for payload in VERBOSE_ERROR_PAYLOADS:
            test_url = with_param(url, "debug", payload)
            resp = await self._fetch("GET", test_url)
            if resp is not None:
                hit = _new_signature(VERBOSE_ERROR_SIGNATURES, resp.text, base_body)
                if hit:
                    return [self._finding(
                        url, C.LOGGING_FAILURES, f"Detailed error information disclosed ({hit[0]})", "medium", test_url,
                    )]
            await self._pause()
        return []

    # ── API Versioning ───────────────────────────────────────────────

    @staticmethod
    def api_version_candidates(url: str) -> List[str]:
        """Alternate API paths: lower /vN/ versions, or v1/v2 inserted after /api/."""
        parts = urlsplit(url)
        path = parts.path
        paths: List[str] = []

        version = API_VERSION_RE.search(path)
        if version:
            current = int(version.group(1))
            for n in range(current - 1, 0, -1):
                paths.append(path[:version.start()] + f"/v{n}/" + path[version.end():])
        elif "/api/" in path.lower():
            idx = path.lower().index("/api/") + len("/api/")
            for n in (1, 2):
                paths.append(path[:idx] + f"v{n}/" + path[idx:])

        return [urlunsplit((parts.scheme, parts.netloc, p, parts.query, "")) for p in paths]

    async def _probe_api_versioning(self, url: str) -> List[Finding]:
        findings: List[Finding] = []
        for candidate in self.api_version_candidates(url):
            resp = await self._fetch("GET", candidate)
            if resp is not None and resp.status_code == 200:
                findings.append(self._finding(
                    url, C.API_VERSIONING, f"Alternate API version accessible: {candidate}", "medium", candidate,
                ))
            await self._pause()
        return findings
