"""
RouteAudit - Default remediation
Static per-category guidance used whenever the solution service is off,
fails, or leaves fields out.
"""

from typing import Any, Dict, List, Optional

from routeaudit.models import Finding, ProbeCategory, ResourceLink, Solution

C = ProbeCategory

DEFAULT_NOTES = "Auto-generated solution based on vulnerability type"

GENERIC_REMEDIATION: Dict[str, Any] = {
    "solution": "Review and implement appropriate security controls for this vulnerability",
    "steps": [
        "Analyze the specific vulnerability details",
        "Research best practices for this attack type",
        "Implement appropriate security controls",
        "Test and validate the fix effectiveness",
    ],
}

REMEDIATION: Dict[ProbeCategory, Dict[str, Any]] = {
    C.HEADERS: {
        "solution": "Implement comprehensive security headers to protect against common web vulnerabilities",
        "steps": [
            "Configure Content Security Policy (CSP) to prevent XSS attacks",
            "Enable HTTP Strict Transport Security (HSTS) for HTTPS enforcement",
            "Add X-Frame-Options to prevent clickjacking attacks",
            "Set X-Content-Type-Options to prevent MIME type sniffing",
        ],
        "cwe": "CWE-16",
        "snippet": (
            "# nginx\n"
            "add_header Content-Security-Policy \"default-src 'self'\" always;\n"
            "add_header Strict-Transport-Security \"max-age=31536000; includeSubDomains\" always;\n"
            "add_header X-Frame-Options \"SAMEORIGIN\" always;\n"
            "add_header X-Content-Type-Options \"nosniff\" always;\n"
            "add_header Referrer-Policy \"strict-origin-when-cross-origin\" always;\n"
            "server_tokens off;"
        ),
    },
    C.XSS: {
        "solution": "Implement input validation, output encoding, and Content Security Policy",
        "steps": [
            "Validate and sanitize all user inputs on both client and server side",
            "Implement proper output encoding based on context (HTML, JavaScript, CSS)",
            "Deploy Content Security Policy (CSP) headers to restrict script execution",
            "Avoid building HTML from untrusted strings",
        ],
        "cwe": "CWE-79",
        "snippet": (
            "from markupsafe import escape\n\n"
            "return f\"<p>Results for {escape(query)}</p>\"\n\n"
            "# Response header\n"
            "Content-Security-Policy: default-src 'self'; script-src 'self'"
        ),
    },
    C.SQLI: {
        "solution": "Use parameterized queries and input validation to prevent SQL injection",
        "steps": [
            "Replace dynamic SQL with parameterized queries or prepared statements",
            "Validate and sanitize all user inputs before database operations",
            "Implement least privilege database access controls",
            "Suppress database error messages in responses",
        ],
        "cwe": "CWE-89",
        "snippet": (
            "cursor.execute(\n"
            "    \"SELECT * FROM users WHERE id = %s AND name = %s\",\n"
            "    (user_id, user_name),\n"
            ")"
        ),
    },
    C.IDOR: {
        "solution": "Enforce object-level authorization on every request that takes a resource identifier",
        "steps": [
            "Check that the authenticated user owns or may access the requested object",
            "Prefer non-guessable identifiers (UUIDs) for externally visible references",
            "Centralize access checks instead of repeating them per handler",
            "Add tests that request another user's objects and expect 403/404",
        ],
        "cwe": "CWE-639",
        "snippet": (
            "order = Order.get(order_id)\n"
            "if order is None or order.owner_id != current_user.id:\n"
            "    abort(404)"
        ),
    },
    C.CSRF: {
        "solution": "Protect state-changing forms with anti-CSRF tokens and SameSite cookies",
        "steps": [
            "Add a per-session anti-CSRF token to every POST form and verify it server-side",
            "Set SameSite=Lax or Strict on session cookies",
            "Reject state-changing requests with unexpected Origin or Referer",
        ],
        "cwe": "CWE-352",
        "snippet": (
            "<form method=\"post\" action=\"/account\">\n"
            "  <input type=\"hidden\" name=\"csrf_token\" value=\"{{ csrf_token() }}\">\n"
            "</form>\n\n"
            "Set-Cookie: session=...; Secure; HttpOnly; SameSite=Lax"
        ),
    },
    C.CORS: {
        "solution": "Restrict cross-origin access to an explicit allow-list of trusted origins",
        "steps": [
            "Never reflect the request Origin header without checking an allow-list",
            "Do not combine a wildcard origin with Access-Control-Allow-Credentials: true",
            "Limit allowed methods and headers to what the API needs",
        ],
        "cwe": "CWE-942",
        "snippet": (
            "ALLOWED_ORIGINS = {\"https://app.example.com\"}\n\n"
            "origin = request.headers.get(\"Origin\")\n"
            "if origin in ALLOWED_ORIGINS:\n"
            "    response.headers[\"Access-Control-Allow-Origin\"] = origin\n"
            "    response.headers[\"Vary\"] = \"Origin\""
        ),
    },
    C.JWT: {
        "solution": "Sign tokens with a strong algorithm, pin it on verification and keep lifetimes short",
        "steps": [
            "Reject tokens with alg 'none' and pin the expected algorithm when verifying",
            "Prefer asymmetric algorithms (RS256/ES256) or long random HMAC secrets",
            "Keep access token lifetimes short and rotate refresh tokens",
        ],
        "cwe": "CWE-347",
        "snippet": "claims = jwt.decode(token, public_key, algorithms=[\"RS256\"], options={\"require\": [\"exp\"]})",
    },
    C.DIRECTORY_TRAVERSAL: {
        "solution": "Resolve file paths against a fixed base directory and reject anything outside it",
        "steps": [
            "Map user input to an allow-list of file identifiers instead of raw paths",
            "Canonicalize the final path and verify it stays under the base directory",
            "Run the service with minimal filesystem permissions",
        ],
        "cwe": "CWE-22",
        "snippet": (
            "base = Path(\"/srv/files\").resolve()\n"
            "target = (base / name).resolve()\n"
            "if base not in target.parents:\n"
            "    abort(400)"
        ),
    },
    C.SSRF: {
        "solution": "Validate outbound URLs against an allow-list and block internal address ranges",
        "steps": [
            "Accept only http(s) URLs whose host is on an explicit allow-list",
            "Resolve the host and refuse loopback, link-local and private addresses",
            "Disable redirects for server-side fetches or re-validate every hop",
            "Block access to cloud metadata endpoints at the network layer",
        ],
        "cwe": "CWE-918",
        "snippet": (
            "addr = ipaddress.ip_address(socket.gethostbyname(host))\n"
            "if addr.is_private or addr.is_loopback or addr.is_link_local:\n"
            "    raise ValueError(\"internal address not allowed\")"
        ),
    },
    C.CRYPTOGRAPHIC_FAILURES: {
        "solution": "Serve everything over HTTPS, keep secrets out of responses and harden cookies",
        "steps": [
            "Redirect HTTP to HTTPS and enable HSTS",
            "Move secrets and keys out of client-visible code and rotate exposed ones",
            "Set Secure and HttpOnly on all session cookies",
        ],
        "cwe": "CWE-319",
        "snippet": "Set-Cookie: session=...; Secure; HttpOnly; SameSite=Lax",
    },
    C.INSECURE_DESIGN: {
        "solution": "Add rate limiting and remove or protect administrative and debug endpoints",
        "steps": [
            "Apply per-client rate limits to authentication and expensive endpoints",
            "Remove debug and test routes from production builds",
            "Put administrative interfaces behind authentication and network restrictions",
        ],
        "cwe": "CWE-770",
        "snippet": (
            "# nginx\n"
            "limit_req_zone $binary_remote_addr zone=api:10m rate=10r/s;\n"
            "location /api/ { limit_req zone=api burst=20; }"
        ),
    },
    C.VULNERABLE_COMPONENTS: {
        "solution": "Upgrade outdated components and stop advertising version numbers",
        "steps": [
            "Inventory server software and front-end libraries with their versions",
            "Upgrade components with known vulnerabilities to supported releases",
            "Hide version banners (server_tokens off, remove X-Powered-By)",
        ],
        "cwe": "CWE-1104",
        "snippet": "# nginx\nserver_tokens off;\nproxy_hide_header X-Powered-By;",
    },
    C.INTEGRITY_FAILURES: {
        "solution": "Pin third-party assets with Subresource Integrity and avoid unsafe deserialization",
        "steps": [
            "Add integrity and crossorigin attributes to external scripts and stylesheets",
            "Self-host critical third-party assets where possible",
            "Replace eval/unserialize/pickle on untrusted data with safe parsers",
        ],
        "cwe": "CWE-494",
        "snippet": (
            "<script src=\"https://cdn.example.com/lib.min.js\"\n"
            "        integrity=\"sha384-...\" crossorigin=\"anonymous\"></script>"
        ),
    },
    C.LOGGING_FAILURES: {
        "solution": "Return generic error pages and log details server-side only",
        "steps": [
            "Disable debug mode and stack traces in production responses",
            "Log exceptions with request context to a protected log sink",
            "Alert on spikes of malformed or malicious requests",
        ],
        "cwe": "CWE-778",
        "snippet": (
            "@app.errorhandler(Exception)\n"
            "def handle_error(exc):\n"
            "    logger.exception(\"Unhandled error\")\n"
            "    return {\"error\": \"internal error\"}, 500"
        ),
    },
    C.API_VERSIONING: {
        "solution": "Retire old API versions or apply the same authorization to every version",
        "steps": [
            "Inventory every deployed API version and its consumers",
            "Decommission deprecated versions or route them through current access controls",
            "Return 410 Gone for retired versions",
        ],
        "cwe": "CWE-1059",
        "snippet": "location ~ ^/api/v1/ { return 410; }",
    },
}

RESOURCE_LINKS: Dict[ProbeCategory, List[ResourceLink]] = {
    C.HEADERS: [
        ResourceLink("doc", "OWASP Secure Headers Project", "https://owasp.org/www-project-secure-headers/"),
        ResourceLink("blog", "Security Headers Best Practices", "https://securityheaders.com/"),
        ResourceLink("youtube", "Web Security Headers Explained", "https://www.youtube.com/watch?v=zEV3HOuM_Vw", "zEV3HOuM_Vw"),
    ],
    C.XSS: [
        ResourceLink("doc", "OWASP XSS Prevention", "https://owasp.org/www-community/xss-filter-evasion-cheatsheet"),
        ResourceLink("blog", "XSS Prevention Guide",
                     "https://cheatsheetseries.owasp.org/cheatsheets/Cross_Site_Scripting_Prevention_Cheat_Sheet.html"),
        ResourceLink("youtube", "Cross-Site Scripting Explained", "https://www.youtube.com/watch?v=EoaDgUgS6QA", "EoaDgUgS6QA"),
    ],
    C.SQLI: [
        ResourceLink("doc", "OWASP SQL Injection Prevention", "https://owasp.org/www-community/attacks/SQL_Injection"),
        ResourceLink("blog", "SQL Injection Prevention Cheat Sheet",
                     "https://cheatsheetseries.owasp.org/cheatsheets/SQL_Injection_Prevention_Cheat_Sheet.html"),
        ResourceLink("youtube", "SQL Injection Explained", "https://www.youtube.com/watch?v=ciNHn38EyRc", "ciNHn38EyRc"),
    ],
}

GENERIC_LINKS: List[ResourceLink] = [
    ResourceLink("doc", "OWASP Top 10", "https://owasp.org/Top10/"),
    ResourceLink("blog", "Web Security Guide", "https://developer.mozilla.org/en-US/docs/Web/Security"),
    ResourceLink("youtube", "Web Security Fundamentals", "https://www.youtube.com/watch?v=WlmKwIe9z1Q", "WlmKwIe9z1Q"),
]


def priority_for(severity: str) -> str:
    return "P0" if severity in ("critical", "high") else "P1"


def cwe_for(category: ProbeCategory) -> Optional[str]:
    return REMEDIATION.get(category, {}).get("cwe")


def code_snippet_for(category: ProbeCategory) -> Optional[str]:
    return REMEDIATION.get(category, {}).get("snippet")


def resource_links_for(category: ProbeCategory) -> List[ResourceLink]:
    return list(RESOURCE_LINKS.get(category, GENERIC_LINKS))


def default_solution(finding: Finding) -> Solution:
    entry = REMEDIATION.get(finding.attack, GENERIC_REMEDIATION)
    return Solution(
        solution=entry["solution"],
        remediation_steps=tuple(entry["steps"]),
        priority=priority_for(finding.severity),
        code_snippet=entry.get("snippet"),
        resource_links=tuple(resource_links_for(finding.attack)),
        cwe_cve=entry.get("cwe"),
        estimated_effort="med",
        confidence="high",
        waf_rules=(),
        notes=DEFAULT_NOTES,
    )
