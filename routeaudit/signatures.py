"""
RouteAudit - Probe payloads and signatures
Declarative {pattern, label} tables consumed by the probe engine and the
fingerprinter. New signatures go here, not into probe control flow.
"""

import re
from typing import Any, Dict, List, Tuple

Signature = Dict[str, Any]


def _sig(pattern: str, label: str, flags: int = re.IGNORECASE) -> Signature:
    return {"pattern": re.compile(pattern, flags), "label": label}


# -- SQL injection ---------------------------------------------------------------
# Payloads are already URL-encoded and are placed in the query string verbatim.

SQLI_ERROR_PAYLOADS = [
    "%27",
    "%27%20OR%201=1--",
    "%27%20UNION%20SELECT%20NULL--",
    "%27;%20WAITFOR%20DELAY%20%2700:00:01%27--",
]

SQLI_BOOLEAN_PAIR: Tuple[str, str] = ("%27%20AND%201=1--", "%27%20AND%201=2--")

SQLI_ERROR_SIGNATURES: List[Signature] = [
    _sig(r"You have an error in your SQL syntax|SQL syntax.*MySQL", "MySQL syntax error"),
    _sig(r"Warning.*mysql_|mysql_fetch|mysqli_", "MySQL driver warning"),
    _sig(r"PostgreSQL.*ERROR|pg_exec|pg_query|PSQLException", "PostgreSQL error"),
    _sig(r"SQLite3?::|SQLITE_ERROR|sqlite3\.OperationalError", "SQLite error"),
    _sig(r"ORA-\d{5}", "Oracle error"),
    _sig(r"Microsoft.*ODBC.*SQL Server|Unclosed quotation mark|\[ODBC", "MSSQL/ODBC error"),
    _sig(r"SQLSTATE\[|quoted string not properly terminated|Dynamic SQL Error", "Generic SQL error"),
    _sig(r"SQL syntax error|syntax error at or near", "SQL syntax error"),
]

# -- Cross-site scripting --------------------------------------------------------

XSS_TOKEN_PREFIX = "XSS_TEST_"

XSS_PAYLOAD_TEMPLATES = [
    "<script>alert('{t}')</script>",
    "\"><img src=x onerror=alert('{t}')>",
    "'><svg onload=alert('{t}')>",
]

# -- IDOR ------------------------------------------------------------------------

IDOR_PARAM_NAMES = ["id", "user_id", "userId", "uid", "account", "profile"]

# -- CSRF ------------------------------------------------------------------------

CSRF_FIELD_PATTERNS: List[Signature] = [
    _sig(r"csrf", "csrf"),
    _sig(r"xsrf", "xsrf"),
    _sig(r"authenticity", "authenticity_token"),
    _sig(r"__RequestVerificationToken", "aspnet"),
    _sig(r"^_token$", "laravel"),
    _sig(r"form_key", "magento"),
    _sig(r"anti[-_]?forgery", "antiforgery"),
    _sig(r"nonce", "nonce"),
]

# -- CORS ------------------------------------------------------------------------

EVIL_ORIGIN = "http://evil.example"

# -- Security headers ------------------------------------------------------------

SECURITY_HEADERS_EXPECTED = [
    ("content-security-policy", "Content-Security-Policy"),
    ("strict-transport-security", "Strict-Transport-Security"),
    ("x-frame-options", "X-Frame-Options"),
    ("x-content-type-options", "X-Content-Type-Options"),
    ("referrer-policy", "Referrer-Policy"),
    ("permissions-policy", "Permissions-Policy"),
]

DISCLOSURE_HEADERS = ["server", "x-powered-by", "x-aspnet-version"]

VERSION_RE = re.compile(r"\d+\.\d+")

# -- JWT -------------------------------------------------------------------------

JWT_RE = re.compile(r"eyJ[A-Za-z0-9_-]{5,}\.eyJ[A-Za-z0-9_-]{5,}\.[A-Za-z0-9_-]*")

WEAK_JWT_ALGS = {"none", "hs256"}

# -- Directory traversal ---------------------------------------------------------

FILE_PARAM_NAMES = ["file", "path", "page", "doc", "document", "template", "include", "filename", "download", "img"]

TRAVERSAL_PAYLOADS = [
    "../../../../../../etc/passwd",
    "..%2f..%2f..%2f..%2f..%2f..%2fetc%2fpasswd",
    "....//....//....//....//etc/passwd",
    "..%252f..%252f..%252f..%252fetc%252fhosts",
    "..%5c..%5c..%5c..%5cwindows%5cwin.ini",
]

TRAVERSAL_SIGNATURES: List[Signature] = [
    _sig(r"root:x:0:0:", "/etc/passwd"),
    _sig(r"127\.0\.0\.1\s+localhost", "/etc/hosts"),
    _sig(r"\[boot loader\]", "boot.ini"),
    _sig(r"\[fonts\]|for 16-bit app support", "win.ini"),
]

# -- SSRF ------------------------------------------------------------------------

SSRF_PARAM_NAMES = ["url", "link", "src", "href", "host", "redirect"]

SSRF_PAYLOADS = [
    "http://localhost:22",
    "http://127.0.0.1:3306",
    "http://169.254.169.254/latest/meta-data/",
    "file:///etc/passwd",
    "http://metadata.google.internal/computeMetadata/v1/",
]

SSRF_ERROR_SIGNATURES: List[Signature] = [
    _sig(r"connection refused|ECONNREFUSED", "connection refused"),
    _sig(r"failed to connect|couldn'?t connect|could not connect", "connection failure"),
    _sig(r"getaddrinfo|Name or service not known|ENOTFOUND", "DNS resolution error"),
    _sig(r"SSH-\d\.\d", "SSH banner"),
]

SSRF_METADATA_SIGNATURES: List[Signature] = [
    _sig(r"ami-id|instance-id|security-credentials|iam/info", "AWS metadata"),
    _sig(r"computeMetadata|metadata\.google\.internal", "GCP metadata"),
    _sig(r"169\.254\.169\.254", "link-local metadata address"),
    _sig(r"root:x:0:0:", "local file content"),
]

# -- Cryptographic failures ------------------------------------------------------

SECRET_SIGNATURES: List[Signature] = [
    _sig(r"-----BEGIN (?:RSA |EC |DSA |OPENSSH )?PRIVATE KEY-----", "Private key", 0),
    _sig(r"AKIA[0-9A-Z]{16}", "AWS access key id", 0),
    _sig(r"AIza[0-9A-Za-z\-_]{35}", "Google API key", 0),
    _sig(r"sk_live_[0-9a-zA-Z]{24,}", "Stripe live secret key", 0),
    _sig(r"xox[baprs]-[0-9A-Za-z-]{10,}", "Slack token", 0),
    _sig(r"(?:api[_-]?key|secret[_-]?key|client[_-]?secret|access[_-]?token)[\"'\s]*[:=]\s*[\"'][A-Za-z0-9_\-]{16,}[\"']", "Hard-coded credential"),
]

# -- Insecure design -------------------------------------------------------------

SENSITIVE_PATHS = ["/admin", "/debug", "/test", "/dev", "/api/admin", "/swagger"]

# -- Vulnerable components -------------------------------------------------------

OUTDATED_COMPONENT_SIGNATURES: List[Signature] = [
    _sig(r"jquery[/\- ]?(?:v)?1\.[0-7](?:\.\d+)?\b", "jQuery < 1.8"),
    _sig(r"Apache/(?:1\.\d+|2\.[0-2])(?:\.\d+)?", "Apache httpd < 2.3"),
    _sig(r"nginx/(?:0\.\d+|1\.(?:[0-9]|1[0-9]))\.\d+", "nginx < 1.20"),
    _sig(r"PHP/[45]\.\d+", "PHP 4/5"),
    _sig(r"WordPress [1-4]\.\d+", "WordPress < 5"),
    _sig(r"OpenSSL/(?:0\.9|1\.0)\.\d", "OpenSSL <= 1.0"),
    _sig(r"Microsoft-IIS/[5-7]\.\d", "IIS < 8"),
]

# -- Integrity failures ----------------------------------------------------------

DESERIALIZATION_SIGNATURES: List[Signature] = [
    _sig(r"\bunserialize\s*\(", "unserialize()", 0),
    _sig(r"pickle\.loads?\s*\(", "pickle.loads()", 0),
    _sig(r"yaml\.load\s*\((?![^)]*Loader\s*=\s*yaml\.SafeLoader)", "yaml.load()", 0),
    _sig(r"ObjectInputStream", "Java ObjectInputStream", 0),
    _sig(r"\beval\s*\(", "eval()", 0),
    _sig(r"new\s+Function\s*\(", "new Function()", 0),
]

# -- Logging failures ------------------------------------------------------------

VERBOSE_ERROR_PAYLOADS = [
    "%5C",
    "%7B%7B7*7%7D%7D",
    "%24%7B7*7%7D",
    "%3Ctest%3E",
    "%7Cid",
    "..%2F..%2F..%2Fetc%2Fpasswd",
]

VERBOSE_ERROR_SIGNATURES: List[Signature] = [
    _sig(r"Traceback \(most recent call last\)", "Python traceback"),
    _sig(r"File \"[^\"]+\", line \d+", "Python file/line reference"),
    _sig(r"\bat [\w$.<>]+\([\w$.\-/\\: ]+:\d+(?::\d+)?\)", "Stack frame"),
    _sig(r"\.java:\d+\)", "Java stack frame"),
    _sig(r" in /[\w/.\-]+\.php on line \d+", "PHP file/line reference"),
    _sig(r"stack trace:?", "Stack trace"),
]

# -- Fingerprint hints -----------------------------------------------------------

DB_HINT_SIGNATURES: List[Signature] = [
    _sig(r"sql syntax|mysql|postgres|sqlite|ORA-\d|ODBC|Microsoft SQL", "SQL"),
    _sig(r"MongoError|bson|CastError|NoSQL", "NoSQL"),
]

ERROR_HINT_SIGNATURES: List[Signature] = [
    _sig(r"exception|traceback|stack trace|error:", "Debug error leak"),
]

TECH_BODY_SIGNATURES: List[Signature] = [
    _sig(r"wp-content|wordpress", "WordPress"),
    _sig(r"drupal", "Drupal"),
    _sig(r"joomla", "Joomla"),
    _sig(r"jquery", "jQuery"),
    _sig(r"__NEXT_DATA__", "Next.js"),
    _sig(r"data-reactroot|react-dom", "React"),
    _sig(r"ng-version=", "Angular"),
]


def first_match(signatures: List[Signature], text: str):
    """Return (label, match) for the first signature found in text, else None."""
    for entry in signatures:
        match = entry["pattern"].search(text or "")
        if match:
            return entry["label"], match
    return None
