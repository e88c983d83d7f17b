"""
RouteAudit - URL helpers
Normalization used for page dedup (fragment kept) and endpoint dedup
(fragment stripped), plus same-host checks and query-string editing.
"""

from typing import List, Optional
from urllib.parse import urljoin, urlsplit, urlunsplit

DEFAULT_PORTS = {"http": 80, "https": 443}


def _netloc(parts) -> Optional[str]:
    try:
        host = parts.hostname or ""
        port = parts.port
    except ValueError:
        return None
    if not host:
        return None
    if ":" in host:
        host = f"[{host}]"
    userinfo = ""
    if parts.username is not None:
        userinfo = parts.username
        if parts.password is not None:
            userinfo += f":{parts.password}"
        userinfo += "@"
    scheme = parts.scheme.lower()
    if port is not None and DEFAULT_PORTS.get(scheme) != port:
        return f"{userinfo}{host}:{port}"
    return f"{userinfo}{host}"


def _normalize(url: str, keep_fragment: bool, collapse_slash: bool) -> str:
    text = str(url or "").strip()
    try:
        parts = urlsplit(text)
    except ValueError:
        return text
    scheme = parts.scheme.lower()
    if scheme not in DEFAULT_PORTS:
        return text
    netloc = _netloc(parts)
    if netloc is None:
        return text

    path = parts.path or "/"
    if collapse_slash and path != "/":
        path = path.rstrip("/") or "/"
    fragment = parts.fragment if keep_fragment else ""
    return urlunsplit((scheme, netloc, path, parts.query, fragment))


def normalize_page(url: str) -> str:
    """Normalize a page URL: keeps the fragment, collapses trailing slashes except root."""
    return _normalize(url, keep_fragment=True, collapse_slash=True)


def normalize_endpoint(url: str) -> str:
    """Normalize an API endpoint URL: strips the fragment, keeps the path verbatim."""
    return _normalize(url, keep_fragment=False, collapse_slash=False)


def is_http_url(url: str) -> bool:
    try:
        parts = urlsplit(str(url or "").strip())
        return parts.scheme.lower() in DEFAULT_PORTS and bool(parts.hostname)
    except ValueError:
        return False


def host_of(url: str) -> str:
    try:
        return (urlsplit(str(url or "").strip()).hostname or "").lower()
    except ValueError:
        return ""


def same_host(url: str, host: str) -> bool:
    return bool(host) and host_of(url) == host.lower()


def resolve_links(hrefs: List[str], base_url: str) -> List[str]:
    """Resolve raw hrefs against base_url and keep same-host http(s) links, normalized."""
    host = host_of(base_url)
    links: List[str] = []
    seen = set()
    for href in hrefs:
        href = str(href or "").strip()
        if not href or href.startswith(("javascript:", "mailto:", "tel:", "data:")):
            continue
        absolute = urljoin(base_url, href)
        if not is_http_url(absolute) or not same_host(absolute, host):
            continue
        normalized = normalize_page(absolute)
        if normalized not in seen:
            seen.add(normalized)
            links.append(normalized)
    return links


def query_param_names(url: str) -> List[str]:
    """Parameter names in the query string, in order, without decoding values."""
    names: List[str] = []
    for pair in urlsplit(url).query.split("&"):
        if not pair:
            continue
        name = pair.split("=", 1)[0]
        if name and name not in names:
            names.append(name)
    return names


def with_param(url: str, name: str, value: str) -> str:
    """Set (or append) one query parameter, keeping value bytes as given.

    Payload values are expected to be pre-encoded; nothing is re-quoted so
    encoded probes reach the target exactly as written.
    """
    parts = urlsplit(url)
    pairs = [p for p in parts.query.split("&") if p]
    out: List[str] = []
    replaced = False
    for pair in pairs:
        if not replaced and pair.split("=", 1)[0] == name:
            out.append(f"{name}={value}")
            replaced = True
        else:
            out.append(pair)
    if not replaced:
        out.append(f"{name}={value}")
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "&".join(out), ""))


def origin_of(url: str) -> str:
    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, "", "", ""))
