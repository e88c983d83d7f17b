import pytest

from routeaudit.urls import (
    host_of,
    is_http_url,
    normalize_endpoint,
    normalize_page,
    origin_of,
    query_param_names,
    resolve_links,
    same_host,
    with_param,
)

SAMPLES = [
    "https://site.test",
    "HTTPS://Site.Test:443/About/",
    "http://site.test:80//",
    "http://site.test:8080/a/b///?x=1#frag",
    "https://site.test/search?q=%27#top",
    "https://user:pw@site.test/path/",
    "mailto:someone@site.test",
    "not a url",
]


@pytest.mark.parametrize("url", SAMPLES)
def test_normalize_page_is_idempotent(url):
    once = normalize_page(url)
    assert normalize_page(once) == once


@pytest.mark.parametrize("url", SAMPLES)
def test_normalize_endpoint_is_idempotent(url):
    once = normalize_endpoint(url)
    assert normalize_endpoint(once) == once


def test_normalize_page_lowercases_and_drops_default_port():
    assert normalize_page("HTTPS://Site.Test:443/a/#x") == "https://site.test/a#x"
    assert normalize_page("http://site.test:8080/a") == "http://site.test:8080/a"


def test_normalize_page_root_and_trailing_slashes():
    assert normalize_page("https://site.test") == "https://site.test/"
    assert normalize_page("https://site.test/") == "https://site.test/"
    assert normalize_page("https://site.test/docs///") == "https://site.test/docs"


def test_normalize_endpoint_strips_fragment_keeps_path():
    assert normalize_endpoint("https://Site.test/api/users/#f") == "https://site.test/api/users/"
    assert normalize_endpoint("https://site.test/api?id=1#x") == "https://site.test/api?id=1"


def test_non_http_urls_pass_through():
    assert normalize_page("mailto:a@b.c") == "mailto:a@b.c"
    assert not is_http_url("ftp://site.test/")
    assert not is_http_url("https://")
    assert is_http_url("http://site.test/x")


def test_resolve_links_keeps_same_host_http_links():
    hrefs = [
        "/login",
        "about/",
        "https://other.test/",
        "javascript:void(0)",
        "mailto:x@site.test",
        "#section",
        "/login",
        "HTTPS://SITE.TEST/login",
    ]
    links = resolve_links(hrefs, "https://site.test/docs/")
    assert links == [
        "https://site.test/login",
        "https://site.test/docs/about",
        "https://site.test/docs#section",
    ]


def test_host_helpers():
    assert host_of("https://Site.Test:8443/x") == "site.test"
    assert same_host("https://site.test/a", "SITE.test")
    assert not same_host("https://other.test/a", "site.test")
    assert origin_of("https://site.test:8443/a?b=1") == "https://site.test:8443"


def test_query_param_names_in_order():
    assert query_param_names("https://s.test/p?b=1&a=2&b=3&flag") == ["b", "a", "flag"]
    assert query_param_names("https://s.test/p") == []


def test_with_param_replaces_first_or_appends_raw_value():
    assert with_param("https://s.test/search?q=1&x=2", "q", "%27") == "https://s.test/search?q=%27&x=2"
    assert with_param("https://s.test/search#frag", "q", "%27%20OR%201=1--") == "https://s.test/search?q=%27%20OR%201=1--"
    assert with_param("https://s.test/p?x=1", "id", "2") == "https://s.test/p?x=1&id=2"
