from __future__ import annotations

import re
from urllib.parse import parse_qsl, urlencode, urljoin, urlsplit, urlunsplit

_TRACKING_QUERY_PARAMS = {
    "fbclid",
    "gclid",
    "igshid",
    "mc_cid",
    "mc_eid",
    "ref",
    "referrer",
}
_TRAILING_NUMERIC_ID = re.compile(r"/(\d+)(?:-|$)")


def is_http_url(value: str) -> bool:
    parsed = urlsplit((value or "").strip())
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def absolute_url(base_url: str, href: str) -> str:
    value = (href or "").strip()
    if value.startswith(("http://", "https://")):
        return canonicalize_url(value)
    return canonicalize_url(urljoin(base_url, value))


def canonicalize_url(url: str) -> str:
    value = (url or "").strip()
    if not value:
        return value

    parsed = urlsplit(value)
    if not parsed.scheme or not parsed.netloc:
        return value

    filtered_query = []
    for key, query_value in parse_qsl(parsed.query, keep_blank_values=True):
        lowered = key.lower()
        if lowered.startswith("utm_"):
            continue
        if lowered in _TRACKING_QUERY_PARAMS:
            continue
        filtered_query.append((key, query_value))

    query = urlencode(filtered_query, doseq=True)
    return urlunsplit((parsed.scheme.lower(), parsed.netloc.lower(), parsed.path or "/", query, ""))


def with_query_param(url: str, key: str, value: str) -> str:
    parsed = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parsed.query, keep_blank_values=True) if k != key]
    query.append((key, value))
    return urlunsplit(
        (parsed.scheme, parsed.netloc, parsed.path, urlencode(query, doseq=True), parsed.fragment)
    )


def numeric_id_from_path(href: str) -> str | None:
    path = urlsplit(href or "").path
    match = _TRAILING_NUMERIC_ID.search(path)
    if match is None:
        return None
    return match.group(1)
