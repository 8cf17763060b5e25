from __future__ import annotations

from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from job_rss_digest.domain import MAX_SNIPPET_LENGTH

TRACKING_QUERY_KEYS = {
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_term",
    "utm_content",
    "gclid",
    "fbclid",
}


def is_well_formed_url(url: str) -> bool:
    parsed = urlsplit((url or "").strip())
    return bool(parsed.scheme) and bool(parsed.netloc)


def normalize_url(url: str) -> str:
    parsed = urlsplit((url or "").strip())
    scheme = (parsed.scheme or "https").lower()
    netloc = parsed.netloc.lower()
    path = parsed.path or "/"
    if path != "/" and path.endswith("/"):
        path = path[:-1]
    filtered_pairs = [
        (key, value)
        for key, value in parse_qsl(parsed.query, keep_blank_values=True)
        if key.lower() not in TRACKING_QUERY_KEYS
    ]
    query = urlencode(sorted(filtered_pairs), doseq=True)
    return urlunsplit((scheme, netloc, path, query, ""))


def canonical_key(link: str) -> str:
    # Applied to both the check and the mark side, and to the persisted column.
    # Only scheme and host case are folded; path, query and fragment are kept.
    parsed = urlsplit((link or "").strip())
    return urlunsplit(
        (parsed.scheme.lower(), parsed.netloc.lower(), parsed.path, parsed.query, parsed.fragment)
    )


def truncate(value: str, limit: int = MAX_SNIPPET_LENGTH) -> str:
    text = (value or "").strip()
    if len(text) <= limit:
        return text
    return text[:limit]


def build_snippet(title: str, source: str) -> str:
    return truncate(f"{title} from {source}")
