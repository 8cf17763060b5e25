from __future__ import annotations

import calendar
import logging
import ssl
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Callable

import feedparser
import requests
from requests.adapters import HTTPAdapter

from job_rss_digest.config import SourceConfig
from job_rss_digest.domain import Listing, SourceFailure
from job_rss_digest.normalize import truncate

USER_AGENT = "job-rss-digest/0.1"

LOGGER = logging.getLogger(__name__)


class FetchError(RuntimeError):
    """Raised when a feed cannot be downloaded."""


class ParseError(ValueError):
    """Raised when a downloaded feed payload is malformed."""


class LegacyTLSAdapter(HTTPAdapter):
    """Enable legacy renegotiation where OpenSSL supports it."""

    def __init__(self, *args, **kwargs) -> None:  # type: ignore[no-untyped-def]
        self._ssl_context = ssl.create_default_context()
        if hasattr(ssl, "OP_LEGACY_SERVER_CONNECT"):
            self._ssl_context.options |= ssl.OP_LEGACY_SERVER_CONNECT
        super().__init__(*args, **kwargs)

    def init_poolmanager(self, *args, **kwargs) -> None:  # type: ignore[no-untyped-def]
        kwargs["ssl_context"] = self._ssl_context
        super().init_poolmanager(*args, **kwargs)

    def proxy_manager_for(self, *args, **kwargs):  # type: ignore[no-untyped-def]
        kwargs["ssl_context"] = self._ssl_context
        return super().proxy_manager_for(*args, **kwargs)


def _parse_published(entry: dict[str, Any]) -> datetime | None:
    for key in ("published_parsed", "updated_parsed", "created_parsed"):
        value = entry.get(key)
        if value:
            return datetime.fromtimestamp(calendar.timegm(value), tz=timezone.utc)
    for key in ("published", "updated", "created"):
        raw = entry.get(key)
        if not raw:
            continue
        try:
            parsed = parsedate_to_datetime(raw)
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed.astimezone(timezone.utc)
        except (TypeError, ValueError):
            try:
                parsed = datetime.fromisoformat(raw)
                if parsed.tzinfo is None:
                    parsed = parsed.replace(tzinfo=timezone.utc)
                return parsed.astimezone(timezone.utc)
            except ValueError:
                continue
    return None


def _entry_text(entry: dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = entry.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def _entry_to_listing(entry: dict[str, Any], source: SourceConfig, fetched_at: datetime) -> Listing:
    guid = _entry_text(entry, "id", "guid")
    return Listing(
        title=_entry_text(entry, "title"),
        link=_entry_text(entry, "link"),
        source=source.name,
        found_at=_parse_published(entry) or fetched_at,
        organization=_entry_text(entry, "author", "company") or source.organization,
        location=_entry_text(entry, "location", "job_location"),
        snippet=truncate(_entry_text(entry, "summary", "description")),
        identifier=f"{source.id}:{guid}" if guid else None,
    )


def _download_and_parse(session: requests.Session, source: SourceConfig) -> list[Listing]:
    try:
        response = session.get(
            source.url,
            timeout=source.timeout_sec,
            headers={"User-Agent": USER_AGENT},
        )
        response.raise_for_status()
    except requests.RequestException as exc:
        raise FetchError(str(exc)) from exc

    parsed = feedparser.parse(response.content)
    if parsed.bozo and not parsed.entries:
        raise ParseError(f"invalid feed payload: {parsed.bozo_exception}")

    fetched_at = datetime.now(timezone.utc)
    return [_entry_to_listing(entry, source, fetched_at) for entry in parsed.entries]


def fetch_source(session: requests.Session, source: SourceConfig) -> list[Listing]:
    """Fetch one feed, retrying up to ``source.retries`` times.

    Raises the last FetchError or ParseError when every attempt fails.
    Entries missing a title or link are passed through; the pipeline rejects them.
    """
    attempts = max(source.retries, 0) + 1
    attempt = 1
    while True:
        try:
            return _download_and_parse(session, source)
        except (FetchError, ParseError) as exc:
            LOGGER.warning("fetch %s attempt %s/%s failed: %s", source.id, attempt, attempts, exc)
            if attempt >= attempts:
                raise
        attempt += 1


def fetch_all_sources(
    sources: list[SourceConfig],
    *,
    pacing_sec: float = 1.0,
    session: requests.Session | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> tuple[list[Listing], list[SourceFailure]]:
    enabled_sources = [source for source in sources if source.enabled]
    if not enabled_sources:
        return [], []

    listings: list[Listing] = []
    failures: list[SourceFailure] = []
    owns_session = session is None
    active_session = session or requests.Session()
    if owns_session:
        active_session.mount("https://", LegacyTLSAdapter())
    try:
        for index, source in enumerate(enabled_sources):
            if index > 0 and pacing_sec > 0:
                sleep(pacing_sec)
            try:
                source_listings = fetch_source(session=active_session, source=source)
            except (FetchError, ParseError) as exc:
                LOGGER.error("source %s skipped: %s: %s", source.id, type(exc).__name__, exc)
                failures.append(
                    SourceFailure(
                        source_id=source.id,
                        source_url=source.url,
                        error=f"{type(exc).__name__}: {exc}",
                    )
                )
                continue
            LOGGER.info("source %s: %s entries", source.id, len(source_listings))
            listings.extend(source_listings)
    finally:
        if owns_session:
            active_session.close()
    return listings, failures
