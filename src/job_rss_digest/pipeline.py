from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import partial
from pathlib import Path
from typing import Callable, Iterable, Sequence
from uuid import uuid4

from job_rss_digest.config import (
    ConfigError,
    Policy,
    SourceConfig,
    load_policy_config,
    load_rules_config,
    load_sources_config,
)
from job_rss_digest.dedup import Deduplicator, dedup_key_for
from job_rss_digest.domain import (
    STATUS_ACCEPTED,
    STATUS_REJECTED,
    Listing,
    RuleSet,
    ScoredListing,
    SourceFailure,
    ValidationError,
)
from job_rss_digest.fetcher import fetch_all_sources
from job_rss_digest.mailer import SmtpConfig, read_intro, send_digest
from job_rss_digest.normalize import build_snippet, is_well_formed_url
from job_rss_digest.scorer import score_listing
from job_rss_digest.storage import SQLiteStore

LOGGER = logging.getLogger(__name__)

Notifier = Callable[[list[ScoredListing]], None]
Fetcher = Callable[..., tuple[list[Listing], list[SourceFailure]]]


@dataclass(frozen=True)
class ProcessResult:
    scored: list[ScoredListing]
    invalid_count: int
    duplicate_count: int

    @property
    def accepted_count(self) -> int:
        return sum(1 for listing in self.scored if listing.status == STATUS_ACCEPTED)


@dataclass(frozen=True)
class IngestResult:
    fetched_count: int
    processed: ProcessResult
    appended: int
    failures: list[SourceFailure]


@dataclass(frozen=True)
class DigestResult:
    selected: list[ScoredListing]
    marked: int
    sent: bool


@dataclass(frozen=True)
class PipelineResult:
    run_id: str
    fetched_count: int
    appended: int
    emailed: int
    invalid_count: int
    duplicate_count: int
    failures: list[SourceFailure]
    digest_sent: bool


def _default_id_factory() -> str:
    return uuid4().hex


def validate_listing(listing: Listing) -> None:
    if not isinstance(listing, Listing):
        raise ValidationError(f"not a Listing: {type(listing).__name__}")
    missing = [
        name
        for name, value in (("title", listing.title), ("link", listing.link), ("source", listing.source))
        if not isinstance(value, str) or not value.strip()
    ]
    if missing:
        raise ValidationError(f"missing required fields: {', '.join(missing)}")
    if not is_well_formed_url(listing.link):
        raise ValidationError(f"link is not an absolute URL: {listing.link}")


def classify(score: int | float, min_score: int | float) -> str:
    return STATUS_ACCEPTED if score >= min_score else STATUS_REJECTED


def process_listings(
    raw_listings: Iterable[Listing],
    rules: RuleSet,
    policy: Policy,
    deduplicator: Deduplicator | None = None,
    *,
    id_factory: Callable[[], str] | None = None,
    now: datetime | None = None,
) -> ProcessResult:
    """Validate, deduplicate, score and classify a batch in input order.

    Rejected listings are kept in the output; invalid and duplicate ones are
    dropped. A key is marked seen before scoring, so a repeat later in the
    same batch is dropped too.
    """
    tracker = deduplicator if deduplicator is not None else Deduplicator()
    make_id = id_factory or _default_id_factory
    current = now or datetime.now(timezone.utc)

    scored: list[ScoredListing] = []
    invalid_count = 0
    duplicate_count = 0
    for index, listing in enumerate(raw_listings):
        try:
            validate_listing(listing)
        except ValidationError as exc:
            invalid_count += 1
            LOGGER.warning("listing[%s] skipped: %s", index, exc)
            continue

        key = dedup_key_for(listing, policy.dedupe_by)
        if tracker.seen(key):
            duplicate_count += 1
            LOGGER.info("duplicate skipped: %s", listing.link)
            continue
        tracker.mark(key)

        scoring = score_listing(listing, rules)
        title = listing.title.strip()
        source = listing.source.strip()
        scored.append(
            ScoredListing(
                identifier=listing.identifier or make_id(),
                found_at=listing.found_at or current,
                title=title,
                organization=(listing.organization or "").strip(),
                location=(listing.location or "").strip(),
                link=listing.link.strip(),
                source=source,
                snippet=build_snippet(title, source),
                score=scoring.score,
                matched_keywords=scoring.matched_keywords,
                status=classify(scoring.score, policy.min_score),
                dedup_key=key,
            )
        )

    result = ProcessResult(scored=scored, invalid_count=invalid_count, duplicate_count=duplicate_count)
    LOGGER.info(
        "processed batch: scored=%s accepted=%s invalid=%s duplicates=%s",
        len(scored),
        result.accepted_count,
        invalid_count,
        duplicate_count,
    )
    return result


def select_digest(history: Sequence[ScoredListing], policy: Policy) -> list[ScoredListing]:
    eligible = [
        listing
        for listing in history
        if listing.status == STATUS_ACCEPTED
        and listing.score >= policy.min_score
        and not listing.notified_at
    ]
    # sorted() is stable, so equal scores keep arrival order.
    ranked = sorted(eligible, key=lambda listing: -listing.score)
    return ranked[: policy.top_n]


def run_ingest(
    store: SQLiteStore,
    sources: list[SourceConfig],
    rules: RuleSet,
    policy: Policy,
    *,
    fetch: Fetcher = fetch_all_sources,
    id_factory: Callable[[], str] | None = None,
    now: datetime | None = None,
    dry_run: bool = False,
) -> IngestResult:
    deduplicator = Deduplicator(store.load_existing_keys())
    LOGGER.info("loaded %s known keys", deduplicator.durable_count)

    listings, failures = fetch(sources, pacing_sec=policy.pacing_sec)
    processed = process_listings(
        listings,
        rules,
        policy,
        deduplicator,
        id_factory=id_factory,
        now=now,
    )
    appended = 0
    if not dry_run:
        appended = store.append_scored_listings(processed.scored)
    LOGGER.info("ingest complete: fetched=%s appended=%s failures=%s", len(listings), appended, len(failures))
    return IngestResult(
        fetched_count=len(listings),
        processed=processed,
        appended=appended,
        failures=failures,
    )


def run_digest(
    store: SQLiteStore,
    policy: Policy,
    notifier: Notifier | None,
    *,
    now: datetime | None = None,
    dry_run: bool = False,
) -> DigestResult:
    """Send the top-N unnotified accepted listings and mark them notified.

    Nothing is marked unless the notifier returns without raising.
    """
    current = now or datetime.now(timezone.utc)
    selected = select_digest(store.load_unnotified(policy.min_score), policy)
    if not selected:
        LOGGER.info("no eligible listings for digest")
        return DigestResult(selected=[], marked=0, sent=False)
    if dry_run:
        LOGGER.info("dry run: %s listings would be sent", len(selected))
        return DigestResult(selected=selected, marked=0, sent=False)
    if notifier is None:
        raise ConfigError("a notifier (SMTP config) is required when dry_run is false")

    notifier(selected)
    marked = store.mark_notified(
        [listing.identifier for listing in selected],
        current.isoformat(),
    )
    LOGGER.info("digest sent: selected=%s marked=%s", len(selected), marked)
    return DigestResult(selected=selected, marked=marked, sent=True)


def build_smtp_notifier(
    smtp_config: SmtpConfig,
    policy: Policy,
    now: datetime,
    failures: Sequence[SourceFailure] = (),
) -> Notifier:
    return partial(
        send_digest,
        smtp_config,
        policy.recipient,
        now=now,
        date_format=policy.date_format,
        intro=read_intro(policy.cover_letter_path),
        failures=list(failures),
    )


def run_pipeline(
    sources_path: Path,
    rules_path: Path,
    policy_path: Path,
    db_path: str,
    smtp_config: SmtpConfig | None,
    dry_run: bool = False,
    ingest: bool = True,
    digest: bool = True,
    fetch: Fetcher = fetch_all_sources,
    notifier: Notifier | None = None,
    id_factory: Callable[[], str] | None = None,
) -> PipelineResult:
    # Config errors must surface before any source is fetched.
    policy = load_policy_config(policy_path)
    rules = load_rules_config(rules_path)
    sources = load_sources_config(sources_path) if ingest else []
    if digest and not dry_run and notifier is None and smtp_config is None:
        raise ConfigError("SMTP config is required when dry_run is false")

    run_id = f"{datetime.now(timezone.utc):%Y%m%dT%H%M%SZ}-{uuid4().hex[:8]}"
    now = datetime.now(timezone.utc)
    store = SQLiteStore(db_path)
    try:
        store.initialize()
        store.acquire_run_lock(run_id, now=now)
        try:
            ingest_result: IngestResult | None = None
            if ingest:
                ingest_result = run_ingest(
                    store,
                    sources,
                    rules,
                    policy,
                    fetch=fetch,
                    id_factory=id_factory,
                    now=now,
                    dry_run=dry_run,
                )

            digest_result = DigestResult(selected=[], marked=0, sent=False)
            if digest:
                if notifier is None and smtp_config is not None:
                    notifier = build_smtp_notifier(
                        smtp_config,
                        policy,
                        now,
                        failures=ingest_result.failures if ingest_result else (),
                    )
                digest_result = run_digest(store, policy, notifier, now=now, dry_run=dry_run)
        finally:
            store.release_run_lock(run_id)
    finally:
        store.close()

    return PipelineResult(
        run_id=run_id,
        fetched_count=ingest_result.fetched_count if ingest_result else 0,
        appended=ingest_result.appended if ingest_result else 0,
        emailed=len(digest_result.selected) if digest_result.sent else 0,
        invalid_count=ingest_result.processed.invalid_count if ingest_result else 0,
        duplicate_count=ingest_result.processed.duplicate_count if ingest_result else 0,
        failures=ingest_result.failures if ingest_result else [],
        digest_sent=digest_result.sent,
    )
