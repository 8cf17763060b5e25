from job_rss_digest.dedup import Deduplicator, dedup_key_for
from job_rss_digest.domain import Listing


def test_durable_keys_are_seen_from_the_start() -> None:
    deduplicator = Deduplicator(["https://example.com/jobs/1"])
    assert deduplicator.seen("https://example.com/jobs/1")
    assert not deduplicator.seen("https://example.com/jobs/2")
    assert deduplicator.durable_count == 1


def test_mark_adds_to_ephemeral_scope_only() -> None:
    deduplicator = Deduplicator()
    deduplicator.mark("https://example.com/jobs/2")
    assert deduplicator.seen("https://example.com/jobs/2")
    assert deduplicator.ephemeral_count == 1
    assert deduplicator.durable_count == 0


def test_check_and_mark_share_canonicalization() -> None:
    deduplicator = Deduplicator(["HTTPS://Example.com/jobs/1"])
    assert deduplicator.seen("https://example.com/jobs/1")
    deduplicator.mark(" https://example.com/jobs/3#apply ")
    assert deduplicator.seen("https://EXAMPLE.com/jobs/3#apply")
    assert not deduplicator.seen("https://example.com/jobs/3")


def test_hash_routed_links_stay_distinct() -> None:
    deduplicator = Deduplicator()
    deduplicator.mark("https://jobs.example.com/#/job/1")
    assert not deduplicator.seen("https://jobs.example.com/#/job/2")


def test_dedup_key_for_uses_canonical_link() -> None:
    listing = Listing(title="t", link="https://Example.com/a/?gclid=1&b=2", source="s")
    assert dedup_key_for(listing) == "https://example.com/a/?gclid=1&b=2"
