from __future__ import annotations

import logging
import smtplib
import time
from dataclasses import dataclass
from datetime import datetime
from email.message import EmailMessage
from pathlib import Path

from job_rss_digest.domain import ScoredListing, SourceFailure
from job_rss_digest.normalize import truncate

LOGGER = logging.getLogger(__name__)

SNIPPET_PREVIEW_LENGTH = 60
INTRO_MAX_LENGTH = 500


class NotificationError(RuntimeError):
    """Raised when the digest could not be delivered."""


@dataclass(frozen=True)
class SmtpConfig:
    host: str
    port: int
    user: str
    password: str
    from_address: str
    starttls: bool = True
    use_ssl: bool = False


def _format_listing_line(index: int, listing: ScoredListing) -> str:
    organization = listing.organization or listing.source or "Unknown"
    keywords = ", ".join(listing.matched_keywords) or "-"
    return f"{index}. [{listing.score}] {listing.title} | {organization} | {keywords} | {listing.link}"


def _format_snippet_line(listing: ScoredListing) -> str | None:
    if not listing.snippet:
        return None
    snippet = listing.snippet
    if len(snippet) > SNIPPET_PREVIEW_LENGTH:
        snippet = snippet[:SNIPPET_PREVIEW_LENGTH] + "..."
    return f"   {snippet}"


def read_intro(path: str | None) -> str:
    if not path:
        return ""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        LOGGER.warning("Failed to read cover letter %s: %s", path, exc)
        return ""
    return truncate(text, INTRO_MAX_LENGTH)


def build_digest_subject(now: datetime, date_format: str) -> str:
    return f"Job Search Update - {now.strftime(date_format)}"


def build_digest_body(
    now: datetime,
    date_format: str,
    listings: list[ScoredListing],
    intro: str = "",
    failures: list[SourceFailure] | None = None,
) -> str:
    lines: list[str] = []
    lines.append(f"Found {len(listings)} new jobs ({now.strftime(date_format)}):")
    lines.append("")
    if intro:
        lines.append(intro)
        lines.append("")
    for index, listing in enumerate(listings, start=1):
        if not listing.title or not listing.link:
            LOGGER.warning("Skipping digest row with missing title or link: id=%s", listing.identifier)
            continue
        lines.append(_format_listing_line(index, listing))
        snippet_line = _format_snippet_line(listing)
        if snippet_line:
            lines.append(snippet_line)
    lines.append("")

    if failures:
        lines.append("Sources that failed this run:")
        for failure in failures:
            lines.append(f"- {failure.source_id} ({failure.source_url}): {failure.error}")
        lines.append("")
    return "\n".join(lines).rstrip() + "\n"


def build_failure_subject(now: datetime) -> str:
    return f"[job-rss-digest][ERROR] {now:%Y-%m-%d %H:%M} UTC"


def build_failure_body(now: datetime, context_message: str) -> str:
    return (
        f"Run time (UTC): {now:%Y-%m-%d %H:%M:%S}\n"
        f"Failure:\n{context_message}\n"
    )


def send_text_email(
    smtp_config: SmtpConfig,
    to_address: str,
    subject: str,
    body: str,
    max_attempts: int = 3,
    retry_wait_sec: float = 1.0,
) -> None:
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    message = EmailMessage()
    message["From"] = smtp_config.from_address
    message["To"] = to_address
    message["Subject"] = subject
    message.set_content(body)

    last_error: Exception | None = None
    for attempt in range(1, max_attempts + 1):
        try:
            if smtp_config.use_ssl:
                with smtplib.SMTP_SSL(smtp_config.host, smtp_config.port, timeout=30) as smtp:
                    if smtp_config.user:
                        smtp.login(smtp_config.user, smtp_config.password)
                    smtp.send_message(message)
                return

            with smtplib.SMTP(smtp_config.host, smtp_config.port, timeout=30) as smtp:
                smtp.ehlo()
                if smtp_config.starttls:
                    smtp.starttls()
                    smtp.ehlo()
                if smtp_config.user:
                    smtp.login(smtp_config.user, smtp_config.password)
                smtp.send_message(message)
            return
        except (OSError, smtplib.SMTPException) as exc:
            last_error = exc
            if attempt >= max_attempts:
                break
            time.sleep(retry_wait_sec)
    if last_error is not None:
        raise last_error


def send_digest(
    smtp_config: SmtpConfig,
    recipient: str,
    listings: list[ScoredListing],
    now: datetime,
    date_format: str,
    intro: str = "",
    retry_wait_sec: float = 1.0,
    failures: list[SourceFailure] | None = None,
) -> None:
    if not listings:
        raise ValueError("send_digest requires at least one listing")
    subject = build_digest_subject(now, date_format)
    body = build_digest_body(
        now=now, date_format=date_format, listings=listings, intro=intro, failures=failures
    )
    try:
        send_text_email(
            smtp_config=smtp_config,
            to_address=recipient,
            subject=subject,
            body=body,
            retry_wait_sec=retry_wait_sec,
        )
    except (OSError, smtplib.SMTPException) as exc:
        raise NotificationError(f"digest to {recipient} failed: {exc}") from exc
