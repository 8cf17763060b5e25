from __future__ import annotations

import argparse
import logging
import os
import sys
import traceback
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from job_rss_digest.config import ConfigError, load_policy_config, load_rules_config, load_sources_config
from job_rss_digest.mailer import SmtpConfig, build_failure_body, build_failure_subject, send_text_email
from job_rss_digest.pipeline import PipelineResult, run_pipeline
from job_rss_digest.storage import SQLiteStore

LOGGER = logging.getLogger("job_rss_digest")


@dataclass(frozen=True)
class RuntimeSettings:
    admin_email: str | None
    db_path: str
    smtp_config: SmtpConfig | None


def _parse_bool_env(key: str, default: bool) -> bool:
    raw = os.getenv(key)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def load_runtime_settings(db_path_override: str | None, require_smtp: bool) -> RuntimeSettings:
    admin_email = (os.getenv("ADMIN_EMAIL") or "").strip()
    db_path = (db_path_override or os.getenv("DB_PATH") or "data/jobs.db").strip()
    smtp_host = (os.getenv("SMTP_HOST") or "").strip()
    smtp_port_raw = (os.getenv("SMTP_PORT") or "").strip()
    smtp_user = (os.getenv("SMTP_USER") or "").strip()
    smtp_pass = (os.getenv("SMTP_PASS") or "").strip()
    smtp_from = (os.getenv("SMTP_FROM") or "").strip()

    smtp_config: SmtpConfig | None = None
    has_any_smtp = any([smtp_host, smtp_port_raw, smtp_user, smtp_pass, smtp_from])
    if has_any_smtp or require_smtp:
        missing = [key for key, value in {
            "SMTP_HOST": smtp_host,
            "SMTP_PORT": smtp_port_raw,
            "SMTP_FROM": smtp_from,
        }.items() if not value]
        if missing:
            raise ConfigError(f"Missing SMTP env: {', '.join(missing)}")
        try:
            smtp_port = int(smtp_port_raw)
        except ValueError as exc:
            raise ConfigError("SMTP_PORT must be integer") from exc
        smtp_config = SmtpConfig(
            host=smtp_host,
            port=smtp_port,
            user=smtp_user,
            password=smtp_pass,
            from_address=smtp_from,
            starttls=_parse_bool_env("SMTP_STARTTLS", True),
            use_ssl=_parse_bool_env("SMTP_USE_SSL", smtp_port == 465),
        )

    return RuntimeSettings(
        admin_email=admin_email or None,
        db_path=db_path,
        smtp_config=smtp_config,
    )


def configure_logging(log_level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def run_self_test(args: argparse.Namespace) -> int:
    load_sources_config(args.sources)
    load_rules_config(args.rules)
    load_policy_config(args.policy)
    settings = load_runtime_settings(
        db_path_override=args.db_path,
        require_smtp=not args.skip_smtp,
    )
    store = SQLiteStore(settings.db_path)
    try:
        store.initialize()
    finally:
        store.close()
    print("self-test: ok")
    return 0


def _notify_failure(settings: RuntimeSettings, message: str) -> None:
    if not settings.admin_email:
        LOGGER.error("Cannot send failure notification: ADMIN_EMAIL is missing")
        return
    if settings.smtp_config is None:
        LOGGER.error("Cannot send failure notification: SMTP config is missing")
        return
    now = datetime.now(timezone.utc)
    send_text_email(
        smtp_config=settings.smtp_config,
        to_address=settings.admin_email,
        subject=build_failure_subject(now),
        body=build_failure_body(now, message),
    )


def _warn_source_failures(settings: RuntimeSettings, result: PipelineResult) -> None:
    if settings.smtp_config is None or not settings.admin_email:
        return
    try:
        now = datetime.now(timezone.utc)
        headline = "Some feed sources failed this run."
        if result.fetched_count == 0:
            headline = "No listings were fetched (all sources failed or returned nothing)."
        message = "\n".join(
            [
                headline,
                "",
                *[
                    f"- {failure.source_id} ({failure.source_url}): {failure.error}"
                    for failure in result.failures
                ],
            ]
        )
        send_text_email(
            smtp_config=settings.smtp_config,
            to_address=settings.admin_email,
            subject=f"[job-rss-digest][WARN] {now:%Y-%m-%d %H:%M} UTC feed fetch failures",
            body=message,
        )
    except Exception:  # noqa: BLE001
        LOGGER.exception("Failed to send fetch failure warning")


def _run(args: argparse.Namespace, *, ingest: bool, digest: bool) -> int:
    settings = load_runtime_settings(
        db_path_override=args.db_path,
        require_smtp=digest and not args.dry_run,
    )
    result = run_pipeline(
        sources_path=Path(args.sources),
        rules_path=Path(args.rules),
        policy_path=Path(args.policy),
        db_path=settings.db_path,
        smtp_config=settings.smtp_config,
        dry_run=args.dry_run,
        ingest=ingest,
        digest=digest,
    )
    LOGGER.info(
        "run complete: run_id=%s fetched=%s appended=%s emailed=%s invalid=%s duplicates=%s failures=%s dry_run=%s",
        result.run_id,
        result.fetched_count,
        result.appended,
        result.emailed,
        result.invalid_count,
        result.duplicate_count,
        len(result.failures),
        args.dry_run,
    )
    print(f"appended={result.appended} emailed={result.emailed}")
    should_warn = ingest and (bool(result.failures) or result.fetched_count == 0)
    if should_warn and not args.dry_run:
        _warn_source_failures(settings, result)
    return 0


def run_job(args: argparse.Namespace) -> int:
    return _run(args, ingest=True, digest=True)


def run_ingest_command(args: argparse.Namespace) -> int:
    return _run(args, ingest=True, digest=False)


def run_digest_command(args: argparse.Namespace) -> int:
    return _run(args, ingest=False, digest=True)


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--sources", default="data/sources.yaml")
    parser.add_argument("--rules", default="data/rules.yaml")
    parser.add_argument("--policy", default="data/policy.yaml")
    parser.add_argument("--db-path", default=None)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Collect job RSS feeds, score listings and send an email digest.")
    parser.add_argument("--log-level", default="INFO", help="DEBUG/INFO/WARNING/ERROR")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Fetch, score, store and send the digest.")
    _add_common_arguments(run_parser)
    run_parser.add_argument("--dry-run", action="store_true")
    run_parser.set_defaults(handler=run_job)

    ingest_parser = subparsers.add_parser("ingest", help="Fetch, score and store listings only.")
    _add_common_arguments(ingest_parser)
    ingest_parser.add_argument("--dry-run", action="store_true")
    ingest_parser.set_defaults(handler=run_ingest_command)

    digest_parser = subparsers.add_parser("digest", help="Send the digest from stored listings only.")
    _add_common_arguments(digest_parser)
    digest_parser.add_argument("--dry-run", action="store_true")
    digest_parser.set_defaults(handler=run_digest_command)

    self_test_parser = subparsers.add_parser("self-test", help="Validate config/env and DB init.")
    _add_common_arguments(self_test_parser)
    self_test_parser.add_argument("--skip-smtp", action="store_true")
    self_test_parser.set_defaults(handler=run_self_test)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    try:
        return args.handler(args)
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("Unhandled error: %s", exc)
        try:
            settings = load_runtime_settings(
                db_path_override=getattr(args, "db_path", None),
                require_smtp=False,
            )
            _notify_failure(settings, traceback.format_exc())
        except Exception:  # noqa: BLE001
            LOGGER.exception("Failed to send failure notification")
        return 1


if __name__ == "__main__":
    sys.exit(main())
