import pytest

from job_rss_digest import main as cli
from job_rss_digest.config import ConfigError

SMTP_KEYS = ("SMTP_HOST", "SMTP_PORT", "SMTP_USER", "SMTP_PASS", "SMTP_FROM", "ADMIN_EMAIL", "DB_PATH")


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):  # type: ignore[no-untyped-def]
    for key in SMTP_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_load_runtime_settings_requires_smtp_when_sending() -> None:
    with pytest.raises(ConfigError):
        cli.load_runtime_settings(db_path_override=None, require_smtp=True)


def test_load_runtime_settings_parses_smtp_env(monkeypatch) -> None:
    monkeypatch.setenv("SMTP_HOST", "smtp.example.com")
    monkeypatch.setenv("SMTP_PORT", "465")
    monkeypatch.setenv("SMTP_FROM", "noreply@example.com")
    settings = cli.load_runtime_settings(db_path_override="x.db", require_smtp=True)
    assert settings.db_path == "x.db"
    assert settings.smtp_config is not None
    assert settings.smtp_config.use_ssl is True


def test_self_test_with_bundled_config(tmp_path, capsys) -> None:
    exit_code = cli.main(["self-test", "--skip-smtp", "--db-path", str(tmp_path / "jobs.db")])
    assert exit_code == 0
    assert "self-test: ok" in capsys.readouterr().out


def test_main_returns_error_code_on_invalid_config(tmp_path) -> None:
    exit_code = cli.main(
        [
            "digest",
            "--dry-run",
            "--policy",
            str(tmp_path / "missing.yaml"),
            "--db-path",
            str(tmp_path / "jobs.db"),
        ]
    )
    assert exit_code == 1


def test_digest_dry_run_on_empty_store(tmp_path, capsys) -> None:
    exit_code = cli.main(["digest", "--dry-run", "--db-path", str(tmp_path / "jobs.db")])
    assert exit_code == 0
    assert "appended=0 emailed=0" in capsys.readouterr().out
