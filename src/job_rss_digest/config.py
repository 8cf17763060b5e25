from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from job_rss_digest.dedup import DEDUP_KEY_SELECTORS, DEDUPE_BY_LINK
from job_rss_digest.domain import ALLOWED_SCOPES, SCOPE_ANY_FIELD, Rule, RuleSet
from job_rss_digest.normalize import normalize_url


class ConfigError(ValueError):
    """Raised when YAML config is invalid."""


@dataclass(frozen=True)
class SourceConfig:
    id: str
    name: str
    url: str
    organization: str = ""
    enabled: bool = True
    timeout_sec: int = 20
    retries: int = 2


@dataclass(frozen=True)
class Policy:
    min_score: int | float
    top_n: int
    recipient: str
    dedupe_by: str = DEDUPE_BY_LINK
    date_format: str = "%Y-%m-%d"
    cover_letter_path: str | None = None
    pacing_sec: float = 1.0


def _require_str(data: dict[str, Any], key: str, path: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"{path}.{key} must be a non-empty string")
    return value.strip()


def _require_keyword(data: dict[str, Any], key: str, path: str) -> str:
    # Kept verbatim; surrounding spaces are part of the match.
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"{path}.{key} must be a non-empty string")
    return value


def _optional_str(data: dict[str, Any], key: str, default: str | None, path: str) -> str | None:
    value = data.get(key, default)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(f"{path}.{key} must be a string")
    return value.strip()


def _optional_bool(data: dict[str, Any], key: str, default: bool, path: str) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"{path}.{key} must be bool")
    return value


def _optional_int(data: dict[str, Any], key: str, default: int, minimum: int, path: str) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise ConfigError(f"{path}.{key} must be int >= {minimum}")
    return value


def _require_int(data: dict[str, Any], key: str, minimum: int, path: str) -> int:
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise ConfigError(f"{path}.{key} must be int >= {minimum}")
    return value


def _require_number(data: dict[str, Any], key: str, path: str) -> int | float:
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{path}.{key} must be a number")
    return value


def _optional_float(data: dict[str, Any], key: str, default: float, minimum: float, path: str) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < minimum:
        raise ConfigError(f"{path}.{key} must be a number >= {minimum}")
    return float(value)


def _read_yaml(path: str | Path) -> dict[str, Any]:
    resolved = Path(path)
    if not resolved.exists():
        raise ConfigError(f"Config file does not exist: {resolved}")
    with resolved.open("r", encoding="utf-8") as handle:
        try:
            payload = yaml.safe_load(handle) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {resolved}: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigError(f"Config root must be a mapping: {resolved}")
    return payload


def load_sources_config(path: str | Path) -> list[SourceConfig]:
    payload = _read_yaml(path)
    sources = payload.get("sources")
    if not isinstance(sources, list) or not sources:
        raise ConfigError("sources must be a non-empty list")

    seen_ids: set[str] = set()
    seen_urls: set[str] = set()
    parsed: list[SourceConfig] = []
    for index, raw in enumerate(sources):
        node_path = f"sources[{index}]"
        if not isinstance(raw, dict):
            raise ConfigError(f"{node_path} must be a mapping")
        source_id = _require_str(raw, "id", node_path)
        if source_id in seen_ids:
            raise ConfigError(f"Duplicate source id: {source_id}")
        seen_ids.add(source_id)
        url = _require_str(raw, "url", node_path)
        if not (url.startswith("http://") or url.startswith("https://")):
            raise ConfigError(f"{node_path}.url must start with http:// or https://")
        normalized_url = normalize_url(url)
        if normalized_url in seen_urls:
            raise ConfigError(f"Duplicate source url: {url}")
        seen_urls.add(normalized_url)
        parsed.append(
            SourceConfig(
                id=source_id,
                name=_require_str(raw, "name", node_path),
                url=url,
                organization=_optional_str(raw, "organization", "", node_path) or "",
                enabled=_optional_bool(raw, "enabled", True, node_path),
                timeout_sec=_optional_int(raw, "timeout_sec", 20, 1, node_path),
                retries=_optional_int(raw, "retries", 2, 0, node_path),
            )
        )
    return parsed


def parse_rules(raw_rules: Any) -> RuleSet:
    if not isinstance(raw_rules, list):
        raise ConfigError("rules must be a list")

    parsed: list[Rule] = []
    for index, raw in enumerate(raw_rules):
        node_path = f"rules[{index}]"
        if not isinstance(raw, dict):
            raise ConfigError(f"{node_path} must be a mapping")
        scope = (_optional_str(raw, "scope", SCOPE_ANY_FIELD, node_path) or "").lower()
        if scope not in ALLOWED_SCOPES:
            raise ConfigError(f"{node_path}.scope must be one of {', '.join(ALLOWED_SCOPES)}")
        parsed.append(
            Rule(
                keyword=_require_keyword(raw, "keyword", node_path),
                weight=_require_number(raw, "weight", node_path),
                scope=scope,
            )
        )
    return RuleSet(rules=tuple(parsed))


def load_rules_config(path: str | Path) -> RuleSet:
    payload = _read_yaml(path)
    return parse_rules(payload.get("rules"))


def parse_policy(raw: Any) -> Policy:
    node_path = "policy"
    if not isinstance(raw, dict):
        raise ConfigError("policy must be a mapping")

    dedupe_by = _optional_str(raw, "dedupe_by", DEDUPE_BY_LINK, node_path) or ""
    if dedupe_by not in DEDUP_KEY_SELECTORS:
        raise ConfigError(f"{node_path}.dedupe_by must be one of {', '.join(sorted(DEDUP_KEY_SELECTORS))}")

    date_format = _optional_str(raw, "date_format", "%Y-%m-%d", node_path) or ""
    if "%" not in date_format:
        raise ConfigError(f"{node_path}.date_format must be a strftime pattern")

    recipient = _require_str(raw, "recipient", node_path)
    if "@" not in recipient:
        raise ConfigError(f"{node_path}.recipient must be an email address")

    return Policy(
        min_score=_require_number(raw, "min_score", node_path),
        top_n=_require_int(raw, "top_n", 1, node_path),
        recipient=recipient,
        dedupe_by=dedupe_by,
        date_format=date_format,
        cover_letter_path=_optional_str(raw, "cover_letter_path", None, node_path) or None,
        pacing_sec=_optional_float(raw, "pacing_sec", 1.0, 0.0, node_path),
    )


def load_policy_config(path: str | Path) -> Policy:
    payload = _read_yaml(path)
    return parse_policy(payload.get("policy"))
