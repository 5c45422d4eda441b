"""Configuration handling for sync runs: JSON file plus environment overrides."""

from __future__ import annotations

import json
import os
import posixpath
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from adguard_sync.models import ALL_DOMAINS

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")
_INSTANCE_FIELDS = {
    "URL": "url",
    "API_PATH": "api_path",
    "USERNAME": "username",
    "PASSWORD": "password",
    "INSECURE_SKIP_VERIFY": "insecure_skip_verify",
    "TIMEOUT_SECONDS": "timeout_seconds",
}


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class InstanceConfig:
    url: str
    api_path: str = ""
    username: str = ""
    password: str = ""
    insecure_skip_verify: bool = False
    timeout_seconds: float = 10.0

    def api_url(self) -> str:
        base = self.url.rstrip("/")
        scheme, sep, rest = base.partition("://")
        if not sep:
            raise ConfigError(f"Instance URL must include a scheme: {self.url!r}")
        host, slash, path = rest.partition("/")
        suffix = self.api_path.strip("/") or "control"
        joined = posixpath.normpath("/" + posixpath.join(path if slash else "", suffix))
        return f"{scheme}://{host}{joined}"


@dataclass(frozen=True)
class Settings:
    origin: InstanceConfig
    replicas: tuple[InstanceConfig, ...]
    features: tuple[str, ...] = ALL_DOMAINS
    concurrency_limit: int = 0
    deadline_seconds: float | None = None
    interval_seconds: int = 0
    run_on_start: bool = True
    log_level: str = "INFO"
    config_path: Path | None = None


def resolve_config_path(path: Path) -> Path:
    config_path = path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Config file does not exist: {config_path}")
    if not config_path.is_file():
        raise ConfigError(f"Config path is not a file: {config_path}")
    return config_path


def load_config_file(path: Path) -> dict[str, Any]:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Config file {path} is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object")
    return payload


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _instance_overrides(environ: Mapping[str, str], prefix: str) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for suffix, field_name in _INSTANCE_FIELDS.items():
        value = environ.get(f"{prefix}_{suffix}")
        if value is not None:
            overrides[field_name] = value
    return overrides


def apply_env_overrides(data: Mapping[str, Any], environ: Mapping[str, str]) -> dict[str, Any]:
    """Merge ``ORIGIN_*``, ``REPLICA<n>_*`` and ``SYNC_*`` variables over file config.

    Replicas are numbered from 1 and scanning stops at the first number with
    no variables at all.
    """
    merged: dict[str, Any] = dict(data)
    origin = dict(merged.get("origin") or {})
    origin.update(_instance_overrides(environ, "ORIGIN"))
    if origin:
        merged["origin"] = origin

    replicas = [dict(item) for item in merged.get("replicas") or [] if isinstance(item, dict)]
    index = 1
    while True:
        overrides = _instance_overrides(environ, f"REPLICA{index}")
        if not overrides:
            break
        if index <= len(replicas):
            replicas[index - 1].update(overrides)
        else:
            replicas.append(overrides)
        index += 1
    merged["replicas"] = replicas

    if "SYNC_FEATURES" in environ:
        merged["features"] = [item.strip() for item in environ["SYNC_FEATURES"].split(",") if item.strip()]
    if "SYNC_CONCURRENCY" in environ:
        merged["concurrency"] = environ["SYNC_CONCURRENCY"]
    if "SYNC_DEADLINE_SECONDS" in environ:
        merged["deadline_seconds"] = environ["SYNC_DEADLINE_SECONDS"]
    if "SYNC_INTERVAL_SECONDS" in environ:
        merged["interval_seconds"] = environ["SYNC_INTERVAL_SECONDS"]
    if "SYNC_RUN_ON_START" in environ:
        merged["run_on_start"] = environ["SYNC_RUN_ON_START"]
    if "LOG_LEVEL" in environ:
        merged["log_level"] = environ["LOG_LEVEL"]
    return merged


def build_instance(data: Mapping[str, Any], label: str) -> InstanceConfig:
    url = str(data.get("url") or "").strip()
    if not url:
        raise ConfigError(f"{label} requires a url")
    try:
        timeout_seconds = float(data.get("timeout_seconds", 10.0))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{label} timeout_seconds must be a number") from exc
    instance = InstanceConfig(
        url=url,
        api_path=str(data.get("api_path") or ""),
        username=str(data.get("username") or ""),
        password=str(data.get("password") or ""),
        insecure_skip_verify=_parse_bool(data.get("insecure_skip_verify", False)),
        timeout_seconds=max(0.1, timeout_seconds),
    )
    instance.api_url()
    return instance


def build_settings(data: Mapping[str, Any], config_path: Path | None = None) -> Settings:
    origin_raw = data.get("origin")
    if not isinstance(origin_raw, Mapping):
        raise ConfigError("origin instance is not configured")
    origin = build_instance(origin_raw, "origin")

    replicas = tuple(
        build_instance(item, f"replica {position}")
        for position, item in enumerate(data.get("replicas") or [], start=1)
    )
    if not replicas:
        raise ConfigError("at least one replica must be configured")

    features_raw = data.get("features")
    features = ALL_DOMAINS if features_raw is None else tuple(str(item) for item in features_raw)
    unknown = sorted(set(features) - set(ALL_DOMAINS))
    if unknown:
        raise ConfigError(f"unknown features: {', '.join(unknown)}")

    try:
        concurrency_limit = int(data.get("concurrency", 0))
        deadline_raw = data.get("deadline_seconds")
        deadline_seconds = float(deadline_raw) if deadline_raw not in (None, "") else None
        interval_seconds = int(data.get("interval_seconds", 0))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"invalid numeric setting: {exc}") from exc
    if concurrency_limit < 0:
        raise ConfigError("concurrency must not be negative")
    if interval_seconds < 0:
        raise ConfigError("interval_seconds must not be negative")

    log_level = str(data.get("log_level", "INFO")).upper()
    if log_level not in LOG_LEVELS:
        raise ConfigError(f"log_level must be one of {', '.join(LOG_LEVELS)}")

    return Settings(
        origin=origin,
        replicas=replicas,
        features=features,
        concurrency_limit=concurrency_limit,
        deadline_seconds=deadline_seconds,
        interval_seconds=interval_seconds,
        run_on_start=_parse_bool(data.get("run_on_start", True)),
        log_level=log_level,
        config_path=config_path,
    )


def load_settings(path: Path | None, environ: Mapping[str, str] | None = None) -> Settings:
    data: dict[str, Any] = {}
    config_path: Path | None = None
    if path is not None:
        config_path = resolve_config_path(path)
        data = load_config_file(config_path)
    merged = apply_env_overrides(data, os.environ if environ is None else environ)
    return build_settings(merged, config_path=config_path)
