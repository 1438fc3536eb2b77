"""Global configuration for DevDostHub."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable

DEFAULTS: dict[str, Any] = {
    "database_url": "",
    "jwt_secret": "change-me-devdosthub-secret",
    "jwt_algorithm": "HS256",
    "jwt_expires_days": 7,
    "gemini_api_key": "",
    "gemini_model": "gemini-2.5-flash",
    "gemini_base_url": "https://generativelanguage.googleapis.com/v1beta",
    "ai_timeout_seconds": 30.0,
    "events_per_page": 50,
    "atomic_rsvp": False,
    "enable_scheduler": False,
    "status_refresh_minutes": 15,
    "seed_users": 12,
    "seed_events": 8,
    "seed_rsvps_per_event": 5,
    "cors_origins": "*",
    "app_host": "0.0.0.0",
    "app_port": 5000,
}

TYPE_CASTERS: dict[str, Callable[[Any], Any]] = {
    "database_url": str,
    "jwt_secret": str,
    "jwt_algorithm": str,
    "jwt_expires_days": int,
    "gemini_api_key": str,
    "gemini_model": str,
    "gemini_base_url": str,
    "ai_timeout_seconds": float,
    "events_per_page": int,
    "atomic_rsvp": bool,
    "enable_scheduler": bool,
    "status_refresh_minutes": int,
    "seed_users": int,
    "seed_events": int,
    "seed_rsvps_per_event": int,
    "cors_origins": str,
    "app_host": str,
    "app_port": int,
}

# Masked in ``settings_as_dict`` output unless explicitly requested.
SECRET_KEYS = {"jwt_secret", "gemini_api_key"}


@dataclass(frozen=True)
class Settings:
    base_dir: Path
    data_dir: Path
    database_url: str
    jwt_secret: str
    jwt_algorithm: str
    jwt_expires_days: int
    gemini_api_key: str
    gemini_model: str
    gemini_base_url: str
    ai_timeout_seconds: float
    events_per_page: int
    atomic_rsvp: bool
    enable_scheduler: bool
    status_refresh_minutes: int
    seed_users: int
    seed_events: int
    seed_rsvps_per_event: int
    cors_origins: str
    app_host: str
    app_port: int
    config_path: Path

    @property
    def token_lifetime(self) -> timedelta:
        return timedelta(days=self.jwt_expires_days)

    @property
    def status_refresh_interval(self) -> timedelta:
        return timedelta(minutes=self.status_refresh_minutes)

    @property
    def allowed_origins(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


def _boolify(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    raise ValueError(f"Cannot parse boolean value from {value!r}")


def _cast_value(key: str, value: Any) -> Any:
    if key not in TYPE_CASTERS:
        return value
    caster = TYPE_CASTERS[key]
    if caster is bool:
        return _boolify(value)
    return caster(value)


def _load_toml_config(config_path: Path) -> dict[str, Any]:
    if not config_path.exists():
        return {}
    with config_path.open("rb") as handle:
        return tomllib.load(handle)


def _config_layered_value(key: str, *, toml_config: dict[str, Any]) -> Any:
    env_key = f"DEVDOSTHUB_{key.upper()}"
    if env_key in os.environ:
        return _cast_value(key, os.environ[env_key])
    if key in toml_config:
        return _cast_value(key, toml_config[key])
    return DEFAULTS[key]


def _resolve_database_url(raw: str, *, data_dir: Path) -> str:
    if raw:
        return raw
    return f"sqlite:///{data_dir / 'devdosthub.db'}"


def load_settings(config_override: Path | None = None) -> Settings:
    base_dir = Path(os.getenv("DEVDOSTHUB_BASE_DIR", Path.cwd()))
    env_config = os.getenv("DEVDOSTHUB_CONFIG")
    config_path = Path(config_override or env_config or base_dir / "devdosthub.toml")
    toml_config = _load_toml_config(config_path)

    raw_data_dir = os.getenv("DEVDOSTHUB_DATA_DIR", toml_config.get("data_dir"))
    data_dir = Path(raw_data_dir) if raw_data_dir else base_dir / "data"
    if not data_dir.is_absolute():
        data_dir = base_dir / data_dir

    values = {key: _config_layered_value(key, toml_config=toml_config) for key in DEFAULTS}
    # The conventional variable name used by the hosted AI console.
    if not values["gemini_api_key"] and os.getenv("GEMINI_API_KEY"):
        values["gemini_api_key"] = os.environ["GEMINI_API_KEY"]
    values["database_url"] = _resolve_database_url(
        values["database_url"], data_dir=data_dir
    )

    settings = Settings(
        base_dir=base_dir,
        data_dir=data_dir,
        config_path=config_path,
        **values,
    )
    if settings.database_url.startswith("sqlite:///"):
        settings.data_dir.mkdir(parents=True, exist_ok=True)
    return settings


def settings_as_dict(settings: Settings, *, include_secrets: bool = False) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "base_dir": str(settings.base_dir),
        "data_dir": str(settings.data_dir),
    }
    for key in DEFAULTS:
        if key in SECRET_KEYS and not include_secrets:
            payload[key] = "***" if getattr(settings, key) else ""
            continue
        payload[key] = getattr(settings, key)
    return payload


def _toml_literal(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def write_config_file(config: dict[str, Any], *, path: Path) -> None:
    lines = ["# DevDostHub configuration\n"]
    for key in sorted(config.keys()):
        lines.append(f"{key} = {_toml_literal(config[key])}\n")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("".join(lines), encoding="utf-8")


def update_config_file(updates: dict[str, Any], *, path: Path | None = None) -> Settings:
    current_settings = settings if "settings" in globals() else load_settings()
    target_path = path or current_settings.config_path
    existing = _load_toml_config(target_path)
    merged = {**existing}
    for key, value in updates.items():
        if key not in DEFAULTS:
            continue
        merged[key] = _cast_value(key, value)
    write_config_file(merged, path=target_path)
    new_settings = load_settings(target_path)
    globals()["settings"] = new_settings
    return new_settings


settings = load_settings()
