"""Global configuration for SummitKit."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable

DEFAULTS: dict[str, Any] = {
    "app_host": "0.0.0.0",
    "app_port": 8000,
    "database_url": "",
    "canvas_size": 1080,
    "photo_fraction": 0.6,
    "text_padding": 60,
    "export_quality": 95,
    "sticker_padding": 12,
    "sticker_default_width": 200,
    "sticker_min_width": 60,
    "handle_radius": 16,
    "frame_rate": 60,
    "card_session_ttl_minutes": 60,
    "session_purge_interval_minutes": 5,
    "image_cache_refresh_hours": 6,
    "image_fetch_timeout": 10.0,
    "image_max_bytes": 10 * 1024 * 1024,
    "image_max_pixels": 40_000_000,
    "upload_max_bytes": 5 * 1024 * 1024,
    "events_per_page": 10,
    "sqlite_busy_timeout_ms": 5000,
    "enable_scheduler": True,
    "font_path": "DejaVuSans-Bold.ttf",
    "regular_font_path": "DejaVuSans.ttf",
    "serif_italic_font_path": "DejaVuSerif-BoldItalic.ttf",
    "seed_members": 20,
    "seed_events": 6,
    "seed_sponsors": 5,
    "seed_companies": 8,
    "seed_posts": 6,
}

# Every key is cast to the type of its default.
TYPE_CASTERS: dict[str, Callable[[Any], Any]] = {
    key: type(default) for key, default in DEFAULTS.items()
}


@dataclass(frozen=True)
class Settings:
    base_dir: Path
    data_dir: Path
    uploads_dir: Path
    database_path: Path
    database_url: str
    app_host: str
    app_port: int
    canvas_size: int
    photo_fraction: float
    text_padding: int
    export_quality: int
    sticker_padding: int
    sticker_default_width: int
    sticker_min_width: int
    handle_radius: int
    frame_rate: int
    card_session_ttl_minutes: int
    session_purge_interval_minutes: int
    image_cache_refresh_hours: int
    image_fetch_timeout: float
    image_max_bytes: int
    image_max_pixels: int
    upload_max_bytes: int
    events_per_page: int
    sqlite_busy_timeout_ms: int
    enable_scheduler: bool
    font_path: str
    regular_font_path: str
    serif_italic_font_path: str
    seed_members: int
    seed_events: int
    seed_sponsors: int
    seed_companies: int
    seed_posts: int
    root_token_key: str
    config_path: Path

    @property
    def card_session_ttl(self) -> timedelta:
        return timedelta(minutes=self.card_session_ttl_minutes)

    @property
    def frame_interval(self) -> float:
        return 1.0 / max(self.frame_rate, 1)


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
    env_key = f"SUMMITKIT_{key.upper()}"
    if env_key in os.environ:
        return _cast_value(key, os.environ[env_key])
    if key in toml_config:
        return _cast_value(key, toml_config[key])
    return DEFAULTS[key]


def _resolve_paths(
    *,
    base_dir: Path,
    data_dir: str | Path | None,
    database_path: str | Path | None,
):
    resolved_base = Path(base_dir)
    resolved_data = Path(data_dir) if data_dir else resolved_base / "data"
    if not resolved_data.is_absolute():
        resolved_data = resolved_base / resolved_data
    resolved_db = Path(database_path) if database_path else resolved_data / "summitkit.db"
    if not resolved_db.is_absolute():
        resolved_db = resolved_base / resolved_db
    return resolved_base, resolved_data, resolved_db


def load_settings(config_override: Path | None = None) -> Settings:
    base_dir = Path(os.getenv("SUMMITKIT_BASE_DIR", Path.cwd()))
    env_config = os.getenv("SUMMITKIT_CONFIG")
    config_path = Path(config_override or env_config or base_dir / "summitkit.toml")
    toml_config = _load_toml_config(config_path)

    base_dir_value, data_dir_value, database_path_value = _resolve_paths(
        base_dir=base_dir,
        data_dir=os.getenv("SUMMITKIT_DATA_DIR", toml_config.get("data_dir")),
        database_path=os.getenv("SUMMITKIT_DB", toml_config.get("database_path")),
    )

    values = {
        key: _config_layered_value(key, toml_config=toml_config) for key in DEFAULTS
    }
    if not values["database_url"]:
        values["database_url"] = f"sqlite:///{database_path_value}"

    settings = Settings(
        base_dir=base_dir_value,
        data_dir=data_dir_value,
        uploads_dir=data_dir_value / "uploads",
        database_path=database_path_value,
        root_token_key="root_admin_token",
        config_path=config_path,
        **values,
    )
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.uploads_dir.mkdir(parents=True, exist_ok=True)
    return settings


def settings_as_dict(settings: Settings) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "base_dir": str(settings.base_dir),
        "data_dir": str(settings.data_dir),
        "database_path": str(settings.database_path),
    }
    for key in DEFAULTS:
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
    lines = ["# SummitKit configuration\n"]
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
