from __future__ import annotations

import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


def _env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return float(v)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    return v.strip().lower() in ("1", "true", "yes", "y", "on")


def _env_str(name: str, default: str) -> str:
    v = os.getenv(name)
    return default if v is None else v


@dataclass
class Settings:
    # Scanning
    concurrent_requests: int = 5
    probe_timeout_s: float = 10.0
    scan_delay_s: float = 0.3
    skip_special_urls: bool = True
    auto_create_broken_folder: bool = True
    broken_folder_name: str = "Broken Links"
    user_agent: str = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"

    # Staleness
    stale_days: int = 90
    stale_delay_s: float = 0.05

    # Titles
    title_timeout_s: float = 8.0
    title_delay_s: float = 0.5

    # Wayback Machine
    wayback_delay_s: float = 0.2

    # Backups
    max_backups: int = 5

    # Logging / UX
    log_level: str = "INFO"
    no_color: bool = False

    @staticmethod
    def from_env() -> "Settings":
        s = Settings()
        s.concurrent_requests = _env_int("ROT_CONCURRENT_REQUESTS", s.concurrent_requests)
        s.probe_timeout_s = _env_float("ROT_PROBE_TIMEOUT_S", s.probe_timeout_s)
        s.scan_delay_s = _env_float("ROT_SCAN_DELAY_S", s.scan_delay_s)
        s.skip_special_urls = _env_bool("ROT_SKIP_SPECIAL_URLS", s.skip_special_urls)
        s.auto_create_broken_folder = _env_bool("ROT_AUTO_CREATE_BROKEN_FOLDER", s.auto_create_broken_folder)
        s.broken_folder_name = _env_str("ROT_BROKEN_FOLDER_NAME", s.broken_folder_name)
        s.user_agent = _env_str("ROT_USER_AGENT", s.user_agent)

        s.stale_days = _env_int("ROT_STALE_DAYS", s.stale_days)
        s.stale_delay_s = _env_float("ROT_STALE_DELAY_S", s.stale_delay_s)

        s.title_timeout_s = _env_float("ROT_TITLE_TIMEOUT_S", s.title_timeout_s)
        s.title_delay_s = _env_float("ROT_TITLE_DELAY_S", s.title_delay_s)

        s.wayback_delay_s = _env_float("ROT_WAYBACK_DELAY_S", s.wayback_delay_s)

        s.max_backups = _env_int("ROT_MAX_BACKUPS", s.max_backups)

        s.log_level = _env_str("ROT_LOG_LEVEL", s.log_level)
        s.no_color = _env_bool("ROT_NO_COLOR", s.no_color)
        return s

    @staticmethod
    def from_file(path: Path) -> "Settings":
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        s = Settings.from_env()
        s.update(data)
        return s

    def update(self, values: Dict[str, Any]) -> None:
        for k, v in values.items():
            if hasattr(self, k):
                setattr(self, k, v)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def load_settings(config_path: Optional[str]) -> Settings:
    if config_path:
        return Settings.from_file(Path(config_path))
    return Settings.from_env()
