"""Environment-driven settings for the scanner service."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional


DEFAULT_API_URL = "http://fluxblockbook_explorertest2:9158/api/v2"
DEFAULT_DATA_DIR = "/data"
DEFAULT_CRON_SCHEDULE = "0 2 * * *"
DEFAULT_SERVICE_NAME = "flux-rich-list-scanner"

STATE_FILENAME = "scan-state.json"
RICH_LIST_FILENAME = "rich-list.json"

# env var -> ScannerProfile field
PROFILE_OVERRIDE_ENV = {
    "API_TIMEOUT": "timeout_ms",
    "API_RETRY_LIMIT": "retry_limit",
    "BATCH_SIZE": "batch_size",
    "THROTTLE_DELAY": "throttle_delay_ms",
    "CHECKPOINT_INTERVAL": "checkpoint_interval",
}

_LOGGER = logging.getLogger("richscan.config")


def _load_dotenv(path: str = ".env") -> None:
    env_file = Path(path)
    if not env_file.exists():
        return
    for line in env_file.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() not in {"0", "false", "no", "off"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        _LOGGER.warning("config invalid int name=%s value=%r default=%s", name, raw, default)
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        _LOGGER.warning("config invalid number name=%s value=%r default=%s", name, raw, default)
        return default


def _profile_overrides() -> Dict[str, int]:
    overrides: Dict[str, int] = {}
    for env_name, field_name in PROFILE_OVERRIDE_ENV.items():
        raw = os.getenv(env_name)
        if raw is None or raw.strip() == "":
            continue
        try:
            overrides[field_name] = int(raw)
        except ValueError:
            _LOGGER.warning("config ignoring override name=%s value=%r", env_name, raw)
    return overrides


@dataclass(frozen=True)
class Settings:
    api_url: str = DEFAULT_API_URL
    data_dir: Path = Path(DEFAULT_DATA_DIR)
    min_balance: float = 1.0
    cron_schedule: str = DEFAULT_CRON_SCHEDULE
    run_scan_on_startup: bool = True
    api_mode: str = "auto"
    profile_overrides: Dict[str, int] = field(default_factory=dict)
    host: str = "0.0.0.0"
    port: int = 3001
    service_name: str = DEFAULT_SERVICE_NAME
    log_level: str = "INFO"

    @property
    def state_path(self) -> Path:
        return self.data_dir / STATE_FILENAME

    @property
    def rich_list_path(self) -> Path:
        return self.data_dir / RICH_LIST_FILENAME


def load_settings(dotenv_path: Optional[str] = ".env") -> Settings:
    """Read settings from the environment, after merging a .env file if present."""

    if dotenv_path:
        _load_dotenv(dotenv_path)
    return Settings(
        api_url=os.getenv("BLOCKBOOK_API_URL") or DEFAULT_API_URL,
        data_dir=Path(os.getenv("DATA_DIR") or DEFAULT_DATA_DIR),
        min_balance=_env_float("MIN_BALANCE", 1.0),
        cron_schedule=os.getenv("CRON_SCHEDULE", DEFAULT_CRON_SCHEDULE).strip(),
        run_scan_on_startup=_env_bool("RUN_SCAN_ON_STARTUP", True),
        api_mode=(os.getenv("API_MODE") or "auto").strip().lower(),
        profile_overrides=_profile_overrides(),
        host=os.getenv("HOST") or "0.0.0.0",
        port=_env_int("PORT", 3001),
        service_name=os.getenv("SERVICE_NAME") or DEFAULT_SERVICE_NAME,
        log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
    )
