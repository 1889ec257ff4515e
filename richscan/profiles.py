"""Scanner tuning profiles selected from the indexer endpoint's locality."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, fields, replace
from typing import Mapping, Optional
from urllib.parse import urlsplit


LOCAL = "local"
PUBLIC = "public"
AUTO = "auto"

_MODE_ALIASES = {
    "local": LOCAL,
    "aggressive": LOCAL,
    "public": PUBLIC,
    "conservative": PUBLIC,
}

INTERNAL_DNS_SUFFIXES = (".internal", ".local", ".lan", ".svc", ".cluster.local")

_LOOPBACK_HOSTS = {"localhost", "127.0.0.1", "::1", "0.0.0.0"}
_PRIVATE_RE = re.compile(
    r"^(10\.\d{1,3}\.\d{1,3}\.\d{1,3}"
    r"|192\.168\.\d{1,3}\.\d{1,3}"
    r"|172\.(1[6-9]|2[0-9]|3[0-1])\.\d{1,3}\.\d{1,3}"
    r"|127\.\d{1,3}\.\d{1,3}\.\d{1,3})$"
)

_LOGGER = logging.getLogger("richscan.profiles")


@dataclass(frozen=True)
class ScannerProfile:
    name: str
    timeout_ms: int
    retry_limit: int
    batch_size: int
    throttle_delay_ms: int
    checkpoint_interval: int
    health_check_interval_ms: int

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0

    @property
    def throttle_seconds(self) -> float:
        return self.throttle_delay_ms / 1000.0


AGGRESSIVE = ScannerProfile(
    name="aggressive",
    timeout_ms=10_000,
    retry_limit=1,
    batch_size=500,
    throttle_delay_ms=100,
    checkpoint_interval=5_000,
    health_check_interval_ms=30_000,
)

CONSERVATIVE = ScannerProfile(
    name="conservative",
    timeout_ms=60_000,
    retry_limit=3,
    batch_size=50,
    throttle_delay_ms=2_000,
    checkpoint_interval=1_000,
    health_check_interval_ms=60_000,
)

BASE_PROFILES = {LOCAL: AGGRESSIVE, PUBLIC: CONSERVATIVE}

# retry_limit and throttle_delay_ms may legitimately be zero
_NON_NEGATIVE_FIELDS = {"retry_limit", "throttle_delay_ms"}
_OVERRIDABLE = {f.name for f in fields(ScannerProfile)} - {"name"}


def _host(endpoint_url: str) -> str:
    candidate = endpoint_url.strip()
    if "://" not in candidate:
        candidate = f"http://{candidate}"
    try:
        return (urlsplit(candidate).hostname or "").lower()
    except ValueError:
        return ""


def classify(endpoint_url: str) -> str:
    """Return "local" for loopback, RFC1918 or internal service hosts, else "public"."""

    host = _host(endpoint_url)
    if not host:
        return PUBLIC
    if host in _LOOPBACK_HOSTS or _PRIVATE_RE.match(host):
        return LOCAL
    # docker/compose service names have no dots
    if "." not in host and ":" not in host:
        return LOCAL
    if host.endswith(INTERNAL_DNS_SUFFIXES):
        return LOCAL
    return PUBLIC


def normalize_mode(mode: Optional[str]) -> str:
    if mode is None:
        return AUTO
    cleaned = mode.strip().lower()
    if not cleaned or cleaned == AUTO:
        return AUTO
    if cleaned not in _MODE_ALIASES:
        raise ValueError(f"Unknown scanner mode: {mode!r}")
    return _MODE_ALIASES[cleaned]


def resolve_profile(mode: str, overrides: Optional[Mapping[str, Optional[int]]] = None) -> ScannerProfile:
    """Merge the named base profile with per-field overrides.

    Each override replaces its base field independently; ``None`` keeps the base.
    """

    resolved_mode = normalize_mode(mode)
    if resolved_mode == AUTO:
        raise ValueError("resolve_profile needs a concrete mode, classify the endpoint first")
    base = BASE_PROFILES[resolved_mode]
    changes = {}
    for key, value in (overrides or {}).items():
        if key not in _OVERRIDABLE:
            raise ValueError(f"Unknown profile field: {key}")
        if value is None:
            continue
        value = int(value)
        floor = 0 if key in _NON_NEGATIVE_FIELDS else 1
        if value < floor:
            raise ValueError(f"Profile field {key} must be >= {floor}, got {value}")
        changes[key] = value
    return replace(base, **changes) if changes else base


def select_profile(
    endpoint_url: str,
    mode: Optional[str] = None,
    overrides: Optional[Mapping[str, Optional[int]]] = None,
) -> ScannerProfile:
    resolved_mode = normalize_mode(mode)
    if resolved_mode == AUTO:
        resolved_mode = classify(endpoint_url)
        _LOGGER.info("profile auto-detected mode=%s url=%s", resolved_mode, endpoint_url)
    profile = resolve_profile(resolved_mode, overrides)
    _LOGGER.info(
        "profile selected name=%s batch_size=%s throttle_ms=%s timeout_ms=%s retries=%s checkpoint_interval=%s",
        profile.name,
        profile.batch_size,
        profile.throttle_delay_ms,
        profile.timeout_ms,
        profile.retry_limit,
        profile.checkpoint_interval,
    )
    return profile
