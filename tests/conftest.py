from __future__ import annotations

from typing import Optional

import pytest

from richscan.config import Settings
from richscan.profiles import resolve_profile
from richscan.scanner import ScanEngine


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(api_url="http://localhost:9158/api/v2", data_dir=tmp_path, min_balance=1.0)


@pytest.fixture
def make_engine(settings):
    def _make(indexer, sleeps: Optional[list] = None, **overrides) -> ScanEngine:
        profile = resolve_profile("local", overrides or None)
        return ScanEngine(
            settings,
            profile=profile,
            client_factory=lambda url, prof: indexer,
            sleep=(sleeps.append if sleeps is not None else (lambda seconds: None)),
        )

    return _make
