from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from richscan.config import Settings, load_settings
from richscan.richlist import METADATA_FIELDS, metadata, paginate
from richscan.storage import read_snapshot

_LOGGER = logging.getLogger("richscan.api")
_LOGGER.setLevel(logging.INFO)

_NOT_GENERATED_MESSAGE = "The scanner has not completed its first run yet. Please try again later."


class HealthStatus(BaseModel):
    status: str = Field(description="Always 'ok' while the process is up.")
    service: str = Field(description="Service name.")
    timestamp: str = Field(description="Current server time, ISO-8601 UTC.")


class RichListEntry(BaseModel):
    rank: int
    address: str
    balance: float
    percentage: float = Field(description="Share of total supply, including unlisted addresses.")
    txCount: int


class RichListMetadata(BaseModel):
    lastUpdate: str = Field(description="When the snapshot was generated.")
    lastBlockHeight: int = Field(description="Chain height the snapshot reflects.")
    totalSupply: float = Field(description="Sum of every tracked balance.")
    totalAddresses: int = Field(description="Number of listed addresses.")


class RichListPage(RichListMetadata):
    page: int
    pageSize: int
    totalPages: int
    addresses: list[RichListEntry]


class _SnapshotUnavailable(Exception):
    def __init__(self, response: JSONResponse) -> None:
        super().__init__(response.status_code)
        self.response = response


def _read_failed() -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "message": "Failed to read rich list data"},
    )


def _well_formed(snapshot: object) -> bool:
    if not isinstance(snapshot, dict) or not isinstance(snapshot.get("addresses"), list):
        return False
    return all(key in snapshot for key in METADATA_FIELDS)


def _load_snapshot(settings: Settings) -> dict:
    path = settings.rich_list_path
    try:
        snapshot = read_snapshot(path)
    except (OSError, ValueError):
        _LOGGER.exception("rich list unreadable path=%s", path)
        raise _SnapshotUnavailable(_read_failed())
    if snapshot is None:
        raise _SnapshotUnavailable(
            JSONResponse(
                status_code=404,
                content={"error": "Rich list not yet generated", "message": _NOT_GENERATED_MESSAGE},
            )
        )
    if not _well_formed(snapshot):
        _LOGGER.error("rich list malformed path=%s", path)
        raise _SnapshotUnavailable(_read_failed())
    return snapshot


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _LOGGER.info(
            "startup service=%s data_dir=%s rich_list=%s",
            settings.service_name,
            settings.data_dir,
            settings.rich_list_path,
        )
        yield

    app = FastAPI(title="Rich List Scanner API", version="0.1", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    @app.middleware("http")
    async def log_http_request(request, call_next):
        _LOGGER.info(
            "http request method=%s path=%s client=%s",
            request.method,
            request.url.path,
            request.client.host if request.client else "unknown",
        )
        response = await call_next(request)
        _LOGGER.info("http response status=%s path=%s", response.status_code, request.url.path)
        return response

    @app.exception_handler(_SnapshotUnavailable)
    async def _snapshot_unavailable(request, exc: _SnapshotUnavailable):
        return exc.response

    @app.get("/health", response_model=HealthStatus)
    def health() -> dict:
        return {
            "status": "ok",
            "service": settings.service_name,
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        }

    @app.get("/rich-list")
    def rich_list() -> dict:
        return _load_snapshot(settings)

    @app.get("/rich-list/metadata", response_model=RichListMetadata)
    def rich_list_metadata() -> dict:
        return metadata(_load_snapshot(settings))

    @app.get("/rich-list/paginated", response_model=RichListPage)
    def rich_list_paginated(
        page: Optional[str] = Query(default=None, description="1-based page number."),
        pageSize: Optional[str] = Query(default=None, description="Entries per page, max 1000."),
    ) -> dict:
        return paginate(_load_snapshot(settings), page, pageSize)

    app.state.settings = settings
    return app


app = create_app()
