"""Durable JSON documents in the data directory, replaced atomically."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Tuple

from richscan.ledger import CheckpointError, Ledger, empty_ledger


_LOGGER = logging.getLogger("richscan.storage")


def write_json_atomic(path: Path, payload: dict) -> None:
    """Write to a sibling temp file then os.replace, so readers never see a partial document."""

    path.parent.mkdir(parents=True, exist_ok=True)
    # key order is meaningful: balance maps keep ledger insertion order
    data = json.dumps(payload, indent=2)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def read_json(path: Path) -> Optional[dict]:
    """Return the parsed document, or None when the file does not exist.

    Invalid JSON or invalid UTF-8 propagates as a ``ValueError``.
    """

    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    return json.loads(text)


def load_checkpoint(path: Path) -> Tuple[Ledger, int]:
    """Load ``(ledger, last_scanned_height)``; absent or unreadable files start from genesis."""

    try:
        record = read_json(path)
    except (OSError, ValueError) as exc:
        _LOGGER.warning("checkpoint unreadable path=%s error=%s, starting from genesis", path, exc)
        return empty_ledger()
    if record is None:
        _LOGGER.info("checkpoint not found path=%s, starting fresh scan from genesis", path)
        return empty_ledger()
    try:
        return Ledger.from_record(record)
    except CheckpointError as exc:
        _LOGGER.warning("checkpoint rejected path=%s error=%s, starting from genesis", path, exc)
        return empty_ledger()


def save_checkpoint(path: Path, ledger: Ledger, last_scanned_height: int) -> None:
    write_json_atomic(path, ledger.to_record(last_scanned_height))


def read_snapshot(path: Path) -> Optional[dict]:
    return read_json(path)


def write_snapshot(path: Path, snapshot: dict) -> None:
    write_json_atomic(path, snapshot)
