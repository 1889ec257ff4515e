"""Incremental block scanner: checkpoint, scan, snapshot."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Callable, Optional

from richscan.config import Settings
from richscan.indexer import IndexerClient
from richscan.ledger import Ledger, ledger_summary
from richscan.profiles import ScannerProfile, resolve_profile, select_profile
from richscan.richlist import build_rich_list
from richscan.storage import load_checkpoint, save_checkpoint, write_snapshot


PROGRESS_EVERY_BLOCKS = 10

_LOGGER = logging.getLogger("richscan.scanner")


class ScanState(str, Enum):
    IDLE = "idle"
    LOADING_CHECKPOINT = "loading_checkpoint"
    FETCHING_TARGET_HEIGHT = "fetching_target_height"
    SCANNING = "scanning"
    CHECKPOINTING = "checkpointing"
    EMITTING_SNAPSHOT = "emitting_snapshot"
    FAILED = "failed"


class ScanError(RuntimeError):
    """A scan pass stopped early. Progress up to ``last_scanned_height`` is checkpointed."""

    def __init__(self, message: str, height: Optional[int], last_scanned_height: int) -> None:
        super().__init__(message)
        self.height = height
        self.last_scanned_height = last_scanned_height


@dataclass(frozen=True)
class ScanResult:
    start_height: int
    end_height: int
    target_height: int
    blocks_processed: int
    transactions_processed: int
    duration_seconds: float
    snapshot_written: bool

    @property
    def up_to_date(self) -> bool:
        return self.blocks_processed == 0 and not self.snapshot_written

    def to_dict(self) -> dict:
        out = asdict(self)
        out["up_to_date"] = self.up_to_date
        return out


ClientFactory = Callable[[str, ScannerProfile], IndexerClient]


class ScanEngine:
    """Walks blocks from the last checkpoint to the chain tip.

    One pass runs at a time per engine; the checkpoint and snapshot files are
    written only from inside a pass.
    """

    def __init__(
        self,
        settings: Settings,
        profile: Optional[ScannerProfile] = None,
        client_factory: Optional[ClientFactory] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self.endpoint = settings.api_url
        self._client_factory = client_factory or (lambda url, prof: IndexerClient(url, prof))
        self._sleep = sleep
        self._clock = clock
        self._lock = threading.Lock()
        self.state = ScanState.IDLE
        self.profile = profile or select_profile(
            self.endpoint, settings.api_mode, settings.profile_overrides
        )
        self.client = self._client_factory(self.endpoint, self.profile)

    @property
    def running(self) -> bool:
        return self._lock.locked()

    def update_profile(self, new_mode: str) -> ScannerProfile:
        """Re-resolve the profile for ``new_mode`` keeping configured overrides."""

        with self._lock:
            if new_mode.strip().lower() == "auto":
                profile = select_profile(self.endpoint, None, self.settings.profile_overrides)
            else:
                profile = resolve_profile(new_mode, self.settings.profile_overrides)
            self._install(self.endpoint, profile)
            return profile

    def update_endpoint(self, endpoint: str) -> ScannerProfile:
        """Point the engine at another indexer and re-derive its profile."""

        with self._lock:
            profile = select_profile(endpoint, self.settings.api_mode, self.settings.profile_overrides)
            self._install(endpoint, profile)
            return profile

    def _install(self, endpoint: str, profile: ScannerProfile) -> None:
        _LOGGER.info("scanner profile switched endpoint=%s profile=%s", endpoint, profile.name)
        self.endpoint = endpoint
        self.profile = profile
        self.client = self._client_factory(endpoint, profile)

    def scan(self, blocking: bool = True) -> Optional[ScanResult]:
        """Run one pass. With ``blocking=False`` returns None if a pass is already active."""

        if not self._lock.acquire(blocking=blocking):
            _LOGGER.warning("scan skipped reason=already_running")
            return None
        try:
            return self._run_pass()
        finally:
            self._lock.release()

    def _checkpoint(self, ledger: Ledger, height: int) -> None:
        save_checkpoint(self.settings.state_path, ledger, height)

    def _run_pass(self) -> ScanResult:
        started = self._clock()
        profile = self.profile
        client = self.client
        _LOGGER.info("scan start endpoint=%s profile=%s", self.endpoint, profile.name)

        self.state = ScanState.LOADING_CHECKPOINT
        ledger, last_height = load_checkpoint(self.settings.state_path)
        start_height = last_height
        _LOGGER.info("scan loaded checkpoint last_scanned=%s addresses=%s", last_height, len(ledger))

        self.state = ScanState.FETCHING_TARGET_HEIGHT
        try:
            target = client.get_height()
        except Exception as exc:
            self.state = ScanState.FAILED
            _LOGGER.exception("scan failed fetching chain height")
            raise ScanError(f"Failed to fetch chain height: {exc}", None, last_height) from exc
        _LOGGER.info("scan chain height=%s", target)

        if target <= last_height:
            self.state = ScanState.IDLE
            _LOGGER.info("scan already up to date last_scanned=%s height=%s", last_height, target)
            return ScanResult(
                start_height=start_height,
                end_height=last_height,
                target_height=target,
                blocks_processed=0,
                transactions_processed=0,
                duration_seconds=self._clock() - started,
                snapshot_written=False,
            )

        to_scan = target - last_height
        _LOGGER.info("scan need blocks=%s from=%s to=%s", to_scan, last_height + 1, target)
        self.state = ScanState.SCANNING
        blocks = 0
        txs = 0
        saved_height = start_height
        for height in range(last_height + 1, target + 1):
            try:
                block = client.get_block(height)
                txs += ledger.apply_block(block)
            except Exception as exc:
                self.state = ScanState.FAILED
                _LOGGER.exception("scan block failed height=%s", height)
                try:
                    self._checkpoint(ledger, last_height)
                    _LOGGER.info("scan checkpoint saved after failure last_scanned=%s", last_height)
                except Exception:
                    _LOGGER.exception("scan could not save checkpoint after failure")
                raise ScanError(f"Failed at block {height}: {exc}", height, last_height) from exc
            last_height = height
            blocks += 1

            if blocks % PROGRESS_EVERY_BLOCKS == 0:
                elapsed = max(self._clock() - started, 1e-9)
                _LOGGER.info(
                    "scan progress pct=%.2f block=%s/%s txs=%s rate=%.1f blocks/s",
                    blocks / to_scan * 100,
                    height,
                    target,
                    txs,
                    blocks / elapsed,
                )
            if blocks % profile.checkpoint_interval == 0:
                self.state = ScanState.CHECKPOINTING
                try:
                    self._checkpoint(ledger, last_height)
                except OSError as exc:
                    self.state = ScanState.FAILED
                    _LOGGER.exception("scan checkpoint write failed block=%s", last_height)
                    raise ScanError(
                        f"Failed to save checkpoint at block {last_height}: {exc}", last_height, saved_height
                    ) from exc
                saved_height = last_height
                _LOGGER.info("scan checkpoint saved block=%s", last_height)
                self.state = ScanState.SCANNING
            if blocks % profile.batch_size == 0 and height < target:
                self._sleep(profile.throttle_seconds)

        self.state = ScanState.EMITTING_SNAPSHOT
        try:
            self._checkpoint(ledger, last_height)
            snapshot = build_rich_list(ledger, target, self.settings.min_balance)
            write_snapshot(self.settings.rich_list_path, snapshot)
        except Exception:
            self.state = ScanState.FAILED
            _LOGGER.exception("scan failed emitting snapshot")
            raise
        self.state = ScanState.IDLE

        duration = self._clock() - started
        _LOGGER.info(
            "scan complete listed=%s min_balance=%s summary=%s duration=%.2fs",
            snapshot["totalAddresses"],
            self.settings.min_balance,
            ledger_summary(ledger, last_height),
            duration,
        )
        return ScanResult(
            start_height=start_height,
            end_height=last_height,
            target_height=target,
            blocks_processed=blocks,
            transactions_processed=txs,
            duration_seconds=duration,
            snapshot_written=True,
        )
