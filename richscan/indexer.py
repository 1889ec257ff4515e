"""Blockbook-style indexer client: chain height, blocks and transactions."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple, Union

import requests

from richscan.profiles import ScannerProfile


RETRY_STATUS_CODES = frozenset({408, 413, 429, 500, 502, 503, 504})
RETRY_BACKOFF_SECONDS = 0.5
STATUS_PATH = "api"

_LOGGER = logging.getLogger("richscan.indexer")


class IndexerError(RuntimeError):
    """Raised when the indexer cannot be reached or returns an unusable payload."""


@dataclass(frozen=True)
class TxInput:
    addresses: Tuple[str, ...]
    value: Optional[int]
    is_generation: bool = False


@dataclass(frozen=True)
class TxOutput:
    addresses: Tuple[str, ...]
    value: Optional[int]


@dataclass(frozen=True)
class Transaction:
    txid: str
    inputs: Tuple[TxInput, ...]
    outputs: Tuple[TxOutput, ...]


@dataclass(frozen=True)
class BlockWithInlineTxs:
    height: int
    hash: str
    transactions: Tuple[Transaction, ...]


@dataclass(frozen=True)
class BlockWithTxRefs:
    height: int
    hash: str
    txids: Tuple[str, ...]


BlockPayload = Union[BlockWithInlineTxs, BlockWithTxRefs]


def _int_value(value: object) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise IndexerError(f"Unexpected boolean amount: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError as exc:
            raise IndexerError(f"Invalid amount: {value!r}") from exc
    raise IndexerError(f"Invalid amount: {value!r}")


def _addresses(item: dict) -> Tuple[str, ...]:
    raw = item.get("addresses")
    if raw is None and item.get("address"):
        raw = [item["address"]]
    if not raw:
        return ()
    if isinstance(raw, str):
        return (raw,)
    return tuple(str(addr) for addr in raw if addr)


def parse_transaction(payload: dict) -> Transaction:
    if not isinstance(payload, dict):
        raise IndexerError(f"Transaction payload is not an object: {type(payload).__name__}")
    inputs = []
    for vin in payload.get("vin") or []:
        is_generation = bool(vin.get("coinbase") or vin.get("isGeneration"))
        inputs.append(
            TxInput(
                addresses=() if is_generation else _addresses(vin),
                value=None if is_generation else _int_value(vin.get("value")),
                is_generation=is_generation,
            )
        )
    outputs = [
        TxOutput(addresses=_addresses(vout), value=_int_value(vout.get("value")))
        for vout in payload.get("vout") or []
    ]
    return Transaction(
        txid=str(payload.get("txid") or ""),
        inputs=tuple(inputs),
        outputs=tuple(outputs),
    )


def _is_inline(tx_entries: Sequence[object]) -> bool:
    return all(isinstance(tx, dict) and ("vin" in tx or "vout" in tx) for tx in tx_entries)


def parse_block(height: int, pages: Sequence[dict]) -> BlockPayload:
    """Resolve the block shape once from every page of the block payload."""

    if not pages or not isinstance(pages[0], dict):
        raise IndexerError(f"Empty block payload at height {height}")
    block_hash = str(pages[0].get("hash") or "")
    entries: List[object] = []
    for page in pages:
        entries.extend(page.get("txs") or [])
    if _is_inline(entries):
        return BlockWithInlineTxs(
            height=height,
            hash=block_hash,
            transactions=tuple(parse_transaction(tx) for tx in entries),
        )
    txids = []
    for tx in entries:
        txid = tx.get("txid") if isinstance(tx, dict) else tx
        if not txid:
            raise IndexerError(f"Transaction reference without txid in block {height}")
        txids.append(str(txid))
    return BlockWithTxRefs(height=height, hash=block_hash, txids=tuple(txids))


class IndexerClient:
    def __init__(
        self,
        base_url: str,
        profile: ScannerProfile,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.profile = profile
        self.session = session or requests.Session()
        self._sleep = sleep

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _get_json(self, path: str, params: Optional[dict] = None) -> dict:
        url = self._url(path)
        attempts = self.profile.retry_limit + 1
        last_error: Optional[str] = None
        for attempt in range(attempts):
            try:
                response = self.session.get(
                    url,
                    params=params,
                    headers={"accept": "application/json"},
                    timeout=self.profile.timeout_seconds,
                )
            except (requests.ConnectionError, requests.Timeout) as exc:
                last_error = str(exc)
                _LOGGER.warning("indexer request error url=%s attempt=%s error=%s", url, attempt + 1, exc)
            else:
                if response.status_code in RETRY_STATUS_CODES:
                    last_error = f"HTTP {response.status_code}"
                    _LOGGER.warning(
                        "indexer retryable status=%s url=%s attempt=%s",
                        response.status_code,
                        url,
                        attempt + 1,
                    )
                elif response.status_code >= 400:
                    raise IndexerError(f"HTTP {response.status_code} from {url}: {response.text[:300]}")
                else:
                    try:
                        return response.json()
                    except ValueError as exc:
                        raise IndexerError(f"Invalid JSON from {url}") from exc
            if attempt < attempts - 1:
                self._sleep(RETRY_BACKOFF_SECONDS * (2**attempt))
        raise IndexerError(f"Request failed after {attempts} attempts url={url}: {last_error}")

    def get_height(self) -> int:
        status = self._get_json(STATUS_PATH)
        try:
            return int(status["backend"]["blocks"])
        except (KeyError, TypeError, ValueError) as exc:
            raise IndexerError("No backend.blocks in indexer status response") from exc

    def ping(self) -> bool:
        try:
            self.get_height()
        except IndexerError:
            return False
        return True

    def fetch_block_payload(self, height: int) -> BlockPayload:
        first = self._get_json(f"block/{height}")
        pages = [first]
        total_pages = int(first.get("totalPages") or 1)
        for page in range(2, total_pages + 1):
            pages.append(self._get_json(f"block/{height}", params={"page": page}))
        return parse_block(height, pages)

    def get_transaction(self, txid: str) -> Transaction:
        return parse_transaction(self._get_json(f"tx/{txid}"))

    def get_block(self, height: int) -> BlockWithInlineTxs:
        """Fetch a block with its full transaction set, following txid references."""

        payload = self.fetch_block_payload(height)
        if isinstance(payload, BlockWithInlineTxs):
            return payload
        transactions = tuple(self.get_transaction(txid) for txid in payload.txids)
        return BlockWithInlineTxs(height=payload.height, hash=payload.hash, transactions=transactions)
