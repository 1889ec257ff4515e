"""Running address ledger and its durable checkpoint record."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, Optional, Tuple

from richscan.indexer import BlockWithInlineTxs, Transaction


SUBUNITS_PER_COIN = Decimal(10**8)
CHECKPOINT_SCHEMA_VERSION = 1

_LOGGER = logging.getLogger("richscan.ledger")


class CheckpointError(ValueError):
    """A checkpoint document could not be read into a ledger."""


def to_coins(subunits: int) -> Decimal:
    return Decimal(subunits) / SUBUNITS_PER_COIN


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class Ledger:
    balances: Dict[str, Decimal] = field(default_factory=dict)
    tx_counts: Dict[str, int] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.balances)

    def balance(self, address: str) -> Decimal:
        return self.balances.get(address, Decimal(0))

    def tx_count(self, address: str) -> int:
        return self.tx_counts.get(address, 0)

    def total_supply(self) -> Decimal:
        return sum(self.balances.values(), Decimal(0))

    def items(self) -> Iterable[Tuple[str, Decimal]]:
        return self.balances.items()

    def _touch(self, address: str) -> None:
        self.tx_counts[address] = self.tx_counts.get(address, 0) + 1

    def apply_transaction(self, tx: Transaction) -> None:
        deltas: Dict[str, Decimal] = {}

        for vin in tx.inputs:
            if vin.is_generation:
                continue
            if not vin.addresses or vin.value is None:
                continue
            amount = to_coins(vin.value)
            for address in vin.addresses:
                deltas[address] = deltas.get(address, Decimal(0)) - amount
                self._touch(address)

        for vout in tx.outputs:
            if not vout.addresses or vout.value is None:
                continue
            amount = to_coins(vout.value)
            for address in vout.addresses:
                deltas[address] = deltas.get(address, Decimal(0)) + amount
                # an address already debited in this tx only counts again once its net delta is non-negative
                if deltas[address] >= 0:
                    self._touch(address)

        for address, delta in deltas.items():
            new_balance = self.balances.get(address, Decimal(0)) + delta
            if new_balance > 0:
                self.balances[address] = new_balance
            else:
                self.balances.pop(address, None)
                self.tx_counts.pop(address, None)

    def apply_block(self, block: BlockWithInlineTxs) -> int:
        for tx in block.transactions:
            self.apply_transaction(tx)
        return len(block.transactions)

    def to_record(self, last_scanned_height: int) -> dict:
        return {
            "schemaVersion": CHECKPOINT_SCHEMA_VERSION,
            "lastScannedHeight": int(last_scanned_height),
            "totalSupply": str(self.total_supply()),
            "updatedAt": _utc_now_iso(),
            "balances": {address: str(balance) for address, balance in self.balances.items()},
            "txCounts": dict(self.tx_counts),
        }

    @classmethod
    def from_record(cls, record: dict) -> Tuple["Ledger", int]:
        """Return ``(ledger, last_scanned_height)`` from a checkpoint document.

        Documents without ``schemaVersion`` use the legacy flat layout
        (``lastScannedBlock``/``addressBalances``/``addressTxCounts``) and are
        migrated. Newer versions than this reader knows raise CheckpointError.
        """

        if not isinstance(record, dict):
            raise CheckpointError("Checkpoint is not a JSON object")
        version = record.get("schemaVersion")
        if version is None:
            height_key, balances_key, counts_key = "lastScannedBlock", "addressBalances", "addressTxCounts"
            _LOGGER.info("checkpoint migrating legacy layout")
        elif version == CHECKPOINT_SCHEMA_VERSION:
            height_key, balances_key, counts_key = "lastScannedHeight", "balances", "txCounts"
        else:
            raise CheckpointError(f"Unsupported checkpoint schemaVersion={version!r}")

        try:
            height = int(record.get(height_key) or 0)
            balances = {
                str(address): Decimal(str(value))
                for address, value in (record.get(balances_key) or {}).items()
            }
            counts = {str(address): int(value) for address, value in (record.get(counts_key) or {}).items()}
        except (TypeError, ValueError, OverflowError, InvalidOperation, AttributeError) as exc:
            raise CheckpointError(f"Malformed checkpoint: {exc}") from exc
        for address, balance in balances.items():
            if not balance.is_finite():
                raise CheckpointError(f"Non-finite balance for {address}: {balance}")
        if height < 0:
            raise CheckpointError(f"Negative checkpoint height {height}")

        ledger = cls()
        for address, balance in balances.items():
            if balance > 0:
                ledger.balances[address] = balance
                ledger.tx_counts[address] = counts.get(address, 0)
        dropped = len(balances) - len(ledger.balances)
        if dropped:
            _LOGGER.warning("checkpoint dropped non-positive balances count=%s", dropped)
        return ledger, height


def empty_ledger() -> Tuple[Ledger, int]:
    return Ledger(), 0


def ledger_summary(ledger: Ledger, height: Optional[int] = None) -> dict:
    return {
        "height": height,
        "addresses": len(ledger),
        "total_supply": str(ledger.total_supply()),
    }
