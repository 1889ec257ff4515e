from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from richscan.indexer import BlockWithInlineTxs, IndexerError, Transaction, TxInput, TxOutput


COIN = 10**8


def tx(
    txid: str,
    inputs: Sequence[Tuple[str, int]] = (),
    outputs: Sequence[Tuple[str, int]] = (),
    coinbase: bool = False,
) -> Transaction:
    """Build a transaction from (address, whole-coin amount) pairs."""

    vin = []
    if coinbase:
        vin.append(TxInput(addresses=(), value=None, is_generation=True))
    for address, amount in inputs:
        vin.append(TxInput(addresses=(address,), value=amount * COIN))
    vout = [TxOutput(addresses=(address,), value=amount * COIN) for address, amount in outputs]
    return Transaction(txid=txid, inputs=tuple(vin), outputs=tuple(vout))


def block(height: int, transactions: Iterable[Transaction]) -> BlockWithInlineTxs:
    return BlockWithInlineTxs(height=height, hash=f"hash{height}", transactions=tuple(transactions))


class FakeIndexer:
    def __init__(self, blocks: Optional[Dict[int, BlockWithInlineTxs]] = None, height: Optional[int] = None):
        self.blocks: Dict[int, BlockWithInlineTxs] = dict(blocks or {})
        self.height = height if height is not None else max(self.blocks, default=0)
        self.fail_at: set = set()
        self.fetched: List[int] = []

    def get_height(self) -> int:
        return self.height

    def get_block(self, height: int) -> BlockWithInlineTxs:
        self.fetched.append(height)
        if height in self.fail_at:
            raise IndexerError(f"boom at {height}")
        return self.blocks.get(height) or block(height, [])
