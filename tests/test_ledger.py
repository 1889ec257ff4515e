from decimal import Decimal

import pytest

from helpers import COIN, block, tx
from richscan.indexer import Transaction, TxInput, TxOutput
from richscan.ledger import CHECKPOINT_SCHEMA_VERSION, CheckpointError, Ledger


def test_coinbase_credits_output():
    ledger = Ledger()
    ledger.apply_transaction(tx("cb", outputs=[("C", 5)], coinbase=True))
    assert ledger.balance("C") == Decimal(5)
    assert ledger.tx_count("C") == 1
    assert ledger.total_supply() == Decimal(5)


def test_simple_transfer_removes_emptied_sender():
    ledger = Ledger(balances={"A": Decimal(10)}, tx_counts={"A": 1})
    ledger.apply_transaction(tx("t1", inputs=[("A", 10)], outputs=[("B", 7)]))
    assert "A" not in ledger.balances
    assert "A" not in ledger.tx_counts
    assert ledger.balance("B") == Decimal(7)
    assert ledger.total_supply() == Decimal(7)


def test_count_resets_after_balance_reaches_zero():
    ledger = Ledger(balances={"A": Decimal(2)}, tx_counts={"A": 9})
    ledger.apply_transaction(tx("spend", inputs=[("A", 2)], outputs=[("B", 2)]))
    ledger.apply_transaction(tx("refill", inputs=[("B", 2)], outputs=[("A", 1), ("B", 1)]))
    assert ledger.balance("A") == Decimal(1)
    assert ledger.tx_count("A") == 1


def test_change_output_counts_only_when_net_delta_non_negative():
    ledger = Ledger(balances={"A": Decimal(10)}, tx_counts={"A": 0})
    # spends 10, gets 4 back as change: net -6, output pass does not count again
    ledger.apply_transaction(tx("t", inputs=[("A", 10)], outputs=[("A", 4), ("B", 6)]))
    assert ledger.balance("A") == Decimal(4)
    assert ledger.tx_count("A") == 1
    assert ledger.tx_count("B") == 1


def test_self_payment_with_positive_net_counts_twice():
    ledger = Ledger(balances={"A": Decimal(3)}, tx_counts={"A": 0})
    tx_ = Transaction(
        txid="t",
        inputs=(TxInput(addresses=("A",), value=1 * COIN),),
        outputs=(
            TxOutput(addresses=("A",), value=2 * COIN),
            TxOutput(addresses=("A",), value=1 * COIN),
        ),
    )
    ledger.apply_transaction(tx_)
    # input +1, first output net +1 (counted), second output net +2 (counted)
    assert ledger.tx_count("A") == 3
    assert ledger.balance("A") == Decimal(5)


def test_inputs_without_address_or_value_are_skipped():
    ledger = Ledger()
    tx_ = Transaction(
        txid="t",
        inputs=(TxInput(addresses=(), value=5 * COIN), TxInput(addresses=("X",), value=None)),
        outputs=(TxOutput(addresses=(), value=COIN), TxOutput(addresses=("Y",), value=COIN)),
    )
    ledger.apply_transaction(tx_)
    assert "X" not in ledger.balances
    assert ledger.balances == {"Y": Decimal(1)}


def test_empty_transaction_is_noop_but_counted_by_block():
    ledger = Ledger(balances={"A": Decimal(1)}, tx_counts={"A": 1})
    processed = ledger.apply_block(block(1, [Transaction(txid="msg", inputs=(), outputs=())]))
    assert processed == 1
    assert ledger.balances == {"A": Decimal(1)}
    assert ledger.tx_counts == {"A": 1}


def test_fractional_amounts_are_exact():
    ledger = Ledger()
    tx_ = Transaction(txid="t", inputs=(), outputs=(TxOutput(addresses=("A",), value=1),) * 3)
    ledger.apply_transaction(tx_)
    assert ledger.balance("A") == Decimal("0.00000003")


def test_overspend_never_leaves_negative_entry():
    ledger = Ledger(balances={"A": Decimal(1)}, tx_counts={"A": 1})
    ledger.apply_transaction(tx("t", inputs=[("A", 5)], outputs=[("B", 5)]))
    assert all(balance > 0 for balance in ledger.balances.values())
    assert "A" not in ledger.balances


def test_record_roundtrip_keeps_order_and_height():
    ledger = Ledger()
    ledger.apply_transaction(tx("a", outputs=[("Z", 3), ("A", 3)], coinbase=True))
    record = ledger.to_record(42)
    assert record["schemaVersion"] == CHECKPOINT_SCHEMA_VERSION
    assert record["totalSupply"] == "6"

    restored, height = Ledger.from_record(record)
    assert height == 42
    assert list(restored.balances) == ["Z", "A"]
    assert restored.tx_counts == {"Z": 1, "A": 1}


def test_legacy_record_is_migrated():
    legacy = {
        "lastScannedBlock": 7,
        "addressBalances": {"A": 1.5, "B": 0},
        "addressTxCounts": {"A": 3, "B": 1},
        "totalSupply": 1.5,
    }
    ledger, height = Ledger.from_record(legacy)
    assert height == 7
    assert ledger.balances == {"A": Decimal("1.5")}
    assert ledger.tx_counts == {"A": 3}


@pytest.mark.parametrize(
    "record",
    [
        [],
        {"schemaVersion": 99, "lastScannedHeight": 1},
        {"schemaVersion": 1, "lastScannedHeight": "x"},
        {"schemaVersion": 1, "lastScannedHeight": 1, "balances": {"A": "nope"}},
        {"schemaVersion": 1, "lastScannedHeight": -3},
        {"schemaVersion": 1, "lastScannedHeight": 1, "balances": {"A": float("nan")}},
        {"schemaVersion": 1, "lastScannedHeight": 1, "balances": {"A": "Infinity"}},
        {"schemaVersion": 1, "lastScannedHeight": float("inf")},
    ],
)
def test_bad_records_raise(record):
    with pytest.raises(CheckpointError):
        Ledger.from_record(record)
