from datetime import datetime, timezone
from decimal import Decimal

import pytest

from richscan.ledger import Ledger
from richscan.richlist import MAX_PAGE_SIZE, build_rich_list, metadata, paginate


def _ledger(balances):
    return Ledger(
        balances={address: Decimal(str(value)) for address, value in balances.items()},
        tx_counts={address: 1 for address in balances},
    )


def test_ranks_and_percentages_against_unfiltered_supply():
    ledger = _ledger({"dust": 0.5, "small": 2, "big": 7.5})
    snapshot = build_rich_list(ledger, 100, min_balance=1, now=datetime(2024, 1, 1, tzinfo=timezone.utc))

    assert snapshot["lastUpdate"] == "2024-01-01T00:00:00.000Z"
    assert snapshot["lastBlockHeight"] == 100
    assert snapshot["totalSupply"] == pytest.approx(10.0)
    assert snapshot["totalAddresses"] == 2
    assert [entry["address"] for entry in snapshot["addresses"]] == ["big", "small"]
    assert [entry["rank"] for entry in snapshot["addresses"]] == [1, 2]
    assert snapshot["addresses"][0]["percentage"] == pytest.approx(75.0)
    assert snapshot["addresses"][1]["percentage"] == pytest.approx(20.0)


def test_ties_keep_ledger_order():
    ledger = _ledger({"first": 5, "second": 5, "third": 9})
    snapshot = build_rich_list(ledger, 1, min_balance=0)
    assert [entry["address"] for entry in snapshot["addresses"]] == ["third", "first", "second"]


def test_empty_ledger_has_zero_supply():
    snapshot = build_rich_list(Ledger(), 0, min_balance=1)
    assert snapshot["totalSupply"] == 0
    assert snapshot["addresses"] == []


def _snapshot(count):
    return {
        "lastUpdate": "2024-01-01T00:00:00.000Z",
        "lastBlockHeight": 10,
        "totalSupply": float(count),
        "totalAddresses": count,
        "addresses": [
            {"rank": i + 1, "address": f"a{i}", "balance": 1.0, "percentage": 100 / count, "txCount": 1}
            for i in range(count)
        ],
    }


def test_paginate_last_partial_page_and_beyond():
    snap = _snapshot(250)
    page3 = paginate(snap, 3, 100)
    assert len(page3["addresses"]) == 50
    assert page3["totalPages"] == 3
    assert page3["addresses"][0]["rank"] == 201

    page4 = paginate(snap, 4, 100)
    assert page4["addresses"] == []
    assert page4["totalPages"] == 3


def test_paginate_clamps_and_defaults():
    snap = _snapshot(5)
    assert paginate(snap, None, 5000)["pageSize"] == MAX_PAGE_SIZE
    defaults = paginate(snap, "abc", "-4")
    assert defaults["page"] == 1
    assert defaults["pageSize"] == 100
    assert len(defaults["addresses"]) == 5


def test_metadata_excludes_addresses():
    meta = metadata(_snapshot(3))
    assert "addresses" not in meta
    assert meta["totalAddresses"] == 3
