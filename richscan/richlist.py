"""Rich list snapshot construction and read-side projections."""

from __future__ import annotations

import math
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from richscan.ledger import Ledger


DEFAULT_PAGE_SIZE = 100
MAX_PAGE_SIZE = 1000
METADATA_FIELDS = ("lastUpdate", "lastBlockHeight", "totalSupply", "totalAddresses")


def _iso(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_rich_list(
    ledger: Ledger,
    block_height: int,
    min_balance: float,
    now: Optional[datetime] = None,
) -> dict:
    """Rank ledger addresses by balance.

    Percentages use the supply of every tracked address, including the ones
    filtered out by ``min_balance``.
    """

    total_supply = ledger.total_supply()
    threshold = Decimal(str(min_balance))
    # sorted() is stable with reverse=True, equal balances keep ledger order
    ranked = sorted(
        ((address, balance) for address, balance in ledger.items() if balance >= threshold),
        key=lambda item: item[1],
        reverse=True,
    )
    addresses = []
    for index, (address, balance) in enumerate(ranked):
        percentage = float(balance / total_supply * 100) if total_supply > 0 else 0.0
        addresses.append(
            {
                "rank": index + 1,
                "address": address,
                "balance": float(balance),
                "percentage": percentage,
                "txCount": ledger.tx_count(address),
            }
        )
    return {
        "lastUpdate": _iso(now or datetime.now(timezone.utc)),
        "lastBlockHeight": int(block_height),
        "totalSupply": float(total_supply),
        "totalAddresses": len(addresses),
        "addresses": addresses,
    }


def metadata(snapshot: dict) -> dict:
    return {key: snapshot.get(key) for key in METADATA_FIELDS}


def _positive_int(value: object, default: int) -> int:
    try:
        parsed = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default


def paginate(snapshot: dict, page: object = None, page_size: object = None) -> dict:
    page_num = _positive_int(page, 1)
    size = min(_positive_int(page_size, DEFAULT_PAGE_SIZE), MAX_PAGE_SIZE)
    addresses = snapshot.get("addresses") or []
    start = (page_num - 1) * size
    result = metadata(snapshot)
    result.update(
        {
            "page": page_num,
            "pageSize": size,
            "totalPages": math.ceil(len(addresses) / size),
            "addresses": addresses[start : start + size],
        }
    )
    return result
