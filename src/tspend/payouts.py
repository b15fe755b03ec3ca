# src/tspend/payouts.py
from __future__ import annotations

import csv
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from pathlib import Path
from typing import List, Sequence

from tspend.chain.address import AddressError, StakeAddress, decode_address
from tspend.chain.params import ATOMS_PER_COIN, MAX_AMOUNT, ChainParams
from tspend.errors import ConfigError


@dataclass(frozen=True)
class Payout:
    address: StakeAddress
    amount: int

    def __post_init__(self) -> None:
        if int(self.amount) <= 0:
            raise ConfigError("bad_amount", "payout amount must be positive", {"amount": int(self.amount)})
        if int(self.amount) > MAX_AMOUNT:
            raise ConfigError("bad_amount", "payout amount exceeds maximum value", {"amount": int(self.amount)})


def coins_to_atoms(text: str) -> int:
    """Convert a decimal coin amount ("1.5") to atoms, rounding half up."""
    try:
        coins = Decimal(str(text).strip())
    except InvalidOperation as e:
        raise ConfigError("bad_amount", f"{text!r} is not a decimal amount") from e
    if not coins.is_finite():
        raise ConfigError("bad_amount", f"{text!r} is not a finite amount")
    return int((coins * ATOMS_PER_COIN).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def _decode(addr: str, params: ChainParams, where: str) -> StakeAddress:
    try:
        return decode_address(addr, params)
    except AddressError as e:
        raise ConfigError("bad_address", f"{where} is not a stakeable address: {e}") from e


def payouts_from_options(addresses: Sequence[str], amounts: Sequence[int], params: ChainParams) -> List[Payout]:
    """Pair repeated --address/--amount values (amounts in atoms)."""
    if len(addresses) != len(amounts):
        raise ConfigError(
            "payout_count_mismatch",
            "number of addresses and amounts must match",
            {"addresses": len(addresses), "amounts": len(amounts)},
        )
    return [
        Payout(address=_decode(a, params, f"address {i}"), amount=int(amt))
        for i, (a, amt) in enumerate(zip(addresses, amounts))
    ]


def payouts_from_csv(path: str, params: ChainParams) -> List[Payout]:
    """Read ``address,amount`` records; amounts are decimal coins."""
    p = Path(path).expanduser()
    out: List[Payout] = []
    try:
        with p.open("r", encoding="utf-8", newline="") as f:
            for i, record in enumerate(csv.reader(f)):
                if not record:
                    continue
                if len(record) != 2:
                    raise ConfigError(
                        "bad_csv",
                        f"record {i} does not have 2 elements ({len(record)})",
                        {"path": str(p)},
                    )
                addr = _decode(record[0].strip(), params, f"record {i}[0]")
                out.append(Payout(address=addr, amount=coins_to_atoms(record[1])))
    except OSError as e:
        raise ConfigError("bad_csv", f"cannot read {str(p)!r}: {e}") from e
    except csv.Error as e:
        raise ConfigError("bad_csv", f"malformed csv {str(p)!r}: {e}") from e
    return out


def total_payout(payouts: Sequence[Payout]) -> int:
    return sum(int(p.amount) for p in payouts)
