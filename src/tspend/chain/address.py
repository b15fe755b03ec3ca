# src/tspend/chain/address.py
from __future__ import annotations

"""Stake-capable payment addresses.

Encoding: base58( net_id[2] || hash160[20] || checksum[4] ), where checksum is
the first four bytes of BLAKE-256(BLAKE-256(net_id || hash160)).

Only pay-to-pubkey-hash and pay-to-script-hash addresses can receive treasury
funds, so those are the only kinds decoded here.
"""

from dataclasses import dataclass
from typing import Tuple

import base58

from tspend.chain.chainhash import hash_b
from tspend.chain.params import ChainParams
from tspend.chain.script import (
    DEFAULT_SCRIPT_VERSION,
    pay_from_treasury_pkh_script,
    pay_from_treasury_sh_script,
)

_CHECKSUM_LEN = 4
_HASH160_LEN = 20


class AddressError(ValueError):
    pass


def _checksum(payload: bytes) -> bytes:
    return hash_b(hash_b(payload))[:_CHECKSUM_LEN]


@dataclass(frozen=True)
class StakeAddress:
    net_id: bytes
    hash160: bytes

    def encode(self) -> str:
        payload = self.net_id + self.hash160
        return base58.b58encode(payload + _checksum(payload)).decode("ascii")

    def pay_from_treasury_script(self) -> Tuple[int, bytes]:
        raise NotImplementedError

    def __str__(self) -> str:
        return self.encode()


@dataclass(frozen=True)
class StakePubKeyHashAddress(StakeAddress):
    def pay_from_treasury_script(self) -> Tuple[int, bytes]:
        return DEFAULT_SCRIPT_VERSION, pay_from_treasury_pkh_script(self.hash160)


@dataclass(frozen=True)
class StakeScriptHashAddress(StakeAddress):
    def pay_from_treasury_script(self) -> Tuple[int, bytes]:
        return DEFAULT_SCRIPT_VERSION, pay_from_treasury_sh_script(self.hash160)


def pubkey_hash_address(pkh: bytes, params: ChainParams) -> StakePubKeyHashAddress:
    if len(pkh) != _HASH160_LEN:
        raise AddressError(f"pubkey hash must be {_HASH160_LEN} bytes")
    return StakePubKeyHashAddress(net_id=params.pubkey_hash_addr_id, hash160=bytes(pkh))


def script_hash_address(sh: bytes, params: ChainParams) -> StakeScriptHashAddress:
    if len(sh) != _HASH160_LEN:
        raise AddressError(f"script hash must be {_HASH160_LEN} bytes")
    return StakeScriptHashAddress(net_id=params.script_hash_addr_id, hash160=bytes(sh))


def decode_address(encoded: str, params: ChainParams) -> StakeAddress:
    """Decode ``encoded`` for ``params``; raise AddressError if it is not a stake address."""
    s = str(encoded or "").strip()
    if not s:
        raise AddressError("empty address")
    try:
        raw = base58.b58decode(s)
    except ValueError as e:
        raise AddressError(f"address {s!r} is not base58: {e}") from e

    if len(raw) != 2 + _HASH160_LEN + _CHECKSUM_LEN:
        raise AddressError(f"address {s!r} has invalid length {len(raw)}")

    payload, checksum = raw[:-_CHECKSUM_LEN], raw[-_CHECKSUM_LEN:]
    if _checksum(payload) != checksum:
        raise AddressError(f"address {s!r} has a bad checksum")

    net_id, h160 = payload[:2], payload[2:]
    if net_id == params.pubkey_hash_addr_id:
        return StakePubKeyHashAddress(net_id=net_id, hash160=h160)
    if net_id == params.script_hash_addr_id:
        return StakeScriptHashAddress(net_id=net_id, hash160=h160)
    raise AddressError(f"address {s!r} is not a stakeable address for {params.name}")
