# src/tspend/chain/params.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, Tuple

from tspend.errors import ConfigError

ATOMS_PER_COIN = 100_000_000
MAX_AMOUNT = 21_000_000 * ATOMS_PER_COIN


@dataclass(frozen=True)
class ChainParams:
    name: str

    # Treasury voting.
    treasury_vote_interval: int
    treasury_vote_interval_multiplier: int
    treasury_expenditure_window: int
    treasury_vote_required_multiplier: int
    treasury_vote_required_divisor: int
    treasury_vote_quorum_multiplier: int
    treasury_vote_quorum_divisor: int
    tickets_per_block: int

    # Subsidy.
    base_subsidy: int
    mul_subsidy: int
    div_subsidy: int
    subsidy_reduction_interval: int
    treasury_proportion: int
    total_subsidy_proportions: int

    coinbase_maturity: int
    target_time_per_block: timedelta

    # Address encoding network ids (2 bytes each).
    pubkey_hash_addr_id: bytes
    script_hash_addr_id: bytes

    default_rpc_port: int

    # Compressed secp256k1 public keys allowed to sign treasury spends.
    pi_keys: Tuple[bytes, ...] = field(default_factory=tuple)

    def votes_per_block(self) -> int:
        return int(self.tickets_per_block)

    def policy_window_blocks(self) -> int:
        """Rolling window (in blocks) of the treasury expenditure policy."""
        return (
            self.treasury_vote_interval
            * self.treasury_vote_interval_multiplier
            * self.treasury_expenditure_window
        )

    def blocks_per_day(self) -> float:
        return 86_400 / self.target_time_per_block.total_seconds()

    def is_pi_key(self, pubkey: bytes) -> bool:
        return any(pubkey == k for k in self.pi_keys)


def _keys(*hex_keys: str) -> Tuple[bytes, ...]:
    return tuple(bytes.fromhex(k) for k in hex_keys)


MAINNET = ChainParams(
    name="mainnet",
    treasury_vote_interval=288,
    treasury_vote_interval_multiplier=12,
    treasury_expenditure_window=2,
    treasury_vote_required_multiplier=3,
    treasury_vote_required_divisor=5,
    treasury_vote_quorum_multiplier=1,
    treasury_vote_quorum_divisor=5,
    tickets_per_block=5,
    base_subsidy=3_119_582_664,
    mul_subsidy=100,
    div_subsidy=101,
    subsidy_reduction_interval=6_144,
    treasury_proportion=1,
    total_subsidy_proportions=10,
    coinbase_maturity=256,
    target_time_per_block=timedelta(minutes=5),
    pubkey_hash_addr_id=bytes([0x07, 0x3F]),  # Ds
    script_hash_addr_id=bytes([0x07, 0x1A]),  # Dc
    default_rpc_port=9109,
    pi_keys=_keys(
        "03f6e7041f1cf51ee10e0a01cd2b0385ce3cd9debaabb2296f7e9dee9329da946c",
        "0319a37405cb4d1691971847d7719cfce70857c0f6e97d7c9174a3998cf0ab86dd",
    ),
)

TESTNET3 = ChainParams(
    name="testnet3",
    treasury_vote_interval=288,
    treasury_vote_interval_multiplier=12,
    treasury_expenditure_window=2,
    treasury_vote_required_multiplier=3,
    treasury_vote_required_divisor=5,
    treasury_vote_quorum_multiplier=1,
    treasury_vote_quorum_divisor=5,
    tickets_per_block=5,
    base_subsidy=2_500_000_000,
    mul_subsidy=100,
    div_subsidy=101,
    subsidy_reduction_interval=2_048,
    treasury_proportion=1,
    total_subsidy_proportions=10,
    coinbase_maturity=16,
    target_time_per_block=timedelta(minutes=2),
    pubkey_hash_addr_id=bytes([0x0F, 0x21]),  # Ts
    script_hash_addr_id=bytes([0x0E, 0xFC]),  # Tc
    default_rpc_port=19109,
    pi_keys=_keys(
        "03beca9bbd227ca6bb5a58e03a36ba2b52fff09093bd7a50aee1193bccd257fb8a",
        "03e647c014f55265da506781f0b2d67674c35cb59b873d9926d483c4ced9a7bbd3",
    ),
)

SIMNET = ChainParams(
    name="simnet",
    treasury_vote_interval=16,
    treasury_vote_interval_multiplier=3,
    treasury_expenditure_window=4,
    treasury_vote_required_multiplier=3,
    treasury_vote_required_divisor=5,
    treasury_vote_quorum_multiplier=1,
    treasury_vote_quorum_divisor=5,
    tickets_per_block=5,
    base_subsidy=50_000_000_000,
    mul_subsidy=100,
    div_subsidy=101,
    subsidy_reduction_interval=128,
    treasury_proportion=1,
    total_subsidy_proportions=10,
    coinbase_maturity=16,
    target_time_per_block=timedelta(seconds=1),
    pubkey_hash_addr_id=bytes([0x0E, 0x91]),  # Ss
    script_hash_addr_id=bytes([0x0E, 0x6C]),  # Sc
    default_rpc_port=19556,
    pi_keys=_keys(
        "02a36b785d584555696b69d1b2bbeff4010332b301e3edd316d79438554cacb3e7",
    ),
)

NETWORKS: Dict[str, ChainParams] = {
    "mainnet": MAINNET,
    "testnet": TESTNET3,
    "simnet": SIMNET,
}


def params_for_network(network: str) -> ChainParams:
    p = NETWORKS.get(str(network or "").strip().lower())
    if p is None:
        raise ConfigError("unknown_network", f"unknown network {network!r}; expected one of {sorted(NETWORKS)}")
    return p
