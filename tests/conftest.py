from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure local "src/" takes precedence over any globally-installed "tspend" package.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

src_str = str(SRC)
if src_str not in sys.path:
    sys.path.insert(0, src_str)

from tspend.chain.address import pubkey_hash_address, script_hash_address  # noqa: E402
from tspend.chain.params import SIMNET, ChainParams  # noqa: E402


@pytest.fixture
def simnet() -> ChainParams:
    return SIMNET


@pytest.fixture
def signing_key() -> bytes:
    return bytes.fromhex("11" * 32)


@pytest.fixture
def pkh_address(simnet: ChainParams):
    return pubkey_hash_address(bytes(range(20)), simnet)


@pytest.fixture
def sh_address(simnet: ChainParams):
    return script_hash_address(bytes(range(20, 40)), simnet)
