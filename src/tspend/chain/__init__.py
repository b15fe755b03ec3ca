# src/tspend/chain/__init__.py
"""
Chain primitives for treasury spends.

  - params: per-network constants (ChainParams presets)
  - chainhash: chain hash function and display helpers
  - wire: binary tx/block encoding
  - script: opcodes, null-data and pay-from-treasury scripts
  - address: stake address decoding
  - sign: tspend signature scripts (secp256k1)
  - treasury: expiry/window rules, subsidy cache, tspend validation
"""

from __future__ import annotations

__all__ = [
    "params",
    "chainhash",
    "wire",
    "script",
    "address",
    "sign",
    "treasury",
]
