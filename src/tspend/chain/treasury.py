# src/tspend/chain/treasury.py
from __future__ import annotations

"""Treasury consensus rules used by the builder and the projectors.

These are deterministic functions of chain parameters and heights (or of a
transaction) with no I/O.
"""

from typing import Dict, Tuple

from tspend.chain.params import ChainParams
from tspend.chain.script import OP_DATA_32, is_pay_from_treasury, null_data_payload
from tspend.chain.sign import SIG_HASH_ALL, split_signature_script, tspend_sighash, verify_digest
from tspend.chain.wire import TX_VERSION_TREASURY, MsgTx
from tspend.errors import ConsensusCheckError, InvalidExpiryError

# OP_RETURN OP_DATA_32 <8 byte value in || 24 byte entropy>
TSPEND_OP_RETURN_PAYLOAD_SIZE = 32
TSPEND_OP_RETURN_SCRIPT_SIZE = 1 + 1 + TSPEND_OP_RETURN_PAYLOAD_SIZE


def is_treasury_vote_interval(height: int, tvi: int) -> bool:
    return height % tvi == 0 and height != 0


def calc_tspend_expiry(next_block_height: int, tvi: int, multiplier: int) -> int:
    """Expiry for a tspend first seen at ``next_block_height``.

    The vote starts on the next TVI and lasts ``tvi * multiplier`` blocks;
    expiry is two blocks after the end of the window.
    """
    next_tvi = next_block_height + (tvi - next_block_height % tvi)
    return next_tvi + tvi * multiplier + 2


def calc_tspend_window(expiry: int, tvi: int, multiplier: int) -> Tuple[int, int]:
    """Return (vote_start, vote_end) for a tspend expiring at ``expiry``."""
    end = expiry - 2
    if not is_treasury_vote_interval(end, tvi):
        raise InvalidExpiryError(
            "invalid_expiry",
            "expiry does not land two blocks after a treasury vote interval",
            {"expiry": int(expiry), "tvi": int(tvi)},
        )
    start = end - tvi * multiplier
    return start, end


class SubsidyCache:
    """Per-height treasury subsidy, memoized per reduction interval."""

    def __init__(self, params: ChainParams) -> None:
        self._params = params
        self._full: Dict[int, int] = {0: int(params.base_subsidy)}
        self._max_idx = 0

    def _full_subsidy_for_interval(self, idx: int) -> int:
        cached = self._full.get(idx)
        if cached is not None:
            return cached
        p = self._params
        subsidy = self._full[self._max_idx]
        for i in range(self._max_idx + 1, idx + 1):
            subsidy = subsidy * p.mul_subsidy // p.div_subsidy
            self._full[i] = subsidy
        self._max_idx = max(self._max_idx, idx)
        return self._full[idx]

    def full_subsidy(self, height: int) -> int:
        if height <= 0:
            return 0
        return self._full_subsidy_for_interval(height // self._params.subsidy_reduction_interval)

    def treasury_subsidy(self, height: int) -> int:
        p = self._params
        return self.full_subsidy(height) * p.treasury_proportion // p.total_subsidy_proportions


def _tspend_shape_error(tx: MsgTx) -> str:
    if tx.version != TX_VERSION_TREASURY:
        return "wrong_version"
    if len(tx.tx_in) != 1:
        return "wrong_input_count"
    if len(tx.tx_out) < 2:
        return "too_few_outputs"
    if tx.expiry == 0:
        return "no_expiry"

    ti = tx.tx_in[0]
    if not ti.previous_out_point.is_null():
        return "input_not_stakebase"
    try:
        split_signature_script(ti.signature_script)
    except ValueError:
        return "bad_signature_script"

    op_ret = tx.tx_out[0]
    payload = null_data_payload(op_ret.version, op_ret.pk_script)
    if payload is None or len(payload) != TSPEND_OP_RETURN_PAYLOAD_SIZE or op_ret.pk_script[1] != OP_DATA_32:
        return "bad_op_return"
    if op_ret.value != 0:
        return "op_return_has_value"

    for out in tx.tx_out[1:]:
        if not is_pay_from_treasury(out.version, out.pk_script):
            return "output_not_tgen"
    return ""


def is_tspend(tx: MsgTx) -> bool:
    """Structural treasury spend check (signature not verified)."""
    return _tspend_shape_error(tx) == ""


def check_tspend(tx: MsgTx) -> bytes:
    """Full treasury spend validation. Returns the signer's compressed pubkey."""
    reason = _tspend_shape_error(tx)
    if reason:
        raise ConsensusCheckError("invalid_tspend", reason)

    sig, hash_type, pubkey = split_signature_script(tx.tx_in[0].signature_script)
    if hash_type != SIG_HASH_ALL:
        raise ConsensusCheckError("invalid_tspend", "unsupported_sighash_type", {"hash_type": hash_type})
    if not verify_digest(tspend_sighash(tx), sig, pubkey):
        raise ConsensusCheckError("invalid_tspend", "invalid_signature")

    payload = null_data_payload(tx.tx_out[0].version, tx.tx_out[0].pk_script) or b""
    committed = int.from_bytes(payload[:8], "little")
    if committed != tx.tx_in[0].value_in:
        raise ConsensusCheckError(
            "invalid_tspend",
            "op_return_value_mismatch",
            {"committed": committed, "value_in": tx.tx_in[0].value_in},
        )
    total_out = sum(o.value for o in tx.tx_out[1:])
    if total_out > tx.tx_in[0].value_in:
        raise ConsensusCheckError("invalid_tspend", "outputs_exceed_value_in")
    return pubkey
