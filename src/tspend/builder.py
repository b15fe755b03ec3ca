# src/tspend/builder.py
from __future__ import annotations

"""Treasury spend assembly.

The builder turns a list of payouts into a signed treasury spend:

  - an expiry placed by WindowPolicy,
  - one OP_RETURN output committing to the input value (plus 24 bytes of
    entropy or a deterministic commitment),
  - one pay-from-treasury output per payout,
  - one stakebase-style input carrying ``value_in = total payout + fee``.

The fee is computed from the final serialized size: the OP_RETURN output is
sized before its content is known and the signature script has a fixed size,
so the estimate is exact.
"""

import json
import logging
import secrets
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, TextIO, Tuple

from tspend.chain.chainhash import hash_b, hash_to_str
from tspend.chain.params import ChainParams
from tspend.chain.script import null_data_script
from tspend.chain.sign import TSPEND_SIGSCRIPT_SIZE, tspend_signature_script
from tspend.chain.treasury import TSPEND_OP_RETURN_PAYLOAD_SIZE, TSPEND_OP_RETURN_SCRIPT_SIZE, check_tspend
from tspend.chain.wire import TX_VERSION_TREASURY, MsgTx, TxIn, TxOut
from tspend.errors import ConfigError, ConsensusCheckError, DuplicateSubmissionError, PolicyError
from tspend.keys import private_key_scope
from tspend.payouts import Payout, total_payout
from tspend.policy.checker import DEFAULT_RELAY_FEE_PER_KB, check_output, fee_for_serialize_size
from tspend.policy.window import WindowPolicy
from tspend.structured_logging import log_event

Json = Dict[str, Any]

log = logging.getLogger("tspend.builder")

# Bytes of the OP_RETURN payload after the LE64 value in.
OP_RETURN_ENTROPY_SIZE = TSPEND_OP_RETURN_PAYLOAD_SIZE - 8
MAX_DETERMINISTIC_EXTRA_SIZE = 32

_OP_RETURN_TAG = b"tspend OP_RETURN"

KeySource = Callable[[bytearray], None]
Submitter = Callable[[MsgTx], str]


@dataclass(frozen=True)
class OpReturnPolicy:
    """How the 24 bytes after the value commitment are filled.

    - deterministic: hash of the payouts (and ``data_hex`` as extra data)
    - data_hex only: the given bytes, zero padded
    - neither: random
    """

    data_hex: str = ""
    deterministic: bool = False


@dataclass(frozen=True)
class ExpiryInputs:
    expiry: int = 0
    current_height: int = 0


@dataclass(frozen=True)
class BuildRequest:
    payouts: Sequence[Payout]
    key_source: KeySource
    fee_rate: int = DEFAULT_RELAY_FEE_PER_KB
    expiry: ExpiryInputs = field(default_factory=ExpiryInputs)
    op_return: OpReturnPolicy = field(default_factory=OpReturnPolicy)
    publish: bool = False


@dataclass(frozen=True)
class BuildResult:
    tx: MsgTx
    raw: bytes
    tx_hash: str
    pubkey: bytes
    expiry: int
    vote_start: int
    vote_end: int
    total_payout: int
    estimated_size: int
    fee: int
    pikey_match: bool
    published: bool = False
    duplicated: bool = False
    policy_warnings: Tuple[str, ...] = ()

    def hex(self) -> str:
        return self.raw.hex()


def _decode_hex(data_hex: str, limit: int, what: str) -> bytes:
    try:
        data = bytes.fromhex(data_hex.strip())
    except ValueError as e:
        raise ConfigError("bad_op_return_data", f"unable to decode {what}: {e}") from e
    if len(data) > limit:
        raise ConfigError(
            "bad_op_return_data",
            f"{what} is too long ({len(data)} > {limit} bytes)",
            {"size": len(data), "limit": limit},
        )
    return data


def deterministic_commitment(payouts: Sequence[Payout], extra_hex: str = "") -> bytes:
    """Hash of the payouts in order (amount, script version, script) and extra data."""
    buf = bytearray(_OP_RETURN_TAG)
    for p in payouts:
        version, script = p.address.pay_from_treasury_script()
        buf += int(p.amount).to_bytes(8, "little")
        buf += int(version).to_bytes(2, "big")
        buf += script
    if extra_hex:
        buf += _decode_hex(extra_hex, MAX_DETERMINISTIC_EXTRA_SIZE, "OP_RETURN extra data")
    return hash_b(bytes(buf))


def op_return_script(
    policy: OpReturnPolicy,
    payouts: Sequence[Payout],
    value_in: int,
    *,
    random_bytes: Callable[[int], bytes] = secrets.token_bytes,
) -> bytes:
    payload = bytearray(TSPEND_OP_RETURN_PAYLOAD_SIZE)
    payload[:8] = int(value_in).to_bytes(8, "little")

    if policy.deterministic:
        payload[8:] = deterministic_commitment(payouts, policy.data_hex)[:OP_RETURN_ENTROPY_SIZE]
    elif policy.data_hex:
        data = _decode_hex(policy.data_hex, OP_RETURN_ENTROPY_SIZE, "OP_RETURN data")
        payload[8 : 8 + len(data)] = data
    else:
        payload[8:] = random_bytes(OP_RETURN_ENTROPY_SIZE)

    script = null_data_script(bytes(payload))
    if len(script) != TSPEND_OP_RETURN_SCRIPT_SIZE:
        raise ValueError(f"unexpected OP_RETURN script size {len(script)}")
    return script


class TSpendBuilder:
    def __init__(
        self,
        params: ChainParams,
        window: WindowPolicy,
        *,
        submitter: Optional[Submitter] = None,
        logger: Optional[logging.Logger] = None,
        random_bytes: Callable[[int], bytes] = secrets.token_bytes,
    ) -> None:
        self.params = params
        self.window = window
        self._submitter = submitter
        self._log = logger or log
        self._random_bytes = random_bytes

    def _payout_outputs(self, tx: MsgTx, payouts: Sequence[Payout], fee_rate: int) -> List[str]:
        warnings: List[str] = []
        for p in payouts:
            version, script = p.address.pay_from_treasury_script()
            out = TxOut(value=int(p.amount), pk_script=script, version=version)
            try:
                check_output(out, fee_rate)
            except PolicyError as e:
                warnings.append(f"{p.address}: {e.reason}")
                self._log.warning("output %s (%d atoms) failed check: %s", p.address, p.amount, e.reason)
            tx.add_tx_out(out)
        return warnings

    def build(self, request: BuildRequest) -> BuildResult:
        if request.publish and self._submitter is None:
            raise ConfigError("no_submitter", "publishing requested without a node connection")
        fee_rate = int(request.fee_rate)
        if fee_rate < 0:
            raise ConfigError("bad_fee_rate", "fee rate must not be negative", {"fee_rate": fee_rate})

        expiry = self.window.compute_expiry(
            current_height=request.expiry.current_height or None,
            explicit_expiry=request.expiry.expiry or None,
        )
        vote_start, vote_end = self.window.window_for(expiry)

        payouts = list(request.payouts)
        if not payouts:
            raise ConfigError("no_payouts", "at least one payout must be specified")
        total = total_payout(payouts)

        tx = MsgTx(version=TX_VERSION_TREASURY, expiry=expiry)
        tx.add_tx_out(TxOut(value=0, pk_script=bytes(TSPEND_OP_RETURN_SCRIPT_SIZE)))
        warnings = self._payout_outputs(tx, payouts, fee_rate)
        tx.add_tx_in(TxIn())

        estimated_size = tx.serialize_size() + TSPEND_SIGSCRIPT_SIZE
        fee = fee_for_serialize_size(fee_rate, estimated_size)
        value_in = total + fee
        tx.tx_in[0].value_in = value_in
        tx.tx_out[0].pk_script = op_return_script(
            request.op_return, payouts, value_in, random_bytes=self._random_bytes
        )

        with private_key_scope() as key:
            request.key_source(key)
            try:
                tx.tx_in[0].signature_script = tspend_signature_script(tx, key)
            except ValueError as e:
                raise ConfigError("bad_private_key", f"private key is not usable: {e}") from e

        try:
            pubkey = check_tspend(tx)
        except ConsensusCheckError as e:
            raise ConsensusCheckError("check_tspend_failed", f"signed tspend failed validation: {e.reason}", e.details) from e

        pikey_match = self.params.is_pi_key(pubkey)
        if not pikey_match:
            self._log.warning("private key does not correspond to a Pi key for %s", self.params.name)

        published, duplicated = False, False
        if request.publish and self._submitter is not None:
            try:
                self._submitter(tx)
                published = True
            except DuplicateSubmissionError:
                duplicated = True

        raw = tx.to_bytes()
        result = BuildResult(
            tx=tx,
            raw=raw,
            tx_hash=hash_to_str(tx.tx_hash()),
            pubkey=pubkey,
            expiry=expiry,
            vote_start=vote_start,
            vote_end=vote_end,
            total_payout=total,
            estimated_size=estimated_size,
            fee=fee,
            pikey_match=pikey_match,
            published=published,
            duplicated=duplicated,
            policy_warnings=tuple(warnings),
        )
        log_event(
            self._log,
            "tspend_built",
            tx_hash=result.tx_hash,
            expiry=expiry,
            vote_start=vote_start,
            vote_end=vote_end,
            total_payout=total,
            size=estimated_size,
            fee=fee,
            published=published,
            duplicated=duplicated,
        )
        return result


def write_hex(result: BuildResult, out_path: str = "", *, stream: Optional[TextIO] = None) -> None:
    """Write the raw tx as one lowercase hex line to ``out_path`` or ``stream`` (stdout)."""
    line = result.hex() + "\n"
    if out_path:
        try:
            Path(out_path).expanduser().write_text(line, encoding="ascii")
        except OSError as e:
            raise ConfigError("bad_output", f"error creating output file: {e}") from e
        return
    (stream or sys.stdout).write(line)


def describe_tx(tx: MsgTx) -> Json:
    """Structural dump of ``tx`` with byte fields as hex."""
    return {
        "version": tx.version,
        "tx_hash": hash_to_str(tx.tx_hash()),
        "lock_time": tx.lock_time,
        "expiry": tx.expiry,
        "tx_in": [
            {
                "previous_out_point": {
                    "hash": hash_to_str(ti.previous_out_point.hash),
                    "index": ti.previous_out_point.index,
                    "tree": ti.previous_out_point.tree,
                },
                "sequence": ti.sequence,
                "value_in": ti.value_in,
                "block_height": ti.block_height,
                "block_index": ti.block_index,
                "signature_script": ti.signature_script.hex(),
            }
            for ti in tx.tx_in
        ],
        "tx_out": [
            {"value": to.value, "version": to.version, "pk_script": to.pk_script.hex()} for to in tx.tx_out
        ],
    }


def log_summary(result: BuildResult, *, spew: bool = False, node: str = "", logger: Optional[logging.Logger] = None) -> None:
    lg = logger or log
    if spew:
        lg.info("%s", json.dumps(describe_tx(result.tx), indent=2))
    lg.info("TSpend Hash: %s", result.tx_hash)
    lg.info("TSpend PubKey: %s", result.pubkey.hex())
    lg.info("Expiry: %d", result.expiry)
    lg.info("Voting interval: %d - %d", result.vote_start, result.vote_end)
    lg.info("Total output amount: %d atoms", result.total_payout)
    lg.info("Total tx size: %d bytes", result.estimated_size)
    lg.info("Total fees: %d atoms", result.fee)
    if result.published:
        lg.info("Published TSpend to node at %s", node)
    elif result.duplicated:
        lg.info("Generated duplicated TSpend at node %s", node)
