# src/tspend/chain/sign.py
from __future__ import annotations

import copy
from typing import Tuple

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import (
    Prehashed,
    decode_dss_signature,
    encode_dss_signature,
)
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from tspend.chain.chainhash import hash_b
from tspend.chain.script import OP_DATA_33, OP_DATA_65
from tspend.chain.wire import MsgTx

SIG_HASH_ALL = 0x01

# OP_DATA_65 <64 byte signature + sighash type> OP_DATA_33 <33 byte compressed pubkey>
TSPEND_SIGSCRIPT_SIZE = 1 + 65 + 1 + 33

_SECP256K1_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141
_SIGHASH_TAG = b"tspend sighash"


def tspend_sighash(tx: MsgTx) -> bytes:
    """Digest signed by a treasury key: the full tx with empty signature scripts."""
    stripped = copy.deepcopy(tx)
    for ti in stripped.tx_in:
        ti.signature_script = b""
    return hash_b(_SIGHASH_TAG + bytes([SIG_HASH_ALL]) + stripped.to_bytes())


def _private_key(key: bytes | bytearray) -> ec.EllipticCurvePrivateKey:
    if len(key) != 32:
        raise ValueError(f"private key must be 32 bytes; got {len(key)}")
    d = int.from_bytes(key, "big")
    if not 0 < d < _SECP256K1_N:
        raise ValueError("private key out of range for secp256k1")
    return ec.derive_private_key(d, ec.SECP256K1())


def compressed_pubkey(key: bytes | bytearray) -> bytes:
    sk = _private_key(key)
    return sk.public_key().public_bytes(Encoding.X962, PublicFormat.CompressedPoint)


def sign_digest(digest: bytes, key: bytes | bytearray) -> bytes:
    """Deterministic (RFC 6979) 64-byte r||s signature with low-S normalization."""
    sk = _private_key(key)
    der = sk.sign(digest, ec.ECDSA(Prehashed(hashes.SHA256()), deterministic_signing=True))
    r, s = decode_dss_signature(der)
    if s > _SECP256K1_N // 2:
        s = _SECP256K1_N - s
    return r.to_bytes(32, "big") + s.to_bytes(32, "big")


def verify_digest(digest: bytes, sig64: bytes, pubkey: bytes) -> bool:
    if len(sig64) != 64:
        return False
    try:
        pk = ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256K1(), pubkey)
        der = encode_dss_signature(int.from_bytes(sig64[:32], "big"), int.from_bytes(sig64[32:], "big"))
        pk.verify(der, digest, ec.ECDSA(Prehashed(hashes.SHA256())))
        return True
    except (InvalidSignature, ValueError):
        return False


def tspend_signature_script(tx: MsgTx, key: bytes | bytearray) -> bytes:
    """Sign ``tx`` with ``key`` and return its fixed-size signature script."""
    sig = sign_digest(tspend_sighash(tx), key) + bytes([SIG_HASH_ALL])
    pub = compressed_pubkey(key)
    script = bytes([OP_DATA_65]) + sig + bytes([OP_DATA_33]) + pub
    if len(script) != TSPEND_SIGSCRIPT_SIZE:
        raise ValueError(f"unexpected tspend sigscript size {len(script)}")
    return script


def split_signature_script(script: bytes) -> Tuple[bytes, int, bytes]:
    """Return (signature, sighash type, pubkey) from a tspend signature script."""
    if len(script) != TSPEND_SIGSCRIPT_SIZE or script[0] != OP_DATA_65 or script[66] != OP_DATA_33:
        raise ValueError("malformed tspend signature script")
    return script[1:65], script[65], script[67:]
