# src/tspend/chain/script.py
from __future__ import annotations

from typing import List, Optional, Tuple

OP_0 = 0x00
OP_DATA_20 = 0x14
OP_DATA_32 = 0x20
OP_DATA_33 = 0x21
OP_DATA_65 = 0x41
OP_DATA_75 = 0x4B
OP_PUSHDATA1 = 0x4C
OP_PUSHDATA2 = 0x4D
OP_PUSHDATA4 = 0x4E
OP_RETURN = 0x6A
OP_DUP = 0x76
OP_EQUAL = 0x87
OP_EQUALVERIFY = 0x88
OP_HASH160 = 0xA9
OP_CHECKSIG = 0xAC
OP_TSPEND = 0xC2
OP_TGEN = 0xC3

DEFAULT_SCRIPT_VERSION = 0
MAX_SCRIPT_SIZE = 16_384
MAX_DATA_CARRIER_SIZE = 256


class ScriptError(ValueError):
    pass


def push_data(data: bytes) -> bytes:
    """Canonical (smallest) push of ``data``."""
    n = len(data)
    if n <= OP_DATA_75:
        return bytes([n]) + data
    if n <= 0xFF:
        return bytes([OP_PUSHDATA1, n]) + data
    if n <= 0xFFFF:
        return bytes([OP_PUSHDATA2]) + n.to_bytes(2, "little") + data
    return bytes([OP_PUSHDATA4]) + n.to_bytes(4, "little") + data


def null_data_script(payload: bytes) -> bytes:
    if len(payload) > MAX_DATA_CARRIER_SIZE:
        raise ScriptError(f"null data payload too large: {len(payload)} > {MAX_DATA_CARRIER_SIZE}")
    return bytes([OP_RETURN]) + push_data(payload)


def parse_script(script: bytes) -> List[Tuple[int, Optional[bytes]]]:
    """Split a script into (opcode, pushed data) pairs.

    Non-push opcodes carry None as data. Truncated pushes raise ScriptError.
    """
    out: List[Tuple[int, Optional[bytes]]] = []
    i = 0
    n = len(script)
    while i < n:
        op = script[i]
        i += 1
        if OP_0 < op <= OP_DATA_75:
            size = op
        elif op == OP_PUSHDATA1:
            if i + 1 > n:
                raise ScriptError("truncated OP_PUSHDATA1")
            size = script[i]
            i += 1
        elif op == OP_PUSHDATA2:
            if i + 2 > n:
                raise ScriptError("truncated OP_PUSHDATA2")
            size = int.from_bytes(script[i : i + 2], "little")
            i += 2
        elif op == OP_PUSHDATA4:
            if i + 4 > n:
                raise ScriptError("truncated OP_PUSHDATA4")
            size = int.from_bytes(script[i : i + 4], "little")
            i += 4
        else:
            out.append((op, None))
            continue
        if i + size > n:
            raise ScriptError(f"push of {size} bytes exceeds script length")
        out.append((op, script[i : i + size]))
        i += size
    return out


def null_data_payload(version: int, script: bytes) -> Optional[bytes]:
    """Return the pushed payload of a null-data script, else None."""
    if version != DEFAULT_SCRIPT_VERSION or not script or script[0] != OP_RETURN:
        return None
    if len(script) == 1:
        return b""
    try:
        ops = parse_script(script[1:])
    except ScriptError:
        return None
    if len(ops) != 1 or ops[0][1] is None:
        return None
    data = ops[0][1]
    if len(data) > MAX_DATA_CARRIER_SIZE or push_data(data) != script[1:]:
        return None
    return data


def is_null_data(version: int, script: bytes) -> bool:
    return null_data_payload(version, script) is not None


def is_unspendable(amount: int, script: bytes) -> bool:
    return amount == 0 or len(script) > MAX_SCRIPT_SIZE or (len(script) > 0 and script[0] == OP_RETURN)


def pay_from_treasury_pkh_script(pkh: bytes) -> bytes:
    if len(pkh) != 20:
        raise ScriptError(f"pubkey hash must be 20 bytes; got {len(pkh)}")
    return bytes([OP_TGEN, OP_DUP, OP_HASH160, OP_DATA_20]) + pkh + bytes([OP_EQUALVERIFY, OP_CHECKSIG])


def pay_from_treasury_sh_script(sh: bytes) -> bytes:
    if len(sh) != 20:
        raise ScriptError(f"script hash must be 20 bytes; got {len(sh)}")
    return bytes([OP_TGEN, OP_HASH160, OP_DATA_20]) + sh + bytes([OP_EQUAL])


def is_pay_from_treasury(version: int, script: bytes) -> bool:
    if version != DEFAULT_SCRIPT_VERSION:
        return False
    if len(script) == 26:
        return script[:4] == bytes([OP_TGEN, OP_DUP, OP_HASH160, OP_DATA_20]) and script[24:] == bytes(
            [OP_EQUALVERIFY, OP_CHECKSIG]
        )
    if len(script) == 24:
        return script[:3] == bytes([OP_TGEN, OP_HASH160, OP_DATA_20]) and script[23] == OP_EQUAL
    return False
