# src/tspend/chain/wire.py
from __future__ import annotations

"""Binary transaction and block encoding.

Layout (all integers little-endian):

  tx      := u32(version | ser_type << 16) prefix? witness?
  prefix  := varint(n_in) {hash[32] u32 index u8 tree u32 sequence}*
             varint(n_out) {i64 value u16 script_version varbytes script}*
             u32 lock_time u32 expiry
  witness := varint(n_in) {i64 value_in u32 block_height u32 block_index varbytes sig_script}*

The tx hash commits to the prefix only (ser_type = no witness), so signing
does not change it.
"""

import io
import struct
from dataclasses import dataclass, field
from typing import BinaryIO, List

from tspend.chain.chainhash import HASH_SIZE, ZERO_HASH, hash_b

TX_VERSION = 1
TX_VERSION_TREASURY = 3

TX_SER_FULL = 0
TX_SER_NO_WITNESS = 1

TX_TREE_REGULAR = 0
TX_TREE_STAKE = 1

MAX_PREV_OUT_INDEX = 0xFFFFFFFF
MAX_TX_IN_SEQUENCE_NUM = 0xFFFFFFFF
NULL_BLOCK_HEIGHT = 0
NULL_BLOCK_INDEX = 0xFFFFFFFF

BLOCK_HEADER_SIZE = 180

# Upper bound on counts/lengths accepted while decoding untrusted bytes.
_MAX_DECODE_ITEMS = 1 << 20


class WireError(ValueError):
    pass


def var_int_serialize_size(n: int) -> int:
    if n < 0xFD:
        return 1
    if n <= 0xFFFF:
        return 3
    if n <= 0xFFFFFFFF:
        return 5
    return 9


def write_var_int(w: BinaryIO, n: int) -> None:
    if n < 0:
        raise WireError(f"negative varint: {n}")
    if n < 0xFD:
        w.write(struct.pack("<B", n))
    elif n <= 0xFFFF:
        w.write(b"\xfd" + struct.pack("<H", n))
    elif n <= 0xFFFFFFFF:
        w.write(b"\xfe" + struct.pack("<I", n))
    else:
        w.write(b"\xff" + struct.pack("<Q", n))


def _read_exact(r: BinaryIO, n: int) -> bytes:
    b = r.read(n)
    if len(b) != n:
        raise WireError(f"unexpected end of data: wanted {n} bytes, got {len(b)}")
    return b


def read_var_int(r: BinaryIO) -> int:
    disc = _read_exact(r, 1)[0]
    if disc < 0xFD:
        return disc
    if disc == 0xFD:
        return struct.unpack("<H", _read_exact(r, 2))[0]
    if disc == 0xFE:
        return struct.unpack("<I", _read_exact(r, 4))[0]
    return struct.unpack("<Q", _read_exact(r, 8))[0]


def _read_var_bytes(r: BinaryIO) -> bytes:
    n = read_var_int(r)
    if n > _MAX_DECODE_ITEMS:
        raise WireError(f"byte string too long: {n}")
    return _read_exact(r, n)


def _write_var_bytes(w: BinaryIO, b: bytes) -> None:
    write_var_int(w, len(b))
    w.write(b)


def _read_count(r: BinaryIO, what: str) -> int:
    n = read_var_int(r)
    if n > _MAX_DECODE_ITEMS:
        raise WireError(f"too many {what}: {n}")
    return n


@dataclass(frozen=True)
class OutPoint:
    hash: bytes = ZERO_HASH
    index: int = MAX_PREV_OUT_INDEX
    tree: int = TX_TREE_REGULAR

    def is_null(self) -> bool:
        return self.hash == ZERO_HASH and self.index == MAX_PREV_OUT_INDEX


@dataclass
class TxIn:
    previous_out_point: OutPoint = field(default_factory=OutPoint)
    sequence: int = MAX_TX_IN_SEQUENCE_NUM
    value_in: int = 0
    block_height: int = NULL_BLOCK_HEIGHT
    block_index: int = NULL_BLOCK_INDEX
    signature_script: bytes = b""


@dataclass
class TxOut:
    value: int
    pk_script: bytes
    version: int = 0

    def serialize_size(self) -> int:
        return 8 + 2 + var_int_serialize_size(len(self.pk_script)) + len(self.pk_script)


@dataclass
class MsgTx:
    version: int = TX_VERSION
    tx_in: List[TxIn] = field(default_factory=list)
    tx_out: List[TxOut] = field(default_factory=list)
    lock_time: int = 0
    expiry: int = 0

    def add_tx_in(self, txin: TxIn) -> None:
        self.tx_in.append(txin)

    def add_tx_out(self, txout: TxOut) -> None:
        self.tx_out.append(txout)

    # -- encoding ---------------------------------------------------------

    def _write_prefix(self, w: BinaryIO) -> None:
        write_var_int(w, len(self.tx_in))
        for ti in self.tx_in:
            op = ti.previous_out_point
            w.write(op.hash)
            w.write(struct.pack("<IBI", op.index, op.tree, ti.sequence))
        write_var_int(w, len(self.tx_out))
        for to in self.tx_out:
            w.write(struct.pack("<qH", to.value, to.version))
            _write_var_bytes(w, to.pk_script)
        w.write(struct.pack("<II", self.lock_time, self.expiry))

    def _write_witness(self, w: BinaryIO) -> None:
        write_var_int(w, len(self.tx_in))
        for ti in self.tx_in:
            w.write(struct.pack("<qII", ti.value_in, ti.block_height, ti.block_index))
            _write_var_bytes(w, ti.signature_script)

    def serialize(self, ser_type: int = TX_SER_FULL) -> bytes:
        w = io.BytesIO()
        w.write(struct.pack("<I", (self.version & 0xFFFF) | (ser_type << 16)))
        self._write_prefix(w)
        if ser_type == TX_SER_FULL:
            self._write_witness(w)
        return w.getvalue()

    def to_bytes(self) -> bytes:
        return self.serialize(TX_SER_FULL)

    def serialize_size(self) -> int:
        n = 4
        n += var_int_serialize_size(len(self.tx_in)) + len(self.tx_in) * (HASH_SIZE + 4 + 1 + 4)
        n += var_int_serialize_size(len(self.tx_out)) + sum(o.serialize_size() for o in self.tx_out)
        n += 4 + 4
        n += var_int_serialize_size(len(self.tx_in))
        for ti in self.tx_in:
            s = len(ti.signature_script)
            n += 8 + 4 + 4 + var_int_serialize_size(s) + s
        return n

    def tx_hash(self) -> bytes:
        return hash_b(self.serialize(TX_SER_NO_WITNESS))

    # -- decoding ---------------------------------------------------------

    @classmethod
    def read_from(cls, r: BinaryIO) -> "MsgTx":
        raw_ver = struct.unpack("<I", _read_exact(r, 4))[0]
        version = raw_ver & 0xFFFF
        ser_type = raw_ver >> 16
        if ser_type != TX_SER_FULL:
            raise WireError(f"unsupported tx serialization type {ser_type}")

        tx = cls(version=version)
        n_in = _read_count(r, "inputs")
        for _ in range(n_in):
            h = _read_exact(r, HASH_SIZE)
            index, tree, seq = struct.unpack("<IBI", _read_exact(r, 9))
            tx.tx_in.append(TxIn(previous_out_point=OutPoint(h, index, tree), sequence=seq))
        n_out = _read_count(r, "outputs")
        for _ in range(n_out):
            value, sv = struct.unpack("<qH", _read_exact(r, 10))
            tx.tx_out.append(TxOut(value=value, pk_script=_read_var_bytes(r), version=sv))
        tx.lock_time, tx.expiry = struct.unpack("<II", _read_exact(r, 8))

        n_wit = _read_count(r, "witnesses")
        if n_wit != n_in:
            raise WireError(f"witness count {n_wit} does not match input count {n_in}")
        for ti in tx.tx_in:
            ti.value_in, ti.block_height, ti.block_index = struct.unpack("<qII", _read_exact(r, 16))
            ti.signature_script = _read_var_bytes(r)
        return tx

    @classmethod
    def from_bytes(cls, data: bytes) -> "MsgTx":
        r = io.BytesIO(data)
        tx = cls.read_from(r)
        if r.read(1):
            raise WireError("trailing bytes after transaction")
        return tx


@dataclass(frozen=True)
class BlockHeader:
    raw: bytes

    @property
    def version(self) -> int:
        return struct.unpack_from("<i", self.raw, 0)[0]

    @property
    def prev_block(self) -> bytes:
        return self.raw[4:36]

    @property
    def height(self) -> int:
        # version(4) prev(32) merkle(32) stake_root(32) vote_bits(2) final_state(6)
        # voters(2) fresh_stake(1) revocations(1) pool_size(4) bits(4) sbits(8)
        return struct.unpack_from("<I", self.raw, 128)[0]

    def block_hash(self) -> bytes:
        return hash_b(self.raw)


@dataclass
class MsgBlock:
    header: BlockHeader
    transactions: List[MsgTx] = field(default_factory=list)
    stake_transactions: List[MsgTx] = field(default_factory=list)

    @classmethod
    def from_bytes(cls, data: bytes) -> "MsgBlock":
        r = io.BytesIO(data)
        header = BlockHeader(_read_exact(r, BLOCK_HEADER_SIZE))
        txs = [MsgTx.read_from(r) for _ in range(_read_count(r, "transactions"))]
        stxs = [MsgTx.read_from(r) for _ in range(_read_count(r, "stake transactions"))]
        if r.read(1):
            raise WireError("trailing bytes after block")
        return cls(header=header, transactions=txs, stake_transactions=stxs)

    def to_bytes(self) -> bytes:
        w = io.BytesIO()
        w.write(self.header.raw)
        write_var_int(w, len(self.transactions))
        for tx in self.transactions:
            w.write(tx.to_bytes())
        write_var_int(w, len(self.stake_transactions))
        for tx in self.stake_transactions:
            w.write(tx.to_bytes())
        return w.getvalue()
