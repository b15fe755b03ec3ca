# src/tspend/keys.py
from __future__ import annotations

"""Treasury signing key retrieval.

Keys are 32 byte secp256k1 scalars. Every buffer that holds key material is
a bytearray owned by the caller and wiped with zero_bytes() on every exit
path; use private_key_scope() to get one.

Key file formats:
  - plain: the key as hex, optionally surrounded by whitespace.
  - encrypted: a JSON envelope (scrypt KDF, ChaCha20-Poly1305 AEAD)
    produced by encrypt_key_file().
"""

import getpass
import json
import os
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, Optional, TextIO

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from tspend.errors import ConfigError

Json = Dict[str, Any]

PRIVATE_KEY_SIZE = 32

KEY_FILE_VERSION = 1
_KDF = "scrypt"
_CIPHER = "chacha20-poly1305"
_AAD = b"tspend key file v1"

DEFAULT_SCRYPT_N = 1 << 17
DEFAULT_SCRYPT_R = 8
DEFAULT_SCRYPT_P = 1

PassphrasePrompt = Callable[[str], str]


def zero_bytes(buf: bytearray) -> None:
    for i in range(len(buf)):
        buf[i] = 0


@contextmanager
def private_key_scope() -> Iterator[bytearray]:
    """Yield a key buffer that is zeroed when the block exits, however it exits."""
    buf = bytearray(PRIVATE_KEY_SIZE)
    try:
        yield buf
    finally:
        zero_bytes(buf)


def _decode_hex_into(text: bytearray, into: bytearray) -> None:
    raw = bytearray()
    try:
        stripped = bytes(text).strip()
        if len(stripped) != PRIVATE_KEY_SIZE * 2:
            raise ConfigError(
                "bad_private_key",
                f"private key must be {PRIVATE_KEY_SIZE * 2} hex characters",
                {"length": len(stripped)},
            )
        try:
            raw = bytearray(bytes.fromhex(stripped.decode("ascii")))
        except (ValueError, UnicodeDecodeError) as e:
            raise ConfigError("bad_private_key", "private key is not valid hex") from e
        into[:PRIVATE_KEY_SIZE] = raw
    finally:
        zero_bytes(raw)


def parse_hex_key(text: str, into: bytearray) -> None:
    buf = bytearray(text.encode("ascii", errors="replace"))
    try:
        _decode_hex_into(buf, into)
    finally:
        zero_bytes(buf)


def read_key_from_stdin(
    into: bytearray,
    *,
    stdin: Optional[TextIO] = None,
    prompt: PassphrasePrompt = getpass.getpass,
) -> None:
    """Read a hex key from stdin; prompt without echo when stdin is a terminal."""
    src = stdin if stdin is not None else sys.stdin
    if src.isatty():
        line = prompt("Private key: ")
    else:
        line = src.readline()
    parse_hex_key(line, into)


def _scrypt(salt: bytes, n: int, r: int, p: int) -> Scrypt:
    return Scrypt(salt=salt, length=32, n=n, r=r, p=p)


def encrypt_key_file(
    key: bytes | bytearray,
    passphrase: str,
    *,
    n: int = DEFAULT_SCRYPT_N,
    r: int = DEFAULT_SCRYPT_R,
    p: int = DEFAULT_SCRYPT_P,
) -> Json:
    """Encrypt ``key`` under ``passphrase`` and return the JSON envelope."""
    if len(key) != PRIVATE_KEY_SIZE:
        raise ConfigError("bad_private_key", f"private key must be {PRIVATE_KEY_SIZE} bytes")
    salt = os.urandom(16)
    nonce = os.urandom(12)
    sym = bytearray(_scrypt(salt, n, r, p).derive(passphrase.encode("utf-8")))
    try:
        ct = ChaCha20Poly1305(bytes(sym)).encrypt(nonce, bytes(key), _AAD)
    finally:
        zero_bytes(sym)
    return {
        "version": KEY_FILE_VERSION,
        "kdf": _KDF,
        "n": int(n),
        "r": int(r),
        "p": int(p),
        "salt": salt.hex(),
        "cipher": _CIPHER,
        "nonce": nonce.hex(),
        "ciphertext": ct.hex(),
    }


def decrypt_key_envelope(envelope: Json, passphrase: str, into: bytearray) -> None:
    if not isinstance(envelope, dict) or envelope.get("version") != KEY_FILE_VERSION:
        raise ConfigError("bad_key_file", "unsupported key file version")
    if envelope.get("kdf") != _KDF or envelope.get("cipher") != _CIPHER:
        raise ConfigError(
            "bad_key_file",
            "unsupported key file scheme",
            {"kdf": envelope.get("kdf"), "cipher": envelope.get("cipher")},
        )
    try:
        salt = bytes.fromhex(str(envelope["salt"]))
        nonce = bytes.fromhex(str(envelope["nonce"]))
        ct = bytes.fromhex(str(envelope["ciphertext"]))
        n, r, p = int(envelope["n"]), int(envelope["r"]), int(envelope["p"])
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigError("bad_key_file", f"malformed key file: {e}") from e

    sym = bytearray(_scrypt(salt, n, r, p).derive(passphrase.encode("utf-8")))
    plain = bytearray()
    try:
        try:
            plain = bytearray(ChaCha20Poly1305(bytes(sym)).decrypt(nonce, ct, _AAD))
        except InvalidTag as e:
            raise ConfigError("bad_key_file", "key file decryption failed (wrong passphrase?)") from e
        if len(plain) != PRIVATE_KEY_SIZE:
            raise ConfigError("bad_key_file", "decrypted key has the wrong size", {"size": len(plain)})
        into[:PRIVATE_KEY_SIZE] = plain
    finally:
        zero_bytes(sym)
        zero_bytes(plain)


def load_key_file(
    path: str,
    into: bytearray,
    *,
    prompt: PassphrasePrompt = getpass.getpass,
) -> None:
    p = Path(path).expanduser()
    try:
        data = bytearray(p.read_bytes())
    except OSError as e:
        raise ConfigError("bad_key_file", f"cannot read key file {str(p)!r}: {e}") from e

    try:
        if data.lstrip().startswith(b"{"):
            try:
                envelope = json.loads(bytes(data).decode("utf-8"))
            except (UnicodeDecodeError, ValueError) as e:
                raise ConfigError("bad_key_file", f"key file {str(p)!r} is not valid JSON") from e
            passphrase = prompt("Decryption passphrase: ")
            decrypt_key_envelope(envelope, passphrase, into)
        else:
            _decode_hex_into(data, into)
    finally:
        zero_bytes(data)


def write_key_file(path: str, envelope: Json) -> None:
    p = Path(path).expanduser()
    p.write_text(json.dumps(envelope, sort_keys=True, indent=2) + "\n", encoding="utf-8")
    os.chmod(p, 0o600)


def load_private_key(
    into: bytearray,
    *,
    privkey: str = "",
    privkey_file: str = "",
    stdin: Optional[TextIO] = None,
    prompt: PassphrasePrompt = getpass.getpass,
) -> None:
    """Fill ``into`` from the configured source.

    ``privkey`` is hex, or "-" to read it from stdin. Otherwise
    ``privkey_file`` is read. Exactly one source must be configured.
    """
    if privkey and privkey_file:
        raise ConfigError("conflicting_key_sources", "use only one of --privkey and --privkeyfile")
    if privkey == "-":
        read_key_from_stdin(into, stdin=stdin, prompt=prompt)
    elif privkey:
        parse_hex_key(privkey, into)
    elif privkey_file:
        load_key_file(privkey_file, into, prompt=prompt)
    else:
        raise ConfigError("missing_private_key", "no private key source: use --privkey or --privkeyfile")
