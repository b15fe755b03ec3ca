from __future__ import annotations

import io
import json
import os
import stat
from pathlib import Path

import pytest

from tspend.errors import ConfigError
from tspend.keys import (
    decrypt_key_envelope,
    encrypt_key_file,
    load_key_file,
    load_private_key,
    parse_hex_key,
    private_key_scope,
    read_key_from_stdin,
    write_key_file,
)

KEY = bytes.fromhex("11" * 32)

# Small scrypt cost keeps the tests fast.
FAST = {"n": 2**4, "r": 8, "p": 1}


def _no_prompt(_msg: str) -> str:
    raise AssertionError("unexpected prompt")


class _Tty(io.StringIO):
    def isatty(self) -> bool:
        return True


def test_scope_zeroes_on_error() -> None:
    held = []
    with pytest.raises(RuntimeError):
        with private_key_scope() as buf:
            buf[:] = KEY
            held.append(buf)
            raise RuntimeError("boom")
    assert held[0] == bytearray(32)


def test_parse_hex_key() -> None:
    buf = bytearray(32)
    parse_hex_key(" " + KEY.hex() + "\n", buf)
    assert bytes(buf) == KEY

    with pytest.raises(ConfigError) as e:
        parse_hex_key("11" * 31, bytearray(32))
    assert e.value.code == "bad_private_key"
    with pytest.raises(ConfigError):
        parse_hex_key("zz" * 32, bytearray(32))


def test_stdin_key_pipe_and_terminal() -> None:
    buf = bytearray(32)
    read_key_from_stdin(buf, stdin=io.StringIO(KEY.hex() + "\n"), prompt=_no_prompt)
    assert bytes(buf) == KEY

    buf = bytearray(32)
    read_key_from_stdin(buf, stdin=_Tty(), prompt=lambda _m: KEY.hex())
    assert bytes(buf) == KEY


def test_encrypted_envelope_roundtrip() -> None:
    env = encrypt_key_file(KEY, "correct horse", **FAST)
    assert env["kdf"] == "scrypt" and env["cipher"] == "chacha20-poly1305"
    assert KEY.hex() not in json.dumps(env)

    buf = bytearray(32)
    decrypt_key_envelope(env, "correct horse", buf)
    assert bytes(buf) == KEY

    with pytest.raises(ConfigError) as e:
        decrypt_key_envelope(env, "wrong", bytearray(32))
    assert e.value.code == "bad_key_file"


def test_envelope_scheme_checks() -> None:
    env = encrypt_key_file(KEY, "pw", **FAST)
    with pytest.raises(ConfigError):
        decrypt_key_envelope({**env, "version": 2}, "pw", bytearray(32))
    with pytest.raises(ConfigError):
        decrypt_key_envelope({**env, "kdf": "pbkdf2"}, "pw", bytearray(32))
    with pytest.raises(ConfigError):
        decrypt_key_envelope({k: v for k, v in env.items() if k != "salt"}, "pw", bytearray(32))


def test_key_files(tmp_path: Path) -> None:
    plain = tmp_path / "plain.key"
    plain.write_text(KEY.hex() + "\n", encoding="ascii")
    buf = bytearray(32)
    load_key_file(str(plain), buf, prompt=_no_prompt)
    assert bytes(buf) == KEY

    enc = tmp_path / "enc.key"
    write_key_file(str(enc), encrypt_key_file(KEY, "pw", **FAST))
    if os.name == "posix":
        assert stat.S_IMODE(enc.stat().st_mode) == 0o600
    buf = bytearray(32)
    load_key_file(str(enc), buf, prompt=lambda _m: "pw")
    assert bytes(buf) == KEY

    with pytest.raises(ConfigError) as e:
        load_key_file(str(tmp_path / "missing.key"), bytearray(32))
    assert e.value.code == "bad_key_file"


def test_load_private_key_sources(tmp_path: Path) -> None:
    buf = bytearray(32)
    load_private_key(buf, privkey=KEY.hex())
    assert bytes(buf) == KEY

    buf = bytearray(32)
    load_private_key(buf, privkey="-", stdin=io.StringIO(KEY.hex()), prompt=_no_prompt)
    assert bytes(buf) == KEY

    f = tmp_path / "k"
    f.write_text(KEY.hex(), encoding="ascii")
    buf = bytearray(32)
    load_private_key(buf, privkey_file=str(f))
    assert bytes(buf) == KEY

    with pytest.raises(ConfigError) as e:
        load_private_key(bytearray(32), privkey=KEY.hex(), privkey_file=str(f))
    assert e.value.code == "conflicting_key_sources"
    with pytest.raises(ConfigError) as e:
        load_private_key(bytearray(32))
    assert e.value.code == "missing_private_key"
