from __future__ import annotations

import getpass
import io
import logging
import signal
import sys
from pathlib import Path
from typing import Iterator

import pytest

from tspend import env
from tspend.cancel import CancelToken, install_signal_handlers
from tspend.chain.wire import MsgTx
from tspend.cli import common, expiryfor, gen, keyfile
from tspend.errors import CancelledError, ConfigError
from tspend.keys import load_key_file

KEY_HEX = "11" * 32


@pytest.fixture(autouse=True)
def _isolated(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """No .env pickup, no process-wide signal handlers and no leaked log handlers."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(common, "install_signal_handlers", lambda token: None)
    for var in ("TSPEND_NETWORK", "TSPEND_CONFIG_PATH", "TSPEND_PRIVKEY_FILE", "TSPEND_DOTENV_PATH", "TSPEND_LOG_LEVEL"):
        monkeypatch.delenv(var, raising=False)
    env.reset_dotenv_state()

    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    configured = getattr(root, "_tspend_configured", False)
    yield
    root.handlers = handlers
    root.setLevel(level)
    setattr(root, "_tspend_configured", configured)
    env.reset_dotenv_state()


def test_expiryfor_reports_advance(capsys: pytest.CaptureFixture[str]) -> None:
    assert expiryfor.main(["--simnet", "61"]) == 0
    out = capsys.readouterr().out.splitlines()
    assert out[0] == "Chain: simnet TVI 16 MUL 3"
    assert out[1] == "Height 62: IsTVI: false"
    assert out[2] == "To TVI: 2 (thresh 4)"
    assert out[3] == "Expiry: 114"
    assert "Height too close to TVI. Advancing to next one." in out
    assert out[-2] == "Expiry: 130"
    assert out[-1] == "Voting interval: 80 - 128"


def test_expiryfor_mainnet(capsys: pytest.CaptureFixture[str]) -> None:
    assert expiryfor.main(["564000"]) == 0
    out = capsys.readouterr().out.splitlines()
    assert out[0] == "Chain: mainnet TVI 288 MUL 12"
    assert out[-1] == "Voting interval: 564192 - 567648"


def test_usage_error_exits_one(capsys: pytest.CaptureFixture[str]) -> None:
    assert expiryfor.main(["--testnet", "--simnet", "5"]) == 1
    assert capsys.readouterr().out.startswith("Error: ")


def test_gen_offline_writes_hex(capsys: pytest.CaptureFixture[str], pkh_address) -> None:
    argv = [
        "--simnet",
        "--privkey",
        KEY_HEX,
        "--address",
        str(pkh_address),
        "--amount",
        "100000000",
        "--expiry",
        "130",
        "--deterministic-opreturn",
    ]
    assert gen.main(argv) == 0
    first = capsys.readouterr().out.strip()

    tx = MsgTx.from_bytes(bytes.fromhex(first))
    assert tx.expiry == 130
    assert tx.tx_out[1].value == 100_000_000

    assert gen.main(argv) == 0
    assert capsys.readouterr().out.strip() == first


def test_gen_csv_to_file(tmp_path: Path, capsys: pytest.CaptureFixture[str], pkh_address) -> None:
    csv_file = tmp_path / "payouts.csv"
    csv_file.write_text(f"{pkh_address},2\n", encoding="utf-8")
    out = tmp_path / "tspend.hex"
    argv = ["--simnet", "--privkey", KEY_HEX, "--csv", str(csv_file), "--currentheight", "61", "--out", str(out)]
    assert gen.main(argv) == 0
    assert capsys.readouterr().out == ""

    tx = MsgTx.from_bytes(bytes.fromhex(out.read_text(encoding="ascii").strip()))
    assert tx.expiry == 130
    assert tx.tx_out[1].value == 200_000_000


def test_gen_bad_key_reports_error(capsys: pytest.CaptureFixture[str], pkh_address) -> None:
    argv = ["--simnet", "--privkey", "abcd", "--address", str(pkh_address), "--amount", "1", "--expiry", "130"]
    assert gen.main(argv) == 1
    out = capsys.readouterr().out
    assert out.startswith("Error: private key must be")


def test_run_main_maps_errors(capsys: pytest.CaptureFixture[str]) -> None:
    def body(_cancel: CancelToken) -> int:
        raise ConfigError("bad", "something is off")

    assert common.run_main(body, signals=False) == 1
    assert capsys.readouterr().out == "Error: something is off\n"


def test_signal_handler_cancels_once() -> None:
    token = CancelToken()
    echoed = []
    previous = signal.getsignal(signal.SIGTERM)
    try:
        install_signal_handlers(token, signals=(signal.SIGTERM,), echo=echoed.append)
        handler = signal.getsignal(signal.SIGTERM)

        with pytest.raises(CancelledError):
            handler(signal.SIGTERM, None)
        assert token.cancelled
        assert token.reason == "received SIGTERM"

        handler(signal.SIGTERM, None)
        assert echoed[-1] == "Already shutting down..."
    finally:
        signal.signal(signal.SIGTERM, previous)


def test_gen_zero_key_reports_error(capsys: pytest.CaptureFixture[str], pkh_address) -> None:
    argv = ["--simnet", "--privkey", "00" * 32, "--address", str(pkh_address), "--amount", "100000000", "--expiry", "130"]
    assert gen.main(argv) == 1
    assert capsys.readouterr().out.startswith("Error: private key is not usable")


def test_bad_log_level_reports_error(capsys: pytest.CaptureFixture[str], pkh_address) -> None:
    argv = ["--simnet", "--privkey", KEY_HEX, "--address", str(pkh_address), "--amount", "1", "--expiry", "130", "--log-level", "loud"]
    assert gen.main(argv) == 1
    assert capsys.readouterr().out == "Error: invalid log level: 'LOUD'\n"


def test_keyfile_writes_encrypted_key(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    monkeypatch.setattr(sys, "stdin", io.StringIO(KEY_HEX + "\n"))
    monkeypatch.setattr(getpass, "getpass", lambda _prompt="": "pw")
    out = tmp_path / "simnet.key"

    assert keyfile.main([str(out), "--scrypt-logn", "4"]) == 0
    printed = capsys.readouterr().out.strip()
    assert printed.startswith("Public key: ")
    assert len(printed.split()[-1]) == 66
    assert KEY_HEX not in out.read_text(encoding="utf-8")

    buf = bytearray(32)
    load_key_file(str(out), buf, prompt=lambda _m: "pw")
    assert buf.hex() == KEY_HEX

    assert keyfile.main([str(out), "--privkey", KEY_HEX, "--scrypt-logn", "4"]) == 1
    assert "already exists" in capsys.readouterr().out


def test_keyfile_rejects_mismatched_passphrases(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    answers = iter(["one", "two"])
    monkeypatch.setattr(getpass, "getpass", lambda _prompt="": next(answers))
    out = tmp_path / "k.json"

    assert keyfile.main([str(out), "--privkey", KEY_HEX, "--scrypt-logn", "4"]) == 1
    assert capsys.readouterr().out == "Error: passphrases do not match\n"
    assert not out.exists()
