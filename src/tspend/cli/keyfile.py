# src/tspend/cli/keyfile.py
from __future__ import annotations

"""tspend-keyfile: encrypt a treasury signing key for use with --privkeyfile."""

import getpass
import logging
import sys
from pathlib import Path
from typing import List, Optional

from tspend.cancel import CancelToken
from tspend.chain.sign import compressed_pubkey
from tspend.cli.common import ToolArgumentParser, run_main
from tspend.errors import ConfigError
from tspend.keys import DEFAULT_SCRYPT_N, encrypt_key_file, load_private_key, private_key_scope, write_key_file
from tspend.structured_logging import configure_logging, log_event

log = logging.getLogger("tspend.keyfile")

_MIN_SCRYPT_LOG_N = 4
_MAX_SCRYPT_LOG_N = 22


def build_parser() -> ToolArgumentParser:
    p = ToolArgumentParser(prog="tspend-keyfile", description="Write an encrypted treasury key file")
    p.add_argument("out", help="Path of the key file to create")
    p.add_argument("--privkey", default="-", help="Hex private key, or - to read it from stdin (default)")
    p.add_argument(
        "--scrypt-logn",
        dest="scrypt_logn",
        type=int,
        default=DEFAULT_SCRYPT_N.bit_length() - 1,
        help="log2 of the scrypt cost parameter",
    )
    p.add_argument("--force", action="store_true", help="Overwrite an existing file")
    p.add_argument("-d", "--log-level", dest="log_level", default=None, help="Logging level (DEBUG, INFO, ...)")
    return p


def main(argv: Optional[List[str]] = None) -> int:
    def _run(_cancel: CancelToken) -> int:
        args = build_parser().parse_args(argv)
        configure_logging(args.log_level)

        if not _MIN_SCRYPT_LOG_N <= args.scrypt_logn <= _MAX_SCRYPT_LOG_N:
            raise ConfigError(
                "bad_option",
                f"--scrypt-logn must be between {_MIN_SCRYPT_LOG_N} and {_MAX_SCRYPT_LOG_N}",
            )
        out = Path(args.out).expanduser()
        if out.exists() and not args.force:
            raise ConfigError("bad_output", f"{str(out)!r} already exists (use --force to overwrite)")

        with private_key_scope() as key:
            load_private_key(key, privkey=args.privkey, stdin=sys.stdin, prompt=getpass.getpass)
            try:
                pubkey = compressed_pubkey(key)
            except ValueError as e:
                raise ConfigError("bad_private_key", f"private key is not usable: {e}") from e

            passphrase = getpass.getpass("Encryption passphrase: ")
            if not passphrase:
                raise ConfigError("bad_passphrase", "passphrase must not be empty")
            if getpass.getpass("Confirm passphrase: ") != passphrase:
                raise ConfigError("bad_passphrase", "passphrases do not match")

            envelope = encrypt_key_file(key, passphrase, n=1 << args.scrypt_logn)

        try:
            write_key_file(str(out), envelope)
        except OSError as e:
            raise ConfigError("bad_output", f"error writing key file: {e}") from e

        log_event(log, "key_file_written", path=str(out), scrypt_logn=args.scrypt_logn)
        print(f"Public key: {pubkey.hex()}")
        return 0

    return run_main(_run, signals=False)


if __name__ == "__main__":
    raise SystemExit(main())
