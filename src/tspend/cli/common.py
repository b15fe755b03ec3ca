# src/tspend/cli/common.py
from __future__ import annotations

import argparse
import logging
import sys
from typing import Callable, NoReturn, Optional, TextIO

from tspend.cancel import CancelToken, install_signal_handlers
from tspend.env import load_dotenv_if_present
from tspend.errors import ConfigError, TSpendError

log = logging.getLogger("tspend.cli")


class ToolArgumentParser(argparse.ArgumentParser):
    """ArgumentParser whose usage errors become ConfigError (exit code 1)."""

    def error(self, message: str) -> NoReturn:
        raise ConfigError("usage", message)


def run_main(body: Callable[[CancelToken], int], *, err: Optional[TextIO] = None, signals: bool = True) -> int:
    """Run a tool body with .env loading, signal handling and error reporting.

    Any TSpendError aborts the tool: the message is printed and the exit code
    is 1. Nothing else is written on failure.
    """
    out = err or sys.stdout
    load_dotenv_if_present()
    cancel = CancelToken()
    if signals:
        install_signal_handlers(cancel)
    try:
        return int(body(cancel))
    except TSpendError as e:
        log.debug("tool failed: %s", e)
        print(f"Error: {e.reason}", file=out)
        return 1
    except KeyboardInterrupt:
        print("Error: interrupted", file=out)
        return 1
