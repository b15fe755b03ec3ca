# src/tspend/cancel.py
from __future__ import annotations

import logging
import signal
import threading
from typing import Any, Callable, Optional

from tspend.errors import CancelledError

log = logging.getLogger("tspend.cancel")


class CancelToken:
    """Cooperative cancellation shared by the client and the projectors.

    Long running calls check the token before each blocking request; once set
    the next check raises CancelledError and no partial result is returned.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason = ""

    def cancel(self, reason: str = "shutdown requested") -> None:
        if not self._event.is_set():
            self._reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancelledError("cancelled", self._reason or "shutdown requested")

    def wait(self, timeout_s: Optional[float] = None) -> bool:
        return self._event.wait(timeout_s)


def install_signal_handlers(
    token: CancelToken,
    *,
    signals: tuple = (signal.SIGINT, signal.SIGTERM),
    echo: Callable[[str], Any] = print,
) -> None:
    """Route SIGINT/SIGTERM to ``token``.

    The first signal cancels the token and raises CancelledError in the main
    thread so a blocked request unwinds. Later signals only report that
    shutdown is already in progress.
    """

    def _handler(signum: int, _frame: Any) -> None:
        name = signal.Signals(signum).name
        if token.cancelled:
            echo("Already shutting down...")
            return
        echo(f"Received signal ({name}).  Shutting down...")
        token.cancel(f"received {name}")
        raise CancelledError("cancelled", f"received {name}")

    for sig in signals:
        try:
            signal.signal(sig, _handler)
        except (ValueError, OSError) as e:
            # Not in the main thread or the platform lacks the signal.
            log.debug("cannot install handler for %s: %s", sig, e)
