# src/tspend/structured_logging.py
from __future__ import annotations

import json
import logging
import os
import sys
import time
from typing import Any, Dict, Optional

from tspend.errors import ConfigError

Json = Dict[str, Any]


def _now_ms() -> int:
    return int(time.time() * 1000)


def configure_logging(level: Optional[str] = None) -> None:
    """Configure stdlib logging for the CLI tools.

    - Level from the argument, else TSPEND_LOG_LEVEL (default INFO).
    - Logs go to stderr so stdout stays reserved for the raw tx hex / reports.
    - Safe to call multiple times.
    """
    level_name = (level or os.environ.get("TSPEND_LOG_LEVEL") or "INFO").strip().upper()
    lvl = getattr(logging, level_name, None)
    if not isinstance(lvl, int):
        raise ConfigError("bad_log_level", f"invalid log level: {level_name!r}")

    root = logging.getLogger()
    if getattr(root, "_tspend_configured", False):  # type: ignore[attr-defined]
        root.setLevel(lvl)
        for h in root.handlers:
            h.setLevel(lvl)
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(lvl)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))

    root.handlers = [handler]
    root.setLevel(lvl)
    setattr(root, "_tspend_configured", True)  # type: ignore[attr-defined]


def log_event(logger: logging.Logger, event: str, *, level: int = logging.INFO, **fields: Any) -> None:
    """Emit a single JSON log event."""
    if not logger.isEnabledFor(level):
        return
    payload: Json = {"ts_ms": _now_ms(), "event": str(event)}
    payload.update(fields)
    try:
        logger.log(level, json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))
    except (TypeError, ValueError):
        parts = [f"event={event}"] + [f"{k}={fields.get(k)!r}" for k in sorted(fields.keys())]
        logger.log(level, " ".join(parts))
