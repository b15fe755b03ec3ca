# src/tspend/errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict


@dataclass
class TSpendError(Exception):
    """Canonical error type for tspend build, projection and node failures."""

    code: str
    reason: str
    details: Dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        if not self.details:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"


class ConfigError(TSpendError):
    """Invalid operator input. Raised before any chain interaction."""


class ConnectivityError(TSpendError):
    """Node unreachable, on the wrong network or speaking an unsupported API."""


class RpcError(TSpendError):
    """JSON-RPC level failure reported by the node."""


class DuplicateSubmissionError(RpcError):
    """The node already has the submitted transaction."""


class PolicyError(TSpendError):
    """Non-consensus policy violation (dust, out of range value).

    Builders log these as warnings and keep going.
    """


class ConsensusCheckError(TSpendError):
    """A transaction or height violates a treasury consensus rule."""


class DataIntegrityError(TSpendError):
    """Chain data returned by the node is internally inconsistent."""


class CancelledError(TSpendError):
    """The operation was aborted by a shutdown request."""


class InvalidExpiryError(ConsensusCheckError):
    """An expiry height that does not map to a treasury voting window."""
