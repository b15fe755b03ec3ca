# src/tspend/rpc/schemas.py
from __future__ import annotations

"""Pydantic models for the node JSON-RPC results this tool reads.

Only the fields the tools use are declared; extra fields are kept so newer
node versions stay compatible.
"""

from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, Field, ValidationError

from tspend.errors import RpcError

M = TypeVar("M", bound=BaseModel)


class _Result(BaseModel):
    model_config = {"extra": "allow"}


class BestBlock(_Result):
    hash: str
    height: int


class BlockHeaderVerbose(_Result):
    hash: str
    height: int
    previousblockhash: str = Field(default="", description="Empty or all zeros for the genesis block")


class TreasuryBalance(_Result):
    hash: str
    height: int
    balance: int
    updates: List[int] = Field(default_factory=list, description="Signed treasury deltas of the block")


class TreasurySpendVotes(_Result):
    hash: str
    expiry: int
    votestart: int
    voteend: int
    yesvotes: int
    novotes: int


class TreasurySpendVotesResult(_Result):
    hash: str
    height: int
    votes: List[TreasurySpendVotes] = Field(default_factory=list)


class BlockchainInfo(_Result):
    chain: str
    blocks: int = 0
    bestblockhash: str = ""


class VersionEntry(_Result):
    versionstring: str = ""
    major: int
    minor: int
    patch: int = 0


class RpcErrorObject(_Result):
    code: int
    message: str = ""


class RpcResponse(_Result):
    result: Any = None
    error: Optional[RpcErrorObject] = None
    id: Any = None


def parse_result(model: Type[M], obj: Any, *, method: str) -> M:
    try:
        return model.model_validate(obj)
    except ValidationError as e:
        raise RpcError(
            "bad_response",
            f"unexpected {method} result",
            {"method": method, "errors": e.errors(include_url=False)},
        ) from e


def parse_versions(obj: Any) -> Dict[str, VersionEntry]:
    if not isinstance(obj, dict):
        raise RpcError("bad_response", "unexpected version result", {"method": "version"})
    return {str(k): parse_result(VersionEntry, v, method="version") for k, v in obj.items()}
