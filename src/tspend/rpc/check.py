# src/tspend/rpc/check.py
from __future__ import annotations

import logging
from typing import Optional

from tspend.chain.params import ChainParams
from tspend.errors import ConnectivityError, RpcError
from tspend.rpc.client import DcrdClient

log = logging.getLogger("tspend.rpc")

# Semver: the major version must match, any minor >= the minimum is accepted.
WANT_JSON_RPC_MAJOR = 8
WANT_JSON_RPC_MINOR = 0

CHECK_TIMEOUT_S = 5.0


def check_node(
    client: DcrdClient,
    params: ChainParams,
    *,
    ignore_rpc_version: bool = False,
    timeout_s: float = CHECK_TIMEOUT_S,
    logger: Optional[logging.Logger] = None,
) -> str:
    """Verify the node is on ``params``' network and speaks a supported API.

    Returns the node's own version string.
    """
    lg = logger or log
    try:
        info = client.get_blockchain_info(timeout_s=timeout_s)
    except RpcError as e:
        raise ConnectivityError("node_check_failed", f"unable to get blockchain info: {e}") from e
    if info.chain != params.name:
        raise ConnectivityError(
            "network_mismatch",
            f"node network mismatch (want {params.name}, got {info.chain})",
            {"want": params.name, "got": info.chain},
        )

    try:
        versions = client.version(timeout_s=timeout_s)
    except RpcError as e:
        raise ConnectivityError("node_check_failed", f"unable to query node version: {e}") from e

    api = versions.get("dcrdjsonrpcapi")
    if api is None:
        raise ConnectivityError("no_rpc_version", "node did not report the 'dcrdjsonrpcapi' version")
    if api.major != WANT_JSON_RPC_MAJOR or api.minor < WANT_JSON_RPC_MINOR:
        msg = (
            f"node running an unsupported JSON-RPC API version "
            f"(want {WANT_JSON_RPC_MAJOR}.{WANT_JSON_RPC_MINOR} got {api.versionstring or f'{api.major}.{api.minor}'})"
        )
        if not ignore_rpc_version:
            raise ConnectivityError("unsupported_rpc_version", msg, {"major": api.major, "minor": api.minor})
        lg.warning("%s - ignoring as commanded", msg)

    node = versions.get("dcrd")
    if node is None:
        raise ConnectivityError("no_node_version", "node did not report the 'dcrd' version")
    return node.versionstring
