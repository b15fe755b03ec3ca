# src/tspend/rpc/client.py
from __future__ import annotations

import base64
import json
import logging
import ssl
import urllib.error
import urllib.request
from itertools import count
from typing import Any, Callable, Dict, List, Optional

from tspend.cancel import CancelToken
from tspend.chain.chainhash import hash_to_str
from tspend.chain.wire import MsgBlock, MsgTx, WireError
from tspend.errors import ConnectivityError, DuplicateSubmissionError, RpcError
from tspend.rpc.schemas import (
    BestBlock,
    BlockchainInfo,
    BlockHeaderVerbose,
    RpcResponse,
    TreasuryBalance,
    TreasurySpendVotesResult,
    VersionEntry,
    parse_result,
    parse_versions,
)

Json = Dict[str, Any]

log = logging.getLogger("tspend.rpc")

# The node already has the transaction (mempool or chain).
ERR_RPC_DUPLICATE_TX = -40

DEFAULT_TIMEOUT_S = 30.0

Transport = Callable[[Json, float], Json]


def _ssl_context(cert_pem: Optional[bytes], insecure: bool) -> ssl.SSLContext:
    if insecure:
        ctx = ssl.create_default_context()
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
        return ctx
    if cert_pem:
        return ssl.create_default_context(cadata=cert_pem.decode("ascii", errors="replace"))
    return ssl.create_default_context()


class HttpTransport:
    """POST JSON-RPC bodies to a node over HTTPS with basic auth."""

    def __init__(
        self,
        host: str,
        *,
        user: str = "",
        password: str = "",
        cert_pem: Optional[bytes] = None,
        use_tls: bool = True,
        insecure_skip_verify: bool = False,
    ) -> None:
        scheme = "https" if use_tls else "http"
        self.url = f"{scheme}://{host}"
        self._auth = "Basic " + base64.b64encode(f"{user}:{password}".encode("utf-8")).decode("ascii")
        self._ctx = _ssl_context(cert_pem, insecure_skip_verify) if use_tls else None

    def __call__(self, body: Json, timeout_s: float) -> Json:
        data = json.dumps(body).encode("utf-8")
        headers = {"Content-Type": "application/json", "Authorization": self._auth}
        req = urllib.request.Request(self.url, data=data, headers=headers, method="POST")
        try:
            with urllib.request.urlopen(req, timeout=timeout_s, context=self._ctx) as resp:
                raw = resp.read().decode("utf-8", errors="replace")
        except urllib.error.HTTPError as e:
            if e.code in (401, 403):
                raise ConnectivityError("auth_failed", "node rejected the RPC credentials", {"status": e.code}) from e
            # The node reports JSON-RPC errors with a non-200 status and a JSON body.
            try:
                raw = e.read().decode("utf-8", errors="replace")
            except OSError:
                raw = ""
            if not raw.strip():
                raise RpcError("http_error", f"HTTP {e.code}", {"status": e.code}) from e
        except (urllib.error.URLError, OSError) as e:
            reason = getattr(e, "reason", e)
            raise ConnectivityError("unreachable", f"unable to reach node at {self.url}: {reason}") from e

        try:
            obj = json.loads(raw)
        except ValueError as e:
            raise RpcError("bad_json", "node returned invalid JSON", {"raw": raw[:200]}) from e
        if not isinstance(obj, dict):
            raise RpcError("bad_json", "node returned a non-object response")
        return obj


class DcrdClient:
    """Blocking JSON-RPC client for the calls the tools need.

    Every call checks ``cancel`` first; a cancelled token aborts before the
    request is sent.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        cancel: Optional[CancelToken] = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._transport = transport
        self._cancel = cancel or CancelToken()
        self.timeout_s = float(timeout_s)
        self._ids = count(1)
        self._log = logger or log

    def call(self, method: str, params: Optional[List[Any]] = None, *, timeout_s: Optional[float] = None) -> Any:
        self._cancel.raise_if_cancelled()
        body: Json = {"jsonrpc": "1.0", "id": next(self._ids), "method": method, "params": list(params or [])}
        self._log.debug("rpc %s %s", method, body["params"])
        obj = self._transport(body, self.timeout_s if timeout_s is None else float(timeout_s))

        resp = parse_result(RpcResponse, obj, method=method)
        if resp.error is not None:
            code, message = int(resp.error.code), str(resp.error.message)
            if code == ERR_RPC_DUPLICATE_TX:
                raise DuplicateSubmissionError("duplicate_tx", message, {"method": method, "rpc_code": code})
            raise RpcError("rpc_error", message, {"method": method, "rpc_code": code})
        return resp.result

    # -- chain queries ----------------------------------------------------

    def get_best_block(self) -> BestBlock:
        return parse_result(BestBlock, self.call("getbestblock"), method="getbestblock")

    def get_block_hash(self, height: int) -> str:
        res = self.call("getblockhash", [int(height)])
        if not isinstance(res, str):
            raise RpcError("bad_response", "unexpected getblockhash result", {"method": "getblockhash"})
        return res

    def get_block_header(self, block_hash: str) -> BlockHeaderVerbose:
        res = self.call("getblockheader", [block_hash, True])
        return parse_result(BlockHeaderVerbose, res, method="getblockheader")

    def get_block(self, block_hash: str) -> MsgBlock:
        res = self.call("getblock", [block_hash, False])
        try:
            return MsgBlock.from_bytes(bytes.fromhex(str(res)))
        except (ValueError, WireError) as e:
            raise RpcError("bad_response", f"cannot decode block {block_hash}: {e}", {"method": "getblock"}) from e

    def get_treasury_balance(self, block_hash: str, verbose: bool = True) -> TreasuryBalance:
        res = self.call("gettreasurybalance", [block_hash, bool(verbose)])
        return parse_result(TreasuryBalance, res, method="gettreasurybalance")

    def get_treasury_spend_votes(self) -> TreasurySpendVotesResult:
        res = self.call("gettreasuryspendvotes")
        return parse_result(TreasurySpendVotesResult, res, method="gettreasuryspendvotes")

    def get_blockchain_info(self, *, timeout_s: Optional[float] = None) -> BlockchainInfo:
        res = self.call("getblockchaininfo", timeout_s=timeout_s)
        return parse_result(BlockchainInfo, res, method="getblockchaininfo")

    def version(self, *, timeout_s: Optional[float] = None) -> Dict[str, VersionEntry]:
        return parse_versions(self.call("version", timeout_s=timeout_s))

    def send_raw_transaction(self, tx: MsgTx, allow_high_fees: bool = True) -> str:
        res = self.call("sendrawtransaction", [tx.to_bytes().hex(), bool(allow_high_fees)])
        txid = str(res or "")
        self._log.debug("sendrawtransaction -> %s (local %s)", txid, hash_to_str(tx.tx_hash()))
        return txid
