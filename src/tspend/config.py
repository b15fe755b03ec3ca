# src/tspend/config.py
from __future__ import annotations

"""Tool options and the derived run context.

Precedence (highest first):
  1) command line flags
  2) TSPEND_* environment variables (a .env file is loaded first if present)
  3) config file (--config or TSPEND_CONFIG_PATH; JSON, or YAML by extension)
  4) built-in defaults

ToolOptions is the immutable parsed result. RunContext holds what is derived
from it once (chain params, RPC target, certificate) and is passed to the
components by reference.
"""

import argparse
import json
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from tspend.cancel import CancelToken
from tspend.chain.params import ChainParams, params_for_network
from tspend.errors import ConfigError
from tspend.policy.checker import DEFAULT_RELAY_FEE_PER_KB
from tspend.rpc.client import DcrdClient, HttpTransport

Json = Dict[str, Any]

NETWORKS = ("mainnet", "testnet", "simnet")
DEFAULT_NETWORK = "mainnet"

DEFAULT_APP_DIR = "~/.tspend"
DEFAULT_CERT_PATH = "~/.dcrd/rpc.cert"

TOOL_GEN = "gen"
TOOL_ESTIMATE = "estimate"
TOOL_PROGRESS = "progress"

# Environment overrides: env var -> option field.
ENV_OPTIONS = {
    "TSPEND_NETWORK": "network",
    "TSPEND_RPC_CONNECT": "rpc_connect",
    "TSPEND_RPC_USER": "rpc_user",
    "TSPEND_RPC_PASS": "rpc_pass",
    "TSPEND_RPC_CERT_PATH": "rpc_cert_path",
    "TSPEND_LOG_LEVEL": "log_level",
    "TSPEND_PRIVKEY_FILE": "privkey_file",
}


@dataclass(frozen=True)
class ToolOptions:
    network: str = DEFAULT_NETWORK
    log_level: str = "INFO"

    # Node connection.
    rpc_connect: str = ""
    rpc_user: str = ""
    rpc_pass: str = ""
    rpc_cert_path: str = DEFAULT_CERT_PATH
    rpc_cert_bytes: str = ""
    rpc_no_tls: bool = False
    ignore_rpc_version: bool = False

    # tspend-gen.
    fee_rate: int = DEFAULT_RELAY_FEE_PER_KB
    privkey: str = ""
    privkey_file: str = ""
    op_return_data: str = ""
    deterministic_op_return: bool = False
    publish: bool = False
    expiry: int = 0
    current_height: int = 0
    addresses: Tuple[str, ...] = ()
    amounts: Tuple[int, ...] = ()
    csv: str = ""
    spew: bool = False
    out: str = ""

    # tspend-estimate.
    height: int = 0

    def needs_node(self, tool: str) -> bool:
        if tool != TOOL_GEN:
            return True
        return self.publish or (self.expiry == 0 and self.current_height == 0)


_FIELD_NAMES = {f.name for f in fields(ToolOptions)}
_INT_FIELDS = {"fee_rate", "expiry", "current_height", "height"}
_BOOL_FIELDS = {"rpc_no_tls", "ignore_rpc_version", "deterministic_op_return", "publish", "spew"}


def load_config_file(path: str) -> Json:
    p = Path(path).expanduser()
    try:
        raw = p.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError("bad_config_file", f"cannot read config file {str(p)!r}: {e}") from e

    if p.suffix.lower() in (".yaml", ".yml"):
        import yaml

        try:
            obj = yaml.safe_load(raw)
        except yaml.YAMLError as e:
            raise ConfigError("bad_config_file", f"invalid YAML in {str(p)!r}: {e}") from e
    else:
        try:
            obj = json.loads(raw)
        except ValueError as e:
            raise ConfigError("bad_config_file", f"invalid JSON in {str(p)!r}: {e}") from e

    if obj is None:
        return {}
    if not isinstance(obj, dict):
        raise ConfigError("bad_config_file", f"config file {str(p)!r} must contain an object")
    unknown = sorted(set(obj) - _FIELD_NAMES)
    if unknown:
        raise ConfigError("bad_config_file", f"unknown config keys: {', '.join(unknown)}", {"keys": unknown})
    return obj


def _is_truthy(v: str) -> bool:
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


def _coerce(name: str, value: Any) -> Any:
    try:
        if name in _INT_FIELDS:
            return int(value)
        if name in _BOOL_FIELDS:
            return _is_truthy(value) if isinstance(value, str) else bool(value)
        if name == "addresses":
            return tuple(str(a) for a in value)
        if name == "amounts":
            return tuple(int(a) for a in value)
    except (TypeError, ValueError) as e:
        raise ConfigError("bad_option", f"invalid value for {name}: {value!r}") from e
    return str(value)


def add_network_args(p: argparse.ArgumentParser) -> None:
    g = p.add_argument_group("network")
    g.add_argument("--mainnet", action="store_true", default=None, help="Use the main network")
    g.add_argument("--testnet", action="store_true", default=None, help="Use the test network")
    g.add_argument("--simnet", action="store_true", default=None, help="Use the simulation test network")


def add_common_args(p: argparse.ArgumentParser) -> None:
    add_network_args(p)
    p.add_argument("--config", default=None, help="Path to a JSON or YAML config file")
    p.add_argument("-d", "--log-level", dest="log_level", default=None, help="Logging level (DEBUG, INFO, ...)")

    g = p.add_argument_group("node connection")
    g.add_argument(
        "-s",
        "--dcrdconnect",
        dest="rpc_connect",
        default=None,
        help="host:port of the node RPC interface (default: localhost on the network's RPC port)",
    )
    g.add_argument("-u", "--dcrduser", dest="rpc_user", default=None, help="RPC username")
    g.add_argument("-P", "--dcrdpass", dest="rpc_pass", default=None, help="RPC password")
    g.add_argument("--dcrdcertpath", dest="rpc_cert_path", default=None, help="Path to the node RPC certificate")
    g.add_argument("--dcrdcertbytes", dest="rpc_cert_bytes", default=None, help="PEM-encoded node RPC certificate")
    g.add_argument("--notls", dest="rpc_no_tls", action="store_true", default=None, help="Connect without TLS")
    g.add_argument(
        "--ignore-rpc-version",
        dest="ignore_rpc_version",
        action="store_true",
        default=None,
        help="Only warn when the node runs an unsupported JSON-RPC version",
    )


def add_gen_args(p: argparse.ArgumentParser) -> None:
    g = p.add_argument_group("tspend")
    g.add_argument("--feerate", dest="fee_rate", type=int, default=None, help="Fee rate in atoms/kB")
    g.add_argument("--privkey", default=None, help="Hex private key to sign with, or - to read it from stdin")
    g.add_argument("--privkeyfile", dest="privkey_file", default=None, help="Private key file (plain hex or encrypted)")
    g.add_argument("--opreturndata", dest="op_return_data", default=None, help="OP_RETURN payload hex (random if unset)")
    g.add_argument(
        "--deterministic-opreturn",
        dest="deterministic_op_return",
        action="store_true",
        default=None,
        help="Derive the OP_RETURN payload from the payouts",
    )
    g.add_argument("--publish", action="store_true", default=None, help="Publish the tspend to the node")
    g.add_argument("--expiry", type=int, default=None, help="Expiry to use")
    g.add_argument(
        "--currentheight",
        dest="current_height",
        type=int,
        default=None,
        help="Current chain height to place the expiry from",
    )
    g.add_argument("--address", dest="addresses", action="append", default=None, help="Payout address (repeatable)")
    g.add_argument("--amount", dest="amounts", action="append", type=int, default=None, help="Payout atoms (repeatable)")
    g.add_argument("--csv", default=None, help="CSV file of address,amount (decimal coins) payouts")
    g.add_argument("--spew", action="store_true", default=None, help="Log the full tspend structure")
    g.add_argument("--out", default=None, help="Write the tx hex to this file instead of stdout")


def _network_from_flags(args: argparse.Namespace) -> Optional[str]:
    chosen = [n for n in ("mainnet", "testnet", "simnet") if getattr(args, n, None)]
    if len(chosen) > 1:
        raise ConfigError(
            "conflicting_networks",
            "mainnet, testnet and simnet can't be used together -- choose one of the three",
        )
    return chosen[0] if chosen else None


def resolve_options(args: argparse.Namespace, *, environ: Optional[Mapping[str, str]] = None) -> ToolOptions:
    env = os.environ if environ is None else environ
    values: Json = {}

    config_path = getattr(args, "config", None) or env.get("TSPEND_CONFIG_PATH", "")
    if config_path:
        values.update(load_config_file(config_path))

    for var, name in ENV_OPTIONS.items():
        v = env.get(var)
        if v:
            values[name] = v

    for name in _FIELD_NAMES:
        v = getattr(args, name, None)
        if v is not None:
            values[name] = v

    net = _network_from_flags(args)
    if net is not None:
        values["network"] = net

    opts = ToolOptions(**{k: _coerce(k, v) for k, v in values.items()})
    return replace(opts, network=opts.network.strip().lower(), log_level=opts.log_level.strip().upper())


def default_key_file(network: str) -> str:
    return str(Path(DEFAULT_APP_DIR).expanduser() / f"{network}.key")


def validate_options(opts: ToolOptions, tool: str) -> ToolOptions:
    """Fail fast on bad input. Returns the options with defaults filled in."""
    if opts.network not in NETWORKS:
        raise ConfigError("unknown_network", f"unknown network {opts.network!r}", {"choices": list(NETWORKS)})
    if tool != TOOL_GEN:
        if opts.height < 0:
            raise ConfigError("bad_height", "height must not be negative")
        return opts

    if opts.fee_rate < 0:
        raise ConfigError("bad_fee_rate", "fee rate must not be negative", {"fee_rate": opts.fee_rate})
    if opts.expiry < 0 or opts.current_height < 0:
        raise ConfigError("bad_height", "expiry and current height must not be negative")
    if len(opts.addresses) != len(opts.amounts):
        raise ConfigError(
            "payout_count_mismatch",
            f"number of addresses ({len(opts.addresses)}) must match number of amounts ({len(opts.amounts)})",
        )
    if opts.csv and opts.addresses:
        raise ConfigError("conflicting_payouts", "use either --csv or --address/--amount, not both")
    if not opts.csv and not opts.addresses:
        raise ConfigError("no_payouts", "at least one payout must be specified")
    if opts.privkey and opts.privkey_file:
        raise ConfigError("conflicting_key_sources", "use only one of --privkey and --privkeyfile")

    if not opts.privkey and not opts.privkey_file:
        opts = replace(opts, privkey_file=default_key_file(opts.network))
    if opts.privkey_file and not Path(opts.privkey_file).expanduser().is_file():
        raise ConfigError("missing_key_file", f"private key file {opts.privkey_file!r} does not exist")
    return opts


@dataclass(frozen=True)
class RunContext:
    params: ChainParams
    rpc_host: str
    rpc_user: str
    rpc_pass: str
    cert_pem: Optional[bytes]
    use_tls: bool
    ignore_rpc_version: bool = False

    def client(self, cancel: Optional[CancelToken] = None) -> DcrdClient:
        transport = HttpTransport(
            self.rpc_host,
            user=self.rpc_user,
            password=self.rpc_pass,
            cert_pem=self.cert_pem,
            use_tls=self.use_tls,
        )
        return DcrdClient(transport, cancel=cancel)


def _rpc_host(connect: str, params: ChainParams) -> str:
    host = connect.strip() or "localhost"
    if host.startswith("["):
        has_port = "]:" in host
    else:
        has_port = host.count(":") == 1
    return host if has_port else f"{host}:{params.default_rpc_port}"


def build_run_context(opts: ToolOptions, *, needs_node: bool = True) -> RunContext:
    params = params_for_network(opts.network)
    cert: Optional[bytes] = None
    use_tls = not opts.rpc_no_tls
    if needs_node and use_tls:
        if opts.rpc_cert_bytes:
            cert = opts.rpc_cert_bytes.encode("ascii", errors="replace")
        elif opts.rpc_cert_path:
            path = Path(opts.rpc_cert_path).expanduser()
            try:
                cert = path.read_bytes()
            except OSError as e:
                raise ConfigError("bad_cert", f"unable to load node cert file: {e}") from e
    return RunContext(
        params=params,
        rpc_host=_rpc_host(opts.rpc_connect, params),
        rpc_user=opts.rpc_user,
        rpc_pass=opts.rpc_pass,
        cert_pem=cert,
        use_tls=use_tls,
        ignore_rpc_version=opts.ignore_rpc_version,
    )


def parse_tool_args(
    parser: argparse.ArgumentParser,
    argv: Optional[Sequence[str]],
    tool: str,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> ToolOptions:
    args = parser.parse_args(argv)
    return validate_options(resolve_options(args, environ=environ), tool)
