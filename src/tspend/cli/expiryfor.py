# src/tspend/cli/expiryfor.py
from __future__ import annotations

from typing import List, Optional

from tspend.cancel import CancelToken
from tspend.chain.params import params_for_network
from tspend.cli.common import ToolArgumentParser, run_main
from tspend.errors import ConfigError
from tspend.policy.window import WindowPlacement, WindowPolicy


def build_parser() -> ToolArgumentParser:
    p = ToolArgumentParser(prog="tspend-expiryfor", description="Find out the tspend expiry for a given block height")
    g = p.add_mutually_exclusive_group()
    g.add_argument("--testnet", action="store_true", help="Use the test network")
    g.add_argument("--simnet", action="store_true", help="Use the simulation test network")
    p.add_argument("height", type=int, help="Last mined block height")
    return p


def render_placement(params_name: str, tvi: int, mul: int, placement: WindowPlacement) -> List[str]:
    out = [
        f"Chain: {params_name} TVI {tvi} MUL {mul}",
        f"Height {placement.next_height}: IsTVI: {str(placement.is_tvi).lower()}",
        f"To TVI: {placement.blocks_to_tvi} (thresh {placement.too_close_threshold})",
        f"Expiry: {placement.naive_expiry}",
        f"Voting interval: {placement.naive_window[0]} - {placement.naive_window[1]}",
    ]
    if placement.too_close:
        out += [
            "",
            "Height too close to TVI. Advancing to next one.",
            f"Expiry: {placement.expiry}",
            f"Voting interval: {placement.window[0]} - {placement.window[1]}",
        ]
    return out


def main(argv: Optional[List[str]] = None) -> int:
    def _run(_cancel: CancelToken) -> int:
        args = build_parser().parse_args(argv)
        if args.height < 0:
            raise ConfigError("bad_height", "height must not be negative")
        network = "testnet" if args.testnet else "simnet" if args.simnet else "mainnet"
        params = params_for_network(network)

        placement = WindowPolicy(params).explain(args.height)
        for line in render_placement(
            params.name, params.treasury_vote_interval, params.treasury_vote_interval_multiplier, placement
        ):
            print(line)
        return 0

    return run_main(_run, signals=False)


if __name__ == "__main__":
    raise SystemExit(main())
