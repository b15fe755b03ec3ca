# src/tspend/cli/estimate.py
from __future__ import annotations

from typing import List, Optional

from tspend.cancel import CancelToken
from tspend.cli.common import ToolArgumentParser, run_main
from tspend.config import TOOL_ESTIMATE, add_common_args, build_run_context, parse_tool_args
from tspend.policy.window import WindowPolicy
from tspend.projection.balance import BalanceProjector, render_balance_report
from tspend.rpc.check import check_node
from tspend.structured_logging import configure_logging


def build_parser() -> ToolArgumentParser:
    p = ToolArgumentParser(
        prog="tspend-estimate",
        description="Estimate the treasury balance available to treasury spends",
    )
    add_common_args(p)
    p.add_argument("--height", type=int, default=None, help="Estimate at this height instead of the tip")
    return p


def main(argv: Optional[List[str]] = None) -> int:
    def _run(cancel: CancelToken) -> int:
        opts = parse_tool_args(build_parser(), argv, TOOL_ESTIMATE)
        configure_logging(opts.log_level)
        ctx = build_run_context(opts)
        client = ctx.client(cancel)
        check_node(client, ctx.params, ignore_rpc_version=ctx.ignore_rpc_version)

        best = client.get_best_block()
        tip_hash, tip_height = best.hash, best.height
        if opts.height:
            tip_height = opts.height
            tip_hash = client.get_block_hash(tip_height)

        projector = BalanceProjector(client, ctx.params, window=WindowPolicy(ctx.params), cancel=cancel)
        projection = projector.project(tip_hash, tip_height)
        for line in render_balance_report(projection):
            print(line)
        return 0

    return run_main(_run)


if __name__ == "__main__":
    raise SystemExit(main())
