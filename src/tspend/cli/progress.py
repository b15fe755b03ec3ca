# src/tspend/cli/progress.py
from __future__ import annotations

from typing import List, Optional

from tspend.cancel import CancelToken
from tspend.cli.common import ToolArgumentParser, run_main
from tspend.config import TOOL_PROGRESS, add_common_args, build_run_context, parse_tool_args
from tspend.projection.vote import VoteProgress, render_progress
from tspend.rpc.check import check_node
from tspend.structured_logging import configure_logging


def build_parser() -> ToolArgumentParser:
    p = ToolArgumentParser(
        prog="tspend-voteprogress",
        description="Report vote progress and approval projections for pending treasury spends",
    )
    add_common_args(p)
    return p


def main(argv: Optional[List[str]] = None) -> int:
    def _run(cancel: CancelToken) -> int:
        opts = parse_tool_args(build_parser(), argv, TOOL_PROGRESS)
        configure_logging(opts.log_level)
        ctx = build_run_context(opts)
        client = ctx.client(cancel)
        check_node(client, ctx.params, ignore_rpc_version=ctx.ignore_rpc_version)

        result = VoteProgress(client, ctx.params, cancel=cancel).run()
        for line in render_progress(result):
            print(line)
        return 0

    return run_main(_run)


if __name__ == "__main__":
    raise SystemExit(main())
