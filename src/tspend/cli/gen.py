# src/tspend/cli/gen.py
from __future__ import annotations

import logging
from typing import List, Optional

from tspend import __version__
from tspend.builder import BuildRequest, ExpiryInputs, OpReturnPolicy, TSpendBuilder, log_summary, write_hex
from tspend.cancel import CancelToken
from tspend.cli.common import ToolArgumentParser, run_main
from tspend.config import TOOL_GEN, add_common_args, add_gen_args, build_run_context, parse_tool_args
from tspend.keys import load_private_key
from tspend.payouts import payouts_from_csv, payouts_from_options
from tspend.policy.window import WindowPolicy
from tspend.rpc.check import check_node
from tspend.structured_logging import configure_logging

log = logging.getLogger("tspend.gen")


def build_parser() -> ToolArgumentParser:
    p = ToolArgumentParser(prog="tspend-gen", description="Build and sign a treasury spend transaction")
    p.add_argument("-V", "--version", action="version", version=f"%(prog)s {__version__}")
    add_common_args(p)
    add_gen_args(p)
    return p


def main(argv: Optional[List[str]] = None) -> int:
    def _run(cancel: CancelToken) -> int:
        opts = parse_tool_args(build_parser(), argv, TOOL_GEN)
        configure_logging(opts.log_level)

        needs_node = opts.needs_node(TOOL_GEN)
        ctx = build_run_context(opts, needs_node=needs_node)
        params = ctx.params

        if opts.csv:
            payouts = payouts_from_csv(opts.csv, params)
        else:
            payouts = payouts_from_options(opts.addresses, opts.amounts, params)

        client = None
        if needs_node:
            client = ctx.client(cancel)
            node_version = check_node(client, params, ignore_rpc_version=ctx.ignore_rpc_version)
            log.debug("node %s version %s", ctx.rpc_host, node_version)

        window = WindowPolicy(
            params,
            best_height=(lambda: client.get_best_block().height) if client is not None else None,
        )
        builder = TSpendBuilder(
            params,
            window,
            submitter=client.send_raw_transaction if client is not None else None,
        )
        request = BuildRequest(
            payouts=payouts,
            key_source=lambda buf: load_private_key(buf, privkey=opts.privkey, privkey_file=opts.privkey_file),
            fee_rate=opts.fee_rate,
            expiry=ExpiryInputs(expiry=opts.expiry, current_height=opts.current_height),
            op_return=OpReturnPolicy(data_hex=opts.op_return_data, deterministic=opts.deterministic_op_return),
            publish=opts.publish,
        )
        result = builder.build(request)
        write_hex(result, opts.out)
        log_summary(result, spew=opts.spew, node=ctx.rpc_host)
        return 0

    return run_main(_run)


if __name__ == "__main__":
    raise SystemExit(main())
