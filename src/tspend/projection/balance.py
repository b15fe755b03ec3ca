# src/tspend/projection/balance.py
from __future__ import annotations

"""Treasury spendable-balance projection.

Spending is limited per rolling policy window: the sum of spends over the
window may not exceed 150% of what was added to the treasury over it. The
projector scans the window behind the tip, then estimates how much becomes
spendable as each past spend leaves the window, and how much a spend created
right now could take by the end of its vote.

Future estimates only count treasury subsidy; they ignore adds and spends
that are not yet on chain.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional, Protocol, Tuple

from tspend.cancel import CancelToken
from tspend.chain.chainhash import hash_to_str, is_zero_hash
from tspend.chain.params import ATOMS_PER_COIN, ChainParams
from tspend.chain.treasury import SubsidyCache, is_tspend
from tspend.chain.wire import MsgBlock
from tspend.errors import DataIntegrityError
from tspend.policy.window import WindowPolicy
from tspend.rpc.schemas import BlockHeaderVerbose, TreasuryBalance
from tspend.structured_logging import log_event

log = logging.getLogger("tspend.balance")


class ChainSource(Protocol):
    def get_block_header(self, block_hash: str) -> BlockHeaderVerbose: ...

    def get_treasury_balance(self, block_hash: str, verbose: bool = True) -> TreasuryBalance: ...

    def get_block(self, block_hash: str) -> MsgBlock: ...


@dataclass(frozen=True)
class HistoricalSpend:
    hash: str
    mined_hash: str
    mined_height: int
    amount: int


@dataclass(frozen=True)
class TreasuryChanges:
    added: int
    spent: int
    initial_balance: int
    final_balance: int
    spends: Tuple[HistoricalSpend, ...]
    # Parent of the earliest visited block.
    prev_hash: str


@dataclass(frozen=True)
class SpendExit:
    spend: HistoricalSpend
    leave_height: int
    blocks_to_leave: int
    time_to_leave: timedelta
    spendable_estimate: int
    blocks_to_maturity: int

    @property
    def not_yet_mature(self) -> bool:
        return self.blocks_to_maturity > 0


@dataclass(frozen=True)
class NewSpendEstimate:
    expiry: int
    vote_end: int
    time_to_expiry: timedelta
    spendable_estimate: int


@dataclass(frozen=True)
class BalanceProjection:
    network: str
    tip_hash: str
    tip_height: int
    policy_window: int
    added: int
    spent: int
    treasury_balance: int
    spendable_now: int
    spends: Tuple[HistoricalSpend, ...]
    exits: Tuple[SpendExit, ...]
    new_spend: NewSpendEstimate
    notes: Tuple[str, ...] = field(default_factory=tuple)


def past_treasury_changes(
    client: ChainSource,
    tip_hash: str,
    n_blocks: int,
    *,
    cancel: Optional[CancelToken] = None,
    logger: Optional[logging.Logger] = None,
) -> TreasuryChanges:
    """Walk ``n_blocks`` back from ``tip_hash`` summing treasury adds and spends.

    Blocks with negative treasury updates are fetched in full and their
    treasury spends collected. A block whose spend count does not match its
    number of negative updates raises DataIntegrityError.
    """
    lg = logger or log
    added = spent = 0
    initial_balance = final_balance = 0
    spends: List[HistoricalSpend] = []

    node = tip_hash
    prev = tip_hash
    first = True
    remaining = int(n_blocks)
    while remaining > 0:
        if cancel is not None:
            cancel.raise_if_cancelled()
        header = client.get_block_header(node)
        prev = header.previousblockhash
        remaining -= 1

        tbal = client.get_treasury_balance(node, True)
        negatives = 0
        for v in tbal.updates:
            if v > 0:
                added += v
            elif v < 0:
                spent += -v
                negatives += 1

        initial_balance = int(tbal.balance)
        if first:
            final_balance = int(tbal.balance)
            first = False

        if negatives:
            block = client.get_block(node)
            found = [
                HistoricalSpend(
                    hash=hash_to_str(tx.tx_hash()),
                    mined_hash=node,
                    mined_height=int(header.height),
                    amount=int(tx.tx_in[0].value_in),
                )
                for tx in block.stake_transactions
                if is_tspend(tx)
            ]
            if len(found) != negatives:
                raise DataIntegrityError(
                    "tspend_count_mismatch",
                    f"found {len(found)} tspends while expected {negatives} in block {node}",
                    {"block": node, "height": int(header.height), "found": len(found), "expected": negatives},
                )
            lg.debug("block %s (%d) has %d tspends", node, header.height, len(found))
            spends.extend(found)

        if is_zero_hash(prev):
            break
        node = prev

    return TreasuryChanges(
        added=added,
        spent=spent,
        initial_balance=initial_balance,
        final_balance=final_balance,
        spends=tuple(spends),
        prev_hash=prev,
    )


def sum_subsidy(end_height: int, window: int, reduction_interval: int, cache: SubsidyCache) -> int:
    """Treasury subsidy over ``[end_height - window + 1, end_height]``.

    Subsidy only changes on reduction interval boundaries, so the range is
    summed one constant chunk at a time. Heights <= 0 contribute nothing.
    """
    total = 0
    height = max(int(end_height) - int(window) + 1, 1)
    while height <= end_height:
        blocks = reduction_interval - (height % reduction_interval)
        if height + blocks > end_height:
            blocks = end_height - height + 1
        total += cache.treasury_subsidy(height) * blocks
        height += blocks
    return total


def spendable_now(added: int, spent: int) -> int:
    return max(0, added + added // 2 - spent)


class BalanceProjector:
    def __init__(
        self,
        client: ChainSource,
        params: ChainParams,
        *,
        window: Optional[WindowPolicy] = None,
        cancel: Optional[CancelToken] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.client = client
        self.params = params
        self.window = window or WindowPolicy(params, logger=logger)
        self._cancel = cancel
        self._log = logger or log

    def _estimate(self, end_height: int, cache: SubsidyCache) -> int:
        tb = sum_subsidy(end_height, self.params.policy_window_blocks(), self.params.subsidy_reduction_interval, cache)
        return tb + tb // 2

    def project(self, tip_hash: str, tip_height: int) -> BalanceProjection:
        p = self.params
        policy_window = p.policy_window_blocks()
        tvi = p.treasury_vote_interval
        block_time = p.target_time_per_block
        cache = SubsidyCache(p)

        changes = past_treasury_changes(
            self.client, tip_hash, policy_window, cancel=self._cancel, logger=self._log
        )
        spends = tuple(sorted(changes.spends, key=lambda s: s.mined_height))

        exits: List[SpendExit] = []
        for i, ts in enumerate(spends):
            leave = ts.mined_height + policy_window
            blocks_to_leave = leave - tip_height
            est = self._estimate(leave, cache)
            for j, other in enumerate(spends):
                if j != i and (policy_window + 2 * tvi) - (leave - other.mined_height) > 0:
                    est -= other.amount
            exits.append(
                SpendExit(
                    spend=ts,
                    leave_height=leave,
                    blocks_to_leave=blocks_to_leave,
                    time_to_leave=blocks_to_leave * block_time,
                    spendable_estimate=est,
                    blocks_to_maturity=p.coinbase_maturity - (tip_height - ts.mined_height),
                )
            )

        placement = self.window.explain(tip_height)
        vote_end = placement.window[1]
        est = self._estimate(vote_end, cache)
        for ts in spends:
            if policy_window - (vote_end - ts.mined_height) > 0:
                est -= ts.amount
        new_spend = NewSpendEstimate(
            expiry=placement.expiry,
            vote_end=vote_end,
            time_to_expiry=(placement.expiry - tip_height) * block_time,
            spendable_estimate=est,
        )

        projection = BalanceProjection(
            network=p.name,
            tip_hash=tip_hash,
            tip_height=int(tip_height),
            policy_window=policy_window,
            added=changes.added,
            spent=changes.spent,
            treasury_balance=changes.final_balance,
            spendable_now=spendable_now(changes.added, changes.spent),
            spends=spends,
            exits=tuple(exits),
            new_spend=new_spend,
        )
        log_event(
            self._log,
            "balance_projected",
            level=logging.DEBUG,
            tip_height=int(tip_height),
            added=changes.added,
            spent=changes.spent,
            spends=len(spends),
        )
        return projection


def format_amount(atoms: int) -> str:
    sign = "-" if atoms < 0 else ""
    whole, frac = divmod(abs(int(atoms)), ATOMS_PER_COIN)
    text = f"{whole}.{frac:08d}".rstrip("0").rstrip(".")
    return f"{sign}{text} DCR"


def format_duration(d: timedelta) -> str:
    """Days and hours ("3d4h") past one day, else hours/minutes truncated to the minute."""
    total = int(d.total_seconds())
    if total > 86_400:
        days, rest = divmod(total, 86_400)
        return f"{days}d{rest // 3600}h"
    sign = "-" if total < 0 else ""
    total = abs(total) - abs(total) % 60
    hours, rest = divmod(total, 3600)
    minutes = rest // 60
    if hours:
        return f"{sign}{hours}h{minutes}m0s"
    if minutes:
        return f"{sign}{minutes}m0s"
    return "0s"


def plural(n: int, one: str, many: str) -> str:
    return one if n == 1 else many


def render_balance_report(proj: BalanceProjection) -> List[str]:
    out = [
        f"Policy Window: {proj.policy_window} blocks",
        f"Tip Block: {proj.tip_height} - {proj.tip_hash} ({proj.network})",
        f"Total Treasury Balance: {format_amount(proj.treasury_balance)}",
        f"Current Spendable Balance: {format_amount(proj.spendable_now)}",
    ]
    if not proj.exits:
        out.append("No tspends within policy window")
    for ex in proj.exits:
        ts = ex.spend
        out += [
            "",
            f"TSpend of {format_amount(ts.amount)} on block {ts.mined_height} (TSpend hash {ts.hash})",
            f"  Leaves policy window on block {ex.leave_height} "
            f"({ex.blocks_to_leave} {plural(ex.blocks_to_leave, 'block', 'blocks')}, "
            f"{format_duration(ex.time_to_leave)} left)",
            f"  Estimated spendable after cleared: {format_amount(ex.spendable_estimate)}",
        ]
        if ex.not_yet_mature:
            out.append(
                "  NOTE: This TSpend is not yet reflected in the total treasury balance "
                f"({ex.blocks_to_maturity} {plural(ex.blocks_to_maturity, 'block', 'blocks')} to maturity)"
            )
    ns = proj.new_spend
    out += [
        "",
        f"Estimated new TSpend expiry: {ns.expiry} ({format_duration(ns.time_to_expiry)} from now)",
        f"Estimated spendable amount at block {ns.vote_end}: {format_amount(ns.spendable_estimate)}",
        "",
        "Note: estimation is solely based on treasury bases added to the treasury and does not "
        "account for any treasury adds or any new treasury spends included in the blockchain or "
        "currently in the mempool.",
    ]
    return out
