from __future__ import annotations

from datetime import timedelta
from typing import Dict, List

import pytest
from hypothesis import given
from hypothesis import strategies as st

from tspend.builder import BuildRequest, ExpiryInputs, OpReturnPolicy, TSpendBuilder
from tspend.cancel import CancelToken
from tspend.chain.params import SIMNET
from tspend.chain.treasury import SubsidyCache
from tspend.chain.wire import BLOCK_HEADER_SIZE, BlockHeader, MsgBlock, MsgTx
from tspend.errors import CancelledError, DataIntegrityError
from tspend.keys import parse_hex_key
from tspend.payouts import Payout
from tspend.policy.window import WindowPolicy
from tspend.projection.balance import (
    BalanceProjector,
    format_amount,
    format_duration,
    past_treasury_changes,
    render_balance_report,
    spendable_now,
    sum_subsidy,
)
from tspend.rpc.schemas import BlockHeaderVerbose, TreasuryBalance

ADD_PER_BLOCK = 10_000


def _hash(height: int) -> str:
    return f"{height:064x}"


def _tspend(address, amount: int) -> MsgTx:
    res = TSpendBuilder(SIMNET, WindowPolicy(SIMNET)).build(
        BuildRequest(
            payouts=[Payout(address, amount)],
            key_source=lambda buf: parse_hex_key("11" * 32, buf),
            expiry=ExpiryInputs(expiry=130),
            op_return=OpReturnPolicy(deterministic=True),
        )
    )
    return res.tx


class FakeChain:
    """Linear chain of ``tip`` blocks, each adding ADD_PER_BLOCK to the treasury."""

    def __init__(self, tip: int, genesis_prev: str = "") -> None:
        self.tip = tip
        self.genesis_prev = genesis_prev
        self.updates: Dict[int, List[int]] = {h: [ADD_PER_BLOCK] for h in range(1, tip + 1)}
        self.stake_txs: Dict[int, List[MsgTx]] = {}
        self.headers_fetched: List[int] = []

    def add_spend(self, height: int, tx: MsgTx, *, negatives: int = 1) -> None:
        self.stake_txs.setdefault(height, []).append(tx)
        self.updates[height] += [-tx.tx_in[0].value_in] * negatives

    def _height(self, block_hash: str) -> int:
        return int(block_hash, 16)

    def get_block_header(self, block_hash: str) -> BlockHeaderVerbose:
        h = self._height(block_hash)
        self.headers_fetched.append(h)
        prev = _hash(h - 1) if h > 1 else self.genesis_prev
        return BlockHeaderVerbose(hash=block_hash, height=h, previousblockhash=prev)

    def get_treasury_balance(self, block_hash: str, verbose: bool = True) -> TreasuryBalance:
        h = self._height(block_hash)
        return TreasuryBalance(hash=block_hash, height=h, balance=h * ADD_PER_BLOCK, updates=self.updates[h])

    def get_block(self, block_hash: str) -> MsgBlock:
        h = self._height(block_hash)
        return MsgBlock(header=BlockHeader(bytes(BLOCK_HEADER_SIZE)), stake_transactions=list(self.stake_txs.get(h, [])))


def test_sum_subsidy_counts_each_height_once() -> None:
    cache = SubsidyCache(SIMNET)
    total = sum_subsidy(300, 192, SIMNET.subsidy_reduction_interval, cache)
    assert total == sum(cache.treasury_subsidy(h) for h in range(109, 301))


def test_sum_subsidy_skips_non_positive_heights() -> None:
    cache = SubsidyCache(SIMNET)
    assert sum_subsidy(10, 192, SIMNET.subsidy_reduction_interval, cache) == sum(
        cache.treasury_subsidy(h) for h in range(1, 11)
    )
    assert sum_subsidy(0, 192, SIMNET.subsidy_reduction_interval, cache) == 0


def test_spendable_now() -> None:
    assert spendable_now(1_000, 0) == 1_500
    assert spendable_now(1_000, 1_500) == 0
    assert spendable_now(1_000, 2_000) == 0


def test_past_changes_collects_spends(pkh_address) -> None:
    chain = FakeChain(200)
    tx = _tspend(pkh_address, 1_000_000)
    chain.add_spend(150, tx)

    changes = past_treasury_changes(chain, _hash(200), 192)
    assert changes.added == 192 * ADD_PER_BLOCK
    assert changes.spent == tx.tx_in[0].value_in
    assert changes.final_balance == 200 * ADD_PER_BLOCK
    assert changes.initial_balance == 9 * ADD_PER_BLOCK
    assert changes.prev_hash == _hash(8)
    assert [s.mined_height for s in changes.spends] == [150]
    assert changes.spends[0].amount == tx.tx_in[0].value_in


def test_past_changes_stops_at_genesis() -> None:
    chain = FakeChain(10)
    changes = past_treasury_changes(chain, _hash(10), 192)
    assert chain.headers_fetched == list(range(10, 0, -1))
    assert changes.added == 10 * ADD_PER_BLOCK
    assert changes.prev_hash == ""


def test_past_changes_stops_at_zero_genesis_parent() -> None:
    zero = "0" * 64
    chain = FakeChain(3, genesis_prev=zero)
    changes = past_treasury_changes(chain, _hash(3), 192)
    assert chain.headers_fetched == [3, 2, 1]
    assert changes.prev_hash == zero


def test_spend_count_mismatch_is_an_integrity_error(pkh_address) -> None:
    chain = FakeChain(200)
    chain.add_spend(150, _tspend(pkh_address, 1_000_000), negatives=2)

    with pytest.raises(DataIntegrityError) as e:
        past_treasury_changes(chain, _hash(200), 192)
    assert e.value.code == "tspend_count_mismatch"
    assert e.value.details["found"] == 1
    assert e.value.details["expected"] == 2


def test_projection(pkh_address) -> None:
    chain = FakeChain(200)
    tx = _tspend(pkh_address, 1_000_000)
    chain.add_spend(150, tx)
    value_in = tx.tx_in[0].value_in

    proj = BalanceProjector(chain, SIMNET).project(_hash(200), 200)
    assert proj.policy_window == 192
    assert proj.spendable_now == 192 * ADD_PER_BLOCK * 3 // 2 - value_in
    assert proj.treasury_balance == 200 * ADD_PER_BLOCK

    (ex,) = proj.exits
    assert ex.leave_height == 342
    assert ex.blocks_to_leave == 142
    assert ex.time_to_leave == timedelta(seconds=142)
    assert ex.not_yet_mature is False

    cache = SubsidyCache(SIMNET)
    tb = sum_subsidy(342, 192, SIMNET.subsidy_reduction_interval, cache)
    assert ex.spendable_estimate == tb + tb // 2

    # Tip 200 -> next 201, vote starts at 208 and ends at 256.
    ns = proj.new_spend
    assert (ns.expiry, ns.vote_end) == (258, 256)
    tb = sum_subsidy(256, 192, SIMNET.subsidy_reduction_interval, cache)
    assert ns.spendable_estimate == tb + tb // 2 - value_in

    lines = render_balance_report(proj)
    assert lines[0] == "Policy Window: 192 blocks"
    assert any(line.startswith("TSpend of ") and "on block 150" in line for line in lines)


def test_recent_spend_reports_maturity(pkh_address) -> None:
    chain = FakeChain(200)
    chain.add_spend(195, _tspend(pkh_address, 1_000_000))

    proj = BalanceProjector(chain, SIMNET).project(_hash(200), 200)
    (ex,) = proj.exits
    assert ex.blocks_to_maturity == 11
    assert ex.not_yet_mature
    assert any("not yet reflected" in line for line in render_balance_report(proj))


def test_projection_without_spends() -> None:
    proj = BalanceProjector(FakeChain(200), SIMNET).project(_hash(200), 200)
    assert proj.exits == ()
    assert "No tspends within policy window" in render_balance_report(proj)


def test_projection_cancelled() -> None:
    token = CancelToken()
    token.cancel()
    with pytest.raises(CancelledError):
        BalanceProjector(FakeChain(200), SIMNET, cancel=token).project(_hash(200), 200)


def test_format_helpers() -> None:
    assert format_amount(150_000_000) == "1.5 DCR"
    assert format_amount(0) == "0 DCR"
    assert format_amount(-1) == "-0.00000001 DCR"
    assert format_duration(timedelta(days=3, hours=4)) == "3d4h"
    assert format_duration(timedelta(minutes=90, seconds=20)) == "1h30m0s"
    assert format_duration(timedelta(seconds=59)) == "0s"


@given(end=st.integers(min_value=-5, max_value=2_000), window=st.integers(min_value=1, max_value=600))
def test_sum_subsidy_matches_per_block_sum(end: int, window: int) -> None:
    cache = SubsidyCache(SIMNET)
    naive = sum(cache.treasury_subsidy(h) for h in range(max(end - window + 1, 1), end + 1))
    assert sum_subsidy(end, window, SIMNET.subsidy_reduction_interval, cache) == naive
