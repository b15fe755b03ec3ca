from __future__ import annotations

import pytest
from hypothesis import given
from hypothesis import strategies as st

from tspend.chain.params import MAINNET, SIMNET
from tspend.chain.treasury import calc_tspend_expiry, calc_tspend_window, is_treasury_vote_interval
from tspend.errors import ConfigError, ConsensusCheckError, InvalidExpiryError
from tspend.policy.window import WindowPolicy


def test_expiry_and_window_on_mainnet() -> None:
    # Tip 564000: next block 564001, next TVI 564192 (blocks to TVI 191 >= 72).
    policy = WindowPolicy(MAINNET)
    expiry = policy.compute_expiry(current_height=564_000)
    assert expiry == 564_192 + 288 * 12 + 2
    start, end = policy.window_for(expiry)
    assert (start, end) == (564_192, 564_192 + 288 * 12)


def test_explicit_expiry_wins() -> None:
    calls = []

    def best() -> int:
        calls.append(1)
        return 1

    policy = WindowPolicy(SIMNET, best_height=best)
    assert policy.compute_expiry(current_height=10, explicit_expiry=12_345) == 12_345
    assert calls == []


def test_best_height_used_when_no_override() -> None:
    policy = WindowPolicy(SIMNET, best_height=lambda: 100)
    assert policy.compute_expiry() == policy.compute_expiry(current_height=100)


def test_no_height_source_is_an_error() -> None:
    with pytest.raises(ConfigError) as e:
        WindowPolicy(SIMNET).compute_expiry()
    assert e.value.code == "no_current_height"


def test_too_close_advances_to_following_tvi() -> None:
    # Simnet TVI 16, threshold 4. Tip 61 -> next 62, 2 blocks to TVI 64.
    placement = WindowPolicy(SIMNET).explain(61)
    assert placement.next_height == 62
    assert placement.blocks_to_tvi == 2
    assert placement.too_close is True
    assert placement.adjusted_height == 64
    assert placement.naive_expiry == 64 + 48 + 2
    assert placement.expiry == 80 + 48 + 2
    assert placement.window == (80, 128)


def test_mined_tvi_height_reports_is_tvi() -> None:
    placement = WindowPolicy(SIMNET).explain(63)
    assert placement.next_height == 64
    assert placement.is_tvi is True
    assert placement.blocks_to_tvi == 16
    assert placement.too_close is False


@given(height=st.integers(min_value=1, max_value=2_000_000))
def test_vote_never_starts_within_quarter_tvi(height: int) -> None:
    for params in (MAINNET, SIMNET):
        policy = WindowPolicy(params)
        tvi = params.treasury_vote_interval
        placement = policy.explain(height)
        expiry = policy.compute_expiry(current_height=height)
        start, _end = policy.window_for(expiry)

        assert expiry == placement.expiry
        assert is_treasury_vote_interval(start, tvi)
        # Distance from the (possibly advanced) next height to its next TVI.
        assert start - placement.adjusted_height >= tvi // 4


@given(next_height=st.integers(min_value=1, max_value=2_000_000))
def test_expiry_is_periodic_and_window_roundtrips(next_height: int) -> None:
    tvi, mul = MAINNET.treasury_vote_interval, MAINNET.treasury_vote_interval_multiplier
    expiry = calc_tspend_expiry(next_height, tvi, mul)
    assert calc_tspend_expiry(next_height + tvi, tvi, mul) == expiry + tvi
    start, end = calc_tspend_window(expiry, tvi, mul)
    assert end == expiry - 2
    assert end - start == tvi * mul
    assert start > next_height


def test_invalid_expiry_raises() -> None:
    with pytest.raises(InvalidExpiryError) as e:
        WindowPolicy(MAINNET).window_for(1_000)
    assert isinstance(e.value, ConsensusCheckError)
    assert e.value.code == "invalid_expiry"
