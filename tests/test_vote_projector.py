from __future__ import annotations

import pytest
from hypothesis import given
from hypothesis import strategies as st

from tspend.cancel import CancelToken
from tspend.chain.params import MAINNET, SIMNET
from tspend.errors import CancelledError, TSpendError
from tspend.projection.vote import (
    STATUS_APPROVED,
    STATUS_DISAPPROVED,
    STATUS_NOT_STARTED,
    STATUS_PENDING,
    VoteProgress,
    VoteTally,
    project_vote,
    render_progress,
    render_vote_report,
)
from tspend.rpc.schemas import TreasurySpendVotesResult


def _tally(yes: int, no: int, start: int, end: int) -> VoteTally:
    return VoteTally(hash="ab" * 32, yes=yes, no=no, vote_start=start, vote_end=end)


def test_mainnet_reference_tally_is_approved() -> None:
    r = project_vote(_tally(8478, 0, 561_888, 565_344), 564_352, MAINNET)

    assert r.status == STATUS_APPROVED
    assert r.max_remaining_votes == 992 * 5
    assert r.required_yes == 8063
    assert r.missing_yes == 0
    assert r.max_votes == 17_280
    assert r.quorum == 3456
    assert r.has_quorum is True
    assert r.inclusion is not None
    assert r.inclusion.inclusion_height == 564_480
    assert r.inclusion.blocks_to_inclusion == 128
    assert "Tspend Approved!" in render_vote_report(r)


def test_not_started() -> None:
    r = project_vote(_tally(0, 0, 64, 112), 60, SIMNET)
    assert r.status == STATUS_NOT_STARTED
    assert r.blocks_to_start == 4
    assert any("hasn't started" in line for line in render_vote_report(r))

    # The start block itself has no votes yet.
    assert project_vote(_tally(0, 0, 64, 112), 64, SIMNET).status == STATUS_NOT_STARTED


def test_disapproved_when_remaining_votes_cannot_flip() -> None:
    r = project_vote(_tally(0, 100, 64, 112), 88, SIMNET)
    assert r.required_yes == 132
    assert r.missing_yes == 132
    assert r.max_remaining_votes == 120
    assert r.status == STATUS_DISAPPROVED
    assert render_vote_report(r)[-1] == "Tspend Disapproved!"


def test_pending_scenarios() -> None:
    # 24 of 48 blocks elapsed, 80 of 120 possible votes cast, 75% yes.
    r = project_vote(_tally(60, 20, 64, 112), 88, SIMNET)
    assert r.status == STATUS_PENDING
    assert r.required_yes == 120
    assert r.missing_yes == 60
    assert r.participation_pct == pytest.approx(200 / 3)

    a, b, c = r.scenarios
    assert (a.name, b.name, c.name) == ("A", "B", "C")
    assert a.possible and a.approval_height == 100 and a.inclusion_height == 112
    assert b.possible and b.approval_height == 104 and b.inclusion_height == 112
    assert c.possible and c.approval_height == 108 and c.inclusion_height == 112
    assert a.blocks_to_approval == 12

    lines = render_vote_report(r)
    assert any(line.startswith("Scenario 3 - No more votes come in") for line in lines)


def test_no_more_votes_impossible_when_yes_share_too_low() -> None:
    # 40 yes / 40 no: 40 * 5 // 3 = 66 <= 80 cast.
    r = project_vote(_tally(40, 40, 64, 112), 88, SIMNET)
    assert r.status == STATUS_PENDING
    assert r.scenarios[2].possible is False
    assert "Impossible" in "\n".join(render_vote_report(r))


def test_steady_with_no_yes_votes_is_impossible() -> None:
    r = project_vote(_tally(0, 10, 64, 112), 88, SIMNET)
    assert r.status == STATUS_PENDING
    assert r.scenarios[1].possible is False


@given(
    elapsed=st.integers(min_value=1, max_value=3456),
    yes=st.integers(min_value=0, max_value=17_280),
    no=st.integers(min_value=0, max_value=17_280),
)
def test_all_yes_never_later_than_no_more_votes(elapsed: int, yes: int, no: int) -> None:
    start = 561_888
    end = start + 3456
    cur = start + elapsed
    if yes + no > elapsed * 5:
        return

    r = project_vote(_tally(yes, no, start, end), cur, MAINNET)
    assert r.required_yes >= 0
    if r.status != STATUS_PENDING:
        return
    a, b, c = r.scenarios
    assert a.possible
    assert a.approval_height <= end
    if c.possible:
        assert a.approval_height <= c.approval_height
    if b.possible:
        assert cur <= b.approval_height <= end


class _Votes:
    def __init__(self, payload: dict) -> None:
        self.payload = payload

    def get_treasury_spend_votes(self) -> TreasurySpendVotesResult:
        return TreasurySpendVotesResult.model_validate(self.payload)


def test_vote_progress_projects_every_tspend() -> None:
    src = _Votes(
        {
            "hash": "cd" * 32,
            "height": 564_352,
            "votes": [
                {
                    "hash": "ab" * 32,
                    "expiry": 565_346,
                    "votestart": 561_888,
                    "voteend": 565_344,
                    "yesvotes": 8478,
                    "novotes": 0,
                },
                {
                    "hash": "ef" * 32,
                    "expiry": 568_802,
                    "votestart": 565_344,
                    "voteend": 568_800,
                    "yesvotes": 0,
                    "novotes": 0,
                },
            ],
        }
    )
    res = VoteProgress(src, MAINNET).run()
    assert [r.status for r in res.reports] == [STATUS_APPROVED, STATUS_NOT_STARTED]

    lines = render_progress(res)
    assert lines[0] == f"Checking 2 tspends at block 564352 ({'cd' * 32})"


def test_vote_progress_without_tspends() -> None:
    with pytest.raises(TSpendError) as e:
        VoteProgress(_Votes({"hash": "00" * 32, "height": 1, "votes": []}), MAINNET).run()
    assert e.value.code == "no_tspends"


def test_vote_progress_honours_cancellation() -> None:
    token = CancelToken()
    token.cancel()
    with pytest.raises(CancelledError):
        VoteProgress(_Votes({"hash": "00" * 32, "height": 1}), MAINNET, cancel=token).run()
