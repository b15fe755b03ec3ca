# src/tspend/projection/vote.py
from __future__ import annotations

"""Vote outcome projection for pending treasury spends.

A tspend is approved early ("shortcut") once the yes votes reach the
required ratio of every vote that could still be cast in its window, and
it can be mined on the next TVI after that. Given a tally snapshot this
module reports where the vote stands and, when the outcome is still open,
three independent projections of when approval could happen:

  A. every remaining vote is yes,
  B. participation and approval stay at their current levels,
  C. no more votes arrive and the window simply runs out.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Protocol, Tuple

from tspend.cancel import CancelToken
from tspend.chain.params import ChainParams
from tspend.errors import TSpendError
from tspend.rpc.schemas import TreasurySpendVotes, TreasurySpendVotesResult

log = logging.getLogger("tspend.vote")

STATUS_NOT_STARTED = "not_started"
STATUS_APPROVED = "approved"
STATUS_DISAPPROVED = "disapproved"
STATUS_PENDING = "pending"


@dataclass(frozen=True)
class VoteTally:
    hash: str
    yes: int
    no: int
    vote_start: int
    vote_end: int

    @classmethod
    def from_rpc(cls, v: TreasurySpendVotes) -> "VoteTally":
        return cls(hash=v.hash, yes=v.yesvotes, no=v.novotes, vote_start=v.votestart, vote_end=v.voteend)

    @property
    def cast(self) -> int:
        return self.yes + self.no

    @property
    def yes_share(self) -> float:
        return self.yes / self.cast if self.cast else 0.0


@dataclass(frozen=True)
class ScenarioResult:
    name: str
    description: str
    possible: bool
    approval_height: Optional[int] = None
    inclusion_height: Optional[int] = None
    blocks_to_approval: Optional[int] = None
    blocks_to_inclusion: Optional[int] = None
    days_to_approval: Optional[float] = None
    days_to_inclusion: Optional[float] = None


@dataclass(frozen=True)
class VoteReport:
    tally: VoteTally
    current_height: int
    status: str
    blocks_to_start: int = 0
    progress_pct: float = 0.0
    max_votes_so_far: int = 0
    participation_pct: float = 0.0
    max_votes: int = 0
    quorum: int = 0
    has_quorum: bool = False
    remaining_blocks: int = 0
    days_to_vote_end: float = 0.0
    max_remaining_votes: int = 0
    required_yes: int = 0
    missing_yes: int = 0
    # Next inclusion opportunity when already approved.
    inclusion: Optional[ScenarioResult] = None
    scenarios: Tuple[ScenarioResult, ...] = ()


def div_ceil(a: int, b: int) -> int:
    return -(-a // b)


def next_tvi(height: int, tvi: int) -> int:
    return height + (tvi - height % tvi)


def required_yes_votes(cast: int, max_remaining: int, num: int, den: int) -> int:
    return div_ceil((cast + max_remaining) * num, den)


def _approved_at(name: str, description: str, current: int, approval: int, params: ChainParams) -> ScenarioResult:
    per_day = params.blocks_per_day()
    inclusion = next_tvi(approval, params.treasury_vote_interval)
    return ScenarioResult(
        name=name,
        description=description,
        possible=True,
        approval_height=approval,
        inclusion_height=inclusion,
        blocks_to_approval=approval - current,
        blocks_to_inclusion=inclusion - current,
        days_to_approval=(approval - current) / per_day,
        days_to_inclusion=(inclusion - current) / per_day,
    )


def _impossible(name: str, description: str) -> ScenarioResult:
    return ScenarioResult(name=name, description=description, possible=False)


def scenario_all_yes(tally: VoteTally, current: int, missing_yes: int, params: ChainParams) -> ScenarioResult:
    desc = "Every possible vote is cast as yes vote from now on"
    approval = current + div_ceil(missing_yes, params.votes_per_block())
    return _approved_at("A", desc, current, approval, params)


def scenario_steady(
    tally: VoteTally,
    current: int,
    participation: float,
    required_yes: int,
    params: ChainParams,
) -> ScenarioResult:
    """Accrue yes votes at today's participation and approval rates.

    The threshold is recomputed every block since the votes that could
    still be cast shrink as the window closes.
    """
    desc = "Yes votes at current participation and approval levels"
    vpb = params.votes_per_block()
    num, den = params.treasury_vote_required_multiplier, params.treasury_vote_required_divisor
    per_block = vpb * participation * tally.yes_share

    frac_yes = float(tally.yes)
    height = current
    required = required_yes
    while int(frac_yes) < required and height < tally.vote_end:
        height += 1
        frac_yes += per_block
        required = required_yes_votes(tally.no + int(frac_yes), (tally.vote_end - height) * vpb, num, den)

    if int(frac_yes) < required:
        return _impossible("B", desc)
    return _approved_at("B", desc, current, height, params)


def scenario_no_more_votes(tally: VoteTally, current: int, params: ChainParams) -> ScenarioResult:
    """Approval once the votes left in the window can no longer flip the outcome."""
    desc = "No more votes come in"
    vpb = params.votes_per_block()
    num, den = params.treasury_vote_required_multiplier, params.treasury_vote_required_divisor

    threshold = tally.yes * den // num
    if threshold <= tally.cast:
        return _impossible("C", desc)
    approval = tally.vote_end - (threshold - tally.cast) // vpb
    return _approved_at("C", desc, current, approval, params)


def project_vote(tally: VoteTally, current_height: int, params: ChainParams) -> VoteReport:
    cur = int(current_height)
    start, end = tally.vote_start, tally.vote_end

    if cur <= start:
        return VoteReport(tally=tally, current_height=cur, status=STATUS_NOT_STARTED, blocks_to_start=start - cur)

    vpb = params.votes_per_block()
    cast = tally.cast

    max_so_far = (cur - start) * vpb
    participation = cast / max_so_far
    max_votes = vpb * (end - start)
    quorum = max_votes * params.treasury_vote_quorum_multiplier // params.treasury_vote_quorum_divisor

    remaining = max(end - cur, 0)
    max_remaining = remaining * vpb
    required = required_yes_votes(
        cast, max_remaining, params.treasury_vote_required_multiplier, params.treasury_vote_required_divisor
    )
    missing = max(0, required - tally.yes)

    common = dict(
        tally=tally,
        current_height=cur,
        progress_pct=(cur - start) / max(end - start, 1) * 100,
        max_votes_so_far=max_so_far,
        participation_pct=participation * 100,
        max_votes=max_votes,
        quorum=quorum,
        has_quorum=cast >= quorum,
        remaining_blocks=remaining,
        days_to_vote_end=remaining / params.blocks_per_day(),
        max_remaining_votes=max_remaining,
        required_yes=required,
        missing_yes=missing,
    )

    if missing == 0:
        inclusion = _approved_at("approved", "Tspend approved", cur, cur, params)
        return VoteReport(status=STATUS_APPROVED, inclusion=inclusion, **common)
    if missing > max_remaining:
        return VoteReport(status=STATUS_DISAPPROVED, **common)

    scenarios = (
        scenario_all_yes(tally, cur, missing, params),
        scenario_steady(tally, cur, participation, required, params),
        scenario_no_more_votes(tally, cur, params),
    )
    return VoteReport(status=STATUS_PENDING, scenarios=scenarios, **common)


def _scenario_lines(s: ScenarioResult) -> List[str]:
    if not s.possible:
        return ["  Impossible to approve tspend in this scenario"]
    return [
        f"  Blocks to Shortcut Approval: {s.blocks_to_approval} (block {s.approval_height})     "
        f"Days {s.days_to_approval:.2f}",
        f"  Blocks to inclusion opportunity: {s.blocks_to_inclusion} (block {s.inclusion_height})   "
        f"Days To Opportunity: {s.days_to_inclusion:.2f}",
    ]


def render_vote_report(r: VoteReport) -> List[str]:
    t = r.tally
    out = [
        "",
        f"TSpend {t.hash}",
        f"Votes Yes: {t.yes}  ({t.yes_share * 100:.2f}%) No: {t.no}   Vote Interval: {t.vote_start} - {t.vote_end}",
    ]
    if r.status == STATUS_NOT_STARTED:
        out.append(f"Voting hasn't started yet ({r.blocks_to_start} blocks to start)")
        return out

    out += [
        f"Cast Votes: {t.cast}    Voting Progress: {r.progress_pct:.0f}%",
        f"Possible votes so far: {r.max_votes_so_far}    Participation: {r.participation_pct:.2f}%",
        f"Max votes: {r.max_votes}   Quorum: {r.quorum}   Has Quorum: {str(r.has_quorum).lower()}",
        f"Blocks to end of voting: {r.remaining_blocks} ({r.days_to_vote_end:.2f} days)    "
        f"Max Remaining Votes {r.max_remaining_votes}",
    ]
    if r.status == STATUS_APPROVED and r.inclusion is not None:
        inc = r.inclusion
        out += [
            "Tspend Approved!",
            f"  Blocks to inclusion opportunity: {inc.blocks_to_inclusion} (block {inc.inclusion_height})   "
            f"Days To Opportunity: {inc.days_to_inclusion:.2f}",
        ]
        return out

    out.append(f"Required Yes Votes: {r.required_yes}     Missing Yes Votes: {r.missing_yes}")
    if r.status == STATUS_DISAPPROVED:
        out.append("Tspend Disapproved!")
        return out

    for i, s in enumerate(r.scenarios, start=1):
        out += ["", f"Scenario {i} - {s.description}"] + _scenario_lines(s)
    return out


class VoteSource(Protocol):
    def get_treasury_spend_votes(self) -> TreasurySpendVotesResult: ...


@dataclass(frozen=True)
class VoteProgressResult:
    block_hash: str
    height: int
    reports: Tuple[VoteReport, ...]


class VoteProgress:
    """Project every tspend the node is currently tallying."""

    def __init__(
        self,
        client: VoteSource,
        params: ChainParams,
        *,
        cancel: Optional[CancelToken] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.client = client
        self.params = params
        self._cancel = cancel
        self._log = logger or log

    def run(self) -> VoteProgressResult:
        if self._cancel is not None:
            self._cancel.raise_if_cancelled()
        res = self.client.get_treasury_spend_votes()
        if not res.votes:
            raise TSpendError("no_tspends", "no tspends in node mempool")
        self._log.debug("checking %d tspends at block %d", len(res.votes), res.height)
        reports = tuple(project_vote(VoteTally.from_rpc(v), res.height, self.params) for v in res.votes)
        return VoteProgressResult(block_hash=res.hash, height=res.height, reports=reports)


def render_progress(result: VoteProgressResult) -> List[str]:
    out = [f"Checking {len(result.reports)} tspends at block {result.height} ({result.block_hash})"]
    for r in result.reports:
        out += render_vote_report(r)
    return out
