"""
Instant-Runoff Voting tally.

Pure function over a snapshot of ranked ballots. Each round counts every
ballot for its highest-ranked candidate still in the race; a candidate with
a strict majority of the non-exhausted ballots wins, otherwise the
lowest-scoring candidate is eliminated and the next round starts.

Tie-break policy:
  Standings are sorted by count, ties kept in candidate declaration order.
  Elimination ties follow a named policy; the default, LATEST_DECLARED,
  eliminates the later-declared of the tied lowest candidates first.
"""

from dataclasses import dataclass, field
from typing import List, Optional

LATEST_DECLARED = "latest-declared"
EARLIEST_DECLARED = "earliest-declared"
TIE_BREAK_POLICIES = (LATEST_DECLARED, EARLIEST_DECLARED)


@dataclass(frozen=True)
class Standing:
    id: str
    vote_count: int

    def to_dict(self, total_valid: int) -> dict:
        # Display only; the majority test never uses this
        pct = round(100.0 * self.vote_count / total_valid, 2) if total_valid else 0.0
        return {"id": self.id, "voteCount": self.vote_count, "percentage": pct}


@dataclass(frozen=True)
class Round:
    round_number: int
    candidates: tuple
    total_valid: int
    exhausted: int
    eliminated_id: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            "roundNumber": self.round_number,
            "candidates": [s.to_dict(self.total_valid) for s in self.candidates],
            "totalValid": self.total_valid,
            "exhausted": self.exhausted,
        }
        if self.eliminated_id is not None:
            data["eliminatedId"] = self.eliminated_id
        return data


@dataclass(frozen=True)
class IRVResult:
    winner_id: Optional[str]
    rounds: List[Round] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "winnerId": self.winner_id,
            "rounds": [r.to_dict() for r in self.rounds],
        }


def _first_active(ballot, active) -> Optional[str]:
    for candidate_id in ballot:
        if candidate_id in active:
            return candidate_id
    return None


def count_round(ballots, active_ids) -> tuple:
    """
    Count first active preferences.

    Returns (standings, total_valid, exhausted) with standings sorted by count
    descending and ties in the order of active_ids.
    """
    active = set(active_ids)
    counts = {cid: 0 for cid in active_ids}
    exhausted = 0
    for ballot in ballots:
        choice = _first_active(ballot, active)
        if choice is None:
            exhausted += 1
        else:
            counts[choice] += 1
    # sorted() is stable, so equal counts keep declaration order
    standings = sorted(
        (Standing(cid, counts[cid]) for cid in active_ids),
        key=lambda s: s.vote_count,
        reverse=True,
    )
    return tuple(standings), sum(counts.values()), exhausted


def pick_elimination(standings, tie_break: str = LATEST_DECLARED) -> str:
    lowest = standings[-1].vote_count
    tied = [s.id for s in standings if s.vote_count == lowest]
    if tie_break == LATEST_DECLARED:
        return tied[-1]
    if tie_break == EARLIEST_DECLARED:
        return tied[0]
    raise ValueError(f"Unknown tie-break policy: {tie_break!r}")


def calculate_irv(ballots, candidate_ids, tie_break: str = LATEST_DECLARED) -> IRVResult:
    """
    Run the instant-runoff tally.

    ballots       : iterable of rankings (sequences of candidate ids)
    candidate_ids : candidates in declaration order
    """
    if tie_break not in TIE_BREAK_POLICIES:
        raise ValueError(f"Unknown tie-break policy: {tie_break!r}")

    ballots = [tuple(b) for b in ballots]
    # Dedupe while keeping declaration order
    active_ids = list(dict.fromkeys(candidate_ids))
    rounds = []
    round_number = 1

    while len(active_ids) > 1:
        standings, total_valid, exhausted = count_round(ballots, active_ids)
        leader = standings[0]

        if 2 * leader.vote_count > total_valid:
            rounds.append(Round(round_number, standings, total_valid, exhausted))
            return IRVResult(winner_id=leader.id, rounds=rounds)

        eliminated = pick_elimination(standings, tie_break)
        rounds.append(Round(round_number, standings, total_valid, exhausted, eliminated))
        active_ids.remove(eliminated)
        round_number += 1

    return IRVResult(winner_id=active_ids[0] if active_ids else None, rounds=rounds)
