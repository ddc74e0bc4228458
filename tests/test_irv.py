"""
Unit tests for the instant-runoff tally.
"""

import pytest

from blindballot.irv import (
    EARLIEST_DECLARED,
    LATEST_DECLARED,
    calculate_irv,
    count_round,
)

CANDIDATES = ["C1", "C2", "C3"]


@pytest.fixture
def reference_ballots():
    """The 100-ballot reference scenario."""
    return (
        [["C1"]] * 40
        + [["C2"]] * 31
        + [["C3", "C2"]] * 20
        + [["C3", "C1"]] * 9
    )


def _counts(rnd):
    return {s.id: s.vote_count for s in rnd.candidates}


class TestReferenceScenario:
    def test_winner_is_c2(self, reference_ballots):
        result = calculate_irv(reference_ballots, CANDIDATES)
        assert result.winner_id == "C2"
        assert len(result.rounds) == 2

    def test_round_one_eliminates_c3(self, reference_ballots):
        first = calculate_irv(reference_ballots, CANDIDATES).rounds[0]
        assert first.round_number == 1
        assert _counts(first) == {"C1": 40, "C2": 31, "C3": 29}
        assert [s.id for s in first.candidates] == ["C1", "C2", "C3"]
        assert first.total_valid == 100
        assert first.eliminated_id == "C3"

    def test_round_two_majority(self, reference_ballots):
        second = calculate_irv(reference_ballots, CANDIDATES).rounds[1]
        assert second.round_number == 2
        assert _counts(second) == {"C1": 49, "C2": 51}
        assert [s.id for s in second.candidates] == ["C2", "C1"]
        assert second.eliminated_id is None

    def test_serialized_rounds(self, reference_ballots):
        data = calculate_irv(reference_ballots, CANDIDATES).to_dict()
        assert data["winnerId"] == "C2"
        first, second = data["rounds"]
        assert first["eliminatedId"] == "C3"
        assert "eliminatedId" not in second
        assert first["candidates"][0] == {"id": "C1", "voteCount": 40, "percentage": 40.0}


class TestMajority:
    def test_first_round_majority_short_circuits(self):
        ballots = [["A"]] * 6 + [["B"]] * 3 + [["C"]] * 1
        result = calculate_irv(ballots, ["A", "B", "C"])
        assert result.winner_id == "A"
        assert len(result.rounds) == 1
        assert result.rounds[0].eliminated_id is None

    def test_exactly_half_is_not_a_majority(self):
        ballots = [["A"]] * 5 + [["B"]] * 3 + [["C", "B"]] * 2
        result = calculate_irv(ballots, ["A", "B", "C"])
        assert result.rounds[0].eliminated_id == "C"
        # Round 2: A=5, B=5 of 10, still no majority; B eliminated on tie
        assert _counts(result.rounds[1]) == {"A": 5, "B": 5}
        assert result.rounds[1].eliminated_id == "B"
        assert result.winner_id == "A"


class TestExhaustion:
    def test_exhausted_ballots_leave_the_denominator(self):
        ballots = [["A"]] * 4 + [["B"]] * 3 + [["C"]] * 2 + [["D"]] * 1
        result = calculate_irv(ballots, ["A", "B", "C", "D"])

        r1, r2, r3 = result.rounds
        assert r1.eliminated_id == "D"
        assert (r1.total_valid, r1.exhausted) == (10, 0)

        assert r2.eliminated_id == "C"
        assert (r2.total_valid, r2.exhausted) == (9, 1)

        # 4 of 7 non-exhausted ballots is a majority even though 4 of 10 is not
        assert (r3.total_valid, r3.exhausted) == (7, 3)
        assert r3.eliminated_id is None
        assert result.winner_id == "A"

    def test_lower_preferences_transfer(self):
        ballots = [["A"]] * 4 + [["B"]] * 3 + [["C", "B"]] * 2
        result = calculate_irv(ballots, ["A", "B", "C"])
        assert _counts(result.rounds[1]) == {"A": 4, "B": 5}
        assert result.winner_id == "B"

    def test_unknown_candidates_on_ballot_are_skipped(self):
        ballots = [["Z", "A"]] * 3 + [["B"]] * 1
        result = calculate_irv(ballots, ["A", "B"])
        assert _counts(result.rounds[0]) == {"A": 3, "B": 1}
        assert result.winner_id == "A"


class TestTieBreak:
    BALLOTS = [["A"]] * 2 + [["B"]] * 1 + [["C"]] * 1

    def test_latest_declared_eliminated_by_default(self):
        result = calculate_irv(self.BALLOTS, ["A", "B", "C"])
        assert [s.id for s in result.rounds[0].candidates] == ["A", "B", "C"]
        assert result.rounds[0].eliminated_id == "C"

    def test_earliest_declared_policy(self):
        result = calculate_irv(self.BALLOTS, ["A", "B", "C"], tie_break=EARLIEST_DECLARED)
        assert result.rounds[0].eliminated_id == "B"
        assert result.winner_id == "A"

    def test_declaration_order_decides_not_ballot_order(self):
        ballots = [["Y"]] + [["X"]]
        result = calculate_irv(ballots, ["X", "Y"], tie_break=LATEST_DECLARED)
        assert [s.id for s in result.rounds[0].candidates] == ["X", "Y"]
        assert result.rounds[0].eliminated_id == "Y"
        assert result.winner_id == "X"

    def test_unknown_policy_rejected(self):
        with pytest.raises(ValueError):
            calculate_irv(self.BALLOTS, ["A", "B", "C"], tie_break="coin-flip")


class TestEdgeCases:
    def test_no_candidates(self):
        result = calculate_irv([["A"]], [])
        assert result.winner_id is None
        assert result.rounds == []

    def test_single_candidate_needs_no_round(self):
        result = calculate_irv([["A"]] * 3, ["A"])
        assert result.winner_id == "A"
        assert result.rounds == []

    def test_no_ballots_falls_back_to_declaration_order(self):
        result = calculate_irv([], ["A", "B", "C"])
        assert [r.eliminated_id for r in result.rounds] == ["C", "B"]
        assert result.winner_id == "A"
        assert all(r.total_valid == 0 for r in result.rounds)

    def test_count_round_direct(self):
        standings, total, exhausted = count_round([["B", "A"], ["C"], []], ["A", "B"])
        assert [(s.id, s.vote_count) for s in standings] == [("B", 1), ("A", 0)]
        assert total == 1
        assert exhausted == 2


class TestDeterminism:
    def test_same_input_same_output(self, reference_ballots):
        tied = [["A"]] * 3 + [["B"]] * 3 + [["C", "A"]] * 2 + [["D", "B"]] * 2
        for ballots, cands in [(reference_ballots, CANDIDATES), (tied, ["A", "B", "C", "D"])]:
            first = calculate_irv(ballots, cands)
            second = calculate_irv(list(ballots), list(cands))
            assert first == second
            assert first.to_dict() == second.to_dict()

    def test_input_not_mutated(self, reference_ballots):
        snapshot = [list(b) for b in reference_ballots]
        cands = list(CANDIDATES)
        calculate_irv(reference_ballots, cands)
        assert reference_ballots == snapshot
        assert cands == CANDIDATES
