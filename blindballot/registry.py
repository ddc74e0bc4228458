"""
Ballot Registry: Credential Issuance and Anonymous Voting

Orchestrates both halves of the protocol over an injected state store:

  Issuance (per identity)  : NoCredential -> CredentialIssued
    read Attendance, blind-sign, set Attendance, as one transaction

  Voting (per token)       : Unused -> Voted
    election open, signature valid, no prior ballot, ranking valid,
    then insert the ballot and bump the election's vote total atomically

The registry only ever sees opaque identity keys on the issuance side and
token identifiers on the voting side; nothing links one to the other.
"""

import logging

from .authority import Authority
from .errors import (
    AlreadyIssued,
    AlreadyVoted,
    ElectionExists,
    ElectionNotFound,
    ElectionNotOpen,
    InvalidCredential,
    InvalidRequest,
    ResultsNotAvailable,
)
from .irv import LATEST_DECLARED, calculate_irv, count_round
from .models import (
    Ballot,
    Candidate,
    Election,
    ElectionStatus,
    attendance_key,
    ballot_key,
    ballot_prefix,
    election_key,
    format_time,
    parse_time,
    participation_key,
    validate_ranking,
)
from .store import Store

logger = logging.getLogger(__name__)

TOKEN_IDENTIFIER_SIZE = 32  # SHA-256 digest


class BallotRegistry:
    def __init__(self, store: Store, authority: Authority):
        self.store = store
        self.authority = authority

    # ------------------------------------------------------------------
    # Election metadata
    # ------------------------------------------------------------------

    def create_election(self, election_id: str, name: str, start_time, end_time, candidates) -> Election:
        start_time, end_time = parse_time(start_time), parse_time(end_time)
        if not election_id or not name:
            raise InvalidRequest("Election requires an id and a name")
        if end_time <= start_time:
            raise InvalidRequest("Election must end after it starts")
        candidates = [c if isinstance(c, Candidate) else Candidate.from_dict(c) for c in candidates]
        ids = [c.id for c in candidates]
        if len(set(ids)) != len(ids):
            raise InvalidRequest("Candidate ids must be unique")

        key = election_key(election_id)
        with self.store.transaction([key]) as txn:
            if txn.exists(key):
                raise ElectionExists(f"Election {election_id} already exists")
            for c in candidates:
                c.vote_count = 0
            election = Election(
                id=election_id,
                name=name,
                start_time=start_time,
                end_time=end_time,
                candidates=candidates,
                total_votes=0,
                created_at=txn.timestamp,
            )
            txn.put(key, election.to_dict())
        logger.info("Election %s created with %d candidates", election_id, len(candidates))
        return election

    def add_candidate(self, election_id: str, candidate) -> Election:
        candidate = candidate if isinstance(candidate, Candidate) else Candidate.from_dict(candidate)
        key = election_key(election_id)
        with self.store.transaction([key]) as txn:
            election = self._load_election(txn, election_id)
            if txn.timestamp >= election.start_time:
                raise InvalidRequest("Cannot add candidates after election has started")
            if candidate.id in election.candidate_ids:
                raise InvalidRequest(f"Candidate {candidate.id} already exists")
            candidate.vote_count = 0
            election.candidates.append(candidate)
            txn.put(key, election.to_dict())
        return election

    def _load_election(self, txn, election_id: str) -> Election:
        data = txn.get(election_key(election_id))
        if data is None:
            raise ElectionNotFound(f"Election {election_id} does not exist")
        return Election.from_dict(data)

    def get_election(self, election_id: str) -> dict:
        with self.store.transaction([election_key(election_id)]) as txn:
            election = self._load_election(txn, election_id)
            return election.to_dict(now=txn.timestamp, include_counts=election.has_ended(txn.timestamp))

    def get_election_status(self, election_id: str) -> dict:
        with self.store.transaction([election_key(election_id)]) as txn:
            election = self._load_election(txn, election_id)
            return {
                "electionId": election.id,
                "name": election.name,
                "status": election.status_at(txn.timestamp).value,
                "startTime": format_time(election.start_time),
                "endTime": format_time(election.end_time),
                "totalVotes": election.total_votes,
            }

    def get_candidates(self, election_id: str) -> list:
        """Candidates of an election; vote counts stay hidden until it ends."""
        with self.store.transaction([election_key(election_id)]) as txn:
            election = self._load_election(txn, election_id)
            ended = election.has_ended(txn.timestamp)
            return [c.to_dict(include_count=ended) for c in election.candidates]

    # ------------------------------------------------------------------
    # Credential issuance
    # ------------------------------------------------------------------

    def check_attendance(self, identity: str) -> bool:
        return self.store.exists(attendance_key(identity))

    def record_attendance(self, identity: str) -> bool:
        """Set the Attendance flag; returns False if it was already set."""
        key = attendance_key(identity)
        with self.store.transaction([key]) as txn:
            return txn.put_if_absent(key, {"issuedAt": format_time(txn.timestamp)})

    def issue_credential(self, identity: str, blinded_value: int) -> int:
        """
        Blind-sign a voter's blinded token, once per identity.

        The Attendance read, the signature and the Attendance write happen in
        one transaction on the identity's key, so two concurrent requests for
        the same identity cannot both be signed.
        """
        key = attendance_key(identity)
        with self.store.transaction([key]) as txn:
            if txn.exists(key):
                logger.warning("Credential re-issuance rejected")
                raise AlreadyIssued()
            blind_signature = self.authority.sign_blinded(blinded_value)
            txn.put(key, {"issuedAt": format_time(txn.timestamp), "keyId": self.authority.key_id})
        return blind_signature

    # ------------------------------------------------------------------
    # Participation (self-reported, not proof of a cast ballot)
    # ------------------------------------------------------------------

    def record_participation(self, identity: str) -> bool:
        key = participation_key(identity)
        with self.store.transaction([key]) as txn:
            return txn.put_if_absent(key, {"reportedAt": format_time(txn.timestamp)})

    def check_participation(self, identity: str) -> bool:
        return self.store.exists(participation_key(identity))

    def voter_status(self, identity: str) -> dict:
        return {
            "attendance": self.check_attendance(identity),
            "participation": self.check_participation(identity),
        }

    # ------------------------------------------------------------------
    # Voting
    # ------------------------------------------------------------------

    def cast_vote(self, election_id: str, token_identifier: bytes, signature: int, ranked_candidate_ids) -> Ballot:
        """
        Record an anonymous ranked ballot.

        Signature verification comes before the double-vote check, so only
        the holder of a valid credential can learn that it was already used.
        """
        e_key = election_key(election_id)
        b_key = ballot_key(election_id, token_identifier)
        with self.store.transaction([e_key, b_key]) as txn:
            election = self._load_election(txn, election_id)
            status = election.status_at(txn.timestamp)
            if status != ElectionStatus.ACTIVE:
                raise ElectionNotOpen(f"Election {election_id} is {status.value.lower()}")

            if len(token_identifier) != TOKEN_IDENTIFIER_SIZE or not self.authority.verify_digest(
                token_identifier, signature
            ):
                raise InvalidCredential()

            if txn.exists(b_key):
                logger.warning("Double vote attempt rejected in election %s", election_id)
                raise AlreadyVoted()

            ranking = validate_ranking(ranked_candidate_ids, election.candidate_ids)

            ballot = Ballot(
                token_identifier=token_identifier,
                election_id=election_id,
                ranked_candidate_ids=ranking,
                timestamp=txn.timestamp,
                key_id=self.authority.key_id,
            )
            txn.put(b_key, ballot.to_dict())
            election.total_votes += 1
            txn.put(e_key, election.to_dict())
        return ballot

    def has_voted(self, election_id: str, token_identifier: bytes) -> bool:
        return self.store.exists(ballot_key(election_id, token_identifier))

    def get_vote(self, election_id: str, token_identifier: bytes) -> dict:
        """Confirm a ballot exists for a token, without revealing its ranking."""
        data = self.store.get(ballot_key(election_id, token_identifier))
        if data is None:
            return {"found": False}
        return {
            "found": True,
            "vote": {
                "tokenIdentifier": data["tokenIdentifier"],
                "electionId": data["electionId"],
                "timestamp": data["timestamp"],
            },
        }

    # ------------------------------------------------------------------
    # Ballot export and results
    # ------------------------------------------------------------------

    def _snapshot(self, election_id: str, bypass_time_gate: bool) -> tuple:
        # Holding the election key blocks cast_vote, so the scan is consistent
        with self.store.transaction([election_key(election_id)]) as txn:
            election = self._load_election(txn, election_id)
            if not bypass_time_gate and not election.has_ended(txn.timestamp):
                raise ResultsNotAvailable()
            ballots = tuple(
                ballot
                for ballot in (
                    Ballot.from_dict(data) for _, data in self.store.scan(ballot_prefix(election_id))
                )
                if ballot.election_id == election_id
            )
            return election, ballots, txn.timestamp

    def get_ballots(self, election_id: str, bypass_time_gate: bool = False) -> tuple:
        _, ballots, _ = self._snapshot(election_id, bypass_time_gate)
        return ballots

    def get_results(self, election_id: str, bypass_time_gate: bool = False, tie_break: str = LATEST_DECLARED) -> dict:
        election, ballots, now = self._snapshot(election_id, bypass_time_gate)
        rankings = [b.ranked_candidate_ids for b in ballots]

        first_round, _, _ = count_round(rankings, election.candidate_ids)
        first_counts = {s.id: s.vote_count for s in first_round}
        by_id = {c.id: c for c in election.candidates}
        for c in election.candidates:
            c.vote_count = first_counts.get(c.id, 0)
        ordered = [by_id[s.id] for s in first_round]

        irv = calculate_irv(rankings, election.candidate_ids, tie_break=tie_break)
        return {
            "electionId": election.id,
            "name": election.name,
            "status": election.status_at(now).value,
            "totalVotes": len(ballots),
            "candidates": [c.to_dict() for c in ordered],
            "winnerId": irv.winner_id,
            "rounds": [r.to_dict() for r in irv.rounds],
            "tieBreak": tie_break,
            "endedAt": format_time(election.end_time),
        }
