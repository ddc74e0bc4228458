"""
Registry records: elections, candidates and anonymous ballots.

Records are stored as JSON documents under these keys:
  ELECTION_<electionId>
  BALLOT_<electionId>_<tokenIdentifierHex>
  ATTENDANCE_<identityKey>
  PARTICIPATION_<identityKey>
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from .errors import InvalidBallot, InvalidRequest

BALLOT_VERSION = 1


class ElectionStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    ENDED = "ENDED"


def election_key(election_id: str) -> str:
    return f"ELECTION_{election_id}"


def ballot_prefix(election_id: str) -> str:
    # Length-prefixed so no election id is a key prefix of another
    return f"BALLOT_{len(election_id)}:{election_id}_"


def ballot_key(election_id: str, token_identifier: bytes) -> str:
    return ballot_prefix(election_id) + token_identifier.hex()


def attendance_key(identity: str) -> str:
    return f"ATTENDANCE_{identity}"


def participation_key(identity: str) -> str:
    return f"PARTICIPATION_{identity}"


def parse_time(value) -> datetime:
    """Accept a datetime or ISO-8601 string; naive values are taken as UTC."""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            raise InvalidRequest(f"Invalid timestamp: {value!r}")
    else:
        raise InvalidRequest(f"Invalid timestamp: {value!r}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_time(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat()


@dataclass
class Candidate:
    id: str
    name: str
    vision: str = ""
    vote_count: int = 0

    def to_dict(self, include_count: bool = True) -> dict:
        data = {"id": self.id, "name": self.name, "vision": self.vision}
        if include_count:
            data["voteCount"] = self.vote_count
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Candidate":
        if not isinstance(data, dict) or not data.get("id") or not data.get("name"):
            raise InvalidRequest("Candidate requires an id and a name")
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            vision=str(data.get("vision", "")),
            vote_count=int(data.get("voteCount", 0)),
        )


@dataclass
class Election:
    id: str
    name: str
    start_time: datetime
    end_time: datetime
    candidates: List[Candidate] = field(default_factory=list)
    total_votes: int = 0
    created_at: Optional[datetime] = None

    def status_at(self, now: datetime) -> ElectionStatus:
        if now < self.start_time:
            return ElectionStatus.PENDING
        if now > self.end_time:
            return ElectionStatus.ENDED
        return ElectionStatus.ACTIVE

    def has_ended(self, now: datetime) -> bool:
        return now > self.end_time

    @property
    def candidate_ids(self) -> List[str]:
        return [c.id for c in self.candidates]

    def to_dict(self, now: datetime = None, include_counts: bool = True) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "startTime": format_time(self.start_time),
            "endTime": format_time(self.end_time),
            "candidates": [c.to_dict(include_counts) for c in self.candidates],
            "totalVotes": self.total_votes,
            "createdAt": format_time(self.created_at) if self.created_at else None,
        }
        if now is not None:
            data["status"] = self.status_at(now).value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Election":
        return cls(
            id=data["id"],
            name=data["name"],
            start_time=parse_time(data["startTime"]),
            end_time=parse_time(data["endTime"]),
            candidates=[Candidate.from_dict(c) for c in data.get("candidates", [])],
            total_votes=int(data.get("totalVotes", 0)),
            created_at=parse_time(data["createdAt"]) if data.get("createdAt") else None,
        )


@dataclass(frozen=True)
class Ballot:
    token_identifier: bytes
    election_id: str
    ranked_candidate_ids: tuple
    timestamp: datetime
    key_id: str = ""
    version: int = BALLOT_VERSION

    def to_dict(self) -> dict:
        return {
            "tokenIdentifier": self.token_identifier.hex(),
            "electionId": self.election_id,
            "rankedCandidateIds": list(self.ranked_candidate_ids),
            "timestamp": format_time(self.timestamp),
            "keyId": self.key_id,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Ballot":
        return cls(
            token_identifier=bytes.fromhex(data["tokenIdentifier"]),
            election_id=data["electionId"],
            ranked_candidate_ids=tuple(data["rankedCandidateIds"]),
            timestamp=parse_time(data["timestamp"]),
            key_id=data.get("keyId", ""),
            version=int(data.get("version", BALLOT_VERSION)),
        )


def parse_ballot_payload(payload) -> tuple:
    """
    Validate a versioned ballot payload and return its ranking.

    Accepted shape: {"version": 1, "rankedCandidateIds": [str, ...]}
    Anything else, including legacy single-choice payloads, is InvalidBallot.
    """
    if not isinstance(payload, dict):
        raise InvalidBallot("Ballot must be an object")
    version = payload.get("version")
    if version != BALLOT_VERSION or isinstance(version, bool):
        raise InvalidBallot(f"Unsupported ballot version: {version!r}")
    ranking = payload.get("rankedCandidateIds")
    if not isinstance(ranking, list) or not all(isinstance(c, str) for c in ranking):
        raise InvalidBallot("rankedCandidateIds must be a list of candidate ids")
    return tuple(ranking)


def validate_ranking(ranking, candidate_ids) -> tuple:
    """A ranking must be a non-empty, duplicate-free subset of the candidates."""
    ranking = tuple(ranking)
    if not ranking:
        raise InvalidBallot("Ballot must rank at least one candidate")
    if len(set(ranking)) != len(ranking):
        raise InvalidBallot("Ballot ranks a candidate more than once")
    unknown = [c for c in ranking if c not in set(candidate_ids)]
    if unknown:
        raise InvalidBallot(f"Unknown candidate(s): {', '.join(unknown)}")
    return ranking
