"""
Externally invocable operations.

OPERATIONS is the complete, reviewable list of what callers outside the core
may invoke. Each entry pairs a request type, parsed and validated from a JSON
payload, with a handler returning a JSON-ready dict. Protocol errors
propagate as VotingError subclasses for the transport layer to map.
"""

from collections import namedtuple
from dataclasses import dataclass
from typing import Optional

from Crypto.Hash import HMAC, SHA256

from . import config
from .blind_signature import bytes_to_hex, hex_to_bytes, hex_to_int, int_to_hex
from .errors import InvalidRequest
from .irv import LATEST_DECLARED, TIE_BREAK_POLICIES
from .models import parse_ballot_payload
from .registry import BallotRegistry

IDENTITY_CHARS = set("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789_.@-+")


def identity_key(identity: str, secret: str) -> str:
    """
    Derive the registry key for a voter identity.

    The key depends on the identity alone, so a voter holds one credential
    across every election. It cannot be reversed to the identity without
    the secret.
    """
    mac = HMAC.new(secret.encode(), digestmod=SHA256)
    mac.update(identity.lower().encode())
    return mac.hexdigest()


# ---------------------------------------------------------------------------
# Payload parsing helpers
# ---------------------------------------------------------------------------

def _text(payload: dict, name: str) -> str:
    value = payload.get(name)
    if not isinstance(value, str) or not value.strip():
        raise InvalidRequest(f"{name} is required")
    return value.strip()


def _identity(payload: dict) -> str:
    identity = _text(payload, "identity")
    if not all(c in IDENTITY_CHARS for c in identity):
        raise InvalidRequest("Invalid identity format")
    return identity


def _hex_int(payload: dict, name: str) -> int:
    try:
        return hex_to_int(_text(payload, name))
    except ValueError:
        raise InvalidRequest(f"{name} must be hex")


def _hex_bytes(payload: dict, name: str) -> bytes:
    try:
        return hex_to_bytes(_text(payload, name))
    except ValueError:
        raise InvalidRequest(f"{name} must be hex")


def _election_id(payload: dict) -> str:
    value = payload.get("electionId")
    if value is None:
        return config.CURRENT_ELECTION_ID
    if not isinstance(value, str) or not value.strip():
        raise InvalidRequest("electionId must be a non-empty string")
    return value.strip()


# ---------------------------------------------------------------------------
# Request types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EmptyRequest:
    @classmethod
    def parse(cls, payload: dict) -> "EmptyRequest":
        return cls()


@dataclass(frozen=True)
class ElectionRequest:
    election_id: str

    @classmethod
    def parse(cls, payload: dict) -> "ElectionRequest":
        return cls(_election_id(payload))


@dataclass(frozen=True)
class IdentityRequest:
    identity: str

    @classmethod
    def parse(cls, payload: dict) -> "IdentityRequest":
        return cls(_identity(payload))


@dataclass(frozen=True)
class RequestCredentialRequest:
    identity: str
    blinded_value: int

    @classmethod
    def parse(cls, payload: dict) -> "RequestCredentialRequest":
        return cls(_identity(payload), _hex_int(payload, "blindedValue"))


@dataclass(frozen=True)
class CastVoteRequest:
    election_id: str
    token_identifier: bytes
    signature: int
    ranked_candidate_ids: tuple

    @classmethod
    def parse(cls, payload: dict) -> "CastVoteRequest":
        return cls(
            election_id=_election_id(payload),
            token_identifier=_hex_bytes(payload, "tokenIdentifier"),
            signature=_hex_int(payload, "signature"),
            ranked_candidate_ids=parse_ballot_payload(payload.get("ballot")),
        )


@dataclass(frozen=True)
class VerifyVoteRequest:
    election_id: str
    token_identifier: bytes

    @classmethod
    def parse(cls, payload: dict) -> "VerifyVoteRequest":
        return cls(_election_id(payload), _hex_bytes(payload, "tokenIdentifier"))


@dataclass(frozen=True)
class ResultsRequest:
    election_id: str
    tie_break: str = LATEST_DECLARED

    @classmethod
    def parse(cls, payload: dict) -> "ResultsRequest":
        tie_break = payload.get("tieBreak") or LATEST_DECLARED
        if tie_break not in TIE_BREAK_POLICIES:
            raise InvalidRequest(f"tieBreak must be one of {', '.join(TIE_BREAK_POLICIES)}")
        return cls(_election_id(payload), tie_break)


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------

def get_public_key(service, request: EmptyRequest, privileged: bool) -> dict:
    return service.registry.authority.get_public_key().to_dict()


def request_credential(service, request: RequestCredentialRequest, privileged: bool) -> dict:
    key = service.identity_key(request.identity)
    blind_signature = service.registry.issue_credential(key, request.blinded_value)
    return {
        "success": True,
        "blindSignature": int_to_hex(blind_signature),
        "publicKey": service.registry.authority.get_public_key().to_dict(),
    }


def cast_vote(service, request: CastVoteRequest, privileged: bool) -> dict:
    ballot = service.registry.cast_vote(
        request.election_id,
        request.token_identifier,
        request.signature,
        request.ranked_candidate_ids,
    )
    return {
        "success": True,
        "message": "Vote recorded successfully",
        "tokenIdentifier": bytes_to_hex(ballot.token_identifier),
        "electionId": ballot.election_id,
    }


def verify_vote(service, request: VerifyVoteRequest, privileged: bool) -> dict:
    return service.registry.get_vote(request.election_id, request.token_identifier)


def get_ballots(service, request: ElectionRequest, privileged: bool) -> dict:
    ballots = service.registry.get_ballots(request.election_id, bypass_time_gate=privileged)
    return {"electionId": request.election_id, "ballots": [b.to_dict() for b in ballots]}


def get_results(service, request: ResultsRequest, privileged: bool) -> dict:
    return service.registry.get_results(
        request.election_id, bypass_time_gate=privileged, tie_break=request.tie_break
    )


def check_attendance(service, request: IdentityRequest, privileged: bool) -> dict:
    key = service.identity_key(request.identity)
    return service.registry.voter_status(key)


def record_participation(service, request: IdentityRequest, privileged: bool) -> dict:
    key = service.identity_key(request.identity)
    recorded = service.registry.record_participation(key)
    return {"success": True, "newlyRecorded": recorded}


def get_election(service, request: ElectionRequest, privileged: bool) -> dict:
    return service.registry.get_election(request.election_id)


def get_election_status(service, request: ElectionRequest, privileged: bool) -> dict:
    return service.registry.get_election_status(request.election_id)


def get_candidates(service, request: ElectionRequest, privileged: bool) -> dict:
    return {"candidates": service.registry.get_candidates(request.election_id)}


Operation = namedtuple("Operation", ["request_type", "handler"])

OPERATIONS = {
    "getPublicKey": Operation(EmptyRequest, get_public_key),
    "requestCredential": Operation(RequestCredentialRequest, request_credential),
    "castVote": Operation(CastVoteRequest, cast_vote),
    "verifyVote": Operation(VerifyVoteRequest, verify_vote),
    "getBallots": Operation(ElectionRequest, get_ballots),
    "getResults": Operation(ResultsRequest, get_results),
    "checkAttendance": Operation(IdentityRequest, check_attendance),
    "recordParticipation": Operation(IdentityRequest, record_participation),
    "getElection": Operation(ElectionRequest, get_election),
    "getElectionStatus": Operation(ElectionRequest, get_election_status),
    "getCandidates": Operation(ElectionRequest, get_candidates),
}


class VotingService:
    def __init__(self, registry: BallotRegistry, identity_secret: Optional[str] = None):
        self.registry = registry
        self.identity_secret = identity_secret or config.IDENTITY_SECRET

    def identity_key(self, identity: str) -> str:
        return identity_key(identity, self.identity_secret)

    def invoke(self, name: str, payload: dict = None, privileged: bool = False) -> dict:
        """
        Run a named operation.

        `privileged` lifts the results time gate; it must only be set by a
        caller that has already authorized an administrator.
        """
        operation = OPERATIONS.get(name)
        if operation is None:
            raise InvalidRequest(f"Unknown operation: {name}")
        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            raise InvalidRequest("Request body must be a JSON object")
        request = operation.request_type.parse(payload)
        return operation.handler(self, request, privileged)
