"""
Error taxonomy for the credential and ballot protocol.

Each kind is raised by the core and mapped to its own status code and
message at the HTTP boundary. None of them is retried by this package.
"""


class VotingError(Exception):
    kind = "VotingError"
    http_status = 400
    default_message = "Request rejected"

    def __init__(self, message: str = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def to_dict(self) -> dict:
        return {"success": False, "error": self.kind, "message": self.message}


class KeyUnavailable(VotingError):
    kind = "KeyUnavailable"
    http_status = 503
    default_message = "Issuer key pair is not available"


class AlreadyIssued(VotingError):
    kind = "AlreadyIssued"
    http_status = 409
    default_message = "A credential was already issued to this identity"


class AlreadyVoted(VotingError):
    kind = "AlreadyVoted"
    http_status = 409
    default_message = "This credential has already been used to vote"


class InvalidCredential(VotingError):
    kind = "InvalidCredential"
    http_status = 403
    default_message = "Credential signature is not valid"


class ElectionNotOpen(VotingError):
    kind = "ElectionNotOpen"
    http_status = 403
    default_message = "Election is not open for voting"


class InvalidBallot(VotingError):
    kind = "InvalidBallot"
    http_status = 400
    default_message = "Ballot is malformed"


class ResultsNotAvailable(VotingError):
    kind = "ResultsNotAvailable"
    http_status = 403
    default_message = "Results are not available until the election ends"


class ElectionNotFound(VotingError):
    kind = "ElectionNotFound"
    http_status = 404
    default_message = "Election does not exist"


class ElectionExists(VotingError):
    kind = "ElectionExists"
    http_status = 409
    default_message = "Election already exists"


class InvalidBlindValue(VotingError):
    kind = "InvalidBlindValue"
    http_status = 400
    default_message = "Blinded value is outside the key modulus"


class InvalidRequest(VotingError):
    kind = "InvalidRequest"
    http_status = 400
    default_message = "Malformed request"
