"""
blindballot REST API

Thin JSON boundary over the operation table in service.py:

  Identity side (caller authenticated upstream):
    GET  /api/public-key                      — Issuer public key (hex)
    POST /api/credentials                     — Blind-sign a blinded token
    GET  /api/voter/<identity>/status         — Attendance / participation flags
    POST /api/voter/<identity>/participation  — Self-report having voted

  Anonymous ballot side:
    POST /api/vote                            — Cast a ranked ballot
    GET  /api/vote/verify/<tokenIdentifier>   — Confirm a ballot exists
    GET  /api/election/<id>                   — Election metadata
    GET  /api/election/<id>/status            — PENDING / ACTIVE / ENDED
    GET  /api/election/<id>/candidates        — Candidates (counts after end)
    GET  /api/election/<id>/ballots           — Ballot export (after end or admin)
    GET  /api/election/<id>/results           — IRV results (after end or admin)
    POST /api/ops/<name>                      — Any operation by name
"""

import hmac
import logging
from datetime import timedelta

from flask import Flask, request, jsonify
from flask_cors import CORS

from . import config
from .authority import Authority
from .errors import ElectionExists, VotingError
from .registry import BallotRegistry
from .service import VotingService
from .store import SQLiteStore, utc_now

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# App setup
# ---------------------------------------------------------------------------

app = Flask(__name__)
CORS(app)

DEMO_ELECTION = {
    "id": config.CURRENT_ELECTION_ID,
    "name": "Student Association Chair Election",
    "candidates": [
        {"id": "candidate-1", "name": "Ahmad Fauzan", "vision": "An inclusive, innovative association."},
        {"id": "candidate-2", "name": "Siti Nurhaliza", "vision": "Digital transformation and transparency."},
        {"id": "candidate-3", "name": "Budi Santoso", "vision": "Stronger alumni and industry networks."},
    ],
}

_service = None


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------

def check_identity_secret() -> bool:
    """Warn when identity keys are derived with the shipped default secret."""
    if config.IDENTITY_SECRET == config.DEFAULT_IDENTITY_SECRET:
        logger.warning(
            "BLINDBALLOT_IDENTITY_SECRET is not set; identity keys use the default "
            "secret and can be recomputed by anyone who knows a voter identity"
        )
        return False
    return True


def initialize(store=None, authority: Authority = None, seed_demo: bool = True) -> VotingService:
    global _service
    logging.basicConfig(format=config.LOG_FORMAT, level=config.LOG_LEVEL)
    check_identity_secret()

    authority = authority or Authority()
    authority.generate_keys()
    store = store or SQLiteStore(config.STATE_DB_PATH)
    registry = BallotRegistry(store, authority)

    if seed_demo:
        now = utc_now()
        try:
            registry.create_election(
                DEMO_ELECTION["id"],
                DEMO_ELECTION["name"],
                now - timedelta(days=1),
                now + timedelta(days=30),
                DEMO_ELECTION["candidates"],
            )
        except ElectionExists:
            logger.info("Demo election %s already present", DEMO_ELECTION["id"])

    _service = VotingService(registry)
    logger.info("blindballot initialized and ready")
    return _service


def get_service() -> VotingService:
    if _service is None:
        raise RuntimeError("Service not initialized. Call initialize() first.")
    return _service


def _is_admin() -> bool:
    token = request.headers.get("X-Admin-Token", "")
    if not config.ADMIN_TOKEN or not token:
        return False
    return hmac.compare_digest(token, config.ADMIN_TOKEN)


def _body() -> dict:
    data = request.get_json(silent=True)
    return data if data is not None else {}


def _invoke(name: str, payload: dict, privileged: bool = False):
    return jsonify(get_service().invoke(name, payload, privileged=privileged))


@app.errorhandler(VotingError)
def handle_voting_error(e: VotingError):
    return jsonify(e.to_dict()), e.http_status


# ---------------------------------------------------------------------------
# Identity side
# ---------------------------------------------------------------------------

@app.route("/api/public-key", methods=["GET"])
def api_public_key():
    return _invoke("getPublicKey", {})


@app.route("/api/credentials", methods=["POST"])
def api_request_credential():
    """
    Blind-sign a voter's blinded token.

    Request JSON:
      { "identity": str, "blindedValue": hex }

    Response JSON (success):
      { "success": true, "blindSignature": hex, "publicKey": {...} }
    """
    return _invoke("requestCredential", _body())


@app.route("/api/voter/<identity>/status", methods=["GET"])
def api_voter_status(identity: str):
    return _invoke("checkAttendance", {"identity": identity})


@app.route("/api/voter/<identity>/participation", methods=["POST"])
def api_record_participation(identity: str):
    payload = dict(_body(), identity=identity)
    return _invoke("recordParticipation", payload)


# ---------------------------------------------------------------------------
# Anonymous ballot side
# ---------------------------------------------------------------------------

@app.route("/api/vote", methods=["POST"])
def api_vote():
    """
    Cast an anonymous ranked ballot.

    Request JSON:
      {
        "electionId":      str,
        "tokenIdentifier": hex,   # SHA-256 of the voter's secret token
        "signature":       hex,   # unblinded RSA signature
        "ballot": { "version": 1, "rankedCandidateIds": [str, ...] }
      }
    """
    return _invoke("castVote", _body())


@app.route("/api/vote/verify/<token_identifier>", methods=["GET"])
def api_verify_vote(token_identifier: str):
    payload = {"tokenIdentifier": token_identifier}
    if "electionId" in request.args:
        payload["electionId"] = request.args["electionId"]
    return _invoke("verifyVote", payload)


@app.route("/api/election/<election_id>", methods=["GET"])
def api_election(election_id: str):
    return _invoke("getElection", {"electionId": election_id})


@app.route("/api/election/<election_id>/status", methods=["GET"])
def api_election_status(election_id: str):
    return _invoke("getElectionStatus", {"electionId": election_id})


@app.route("/api/election/<election_id>/candidates", methods=["GET"])
def api_candidates(election_id: str):
    return _invoke("getCandidates", {"electionId": election_id})


@app.route("/api/election/<election_id>/ballots", methods=["GET"])
def api_ballots(election_id: str):
    return _invoke("getBallots", {"electionId": election_id}, privileged=_is_admin())


@app.route("/api/election/<election_id>/results", methods=["GET"])
def api_results(election_id: str):
    payload = {"electionId": election_id}
    if "tieBreak" in request.args:
        payload["tieBreak"] = request.args["tieBreak"]
    return _invoke("getResults", payload, privileged=_is_admin())


@app.route("/api/ops/<name>", methods=["POST"])
def api_operation(name: str):
    return _invoke(name, _body(), privileged=_is_admin())


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

@app.route("/api/health", methods=["GET"])
def api_health():
    return jsonify({"status": "ok", "service": "blindballot"})


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    initialize()
    app.run(host="0.0.0.0", port=config.PORT, debug=config.DEBUG)
