"""
IRV simulation over the full credential protocol.

Runs the reference 100-voter scenario end to end: every voter blinds a fresh
token, obtains a blind signature, unblinds it and casts a ranked ballot.
After the election closes the registry tallies the ballots.

  40 x [candidate-1]
  31 x [candidate-2]
  20 x [candidate-3, candidate-2]
   9 x [candidate-3, candidate-1]

Round 1 eliminates candidate-3; candidate-2 wins round 2 with 51 of 100.
"""

import json
import logging
from datetime import timedelta

from . import config
from .authority import Authority
from .blind_signature import blind, generate_keypair, generate_token, make_credential, unblind
from .registry import BallotRegistry
from .store import ManualClock, MemoryStore

logger = logging.getLogger(__name__)

ELECTION_ID = "election-sim"

CANDIDATES = [
    {"id": "candidate-1", "name": "Candidate 1"},
    {"id": "candidate-2", "name": "Candidate 2"},
    {"id": "candidate-3", "name": "Candidate 3"},
]

SCENARIOS = [
    (40, ["candidate-1"]),
    (31, ["candidate-2"]),
    (20, ["candidate-3", "candidate-2"]),
    (9, ["candidate-3", "candidate-1"]),
]


def run_simulation(scenarios=SCENARIOS, authority: Authority = None) -> dict:
    clock = ManualClock()
    start = clock()
    registry = BallotRegistry(MemoryStore(clock=clock), authority or Authority(keypair=generate_keypair()))
    registry.create_election(
        ELECTION_ID, "IRV Simulation", start, start + timedelta(hours=1), CANDIDATES
    )
    public_key = registry.authority.get_public_key()

    clock.advance(timedelta(minutes=1))
    voter = 0
    for count, ranking in scenarios:
        logger.info("Casting %d ballots ranking %s", count, ranking)
        for _ in range(count):
            token = generate_token()
            blinded, r = blind(token, public_key)
            blind_sig = registry.issue_credential(f"sim-voter-{voter}", blinded)
            credential = make_credential(token, unblind(blind_sig, r, public_key), ELECTION_ID)
            registry.cast_vote(ELECTION_ID, credential.token_identifier, credential.signature, ranking)
            voter += 1

    clock.advance(timedelta(hours=2))
    return registry.get_results(ELECTION_ID)


if __name__ == "__main__":
    logging.basicConfig(format=config.LOG_FORMAT, level=config.LOG_LEVEL)
    results = run_simulation()
    print(json.dumps(results, indent=2))
