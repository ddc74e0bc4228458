"""
Configuration for blindballot.

Every value can be overridden from the environment so the same code runs in
tests, in the demo server, and behind a real deployment.
"""

import os
from pathlib import Path

DATA_DIR = Path(os.environ.get("BLINDBALLOT_DATA_DIR", Path(__file__).parent.parent / "data"))

# Issuer key material lives apart from the replicated registry state
KEY_DB_PATH = Path(os.environ.get("BLINDBALLOT_KEY_DB", DATA_DIR / "issuer_keys.db"))
STATE_DB_PATH = Path(os.environ.get("BLINDBALLOT_STATE_DB", DATA_DIR / "registry_state.db"))

KEY_SIZE = int(os.environ.get("BLINDBALLOT_KEY_SIZE", 2048))  # bits
MIN_KEY_SIZE = 2048

# Operator opt-in for an unpersisted key when key storage is unusable
ALLOW_EPHEMERAL_KEYS = os.environ.get("BLINDBALLOT_ALLOW_EPHEMERAL_KEYS", "false").lower() == "true"

DEFAULT_IDENTITY_SECRET = "change-me-identity-secret"
IDENTITY_SECRET = os.environ.get("BLINDBALLOT_IDENTITY_SECRET", DEFAULT_IDENTITY_SECRET)
ADMIN_TOKEN = os.environ.get("BLINDBALLOT_ADMIN_TOKEN", "")

CURRENT_ELECTION_ID = os.environ.get("CURRENT_ELECTION_ID", "election-2024")

# Logging configuration
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

PORT = int(os.environ.get("PORT", 5000))
DEBUG = os.environ.get("DEBUG", "false").lower() == "true"
