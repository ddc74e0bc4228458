"""
pytest configuration for blindballot tests.
Adds the project root to sys.path and shares one issuer keypair per session,
since 2048-bit key generation dominates test time.
"""
import os
import sys
from datetime import datetime, timezone

import pytest

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, ROOT)

from blindballot import database
from blindballot.blind_signature import generate_keypair


@pytest.fixture(scope="session")
def keypair():
    return generate_keypair()


@pytest.fixture(scope="session")
def other_keypair():
    return generate_keypair()


@pytest.fixture
def isolated_key_db(tmp_path):
    """Each test gets its own issuer key database."""
    original = database.DB_PATH
    database.close_connection()
    database.DB_PATH = tmp_path / "issuer_keys.db"
    yield database.DB_PATH
    database.close_connection()
    database.DB_PATH = original


@pytest.fixture
def epoch():
    return datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
