"""
Blind-Signature Authority

Owns the issuer key pair and performs the only privileged step of the
protocol: signing a blinded value. It never sees a raw token or its hash,
and never logs the values it signs.
"""

import logging

from . import config
from . import database
from .blind_signature import (
    KeyPair,
    PublicKey,
    generate_keypair,
    key_fingerprint,
    sign_blinded,
    verify,
    verify_digest,
)
from .errors import InvalidBlindValue, KeyUnavailable

logger = logging.getLogger(__name__)


class Authority:
    def __init__(self, keypair: KeyPair = None, key_size: int = None, allow_ephemeral: bool = None):
        self._keypair = keypair
        self.key_size = key_size or config.KEY_SIZE
        self.allow_ephemeral = (
            config.ALLOW_EPHEMERAL_KEYS if allow_ephemeral is None else allow_ephemeral
        )
        self.ephemeral = False

    # ------------------------------------------------------------------
    # Key lifecycle
    # ------------------------------------------------------------------

    def generate_keys(self) -> KeyPair:
        """
        Load the persisted key pair, generating and persisting one only when
        storage holds none.

        A stored key that cannot be read raises KeyUnavailable; it is never
        replaced, since that would void every credential signed under it.
        """
        if self._keypair is not None:
            return self._keypair

        if self.key_size < config.MIN_KEY_SIZE:
            raise KeyUnavailable(f"Key size must be at least {config.MIN_KEY_SIZE} bits")

        try:
            database.init_db()
            row = database.get_issuer_keys()
        except Exception as e:
            return self._ephemeral_or_fail(f"key storage unavailable: {e}")

        if row is not None:
            self._keypair = self._load(row)
            logger.info("Issuer key %s loaded from storage", row["key_id"][:16])
            return self._keypair

        logger.info("Generating %d-bit RSA keypair...", self.key_size)
        keypair = generate_keypair(self.key_size)
        key_id = key_fingerprint(keypair.modulus)
        try:
            stored = database.store_issuer_keys(key_id, keypair.to_pem())
        except Exception as e:
            return self._ephemeral_or_fail(f"could not persist new key: {e}", keypair)

        if not stored:
            # Another process stored a key first; that one wins
            self._keypair = self._load(database.get_issuer_keys())
        else:
            self._keypair = keypair
            logger.info("Issuer key %s stored", key_id[:16])
        return self._keypair

    def _load(self, row: dict) -> KeyPair:
        try:
            keypair = KeyPair.from_pem(row["private_key"])
        except (ValueError, IndexError, TypeError) as e:
            raise KeyUnavailable(f"Stored issuer key is unreadable: {e}")
        if key_fingerprint(keypair.modulus) != row["key_id"]:
            raise KeyUnavailable("Stored issuer key does not match its recorded fingerprint")
        if keypair.modulus.bit_length() < config.MIN_KEY_SIZE:
            raise KeyUnavailable("Stored issuer key is shorter than the minimum key size")
        return keypair

    def _ephemeral_or_fail(self, reason: str, keypair: KeyPair = None) -> KeyPair:
        if not self.allow_ephemeral:
            raise KeyUnavailable(f"Issuer key unavailable ({reason})")
        logger.warning("Using an unpersisted issuer key (%s); credentials will not survive restart", reason)
        self._keypair = keypair or generate_keypair(self.key_size)
        self.ephemeral = True
        return self._keypair

    @property
    def keypair(self) -> KeyPair:
        if self._keypair is None:
            raise KeyUnavailable("Issuer keys not initialized. Call generate_keys() first.")
        return self._keypair

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def get_public_key(self) -> PublicKey:
        return self.keypair.public_key

    @property
    def key_id(self) -> str:
        return self.get_public_key().key_id

    def sign_blinded(self, blind_value: int) -> int:
        """Return blind_value^d mod n; any value in [0, n) is signable."""
        keypair = self.keypair
        if not isinstance(blind_value, int) or not 0 <= blind_value < keypair.modulus:
            raise InvalidBlindValue()
        return sign_blinded(blind_value, keypair)

    def verify(self, message: bytes, signature: int) -> bool:
        return verify(message, signature, self.get_public_key())

    def verify_digest(self, digest: bytes, signature: int) -> bool:
        return verify_digest(digest, signature, self.get_public_key())
