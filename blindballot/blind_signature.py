"""
RSA Blind Signature Implementation for Anonymous Voting

Implements Chaum's blind signature protocol:
  1. Voter hashes a secret token and blinds it with the issuer's public key
  2. Issuer signs the blinded value (cannot see the token or its hash)
  3. Voter unblinds the signature to get a valid signature on the hash
  4. Anyone can verify the signature using the issuer's public key

Unblinding works because (m * r^e)^d * r^-1 == m^d * r * r^-1 == m^d (mod n).
"""

import os
import json
from dataclasses import dataclass

from Crypto.PublicKey import RSA
from Crypto.Hash import SHA256
from Crypto.Util.number import bytes_to_long

from .modmath import mod_inverse, mod_pow, random_coprime

KEY_SIZE = 2048  # bits
TOKEN_SIZE = 32  # bytes


@dataclass(frozen=True)
class PublicKey:
    modulus: int
    public_exponent: int

    @property
    def key_id(self) -> str:
        """Stable fingerprint of the key, recorded on every ballot it verifies."""
        return key_fingerprint(self.modulus)

    def to_dict(self) -> dict:
        return {
            "modulus": int_to_hex(self.modulus),
            "publicExponent": int_to_hex(self.public_exponent),
            "keyId": self.key_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PublicKey":
        return cls(
            modulus=hex_to_int(data["modulus"]),
            public_exponent=hex_to_int(data["publicExponent"]),
        )


@dataclass(frozen=True)
class KeyPair:
    modulus: int
    public_exponent: int
    private_exponent: int

    @property
    def public_key(self) -> PublicKey:
        return PublicKey(self.modulus, self.public_exponent)

    def to_pem(self) -> str:
        """Export as PEM; the CRT parameters are recomputed by pycryptodome."""
        key = RSA.construct((self.modulus, self.public_exponent, self.private_exponent))
        return key.export_key().decode()

    @classmethod
    def from_pem(cls, pem: str) -> "KeyPair":
        key = RSA.import_key(pem)
        if not key.has_private():
            raise ValueError("PEM does not hold a private key")
        return cls(modulus=key.n, public_exponent=key.e, private_exponent=key.d)


@dataclass(frozen=True)
class Credential:
    token_identifier: bytes
    signature: int
    election_id: str

    def to_dict(self) -> dict:
        return serialize_credential(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Credential":
        return deserialize_credential(data)


def generate_keypair(bits: int = KEY_SIZE) -> KeyPair:
    """Generate an RSA keypair for the token issuer."""
    key = RSA.generate(bits)
    return KeyPair(modulus=key.n, public_exponent=key.e, private_exponent=key.d)


def key_fingerprint(modulus: int) -> str:
    byte_len = (modulus.bit_length() + 7) // 8
    return SHA256.new(modulus.to_bytes(byte_len, "big")).hexdigest()


# ---------------------------------------------------------------------------
# Voter-side operations
# ---------------------------------------------------------------------------

def generate_token() -> bytes:
    """Generate a random 32-byte token (the voter's secret token)."""
    return os.urandom(TOKEN_SIZE)


def token_identifier(token: bytes) -> bytes:
    """SHA-256 of the raw token; the public, unlinkable name of a credential."""
    return SHA256.new(token).digest()


def blind(token: bytes, public_key: PublicKey) -> tuple:
    """
    Blind a token using the issuer's public key.

    Returns (blinded_value, blinding_factor).
    The blinding factor must be kept secret and used to unblind later.
    """
    n = public_key.modulus
    e = public_key.public_exponent

    m = bytes_to_long(token_identifier(token)) % n
    r = random_coprime(n)

    # blinded = m * r^e mod n
    blinded = (m * mod_pow(r, e, n)) % n
    return blinded, r


def unblind(blind_signature: int, blinding_factor: int, public_key: PublicKey) -> int:
    """
    Remove the blinding factor to recover the actual signature.

    sig = blind_sig * r^-1 mod n
    """
    n = public_key.modulus
    return (blind_signature * mod_inverse(blinding_factor, n)) % n


def make_credential(token: bytes, signature: int, election_id: str) -> Credential:
    return Credential(
        token_identifier=token_identifier(token),
        signature=signature,
        election_id=election_id,
    )


# ---------------------------------------------------------------------------
# Issuer-side operations
# ---------------------------------------------------------------------------

def sign_blinded(blinded_value: int, keypair: KeyPair) -> int:
    """
    Sign a blinded value using the issuer's private key.

    blind_sig = blinded^d mod n
    The issuer never sees the original token.
    """
    return mod_pow(blinded_value, keypair.private_exponent, keypair.modulus)


def verify_digest(digest: bytes, signature: int, public_key: PublicKey) -> bool:
    """Check sig^e mod n == digest (as a big-endian integer)."""
    n = public_key.modulus
    if not 0 <= signature < n:
        return False
    m = bytes_to_long(digest) % n
    return mod_pow(signature, public_key.public_exponent, n) == m


def verify(message: bytes, signature: int, public_key: PublicKey) -> bool:
    """
    Verify a signature against the original message.

    Checks: sig^e mod n == SHA-256(message) mod n
    """
    return verify_digest(token_identifier(message), signature, public_key)


# ---------------------------------------------------------------------------
# Serialization helpers (for API transport)
# ---------------------------------------------------------------------------

def int_to_hex(n: int) -> str:
    return format(n, "x")


def hex_to_int(hex_str: str) -> int:
    if not isinstance(hex_str, str) or not hex_str:
        raise ValueError("expected a non-empty hex string")
    return int(hex_str, 16)


def bytes_to_hex(data: bytes) -> str:
    return data.hex()


def hex_to_bytes(hex_str: str) -> bytes:
    return bytes.fromhex(hex_str)


def serialize_credential(credential: Credential) -> dict:
    """Serialize a credential for the voter's export file."""
    return {
        "tokenIdentifier": bytes_to_hex(credential.token_identifier),
        "signature": int_to_hex(credential.signature),
        "electionId": credential.election_id,
    }


def deserialize_credential(data: dict) -> Credential:
    return Credential(
        token_identifier=hex_to_bytes(data["tokenIdentifier"]),
        signature=hex_to_int(data["signature"]),
        election_id=data["electionId"],
    )


def export_credential(credential: Credential) -> str:
    return json.dumps(serialize_credential(credential), indent=2)


def import_credential(text: str) -> Credential:
    return deserialize_credential(json.loads(text))
