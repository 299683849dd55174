"""
Canonical signing scheme for authored artifacts.

The signed message is a domain tag followed by machine id, artifact id,
title and body, each UTF-8 encoded and prefixed with its byte length as an
8-byte big-endian integer. Length prefixes keep field boundaries
unambiguous: ("ab", "c") and ("a", "bc") produce different messages.

verify_signature is the only function the machine calls. sign and
generate_keypair are for clients preparing commands.
"""

from __future__ import annotations

import binascii
from dataclasses import dataclass
from typing import Union

from nacl.encoding import HexEncoder
from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

SIGNING_DOMAIN = b"collab-machine/issue/v1"

_LENGTH_BYTES = 8


def _field(value: Union[str, int]) -> bytes:
    raw = str(value).encode("utf-8")
    return len(raw).to_bytes(_LENGTH_BYTES, "big") + raw


def canonical_message(
    machine_id: str,
    artifact_id: Union[str, int],
    title: str,
    body: str,
) -> bytes:
    """Build the exact byte string signed for an artifact."""
    return SIGNING_DOMAIN + b"".join(
        _field(part) for part in (machine_id, artifact_id, title, body)
    )


def verify_signature(public_key: str, signature: str, message: bytes) -> bool:
    """
    Check a hex signature against a hex Ed25519 public key.

    Malformed keys or signatures return False rather than raising.
    """
    try:
        verify_key = VerifyKey(public_key.encode("ascii"), encoder=HexEncoder)
        raw_signature = binascii.unhexlify(signature)
        verify_key.verify(message, raw_signature)
        return True
    except (BadSignatureError, ValueError, TypeError, AttributeError, UnicodeEncodeError):
        return False


@dataclass(frozen=True)
class KeyPair:
    """Hex-encoded Ed25519 key pair."""

    secret_key: str
    public_key: str


def generate_keypair() -> KeyPair:
    """Create a fresh key pair (client side)."""
    signing_key = SigningKey.generate()
    return KeyPair(
        secret_key=signing_key.encode(encoder=HexEncoder).decode("ascii"),
        public_key=signing_key.verify_key.encode(encoder=HexEncoder).decode("ascii"),
    )


def public_key_for(secret_key: str) -> str:
    """Derive the hex public key of a hex secret key."""
    signing_key = SigningKey(secret_key.encode("ascii"), encoder=HexEncoder)
    return signing_key.verify_key.encode(encoder=HexEncoder).decode("ascii")


def sign(secret_key: str, message: bytes) -> str:
    """Sign a message with a hex secret key, returning a hex signature."""
    signing_key = SigningKey(secret_key.encode("ascii"), encoder=HexEncoder)
    return signing_key.sign(message).signature.hex()
