# echoid/crypto/keys.py
"""
EchoID Crypto: Device Keys and Chat Session Keys

Each device holds an X25519 keypair. The chat key for a consent is
derived from both devices' public keys and the consent identifier:

    key = keccak256( min(pkA, pkB) || max(pkA, pkB) || utf8(consent_id) )

Sorting makes the derivation symmetric, so both parties compute the same
32-byte key without a handshake.

When the counterparty's public key cannot be resolved, a WEAK session key
is derived from an address-based substitute instead. Anyone who knows the
counterparty address, the consent id and our public key can recompute it;
SessionKey.strength keeps that distinguishable downstream.

Usage:
    keypair = DeviceKeypair.generate()
    key = derive_chat_key(keypair.public_key, peer_pubkey, "42")

    session = establish_session_key(
        keypair.public_key, peer_pubkey, consent_id="42",
        counterparty_address="0xB...",
    )
    if session.is_weak:
        ...
"""

from __future__ import annotations

import base64
import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional, Union

import nacl.utils
from nacl.exceptions import CryptoError
from nacl.public import Box, PrivateKey, PublicKey

from ..errors import AuthenticationFailure
from .hashing import HASH_SIZE, hash_bytes


logger = logging.getLogger("echoid.crypto")


# =============================================================================
# Chat Key Derivation
# =============================================================================

def derive_chat_key(pub_a: bytes, pub_b: bytes, consent_id: str) -> bytes:
    """
    Derive the symmetric chat key for a consent.

    Args:
        pub_a: One party's device public key
        pub_b: The other party's device public key
        consent_id: Consent identifier shared by both parties

    Returns:
        32-byte key; identical for (pub_a, pub_b) and (pub_b, pub_a)
    """
    first, second = sorted((bytes(pub_a), bytes(pub_b)))
    return hash_bytes(first + second + str(consent_id).encode("utf-8"))[:HASH_SIZE]


def substitute_public_key(counterparty_address: str, consent_id: str) -> bytes:
    """
    Address-derived stand-in for an unresolved counterparty key.

    utf8(address) || utf8(consent_id), truncated or zero-padded to 32 bytes.
    """
    combined = counterparty_address.encode("utf-8") + str(consent_id).encode("utf-8")
    return combined[:HASH_SIZE].ljust(HASH_SIZE, b"\x00")


def derive_weak_session_key(
    self_pubkey: bytes,
    counterparty_address: str,
    consent_id: str,
) -> bytes:
    """Chat key from the substitute counterparty key. Not end-to-end secure."""
    substitute = substitute_public_key(counterparty_address, consent_id)
    return derive_chat_key(self_pubkey, substitute, consent_id)


class SessionStrength(Enum):
    """Provenance of a chat session key."""
    E2E = "e2e"      # both device public keys known
    WEAK = "weak"    # counterparty key substituted from its address


@dataclass(frozen=True)
class SessionKey:
    """Chat key plus how it was obtained."""
    key: bytes
    strength: SessionStrength
    consent_id: str

    def __post_init__(self):
        if len(self.key) != HASH_SIZE:
            raise ValueError(f"Session key must be {HASH_SIZE} bytes")

    @property
    def is_weak(self) -> bool:
        return self.strength is SessionStrength.WEAK

    def __repr__(self) -> str:
        return f"SessionKey(consent_id={self.consent_id!r}, strength={self.strength.value})"


def establish_session_key(
    self_pubkey: bytes,
    counterparty_pubkey: Optional[bytes],
    consent_id: str,
    counterparty_address: str,
) -> SessionKey:
    """
    Derive the chat key, falling back to the weak path when the
    counterparty key is missing.
    """
    consent_id = str(consent_id)
    if counterparty_pubkey:
        return SessionKey(
            key=derive_chat_key(self_pubkey, counterparty_pubkey, consent_id),
            strength=SessionStrength.E2E,
            consent_id=consent_id,
        )

    logger.warning(
        "Counterparty key for %s unavailable; using WEAK session key for consent %s",
        counterparty_address,
        consent_id,
    )
    return SessionKey(
        key=derive_weak_session_key(self_pubkey, counterparty_address, consent_id),
        strength=SessionStrength.WEAK,
        consent_id=consent_id,
    )


# =============================================================================
# Device Keypair
# =============================================================================

@dataclass
class DeviceKeypair:
    """X25519 device keypair (NaCl box keys)."""
    private_key: PrivateKey

    @classmethod
    def generate(cls) -> "DeviceKeypair":
        return cls(private_key=PrivateKey.generate())

    @classmethod
    def from_secret(cls, secret: bytes) -> "DeviceKeypair":
        return cls(private_key=PrivateKey(bytes(secret)))

    @property
    def public_key(self) -> bytes:
        return bytes(self.private_key.public_key)

    @property
    def secret_key(self) -> bytes:
        return bytes(self.private_key)

    def public_key_b64(self) -> str:
        """Encoding used by the handle registry."""
        return base64.b64encode(self.public_key).decode("ascii")

    def save(self, path: Union[str, Path]) -> None:
        """Persist the secret key (base64) with owner-only permissions."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write(base64.b64encode(self.secret_key).decode("ascii"))

    @classmethod
    def load(cls, path: Union[str, Path]) -> "DeviceKeypair":
        with open(path) as f:
            return cls.from_secret(base64.b64decode(f.read().strip()))

    @classmethod
    def load_or_create(cls, path: Union[str, Path]) -> "DeviceKeypair":
        """Load the stored keypair, generating and storing a new one if absent."""
        path = Path(path)
        if path.exists():
            return cls.load(path)
        keypair = cls.generate()
        keypair.save(path)
        logger.info("Generated new device keypair at %s", path)
        return keypair


# =============================================================================
# Key Wrapping (NaCl box)
# =============================================================================

@dataclass(frozen=True)
class WrappedKey:
    """Symmetric key sealed to one recipient."""
    recipient_pubkey: bytes
    encrypted_key: bytes
    nonce: bytes


def wrap_key_for_recipients(
    sym_key: bytes,
    recipient_pubkeys: List[bytes],
    sender: DeviceKeypair,
) -> List[WrappedKey]:
    """Box a symmetric key to each recipient's device public key."""
    wrapped = []
    for recipient in recipient_pubkeys:
        nonce = nacl.utils.random(Box.NONCE_SIZE)
        box = Box(sender.private_key, PublicKey(bytes(recipient)))
        encrypted = box.encrypt(bytes(sym_key), nonce).ciphertext
        wrapped.append(WrappedKey(bytes(recipient), encrypted, nonce))
    return wrapped


def unwrap_key_for_recipient(
    wrapped: WrappedKey,
    sender_pubkey: bytes,
    recipient: DeviceKeypair,
) -> bytes:
    """
    Open a wrapped key.

    Raises:
        AuthenticationFailure: Box authentication failed
    """
    box = Box(recipient.private_key, PublicKey(bytes(sender_pubkey)))
    try:
        return box.decrypt(wrapped.encrypted_key, wrapped.nonce)
    except CryptoError as e:
        raise AuthenticationFailure("Wrapped key authentication failed") from e
