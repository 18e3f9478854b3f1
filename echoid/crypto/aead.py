# echoid/crypto/aead.py
"""
EchoID Crypto: XChaCha20-Poly1305

Authenticated encryption for chat payloads (libsodium IETF construction
via PyNaCl). 32-byte key, 24-byte nonce, 16-byte tag appended to the
ciphertext.

Nonces are drawn from the OS CSPRNG on every call that does not pass one
explicitly; 192-bit nonces make random collisions negligible.

Usage:
    sealed = encrypt(b"hello", key)
    plain = decrypt(sealed.ciphertext, key, sealed.nonce)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import nacl.utils
from nacl.bindings import (
    crypto_aead_xchacha20poly1305_ietf_ABYTES,
    crypto_aead_xchacha20poly1305_ietf_KEYBYTES,
    crypto_aead_xchacha20poly1305_ietf_NPUBBYTES,
    crypto_aead_xchacha20poly1305_ietf_decrypt,
    crypto_aead_xchacha20poly1305_ietf_encrypt,
)
from nacl.exceptions import CryptoError

from ..errors import AuthenticationFailure


KEY_SIZE = crypto_aead_xchacha20poly1305_ietf_KEYBYTES      # 32
NONCE_SIZE = crypto_aead_xchacha20poly1305_ietf_NPUBBYTES   # 24
TAG_SIZE = crypto_aead_xchacha20poly1305_ietf_ABYTES        # 16


@dataclass(frozen=True)
class SealedPayload:
    """Ciphertext (with tag) and the nonce it was sealed under."""
    ciphertext: bytes
    nonce: bytes


def generate_nonce() -> bytes:
    return nacl.utils.random(NONCE_SIZE)


def _check_key(key: bytes) -> bytes:
    key = bytes(key)
    if len(key) != KEY_SIZE:
        raise ValueError(f"Key must be {KEY_SIZE} bytes, got {len(key)}")
    return key


def _check_nonce(nonce: bytes) -> bytes:
    nonce = bytes(nonce)
    if len(nonce) != NONCE_SIZE:
        raise ValueError(f"Nonce must be {NONCE_SIZE} bytes, got {len(nonce)}")
    return nonce


def encrypt(
    plaintext: bytes,
    key: bytes,
    nonce: Optional[bytes] = None,
    aad: Optional[bytes] = None,
) -> SealedPayload:
    """
    Seal plaintext.

    Args:
        plaintext: Payload bytes
        key: 32-byte symmetric key
        nonce: 24-byte nonce (random if None)
        aad: Optional associated data, authenticated but not encrypted

    Returns:
        SealedPayload(ciphertext || tag, nonce)
    """
    key = _check_key(key)
    nonce = generate_nonce() if nonce is None else _check_nonce(nonce)
    ciphertext = crypto_aead_xchacha20poly1305_ietf_encrypt(
        bytes(plaintext), aad, nonce, key
    )
    return SealedPayload(ciphertext=ciphertext, nonce=nonce)


def decrypt(
    ciphertext: bytes,
    key: bytes,
    nonce: bytes,
    aad: Optional[bytes] = None,
) -> bytes:
    """
    Open a sealed payload.

    Raises:
        AuthenticationFailure: Tag mismatch (tampered ciphertext, wrong key,
            wrong nonce or wrong aad) or a nonce of the wrong length
    """
    key = _check_key(key)
    nonce = bytes(nonce)
    if len(nonce) != NONCE_SIZE:
        raise AuthenticationFailure(f"Nonce must be {NONCE_SIZE} bytes, got {len(nonce)}")
    ciphertext = bytes(ciphertext)
    if len(ciphertext) < TAG_SIZE:
        raise AuthenticationFailure(f"Ciphertext shorter than tag: {len(ciphertext)}B")
    try:
        return crypto_aead_xchacha20poly1305_ietf_decrypt(ciphertext, aad, nonce, key)
    except CryptoError as e:
        raise AuthenticationFailure("XChaCha20-Poly1305 authentication failed") from e
