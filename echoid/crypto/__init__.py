# echoid/crypto/__init__.py
"""
EchoID Crypto Layer

    hashing: keccak-256 content hashes (voice, face, device, geo, utc)
    aead:    XChaCha20-Poly1305 seal/open
    keys:    chat session keys, device keypair, NaCl-box key wrapping
"""

from .hashing import (
    HASH_SIZE,
    ContentHashes,
    hash_bytes,
    hash_hex,
    compute_voice_hash,
    compute_face_hash,
    compute_device_hash,
    compute_geo_hash,
    compute_utc_hash,
    geo_string,
    round_coordinates,
    round_to_hour,
)

from .aead import (
    KEY_SIZE,
    NONCE_SIZE,
    TAG_SIZE,
    SealedPayload,
    encrypt,
    decrypt,
    generate_nonce,
)

from .keys import (
    DeviceKeypair,
    SessionKey,
    SessionStrength,
    WrappedKey,
    derive_chat_key,
    derive_weak_session_key,
    establish_session_key,
    substitute_public_key,
    wrap_key_for_recipients,
    unwrap_key_for_recipient,
)

__all__ = [
    "HASH_SIZE",
    "ContentHashes",
    "hash_bytes",
    "hash_hex",
    "compute_voice_hash",
    "compute_face_hash",
    "compute_device_hash",
    "compute_geo_hash",
    "compute_utc_hash",
    "geo_string",
    "round_coordinates",
    "round_to_hour",
    "KEY_SIZE",
    "NONCE_SIZE",
    "TAG_SIZE",
    "SealedPayload",
    "encrypt",
    "decrypt",
    "generate_nonce",
    "DeviceKeypair",
    "SessionKey",
    "SessionStrength",
    "WrappedKey",
    "derive_chat_key",
    "derive_weak_session_key",
    "establish_session_key",
    "substitute_public_key",
    "wrap_key_for_recipients",
    "unwrap_key_for_recipient",
]
