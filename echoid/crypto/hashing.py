# echoid/crypto/hashing.py
"""
EchoID Crypto: Content Hashing

keccak-256 over the attestation inputs that end up as the five bytes32
fields of a consent: voice recording, selfie, device public key,
privacy-rounded location and privacy-rounded time.

Rounding:
    geo:  coordinates rounded half-up to 2 decimals (~1.1 km)
    utc:  timestamp (ms) floored to the start of its UTC hour

Usage:
    voice = compute_voice_hash(audio_bytes)
    geo = compute_geo_hash(52.52001, 13.40495)   # keccak("52.52,13.40")
    utc = compute_utc_hash(now_ms())

Updated: 2026-10-18
Version: 0.1.0
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Tuple, Union

from eth_utils import keccak


# =============================================================================
# Constants
# =============================================================================

HASH_SIZE = 32
GEO_PRECISION = 2
HOUR_MS = 3_600_000


# =============================================================================
# Core Hash
# =============================================================================

def hash_bytes(data: Union[bytes, bytearray, str]) -> bytes:
    """
    keccak-256 digest (32 bytes).

    Strings are hashed as their UTF-8 encoding.
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    return keccak(bytes(data))


def hash_hex(data: Union[bytes, bytearray, str]) -> str:
    """keccak-256 digest as 0x-prefixed hex."""
    return "0x" + hash_bytes(data).hex()


# =============================================================================
# Content Hashes
# =============================================================================

def compute_voice_hash(audio_bytes: bytes) -> bytes:
    """Hash of the raw voice recording."""
    return hash_bytes(audio_bytes)


def compute_face_hash(image_bytes: bytes) -> bytes:
    """Hash of the raw selfie image."""
    return hash_bytes(image_bytes)


def compute_device_hash(device_pubkey: bytes) -> bytes:
    """Hash of the device X25519 public key."""
    return hash_bytes(device_pubkey)


def _round_half_up(value: float, precision: int) -> float:
    factor = 10 ** precision
    return math.floor(value * factor + 0.5) / factor


def round_coordinates(
    latitude: float,
    longitude: float,
    precision: int = GEO_PRECISION,
) -> Tuple[float, float]:
    """Reduce coordinate precision before hashing."""
    return (
        _round_half_up(latitude, precision),
        _round_half_up(longitude, precision),
    )


def geo_string(latitude: float, longitude: float) -> str:
    """Canonical 'lat,lng' string used as the geo hash preimage."""
    lat, lng = round_coordinates(latitude, longitude)
    # + 0.0 turns -0.0 into 0.0 so both render as "0.00"
    return f"{lat + 0.0:.{GEO_PRECISION}f},{lng + 0.0:.{GEO_PRECISION}f}"


def compute_geo_hash(latitude: float, longitude: float) -> bytes:
    return hash_bytes(geo_string(latitude, longitude))


def round_to_hour(timestamp_ms: int) -> int:
    return (int(timestamp_ms) // HOUR_MS) * HOUR_MS


def compute_utc_hash(timestamp_ms: int) -> bytes:
    """Hash of the decimal ms timestamp floored to the hour."""
    return hash_bytes(str(round_to_hour(timestamp_ms)))


# =============================================================================
# Bundle
# =============================================================================

@dataclass(frozen=True)
class ContentHashes:
    """The five 32-byte attestation hashes of one consent."""
    voice: bytes
    face: bytes
    device: bytes
    geo: bytes
    utc: bytes

    def __post_init__(self):
        for name in ("voice", "face", "device", "geo", "utc"):
            value = getattr(self, name)
            if len(value) != HASH_SIZE:
                raise ValueError(f"{name} hash must be {HASH_SIZE} bytes, got {len(value)}")

    @classmethod
    def from_capture(
        cls,
        audio_bytes: bytes,
        image_bytes: bytes,
        device_pubkey: bytes,
        latitude: float,
        longitude: float,
        timestamp_ms: int,
    ) -> "ContentHashes":
        """Hash raw capture buffers into the on-chain attestation set."""
        return cls(
            voice=compute_voice_hash(audio_bytes),
            face=compute_face_hash(image_bytes),
            device=compute_device_hash(device_pubkey),
            geo=compute_geo_hash(latitude, longitude),
            utc=compute_utc_hash(timestamp_ms),
        )

    def as_hex(self) -> Dict[str, str]:
        return {
            "voice_hash": "0x" + self.voice.hex(),
            "face_hash": "0x" + self.face.hex(),
            "device_hash": "0x" + self.device.hex(),
            "geo_hash": "0x" + self.geo.hex(),
            "utc_hash": "0x" + self.utc.hex(),
        }
