# echoid/ledger/codec.py
"""
EchoID Ledger: ConsentFactory ABI Codec

Client-side encoding/decoding contract with the ConsentFactory:

    createConsent(bytes32 voiceHash, bytes32 faceHash, bytes32 deviceHash,
                  bytes32 geoHash, bytes32 utcHash, uint8 coercionLevel,
                  address counterparty, uint8 unlockMode,
                  uint256 unlockWindow) payable returns (uint256)
    requestUnlock(uint256 consentId)
    approveUnlock(uint256 consentId)

    event ConsentCreated(uint256 indexed consentId,
                         address indexed party1, address indexed party2)

All three event arguments are indexed, so they live in topics[1..3] and
the log data is empty.

The ABI is bound to a web3 Contract on a provider-less Web3 instance:
calldata and event decoding never touch the network, so the same codec
serves Web3Chain receipts and MockChain execution.

Usage:
    data = encode_create_consent(hashes, 0, "0xB...", UnlockMode.ONE_SHOT, 0)
    event = find_consent_created(receipt["logs"], factory_address)
    if event is None:
        consent_id = fallback_consent_id(tx_hash)
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from eth_utils import (
    event_abi_to_log_topic,
    function_abi_to_4byte_selector,
    is_address,
    to_checksum_address,
)
from hexbytes import HexBytes
from web3 import Web3
from web3.contract import Contract
from web3.exceptions import LogTopicError, MismatchedABI

from ..errors import ValidationError


# =============================================================================
# ABI
# =============================================================================

ABI_PATH = Path(__file__).parent / "abi" / "ConsentFactory.json"


def _load_abi() -> List[Dict]:
    """Load contract ABI from JSON file."""
    with open(ABI_PATH) as f:
        data = json.load(f)
    return data.get("abi", data)


CONTRACT_ABI = _load_abi()

# Offline instance: codec only, no provider calls
_W3 = Web3()


def factory_contract(address: Optional[str] = None) -> Contract:
    """ConsentFactory contract object, optionally bound to a deployment."""
    if address is None:
        return _W3.eth.contract(abi=CONTRACT_ABI)
    return _W3.eth.contract(address=to_checksum_address(address), abi=CONTRACT_ABI)


FACTORY = factory_contract()


def _abi_entry(name: str, kind: str) -> Dict[str, Any]:
    for entry in CONTRACT_ABI:
        if entry.get("type") == kind and entry.get("name") == name:
            return entry
    raise KeyError(f"{kind} {name} not in ConsentFactory ABI")


def function_selector(name: str) -> bytes:
    """First 4 bytes of keccak(signature)."""
    return function_abi_to_4byte_selector(_abi_entry(name, "function"))


def event_topic(name: str) -> bytes:
    """keccak(signature) of an event, i.e. its topics[0]."""
    return event_abi_to_log_topic(_abi_entry(name, "event"))


CONSENT_CREATED_TOPIC = event_topic("ConsentCreated")


class UnlockMode(IntEnum):
    """Unlock mode enumeration (matches Solidity enum)."""
    ONE_SHOT = 0   # single unlock after approval
    WINDOWED = 1   # unlocked for unlock_window seconds
    SCHEDULED = 2  # unlock at a scheduled time


# =============================================================================
# Value Normalization
# =============================================================================

_HEX_RE = re.compile(r"^[0-9a-fA-F]*$")

UINT8_MAX = 2 ** 8 - 1
UINT256_MAX = 2 ** 256 - 1


def normalize_bytes32(value: Union[str, bytes, bytearray]) -> bytes:
    """
    Coerce a hash to exactly 32 bytes.

    Hex strings (with or without 0x) are left-padded with '0' to 64 digits
    and cut to the first 64. Byte strings are left-padded with zero bytes
    and cut to the first 32.

    Raises:
        ValidationError: Not hex / not bytes
    """
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).rjust(32, b"\x00")[:32]

    if not isinstance(value, str):
        raise ValidationError(f"Cannot convert {type(value).__name__} to bytes32")

    clean = value[2:] if value.startswith(("0x", "0X")) else value
    if not _HEX_RE.match(clean):
        raise ValidationError(f"Not a hex string: {value!r}")
    return bytes.fromhex(clean.rjust(64, "0")[:64])


def to_bytes(value: Union[str, bytes, bytearray]) -> bytes:
    """Hex string or bytes-like (HexBytes included) to bytes."""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    clean = value[2:] if value.startswith(("0x", "0X")) else value
    return bytes.fromhex(clean)


def to_hex(value: Union[str, bytes, bytearray]) -> str:
    """0x-prefixed lowercase hex."""
    if isinstance(value, str):
        return value.lower() if value.startswith("0x") else "0x" + value.lower()
    return "0x" + bytes(value).hex()


def checksum(address: str, field: str = "address") -> str:
    if not isinstance(address, str) or not is_address(address):
        raise ValidationError(f"Invalid address: {address!r}", field=field)
    return to_checksum_address(address)




# =============================================================================
# Calldata
# =============================================================================

def encode_create_consent(
    hashes: Sequence[Union[str, bytes]],
    coercion_level: int,
    counterparty: str,
    unlock_mode: int,
    unlock_window: int = 0,
) -> bytes:
    """
    Calldata for createConsent.

    Args:
        hashes: voice, face, device, geo, utc hashes (hex or bytes)
        coercion_level: 0-2
        counterparty: Counterparty wallet address
        unlock_mode: UnlockMode value
        unlock_window: Seconds, 0 when unused

    Returns:
        selector || abi.encode(args)
    """
    if len(hashes) != 5:
        raise ValidationError(f"Expected 5 content hashes, got {len(hashes)}", field="hashes")
    if not 0 <= int(coercion_level) <= UINT8_MAX:
        raise ValidationError("coercion_level out of uint8 range", field="coercion_level")
    if not 0 <= int(unlock_mode) <= UINT8_MAX:
        raise ValidationError("unlock_mode out of uint8 range", field="unlock_mode")
    if not 0 <= int(unlock_window) <= UINT256_MAX:
        raise ValidationError("unlock_window out of uint256 range", field="unlock_window")

    args = [normalize_bytes32(h) for h in hashes] + [
        int(coercion_level),
        checksum(counterparty, "counterparty"),
        int(unlock_mode),
        int(unlock_window),
    ]
    return to_bytes(FACTORY.encode_abi("createConsent", args=args))


def _encode_consent_id_call(name: str, consent_id: int) -> bytes:
    if not 0 <= int(consent_id) <= UINT256_MAX:
        raise ValidationError("consent_id out of uint256 range", field="consent_id")
    return to_bytes(FACTORY.encode_abi(name, args=[int(consent_id)]))


def encode_request_unlock(consent_id: int) -> bytes:
    return _encode_consent_id_call("requestUnlock", consent_id)


def encode_approve_unlock(consent_id: int) -> bytes:
    return _encode_consent_id_call("approveUnlock", consent_id)


@dataclass(frozen=True)
class DecodedCall:
    """Calldata split into function name and arguments."""
    name: str
    args: tuple


def decode_call(data: Union[str, bytes]) -> DecodedCall:
    """Decode ConsentFactory calldata (used by MockChain)."""
    raw = to_bytes(data)
    try:
        func = FACTORY.get_function_by_selector(raw[:4])
    except ValueError as e:
        raise ValidationError(f"Unknown selector 0x{raw[:4].hex()}") from e
    _, params = FACTORY.decode_function_input(raw)
    return DecodedCall(
        name=func.abi["name"],
        args=tuple(params[arg["name"]] for arg in func.abi["inputs"]),
    )


# =============================================================================
# Events
# =============================================================================

@dataclass(frozen=True)
class ConsentCreatedEvent:
    """Decoded ConsentCreated log."""
    consent_id: int
    party1: str
    party2: str
    address: str


def encode_consent_created_log(
    factory: str,
    consent_id: int,
    party1: str,
    party2: str,
) -> Dict[str, Any]:
    """Build the log entry the factory emits (receipt log shape)."""
    codec = _W3.codec
    return {
        "address": to_checksum_address(factory),
        "topics": [
            CONSENT_CREATED_TOPIC,
            codec.encode(["uint256"], [consent_id]),
            codec.encode(["address"], [to_checksum_address(party1)]),
            codec.encode(["address"], [to_checksum_address(party2)]),
        ],
        "data": b"",
    }


# Receipt position fields web3's log processing reads
_LOG_POSITION_DEFAULTS = {
    "logIndex": 0,
    "transactionIndex": 0,
    "transactionHash": HexBytes(b"\x00" * 32),
    "blockHash": HexBytes(b"\x00" * 32),
    "blockNumber": 0,
}


def decode_consent_created(log: Mapping[str, Any]) -> Optional[ConsentCreatedEvent]:
    """
    Decode one receipt log.

    Returns:
        ConsentCreatedEvent, or None if the log is a different event

    Raises:
        eth_abi DecodingError: Topic payloads are not valid ABI words
    """
    entry = dict(_LOG_POSITION_DEFAULTS)
    entry.update(log)
    entry["topics"] = [HexBytes(to_bytes(t)) for t in log.get("topics", [])]
    entry["data"] = HexBytes(to_bytes(log.get("data", b"")))

    try:
        decoded = FACTORY.events.ConsentCreated().process_log(entry)
    except (MismatchedABI, LogTopicError):
        return None

    args = decoded["args"]
    return ConsentCreatedEvent(
        consent_id=args["consentId"],
        party1=to_checksum_address(args["party1"]),
        party2=to_checksum_address(args["party2"]),
        address=to_checksum_address(log["address"]),
    )


def find_consent_created(
    logs: Iterable[Mapping[str, Any]],
    factory: str,
) -> Optional[ConsentCreatedEvent]:
    """First ConsentCreated emitted by `factory` in a receipt's logs."""
    factory = factory.lower()
    for log in logs:
        if str(log.get("address", "")).lower() != factory:
            continue
        event = decode_consent_created(log)
        if event is not None:
            return event
    return None


def fallback_consent_id(tx_hash: Union[str, bytes]) -> int:
    """
    Pseudo-identifier from the first 8 bytes of the transaction hash.

    Not the on-chain id; only used when no event could be decoded.
    """
    raw = to_bytes(tx_hash)
    if len(raw) < 8:
        raise ValidationError(f"Transaction hash too short: {to_hex(raw)}")
    return int.from_bytes(raw[:8], "big")
