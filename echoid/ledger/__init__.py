# echoid/ledger/__init__.py
"""
EchoID Ledger Layer

    codec:     ConsentFactory ABI encoding, ConsentCreated decoding
    chain:     Chain interface, Web3Chain, MockChain
    preflight: balance / fee check
    client:    ConsentLedgerClient
"""

from .codec import (
    CONSENT_CREATED_TOPIC,
    ConsentCreatedEvent,
    UnlockMode,
    decode_consent_created,
    encode_approve_unlock,
    encode_create_consent,
    encode_request_unlock,
    factory_contract,
    fallback_consent_id,
    find_consent_created,
    normalize_bytes32,
)
from .chain import Chain, MockChain, Web3Chain
from .preflight import BalancePreflight, PreflightReport, required_total
from .client import ConsentLedgerClient, ConsentParams, CreatedConsent, TxOutcome

__all__ = [
    "CONSENT_CREATED_TOPIC",
    "ConsentCreatedEvent",
    "UnlockMode",
    "decode_consent_created",
    "encode_approve_unlock",
    "encode_create_consent",
    "encode_request_unlock",
    "factory_contract",
    "fallback_consent_id",
    "find_consent_created",
    "normalize_bytes32",
    "Chain",
    "MockChain",
    "Web3Chain",
    "BalancePreflight",
    "PreflightReport",
    "required_total",
    "ConsentLedgerClient",
    "ConsentParams",
    "CreatedConsent",
    "TxOutcome",
]
