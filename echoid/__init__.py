# echoid/__init__.py
"""
EchoID Core: Attested Bilateral Consent

Tracks a consent from creation through the 24h cooling-off lock to a
mutual-approval unlock, and provides an end-to-end encrypted chat keyed
off the same material.

Architecture:
    ┌─────────────────────────────────────────────────────────┐
    │  echoid                                                 │
    │  ├── crypto/       # keccak hashes, chat keys, AEAD     │
    │  ├── ledger/       # ConsentFactory codec, chain,       │
    │  │                 # preflight, ledger client           │
    │  ├── signers/      # local key / WalletConnect          │
    │  ├── consent/      # model, templates, coercion,        │
    │  │                 # unlock state machine, service      │
    │  ├── registry/     # handle -> wallet + device key      │
    │  ├── storage/      # encrypted messages, app state      │
    │  ├── messaging/    # chat sessions                      │
    │  ├── config.py     # Settings from ECHOID_* env         │
    │  └── errors.py     # typed error hierarchy              │
    └─────────────────────────────────────────────────────────┘
"""

__version__ = "0.1.0"

from .config import Settings, configure_logging, format_fee
from .errors import (
    EchoIDError,
    ValidationError,
    InsufficientBalance,
    LedgerError,
    TransactionReverted,
    BroadcastRejected,
    EventDecodingFailure,
    TransientLedgerError,
    NetworkError,
    TransactionTimeout,
    SignerError,
    SignatureRejected,
    AuthenticationFailure,
    KeyUnavailable,
    UnlockError,
    ConsentLocked,
    InvalidTransition,
    SameAddressError,
    OperationInFlight,
)

from .crypto import (
    ContentHashes,
    DeviceKeypair,
    SessionKey,
    SessionStrength,
    decrypt,
    derive_chat_key,
    encrypt,
    establish_session_key,
    hash_bytes,
)

from .ledger import (
    BalancePreflight,
    ConsentLedgerClient,
    ConsentParams,
    CreatedConsent,
    MockChain,
    UnlockMode,
    Web3Chain,
)

from .signers import LocalKeySigner, MockSessionClient, WalletConnectSigner

from .consent import (
    Consent,
    ConsentData,
    ConsentRequest,
    ConsentService,
    ConsentState,
    ConsentStatus,
    SingleFlight,
    UnlockStateMachine,
    current_state,
    parse_consent_request,
)

from .registry import CachingHandleResolver, HandleRecord, HttpHandleResolver, InMemoryHandleResolver
from .storage import EncryptedMessageStore, InMemoryRepository, JsonFileRepository
from .messaging import ChatSession, open_chat_session


__all__ = [
    "__version__",
    "Settings",
    "configure_logging",
    "format_fee",
    "EchoIDError",
    "ValidationError",
    "InsufficientBalance",
    "LedgerError",
    "TransactionReverted",
    "BroadcastRejected",
    "EventDecodingFailure",
    "TransientLedgerError",
    "NetworkError",
    "TransactionTimeout",
    "SignerError",
    "SignatureRejected",
    "AuthenticationFailure",
    "KeyUnavailable",
    "UnlockError",
    "ConsentLocked",
    "InvalidTransition",
    "SameAddressError",
    "OperationInFlight",
    "ContentHashes",
    "DeviceKeypair",
    "SessionKey",
    "SessionStrength",
    "decrypt",
    "derive_chat_key",
    "encrypt",
    "establish_session_key",
    "hash_bytes",
    "BalancePreflight",
    "ConsentLedgerClient",
    "ConsentParams",
    "CreatedConsent",
    "MockChain",
    "UnlockMode",
    "Web3Chain",
    "LocalKeySigner",
    "MockSessionClient",
    "WalletConnectSigner",
    "Consent",
    "ConsentData",
    "ConsentRequest",
    "ConsentService",
    "ConsentState",
    "ConsentStatus",
    "SingleFlight",
    "UnlockStateMachine",
    "current_state",
    "parse_consent_request",
    "CachingHandleResolver",
    "HandleRecord",
    "HttpHandleResolver",
    "InMemoryHandleResolver",
    "EncryptedMessageStore",
    "InMemoryRepository",
    "JsonFileRepository",
    "ChatSession",
    "open_chat_session",
]
