# echoid/errors.py
"""
EchoID Core: Error Types

Every failure the core surfaces to its callers. UI layers alert on these
types; the ledger and state machine raise them at their boundaries after
translating lower-level web3 / aiohttp / PyNaCl exceptions.

Hierarchy:
    EchoIDError
    ├── ValidationError
    ├── InsufficientBalance
    ├── LedgerError
    │   ├── TransactionReverted
    │   ├── BroadcastRejected
    │   ├── EventDecodingFailure
    │   └── TransientLedgerError
    │       ├── NetworkError
    │       └── TransactionTimeout
    ├── SignerError
    │   └── SignatureRejected
    ├── AuthenticationFailure
    ├── KeyUnavailable
    ├── UnlockError
    │   ├── ConsentLocked
    │   ├── InvalidTransition
    │   └── SameAddressError
    └── OperationInFlight
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class EchoIDError(Exception):
    """Base error for the EchoID core."""
    retryable: bool = False


# =============================================================================
# Input / Preflight
# =============================================================================

class ValidationError(EchoIDError):
    """Missing or malformed consent data. User-correctable."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


class InsufficientBalance(EchoIDError):
    """Balance does not cover protocol fee plus estimated gas."""

    def __init__(
        self,
        balance: int,
        required_total: int,
        fee_wei: int,
        gas_estimate: int,
        gas_price: int,
    ):
        self.balance = balance
        self.required_total = required_total
        self.fee_wei = fee_wei
        self.gas_estimate = gas_estimate
        self.gas_price = gas_price
        super().__init__(
            f"Insufficient balance: have {balance} wei, need {required_total} wei "
            f"(fee {fee_wei} + gas {gas_estimate} x {gas_price}), "
            f"short {self.shortfall} wei"
        )

    @property
    def shortfall(self) -> int:
        return self.required_total - self.balance

    @property
    def breakdown(self) -> Dict[str, int]:
        return {
            "balance": self.balance,
            "fee_wei": self.fee_wei,
            "gas_estimate": self.gas_estimate,
            "gas_price": self.gas_price,
            "gas_cost": self.gas_estimate * self.gas_price,
            "required_total": self.required_total,
            "shortfall": self.shortfall,
        }


# =============================================================================
# Ledger
# =============================================================================

class LedgerError(EchoIDError):
    """Base error for consent ledger operations."""
    pass


class TransactionReverted(LedgerError):
    """Transaction mined with status 0. Terminal for this attempt."""

    def __init__(self, tx_hash: str, reason: Optional[str] = None):
        self.tx_hash = tx_hash
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(f"Transaction reverted {tx_hash}{detail}")


class BroadcastRejected(LedgerError):
    """Node refused the transaction at submission (e.g. insufficient funds)."""
    pass


class EventDecodingFailure(LedgerError):
    """Receipt succeeded but no ConsentCreated event could be decoded."""

    def __init__(self, tx_hash: str, detail: str = ""):
        self.tx_hash = tx_hash
        self.detail = detail
        super().__init__(
            f"No ConsentCreated event decoded from {tx_hash}"
            + (f" ({detail})" if detail else "")
        )


class TransientLedgerError(LedgerError):
    """Network-level failure; the caller may retry."""
    retryable = True


class NetworkError(TransientLedgerError):
    """RPC endpoint unreachable or returned a transport error."""
    pass


class TransactionTimeout(TransientLedgerError):
    """Receipt not available within the wait budget."""

    def __init__(self, tx_hash: str, timeout: float):
        self.tx_hash = tx_hash
        self.timeout = timeout
        super().__init__(f"No receipt for {tx_hash} after {timeout:.0f}s")


# =============================================================================
# Signing
# =============================================================================

class SignerError(EchoIDError):
    """Signer could not produce a signature or transaction hash."""
    pass


class SignatureRejected(SignerError):
    """User rejected the request in the external wallet."""
    pass


# =============================================================================
# Crypto
# =============================================================================

class AuthenticationFailure(EchoIDError):
    """AEAD tag mismatch on decrypt."""
    pass


class KeyUnavailable(EchoIDError):
    """Counterparty device public key could not be resolved."""

    def __init__(self, subject: str, cause: Any = None):
        self.subject = subject
        self.cause = cause
        super().__init__(f"Device public key unavailable for {subject}")


# =============================================================================
# Unlock State Machine
# =============================================================================

class UnlockError(EchoIDError):
    """Base error for rejected unlock transitions."""
    pass


class ConsentLocked(UnlockError):
    """Unlock action attempted before lockedUntil."""

    def __init__(self, consent_id: str, locked_until: int, now: int):
        self.consent_id = consent_id
        self.locked_until = locked_until
        self.now = now
        super().__init__(
            f"Consent {consent_id} is locked for another {locked_until - now} ms"
        )


class InvalidTransition(UnlockError):
    """Action not valid from the consent's current state."""

    def __init__(self, consent_id: str, state: str, action: str):
        self.consent_id = consent_id
        self.state = state
        self.action = action
        super().__init__(f"Cannot {action} consent {consent_id} in state {state}")


class SameAddressError(UnlockError):
    """Approver is the same address that requested the unlock."""

    def __init__(self, consent_id: str, address: str):
        self.consent_id = consent_id
        self.address = address
        super().__init__(
            f"Address {address} requested unlock of {consent_id} and cannot approve it"
        )


class OperationInFlight(EchoIDError):
    """A mutating operation for the same key has not finished yet."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Operation already in flight for {key}")
