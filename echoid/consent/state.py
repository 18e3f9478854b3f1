# echoid/consent/state.py
"""
EchoID Consent: Unlock State Machine

    LOCKED ──(now >= lockedUntil)──> UNLOCKABLE
    UNLOCKABLE ──request_unlock──> REQUEST_PENDING
    REQUEST_PENDING ──approve_unlock (other party)──> UNLOCKED

State is derived from the consent's flags and the clock, never stored.
Either unlock flag alone means REQUEST_PENDING; UNLOCKED needs isUnlocked,
which is only set together with both flags.
Flags change only after the corresponding transaction is confirmed; a
failed or rejected transaction leaves the consent untouched.

Pending requests do not expire.
"""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Callable, Optional

from ..errors import ConsentLocked, InvalidTransition, SameAddressError
from ..ledger.client import ConsentLedgerClient, TxOutcome
from .models import Consent


logger = logging.getLogger("echoid.consent")

Clock = Callable[[], int]


class ConsentState(Enum):
    LOCKED = "locked"
    UNLOCKABLE = "unlockable"
    REQUEST_PENDING = "request_pending"
    UNLOCKED = "unlocked"


def is_locked(consent: Consent, now_ms: int) -> bool:
    return now_ms < consent.locked_until


def current_state(consent: Consent, now_ms: int) -> ConsentState:
    if consent.is_unlocked:
        return ConsentState.UNLOCKED
    if is_locked(consent, now_ms):
        return ConsentState.LOCKED
    if consent.unlock_requested or consent.unlock_approved:
        return ConsentState.REQUEST_PENDING
    return ConsentState.UNLOCKABLE


def time_remaining(consent: Consent, now_ms: int) -> int:
    """ms until the lock expires (0 once unlockable)."""
    return max(0, consent.locked_until - now_ms)


def _same_address(a: Optional[str], b: Optional[str]) -> bool:
    return a is not None and b is not None and a.lower() == b.lower()


class UnlockStateMachine:
    """Drives unlock transitions through the ledger for one signer."""

    def __init__(self, ledger: ConsentLedgerClient, clock: Optional[Clock] = None):
        self.ledger = ledger
        self.clock = clock or (lambda: int(time.time() * 1000))

    def state_of(self, consent: Consent) -> ConsentState:
        return current_state(consent, self.clock())

    def _require(self, consent: Consent, expected: ConsentState, action: str) -> None:
        now = self.clock()
        state = current_state(consent, now)
        if state is ConsentState.LOCKED:
            raise ConsentLocked(consent.id, consent.locked_until, now)
        if state is not expected:
            raise InvalidTransition(consent.id, state.name, action)
        if not consent.consent_id_verified:
            # pseudo ids are not known to the factory
            raise InvalidTransition(consent.id, "UNVERIFIED_ID", action)

    async def request_unlock(self, consent: Consent) -> TxOutcome:
        """
        Raises:
            ConsentLocked: now < lockedUntil
            InvalidTransition: Not UNLOCKABLE
            LedgerError / SignerError: Transaction failed (consent unchanged)
        """
        self._require(consent, ConsentState.UNLOCKABLE, "request unlock")
        outcome = await self.ledger.request_unlock(consent.consent_id)
        consent.unlock_requested = True
        consent.unlock_requested_by = outcome.sender
        logger.info("Unlock requested for consent %s by %s", consent.consent_id, outcome.sender)
        return outcome

    async def approve_unlock(self, consent: Consent) -> TxOutcome:
        """
        Raises:
            ConsentLocked: now < lockedUntil
            InvalidTransition: No pending request
            SameAddressError: Signer issued the request
            LedgerError / SignerError: Transaction failed (consent unchanged)
        """
        self._require(consent, ConsentState.REQUEST_PENDING, "approve unlock")
        approver = self.ledger.address
        if _same_address(approver, consent.unlock_requested_by):
            raise SameAddressError(consent.id, approver)
        outcome = await self.ledger.approve_unlock(consent.consent_id)
        consent.unlock_approved = True
        consent.is_unlocked = True
        logger.info("Unlock approved for consent %s by %s", consent.consent_id, approver)
        return outcome

    def record_remote_request(self, consent: Consent, requested_by: str) -> None:
        """Apply a counterparty's unlock request already confirmed on-chain."""
        self._require(consent, ConsentState.UNLOCKABLE, "record unlock request")
        consent.unlock_requested = True
        consent.unlock_requested_by = requested_by

    def record_remote_approval(self, consent: Consent, approved_by: str) -> None:
        """Apply a counterparty's approval already confirmed on-chain."""
        self._require(consent, ConsentState.REQUEST_PENDING, "record unlock approval")
        if _same_address(approved_by, consent.unlock_requested_by):
            raise SameAddressError(consent.id, approved_by)
        consent.unlock_approved = True
        consent.is_unlocked = True
