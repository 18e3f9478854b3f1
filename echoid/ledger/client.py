# echoid/ledger/client.py
"""
EchoID Ledger: ConsentLedgerClient

Creates consents and drives unlock transactions on the ConsentFactory.

Flow (createConsent):
    validate -> preflight -> encode -> signer.send_transaction
        -> wait_for_receipt -> status check -> decode ConsentCreated

If the receipt carries no decodable ConsentCreated event, the client
either fails (strict_event_decoding) or derives a pseudo id from the
transaction hash and marks the result unverified. The pseudo id is not
the on-chain id; callers must not treat it as one for unlock calls
without reconciling first.

Usage:
    client = ConsentLedgerClient(
        chain=Web3Chain(settings.rpc_url),
        signer=LocalKeySigner.from_keystore(path, password),
        factory_address=settings.factory_address,
        chain_id=settings.chain_id,
        preflight=BalancePreflight(chain),
    )
    created = await client.create_consent(params, fee_wei=10**15)
    await client.request_unlock(created.consent_id)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple, Union

from eth_abi.exceptions import DecodingError

from ..config import DEFAULT_GAS_ESTIMATE, Settings
from ..errors import (
    EventDecodingFailure,
    TransactionReverted,
    TransientLedgerError,
    ValidationError,
)
from ..signers.base import Signer, TxRequest
from .chain import Chain, Web3Chain
from .codec import (
    ConsentCreatedEvent,
    UnlockMode,
    checksum,
    encode_approve_unlock,
    encode_create_consent,
    encode_request_unlock,
    fallback_consent_id,
    find_consent_created,
    normalize_bytes32,
)
from .preflight import BalancePreflight


logger = logging.getLogger("echoid.ledger")

UNLOCK_GAS_LIMIT = 100_000
MAX_COERCION_LEVEL = 2


# =============================================================================
# Types
# =============================================================================

@dataclass
class ConsentParams:
    """
    Arguments of createConsent.

    Attributes:
        voice_hash, face_hash, device_hash, geo_hash, utc_hash:
            32-byte content hashes (hex or bytes)
        coercion_level: 0 (green) .. 2 (red)
        counterparty: Counterparty wallet address
        unlock_mode: ONE_SHOT / WINDOWED / SCHEDULED
        unlock_window: Seconds, for windowed unlock
    """
    voice_hash: Union[str, bytes]
    face_hash: Union[str, bytes]
    device_hash: Union[str, bytes]
    geo_hash: Union[str, bytes]
    utc_hash: Union[str, bytes]
    coercion_level: int
    counterparty: str
    unlock_mode: UnlockMode = UnlockMode.ONE_SHOT
    unlock_window: int = 0

    @property
    def hashes(self) -> Tuple[Union[str, bytes], ...]:
        return (self.voice_hash, self.face_hash, self.device_hash, self.geo_hash, self.utc_hash)

    def validate(self) -> None:
        """
        Raises:
            ValidationError: Any field malformed
        """
        names = ("voice_hash", "face_hash", "device_hash", "geo_hash", "utc_hash")
        for name, value in zip(names, self.hashes):
            if value is None or len(value) == 0:
                raise ValidationError(f"{name} is required", field=name)
            try:
                normalize_bytes32(value)
            except ValidationError as e:
                raise ValidationError(str(e), field=name) from e

        if not 0 <= int(self.coercion_level) <= MAX_COERCION_LEVEL:
            raise ValidationError(
                f"coercion_level must be 0-{MAX_COERCION_LEVEL}", field="coercion_level"
            )
        try:
            UnlockMode(int(self.unlock_mode))
        except ValueError as e:
            raise ValidationError(f"Unknown unlock mode {self.unlock_mode}", field="unlock_mode") from e
        if int(self.unlock_window) < 0:
            raise ValidationError("unlock_window must be >= 0", field="unlock_window")
        checksum(self.counterparty, "counterparty")


@dataclass(frozen=True)
class CreatedConsent:
    """Result of a confirmed createConsent."""
    consent_id: int
    party1: str
    party2: str
    tx_hash: str
    verified: bool = True
    created_at: Optional[int] = None  # block timestamp (ms), read path only


@dataclass(frozen=True)
class TxOutcome:
    """Confirmed unlock transaction."""
    tx_hash: str
    block_number: int
    sender: str


# =============================================================================
# Client
# =============================================================================

class ConsentLedgerClient:
    """ConsentFactory client bound to one signer."""

    def __init__(
        self,
        chain: Chain,
        signer: Signer,
        factory_address: str,
        chain_id: int,
        preflight: Optional[BalancePreflight] = None,
        receipt_timeout: float = 120.0,
        poll_latency: float = 2.0,
        strict_event_decoding: bool = False,
        gas_limit: int = DEFAULT_GAS_ESTIMATE,
    ):
        """
        Args:
            chain: Chain access
            signer: Wallet authorizing transactions
            factory_address: Deployed ConsentFactory
            chain_id: Expected chain id
            preflight: Balance check run before createConsent (skipped if None)
            receipt_timeout: Seconds to wait for each receipt
            poll_latency: Seconds between receipt polls
            strict_event_decoding: Raise EventDecodingFailure instead of
                falling back to a pseudo id
            gas_limit: Gas limit for createConsent
        """
        self.chain = chain
        self.signer = signer
        self.factory_address = checksum(factory_address, "factory_address")
        self.chain_id = chain_id
        self.preflight = preflight
        self.receipt_timeout = receipt_timeout
        self.poll_latency = poll_latency
        self.strict_event_decoding = strict_event_decoding
        self.gas_limit = gas_limit

    @classmethod
    def from_settings(cls, settings: Settings, signer: Signer) -> "ConsentLedgerClient":
        """Client on a Web3Chain configured from Settings."""
        chain = Web3Chain(settings.rpc_url)
        return cls(
            chain=chain,
            signer=signer,
            factory_address=settings.factory_address,
            chain_id=settings.chain_id,
            preflight=BalancePreflight(chain, settings.gas_estimate),
            receipt_timeout=settings.receipt_timeout,
            poll_latency=settings.poll_latency,
            strict_event_decoding=settings.strict_event_decoding,
            gas_limit=settings.gas_estimate,
        )

    @property
    def address(self) -> str:
        return self.signer.address

    # =========================================================================
    # Internals
    # =========================================================================

    async def _confirm(self, tx_hash: str) -> Dict[str, Any]:
        receipt = await self.chain.wait_for_receipt(
            tx_hash, timeout=self.receipt_timeout, poll_latency=self.poll_latency
        )
        if receipt["status"] != 1:
            try:
                reason = await self.chain.get_revert_reason(tx_hash)
            except TransientLedgerError as e:
                logger.warning("Revert reason lookup failed for %s: %s", tx_hash, e)
                reason = None
            logger.warning("Transaction %s reverted: %s", tx_hash, reason or "no reason")
            raise TransactionReverted(tx_hash, reason)
        return receipt

    async def _send(self, data: bytes, value: int, gas: int) -> Tuple[str, Dict[str, Any]]:
        request = TxRequest(to=self.factory_address, data=data, value=value, gas=gas)
        tx_hash = await self.signer.send_transaction(request, self.chain)
        logger.info("Submitted %s via %s signer", tx_hash, self.signer.kind.value)
        return tx_hash, await self._confirm(tx_hash)

    def _find_event(self, receipt: Dict[str, Any]) -> Tuple[Optional[ConsentCreatedEvent], str]:
        try:
            event = find_consent_created(receipt["logs"], self.factory_address)
        except (DecodingError, ValueError) as e:
            return None, f"malformed ConsentCreated log: {e}"
        return event, "no ConsentCreated log from factory"

    # =========================================================================
    # Operations
    # =========================================================================

    async def create_consent(self, params: ConsentParams, fee_wei: int) -> CreatedConsent:
        """
        Create a consent on-chain.

        Args:
            params: createConsent arguments
            fee_wei: Protocol fee sent as value

        Returns:
            CreatedConsent; verified is False when the id is the pseudo id

        Raises:
            ValidationError: Bad params (nothing submitted)
            InsufficientBalance: Preflight failed (signer never invoked)
            SignatureRejected: User declined
            BroadcastRejected: Node refused the transaction
            TransactionReverted: Mined with status 0
            TransactionTimeout / NetworkError: Transient, retryable
            EventDecodingFailure: No event and strict_event_decoding set
        """
        params.validate()
        if fee_wei < 0:
            raise ValidationError("fee_wei must be >= 0", field="fee_wei")
        sender = self.signer.address
        counterparty = checksum(params.counterparty, "counterparty")
        if counterparty == sender:
            raise ValidationError("Counterparty must differ from sender", field="counterparty")

        if self.preflight is not None:
            await self.preflight.check(sender, fee_wei)

        data = encode_create_consent(
            params.hashes,
            params.coercion_level,
            counterparty,
            params.unlock_mode,
            params.unlock_window,
        )
        tx_hash, receipt = await self._send(data, fee_wei, self.gas_limit)
        event, detail = self._find_event(receipt)

        if event is not None:
            logger.info("Consent %d created in %s", event.consent_id, tx_hash)
            return CreatedConsent(
                consent_id=event.consent_id,
                party1=event.party1,
                party2=event.party2,
                tx_hash=tx_hash,
                verified=True,
            )

        if self.strict_event_decoding:
            raise EventDecodingFailure(tx_hash, detail)

        consent_id = fallback_consent_id(tx_hash)
        logger.error(
            "Event decoding failed for %s (%s); using unverified pseudo id %d",
            tx_hash,
            detail,
            consent_id,
        )
        return CreatedConsent(
            consent_id=consent_id,
            party1=sender,
            party2=counterparty,
            tx_hash=tx_hash,
            verified=False,
        )

    async def read_consent_created(self, tx_hash: str) -> CreatedConsent:
        """
        Confirmed ConsentCreated of a createConsent someone else sent.

        Lets the counterparty start tracking a consent. Unlike
        create_consent there is no pseudo id: a receipt without a
        decodable event from the factory is refused.

        Raises:
            TransactionReverted: Mined with status 0
            TransactionTimeout / NetworkError: Transient, retryable
            EventDecodingFailure: No ConsentCreated from the factory
        """
        receipt = await self._confirm(tx_hash)
        event, detail = self._find_event(receipt)
        if event is None:
            raise EventDecodingFailure(tx_hash, detail)
        created_at = await self.chain.get_block_timestamp(receipt["blockNumber"])
        return CreatedConsent(
            consent_id=event.consent_id,
            party1=event.party1,
            party2=event.party2,
            tx_hash=tx_hash,
            verified=True,
            created_at=created_at,
        )

    async def request_unlock(self, consent_id: int) -> TxOutcome:
        """Submit requestUnlock and wait for the confirmed receipt."""
        tx_hash, receipt = await self._send(encode_request_unlock(consent_id), 0, UNLOCK_GAS_LIMIT)
        return TxOutcome(tx_hash, receipt["blockNumber"], self.signer.address)

    async def approve_unlock(self, consent_id: int) -> TxOutcome:
        """Submit approveUnlock and wait for the confirmed receipt."""
        tx_hash, receipt = await self._send(encode_approve_unlock(consent_id), 0, UNLOCK_GAS_LIMIT)
        return TxOutcome(tx_hash, receipt["blockNumber"], self.signer.address)
