# echoid/consent/service.py
"""
EchoID Consent: ConsentService

Orchestrates the consent lifecycle for the local user on top of the
ledger client, the unlock state machine and the state repository:

    capture buffers -> ConsentData -> create / accept -> Consent (active)
    counterparty: createConsent tx -> track_consent -> Consent (active)
    Consent -> request_unlock / approve_unlock

Nothing is persisted until the chain has confirmed the transaction, so a
failure anywhere between hashing and confirmation leaves the stored state
as it was. Mutating operations on the same consent or request are
single-flight.

Usage:
    service = ConsentService(ledger, JsonFileRepository(path), fee_wei=10**15)
    data = service.prepare_consent_data("nda", audio, image, device_pub, lat, lng)
    consent = await service.create_consent(data, counterparty="0xB...")
    await service.request_unlock(consent.id)
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any, List, Mapping, Optional

from ..config import DEFAULT_PROTOCOL_FEE_WEI
from ..crypto.hashing import ContentHashes
from ..errors import ValidationError
from ..ledger.client import ConsentLedgerClient, ConsentParams, CreatedConsent, TxOutcome
from ..ledger.codec import UnlockMode, checksum
from .coercion import AudioAnalysis, CoercionLevel, analyze_coercion
from .guard import SingleFlight
from .models import Consent, ConsentData, ConsentRequest, ConsentStatus, parse_consent_request
from .state import Clock, UnlockStateMachine

if TYPE_CHECKING:
    from ..storage.repository import AppState, StateRepository


logger = logging.getLogger("echoid.consent")


class ConsentService:
    """Consent lifecycle for one wallet."""

    def __init__(
        self,
        ledger: ConsentLedgerClient,
        repository: "StateRepository",
        fee_wei: int = DEFAULT_PROTOCOL_FEE_WEI,
        clock: Optional[Clock] = None,
        guard: Optional[SingleFlight] = None,
    ):
        self.ledger = ledger
        self.repository = repository
        self.fee_wei = fee_wei
        self.clock = clock or (lambda: int(time.time() * 1000))
        self.guard = guard or SingleFlight()
        self.unlocks = UnlockStateMachine(ledger, self.clock)
        self._state: Optional["AppState"] = None

    @property
    def state(self) -> "AppState":
        if self._state is None:
            self._state = self.repository.load()
        return self._state

    def _save(self) -> None:
        self.repository.save(self.state)

    # =========================================================================
    # Queries
    # =========================================================================

    def list_consents(self) -> List[Consent]:
        return list(self.state.consents)

    def get_consent(self, local_id: str) -> Consent:
        consent = self.state.get_consent(local_id)
        if consent is None:
            raise ValidationError(f"Unknown consent {local_id}", field="consent")
        return consent

    def list_requests(self) -> List[ConsentRequest]:
        return list(self.state.consent_requests)

    # =========================================================================
    # Creation
    # =========================================================================

    def prepare_consent_data(
        self,
        template: str,
        audio_bytes: bytes,
        image_bytes: bytes,
        device_pubkey: bytes,
        latitude: float,
        longitude: float,
        audio_analysis: Optional[AudioAnalysis] = None,
        unlock_mode: Optional[UnlockMode] = None,
        unlock_window: Optional[int] = None,
        counterparty_handle: Optional[str] = None,
        counterparty_address: Optional[str] = None,
        timestamp_ms: Optional[int] = None,
    ) -> ConsentData:
        """Hash the capture buffers and score the recording."""
        if not audio_bytes or not image_bytes:
            raise ValidationError("Voice and selfie captures are required", field="capture")
        hashes = ContentHashes.from_capture(
            audio_bytes,
            image_bytes,
            device_pubkey,
            latitude,
            longitude,
            timestamp_ms if timestamp_ms is not None else self.clock(),
        )
        level = analyze_coercion(audio_analysis) if audio_analysis else CoercionLevel.GREEN
        return ConsentData.from_hashes(
            template,
            hashes,
            coercion_level=level,
            unlock_mode=unlock_mode,
            unlock_window=unlock_window,
            counterparty_handle=counterparty_handle,
            counterparty_address=counterparty_address,
        )

    async def _create(
        self,
        data: ConsentData,
        counterparty: str,
        counterparty_handle: Optional[str],
    ) -> Consent:
        params = ConsentParams(
            voice_hash=data.voice_hash,
            face_hash=data.face_hash,
            device_hash=data.device_hash,
            geo_hash=data.geo_hash,
            utc_hash=data.utc_hash,
            coercion_level=int(data.coercion_level),
            counterparty=counterparty,
            unlock_mode=data.unlock_mode,
            unlock_window=data.unlock_window,
        )
        created: CreatedConsent = await self.ledger.create_consent(params, self.fee_wei)
        consent = Consent.new(
            consent_id=created.consent_id,
            counterparty=checksum(counterparty, "counterparty"),
            template=data.template,
            hashes=data.hashes,
            coercion_level=int(data.coercion_level),
            created_at=self.clock(),
            counterparty_handle=counterparty_handle,
            status=ConsentStatus.ACTIVE,
            consent_id_verified=created.verified,
            unlock_mode=data.unlock_mode,
            unlock_window=data.unlock_window,
            tx_hash=created.tx_hash,
        )
        self.state.add_consent(consent)
        return consent

    async def create_consent(
        self,
        data: ConsentData,
        counterparty: Optional[str] = None,
        counterparty_handle: Optional[str] = None,
    ) -> Consent:
        """
        Create a consent on-chain and store it.

        Raises:
            ValidationError / InsufficientBalance / LedgerError / SignerError
            OperationInFlight: Creation with this counterparty already running
        """
        counterparty = counterparty or data.counterparty_address
        if not counterparty:
            raise ValidationError("Counterparty address is required", field="counterparty")
        handle = counterparty_handle or data.counterparty_handle
        async with self.guard.hold(f"create:{counterparty.lower()}"):
            consent = await self._create(data, counterparty, handle)
            self._save()
        logger.info("Consent %s stored (on-chain id %d)", consent.id, consent.consent_id)
        return consent

    async def track_consent(
        self,
        tx_hash: str,
        data: ConsentData,
        counterparty_handle: Optional[str] = None,
    ) -> Consent:
        """
        Start tracking a consent the counterparty created.

        Id, parties and creation time come from the confirmed ConsentCreated
        event of `tx_hash`; `data` carries the hashes and terms both parties
        agreed on.

        Raises:
            EventDecodingFailure: Receipt has no verifiable ConsentCreated
            ValidationError: This wallet is not a party, or already tracked
            LedgerError: Transaction reverted or not confirmed
            OperationInFlight: Same transaction already being tracked
        """
        async with self.guard.hold(f"track:{tx_hash.lower()}"):
            created = await self.ledger.read_consent_created(tx_hash)
            me = self.ledger.address.lower()
            if me == created.party2.lower():
                counterparty = created.party1
            elif me == created.party1.lower():
                counterparty = created.party2
            else:
                raise ValidationError(
                    f"{self.ledger.address} is not a party to consent {created.consent_id}",
                    field="consent",
                )
            if any(c.consent_id == created.consent_id for c in self.state.consents):
                raise ValidationError(f"Consent {created.consent_id} already tracked", field="consent")

            consent = Consent.new(
                consent_id=created.consent_id,
                counterparty=counterparty,
                template=data.template,
                hashes=data.hashes,
                coercion_level=int(data.coercion_level),
                created_at=created.created_at,
                counterparty_handle=counterparty_handle,
                status=ConsentStatus.ACTIVE,
                consent_id_verified=True,
                unlock_mode=data.unlock_mode,
                unlock_window=data.unlock_window,
                tx_hash=created.tx_hash,
            )
            self.state.add_consent(consent)
            self._save()
        logger.info(
            "Tracking consent %s (on-chain id %d) created by %s",
            consent.id,
            consent.consent_id,
            counterparty,
        )
        return consent

    # =========================================================================
    # Requests
    # =========================================================================

    def receive_request(self, raw: Mapping[str, Any]) -> ConsentRequest:
        """Validate and store an incoming request."""
        request = parse_consent_request(raw)
        self.state.add_request(request)
        self._save()
        return request

    def _pending_request(self, request_id: str) -> ConsentRequest:
        request = self.state.get_request(request_id)
        if request is None:
            raise ValidationError(f"Unknown consent request {request_id}", field="request")
        return request

    async def accept_request(self, request_id: str) -> Consent:
        """
        Create the requested consent on-chain with the requester as
        counterparty; the request is removed once the consent is stored.
        """
        async with self.guard.hold(f"request:{request_id}"):
            request = self._pending_request(request_id)
            consent = await self._create(
                request.consent_data, request.from_address, request.from_handle
            )
            self.state.remove_request(request_id)
            self._save()
        logger.info("Accepted request %s as consent %s", request_id, consent.id)
        return consent

    def reject_request(self, request_id: str) -> ConsentRequest:
        if self.guard.is_busy(f"request:{request_id}"):
            raise ValidationError(f"Request {request_id} is being accepted", field="request")
        request = self._pending_request(request_id)
        self.state.remove_request(request_id)
        self._save()
        return request

    # =========================================================================
    # Unlock
    # =========================================================================

    async def request_unlock(self, local_id: str) -> TxOutcome:
        consent = self.get_consent(local_id)
        async with self.guard.hold(f"unlock:{local_id}"):
            outcome = await self.unlocks.request_unlock(consent)
            self._save()
        return outcome

    async def approve_unlock(self, local_id: str) -> TxOutcome:
        consent = self.get_consent(local_id)
        async with self.guard.hold(f"unlock:{local_id}"):
            outcome = await self.unlocks.approve_unlock(consent)
            self._save()
        return outcome

    def record_remote_request(self, local_id: str, requested_by: str) -> Consent:
        consent = self.get_consent(local_id)
        self.unlocks.record_remote_request(consent, requested_by)
        self._save()
        return consent

    def record_remote_approval(self, local_id: str, approved_by: str) -> Consent:
        consent = self.get_consent(local_id)
        self.unlocks.record_remote_approval(consent, approved_by)
        self._save()
        return consent
