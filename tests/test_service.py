# tests/test_service.py
"""
ConsentService tests.

Categories:
1. Capture and creation
2. Incoming requests
3. Unlock through the service
4. Single-flight
5. Counterparty tracking
"""

import asyncio

import pytest

from echoid.consent.coercion import AudioAnalysis, CoercionLevel
from echoid.consent.service import ConsentService
from echoid.consent.state import ConsentState
from echoid.crypto.hashing import compute_utc_hash
from echoid.errors import (
    ConsentLocked,
    EventDecodingFailure,
    InsufficientBalance,
    InvalidTransition,
    OperationInFlight,
    TransactionReverted,
    ValidationError,
)
from echoid.ledger.chain import MockChain
from echoid.ledger.codec import UnlockMode
from echoid.signers.local import LocalKeySigner
from echoid.storage.repository import InMemoryRepository, JsonFileRepository

from conftest import FACTORY, FEE, T0, make_ledger


class SlowChain(MockChain):
    """Yields to the event loop before every receipt."""

    async def wait_for_receipt(self, tx_hash, timeout=120.0, poll_latency=2.0):
        await asyncio.sleep(0)
        return await super().wait_for_receipt(tx_hash, timeout, poll_latency)


def _service(ledger, clock, repository=None):
    return ConsentService(ledger, repository or InMemoryRepository(), fee_wei=FEE, clock=clock)


def _capture(service, **kwargs):
    return service.prepare_consent_data(
        template=kwargs.pop("template", "nda"),
        audio_bytes=b"voice",
        image_bytes=b"selfie",
        device_pubkey=b"\x01" * 32,
        latitude=37.7749,
        longitude=-122.4194,
        **kwargs,
    )


def _raw_request(data, from_address, request_id="req_1"):
    return {
        "id": request_id,
        "fromHandle": "carol",
        "fromAddress": from_address,
        "template": data.template,
        "requestedAt": T0,
        "consentData": data.to_dict(),
    }


# =============================================================================
# 1. Creation
# =============================================================================

def test_prepare_consent_data(alice_ledger, clock):
    service = _service(alice_ledger, clock)
    data = _capture(
        service,
        audio_analysis=AudioAnalysis(duration=3, pause_count=0, avg_pause_length=0, speaking_rate=100),
    )
    assert data.coercion_level is CoercionLevel.AMBER
    assert data.unlock_mode is UnlockMode.WINDOWED
    assert data.unlock_window == 3600
    assert data.hashes.utc == compute_utc_hash(T0)


def test_prepare_requires_captures(alice_ledger, clock):
    service = _service(alice_ledger, clock)
    with pytest.raises(ValidationError):
        service.prepare_consent_data("nda", b"", b"selfie", b"k", 0, 0)


def test_create_consent_stores_record(tmp_path, alice_ledger, bob, clock):
    repo = JsonFileRepository(tmp_path / "state.json")
    service = _service(alice_ledger, clock, repo)
    data = _capture(service, counterparty_handle="bob")

    consent = asyncio.run(service.create_consent(data, counterparty=bob.address))

    assert consent.consent_id == 42
    assert consent.counterparty == bob.address
    assert consent.counterparty_handle == "bob"
    assert consent.locked_until == T0 + 24 * 60 * 60 * 1000
    assert consent.consent_id_verified
    assert service.get_consent(consent.id) is consent
    assert repo.load().consents[0].consent_id == 42


def test_failed_creation_stores_nothing(chain, alice_ledger, bob, clock):
    service = _service(alice_ledger, clock)
    data = _capture(service)
    chain.revert_next("nope")
    with pytest.raises(TransactionReverted):
        asyncio.run(service.create_consent(data, counterparty=bob.address))
    assert service.list_consents() == []


def test_insufficient_balance_stores_nothing(chain, alice, alice_ledger, bob, clock):
    chain.balances[alice.address.lower()] = 0
    service = _service(alice_ledger, clock)
    with pytest.raises(InsufficientBalance):
        asyncio.run(service.create_consent(_capture(service), counterparty=bob.address))
    assert service.list_consents() == []


def test_counterparty_required(alice_ledger, clock):
    service = _service(alice_ledger, clock)
    with pytest.raises(ValidationError):
        asyncio.run(service.create_consent(_capture(service)))


def test_unknown_consent(alice_ledger, clock):
    with pytest.raises(ValidationError):
        _service(alice_ledger, clock).get_consent("consent_missing")


# =============================================================================
# 2. Requests
# =============================================================================

def test_accept_request(bob_ledger, alice, clock):
    service = _service(bob_ledger, clock)
    data = _capture(service, template="creative")
    request = service.receive_request(_raw_request(data, alice.address))
    assert service.list_requests() == [request]

    consent = asyncio.run(service.accept_request(request.id))
    assert consent.counterparty == alice.address
    assert consent.counterparty_handle == "carol"
    assert consent.template == "creative"
    assert consent.unlock_mode is UnlockMode.WINDOWED
    assert service.list_requests() == []


def test_failed_accept_keeps_request(chain, bob_ledger, alice, clock):
    service = _service(bob_ledger, clock)
    request = service.receive_request(_raw_request(_capture(service), alice.address))
    chain.revert_next()
    with pytest.raises(TransactionReverted):
        asyncio.run(service.accept_request(request.id))
    assert service.list_requests() == [request]
    assert service.list_consents() == []


def test_reject_request(bob_ledger, alice, clock):
    service = _service(bob_ledger, clock)
    request = service.receive_request(_raw_request(_capture(service), alice.address))
    assert service.reject_request(request.id) is request
    with pytest.raises(ValidationError):
        service.reject_request(request.id)


def test_invalid_request_not_stored(bob_ledger, clock):
    service = _service(bob_ledger, clock)
    with pytest.raises(ValidationError):
        service.receive_request({"template": "nda", "fromAddress": "bogus", "consentData": {}})
    assert service.list_requests() == []


# =============================================================================
# 3. Unlock
# =============================================================================

def test_unlock_flow(alice_ledger, bob_ledger, alice, bob, clock):
    alice_service = _service(alice_ledger, clock)
    bob_service = _service(bob_ledger, clock)

    data = _capture(alice_service)
    mine = asyncio.run(alice_service.create_consent(data, counterparty=bob.address))
    theirs = asyncio.run(bob_service.track_consent(mine.tx_hash, data))

    clock.now = mine.locked_until - 1
    with pytest.raises(ConsentLocked):
        asyncio.run(alice_service.request_unlock(mine.id))

    clock.now = mine.locked_until
    asyncio.run(alice_service.request_unlock(mine.id))
    assert alice_service.unlocks.state_of(mine) is ConsentState.REQUEST_PENDING

    bob_service.record_remote_request(theirs.id, alice.address)
    asyncio.run(bob_service.approve_unlock(theirs.id))
    assert theirs.is_unlocked

    alice_service.record_remote_approval(mine.id, bob.address)
    assert alice_service.unlocks.state_of(mine) is ConsentState.UNLOCKED
    with pytest.raises(InvalidTransition):
        asyncio.run(alice_service.approve_unlock(mine.id))


# =============================================================================
# 4. Single-flight
# =============================================================================

def test_concurrent_accept_rejected(clock, alice, bob):
    chain = SlowChain(FACTORY, next_consent_id=42, clock=clock)
    chain.fund(bob.address, 10 ** 18)
    service = _service(make_ledger(chain, bob), clock)
    request = service.receive_request(_raw_request(_capture(service), alice.address))

    async def run():
        return await asyncio.gather(
            service.accept_request(request.id),
            service.accept_request(request.id),
            return_exceptions=True,
        )

    first, second = asyncio.run(run())
    assert first.consent_id == 42
    assert isinstance(second, OperationInFlight)
    assert len(service.list_consents()) == 1
    assert len(chain.consents) == 1


def test_concurrent_create_with_same_counterparty(clock, alice, bob):
    chain = SlowChain(FACTORY, next_consent_id=42, clock=clock)
    chain.fund(alice.address, 10 ** 18)
    service = _service(make_ledger(chain, alice), clock)
    data = _capture(service)

    async def run():
        return await asyncio.gather(
            service.create_consent(data, counterparty=bob.address),
            service.create_consent(data, counterparty=bob.address.lower()),
            return_exceptions=True,
        )

    first, second = asyncio.run(run())
    assert first.consent_id == 42
    assert isinstance(second, OperationInFlight)


# =============================================================================
# 5. Counterparty tracking
# =============================================================================

def _created_by_alice(alice_ledger, clock, data, bob):
    return asyncio.run(_service(alice_ledger, clock).create_consent(data, counterparty=bob.address))


def test_track_consent_from_creation_tx(chain, alice_ledger, bob_ledger, alice, bob, clock):
    data = _capture(_service(alice_ledger, clock), template="creative")
    mine = _created_by_alice(alice_ledger, clock, data, bob)
    clock.advance(5_000)

    repository = InMemoryRepository()
    theirs = asyncio.run(_service(bob_ledger, clock, repository).track_consent(mine.tx_hash, data, "alice"))

    assert theirs.consent_id == 42
    assert theirs.consent_id_verified
    assert theirs.counterparty == alice.address
    assert theirs.counterparty_handle == "alice"
    assert theirs.template == "creative"
    assert theirs.created_at == T0
    assert theirs.locked_until == mine.locked_until
    assert theirs.voice_hash == mine.voice_hash
    assert repository.load().consents == [theirs]


def test_track_refuses_unverified_id(chain, alice_ledger, bob_ledger, bob, clock):
    chain.emit_events = False
    data = _capture(_service(alice_ledger, clock))
    mine = _created_by_alice(alice_ledger, clock, data, bob)
    assert not mine.consent_id_verified

    service = _service(bob_ledger, clock)
    with pytest.raises(EventDecodingFailure):
        asyncio.run(service.track_consent(mine.tx_hash, data))
    assert service.list_consents() == []


def test_track_refuses_non_party(chain, alice_ledger, bob, clock):
    data = _capture(_service(alice_ledger, clock))
    mine = _created_by_alice(alice_ledger, clock, data, bob)

    carol = LocalKeySigner("0x" + "33" * 32)
    service = _service(make_ledger(chain, carol, preflight=None), clock)
    with pytest.raises(ValidationError):
        asyncio.run(service.track_consent(mine.tx_hash, data))
    assert service.list_consents() == []


def test_track_twice_rejected(alice_ledger, bob_ledger, bob, clock):
    data = _capture(_service(alice_ledger, clock))
    mine = _created_by_alice(alice_ledger, clock, data, bob)

    service = _service(bob_ledger, clock)
    asyncio.run(service.track_consent(mine.tx_hash, data))
    with pytest.raises(ValidationError):
        asyncio.run(service.track_consent(mine.tx_hash, data))
    assert len(service.list_consents()) == 1


def test_track_reverted_creation(chain, alice_ledger, bob_ledger, bob, clock):
    chain.revert_next("nope")
    data = _capture(_service(alice_ledger, clock))
    with pytest.raises(TransactionReverted):
        _created_by_alice(alice_ledger, clock, data, bob)

    failed_tx = chain.transactions[-1]["hash"]
    service = _service(bob_ledger, clock)
    with pytest.raises(TransactionReverted):
        asyncio.run(service.track_consent(failed_tx, data))
    assert service.list_consents() == []
