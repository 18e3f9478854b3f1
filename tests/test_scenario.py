# tests/test_scenario.py
"""
End-to-end: two parties create a consent, chat, wait out the lock and unlock.

Flow:
    Alice creates consent 42 with Bob (fee 0.001 ETH)
    -> Bob picks it up from Alice's confirmed transaction
    -> both open chat sessions and exchange a message
    -> unlock is refused until lockedUntil
    -> Alice requests, Bob approves
"""

import asyncio

import pytest

from echoid.config import LOCK_PERIOD_MS
from echoid.consent.service import ConsentService
from echoid.consent.state import ConsentState
from echoid.crypto.keys import DeviceKeypair
from echoid.errors import ConsentLocked, SameAddressError
from echoid.messaging.session import open_chat_session
from echoid.registry.resolver import HandleRecord, InMemoryHandleResolver
from echoid.storage.repository import InMemoryRepository

from conftest import FACTORY, FEE, T0


def test_consent_lifecycle(chain, alice_ledger, bob_ledger, alice, bob, clock, store):
    alice_device, bob_device = DeviceKeypair.generate(), DeviceKeypair.generate()
    resolver = InMemoryHandleResolver([
        HandleRecord("alice", alice.address, alice_device.public_key_b64()),
        HandleRecord("bob", bob.address, bob_device.public_key_b64()),
    ])
    alice_service = ConsentService(alice_ledger, InMemoryRepository(), fee_wei=FEE, clock=clock)
    bob_service = ConsentService(bob_ledger, InMemoryRepository(), fee_wei=FEE, clock=clock)

    # --- creation ---
    data = alice_service.prepare_consent_data(
        "sex-nda", b"voice", b"selfie", alice_device.public_key, 40.7128, -74.0060,
        counterparty_handle="bob",
    )
    factory_before = chain.balances.get(FACTORY.lower(), 0)
    mine = asyncio.run(alice_service.create_consent(data, counterparty=bob.address))

    assert mine.consent_id == 42
    assert mine.locked_until == T0 + LOCK_PERIOD_MS == T0 + 86_400_000
    assert chain.balances[FACTORY.lower()] - factory_before == FEE

    theirs = asyncio.run(bob_service.track_consent(mine.tx_hash, data, counterparty_handle="alice"))
    assert theirs.consent_id == 42
    assert theirs.counterparty == alice.address
    assert theirs.locked_until == mine.locked_until
    assert bob_service.list_consents() == [theirs]

    # --- chat ---
    alice_chat = asyncio.run(open_chat_session(mine, alice_device, resolver, store, alice.address))
    bob_chat = asyncio.run(open_chat_session(theirs, bob_device, resolver, store, bob.address))
    assert alice_chat.consent_id == bob_chat.consent_id == "42"

    alice_chat.send("hello")
    assert [m.text for m in bob_chat.messages()] == ["hello"]
    assert bob_chat.unread_count() == 1
    assert alice_chat.unread_count() == 0

    # --- lock ---
    clock.now = mine.locked_until - 1
    assert alice_service.unlocks.state_of(mine) is ConsentState.LOCKED
    with pytest.raises(ConsentLocked):
        asyncio.run(alice_service.request_unlock(mine.id))
    assert not mine.unlock_requested

    # --- unlock ---
    clock.now = mine.locked_until
    asyncio.run(alice_service.request_unlock(mine.id))
    with pytest.raises(SameAddressError):
        asyncio.run(alice_service.approve_unlock(mine.id))

    bob_service.record_remote_request(theirs.id, alice.address)
    asyncio.run(bob_service.approve_unlock(theirs.id))
    alice_service.record_remote_approval(mine.id, bob.address)

    assert chain.consents[42].unlock_approved
    assert alice_service.unlocks.state_of(mine) is ConsentState.UNLOCKED
    assert bob_service.unlocks.state_of(theirs) is ConsentState.UNLOCKED
