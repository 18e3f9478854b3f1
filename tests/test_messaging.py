# tests/test_messaging.py
"""Chat sessions: key resolution, weak fallback and message exchange."""

import asyncio
import logging

from echoid.consent.models import Consent
from echoid.crypto.keys import DeviceKeypair, derive_chat_key
from echoid.messaging.session import open_chat_session
from echoid.registry.resolver import HandleRecord, InMemoryHandleResolver

from conftest import T0


ALICE_ADDR = "0x" + "a1" * 20
BOB_ADDR = "0x" + "b2" * 20


def _consent(hashes, counterparty, handle=None):
    return Consent.new(42, counterparty, "nda", hashes, 0, created_at=T0, counterparty_handle=handle)


def _parties():
    alice, bob = DeviceKeypair.generate(), DeviceKeypair.generate()
    resolver = InMemoryHandleResolver([
        HandleRecord("alice", ALICE_ADDR, alice.public_key_b64()),
        HandleRecord("bob", BOB_ADDR, bob.public_key_b64()),
    ])
    return alice, bob, resolver


def test_both_parties_share_key(store, hashes):
    alice, bob, resolver = _parties()
    a = asyncio.run(open_chat_session(_consent(hashes, BOB_ADDR, "bob"), alice, resolver, store, ALICE_ADDR))
    b = asyncio.run(open_chat_session(_consent(hashes, ALICE_ADDR), bob, resolver, store, BOB_ADDR))

    assert not a.is_weak and not b.is_weak
    assert a.session_key.key == b.session_key.key == derive_chat_key(alice.public_key, bob.public_key, "42")

    a.send("hello")
    b.send("hi alice")
    assert [(m.sender, m.text) for m in b.messages()] == [(ALICE_ADDR, "hello"), (BOB_ADDR, "hi alice")]
    assert a.unread_count() == 1
    assert b.unread_count() == 1


def test_unknown_handle_falls_back_to_weak(store, hashes, caplog):
    alice, _, resolver = _parties()
    consent = _consent(hashes, BOB_ADDR, "mallory")
    with caplog.at_level(logging.WARNING):
        session = asyncio.run(open_chat_session(consent, alice, resolver, store, ALICE_ADDR))
    assert session.is_weak
    assert "WEAK" in caplog.text


def test_handle_registered_to_other_wallet_is_weak(store, hashes):
    alice, _, resolver = _parties()
    consent = _consent(hashes, "0x" + "c3" * 20, "bob")
    session = asyncio.run(open_chat_session(consent, alice, resolver, store, ALICE_ADDR))
    assert session.is_weak


def test_weak_session_still_reads_own_messages(store, hashes):
    alice, _, _ = _parties()
    session = asyncio.run(
        open_chat_session(_consent(hashes, BOB_ADDR), alice, InMemoryHandleResolver(), store, ALICE_ADDR)
    )
    session.send(b"note to self")
    assert [m.text for m in session.messages()] == ["note to self"]


def test_clear(store, hashes):
    alice, _, resolver = _parties()
    session = asyncio.run(open_chat_session(_consent(hashes, BOB_ADDR), alice, resolver, store, ALICE_ADDR))
    session.send("one")
    session.send("two")
    assert session.clear() == 2
    assert session.messages() == []
