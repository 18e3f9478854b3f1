# tests/conftest.py
"""Shared fixtures: a fake clock, two funded local wallets and a MockChain."""

from __future__ import annotations

import pytest
from eth_utils import to_checksum_address

from echoid.crypto.hashing import ContentHashes
from echoid.ledger.chain import MockChain
from echoid.ledger.client import ConsentLedgerClient
from echoid.ledger.preflight import BalancePreflight
from echoid.signers.local import LocalKeySigner
from echoid.storage.messages import EncryptedMessageStore


FACTORY = to_checksum_address("0x5fbdb2315678afecb367f032d93f642f64180aa3")
ALICE_KEY = "0x" + "11" * 32
BOB_KEY = "0x" + "22" * 32
T0 = 1_700_000_000_000
FEE = 10 ** 15


class FakeClock:
    """Settable ms clock."""

    def __init__(self, now: int = T0):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def alice():
    return LocalKeySigner(ALICE_KEY)


@pytest.fixture
def bob():
    return LocalKeySigner(BOB_KEY)


@pytest.fixture
def chain(clock, alice, bob):
    chain = MockChain(factory_address=FACTORY, next_consent_id=42, clock=clock)
    chain.fund(alice.address, 10 ** 18)
    chain.fund(bob.address, 10 ** 18)
    return chain


def make_ledger(chain, signer, **kwargs):
    kwargs.setdefault("preflight", BalancePreflight(chain))
    return ConsentLedgerClient(
        chain=chain,
        signer=signer,
        factory_address=FACTORY,
        chain_id=8453,
        **kwargs,
    )


@pytest.fixture
def alice_ledger(chain, alice):
    return make_ledger(chain, alice)


@pytest.fixture
def bob_ledger(chain, bob):
    return make_ledger(chain, bob)


@pytest.fixture
def hashes():
    return ContentHashes.from_capture(
        audio_bytes=b"voice-recording",
        image_bytes=b"selfie-jpeg",
        device_pubkey=b"\x01" * 32,
        latitude=37.7749,
        longitude=-122.4194,
        timestamp_ms=T0,
    )


@pytest.fixture
def store(clock):
    return EncryptedMessageStore("sqlite://", clock=clock)
