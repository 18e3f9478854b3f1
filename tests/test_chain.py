# tests/test_chain.py
"""
Chain layer tests.

Categories:
1. Receipt normalization
2. MockChain transaction handling
"""

import asyncio

import pytest
from hexbytes import HexBytes

from echoid.errors import BroadcastRejected, TransactionTimeout
from echoid.ledger.chain import MockChain, normalize_receipt
from echoid.ledger.codec import CONSENT_CREATED_TOPIC, encode_consent_created_log
from echoid.signers.base import TxRequest
from echoid.signers.local import LocalKeySigner

from conftest import FACTORY

# =============================================================================
# 1. Normalization
# =============================================================================

def test_normalize_receipt_strips_hexbytes():
    log = encode_consent_created_log(FACTORY, 42, "0x" + "a1" * 20, "0x" + "b2" * 20)
    receipt = {
        "transactionHash": HexBytes("0x" + "ab" * 32),
        "status": 1,
        "blockNumber": 7,
        "gasUsed": 21000,
        "logs": [{
            "address": FACTORY.lower(),
            "topics": [HexBytes(t) for t in log["topics"]],
            "data": HexBytes(b""),
        }],
    }
    normalized = normalize_receipt(receipt)
    assert normalized["transactionHash"] == "0x" + "ab" * 32
    assert normalized["logs"][0]["address"] == FACTORY
    assert normalized["logs"][0]["topics"][0] == CONSENT_CREATED_TOPIC
    assert type(normalized["logs"][0]["topics"][0]) is bytes

# =============================================================================
# 2. MockChain
# =============================================================================

def test_plain_transfer_moves_value(chain, alice, bob):
    before = chain.balances[bob.address.lower()]
    request = TxRequest(to=bob.address, value=12345, gas=21000)
    tx_hash = asyncio.run(alice.send_transaction(request, chain))
    receipt = asyncio.run(chain.wait_for_receipt(tx_hash))

    assert receipt["status"] == 1
    assert receipt["logs"] == []
    assert chain.balances[bob.address.lower()] == before + 12345
    assert chain.nonces[alice.address.lower()] == 1

def test_unfunded_sender_rejected(clock):
    chain = MockChain(FACTORY, clock=clock)
    signer = LocalKeySigner.generate()
    with pytest.raises(BroadcastRejected):
        asyncio.run(signer.send_transaction(TxRequest(to=FACTORY, value=1), chain))

def test_unknown_receipt_times_out(chain):
    with pytest.raises(TransactionTimeout):
        asyncio.run(chain.wait_for_receipt("0x" + "00" * 32, timeout=1))

def test_unsigned_submission(chain, alice):
    tx_hash = asyncio.run(chain.submit_transaction({
        "from": alice.address,
        "to": FACTORY,
        "value": hex(0),
        "data": "0xdeadbeef",
        "gas": hex(100_000),
    }))
    receipt = asyncio.run(chain.wait_for_receipt(tx_hash))
    # unknown selector on the factory reverts
    assert receipt["status"] == 0
    assert "invalid calldata" in asyncio.run(chain.get_revert_reason(tx_hash))
