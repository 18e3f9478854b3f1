# tests/test_codec.py
"""
ConsentFactory ABI codec tests.

Categories:
1. bytes32 normalization
2. Calldata encoding
3. ConsentCreated event decoding
4. Fallback id
"""

import pytest
from eth_utils import keccak, to_checksum_address
from hexbytes import HexBytes
from web3.datastructures import AttributeDict

from echoid.errors import ValidationError
from echoid.ledger.codec import (
    CONSENT_CREATED_TOPIC,
    UnlockMode,
    checksum,
    decode_call,
    decode_consent_created,
    encode_approve_unlock,
    encode_consent_created_log,
    encode_create_consent,
    encode_request_unlock,
    factory_contract,
    fallback_consent_id,
    find_consent_created,
    function_selector,
    normalize_bytes32,
)

from conftest import FACTORY


ALICE = to_checksum_address("0x" + "a1" * 20)
BOB = to_checksum_address("0x" + "b2" * 20)
HASHES = ["0x" + f"{i:02x}" * 32 for i in range(1, 6)]


# =============================================================================
# 1. Normalization
# =============================================================================

def test_full_hex_passes_through():
    assert normalize_bytes32("0x" + "ab" * 32) == b"\xab" * 32


def test_short_hex_left_padded():
    assert normalize_bytes32("0xabc") == b"\x00" * 30 + b"\x0a\xbc"


def test_unprefixed_hex_accepted():
    assert normalize_bytes32("ff") == b"\x00" * 31 + b"\xff"


def test_long_hex_keeps_leading_digits():
    assert normalize_bytes32("0x" + "ab" * 32 + "cd") == b"\xab" * 32


def test_short_bytes_left_padded():
    assert normalize_bytes32(b"\x01\x02") == b"\x00" * 30 + b"\x01\x02"


def test_non_hex_rejected():
    with pytest.raises(ValidationError):
        normalize_bytes32("0xzz")


def test_checksum_rejects_garbage():
    with pytest.raises(ValidationError) as exc:
        checksum("0x1234", "counterparty")
    assert exc.value.field == "counterparty"


# =============================================================================
# 2. Calldata
# =============================================================================

def test_create_consent_selector():
    signature = "createConsent(bytes32,bytes32,bytes32,bytes32,bytes32,uint8,address,uint8,uint256)"
    assert function_selector("createConsent") == keccak(text=signature)[:4]


def test_create_consent_decodes_back():
    data = encode_create_consent(HASHES, 1, BOB.lower(), UnlockMode.WINDOWED, 3600)
    call = decode_call(data)
    assert call.name == "createConsent"
    assert call.args[:5] == tuple(bytes([i]) * 32 for i in range(1, 6))
    assert call.args[5] == 1
    assert call.args[6].lower() == BOB.lower()
    assert call.args[7:] == (1, 3600)


def test_unlock_calls():
    assert decode_call(encode_request_unlock(42)).args == (42,)
    assert decode_call(encode_approve_unlock(42)).name == "approveUnlock"
    assert encode_request_unlock(42)[:4] == keccak(text="requestUnlock(uint256)")[:4]


@pytest.mark.parametrize("kwargs", [
    {"coercion_level": 256},
    {"coercion_level": -1},
    {"unlock_mode": 300},
    {"unlock_window": -5},
])
def test_out_of_range_arguments(kwargs):
    args = dict(coercion_level=0, unlock_mode=0, unlock_window=0)
    args.update(kwargs)
    with pytest.raises(ValidationError):
        encode_create_consent(HASHES, counterparty=BOB, **args)


def test_wrong_hash_count():
    with pytest.raises(ValidationError):
        encode_create_consent(HASHES[:4], 0, BOB, 0)


def test_unknown_selector():
    with pytest.raises(ValidationError):
        decode_call(b"\xde\xad\xbe\xef" + b"\x00" * 32)


# =============================================================================
# 3. Events
# =============================================================================

def test_event_topic():
    assert CONSENT_CREATED_TOPIC == keccak(text="ConsentCreated(uint256,address,address)")


def test_decode_consent_created():
    event = decode_consent_created(encode_consent_created_log(FACTORY, 42, ALICE, BOB))
    assert event.consent_id == 42
    assert event.party1 == ALICE
    assert event.party2 == BOB


def test_hex_topics_accepted():
    log = encode_consent_created_log(FACTORY, 7, ALICE, BOB)
    log["topics"] = ["0x" + t.hex() for t in log["topics"]]
    assert decode_consent_created(log).consent_id == 7


def test_other_event_ignored():
    log = encode_consent_created_log(FACTORY, 1, ALICE, BOB)
    log["topics"][0] = keccak(text="Transfer(address,address,uint256)")
    assert decode_consent_created(log) is None


def test_web3_receipt_log_decoded():
    log = encode_consent_created_log(FACTORY, 42, ALICE, BOB)
    receipt_log = AttributeDict({
        "address": FACTORY,
        "topics": [HexBytes(t) for t in log["topics"]],
        "data": HexBytes(b""),
        "logIndex": 3,
        "transactionIndex": 1,
        "transactionHash": HexBytes("0x" + "ab" * 32),
        "blockHash": HexBytes("0x" + "cd" * 32),
        "blockNumber": 7,
    })
    assert find_consent_created([receipt_log], FACTORY).consent_id == 42


def test_missing_topic_ignored():
    log = encode_consent_created_log(FACTORY, 1, ALICE, BOB)
    log["topics"] = log["topics"][:3]
    assert decode_consent_created(log) is None


def test_contract_binds_deployment():
    contract = factory_contract(FACTORY.lower())
    assert contract.address == FACTORY
    assert encode_approve_unlock(7) == HexBytes(contract.encode_abi("approveUnlock", args=[7]))


def test_find_filters_by_emitter():
    foreign = encode_consent_created_log("0x" + "11" * 20, 99, ALICE, BOB)
    ours = encode_consent_created_log(FACTORY, 42, ALICE, BOB)
    assert find_consent_created([foreign, ours], FACTORY).consent_id == 42
    assert find_consent_created([foreign], FACTORY) is None
    assert find_consent_created([], FACTORY) is None


# =============================================================================
# 4. Fallback id
# =============================================================================

def test_fallback_uses_first_eight_bytes():
    tx_hash = "0x0102030405060708" + "ff" * 24
    assert fallback_consent_id(tx_hash) == 0x0102030405060708


def test_fallback_rejects_short_hash():
    with pytest.raises(ValidationError):
        fallback_consent_id("0x0102")
