# tests/test_aead.py
"""
XChaCha20-Poly1305 tests.

Categories:
1. Round trip
2. Tamper detection
3. Argument validation
"""

import pytest

from echoid.crypto.aead import KEY_SIZE, NONCE_SIZE, TAG_SIZE, decrypt, encrypt
from echoid.errors import AuthenticationFailure


KEY = bytes(range(32))


# =============================================================================
# 1. Round trip
# =============================================================================

def test_round_trip():
    sealed = encrypt(b"hello", KEY)
    assert len(sealed.nonce) == NONCE_SIZE
    assert len(sealed.ciphertext) == len(b"hello") + TAG_SIZE
    assert decrypt(sealed.ciphertext, KEY, sealed.nonce) == b"hello"


def test_empty_plaintext():
    sealed = encrypt(b"", KEY)
    assert decrypt(sealed.ciphertext, KEY, sealed.nonce) == b""


def test_fresh_nonce_per_call():
    a = encrypt(b"same", KEY)
    b = encrypt(b"same", KEY)
    assert a.nonce != b.nonce
    assert a.ciphertext != b.ciphertext


def test_explicit_nonce_is_deterministic():
    nonce = b"\x07" * NONCE_SIZE
    assert encrypt(b"m", KEY, nonce).ciphertext == encrypt(b"m", KEY, nonce).ciphertext


def test_aad_round_trip():
    sealed = encrypt(b"m", KEY, aad=b"consent-42")
    assert decrypt(sealed.ciphertext, KEY, sealed.nonce, aad=b"consent-42") == b"m"


# =============================================================================
# 2. Tamper detection
# =============================================================================

def test_flipped_bit_fails():
    sealed = encrypt(b"hello", KEY)
    tampered = bytearray(sealed.ciphertext)
    tampered[0] ^= 0x01
    with pytest.raises(AuthenticationFailure):
        decrypt(bytes(tampered), KEY, sealed.nonce)


def test_wrong_key_fails():
    sealed = encrypt(b"hello", KEY)
    with pytest.raises(AuthenticationFailure):
        decrypt(sealed.ciphertext, b"\xff" * KEY_SIZE, sealed.nonce)


def test_wrong_nonce_fails():
    sealed = encrypt(b"hello", KEY)
    with pytest.raises(AuthenticationFailure):
        decrypt(sealed.ciphertext, KEY, b"\x00" * NONCE_SIZE)


def test_wrong_aad_fails():
    sealed = encrypt(b"m", KEY, aad=b"a")
    with pytest.raises(AuthenticationFailure):
        decrypt(sealed.ciphertext, KEY, sealed.nonce, aad=b"b")


def test_truncated_ciphertext_fails():
    sealed = encrypt(b"hello", KEY)
    with pytest.raises(AuthenticationFailure):
        decrypt(sealed.ciphertext[:TAG_SIZE - 1], KEY, sealed.nonce)


def test_stored_nonce_of_wrong_length_fails_authentication():
    sealed = encrypt(b"hello", KEY)
    with pytest.raises(AuthenticationFailure):
        decrypt(sealed.ciphertext, KEY, sealed.nonce[:NONCE_SIZE - 1])


# =============================================================================
# 3. Validation
# =============================================================================

def test_bad_key_length():
    with pytest.raises(ValueError):
        encrypt(b"m", b"short")


def test_bad_nonce_length():
    with pytest.raises(ValueError):
        encrypt(b"m", KEY, nonce=b"\x00" * 12)
