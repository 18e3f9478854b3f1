# tests/test_repository.py
"""App-state repositories: in-memory and JSON file."""

import json

import pytest

from echoid.consent.models import Consent, ConsentData, ConsentRequest
from echoid.storage.repository import AppState, InMemoryRepository, JsonFileRepository

from conftest import T0


COUNTERPARTY = "0x" + "b2" * 20


def _state(hashes):
    consent = Consent.new(42, COUNTERPARTY, "nda", hashes, 0, created_at=T0)
    request = ConsentRequest.new(
        "carol", "0x" + "c3" * 20, ConsentData.from_hashes("collab", hashes), requested_at=T0
    )
    return AppState(
        wallet_address="0x" + "a1" * 20,
        chain_id=8453,
        handle="alice",
        device_pubkey="AAAA",
        consents=[consent],
        consent_requests=[request],
    )


def test_missing_file_loads_empty_state(tmp_path):
    state = JsonFileRepository(tmp_path / "state.json").load()
    assert state.consents == [] and state.wallet_address is None


def test_json_round_trip(tmp_path, hashes):
    repo = JsonFileRepository(tmp_path / "sub" / "state.json")
    state = _state(hashes)
    repo.save(state)

    loaded = repo.load()
    assert loaded.wallet_address == state.wallet_address
    assert loaded.consents == state.consents
    assert loaded.consent_requests[0].id == state.consent_requests[0].id
    assert loaded.consent_requests[0].consent_data.hashes == hashes
    assert list((tmp_path / "sub").iterdir()) == [tmp_path / "sub" / "state.json"]


def test_unsupported_version(tmp_path):
    path = tmp_path / "state.json"
    path.write_text(json.dumps({"version": 99}))
    with pytest.raises(ValueError):
        JsonFileRepository(path).load()


def test_duplicate_consent_rejected(hashes):
    state = _state(hashes)
    with pytest.raises(ValueError):
        state.add_consent(state.consents[0])


def test_request_helpers(hashes):
    state = _state(hashes)
    request = state.consent_requests[0]
    state.add_request(request)
    assert len(state.consent_requests) == 1
    assert state.remove_request(request.id) is request
    assert state.remove_request(request.id) is None


def test_find_by_consent_id(hashes):
    state = _state(hashes)
    assert state.find_by_consent_id(42) is state.consents[0]
    assert state.find_by_consent_id(7) is None


def test_in_memory_repository(hashes):
    repo = InMemoryRepository()
    state = _state(hashes)
    repo.save(state)
    assert repo.load() is state
