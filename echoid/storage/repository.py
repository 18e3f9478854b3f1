# echoid/storage/repository.py
"""
EchoID Storage: Application State Repository

Explicit application state (wallet, profile, consents, pending requests)
with pluggable persistence. Replaces a process-global store: whoever needs
the state gets a StateRepository injected.

Usage:
    repo = JsonFileRepository("~/.echoid/state.json")
    state = repo.load()
    state.add_consent(consent)
    repo.save(state)
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..consent.models import Consent, ConsentRequest, parse_consent_request


logger = logging.getLogger("echoid.storage")

STATE_VERSION = 1


@dataclass
class AppState:
    """Everything the app persists besides chat messages."""
    wallet_address: Optional[str] = None
    chain_id: Optional[int] = None
    handle: Optional[str] = None
    device_pubkey: Optional[str] = None  # base64
    consents: List[Consent] = field(default_factory=list)
    consent_requests: List[ConsentRequest] = field(default_factory=list)

    # -------------------------------------------------------------------------
    # Consents
    # -------------------------------------------------------------------------

    def add_consent(self, consent: Consent) -> None:
        if self.get_consent(consent.id) is not None:
            raise ValueError(f"Consent {consent.id} already stored")
        self.consents.append(consent)

    def get_consent(self, local_id: str) -> Optional[Consent]:
        return next((c for c in self.consents if c.id == local_id), None)

    def find_by_consent_id(self, consent_id: int) -> Optional[Consent]:
        return next((c for c in self.consents if c.consent_id == consent_id), None)

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------

    def add_request(self, request: ConsentRequest) -> None:
        if self.get_request(request.id) is None:
            self.consent_requests.append(request)

    def get_request(self, request_id: str) -> Optional[ConsentRequest]:
        return next((r for r in self.consent_requests if r.id == request_id), None)

    def remove_request(self, request_id: str) -> Optional[ConsentRequest]:
        request = self.get_request(request_id)
        if request is not None:
            self.consent_requests.remove(request)
        return request

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": STATE_VERSION,
            "wallet": {"address": self.wallet_address, "chainId": self.chain_id},
            "profile": {"handle": self.handle, "devicePubKey": self.device_pubkey},
            "consents": [c.to_dict() for c in self.consents],
            "consentRequests": [r.to_dict() for r in self.consent_requests],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppState":
        wallet = data.get("wallet", {})
        profile = data.get("profile", {})
        return cls(
            wallet_address=wallet.get("address"),
            chain_id=wallet.get("chainId"),
            handle=profile.get("handle"),
            device_pubkey=profile.get("devicePubKey"),
            consents=[Consent.from_dict(c) for c in data.get("consents", [])],
            consent_requests=[parse_consent_request(r) for r in data.get("consentRequests", [])],
        )


class StateRepository(ABC):
    @abstractmethod
    def load(self) -> AppState:
        pass

    @abstractmethod
    def save(self, state: AppState) -> None:
        pass


class InMemoryRepository(StateRepository):
    """Keeps the state object itself (tests, ephemeral sessions)."""

    def __init__(self, state: Optional[AppState] = None):
        self._state = state or AppState()

    def load(self) -> AppState:
        return self._state

    def save(self, state: AppState) -> None:
        self._state = state


class JsonFileRepository(StateRepository):
    """State in one JSON file, replaced atomically on save."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path).expanduser()

    def load(self) -> AppState:
        if not self.path.exists():
            return AppState()
        with open(self.path) as f:
            data = json.load(f)
        version = data.get("version", STATE_VERSION)
        if version != STATE_VERSION:
            raise ValueError(f"Unsupported state version {version} in {self.path}")
        return AppState.from_dict(data)

    def save(self, state: AppState) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".state-", suffix=".json")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(state.to_dict(), f, indent=2)
            os.replace(tmp, self.path)
        except BaseException:
            os.unlink(tmp)
            raise
        logger.debug("Saved state (%d consents) to %s", len(state.consents), self.path)
