# echoid/consent/models.py
"""
EchoID Consent: Data Model

    Consent         - a created consent as tracked on this device
    ConsentData     - content hashes plus terms, one variant per template
    ConsentRequest  - pending request from a counterparty (transient)

lockedUntil is fixed when a Consent is constructed; assigning a different
value afterwards raises AttributeError.

Serialized forms use the camelCase keys the backend and the app storage
use; uint256 consent ids are written as decimal strings.

Usage:
    consent = Consent.new(
        consent_id=42, counterparty="0xB...", template="nda",
        hashes=content_hashes, coercion_level=0, created_at=now_ms(),
    )
    request = parse_consent_request(payload)
"""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Dict, Mapping, Optional, Type

from ..config import LOCK_PERIOD_MS
from ..crypto.hashing import ContentHashes
from ..errors import ValidationError
from ..ledger.codec import UnlockMode, checksum, normalize_bytes32
from .coercion import CoercionLevel
from .templates import get_template


DEFAULT_UNLOCK_WINDOW = 3600  # seconds, windowed unlock


def now_ms() -> int:
    return int(time.time() * 1000)


def _random_suffix() -> str:
    return secrets.token_hex(5)[:9]


# =============================================================================
# Enums
# =============================================================================

class ConsentStatus(Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    ACTIVE = "active"


# =============================================================================
# Consent
# =============================================================================

@dataclass
class Consent:
    """
    Consent tracked locally.

    Attributes:
        id: Local identifier
        consent_id: On-chain consentId (pseudo id if consent_id_verified is False)
        counterparty: Counterparty wallet address
        template: Template id
        created_at: ms since epoch
        locked_until: created_at + 24h, immutable
        voice_hash, face_hash, device_hash, geo_hash, utc_hash: 0x-hex bytes32
        coercion_level: 0-2
        status: ConsentStatus
        unlock_requested_by: Address of the confirmed unlock request
        consent_id_verified: False when consent_id came from the tx hash fallback
    """
    id: str
    consent_id: int
    counterparty: str
    template: str
    created_at: int
    locked_until: int
    voice_hash: str
    face_hash: str
    device_hash: str
    geo_hash: str
    utc_hash: str
    coercion_level: int = 0
    status: ConsentStatus = ConsentStatus.ACTIVE
    counterparty_handle: Optional[str] = None
    unlock_requested: bool = False
    unlock_approved: bool = False
    is_unlocked: bool = False
    unlock_requested_by: Optional[str] = None
    consent_id_verified: bool = True
    unlock_mode: UnlockMode = UnlockMode.ONE_SHOT
    unlock_window: int = 0
    tx_hash: Optional[str] = None

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "locked_until" and "locked_until" in self.__dict__ and value != self.locked_until:
            raise AttributeError("locked_until is fixed at creation")
        super().__setattr__(name, value)

    @classmethod
    def new(
        cls,
        consent_id: int,
        counterparty: str,
        template: str,
        hashes: ContentHashes,
        coercion_level: int,
        created_at: int,
        **kwargs: Any,
    ) -> "Consent":
        """Consent created at `created_at`, locked for the 24h period."""
        return cls(
            id=kwargs.pop("id", None) or f"consent_{created_at}_{_random_suffix()}",
            consent_id=consent_id,
            counterparty=counterparty,
            template=template,
            created_at=created_at,
            locked_until=created_at + LOCK_PERIOD_MS,
            **hashes.as_hex(),
            coercion_level=int(coercion_level),
            **kwargs,
        )

    @property
    def chat_id(self) -> str:
        """Identifier both parties use for the chat key and message rows."""
        return str(self.consent_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "consentId": str(self.consent_id),
            "counterparty": self.counterparty,
            "counterpartyHandle": self.counterparty_handle,
            "template": self.template,
            "createdAt": self.created_at,
            "lockedUntil": self.locked_until,
            "unlockRequested": self.unlock_requested,
            "unlockApproved": self.unlock_approved,
            "isUnlocked": self.is_unlocked,
            "unlockRequestedBy": self.unlock_requested_by,
            "voiceHash": self.voice_hash,
            "faceHash": self.face_hash,
            "deviceHash": self.device_hash,
            "geoHash": self.geo_hash,
            "utcHash": self.utc_hash,
            "coercionLevel": self.coercion_level,
            "status": self.status.value,
            "consentIdVerified": self.consent_id_verified,
            "unlockMode": int(self.unlock_mode),
            "unlockWindow": self.unlock_window,
            "txHash": self.tx_hash,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Consent":
        """
        Raises:
            ValidationError: isUnlocked set without both unlock flags
        """
        unlocked = bool(data.get("isUnlocked", False))
        requested = bool(data.get("unlockRequested", False))
        approved = bool(data.get("unlockApproved", False))
        if unlocked and not (requested and approved):
            raise ValidationError(
                "isUnlocked requires unlockRequested and unlockApproved", field="isUnlocked"
            )
        return cls(
            id=data["id"],
            consent_id=int(data["consentId"]),
            counterparty=data["counterparty"],
            counterparty_handle=data.get("counterpartyHandle"),
            template=data["template"],
            created_at=int(data["createdAt"]),
            locked_until=int(data["lockedUntil"]),
            unlock_requested=requested,
            unlock_approved=approved,
            is_unlocked=unlocked,
            unlock_requested_by=data.get("unlockRequestedBy"),
            voice_hash=data.get("voiceHash", ""),
            face_hash=data.get("faceHash", ""),
            device_hash=data.get("deviceHash", ""),
            geo_hash=data.get("geoHash", ""),
            utc_hash=data.get("utcHash", ""),
            coercion_level=int(data.get("coercionLevel", 0)),
            status=ConsentStatus(data.get("status", ConsentStatus.ACTIVE.value)),
            consent_id_verified=bool(data.get("consentIdVerified", True)),
            unlock_mode=UnlockMode(int(data.get("unlockMode", UnlockMode.ONE_SHOT))),
            unlock_window=int(data.get("unlockWindow", 0)),
            tx_hash=data.get("txHash"),
        )


# =============================================================================
# Consent Request
# =============================================================================

@dataclass
class ConsentData:
    """
    Hashes and terms the requester captured.

    Tagged by template: each template id has its own variant class and
    ConsentData itself is never instantiated. `template` is the tag,
    derived from the variant rather than stored.
    """
    TEMPLATE: ClassVar[str] = ""

    voice_hash: str
    face_hash: str
    device_hash: str
    geo_hash: str
    utc_hash: str
    coercion_level: CoercionLevel = CoercionLevel.GREEN
    unlock_mode: UnlockMode = UnlockMode.WINDOWED
    unlock_window: int = DEFAULT_UNLOCK_WINDOW
    counterparty_handle: Optional[str] = None
    counterparty_address: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.TEMPLATE:
            raise TypeError("ConsentData is tagged by template; use consent_data_type()")

    @property
    def template(self) -> str:
        return self.TEMPLATE

    @classmethod
    def from_hashes(
        cls,
        template: str,
        hashes: ContentHashes,
        coercion_level: int = CoercionLevel.GREEN,
        unlock_mode: Optional[UnlockMode] = None,
        unlock_window: Optional[int] = None,
        counterparty_handle: Optional[str] = None,
        counterparty_address: Optional[str] = None,
    ) -> "ConsentData":
        data_cls = consent_data_type(template)
        mode = UnlockMode(unlock_mode) if unlock_mode is not None else get_template(template).default_unlock_mode
        if unlock_window is None:
            unlock_window = DEFAULT_UNLOCK_WINDOW if mode == UnlockMode.WINDOWED else 0
        return data_cls(
            **hashes.as_hex(),
            coercion_level=CoercionLevel(coercion_level),
            unlock_mode=mode,
            unlock_window=unlock_window,
            counterparty_handle=counterparty_handle,
            counterparty_address=counterparty_address,
        )

    @property
    def hashes(self) -> ContentHashes:
        return ContentHashes(
            voice=normalize_bytes32(self.voice_hash),
            face=normalize_bytes32(self.face_hash),
            device=normalize_bytes32(self.device_hash),
            geo=normalize_bytes32(self.geo_hash),
            utc=normalize_bytes32(self.utc_hash),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "voiceHash": self.voice_hash,
            "faceHash": self.face_hash,
            "deviceHash": self.device_hash,
            "geoHash": self.geo_hash,
            "utcHash": self.utc_hash,
            "coercionLevel": int(self.coercion_level),
            "unlockMode": int(self.unlock_mode),
            "unlockWindow": self.unlock_window,
            "counterpartyHandle": self.counterparty_handle,
            "counterpartyAddress": self.counterparty_address,
        }


@dataclass
class SexNdaData(ConsentData):
    TEMPLATE: ClassVar[str] = "sex-nda"


@dataclass
class NdaData(ConsentData):
    TEMPLATE: ClassVar[str] = "nda"


@dataclass
class CreativeData(ConsentData):
    TEMPLATE: ClassVar[str] = "creative"


@dataclass
class CollabData(ConsentData):
    TEMPLATE: ClassVar[str] = "collab"


@dataclass
class ConversationData(ConsentData):
    TEMPLATE: ClassVar[str] = "conversation"


CONSENT_DATA_TYPES: Dict[str, Type[ConsentData]] = {
    cls.TEMPLATE: cls
    for cls in (SexNdaData, NdaData, CreativeData, CollabData, ConversationData)
}


def consent_data_type(template: str) -> Type[ConsentData]:
    """
    Variant class for a template id.

    Raises:
        ValidationError: Unknown template id
    """
    get_template(template)
    return CONSENT_DATA_TYPES[template]


@dataclass
class ConsentRequest:
    """Request from `from_address` to create a consent with us."""
    id: str
    from_handle: str
    from_address: str
    template: str
    requested_at: int
    consent_data: ConsentData

    @classmethod
    def new(
        cls,
        from_handle: str,
        from_address: str,
        consent_data: ConsentData,
        requested_at: Optional[int] = None,
    ) -> "ConsentRequest":
        requested_at = requested_at if requested_at is not None else now_ms()
        return cls(
            id=f"req_{requested_at}_{_random_suffix()}",
            from_handle=from_handle,
            from_address=from_address,
            template=consent_data.template,
            requested_at=requested_at,
            consent_data=consent_data,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "fromHandle": self.from_handle,
            "fromAddress": self.from_address,
            "template": self.template,
            "requestedAt": self.requested_at,
            "consentData": self.consent_data.to_dict(),
        }


# =============================================================================
# Boundary Validation
# =============================================================================

_HASH_KEYS = (
    ("voiceHash", "voice_hash"),
    ("faceHash", "face_hash"),
    ("deviceHash", "device_hash"),
    ("geoHash", "geo_hash"),
    ("utcHash", "utc_hash"),
)


def _required_str(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise ValidationError(f"{key} is required", field=key)
    return value


def parse_consent_request(raw: Mapping[str, Any]) -> ConsentRequest:
    """
    Validate an incoming request payload.

    Args:
        raw: {"id", "fromHandle", "fromAddress", "template", "requestedAt",
              "consentData": {"voiceHash", ..., "coercionLevel",
                              "unlockMode", "unlockWindow", ...}}

    Returns:
        ConsentRequest with typed ConsentData

    Raises:
        ValidationError: Unknown template, missing/malformed hash,
            bad address, or out-of-range level/mode/window
    """
    if not isinstance(raw, Mapping):
        raise ValidationError("Consent request must be an object")

    template = get_template(_required_str(raw, "template"))
    from_address = checksum(_required_str(raw, "fromAddress"), "fromAddress")
    data = raw.get("consentData")
    if not isinstance(data, Mapping):
        raise ValidationError("consentData is required", field="consentData")

    hashes: Dict[str, str] = {}
    for key, attr in _HASH_KEYS:
        value = _required_str(data, key)
        try:
            hashes[attr] = "0x" + normalize_bytes32(value).hex()
        except ValidationError as e:
            raise ValidationError(str(e), field=key) from e

    try:
        level = CoercionLevel(int(data.get("coercionLevel", CoercionLevel.GREEN)))
    except (TypeError, ValueError) as e:
        raise ValidationError("coercionLevel must be 0-2", field="coercionLevel") from e

    raw_mode = data.get("unlockMode")
    try:
        mode = template.default_unlock_mode if raw_mode is None else UnlockMode(int(raw_mode))
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Unknown unlockMode {raw_mode!r}", field="unlockMode") from e

    raw_window = data.get("unlockWindow")
    if raw_window is None:
        window = DEFAULT_UNLOCK_WINDOW if mode == UnlockMode.WINDOWED else 0
    else:
        try:
            window = int(raw_window)
        except (TypeError, ValueError) as e:
            raise ValidationError("unlockWindow must be an integer", field="unlockWindow") from e
        if window < 0:
            raise ValidationError("unlockWindow must be >= 0", field="unlockWindow")

    counterparty_address = data.get("counterpartyAddress")
    if counterparty_address:
        counterparty_address = checksum(counterparty_address, "counterpartyAddress")

    consent_data = consent_data_type(template.id)(
        coercion_level=level,
        unlock_mode=mode,
        unlock_window=window,
        counterparty_handle=data.get("counterpartyHandle"),
        counterparty_address=counterparty_address,
        **hashes,
    )

    requested_at = raw.get("requestedAt")
    try:
        requested_at = int(requested_at) if requested_at is not None else now_ms()
    except (TypeError, ValueError) as e:
        raise ValidationError("requestedAt must be ms since epoch", field="requestedAt") from e

    return ConsentRequest(
        id=raw.get("id") or f"req_{requested_at}_{_random_suffix()}",
        from_handle=raw.get("fromHandle") or "unknown",
        from_address=from_address,
        template=template.id,
        requested_at=requested_at,
        consent_data=consent_data,
    )
