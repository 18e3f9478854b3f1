# echoid/messaging/session.py
"""
EchoID Messaging: Chat Session

Binds a consent, its session key and the encrypted message store.

Opening a session resolves the counterparty's device key through the
handle registry. If that fails the session still opens with a WEAK key
(see establish_session_key); callers should surface is_weak to the user.
A weak key is derived from each side's own public key, so the two parties
do not share it and cannot read each other's messages.

Usage:
    session = await open_chat_session(consent, keypair, resolver, store, me)
    session.send("hello")
    for msg in session.messages():
        print(msg.sender, msg.text)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Union

from ..consent.models import Consent
from ..crypto.keys import DeviceKeypair, SessionKey, establish_session_key
from ..errors import KeyUnavailable
from ..registry.resolver import HandleRecord, HandleResolver
from ..storage.messages import DecryptedMessage, EncryptedMessage, EncryptedMessageStore


logger = logging.getLogger("echoid.messaging")


@dataclass
class ChatSession:
    """Encrypted chat for one consent."""
    consent_id: str
    session_key: SessionKey
    store: EncryptedMessageStore
    self_address: str

    @property
    def is_weak(self) -> bool:
        return self.session_key.is_weak

    def send(self, message: Union[str, bytes]) -> EncryptedMessage:
        plaintext = message.encode("utf-8") if isinstance(message, str) else bytes(message)
        return self.store.append(self.consent_id, self.self_address, plaintext, self.session_key.key)

    def messages(self) -> List[DecryptedMessage]:
        return self.store.read(self.consent_id, self.session_key.key)

    def unread_count(self, since: Optional[int] = None) -> int:
        return self.store.unread_count(self.consent_id, self.self_address, since=since)

    def clear(self) -> int:
        return self.store.clear(self.consent_id)


async def _lookup_counterparty(consent: Consent, resolver: HandleResolver) -> HandleRecord:
    if consent.counterparty_handle:
        record = await resolver.resolve(consent.counterparty_handle)
    else:
        record = await resolver.resolve_address(consent.counterparty)
    if record.wallet_address.lower() != consent.counterparty.lower():
        raise KeyUnavailable(
            consent.counterparty_handle or consent.counterparty,
            f"handle is registered to {record.wallet_address}",
        )
    return record


async def open_chat_session(
    consent: Consent,
    device_keypair: DeviceKeypair,
    resolver: HandleResolver,
    store: EncryptedMessageStore,
    self_address: str,
) -> ChatSession:
    """Resolve the counterparty key and derive the session key."""
    counterparty_pubkey: Optional[bytes] = None
    try:
        record = await _lookup_counterparty(consent, resolver)
        counterparty_pubkey = record.device_pubkey_bytes
    except KeyUnavailable as e:
        logger.warning("Consent %s: %s", consent.chat_id, e)

    session_key = establish_session_key(
        device_keypair.public_key,
        counterparty_pubkey,
        consent_id=consent.chat_id,
        counterparty_address=consent.counterparty,
    )
    return ChatSession(
        consent_id=consent.chat_id,
        session_key=session_key,
        store=store,
        self_address=self_address,
    )
