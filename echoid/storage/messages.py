# echoid/storage/messages.py
"""
EchoID Storage: Encrypted Message Store

Chat messages are sealed with the consent's session key before they touch
the database; rows hold ciphertext and nonce only.

Schema:
    messages(id TEXT PK, consent_id TEXT, sender TEXT,
             encrypted_data BLOB, nonce BLOB, timestamp INTEGER)
    INDEX idx_consent_timestamp (consent_id, timestamp)

Rows are immutable. They leave the table only through clear(). Reads
return ascending timestamp order; a row that fails authentication is
skipped and logged, it never aborts the read.

"Unread" counts every message in a consent whose sender is not us,
optionally only those after a read marker.

Usage:
    store = EncryptedMessageStore("sqlite:///./echoid_chat.db")
    store.append("42", alice, b"hello", session_key.key)
    for msg in store.read("42", session_key.key):
        print(msg.sender, msg.text)
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Optional, Union

from sqlalchemy import BigInteger, Column, Index, LargeBinary, String, create_engine, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from ..crypto.aead import decrypt, encrypt
from ..errors import AuthenticationFailure


logger = logging.getLogger("echoid.storage")

Base = declarative_base()


class MessageRow(Base):
    __tablename__ = "messages"

    id = Column(String, primary_key=True)
    consent_id = Column(String, nullable=False)
    sender = Column(String, nullable=False)
    encrypted_data = Column(LargeBinary, nullable=False)
    nonce = Column(LargeBinary, nullable=False)
    timestamp = Column(BigInteger, nullable=False)

    __table_args__ = (Index("idx_consent_timestamp", "consent_id", "timestamp"),)


# =============================================================================
# Message Types
# =============================================================================

@dataclass(frozen=True)
class EncryptedMessage:
    """Stored form of one message."""
    id: str
    consent_id: str
    sender: str
    ciphertext: bytes
    nonce: bytes
    timestamp: int

    @classmethod
    def from_row(cls, row: MessageRow) -> "EncryptedMessage":
        return cls(
            id=row.id,
            consent_id=row.consent_id,
            sender=row.sender,
            ciphertext=bytes(row.encrypted_data),
            nonce=bytes(row.nonce),
            timestamp=int(row.timestamp),
        )


@dataclass(frozen=True)
class DecryptedMessage:
    id: str
    consent_id: str
    sender: str
    plaintext: bytes
    timestamp: int

    @property
    def text(self) -> str:
        return self.plaintext.decode("utf-8", errors="replace")


# =============================================================================
# Engine
# =============================================================================

def create_store_engine(database_url: str) -> Engine:
    """Engine for the message store; in-memory SQLite shares one connection."""
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, future=True, **kwargs)
    return create_engine(database_url, future=True)


# =============================================================================
# Store
# =============================================================================

class EncryptedMessageStore:
    """Per-consent encrypted chat log."""

    def __init__(
        self,
        database: Union[str, Engine] = "sqlite:///./echoid_chat.db",
        clock: Optional[Callable[[], int]] = None,
    ):
        """
        Args:
            database: SQLAlchemy URL or an existing Engine
            clock: ms timestamp source
        """
        self.engine = create_store_engine(database) if isinstance(database, str) else database
        self._sessions = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)
        self.clock = clock or (lambda: int(time.time() * 1000))
        self._last_timestamp = 0
        Base.metadata.create_all(self.engine)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self._sessions()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _next_timestamp(self) -> int:
        # strictly increasing so reads preserve append order
        self._last_timestamp = max(self.clock(), self._last_timestamp + 1)
        return self._last_timestamp

    def append(
        self,
        consent_id: str,
        sender: str,
        plaintext: bytes,
        key: bytes,
    ) -> EncryptedMessage:
        """Seal `plaintext` with a fresh nonce and store it."""
        sealed = encrypt(plaintext, key)
        timestamp = self._next_timestamp()
        row = MessageRow(
            id=f"{timestamp}-{uuid.uuid4().hex}",
            consent_id=str(consent_id),
            sender=sender,
            encrypted_data=sealed.ciphertext,
            nonce=sealed.nonce,
            timestamp=timestamp,
        )
        with self._session() as session:
            session.add(row)
        return EncryptedMessage.from_row(row)

    def read_encrypted(self, consent_id: str) -> List[EncryptedMessage]:
        stmt = (
            select(MessageRow)
            .where(MessageRow.consent_id == str(consent_id))
            .order_by(MessageRow.timestamp.asc())
        )
        with self._session() as session:
            return [EncryptedMessage.from_row(row) for row in session.scalars(stmt)]

    def read(self, consent_id: str, key: bytes) -> List[DecryptedMessage]:
        """Decrypt a consent's messages, oldest first, skipping corrupt rows."""
        messages = []
        for msg in self.read_encrypted(consent_id):
            try:
                plaintext = decrypt(msg.ciphertext, key, msg.nonce)
            except AuthenticationFailure:
                logger.warning("Skipping message %s in consent %s: authentication failed", msg.id, consent_id)
                continue
            messages.append(
                DecryptedMessage(
                    id=msg.id,
                    consent_id=msg.consent_id,
                    sender=msg.sender,
                    plaintext=plaintext,
                    timestamp=msg.timestamp,
                )
            )
        return messages

    def clear(self, consent_id: str) -> int:
        """Delete every message of a consent; returns the number removed."""
        with self._session() as session:
            rows = session.scalars(
                select(MessageRow).where(MessageRow.consent_id == str(consent_id))
            ).all()
            for row in rows:
                session.delete(row)
        logger.info("Cleared %d messages from consent %s", len(rows), consent_id)
        return len(rows)

    # =========================================================================
    # Unread
    # =========================================================================

    def unread_count(
        self,
        consent_id: str,
        self_address: str,
        since: Optional[int] = None,
    ) -> int:
        """Messages in `consent_id` not sent by `self_address` (after `since`, if given)."""
        stmt = select(func.count()).select_from(MessageRow).where(
            MessageRow.consent_id == str(consent_id),
            func.lower(MessageRow.sender) != self_address.lower(),
        )
        if since is not None:
            stmt = stmt.where(MessageRow.timestamp > since)
        with self._session() as session:
            return int(session.scalar(stmt) or 0)

    def all_unread_counts(self, self_address: str) -> Dict[str, int]:
        """consent_id -> unread count, for consents with at least one."""
        stmt = (
            select(MessageRow.consent_id, func.count())
            .where(func.lower(MessageRow.sender) != self_address.lower())
            .group_by(MessageRow.consent_id)
        )
        with self._session() as session:
            return {consent_id: int(count) for consent_id, count in session.execute(stmt)}

    def has_unread(self, self_address: str) -> bool:
        return any(count > 0 for count in self.all_unread_counts(self_address).values())
