# echoid/storage/__init__.py
"""
EchoID Storage Layer

    messages:   EncryptedMessageStore (SQLAlchemy)
    repository: AppState + StateRepository implementations
"""

from .messages import (
    DecryptedMessage,
    EncryptedMessage,
    EncryptedMessageStore,
    MessageRow,
    create_store_engine,
)
from .repository import AppState, InMemoryRepository, JsonFileRepository, StateRepository

__all__ = [
    "DecryptedMessage",
    "EncryptedMessage",
    "EncryptedMessageStore",
    "MessageRow",
    "create_store_engine",
    "AppState",
    "InMemoryRepository",
    "JsonFileRepository",
    "StateRepository",
]
