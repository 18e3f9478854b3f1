# echoid/messaging/__init__.py
"""EchoID encrypted chat sessions."""

from .session import ChatSession, open_chat_session

__all__ = ["ChatSession", "open_chat_session"]
