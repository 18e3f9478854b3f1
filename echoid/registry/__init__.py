# echoid/registry/__init__.py
"""EchoID handle registry lookups."""

from .resolver import (
    CachingHandleResolver,
    HandleRecord,
    HandleResolver,
    HttpHandleResolver,
    InMemoryHandleResolver,
)

__all__ = [
    "CachingHandleResolver",
    "HandleRecord",
    "HandleResolver",
    "HttpHandleResolver",
    "InMemoryHandleResolver",
]
