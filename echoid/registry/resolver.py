# echoid/registry/resolver.py
"""
EchoID Registry: Handle Resolver

Resolves a user handle to its wallet address and device public key.

    HandleResolver          - lookup interface consumed by the core
    HttpHandleResolver      - GET {api}/handles/{handle} over aiohttp
    InMemoryHandleResolver  - fixed mapping (tests, offline development)
    CachingHandleResolver   - TTL cache in front of any resolver

Every failure surfaces as KeyUnavailable so chat setup can take the weak
session path.

Usage:
    resolver = CachingHandleResolver(HttpHandleResolver("https://api.echoid.xyz"))
    record = await resolver.resolve("bob")
    pubkey = record.device_pubkey_bytes
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Iterable, Optional
from urllib.parse import quote

import aiohttp

from ..errors import KeyUnavailable


logger = logging.getLogger("echoid.registry")

DEFAULT_TIMEOUT = 5.0


@dataclass(frozen=True)
class HandleRecord:
    """Registry entry for one handle."""
    handle: str
    wallet_address: str
    device_pubkey: str  # base64

    @property
    def device_pubkey_bytes(self) -> bytes:
        """
        Raises:
            KeyUnavailable: Key missing or not valid base64
        """
        if not self.device_pubkey:
            raise KeyUnavailable(self.handle, "no device key registered")
        try:
            return base64.b64decode(self.device_pubkey, validate=True)
        except (binascii.Error, ValueError) as e:
            raise KeyUnavailable(self.handle, e) from e

    @classmethod
    def from_dict(cls, data: Dict[str, str]) -> "HandleRecord":
        return cls(
            handle=data["handle"],
            wallet_address=data["walletAddress"],
            device_pubkey=data.get("devicePubKey", ""),
        )


class HandleResolver(ABC):
    @abstractmethod
    async def resolve(self, handle: str) -> HandleRecord:
        """
        Raises:
            KeyUnavailable: Handle unknown or lookup failed
        """
        pass

    async def resolve_address(self, address: str) -> HandleRecord:
        """Reverse lookup; not every backend supports it."""
        raise KeyUnavailable(address, "reverse lookup not supported")


class InMemoryHandleResolver(HandleResolver):
    """Fixed handle table."""

    def __init__(self, records: Iterable[HandleRecord] = ()):
        self._records: Dict[str, HandleRecord] = {}
        self.lookups = 0
        for record in records:
            self.register(record)

    def register(self, record: HandleRecord) -> None:
        self._records[record.handle.lower()] = record

    async def resolve(self, handle: str) -> HandleRecord:
        self.lookups += 1
        record = self._records.get(handle.lower())
        if record is None:
            raise KeyUnavailable(handle, "handle not found")
        return record

    async def resolve_address(self, address: str) -> HandleRecord:
        self.lookups += 1
        for record in self._records.values():
            if record.wallet_address.lower() == address.lower():
                return record
        raise KeyUnavailable(address, "address not registered")


class HttpHandleResolver(HandleResolver):
    """Handle lookups against the EchoID backend."""

    def __init__(
        self,
        api_base_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.api_base_url = api_base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session

    async def resolve(self, handle: str) -> HandleRecord:
        url = f"{self.api_base_url}/handles/{quote(handle, safe='')}"
        try:
            if self._session is not None:
                return await self._fetch(self._session, url, handle)
            async with aiohttp.ClientSession(timeout=self._timeout) as session:
                return await self._fetch(session, url, handle)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning("Handle lookup for %s failed: %s", handle, e)
            raise KeyUnavailable(handle, e) from e

    async def _fetch(self, session: aiohttp.ClientSession, url: str, handle: str) -> HandleRecord:
        async with session.get(url, timeout=self._timeout) as response:
            if response.status == 404:
                raise KeyUnavailable(handle, "handle not found")
            response.raise_for_status()
            try:
                data = await response.json()
            except ValueError as e:
                raise KeyUnavailable(handle, f"invalid registry response: {e}") from e
        try:
            return HandleRecord.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise KeyUnavailable(handle, f"malformed registry response: {e}") from e


# =============================================================================
# Cache
# =============================================================================

@dataclass
class CacheEntry:
    record: HandleRecord
    cached_at: float
    ttl: float

    def is_expired(self) -> bool:
        return time.time() > self.cached_at + self.ttl


class CachingHandleResolver(HandleResolver):
    """TTL cache in front of another resolver. Failures are not cached."""

    def __init__(self, inner: HandleResolver, cache_ttl: float = 300.0):
        self._inner = inner
        self._cache_ttl = cache_ttl
        self._cache: Dict[str, CacheEntry] = {}

    async def resolve(self, handle: str) -> HandleRecord:
        key = handle.lower()
        entry = self._cache.get(key)
        if entry is not None:
            if not entry.is_expired():
                return entry.record
            del self._cache[key]

        record = await self._inner.resolve(handle)
        self._cache[key] = CacheEntry(record, time.time(), self._cache_ttl)
        return record

    async def resolve_address(self, address: str) -> HandleRecord:
        return await self._inner.resolve_address(address)

    def invalidate(self, handle: Optional[str] = None) -> None:
        if handle is None:
            self._cache.clear()
        else:
            self._cache.pop(handle.lower(), None)

    def get_cache_stats(self) -> Dict[str, int]:
        expired = sum(1 for e in self._cache.values() if e.is_expired())
        return {"entries": len(self._cache), "expired": expired}
