# echoid/signers/walletconnect.py
"""
EchoID Signers: WalletConnect Session

Delegates signing to an external wallet reached over a WalletConnect v2
session. The wallet builds, signs and broadcasts the transaction itself
and answers eth_sendTransaction with the hash.

The relay client is abstracted as SessionClient so the signer works with
any WalletConnect SDK binding; MockSessionClient routes requests into a
Chain for tests.

Usage:
    client = MockSessionClient(chain, accounts=[alice])
    session = await client.connect([8453])
    signer = WalletConnectSigner(client, session)
    tx_hash = await signer.send_transaction(request, chain)
"""

from __future__ import annotations

import logging
import re
import secrets
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from eth_utils import keccak, to_checksum_address

from ..errors import SignatureRejected, SignerError
from .base import Signer, SignerKind, SignResult, TxRequest

if TYPE_CHECKING:
    from ..ledger.chain import Chain


logger = logging.getLogger("echoid.signers")


# =============================================================================
# Constants
# =============================================================================

NAMESPACE = "eip155"

ETH_SIGN = "personal_sign"
ETH_SEND_TRANSACTION = "eth_sendTransaction"

SESSION_TTL = 7 * 24 * 3600

_TX_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")


# =============================================================================
# Session Types
# =============================================================================

@dataclass
class WCSession:
    """Settled WalletConnect session."""
    topic: str
    namespaces: Dict[str, Any]
    expiry: int
    peer_name: str = ""

    @property
    def is_expired(self) -> bool:
        return time.time() > self.expiry

    def get_accounts(self, namespace: str = NAMESPACE) -> List[str]:
        # Format: eip155:8453:0x... -> 0x...
        accounts = self.namespaces.get(namespace, {}).get("accounts", [])
        return [a.split(":")[-1] for a in accounts]

    def get_chains(self, namespace: str = NAMESPACE) -> List[int]:
        chains = self.namespaces.get(namespace, {}).get("chains", [])
        return [int(c.split(":")[-1]) for c in chains]


class SessionClient(ABC):
    """Relay client able to forward JSON-RPC requests to a wallet."""

    @abstractmethod
    async def request(self, topic: str, chain_id: str, request: Dict[str, Any]) -> Any:
        """
        Args:
            topic: Session topic
            chain_id: CAIP-2 chain, e.g. "eip155:8453"
            request: {"method": ..., "params": [...]}

        Raises:
            SignatureRejected: User declined
            SignerError: Session missing/expired or wallet error
        """
        pass


# =============================================================================
# Mock Session Client
# =============================================================================

class MockSessionClient(SessionClient):
    """
    Wallet stand-in for tests.

    eth_sendTransaction is submitted to `chain` as an unsigned transaction
    from the session account. personal_sign returns a deterministic
    keccak-based placeholder signature.
    """

    def __init__(self, chain: "Chain", accounts: List[str]):
        if not accounts:
            raise ValueError("MockSessionClient needs at least one account")
        self.chain = chain
        self.accounts = [to_checksum_address(a) for a in accounts]
        self.auto_approve = True
        self.requests: List[Dict[str, Any]] = []
        self._sessions: Dict[str, WCSession] = {}

    async def connect(self, chain_ids: List[int]) -> WCSession:
        """Settle a session exposing all mock accounts on `chain_ids`."""
        if not self.auto_approve:
            raise SignatureRejected("User rejected connection")
        chains = [f"{NAMESPACE}:{c}" for c in chain_ids]
        session = WCSession(
            topic=secrets.token_hex(32),
            namespaces={
                NAMESPACE: {
                    "chains": chains,
                    "accounts": [f"{c}:{a}" for c in chains for a in self.accounts],
                    "methods": [ETH_SEND_TRANSACTION, ETH_SIGN],
                    "events": ["accountsChanged", "chainChanged"],
                }
            },
            expiry=int(time.time()) + SESSION_TTL,
            peer_name="Mock Wallet",
        )
        self._sessions[session.topic] = session
        return session

    async def disconnect(self, topic: str) -> None:
        self._sessions.pop(topic, None)

    async def request(self, topic: str, chain_id: str, request: Dict[str, Any]) -> Any:
        session = self._sessions.get(topic)
        if session is None:
            raise SignerError("Session not found")
        if session.is_expired:
            raise SignerError("Session expired")

        self.requests.append(dict(request, chainId=chain_id))
        if not self.auto_approve:
            raise SignatureRejected("User rejected request")

        method = request.get("method", "")
        params = request.get("params", [])
        if method == ETH_SEND_TRANSACTION:
            return await self.chain.submit_transaction(params[0])
        if method == ETH_SIGN:
            message = bytes.fromhex(params[0][2:])
            digest = keccak(b"mock_sign" + message + params[1].lower().encode())
            return "0x" + (digest + digest + b"\x1b").hex()
        raise SignerError(f"Method not supported: {method}")


# =============================================================================
# WalletConnect Signer
# =============================================================================

class WalletConnectSigner(Signer):
    """Signer backed by an external wallet session."""

    def __init__(
        self,
        client: SessionClient,
        session: WCSession,
        chain_id: Optional[int] = None,
        account: Optional[str] = None,
    ):
        """
        Args:
            client: Relay client
            session: Settled session
            chain_id: Chain to address requests to (session's first chain if None)
            account: Session account to use (first account if None)
        """
        accounts = session.get_accounts()
        chains = session.get_chains()
        if not accounts or not chains:
            raise SignerError("Session exposes no eip155 accounts")
        self._client = client
        self._session = session
        self._chain_id = chain_id if chain_id is not None else chains[0]
        self._address = to_checksum_address(account or accounts[0])

    @property
    def address(self) -> str:
        return self._address

    @property
    def kind(self) -> SignerKind:
        return SignerKind.EXTERNAL

    @property
    def session(self) -> WCSession:
        return self._session

    async def _send_request(self, method: str, params: List[Any]) -> Any:
        if self._session.is_expired:
            raise SignerError("WalletConnect session expired")
        return await self._client.request(
            topic=self._session.topic,
            chain_id=f"{NAMESPACE}:{self._chain_id}",
            request={"method": method, "params": params},
        )

    async def send_transaction(self, request: TxRequest, chain: "Chain") -> str:
        tx = {
            "from": self._address,
            "to": to_checksum_address(request.to),
            "value": hex(request.value),
            "data": "0x" + request.data.hex(),
            "gas": hex(request.gas),
        }
        tx_hash = await self._send_request(ETH_SEND_TRANSACTION, [tx])
        if not isinstance(tx_hash, str) or not _TX_HASH_RE.match(tx_hash):
            raise SignerError(f"Wallet returned malformed transaction hash: {tx_hash!r}")
        logger.debug("Wallet %s sent %s", self._session.peer_name or "peer", tx_hash)
        return tx_hash.lower()

    async def sign_message(self, message: bytes) -> SignResult:
        signature_hex = await self._send_request(ETH_SIGN, ["0x" + message.hex(), self._address])
        signature = bytes.fromhex(signature_hex[2:])
        return SignResult(
            signature=signature,
            recovery_id=signature[-1] - 27 if len(signature) == 65 else None,
        )
