# echoid/signers/base.py
"""
EchoID Signers: Abstract Signing Capability

The consent ledger never branches on how a transaction gets signed. It
hands a TxRequest to a Signer and gets back a transaction hash.

Implementations:
    - LocalKeySigner: key held on the device (eth_account), signs and
      broadcasts itself
    - WalletConnectSigner: delegates eth_sendTransaction / personal_sign
      to an external wallet session

Usage:
    tx_hash = await signer.send_transaction(
        TxRequest(to=factory, data=calldata, value=fee_wei),
        chain,
    )
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from ..ledger.chain import Chain


class SignerKind(Enum):
    LOCAL = "local"
    EXTERNAL = "external"


@dataclass(frozen=True)
class TxRequest:
    """Transaction the ledger wants sent; the signer fills in nonce/gas price."""
    to: str
    data: bytes = b""
    value: int = 0
    gas: int = 300_000


@dataclass
class SignResult:
    """personal_sign result."""
    signature: bytes
    recovery_id: Optional[int] = None


class Signer(ABC):
    """A wallet that can authorize transactions for one address."""

    @property
    @abstractmethod
    def address(self) -> str:
        """Checksummed address transactions are sent from."""
        pass

    @property
    @abstractmethod
    def kind(self) -> SignerKind:
        pass

    @abstractmethod
    async def send_transaction(self, request: TxRequest, chain: Chain) -> str:
        """
        Authorize and submit a transaction.

        Args:
            request: Destination, calldata, value and gas limit
            chain: Chain used for nonce/gas price and broadcast

        Returns:
            0x-prefixed transaction hash

        Raises:
            SignatureRejected: User declined in the wallet
            SignerError: Signer could not produce a transaction
            BroadcastRejected: Node refused the signed transaction
        """
        pass

    @abstractmethod
    async def sign_message(self, message: bytes) -> SignResult:
        """personal_sign over `message`."""
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}(address={self.address})"
