# echoid/signers/local.py
"""
EchoID Signers: Local Key

Signs with a private key held on the device and broadcasts through the
Chain. The key can be loaded from an encrypted JSON keystore (eth_account
scrypt keystore), which is how the app keeps its locally generated wallet.

Usage:
    signer = LocalKeySigner.create_keystore("wallet.json", password)
    signer = LocalKeySigner.from_keystore("wallet.json", password)
    tx_hash = await signer.send_transaction(request, chain)
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Union

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import to_checksum_address

from ..errors import SignerError
from .base import Signer, SignerKind, SignResult, TxRequest

if TYPE_CHECKING:
    from ..ledger.chain import Chain


logger = logging.getLogger("echoid.signers")


class LocalKeySigner(Signer):
    """Private-key signer (legacy EIP-155 transactions)."""

    def __init__(self, private_key: Union[str, bytes], chain_id: Optional[int] = None):
        """
        Args:
            private_key: 32-byte key or its hex form
            chain_id: Fixed chain id; queried from the chain when None
        """
        try:
            self._account = Account.from_key(private_key)
        except (ValueError, TypeError) as e:
            raise SignerError(f"Invalid private key: {e}") from e
        self._chain_id = chain_id

    @classmethod
    def generate(cls, chain_id: Optional[int] = None) -> "LocalKeySigner":
        return cls(Account.create().key, chain_id=chain_id)

    @classmethod
    def from_keystore(
        cls,
        path: Union[str, Path],
        password: str,
        chain_id: Optional[int] = None,
    ) -> "LocalKeySigner":
        """
        Raises:
            SignerError: Wrong password or corrupt keystore
        """
        with open(path) as f:
            keystore = json.load(f)
        try:
            key = Account.decrypt(keystore, password)
        except ValueError as e:
            raise SignerError(f"Cannot decrypt keystore {path}: {e}") from e
        return cls(key, chain_id=chain_id)

    @classmethod
    def create_keystore(
        cls,
        path: Union[str, Path],
        password: str,
        chain_id: Optional[int] = None,
    ) -> "LocalKeySigner":
        """Generate a key and store it encrypted at `path` (mode 0600)."""
        signer = cls.generate(chain_id=chain_id)
        keystore = Account.encrypt(signer._account.key, password)
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            json.dump(keystore, f)
        logger.info("Created keystore for %s at %s", signer.address, path)
        return signer

    @property
    def address(self) -> str:
        return self._account.address

    @property
    def kind(self) -> SignerKind:
        return SignerKind.LOCAL

    async def send_transaction(self, request: TxRequest, chain: Chain) -> str:
        chain_id = self._chain_id if self._chain_id is not None else await chain.chain_id()
        tx = {
            "to": to_checksum_address(request.to),
            "value": request.value,
            "data": "0x" + request.data.hex(),
            "gas": request.gas,
            "gasPrice": await chain.gas_price(),
            "nonce": await chain.get_transaction_count(self.address),
            "chainId": chain_id,
        }
        signed = self._account.sign_transaction(tx)
        tx_hash = await chain.send_raw_transaction(signed.raw_transaction)
        logger.debug("Broadcast %s from %s (nonce %d)", tx_hash, self.address, tx["nonce"])
        return tx_hash

    async def sign_message(self, message: bytes) -> SignResult:
        signed = self._account.sign_message(encode_defunct(primitive=message))
        return SignResult(signature=bytes(signed.signature), recovery_id=signed.v - 27)
