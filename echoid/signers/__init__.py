# echoid/signers/__init__.py
"""
EchoID Signers

    base:          Signer ABC, TxRequest, SignResult
    local:         LocalKeySigner (eth_account key / keystore)
    walletconnect: WalletConnectSigner, SessionClient, MockSessionClient
"""

from .base import Signer, SignerKind, SignResult, TxRequest
from .local import LocalKeySigner
from .walletconnect import (
    MockSessionClient,
    SessionClient,
    WalletConnectSigner,
    WCSession,
)

__all__ = [
    "Signer",
    "SignerKind",
    "SignResult",
    "TxRequest",
    "LocalKeySigner",
    "MockSessionClient",
    "SessionClient",
    "WalletConnectSigner",
    "WCSession",
]
