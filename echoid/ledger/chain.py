# echoid/ledger/chain.py
"""
EchoID Ledger: Chain Access

Async view of the EVM chain the consent ledger lives on.

    Chain        - abstract interface used by signers, preflight and client
    Web3Chain    - JSON-RPC implementation on web3.AsyncWeb3
    MockChain    - in-memory chain running a minimal ConsentFactory

Receipts are returned as plain dicts:

    {
        "transactionHash": "0x...",
        "status": 1,
        "blockNumber": 12,
        "gasUsed": 21000,
        "logs": [{"address": "0x...", "topics": [bytes, ...], "data": bytes}],
    }

Usage:
    chain = Web3Chain("https://mainnet.base.org")
    receipt = await chain.wait_for_receipt(tx_hash, timeout=120)

    # Tests
    chain = MockChain(factory_address=FACTORY, next_consent_id=42)
    chain.fund(alice, 10**18)
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional

import aiohttp
import rlp
from eth_abi.exceptions import DecodingError
from eth_account import Account
from eth_utils import big_endian_to_int, keccak, to_checksum_address
from rlp.exceptions import RLPException
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import (
    ContractLogicError,
    ProviderConnectionError,
    TimeExhausted,
    TransactionNotFound,
    Web3RPCError,
)

from ..config import DEFAULT_PROTOCOL_FEE_WEI, LOCK_PERIOD_MS
from ..errors import (
    BroadcastRejected,
    NetworkError,
    TransactionTimeout,
    ValidationError,
)
from .codec import decode_call, encode_consent_created_log, to_bytes, to_hex


logger = logging.getLogger("echoid.ledger")


# =============================================================================
# Interface
# =============================================================================

class Chain(ABC):
    """Chain operations the consent ledger needs."""

    @abstractmethod
    async def chain_id(self) -> int:
        ...

    @abstractmethod
    async def get_balance(self, address: str) -> int:
        ...

    @abstractmethod
    async def gas_price(self) -> int:
        ...

    @abstractmethod
    async def get_transaction_count(self, address: str) -> int:
        """Pending nonce for `address`."""
        ...

    @abstractmethod
    async def send_raw_transaction(self, raw_tx: bytes) -> str:
        """
        Broadcast a signed transaction.

        Raises:
            BroadcastRejected: Node refused it
            NetworkError: Transport failure
        """
        ...

    @abstractmethod
    async def submit_transaction(self, tx: Mapping[str, Any]) -> str:
        """Submit an unsigned transaction for an account the node manages."""
        ...

    @abstractmethod
    async def wait_for_receipt(
        self,
        tx_hash: str,
        timeout: float = 120.0,
        poll_latency: float = 2.0,
    ) -> Dict[str, Any]:
        """
        Poll until the transaction is mined.

        Raises:
            TransactionTimeout: Not mined within `timeout`
        """
        ...

    @abstractmethod
    async def get_revert_reason(self, tx_hash: str) -> Optional[str]:
        ...

    @abstractmethod
    async def get_block_timestamp(self, block_number: int) -> int:
        """Block timestamp in ms since epoch."""
        ...


def normalize_receipt(receipt: Mapping[str, Any]) -> Dict[str, Any]:
    """Strip AttributeDict/HexBytes from a web3 receipt."""
    tx_hash = to_hex(receipt["transactionHash"])
    block_number = int(receipt["blockNumber"])
    return {
        "transactionHash": tx_hash,
        "status": int(receipt["status"]),
        "blockNumber": block_number,
        "gasUsed": int(receipt.get("gasUsed", 0)),
        "logs": [
            {
                "address": to_checksum_address(log["address"]),
                "topics": [to_bytes(t) for t in log["topics"]],
                "data": to_bytes(log.get("data", b"")),
                "logIndex": int(log.get("logIndex", index)),
                "transactionIndex": int(log.get("transactionIndex", 0)),
                "transactionHash": tx_hash,
                "blockHash": to_hex(log.get("blockHash", b"\x00" * 32)),
                "blockNumber": block_number,
            }
            for index, log in enumerate(receipt.get("logs", []))
        ],
    }


# =============================================================================
# Web3 Implementation
# =============================================================================

_TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, ProviderConnectionError)


class Web3Chain(Chain):
    """Chain over JSON-RPC (web3.AsyncWeb3)."""

    def __init__(self, rpc_url: str, request_timeout: float = 30.0):
        """
        Args:
            rpc_url: HTTP(S) JSON-RPC endpoint
            request_timeout: Per-request timeout in seconds
        """
        self.rpc_url = rpc_url
        self._w3 = AsyncWeb3(
            AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": request_timeout})
        )

    @property
    def w3(self) -> AsyncWeb3:
        return self._w3

    async def chain_id(self) -> int:
        try:
            return await self._w3.eth.chain_id
        except _TRANSPORT_ERRORS as e:
            raise NetworkError(f"eth_chainId failed: {e}") from e

    async def get_balance(self, address: str) -> int:
        try:
            return await self._w3.eth.get_balance(to_checksum_address(address))
        except _TRANSPORT_ERRORS as e:
            raise NetworkError(f"eth_getBalance failed: {e}") from e

    async def gas_price(self) -> int:
        try:
            return await self._w3.eth.gas_price
        except _TRANSPORT_ERRORS as e:
            raise NetworkError(f"eth_gasPrice failed: {e}") from e

    async def get_transaction_count(self, address: str) -> int:
        try:
            return await self._w3.eth.get_transaction_count(
                to_checksum_address(address), "pending"
            )
        except _TRANSPORT_ERRORS as e:
            raise NetworkError(f"eth_getTransactionCount failed: {e}") from e

    async def send_raw_transaction(self, raw_tx: bytes) -> str:
        try:
            tx_hash = await self._w3.eth.send_raw_transaction(raw_tx)
        except _TRANSPORT_ERRORS as e:
            raise NetworkError(f"eth_sendRawTransaction failed: {e}") from e
        except Web3RPCError as e:
            raise BroadcastRejected(f"Node rejected transaction: {e}") from e
        return to_hex(tx_hash)

    async def submit_transaction(self, tx: Mapping[str, Any]) -> str:
        try:
            tx_hash = await self._w3.eth.send_transaction(dict(tx))
        except _TRANSPORT_ERRORS as e:
            raise NetworkError(f"eth_sendTransaction failed: {e}") from e
        except Web3RPCError as e:
            raise BroadcastRejected(f"Node rejected transaction: {e}") from e
        return to_hex(tx_hash)

    async def wait_for_receipt(
        self,
        tx_hash: str,
        timeout: float = 120.0,
        poll_latency: float = 2.0,
    ) -> Dict[str, Any]:
        try:
            receipt = await self._w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=timeout, poll_latency=poll_latency
            )
        except TimeExhausted as e:
            raise TransactionTimeout(tx_hash, timeout) from e
        except _TRANSPORT_ERRORS as e:
            raise NetworkError(f"Receipt polling failed for {tx_hash}: {e}") from e
        return normalize_receipt(receipt)

    async def get_revert_reason(self, tx_hash: str) -> Optional[str]:
        """Replay the transaction as eth_call at its block to recover the reason."""
        try:
            tx = await self._w3.eth.get_transaction(tx_hash)
            call = {
                "from": tx["from"],
                "to": tx["to"],
                "data": tx["input"],
                "value": tx["value"],
            }
            await self._w3.eth.call(call, block_identifier=tx["blockNumber"])
        except ContractLogicError as e:
            return e.message or str(e)
        except (TransactionNotFound, Web3RPCError) as e:
            logger.debug("Revert reason unavailable for %s: %s", tx_hash, e)
            return None
        except _TRANSPORT_ERRORS as e:
            raise NetworkError(f"Revert replay failed for {tx_hash}: {e}") from e
        return None

    async def get_block_timestamp(self, block_number: int) -> int:
        try:
            block = await self._w3.eth.get_block(block_number)
        except _TRANSPORT_ERRORS as e:
            raise NetworkError(f"eth_getBlockByNumber failed: {e}") from e
        return int(block["timestamp"]) * 1000


# =============================================================================
# Mock Chain (for testing without blockchain)
# =============================================================================

@dataclass
class MockConsentRecord:
    """Factory-side view of a consent."""
    consent_id: int
    party1: str
    party2: str
    created_at: int
    locked_until: int
    unlock_requested_by: Optional[str] = None
    unlock_approved: bool = False


class _Revert(Exception):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class MockChain(Chain):
    """
    In-memory chain for testing.

    Mines every transaction immediately and executes calls to
    `factory_address` against a minimal ConsentFactory: fee check,
    ConsentCreated emission, lock period and distinct-party unlock.

    Knobs:
        next_consent_id  id assigned to the next createConsent
        emit_events      False mines createConsent without its log
        revert_next()    force the next transaction to revert
        withhold_receipts  receipts never arrive (TransactionTimeout)
        offline          every call raises NetworkError
    """

    DEFAULT_GAS_PRICE = 1_000_000_000  # 1 gwei
    GAS_USED = 150_000

    def __init__(
        self,
        factory_address: str,
        chain_id: int = 8453,
        next_consent_id: int = 1,
        protocol_fee_wei: int = DEFAULT_PROTOCOL_FEE_WEI,
        gas_price: int = DEFAULT_GAS_PRICE,
        clock: Optional[Callable[[], int]] = None,
        emit_events: bool = True,
    ):
        self.factory_address = to_checksum_address(factory_address)
        self._chain_id = chain_id
        self.next_consent_id = next_consent_id
        self.protocol_fee_wei = protocol_fee_wei
        self._gas_price = gas_price
        self._clock = clock or (lambda: int(time.time() * 1000))
        self.emit_events = emit_events
        self.withhold_receipts = False
        self.offline = False

        self.block_number = 0
        self.block_timestamps: Dict[int, int] = {}
        self.balances: Dict[str, int] = {}
        self.nonces: Dict[str, int] = {}
        self.consents: Dict[int, MockConsentRecord] = {}
        self.transactions: List[Dict[str, Any]] = []
        self._receipts: Dict[str, Dict[str, Any]] = {}
        self._revert_reasons: Dict[str, str] = {}
        self._forced_revert: Optional[str] = None

    # -------------------------------------------------------------------------
    # Test controls
    # -------------------------------------------------------------------------

    def fund(self, address: str, amount_wei: int) -> None:
        key = address.lower()
        self.balances[key] = self.balances.get(key, 0) + amount_wei

    def revert_next(self, reason: str = "execution reverted") -> None:
        self._forced_revert = reason

    def _check_online(self) -> None:
        if self.offline:
            raise NetworkError("MockChain offline")

    # -------------------------------------------------------------------------
    # Chain interface
    # -------------------------------------------------------------------------

    async def chain_id(self) -> int:
        self._check_online()
        return self._chain_id

    async def get_balance(self, address: str) -> int:
        self._check_online()
        return self.balances.get(address.lower(), 0)

    async def gas_price(self) -> int:
        self._check_online()
        return self._gas_price

    async def get_transaction_count(self, address: str) -> int:
        self._check_online()
        return self.nonces.get(address.lower(), 0)

    async def send_raw_transaction(self, raw_tx: bytes) -> str:
        self._check_online()
        tx = self._decode_raw(bytes(raw_tx))
        if tx["chainId"] is not None and tx["chainId"] != self._chain_id:
            raise BroadcastRejected(f"invalid chain id {tx['chainId']}")
        return self._mine(tx, to_hex(keccak(bytes(raw_tx))))

    async def submit_transaction(self, tx: Mapping[str, Any]) -> str:
        self._check_online()
        sender = to_checksum_address(tx["from"])
        normalized = {
            "from": sender,
            "to": to_checksum_address(tx["to"]) if tx.get("to") else None,
            "value": _as_int(tx.get("value", 0)),
            "data": to_bytes(tx.get("data", b"")),
            "gas": _as_int(tx.get("gas", self.GAS_USED)),
            "gasPrice": _as_int(tx.get("gasPrice", self._gas_price)),
            "nonce": self.nonces.get(sender.lower(), 0),
            "chainId": self._chain_id,
        }
        tx_hash = to_hex(keccak(text=f"{sender}:{normalized['nonce']}:{normalized['data'].hex()}"))
        return self._mine(normalized, tx_hash)

    async def wait_for_receipt(
        self,
        tx_hash: str,
        timeout: float = 120.0,
        poll_latency: float = 2.0,
    ) -> Dict[str, Any]:
        self._check_online()
        receipt = self._receipts.get(tx_hash.lower())
        if receipt is None or self.withhold_receipts:
            raise TransactionTimeout(tx_hash, timeout)
        return receipt

    async def get_revert_reason(self, tx_hash: str) -> Optional[str]:
        return self._revert_reasons.get(tx_hash.lower())

    async def get_block_timestamp(self, block_number: int) -> int:
        self._check_online()
        try:
            return self.block_timestamps[block_number]
        except KeyError:
            raise ValidationError(f"Unknown block {block_number}") from None

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def _decode_raw(self, raw: bytes) -> Dict[str, Any]:
        """Decode a signed legacy or EIP-1559 transaction."""
        try:
            sender = Account.recover_transaction(raw)
            if raw[0] == 0x02:
                fields = rlp.decode(raw[1:])
                chain_id = big_endian_to_int(fields[0])
                nonce, gas_price, gas, to, value, data = (
                    fields[1], fields[3], fields[4], fields[5], fields[6], fields[7]
                )
            else:
                fields = rlp.decode(raw)
                nonce, gas_price, gas, to, value, data = fields[:6]
                v = big_endian_to_int(fields[6])
                chain_id = (v - 35) // 2 if v >= 35 else None
        except (RLPException, ValueError, TypeError, IndexError) as e:
            raise BroadcastRejected(f"invalid raw transaction: {e}") from e

        return {
            "from": to_checksum_address(sender),
            "to": to_checksum_address(to) if to else None,
            "value": big_endian_to_int(value),
            "data": bytes(data),
            "gas": big_endian_to_int(gas),
            "gasPrice": big_endian_to_int(gas_price),
            "nonce": big_endian_to_int(nonce),
            "chainId": chain_id,
        }

    def _mine(self, tx: Dict[str, Any], tx_hash: str) -> str:
        sender = tx["from"].lower()
        expected_nonce = self.nonces.get(sender, 0)
        if tx["nonce"] != expected_nonce:
            raise BroadcastRejected(f"nonce mismatch: expected {expected_nonce}, got {tx['nonce']}")

        gas_cost = self.GAS_USED * tx["gasPrice"]
        if self.balances.get(sender, 0) < tx["value"] + tx["gas"] * tx["gasPrice"]:
            raise BroadcastRejected("insufficient funds for gas * price + value")

        self.nonces[sender] = expected_nonce + 1
        self.block_number += 1
        self.block_timestamps[self.block_number] = self._clock()
        self.balances[sender] -= gas_cost
        self.transactions.append(dict(tx, hash=tx_hash))

        logs: List[Dict[str, Any]] = []
        status = 1
        try:
            if self._forced_revert is not None:
                reason, self._forced_revert = self._forced_revert, None
                raise _Revert(reason)
            logs = self._execute(tx)
        except _Revert as e:
            status = 0
            self._revert_reasons[tx_hash.lower()] = e.reason
            logger.debug("MockChain reverted %s: %s", tx_hash, e.reason)

        if status == 1:
            self.balances[sender] -= tx["value"]
            if tx["to"]:
                self.fund(tx["to"], tx["value"])

        for index, log in enumerate(logs):
            log.update(
                logIndex=index,
                transactionIndex=0,
                transactionHash=tx_hash,
                blockHash=to_hex(keccak(text=f"block:{self.block_number}")),
                blockNumber=self.block_number,
            )

        self._receipts[tx_hash.lower()] = {
            "transactionHash": tx_hash,
            "status": status,
            "blockNumber": self.block_number,
            "gasUsed": self.GAS_USED,
            "logs": logs,
        }
        return tx_hash

    def _execute(self, tx: Dict[str, Any]) -> List[Dict[str, Any]]:
        if tx["to"] != self.factory_address:
            return []
        try:
            call = decode_call(tx["data"])
        except (ValidationError, DecodingError) as e:
            raise _Revert(f"invalid calldata: {e}") from e

        if call.name == "createConsent":
            return self._create_consent(tx, call.args)
        if call.name == "requestUnlock":
            self._request_unlock(tx["from"], call.args[0])
        elif call.name == "approveUnlock":
            self._approve_unlock(tx["from"], call.args[0])
        return []

    def _create_consent(self, tx: Dict[str, Any], args: tuple) -> List[Dict[str, Any]]:
        counterparty = to_checksum_address(args[6])
        if tx["value"] < self.protocol_fee_wei:
            raise _Revert("Insufficient protocol fee")
        if counterparty == tx["from"]:
            raise _Revert("Counterparty cannot be sender")

        consent_id = self.next_consent_id
        self.next_consent_id += 1
        now = self._clock()
        self.consents[consent_id] = MockConsentRecord(
            consent_id=consent_id,
            party1=tx["from"],
            party2=counterparty,
            created_at=now,
            locked_until=now + LOCK_PERIOD_MS,
        )
        if not self.emit_events:
            return []
        return [encode_consent_created_log(self.factory_address, consent_id, tx["from"], counterparty)]

    def _record(self, sender: str, consent_id: int) -> MockConsentRecord:
        record = self.consents.get(consent_id)
        if record is None:
            raise _Revert("Consent not found")
        if sender not in (record.party1, record.party2):
            raise _Revert("Not a party")
        if self._clock() < record.locked_until:
            raise _Revert("Consent locked")
        return record

    def _request_unlock(self, sender: str, consent_id: int) -> None:
        record = self._record(sender, consent_id)
        if record.unlock_requested_by is not None:
            raise _Revert("Unlock already requested")
        record.unlock_requested_by = sender

    def _approve_unlock(self, sender: str, consent_id: int) -> None:
        record = self._record(sender, consent_id)
        if record.unlock_requested_by is None:
            raise _Revert("No unlock request")
        if record.unlock_requested_by == sender:
            raise _Revert("Requester cannot approve")
        record.unlock_approved = True


def _as_int(value: Any) -> int:
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    return int(value)
