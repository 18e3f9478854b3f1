# echoid/ledger/preflight.py
"""
EchoID Ledger: Balance / Fee Preflight

Checks, before any signer interaction, that the sender can cover

    required_total = protocol_fee + gas_estimate * gas_price

The gas figure is a flat conservative allowance, not a live estimate, so
the check is advisory: a transaction that passes here can still be
rejected at broadcast (BroadcastRejected) or revert (TransactionReverted).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict

from ..config import DEFAULT_GAS_ESTIMATE, format_fee
from ..errors import InsufficientBalance
from .chain import Chain


logger = logging.getLogger("echoid.ledger")


def required_total(fee_wei: int, gas_estimate: int, gas_price: int) -> int:
    return fee_wei + gas_estimate * gas_price


@dataclass(frozen=True)
class PreflightReport:
    """Outcome of a balance check."""
    address: str
    balance: int
    fee_wei: int
    gas_estimate: int
    gas_price: int

    @property
    def gas_cost(self) -> int:
        return self.gas_estimate * self.gas_price

    @property
    def required_total(self) -> int:
        return required_total(self.fee_wei, self.gas_estimate, self.gas_price)

    @property
    def sufficient(self) -> bool:
        return self.balance >= self.required_total

    @property
    def shortfall(self) -> int:
        return max(0, self.required_total - self.balance)

    def to_dict(self) -> Dict[str, int]:
        return {
            "balance": self.balance,
            "fee_wei": self.fee_wei,
            "gas_estimate": self.gas_estimate,
            "gas_price": self.gas_price,
            "gas_cost": self.gas_cost,
            "required_total": self.required_total,
            "shortfall": self.shortfall,
        }


def evaluate(report: PreflightReport) -> PreflightReport:
    """
    Raise if the report's balance is short.

    Raises:
        InsufficientBalance: balance < required_total
    """
    if not report.sufficient:
        raise InsufficientBalance(
            balance=report.balance,
            required_total=report.required_total,
            fee_wei=report.fee_wei,
            gas_estimate=report.gas_estimate,
            gas_price=report.gas_price,
        )
    return report


class BalancePreflight:
    """Balance check against live chain state."""

    def __init__(self, chain: Chain, gas_estimate: int = DEFAULT_GAS_ESTIMATE):
        if gas_estimate <= 0:
            raise ValueError("gas_estimate must be positive")
        self.chain = chain
        self.gas_estimate = gas_estimate

    async def report(self, address: str, fee_wei: int) -> PreflightReport:
        """Fetch balance and gas price without judging them."""
        balance = await self.chain.get_balance(address)
        gas_price = await self.chain.gas_price()
        return PreflightReport(
            address=address,
            balance=balance,
            fee_wei=fee_wei,
            gas_estimate=self.gas_estimate,
            gas_price=gas_price,
        )

    async def check(self, address: str, fee_wei: int) -> PreflightReport:
        """
        Args:
            address: Sender wallet address
            fee_wei: Protocol fee sent as transaction value

        Returns:
            PreflightReport with sufficient == True

        Raises:
            InsufficientBalance: Balance short of fee plus gas allowance
            NetworkError: Balance or gas price unavailable
        """
        report = await self.report(address, fee_wei)
        if not report.sufficient:
            logger.info(
                "Preflight failed for %s: need %s, short %d wei",
                address,
                format_fee(report.required_total),
                report.shortfall,
            )
        return evaluate(report)
