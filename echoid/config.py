# echoid/config.py
"""
EchoID Core: Settings

Runtime configuration read from ECHOID_* environment variables, with the
defaults the mobile app falls back to when its remote config endpoint is
unreachable (Base mainnet, 0.001 ETH protocol fee).

Usage:
    from echoid.config import Settings, configure_logging

    settings = Settings.from_env()
    configure_logging(settings.log_level)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Mapping, Optional, Tuple


# =============================================================================
# Constants
# =============================================================================

BASE_MAINNET = 8453
BASE_SEPOLIA = 84532

SUPPORTED_CHAINS: Tuple[int, ...] = (BASE_MAINNET, BASE_SEPOLIA)

WEI_PER_ETH = 10 ** 18
DEFAULT_PROTOCOL_FEE_WEI = 10 ** 15  # 0.001 ETH

# Conservative flat gas allowance for createConsent (five bytes32 writes
# plus event). Not a live estimate.
DEFAULT_GAS_ESTIMATE = 300_000

ZERO_ADDRESS = "0x" + "0" * 40

# Cooling-off period between creation and the first unlock action.
LOCK_PERIOD_MS = 24 * 60 * 60 * 1000

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _env_bool(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# =============================================================================
# Settings
# =============================================================================

@dataclass
class Settings:
    """
    Core settings.

    Attributes:
        rpc_url: JSON-RPC endpoint for the target chain
        factory_address: Deployed ConsentFactory address
        chain_id: EVM chain ID
        protocol_fee_wei: Fee sent as value with createConsent
        gas_estimate: Flat gas allowance used by the balance preflight
        receipt_timeout: Seconds to wait for a receipt
        poll_latency: Seconds between receipt polls
        database_url: SQLAlchemy URL of the message store
        state_path: JSON file backing the application state
        strict_event_decoding: Fail instead of deriving a pseudo consent id
        log_level: Root log level name
    """
    rpc_url: str = "https://mainnet.base.org"
    factory_address: str = ZERO_ADDRESS
    chain_id: int = BASE_MAINNET
    protocol_fee_wei: int = DEFAULT_PROTOCOL_FEE_WEI
    gas_estimate: int = DEFAULT_GAS_ESTIMATE
    receipt_timeout: float = 120.0
    poll_latency: float = 2.0
    database_url: str = "sqlite:///./echoid_chat.db"
    state_path: str = "./echoid_state.json"
    strict_event_decoding: bool = False
    log_level: str = "INFO"
    supported_chains: Tuple[int, ...] = field(default=SUPPORTED_CHAINS)

    def __post_init__(self):
        if self.chain_id not in self.supported_chains:
            raise ValueError(f"Unsupported chain id: {self.chain_id}")
        if self.protocol_fee_wei < 0 or self.gas_estimate <= 0:
            raise ValueError("Fee must be >= 0 and gas estimate > 0")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from ECHOID_* variables, falling back to defaults."""
        env = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            rpc_url=env.get("ECHOID_RPC_URL", defaults.rpc_url),
            factory_address=env.get("ECHOID_FACTORY_ADDRESS", defaults.factory_address),
            chain_id=int(env.get("ECHOID_CHAIN_ID", defaults.chain_id)),
            protocol_fee_wei=int(env.get("ECHOID_PROTOCOL_FEE_WEI", defaults.protocol_fee_wei)),
            gas_estimate=int(env.get("ECHOID_GAS_ESTIMATE", defaults.gas_estimate)),
            receipt_timeout=float(env.get("ECHOID_RECEIPT_TIMEOUT", defaults.receipt_timeout)),
            poll_latency=float(env.get("ECHOID_POLL_LATENCY", defaults.poll_latency)),
            database_url=env.get("ECHOID_DATABASE_URL", defaults.database_url),
            state_path=env.get("ECHOID_STATE_PATH", defaults.state_path),
            strict_event_decoding=_env_bool(
                env.get("ECHOID_STRICT_EVENT_DECODING"), defaults.strict_event_decoding
            ),
            log_level=env.get("ECHOID_LOG_LEVEL", defaults.log_level).upper(),
        )


def format_fee(fee_wei: int) -> str:
    """Human-readable fee, e.g. '0.001 ETH'."""
    eth = Decimal(fee_wei) / Decimal(WEI_PER_ETH)
    return f"{eth.normalize():f} ETH"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for applications embedding the core."""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
