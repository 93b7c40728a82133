"""
Lending Rate Primitives
Shared types and unit conversion for the money-market rate adapters.

All rates leave this layer as integer basis points (1 bp = 0.01%) and all
balances as integers in the asset's smallest unit. Conversion never goes
through float, so quotes from protocols whose native encodings differ by
nine orders of magnitude stay comparable.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Sequence, Tuple

from eth_abi.exceptions import DecodingError
from web3 import Web3

from infrastructure.errors import ProtocolReadError

logger = logging.getLogger("LendingRates")

# Fixed-point scales
RAY = 10**27
WAD = 10**18
BPS = 10_000

# 365.25 days
SECONDS_PER_YEAR = 31_557_600


class ProtocolId(str, Enum):
    AAVE = "aave"
    COMPOUND = "compound"

    @property
    def label(self) -> str:
        return "Aave" if self is ProtocolId.AAVE else "Compound"


# ERC20 ABI (approve for plans, balanceOf/symbol/decimals for reads)
ERC20_ABI = [
    {
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"}
        ],
        "name": "approve",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function"
    },
    {
        "inputs": [{"name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "symbol",
        "outputs": [{"name": "", "type": "string"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "stateMutability": "view",
        "type": "function"
    },
]


# ============================================
# SNAPSHOT TYPES
# ============================================

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class RateQuote:
    """Annualized supply rate of one protocol, in basis points."""
    protocol: ProtocolId
    rate_bp: int
    as_of: datetime = field(default_factory=_utcnow)
    supported: bool = True

    def __post_init__(self):
        if self.rate_bp < 0:
            raise ValueError(f"{self.protocol.value} rate cannot be negative: {self.rate_bp}")

    @property
    def percent(self) -> float:
        return self.rate_bp / 100

    @classmethod
    def unsupported(cls, protocol: ProtocolId) -> "RateQuote":
        """An unlisted reserve is a permanently unattractive option, not a failure."""
        return cls(protocol=protocol, rate_bp=0, supported=False)


@dataclass(frozen=True)
class ProtocolPosition:
    """Amount a wallet has supplied to one protocol."""
    protocol: ProtocolId
    supplied_amount: int
    asset: str

    @property
    def is_empty(self) -> bool:
        return self.supplied_amount == 0


# ============================================
# UNIT CONVERSION
# ============================================

def ray_rate_to_bp(liquidity_rate: int) -> int:
    """Already-annualized RAY (1e27) rate -> floor basis points."""
    if liquidity_rate < 0:
        raise ValueError("liquidity rate cannot be negative")
    return liquidity_rate * BPS // RAY


def per_second_rate_to_bp(rate_per_second: int) -> int:
    """Per-second WAD (1e18) rate -> simple annualized floor basis points."""
    if rate_per_second < 0:
        raise ValueError("supply rate cannot be negative")
    return rate_per_second * SECONDS_PER_YEAR * BPS // WAD


def format_units(amount: int, decimals: int) -> str:
    """Integer amount -> decimal string without going through float."""
    sign = "-" if amount < 0 else ""
    amount = abs(amount)
    if decimals == 0:
        return f"{sign}{amount}"
    whole, frac = divmod(amount, 10**decimals)
    return f"{sign}{whole}.{str(frac).zfill(decimals)}"


# ============================================
# RAW READS
# ============================================

def call_view(w3: Web3, protocol: ProtocolId, step: str, to: str, data: str) -> bytes:
    """
    eth_call a view function and return the raw return data.

    Empty return data (b"") means the target has nothing to say about this
    asset and is left to the caller to interpret. Transport failures and
    reverts surface as ProtocolReadError.
    """
    try:
        raw = w3.eth.call({"to": to, "data": data})
    except Exception as e:
        raise ProtocolReadError(protocol.value, step, e) from e
    return bytes(raw or b"")


def decode_strict(
    w3: Web3,
    protocol: ProtocolId,
    step: str,
    output_types: Sequence[str],
    raw: bytes
) -> Tuple[Any, ...]:
    """Decode non-empty return data; anything malformed is a read failure."""
    try:
        return tuple(w3.codec.decode(list(output_types), raw))
    except DecodingError as e:
        raise ProtocolReadError(protocol.value, step, e) from e


def has_code(w3: Web3, protocol: ProtocolId, address: str) -> bool:
    try:
        code = w3.eth.get_code(address)
    except Exception as e:
        raise ProtocolReadError(protocol.value, "getCode", e) from e
    return len(bytes(code or b"")) > 0
