"""
Aave V3 Rate Adapter + Position Reader

Reads the USDC reserve through the AaveProtocolDataProvider:
- getReserveTokensAddresses(asset) resolves the aToken (zero = not listed)
- getReserveData(asset).liquidityRate is RAY-scaled and already annualized
- the wallet's supplied amount is the aToken balanceOf(wallet)
"""

import logging
from dataclasses import dataclass
from typing import Optional

from web3 import Web3

from infrastructure.config import ProtocolAddresses
from infrastructure.rpc import ZERO_ADDRESS, checksum
from data_sources.lending_rates import (
    ERC20_ABI,
    ProtocolId,
    ProtocolPosition,
    RateQuote,
    call_view,
    decode_strict,
    ray_rate_to_bp,
)

logger = logging.getLogger("AaveV3")

PROTOCOL = ProtocolId.AAVE

AAVE_POOL_ABI = [
    {
        "inputs": [
            {"name": "asset", "type": "address"},
            {"name": "amount", "type": "uint256"},
            {"name": "onBehalfOf", "type": "address"},
            {"name": "referralCode", "type": "uint16"}
        ],
        "name": "supply",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function"
    },
    {
        "inputs": [
            {"name": "asset", "type": "address"},
            {"name": "amount", "type": "uint256"},
            {"name": "to", "type": "address"}
        ],
        "name": "withdraw",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "nonpayable",
        "type": "function"
    },
]

AAVE_DATA_PROVIDER_ABI = [
    {
        "inputs": [{"name": "asset", "type": "address"}],
        "name": "getReserveData",
        "outputs": [
            {"name": "unbacked", "type": "uint256"},
            {"name": "accruedToTreasuryScaled", "type": "uint256"},
            {"name": "totalAToken", "type": "uint256"},
            {"name": "totalStableDebt", "type": "uint256"},
            {"name": "totalVariableDebt", "type": "uint256"},
            {"name": "liquidityRate", "type": "uint256"},
            {"name": "variableBorrowRate", "type": "uint256"},
            {"name": "stableBorrowRate", "type": "uint256"},
            {"name": "averageStableBorrowRate", "type": "uint256"},
            {"name": "liquidityIndex", "type": "uint256"},
            {"name": "variableBorrowIndex", "type": "uint256"},
            {"name": "lastUpdateTimestamp", "type": "uint40"}
        ],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [{"name": "asset", "type": "address"}],
        "name": "getReserveTokensAddresses",
        "outputs": [
            {"name": "aTokenAddress", "type": "address"},
            {"name": "stableDebtTokenAddress", "type": "address"},
            {"name": "variableDebtTokenAddress", "type": "address"}
        ],
        "stateMutability": "view",
        "type": "function"
    },
]

RESERVE_DATA_TYPES = ["uint256"] * 11 + ["uint40"]
RESERVE_TOKENS_TYPES = ["address", "address", "address"]


# ============================================
# RESPONSE STRUCTURES
# ============================================

@dataclass(frozen=True)
class AaveReserveTokens:
    a_token: str
    stable_debt_token: str
    variable_debt_token: str

    @property
    def listed(self) -> bool:
        return self.a_token.lower() != ZERO_ADDRESS

    @classmethod
    def decode(cls, w3: Web3, raw: bytes) -> "AaveReserveTokens":
        return cls(*decode_strict(w3, PROTOCOL, "getReserveTokensAddresses", RESERVE_TOKENS_TYPES, raw))


@dataclass(frozen=True)
class AaveReserveData:
    unbacked: int
    accrued_to_treasury_scaled: int
    total_a_token: int
    total_stable_debt: int
    total_variable_debt: int
    liquidity_rate: int
    variable_borrow_rate: int
    stable_borrow_rate: int
    average_stable_borrow_rate: int
    liquidity_index: int
    variable_borrow_index: int
    last_update_timestamp: int

    @classmethod
    def decode(cls, w3: Web3, raw: bytes) -> "AaveReserveData":
        return cls(*decode_strict(w3, PROTOCOL, "getReserveData", RESERVE_DATA_TYPES, raw))


# ============================================
# SOURCE
# ============================================

class AaveV3Source:
    """
    Read-only view of one Aave V3 reserve.

    Usage:
        source = AaveV3Source(w3, addresses)
        quote = source.get_rate()
        position = source.get_position(safe_address)
    """

    protocol = PROTOCOL

    def __init__(self, w3: Web3, addresses: ProtocolAddresses):
        self.w3 = w3
        self.asset = checksum(addresses.asset)
        self.pool_address = checksum(addresses.aave_pool)
        self.data_provider = w3.eth.contract(
            address=checksum(addresses.aave_data_provider),
            abi=AAVE_DATA_PROVIDER_ABI
        )

    def get_reserve_tokens(self) -> Optional[AaveReserveTokens]:
        """Receipt-token registry lookup. None when the provider returns nothing."""
        data = self.data_provider.functions.getReserveTokensAddresses(self.asset)._encode_transaction_data()
        raw = call_view(self.w3, PROTOCOL, "getReserveTokensAddresses", self.data_provider.address, data)
        if not raw:
            return None
        return AaveReserveTokens.decode(self.w3, raw)

    def get_reserve_data(self) -> Optional[AaveReserveData]:
        data = self.data_provider.functions.getReserveData(self.asset)._encode_transaction_data()
        raw = call_view(self.w3, PROTOCOL, "getReserveData", self.data_provider.address, data)
        if not raw:
            return None
        return AaveReserveData.decode(self.w3, raw)

    def get_rate(self) -> RateQuote:
        tokens = self.get_reserve_tokens()
        if tokens is None or not tokens.listed:
            logger.warning(f"Aave reserve unavailable for {self.asset}, defaulting rate to 0")
            return RateQuote.unsupported(PROTOCOL)

        reserve = self.get_reserve_data()
        if reserve is None:
            logger.warning(f"Aave reserve data empty for {self.asset}, defaulting rate to 0")
            return RateQuote.unsupported(PROTOCOL)

        rate_bp = ray_rate_to_bp(reserve.liquidity_rate)
        logger.debug(f"Aave liquidityRate={reserve.liquidity_rate} -> {rate_bp} bp")
        return RateQuote(protocol=PROTOCOL, rate_bp=rate_bp)

    def get_position(self, wallet: str) -> ProtocolPosition:
        tokens = self.get_reserve_tokens()
        if tokens is None or not tokens.listed:
            return ProtocolPosition(PROTOCOL, 0, self.asset)

        a_token = self.w3.eth.contract(address=checksum(tokens.a_token), abi=ERC20_ABI)
        data = a_token.functions.balanceOf(checksum(wallet))._encode_transaction_data()
        raw = call_view(self.w3, PROTOCOL, "aToken.balanceOf", a_token.address, data)
        if not raw:
            return ProtocolPosition(PROTOCOL, 0, self.asset)

        (balance,) = decode_strict(self.w3, PROTOCOL, "aToken.balanceOf", ["uint256"], raw)
        return ProtocolPosition(PROTOCOL, balance, self.asset)
