"""
Compound V3 (Comet) Rate Adapter + Position Reader

Comet exposes a per-second supply rate (WAD) as a function of utilization,
so utilization is read first and fed back into getSupplyRate. The base
asset balance of a wallet is read straight from the market contract.

A Comet market serves exactly one base asset. When baseToken() is not the
configured asset the market is treated as unlisted for it: rate 0, position 0.
"""

import logging
from typing import Optional

from web3 import Web3

from infrastructure.config import ProtocolAddresses
from infrastructure.rpc import checksum
from data_sources.lending_rates import (
    ProtocolId,
    ProtocolPosition,
    RateQuote,
    call_view,
    decode_strict,
    has_code,
    per_second_rate_to_bp,
)

logger = logging.getLogger("CompoundV3")

PROTOCOL = ProtocolId.COMPOUND

COMPOUND_COMET_ABI = [
    {
        "inputs": [
            {"name": "asset", "type": "address"},
            {"name": "amount", "type": "uint256"}
        ],
        "name": "supply",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function"
    },
    {
        "inputs": [
            {"name": "asset", "type": "address"},
            {"name": "amount", "type": "uint256"}
        ],
        "name": "withdraw",
        "outputs": [],
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
        "inputs": [{"name": "utilization", "type": "uint256"}],
        "name": "getSupplyRate",
        "outputs": [{"name": "", "type": "uint64"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "baseToken",
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "getUtilization",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    },
]


class CompoundV3Source:
    """
    Read-only view of one Comet market.

    Usage:
        source = CompoundV3Source(w3, addresses)
        quote = source.get_rate()
        position = source.get_position(safe_address)
    """

    protocol = PROTOCOL

    def __init__(self, w3: Web3, addresses: ProtocolAddresses):
        self.w3 = w3
        self.asset = checksum(addresses.asset)
        self.comet = w3.eth.contract(
            address=checksum(addresses.compound_comet),
            abi=COMPOUND_COMET_ABI
        )

    @property
    def comet_address(self) -> str:
        return self.comet.address

    def get_base_token(self) -> Optional[str]:
        data = self.comet.functions.baseToken()._encode_transaction_data()
        raw = call_view(self.w3, PROTOCOL, "baseToken", self.comet_address, data)
        if not raw:
            return None
        (base_token,) = decode_strict(self.w3, PROTOCOL, "baseToken", ["address"], raw)
        return checksum(base_token)

    def serves_asset(self) -> bool:
        return self.get_base_token() == self.asset

    def get_utilization(self) -> Optional[int]:
        data = self.comet.functions.getUtilization()._encode_transaction_data()
        raw = call_view(self.w3, PROTOCOL, "getUtilization", self.comet_address, data)
        if not raw:
            return None
        (utilization,) = decode_strict(self.w3, PROTOCOL, "getUtilization", ["uint256"], raw)
        return utilization

    def get_supply_rate(self, utilization: int) -> Optional[int]:
        data = self.comet.functions.getSupplyRate(utilization)._encode_transaction_data()
        raw = call_view(self.w3, PROTOCOL, "getSupplyRate", self.comet_address, data)
        if not raw:
            return None
        (rate,) = decode_strict(self.w3, PROTOCOL, "getSupplyRate", ["uint64"], raw)
        return rate

    def get_rate(self) -> RateQuote:
        if not has_code(self.w3, PROTOCOL, self.comet_address):
            logger.warning(f"Compound contract not deployed at {self.comet_address}, defaulting rate to 0")
            return RateQuote.unsupported(PROTOCOL)

        if not self.serves_asset():
            logger.warning(f"Compound market {self.comet_address} does not serve {self.asset}, defaulting rate to 0")
            return RateQuote.unsupported(PROTOCOL)

        utilization = self.get_utilization()
        if utilization is None:
            logger.warning("Compound utilization unavailable, defaulting rate to 0")
            return RateQuote.unsupported(PROTOCOL)

        supply_rate = self.get_supply_rate(utilization)
        if supply_rate is None:
            logger.warning("Compound supply rate unavailable, defaulting rate to 0")
            return RateQuote.unsupported(PROTOCOL)

        rate_bp = per_second_rate_to_bp(supply_rate)
        logger.debug(f"Compound utilization={utilization} supplyRate={supply_rate} -> {rate_bp} bp")
        return RateQuote(protocol=PROTOCOL, rate_bp=rate_bp)

    def get_position(self, wallet: str) -> ProtocolPosition:
        if not self.serves_asset():
            return ProtocolPosition(PROTOCOL, 0, self.asset)

        data = self.comet.functions.balanceOf(checksum(wallet))._encode_transaction_data()
        raw = call_view(self.w3, PROTOCOL, "balanceOf", self.comet_address, data)
        if not raw:
            return ProtocolPosition(PROTOCOL, 0, self.asset)

        (balance,) = decode_strict(self.w3, PROTOCOL, "balanceOf", ["uint256"], raw)
        return ProtocolPosition(PROTOCOL, balance, self.asset)
