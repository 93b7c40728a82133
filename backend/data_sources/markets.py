"""
Lending Markets
Protocol-id dispatch over the per-protocol sources.

getRate(protocol) and getPosition(wallet, protocol) both land here so the
comparator and the plan builder never touch a protocol module directly.
"""

from typing import Dict

from web3 import Web3

from infrastructure.config import ProtocolAddresses
from data_sources.aave import AaveV3Source
from data_sources.compound import CompoundV3Source
from data_sources.lending_rates import ProtocolId, ProtocolPosition, RateQuote


class LendingMarkets:
    """Rate adapter + position reader for the configured protocol pair."""

    def __init__(self, sources: Dict[ProtocolId, object]):
        missing = [p.value for p in ProtocolId if p not in sources]
        if missing:
            raise ValueError(f"No source configured for: {', '.join(missing)}")
        self.sources = sources

    @classmethod
    def from_config(cls, w3: Web3, addresses: ProtocolAddresses) -> "LendingMarkets":
        return cls({
            ProtocolId.AAVE: AaveV3Source(w3, addresses),
            ProtocolId.COMPOUND: CompoundV3Source(w3, addresses),
        })

    @property
    def asset(self) -> str:
        return self.sources[ProtocolId.AAVE].asset

    def get_rate(self, protocol: ProtocolId) -> RateQuote:
        return self.sources[ProtocolId(protocol)].get_rate()

    def get_position(self, wallet: str, protocol: ProtocolId) -> ProtocolPosition:
        return self.sources[ProtocolId(protocol)].get_position(wallet)
