"""
Rebalance Plan Builder

Turns a YieldDecision into the ordered call list that migrates a Safe's
whole position from the current protocol to the better one:

1. withdraw(amount) from the current protocol, to the Safe
2. approve(destination spender, amount) on the asset
3. supply(amount) into the better protocol, on behalf of the Safe

The calls are later packed into one MultiSend batch, so order matters:
the withdraw has to land before the destination can pull the tokens.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from web3 import Web3

from infrastructure.config import ProtocolAddresses
from infrastructure.errors import ValidationError
from infrastructure.rpc import checksum
from data_sources.aave import AAVE_POOL_ABI
from data_sources.compound import COMPOUND_COMET_ABI
from data_sources.lending_rates import ERC20_ABI, ProtocolId, format_units
from data_sources.markets import LendingMarkets
from agents.yield_monitor import YieldDecision
from artisan.multisend import Call

logger = logging.getLogger("RebalanceBuilder")


# ============================================
# PROTOCOL ENCODERS
# ============================================

class LendingCallEncoder:
    """Shared contract: withdraw / supply a given amount for a wallet."""

    protocol: ProtocolId

    def __init__(self, w3: Web3, market_address: str, abi: list):
        self.w3 = w3
        self.market = w3.eth.contract(address=checksum(market_address), abi=abi)

    @property
    def spender(self) -> str:
        """Contract that pulls the asset on supply."""
        return self.market.address

    def _call(self, fn) -> Call:
        return Call(
            to=self.market.address,
            value=0,
            data=Web3.to_bytes(hexstr=fn._encode_transaction_data())
        )

    def withdraw(self, asset: str, amount: int, wallet: str) -> Call:
        raise NotImplementedError

    def supply(self, asset: str, amount: int, wallet: str) -> Call:
        raise NotImplementedError


class AaveCallEncoder(LendingCallEncoder):
    protocol = ProtocolId.AAVE

    def __init__(self, w3: Web3, pool_address: str):
        super().__init__(w3, pool_address, AAVE_POOL_ABI)

    def withdraw(self, asset: str, amount: int, wallet: str) -> Call:
        return self._call(self.market.functions.withdraw(checksum(asset), amount, checksum(wallet)))

    def supply(self, asset: str, amount: int, wallet: str) -> Call:
        # referralCode = 0
        return self._call(self.market.functions.supply(checksum(asset), amount, checksum(wallet), 0))


class CompoundCallEncoder(LendingCallEncoder):
    """Comet credits msg.sender, which is the Safe under delegatecall."""

    protocol = ProtocolId.COMPOUND

    def __init__(self, w3: Web3, comet_address: str):
        super().__init__(w3, comet_address, COMPOUND_COMET_ABI)

    def withdraw(self, asset: str, amount: int, wallet: str) -> Call:
        return self._call(self.market.functions.withdraw(checksum(asset), amount))

    def supply(self, asset: str, amount: int, wallet: str) -> Call:
        return self._call(self.market.functions.supply(checksum(asset), amount))


def build_approve_call(w3: Web3, asset: str, spender: str, amount: int) -> Call:
    """ERC20 approve calldata on the asset itself"""
    token = w3.eth.contract(address=checksum(asset), abi=ERC20_ABI)
    data = token.functions.approve(checksum(spender), amount)._encode_transaction_data()
    return Call(to=token.address, value=0, data=Web3.to_bytes(hexstr=data))


# ============================================
# PLAN
# ============================================

@dataclass(frozen=True)
class RebalancePlan:
    calls: Tuple[Call, ...] = ()
    amount: int = 0
    source: Optional[ProtocolId] = None
    destination: Optional[ProtocolId] = None

    def __len__(self) -> int:
        return len(self.calls)

    def __iter__(self):
        return iter(self.calls)

    @property
    def is_empty(self) -> bool:
        return not self.calls

    def to_list(self) -> List[Dict[str, str]]:
        return [call.to_dict() for call in self.calls]


class RebalancePlanBuilder:
    """
    Build the withdraw -> approve -> supply plan for one decision.

    Usage:
        builder = RebalancePlanBuilder.from_config(w3, addresses, markets)
        plan = builder.build_plan(decision, safe_address, usdc_address)

        if plan.is_empty:
            ...  # nothing to do, not an error
    """

    def __init__(
        self,
        w3: Web3,
        markets: LendingMarkets,
        encoders: Dict[ProtocolId, LendingCallEncoder],
        decimals: int = 6
    ):
        self.w3 = w3
        self.markets = markets
        self.encoders = encoders
        self.decimals = decimals

    @classmethod
    def from_config(
        cls,
        w3: Web3,
        addresses: ProtocolAddresses,
        markets: LendingMarkets,
        decimals: int = 6
    ) -> "RebalancePlanBuilder":
        return cls(
            w3,
            markets,
            {
                ProtocolId.AAVE: AaveCallEncoder(w3, addresses.aave_pool),
                ProtocolId.COMPOUND: CompoundCallEncoder(w3, addresses.compound_comet),
            },
            decimals=decimals,
        )

    def build_plan(self, decision: YieldDecision, wallet: str, asset: str) -> RebalancePlan:
        if not decision.should_move:
            logger.info("No rebalancing needed at this time")
            return RebalancePlan()

        source = decision.current_protocol
        destination = decision.better_protocol
        if source is None or destination is None or source == destination:
            return RebalancePlan()

        if checksum(asset) != checksum(self.markets.asset):
            raise ValidationError(
                "Asset does not match the configured markets",
                {"asset": asset, "markets_asset": self.markets.asset}
            )

        # Full migration: everything currently in the source protocol
        amount = self.markets.get_position(wallet, source).supplied_amount
        if amount == 0:
            logger.warning(f"No funds to rebalance in {source.label}")
            return RebalancePlan()

        logger.info(
            f"Amount to rebalance: {format_units(amount, self.decimals)} "
            f"(all funds from {source.label})"
        )

        withdraw_from = self.encoders[source]
        deposit_into = self.encoders[destination]

        logger.info(f"Step 1: Withdraw from {source.label}")
        withdraw = withdraw_from.withdraw(asset, amount, wallet)

        logger.info(f"Step 2: Approve {destination.label}")
        approve = build_approve_call(self.w3, asset, deposit_into.spender, amount)

        logger.info(f"Step 3: Supply to {destination.label}")
        supply = deposit_into.supply(asset, amount, wallet)

        return RebalancePlan(
            calls=(withdraw, approve, supply),
            amount=amount,
            source=source,
            destination=destination,
        )
