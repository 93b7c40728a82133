"""
Component wiring: config -> markets -> monitor / builder / executor.
"""

import dataclasses
from typing import Optional

from web3 import Web3

from infrastructure.config import RebalancerConfig, SecretsManager
from infrastructure.rpc import checksum, get_web3
from data_sources.markets import LendingMarkets
from agents.yield_monitor import YieldMonitor
from artisan.rebalance_builder import RebalancePlanBuilder
from services.safe_module import RebalanceExecutor, SafeModuleGateway


def build_markets(config: RebalancerConfig, w3: Web3, asset: Optional[str] = None) -> LendingMarkets:
    addresses = config.addresses
    if asset:
        addresses = dataclasses.replace(addresses, asset=checksum(asset))
    return LendingMarkets.from_config(w3, addresses)


def build_monitor(config: RebalancerConfig, w3: Optional[Web3] = None, asset: Optional[str] = None) -> YieldMonitor:
    w3 = w3 or get_web3(config.blockchain)
    return YieldMonitor(build_markets(config, w3, asset), config.min_yield_difference_bp)


def build_rebalancer(
    config: RebalancerConfig,
    secrets: SecretsManager,
    w3: Optional[Web3] = None
) -> RebalanceExecutor:
    """Full executor. Needs MODULE_PRIVATE_KEY."""
    w3 = w3 or get_web3(config.blockchain)
    markets = build_markets(config, w3)
    gateway = SafeModuleGateway.from_private_key(
        w3,
        secrets.require("MODULE_PRIVATE_KEY"),
        receipt_timeout=config.blockchain.receipt_timeout
    )
    return RebalanceExecutor(
        gateway,
        config.addresses.batch_executor,
        monitor=YieldMonitor(markets, config.min_yield_difference_bp),
        builder=RebalancePlanBuilder.from_config(w3, config.addresses, markets),
    )
