"""
Safe Yield Rebalancer - CLI Entry Point

    python run_monitor.py                  # print the current decision
    python run_monitor.py --execute        # decide, build the plan and submit it
    python run_monitor.py --check-safe     # Safe + module sanity checks
    python run_monitor.py --balances       # where the Safe's funds are
    python run_monitor.py --job            # automation job payload for the current plan
"""

import argparse
import asyncio
import json
import logging
import os
import sys

from dotenv import load_dotenv

# Add this directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from infrastructure.config import RebalancerConfig, SecretsManager
from infrastructure.errors import RebalancerError
from infrastructure.rpc import get_web3
from artisan.rebalance_builder import RebalancePlanBuilder
from services.automation_job import prepare_job
from services.pipeline import build_markets, build_monitor, build_rebalancer
from services.wallet_inspector import WalletInspector
from sentry_config import init_sentry

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("RunMonitor")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Aave V3 / Compound V3 yield rebalancer for a Safe")
    parser.add_argument("--wallet", help="Safe address (defaults to SAFE_WALLET_ADDRESS)")
    parser.add_argument("--threshold", type=int, help="Minimum difference in basis points")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--execute", action="store_true", help="Submit the rebalance through the Safe module")
    mode.add_argument("--check-safe", action="store_true", help="Verify the Safe and module setup")
    mode.add_argument("--balances", action="store_true", help="Print the Safe's balance report")
    mode.add_argument("--job", action="store_true", help="Print the automation job input")
    return parser.parse_args(argv)


async def run(args) -> dict:
    config = RebalancerConfig.from_env()
    wallet = args.wallet or config.require_safe()
    w3 = get_web3(config.blockchain)

    if args.execute:
        executor = build_rebalancer(config, SecretsManager(), w3)
        return await executor.run_cycle(wallet, args.threshold)

    if args.check_safe or args.balances:
        inspector = WalletInspector(w3, build_markets(config, w3), config.blockchain, config.module_address)
        if args.check_safe:
            return inspector.verify_safe(wallet).to_dict()
        return inspector.balance_report(wallet)

    monitor = build_monitor(config, w3)
    if args.job:
        builder = RebalancePlanBuilder.from_config(w3, config.addresses, monitor.markets)
        native = w3.eth.get_balance(config.module_address) if config.module_address else None
        return await prepare_job(config, monitor, builder, native)

    decision = await monitor.compare_yields(wallet, args.threshold)
    return decision.to_dict()


def main(argv=None) -> int:
    load_dotenv()
    init_sentry()
    args = parse_args(argv)

    try:
        result = asyncio.run(run(args))
    except RebalancerError as e:
        logger.error(f"{e.code.value}: {e.message}")
        print(json.dumps(e.to_dict(), indent=2))
        return 1

    print(json.dumps(result, indent=2))
    if isinstance(result.get("result"), dict) and not result["result"].get("success", True):
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
