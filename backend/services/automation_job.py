"""
Automation Job Adapter

Builds the condition-job input for the external automation service that
polls GET /api/monitor and fires the rebalance when the yield difference
exceeds the threshold. Submitting the job (and paying for it) is the
service's side; this module only assembles the payload.

Transaction source, in order of preference:
1. static transactions, when a real rebalance plan exists right now
2. a dynamic transactions script URL, when one is set and publicly reachable
3. a placeholder no-op: nonce() on the Safe itself
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Union
from urllib.parse import urlparse

import httpx
from web3 import Web3

from infrastructure.config import RebalancerConfig
from infrastructure.errors import ConfigurationError
from infrastructure.rpc import checksum, get_encoder_web3
from agents.yield_monitor import YieldMonitor
from artisan.multisend import Call, coerce_calls
from artisan.rebalance_builder import RebalancePlanBuilder
from services.safe_module import SAFE_ABI

logger = logging.getLogger("AutomationJob")

JOB_TYPE_CONDITION = "condition"
CONDITION_GREATER_THAN = "greater_than"
ARG_TYPE_STATIC = "static"
ARG_TYPE_DYNAMIC = "dynamic"

JOB_TITLE = "Yield Optimizer - Aave <> Compound"

# Native balance needed before auto top-up of service credits is enabled
MIN_TOPUP_BALANCE_WEI = 10**16

LOCAL_HOSTS = ("localhost", "127.0.0.1")

PROBE_TIMEOUT = 10.0


def is_public_url(url: Optional[str]) -> bool:
    if not url or not url.startswith("http"):
        return False
    host = urlparse(url).hostname or ""
    return host not in LOCAL_HOSTS


async def probe_monitor(url: str, timeout: float = PROBE_TIMEOUT) -> Optional[Dict[str, Any]]:
    """GET the monitor endpoint the way the automation service will. None if unreachable."""
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.get(url)
            response.raise_for_status()
            return response.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.error(f"Monitor probe failed for {url}: {e}")
        return None


def placeholder_transaction(safe_address: str, w3: Optional[Web3] = None) -> Dict[str, str]:
    """nonce() on the Safe: a view call, executes nothing"""
    w3 = w3 or get_encoder_web3()
    safe = w3.eth.contract(address=checksum(safe_address), abi=SAFE_ABI)
    return {
        "to": safe.address,
        "value": "0",
        "data": safe.functions.nonce()._encode_transaction_data(),
    }


def build_job_input(
    config: RebalancerConfig,
    calls: Iterable[Union[Call, Dict]] = (),
    native_balance_wei: Optional[int] = None
) -> Dict[str, Any]:
    """Assemble the job payload. Warnings are returned under "warnings"."""
    safe_address = checksum(config.require_safe())
    if not config.monitor_url:
        raise ConfigurationError("MONITOR_URL")

    warnings: List[str] = []
    if config.blockchain.is_local_fork:
        warnings.append("Local fork RPC: the automation service runs against the real network")
    if not is_public_url(config.monitor_url):
        warnings.append(f"Monitor URL {config.monitor_url} is not publicly reachable")

    autotopup = config.autotopup
    if native_balance_wei is not None and native_balance_wei < MIN_TOPUP_BALANCE_WEI:
        warnings.append("Low native balance: auto top-up disabled")
        autotopup = False

    job = {
        "jobType": JOB_TYPE_CONDITION,
        "jobTitle": JOB_TITLE,
        "conditionType": CONDITION_GREATER_THAN,
        "upperLimit": config.min_yield_difference_bp,
        "lowerLimit": 0,
        "timeFrame": config.job_duration,
        "valueSourceType": "api",
        "valueSourceUrl": config.monitor_url,
        "timezone": config.timezone,
        "chainId": str(config.blockchain.chain_id),
        "walletMode": "safe",
        "safeAddress": safe_address,
        "autotopupTG": autotopup,
    }

    transactions = [call.to_dict() for call in coerce_calls(calls)]
    script_url = config.dynamic_script_url

    if transactions and not script_url:
        job["argType"] = ARG_TYPE_STATIC
        job["safeTransactions"] = transactions
        logger.info(f"Using static transactions ({len(transactions)} transaction(s))")
    elif is_public_url(script_url):
        job["argType"] = ARG_TYPE_DYNAMIC
        job["dynamicArgumentsScriptUrl"] = script_url
        logger.info(f"Using dynamic transactions script: {script_url}")
    else:
        if script_url:
            warnings.append(f"Dynamic script URL {script_url} is not publicly reachable, using placeholder")
        else:
            warnings.append("No rebalance transactions yet, using placeholder")
        job["argType"] = ARG_TYPE_STATIC
        job["safeTransactions"] = [placeholder_transaction(safe_address)]
        logger.info("Using placeholder transaction (no-op)")

    for warning in warnings:
        logger.warning(warning)
    job["warnings"] = warnings
    return job


async def prepare_job(
    config: RebalancerConfig,
    monitor: YieldMonitor,
    builder: RebalancePlanBuilder,
    native_balance_wei: Optional[int] = None
) -> Dict[str, Any]:
    """Run one decision and build the job around the plan it yields."""
    safe_address = config.require_safe()
    decision = await monitor.compare_yields(safe_address)
    plan = builder.build_plan(decision, safe_address, builder.markets.asset)
    job = build_job_input(config, plan.calls, native_balance_wei)

    if is_public_url(config.monitor_url):
        body = await probe_monitor(config.monitor_url)
        if body is None or "value" not in body:
            warning = f"Monitor URL {config.monitor_url} did not return a value"
            logger.warning(warning)
            job["warnings"].append(warning)
    return job
