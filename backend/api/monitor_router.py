"""
Monitor Router - yield decision, automation monitor value and plan submission
"""
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from typing import List, Optional, Union
import asyncio
import logging
from functools import lru_cache

from agents.yield_monitor import YieldMonitor, decide
from data_sources.lending_rates import ProtocolId
from infrastructure.errors import ValidationError
from infrastructure.rpc import checksum

logger = logging.getLogger("MonitorRouter")

router = APIRouter(prefix="/api", tags=["Yield Monitor"])


# Lazy providers, overridable through app.dependency_overrides
@lru_cache()
def get_config():
    from infrastructure.config import load_config
    return load_config()


def get_w3(config=Depends(get_config)):
    from infrastructure.rpc import get_web3
    return get_web3(config.blockchain)


def get_monitor(config=Depends(get_config), w3=Depends(get_w3)) -> YieldMonitor:
    from services.pipeline import build_monitor
    return build_monitor(config, w3)


def get_executor(config=Depends(get_config), w3=Depends(get_w3)):
    from infrastructure.config import SecretsManager
    from services.pipeline import build_rebalancer
    return build_rebalancer(config, SecretsManager(), w3)


def get_inspector(config=Depends(get_config), w3=Depends(get_w3), monitor=Depends(get_monitor)):
    from services.wallet_inspector import WalletInspector
    return WalletInspector(w3, monitor.markets, config.blockchain, config.module_address)


# ============================================
# REQUEST/RESPONSE MODELS
# ============================================

class CallModel(BaseModel):
    to: str
    value: Union[int, str] = "0"
    data: str = "0x"


class ExecutePlanRequest(BaseModel):
    wallet_address: str
    calls: List[CallModel] = Field(default_factory=list)


class MonitorMetadata(BaseModel):
    aaveAPY: int
    compoundAPY: int
    difference: int
    betterProtocol: str
    currentProtocol: str
    shouldMove: bool
    threshold: int
    timestamp: int
    network: str


class MonitorResponse(BaseModel):
    value: int
    metadata: MonitorMetadata


# ============================================
# ENDPOINTS
# ============================================

@router.get("/monitor", response_model=MonitorResponse)
async def monitor_value(
    wallet_address: Optional[str] = None,
    config=Depends(get_config),
    monitor: YieldMonitor = Depends(get_monitor)
):
    """
    Condition value polled by the automation service.
    value = yield difference in basis points.
    """
    wallet = wallet_address or config.safe_address
    if wallet:
        decision = await monitor.compare_yields(checksum(wallet))
    else:
        # No wallet: rates only, current protocol reported as none
        quotes = await monitor.fetch_quotes()
        decision = decide(
            quotes[ProtocolId.AAVE].rate_bp,
            quotes[ProtocolId.COMPOUND].rate_bp,
            0,
            0,
            monitor.min_yield_difference_bp
        )

    metadata = decision.to_dict()
    metadata["network"] = config.blockchain.network
    return {"value": decision.difference_bp, "metadata": metadata}


@router.get("/yield/decision")
async def yield_decision(
    wallet_address: Optional[str] = None,
    asset_address: Optional[str] = None,
    threshold_bp: Optional[int] = Query(None, ge=0),
    config=Depends(get_config),
    w3=Depends(get_w3),
    monitor: YieldMonitor = Depends(get_monitor)
):
    """Full YieldDecision for one wallet / asset / threshold."""
    wallet = wallet_address or config.safe_address
    if not wallet:
        raise ValidationError("wallet_address is required when SAFE_WALLET_ADDRESS is not set")

    if asset_address and checksum(asset_address) != checksum(monitor.markets.asset):
        from services.pipeline import build_monitor
        monitor = build_monitor(config, w3, asset_address)

    decision = await monitor.compare_yields(checksum(wallet), threshold_bp)
    return decision.to_dict()


@router.post("/rebalance/execute")
async def execute_plan(request: ExecutePlanRequest, executor=Depends(get_executor)):
    """
    Submit an ordered call list as one MultiSend batch through the Safe module.
    An empty list is a successful no-op.
    """
    calls = [call.model_dump() for call in request.calls]
    logger.info(f"Plan submission for {request.wallet_address}: {len(calls)} call(s)")
    return await asyncio.to_thread(executor.submit_plan, checksum(request.wallet_address), calls)


@router.get("/wallet/{wallet_address}/status")
async def wallet_status(wallet_address: str, inspector=Depends(get_inspector)):
    """Safe checks: contract, owners/threshold, module enabled, chain id."""
    status = await asyncio.to_thread(inspector.verify_safe, wallet_address)
    return status.to_dict()


@router.get("/wallet/{wallet_address}/balances")
async def wallet_balances(wallet_address: str, inspector=Depends(get_inspector)):
    return await asyncio.to_thread(inspector.balance_report, wallet_address)
