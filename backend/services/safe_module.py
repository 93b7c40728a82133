"""
Safe Module Execution Gateway

Submits a packed MultiSend batch to a Safe through an enabled module:

    safe.execTransactionFromModule(multisend, 0, multiSend(packed), DELEGATECALL)

Under DELEGATECALL the MultiSend code runs as the Safe itself, so every inner
call (withdraw, approve, supply) originates from the Safe and spends the
Safe's own balances and allowances. If any inner call fails, MultiSend
reverts and nothing is committed. There is no partial retry; the next
cycle derives a fresh plan from chain state.

The module is the address derived from MODULE_PRIVATE_KEY. Safe owners
must have enabled it (enableModule) beforehand.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Union

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted
from web3.logs import DISCARD

from infrastructure.errors import (
    ExecutionRevertedError,
    ModuleNotEnabledError,
    ProtocolReadError,
    RebalancerError,
    ReceiptTimeoutError,
    TransactionSendError,
)
from infrastructure.rpc import checksum
from agents.yield_monitor import YieldMonitor
from artisan.multisend import (
    OPERATION_DELEGATECALL,
    Call,
    coerce_calls,
    encode_batch,
    wrap_batch,
)
from artisan.rebalance_builder import RebalancePlanBuilder
from sentry_config import capture_rebalance_breadcrumb

logger = logging.getLogger("SafeModule")

SAFE_ABI = [
    {
        "inputs": [{"name": "module", "type": "address"}],
        "name": "isModuleEnabled",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "value", "type": "uint256"},
            {"name": "data", "type": "bytes"},
            {"name": "operation", "type": "uint8"}
        ],
        "name": "execTransactionFromModule",
        "outputs": [{"name": "success", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "getOwners",
        "outputs": [{"name": "", "type": "address[]"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "getThreshold",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "nonce",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "anonymous": False,
        "inputs": [{"indexed": True, "name": "module", "type": "address"}],
        "name": "ExecutionFromModuleSuccess",
        "type": "event"
    },
    {
        "anonymous": False,
        "inputs": [{"indexed": True, "name": "module", "type": "address"}],
        "name": "ExecutionFromModuleFailure",
        "type": "event"
    },
]


@dataclass
class ExecutionResult:
    success: bool
    tx_hash: Optional[str] = None
    gas_used: Optional[int] = None
    calls: int = 0
    error: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {"success": self.success, "calls": self.calls}
        if self.tx_hash:
            result["tx_hash"] = self.tx_hash
        if self.gas_used is not None:
            result["gas_used"] = self.gas_used
        if self.error:
            result["error"] = self.error
        return result


class SafeModuleGateway:
    """
    Sends execTransactionFromModule transactions signed by the module key.

    Usage:
        gateway = SafeModuleGateway.from_private_key(w3, os.getenv("MODULE_PRIVATE_KEY"))
        result = gateway.execute(safe_address, multisend_address, encode_batch(calls))
    """

    def __init__(self, w3: Web3, module_account: LocalAccount, receipt_timeout: int = 120):
        self.w3 = w3
        self.account = module_account
        self.receipt_timeout = receipt_timeout

    @classmethod
    def from_private_key(cls, w3: Web3, private_key: str, receipt_timeout: int = 120) -> "SafeModuleGateway":
        return cls(w3, Account.from_key(private_key), receipt_timeout)

    @property
    def module_address(self) -> str:
        return self.account.address

    def _safe(self, wallet: str):
        return self.w3.eth.contract(address=checksum(wallet), abi=SAFE_ABI)

    def is_module_enabled(self, wallet: str) -> bool:
        try:
            return bool(self._safe(wallet).functions.isModuleEnabled(self.module_address).call())
        except Exception as e:
            raise ProtocolReadError("safe", "isModuleEnabled", e) from e

    def execute(self, wallet: str, batch_executor: str, packed_batch: bytes) -> ExecutionResult:
        wallet = checksum(wallet)

        if not self.is_module_enabled(wallet):
            raise ModuleNotEnabledError(wallet, self.module_address)

        outer = wrap_batch(packed_batch, batch_executor, self.w3)
        safe = self._safe(wallet)
        fn = safe.functions.execTransactionFromModule(outer.to, 0, outer.data, OPERATION_DELEGATECALL)

        # Safe returns false instead of reverting when the delegatecall fails
        try:
            would_succeed = fn.call({"from": self.module_address})
        except ContractLogicError as e:
            raise ExecutionRevertedError(wallet, "simulate", f"Batch simulation reverted: {e}") from e
        if not would_succeed:
            raise ExecutionRevertedError(wallet, "simulate", "Batch simulation failed: an inner call reverted")

        step = "build"
        try:
            tx = fn.build_transaction({
                "from": self.module_address,
                "nonce": self.w3.eth.get_transaction_count(self.module_address),
                "chainId": self.w3.eth.chain_id,
            })
            step = "send"
            signed = self.account.sign_transaction(tx)
            tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except Exception as e:
            raise TransactionSendError(wallet, step, e) from e

        tx_hex = Web3.to_hex(tx_hash)
        logger.info(f"execTransactionFromModule TX: {tx_hex}")

        # Broadcast already happened: from here on the hash must reach the caller
        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        except TimeExhausted as e:
            raise ReceiptTimeoutError(wallet, tx_hex, self.receipt_timeout) from e
        except Exception as e:
            logger.error(f"Receipt lookup for {tx_hex} failed: {e}")
            raise ReceiptTimeoutError(wallet, tx_hex) from e

        if receipt["status"] != 1:
            raise ExecutionRevertedError(wallet, "receipt", "Module transaction reverted", tx_hash=tx_hex)

        failures = safe.events.ExecutionFromModuleFailure().process_receipt(receipt, errors=DISCARD)
        if failures:
            raise ExecutionRevertedError(wallet, "receipt", "Safe reported ExecutionFromModuleFailure", tx_hash=tx_hex)

        return ExecutionResult(success=True, tx_hash=tx_hex, gas_used=receipt["gasUsed"])


class RebalanceExecutor:
    """
    Plan submission sink + full decision cycle.

    submit_plan() takes the calls as produced by the plan builder (or the
    {to, value, data} dicts the automation service sends back) and returns
    {success, tx_hash?, error?}.
    """

    def __init__(
        self,
        gateway: SafeModuleGateway,
        batch_executor: str,
        monitor: Optional[YieldMonitor] = None,
        builder: Optional[RebalancePlanBuilder] = None
    ):
        self.gateway = gateway
        self.batch_executor = checksum(batch_executor)
        self.monitor = monitor
        self.builder = builder

    def submit_plan(self, wallet: str, calls: Iterable[Union[Call, Dict]]) -> Dict[str, Any]:
        calls = coerce_calls(calls)
        if not calls:
            logger.info("Empty plan, nothing to submit")
            return {"success": True, "status": "no_action", "calls": 0}

        packed = encode_batch(calls)
        logger.info(f"Submitting {len(calls)} calls ({len(packed)} bytes) for Safe {wallet}")
        capture_rebalance_breadcrumb("submit_plan", wallet, {"calls": len(calls)})

        try:
            result = self.gateway.execute(wallet, self.batch_executor, packed)
        except RebalancerError as e:
            logger.error(f"Rebalance submission failed: {e.message}")
            out = ExecutionResult(
                success=False,
                tx_hash=getattr(e, "tx_hash", None),
                calls=len(calls),
                error=e.to_dict()["error"],
            ).to_dict()
            out["status"] = "pending" if isinstance(e, ReceiptTimeoutError) else "failed"
            return out

        result.calls = len(calls)
        out = result.to_dict()
        out["status"] = "executed"
        return out

    async def run_cycle(self, wallet: str, threshold_bp: Optional[int] = None) -> Dict[str, Any]:
        """Decision -> plan -> batch -> module execution, for one Safe."""
        if self.monitor is None or self.builder is None:
            raise RebalancerError("run_cycle needs a monitor and a plan builder")

        decision = await self.monitor.compare_yields(wallet, threshold_bp)
        plan = await asyncio.to_thread(self.builder.build_plan, decision, wallet, self.builder.markets.asset)

        report = {
            "decision": decision.to_dict(),
            "plan": plan.to_list(),
            "amount": str(plan.amount),
        }
        if plan.is_empty:
            report["result"] = {"success": True, "status": "no_action", "calls": 0}
            return report

        report["result"] = await asyncio.to_thread(self.submit_plan, wallet, plan.calls)
        return report
