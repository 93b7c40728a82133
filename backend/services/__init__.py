"""
Rebalancer Services
Execution through the Safe module, wiring, wallet checks and automation jobs
"""

from .safe_module import SafeModuleGateway, RebalanceExecutor, ExecutionResult
from .pipeline import build_markets, build_monitor, build_rebalancer
from .wallet_inspector import WalletInspector, SafeStatus
from .automation_job import build_job_input, placeholder_transaction, prepare_job

__all__ = [
    # Safe module execution
    "SafeModuleGateway",
    "RebalanceExecutor",
    "ExecutionResult",

    # Wiring
    "build_markets",
    "build_monitor",
    "build_rebalancer",

    # Wallet checks
    "WalletInspector",
    "SafeStatus",

    # Automation service
    "build_job_input",
    "placeholder_transaction",
    "prepare_job",
]
