"""
Artisan - transaction construction

# Batch encoding (Safe MultiSend)
# Rebalance plans (withdraw -> approve -> supply)
"""

from .multisend import Call, encode_batch, decode_batch, wrap_batch

from .rebalance_builder import (
    RebalancePlan,
    RebalancePlanBuilder,
    AaveCallEncoder,
    CompoundCallEncoder,
    build_approve_call,
)

__all__ = [
    # MultiSend
    "Call",
    "encode_batch",
    "decode_batch",
    "wrap_batch",

    # Plans
    "RebalancePlan",
    "RebalancePlanBuilder",
    "AaveCallEncoder",
    "CompoundCallEncoder",
    "build_approve_call",
]
