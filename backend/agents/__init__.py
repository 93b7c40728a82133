"""
Rebalancer Agents

- YieldMonitor: reads both markets and decides whether the Safe should move
"""

from .yield_monitor import YieldMonitor, YieldDecision, decide

__all__ = [
    "YieldMonitor",
    "YieldDecision",
    "decide",
]
