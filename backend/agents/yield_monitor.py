"""
Yield Monitor
Compares Aave V3 and Compound V3 supply rates for one asset and decides
whether a Safe's position should migrate.

Decision rule (pure, reproducible from a snapshot):
    difference  = |aave - compound|
    better      = aave | compound | equal
    current     = aave if aave balance > 0, else compound if compound balance > 0, else none
    should_move = difference >= threshold and better != equal
                  and current != none and current != better

A wallet holding funds in both protocols is classified as "in Aave".
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional

from infrastructure.errors import ValidationError
from data_sources.lending_rates import ProtocolId, ProtocolPosition, RateQuote, format_units
from data_sources.markets import LendingMarkets

logger = logging.getLogger("YieldMonitor")


@dataclass(frozen=True)
class YieldDecision:
    aave_rate_bp: int
    compound_rate_bp: int
    difference_bp: int
    better_protocol: Optional[ProtocolId]   # None = equal
    current_protocol: Optional[ProtocolId]  # None = no funds deposited
    should_move: bool
    threshold_bp: int
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict:
        return {
            "timestamp": int(self.timestamp.timestamp() * 1000),
            "aaveAPY": self.aave_rate_bp,
            "compoundAPY": self.compound_rate_bp,
            "difference": self.difference_bp,
            "betterProtocol": self.better_protocol.value if self.better_protocol else "equal",
            "currentProtocol": self.current_protocol.value if self.current_protocol else "none",
            "shouldMove": self.should_move,
            "threshold": self.threshold_bp,
        }


def decide(
    aave_rate_bp: int,
    compound_rate_bp: int,
    aave_position: int,
    compound_position: int,
    threshold_bp: int,
    now: Optional[datetime] = None
) -> YieldDecision:
    """Turn two rates and two balances into a YieldDecision."""
    if threshold_bp < 0:
        raise ValidationError("threshold_bp must be >= 0", {"threshold_bp": threshold_bp})
    if aave_rate_bp < 0 or compound_rate_bp < 0:
        raise ValidationError(
            "rates must be >= 0",
            {"aave_rate_bp": aave_rate_bp, "compound_rate_bp": compound_rate_bp}
        )

    difference = abs(aave_rate_bp - compound_rate_bp)

    if aave_rate_bp > compound_rate_bp:
        better = ProtocolId.AAVE
    elif compound_rate_bp > aave_rate_bp:
        better = ProtocolId.COMPOUND
    else:
        better = None

    if aave_position > 0:
        current = ProtocolId.AAVE
    elif compound_position > 0:
        current = ProtocolId.COMPOUND
    else:
        current = None

    should_move = (
        difference >= threshold_bp
        and better is not None
        and current is not None
        and current != better
    )

    return YieldDecision(
        aave_rate_bp=aave_rate_bp,
        compound_rate_bp=compound_rate_bp,
        difference_bp=difference,
        better_protocol=better,
        current_protocol=current,
        should_move=should_move,
        threshold_bp=threshold_bp,
        timestamp=now or datetime.now(timezone.utc),
    )


class YieldMonitor:
    """
    Runs one decision cycle against live chain state.

    Usage:
        monitor = YieldMonitor(LendingMarkets.from_config(w3, addresses), 50)
        decision = await monitor.compare_yields(safe_address)
    """

    def __init__(self, markets: LendingMarkets, min_yield_difference_bp: int = 50, decimals: int = 6):
        self.markets = markets
        self.min_yield_difference_bp = min_yield_difference_bp
        self.decimals = decimals

    async def fetch_quotes(self) -> Dict[ProtocolId, RateQuote]:
        aave, compound = await asyncio.gather(
            asyncio.to_thread(self.markets.get_rate, ProtocolId.AAVE),
            asyncio.to_thread(self.markets.get_rate, ProtocolId.COMPOUND),
        )
        return {ProtocolId.AAVE: aave, ProtocolId.COMPOUND: compound}

    async def compare_yields(self, wallet: str, threshold_bp: Optional[int] = None) -> YieldDecision:
        threshold = self.min_yield_difference_bp if threshold_bp is None else threshold_bp

        logger.info("Fetching yield data...")

        # Side-effect-free reads, safe to run together
        quotes, aave_pos, compound_pos = await asyncio.gather(
            self.fetch_quotes(),
            asyncio.to_thread(self.markets.get_position, wallet, ProtocolId.AAVE),
            asyncio.to_thread(self.markets.get_position, wallet, ProtocolId.COMPOUND),
        )
        aave_quote, compound_quote = quotes[ProtocolId.AAVE], quotes[ProtocolId.COMPOUND]

        decision = decide(
            aave_quote.rate_bp,
            compound_quote.rate_bp,
            aave_pos.supplied_amount,
            compound_pos.supplied_amount,
            threshold,
        )
        self._log_decision(decision, aave_quote, compound_quote, aave_pos, compound_pos)
        return decision

    def _log_decision(
        self,
        decision: YieldDecision,
        aave_quote: RateQuote,
        compound_quote: RateQuote,
        aave_pos: ProtocolPosition,
        compound_pos: ProtocolPosition
    ) -> None:
        logger.info(f"Aave APY: {aave_quote.percent:.2f}%  Compound APY: {compound_quote.percent:.2f}%")

        if decision.current_protocol is ProtocolId.AAVE:
            logger.info(f"Current position: Aave ({format_units(aave_pos.supplied_amount, self.decimals)} tokens)")
            if not compound_pos.is_empty:
                logger.info(
                    f"Split position: {format_units(compound_pos.supplied_amount, self.decimals)} "
                    f"tokens also in Compound, classified as Aave"
                )
        elif decision.current_protocol is ProtocolId.COMPOUND:
            logger.info(f"Current position: Compound ({format_units(compound_pos.supplied_amount, self.decimals)} tokens)")
        else:
            logger.info("Current position: no funds deposited")

        better = decision.better_protocol.value if decision.better_protocol else "equal"
        logger.info(
            f"Difference: {decision.difference_bp / 100:.2f}% | Better: {better} | "
            f"Should move: {'YES' if decision.should_move else 'NO'}"
        )
