"""
Yield Decision Tests
Comparator rule, dict rendering and the async monitor cycle

Run: python -m pytest tests/test_yield_decision.py -v
"""

import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

from agents.yield_monitor import YieldMonitor, decide
from data_sources.lending_rates import ProtocolId, ProtocolPosition, RateQuote
from infrastructure.errors import ProtocolReadError, ValidationError

USDC = "0xaf88d065e77c8cC2239327C5EDb3A432268e5831"
SAFE = "0x5E047DeB5eb22F4E4A7f2207087369468575e3EF"


# =============================================================================
# TEST: Scenarios
# =============================================================================

class TestDecisionScenarios:
    """Concrete snapshots"""

    def test_compound_better_funds_in_aave_moves(self):
        """2.30% vs 2.80%, 500 USDC in Aave, threshold 50 bp"""
        d = decide(230, 280, 500_000_000, 0, 50)

        assert d.better_protocol is ProtocolId.COMPOUND
        assert d.current_protocol is ProtocolId.AAVE
        assert d.difference_bp == 50
        assert d.should_move is True
        print("✅ 50 bp gap at threshold 50 triggers a move")

    def test_threshold_one_above_difference_holds(self):
        d = decide(230, 280, 500_000_000, 0, 51)

        assert d.difference_bp == 50
        assert d.should_move is False

    def test_small_gap_holds(self):
        d = decide(230, 235, 500_000_000, 0, 50)

        assert d.better_protocol is ProtocolId.COMPOUND
        assert d.difference_bp == 5
        assert d.should_move is False

    def test_already_in_better_protocol(self):
        d = decide(400, 100, 1_000_000, 0, 50)

        assert d.better_protocol is ProtocolId.AAVE
        assert d.current_protocol is ProtocolId.AAVE
        assert d.should_move is False

    def test_aave_better_funds_in_compound_moves(self):
        d = decide(400, 100, 0, 1_000_000, 50)

        assert d.better_protocol is ProtocolId.AAVE
        assert d.current_protocol is ProtocolId.COMPOUND
        assert d.should_move is True

    def test_zero_threshold_moves_on_any_gap(self):
        d = decide(231, 230, 0, 10, 0)
        assert d.should_move is True

    def test_split_position_classified_as_aave(self):
        """Funds in both protocols: Aave takes precedence"""
        d = decide(100, 400, 5, 1_000_000, 50)

        assert d.current_protocol is ProtocolId.AAVE
        assert d.should_move is True


# =============================================================================
# TEST: Invariants
# =============================================================================

SNAPSHOTS = [
    (230, 280, 500_000_000, 0, 50),
    (280, 230, 0, 500_000_000, 50),
    (0, 0, 0, 0, 0),
    (500, 500, 1, 0, 0),
    (0, 1200, 7, 0, 100),
    (350, 120, 0, 0, 10),
]


class TestDecisionInvariants:
    """Properties that hold for every snapshot"""

    @pytest.mark.parametrize("a,b,pa,pb,t", SNAPSHOTS)
    def test_difference_is_absolute(self, a, b, pa, pb, t):
        assert decide(a, b, pa, pb, t).difference_bp == abs(a - b)

    @pytest.mark.parametrize("a,b,pa,pb,t", SNAPSHOTS)
    def test_swap_symmetry(self, a, b, pa, pb, t):
        """Swapping both rates and both positions swaps the labels only"""
        swap = {ProtocolId.AAVE: ProtocolId.COMPOUND, ProtocolId.COMPOUND: ProtocolId.AAVE, None: None}

        d = decide(a, b, pa, pb, t)
        mirrored = decide(b, a, pb, pa, t)

        assert mirrored.difference_bp == d.difference_bp
        assert mirrored.better_protocol == swap[d.better_protocol]
        # Precedence breaks the mirror only for split positions
        if pa == 0 or pb == 0:
            assert mirrored.current_protocol == swap[d.current_protocol]
            assert mirrored.should_move == d.should_move

    @pytest.mark.parametrize("rate", [0, 1, 230, 10_000])
    def test_equal_rates_never_move(self, rate):
        d = decide(rate, rate, 1_000_000, 0, 0)

        assert d.better_protocol is None
        assert d.should_move is False

    def test_no_funds_never_move(self):
        d = decide(0, 5_000, 0, 0, 0)

        assert d.current_protocol is None
        assert d.should_move is False

    @pytest.mark.parametrize("a,b,pa,pb,t", SNAPSHOTS)
    def test_move_implies_different_protocols(self, a, b, pa, pb, t):
        d = decide(a, b, pa, pb, t)
        if d.should_move:
            assert d.current_protocol is not None
            assert d.better_protocol is not None
            assert d.current_protocol != d.better_protocol
            assert d.difference_bp >= t


class TestDecisionValidation:

    def test_negative_threshold_rejected(self):
        with pytest.raises(ValidationError):
            decide(100, 200, 1, 0, -1)

    def test_negative_rate_rejected(self):
        with pytest.raises(ValidationError):
            decide(-5, 200, 1, 0, 50)


# =============================================================================
# TEST: Rendering
# =============================================================================

class TestDecisionDict:

    def test_to_dict_shape(self):
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        d = decide(230, 280, 500_000_000, 0, 50, now=now)

        assert d.to_dict() == {
            "timestamp": int(now.timestamp() * 1000),
            "aaveAPY": 230,
            "compoundAPY": 280,
            "difference": 50,
            "betterProtocol": "compound",
            "currentProtocol": "aave",
            "shouldMove": True,
            "threshold": 50,
        }

    def test_equal_and_none_rendered_as_strings(self):
        out = decide(300, 300, 0, 0, 50).to_dict()

        assert out["betterProtocol"] == "equal"
        assert out["currentProtocol"] == "none"


# =============================================================================
# TEST: Monitor cycle
# =============================================================================

def make_markets(aave_bp, compound_bp, aave_amount, compound_amount):
    markets = MagicMock()
    markets.asset = USDC
    rates = {
        ProtocolId.AAVE: RateQuote(ProtocolId.AAVE, aave_bp),
        ProtocolId.COMPOUND: RateQuote(ProtocolId.COMPOUND, compound_bp),
    }
    positions = {
        ProtocolId.AAVE: ProtocolPosition(ProtocolId.AAVE, aave_amount, USDC),
        ProtocolId.COMPOUND: ProtocolPosition(ProtocolId.COMPOUND, compound_amount, USDC),
    }
    markets.get_rate.side_effect = lambda protocol: rates[protocol]
    markets.get_position.side_effect = lambda wallet, protocol: positions[protocol]
    return markets


class TestYieldMonitor:

    @pytest.mark.asyncio
    async def test_compare_yields_uses_configured_threshold(self):
        monitor = YieldMonitor(make_markets(230, 280, 500_000_000, 0), min_yield_difference_bp=50)

        decision = await monitor.compare_yields(SAFE)

        assert decision.should_move is True
        assert decision.threshold_bp == 50
        print(f"✅ Decision: {decision.to_dict()}")

    @pytest.mark.asyncio
    async def test_threshold_override(self):
        monitor = YieldMonitor(make_markets(230, 280, 500_000_000, 0), min_yield_difference_bp=50)

        decision = await monitor.compare_yields(SAFE, threshold_bp=51)

        assert decision.should_move is False
        assert decision.threshold_bp == 51

    @pytest.mark.asyncio
    async def test_reads_both_positions_for_wallet(self):
        markets = make_markets(230, 280, 0, 0)
        monitor = YieldMonitor(markets)

        await monitor.compare_yields(SAFE)

        wallets = {c.args[0] for c in markets.get_position.call_args_list}
        protocols = {c.args[1] for c in markets.get_position.call_args_list}
        assert wallets == {SAFE}
        assert protocols == {ProtocolId.AAVE, ProtocolId.COMPOUND}

    @pytest.mark.asyncio
    async def test_read_failure_aborts_cycle(self):
        markets = make_markets(230, 280, 1, 0)
        markets.get_rate.side_effect = ProtocolReadError("compound", "getUtilization")
        monitor = YieldMonitor(markets)

        with pytest.raises(ProtocolReadError):
            await monitor.compare_yields(SAFE)

    @pytest.mark.asyncio
    async def test_fetch_quotes(self):
        monitor = YieldMonitor(make_markets(230, 280, 0, 0))

        quotes = await monitor.fetch_quotes()

        assert quotes[ProtocolId.AAVE].rate_bp == 230
        assert quotes[ProtocolId.COMPOUND].rate_bp == 280

    @pytest.mark.asyncio
    async def test_compare_yields_reads_rates_through_fetch_quotes(self):
        markets = make_markets(0, 0, 500_000_000, 0)
        monitor = YieldMonitor(markets)
        quotes = {
            ProtocolId.AAVE: RateQuote(ProtocolId.AAVE, 230),
            ProtocolId.COMPOUND: RateQuote(ProtocolId.COMPOUND, 280),
        }

        with patch.object(monitor, "fetch_quotes", AsyncMock(return_value=quotes)) as fetch:
            decision = await monitor.compare_yields(SAFE)

        fetch.assert_awaited_once()
        markets.get_rate.assert_not_called()
        assert decision.difference_bp == 50
        assert decision.better_protocol is ProtocolId.COMPOUND
