"""
Automation Job Tests
Condition-job payload: static plan, dynamic script, placeholder fallback

Run: python -m pytest tests/test_automation_job.py -v
"""

import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from web3 import Web3

from agents.yield_monitor import decide
from artisan.multisend import Call
from artisan.rebalance_builder import RebalancePlan
from infrastructure.config import BlockchainConfig, RebalancerConfig
from infrastructure.errors import ConfigurationError
from services.automation_job import (
    ARG_TYPE_DYNAMIC,
    ARG_TYPE_STATIC,
    build_job_input,
    is_public_url,
    placeholder_transaction,
    prepare_job,
    probe_monitor,
)

MONITOR_URL = "https://rebalancer.example.org/api/monitor"


@pytest.fixture
def config(test_addresses):
    return RebalancerConfig(
        safe_address=test_addresses["safe"],
        monitor_url=MONITOR_URL,
        min_yield_difference_bp=75,
    )


@pytest.fixture
def plan_call(test_addresses):
    return Call(to=test_addresses["a_token"], value=0, data=b"\x01\x02")


# =============================================================================
# TEST: Payload
# =============================================================================

class TestJobInput:

    def test_condition_fields(self, config, test_addresses):
        job = build_job_input(config)

        assert job["jobType"] == "condition"
        assert job["conditionType"] == "greater_than"
        assert job["upperLimit"] == 75
        assert job["lowerLimit"] == 0
        assert job["valueSourceType"] == "api"
        assert job["valueSourceUrl"] == MONITOR_URL
        assert job["walletMode"] == "safe"
        assert job["safeAddress"] == test_addresses["safe"]
        assert job["chainId"] == "42161"
        assert job["timeFrame"] == 300
        assert job["timezone"] == "UTC"

    def test_static_transactions_from_plan(self, config, plan_call):
        job = build_job_input(config, [plan_call])

        assert job["argType"] == ARG_TYPE_STATIC
        assert job["safeTransactions"] == [plan_call.to_dict()]
        assert "dynamicArgumentsScriptUrl" not in job
        print(f"✅ Static job with {len(job['safeTransactions'])} transaction(s)")

    def test_dynamic_script_preferred_over_static(self, config, plan_call):
        config.dynamic_script_url = "https://scripts.example.org/rebalance.js"

        job = build_job_input(config, [plan_call])

        assert job["argType"] == ARG_TYPE_DYNAMIC
        assert job["dynamicArgumentsScriptUrl"] == config.dynamic_script_url
        assert "safeTransactions" not in job

    def test_placeholder_without_plan(self, config, test_addresses):
        job = build_job_input(config, [])

        assert job["argType"] == ARG_TYPE_STATIC
        assert job["safeTransactions"] == [placeholder_transaction(test_addresses["safe"])]

    def test_localhost_script_falls_back_to_placeholder(self, config, test_addresses):
        config.dynamic_script_url = "http://localhost:3000/script.js"

        job = build_job_input(config, [])

        assert job["argType"] == ARG_TYPE_STATIC
        assert job["safeTransactions"][0]["to"] == test_addresses["safe"]
        assert any("not publicly reachable" in w for w in job["warnings"])

    def test_localhost_monitor_warns(self, config):
        config.monitor_url = "http://127.0.0.1:8000/api/monitor"

        job = build_job_input(config)

        assert any("Monitor URL" in w for w in job["warnings"])

    def test_low_balance_disables_topup(self, config):
        assert build_job_input(config, native_balance_wei=10**17)["autotopupTG"] is True
        assert build_job_input(config, native_balance_wei=10**15)["autotopupTG"] is False

    def test_local_fork_warns(self, config):
        config.blockchain = BlockchainConfig(rpc_url="http://localhost:8545")

        job = build_job_input(config)

        assert any("Local fork" in w for w in job["warnings"])

    def test_missing_monitor_url(self, config):
        config.monitor_url = None

        with pytest.raises(ConfigurationError):
            build_job_input(config)

    def test_missing_safe(self, config):
        config.safe_address = None

        with pytest.raises(ConfigurationError):
            build_job_input(config)


# =============================================================================
# TEST: Helpers
# =============================================================================

class TestHelpers:

    def test_placeholder_is_nonce_call(self, test_addresses):
        tx = placeholder_transaction(test_addresses["safe"])

        assert tx["to"] == test_addresses["safe"]
        assert tx["value"] == "0"
        assert bytes.fromhex(tx["data"][2:]) == bytes(Web3.keccak(text="nonce()")[:4])

    @pytest.mark.parametrize("url,expected", [
        ("https://example.org/x", True),
        ("http://localhost:3000", False),
        ("http://127.0.0.1/x", False),
        ("ftp://example.org", False),
        (None, False),
    ])
    def test_is_public_url(self, url, expected):
        assert is_public_url(url) is expected


class TestPrepareJob:

    @pytest.mark.asyncio
    async def test_prepare_job_uses_current_plan(self, config, plan_call, test_addresses):
        monitor = MagicMock()
        monitor.compare_yields = AsyncMock(return_value=decide(230, 280, 1, 0, 50))
        builder = MagicMock()
        builder.build_plan.return_value = RebalancePlan(calls=(plan_call,), amount=1)

        with patch("services.automation_job.probe_monitor", AsyncMock(return_value={"value": 50})) as probe:
            job = await prepare_job(config, monitor, builder)

        monitor.compare_yields.assert_awaited_once_with(test_addresses["safe"])
        probe.assert_awaited_once_with(MONITOR_URL)
        assert job["safeTransactions"] == [plan_call.to_dict()]
        assert job["warnings"] == []

    @pytest.mark.asyncio
    async def test_unreachable_monitor_warns(self, config, plan_call):
        monitor = MagicMock()
        monitor.compare_yields = AsyncMock(return_value=decide(230, 280, 1, 0, 50))
        builder = MagicMock()
        builder.build_plan.return_value = RebalancePlan(calls=(plan_call,), amount=1)

        with patch("services.automation_job.probe_monitor", AsyncMock(return_value=None)):
            job = await prepare_job(config, monitor, builder)

        assert any("did not return a value" in w for w in job["warnings"])


class TestProbeMonitor:

    @pytest.fixture
    def transport(self, monkeypatch):
        real_client = httpx.AsyncClient

        def install(handler):
            monkeypatch.setattr(
                httpx, "AsyncClient",
                lambda timeout: real_client(transport=httpx.MockTransport(handler), timeout=timeout)
            )
        return install

    @pytest.mark.asyncio
    async def test_returns_body(self, transport):
        transport(lambda request: httpx.Response(200, json={"value": 42, "metadata": {}}))

        body = await probe_monitor(MONITOR_URL)

        assert body["value"] == 42

    @pytest.mark.asyncio
    async def test_server_error_is_none(self, transport):
        transport(lambda request: httpx.Response(503))

        assert await probe_monitor(MONITOR_URL) is None

    @pytest.mark.asyncio
    async def test_non_json_is_none(self, transport):
        transport(lambda request: httpx.Response(200, text="tunnel offline"))

        assert await probe_monitor(MONITOR_URL) is None
