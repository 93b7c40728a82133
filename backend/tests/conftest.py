"""
Pytest Configuration for Rebalancer Backend Tests

Run all tests: python -m pytest tests/ -v
Run unit tests only: python -m pytest tests/ -v -m "not integration"
Run integration tests: python -m pytest tests/ -v -m integration
"""

import pytest
import sys
from pathlib import Path
from unittest.mock import MagicMock

from eth_abi import encode
from web3 import Web3

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent))

# Load environment
from dotenv import load_dotenv
load_dotenv(Path(__file__).parent.parent / ".env")

from infrastructure.config import ProtocolAddresses


# =============================================================================
# HELPERS
# =============================================================================

def selector(signature: str) -> bytes:
    return bytes(Web3.keccak(text=signature)[:4])


def abi_return(types, values) -> bytes:
    return encode(list(types), list(values))


class FakeChain:
    """
    MagicMock Web3 whose eth_call / getCode answer from a lookup table.

    Encoding and decoding go through a real offline Web3, so calldata built
    by the adapters is exactly what would hit the node.
    """

    def __init__(self):
        self.encoder = Web3()
        self.responses = {}
        self.code = {}
        self.calls = []

        self.w3 = MagicMock()
        self.w3.codec = self.encoder.codec
        self.w3.eth.contract = self.encoder.eth.contract
        self.w3.eth.call.side_effect = self._call
        self.w3.eth.get_code.side_effect = self._get_code

    def respond(self, to: str, signature: str, result):
        """result: raw bytes, or an Exception to raise"""
        self.responses[(Web3.to_checksum_address(to), selector(signature))] = result

    def deploy(self, address: str, code: bytes = b"\x60\x80"):
        self.code[Web3.to_checksum_address(address)] = code

    def _call(self, tx, *args, **kwargs):
        key = (Web3.to_checksum_address(tx["to"]), bytes.fromhex(tx["data"][2:10]))
        self.calls.append(key)
        result = self.responses.get(key, b"")
        if isinstance(result, Exception):
            raise result
        return result

    def _get_code(self, address, *args, **kwargs):
        return self.code.get(Web3.to_checksum_address(address), b"")


# =============================================================================
# FIXTURES - Shared across all test files
# =============================================================================

@pytest.fixture
def addresses():
    """Arbitrum One defaults"""
    return ProtocolAddresses()


@pytest.fixture
def test_addresses():
    """Standard test addresses"""
    return {
        name: Web3.to_checksum_address(address)
        for name, address in {
            "safe": "0x5e047deb5eb22f4e4a7f2207087369468575e3ef",
            "owner": "0xa30a689ec0f9d717c5ba1098455b031b868b720f",
            "a_token": "0x724dc807b04555b71ed48a6896b6f41593b8c637",
            "stable_debt": "0x0000000000000000000000000000000000000011",
            "variable_debt": "0xf611aeb5013fd2c0511c9cd55c7dc5c1140741a6",
        }.items()
    }


@pytest.fixture
def fake_chain():
    return FakeChain()


# =============================================================================
# MARKERS
# =============================================================================

def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (use a real RPC)"
    )
    config.addinivalue_line(
        "markers", "slow: marks tests as slow running"
    )
