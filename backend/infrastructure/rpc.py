# infrastructure/rpc.py
"""
Centralized RPC access for the rebalancer.
The connection is created from BlockchainConfig and handed to each component.
"""
from web3 import Web3
from typing import Optional

from .config import BlockchainConfig
from .errors import ValidationError


def get_web3(blockchain: Optional[BlockchainConfig] = None) -> Web3:
    """Get a Web3 instance for the configured network."""
    blockchain = blockchain or BlockchainConfig()
    return Web3(Web3.HTTPProvider(
        blockchain.rpc_url,
        request_kwargs={"timeout": 30}
    ))


def get_encoder_web3() -> Web3:
    """Offline Web3 instance, only used for ABI encoding and decoding."""
    return Web3()


def checksum(address: str) -> str:
    try:
        return Web3.to_checksum_address(address)
    except (ValueError, TypeError) as e:
        raise ValidationError(f"Invalid address: {address}", {"address": str(address)}) from e


ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
