"""
Rebalancer Infrastructure Module
Configuration, error taxonomy and RPC access
"""

from .errors import (
    RebalancerError,
    ValidationError,
    ConfigurationError,
    ProtocolReadError,
    ModuleNotEnabledError,
    ExecutionRevertedError,
    TransactionSendError,
    ReceiptTimeoutError,
    ErrorCode,
    ErrorTracker,
    error_tracker,
    register_exception_handlers,
    ErrorHandlingMiddleware,
)

from .config import (
    RebalancerConfig,
    ProtocolAddresses,
    BlockchainConfig,
    Environment,
    SecretsManager,
    load_config,
)

from .rpc import (
    get_web3,
    get_encoder_web3,
    checksum,
    ZERO_ADDRESS,
)

__all__ = [
    # Errors
    "RebalancerError",
    "ValidationError",
    "ConfigurationError",
    "ProtocolReadError",
    "ModuleNotEnabledError",
    "ExecutionRevertedError",
    "TransactionSendError",
    "ReceiptTimeoutError",
    "ErrorCode",
    "ErrorTracker",
    "error_tracker",
    "register_exception_handlers",
    "ErrorHandlingMiddleware",

    # Config
    "RebalancerConfig",
    "ProtocolAddresses",
    "BlockchainConfig",
    "Environment",
    "SecretsManager",
    "load_config",

    # RPC
    "get_web3",
    "get_encoder_web3",
    "checksum",
    "ZERO_ADDRESS",
]
