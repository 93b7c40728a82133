"""
Configuration Management for the Safe Yield Rebalancer
Environment-based configuration with secrets handling

Every component receives its configuration object at construction time;
environment variables are only read here, in from_env().

Defaults point at Arbitrum One.
"""

import os
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional
from enum import Enum

from .errors import ConfigurationError

logger = logging.getLogger("Config")


class Environment(str, Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


@dataclass(frozen=True)
class ProtocolAddresses:
    """Contract addresses the core is parameterized by"""
    # Aave V3
    aave_pool: str = "0x794a61358D6845594F94dc1DB02A252b5b4814aD"
    aave_data_provider: str = "0x69FA688f1Dc47d4B5d8029D5a35FB7a548310654"

    # Compound V3 (USDC Comet)
    compound_comet: str = "0x9c4ec768c28520B50860ea7a15bd7213a9fF58bf"

    # Safe MultiSendCallOnly v1.3.0 (same address on every EVM)
    batch_executor: str = "0x40A2aCCbd92BCA938b02010E17A5b8929b49130D"

    # Native USDC
    asset: str = "0xaf88d065e77c8cC2239327C5EDb3A432268e5831"


@dataclass
class BlockchainConfig:
    """Blockchain configuration"""
    network: str = "arbitrum"
    chain_id: int = 42161
    rpc_url: str = "https://arb1.arbitrum.io/rpc"
    receipt_timeout: int = 120

    @property
    def is_local_fork(self) -> bool:
        return "localhost" in self.rpc_url or "127.0.0.1" in self.rpc_url


@dataclass
class RebalancerConfig:
    """Main application configuration"""
    environment: Environment = Environment.DEVELOPMENT
    debug: bool = True

    addresses: ProtocolAddresses = field(default_factory=ProtocolAddresses)
    blockchain: BlockchainConfig = field(default_factory=BlockchainConfig)

    # Decision
    min_yield_difference_bp: int = 50

    # Wallet + execution module
    safe_address: Optional[str] = None
    module_address: Optional[str] = None

    # Automation service
    monitor_url: Optional[str] = None
    dynamic_script_url: Optional[str] = None
    job_duration: int = 300
    timezone: str = "UTC"
    autotopup: bool = True

    @classmethod
    def from_env(cls) -> "RebalancerConfig":
        """Create configuration from environment variables"""
        env = os.environ.get("REBALANCER_ENV", "development").lower()

        defaults = ProtocolAddresses()
        addresses = ProtocolAddresses(
            aave_pool=os.environ.get("AAVE_POOL_ADDRESS", defaults.aave_pool),
            aave_data_provider=os.environ.get("AAVE_DATA_PROVIDER_ADDRESS", defaults.aave_data_provider),
            compound_comet=os.environ.get("COMPOUND_COMET_ADDRESS", defaults.compound_comet),
            batch_executor=os.environ.get("MULTISEND_ADDRESS", defaults.batch_executor),
            asset=os.environ.get("TOKEN_ADDRESS", defaults.asset),
        )

        blockchain = BlockchainConfig(
            network=os.environ.get("NETWORK", "arbitrum"),
            chain_id=_int_env("CHAIN_ID", 42161),
            rpc_url=os.environ.get("RPC_URL", "https://arb1.arbitrum.io/rpc"),
        )

        config = cls(
            environment=Environment(env) if env in [e.value for e in Environment] else Environment.DEVELOPMENT,
            debug=os.environ.get("DEBUG", "true").lower() == "true",
            addresses=addresses,
            blockchain=blockchain,
            min_yield_difference_bp=_int_env("MIN_YIELD_DIFFERENCE", 50),
            safe_address=os.environ.get("SAFE_WALLET_ADDRESS"),
            module_address=os.environ.get("MODULE_ADDRESS"),
            monitor_url=os.environ.get("MONITOR_URL"),
            dynamic_script_url=os.environ.get("DYNAMIC_TRANSACTIONS_SCRIPT_URL"),
            job_duration=_int_env("JOB_DURATION", 300),
            timezone=os.environ.get("TIMEZONE", "UTC"),
            autotopup=os.environ.get("AUTOTOPUP_TG", "true").lower() != "false",
        )

        if config.environment == Environment.PRODUCTION:
            config.debug = False

        return config

    def require_safe(self) -> str:
        if not self.safe_address:
            raise ConfigurationError("SAFE_WALLET_ADDRESS")
        return self.safe_address

    def to_dict(self) -> Dict:
        """Convert to dictionary (hiding secrets)"""
        def sanitize(obj):
            if isinstance(obj, dict):
                return {k: sanitize(v) for k, v in obj.items() if "key" not in k.lower() and "secret" not in k.lower()}
            elif hasattr(obj, '__dataclass_fields__'):
                return sanitize({k: getattr(obj, k) for k in obj.__dataclass_fields__})
            elif isinstance(obj, Enum):
                return obj.value
            else:
                return obj

        return sanitize(self)


def _int_env(key: str, default: int) -> int:
    raw = os.environ.get(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(key, f"{key} must be an integer, got {raw!r}")


# ============================================
# SECRETS MANAGEMENT
# ============================================

class SecretsManager:
    """
    Holds secrets loaded from the environment.
    The module key signs execTransactionFromModule calls. NEVER log it.
    """

    SECRET_KEYS = [
        "MODULE_PRIVATE_KEY",
        "SENTRY_DSN",
    ]

    def __init__(self):
        self._secrets: Dict[str, str] = {}
        self._load_from_env()

    def _load_from_env(self):
        for key in self.SECRET_KEYS:
            value = os.environ.get(key)
            if value:
                self._secrets[key] = value

    def get(self, key: str, default: str = None) -> Optional[str]:
        return self._secrets.get(key, default)

    def require(self, key: str) -> str:
        value = self._secrets.get(key)
        if not value:
            raise ConfigurationError(key)
        return value

    def set(self, key: str, value: str):
        """Set a secret value (runtime only)"""
        self._secrets[key] = value

    def has(self, key: str) -> bool:
        return key in self._secrets


def load_config() -> RebalancerConfig:
    """Load .env (if present) and build the configuration"""
    from dotenv import load_dotenv
    load_dotenv()

    config = RebalancerConfig.from_env()
    logger.info(f"Configuration loaded for {config.blockchain.network} ({config.environment.value})")
    return config
