"""
Wallet Inspector
Read-only health checks for the Safe the rebalancer manages.

- verify_safe(): is the address a Safe, single owner / threshold 1, module enabled,
  RPC on the expected chain
- balance_report(): gas balance, idle token balance and both protocol positions
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from web3 import Web3
from web3.exceptions import ContractLogicError, Web3Exception

from infrastructure.config import BlockchainConfig
from infrastructure.errors import ProtocolReadError
from infrastructure.rpc import checksum
from data_sources.lending_rates import ERC20_ABI, ProtocolId, format_units
from data_sources.markets import LendingMarkets
from services.safe_module import SAFE_ABI

logger = logging.getLogger("WalletInspector")

NATIVE_DECIMALS = 18
LOW_GAS_THRESHOLD_WEI = 10**16  # 0.01 native

DEFAULT_SYMBOL = "TOKEN"
DEFAULT_DECIMALS = 6


@dataclass
class SafeStatus:
    address: str
    is_contract: bool = False
    owners: List[str] = field(default_factory=list)
    threshold: Optional[int] = None
    module_enabled: Optional[bool] = None
    chain_id: Optional[int] = None
    expected_chain_id: Optional[int] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def single_owner(self) -> bool:
        return len(self.owners) == 1 and self.threshold == 1

    @property
    def ready(self) -> bool:
        """Safe can be driven by the module right now"""
        return self.is_contract and bool(self.module_enabled)

    def to_dict(self) -> Dict:
        return {
            "address": self.address,
            "is_contract": self.is_contract,
            "owners": self.owners,
            "threshold": self.threshold,
            "single_owner": self.single_owner,
            "module_enabled": self.module_enabled,
            "chain_id": self.chain_id,
            "expected_chain_id": self.expected_chain_id,
            "ready": self.ready,
            "warnings": self.warnings,
        }


class WalletInspector:
    """
    Usage:
        inspector = WalletInspector(w3, markets, config.blockchain, module_address)
        status = inspector.verify_safe(safe_address)
        report = inspector.balance_report(safe_address)
    """

    def __init__(
        self,
        w3: Web3,
        markets: LendingMarkets,
        blockchain: Optional[BlockchainConfig] = None,
        module_address: Optional[str] = None
    ):
        self.w3 = w3
        self.markets = markets
        self.blockchain = blockchain or BlockchainConfig()
        self.module_address = checksum(module_address) if module_address else None

    # ============================================
    # SAFE VERIFICATION
    # ============================================

    def verify_safe(self, wallet: str) -> SafeStatus:
        wallet = checksum(wallet)
        status = SafeStatus(address=wallet, expected_chain_id=self.blockchain.chain_id)

        try:
            status.chain_id = self.w3.eth.chain_id
            if status.chain_id != self.blockchain.chain_id:
                status.warnings.append(
                    f"Network mismatch: RPC is on chain {status.chain_id}, "
                    f"CHAIN_ID is set to {self.blockchain.chain_id}"
                )
        except (Web3Exception, OSError) as e:
            status.warnings.append(f"Could not detect network from RPC: {e}")

        try:
            code = self.w3.eth.get_code(wallet)
        except Exception as e:
            raise ProtocolReadError("safe", "getCode", e) from e

        if not code:
            status.warnings.append(f"{wallet} is not a contract (EOA), it cannot be used as a Safe")
            if self.blockchain.is_local_fork:
                status.warnings.append("Local fork RPC: the Safe only exists on the fork")
            return status
        status.is_contract = True

        safe = self.w3.eth.contract(address=wallet, abi=SAFE_ABI)
        try:
            status.owners = list(safe.functions.getOwners().call())
            status.threshold = safe.functions.getThreshold().call()
        except Exception as e:
            raise ProtocolReadError("safe", "getOwners", e) from e

        if not status.single_owner:
            status.warnings.append(
                f"Safe should have exactly 1 owner with threshold 1 "
                f"(has {len(status.owners)} owner(s), threshold {status.threshold})"
            )

        if self.module_address:
            try:
                status.module_enabled = bool(safe.functions.isModuleEnabled(self.module_address).call())
            except Exception as e:
                raise ProtocolReadError("safe", "isModuleEnabled", e) from e
            if not status.module_enabled:
                status.warnings.append(f"Module {self.module_address} is not enabled on the Safe")

        for warning in status.warnings:
            logger.warning(warning)
        return status

    # ============================================
    # BALANCES
    # ============================================

    def token_info(self, asset: str) -> Dict:
        token = self.w3.eth.contract(address=checksum(asset), abi=ERC20_ABI)

        try:
            symbol = token.functions.symbol().call()
        except (ContractLogicError, Web3Exception, ValueError) as e:
            logger.warning(f"symbol() failed for {asset}: {e}")
            symbol = DEFAULT_SYMBOL

        try:
            decimals = token.functions.decimals().call()
        except (ContractLogicError, Web3Exception, ValueError) as e:
            logger.warning(f"decimals() failed for {asset}: {e}")
            decimals = DEFAULT_DECIMALS

        return {"symbol": symbol, "decimals": decimals}

    def balance_report(self, wallet: str) -> Dict:
        wallet = checksum(wallet)
        asset = self.markets.asset
        info = self.token_info(asset)
        decimals = info["decimals"]

        try:
            native = self.w3.eth.get_balance(wallet)
            token = self.w3.eth.contract(address=asset, abi=ERC20_ABI)
            in_wallet = token.functions.balanceOf(wallet).call()
        except Exception as e:
            raise ProtocolReadError("wallet", "balanceOf", e) from e

        in_aave = self.markets.get_position(wallet, ProtocolId.AAVE).supplied_amount
        in_compound = self.markets.get_position(wallet, ProtocolId.COMPOUND).supplied_amount
        total = in_wallet + in_aave + in_compound

        warnings = []
        if native < LOW_GAS_THRESHOLD_WEI:
            warnings.append("Low native balance: need at least 0.01 for gas")

        return {
            "address": wallet,
            "token": {"address": asset, **info},
            "native": {"raw": str(native), "formatted": format_units(native, NATIVE_DECIMALS)},
            "wallet": {"raw": str(in_wallet), "formatted": format_units(in_wallet, decimals)},
            "aave": {"raw": str(in_aave), "formatted": format_units(in_aave, decimals)},
            "compound": {"raw": str(in_compound), "formatted": format_units(in_compound, decimals)},
            "total": {"raw": str(total), "formatted": format_units(total, decimals)},
            "warnings": warnings,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
