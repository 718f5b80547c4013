# SPDX-FileCopyrightText: 2026 AI Power Grid
#
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
Blockchain configuration for the contract deployer.
"""

import os
from typing import List

from contract_deployer.errors import ConfigurationError

WEI_PER_GWEI = 10**9


class BlockchainConfig:
    """Configuration for blockchain connections and deployment gas policy."""

    # Base Sepolia (testnet)
    SEPOLIA_RPC_URL = "https://sepolia.base.org"

    NETWORK_NAMES = {
        1: "ethereum",
        11155111: "sepolia",
        137: "polygon",
        80002: "amoy",
        8453: "base",
        84532: "base-sepolia",
        31337: "hardhat",
        1337: "localhost",
    }

    @classmethod
    def get_rpc_urls(cls) -> List[str]:
        """Ordered RPC endpoint candidates, first usable one wins."""
        raw = os.getenv("RPC_URLS") or os.getenv("RPC_URL") or cls.SEPOLIA_RPC_URL
        return [url.strip() for url in raw.split(",") if url.strip()]

    @classmethod
    def get_private_key(cls) -> str:
        return os.getenv("DEPLOYER_PRIVATE_KEY", "")

    @classmethod
    def get_model_registry_address(cls) -> str:
        return os.getenv("MODEL_REGISTRY_ADDRESS", "")

    @classmethod
    def get_token_manager_address(cls) -> str:
        return os.getenv("TOKEN_MANAGER_ADDRESS", "")

    @classmethod
    def get_token_artifact_path(cls) -> str:
        return os.getenv("TOKEN_ARTIFACT_PATH", "contracts/HokusaiToken.json")

    @classmethod
    def get_gas_multiplier(cls) -> float:
        return float(os.getenv("GAS_LIMIT_MULTIPLIER", "1.5"))

    @classmethod
    def get_max_gas_price_wei(cls) -> int:
        """Gas price ceiling, configured in gwei."""
        return int(float(os.getenv("MAX_GAS_PRICE_GWEI", "100")) * WEI_PER_GWEI)

    @classmethod
    def get_confirmations(cls) -> int:
        return int(os.getenv("CONFIRMATION_BLOCKS", "3"))

    @classmethod
    def get_transaction_timeout(cls) -> float:
        return float(os.getenv("DEPLOYMENT_TIMEOUT_SECONDS", "300"))

    @classmethod
    def get_max_attempts(cls) -> int:
        return int(os.getenv("DEPLOY_MAX_ATTEMPTS", "3"))

    @classmethod
    def get_retry_delay(cls) -> float:
        return float(os.getenv("DEPLOY_RETRY_DELAY_SECONDS", "2"))

    @classmethod
    def get_low_balance_threshold(cls) -> float:
        """Deployer balance below this (in ether) grades the chain as degraded."""
        return float(os.getenv("LOW_BALANCE_THRESHOLD_ETH", "0.1"))

    @classmethod
    def get_network_name(cls, chain_id: int) -> str:
        return cls.NETWORK_NAMES.get(chain_id, f"chain-{chain_id}")

    @classmethod
    def validate(cls) -> List[str]:
        """Return a list of configuration problems, empty when usable."""
        problems = []
        key = cls.get_private_key()
        if not key:
            problems.append("DEPLOYER_PRIVATE_KEY is not set")
        elif len(key.removeprefix("0x")) != 64:
            problems.append("DEPLOYER_PRIVATE_KEY must be a 32-byte hex string")
        for name, value in (
            ("MODEL_REGISTRY_ADDRESS", cls.get_model_registry_address()),
            ("TOKEN_MANAGER_ADDRESS", cls.get_token_manager_address()),
        ):
            if not value:
                problems.append(f"{name} is not set")
            elif not (value.startswith("0x") and len(value) == 42):
                problems.append(f"{name} is not a valid address: {value}")
        if not cls.get_rpc_urls():
            problems.append("RPC_URLS is empty")
        try:
            if cls.get_confirmations() < 1:
                problems.append("CONFIRMATION_BLOCKS must be at least 1")
            if cls.get_gas_multiplier() <= 0:
                problems.append("GAS_LIMIT_MULTIPLIER must be positive")
            if cls.get_max_gas_price_wei() <= 0:
                problems.append("MAX_GAS_PRICE_GWEI must be positive")
        except ValueError as err:
            problems.append(f"Invalid numeric blockchain setting: {err}")
        if not os.path.isfile(cls.get_token_artifact_path()):
            problems.append(f"TOKEN_ARTIFACT_PATH not found: {cls.get_token_artifact_path()}")
        return problems

    @classmethod
    def ensure_valid(cls):
        problems = cls.validate()
        if problems:
            raise ConfigurationError(problems)
