"""
Blockchain integration for the contract deployer.

Provides Web3 token deployment and ModelRegistry access.
"""

from contract_deployer.blockchain.chain_client import ChainClient, DeploymentResult, NetworkInfo, is_transient_error
from contract_deployer.blockchain.config import BlockchainConfig
from contract_deployer.blockchain.model_registry import ModelRegistryClient, RegistrationMetadata, RegistrationResult

__all__ = [
    "BlockchainConfig",
    "ChainClient",
    "DeploymentResult",
    "ModelRegistryClient",
    "NetworkInfo",
    "RegistrationMetadata",
    "RegistrationResult",
    "is_transient_error",
]
