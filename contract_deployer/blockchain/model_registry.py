# SPDX-FileCopyrightText: 2026 AI Power Grid
#
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
Model Registry Client for the contract deployer.

The registry maps a model id to its token address and is the source of truth for
idempotency: a model with a non-zero token address has already been deployed.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from web3 import Web3

from contract_deployer.errors import DuplicateRegistrationError, RegistrationError
from contract_deployer.logger import logger

if TYPE_CHECKING:
    from contract_deployer.blockchain.chain_client import ChainClient

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# ABI for ModelRegistry contract (subset for needed functions)
MODEL_REGISTRY_ABI = [
    {
        "inputs": [
            {"internalType": "string", "name": "modelId", "type": "string"},
            {"internalType": "address", "name": "tokenAddress", "type": "address"},
            {"internalType": "string", "name": "metricName", "type": "string"},
            {"internalType": "string", "name": "mlflowRunId", "type": "string"},
        ],
        "name": "registerModel",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "string", "name": "modelId", "type": "string"}],
        "name": "getTokenAddress",
        "outputs": [{"internalType": "address", "name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "string", "name": "modelId", "type": "string"}],
        "name": "getModelInfo",
        "outputs": [
            {"internalType": "address", "name": "tokenAddress", "type": "address"},
            {"internalType": "string", "name": "metricName", "type": "string"},
            {"internalType": "string", "name": "mlflowRunId", "type": "string"},
            {"internalType": "uint256", "name": "registrationTime", "type": "uint256"},
            {"internalType": "bool", "name": "isActive", "type": "bool"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "owner",
        "outputs": [{"internalType": "address", "name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
]

DUPLICATE_MARKERS = ("already registered", "already exists")


@dataclass(frozen=True)
class RegistrationMetadata:
    metric_name: str
    mlflow_run_id: str


@dataclass(frozen=True)
class RegistrationResult:
    transaction_hash: str
    block_number: int
    gas_used: int


class ModelInfo:
    """Registry entry for a model."""

    def __init__(self, token_address: str, metric_name: str, mlflow_run_id: str, registration_time: int, is_active: bool):
        self.token_address = token_address
        self.metric_name = metric_name
        self.mlflow_run_id = mlflow_run_id
        self.registration_time = datetime.fromtimestamp(registration_time, tz=timezone.utc)
        self.is_active = is_active


class ModelRegistryClient:
    """Client for interacting with the ModelRegistry smart contract."""

    def __init__(self, chain: "ChainClient", registry_address: str):
        self.chain = chain
        self.address = Web3.to_checksum_address(registry_address)
        self._contract = chain.web3.eth.contract(address=self.address, abi=MODEL_REGISTRY_ABI)

    def check_model_exists(self, model_id: str) -> bool:
        """Read-only idempotency probe. Errors propagate, an unknown answer is never 'no'."""
        token_address = self._contract.functions.getTokenAddress(model_id).call()
        exists = token_address != ZERO_ADDRESS
        logger.debug(f"On-chain getTokenAddress({model_id}) = {token_address}")
        return exists

    def register_model(self, model_id: str, token_address: str, metadata: RegistrationMetadata) -> RegistrationResult:
        """Write model_id -> token_address. Raises DuplicateRegistrationError if the registry rejects it."""
        logger.info(f"Registering model {model_id} -> {token_address}")
        call = self._contract.functions.registerModel(
            model_id,
            Web3.to_checksum_address(token_address),
            metadata.metric_name,
            metadata.mlflow_run_id,
        )
        try:
            receipt = self.chain.send_contract_transaction(call, f"Registration of {model_id}", RegistrationError)
        except RegistrationError as err:
            cause = str(err.__cause__ or err).lower()
            if any(marker in cause for marker in DUPLICATE_MARKERS):
                raise DuplicateRegistrationError(model_id) from err
            raise
        result = RegistrationResult(
            transaction_hash=Web3.to_hex(receipt["transactionHash"]),
            block_number=receipt["blockNumber"],
            gas_used=receipt["gasUsed"],
        )
        logger.info(f"Model {model_id} registered (tx {result.transaction_hash})")
        return result

    def get_model_info(self, model_id: str) -> Optional[ModelInfo]:
        result = self._contract.functions.getModelInfo(model_id).call()
        # result = (tokenAddress, metricName, mlflowRunId, registrationTime, isActive)
        if result[0] == ZERO_ADDRESS:
            return None
        return ModelInfo(
            token_address=result[0],
            metric_name=result[1],
            mlflow_run_id=result[2],
            registration_time=result[3],
            is_active=result[4],
        )

    def estimate_registration_gas(self, model_id: str, token_address: str, metadata: RegistrationMetadata) -> int:
        return self._contract.functions.registerModel(
            model_id,
            Web3.to_checksum_address(token_address),
            metadata.metric_name,
            metadata.mlflow_run_id,
        ).estimate_gas({"from": self.chain.address})

    def check_health(self) -> bool:
        try:
            self._contract.functions.owner().call()
            return True
        except Exception as e:
            logger.error(f"Registry health check failed: {e}")
            return False
