# SPDX-FileCopyrightText: 2026 AI Power Grid
#
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
Chain client: endpoint resolution, signing, gas policy and token deployment.

One instance holds the single long-lived signer. Transactions are sent strictly one at a
time by the consumer loop, so a fresh nonce is read from the pending block. Once a
transaction is broadcast its nonce is pinned: later attempts either pick up its receipt,
replace it at the same nonce with a higher (still capped) gas price, or keep waiting.
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

import requests
from eth_account import Account
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted

from contract_deployer.blockchain.config import BlockchainConfig
from contract_deployer.blockchain.model_registry import ModelRegistryClient, RegistrationMetadata
from contract_deployer.blockchain.token import TOKEN_ABI
from contract_deployer.errors import (
    DeploymentError,
    NoRpcEndpointError,
    PipelineError,
    TransactionRevertedError,
    TransientChainError,
)
from contract_deployer.logger import logger

TRANSIENT_ERROR_MARKERS = (
    "timeout",
    "timed out",
    "underpriced",
    "fee too low",
    "nonce too low",
    "nonce has already been used",
    "already known",
    "connection",
    "temporarily unavailable",
    "too many requests",
    "header not found",
)

NONCE_USED_MARKERS = ("nonce too low", "nonce has already been used")

# Nodes reject a same-nonce replacement unless its gas price is at least 10% higher
REPLACEMENT_MIN_BUMP = 1.1
REPLACEMENT_BUMP = 1.125


def is_transient_error(err: Exception) -> bool:
    """RPC timeouts, fee underpricing and nonce races are worth another attempt."""
    if isinstance(err, ContractLogicError):
        return False
    if isinstance(
        err,
        (
            TransientChainError,
            TimeExhausted,
            requests.exceptions.Timeout,
            requests.exceptions.ConnectionError,
            TimeoutError,
            ConnectionError,
        ),
    ):
        return True
    text = str(err).lower()
    return any(marker in text for marker in TRANSIENT_ERROR_MARKERS)


@dataclass(frozen=True)
class DeploymentResult:
    token_address: str
    transaction_hash: str
    block_number: int
    gas_used: int
    gas_price: int


@dataclass(frozen=True)
class NetworkInfo:
    network: str
    chain_id: int
    deployer_address: str
    deployer_balance: int
    block_number: int


def _http_web3(rpc_url: str) -> Web3:
    return Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": 30}))


class ChainClient:
    """Signs and submits transactions against the first reachable RPC endpoint."""

    def __init__(
        self,
        rpc_urls: Sequence[str],
        private_key: str,
        registry_address: str,
        token_manager_address: str,
        gas_multiplier: float = 1.5,
        max_gas_price_wei: int = 100 * 10**9,
        confirmations: int = 3,
        transaction_timeout: float = 300,
        max_attempts: int = 3,
        retry_delay: float = 2.0,
        poll_interval: float = 2.0,
        web3_factory: Callable[[str], Web3] = None,
    ):
        self.rpc_urls = list(rpc_urls)
        self.gas_multiplier = gas_multiplier
        self.max_gas_price_wei = max_gas_price_wei
        self.confirmations = max(1, confirmations)
        self.transaction_timeout = transaction_timeout
        self.max_attempts = max(1, max_attempts)
        self.retry_delay = retry_delay
        self.poll_interval = poll_interval
        self.token_manager_address = Web3.to_checksum_address(token_manager_address)
        self._web3_factory = web3_factory or _http_web3
        self._account = Account.from_key(private_key)
        # Broadcasts still pending when their call ran out of attempts, by transaction key
        self._outstanding: Dict[str, dict] = {}
        self.rpc_url: Optional[str] = None
        self.web3: Optional[Web3] = None
        self.resolve_endpoint()
        self.registry = ModelRegistryClient(self, registry_address)

    @classmethod
    def from_config(cls, web3_factory: Callable[[str], Web3] = None) -> "ChainClient":
        return cls(
            rpc_urls=BlockchainConfig.get_rpc_urls(),
            private_key=BlockchainConfig.get_private_key(),
            registry_address=BlockchainConfig.get_model_registry_address(),
            token_manager_address=BlockchainConfig.get_token_manager_address(),
            gas_multiplier=BlockchainConfig.get_gas_multiplier(),
            max_gas_price_wei=BlockchainConfig.get_max_gas_price_wei(),
            confirmations=BlockchainConfig.get_confirmations(),
            transaction_timeout=BlockchainConfig.get_transaction_timeout(),
            max_attempts=BlockchainConfig.get_max_attempts(),
            retry_delay=BlockchainConfig.get_retry_delay(),
            web3_factory=web3_factory,
        )

    @property
    def address(self) -> str:
        return self._account.address

    @property
    def registry_address(self) -> str:
        return self.registry.address

    def resolve_endpoint(self) -> str:
        """Pick the first candidate that answers a liveness probe."""
        for rpc_url in self.rpc_urls:
            try:
                web3 = self._web3_factory(rpc_url)
                # Some RPCs don't support web3_clientVersion which is_connected checks,
                # so the block number is the probe
                block_number = web3.eth.get_block_number()
            except Exception as e:
                logger.warning(f"Failed to connect to RPC {rpc_url} ({e})")
                continue
            self.web3 = web3
            self.rpc_url = rpc_url
            logger.info(f"Connected to RPC {rpc_url} at block {block_number}")
            return rpc_url
        raise NoRpcEndpointError(self.rpc_urls)

    # ------------------------------------------------------------------
    # Gas policy
    # ------------------------------------------------------------------

    def get_gas_price(self) -> int:
        """Network suggested gas price, capped at the configured maximum."""
        suggested = self.web3.eth.gas_price
        if suggested > self.max_gas_price_wei:
            logger.warning(
                f"Suggested gas price {Web3.from_wei(suggested, 'gwei')} gwei exceeds cap, "
                f"using {Web3.from_wei(self.max_gas_price_wei, 'gwei')} gwei",
            )
            return self.max_gas_price_wei
        return suggested

    def estimate_gas_limit(self, transaction: Dict[str, Any]) -> int:
        estimated = self.web3.eth.estimate_gas(transaction)
        return int(estimated * self.gas_multiplier)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def _with_retries(self, label: str, operation: Callable[[dict], Any], error_cls=DeploymentError, key: str = None):
        """Run operation with linear backoff on transient errors.

        operation receives a state dict that survives across attempts. Once a transaction
        is broadcast its nonce, gas price and hashes live there, so no attempt ever signs
        at a fresh nonce while an earlier broadcast may still be mined. If every attempt
        fails with a broadcast still pending, the state is parked under key and the next
        call for the same transaction resumes it.
        """
        key = key or label
        state: Dict[str, Any] = self._outstanding.pop(key, None) or {}
        if state:
            logger.warning(f"{label}: resuming pending broadcast at nonce {state['nonce']}")
        last_error = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return operation(state)
            except PipelineError:
                raise
            except Exception as err:
                if not is_transient_error(err):
                    logger.error(f"{label} failed permanently on attempt {attempt}: {err}")
                    raise error_cls(f"{label} failed: {err}", attempts=attempt) from err
                last_error = err
                logger.warning(f"{label} attempt {attempt}/{self.max_attempts} failed: {err}")
                if attempt < self.max_attempts:
                    time.sleep(self.retry_delay * attempt)
        if state.get("tx_hashes"):
            self._outstanding[key] = state
            logger.warning(f"{label}: transaction at nonce {state['nonce']} still pending, kept for the next attempt")
        raise error_cls(
            f"{label} failed after {self.max_attempts} attempts: {last_error}",
            attempts=self.max_attempts,
        ) from last_error

    def _sign_and_send(self, transaction: Dict[str, Any], state: dict):
        """Broadcast once per nonce.

        A retry first looks for a receipt of any earlier broadcast. Without one it replaces
        the pending transaction at the same nonce with a bumped gas price, or keeps waiting
        when the cap leaves no room for a valid replacement.
        """
        transaction = dict(transaction)
        if state.get("tx_hashes"):
            receipt = self._find_any_receipt(state["tx_hashes"])
            if receipt is not None:
                logger.info(f"Transaction {Web3.to_hex(receipt['transactionHash'])} from a previous attempt was mined")
                return self._await_confirmations(receipt["transactionHash"], receipt)
            replacement_price = self._replacement_gas_price(state["gas_price"])
            if replacement_price is None:
                logger.info(f"Gas price at cap, still waiting on nonce {state['nonce']}")
                return self._wait_for_receipt(state)
            transaction["nonce"] = state["nonce"]
            transaction["gasPrice"] = replacement_price
        else:
            transaction["nonce"] = self.web3.eth.get_transaction_count(self.address, "pending")
        transaction["chainId"] = self.web3.eth.chain_id

        signed = self._account.sign_transaction(transaction)
        # Recorded before sending: a send that errors may still have reached the mempool
        state["nonce"] = transaction["nonce"]
        state["gas_price"] = transaction["gasPrice"]
        state.setdefault("tx_hashes", []).append(signed.hash)
        try:
            self.web3.eth.send_raw_transaction(signed.raw_transaction)
        except Exception as err:
            if any(marker in str(err).lower() for marker in NONCE_USED_MARKERS):
                receipt = self._find_any_receipt(state["tx_hashes"])
                if receipt is not None:
                    return self._await_confirmations(receipt["transactionHash"], receipt)
                # Consumed by a transaction that is not ours, so none of ours can be mined
                state.clear()
            raise
        logger.info(f"TX sent: {Web3.to_hex(signed.hash)} (nonce {transaction['nonce']}, gasPrice {transaction['gasPrice']})")
        return self._wait_for_receipt(state)

    def _replacement_gas_price(self, previous: int) -> Optional[int]:
        bumped = min(max(int(previous * REPLACEMENT_BUMP), self.get_gas_price()), self.max_gas_price_wei)
        if bumped < previous * REPLACEMENT_MIN_BUMP:
            return None
        return bumped

    def _wait_for_receipt(self, state: dict):
        """Wait on the newest broadcast. Any older one sharing its nonce may be the one mined."""
        latest = state["tx_hashes"][-1]
        try:
            receipt = self.web3.eth.wait_for_transaction_receipt(latest, timeout=self.transaction_timeout)
        except TimeExhausted:
            receipt = self._find_any_receipt(state["tx_hashes"][:-1])
            if receipt is None:
                raise
        return self._await_confirmations(receipt["transactionHash"], receipt)

    def _find_any_receipt(self, tx_hashes):
        for tx_hash in tx_hashes:
            receipt = self._find_receipt(tx_hash)
            if receipt is not None:
                return receipt
        return None

    def _find_receipt(self, tx_hash):
        try:
            return self.web3.eth.get_transaction_receipt(tx_hash)
        except Exception as e:
            logger.debug(f"No receipt yet for {Web3.to_hex(tx_hash)}: {e}")
            return None

    def _await_confirmations(self, tx_hash, receipt):
        if receipt["status"] != 1:
            raise TransactionRevertedError(Web3.to_hex(tx_hash))
        target_block = receipt["blockNumber"] + self.confirmations - 1
        deadline = time.monotonic() + self.transaction_timeout
        while self.web3.eth.block_number < target_block:
            if time.monotonic() >= deadline:
                raise TransientChainError(
                    f"Timed out waiting for {self.confirmations} confirmations of {Web3.to_hex(tx_hash)}",
                )
            time.sleep(self.poll_interval)
        return receipt

    def send_contract_transaction(self, contract_function, label: str, error_cls) -> Any:
        """Estimate, cap, sign and submit a contract call. Returns the confirmed receipt."""

        def attempt(state):
            gas_limit = int(contract_function.estimate_gas({"from": self.address}) * self.gas_multiplier)
            transaction = contract_function.build_transaction(
                {
                    "from": self.address,
                    "gas": gas_limit,
                    "gasPrice": self.get_gas_price(),
                    "nonce": 0,
                },
            )
            return self._sign_and_send(transaction, state)

        return self._with_retries(label, attempt, error_cls)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def deploy(self, bytecode: str, constructor_args: List[Any], abi: List[Dict[str, Any]] = None) -> DeploymentResult:
        """Deploy a contract and wait for the configured confirmation depth."""
        contract = self.web3.eth.contract(abi=abi or TOKEN_ABI, bytecode=bytecode)
        data = contract.constructor(*constructor_args).data_in_transaction
        label = f"Deployment of {constructor_args[0] if constructor_args else 'contract'}"

        def attempt(state):
            gas_limit = self.estimate_gas_limit({"from": self.address, "data": data})
            gas_price = self.get_gas_price()
            transaction = {
                "from": self.address,
                "data": data,
                "value": 0,
                "gas": gas_limit,
                "gasPrice": gas_price,
            }
            receipt = self._sign_and_send(transaction, state)
            token_address = receipt.get("contractAddress")
            if not token_address:
                raise DeploymentError(f"Receipt {Web3.to_hex(receipt['transactionHash'])} has no contract address", attempts=1)
            return DeploymentResult(
                token_address=Web3.to_checksum_address(token_address),
                transaction_hash=Web3.to_hex(receipt["transactionHash"]),
                block_number=receipt["blockNumber"],
                gas_used=receipt["gasUsed"],
                gas_price=receipt.get("effectiveGasPrice") or gas_price,
            )

        result = self._with_retries(label, attempt, DeploymentError, key=data)
        logger.info(
            f"Deployed contract at {result.token_address} (tx {result.transaction_hash}, "
            f"block {result.block_number}, gas {result.gas_used})",
        )
        return result

    def set_contributor(self, token_address: str, contributor_address: str) -> bool:
        """Assign the contributor on a freshly deployed token. Failure does not fail the deployment."""
        token = self.web3.eth.contract(address=Web3.to_checksum_address(token_address), abi=TOKEN_ABI)
        try:
            self.send_contract_transaction(
                token.functions.setContributor(Web3.to_checksum_address(contributor_address)),
                f"setContributor on {token_address}",
                DeploymentError,
            )
        except DeploymentError as e:
            logger.error(f"Failed to set contributor {contributor_address} on {token_address}: {e}")
            return False
        logger.info(f"Contributor {contributor_address} set on {token_address}")
        return True

    def register_model(self, model_id: str, token_address: str, metadata: RegistrationMetadata):
        return self.registry.register_model(model_id, token_address, metadata)

    def check_model_exists(self, model_id: str) -> bool:
        return self.registry.check_model_exists(model_id)

    def get_code(self, address: str) -> bytes:
        return bytes(self.web3.eth.get_code(Web3.to_checksum_address(address)))

    def has_code(self, address: str) -> bool:
        return len(self.get_code(address)) > 0

    def get_network_info(self) -> NetworkInfo:
        chain_id = self.web3.eth.chain_id
        return NetworkInfo(
            network=BlockchainConfig.get_network_name(chain_id),
            chain_id=chain_id,
            deployer_address=self.address,
            deployer_balance=self.web3.eth.get_balance(self.address),
            block_number=self.web3.eth.block_number,
        )

