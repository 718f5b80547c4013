# SPDX-FileCopyrightText: 2026 AI Power Grid
#
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
Contract deploy listener.

Wires the queue consumer, the chain client and the event publisher together. The
DeploymentOrchestrator is the message handler: it turns one model_ready message into a
deployed token, a registry entry and one token_deployed event. It never swallows an
error, so the consumer's retry and dead-letter policy is the only one in the system.
"""

import threading
import time
import uuid
from typing import List, Optional

import redis

from contract_deployer.blockchain import BlockchainConfig, ChainClient, RegistrationMetadata
from contract_deployer.blockchain.token import load_token_artifact
from contract_deployer.config import MonitoringConfig, QueueConfig
from contract_deployer.discord import notify_token_deployed
from contract_deployer.errors import BrokerUnavailableError, PipelineError
from contract_deployer.logger import logger
from contract_deployer.monitoring import AlertManager, DeploymentMetrics, HealthMonitor
from contract_deployer.queues import EventPublisher, RedisQueueConsumer
from contract_deployer.schemas import ModelReadyMessage, TokenDeployedEvent


class DeploymentOrchestrator:
    def __init__(
        self,
        chain: ChainClient,
        publisher: EventPublisher,
        metrics: DeploymentMetrics,
        token_bytecode: str,
        token_abi: List[dict] = None,
        publish_max_attempts: int = 3,
        publish_backoff: float = 1.0,
    ):
        self.chain = chain
        self.publisher = publisher
        self.metrics = metrics
        self.token_bytecode = token_bytecode
        self.token_abi = token_abi
        self.publish_max_attempts = publish_max_attempts
        self.publish_backoff = publish_backoff

    def handle(self, message: ModelReadyMessage) -> Optional[TokenDeployedEvent]:
        """Returns the published event, or None when the model already has a token."""
        model_id = message.model_id
        started = time.monotonic()
        logger.info(f"Processing model {model_id} ({message.token_symbol}, +{message.improvement_percentage}%)")
        try:
            if self.chain.check_model_exists(model_id):
                logger.info(f"Model {model_id} already has a token, skipping deployment")
                self.metrics.record_skipped(model_id)
                return None

            deployment = self.chain.deploy(
                self.token_bytecode,
                [message.token_name, message.token_symbol, self.chain.token_manager_address],
                abi=self.token_abi,
            )
            if message.contributor_address:
                self.chain.set_contributor(deployment.token_address, message.contributor_address)

            registration = self.chain.register_model(
                model_id,
                deployment.token_address,
                RegistrationMetadata(metric_name=message.metric_name, mlflow_run_id=message.mlflow_run_id),
            )
            network = self.chain.get_network_info()

            event = TokenDeployedEvent(
                model_id=model_id,
                token_address=deployment.token_address,
                token_symbol=message.token_symbol,
                token_name=message.token_name,
                transaction_hash=deployment.transaction_hash,
                registry_transaction_hash=registration.transaction_hash,
                mlflow_run_id=message.mlflow_run_id,
                model_name=message.model_name,
                model_version=message.model_version,
                deployer_address=network.deployer_address,
                network=network.network,
                block_number=deployment.block_number,
                gas_used=str(deployment.gas_used),
                gas_price=str(deployment.gas_price),
                contributor_address=message.contributor_address,
                performance_metric=message.metric_name,
                performance_improvement=message.improvement_percentage,
            )
            self.publisher.publish_with_retry(
                event,
                max_attempts=self.publish_max_attempts,
                backoff=self.publish_backoff,
                correlation_id=str(uuid.uuid4()),
            )
        except Exception as e:
            stage = e.stage if isinstance(e, PipelineError) else "unknown"
            self.metrics.record_failure(model_id, stage, str(e))
            raise

        elapsed = time.monotonic() - started
        self.metrics.record_deployment(model_id, deployment.token_address, elapsed, deployment.gas_used + registration.gas_used)
        notify_token_deployed(model_id, deployment.token_address, message.token_symbol, deployment.transaction_hash, network.network)
        logger.info(f"Model {model_id} deployed as {deployment.token_address} in {elapsed:.1f}s")
        return event


class ContractDeployListener:
    """Owns the Redis connection, the signer and the worker thread running the consumer loop."""

    def __init__(self, redis_client: redis.Redis = None, chain: ChainClient = None, metrics: DeploymentMetrics = None, alert_manager: AlertManager = None):
        self.redis = redis_client
        self.chain = chain
        self.alert_manager = alert_manager
        self.metrics = metrics
        self.consumer: Optional[RedisQueueConsumer] = None
        self.publisher: Optional[EventPublisher] = None
        self.orchestrator: Optional[DeploymentOrchestrator] = None
        self.health: Optional[HealthMonitor] = None
        self._worker: Optional[threading.Thread] = None

    def initialize(self):
        """Connect to Redis and the chain. Infrastructure errors propagate and abort startup."""
        if self.redis is None:
            timeout = QueueConfig.get_connect_timeout()
            self.redis = redis.Redis.from_url(
                QueueConfig.get_redis_url(),
                decode_responses=True,
                socket_connect_timeout=timeout,
            )
        try:
            self.redis.ping()
        except redis.RedisError as e:
            raise BrokerUnavailableError(f"Redis unreachable: {e}") from e
        logger.info("Connected to Redis")

        if self.alert_manager is None:
            self.alert_manager = AlertManager(
                dedup_window=MonitoringConfig.get_alert_dedup_window(),
                max_alerts_per_hour=MonitoringConfig.get_max_alerts_per_hour(),
            )
        if self.metrics is None:
            self.metrics = DeploymentMetrics(
                failure_threshold=MonitoringConfig.get_failure_alert_threshold(),
                failure_window=MonitoringConfig.get_failure_alert_window(),
                queue_ceilings=MonitoringConfig.get_queue_ceilings(),
                alert_sink=self.alert_manager,
            )
        if self.chain is None:
            self.chain = ChainClient.from_config()

        network = self.chain.get_network_info()
        logger.info(
            f"Deployer {network.deployer_address} on {network.network} (chain {network.chain_id}, "
            f"block {network.block_number}), balance {network.deployer_balance} wei",
        )

        self.consumer = RedisQueueConsumer(
            self.redis,
            inbound_queue=QueueConfig.get_inbound_queue(),
            processing_queue=QueueConfig.get_processing_queue(),
            dead_letter_queue=QueueConfig.get_dead_letter_queue(),
            outbound_queue=QueueConfig.get_outbound_queue(),
            max_retries=QueueConfig.get_max_retries(),
            blocking_timeout=QueueConfig.get_blocking_timeout(),
            error_backoff=QueueConfig.get_error_backoff(),
            metrics=self.metrics,
        )
        self.consumer.recover_processing()
        self.publisher = EventPublisher(self.redis, QueueConfig.get_outbound_queue())

        abi, bytecode = load_token_artifact(BlockchainConfig.get_token_artifact_path())
        self.orchestrator = DeploymentOrchestrator(
            self.chain,
            self.publisher,
            self.metrics,
            token_bytecode=bytecode,
            token_abi=abi,
            publish_max_attempts=QueueConfig.get_publish_max_attempts(),
            publish_backoff=QueueConfig.get_publish_backoff(),
        )
        self.health = HealthMonitor(
            self.chain,
            self.consumer,
            self.metrics,
            publisher=self.publisher,
            alert_manager=self.alert_manager,
            low_balance_threshold=BlockchainConfig.get_low_balance_threshold(),
        )
        if not self.health.is_ready():
            logger.warning("Required contracts not found on chain, deployments will fail until they are")

    def start(self):
        if self.consumer is None:
            raise RuntimeError("initialize() must be called before start()")
        if self._worker is not None and self._worker.is_alive():
            logger.warning("Listener already running")
            return
        self._worker = threading.Thread(
            target=self.consumer.run,
            args=(self.orchestrator.handle,),
            name="deploy-listener",
            daemon=True,
        )
        self._worker.start()
        logger.info("Contract deploy listener started")

    def stop(self, timeout: float = None) -> bool:
        """Stop after the in-flight message finishes. A running chain call is never interrupted.

        Returns False if a message is still in flight after timeout. The broker connection
        stays open for it then, and if the process exits first the message remains in the
        processing list until the next initialize() recovers it.
        """
        if self.consumer is not None:
            self.consumer.stop()
        if self._worker is not None:
            self._worker.join(timeout)
        if self.is_running() or (self.consumer is not None and self.consumer.in_flight > 0):
            logger.warning("Listener worker still processing a message, leaving the broker connection open")
            return False
        if self.redis is not None:
            self.redis.close()
        logger.info("Contract deploy listener stopped")
        return True

    def is_running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def get_health(self) -> dict:
        consumer = self.consumer.check_health() if self.consumer else {"healthy": False}
        publisher = self.publisher.check_health() if self.publisher else {"healthy": False}
        blockchain = self.chain.registry.check_health() if self.chain else False
        return {
            "healthy": consumer["healthy"] and publisher["healthy"] and blockchain and self.is_running(),
            "running": self.is_running(),
            "consumer": consumer,
            "publisher": publisher,
            "blockchain": blockchain,
            "metrics": self.metrics.snapshot() if self.metrics else {},
        }
