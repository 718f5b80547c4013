# SPDX-FileCopyrightText: 2026 AI Power Grid
#
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
Queue, monitoring and service level configuration.

Values come from the environment (populated from .env by load_dotenv at startup).
"""

import os
from typing import List

from contract_deployer.blockchain.config import BlockchainConfig
from contract_deployer.errors import ConfigurationError


class QueueConfig:
    """Redis connection and queue names."""

    INBOUND_QUEUE = "hokusai:model_ready_queue"
    PROCESSING_QUEUE = "hokusai:processing_queue"
    DEAD_LETTER_QUEUE = "hokusai:dlq"
    OUTBOUND_QUEUE = "hokusai:token_deployed_queue"

    @classmethod
    def get_redis_url(cls) -> str:
        url = os.getenv("REDIS_URL")
        if url:
            return url
        host = os.getenv("REDIS_HOST", "localhost")
        port = os.getenv("REDIS_PORT", "6379")
        db = os.getenv("REDIS_DB", "0")
        password = os.getenv("REDIS_PASSWORD", "")
        auth = f":{password}@" if password else ""
        return f"redis://{auth}{host}:{port}/{db}"

    @classmethod
    def get_inbound_queue(cls) -> str:
        return os.getenv("INBOUND_QUEUE", cls.INBOUND_QUEUE)

    @classmethod
    def get_processing_queue(cls) -> str:
        return os.getenv("PROCESSING_QUEUE", cls.PROCESSING_QUEUE)

    @classmethod
    def get_dead_letter_queue(cls) -> str:
        return os.getenv("DLQ_NAME", cls.DEAD_LETTER_QUEUE)

    @classmethod
    def get_outbound_queue(cls) -> str:
        return os.getenv("OUTBOUND_QUEUE", cls.OUTBOUND_QUEUE)

    @classmethod
    def get_max_retries(cls) -> int:
        return int(os.getenv("MAX_RETRIES", "3"))

    @classmethod
    def get_blocking_timeout(cls) -> int:
        """Seconds a BRPOPLPUSH waits before the loop re-checks the stop signal."""
        return int(os.getenv("BLOCKING_TIMEOUT_SECONDS", "5"))

    @classmethod
    def get_error_backoff(cls) -> float:
        return float(os.getenv("QUEUE_ERROR_BACKOFF_SECONDS", "1"))

    @classmethod
    def get_publish_max_attempts(cls) -> int:
        return int(os.getenv("PUBLISH_MAX_ATTEMPTS", "3"))

    @classmethod
    def get_publish_backoff(cls) -> float:
        return float(os.getenv("PUBLISH_BACKOFF_SECONDS", "1.0"))

    @classmethod
    def get_connect_timeout(cls) -> float:
        return float(os.getenv("REDIS_CONNECT_TIMEOUT_SECONDS", "5"))


class MonitoringConfig:
    """Health server and alert thresholds."""

    @classmethod
    def get_port(cls) -> int:
        return int(os.getenv("PORT", "8002"))

    @classmethod
    def get_health_check_interval(cls) -> int:
        return int(os.getenv("HEALTH_CHECK_INTERVAL_SECONDS", "30"))

    @classmethod
    def get_queue_ceilings(cls) -> dict:
        return {
            "inbound": int(os.getenv("INBOUND_QUEUE_CEILING", "100")),
            "processing": int(os.getenv("PROCESSING_QUEUE_CEILING", "50")),
            "dead_letter": int(os.getenv("DLQ_CEILING", "10")),
            "outbound": int(os.getenv("OUTBOUND_QUEUE_CEILING", "1000")),
        }

    @classmethod
    def get_failure_alert_threshold(cls) -> int:
        return int(os.getenv("FAILURE_ALERT_THRESHOLD", "5"))

    @classmethod
    def get_failure_alert_window(cls) -> float:
        return float(os.getenv("FAILURE_ALERT_WINDOW_SECONDS", "300"))

    @classmethod
    def get_alert_dedup_window(cls) -> float:
        return float(os.getenv("ALERT_DEDUP_WINDOW_SECONDS", "300"))

    @classmethod
    def get_max_alerts_per_hour(cls) -> int:
        return int(os.getenv("MAX_ALERTS_PER_HOUR", "20"))


class ServiceConfig:
    """Startup validation across every config section."""

    @classmethod
    def validate(cls) -> List[str]:
        problems = BlockchainConfig.validate()
        try:
            if QueueConfig.get_max_retries() < 0:
                problems.append("MAX_RETRIES must not be negative")
            if QueueConfig.get_blocking_timeout() < 1:
                problems.append("BLOCKING_TIMEOUT_SECONDS must be at least 1")
            if QueueConfig.get_publish_max_attempts() < 1:
                problems.append("PUBLISH_MAX_ATTEMPTS must be at least 1")
            port = MonitoringConfig.get_port()
            if not 0 < port < 65536:
                problems.append(f"PORT out of range: {port}")
        except ValueError as err:
            problems.append(f"Invalid numeric setting: {err}")
        return problems

    @classmethod
    def get_shutdown_timeout(cls) -> float:
        """How long shutdown waits for the in-flight message. Defaults to one message's worst-case chain time."""
        configured = os.getenv("SHUTDOWN_TIMEOUT_SECONDS")
        if configured:
            return float(configured)
        # Deploy, setContributor and registration; every attempt may wait out the receipt and then the confirmations
        per_transaction = 2 * BlockchainConfig.get_transaction_timeout() * BlockchainConfig.get_max_attempts()
        return 3 * per_transaction

    @classmethod
    def ensure_valid(cls):
        problems = cls.validate()
        if problems:
            raise ConfigurationError(problems)
