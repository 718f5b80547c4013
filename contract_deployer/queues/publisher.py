# SPDX-FileCopyrightText: 2026 AI Power Grid
#
# SPDX-License-Identifier: AGPL-3.0-or-later

import json
import threading
import time
from datetime import datetime, timezone
from typing import List

import redis
from pydantic import ValidationError

from contract_deployer.errors import PublishError
from contract_deployer.logger import logger
from contract_deployer.schemas import TokenDeployedEvent


class EventPublisher:
    """Pushes token_deployed events onto the outbound queue."""

    def __init__(self, redis_client: redis.Redis, outbound_queue: str, source: str = "contract-deployer"):
        self.redis = redis_client
        self.outbound_queue = outbound_queue
        self.source = source
        self._lock = threading.Lock()
        self._published = 0
        self._failed = 0
        self._total_publish_time = 0.0
        self._last_publish_time = None

    def publish(self, event: TokenDeployedEvent, correlation_id: str = None):
        started = time.monotonic()
        try:
            # Re-validate, events built with model_construct skip the schema
            TokenDeployedEvent.model_validate(event.model_dump(by_alias=True))
            if correlation_id is not None:
                event = event.with_metadata(correlation_id=correlation_id, source=self.source)
            self.redis.lpush(self.outbound_queue, event.to_json())
        except (redis.RedisError, ValidationError) as err:
            with self._lock:
                self._failed += 1
            logger.error(f"Failed to publish event for model {event.model_id}: {err}")
            raise

        elapsed = time.monotonic() - started
        with self._lock:
            self._published += 1
            self._total_publish_time += elapsed
            self._last_publish_time = datetime.now(timezone.utc)
        logger.info(f"Event published for model {event.model_id} ({event.token_address}) on {self.outbound_queue}")

    def publish_with_retry(self, event: TokenDeployedEvent, max_attempts: int = 3, backoff: float = 1.0, correlation_id: str = None):
        """Publish with a fixed backoff between attempts. Raises PublishError once attempts run out."""
        last_error = None
        for attempt in range(1, max_attempts + 1):
            try:
                self.publish(event, correlation_id=correlation_id)
                return
            except ValidationError as err:
                raise PublishError(f"Invalid token_deployed event for model {event.model_id}: {err}", attempts=attempt) from err
            except redis.RedisError as err:
                last_error = err
                logger.warning(f"Publish attempt {attempt}/{max_attempts} failed for model {event.model_id}: {err}")
                if attempt < max_attempts:
                    time.sleep(backoff)
        raise PublishError(
            f"Publishing token_deployed for model {event.model_id} failed after {max_attempts} attempts: {last_error}",
            attempts=max_attempts,
        ) from last_error

    def publish_batch(self, events: List[TokenDeployedEvent]):
        """All-or-nothing publish of several events in one transaction."""
        for event in events:
            TokenDeployedEvent.model_validate(event.model_dump(by_alias=True))
        pipe = self.redis.pipeline(transaction=True)
        for event in events:
            pipe.lpush(self.outbound_queue, event.to_json())
        pipe.execute()
        with self._lock:
            self._published += len(events)
            self._last_publish_time = datetime.now(timezone.utc)
        logger.info(f"Batch of {len(events)} events published on {self.outbound_queue}")

    def confirm_delivery(self, model_id: str) -> bool:
        """True while an event for model_id is still waiting on the outbound queue."""
        for raw in self.redis.lrange(self.outbound_queue, 0, -1):
            try:
                if json.loads(raw).get("model_id") == model_id:
                    return True
            except (ValueError, AttributeError):
                continue
        return False

    def get_queue_depth(self) -> int:
        return self.redis.llen(self.outbound_queue)

    def check_health(self) -> dict:
        try:
            self.redis.ping()
            depth = self.get_queue_depth()
        except Exception as e:
            return {"healthy": False, "queue_depth": 0, "redis": "disconnected", "error": str(e)}
        return {"healthy": True, "queue_depth": depth, "redis": "connected"}

    def get_metrics(self) -> dict:
        with self._lock:
            avg = self._total_publish_time / self._published if self._published else 0.0
            return {
                "published": self._published,
                "failed": self._failed,
                "avg_publish_time_ms": round(avg * 1000, 3),
                "last_publish_time": self._last_publish_time.isoformat() if self._last_publish_time else None,
            }
