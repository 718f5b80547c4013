# SPDX-FileCopyrightText: 2026 AI Power Grid
#
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
Reliable Redis queue consumer.

Messages move atomically from the inbound list to a processing list (BRPOPLPUSH) so a
crash mid-deployment never loses one. Producers LPUSH onto the inbound list and the
consumer pops from the right, so the right end is the head of the queue.

Lifecycle of a message, owned exclusively by this class:
    pending -> processing -> completed | requeued | dead-lettered
"""

import enum
import json
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, List, Optional

import redis

from contract_deployer.errors import InvalidMessageError
from contract_deployer.logger import logger
from contract_deployer.schemas import DeadLetterEntry, ModelReadyMessage, parse_model_ready_message

RETRY_COUNT_FIELD = "_retryCount"

MessageHandler = Callable[[ModelReadyMessage], None]


class ProcessStatus(enum.Enum):
    IDLE = "idle"
    COMPLETED = "completed"
    REQUEUED = "requeued"
    DEAD_LETTERED = "dead_lettered"


@dataclass(frozen=True)
class ProcessOutcome:
    """Result of one process_one call. Handler errors are returned here, never raised."""

    status: ProcessStatus
    model_id: Optional[str] = None
    retry_count: int = 0
    error: Optional[BaseException] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class QueueDepths:
    inbound: int
    processing: int
    dead_letter: int
    outbound: int

    def as_dict(self) -> dict:
        return {
            "inbound": self.inbound,
            "processing": self.processing,
            "dead_letter": self.dead_letter,
            "outbound": self.outbound,
        }


class RedisQueueConsumer:
    def __init__(
        self,
        redis_client: redis.Redis,
        inbound_queue: str,
        processing_queue: str,
        dead_letter_queue: str,
        outbound_queue: str,
        max_retries: int = 3,
        blocking_timeout: int = 5,
        error_backoff: float = 1.0,
        metrics=None,
    ):
        self.redis = redis_client
        self.inbound_queue = inbound_queue
        self.processing_queue = processing_queue
        self.dead_letter_queue = dead_letter_queue
        self.outbound_queue = outbound_queue
        self.max_retries = max_retries
        self.blocking_timeout = blocking_timeout
        self.error_backoff = error_backoff
        self.metrics = metrics
        self._stop_event = threading.Event()
        self._running = threading.Event()
        self._in_flight = 0
        self._in_flight_changed = threading.Condition()

    # ------------------------------------------------------------------
    # Single message
    # ------------------------------------------------------------------

    def process_one(self, handler: MessageHandler) -> ProcessOutcome:
        raw = self.redis.brpoplpush(self.inbound_queue, self.processing_queue, self.blocking_timeout)
        if raw is None:
            return ProcessOutcome(ProcessStatus.IDLE)

        try:
            message = parse_model_ready_message(raw)
        except InvalidMessageError as err:
            # Retrying cannot make a malformed payload valid
            logger.error(f"Rejecting inbound message: {err.reason}")
            self._dead_letter(raw, err.reason)
            return ProcessOutcome(ProcessStatus.DEAD_LETTERED, reason=err.reason, error=err)

        with self._track_in_flight():
            try:
                handler(message)
            except Exception as err:
                return self._handle_failure(raw, message, err)
            self.redis.lrem(self.processing_queue, 1, raw)

        logger.info(f"Message processed successfully (model {message.model_id})")
        if self.metrics is not None:
            self.metrics.record_processed()
        return ProcessOutcome(ProcessStatus.COMPLETED, model_id=message.model_id, retry_count=message.retry_count)

    def _handle_failure(self, raw: str, message: ModelReadyMessage, err: Exception) -> ProcessOutcome:
        retry_count = message.retry_count
        logger.error(f"Message processing failed for model {message.model_id} (retry {retry_count}): {err}")

        if retry_count < self.max_retries:
            payload = json.loads(raw)
            payload[RETRY_COUNT_FIELD] = retry_count + 1
            pipe = self.redis.pipeline(transaction=True)
            pipe.rpush(self.inbound_queue, json.dumps(payload))
            pipe.lrem(self.processing_queue, 1, raw)
            pipe.execute()
            logger.info(f"Message requeued for retry (model {message.model_id}, retry {retry_count + 1}/{self.max_retries})")
            if self.metrics is not None:
                self.metrics.record_requeue()
            return ProcessOutcome(
                ProcessStatus.REQUEUED,
                model_id=message.model_id,
                retry_count=retry_count + 1,
                error=err,
                reason=str(err),
            )

        self._dead_letter(raw, str(err))
        return ProcessOutcome(
            ProcessStatus.DEAD_LETTERED,
            model_id=message.model_id,
            retry_count=retry_count,
            error=err,
            reason=str(err),
        )

    def _dead_letter(self, raw: str, reason: str):
        entry = DeadLetterEntry.wrap(raw, reason, self.inbound_queue)
        pipe = self.redis.pipeline(transaction=True)
        pipe.lpush(self.dead_letter_queue, entry.to_json())
        pipe.lrem(self.processing_queue, 1, raw)
        pipe.execute()
        model_id = entry.original_message.get("model_id") if isinstance(entry.original_message, dict) else None
        logger.error(f"Message moved to DLQ {self.dead_letter_queue} (model {model_id}): {reason}")
        if self.metrics is not None:
            self.metrics.record_dead_letter(reason)

    @contextmanager
    def _track_in_flight(self):
        with self._in_flight_changed:
            self._in_flight += 1
        try:
            yield
        finally:
            with self._in_flight_changed:
                self._in_flight -= 1
                self._in_flight_changed.notify_all()

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def run(self, handler: MessageHandler):
        """Process messages one at a time until stop() is called."""
        self._stop_event.clear()
        self._running.set()
        logger.info(f"Queue consumer started on {self.inbound_queue}")
        try:
            while not self._stop_event.is_set():
                try:
                    outcome = self.process_one(handler)
                except Exception as e:
                    logger.exception(f"Queue consumer iteration failed: {e}")
                    self._stop_event.wait(self.error_backoff)
                    continue
                if outcome.status is ProcessStatus.DEAD_LETTERED:
                    logger.warning(f"Dead-lettered message for model {outcome.model_id}: {outcome.reason}")
        finally:
            self.drain()
            self._running.clear()
            logger.info("Queue consumer stopped")

    def recover_processing(self) -> int:
        """Return entries a previous run left in the processing list to the head of the inbound queue.

        Call before run(). A message found here was cut off mid-handler by a crash or kill,
        and the handler's existence check makes replaying it safe.
        """
        recovered = 0
        # Newest entries sit on the left, so moving left to right leaves the oldest at the head
        while self.redis.lmove(self.processing_queue, self.inbound_queue, "LEFT", "RIGHT") is not None:
            recovered += 1
        if recovered:
            logger.warning(f"Recovered {recovered} unfinished message(s) from {self.processing_queue}")
        return recovered

    def stop(self):
        """Ask the loop to exit after the current iteration."""
        self._stop_event.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def drain(self, timeout: float = None) -> bool:
        """Wait for the in-flight handler to finish. Returns False on timeout."""
        with self._in_flight_changed:
            drained = self._in_flight_changed.wait_for(lambda: self._in_flight == 0, timeout=timeout)
        if not drained:
            logger.warning(f"Consumer drain timed out with {self._in_flight} message(s) in flight")
        return drained

    @property
    def in_flight(self) -> int:
        return self._in_flight

    def is_running(self) -> bool:
        return self._running.is_set()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_queue_depths(self) -> QueueDepths:
        pipe = self.redis.pipeline(transaction=False)
        pipe.llen(self.inbound_queue)
        pipe.llen(self.processing_queue)
        pipe.llen(self.dead_letter_queue)
        pipe.llen(self.outbound_queue)
        inbound, processing, dead_letter, outbound = pipe.execute()
        return QueueDepths(inbound=inbound, processing=processing, dead_letter=dead_letter, outbound=outbound)

    def check_health(self) -> dict:
        try:
            self.redis.ping()
            queues = self.get_queue_depths()
        except Exception as e:
            return {"healthy": False, "redis": "disconnected", "error": str(e)}
        return {"healthy": True, "redis": "connected", "queues": queues.as_dict()}

    # ------------------------------------------------------------------
    # Dead letters
    # ------------------------------------------------------------------

    def list_dead_letters(self, limit: int = 20) -> List[DeadLetterEntry]:
        """Newest first."""
        if limit <= 0:
            return []
        entries = []
        for raw in self.redis.lrange(self.dead_letter_queue, 0, limit - 1):
            try:
                entries.append(DeadLetterEntry.model_validate_json(raw))
            except ValueError as e:
                logger.warning(f"Skipping unreadable DLQ entry: {e}")
        return entries

    def requeue_dead_letters(self, limit: int = 10) -> int:
        """Move the oldest dead letters back to the inbound queue with a fresh retry count."""
        if limit <= 0:
            return 0
        requeued = 0
        for raw in reversed(self.redis.lrange(self.dead_letter_queue, -limit, -1)):
            try:
                entry = DeadLetterEntry.model_validate_json(raw)
            except ValueError as e:
                logger.warning(f"Leaving unreadable DLQ entry in place: {e}")
                continue
            original = entry.original_message
            if not isinstance(original, dict):
                logger.warning("Leaving DLQ entry with non-object payload in place")
                continue
            original = dict(original)
            original[RETRY_COUNT_FIELD] = 0
            pipe = self.redis.pipeline(transaction=True)
            pipe.lpush(self.inbound_queue, json.dumps(original))
            pipe.lrem(self.dead_letter_queue, -1, raw)
            pipe.execute()
            requeued += 1
            logger.info(f"Requeued dead letter for model {original.get('model_id')}")
        return requeued
