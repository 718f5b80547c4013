# SPDX-FileCopyrightText: 2026 AI Power Grid
#
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
Process-wide deployment metrics.

One DeploymentMetrics object is created at startup and handed to every component that
reports into it. It is never reset while the process lives.
"""

import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Deque, Dict, Optional

from contract_deployer.logger import logger


@dataclass(frozen=True)
class Alert:
    type: str
    severity: str
    message: str
    details: Dict[str, object] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def key(self) -> str:
        """Identity used for deduplication."""
        return f"{self.type}:{self.details.get('queue', '')}"


class DeploymentMetrics:
    def __init__(
        self,
        failure_threshold: int = 5,
        failure_window: float = 300.0,
        queue_ceilings: Dict[str, int] = None,
        alert_sink=None,
        history_size: int = 100,
        clock: Callable[[], float] = time.time,
    ):
        self.failure_threshold = failure_threshold
        self.failure_window = failure_window
        self.queue_ceilings = dict(queue_ceilings or {})
        self.alert_sink = alert_sink
        self._clock = clock
        self._lock = threading.Lock()
        self._started = clock()

        self.messages_processed = 0
        self.messages_failed = 0
        self.messages_requeued = 0
        self.messages_dead_lettered = 0
        self.tokens_deployed = 0
        self.deployments_skipped = 0
        self.total_gas_used = 0
        self._total_deployment_time = 0.0
        self.last_deployment_time: Optional[datetime] = None
        self.failure_reasons: Dict[str, int] = defaultdict(int)
        self.failures_by_stage: Dict[str, int] = defaultdict(int)
        # Failures since the last successful deployment, oldest first
        self._recent_failures: Deque[float] = deque()
        self._history_size = history_size
        self.queue_depths: Dict[str, Deque[int]] = {}

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record_processed(self):
        with self._lock:
            self.messages_processed += 1

    def record_deployment(self, model_id: str, token_address: str, deployment_time: float, gas_used: int):
        with self._lock:
            self.tokens_deployed += 1
            self.total_gas_used += int(gas_used)
            self._total_deployment_time += deployment_time
            self.last_deployment_time = datetime.now(timezone.utc)
            self._recent_failures.clear()
        logger.debug(f"Recorded deployment of {model_id} at {token_address} in {deployment_time:.1f}s")

    def record_skipped(self, model_id: str):
        with self._lock:
            self.deployments_skipped += 1

    def record_requeue(self):
        with self._lock:
            self.messages_requeued += 1

    def record_dead_letter(self, reason: str):
        with self._lock:
            self.messages_dead_lettered += 1
            self.failure_reasons[f"dead_letter: {_short(reason)}"] += 1

    def record_failure(self, model_id: str, stage: str, error: str) -> Optional[Alert]:
        now = self._clock()
        with self._lock:
            self.messages_failed += 1
            self.failure_reasons[_short(error)] += 1
            self.failures_by_stage[stage] += 1
            self._recent_failures.append(now)
            while self._recent_failures and now - self._recent_failures[0] > self.failure_window:
                self._recent_failures.popleft()
            recent = len(self._recent_failures)

        if recent < self.failure_threshold:
            return None
        return self._raise(
            Alert(
                type="high_failure_rate",
                severity="critical",
                message=f"{recent} consecutive deployment failures within {self.failure_window:.0f}s",
                details={"failures": recent, "window_seconds": self.failure_window, "last_model_id": model_id, "stage": stage},
            ),
        )

    def record_queue_depth(self, queue: str, depth: int) -> Optional[Alert]:
        with self._lock:
            samples = self.queue_depths.setdefault(queue, deque(maxlen=self._history_size))
            samples.append(depth)

        ceiling = self.queue_ceilings.get(queue)
        if ceiling is None or depth <= ceiling:
            return None
        return self._raise(
            Alert(
                type="queue_depth_high",
                severity="warning",
                message=f"Queue {queue} depth {depth} exceeds {ceiling}",
                details={"queue": queue, "depth": depth, "threshold": ceiling},
            ),
        )

    def record_low_balance(self, balance_eth: float, threshold_eth: float) -> Alert:
        return self._raise(
            Alert(
                type="low_balance",
                severity="warning",
                message=f"Deployer balance {balance_eth:.4f} ETH is below {threshold_eth} ETH",
                details={"balance_eth": balance_eth, "threshold_eth": threshold_eth},
            ),
        )

    def _raise(self, alert: Alert) -> Alert:
        logger.warning(f"ALERT {alert.type}: {alert.message}")
        if self.alert_sink is not None:
            self.alert_sink.dispatch(alert)
        return alert

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    @property
    def uptime(self) -> float:
        return self._clock() - self._started

    @property
    def average_deployment_time(self) -> float:
        with self._lock:
            return self._total_deployment_time / self.tokens_deployed if self.tokens_deployed else 0.0

    def latest_queue_depths(self) -> Dict[str, int]:
        with self._lock:
            return {queue: samples[-1] for queue, samples in self.queue_depths.items() if samples}

    def snapshot(self) -> dict:
        average = self.average_deployment_time
        latest_depths = self.latest_queue_depths()
        with self._lock:
            return {
                "messages_processed": self.messages_processed,
                "messages_failed": self.messages_failed,
                "messages_requeued": self.messages_requeued,
                "messages_dead_lettered": self.messages_dead_lettered,
                "tokens_deployed": self.tokens_deployed,
                "deployments_skipped": self.deployments_skipped,
                "average_deployment_time": round(average, 3),
                "last_deployment_time": self.last_deployment_time.isoformat() if self.last_deployment_time else "never",
                "total_gas_used": str(self.total_gas_used),
                "failure_reasons": dict(self.failure_reasons),
                "failures_by_stage": dict(self.failures_by_stage),
                "recent_consecutive_failures": len(self._recent_failures),
                "queue_depths": latest_depths,
            }


def _short(text: str, limit: int = 200) -> str:
    text = str(text)
    return text if len(text) <= limit else text[: limit - 3] + "..."
