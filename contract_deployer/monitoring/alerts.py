# SPDX-FileCopyrightText: 2026 AI Power Grid
#
# SPDX-License-Identifier: AGPL-3.0-or-later

import threading
import time
from collections import deque
from typing import Callable, Deque, Dict

from contract_deployer.logger import logger
from contract_deployer.monitoring.metrics import Alert


class AlertManager:
    """Deduplicates and rate limits alerts before handing them to a notifier."""

    def __init__(
        self,
        notifier: Callable[[Alert], None] = None,
        dedup_window: float = 300.0,
        max_alerts_per_hour: int = 20,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        if notifier is None:
            from contract_deployer.discord import notify_alert

            notifier = notify_alert
        self.notifier = notifier
        self.dedup_window = dedup_window
        self.max_alerts_per_hour = max_alerts_per_hour
        self.enabled = enabled
        self._clock = clock
        self._lock = threading.Lock()
        self._last_sent: Dict[str, float] = {}
        self._sent_times: Deque[float] = deque()
        self.sent = 0
        self.suppressed = 0
        self.rate_limited = 0

    def dispatch(self, alert: Alert) -> bool:
        """Returns True if the alert was handed to the notifier."""
        if not self.enabled:
            return False
        now = self._clock()
        with self._lock:
            last = self._last_sent.get(alert.key)
            if last is not None and now - last < self.dedup_window:
                self.suppressed += 1
                logger.debug(f"Suppressed duplicate alert {alert.key}")
                return False
            while self._sent_times and now - self._sent_times[0] > 3600:
                self._sent_times.popleft()
            if len(self._sent_times) >= self.max_alerts_per_hour:
                self.rate_limited += 1
                logger.warning(f"Alert rate limit reached, dropping {alert.type}")
                return False
            self._last_sent[alert.key] = now
            self._sent_times.append(now)
            self.sent += 1

        try:
            self.notifier(alert)
        except Exception as e:
            logger.warning(f"Failed to deliver alert {alert.type}: {e}")
            return False
        return True

    def get_stats(self) -> dict:
        with self._lock:
            return {
                "enabled": self.enabled,
                "sent": self.sent,
                "suppressed": self.suppressed,
                "rate_limited": self.rate_limited,
                "sent_last_hour": len(self._sent_times),
            }
