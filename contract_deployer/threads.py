# SPDX-FileCopyrightText: 2026 AI Power Grid
#
# SPDX-License-Identifier: AGPL-3.0-or-later

import threading

from contract_deployer.logger import logger


class PrimaryTimedFunction:
    """Runs call_function every interval seconds on a daemon thread until stopped."""

    def __init__(self, interval, args=None, kwargs=None, name=None):
        self.interval = interval
        self.args = args or []
        self.kwargs = kwargs or {}
        self._stop_event = threading.Event()
        self.thread = threading.Thread(target=self._run, daemon=True, name=name or type(self).__name__)

    def start(self):
        self.thread.start()

    def stop(self, timeout=None):
        self._stop_event.set()
        if self.thread.is_alive():
            self.thread.join(timeout)

    def _run(self):
        while not self._stop_event.is_set():
            try:
                self.call_function(*self.args, **self.kwargs)
            except Exception as e:
                logger.exception(f"{type(self).__name__} iteration failed: {e}")
            self._stop_event.wait(self.interval)

    def call_function(self, *args, **kwargs):
        raise NotImplementedError


class QueueDepthSampler(PrimaryTimedFunction):
    """Feeds queue depths into the metrics so depth alerts fire without anyone polling /health."""

    def call_function(self, consumer, metrics):
        depths = consumer.get_queue_depths()
        for queue, depth in depths.as_dict().items():
            metrics.record_queue_depth(queue, depth)
