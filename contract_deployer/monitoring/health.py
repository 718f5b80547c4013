# SPDX-FileCopyrightText: 2026 AI Power Grid
#
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
Liveness, readiness and detailed health for the deployer.

Liveness only says the process answers. Readiness says it can deploy right now: both
contracts it depends on have bytecode on the connected chain. Detailed health grades
each dependency healthy, degraded or unhealthy.
"""

import time
from datetime import datetime, timezone

from web3 import Web3

from contract_deployer import __version__
from contract_deployer.logger import logger

HEALTHY = "healthy"
DEGRADED = "degraded"
UNHEALTHY = "unhealthy"

SERVICE_NAME = "contract-deployer"


class HealthMonitor:
    def __init__(self, chain, consumer, metrics, publisher=None, alert_manager=None, low_balance_threshold: float = 0.1):
        self.chain = chain
        self.consumer = consumer
        self.metrics = metrics
        self.publisher = publisher
        self.alert_manager = alert_manager
        self.low_balance_threshold = low_balance_threshold

    def is_alive(self) -> bool:
        return True

    def is_ready(self) -> bool:
        try:
            registry_ok = self.chain.has_code(self.chain.registry_address)
            manager_ok = self.chain.has_code(self.chain.token_manager_address)
        except Exception as e:
            logger.warning(f"Readiness check failed: {e}")
            return False
        if not registry_ok:
            logger.warning(f"No contract code at registry {self.chain.registry_address}")
        if not manager_ok:
            logger.warning(f"No contract code at token manager {self.chain.token_manager_address}")
        return registry_ok and manager_ok

    def basic_health(self) -> dict:
        return {
            "status": HEALTHY,
            "service": SERVICE_NAME,
            "version": __version__,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": round(self.metrics.uptime, 1),
        }

    def detailed_health(self) -> dict:
        checks = {
            "redis": self._check_redis(),
            "blockchain": self._check_blockchain(),
            "contracts": self._check_contracts(),
        }
        statuses = [check["status"] for check in checks.values()]
        if UNHEALTHY in statuses:
            overall = UNHEALTHY
        elif DEGRADED in statuses:
            overall = DEGRADED
        else:
            overall = HEALTHY

        report = self.basic_health()
        report["status"] = overall
        report["checks"] = checks
        report["metrics"] = self.metrics.snapshot()
        if self.publisher is not None:
            report["publisher"] = self.publisher.get_metrics()
        if self.alert_manager is not None:
            report["alerts"] = self.alert_manager.get_stats()
        return report

    def _check_redis(self) -> dict:
        started = time.monotonic()
        result = self.consumer.check_health()
        latency_ms = round((time.monotonic() - started) * 1000, 1)
        if not result["healthy"]:
            return {"status": UNHEALTHY, "latency_ms": latency_ms, "error": result.get("error")}
        queues = result["queues"]
        for name, depth in queues.items():
            self.metrics.record_queue_depth(name, depth)
        ceilings = self.metrics.queue_ceilings
        over = [name for name, depth in queues.items() if depth > ceilings.get(name, depth)]
        check = {"status": DEGRADED if over else HEALTHY, "latency_ms": latency_ms, "queues": queues}
        if over:
            check["warning"] = f"Queue depth above threshold: {', '.join(over)}"
        return check

    def _check_blockchain(self) -> dict:
        started = time.monotonic()
        try:
            info = self.chain.get_network_info()
        except Exception as e:
            return {"status": UNHEALTHY, "error": str(e), "rpc_url": self.chain.rpc_url}
        latency_ms = round((time.monotonic() - started) * 1000, 1)
        balance_eth = float(Web3.from_wei(info.deployer_balance, "ether"))
        check = {
            "status": HEALTHY,
            "latency_ms": latency_ms,
            "rpc_url": self.chain.rpc_url,
            "network": info.network,
            "chain_id": info.chain_id,
            "block_number": info.block_number,
            "deployer_address": info.deployer_address,
            "balance_eth": balance_eth,
        }
        if balance_eth < self.low_balance_threshold:
            check["status"] = DEGRADED
            check["warning"] = f"Low balance: {balance_eth:.4f} ETH"
            self.metrics.record_low_balance(balance_eth, self.low_balance_threshold)
        return check

    def _check_contracts(self) -> dict:
        try:
            registry_ok = self.chain.has_code(self.chain.registry_address)
            manager_ok = self.chain.has_code(self.chain.token_manager_address)
        except Exception as e:
            return {"status": UNHEALTHY, "error": str(e)}
        return {
            "status": HEALTHY if registry_ok and manager_ok else UNHEALTHY,
            "model_registry": {"address": Web3.to_checksum_address(self.chain.registry_address), "deployed": registry_ok},
            "token_manager": {"address": Web3.to_checksum_address(self.chain.token_manager_address), "deployed": manager_ok},
        }
