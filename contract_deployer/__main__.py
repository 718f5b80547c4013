# SPDX-FileCopyrightText: 2026 AI Power Grid
#
# SPDX-License-Identifier: AGPL-3.0-or-later

import signal
import sys
import threading

from dotenv import load_dotenv

from contract_deployer import __version__
from contract_deployer.config import MonitoringConfig, ServiceConfig
from contract_deployer.errors import InfrastructureError
from contract_deployer.listener import ContractDeployListener
from contract_deployer.logger import configure_logging, logger
from contract_deployer.routes import HealthServer, create_app
from contract_deployer.threads import QueueDepthSampler


def main() -> int:
    load_dotenv()
    configure_logging()
    logger.info(f"Starting contract deployer v{__version__}")

    listener = ContractDeployListener()
    try:
        ServiceConfig.ensure_valid()
        listener.initialize()
    except InfrastructureError as e:
        logger.critical(f"Startup aborted: {e}")
        return 1

    server = HealthServer(create_app(listener.health), port=MonitoringConfig.get_port())
    sampler = QueueDepthSampler(
        MonitoringConfig.get_health_check_interval(),
        args=[listener.consumer, listener.metrics],
    )

    shutdown = threading.Event()

    def request_shutdown(signum, frame):
        logger.info(f"Received signal {signal.Signals(signum).name}, shutting down")
        shutdown.set()

    signal.signal(signal.SIGINT, request_shutdown)
    signal.signal(signal.SIGTERM, request_shutdown)

    server.start()
    sampler.start()
    listener.start()

    while not shutdown.is_set():
        if not listener.is_running():
            logger.critical("Listener worker exited unexpectedly")
            break
        shutdown.wait(1)

    sampler.stop(timeout=5)
    stopped = listener.stop(timeout=ServiceConfig.get_shutdown_timeout())
    server.stop()
    logger.info("Contract deployer stopped")
    return 0 if shutdown.is_set() and stopped else 1


if __name__ == "__main__":
    sys.exit(main())
