# SPDX-FileCopyrightText: 2026 AI Power Grid
#
# SPDX-License-Identifier: AGPL-3.0-or-later

import threading

from flask import Flask
from werkzeug.exceptions import HTTPException
from werkzeug.serving import make_server

from contract_deployer.logger import logger
from contract_deployer.monitoring.health import HEALTHY, UNHEALTHY, HealthMonitor


def create_app(health: HealthMonitor) -> Flask:
    app = Flask("contract_deployer")

    @app.route("/health/live")
    def live():
        return {"alive": health.is_alive()}, 200

    @app.route("/health/ready")
    def ready():
        is_ready = health.is_ready()
        return {"ready": is_ready}, 200 if is_ready else 503

    @app.route("/health")
    def basic():
        report = health.basic_health()
        report["status"] = health.detailed_health()["status"]
        return report, 503 if report["status"] == UNHEALTHY else 200

    @app.route("/health/detailed")
    def detailed():
        report = health.detailed_health()
        return report, 200 if report["status"] == HEALTHY else 503

    @app.route("/metrics")
    def metrics():
        return health.metrics.snapshot(), 200

    @app.errorhandler(Exception)
    def unhandled(err):
        if isinstance(err, HTTPException):
            return err
        logger.exception(f"Health endpoint failed: {err}")
        return {"status": UNHEALTHY, "error": str(err)}, 503

    return app


class HealthServer:
    """Serves the health app on a daemon thread."""

    def __init__(self, app: Flask, host: str = "0.0.0.0", port: int = 8002):
        self.host = host
        self.port = port
        self._server = make_server(host, port, app, threaded=True)
        self._thread = threading.Thread(target=self._server.serve_forever, name="health-server", daemon=True)

    def start(self):
        self._thread.start()
        logger.info(f"Health server listening on {self.host}:{self.port}")

    def stop(self):
        self._server.shutdown()
        self._thread.join(5)
