from contract_deployer.monitoring.alerts import AlertManager
from contract_deployer.monitoring.health import HealthMonitor
from contract_deployer.monitoring.metrics import Alert, DeploymentMetrics

__all__ = ["Alert", "AlertManager", "DeploymentMetrics", "HealthMonitor"]
