"""
Health monitoring services.
"""
from stackgo.services.health.health_service import (
    HealthMonitoringService,
    container_health_status,
    operation_mode_of,
)

__all__ = [
    "HealthMonitoringService",
    "container_health_status",
    "operation_mode_of",
]
