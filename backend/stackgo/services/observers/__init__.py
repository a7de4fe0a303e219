"""
Maintenance observer package.

Provides the observer envelope, the type-keyed factory, the built-in observers
and the service that runs them for every running deployment.

## Adding a New Observer

1. Create a new module: `stackgo/services/observers/<type>.py`
2. Implement `MaintenanceObserver.get_observed_value` (see base.py)
3. Register it with `@register_observer(...)`
4. Import it here to register
"""
# Import observers to trigger registration
# Add new observers here
from stackgo.services.observers.base import MaintenanceObserver
from stackgo.services.observers.config_builder import build_config, parse_timespan, resolve_variables
from stackgo.services.observers.factory import ObserverFactory, register_observer
from stackgo.services.observers.file import FileObserver
from stackgo.services.observers.http import HttpObserver, extract_json_value
from stackgo.services.observers.observer_service import (
    MaintenanceObserverService,
    maintenance_observer_service,
)
from stackgo.services.observers.sql import SqlExtendedPropertyObserver, SqlQueryObserver

__all__ = [
    # Base and factory
    "MaintenanceObserver",
    "ObserverFactory",
    "register_observer",
    # Configuration
    "build_config",
    "parse_timespan",
    "resolve_variables",
    # Service
    "MaintenanceObserverService",
    "maintenance_observer_service",
    # Observers
    "SqlExtendedPropertyObserver",
    "SqlQueryObserver",
    "HttpObserver",
    "FileObserver",
    "extract_json_value",
]
