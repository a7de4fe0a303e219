"""
Factory for creating observer instances based on observer type.

## How it works

Observers register themselves using the `@register_observer(ObserverType.X)`
decorator. The factory looks up the class by type and creates an instance
bound to the configuration. Adding a type never touches this module.
"""
import logging
from typing import Dict, List, Type

from stackgo.core.exceptions import UnsupportedObserverTypeError
from stackgo.models.observer import MaintenanceObserverConfig, ObserverType
from stackgo.services.observers.base import MaintenanceObserver

logger = logging.getLogger(__name__)

# Registry of observer classes, keyed by lower-cased type value
_observer_registry: Dict[str, Type[MaintenanceObserver]] = {}


def register_observer(observer_type: ObserverType):
    """
    Decorator to register an observer class.

    Usage:
        @register_observer(ObserverType.HTTP)
        class HttpObserver(MaintenanceObserver):
            ...
    """
    def decorator(cls: Type[MaintenanceObserver]):
        cls.observer_type = observer_type
        _observer_registry[observer_type.value.lower()] = cls
        logger.info(f"Registered observer '{cls.__name__}' for type '{observer_type}'")
        return cls
    return decorator


class ObserverFactory:
    """Factory for creating observer instances."""

    @staticmethod
    def create(config: MaintenanceObserverConfig) -> MaintenanceObserver:
        """
        Create the observer for a configuration.

        Raises:
            UnsupportedObserverTypeError: If no observer is registered for the type
        """
        observer_class = _observer_registry.get(config.type.value.lower())
        if observer_class is None:
            raise UnsupportedObserverTypeError(config.type.value)
        logger.debug(f"Creating observer: {observer_class.__name__} for type={config.type}")
        return observer_class(config)

    @staticmethod
    def is_supported(observer_type: ObserverType) -> bool:
        return observer_type.value.lower() in _observer_registry

    @staticmethod
    def supported_types() -> List[ObserverType]:
        return [t for t in ObserverType.all() if ObserverFactory.is_supported(t)]
