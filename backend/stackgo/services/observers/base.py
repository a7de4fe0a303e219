"""
Abstract base class for maintenance observers.

Defines the interface that all observers must implement.

## Adding a New Observer

1. Create a new module in `stackgo/services/observers/` (e.g., `redis.py`)
2. Register the type with `ObserverType.register(...)` if it is not built in
3. Implement `MaintenanceObserver.get_observed_value`
4. Use the `@register_observer(...)` decorator and import the module in `__init__.py`

Example:
```python
from stackgo.models.observer import ObserverType
from stackgo.services.observers.base import MaintenanceObserver
from stackgo.services.observers.factory import register_observer

REDIS_KEY = ObserverType.register("redisKey", requires_connection=True)

@register_observer(REDIS_KEY)
class RedisKeyObserver(MaintenanceObserver):
    async def get_observed_value(self) -> str:
        ...
```

`check()` is the uniform envelope: it logs, classifies the observed value, and
turns every check failure into `ObserverResult.failed`. Cancellation is the
only exception that escapes it.
"""
import asyncio
import logging
from abc import ABC, abstractmethod

from stackgo.models.observer import MaintenanceObserverConfig, ObserverResult, ObserverType

logger = logging.getLogger(__name__)


class MaintenanceObserver(ABC):
    """One probing strategy bound to one deployment's configuration."""

    observer_type: ObserverType

    def __init__(self, config: MaintenanceObserverConfig):
        self.config = config

    @property
    def type(self) -> ObserverType:
        return self.config.type

    async def check(self) -> ObserverResult:
        """
        Read the external signal once.

        Returns:
            ObserverResult; never raises for check failures

        Raises:
            asyncio.CancelledError: If the check is cancelled
        """
        try:
            logger.debug(f"Performing maintenance check for {self.type}")
            observed_value = await self.get_observed_value()
            result = self.determine_result(observed_value)
            logger.debug(
                f"Maintenance check completed: {result} "
                f"(maintenance value: {self.config.maintenance_value})"
            )
            return result
        except asyncio.CancelledError:
            logger.debug("Maintenance check was cancelled")
            raise
        except Exception as e:
            logger.warning(f"Maintenance check failed for {self.type}: {e}")
            return ObserverResult.failed(str(e) or type(e).__name__)

    @abstractmethod
    async def get_observed_value(self) -> str:
        """
        Read the current value of the external signal.

        Raise on any error; the envelope converts it into a failed result.
        """
        pass

    def determine_result(self, observed_value: str) -> ObserverResult:
        """Classify a trimmed observed value against the configured values, ignoring case."""
        observed = (observed_value or "").strip()

        if observed.lower() == self.config.maintenance_value.strip().lower():
            return ObserverResult.maintenance_required(observed)

        if self.config.normal_value:
            if observed.lower() == self.config.normal_value.strip().lower():
                return ObserverResult.normal_operation(observed)
            logger.warning(
                f"Observed value '{observed}' matches neither maintenance value "
                f"'{self.config.maintenance_value}' nor normal value '{self.config.normal_value}'"
            )
            return ObserverResult.failed(f"Unexpected value: {observed}")

        return ObserverResult.normal_operation(observed)
