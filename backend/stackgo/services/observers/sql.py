"""
SQL maintenance observers.

Both observers read the first scalar of a query through an SQLAlchemy async
engine created from the configured connection URL. Each check opens its own
unpooled engine and disposes it before returning, so no connection outlives
the event loop of the task that ran the check.
"""
import logging
from typing import Any, Dict, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from stackgo.models.observer import MaintenanceObserverConfig, ObserverType, SqlObserverSettings
from stackgo.services.observers.base import MaintenanceObserver
from stackgo.services.observers.factory import register_observer

logger = logging.getLogger(__name__)

# Database-level extended properties only exist on SQL Server
EXTENDED_PROPERTY_QUERY = (
    "SELECT CAST(value AS NVARCHAR(4000)) FROM sys.extended_properties "
    "WHERE class = 0 AND name = :name"
)


class SqlObserver(MaintenanceObserver):
    """Shared engine handling of the SQL observers."""

    def __init__(self, config: MaintenanceObserverConfig):
        super().__init__(config)
        if not isinstance(config.settings, SqlObserverSettings):
            raise ValueError("Invalid settings type for SQL observer")
        self.settings: SqlObserverSettings = config.settings

    def _create_engine(self) -> AsyncEngine:
        return create_async_engine(self.settings.connection_string, poolclass=NullPool)

    async def get_observed_value(self) -> str:
        engine = self._create_engine()
        try:
            return await self.read_value(engine)
        finally:
            await engine.dispose()

    async def read_value(self, engine: AsyncEngine) -> str:
        raise NotImplementedError

    @staticmethod
    async def _scalar(engine: AsyncEngine, statement: str, params: Optional[Dict[str, Any]] = None) -> str:
        async with engine.connect() as conn:
            result = await conn.execute(text(statement), params or {})
            value = result.scalar()
        return "" if value is None else str(value).strip()


@register_observer(ObserverType.SQL_EXTENDED_PROPERTY)
class SqlExtendedPropertyObserver(SqlObserver):
    """Reads a database extended property, e.g. `app.maintenance`."""

    async def read_value(self, engine: AsyncEngine) -> str:
        if engine.dialect.name != "mssql":
            raise RuntimeError(
                f"Extended properties are not supported by the {engine.dialect.name} dialect"
            )
        return await self._scalar(engine, EXTENDED_PROPERTY_QUERY, {"name": self.settings.property_name})


@register_observer(ObserverType.SQL_QUERY)
class SqlQueryObserver(SqlObserver):
    """Runs a custom query and uses the first column of the first row."""

    async def read_value(self, engine: AsyncEngine) -> str:
        return await self._scalar(engine, self.settings.query)
