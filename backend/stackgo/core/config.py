"""
Application configuration using Pydantic Settings.
"""
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    # Application
    APP_NAME: str = "StackGo"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "info"
    DEBUG: bool = False

    # Database
    DATABASE_URL: str
    DB_SCHEMA: Optional[str] = None

    # Broker for the background worker
    REDIS_URL: str = "redis://redis:6379/0"

    # Host-provided container runtime factory, e.g. "myhost.docker:create_runtime"
    CONTAINER_RUNTIME: Optional[str] = None

    # Container labels used to match containers to stacks and services
    STACK_LABEL: str = "stackgo.stack"
    COMPOSE_PROJECT_LABEL: str = "com.docker.compose.project"
    COMPOSE_SERVICE_LABEL: str = "com.docker.compose.service"
    LIFECYCLE_LABEL: str = "stackgo.lifecycle"
    MAINTENANCE_LABEL: str = "stackgo.maintenance"  # "ignore" keeps a container up in maintenance

    # Maintenance observers
    OBSERVER_DEFAULT_POLLING_INTERVAL: int = 30  # seconds
    OBSERVER_HTTP_DEFAULT_TIMEOUT: float = 10.0  # seconds
    OBSERVER_CHECK_INTERVAL: float = 10.0  # seconds between beat-driven passes

    # Health monitoring
    HEALTH_COLLECTION_INTERVAL: float = 30.0  # seconds
    HEALTH_COLLECTION_CONCURRENCY: int = 8
    HEALTH_SNAPSHOT_RETENTION_HOURS: int = 24
    HEALTH_SNAPSHOT_STALE_SECONDS: int = 120
    HEALTH_HISTORY_DEFAULT_LIMIT: int = 10

    # Product deployments
    PRODUCT_HEALTH_SYNC_INTERVAL: float = 60.0  # seconds

    # Single-stack deployments
    DEPLOYMENT_TIMEOUT_MINUTES: int = 30

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )


settings = Settings()
