"""
Maintenance observer contract: observer types, configuration and results.

ObserverType is a closed set of built-in kinds that hosts may extend with
`ObserverType.register(...)`. Each type carries capability flags that decide
which settings block its configuration needs.
"""
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Union
from urllib.parse import urlparse

from stackgo.core.config import settings
from stackgo.core.exceptions import InvalidConfigurationError, UnsupportedObserverTypeError


@dataclass(frozen=True)
class ObserverType:
    """An observer kind with its capability flags."""
    value: str
    requires_connection: bool = False
    requires_url: bool = False
    requires_file_path: bool = False

    _registry: ClassVar[Dict[str, "ObserverType"]] = {}

    # Built-in types, assigned below the class body
    SQL_EXTENDED_PROPERTY: ClassVar["ObserverType"]
    SQL_QUERY: ClassVar["ObserverType"]
    HTTP: ClassVar["ObserverType"]
    FILE: ClassVar["ObserverType"]

    @classmethod
    def register(
        cls,
        value: str,
        requires_connection: bool = False,
        requires_url: bool = False,
        requires_file_path: bool = False,
    ) -> "ObserverType":
        """Register (or return the already registered) observer type."""
        key = value.lower()
        existing = cls._registry.get(key)
        if existing is not None:
            return existing
        observer_type = cls(value, requires_connection, requires_url, requires_file_path)
        cls._registry[key] = observer_type
        return observer_type

    @classmethod
    def from_value(cls, value: str) -> "ObserverType":
        observer_type = cls._registry.get((value or "").lower())
        if observer_type is None:
            raise UnsupportedObserverTypeError(value)
        return observer_type

    @classmethod
    def all(cls) -> List["ObserverType"]:
        return list(cls._registry.values())

    def __str__(self) -> str:
        return self.value


ObserverType.SQL_EXTENDED_PROPERTY = ObserverType.register("sqlExtendedProperty", requires_connection=True)
ObserverType.SQL_QUERY = ObserverType.register("sqlQuery", requires_connection=True)
ObserverType.HTTP = ObserverType.register("http", requires_url=True)
ObserverType.FILE = ObserverType.register("file", requires_file_path=True)


# =============================================================================
# Type-specific settings
# =============================================================================

@dataclass
class SqlObserverSettings:
    """Connection and lookup for the SQL observers."""
    connection_string: Optional[str] = None
    connection_name: Optional[str] = None
    property_name: Optional[str] = None
    query: Optional[str] = None

    def validate(self, observer_type: ObserverType) -> None:
        if not self.connection_string and not self.connection_name:
            raise InvalidConfigurationError(
                "connection", "either connection_string or connection_name is required"
            )
        if observer_type == ObserverType.SQL_EXTENDED_PROPERTY and not self.property_name:
            raise InvalidConfigurationError("property_name", "required for extended property observers")
        if observer_type == ObserverType.SQL_QUERY and not self.query:
            raise InvalidConfigurationError("query", "required for query observers")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": "sql",
            "connection_string": self.connection_string,
            "connection_name": self.connection_name,
            "property_name": self.property_name,
            "query": self.query,
        }


@dataclass
class HttpObserverSettings:
    """Endpoint polled by the HTTP observer."""
    url: str
    method: str = "GET"
    headers: Dict[str, str] = field(default_factory=dict)
    timeout: timedelta = field(
        default_factory=lambda: timedelta(seconds=settings.OBSERVER_HTTP_DEFAULT_TIMEOUT)
    )
    json_path: Optional[str] = None

    def validate(self, observer_type: ObserverType) -> None:
        parsed = urlparse(self.url or "")
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise InvalidConfigurationError("url", f"must be an absolute http or https URL: {self.url}")
        if self.timeout <= timedelta(0):
            raise InvalidConfigurationError("timeout", "must be positive")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": "http",
            "url": self.url,
            "method": self.method,
            "headers": dict(self.headers),
            "timeout": self.timeout.total_seconds(),
            "json_path": self.json_path,
        }


class FileCheckMode(str, Enum):
    EXISTS = "exists"
    CONTENT = "content"


@dataclass
class FileObserverSettings:
    """File watched by the file observer."""
    path: str
    mode: FileCheckMode = FileCheckMode.EXISTS
    content_pattern: Optional[str] = None

    def validate(self, observer_type: ObserverType) -> None:
        if not self.path:
            raise InvalidConfigurationError("path", "required for file observers")
        if self.content_pattern:
            try:
                re.compile(self.content_pattern)
            except re.error as e:
                raise InvalidConfigurationError("content_pattern", f"invalid regular expression: {e}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": "file",
            "path": self.path,
            "mode": self.mode.value,
            "content_pattern": self.content_pattern,
        }


ObserverSettings = Union[SqlObserverSettings, HttpObserverSettings, FileObserverSettings]


def _settings_from_dict(data: Optional[Dict[str, Any]]) -> Optional[ObserverSettings]:
    if not data:
        return None
    kind = data.get("kind")
    if kind == "sql":
        return SqlObserverSettings(
            connection_string=data.get("connection_string"),
            connection_name=data.get("connection_name"),
            property_name=data.get("property_name"),
            query=data.get("query"),
        )
    if kind == "http":
        return HttpObserverSettings(
            url=data["url"],
            method=data.get("method", "GET"),
            headers=dict(data.get("headers") or {}),
            timeout=timedelta(seconds=data.get("timeout", settings.OBSERVER_HTTP_DEFAULT_TIMEOUT)),
            json_path=data.get("json_path"),
        )
    if kind == "file":
        return FileObserverSettings(
            path=data["path"],
            mode=FileCheckMode(data.get("mode", FileCheckMode.EXISTS.value)),
            content_pattern=data.get("content_pattern"),
        )
    raise InvalidConfigurationError("settings", f"unknown settings kind: {kind}")


# =============================================================================
# Configuration
# =============================================================================

@dataclass
class MaintenanceObserverConfig:
    """Validated observer configuration for one deployment."""
    type: ObserverType
    polling_interval: timedelta
    maintenance_value: str
    normal_value: Optional[str] = None
    settings: Optional[ObserverSettings] = None

    @classmethod
    def create(
        cls,
        type: ObserverType,
        polling_interval: timedelta,
        maintenance_value: str,
        normal_value: Optional[str] = None,
        settings: Optional[ObserverSettings] = None,
    ) -> "MaintenanceObserverConfig":
        """
        Build a configuration, rejecting malformed input.

        Raises:
            InvalidConfigurationError: If the interval, values or settings are invalid
        """
        if polling_interval <= timedelta(0):
            raise InvalidConfigurationError("polling_interval", "must be positive")
        if not maintenance_value or not maintenance_value.strip():
            raise InvalidConfigurationError("maintenance_value", "is required")

        expected = None
        if type.requires_connection:
            expected = SqlObserverSettings
        elif type.requires_url:
            expected = HttpObserverSettings
        elif type.requires_file_path:
            expected = FileObserverSettings

        if expected is not None:
            if not isinstance(settings, expected):
                raise InvalidConfigurationError(
                    "settings", f"observer type '{type}' requires {expected.__name__}"
                )
            settings.validate(type)

        return cls(
            type=type,
            polling_interval=polling_interval,
            maintenance_value=maintenance_value,
            normal_value=normal_value,
            settings=settings,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "polling_interval": self.polling_interval.total_seconds(),
            "maintenance_value": self.maintenance_value,
            "normal_value": self.normal_value,
            "settings": self.settings.to_dict() if self.settings else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MaintenanceObserverConfig":
        return cls(
            type=ObserverType.from_value(data["type"]),
            polling_interval=timedelta(seconds=data["polling_interval"]),
            maintenance_value=data["maintenance_value"],
            normal_value=data.get("normal_value"),
            settings=_settings_from_dict(data.get("settings")),
        )


# =============================================================================
# Result
# =============================================================================

@dataclass(frozen=True)
class ObserverResult:
    """Outcome of one maintenance check. One per check."""
    is_success: bool
    is_maintenance_required: bool
    observed_value: Optional[str] = None
    error_message: Optional[str] = None
    checked_at: datetime = field(default_factory=datetime.utcnow)

    @classmethod
    def maintenance_required(cls, observed_value: str) -> "ObserverResult":
        return cls(is_success=True, is_maintenance_required=True, observed_value=observed_value)

    @classmethod
    def normal_operation(cls, observed_value: Optional[str]) -> "ObserverResult":
        return cls(is_success=True, is_maintenance_required=False, observed_value=observed_value)

    @classmethod
    def failed(cls, error_message: str) -> "ObserverResult":
        return cls(is_success=False, is_maintenance_required=False, error_message=error_message)

    def __str__(self) -> str:
        if not self.is_success:
            return f"Failed: {self.error_message}"
        if self.is_maintenance_required:
            return f"Maintenance required (value: {self.observed_value})"
        return f"Normal operation (value: {self.observed_value})"
