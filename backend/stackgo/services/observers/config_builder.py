"""
Conversion of a manifest observer block into a validated MaintenanceObserverConfig.

Values may reference deployment variables as `${NAME}`. A value that still
contains a placeholder after substitution is treated as missing, so the
config fails validation instead of probing a half-resolved target.
"""
import logging
import re
from datetime import timedelta
from typing import Dict, Optional

from stackgo.core.config import settings
from stackgo.core.exceptions import InvalidConfigurationError
from stackgo.models.observer import (
    FileCheckMode,
    FileObserverSettings,
    HttpObserverSettings,
    MaintenanceObserverConfig,
    ObserverType,
    SqlObserverSettings,
)
from stackgo.schemas.catalog import ObserverDefinition

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\$\{([^}]+)\}")
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600}


def parse_timespan(value: Optional[str]) -> Optional[timedelta]:
    """
    Parse "30s", "5m", "1h", "HH:MM:SS" or plain seconds.

    Returns None for empty or unparseable input.
    """
    if value is None:
        return None
    text = str(value).strip().lower()
    if not text:
        return None

    if ":" in text:
        parts = text.split(":")
        if len(parts) != 3:
            return None
        try:
            hours, minutes = int(parts[0]), int(parts[1])
            seconds = float(parts[2])
        except ValueError:
            return None
        return timedelta(hours=hours, minutes=minutes, seconds=seconds)

    unit = _UNIT_SECONDS.get(text[-1])
    number = text[:-1] if unit else text
    try:
        return timedelta(seconds=float(number) * (unit or 1))
    except ValueError:
        return None


def resolve_variables(template: Optional[str], variables: Dict[str, str]) -> Optional[str]:
    """Substitute `${NAME}` placeholders; None if any stays unresolved."""
    if not template:
        return template

    lookup = {k.lower(): v for k, v in variables.items()}

    def substitute(match):
        value = lookup.get(match.group(1).strip().lower())
        return value if value is not None else match.group(0)

    result = _PLACEHOLDER.sub(substitute, template)
    if _PLACEHOLDER.search(result):
        logger.warning(f"Unresolved variable placeholders in: {template}")
        return None
    return result


def _resolve_connection_string(definition: ObserverDefinition, variables: Dict[str, str]) -> Optional[str]:
    if definition.connection_string:
        return resolve_variables(definition.connection_string, variables)

    if definition.connection_name:
        key = definition.connection_name.lower()
        for name, value in variables.items():
            if name.lower() == key:
                return value
        logger.warning(f"Connection name '{definition.connection_name}' not found in deployment variables")

    return None


def build_config(
    definition: ObserverDefinition,
    variables: Optional[Dict[str, str]] = None,
) -> MaintenanceObserverConfig:
    """
    Build the observer config of a deployment from its manifest block.

    Args:
        definition: Observer block of the stack definition
        variables: Deployment variables used for `${VAR}` and connection-name lookup

    Returns:
        Validated MaintenanceObserverConfig

    Raises:
        UnsupportedObserverTypeError: If the type is not registered
        InvalidConfigurationError: If a required value is missing or invalid
    """
    variables = variables or {}
    observer_type = ObserverType.from_value(definition.type)

    polling_interval = parse_timespan(definition.polling_interval)
    if polling_interval is None:
        if definition.polling_interval:
            raise InvalidConfigurationError(
                "polling_interval", f"cannot parse '{definition.polling_interval}'"
            )
        polling_interval = timedelta(seconds=settings.OBSERVER_DEFAULT_POLLING_INTERVAL)

    observer_settings = None
    if observer_type.requires_connection:
        connection_string = _resolve_connection_string(definition, variables)
        if not connection_string:
            raise InvalidConfigurationError("connection", "no connection string could be resolved")
        observer_settings = SqlObserverSettings(
            connection_string=connection_string,
            property_name=definition.property_name,
            query=definition.query,
        )
    elif observer_type.requires_url:
        url = resolve_variables(definition.url, variables)
        if not url:
            raise InvalidConfigurationError("url", "required for http observers")
        timeout = parse_timespan(definition.timeout) or timedelta(
            seconds=settings.OBSERVER_HTTP_DEFAULT_TIMEOUT
        )
        observer_settings = HttpObserverSettings(
            url=url,
            method=(definition.method or "GET").upper(),
            headers={k: resolve_variables(v, variables) or "" for k, v in definition.headers.items()},
            timeout=timeout,
            json_path=definition.json_path,
        )
    elif observer_type.requires_file_path:
        path = resolve_variables(definition.path, variables)
        mode = FileCheckMode.CONTENT if (definition.mode or "").lower() == "content" else FileCheckMode.EXISTS
        observer_settings = FileObserverSettings(
            path=path or "",
            mode=mode,
            content_pattern=definition.content_pattern if mode == FileCheckMode.CONTENT else None,
        )

    return MaintenanceObserverConfig.create(
        type=observer_type,
        polling_interval=polling_interval,
        maintenance_value=definition.maintenance_value,
        normal_value=definition.normal_value,
        settings=observer_settings,
    )
