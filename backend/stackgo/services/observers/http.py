"""
HTTP maintenance observer.

The response status is not checked: the body alone decides the maintenance
state. With a `json_path`, the value is extracted from a JSON body using a
small path syntax: dot-separated properties, `[i]` array indexes and an
optional leading `$.` (e.g. `$.status.maintenance`, `items[0].state`).
"""
import json
import logging
import re
from typing import Any

import httpx

from stackgo.models.observer import HttpObserverSettings, MaintenanceObserverConfig, ObserverType
from stackgo.services.observers.base import MaintenanceObserver
from stackgo.services.observers.factory import register_observer

logger = logging.getLogger(__name__)

_SEGMENT = re.compile(r"^(?P<name>[^\[\]]*)(?P<indexes>(\[\d+\])*)$")


def extract_json_value(body: str, json_path: str) -> str:
    """
    Extract a value from a JSON document.

    Strings are returned as is, booleans as `true`/`false`, null as an empty
    string, and numbers and containers as their JSON text.

    Raises:
        ValueError: If the body is not JSON or the path does not resolve
    """
    try:
        current: Any = json.loads(body)
    except json.JSONDecodeError as e:
        raise ValueError(f"Failed to parse JSON response: {e}")

    path = json_path.strip().lstrip("$").lstrip(".")
    for segment in filter(None, path.split(".")):
        match = _SEGMENT.match(segment)
        if match is None:
            raise ValueError(f"Invalid JSON path segment '{segment}' in '{json_path}'")

        name = match.group("name")
        if name:
            if not isinstance(current, dict) or name not in current:
                raise ValueError(f"Property '{name}' not found in JSON path '{json_path}'")
            current = current[name]

        for index in re.findall(r"\[(\d+)\]", match.group("indexes")):
            i = int(index)
            if not isinstance(current, list) or i >= len(current):
                raise ValueError(f"Array index {i} out of bounds")
            current = current[i]

    if current is None:
        return ""
    if isinstance(current, bool):
        return "true" if current else "false"
    if isinstance(current, str):
        return current
    return json.dumps(current)


@register_observer(ObserverType.HTTP)
class HttpObserver(MaintenanceObserver):
    """Calls an HTTP endpoint and reads the maintenance state from its body."""

    def __init__(self, config: MaintenanceObserverConfig):
        super().__init__(config)
        if not isinstance(config.settings, HttpObserverSettings):
            raise ValueError("Invalid settings type for HTTP observer")
        self.settings: HttpObserverSettings = config.settings

    async def get_observed_value(self) -> str:
        timeout = self.settings.timeout.total_seconds()
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.request(
                self.settings.method,
                self.settings.url,
                headers=self.settings.headers or None,
            )

        logger.debug(f"HTTP observer {self.settings.url} answered {response.status_code}")

        if not self.settings.json_path:
            return response.text.strip()
        return extract_json_value(response.text, self.settings.json_path)
