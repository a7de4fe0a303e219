"""
File maintenance observer.

Exists mode reports `true` or `false` for the presence of the file. Content
mode reads the file and reports the first regex match (group 1 when the
pattern has a group), or the whole trimmed content without a pattern.
"""
import asyncio
import re
from pathlib import Path

from stackgo.models.observer import (
    FileCheckMode,
    FileObserverSettings,
    MaintenanceObserverConfig,
    ObserverType,
)
from stackgo.services.observers.base import MaintenanceObserver
from stackgo.services.observers.factory import register_observer


@register_observer(ObserverType.FILE)
class FileObserver(MaintenanceObserver):
    """Watches a file on a path visible to this process."""

    def __init__(self, config: MaintenanceObserverConfig):
        super().__init__(config)
        if not isinstance(config.settings, FileObserverSettings):
            raise ValueError("Invalid settings type for file observer")
        self.settings: FileObserverSettings = config.settings

    async def get_observed_value(self) -> str:
        return await asyncio.to_thread(self._read)

    def _read(self) -> str:
        path = Path(self.settings.path)

        if self.settings.mode == FileCheckMode.EXISTS:
            return "true" if path.exists() else "false"

        if not path.is_file():
            raise FileNotFoundError(f"File not found: {path}")

        content = path.read_text(encoding="utf-8")
        if not self.settings.content_pattern:
            return content.strip()

        match = re.search(self.settings.content_pattern, content, re.MULTILINE)
        if match is None:
            return ""
        value = match.group(1) if match.groups() else match.group(0)
        return (value or "").strip()
