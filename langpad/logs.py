from __future__ import annotations
import sys
from datetime import datetime, timezone
from typing import Dict, List, Optional

from loguru import logger

from .observable import Observable
from .types import LogEntry, LogLevel

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[run_id]}</cyan> | {message}"
)

# loguru level names for the log feed levels
LOGURU_LEVELS = {"info": "INFO", "warn": "WARNING", "error": "ERROR", "debug": "DEBUG"}


def configure_logging(level: str = "INFO", sink=None) -> int:
    """Install a single loguru sink whose lines carry the bound run id."""
    logger.remove()
    logger.configure(extra={"run_id": "-"})
    return logger.add(sink or sys.stderr, level=level.upper(), format=LOG_FORMAT)


class LogStore(Observable):
    """In-memory log feed shown next to the editor."""

    def __init__(self) -> None:
        super().__init__()
        self.entries: List[LogEntry] = []
        self._by_id: Dict[str, LogEntry] = {}

    def add(self, content: str, level: LogLevel = "info") -> LogEntry:
        entry = LogEntry(timestamp=datetime.now(timezone.utc), level=level, content=content)
        self.entries.append(entry)
        self._by_id[entry.id] = entry
        self._notify("log.added", log_id=entry.id)
        return entry

    def _find(self, log_id: str) -> Optional[LogEntry]:
        return self._by_id.get(log_id)

    def append_content(self, log_id: str, content: str) -> None:
        entry = self._find(log_id)
        if entry:
            entry.content += content
            self._notify("log.updated", log_id=log_id)

    def update(self, log_id: str, **changes) -> None:
        for idx, entry in enumerate(self.entries):
            if entry.id == log_id:
                data = entry.model_dump()
                data.update(changes)
                data["id"] = log_id
                self.entries[idx] = self._by_id[log_id] = LogEntry.model_validate(data)
                self._notify("log.updated", log_id=log_id)
                return

    def remove(self, log_id: str) -> None:
        self.entries = [e for e in self.entries if e.id != log_id]
        self._by_id.pop(log_id, None)
        self._notify("log.removed", log_id=log_id)

    def clear(self) -> None:
        self.entries = []
        self._by_id = {}
        self._notify("log.cleared")
