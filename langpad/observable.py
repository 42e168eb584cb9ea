from __future__ import annotations
from typing import Any, Callable, Dict, List

from loguru import logger

Listener = Callable[[str, Dict[str, Any]], None]


class Observable:
    """Synchronous change notification shared by the stores."""

    def __init__(self) -> None:
        self._subscribers: List[Listener] = []

    def subscribe(self, callback: Listener) -> Callable[[], None]:
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            try:
                self._subscribers.remove(callback)
            except ValueError:
                pass

        return _unsubscribe

    def _notify(self, event: str, **payload: Any) -> None:
        for callback in list(self._subscribers):
            try:
                callback(event, payload)
            except Exception as e:
                logger.opt(exception=e).warning("Subscriber failed on '{}': {}", event, e)
