import logging
from contextlib import asynccontextmanager
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


class ActivityCounter:
    """Counts in-flight asynchronous operations and derives whether reload is allowed.

    Reload starts disallowed and becomes allowed when the count returns to zero
    or on ``reset``.
    """

    def __init__(self, on_change: Optional[Callable[["ActivityCounter"], None]] = None):
        self._count = 0
        self._reload_allowed = False
        self._listeners: List[Callable[["ActivityCounter"], None]] = []
        if on_change is not None:
            self._listeners.append(on_change)

    @property
    def count(self) -> int:
        return self._count

    @property
    def reload_allowed(self) -> bool:
        return self._reload_allowed

    @property
    def is_busy(self) -> bool:
        return self._count > 0

    def subscribe(self, listener: Callable[["ActivityCounter"], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def disallow_reload(self) -> None:
        self._reload_allowed = False
        self._notify()

    def increment(self) -> None:
        self._count += 1
        self._reload_allowed = False
        self._notify()

    def decrement(self) -> None:
        if self._count == 0:
            logger.warning("Activity counter decremented at zero; ignoring")
            return
        self._count -= 1
        self._reload_allowed = self._count == 0
        self._notify()

    def reset(self) -> None:
        self._count = 0
        self._reload_allowed = True
        self._notify()

    @asynccontextmanager
    async def track(self):
        """Count the enclosed operation as in flight until it exits, however it exits."""
        self.increment()
        try:
            yield self
        finally:
            self.decrement()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)
