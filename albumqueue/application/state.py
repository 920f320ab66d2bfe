from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Callable, List, Optional, Tuple

from albumqueue.domain.entities import Album
from albumqueue.domain.errors import AlbumQueueError, OtherError

logger = logging.getLogger(__name__)

WAITING_STATUS = "Waiting for search input"


@dataclass(frozen=True)
class StateSnapshot:
    """Immutable view of everything the presentation layer renders."""

    albums: Tuple[Album, ...] = ()
    status: str = WAITING_STATUS
    playing_album: Optional[Album] = None
    search_text: str = ""
    inline_error: Optional[BaseException] = None
    modal_error: Optional[AlbumQueueError] = None


Listener = Callable[[StateSnapshot, Tuple[str, ...]], None]


class CoordinatorState:
    """Observable state container.

    Every mutation replaces the snapshot and notifies subscribers with the names of
    the fields that changed. Mutate only from the coordinating event loop.
    """

    def __init__(self, suppress_inline_errors: bool = False):
        self.suppress_inline_errors = suppress_inline_errors
        self._snapshot = StateSnapshot()
        self._listeners: List[Listener] = []

    @property
    def snapshot(self) -> StateSnapshot:
        return self._snapshot

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def update(self, **changes) -> None:
        if 'albums' in changes:
            changes['albums'] = tuple(changes['albums'])
        current = self._snapshot
        changed = tuple(name for name, value in changes.items() if getattr(current, name) != value)
        if not changed:
            return
        self._snapshot = replace(current, **changes)
        for listener in list(self._listeners):
            listener(self._snapshot, changed)

    # Inline slot

    def set_inline_error(self, error: BaseException) -> None:
        if self.suppress_inline_errors:
            logger.debug(f"Inline error suppressed: {error}")
            return
        self.update(inline_error=error)

    def clear_inline_error(self) -> None:
        self.update(inline_error=None)

    # Modal slot

    def set_modal_error(self, error: BaseException) -> None:
        self.update(modal_error=OtherError.wrap(error))

    def acknowledge_modal_error(self) -> None:
        self.update(modal_error=None)

