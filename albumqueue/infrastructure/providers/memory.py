from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Set

from albumqueue.domain.entities import (
    Album, AuthorizationState, QueueEntry, QueueSnapshot, Track,
)
from albumqueue.domain.errors import NotFound, PermanentFailure

logger = logging.getLogger(__name__)


class MemoryMusicProvider:
    """In-memory catalog and playback engine implementing every port.

    ``dropped_track_ids`` are accepted by ``replace_queue`` but never reach the live
    queue, reproducing the silent-drop defect without a network service.
    """

    def __init__(self,
                 albums: Optional[Iterable[Album]] = None,
                 authorization_states: Optional[Sequence[AuthorizationState]] = None,
                 dropped_track_ids: Optional[Iterable[str]] = None,
                 search_error: Optional[Exception] = None):
        self._albums: Dict[str, Album] = {a.id: a for a in (albums or [])}
        self._authorization_states = list(authorization_states or [AuthorizationState.AUTHORIZED])
        self.dropped_track_ids: Set[str] = set(dropped_track_ids or [])
        self.search_error = search_error

        self.authorization_requests = 0
        self.search_requests: List[str] = []
        self._pending: List[QueueEntry] = []
        self._queue: List[QueueEntry] = []
        self._current: Optional[QueueEntry] = None
        self._prepared = False
        self._playing = False

    # AuthorizationService

    async def request_authorization(self) -> AuthorizationState:
        index = min(self.authorization_requests, len(self._authorization_states) - 1)
        self.authorization_requests += 1
        return self._authorization_states[index]

    # CatalogSearchService

    async def search_albums(self, term: str, limit: int = 20,
                            include_top_results: bool = False) -> List[Album]:
        self.search_requests.append(term)
        if self.search_error is not None:
            raise self.search_error
        needle = term.strip().lower()
        if not needle:
            return []
        matches = [
            Album(id=a.id, title=a.title, artist_name=a.artist_name, uri=a.uri)
            for a in self._albums.values()
            if needle in a.title.lower() or needle in a.artist_name.lower()
        ]
        return matches[:limit]

    # TrackHydrationService

    async def fetch_tracks(self, album: Album) -> Album:
        stored = self._albums.get(album.id)
        if stored is None:
            raise NotFound(f"Album {album.id} not found")
        return album.with_tracks(list(stored.tracks or ()))

    # PlaybackQueueService

    def replace_queue(self, entries: Sequence[QueueEntry]) -> None:
        self._pending = list(entries)
        self._queue = [e for e in self._pending if e.track_id not in self.dropped_track_ids]
        self._current = None
        self._playing = False

    def is_prepared(self) -> bool:
        return self._prepared

    async def prepare(self) -> None:
        self._prepared = True

    async def play(self) -> None:
        if not self._prepared:
            raise PermanentFailure("Playback engine is not prepared")
        self._playing = True
        self._current = self._queue[0] if self._queue else None

    def stop(self) -> None:
        self._playing = False
        self._current = None

    def current_queue_snapshot(self) -> QueueSnapshot:
        return QueueSnapshot(entries=tuple(self._queue), current_entry=self._current)

    async def refresh_queue_snapshot(self) -> None:
        # The live queue is read directly; nothing to fetch
        pass

    @property
    def is_playing(self) -> bool:
        return self._playing


def demo_catalog() -> List[Album]:
    """A small fixed catalog for offline runs."""
    def tracks(prefix: str, titles: List[str]) -> List[Track]:
        return [
            Track(id=f"{prefix}-{i}", title=title, track_number=i,
                  duration_ms=180000 + i * 1000, uri=f"memory:track:{prefix}-{i}")
            for i, title in enumerate(titles, start=1)
        ]

    return [
        Album(id="alb-1", title="Twelve Songs", artist_name="The Demonstrators",
              tracks=tuple(tracks("alb-1", [f"Song {n}" for n in range(1, 13)]))),
        Album(id="alb-2", title="Quiet Hours", artist_name="Night Shift",
              tracks=tuple(tracks("alb-2", ["Dusk", "Midnight", "Dawn"]))),
        Album(id="alb-3", title="Silence", artist_name="", tracks=()),
    ]
