from __future__ import annotations

from typing import List, Protocol, Sequence

from .entities import Album, AuthorizationState, QueueEntry, QueueSnapshot


class AuthorizationService(Protocol):
    """Port for the service's user authorization prompt."""

    async def request_authorization(self) -> AuthorizationState:
        """Ask for access, possibly prompting the user, and return the resulting state."""


class CatalogSearchService(Protocol):
    """Port for free-text catalog search restricted to albums."""

    async def search_albums(self, term: str, limit: int = 20,
                            include_top_results: bool = False) -> List[Album]:
        """Return up to ``limit`` albums matching ``term`` in catalog ranking order."""


class TrackHydrationService(Protocol):
    """Port for fetching an album's full track list from the catalog."""

    async def fetch_tracks(self, album: Album) -> Album:
        """Return a copy of ``album`` with its tracks populated in catalog order."""


class PlaybackQueueService(Protocol):
    """Port for the playback engine and its queue.

    ``replace_queue`` discards whatever was queued or playing before. ``play`` on an
    engine that is not prepared fails, so callers prepare first. The synchronous
    methods never wait on the network; engines behind one answer from state
    gathered by ``prepare``, ``play`` and ``refresh_queue_snapshot``.
    """

    def replace_queue(self, entries: Sequence[QueueEntry]) -> None:
        """Replace the queue contents with ``entries`` in order."""

    def is_prepared(self) -> bool:
        """Return True when the engine will accept a play command."""

    async def prepare(self) -> None:
        """Make the engine ready to play."""

    async def play(self) -> None:
        """Start playback of the queue."""

    def stop(self) -> None:
        """Stop playback."""

    def current_queue_snapshot(self) -> QueueSnapshot:
        """Return the queue as the engine reported it after the last ``play`` or refresh."""

    async def refresh_queue_snapshot(self) -> None:
        """Read the live queue again so ``current_queue_snapshot`` reflects it."""
