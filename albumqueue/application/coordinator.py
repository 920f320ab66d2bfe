from __future__ import annotations

import logging
from typing import List, Optional

from albumqueue.application.access import AccessGate
from albumqueue.application.activity import ActivityCounter
from albumqueue.application.playback import PlaybackReconciliationWorkflow
from albumqueue.application.search import CatalogSearchWorkflow
from albumqueue.application.state import CoordinatorState, StateSnapshot
from albumqueue.crosscutting.config import Settings
from albumqueue.domain.entities import Album, QueueSubmission
from albumqueue.domain.ports import (
    AuthorizationService, CatalogSearchService, PlaybackQueueService, TrackHydrationService,
)

logger = logging.getLogger(__name__)


class AlbumQueueCoordinator:
    """Owns the access gate, both workflows and their shared state.

    Construct one per session, call ``start`` once the event loop runs and
    ``shutdown`` when the consuming context goes away.
    """

    def __init__(self,
                 authorization: AuthorizationService,
                 catalog: CatalogSearchService,
                 hydration: TrackHydrationService,
                 player: PlaybackQueueService,
                 settings: Optional[Settings] = None):
        self.settings = settings or Settings()
        self.state = CoordinatorState(suppress_inline_errors=self.settings.suppress_inline_errors)
        self.activity = ActivityCounter()
        self.playback_activity = ActivityCounter()
        self.gate = AccessGate(authorization, app_name=self.settings.app_name)
        self.search_workflow = CatalogSearchWorkflow(
            catalog, self.gate, self.state, self.activity, limit=self.settings.search_limit
        )
        self.playback_workflow = PlaybackReconciliationWorkflow(
            hydration, player, self.gate, self.state,
            activity=self.playback_activity,
            observation_delay=self.settings.observation_delay,
        )
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Ask for access up front so the authorization error can be shown early."""
        if self._started:
            return
        self._started = True
        await self.gate.request_access()

    async def shutdown(self) -> None:
        self.activity.reset()
        self.playback_activity.reset()
        self._started = False
        logger.info("Coordinator shut down")

    async def search(self, term: str) -> List[Album]:
        return await self.search_workflow.search(term)

    async def reload(self) -> List[Album]:
        if self.activity.is_busy:
            logger.info("Reload ignored while a search is in flight")
            return list(self.state.snapshot.albums)
        return await self.search_workflow.reload()

    async def play(self, album: Album) -> Optional[QueueSubmission]:
        return await self.playback_workflow.play(album)

    async def play_album_id(self, album_id: str) -> Optional[QueueSubmission]:
        album = self.find_album(album_id)
        if album is None:
            raise KeyError(album_id)
        return await self.play(album)

    def find_album(self, album_id: str) -> Optional[Album]:
        return next((a for a in self.state.snapshot.albums if a.id == album_id), None)

    def stop(self) -> None:
        self.playback_workflow.stop()

    def acknowledge_modal_error(self) -> None:
        self.state.acknowledge_modal_error()

    def displayed_error(self) -> Optional[BaseException]:
        """Error replacing the main content: authorization first, then the inline slot."""
        auth_error = self.gate.authorization_error
        if auth_error is not None:
            return auth_error
        return self.state.snapshot.inline_error

    @property
    def snapshot(self) -> StateSnapshot:
        return self.state.snapshot

    def status_lines(self) -> List[str]:
        return self.playback_workflow.now_playing_lines() + [f"Status: {self.state.snapshot.status}"]
