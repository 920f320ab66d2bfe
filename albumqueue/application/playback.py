from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from albumqueue.application.access import AccessGate
from albumqueue.application.activity import ActivityCounter
from albumqueue.application.state import CoordinatorState
from albumqueue.crosscutting.logging import CorrelationContext, log_error, log_reconciliation
from albumqueue.domain.entities import Album, QueueEntry, QueueSubmission
from albumqueue.domain.errors import EmptyAlbum
from albumqueue.domain.ports import PlaybackQueueService, TrackHydrationService

logger = logging.getLogger(__name__)


class PlaybackReconciliationWorkflow:
    """Queues every track of an album, starts playback and checks the live queue.

    The queue is read right after ``play`` returns. If the engine fills its queue
    asynchronously that read races it; the race is what this workflow exists to
    expose, so it is reported, not retried. ``observation_delay`` moves the read
    later, refreshing the engine's queue first, and is recorded on the submission.
    Engines that only report a window of the queue are compared on that window.
    """

    def __init__(self, hydration: TrackHydrationService, player: PlaybackQueueService,
                 gate: AccessGate, state: CoordinatorState,
                 activity: Optional[ActivityCounter] = None,
                 observation_delay: float = 0.0):
        self._hydration = hydration
        self._player = player
        self._gate = gate
        self._state = state
        self._activity = activity or ActivityCounter()
        self.observation_delay = observation_delay

    @property
    def is_busy(self) -> bool:
        return self._activity.is_busy

    async def play(self, album: Album) -> Optional[QueueSubmission]:
        """Run the reconciliation for ``album``.

        Returns the submission, or None when a step failed; failures are placed in
        the modal error slot.
        """
        if self._activity.is_busy:
            logger.warning(f"Playback already in progress; ignoring request for album {album.id}")
            return None

        with CorrelationContext(album_id=album.id, stage='playback'):
            async with self._activity.track():
                try:
                    return await self._reconcile(album)
                except Exception as e:
                    log_error(logger, f"Playback failed for album {album.id}", e)
                    self._state.set_modal_error(e)
                    return None

    async def _reconcile(self, album: Album) -> QueueSubmission:
        await self._gate.ensure_access()

        hydrated = album if album.is_hydrated else await self._hydration.fetch_tracks(album)
        tracks = hydrated.playable_tracks
        if not tracks:
            raise EmptyAlbum(album.id)

        entries = [QueueEntry.from_track(t) for t in tracks]
        logger.info(f"Queueing {len(entries)} tracks from '{hydrated.display_name}'")
        self._player.replace_queue(entries)

        if not self._player.is_prepared():
            logger.debug("Playback engine not prepared; preparing")
            await self._player.prepare()

        await self._player.play()

        if self.observation_delay > 0:
            await asyncio.sleep(self.observation_delay)
            await self._player.refresh_queue_snapshot()
        snapshot = self._player.current_queue_snapshot()

        submission = QueueSubmission(
            submitted_count=len(entries),
            observed_count=len(snapshot.entries),
            submitted=tuple(entries),
            observed=snapshot.entries,
            observation_delay=self.observation_delay,
            truncated=snapshot.truncated,
        )
        log_reconciliation(logger, album.id, submission.submitted_count,
                           submission.observed_count, submission.verdict,
                           missing=submission.missing_track_ids,
                           truncated=submission.truncated,
                           observation_delay=self.observation_delay)

        self._state.update(status=submission.status, playing_album=hydrated)
        return submission

    def stop(self) -> None:
        self._player.stop()
        logger.info("Playback stopped")

    def now_playing_lines(self) -> List[str]:
        """Lines comparing the album meant to be playing with what the engine plays."""
        lines = []
        album = self._state.snapshot.playing_album
        if album is not None and album.tracks:
            first = album.tracks[0]
            lines.append(f"Should be playing: {first.title} - track # {first.track_number_label}")
        current = self._player.current_queue_snapshot().current_entry
        if current is not None:
            lines.append(f"Actually playing: {current.title} - track # {current.track_number_label}")
        return lines
