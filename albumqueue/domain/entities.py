from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple


class AuthorizationState(Enum):
    """Authorization status reported by the external catalog/playback service."""

    NOT_DETERMINED = "not_determined"
    AUTHORIZED = "authorized"
    DENIED = "denied"
    RESTRICTED = "restricted"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Track:
    """Domain entity representing an album track independent of providers."""

    id: str
    title: str = ""
    track_number: Optional[int] = None
    duration_ms: Optional[int] = None
    uri: Optional[str] = None
    is_playable: bool = True

    @property
    def track_number_label(self) -> str:
        return str(self.track_number) if self.track_number is not None else "?"


@dataclass(frozen=True)
class Album:
    """Domain entity representing a catalog album.

    ``tracks`` is None until the album has been hydrated by a track fetch.
    Hydration produces a new Album; instances are never mutated.
    """

    id: str
    title: str
    artist_name: str = ""
    tracks: Optional[Tuple[Track, ...]] = None
    uri: Optional[str] = None

    def __post_init__(self):
        if self.tracks is not None and not isinstance(self.tracks, tuple):
            object.__setattr__(self, 'tracks', tuple(self.tracks))

    @property
    def is_hydrated(self) -> bool:
        return self.tracks is not None

    @property
    def playable_tracks(self) -> List[Track]:
        """Tracks that can be submitted to a playback queue, in catalog order."""
        if self.tracks is None:
            return []
        return [t for t in self.tracks if t.is_playable]

    @property
    def display_name(self) -> str:
        if not self.artist_name:
            return self.title
        return f"{self.artist_name} — {self.title}"

    @property
    def duration_of_tracks_ms(self) -> Optional[int]:
        if self.tracks is None:
            return None
        return sum(t.duration_ms for t in self.tracks if t.duration_ms is not None)

    def with_tracks(self, tracks: List[Track]) -> "Album":
        return Album(
            id=self.id,
            title=self.title,
            artist_name=self.artist_name,
            tracks=tuple(tracks),
            uri=self.uri,
        )


@dataclass(frozen=True)
class QueueEntry:
    """One playable item submitted to the playback engine."""

    track_id: str
    title: str = ""
    track_number: Optional[int] = None
    uri: Optional[str] = None

    @classmethod
    def from_track(cls, track: Track) -> "QueueEntry":
        return cls(
            track_id=track.id,
            title=track.title,
            track_number=track.track_number,
            uri=track.uri,
        )

    @property
    def track_number_label(self) -> str:
        return str(self.track_number) if self.track_number is not None else "?"


@dataclass(frozen=True)
class QueueSnapshot:
    """Live playback queue contents as reported by the playback engine.

    ``truncated`` is set when the engine only reports a window of the queue, so
    entries past the window may exist without appearing in ``entries``.
    """

    entries: Tuple[QueueEntry, ...] = ()
    current_entry: Optional[QueueEntry] = None
    truncated: bool = False

    def __post_init__(self):
        if not isinstance(self.entries, tuple):
            object.__setattr__(self, 'entries', tuple(self.entries))


@dataclass(frozen=True)
class QueueSubmission:
    """Result of submitting an album to the playback queue.

    ``submitted_count`` tracks were sent; ``observed_count`` entries were present
    in the live queue when it was read ``observation_delay`` seconds after play.
    A mismatch is the defect under investigation, not an error in this code.

    When the read was ``truncated`` only the visible part of the queue is
    compared: the submitted prefix up to the last submitted entry seen, and at
    least as long as the observed window.
    """

    submitted_count: int
    observed_count: int
    submitted: Tuple[QueueEntry, ...] = field(default=())
    observed: Tuple[QueueEntry, ...] = field(default=())
    observation_delay: float = 0.0
    truncated: bool = False

    CORRECT = "correct behavior"
    MISMATCH = "MISMATCH DETECTED"

    @property
    def is_match(self) -> bool:
        if self.truncated:
            return not self.missing_track_ids
        return self.submitted_count == self.observed_count

    @property
    def verdict(self) -> str:
        return self.CORRECT if self.is_match else self.MISMATCH

    @property
    def missing_track_ids(self) -> List[str]:
        """Submitted track ids that should be visible in the observed queue but are not."""
        observed_ids = {e.track_id for e in self.observed}
        return [e.track_id for e in self._visible_submitted() if e.track_id not in observed_ids]

    @property
    def hidden_track_ids(self) -> List[str]:
        """Submitted track ids past the visible window of a truncated read."""
        return [e.track_id for e in self.submitted[len(self._visible_submitted()):]]

    @property
    def status(self) -> str:
        observed = f"{self.observed_count}+" if self.truncated else str(self.observed_count)
        return (f"{self.submitted_count} songs added; "
                f"{observed} songs actually in queue - {self.verdict}")

    def _visible_submitted(self) -> Tuple[QueueEntry, ...]:
        if not self.truncated:
            return self.submitted
        observed_ids = {e.track_id for e in self.observed}
        seen = [i for i, e in enumerate(self.submitted) if e.track_id in observed_ids]
        window = max(seen[-1] + 1 if seen else 0, self.observed_count)
        return self.submitted[:window]
