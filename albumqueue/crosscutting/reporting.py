import json
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from albumqueue.domain.entities import Album, QueueSubmission


class EntryStatus(str, Enum):
    """Outcome for one submitted queue entry."""

    QUEUED = "queued"
    MISSING = "missing"
    NOT_VISIBLE = "not_visible"


@dataclass
class EntryResult:
    """Result for a single track submitted to the playback queue."""

    track_id: str
    title: str
    track_number: Optional[int]
    status: EntryStatus

    def to_json(self) -> Dict[str, Any]:
        """Serialize entry result to JSON."""
        return {
            "trackId": self.track_id,
            "title": self.title,
            "trackNumber": self.track_number,
            "status": self.status.value,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "EntryResult":
        """Deserialize entry result from JSON."""
        return cls(
            track_id=data["trackId"],
            title=data.get("title", ""),
            track_number=data.get("trackNumber"),
            status=EntryStatus(data["status"]),
        )


@dataclass
class ReconciliationReport:
    """Report of one album submitted to the playback queue."""

    album_id: str
    album_name: str
    submitted_count: int
    observed_count: int
    verdict: str
    observation_delay: float
    created_at: datetime
    entries: List[EntryResult] = field(default_factory=list)
    truncated: bool = False

    @property
    def missing(self) -> List[EntryResult]:
        return [e for e in self.entries if e.status == EntryStatus.MISSING]

    @property
    def not_visible(self) -> List[EntryResult]:
        return [e for e in self.entries if e.status == EntryStatus.NOT_VISIBLE]

    def to_json(self) -> Dict[str, Any]:
        """Serialize report to JSON."""
        return {
            "albumId": self.album_id,
            "albumName": self.album_name,
            "submitted": self.submitted_count,
            "observed": self.observed_count,
            "verdict": self.verdict,
            "observationDelay": self.observation_delay,
            "createdAt": self.created_at.isoformat(),
            "entries": [e.to_json() for e in self.entries],
            "truncated": self.truncated,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "ReconciliationReport":
        """Deserialize report from JSON."""
        return cls(
            album_id=data["albumId"],
            album_name=data.get("albumName", ""),
            submitted_count=data["submitted"],
            observed_count=data["observed"],
            verdict=data["verdict"],
            observation_delay=data.get("observationDelay", 0.0),
            created_at=datetime.fromisoformat(data["createdAt"]),
            entries=[EntryResult.from_json(e) for e in data.get("entries", [])],
            truncated=data.get("truncated", False),
        )


def create_reconciliation_report(album: Album, submission: QueueSubmission) -> ReconciliationReport:
    """Create a report from an album and the submission made for it."""
    missing_ids = set(submission.missing_track_ids)
    hidden_ids = set(submission.hidden_track_ids)
    entries = []
    for e in submission.submitted:
        if e.track_id in missing_ids:
            status = EntryStatus.MISSING
        elif e.track_id in hidden_ids:
            status = EntryStatus.NOT_VISIBLE
        else:
            status = EntryStatus.QUEUED
        entries.append(EntryResult(track_id=e.track_id, title=e.title,
                                   track_number=e.track_number, status=status))
    return ReconciliationReport(
        album_id=album.id,
        album_name=album.display_name,
        submitted_count=submission.submitted_count,
        observed_count=submission.observed_count,
        verdict=submission.verdict,
        observation_delay=submission.observation_delay,
        created_at=datetime.now(timezone.utc),
        entries=entries,
        truncated=submission.truncated,
    )


def format_reconciliation_report(report: ReconciliationReport) -> str:
    """Render a report as plain text."""
    observed = f"{report.observed_count}+" if report.truncated else str(report.observed_count)
    lines = [
        f"Album: {report.album_name} ({report.album_id})",
        f"{report.submitted_count} songs added; {observed} songs actually in queue"
        f" - {report.verdict}",
    ]
    if report.observation_delay:
        lines.append(f"Queue read {report.observation_delay:g}s after play")
    if report.not_visible:
        lines.append(f"Queue read was capped; {len(report.not_visible)} later tracks not visible")
    for entry in report.missing:
        number = entry.track_number if entry.track_number is not None else "?"
        lines.append(f"  missing: #{number} {entry.title} ({entry.track_id})")
    return "\n".join(lines)


def save_reconciliation_report(report: ReconciliationReport, directory: str) -> str:
    """Write the report as JSON under ``directory`` and return the file path."""
    os.makedirs(directory, exist_ok=True)
    stamp = report.created_at.strftime('%Y%m%d_%H%M%S')
    path = os.path.join(directory, f"reconciliation_{report.album_id}_{stamp}.json")
    with open(path, 'w') as f:
        json.dump(report.to_json(), f, indent=2, ensure_ascii=False)
    return path
