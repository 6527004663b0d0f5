"""
Reporting Aggregator

Read-only reduction over the persisted sessions of a package: summary
statistics plus one row per session for tabular display and CSV export.
Nothing is cached; every call recomputes from the database.

Session time is stored as the raw string the content reported (SCORM 1.2
``HH:MM:SS.SS`` or SCORM 2004 ISO-8601 ``PT1H2M3.4S``). Duration arithmetic
happens here and only here.
"""

import csv
import io
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from scorm_runtime.models.records import (
    SessionRecord,
    COMPLETED,
    IN_PROGRESS,
)
from scorm_runtime.repositories.interaction_repo import InteractionRepository
from scorm_runtime.repositories.session_repo import SessionRepository

logger = logging.getLogger(__name__)

_CMI_TIMESPAN = re.compile(r"^(\d{1,4}):([0-5]?\d):([0-5]?\d(?:\.\d{1,2})?)$")
_ISO_DURATION = re.compile(
    r"^P(?:(?P<days>\d+(?:\.\d+)?)D)?"
    r"(?:T(?:(?P<hours>\d+(?:\.\d+)?)H)?"
    r"(?:(?P<minutes>\d+(?:\.\d+)?)M)?"
    r"(?:(?P<seconds>\d+(?:\.\d+)?)S)?)?$"
)

CSV_HEADERS = [
    "User",
    "Attempt",
    "Status",
    "Score (%)",
    "Total Time",
    "Started At",
    "Ended At",
    "Last Interaction",
]


def parse_duration_seconds(raw: Optional[str]) -> Optional[float]:
    """Seconds for a SCORM 1.2 or 2004 time value; None if unparsable."""
    if not raw:
        return None
    value = raw.strip()
    match = _CMI_TIMESPAN.match(value)
    if match:
        hours, minutes, seconds = match.groups()
        return int(hours) * 3600 + int(minutes) * 60 + float(seconds)
    match = _ISO_DURATION.match(value)
    if match and value not in ("P", "PT"):
        parts = {k: float(v) for k, v in match.groupdict().items() if v}
        return (
            parts.get("days", 0.0) * 86400
            + parts.get("hours", 0.0) * 3600
            + parts.get("minutes", 0.0) * 60
            + parts.get("seconds", 0.0)
        )
    return None


@dataclass
class SessionRow:
    session_id: int
    user_id: str
    attempt: int
    status: str
    score: Optional[float]
    total_time: Optional[str]
    time_seconds: Optional[float]
    started_at: Optional[datetime]
    ended_at: Optional[datetime]
    last_interaction: Optional[datetime]

    def to_dict(self) -> dict:
        return {
            "sessionId": self.session_id,
            "userId": self.user_id,
            "attempt": self.attempt,
            "status": self.status,
            "score": self.score,
            "totalTime": self.total_time,
            "timeSeconds": self.time_seconds,
            "startedAt": _iso(self.started_at),
            "endedAt": _iso(self.ended_at),
            "lastInteraction": _iso(self.last_interaction),
        }


@dataclass
class PackageSummary:
    session_count: int
    completed_count: int
    in_progress_count: int
    completion_rate: float
    avg_score: Optional[float]
    avg_time: Optional[float]

    def to_dict(self) -> dict:
        return {
            "sessionCount": self.session_count,
            "completedCount": self.completed_count,
            "inProgressCount": self.in_progress_count,
            "completionRate": self.completion_rate,
            "avgScore": self.avg_score,
            "avgTime": self.avg_time,
        }


def summarize(rows: Sequence[SessionRow]) -> PackageSummary:
    session_count = len(rows)
    completed = sum(1 for r in rows if r.status == COMPLETED)
    in_progress = sum(1 for r in rows if r.status == IN_PROGRESS)
    scores = [r.score for r in rows if r.score is not None]
    times = [r.time_seconds for r in rows if r.time_seconds is not None]
    return PackageSummary(
        session_count=session_count,
        completed_count=completed,
        in_progress_count=in_progress,
        completion_rate=completed / session_count if session_count else 0.0,
        avg_score=sum(scores) / len(scores) if scores else None,
        avg_time=sum(times) / len(times) if times else None,
    )


class ReportingAggregator:
    def __init__(self, session: AsyncSession):
        self.sessions = SessionRepository(session)
        self.interactions = InteractionRepository(session)

    async def list_sessions(self, package_id: int) -> Sequence[SessionRecord]:
        return await self.sessions.list_for_package(package_id)

    async def session_rows(self, package_id: int) -> List[SessionRow]:
        records = await self.list_sessions(package_id)
        last_seen: Dict[int, datetime] = await self.interactions.last_timestamps(
            r.id for r in records
        )
        return [
            SessionRow(
                session_id=r.id,
                user_id=r.user_id,
                attempt=r.attempt,
                status=r.status,
                score=r.score,
                total_time=r.total_time,
                time_seconds=parse_duration_seconds(r.total_time),
                started_at=r.started_at,
                ended_at=r.ended_at,
                last_interaction=last_seen.get(r.id) or r.updated_at,
            )
            for r in records
        ]

    async def aggregate(self, package_id: int) -> PackageSummary:
        return summarize(await self.session_rows(package_id))


def rows_to_csv(rows: Sequence[SessionRow]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(CSV_HEADERS)
    for row in rows:
        writer.writerow([
            row.user_id,
            row.attempt,
            row.status,
            "" if row.score is None else row.score,
            row.total_time or "",
            _iso(row.started_at) or "",
            _iso(row.ended_at) or "",
            _iso(row.last_interaction) or "",
        ])
    return buffer.getvalue()


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None
