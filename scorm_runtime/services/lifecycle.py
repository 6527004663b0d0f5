"""
Session Lifecycle Manager

Owns the attempt/session state machine for SCORM launches:

    not_started --start--> in_progress --completed/passed--> completed
                                       --failed-----------> failed

Terminal states are absorbing. A learner who leaves without a terminal
signal keeps an ``in_progress`` session that is resumed on the next launch;
a new attempt is only opened once the latest one is terminal.

Status, score and time writes are applied to an in-memory mirror of the
session (``SessionState``) held for as long as a launch is attached to it.
``commit`` is what makes the mirror durable.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from scorm_runtime.models.records import (
    SessionRecord,
    NOT_STARTED,
    IN_PROGRESS,
    COMPLETED,
    FAILED,
    TERMINAL_STATUSES,
)
from scorm_runtime.repositories.session_repo import (
    SessionRepository,
    SessionConflictError,
    SessionNotFoundError,
)

logger = logging.getLogger(__name__)

# SCORM-reported status vocabulary -> canonical terminal status.
# Anything absent from this table ("incomplete", "browsed",
# "not attempted", "unknown", vendor strings) causes no transition.
STATUS_TRANSITIONS = {
    "completed": COMPLETED,
    "passed": COMPLETED,
    "failed": FAILED,
}

MAX_RESOLVE_ATTEMPTS = 5


@dataclass
class SessionState:
    """In-memory mirror of a ``SessionRecord``."""
    id: int
    package_id: int
    user_id: str
    attempt: int
    status: str = NOT_STARTED
    score: Optional[float] = None
    total_time: Optional[str] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    data: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_record(cls, record: SessionRecord) -> "SessionState":
        return cls(
            id=record.id,
            package_id=record.package_id,
            user_id=record.user_id,
            attempt=record.attempt,
            status=record.status,
            score=record.score,
            total_time=record.total_time,
            started_at=record.started_at,
            ended_at=record.ended_at,
            data=dict(record.json_data or {}),
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def snapshot(self) -> "SessionState":
        """Detached copy, safe to hand to a deferred writer."""
        return SessionState(
            id=self.id,
            package_id=self.package_id,
            user_id=self.user_id,
            attempt=self.attempt,
            status=self.status,
            score=self.score,
            total_time=self.total_time,
            started_at=self.started_at,
            ended_at=self.ended_at,
            data=dict(self.data),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "packageId": self.package_id,
            "userId": self.user_id,
            "attempt": self.attempt,
            "status": self.status,
            "score": self.score,
            "totalTime": self.total_time,
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "endedAt": self.ended_at.isoformat() if self.ended_at else None,
        }


def parse_score(raw: str) -> Optional[float]:
    """Parse a CMI score string; ``None`` when it is not a finite number."""
    try:
        value = float(str(raw).strip())
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value):
        return None
    return value


class SessionLifecycleManager:
    """Creates, resumes and mutates learner sessions."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory
        self._live: Dict[int, SessionState] = {}
        self._refs: Dict[int, int] = {}

    # Resolution -------------------------------------------------------------
    async def resolve_session(
        self, package_id: int, user_id: str
    ) -> SessionState:
        """Return the resumable session for the pair, opening a new attempt
        when there is none or the latest one is terminal.

        Concurrent callers race on the database's unique indexes; the loser
        re-reads and resumes the winner's session.
        """
        for _ in range(MAX_RESOLVE_ATTEMPTS):
            async with self._session_factory() as db:
                repo = SessionRepository(db)
                latest = await repo.latest_for_pair(package_id, user_id)
                if latest is not None and not latest.is_terminal:
                    live = self._live.get(latest.id)
                    if live is None or not live.is_terminal:
                        return self._mirror_for(latest)
                    # Finished in memory but its commit is still queued
                    await self.persist(live.snapshot())
                    continue
                attempt = latest.attempt + 1 if latest else 1
                try:
                    record = await repo.create(package_id, user_id, attempt)
                except SessionConflictError:
                    logger.info(
                        "Concurrent session creation for package %s user %s "
                        "(attempt %s); re-resolving",
                        package_id, user_id, attempt,
                    )
                    continue
                logger.info(
                    "Opened attempt %s for package %s user %s (session %s)",
                    attempt, package_id, user_id, record.id,
                )
                return SessionState.from_record(record)
        raise SessionConflictError(
            f"Could not resolve a session for package {package_id} "
            f"user {user_id}"
        )

    def _mirror_for(self, record: SessionRecord) -> SessionState:
        live = self._live.get(record.id)
        if live is not None:
            return live
        return SessionState.from_record(record)

    # Live mirror registry ---------------------------------------------------
    def attach(self, state: SessionState) -> SessionState:
        """Register ``state`` as the live mirror; launches on the same
        session share one mirror."""
        live = self._live.setdefault(state.id, state)
        self._refs[state.id] = self._refs.get(state.id, 0) + 1
        return live

    def release(self, session_id: int) -> None:
        remaining = self._refs.get(session_id, 0) - 1
        if remaining > 0:
            self._refs[session_id] = remaining
            return
        self._refs.pop(session_id, None)
        self._live.pop(session_id, None)

    def state(self, session_id: int) -> SessionState:
        try:
            return self._live[session_id]
        except KeyError:
            raise SessionNotFoundError(
                f"Session {session_id} has no live launch"
            ) from None

    def is_live(self, session_id: int) -> bool:
        return session_id in self._live

    # Transitions ------------------------------------------------------------
    async def begin_attempt(self, session_id: int) -> SessionState:
        """not_started -> in_progress. No-op for any other status."""
        state = self._live.get(session_id)
        if state is None:
            async with self._session_factory() as db:
                state = SessionState.from_record(
                    await SessionRepository(db).get(session_id)
                )
        if self._start(state):
            await self.persist(state.snapshot())
        return state

    def _start(self, state: SessionState) -> bool:
        if state.status != NOT_STARTED:
            return False
        state.status = IN_PROGRESS
        if state.started_at is None:
            state.started_at = datetime.utcnow()
        logger.info("Session %s started", state.id)
        return True

    def record_status(self, session_id: int, raw_status: str) -> bool:
        """Map a content-reported status onto the state machine.

        Returns True when the canonical status changed.
        """
        state = self.state(session_id)
        if state.is_terminal:
            logger.debug(
                "Session %s already %s; ignoring status %r",
                session_id, state.status, raw_status,
            )
            return False
        started = self._start(state)
        target = STATUS_TRANSITIONS.get(raw_status)
        if target is None:
            return started
        state.status = target
        state.ended_at = datetime.utcnow()
        logger.info("Session %s -> %s", session_id, target)
        return True

    def record_score(self, session_id: int, raw_score: str) -> bool:
        """Returns False (prior score kept) when ``raw_score`` is not numeric."""
        state = self.state(session_id)
        value = parse_score(raw_score)
        if value is None:
            logger.warning(
                "Session %s: discarding unparsable score %r",
                session_id, raw_score,
            )
            return False
        state.score = value
        return True

    def record_time(self, session_id: int, raw_time: str) -> bool:
        """Store the raw session time; no duration arithmetic here."""
        state = self.state(session_id)
        state.total_time = raw_time
        return True

    def write_element(self, session_id: int, element: str, value: str) -> None:
        self.state(session_id).data[element] = value

    # Persistence ------------------------------------------------------------
    def snapshot(self, session_id: int) -> SessionState:
        return self.state(session_id).snapshot()

    async def commit(self, session_id: int) -> SessionRecord:
        return await self.persist(self.snapshot(session_id))

    async def persist(self, snapshot: SessionState) -> SessionRecord:
        async with self._session_factory() as db:
            record = await SessionRepository(db).save_state(
                snapshot.id,
                status=snapshot.status,
                score=snapshot.score,
                total_time=snapshot.total_time,
                started_at=snapshot.started_at,
                ended_at=snapshot.ended_at,
                data=snapshot.data,
            )
        logger.debug(
            "Session %s committed (status=%s, %d elements)",
            snapshot.id, snapshot.status, len(snapshot.data),
        )
        return record

    # Read side ------------------------------------------------------------
    async def get_session(
        self, package_id: int, user_id: str
    ) -> Optional[SessionRecord]:
        async with self._session_factory() as db:
            return await SessionRepository(db).latest_for_pair(
                package_id, user_id
            )
