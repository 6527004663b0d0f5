"""Repository layer for learner sessions (attempts).

The uniqueness rules for sessions live in the database (see
``SessionRecord.__table_args__``); this layer turns a violated constraint into
``SessionConflictError`` so callers can reconcile instead of failing.
"""
from __future__ import annotations
from datetime import datetime
from typing import Optional, Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from scorm_runtime.models.records import (
    SessionRecord,
    NOT_STARTED,
    ACTIVE_STATUSES,
)


class SessionNotFoundError(Exception):
    """Raised when a session record could not be located."""


class SessionConflictError(Exception):
    """Raised when a session insert collides with an existing attempt."""


class SessionRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    # CREATE -----------------------------------------------------------------
    async def create(
        self, package_id: int, user_id: str, attempt: int
    ) -> SessionRecord:
        record = SessionRecord(
            package_id=package_id,
            user_id=user_id,
            attempt=attempt,
            status=NOT_STARTED,
            json_data={},
        )
        self.session.add(record)
        try:
            await self.session.commit()
        except IntegrityError as exc:
            await self.session.rollback()
            raise SessionConflictError(
                f"Session for package {package_id} / user {user_id} "
                f"attempt {attempt} collides with an existing session"
            ) from exc
        await self.session.refresh(record)
        return record

    # READ -------------------------------------------------------------------
    async def get(self, pk: int) -> SessionRecord:
        result = await self.session.execute(
            select(SessionRecord).where(SessionRecord.id == pk)
        )
        record = result.scalar_one_or_none()
        if not record:
            raise SessionNotFoundError
        return record

    async def latest_for_pair(
        self, package_id: int, user_id: str
    ) -> Optional[SessionRecord]:
        result = await self.session.execute(
            select(SessionRecord)
            .where(
                SessionRecord.package_id == package_id,
                SessionRecord.user_id == user_id,
            )
            .order_by(SessionRecord.attempt.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def active_for_pair(
        self, package_id: int, user_id: str
    ) -> Sequence[SessionRecord]:
        result = await self.session.execute(
            select(SessionRecord).where(
                SessionRecord.package_id == package_id,
                SessionRecord.user_id == user_id,
                SessionRecord.status.in_(ACTIVE_STATUSES),
            )
        )
        return result.scalars().all()

    async def list_for_package(
        self, package_id: int
    ) -> Sequence[SessionRecord]:
        result = await self.session.execute(
            select(SessionRecord)
            .where(SessionRecord.package_id == package_id)
            .order_by(SessionRecord.updated_at.desc(), SessionRecord.id.desc())
        )
        return result.scalars().all()

    # UPDATE -----------------------------------------------------------------
    async def save_state(
        self,
        pk: int,
        status: str,
        score: Optional[float],
        total_time: Optional[str],
        started_at: Optional[datetime],
        ended_at: Optional[datetime],
        data: dict,
    ) -> SessionRecord:
        record = await self.get(pk)
        # A terminal row is never moved back to an active status.
        if not record.is_terminal:
            record.status = status
            record.ended_at = ended_at
        record.score = score
        record.total_time = total_time
        record.started_at = started_at or record.started_at
        # Assign a fresh dict so the JSON column is flagged dirty.
        record.json_data = dict(data)
        record.updated_at = datetime.utcnow()
        await self.session.commit()
        await self.session.refresh(record)
        return record
