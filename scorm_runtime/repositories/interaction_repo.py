"""Repository layer for the append-only interaction trace."""
from __future__ import annotations
from datetime import datetime
from typing import Dict, Iterable, Optional, Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

from scorm_runtime.models.records import InteractionRecord


class InteractionRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(
        self,
        session_id: int,
        element: str,
        value: str,
        timestamp: Optional[datetime] = None,
    ) -> InteractionRecord:
        record = InteractionRecord(
            session_id=session_id,
            element=element,
            value=value,
            timestamp=timestamp or datetime.utcnow(),
        )
        self.session.add(record)
        await self.session.commit()
        await self.session.refresh(record)
        return record

    async def most_recent(
        self, session_id: int, limit: int
    ) -> Sequence[InteractionRecord]:
        result = await self.session.execute(
            select(InteractionRecord)
            .where(InteractionRecord.session_id == session_id)
            .order_by(
                InteractionRecord.timestamp.desc(),
                InteractionRecord.id.desc(),
            )
            .limit(limit)
        )
        return result.scalars().all()

    async def last_timestamps(
        self, session_ids: Iterable[int]
    ) -> Dict[int, datetime]:
        ids = list(session_ids)
        if not ids:
            return {}
        result = await self.session.execute(
            select(
                InteractionRecord.session_id,
                func.max(InteractionRecord.timestamp),
            )
            .where(InteractionRecord.session_id.in_(ids))
            .group_by(InteractionRecord.session_id)
        )
        return {sid: ts for sid, ts in result.all()}
