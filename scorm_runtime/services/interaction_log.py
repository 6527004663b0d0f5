"""
Interaction Log

Append-only record of every SetValue the content performs, kept purely as a
forensic trace. The log stores what the content actually sent, whether or
not the lifecycle manager could interpret it.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from scorm_runtime.models.records import InteractionRecord
from scorm_runtime.repositories.interaction_repo import InteractionRepository

DEFAULT_LIMIT = 50
MAX_LIMIT = 500


class InteractionLog:
    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def append(
        self,
        session_id: int,
        element: str,
        value: str,
        timestamp: Optional[datetime] = None,
    ) -> InteractionRecord:
        async with self._session_factory() as db:
            return await InteractionRepository(db).append(
                session_id, element, value, timestamp
            )

    async def most_recent(
        self, session_id: int, limit: int = DEFAULT_LIMIT
    ) -> List[InteractionRecord]:
        """Newest first, capped at ``MAX_LIMIT``."""
        limit = max(1, min(limit, MAX_LIMIT))
        async with self._session_factory() as db:
            records = await InteractionRepository(db).most_recent(
                session_id, limit
            )
        return list(records)
