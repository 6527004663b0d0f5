"""Repository layer for SCORM package persistence.

Packages are created on registration and mutated once, when the manifest
resolver caches its output on the record.
"""
from __future__ import annotations
from typing import Optional, Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from scorm_runtime.models.records import PackageRecord


class PackageNotFoundError(Exception):
    """Raised when a package record could not be located."""


class PackageRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    # CREATE -----------------------------------------------------------------
    async def create(
        self,
        title: str,
        content_root: str,
        version: str = "1.2",
        entry_path: Optional[str] = None,
    ) -> PackageRecord:
        record = PackageRecord(
            title=title,
            content_root=content_root,
            version=version,
            entry_path=entry_path,
        )
        self.session.add(record)
        await self.session.commit()
        await self.session.refresh(record)
        return record

    # READ -------------------------------------------------------------------
    async def list(self) -> Sequence[PackageRecord]:
        result = await self.session.execute(
            select(PackageRecord).order_by(PackageRecord.id)
        )
        return result.scalars().all()

    async def get(self, pk: int) -> PackageRecord:
        result = await self.session.execute(
            select(PackageRecord).where(PackageRecord.id == pk)
        )
        record = result.scalar_one_or_none()
        if not record:
            raise PackageNotFoundError
        return record

    # UPDATE -----------------------------------------------------------------
    async def store_manifest(
        self,
        pk: int,
        title: str,
        version: str,
        entry_path: str,
    ) -> PackageRecord:
        record = await self.get(pk)
        record.title = title
        record.version = version
        record.entry_path = entry_path
        await self.session.commit()
        await self.session.refresh(record)
        return record
