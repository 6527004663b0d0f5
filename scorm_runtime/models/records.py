"""SQLAlchemy ORM models for the SCORM runtime's persisted entities.

Separate from the Pydantic DTOs in schemas.py which describe the HTTP
surface. This layer manages persistence concerns only.
"""
from __future__ import annotations
from datetime import datetime
from typing import Optional
from sqlalchemy.orm import Mapped, mapped_column, declarative_base
from sqlalchemy import (
    String,
    DateTime,
    JSON,
    Float,
    Text,
    ForeignKey,
    Index,
    UniqueConstraint,
    text,
)

Base = declarative_base()

# Session statuses
NOT_STARTED = "not_started"
IN_PROGRESS = "in_progress"
COMPLETED = "completed"
FAILED = "failed"

ACTIVE_STATUSES = (NOT_STARTED, IN_PROGRESS)
TERMINAL_STATUSES = (COMPLETED, FAILED)

_ACTIVE_PREDICATE = text("status IN ('not_started', 'in_progress')")


class PackageRecord(Base):
    """An uploaded SCORM package as seen by the runtime.

    ``entry_path`` stays NULL until the manifest has been resolved; such a
    package is not launchable.
    """

    __tablename__ = "scorm_packages"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(200))
    version: Mapped[str] = mapped_column(String(8), default="1.2")
    entry_path: Mapped[Optional[str]] = mapped_column(
        String(500), nullable=True
    )
    content_root: Mapped[str] = mapped_column(String(500))
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    @property
    def launchable(self) -> bool:
        return bool(self.entry_path)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "version": self.version,
            "entryPath": self.entry_path,
            "contentRoot": self.content_root,
            "launchable": self.launchable,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


class SessionRecord(Base):
    """One learner attempt at a package.

    The partial unique index keeps at most one non-terminal session per
    (package, user); the attempt constraint keeps attempt numbers unique.
    """

    __tablename__ = "scorm_sessions"
    __table_args__ = (
        UniqueConstraint(
            "package_id", "user_id", "attempt",
            name="uq_scorm_sessions_attempt",
        ),
        Index(
            "uq_scorm_sessions_active_pair",
            "package_id",
            "user_id",
            unique=True,
            sqlite_where=_ACTIVE_PREDICATE,
            postgresql_where=_ACTIVE_PREDICATE,
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    package_id: Mapped[int] = mapped_column(
        ForeignKey("scorm_packages.id", ondelete="CASCADE"), index=True
    )
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    attempt: Mapped[int] = mapped_column()
    status: Mapped[str] = mapped_column(String(32), default=NOT_STARTED)
    score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    total_time: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True
    )
    ended_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True
    )
    json_data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "packageId": self.package_id,
            "userId": self.user_id,
            "attempt": self.attempt,
            "status": self.status,
            "score": self.score,
            "totalTime": self.total_time,
            "startedAt": _iso(self.started_at),
            "endedAt": _iso(self.ended_at),
            "data": self.json_data or {},
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


class InteractionRecord(Base):
    """Raw trace of a single SetValue call. Never updated or deleted."""

    __tablename__ = "scorm_interactions"
    __table_args__ = (
        Index(
            "ix_scorm_interactions_session_ts", "session_id", "timestamp"
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    session_id: Mapped[int] = mapped_column(
        ForeignKey("scorm_sessions.id", ondelete="CASCADE")
    )
    element: Mapped[str] = mapped_column(String(255))
    value: Mapped[str] = mapped_column(Text, default="")
    timestamp: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "element": self.element,
            "value": self.value,
            "timestamp": self.timestamp.isoformat(),
        }


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None
