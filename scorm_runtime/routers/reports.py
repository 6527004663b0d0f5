"""Reporting router: read-only session queries and package reports."""
from __future__ import annotations
from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from scorm_runtime.db.config import get_session
from scorm_runtime.repositories.package_repo import (
    PackageRepository,
    PackageNotFoundError,
)
from scorm_runtime.repositories.session_repo import SessionRepository
from scorm_runtime.services.interaction_log import DEFAULT_LIMIT, MAX_LIMIT
from scorm_runtime.services.launches import LaunchRegistry, get_launch_registry
from scorm_runtime.services.reporting import (
    ReportingAggregator,
    rows_to_csv,
    summarize,
)

router = APIRouter(prefix="/scorm", tags=["Reports"])


async def _get_package(db: AsyncSession, package_id: int):
    try:
        return await PackageRepository(db).get(package_id)
    except PackageNotFoundError:
        raise HTTPException(status_code=404, detail="SCORM package not found")


@router.get("/packages/{package_id}/session")
async def get_learner_session(
    package_id: int,
    userId: str = Query(..., min_length=1, max_length=64),
    db: AsyncSession = Depends(get_session),
):
    """Most recent session of one learner for the package."""
    await _get_package(db, package_id)
    record = await SessionRepository(db).latest_for_pair(package_id, userId)
    if record is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return record.to_dict()


@router.get("/packages/{package_id}/sessions")
async def list_package_sessions(
    package_id: int, db: AsyncSession = Depends(get_session)
) -> List[dict]:
    await _get_package(db, package_id)
    records = await ReportingAggregator(db).list_sessions(package_id)
    return [r.to_dict() for r in records]


@router.get("/sessions/{session_id}/interactions")
async def list_interactions(
    session_id: int,
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
    registry: LaunchRegistry = Depends(get_launch_registry),
) -> List[dict]:
    """Most recent interactions of a session, newest first."""
    records = await registry.interaction_log.most_recent(session_id, limit)
    return [r.to_dict() for r in records]


@router.get("/packages/{package_id}/report")
async def package_report(
    package_id: int, db: AsyncSession = Depends(get_session)
):
    package = await _get_package(db, package_id)
    rows = await ReportingAggregator(db).session_rows(package_id)
    return {
        "package": package.to_dict(),
        "summary": summarize(rows).to_dict(),
        "sessions": [r.to_dict() for r in rows],
    }


@router.get("/packages/{package_id}/report.csv")
async def package_report_csv(
    package_id: int, db: AsyncSession = Depends(get_session)
):
    package = await _get_package(db, package_id)
    rows = await ReportingAggregator(db).session_rows(package_id)
    filename = (
        f"scorm-report-{package.id}-{datetime.utcnow().date().isoformat()}.csv"
    )
    return Response(
        content=rows_to_csv(rows),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
