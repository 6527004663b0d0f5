"""Packages router: registration, manifest resolution and launch.

Archive upload and extraction happen elsewhere; a package is registered here
by pointing at its already extracted content root.
"""
from __future__ import annotations
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from scorm_runtime.db.config import get_session
from scorm_runtime.repositories.package_repo import (
    PackageRepository,
    PackageNotFoundError,
)
from scorm_runtime.services.launches import (
    LaunchRegistry,
    PackageNotLaunchableError,
    get_launch_registry,
)
from scorm_runtime.services.manifest import (
    ManifestError,
    PackageAlreadyResolvedError,
    resolve_package,
)

router = APIRouter(prefix="/scorm/packages", tags=["Packages"])


class PackageCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    contentRoot: str = Field(..., min_length=1, max_length=500)
    version: str = Field("1.2", pattern=r"^(1\.2|2004)$")
    entryPath: Optional[str] = Field(None, min_length=1, max_length=500)


class PackageOut(BaseModel):
    id: int
    title: str
    version: str
    entryPath: Optional[str]
    contentRoot: str
    launchable: bool
    createdAt: str
    updatedAt: str


class ManifestOut(BaseModel):
    title: str
    version: str
    entryPath: str
    organization: str


# Helpers ------------------------------------------------------------------


async def _get_repo(
    session: AsyncSession = Depends(get_session),
) -> PackageRepository:
    return PackageRepository(session)


# Routes -------------------------------------------------------------------


@router.post(
    "",
    response_model=PackageOut,
    status_code=status.HTTP_201_CREATED,
)
async def create_package(
    payload: PackageCreate, repo: PackageRepository = Depends(_get_repo)
):
    record = await repo.create(
        title=payload.title,
        content_root=payload.contentRoot,
        version=payload.version,
        entry_path=payload.entryPath,
    )
    return record.to_dict()


@router.get("", response_model=List[PackageOut])
async def list_packages(repo: PackageRepository = Depends(_get_repo)):
    packages = await repo.list()
    return [p.to_dict() for p in packages]


@router.get("/{package_id}", response_model=PackageOut)
async def get_package(
    package_id: int, repo: PackageRepository = Depends(_get_repo)
):
    try:
        package = await repo.get(package_id)
    except PackageNotFoundError:
        raise HTTPException(status_code=404, detail="SCORM package not found")
    return package.to_dict()


@router.post("/{package_id}/resolve", response_model=ManifestOut)
async def resolve_manifest(
    package_id: int, repo: PackageRepository = Depends(_get_repo)
):
    try:
        package = await repo.get(package_id)
        manifest = await resolve_package(repo, package)
    except PackageNotFoundError:
        raise HTTPException(status_code=404, detail="SCORM package not found")
    except PackageAlreadyResolvedError:
        raise HTTPException(status_code=409, detail="package already resolved")
    except ManifestError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return manifest.to_dict()


@router.post("/{package_id}/launch", status_code=status.HTTP_201_CREATED)
async def launch_package(
    package_id: int,
    user_id: str = Header(..., alias="X-User-Id", min_length=1, max_length=64),
    repo: PackageRepository = Depends(_get_repo),
    registry: LaunchRegistry = Depends(get_launch_registry),
):
    """Resolve (or resume) the learner's session and open a launch."""
    try:
        package = await repo.get(package_id)
        launch = await registry.open(package, user_id)
    except PackageNotFoundError:
        raise HTTPException(status_code=404, detail="SCORM package not found")
    except PackageNotLaunchableError:
        raise HTTPException(status_code=409, detail="package not launchable")
    return launch.to_dict()
