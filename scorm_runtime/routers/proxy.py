"""Content proxy router.

Serves extracted package files at ``/scorm-proxy/{package_id}/{path}`` on the
runtime's own origin. HTML documents are rewritten to include the API bridge
script; every other file is streamed as-is.
"""

import logging

import aiofiles
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse, HTMLResponse
from sqlalchemy.ext.asyncio import AsyncSession

from scorm_runtime.db.config import get_session
from scorm_runtime.repositories.package_repo import (
    PackageRepository,
    PackageNotFoundError,
)
from scorm_runtime.services.content_proxy import (
    CACHE_SECONDS,
    ContentAccessError,
    ContentNotFoundError,
    guess_mime_type,
    inject_api_bridge,
    resolve_package_file,
)
from scorm_runtime.utils.feature_flags import is_feature_enabled

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/scorm-proxy", tags=["Content Proxy"])


@router.get("/{package_id}/{file_path:path}", summary="Serve Package Files")
async def serve_package_file(
    package_id: int,
    file_path: str,
    db: AsyncSession = Depends(get_session),
):
    """
    Serve a file from an extracted SCORM package.

    Args:
        package_id: Package the file belongs to
        file_path: Path relative to the package's content root

    Raises:
        HTTPException: If package or file not found, or path escapes the root
    """
    try:
        package = await PackageRepository(db).get(package_id)
    except PackageNotFoundError:
        raise HTTPException(status_code=404, detail="SCORM package not found")

    try:
        resolved_path = resolve_package_file(package.content_root, file_path)
    except ContentAccessError:
        raise HTTPException(status_code=403, detail="Access denied")
    except ContentNotFoundError:
        logger.warning(f"File not found: {package_id}/{file_path}")
        raise HTTPException(status_code=404, detail="File not found")

    mime_type = guess_mime_type(resolved_path)
    headers = {"Cache-Control": f"public, max-age={CACHE_SECONDS}"}

    if mime_type == "text/html" and is_feature_enabled("api_bridge_injection"):
        async with aiofiles.open(resolved_path, "r", encoding="utf-8", errors="replace") as f:
            html_content = await f.read()
        return HTMLResponse(inject_api_bridge(html_content), headers=headers)

    return FileResponse(
        path=resolved_path,
        media_type=mime_type,
        headers=headers,
    )
