"""
Content Proxy helpers

Serves extracted package files under the runtime's own origin so the content
frame can reach the API objects on its parent window. HTML documents get a
small bridge script that copies ``parent.API`` / ``parent.API_1484_11`` into
the frame for content that only looks at its own window.
"""

import logging
import os
from pathlib import Path

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

PROXY_PREFIX = "/api/v1/scorm-proxy"

CONTENT_DIR = Path(
    os.getenv(
        "SCORM_CONTENT_DIR",
        str(Path(__file__).parent.parent.parent / "scorm_content"),
    )
)
CACHE_SECONDS = int(os.getenv("SCORM_PROXY_CACHE_SECONDS", "3600"))

BRIDGE_SCRIPT_ID = "scorm-api-bridge"
BRIDGE_SCRIPT = """
(function() {
  if (window.parent && window.parent !== window) {
    if (window.parent.API && !window.API) {
      window.API = window.parent.API;
    }
    if (window.parent.API_1484_11 && !window.API_1484_11) {
      window.API_1484_11 = window.parent.API_1484_11;
    }
  }
})();
"""

MIME_TYPES = {
    ".html": "text/html",
    ".htm": "text/html",
    ".js": "application/javascript",
    ".css": "text/css",
    ".json": "application/json",
    ".xml": "application/xml",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
    ".ico": "image/x-icon",
    ".pdf": "application/pdf",
    ".zip": "application/zip",
    ".txt": "text/plain",
    ".csv": "text/csv",
    ".mp4": "video/mp4",
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".swf": "application/x-shockwave-flash",
}


class ContentAccessError(Exception):
    """Raised when a requested path escapes the package's content root."""


class ContentNotFoundError(Exception):
    """Raised when a requested package file does not exist."""


def proxy_url(package_id: int, relative_path: str) -> str:
    """Same-origin URL of a package file."""
    return f"{PROXY_PREFIX}/{package_id}/{relative_path.lstrip('/')}"


def package_root(content_root: str) -> Path:
    return (CONTENT_DIR / content_root).resolve()


def resolve_package_file(content_root: str, relative_path: str) -> Path:
    """Map a request path onto a file inside the package's content root."""
    root = package_root(content_root)
    resolved = (root / relative_path).resolve()
    if resolved != root and root not in resolved.parents:
        logger.warning(
            "Path traversal attempt detected: %s (root %s)",
            relative_path, content_root,
        )
        raise ContentAccessError(relative_path)
    if not resolved.is_file():
        raise ContentNotFoundError(relative_path)
    return resolved


def guess_mime_type(path: Path) -> str:
    return MIME_TYPES.get(path.suffix.lower(), "application/octet-stream")


def inject_api_bridge(html_content: str) -> str:
    """Insert the bridge script before ``</head>``, else at the start of
    ``<body>``, else in front of the document. Idempotent."""
    soup = BeautifulSoup(html_content, "html.parser")
    if soup.find(id=BRIDGE_SCRIPT_ID) is not None:
        return html_content

    script = soup.new_tag("script", id=BRIDGE_SCRIPT_ID)
    script.string = BRIDGE_SCRIPT
    if soup.head is not None:
        soup.head.append(script)
    elif soup.body is not None:
        soup.body.insert(0, script)
    else:
        return str(script) + "\n" + html_content
    return str(soup)
