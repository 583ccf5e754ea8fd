from __future__ import annotations

import mimetypes
import os
from email.utils import formatdate
from pathlib import Path
from typing import Optional

from fastapi.responses import FileResponse, PlainTextResponse, Response

from .security import has_parent_reference, safe_join


INDEX_FILENAME = "index.html"

_CONTENT_TYPES = {
    ".js": "text/javascript",
    ".css": "text/css",
    ".html": "text/html",
}


class StaticFileError(Exception):
    def __init__(self, status_code: int, reason: str):
        super().__init__(reason)
        self.status_code = status_code
        self.reason = reason


def guess_content_type(filename: str) -> str:
    ext = Path(filename).suffix.lower()
    content_type = _CONTENT_TYPES.get(ext) or mimetypes.guess_type(filename)[0] or "text/plain"
    if content_type.startswith("text/"):
        content_type += "; charset=utf-8"
    return content_type


def http_date(timestamp: float) -> str:
    # RFC 1123, e.g. "Sun, 06 Nov 1994 08:49:37 GMT"
    return formatdate(int(timestamp), usegmt=True)


def resolve_static_file(static_root: Path, url_path: str) -> Path:
    """Map a request path onto a regular file below static_root.

    Raises StaticFileError(403) for traversal attempts and (404) when the
    target is missing or not a regular file.
    """
    if has_parent_reference(url_path):
        raise StaticFileError(403, f"illegal file name: {url_path}")
    relative = url_path.lstrip("/") or INDEX_FILENAME
    try:
        path = safe_join(static_root, relative)
    except ValueError:
        raise StaticFileError(403, f"illegal file name: {url_path}")
    if not path.is_file():
        raise StaticFileError(404, f"file {url_path} not found")
    return path


def serve_static(static_root: Path, url_path: str, if_modified_since: Optional[str] = None) -> Response:
    try:
        path = resolve_static_file(static_root, url_path)
    except StaticFileError as e:
        return PlainTextResponse(e.reason, status_code=e.status_code)

    stat_result = os.stat(path)
    last_modified = http_date(stat_result.st_mtime)
    if if_modified_since is not None and if_modified_since == last_modified:
        return Response(status_code=304, headers={"Last-Modified": last_modified})

    return FileResponse(
        path,
        stat_result=stat_result,
        media_type=guess_content_type(path.name),
        headers={"Last-Modified": last_modified},
    )
