from __future__ import annotations

import re
import uuid
from pathlib import Path
from typing import Optional


_SESSION_ID_RE = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-4[0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}$")


def new_session_id() -> str:
    return str(uuid.uuid4())


def normalize_session_id(session_id: Optional[str]) -> Optional[str]:
    """Return the canonical form of a cookie-carried session id, or None.

    Session ids are capability tokens: anything that is not a canonical
    UUID4 string is treated as "no session" rather than an error.
    """
    if not isinstance(session_id, str):
        return None
    session_id = session_id.strip()
    if not _SESSION_ID_RE.match(session_id):
        return None
    return str(uuid.UUID(session_id))


def has_parent_reference(url_path: str) -> bool:
    """True if the request path tries to climb out of its root."""
    return ".." in (url_path or "")


def safe_join(base_dir: Path, *parts: str) -> Path:
    """Join paths and ensure the result stays within base_dir.

    Raises ValueError on any attempt to escape base_dir (absolute parts,
    parent references, symlinks pointing outside).
    """
    base_dir = base_dir.resolve()
    candidate = base_dir
    for part in parts:
        candidate = candidate / part.lstrip("/\\")
    resolved = candidate.resolve()
    if resolved == base_dir:
        return resolved
    if base_dir not in resolved.parents:
        raise ValueError("Path traversal attempt")
    return resolved
