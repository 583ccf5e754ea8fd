"""In-memory session store.

Sessions live only in this process. The store is the single source of
truth for whether a session exists: callers that suspend (await) between
two operations on the same session must look it up again afterwards, since
the reaper may have deleted it in between.
"""
from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Union

from .security import new_session_id, normalize_session_id


logger = logging.getLogger(__name__)


class Progress(enum.Enum):
    # Bytes are arriving but the total size is unknown.
    INDETERMINATE = "indeterminate"


ProgressValue = Union[None, float, Progress]

PROGRESS_DONE = 1.0


@dataclass(frozen=True)
class UploadRecord:
    path: Path
    original_name: str
    mime_type: str
    size: int

    def describe(self) -> dict:
        """Client-facing view. Never includes the server-side path."""
        return {"name": self.original_name, "type": self.mime_type, "size": self.size}


@dataclass
class Session:
    id: str
    last_used: float
    progress: ProgressValue = None
    upload: Optional[UploadRecord] = None

    def progress_fraction(self) -> Optional[float]:
        if isinstance(self.progress, float):
            return self.progress
        return None


class SessionStore:
    def __init__(self, expiry_seconds: float, clock: Callable[[], float] = time.time):
        self.expiry_seconds = expiry_seconds
        self.clock = clock
        self._sessions: Dict[str, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __iter__(self) -> Iterator[Session]:
        return iter(list(self._sessions.values()))

    def ids(self) -> List[str]:
        return list(self._sessions)

    def create(self) -> Session:
        sid = new_session_id()
        while sid in self._sessions:
            sid = new_session_id()
        session = Session(id=sid, last_used=self.clock())
        self._sessions[sid] = session
        logger.info("new session: %s", sid)
        return session

    def resolve(self, cookie_value: Optional[str]) -> Optional[Session]:
        """Look up the session named by a cookie and mark it as used."""
        sid = normalize_session_id(cookie_value)
        if sid is None:
            return None
        session = self._sessions.get(sid)
        if session is not None:
            session.last_used = self.clock()
        return session

    def get(self, session_id: str) -> Optional[Session]:
        """Look up without refreshing the idle clock."""
        return self._sessions.get(session_id)

    def delete(self, session_id: str) -> Optional[Session]:
        """Remove a session and its uploaded file. Deleting twice is a no-op."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return None
        if session.upload is not None:
            self.discard_file(session.upload.path)
        return session

    def is_expired(self, session: Session, now: Optional[float] = None) -> bool:
        now = self.clock() if now is None else now
        return (now - session.last_used) > self.expiry_seconds

    def expired(self, now: Optional[float] = None) -> List[Session]:
        now = self.clock() if now is None else now
        return [s for s in self._sessions.values() if self.is_expired(s, now)]

    def live_paths(self) -> List[Path]:
        return [s.upload.path for s in self._sessions.values() if s.upload is not None]

    @staticmethod
    def discard_file(path: Path) -> bool:
        """Best-effort removal of an upload file. Returns True if it was removed."""
        try:
            Path(path).unlink()
        except FileNotFoundError:
            logger.warning("upload file already gone: %s", path)
            return False
        except OSError:
            logger.warning("could not remove upload file %s", path, exc_info=True)
            return False
        return True
