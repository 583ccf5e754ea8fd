from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

from .sessions import SessionStore


logger = logging.getLogger(__name__)


class ExpiryReaper:
    """Periodically delete sessions that have been idle past the timeout.

    This is the only component that deletes sessions. Upload records are
    attached only once a transfer has fully completed, so any file reachable
    from an expired session is complete and safe to remove.
    """

    def __init__(self, store: SessionStore, interval_seconds: float):
        self.store = store
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def sweep(self, now: Optional[float] = None) -> int:
        """Delete expired sessions. Returns the number deleted."""
        deleted = 0
        for session in self.store.expired(now):
            logger.info("deleting expired session %s (upload=%s)", session.id, session.upload)
            self.store.delete(session.id)
            deleted += 1
        return deleted

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                deleted = self.sweep()
            except Exception:
                logger.exception("session sweep failed")
                continue
            if deleted:
                logger.debug("sweep removed %d session(s), %d left", deleted, len(self.store))

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


def remove_orphaned_uploads(uploads_dir: Path, store: SessionStore) -> int:
    """Delete files in the uploads directory that no live session references.

    Sessions are not persisted, so at startup every file left behind by a
    previous process is an orphan.
    """
    if not uploads_dir.exists():
        return 0
    live = {p.resolve() for p in store.live_paths()}
    removed = 0
    for child in uploads_dir.iterdir():
        if not child.is_file() or child.resolve() in live:
            continue
        if store.discard_file(child):
            removed += 1
    if removed:
        logger.info("removed %d orphaned upload(s) from %s", removed, uploads_dir)
    return removed
