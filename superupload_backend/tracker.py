"""Upload progress bookkeeping and the upload receive path.

The multipart decoding itself is Starlette's ``MultiPartParser``, backed by
python-multipart. Depending on the Starlette release, a parse error surfaces
either as ``MultiPartException`` or as python-multipart's own error. This
module only feeds the parser a byte-counting stream (for progress) and moves
the decoded file part into the uploads directory.
"""
from __future__ import annotations

import logging
import re
import uuid
from pathlib import Path
from typing import AsyncIterator, Optional

from python_multipart.exceptions import FormParserError
from starlette.datastructures import UploadFile
from starlette.formparsers import MultiPartException, MultiPartParser
from starlette.requests import ClientDisconnect, Request

from .config import UPLOAD_FIELD
from .sessions import PROGRESS_DONE, Progress, Session, SessionStore, UploadRecord


logger = logging.getLogger(__name__)

COPY_CHUNK_BYTES = 64 * 1024

# Streamed progress stops short of PROGRESS_DONE; only a completed,
# attached upload reports done.
MAX_STREAMING_PROGRESS = 0.99

_SAFE_EXT_RE = re.compile(r"^\.[A-Za-z0-9]{1,16}$")


class UploadError(Exception):
    """A transfer failed. The partial file has already been removed."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class UploadTracker:
    """Tracks one in-flight upload for one session.

    Holds only the session id: the session is looked up in the store on every
    step because the reaper may delete it while the transfer is suspended.
    """

    def __init__(self, store: SessionStore, session_id: str):
        self.store = store
        self.session_id = session_id

    def _session(self) -> Optional[Session]:
        return self.store.get(self.session_id)

    def begin(self) -> None:
        session = self._session()
        if session is not None:
            session.progress = None

    def update(self, bytes_received: int, bytes_expected: Optional[int]) -> None:
        session = self._session()
        if session is None:
            return
        if not bytes_expected or bytes_expected <= 0:
            session.progress = Progress.INDETERMINATE
            return
        fraction = max(0.0, min(bytes_received / bytes_expected, MAX_STREAMING_PROGRESS))
        current = session.progress
        if isinstance(current, float) and current > fraction:
            return
        session.progress = fraction

    def complete(self, record: UploadRecord) -> Optional[Session]:
        """Attach a fully received file to the session.

        Runs without suspending, so resolve, supersede and attach happen as one
        step with respect to the reaper. Returns None, after deleting the file,
        when the session expired during the transfer. The session is never
        recreated here.
        """
        session = self._session()
        if session is None:
            logger.info("session %s expired during upload, discarding %s", self.session_id, record.path)
            self.store.discard_file(record.path)
            return None
        previous = session.upload
        if previous is not None and previous.path != record.path:
            logger.info("session %s: replacing upload %s", session.id, previous.original_name)
            self.store.discard_file(previous.path)
        session.upload = record
        session.progress = PROGRESS_DONE
        logger.info("session %s: received %s (%s, %d bytes)", session.id, record.original_name, record.mime_type, record.size)
        return session

    def fail(self, partial_path: Optional[Path]) -> None:
        if partial_path is not None and partial_path.exists():
            self.store.discard_file(partial_path)
        session = self._session()
        if session is not None:
            session.progress = None


def _expected_length(request: Request) -> Optional[int]:
    raw = request.headers.get("content-length")
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


async def _counting_stream(
    request: Request, tracker: UploadTracker, expected: Optional[int], limit: int
) -> AsyncIterator[bytes]:
    received = 0
    tracker.update(received, expected)
    async for chunk in request.stream():
        received += len(chunk)
        if received > limit:
            raise UploadError(f"upload exceeds {limit} bytes", status_code=413)
        tracker.update(received, expected)
        yield chunk


def _stored_name(original_name: str) -> str:
    ext = Path(original_name).suffix
    if not _SAFE_EXT_RE.match(ext):
        ext = ""
    return f"{uuid.uuid4().hex}{ext.lower()}"


def _client_filename(filename: Optional[str]) -> str:
    # Some browsers send the full client-side path.
    name = (filename or "").replace("\\", "/").rsplit("/", 1)[-1].strip()
    return name or "upload"


async def _store_part(part: UploadFile, uploads_dir: Path) -> UploadRecord:
    original_name = _client_filename(part.filename)
    dest = uploads_dir / _stored_name(original_name)
    size = 0
    try:
        with dest.open("wb") as fh:
            while True:
                chunk = await part.read(COPY_CHUNK_BYTES)
                if not chunk:
                    break
                fh.write(chunk)
                size += len(chunk)
    except BaseException:
        if dest.exists():
            SessionStore.discard_file(dest)
        raise
    return UploadRecord(
        path=dest,
        original_name=original_name,
        mime_type=part.content_type or "application/octet-stream",
        size=size,
    )


async def receive_upload(
    request: Request,
    tracker: UploadTracker,
    uploads_dir: Path,
    max_bytes: int,
    field_name: str = UPLOAD_FIELD,
) -> Optional[Session]:
    """Stream a multipart upload into uploads_dir and attach it to the session.

    Returns the session the file was attached to, or None if the session
    expired while the transfer was in progress (the file is then deleted).

    Raises:
        UploadError: malformed or oversized request, missing file field or a
            disk error. No upload record is attached and nothing is left on
            disk.
    """
    content_type = request.headers.get("content-type", "")
    if not content_type.lower().startswith("multipart/form-data"):
        raise UploadError("expected multipart/form-data")
    expected = _expected_length(request)
    if expected is not None and expected > max_bytes:
        raise UploadError(f"upload exceeds {max_bytes} bytes", status_code=413)

    tracker.begin()
    parser = MultiPartParser(request.headers, _counting_stream(request, tracker, expected, max_bytes), max_files=1)
    record: Optional[UploadRecord] = None
    form = None
    try:
        form = await parser.parse()
        part = form.get(field_name)
        if not isinstance(part, UploadFile):
            raise UploadError(f"missing file field '{field_name}'")
        uploads_dir.mkdir(parents=True, exist_ok=True)
        record = await _store_part(part, uploads_dir)
    except UploadError:
        tracker.fail(None)
        raise
    except (MultiPartException, FormParserError, KeyError) as e:
        tracker.fail(None)
        raise UploadError(f"malformed upload: {e}") from e
    except ClientDisconnect as e:
        tracker.fail(None)
        raise UploadError("client disconnected during upload") from e
    except OSError as e:
        tracker.fail(None)
        logger.warning("upload for session %s failed: %s", tracker.session_id, e)
        raise UploadError("could not store upload", status_code=500) from e
    finally:
        if form is not None:
            await form.close()

    return tracker.complete(record)
