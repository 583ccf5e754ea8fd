"""Tests for the in-memory session store."""
import uuid

from superupload_backend.sessions import Progress, Session, SessionStore, UploadRecord


def _record(path, name="a.txt"):
    return UploadRecord(path=path, original_name=name, mime_type="text/plain", size=path.stat().st_size)


class TestCreate:
    def test_create_returns_uuid4_id(self, store):
        """create should hand out canonical UUID4 ids."""
        session = store.create()
        assert str(uuid.UUID(session.id)) == session.id
        assert uuid.UUID(session.id).version == 4

    def test_create_initial_state(self, store, clock):
        """A new session has no upload and no progress."""
        session = store.create()
        assert session.last_used == clock.now
        assert session.upload is None
        assert session.progress is None
        assert session.id in store

    def test_ids_are_unique(self, store):
        """Many creates never collide."""
        ids = {store.create().id for _ in range(200)}
        assert len(ids) == 200
        assert len(store) == 200


class TestResolve:
    def test_resolve_refreshes_last_used(self, store, clock):
        """resolve should touch the session."""
        session = store.create()
        clock.advance(30)
        assert store.resolve(session.id) is session
        assert session.last_used == clock.now

    def test_resolve_unknown_returns_none(self, store):
        """An id the store never issued is not a session."""
        assert store.resolve(str(uuid.uuid4())) is None

    def test_resolve_malformed_returns_none(self, store):
        """Garbage cookie values resolve to nothing instead of raising."""
        assert store.resolve(None) is None
        assert store.resolve("") is None
        assert store.resolve("../../etc/passwd") is None

    def test_get_does_not_touch(self, store, clock):
        """get is a plain lookup."""
        session = store.create()
        created = session.last_used
        clock.advance(30)
        assert store.get(session.id) is session
        assert session.last_used == created


class TestDelete:
    def test_delete_removes_upload_file(self, store, tmp_path):
        """Deleting a session deletes its backing file."""
        f = tmp_path / "upload.bin"
        f.write_bytes(b"data")
        session = store.create()
        session.upload = _record(f)

        assert store.delete(session.id) is session
        assert session.id not in store
        assert not f.exists()

    def test_delete_is_idempotent(self, store):
        """Deleting an absent id is a no-op."""
        session = store.create()
        store.delete(session.id)
        assert store.delete(session.id) is None
        assert store.delete("no-such-id") is None

    def test_delete_tolerates_missing_file(self, store, tmp_path):
        """A file that is already gone is not an error."""
        session = store.create()
        session.upload = UploadRecord(tmp_path / "gone.bin", "gone.bin", "application/octet-stream", 0)
        store.delete(session.id)
        assert len(store) == 0


class TestExpiry:
    def test_expired_lists_idle_sessions(self, store, clock):
        """Only sessions idle longer than the timeout are expired."""
        old = store.create()
        clock.advance(500)
        fresh = store.create()
        clock.advance(101)
        expired = store.expired()
        assert old in expired
        assert fresh not in expired

    def test_exactly_timeout_is_not_expired(self, store, clock):
        """Idle time must exceed the timeout."""
        session = store.create()
        clock.advance(600)
        assert not store.is_expired(session)


class TestSession:
    def test_progress_fraction(self):
        """Only numeric progress is reported as a fraction."""
        session = Session(id="x", last_used=0)
        assert session.progress_fraction() is None
        session.progress = Progress.INDETERMINATE
        assert session.progress_fraction() is None
        session.progress = 0.25
        assert session.progress_fraction() == 0.25

    def test_describe_hides_path(self, tmp_path):
        """The client view never leaks the server path."""
        f = tmp_path / "x.txt"
        f.write_text("hello")
        view = _record(f, "notes.txt").describe()
        assert view == {"name": "notes.txt", "type": "text/plain", "size": 5}
