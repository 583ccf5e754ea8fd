from __future__ import annotations

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse, PlainTextResponse, Response

from superupload_backend.config import Settings, configure_logging, load_settings
from superupload_backend.middleware import SessionRoute, current_session
from superupload_backend.reaper import ExpiryReaper, remove_orphaned_uploads
from superupload_backend.sessions import Session, SessionStore
from superupload_backend.static_files import serve_static
from superupload_backend.templating import TemplateUnavailable, expand, load_template, session_view
from superupload_backend.tracker import UploadError, UploadTracker, receive_upload


logger = logging.getLogger("superupload")


def status_payload(session: Optional[Session]) -> dict:
    if session is None:
        return {"progress": None, "upload": None}
    view = session_view(session)
    return {"progress": view["progress"], "upload": view["upload"]}


# Only routes on this router get a session (see SessionRoute).
router = APIRouter(route_class=SessionRoute)


@router.post("/upload")
async def upload(request: Request, session: Session = Depends(current_session)) -> Response:
    settings: Settings = request.app.state.settings
    tracker = UploadTracker(request.app.state.sessions, session.id)
    try:
        attached = await receive_upload(request, tracker, settings.uploads_dir, settings.max_upload_bytes)
    except UploadError as e:
        return PlainTextResponse(e.message, status_code=e.status_code)
    if attached is None:
        return PlainTextResponse("session expired during upload", status_code=410)
    return JSONResponse({"received": attached.upload.describe()})


@router.get("/status")
async def status(request: Request, session: Session = Depends(current_session)) -> Response:
    # Replies are delayed so that polling clients do not hammer the server.
    settings: Settings = request.app.state.settings
    if settings.status_delay_seconds:
        await asyncio.sleep(settings.status_delay_seconds)
    store: SessionStore = request.app.state.sessions
    return JSONResponse(status_payload(store.get(session.id)))


@router.post("/save")
async def save(request: Request, session: Session = Depends(current_session)) -> Response:
    settings: Settings = request.app.state.settings
    async with request.form() as form:
        fields = {key: value for key, value in form.items() if isinstance(value, str)}
    try:
        template = load_template(settings.save_template)
    except TemplateUnavailable as e:
        return PlainTextResponse(str(e), status_code=500)
    store: SessionStore = request.app.state.sessions
    current = store.get(session.id) or session
    body = expand(template, {"session": session_view(current), "fields": fields})
    return HTMLResponse(body)


@router.get("/download")
async def download(request: Request, session: Session = Depends(current_session)) -> Response:
    record = session.upload
    if record is None or not record.path.is_file():
        return PlainTextResponse("No file uploaded", status_code=404)
    return FileResponse(record.path, media_type=record.mime_type, filename=record.original_name)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or load_settings()
    configure_logging(settings.log_level)
    store = SessionStore(settings.session_expiry_seconds)
    reaper = ExpiryReaper(store, settings.sweep_interval_seconds)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Nothing survives a restart, so anything already in uploads/ is an orphan.
        settings.ensure_dirs()
        remove_orphaned_uploads(settings.uploads_dir, store)
        reaper.start()
        logger.info("superupload-server started, listening on port %s", settings.port)
        try:
            yield
        finally:
            await reaper.stop()

    app = FastAPI(lifespan=lifespan)
    app.state.settings = settings
    app.state.sessions = store
    app.state.reaper = reaper

    @app.middleware("http")
    async def _dispatch(request: Request, call_next):
        # Single catch boundary: a failing handler never takes the process down.
        try:
            response = await call_next(request)
        except Exception as e:
            logger.exception("error handling request for %s", request.url.path)
            response = PlainTextResponse(
                f"error handling {request.url.path}: {e.__class__.__name__}", status_code=500
            )
        client = request.headers.get("x-forwarded-for") or (request.client.host if request.client else "-")
        logger.info("%s %s %s %s", client, request.method, response.status_code, request.url.path)
        return response

    app.include_router(router)

    # Static files; define session routes above so they take precedence.
    @app.get("/{path:path}", include_in_schema=False)
    async def static_file(path: str, request: Request) -> Response:
        return serve_static(settings.static_root, request.url.path, request.headers.get("if-modified-since"))

    return app


app = create_app()


if __name__ == "__main__":
    # Convenience: python server.py [port]
    import uvicorn

    _settings = load_settings(sys.argv[1:])
    uvicorn.run(create_app(_settings), host=_settings.host, port=_settings.port, reload=False)
