from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional, Sequence

from pydantic import BaseModel, Field


# superupload_backend/ -> project root. The default static/, save.tmpl and
# uploads/ locations live in the checkout next to server.py and are not
# packaged; an installed copy must point SUPERUPLOAD_STATIC_ROOT,
# SUPERUPLOAD_SAVE_TEMPLATE and SUPERUPLOAD_UPLOADS_DIR at real locations.
PROJECT_ROOT = Path(__file__).resolve().parent.parent

COOKIE_NAME = "uploadSession"

# Name of the multipart field carrying the file on POST /upload.
UPLOAD_FIELD = "upload"

DEFAULT_PORT = 8099


def _env(name: str, default: str) -> str:
    raw = os.environ.get(f"SUPERUPLOAD_{name}")
    if raw and raw.strip():
        return raw.strip()
    return default


class Settings(BaseModel):
    """Process-wide configuration. Fixed at startup, never reloaded."""

    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT

    # How long a session may be idle before the reaper deletes it.
    session_expiry_seconds: float = Field(default=600.0, ge=0)
    # How often the reaper scans for idle sessions.
    sweep_interval_seconds: float = Field(default=10.0, gt=0)
    # Delay applied to every /status reply so polling clients back off.
    status_delay_seconds: float = Field(default=0.5, ge=0)

    uploads_dir: Path = PROJECT_ROOT / "uploads"
    static_root: Path = PROJECT_ROOT / "static"
    save_template: Path = PROJECT_ROOT / "save.tmpl"

    max_upload_bytes: int = Field(default=1024 * 1024 * 1024, gt=0)  # 1GB
    log_level: str = "INFO"

    def ensure_dirs(self) -> None:
        self.uploads_dir.mkdir(parents=True, exist_ok=True)


def load_settings(argv: Optional[Sequence[str]] = None) -> Settings:
    """Build settings from SUPERUPLOAD_* env vars.

    The listen port may also be given as the first of argv (the command
    line arguments), which wins over the environment.
    """
    args = list(argv or [])
    port = args[0] if args else _env("PORT", str(DEFAULT_PORT))

    return Settings(
        host=_env("HOST", "127.0.0.1"),
        port=int(port),
        session_expiry_seconds=float(_env("SESSION_EXPIRY_SECONDS", "600")),
        sweep_interval_seconds=float(_env("SWEEP_INTERVAL_SECONDS", "10")),
        status_delay_seconds=float(_env("STATUS_DELAY_SECONDS", "0.5")),
        uploads_dir=Path(_env("UPLOADS_DIR", str(PROJECT_ROOT / "uploads"))).resolve(),
        static_root=Path(_env("STATIC_ROOT", str(PROJECT_ROOT / "static"))).resolve(),
        save_template=Path(_env("SAVE_TEMPLATE", str(PROJECT_ROOT / "save.tmpl"))).resolve(),
        max_upload_bytes=int(_env("MAX_UPLOAD_BYTES", str(1024 * 1024 * 1024))),
        log_level=_env("LOG_LEVEL", "INFO"),
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # uvicorn's own access log duplicates the dispatcher's request lines.
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
