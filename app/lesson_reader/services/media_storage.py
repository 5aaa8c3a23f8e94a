"""Local storage for lesson audio and cover images."""
from __future__ import annotations

from pathlib import Path
from typing import Optional, Tuple
from uuid import uuid4

from flask import current_app, url_for
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

AUDIO_DIR = "audio"
COVER_DIR = "covers"


def media_root() -> Path:
    """Directory that holds every stored media file."""
    configured = current_app.config.get("MEDIA_ROOT")
    root = Path(configured) if configured else Path(current_app.root_path) / "static" / "media"
    root.mkdir(parents=True, exist_ok=True)
    return root


def allocate_path(category: str, user_id: int, extension: str, prefix: str = "") -> Tuple[Path, str]:
    """Reserve a unique file location; returns (absolute path, relative name)."""
    extension = secure_filename(extension.lstrip(".")) or "bin"
    name = f"{secure_filename(prefix)}-{uuid4().hex}" if prefix else uuid4().hex
    relative = f"{category}/{user_id}/{name}.{extension}"
    path = media_root() / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    return path, relative


def save_upload(upload: FileStorage, category: str, user_id: int) -> Optional[str]:
    """Store an uploaded file and return its relative name."""
    if upload is None or not upload.filename:
        return None
    extension = Path(secure_filename(upload.filename)).suffix or ".bin"
    path, relative = allocate_path(category, user_id, extension)
    try:
        upload.save(str(path))
    except OSError as exc:
        current_app.logger.error("Failed to store upload %s: %s", upload.filename, exc)
        return None
    return relative


def save_bytes(data: bytes, category: str, user_id: int, extension: str, prefix: str = "") -> str:
    """Write generated bytes to storage and return the relative name."""
    path, relative = allocate_path(category, user_id, extension, prefix)
    path.write_bytes(data)
    return relative


def public_url(relative: Optional[str]) -> Optional[str]:
    """URL under which a stored file is served."""
    if not relative:
        return None
    return url_for("media_file", filename=relative)
