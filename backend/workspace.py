"""
Sandboxed upload storage for glint.

Uploaded assets and their processed derivatives live under
<workspace>/uploads/. Every path is resolved inside that directory and
anything that escapes it is rejected.
"""

import logging
import mimetypes
from pathlib import Path

logger = logging.getLogger(__name__)

mimetypes.add_type("model/gltf-binary", ".glb")
mimetypes.add_type("model/gltf+json", ".gltf")

# Changed via init_workspace() at startup (and by tests).
_workspace_dir: Path = Path(__file__).resolve().parent.parent / ".workspace"


def init_workspace(path: Path) -> None:
    """Point the sandbox at ``path`` and make sure the uploads dir exists."""
    global _workspace_dir
    _workspace_dir = Path(path)
    get_uploads_dir().mkdir(parents=True, exist_ok=True)
    logger.info("Workspace: %s", _workspace_dir)


def get_workspace_dir() -> Path:
    return _workspace_dir


def get_uploads_dir() -> Path:
    return _workspace_dir / "uploads"


def get_processed_dir(filename: str) -> Path:
    """Processed output directory for an upload (stem_ext form to avoid collisions).

    Example: robot.glb → uploads/processed/robot_glb/
    """
    p = Path(filename)
    return get_uploads_dir() / "processed" / f"{p.stem}_{p.suffix.lstrip('.')}"


def _safe_upload_path(filename: str) -> Path:
    """Resolve a filename inside the uploads dir and reject directory traversal."""
    uploads = get_uploads_dir().resolve()
    resolved = (uploads / filename).resolve()
    if resolved != uploads and uploads not in resolved.parents:
        raise PermissionError(f"Path escapes upload sandbox: {filename}")
    return resolved


def save_upload(filename: str, data: bytes) -> Path:
    path = _safe_upload_path(filename)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path


def upload_path(filename: str) -> Path:
    """Resolved path of an existing upload."""
    path = _safe_upload_path(filename)
    if not path.is_file():
        raise FileNotFoundError(f"Upload not found: {filename}")
    return path


def read_upload(filename: str) -> bytes:
    return upload_path(filename).read_bytes()


def get_upload_info(filename: str) -> dict:
    path = upload_path(filename)
    mime, _ = mimetypes.guess_type(str(path))
    return {
        "filename": filename,
        "size": path.stat().st_size,
        "mime_type": mime or "application/octet-stream",
    }
