"""
Temp file storage.

Generated documents (nutrition plans) are written under one temp directory
and served back by relative path.
"""

from pathlib import Path
from typing import Union

CONTENT_TYPES = {
    ".pdf": "application/pdf",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".txt": "text/plain",
}
DEFAULT_CONTENT_TYPE = "application/octet-stream"


class PathOutsideStorage(ValueError):
    """Requested path resolves outside the storage directory."""


def resolve_temp_path(temp_dir: Union[str, Path], relative_path: str) -> Path:
    """
    Absolute path of a file inside `temp_dir`.

    Symlinks and `..` segments are resolved before the containment check.

    Raises:
        PathOutsideStorage: If the result escapes `temp_dir`
    """
    root = Path(temp_dir).resolve()
    candidate = (root / relative_path).resolve()
    if candidate != root and root not in candidate.parents:
        raise PathOutsideStorage(relative_path)
    return candidate


def content_type_for(path: Path) -> str:
    return CONTENT_TYPES.get(path.suffix.lower(), DEFAULT_CONTENT_TYPE)
