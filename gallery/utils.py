import logging
import os
import tempfile
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

# Import models for type hinting and querying
from .database import Tag
from .errors import InvalidArgumentError, TagResolutionError

logger = logging.getLogger(__name__)

# --- Helper Functions ---

def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()

def require_text(value: Optional[str], field: str) -> str:
    """Returns `value` if it is a non-empty string, otherwise raises InvalidArgumentError."""
    if not isinstance(value, str) or not value.strip():
        raise InvalidArgumentError(f"'{field}' is required and cannot be empty.")
    return value

def unique_tags(tag_names: Iterable[str]) -> List[str]:
    """Drops repeated names while keeping the first occurrence order."""
    return list(dict.fromkeys(tag_names or []))

def collect_available_tags(images) -> List[str]:
    """The sorted, de-duplicated union of tag names across `images`."""
    tag_set = set()
    for image in images:
        tag_set.update(image.tags)
    return sorted(tag_set)

def _find_tag_id(db: Session, name: str) -> Optional[int]:
    return db.query(Tag.id).filter(Tag.name == name).scalar()

def resolve_tag(db: Session, name: str) -> int:
    """
    Returns the id of the tag called `name`, creating it if it does not exist.

    The insert runs inside a SAVEPOINT so a unique-constraint violation (another
    writer created the same tag first) only undoes the insert, not the caller's
    transaction. In that case the lookup is retried once.
    """
    if not isinstance(name, str) or not name:
        raise InvalidArgumentError("Tag name must be a non-empty string.")

    tag_id = _find_tag_id(db, name)
    if tag_id is not None:
        return tag_id

    try:
        with db.begin_nested():
            new_tag = Tag(name=name)
            db.add(new_tag)
            db.flush()
        return new_tag.id
    except IntegrityError:
        logger.warning("Retrying tag lookup for '%s' after unique constraint error", name)

    tag_id = _find_tag_id(db, name)
    if tag_id is None:
        raise TagResolutionError(f"Could not resolve tag '{name}' after retrying.")
    return tag_id

def format_file_size(num_bytes: int) -> str:
    """Human readable size, e.g. 1536 -> '1.5 KB'."""
    if num_bytes == 0:
        return "0 B"
    size = float(num_bytes)
    for unit in ("B", "KB", "MB"):
        if size < 1024:
            return f"{round(size, 2):g} {unit}"
        size /= 1024
    return f"{round(size, 2):g} GB"

def atomic_write_bytes(path: str, data: bytes) -> None:
    """
    Writes `data` to a temporary file next to `path` and swaps it into place, so
    a failed write never leaves a half-written store behind. The parent directory
    must already exist. Each call gets its own temporary file, so concurrent
    writers never share one.
    """
    directory = os.path.dirname(os.path.abspath(path))
    fd, tmp_path = tempfile.mkstemp(prefix=f".{os.path.basename(path)}.", suffix=".tmp", dir=directory)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except OSError:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise
