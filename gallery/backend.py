from typing import Any, List, Optional, Protocol, Union

from .gateway import open_store
from .json_store import JsonImageStore
from .models import GalleryData, GalleryStats, ImageRecord
from .records import SqliteImageStore

SQLITE_EXTENSIONS = (".db", ".sqlite", ".sqlite3")


class ImageStoreBackend(Protocol):
    """The CRUD contract both storage backends satisfy."""

    source: str
    path: str

    def add(self, record: ImageRecord) -> str: ...

    def update(self, record: ImageRecord, previous_id: Optional[str] = None) -> str: ...

    def delete(self, public_id: str) -> None: ...

    def list_all(self) -> GalleryData: ...

    def list_by_tag(self, name: str) -> List[ImageRecord]: ...

    def stats(self) -> GalleryStats: ...

    def set_metadata(self, key: str, value: Any) -> None: ...

    def save(self) -> None: ...

    def close(self, save_first: bool = False) -> None: ...


def is_sqlite_path(path: str) -> bool:
    return path.lower().endswith(SQLITE_EXTENSIONS)


def open_backend(path: str) -> Union[SqliteImageStore, JsonImageStore]:
    """Opens `path` with the backend its extension calls for."""
    if is_sqlite_path(path):
        return SqliteImageStore(open_store(path))
    return JsonImageStore(path)
