import json
import os
import threading
from datetime import datetime, timezone
from contextlib import contextmanager
from typing import Union

from fastapi import Body, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator

# Import app components from the gallery package
from . import app, logger, APP_NAME, APP_VERSION, DATA_DIR, SUPPORTED_DATA_FORMATS, SUPPORTED_IMAGE_FORMATS
from .backend import is_sqlite_path, open_backend
from .errors import (
    ErrorKind,
    GalleryStoreError,
    InvalidArgumentError,
    InvalidStoreError,
    PersistenceError,
    StoreFileNotFoundError,
)
from .gateway import is_valid_store
from .models import ImagePayload
from .utils import atomic_write_bytes, format_file_size, utc_now_iso

# --- Pydantic Models ---
class ImageRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    image: ImagePayload
    data_file: str = Field(alias="dataFile")

class DeleteImageRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    image_id: str = Field(alias="imageId")
    data_file: str = Field(alias="dataFile")

    @field_validator("image_id", mode="before")
    @classmethod
    def _image_id_to_text(cls, value):
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

# --- Error Handling ---
STATUS_BY_KIND = {
    ErrorKind.FILE_NOT_FOUND: 404,
    ErrorKind.INVALID_STORE: 400,
    ErrorKind.INVALID_ARGUMENT: 400,
    ErrorKind.DUPLICATE_IDENTIFIER: 409,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.TAG_RESOLUTION_FAILED: 500,
    ErrorKind.TRANSACTION_FAILED: 500,
    ErrorKind.PERSISTENCE_FAILED: 500,
}

@app.exception_handler(GalleryStoreError)
async def gallery_error_handler(request: Request, exc: GalleryStoreError):
    status_code = STATUS_BY_KIND.get(exc.kind, 500)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        {"success": False, "error": str(exc), "kind": exc.kind.value},
        status_code=status_code,
    )

# --- Helpers ---

# One lock per data file. A request holds it from open to save (or close), so
# concurrent requests on the same file never overwrite each other.
_file_locks = {}
_file_locks_guard = threading.Lock()

def _file_lock(path: str) -> threading.Lock:
    key = os.path.abspath(path)
    with _file_locks_guard:
        lock = _file_locks.get(key)
        if lock is None:
            lock = _file_locks[key] = threading.Lock()
        return lock

def _data_file_path(filename: str) -> str:
    """Resolves a bare filename inside the data directory, rejecting path traversal."""
    if not filename or ".." in filename or "/" in filename or "\\" in filename:
        raise InvalidArgumentError("Invalid filename")
    return os.path.join(DATA_DIR, filename)

def _open_data_file(filename: str):
    path = _data_file_path(filename)
    if not os.path.exists(path):
        raise StoreFileNotFoundError(f"File not found: {filename}")
    if is_sqlite_path(path) and not is_valid_store(path):
        raise InvalidStoreError(
            "The file does not appear to be a valid SQLite database with required tables"
        )
    return open_backend(path)

@contextmanager
def _locked_store(filename: str):
    """Opens a data file while holding its lock. The store is closed, never saved, on exit."""
    with _file_lock(_data_file_path(filename)):
        with _open_data_file(filename) as store:
            yield store

# --- API Endpoints ---

@app.get("/api/health")
def api_health():
    return {"status": "ok", "timestamp": utc_now_iso()}

@app.get("/api/info")
def api_info():
    return {
        "name": APP_NAME,
        "version": APP_VERSION,
        "dataDir": DATA_DIR,
        "supportedFormats": SUPPORTED_IMAGE_FORMATS,
        "supportedDataFormats": SUPPORTED_DATA_FORMATS,
    }

@app.get("/api/data")
def api_list_data_files():
    """Lists the JSON and SQLite data files available in the data directory."""
    files = []
    for name in sorted(os.listdir(DATA_DIR)):
        if not (name.endswith(".json") or is_sqlite_path(name)):
            continue
        path = os.path.join(DATA_DIR, name)
        stat = os.stat(path)
        files.append({
            "name": name,
            "path": path,
            "type": "sqlite" if is_sqlite_path(name) else "json",
            "size": format_file_size(stat.st_size),
            "modified": datetime.fromtimestamp(stat.st_mtime, timezone.utc).isoformat(),
        })
    return {"success": True, "files": files, "total": len(files)}

@app.get("/api/data/{filename}")
def api_load_data(filename: str):
    """Loads a whole gallery (images, available tags, metadata) from a data file."""
    with _locked_store(filename) as store:
        data = store.list_all()
        stats = store.stats()
        path, source = store.path, store.source

    return {
        "success": True,
        "data": data.model_dump(by_alias=True),
        "filename": filename,
        "path": path,
        "size": format_file_size(os.path.getsize(path)),
        "source": source,
        "stats": stats.model_dump(by_alias=True),
    }

@app.post("/api/data/{filename}")
def api_save_json_data(filename: str, document: Union[dict, list] = Body(...)):
    """Writes a full JSON gallery document, replacing the file's contents."""
    if not filename.endswith(".json"):
        raise InvalidArgumentError("Only .json files can be written directly.")
    path = _data_file_path(filename)
    payload = json.dumps(document, indent=2, ensure_ascii=False).encode("utf-8")
    try:
        with _file_lock(path):
            atomic_write_bytes(path, payload)
    except OSError as e:
        raise PersistenceError(f"Failed to save JSON data: {e}") from e

    return {
        "success": True,
        "message": f"Data saved to {filename}",
        "path": path,
        "size": format_file_size(len(payload)),
    }

@app.get("/api/images")
def api_images_by_tag(data_file: str = Query(..., alias="dataFile"), tag: str = Query(..., min_length=1)):
    with _locked_store(data_file) as store:
        images = store.list_by_tag(tag)
    return {"success": True, "images": [image.model_dump(by_alias=True) for image in images]}

# Every mutating endpoint saves explicitly. Leaving the `with` block only closes
# the store, and for SQLite files an unsaved change would be lost.

@app.post("/api/images", status_code=201)
def api_add_image(request: ImageRequest):
    with _locked_store(request.data_file) as store:
        image_id = store.add(request.image.to_record())
        store.save()
    return {"success": True, "message": f"Image '{image_id}' added.", "imageId": image_id}

@app.put("/api/images")
def api_update_image(request: ImageRequest):
    with _locked_store(request.data_file) as store:
        image_id = store.update(request.image.to_record(), previous_id=request.image.original_id)
        store.save()
    return {"success": True, "message": f"Image '{image_id}' updated.", "imageId": image_id}

@app.delete("/api/images")
def api_delete_image(request: DeleteImageRequest):
    with _locked_store(request.data_file) as store:
        store.delete(request.image_id)
        store.save()
    return {"success": True, "message": f"Image '{request.image_id}' deleted.", "imageId": request.image_id}
