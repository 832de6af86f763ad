"""
JSON-file backend with the same contract as `SqliteImageStore`.

The whole document is read for every call and rewritten wholesale after every
mutation, so unlike the SQLite backend there is no unsaved in-memory state.
"""

import json
import logging
import os
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from .errors import (
    DuplicateIdentifierError,
    InvalidArgumentError,
    InvalidStoreError,
    PersistenceError,
    RecordNotFoundError,
    StoreFileNotFoundError,
)
from .gateway import DEFAULT_VERSION, file_stats
from .models import GalleryData, GalleryStats, ImageRecord
from .utils import atomic_write_bytes, collect_available_tags, require_text, unique_tags, utc_now_iso

logger = logging.getLogger(__name__)

# Keys recomputed on every write rather than trusted from the file.
DERIVED_METADATA_KEYS = ("totalImages", "availableTags")


class JsonImageStore:
    source = "json"

    def __init__(self, path: str):
        if not os.path.isfile(path):
            raise StoreFileNotFoundError(f"JSON file not found: {path}")
        self.path = path

    @classmethod
    def create(cls, path: str, metadata: Optional[Dict[str, Any]] = None, overwrite: bool = False) -> "JsonImageStore":
        if os.path.exists(path) and not overwrite:
            raise InvalidArgumentError(f"'{path}' already exists.")
        document = {"images": [], "metadata": {"version": DEFAULT_VERSION, **(metadata or {})}}
        try:
            atomic_write_bytes(path, json.dumps(document, indent=2).encode("utf-8"))
        except OSError as e:
            raise PersistenceError(f"Could not write '{path}': {e}") from e
        return cls(path)

    def _load(self) -> Tuple[List[ImageRecord], Dict[str, Any]]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                document = json.load(f)
        except FileNotFoundError as e:
            raise StoreFileNotFoundError(f"JSON file not found: {self.path}") from e
        except (OSError, ValueError) as e:
            raise InvalidStoreError(f"Could not read JSON data from '{self.path}': {e}") from e

        # Both {"images": [...], "metadata": {...}} and a bare array are accepted.
        if isinstance(document, list):
            raw_images, metadata = document, {}
        elif isinstance(document, dict) and isinstance(document.get("images", []), list):
            raw_images, metadata = document.get("images", []), dict(document.get("metadata") or {})
        else:
            raise InvalidStoreError(f"'{self.path}' does not contain an image list.")

        try:
            images = [ImageRecord.model_validate(item) for item in raw_images]
        except ValidationError as e:
            raise InvalidStoreError(f"Invalid image entry in '{self.path}': {e}") from e
        return images, metadata

    def _write(self, images: List[ImageRecord], metadata: Dict[str, Any]) -> None:
        metadata = dict(metadata)
        metadata["lastUpdated"] = utc_now_iso()
        metadata["totalImages"] = len(images)
        metadata["availableTags"] = collect_available_tags(images)
        document = {
            "images": [image.model_dump(by_alias=True) for image in images],
            "metadata": metadata,
        }
        try:
            atomic_write_bytes(self.path, json.dumps(document, indent=2, ensure_ascii=False).encode("utf-8"))
        except OSError as e:
            raise PersistenceError(f"Could not write '{self.path}': {e}") from e

    @staticmethod
    def _index_of(images: List[ImageRecord], public_id: str) -> Optional[int]:
        for index, image in enumerate(images):
            if image.public_id == public_id:
                return index
        return None

    @staticmethod
    def _normalized(record: ImageRecord, **overrides) -> ImageRecord:
        for name in unique_tags(record.tags):
            if not isinstance(name, str) or not name:
                raise InvalidArgumentError("Tag name must be a non-empty string.")
        overrides["tags"] = sorted(unique_tags(record.tags))
        return record.model_copy(update=overrides)

    # --- Mutations ---

    def add(self, record: ImageRecord) -> str:
        public_id = require_text(record.public_id, "publicId")
        require_text(record.title, "title")

        images, metadata = self._load()
        if self._index_of(images, public_id) is not None:
            raise DuplicateIdentifierError(f"An image with id '{public_id}' already exists.")

        images.append(self._normalized(record, date_added=record.date_added or utc_now_iso()))
        self._write(images, metadata)
        logger.info("Added image '%s' to %s", public_id, self.path)
        return public_id

    def update(self, record: ImageRecord, previous_id: Optional[str] = None) -> str:
        public_id = require_text(record.public_id, "publicId")
        lookup_id = previous_id or public_id

        images, metadata = self._load()
        index = self._index_of(images, lookup_id)
        if index is None:
            raise RecordNotFoundError(f"Image with id '{lookup_id}' not found.")
        if public_id != lookup_id and self._index_of(images, public_id) is not None:
            raise DuplicateIdentifierError(f"An image with id '{public_id}' already exists.")

        images[index] = self._normalized(record, date_added=record.date_added or images[index].date_added)
        self._write(images, metadata)
        logger.info("Updated image '%s' in %s", public_id, self.path)
        return public_id

    def delete(self, public_id: str) -> None:
        require_text(public_id, "publicId")
        images, metadata = self._load()
        index = self._index_of(images, public_id)
        if index is None:
            raise RecordNotFoundError(f"Image with id '{public_id}' not found.")
        del images[index]
        self._write(images, metadata)
        logger.info("Deleted image '%s' from %s", public_id, self.path)

    def set_metadata(self, key: str, value: Any) -> None:
        require_text(key, "key")
        images, metadata = self._load()
        metadata[key] = value
        self._write(images, metadata)

    # --- Reads ---

    def list_all(self) -> GalleryData:
        images, stored = self._load()
        images = [image.model_copy(update={"tags": sorted(unique_tags(image.tags))}) for image in images]
        available_tags = collect_available_tags(images)
        metadata = {k: v for k, v in stored.items() if k not in DERIVED_METADATA_KEYS}
        metadata.update({
            "version": stored.get("version") or DEFAULT_VERSION,
            "lastUpdated": stored.get("lastUpdated") or utc_now_iso(),
            "totalImages": len(images),
            "availableTags": available_tags,
        })
        return GalleryData(images=images, available_tags=available_tags, metadata=metadata)

    def list_by_tag(self, name: str) -> List[ImageRecord]:
        return [image for image in self.list_all().images if name in image.tags]

    def stats(self) -> GalleryStats:
        images, _ = self._load()
        return GalleryStats(
            total_images=len(images),
            total_tags=len(collect_available_tags(images)),
            major_images=sum(1 for image in images if image.is_major),
            total_groups=len({image.group_id for image in images if image.group_id is not None}),
            **file_stats(self.path),
        )

    # --- Lifecycle ---

    def save(self) -> None:
        # Every mutation already rewrote the file; saving re-normalizes it.
        images, metadata = self._load()
        self._write(images, metadata)

    def close(self, save_first: bool = False) -> None:
        if save_first:
            self.save()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
