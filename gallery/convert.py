import logging
import os
from typing import Optional

from tqdm import tqdm

from .errors import GalleryStoreError
from .gateway import create_store
from .json_store import DERIVED_METADATA_KEYS, JsonImageStore
from .models import ConversionResult
from .records import SqliteImageStore
from .utils import utc_now_iso

logger = logging.getLogger(__name__)

DB_VERSION = "1.0"


def default_db_path(json_path: str) -> str:
    root, _ = os.path.splitext(json_path)
    return f"{root}.db"


def convert_json_to_sqlite(json_path: str, db_path: Optional[str] = None, progress: bool = False) -> ConversionResult:
    """
    Builds a fresh SQLite store from a JSON gallery document.

    Any existing file at `db_path` is replaced. Untitled images (typically
    subsidiary ones) are kept with an empty title. Images without an id, or
    whose id repeats an earlier one, are logged and skipped.
    """
    db_path = db_path or default_db_path(json_path)
    source = JsonImageStore(json_path)
    data = source.list_all()

    store = SqliteImageStore(create_store(db_path, overwrite=True))
    try:
        converted, skipped = 0, 0
        for record in tqdm(data.images, desc="Converting images", disable=not progress):
            try:
                store.add(record.model_copy(update={"title": record.title or None}), require_title=False)
                converted += 1
            except GalleryStoreError as e:
                skipped += 1
                logger.warning("Skipping image '%s': %s", record.public_id, e)

        for key, value in data.metadata.items():
            if key not in DERIVED_METADATA_KEYS:
                store.set_metadata(key, value)

        # Conversion provenance.
        store.set_metadata("conversion_date", utc_now_iso())
        store.set_metadata("source_file", os.path.basename(json_path))
        store.set_metadata("total_images", len(data.images))
        store.set_metadata("db_version", DB_VERSION)

        store.save()
        stats = store.stats()
    finally:
        store.close()

    logger.info("Converted %s to %s: %d image(s), %d skipped", json_path, db_path, converted, skipped)
    return ConversionResult(db_path=db_path, converted=converted, skipped=skipped, stats=stats)
