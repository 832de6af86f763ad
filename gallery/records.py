import json
import logging
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

from sqlalchemy import distinct, func
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from .database import Image, MetadataEntry, Tag, image_tags_table, metadata_table
from .errors import DuplicateIdentifierError, GalleryStoreError, RecordNotFoundError, TransactionError
from .gateway import DEFAULT_VERSION, StoreHandle, close_store, file_stats, save_store
from .models import GalleryData, GalleryStats, ImageRecord
from .utils import collect_available_tags, require_text, resolve_tag, unique_tags, utc_now_iso

logger = logging.getLogger(__name__)


def _find_pk(db: Session, public_id: str) -> Optional[int]:
    return db.query(Image.pk_id).filter(Image.public_id == public_id).scalar()


def _to_record(image: Image) -> ImageRecord:
    return ImageRecord(
        public_id=image.public_id,
        title=image.title,
        description=image.description,
        src=image.src,
        ranking=image.ranking,
        width=image.width,
        height=image.height,
        is_major=bool(image.is_major),
        group_id=image.group_id,
        major_image_id=image.major_image_id,
        date_added=image.date_added,
        tags=[tag.name for tag in image.tags],
    )


def _decode_metadata_value(value: Optional[str]) -> Any:
    """Metadata is written JSON-encoded; older stores hold plain text."""
    if value is None:
        return None
    try:
        return json.loads(value)
    except ValueError:
        return value


def _column_values(record: ImageRecord) -> Dict[str, Any]:
    return {
        "public_id": record.public_id,
        "title": record.title,
        "description": record.description,
        "src": record.src,
        # Stored exactly as supplied; an empty ranking stays NULL.
        "ranking": record.ranking,
        "width": record.width,
        "height": record.height,
        "is_major": record.is_major,
        "group_id": record.group_id,
        "major_image_id": record.major_image_id,
    }


class SqliteImageStore:
    """
    CRUD over an open SQLite store handle.

    Each mutating call runs in its own transaction and either commits fully or
    rolls back and raises a classified error. Changes stay in memory until
    `save()` is called.
    """

    source = "sqlite"

    def __init__(self, handle: StoreHandle):
        self.handle = handle

    @property
    def path(self) -> str:
        return self.handle.path

    @contextmanager
    def _transaction(self, action: str):
        db = self.handle.session()
        try:
            yield db
            db.commit()
        except GalleryStoreError:
            db.rollback()
            raise
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Failed to %s, transaction rolled back: %s", action, e)
            raise TransactionError(f"Failed to {action}: {e}") from e
        except Exception as e:
            db.rollback()
            logger.error("Unexpected error during %s, transaction rolled back: %s", action, e)
            raise TransactionError(f"Failed to {action}: {e}") from e
        finally:
            db.close()

    def _attach_tags(self, db: Session, pk_id: int, tag_names: List[str]) -> None:
        for name in unique_tags(tag_names):
            tag_id = resolve_tag(db, name)
            db.execute(
                sqlite_insert(image_tags_table)
                .values(image_pk_id=pk_id, tag_id=tag_id)
                .on_conflict_do_nothing()
            )

    def _upsert_metadata(self, db: Session, key: str, value: Any) -> None:
        now = utc_now_iso()
        stmt = sqlite_insert(metadata_table).values(
            key=key, value=json.dumps(value), created_at=now, updated_at=now
        )
        db.execute(stmt.on_conflict_do_update(
            index_elements=[metadata_table.c.key],
            set_={"value": stmt.excluded.value, "updated_at": stmt.excluded.updated_at},
        ))

    # --- Mutations ---

    def add(self, record: ImageRecord, require_title: bool = True) -> str:
        """
        Inserts a new image. `require_title=False` admits untitled rows, which
        subsidiary images in imported galleries may be.
        """
        public_id = require_text(record.public_id, "publicId")
        if require_title:
            require_text(record.title, "title")

        with self._transaction("add image") as db:
            if _find_pk(db, public_id) is not None:
                raise DuplicateIdentifierError(f"An image with id '{public_id}' already exists.")

            now = utc_now_iso()
            image = Image(
                **_column_values(record),
                date_added=record.date_added or now,
                created_at=now,
                updated_at=now,
            )
            db.add(image)
            # Flush to get the surrogate key for the association rows.
            db.flush()
            self._attach_tags(db, image.pk_id, record.tags)
            self._upsert_metadata(db, "lastUpdated", now)

        logger.info("Added image '%s' with %d tag(s)", public_id, len(unique_tags(record.tags)))
        return public_id

    def update(self, record: ImageRecord, previous_id: Optional[str] = None) -> str:
        """
        Replaces every field and the full tag list of an image. Pass
        `previous_id` when the public id itself is being renamed.
        """
        public_id = require_text(record.public_id, "publicId")
        lookup_id = previous_id or public_id

        with self._transaction("update image") as db:
            pk_id = _find_pk(db, lookup_id)
            if pk_id is None:
                raise RecordNotFoundError(f"Image with id '{lookup_id}' not found.")
            if public_id != lookup_id and _find_pk(db, public_id) is not None:
                raise DuplicateIdentifierError(f"An image with id '{public_id}' already exists.")

            now = utc_now_iso()
            values = _column_values(record)
            values["updated_at"] = now
            if record.date_added:
                values["date_added"] = record.date_added

            affected = (
                db.query(Image)
                .filter(Image.pk_id == pk_id)
                .update(values, synchronize_session=False)
            )
            if affected == 0:
                raise RecordNotFoundError(f"Image with id '{lookup_id}' disappeared during update.")

            # Full replace of the tag list, not a diff.
            db.execute(image_tags_table.delete().where(image_tags_table.c.image_pk_id == pk_id))
            self._attach_tags(db, pk_id, record.tags)
            self._upsert_metadata(db, "lastUpdated", now)

        if public_id != lookup_id:
            logger.info("Updated image '%s' (renamed from '%s')", public_id, lookup_id)
        else:
            logger.info("Updated image '%s'", public_id)
        return public_id

    def delete(self, public_id: str) -> None:
        require_text(public_id, "publicId")

        with self._transaction("delete image") as db:
            pk_id = _find_pk(db, public_id)
            if pk_id is None:
                raise RecordNotFoundError(f"Image with id '{public_id}' not found.")
            db.execute(image_tags_table.delete().where(image_tags_table.c.image_pk_id == pk_id))
            db.query(Image).filter(Image.pk_id == pk_id).delete(synchronize_session=False)
            self._upsert_metadata(db, "lastUpdated", utc_now_iso())

        logger.info("Deleted image '%s'", public_id)

    def set_metadata(self, key: str, value: Any) -> None:
        require_text(key, "key")
        with self._transaction("update metadata") as db:
            self._upsert_metadata(db, key, value)

    # --- Reads ---

    def list_all(self) -> GalleryData:
        with self._transaction("list images") as db:
            images = (
                db.query(Image)
                .options(selectinload(Image.tags))
                .order_by(Image.pk_id)
                .all()
            )
            records = [_to_record(image) for image in images]
            stored = {
                entry.key: _decode_metadata_value(entry.value)
                for entry in db.query(MetadataEntry).all()
            }

        available_tags = collect_available_tags(records)
        metadata = dict(stored)
        metadata.update({
            "version": stored.get("version") or DEFAULT_VERSION,
            "lastUpdated": stored.get("lastUpdated") or utc_now_iso(),
            "totalImages": len(records),
            "availableTags": available_tags,
        })
        return GalleryData(images=records, available_tags=available_tags, metadata=metadata)

    def list_by_tag(self, name: str) -> List[ImageRecord]:
        with self._transaction("list images by tag") as db:
            images = (
                db.query(Image)
                .join(Image.tags)
                .filter(Tag.name == name)
                .options(selectinload(Image.tags))
                .order_by(Image.pk_id)
                .all()
            )
            return [_to_record(image) for image in images]

    def stats(self) -> GalleryStats:
        with self._transaction("collect statistics") as db:
            total_images = db.query(func.count(Image.pk_id)).scalar()
            total_tags = db.query(func.count(Tag.id)).scalar()
            major_images = db.query(func.count(Image.pk_id)).filter(Image.is_major.is_(True)).scalar()
            total_groups = (
                db.query(func.count(distinct(Image.group_id)))
                .filter(Image.group_id.isnot(None))
                .scalar()
            )

        return GalleryStats(
            total_images=total_images or 0,
            total_tags=total_tags or 0,
            major_images=major_images or 0,
            total_groups=total_groups or 0,
            **file_stats(self.path),
        )

    # --- Lifecycle ---

    def save(self) -> None:
        save_store(self.handle)

    def close(self, save_first: bool = False) -> None:
        close_store(self.handle, save_first=save_first)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
