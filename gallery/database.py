from datetime import datetime, timezone
from typing import Dict

from sqlalchemy import Boolean, Column, Float, ForeignKey, Index, Integer, MetaData, String, Table, Text
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

TABLE_NAMES = ("images", "tags", "image_tags", "metadata")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def build_tables(metadata: MetaData, suffix: str = "", indexes: bool = True) -> Dict[str, Table]:
    """
    Defines the four gallery tables on `metadata`. A non-empty `suffix` yields
    shadow copies (e.g. 'images_new') whose foreign keys point at each other,
    which is what the schema migrator builds before swapping tables in.
    """
    images = Table(
        f"images{suffix}", metadata,
        # Internal surrogate key. Associations join on this, never on the public id.
        Column("pk_id", Integer, primary_key=True, autoincrement=True),
        # Public, caller-assigned identifier. Renameable.
        Column("id", String, unique=True, nullable=False),
        Column("title", String),
        Column("description", Text),
        Column("src", String),
        Column("ranking", Float),
        Column("width", String),
        Column("height", String),
        Column("is_major", Boolean, nullable=False, default=True, server_default="1"),
        Column("group_id", String),
        Column("major_image_id", String),
        Column("date_added", String),
        Column("created_at", String, default=_now_iso),
        Column("updated_at", String, default=_now_iso, onupdate=_now_iso),
        sqlite_autoincrement=True,
    )

    tags = Table(
        f"tags{suffix}", metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("name", String, unique=True, nullable=False),
        Column("created_at", String, default=_now_iso),
        sqlite_autoincrement=True,
    )

    image_tags = Table(
        f"image_tags{suffix}", metadata,
        Column("image_pk_id", Integer, ForeignKey(f"images{suffix}.pk_id", ondelete="CASCADE"), primary_key=True),
        Column("tag_id", Integer, ForeignKey(f"tags{suffix}.id", ondelete="CASCADE"), primary_key=True),
    )

    metadata_table = Table(
        f"metadata{suffix}", metadata,
        Column("key", String, primary_key=True),
        Column("value", Text),
        Column("created_at", String, default=_now_iso),
        Column("updated_at", String, default=_now_iso),
    )

    if indexes:
        Index(f"idx_images{suffix}_group_id", images.c.group_id)
        Index(f"idx_images{suffix}_major", images.c.is_major)
        Index(f"idx_images{suffix}_ranking", images.c.ranking)
        Index(f"idx_tags{suffix}_name", tags.c.name)
        Index(f"idx_image_tags{suffix}_image_pk_id", image_tags.c.image_pk_id)
        Index(f"idx_image_tags{suffix}_tag_id", image_tags.c.tag_id)

    return {
        "images": images,
        "tags": tags,
        "image_tags": image_tags,
        "metadata": metadata_table,
    }


# --- Canonical tables ---
_tables = build_tables(Base.metadata)
images_table = _tables["images"]
tags_table = _tables["tags"]
image_tags_table = _tables["image_tags"]
metadata_table = _tables["metadata"]


def canonical_indexes():
    """All secondary indexes of the current schema, in creation order."""
    return [index for table in _tables.values() for index in sorted(table.indexes, key=lambda i: i.name)]


# --- SQLAlchemy ORM Models ---

class Image(Base):
    __table__ = images_table
    # The public identifier lives in the 'id' column but is exposed as `public_id`
    # so it is never confused with the surrogate `pk_id`.
    public_id = images_table.c.id
    tags = relationship("Tag", secondary=image_tags_table, back_populates="images", order_by="Tag.name")


class Tag(Base):
    __table__ = tags_table
    images = relationship("Image", secondary=image_tags_table, back_populates="tags")


class MetadataEntry(Base):
    __table__ = metadata_table
