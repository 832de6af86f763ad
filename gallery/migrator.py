"""
One-shot upgrade of legacy stores to the current schema.

Legacy stores used a single INTEGER `images.id` column as both the primary key
and the public identifier. The current schema keeps an internal `pk_id`
surrogate and a separate TEXT `id`. Legacy ids become `img_<old id>`, e.g.
image 7 is reachable as 'img_7' after migration.

The original file is copied byte for byte to `<name>_backup_pre_migration.db`
before the migrated store is written over it.
"""

import json
import logging
import os
import shutil
from typing import Dict, List, Optional, Tuple, Union

from sqlalchemy import Integer, MetaData, String, Table, cast, func, inspect, literal, select, text
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from tqdm import tqdm

from .database import TABLE_NAMES, build_tables, canonical_indexes, metadata_table
from .errors import GalleryStoreError, PersistenceError, TransactionError
from .gateway import StoreHandle, close_store, open_store, save_store
from .models import MigrationResult
from .utils import utc_now_iso

logger = logging.getLogger(__name__)

LEGACY_ID_PREFIX = "img_"
SHADOW_SUFFIX = "_new"
BACKUP_SUFFIX = "_backup_pre_migration"
CURRENT_SCHEMA_VERSION = "2"


def legacy_public_id(legacy_id) -> Optional[str]:
    """Maps a legacy integer image id to its public id: 7 -> 'img_7'."""
    if legacy_id is None:
        return None
    if isinstance(legacy_id, int) or (isinstance(legacy_id, str) and legacy_id.isdigit()):
        return f"{LEGACY_ID_PREFIX}{legacy_id}"
    return str(legacy_id)


def backup_path_for(path: str) -> str:
    root, ext = os.path.splitext(path)
    return f"{root}{BACKUP_SUFFIX}{ext or '.db'}"


def detect_legacy(handle: StoreHandle) -> bool:
    """True only if `images.id` is an INTEGER primary key."""
    inspector = inspect(handle.engine)
    if not inspector.has_table("images"):
        return False
    for column in inspector.get_columns("images"):
        if column["name"] == "id":
            return isinstance(column["type"], Integer) and bool(column.get("primary_key"))
    return False


def _copy_images(conn, shadow: Dict[str, Table], legacy: Table) -> int:
    now = utc_now_iso()
    rows = conn.execute(select(legacy).order_by(legacy.c.id)).mappings().all()
    for row in rows:
        is_major = row.get("is_major")
        conn.execute(shadow["images"].insert().values(
            id=legacy_public_id(row["id"]),
            title=row.get("title"),
            description=row.get("description"),
            src=row.get("src"),
            ranking=row.get("ranking"),
            width=row.get("width"),
            height=row.get("height"),
            is_major=True if is_major is None else bool(is_major),
            group_id=row.get("group_id"),
            # Legacy references pointed at integer ids; keep them pointing at the same image.
            major_image_id=legacy_public_id(row.get("major_image_id")),
            date_added=row.get("date_added") or now,
            created_at=now,
            updated_at=now,
        ))
    return len(rows)


def _copy_tags(conn, shadow: Dict[str, Table], legacy: Table) -> int:
    now = utc_now_iso()
    rows = conn.execute(select(legacy).order_by(legacy.c.id)).mappings().all()
    if rows:
        conn.execute(shadow["tags"].insert(), [
            {"id": row["id"], "name": row["name"], "created_at": row.get("created_at") or now}
            for row in rows
        ])
    return len(rows)


def _copy_image_tags(conn, shadow: Dict[str, Table], legacy: Table) -> int:
    new_images, new_tags, new_links = shadow["images"], shadow["tags"], shadow["image_tags"]
    # Re-derive each old image id's public id and join back to the shadow images
    # table to find its new surrogate key.
    synthesized_id = literal(LEGACY_ID_PREFIX) + cast(legacy.c.image_id, String)
    source = (
        select(new_images.c.pk_id, legacy.c.tag_id)
        .select_from(
            legacy
            .join(new_images, new_images.c.id == synthesized_id)
            .join(new_tags, new_tags.c.id == legacy.c.tag_id)
        )
        .distinct()
    )
    conn.execute(new_links.insert().from_select(["image_pk_id", "tag_id"], source))
    return conn.execute(select(func.count()).select_from(new_links)).scalar()


def _copy_metadata(conn, shadow: Dict[str, Table], legacy: Table) -> int:
    now = utc_now_iso()
    rows = conn.execute(select(legacy)).mappings().all()
    if rows:
        conn.execute(shadow["metadata"].insert(), [
            {
                "key": row["key"],
                "value": row.get("value"),
                "created_at": row.get("created_at") or now,
                "updated_at": row.get("updated_at") or now,
            }
            for row in rows
        ])
    return len(rows)


_COPY_STEPS = (
    ("images", _copy_images),
    ("tags", _copy_tags),
    ("image_tags", _copy_image_tags),
    ("metadata", _copy_metadata),
)


def _drop_shadow_tables(handle: StoreHandle) -> None:
    with handle.engine.begin() as conn:
        for name in TABLE_NAMES:
            conn.execute(text(f'DROP TABLE IF EXISTS "{name}{SHADOW_SUFFIX}"'))


def migrate(handle: StoreHandle) -> MigrationResult:
    """
    Rewrites a legacy store in place and saves it. A store already on the
    current schema is left alone and reported as not migrated.
    """
    if not detect_legacy(handle):
        logger.info("%s already uses the current schema", handle.path)
        return MigrationResult(migrated=False)

    logger.info("Detected legacy schema in %s, starting migration", handle.path)
    counts: Dict[str, int] = {}

    # 1. Build the shadow tables and copy everything into them.
    try:
        with handle.engine.begin() as conn:
            inspector = inspect(conn)
            shadow = build_tables(MetaData(), suffix=SHADOW_SUFFIX, indexes=False)
            for table in shadow.values():
                table.create(conn)

            legacy_metadata = MetaData()
            for name, copy_step in _COPY_STEPS:
                if not inspector.has_table(name):
                    counts[name] = 0
                    continue
                legacy = Table(name, legacy_metadata, autoload_with=conn)
                counts[name] = copy_step(conn, shadow, legacy)
                logger.info("Migrated %d row(s) of %s", counts[name], name)
    except SQLAlchemyError as e:
        logger.error("Data migration failed for %s, rolled back: %s", handle.path, e)
        raise TransactionError(f"Data migration failed: {e}") from e

    # 2. Swap the shadow tables in for the legacy ones.
    try:
        with handle.engine.begin() as conn:
            for name in ("image_tags", "tags", "images", "metadata"):
                conn.execute(text(f'DROP TABLE IF EXISTS "{name}"'))
            for name in TABLE_NAMES:
                conn.execute(text(f'ALTER TABLE "{name}{SHADOW_SUFFIX}" RENAME TO "{name}"'))
            for index in canonical_indexes():
                index.create(conn, checkfirst=True)

            now = utc_now_iso()
            for key, value in (("schemaVersion", CURRENT_SCHEMA_VERSION), ("migratedAt", now)):
                stmt = sqlite_insert(metadata_table).values(
                    key=key, value=json.dumps(value), created_at=now, updated_at=now
                )
                conn.execute(stmt.on_conflict_do_update(
                    index_elements=[metadata_table.c.key],
                    set_={"value": stmt.excluded.value, "updated_at": stmt.excluded.updated_at},
                ))
    except SQLAlchemyError as e:
        logger.error("Table replacement failed for %s, rolled back: %s", handle.path, e)
        _drop_shadow_tables(handle)
        raise TransactionError(f"Table replacement failed: {e}") from e

    # 3. Back up the untouched file, then write the migrated store over it.
    backup_path = backup_path_for(handle.path)
    try:
        shutil.copyfile(handle.path, backup_path)
    except OSError as e:
        raise PersistenceError(f"Could not create backup '{backup_path}': {e}") from e
    logger.info("Backup saved at %s", backup_path)

    save_store(handle)
    logger.info("Migration of %s completed: %s", handle.path, counts)
    return MigrationResult(migrated=True, counts=counts, backup_path=backup_path)


def migrate_file(path: str) -> MigrationResult:
    """Opens `path`, migrates it if needed and closes it."""
    handle = open_store(path)
    try:
        return migrate(handle)
    finally:
        close_store(handle)


def migrate_directory(directory: str, progress: bool = False) -> List[Tuple[str, Union[MigrationResult, GalleryStoreError]]]:
    """
    Migrates every .db file in `directory`, skipping earlier backups. A failing
    file is reported in the results and does not stop the others.
    """
    if not os.path.isdir(directory):
        raise PersistenceError(f"Directory not found: {directory}")

    db_files = sorted(
        name for name in os.listdir(directory)
        if name.endswith(".db") and "_backup_" not in name
    )
    results = []
    for name in tqdm(db_files, desc="Migrating databases", disable=not progress):
        try:
            results.append((name, migrate_file(os.path.join(directory, name))))
        except GalleryStoreError as e:
            logger.error("Failed to migrate %s: %s", name, e)
            results.append((name, e))
    return results
