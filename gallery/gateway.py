"""
Loading, validating, saving and closing SQLite gallery stores.

A store file is read fully into memory when it is opened. Every change made
through the returned handle lives only in that in-memory copy until
`save_store` (or `handle.save()`) writes it back. Nothing in this package saves
implicitly: a handle closed without saving discards its changes.

One writer handle per file at a time is the caller's responsibility; no file
locking is done here.
"""

import json
import logging
import os
import sqlite3
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import create_engine, event, inspect
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .database import Base, metadata_table
from .errors import (
    InvalidArgumentError,
    InvalidStoreError,
    PersistenceError,
    StoreFileNotFoundError,
)
from .utils import atomic_write_bytes, utc_now_iso

logger = logging.getLogger(__name__)

SQLITE_SIGNATURE = b"SQLite format 3\x00"
REQUIRED_TABLES = {"images", "metadata"}
DEFAULT_VERSION = "1.0"


def _begin_transaction(conn):
    # The sqlite3 connection runs in autocommit mode, so SQLAlchemy issues BEGIN
    # itself. This makes DDL transactional and enables SAVEPOINTs.
    conn.exec_driver_sql("BEGIN")


def _connect(data: Optional[bytes] = None) -> sqlite3.Connection:
    connection = sqlite3.connect(":memory:", check_same_thread=False, isolation_level=None)
    try:
        if data is not None:
            connection.deserialize(data)
        connection.execute("PRAGMA foreign_keys = ON")
        # Forces SQLite to read the page header, so garbage bytes fail here.
        connection.execute("SELECT count(*) FROM sqlite_master").fetchone()
    except sqlite3.Error:
        connection.close()
        raise
    return connection


class StoreHandle:
    """An open, in-memory copy of one store file, bound to that file's path."""

    def __init__(self, path: str, connection: sqlite3.Connection):
        self.path = path
        self._connection = connection
        self.engine = create_engine("sqlite://", creator=lambda: connection, poolclass=StaticPool)
        event.listen(self.engine, "begin", _begin_transaction)
        self._sessionmaker = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)

    @property
    def closed(self) -> bool:
        return self._connection is None

    def session(self) -> Session:
        if self.closed:
            raise InvalidArgumentError(f"Store handle for '{self.path}' is closed.")
        return self._sessionmaker()

    def table_names(self) -> List[str]:
        return inspect(self.engine).get_table_names()

    def export_bytes(self) -> bytes:
        if self.closed:
            raise InvalidArgumentError(f"Store handle for '{self.path}' is closed.")
        return self._connection.serialize()

    def save(self) -> None:
        save_store(self)

    def close(self, save_first: bool = False) -> None:
        close_store(self, save_first=save_first)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        # Leaving the block never saves; callers save explicitly.
        self.close()

    def __repr__(self):
        state = "closed" if self.closed else "open"
        return f"<StoreHandle {self.path!r} ({state})>"


def open_store(path: str) -> StoreHandle:
    """Reads the store at `path` into memory and returns a handle bound to it."""
    if not os.path.isfile(path):
        raise StoreFileNotFoundError(f"Database file not found: {path}")

    with open(path, "rb") as f:
        data = f.read()

    if not data.startswith(SQLITE_SIGNATURE):
        raise InvalidStoreError(f"'{path}' is not a SQLite database.")

    try:
        connection = _connect(data)
    except sqlite3.Error as e:
        raise InvalidStoreError(f"Could not load '{path}': {e}") from e

    logger.debug("Opened store %s (%d bytes)", path, len(data))
    return StoreHandle(path, connection)


def create_store(path: str, metadata: Optional[Dict[str, Any]] = None, overwrite: bool = False) -> StoreHandle:
    """
    Creates an empty store with the current schema, writes it to `path` and
    returns an open handle for it.
    """
    if os.path.exists(path) and not overwrite:
        raise InvalidArgumentError(f"'{path}' already exists.")

    handle = StoreHandle(path, _connect())
    try:
        now = utc_now_iso()
        seed = {"version": DEFAULT_VERSION, "lastUpdated": now}
        seed.update(metadata or {})
        with handle.engine.begin() as conn:
            Base.metadata.create_all(conn)
            for key, value in seed.items():
                conn.execute(
                    sqlite_insert(metadata_table)
                    .values(key=key, value=json.dumps(value), created_at=now, updated_at=now)
                    .on_conflict_do_nothing()
                )
        save_store(handle)
    except Exception:
        handle.close()
        raise

    logger.info("Created store %s", path)
    return handle


def is_valid_store(path: str) -> bool:
    """
    True if `path` is a SQLite file holding at least the images and metadata
    tables. Never raises; any problem means "not a valid store".
    """
    try:
        if not os.path.isfile(path):
            return False
        with open(path, "rb") as f:
            if f.read(len(SQLITE_SIGNATURE)) != SQLITE_SIGNATURE:
                return False
        handle = open_store(path)
        try:
            return REQUIRED_TABLES.issubset(handle.table_names())
        finally:
            handle.close()
    except Exception as e:
        logger.debug("Store validation failed for %s: %s", path, e)
        return False


def save_store(handle: StoreHandle) -> None:
    """Serializes the whole in-memory store and overwrites the bound file."""
    try:
        data = handle.export_bytes()
    except sqlite3.Error as e:
        raise PersistenceError(f"Could not export '{handle.path}': {e}") from e

    try:
        atomic_write_bytes(handle.path, data)
    except OSError as e:
        raise PersistenceError(f"Could not write '{handle.path}': {e}") from e

    logger.info("Saved store %s (%d bytes)", handle.path, len(data))


def close_store(handle: StoreHandle, save_first: bool = False) -> None:
    """Releases the in-memory store. Unsaved changes are lost unless `save_first`."""
    if handle.closed:
        return
    if save_first:
        save_store(handle)
    handle.engine.dispose()
    handle._connection.close()
    handle._connection = None


def file_stats(path: str) -> Dict[str, Any]:
    """Size and modification time of the backing file, if it exists."""
    if not path or not os.path.exists(path):
        return {}
    stat = os.stat(path)
    return {
        "file_size": stat.st_size,
        "last_modified": datetime.fromtimestamp(stat.st_mtime, timezone.utc).isoformat(),
    }
