import os
import sqlite3
import tempfile
from pathlib import Path

import pytest

# The app creates DATA_DIR on import, so point it somewhere disposable first.
os.environ.setdefault("GALLERY_DATA_DIR", tempfile.mkdtemp(prefix="gallery-test-data-"))

from gallery.gateway import create_store  # noqa: E402
from gallery.json_store import JsonImageStore  # noqa: E402
from gallery.records import SqliteImageStore  # noqa: E402

LEGACY_SCHEMA = """
CREATE TABLE images (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    description TEXT,
    src TEXT,
    ranking REAL,
    width TEXT,
    height TEXT,
    is_major BOOLEAN DEFAULT 1,
    group_id TEXT,
    major_image_id INTEGER,
    date_added TEXT,
    created_at TEXT,
    updated_at TEXT
);
CREATE TABLE tags (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT UNIQUE NOT NULL,
    created_at TEXT
);
CREATE TABLE image_tags (
    image_id INTEGER,
    tag_id INTEGER,
    PRIMARY KEY (image_id, tag_id),
    FOREIGN KEY (image_id) REFERENCES images (id) ON DELETE CASCADE,
    FOREIGN KEY (tag_id) REFERENCES tags (id) ON DELETE CASCADE
);
CREATE TABLE metadata (
    key TEXT PRIMARY KEY,
    value TEXT,
    created_at TEXT,
    updated_at TEXT
);
CREATE INDEX idx_images_group_id ON images (group_id);
"""


def build_legacy_store(path: Path) -> Path:
    """Writes a store in the old layout: two images, three tags, one note."""
    conn = sqlite3.connect(path)
    try:
        conn.executescript(LEGACY_SCHEMA)
        conn.executemany(
            "INSERT INTO images (id, title, ranking, is_major, group_id, major_image_id, date_added)"
            " VALUES (?, ?, ?, ?, ?, ?, ?)",
            [
                (1, "Sunset", 4.5, 1, "g1", None, "2023-05-01T10:00:00+00:00"),
                (2, "Sunset (crop)", None, 0, "g1", 1, "2023-05-02T10:00:00+00:00"),
            ],
        )
        conn.executemany(
            "INSERT INTO tags (id, name) VALUES (?, ?)",
            [(1, "sunset"), (2, "beach"), (5, "unused")],
        )
        conn.executemany(
            "INSERT INTO image_tags (image_id, tag_id) VALUES (?, ?)",
            [(1, 1), (1, 2), (2, 1)],
        )
        conn.execute("INSERT INTO metadata (key, value) VALUES ('note', 'hello')")
        conn.commit()
    finally:
        conn.close()
    return path


@pytest.fixture
def legacy_db(tmp_path: Path) -> Path:
    return build_legacy_store(tmp_path / "legacy.db")


@pytest.fixture
def sqlite_store(tmp_path: Path):
    store = SqliteImageStore(create_store(str(tmp_path / "gallery.db")))
    yield store
    store.close()


@pytest.fixture(params=["sqlite", "json"])
def backend(request, tmp_path: Path):
    """Each CRUD test runs once per storage backend."""
    if request.param == "sqlite":
        store = SqliteImageStore(create_store(str(tmp_path / "gallery.db")))
    else:
        store = JsonImageStore.create(str(tmp_path / "gallery.json"))
    yield store
    store.close()
