import json
from pathlib import Path

from gallery.convert import convert_json_to_sqlite, default_db_path
from gallery.gateway import open_store
from gallery.records import SqliteImageStore


def _write_gallery(path: Path) -> Path:
    document = {
        "images": [
            {"id": 1, "title": "Sunset", "ranking": 4, "tags": ["sunset", "beach"], "date": "2022-01-01"},
            {"publicId": "p2", "title": "Peak", "isMajor": False, "groupId": "g1", "tags": ["mountains"]},
            {"publicId": "p3", "title": "", "isMajor": False, "majorImageId": "p2", "tags": ["sub"]},
            {"title": "No id"},
            {"publicId": "p2", "title": "Duplicate"},
        ],
        "metadata": {"version": "1.0", "owner": "me", "totalImages": 99, "availableTags": ["stale"]},
    }
    path.write_text(json.dumps(document))
    return path


def test_default_db_path() -> None:
    assert default_db_path("/data/gallery.json") == "/data/gallery.db"


def test_convert_json_to_sqlite(tmp_path: Path) -> None:
    json_path = _write_gallery(tmp_path / "gallery.json")

    result = convert_json_to_sqlite(str(json_path))

    assert result.db_path == str(tmp_path / "gallery.db")
    assert result.converted == 3
    assert result.skipped == 2
    assert result.stats.total_images == 3
    assert result.stats.major_images == 1

    with SqliteImageStore(open_store(result.db_path)) as store:
        data = store.list_all()
        assert [image.public_id for image in data.images] == ["1", "p2", "p3"]
        assert data.images[0].date_added == "2022-01-01"
        assert data.images[0].ranking == 4.0
        assert data.available_tags == ["beach", "mountains", "sub", "sunset"]

        metadata = data.metadata
        assert metadata["owner"] == "me"
        assert metadata["source_file"] == "gallery.json"
        assert metadata["total_images"] == 5
        assert metadata["db_version"] == "1.0"
        assert "conversion_date" in metadata
        # Derived values are recomputed, not copied.
        assert metadata["totalImages"] == 3
        assert metadata["availableTags"] == ["beach", "mountains", "sub", "sunset"]


def test_convert_replaces_existing_database(tmp_path: Path) -> None:
    json_path = _write_gallery(tmp_path / "gallery.json")
    db_path = tmp_path / "out.db"
    db_path.write_bytes(b"old contents")

    result = convert_json_to_sqlite(str(json_path), str(db_path))

    assert result.converted == 3
    with SqliteImageStore(open_store(str(db_path))) as store:
        assert len(store.list_all().images) == 3


def test_untitled_subsidiary_images_survive(tmp_path: Path) -> None:
    json_path = tmp_path / "gallery.json"
    json_path.write_text(json.dumps([
        {"id": 1, "title": "Major"},
        {"id": 4, "title": "", "isMajor": False, "majorImageId": 1, "tags": ["sub"]},
    ]))

    result = convert_json_to_sqlite(str(json_path))

    assert (result.converted, result.skipped) == (2, 0)
    with SqliteImageStore(open_store(result.db_path)) as store:
        major, subsidiary = store.list_all().images
        assert major.public_id == "1"
        assert subsidiary.public_id == "4"
        assert subsidiary.title is None
        assert subsidiary.is_major is False
        assert subsidiary.major_image_id == "1"
        assert subsidiary.tags == ["sub"]
