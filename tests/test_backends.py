import json
from pathlib import Path

import pytest

from gallery.backend import open_backend
from gallery.errors import DuplicateIdentifierError, ErrorKind, InvalidArgumentError, InvalidStoreError, RecordNotFoundError
from gallery.gateway import create_store
from gallery.json_store import JsonImageStore
from gallery.models import ImageRecord
from gallery.records import SqliteImageStore


def _full_record(**overrides) -> ImageRecord:
    values = dict(
        public_id="a1",
        title="Sunset",
        description="Golden hour over the bay",
        src="images/sunset.jpg",
        ranking=None,
        width="1920",
        height="1080",
        is_major=False,
        group_id="g1",
        major_image_id="a0",
        date_added="2024-03-01T12:00:00+00:00",
        tags=["sunset", "beach"],
    )
    values.update(overrides)
    return ImageRecord(**values)


def test_round_trip(backend) -> None:
    backend.add(_full_record())
    [image] = backend.list_all().images

    assert image == _full_record(tags=["beach", "sunset"])
    # An absent ranking is never filled in.
    assert image.ranking is None


def test_date_added_set_once(backend) -> None:
    backend.add(ImageRecord(public_id="a1", title="Sunset"))
    created = backend.list_all().images[0].date_added
    assert created

    backend.update(ImageRecord(public_id="a1", title="Sunset, edited", ranking=3.5))
    image = backend.list_all().images[0]
    assert image.date_added == created
    assert image.ranking == 3.5


def test_public_id_is_unique(backend) -> None:
    backend.add(ImageRecord(public_id="a1", title="Sunset"))
    with pytest.raises(DuplicateIdentifierError) as excinfo:
        backend.add(ImageRecord(public_id="a1", title="Other"))
    assert excinfo.value.kind is ErrorKind.DUPLICATE_IDENTIFIER
    assert len(backend.list_all().images) == 1


@pytest.mark.parametrize("record", [
    ImageRecord(public_id="a1", title=""),
    ImageRecord(public_id="a1"),
    ImageRecord(public_id="", title="Sunset"),
    ImageRecord(title="Sunset"),
])
def test_required_fields(backend, record) -> None:
    with pytest.raises(InvalidArgumentError):
        backend.add(record)
    assert backend.list_all().images == []


def test_update_and_delete_missing(backend) -> None:
    with pytest.raises(RecordNotFoundError):
        backend.update(ImageRecord(public_id="nope", title="x"))
    with pytest.raises(RecordNotFoundError):
        backend.delete("nope")


def test_rename_preserves_tags(backend) -> None:
    backend.add(ImageRecord(public_id="a1", title="Sunset", tags=["sunset"]))
    backend.update(ImageRecord(public_id="a9", title="Sunset", tags=["sunset"]), previous_id="a1")
    assert [image.public_id for image in backend.list_by_tag("sunset")] == ["a9"]


def test_list_by_tag_is_exact(backend) -> None:
    backend.add(ImageRecord(public_id="a1", title="Sunset", tags=["sunset"]))
    backend.add(ImageRecord(public_id="a2", title="Sunrise", tags=["Sunset", "sunrise"]))
    backend.add(ImageRecord(public_id="a3", title="Dusk", tags=["sunset", "dusk"]))

    assert [image.public_id for image in backend.list_by_tag("sunset")] == ["a1", "a3"]
    assert [image.public_id for image in backend.list_by_tag("Sunset")] == ["a2"]
    assert backend.list_by_tag("missing") == []


def test_available_tags_scenario(backend) -> None:
    backend.add(ImageRecord(public_id="a1", title="Sunset", tags=["sunset", "beach"]))
    data = backend.list_all()
    assert len(data.images) == 1
    assert data.images[0].tags == ["beach", "sunset"]
    assert data.available_tags == ["beach", "sunset"]

    backend.add(ImageRecord(public_id="a2", title="Peak", tags=["mountains", "sunset"]))
    assert backend.list_all().available_tags == ["beach", "mountains", "sunset"]

    backend.delete("a1")
    data = backend.list_all()
    assert data.available_tags == ["mountains", "sunset"]
    assert data.metadata["availableTags"] == ["mountains", "sunset"]
    assert data.metadata["totalImages"] == 1


def test_stats(backend) -> None:
    backend.add(ImageRecord(public_id="a1", title="One", group_id="g1", tags=["x"]))
    backend.add(ImageRecord(public_id="a2", title="Two", group_id="g1", is_major=False, tags=["x", "y"]))
    backend.add(ImageRecord(public_id="a3", title="Three", group_id="g2"))
    backend.add(ImageRecord(public_id="a4", title="Four"))
    backend.save()

    stats = backend.stats()
    assert stats.total_images == 4
    assert stats.total_tags == 2
    assert stats.major_images == 3
    assert stats.total_groups == 2
    assert stats.file_size and stats.file_size > 0
    assert stats.last_modified


def test_open_backend_picks_by_extension(tmp_path: Path) -> None:
    json_path = tmp_path / "gallery.json"
    json_path.write_text(json.dumps([{"id": 3, "title": "Old", "date": "2020-01-01"}]))

    store = open_backend(str(json_path))
    assert isinstance(store, JsonImageStore)
    [image] = store.list_all().images
    assert image.public_id == "3"
    assert image.date_added == "2020-01-01"
    assert image.is_major is True


def test_open_backend_sqlite(tmp_path: Path) -> None:
    path = tmp_path / "gallery.db"
    create_store(str(path)).close()
    with open_backend(str(path)) as store:
        assert isinstance(store, SqliteImageStore)
        assert store.source == "sqlite"


def test_json_store_rejects_malformed_document(tmp_path: Path) -> None:
    path = tmp_path / "broken.json"
    path.write_text("{not json")
    with pytest.raises(InvalidStoreError):
        JsonImageStore(str(path)).list_all()

    path.write_text(json.dumps({"images": "nope"}))
    with pytest.raises(InvalidStoreError):
        JsonImageStore(str(path)).list_all()


def test_json_store_writes_camel_case(tmp_path: Path) -> None:
    path = tmp_path / "gallery.json"
    store = JsonImageStore.create(str(path))
    store.add(ImageRecord(public_id="a1", title="Sunset", group_id="g1", tags=["b", "a"]))

    document = json.loads(path.read_text())
    image = document["images"][0]
    assert image["publicId"] == "a1"
    assert image["groupId"] == "g1"
    assert image["isMajor"] is True
    assert image["tags"] == ["a", "b"]
    assert document["metadata"]["availableTags"] == ["a", "b"]
    assert document["metadata"]["totalImages"] == 1
