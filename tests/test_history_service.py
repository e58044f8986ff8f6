"""GenerationHistoryService 单元测试。"""

from __future__ import annotations

import itertools

import pytest

from conftest import make_data_url
from modules.pipelines.errors import PersistenceError, ValidationError
from modules.services.history_service import GenerationHistoryService, GenerationRecord


def test_append_assigns_increasing_ids(history):
    first = history.append(GenerationRecord(image_url=make_data_url(), original_filename="a.png"))
    second = history.append(GenerationRecord(image_url=make_data_url(), original_filename="b.png"))

    assert second > first


def test_round_trip_preserves_fields(history):
    image = make_data_url()
    line_art = make_data_url(color=(255, 255, 255))
    record_id = history.append(
        GenerationRecord(
            image_url=image,
            secondary_image_url=line_art,
            text="model note",
            original_filename="portrait.png",
        )
    )

    (record,) = history.list_all()
    assert record.id == record_id
    assert record.image_url == image
    assert record.secondary_image_url == line_art
    assert record.text == "model note"
    assert record.original_filename == "portrait.png"
    assert record.video_blob is None
    assert record.video_url is None
    assert record.timestamp is not None


def test_list_all_orders_newest_first_with_id_tiebreak(tmp_path):
    ticks = iter([1000, 1000, 2000])
    service = GenerationHistoryService(tmp_path / "history.sqlite3", clock=lambda: next(ticks))
    for name in ("first.png", "second.png", "third.png"):
        service.append(GenerationRecord(image_url=make_data_url(), original_filename=name))

    names = [record.original_filename for record in service.list_all()]
    service.close()

    assert names == ["third.png", "second.png", "first.png"]


def test_video_records_get_fresh_handles(history, storage):
    history.append(GenerationRecord(video_blob=b"mp4-bytes", original_filename="beach.png"))

    (record,) = history.list_all()

    assert record.video_blob == b"mp4-bytes"
    assert record.video_url in storage.active_handles()
    with open(record.video_url, "rb") as fp:
        assert fp.read() == b"mp4-bytes"


def test_append_requires_image_or_video(history):
    with pytest.raises(ValidationError):
        history.append(GenerationRecord(text="only text"))


def test_clear_removes_everything(history):
    history.append(GenerationRecord(image_url=make_data_url()))
    history.append(GenerationRecord(video_blob=b"mp4"))

    history.clear()

    assert history.list_all() == []


def test_records_survive_reopen(tmp_path):
    path = tmp_path / "history.sqlite3"
    service = GenerationHistoryService(path)
    service.append(GenerationRecord(image_url=make_data_url(), original_filename="kept.png"))
    service.close()

    reopened = GenerationHistoryService(path)
    assert [record.original_filename for record in reopened.list_all()] == ["kept.png"]
    reopened.close()


def test_unwritable_database_raises_persistence_error(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    service = GenerationHistoryService(blocker / "history.sqlite3")

    with pytest.raises(PersistenceError):
        service.append(GenerationRecord(image_url=make_data_url()))


def test_write_failure_is_wrapped(tmp_path):
    service = GenerationHistoryService(tmp_path / "history.sqlite3")
    conn = service.open()
    conn.execute("DROP TABLE generations")

    with pytest.raises(PersistenceError):
        service.append(GenerationRecord(image_url=make_data_url()))
    with pytest.raises(PersistenceError):
        service.list_all()
    service.close()


def test_ids_are_not_reused_after_clear(tmp_path):
    service = GenerationHistoryService(tmp_path / "history.sqlite3", clock=itertools.count(1).__next__)
    first = service.append(GenerationRecord(image_url=make_data_url()))
    service.clear()
    second = service.append(GenerationRecord(image_url=make_data_url()))
    service.close()

    assert second > first
