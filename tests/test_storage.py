#!/usr/bin/env python3
"""
Persistent log tests.
"""

from radio_logging.storage import DataStorage


def test_append_and_count(storage):
    assert storage.row_count() == 0

    first = storage.append(1, "Temp", "0", "21.5", "0")
    second = storage.append(2, "Light", "100", "80", "1")

    assert second > first
    assert storage.row_count() == 2
    assert storage.row_count(device_id=2) == 1


def test_rows_keep_arrival_order(storage):
    for t in range(5):
        storage.append(1, "Temp", str(t * 1000), "21", "0")

    rows = storage.get_rows()

    assert [r.time_ms for r in rows] == ["0", "1000", "2000", "3000", "4000"]
    assert rows[0].received_at > 0


def test_paging_and_filter(storage):
    for device_id in (1, 2, 1, 3, 1):
        storage.append(device_id, "Temp", "0", "1", "0")

    assert len(storage.get_rows(limit=2)) == 2
    assert [r.device_id for r in storage.get_rows(limit=2, offset=3)] == [3, 1]
    assert [r.device_id for r in storage.get_rows(device_id=1)] == [1, 1, 1]
    assert storage.get_device_ids() == [1, 2, 3]


def test_clear(storage):
    storage.append(1, "Temp", "0", "1", "0")
    storage.append(1, "Temp", "1", "1", "0")

    assert storage.clear() == 2
    assert storage.row_count() == 0


def test_reopen_keeps_rows(tmp_path):
    path = str(tmp_path / "log.db")
    DataStorage(path).append(4, "Sound", "0", "12", "0")

    assert DataStorage(path).row_count() == 1
