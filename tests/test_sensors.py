#!/usr/bin/env python3
"""
Sensor registry and recording scheduler tests.
"""

import threading

import pytest

from radio_logging.protocol import RecordingConfig
from radio_logging.sensors import SensorRegistry, ThreadedRecordingScheduler, simulated_registry

from conftest import FakeClock


class RowSink:
    def __init__(self):
        self.rows = []

    def on_row_logged(self, row):
        self.rows.append(row)


def configured(registry, name, config):
    sensor = registry.get_by_name(name)
    sensor.configure(config)
    return sensor


@pytest.fixture
def scheduler():
    clock = FakeClock()
    return ThreadedRecordingScheduler(
        threading.Event(), sleep=clock.sleep, clock=clock, blocking=True
    )


def test_registry_lookup():
    registry = SensorRegistry()
    registry.register("Temp", lambda: 20.0)

    first = registry.get_by_name("Temp")
    second = registry.get_by_name("Temp")

    assert first.name == "Temp"
    assert first.read() == 20.0
    assert first is not second
    assert registry.get_by_name("Humidity") is None
    assert "Temp" in registry
    assert len(registry) == 1


def test_registry_rejects_delimiter():
    with pytest.raises(ValueError):
        SensorRegistry().register("Accel,X", lambda: 0.0)


def test_simulated_registry_names():
    registry = simulated_registry(seed=1)

    assert {"Temp", "Light", "Sound", "Compass"} <= set(registry.names())
    assert isinstance(registry.get_by_name("Light").read(), float)


def test_interleaved_periodic_sensors(scheduler):
    registry = SensorRegistry()
    registry.register("Temp", lambda: 21.5)
    registry.register("Light", lambda: 7.0)
    sink = RowSink()

    scheduler.start(
        [
            configured(registry, "Temp", RecordingConfig.periodic(2, 1000)),
            configured(registry, "Light", RecordingConfig.periodic(3, 500)),
        ],
        sink,
    )

    assert sink.rows == [
        ["Temp", "0", "21.5", "0"],
        ["Light", "0", "7", "0"],
        ["Light", "500", "7", "0"],
        ["Temp", "1000", "21.5", "0"],
        ["Light", "1000", "7", "0"],
        [],
    ]
    assert scheduler.rows_logged == 5
    assert scheduler.finished_flag.is_set()


def test_finish_without_callback(scheduler):
    registry = SensorRegistry()
    registry.register("Temp", lambda: 1.0)

    scheduler.start([configured(registry, "Temp", RecordingConfig.periodic(1, 10))])

    assert scheduler.finished_flag.is_set()
    assert scheduler.rows_logged == 1


def test_callback_error_does_not_stop_recording(scheduler):
    registry = SensorRegistry()
    registry.register("Temp", lambda: 1.0)

    class Broken:
        def on_row_logged(self, row):
            raise RuntimeError("radio down")

    scheduler.start([configured(registry, "Temp", RecordingConfig.periodic(3, 10))], Broken())

    assert scheduler.rows_logged == 3
    assert scheduler.finished_flag.is_set()


def test_background_recording():
    finished = threading.Event()
    scheduler = ThreadedRecordingScheduler(finished, sleep=lambda s: None)
    registry = SensorRegistry()
    registry.register("Temp", lambda: 1.0)
    sink = RowSink()

    scheduler.start([configured(registry, "Temp", RecordingConfig.periodic(2, 1))], sink)

    assert finished.wait(timeout=5)
    scheduler.stop()
    assert len(sink.rows) == 3
