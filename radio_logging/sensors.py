#!/usr/bin/env python3
"""
Sensors and Recording Scheduler

A target receives sensor names over the radio, looks each one up in its
SensorRegistry, configures it and hands the list to a RecordingScheduler.
The scheduler takes readings according to each sensor's RecordingConfig and
reports every logged row to an optional row callback.

Row Format (passed to the callback):
    [sensorName, timeMs, reading, eventFlag]

When all sensors are done the scheduler sets the shared finished flag and
notifies the callback once more with an empty row.
"""

import logging
import random
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from .protocol import RecordingConfig, format_number


Reader = Callable[[], Optional[float]]


@dataclass
class Sensor:
    """A named sensor plus the recording config a job gave it."""
    name: str
    reader: Reader = field(repr=False)
    config: Optional[RecordingConfig] = None

    def configure(self, config: RecordingConfig):
        self.config = config

    def read(self) -> Optional[float]:
        """Take one reading. None means the sensor is not available."""
        return self.reader()


class SensorRegistry:
    """Maps sensor names to readers. Every lookup builds a fresh Sensor."""

    def __init__(self):
        self._readers: Dict[str, Reader] = {}

    def register(self, name: str, reader: Reader):
        if "," in name:
            raise ValueError(f"Sensor name cannot contain a comma: {name!r}")
        self._readers[name] = reader

    def get_by_name(self, name: str) -> Optional[Sensor]:
        reader = self._readers.get(name)
        if reader is None:
            return None
        return Sensor(name=name, reader=reader)

    def names(self) -> List[str]:
        return list(self._readers)

    def __contains__(self, name: str) -> bool:
        return name in self._readers

    def __len__(self) -> int:
        return len(self._readers)


def simulated_registry(seed: int = None) -> SensorRegistry:
    """Registry of simulated sensors for devices without real hardware."""
    rng = random.Random(seed)
    registry = SensorRegistry()
    registry.register("Temp", lambda: round(rng.gauss(21.0, 0.8), 1))
    registry.register("Light", lambda: float(rng.randint(0, 255)))
    registry.register("Sound", lambda: float(rng.randint(0, 255)))
    registry.register("Accel X", lambda: float(rng.randint(-1024, 1024)))
    registry.register("Accel Y", lambda: float(rng.randint(-1024, 1024)))
    registry.register("Accel Z", lambda: float(rng.randint(-1024, 1024)))
    registry.register("Compass", lambda: float(rng.randint(0, 359)))
    return registry


# =============================================================================
# Recording Scheduler
# =============================================================================

class RecordingScheduler:
    """Executes a job: a list of configured sensors."""

    def start(self, sensors: Sequence[Sensor], row_callback=None):
        """
        Start recording.

        Args:
            sensors: Configured sensors, in job order.
            row_callback: Object with on_row_logged(row), or None.
        """
        raise NotImplementedError

    def stop(self):
        """Abandon the current job."""


class ThreadedRecordingScheduler(RecordingScheduler):
    """
    Records on a background thread (or inline with blocking=True).

    Sensors are sampled in order of their next due time. Periodic sensors are
    due every period_ms; event sensors are polled every period_ms and only
    log when their condition holds.
    """

    def __init__(
        self,
        finished_flag: threading.Event,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        blocking: bool = False,
        logger: logging.Logger = None,
    ):
        self.finished_flag = finished_flag
        self.logger = logger or logging.getLogger("Scheduler")
        self._sleep = sleep
        self._clock = clock
        self._blocking = blocking
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.rows_logged = 0

    def start(self, sensors: Sequence[Sensor], row_callback=None):
        self.stop()
        self._stop.clear()
        sensors = list(sensors)

        self.logger.info(
            f"Recording {len(sensors)} sensors: {', '.join(s.name for s in sensors)}"
        )

        if self._blocking:
            self._record(sensors, row_callback)
            return

        self._thread = threading.Thread(
            target=self._record, args=(sensors, row_callback), name="Recorder", daemon=True
        )
        self._thread.start()

    def stop(self):
        self._stop.set()
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=1)
        self._thread = None

    def _record(self, sensors: List[Sensor], row_callback):
        started = self._clock()
        remaining = {i: s.config.measurements for i, s in enumerate(sensors) if s.config}
        next_due = {i: 0 for i in remaining}

        while remaining and not self._stop.is_set():
            index = min(remaining, key=lambda i: next_due[i])
            wait_ms = next_due[index] - self._elapsed_ms(started)
            if wait_ms > 0:
                self._sleep(wait_ms / 1000.0)

            sensor = sensors[index]
            config = sensor.config
            next_due[index] += config.period_ms

            reading = sensor.read()
            if reading is None:
                if not config.is_event:
                    self._consume(remaining, index)
                continue

            if not config.matches(reading):
                continue

            self._consume(remaining, index)
            row = [
                sensor.name,
                str(self._elapsed_ms(started)),
                format_number(reading),
                "1" if config.is_event else "0",
            ]
            self.rows_logged += 1
            self._notify(row_callback, row)

        if self._stop.is_set():
            self.logger.info("Recording stopped")
            return

        self.logger.info(f"Recording finished: {self.rows_logged} rows")
        self.finished_flag.set()
        self._notify(row_callback, [])

    def _elapsed_ms(self, started: float) -> int:
        return int(round((self._clock() - started) * 1000))

    @staticmethod
    def _consume(remaining: Dict[int, int], index: int):
        remaining[index] -= 1
        if remaining[index] <= 0:
            del remaining[index]

    def _notify(self, row_callback, row: List[str]):
        if not row_callback:
            return

        try:
            row_callback.on_row_logged(row)
        except Exception as e:
            self.logger.error(f"Row callback error: {e}")
