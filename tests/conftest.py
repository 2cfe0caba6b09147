"""
Shared fixtures: loopback fleets with a fake clock.

Every coordinator in a fleet shares one FakeClock, so waits cost no real time
and timestamps in relayed rows are exact.
"""

from typing import List

import pytest

from radio_logging.coordinator import Coordinator
from radio_logging.models import UNASSIGNED_ID, CoordinatorConfig
from radio_logging.sensors import RecordingScheduler, SensorRegistry, ThreadedRecordingScheduler
from radio_logging.storage import DataStorage
from radio_logging.transport import LoopbackChannel


class FakeClock:
    """Monotonic clock that only moves when sleep() is called."""

    def __init__(self):
        self.now_ms = 0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now_ms / 1000.0

    def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.now_ms += int(round(seconds * 1000))


class SpyScheduler(RecordingScheduler):
    """Records hand-offs instead of recording."""

    def __init__(self):
        self.starts = []
        self.stopped = False

    def start(self, sensors, row_callback=None):
        self.starts.append((list(sensors), row_callback))

    def stop(self):
        self.stopped = True


def constant_registry() -> SensorRegistry:
    registry = SensorRegistry()
    registry.register("Temp", lambda: 21.5)
    registry.register("Light", lambda: 100.0)
    return registry


def make_coordinator(
    channel: LoopbackChannel,
    name: str,
    clock: FakeClock,
    display: bool = False,
    registry: SensorRegistry = None,
    storage: DataStorage = None,
) -> Coordinator:
    """Coordinator on a loopback channel with a blocking scheduler."""
    config = CoordinatorConfig(display_attached=display)
    coordinator = Coordinator(
        config,
        channel.attach(name),
        sensor_registry=registry or constant_registry(),
        storage=storage,
        sleep=clock.sleep,
    )
    coordinator.scheduler = ThreadedRecordingScheduler(
        coordinator.finished_logging,
        sleep=clock.sleep,
        clock=clock,
        blocking=True,
    )
    return coordinator


def join_as_target(coordinator: Coordinator, device_id: int = UNASSIGNED_ID) -> Coordinator:
    """Put a coordinator into the target role without a commander."""
    with coordinator._lock:
        coordinator._become_target()
        coordinator.id = device_id
    return coordinator


class Fleet:
    """One commander plus targets on a shared loopback channel."""

    def __init__(self, channel: LoopbackChannel, clock: FakeClock, storage: DataStorage = None):
        self.channel = channel
        self.clock = clock
        self.commander = make_coordinator(channel, "commander", clock, display=True, storage=storage)
        self.commander.bootstrap()
        self.targets: List[Coordinator] = []

    def add_target(self, registry: SensorRegistry = None) -> Coordinator:
        target = make_coordinator(
            self.channel, f"target-{len(self.targets) + 1}", self.clock, registry=registry
        )
        target.bootstrap()
        self.targets.append(target)
        return target

    def shutdown(self):
        for coordinator in [self.commander] + self.targets:
            coordinator.shutdown()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def channel():
    return LoopbackChannel()


@pytest.fixture
def storage(tmp_path):
    return DataStorage(str(tmp_path / "rows.db"))


@pytest.fixture
def make_fleet(channel, clock):
    fleets = []

    def _make(targets: int = 0, storage: DataStorage = None) -> Fleet:
        fleet = Fleet(channel, clock, storage=storage)
        for _ in range(targets):
            fleet.add_target()
        fleets.append(fleet)
        return fleet

    yield _make

    for fleet in fleets:
        fleet.shutdown()


@pytest.fixture
def spy_scheduler():
    return SpyScheduler()


@pytest.fixture
def lone_target(channel, clock, spy_scheduler):
    """An assigned target (id 2) alone on the channel, with a spy scheduler."""
    target = make_coordinator(channel, "target", clock)
    target.scheduler = spy_scheduler
    return join_as_target(target, 2)
