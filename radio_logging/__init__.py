"""
Radio Logging Coordinator

Distributed sensor logging over a shared, unreliable broadcast radio channel.
One device (with a display) becomes the commander; every other device joins
as a target, receives a sensor job, records it and can stream its rows back.

Architecture:
    Commander (id 0)
        │
        ├── Broadcast channel: Meshtastic text packets, or in-process loopback
        ▼
    Targets (ids 1, 2, ...)
        - Join: J -> T,<id>
        - Registry: G -> G,<id> (replies staggered by id)
        - Jobs: S,<count>,<streamBack> then D,<sensor>,<config> per sensor
        - Relay: D,<id>,<sensor>,<timeMs>,<reading>,<event> ... F

Usage:
    from radio_logging import Coordinator, CoordinatorConfig, RecordingConfig
    from radio_logging.transport import MeshtasticTransport

    config = CoordinatorConfig.from_yaml("config.yaml")
    transport = MeshtasticTransport(config)
    transport.connect()

    coordinator = Coordinator(config, transport)
    coordinator.on_row(lambda row: print(f"{row.device_id}: {row.sensor}={row.reading}"))

    if coordinator.bootstrap() == Role.COMMANDER:
        print(coordinator.request_target_registry())
        coordinator.request_job(["Temp"], [RecordingConfig.periodic(10, 1000)], stream_back=True)
"""

from .coordinator import Coordinator, setup_logging
from .models import CoordinatorConfig, ApiConfig, LoggedRow, Role
from .protocol import (
    Command,
    ConfigKind,
    Message,
    RecordingConfig,
    decode,
    encode,
)
from .sensors import Sensor, SensorRegistry, ThreadedRecordingScheduler, simulated_registry
from .storage import DataStorage
from .tasks import HoldRepeater, RepeatingTask
from .transport import LoopbackChannel, LoopbackTransport, MeshtasticTransport

__version__ = "0.1.0"
__all__ = [
    # Coordinator
    "Coordinator",
    "CoordinatorConfig",
    "ApiConfig",
    "LoggedRow",
    "Role",
    "setup_logging",
    # Protocol
    "Command",
    "ConfigKind",
    "Message",
    "RecordingConfig",
    "encode",
    "decode",
    # Collaborators
    "Sensor",
    "SensorRegistry",
    "ThreadedRecordingScheduler",
    "simulated_registry",
    "DataStorage",
    "RepeatingTask",
    "HoldRepeater",
    # Transports
    "LoopbackChannel",
    "LoopbackTransport",
    "MeshtasticTransport",
]
