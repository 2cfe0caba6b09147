#!/usr/bin/env python3
"""
Commander-Target Radio Protocol

This module defines the text protocol spoken between the commander and the
targets over one shared broadcast channel.

Protocol Overview:
- Every datagram is a short string: one tag character, then comma-separated fields
- There are no acknowledgements and no ordering guarantee
- Datagrams are bounded in length; the codec never fragments, senders split
- Field values must never contain the delimiter (no escaping exists)

Bootstrap Flow:
    1. A device broadcasts JOIN_REQUEST ("J") a few times
    2. A commander, if present, answers BECOME_TARGET ("T,<id>")
    3. A device that hears no answer becomes the commander (id 0)

Message Format:
    <tag>[,<field>]*

Tags:
    J: JOIN_REQUEST       - Target -> Commander, no fields
    S: START_LOGGING      - Commander -> Target, [sensorCount, streamBack]
    T: BECOME_TARGET      - Commander -> Target, [assignedId]
    G: GET_ID             - Commander -> Target, no fields (request)
                            Target -> Commander, [ownId] (reply)
    D: DATA_STREAM        - Commander -> Target, [sensorName, configType, ...params]
                            Target -> Commander, [deviceId, sensorName, timestampMs, reading, eventFlag]
    F: DATA_STREAM_FINISH - Target -> Commander, no fields

The DATA_STREAM and GET_ID tags are shared by both directions. Which grammar
applies is decided by the role of the receiver, see parse_for_commander() and
parse_for_target().

Recording Config Grammar:
    P,<measurements>,<periodMs>
    E,<measurements>,<inequality>,<comparator>
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Tuple, Union


# =============================================================================
# Constants
# =============================================================================

# Field delimiter on the wire
DELIMITER = ","

# Conservative radio payload limit (characters)
MAX_DATAGRAM_LENGTH = 32

# Polling period used by event-triggered sensors (ms)
EVENT_POLLING_PERIOD_MS = 100

# Supported comparison operators for event-triggered recording
INEQUALITIES = ("<", ">", "<=", ">=", "=", "!=")


# =============================================================================
# Enums
# =============================================================================

class Command(Enum):
    """Protocol commands and the tag character sent for each."""
    JOIN_REQUEST = "J"
    START_LOGGING = "S"
    BECOME_TARGET = "T"
    GET_ID = "G"
    DATA_STREAM = "D"
    DATA_STREAM_FINISH = "F"


class ConfigKind(Enum):
    """Recording config types and their wire character."""
    PERIODIC = "P"
    EVENT = "E"


# =============================================================================
# Raw Message
# =============================================================================

@dataclass(frozen=True)
class Message:
    """A decoded datagram: command tag plus ordered string fields."""
    command: Command
    fields: Tuple[str, ...] = ()

    def encode(self, max_length: int = MAX_DATAGRAM_LENGTH) -> str:
        """Encode message to its wire form."""
        return encode(self.command, self.fields, max_length=max_length)


def encode(
    command: Command,
    fields: Sequence[object] = (),
    max_length: int = MAX_DATAGRAM_LENGTH,
) -> str:
    """
    Encode a command and its fields into a single datagram.

    Args:
        command: Protocol command.
        fields: Ordered field values (converted with str()).
        max_length: Largest datagram the transport accepts.

    Returns:
        Datagram string.

    Raises:
        ValueError: If a field contains the delimiter or the datagram is too long.
    """
    parts = [command.value]
    for value in fields:
        text = str(value)
        if DELIMITER in text:
            raise ValueError(f"Field contains delimiter: {text!r}")
        parts.append(text)

    datagram = DELIMITER.join(parts)
    if len(datagram) > max_length:
        raise ValueError(f"Datagram too long: {len(datagram)} > {max_length}")
    return datagram


def decode(datagram: str) -> Optional[Message]:
    """Decode a datagram. Returns None for empty input or an unknown tag."""
    if not datagram:
        return None

    parts = datagram.split(DELIMITER)
    try:
        command = Command(parts[0])
    except ValueError:
        return None

    return Message(command=command, fields=tuple(parts[1:]))


# =============================================================================
# Recording Config
# =============================================================================

@dataclass(frozen=True)
class RecordingConfig:
    """
    How a target records one sensor.

    Periodic configs take `measurements` readings every `period_ms`.
    Event configs poll every EVENT_POLLING_PERIOD_MS and log a reading each
    time `reading <inequality> comparator` holds, until `measurements` events
    have been logged.
    """
    kind: ConfigKind
    measurements: int
    period_ms: int = EVENT_POLLING_PERIOD_MS
    inequality: Optional[str] = None
    comparator: Optional[float] = None

    @classmethod
    def periodic(cls, measurements: int, period_ms: int) -> "RecordingConfig":
        return cls(kind=ConfigKind.PERIODIC, measurements=measurements, period_ms=period_ms)

    @classmethod
    def event(
        cls,
        measurements: int,
        inequality: str,
        comparator: float,
        period_ms: int = EVENT_POLLING_PERIOD_MS,
    ) -> "RecordingConfig":
        if inequality not in INEQUALITIES:
            raise ValueError(f"Unsupported inequality: {inequality!r}")
        return cls(
            kind=ConfigKind.EVENT,
            measurements=measurements,
            period_ms=period_ms,
            inequality=inequality,
            comparator=comparator,
        )

    @property
    def is_event(self) -> bool:
        return self.kind == ConfigKind.EVENT

    def to_fields(self) -> List[str]:
        """Serialize to wire fields (without the sensor name)."""
        if self.kind == ConfigKind.PERIODIC:
            return [self.kind.value, str(self.measurements), str(self.period_ms)]
        return [
            self.kind.value,
            str(self.measurements),
            self.inequality,
            format_number(self.comparator),
        ]

    def serialize(self) -> str:
        return DELIMITER.join(self.to_fields())

    @classmethod
    def from_fields(
        cls,
        fields: Sequence[str],
        event_period_ms: int = EVENT_POLLING_PERIOD_MS,
    ) -> Optional["RecordingConfig"]:
        """Parse wire fields. Returns None if they do not match the grammar."""
        if not fields:
            return None

        try:
            kind = ConfigKind(fields[0])
        except ValueError:
            return None

        try:
            if kind == ConfigKind.PERIODIC and len(fields) == 3:
                return cls.periodic(int(fields[1]), int(fields[2]))
            if kind == ConfigKind.EVENT and len(fields) == 4:
                return cls.event(
                    int(fields[1]),
                    fields[2],
                    float(fields[3]),
                    period_ms=event_period_ms,
                )
        except ValueError:
            return None

        return None

    def matches(self, reading: float) -> bool:
        """Whether a reading satisfies this config's event condition."""
        if not self.is_event:
            return True

        comparator = self.comparator
        return {
            "<": reading < comparator,
            ">": reading > comparator,
            "<=": reading <= comparator,
            ">=": reading >= comparator,
            "=": reading == comparator,
            "!=": reading != comparator,
        }[self.inequality]


def format_number(value: float) -> str:
    """Compact decimal form for readings and thresholds (21.5, 1000, -3)."""
    if float(value).is_integer():
        return str(int(value))
    return f"{value:g}"


# =============================================================================
# Typed Messages
# =============================================================================

@dataclass(frozen=True)
class JoinRequest:
    """J: an unassigned device asks for an id."""


@dataclass(frozen=True)
class BecomeTarget:
    """T: commander assigns an id."""
    assigned_id: int


@dataclass(frozen=True)
class StartLogging:
    """S: header announcing a job of `sensor_count` payload messages."""
    sensor_count: int
    stream_back: bool


@dataclass(frozen=True)
class JobPayload:
    """D (commander -> target): one sensor of a job."""
    sensor_name: str
    config: RecordingConfig


@dataclass(frozen=True)
class IdRequest:
    """G (commander -> target): every target should report its id."""


@dataclass(frozen=True)
class IdReply:
    """G (target -> commander): a target's id."""
    device_id: int


@dataclass(frozen=True)
class RelayRow:
    """D (target -> commander): one row a target logged."""
    device_id: int
    sensor_name: str
    timestamp_ms: str
    reading: str
    event: str


@dataclass(frozen=True)
class StreamFinish:
    """F: a target finished its job."""


CommanderInbound = Union[JoinRequest, IdReply, RelayRow, StreamFinish]
TargetInbound = Union[BecomeTarget, StartLogging, JobPayload, IdRequest]


def _parse_int(text: str) -> Optional[int]:
    try:
        return int(text)
    except ValueError:
        return None


def parse_for_commander(message: Message) -> Optional[CommanderInbound]:
    """
    Interpret a message as received by the commander.

    Returns:
        Typed message, or None if the message is not addressed to a commander
        or does not match the expected grammar.
    """
    command, fields = message.command, message.fields

    if command == Command.JOIN_REQUEST:
        return JoinRequest()

    if command == Command.GET_ID and len(fields) == 1:
        device_id = _parse_int(fields[0])
        return IdReply(device_id) if device_id is not None else None

    if command == Command.DATA_STREAM and len(fields) == 5:
        device_id = _parse_int(fields[0])
        if device_id is None:
            return None
        return RelayRow(device_id, fields[1], fields[2], fields[3], fields[4])

    if command == Command.DATA_STREAM_FINISH:
        return StreamFinish()

    return None


def parse_for_target(
    message: Message,
    event_period_ms: int = EVENT_POLLING_PERIOD_MS,
) -> Optional[TargetInbound]:
    """
    Interpret a message as received by a target.

    Peer traffic (other targets' join requests, id replies and relayed rows)
    does not match the target grammar and yields None.
    """
    command, fields = message.command, message.fields

    if command == Command.BECOME_TARGET and len(fields) == 1:
        assigned_id = _parse_int(fields[0])
        return BecomeTarget(assigned_id) if assigned_id is not None else None

    if command == Command.START_LOGGING and len(fields) == 2:
        sensor_count = _parse_int(fields[0])
        if sensor_count is None or sensor_count < 0:
            return None
        return StartLogging(sensor_count, fields[1] == "1")

    if command == Command.GET_ID and not fields:
        return IdRequest()

    if command == Command.DATA_STREAM and len(fields) >= 2:
        config = RecordingConfig.from_fields(fields[1:], event_period_ms)
        if config is None:
            return None
        return JobPayload(fields[0], config)

    return None


# =============================================================================
# Helper Functions
# =============================================================================

def create_join_request() -> Message:
    return Message(Command.JOIN_REQUEST)


def create_become_target(assigned_id: int) -> Message:
    return Message(Command.BECOME_TARGET, (str(assigned_id),))


def create_id_request() -> Message:
    return Message(Command.GET_ID)


def create_id_reply(device_id: int) -> Message:
    return Message(Command.GET_ID, (str(device_id),))


def create_start_logging(sensor_count: int, stream_back: bool) -> Message:
    """Create the header message of a job."""
    return Message(Command.START_LOGGING, (str(sensor_count), "1" if stream_back else "0"))


def create_job_payload(sensor_name: str, config: RecordingConfig) -> Message:
    """Create one payload message of a job."""
    return Message(Command.DATA_STREAM, (sensor_name, *config.to_fields()))


def create_job_messages(
    sensor_names: Sequence[str],
    configs: Sequence[RecordingConfig],
    stream_back: bool,
) -> List[Message]:
    """
    Split a sensor job into one header and one payload message per sensor.

    Raises:
        ValueError: If the sensor and config lists differ in length.
    """
    if len(sensor_names) != len(configs):
        raise ValueError(
            f"Sensor/config count mismatch: {len(sensor_names)} != {len(configs)}"
        )

    messages = [create_start_logging(len(sensor_names), stream_back)]
    for name, config in zip(sensor_names, configs):
        messages.append(create_job_payload(name, config))
    return messages


def create_relay_row(device_id: int, row: Sequence[object]) -> Message:
    """Create a relay message: the target's id followed by its row fields."""
    return Message(Command.DATA_STREAM, (str(device_id), *(str(v) for v in row)))


def create_stream_finish() -> Message:
    return Message(Command.DATA_STREAM_FINISH)
