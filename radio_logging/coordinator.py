#!/usr/bin/env python3
"""
Radio Logging Coordinator

One Coordinator runs on every device. At start-up it decides, once, whether
the device is the commander or a target, then installs the matching message
handler for the rest of the process lifetime.

Architecture:
    Commander (display attached, first on the channel)
        │
        ├── Broadcast channel (no ACKs, no ordering)
        ▼
    Targets (any number)
        - Ask for an id (JOIN_REQUEST) until one is assigned
        - Report their id when polled (GET_ID)
        - Reassemble jobs (START_LOGGING + DATA_STREAM x N)
        - Relay logged rows back (DATA_STREAM / DATA_STREAM_FINISH)

Threading:
    Inbound datagrams are handled one at a time under the coordinator lock.
    Waits and sends happen outside the lock: a handler returns the sends and
    hand-offs it wants, and handle_datagram() performs them after releasing.
"""

import logging
import sys
import threading
import time
from typing import Callable, List, Optional, Sequence, Set, Union

from .models import (
    COMMANDER_ID,
    FIRST_TARGET_ID,
    UNASSIGNED_ID,
    CoordinatorConfig,
    LoggedRow,
    ReassemblyState,
    Role,
)
from .protocol import (
    BecomeTarget,
    IdReply,
    IdRequest,
    JobPayload,
    JoinRequest,
    Message,
    RecordingConfig,
    RelayRow,
    StartLogging,
    StreamFinish,
    create_become_target,
    create_id_reply,
    create_id_request,
    create_job_messages,
    create_join_request,
    create_relay_row,
    create_stream_finish,
    decode,
    parse_for_commander,
    parse_for_target,
)
from .sensors import Sensor, SensorRegistry, RecordingScheduler, ThreadedRecordingScheduler
from .tasks import RepeatingTask
from .transport import Transport


# Maximum handlers per event type
MAX_EVENT_HANDLERS = 32

Effect = Callable[[], None]


def setup_logging(config: CoordinatorConfig):
    """Configure logging."""
    level = getattr(logging, config.log_level.upper())

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(config.log_file),
            logging.StreamHandler(sys.stdout),
        ],
    )


class Coordinator:
    """
    Commander/target protocol state for one device.

    All per-device state, including the next id to issue and the finished
    flag, lives on this object, so several coordinators can share one
    loopback channel.
    """

    def __init__(
        self,
        config: CoordinatorConfig,
        transport: Transport,
        sensor_registry: SensorRegistry = None,
        scheduler: RecordingScheduler = None,
        storage=None,
        sleep: Callable[[float], None] = time.sleep,
        logger: logging.Logger = None,
    ):
        """
        Initialize the coordinator.

        Args:
            config: Coordinator configuration.
            transport: Broadcast transport; its handler is installed here.
            sensor_registry: Sensors a target can materialize by name.
            scheduler: Executes received jobs (threaded scheduler if None).
            storage: Persistent log for rows relayed to the commander.
            sleep: Sleep function (injectable for tests).
            logger: Logger instance (creates one if not provided).
        """
        self.config = config
        self.transport = transport
        self.logger = logger or logging.getLogger("Coordinator")
        self.sensor_registry = sensor_registry or SensorRegistry()
        self.storage = storage
        self._sleep = sleep
        self._lock = threading.RLock()
        self._stopped = threading.Event()
        # One registry poll at a time (watcher and direct callers)
        self._poll_lock = threading.Lock()

        # Shared by both roles
        self.id = UNASSIGNED_ID
        self.role = Role.UNCONFIGURED
        self._handler = self._handle_unconfigured
        self._response_received = False

        # Set by the scheduler once a job is complete
        self.finished_logging = threading.Event()
        self.scheduler = scheduler or ThreadedRecordingScheduler(self.finished_logging)

        # Target only
        self.reassembly = ReassemblyState()
        self._finish_sent = False
        self.jobs_started = 0

        # Commander only
        self._next_id_to_issue = FIRST_TARGET_ID
        self.targets_connected = 0
        self.target_ids: List[int] = []
        self._working_ids: Set[int] = set()
        self.last_poll_rounds = 0
        self.polling = False
        self.streaming_done = True
        self.live_view_available = storage is not None and storage.row_count() > 0
        self.rows_received = 0
        self._watching = False
        self._watcher: Optional[RepeatingTask] = None

        # Event handlers
        self._row_handlers: List[Callable] = []
        self._role_handlers: List[Callable] = []

        transport.on_message(self.handle_datagram)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def is_commander(self) -> bool:
        return self.role == Role.COMMANDER

    @property
    def is_target(self) -> bool:
        return self.role == Role.TARGET

    @property
    def next_id_to_issue(self) -> int:
        return self._next_id_to_issue

    def _current_id(self) -> int:
        with self._lock:
            return self.id

    # -------------------------------------------------------------------------
    # Sending
    # -------------------------------------------------------------------------

    def _send(self, message: Message) -> bool:
        """Encode and broadcast a message. Encoding problems are logged, not raised."""
        try:
            datagram = message.encode(self.config.max_datagram_length)
        except ValueError as e:
            self.logger.error(f"Send failed: {e}")
            return False

        return self._broadcast(datagram)

    def _broadcast(self, datagram: str) -> bool:
        self.logger.debug(f"TX {datagram}")
        return self.transport.broadcast(datagram)

    def _sleep_ms(self, ms: float):
        if ms > 0:
            self._sleep(ms / 1000.0)

    def _send_later(self, message: Message, delay_ms: float) -> Effect:
        def effect():
            self._sleep_ms(delay_ms)
            self._send(message)
        return effect

    # -------------------------------------------------------------------------
    # Inbound
    # -------------------------------------------------------------------------

    def handle_datagram(self, datagram: str):
        """Handle one inbound datagram with the handler for the current role."""
        message = decode(datagram)
        if message is None:
            self.logger.debug(f"Ignoring undecodable datagram: {datagram!r}")
            return

        with self._lock:
            effects = self._handler(message)

        for effect in effects:
            effect()

    def _handle_unconfigured(self, message: Message) -> List[Effect]:
        return []

    # -------------------------------------------------------------------------
    # Role Bootstrap
    # -------------------------------------------------------------------------

    def bootstrap(self) -> Role:
        """
        Decide this device's role. Runs once; later calls return the role.

        Without a display the device can only be a target: it broadcasts
        JOIN_REQUEST every latency window until a commander assigns an id.
        With a display it sends a bounded number of JOIN_REQUESTs and becomes
        the commander if nobody answers.
        """
        with self._lock:
            if self.role != Role.UNCONFIGURED:
                return self.role

        latency = self.config.message_latency_ms

        if not self.config.display_attached:
            self.logger.info("No display attached - joining as target")
            with self._lock:
                self._become_target()

            while self._current_id() == UNASSIGNED_ID and not self._stopped.is_set():
                self._send(create_join_request())
                self._sleep_ms(latency)

            return self.role

        with self._lock:
            self._response_received = False
            self._handler = self._handle_handshake

        attempts = self.config.join_attempts
        for attempt in range(1, attempts + 1):
            self.logger.debug(f"Join request {attempt}/{attempts}")
            self._send(create_join_request())
            self._sleep_ms(latency)
            if self._response_received:
                break
            self._sleep_ms(latency)

        with self._lock:
            if self._response_received:
                self._become_target()
            else:
                self._become_commander()

        return self.role

    def _handle_handshake(self, message: Message) -> List[Effect]:
        """Handler while a display device waits for a commander's answer."""
        inbound = parse_for_target(message)
        if isinstance(inbound, BecomeTarget) and self.id == UNASSIGNED_ID:
            self.id = inbound.assigned_id
            self._response_received = True
            self.logger.info(f"Commander answered - assigned id {self.id}")
        return []

    def _become_target(self):
        self._handler = self._handle_as_target
        self._set_role(Role.TARGET)

    def _become_commander(self):
        self.id = COMMANDER_ID
        self._next_id_to_issue = FIRST_TARGET_ID
        self.targets_connected = 0
        self._handler = self._handle_as_commander
        self._set_role(Role.COMMANDER)

    def _set_role(self, role: Role):
        old_role = self.role
        self.role = role
        self.logger.info(f"Role: {old_role.value} -> {role.value} (id {self.id})")

        for handler in self._role_handlers:
            try:
                handler(old_role, role)
            except Exception as e:
                self.logger.error(f"Role handler error: {e}")

    # -------------------------------------------------------------------------
    # Commander: Inbound
    # -------------------------------------------------------------------------

    def _handle_as_commander(self, message: Message) -> List[Effect]:
        inbound = parse_for_commander(message)

        if isinstance(inbound, JoinRequest):
            return self._issue_id()

        if isinstance(inbound, IdReply):
            if inbound.device_id >= FIRST_TARGET_ID:
                self._working_ids.add(inbound.device_id)
            return []

        if isinstance(inbound, RelayRow):
            self._ingest_row(inbound)
            return []

        if isinstance(inbound, StreamFinish):
            self.streaming_done = True
            self.logger.info("Target finished streaming")
            return []

        self.logger.debug(f"Commander ignoring {message.command.name} {list(message.fields)}")
        return []

    def _issue_id(self) -> List[Effect]:
        """Answer a join request with the next id. Repeated requests get new ids."""
        assigned = self._next_id_to_issue
        self._next_id_to_issue += 1
        self.targets_connected += 1
        self.logger.info(f"Join request - issuing id {assigned}")

        reply = create_become_target(assigned)
        return [lambda: self._send(reply)]

    def _ingest_row(self, relay: RelayRow):
        self.live_view_available = True
        self.streaming_done = False
        self.rows_received += 1

        row = LoggedRow(
            device_id=relay.device_id,
            sensor=relay.sensor_name,
            time_ms=relay.timestamp_ms,
            reading=relay.reading,
            event=relay.event,
        )
        self.logger.debug(
            f"[ROW] device={row.device_id} sensor={row.sensor} "
            f"t={row.time_ms}ms reading={row.reading} event={row.event}"
        )

        if self.storage:
            try:
                self.storage.append(row.device_id, row.sensor, row.time_ms, row.reading, row.event)
            except Exception as e:
                self.logger.error(f"Failed to store row: {e}")

        for handler in self._row_handlers:
            try:
                handler(row)
            except Exception as e:
                self.logger.error(f"Row handler error: {e}")

    # -------------------------------------------------------------------------
    # Commander: Job Distribution
    # -------------------------------------------------------------------------

    def request_job(
        self,
        sensors: Sequence[Union[Sensor, str]],
        configs: Sequence[RecordingConfig],
        stream_back: bool,
    ) -> bool:
        """
        Send a sensor job to every target.

        One START_LOGGING header is followed by one DATA_STREAM per sensor,
        each message followed by a latency pause. Nothing is acknowledged.

        Args:
            sensors: Sensors (or sensor names) in job order.
            configs: One recording config per sensor.
            stream_back: Ask targets to relay every row they log.

        Returns:
            True if every message was handed to the transport.
        """
        if not self.is_commander:
            self.logger.error(f"Cannot send job: role is {self.role.value}")
            return False

        names = [s if isinstance(s, str) else s.name for s in sensors]
        try:
            messages = create_job_messages(names, configs, stream_back)
            # A header never goes out without all of its payloads
            datagrams = [m.encode(self.config.max_datagram_length) for m in messages]
        except ValueError as e:
            self.logger.error(f"Invalid job: {e}")
            return False

        with self._lock:
            self.streaming_done = False

        self.logger.info(
            f"Sending job: {len(names)} sensors ({', '.join(names)}), stream_back={stream_back}"
        )

        sent_all = True
        for datagram in datagrams:
            sent_all = self._broadcast(datagram) and sent_all
            self._sleep_ms(self.config.message_latency_ms)

        return sent_all

    # -------------------------------------------------------------------------
    # Commander: Target Registry
    # -------------------------------------------------------------------------

    def request_target_registry(self) -> List[int]:
        """
        Poll targets for their ids and publish the result as the registry.

        Each round broadcasts GET_ID and waits one poll window, accumulating
        distinct ids. Polling stops once the set is at least as large as the
        previous registry, once a later round adds nothing, or after the
        round budget. A call made while another poll runs waits for it to
        finish, then polls again.

        Returns:
            Target ids, ascending.
        """
        if not self.is_commander:
            return []

        with self._poll_lock:
            return self._poll_registry()

    def _poll_registry(self) -> List[int]:
        with self._lock:
            previous_size = len(self.target_ids)
            self._working_ids = set()
            self.polling = True

        rounds = 0
        try:
            for rounds in range(1, self.config.registry_poll_rounds + 1):
                with self._lock:
                    before = len(self._working_ids)

                self._send(create_id_request())
                self._sleep_ms(self.config.registry_poll_window_ms)

                with self._lock:
                    size = len(self._working_ids)

                if size >= previous_size:
                    break
                if rounds > 1 and size == before:
                    break
        finally:
            with self._lock:
                registry = sorted(self._working_ids)
                if registry != self.target_ids:
                    self.logger.info(f"Target registry: {registry}")
                self.target_ids = registry
                self._working_ids = set()
                self.last_poll_rounds = rounds
                self.polling = False

        return list(registry)

    def start_registry_watch(self) -> bool:
        """Refresh the registry repeatedly until stop_registry_watch()."""
        if not self.is_commander:
            return False

        if self._watcher and self._watcher.running:
            return True

        self._watching = True
        self._watcher = RepeatingTask(
            self.request_target_registry,
            interval_s=2 * self.config.message_latency_ms / 1000.0,
            should_continue=lambda: self._watching and not self._stopped.is_set(),
            sleep=self._sleep,
            name="RegistryWatcher",
        )
        return self._watcher.start()

    def stop_registry_watch(self):
        self._watching = False
        if self._watcher:
            self._watcher.cancel()

    @property
    def watching_registry(self) -> bool:
        return bool(self._watcher and self._watcher.running)

    # -------------------------------------------------------------------------
    # Target: Inbound
    # -------------------------------------------------------------------------

    def _handle_as_target(self, message: Message) -> List[Effect]:
        inbound = parse_for_target(message, self.config.event_polling_period_ms)

        if isinstance(inbound, StartLogging):
            return self._start_reassembly(inbound)

        if isinstance(inbound, BecomeTarget):
            if self.id == UNASSIGNED_ID:
                self.id = inbound.assigned_id
                self.logger.info(f"Assigned id {self.id}")
            else:
                self.logger.debug(f"Ignoring id {inbound.assigned_id}: already {self.id}")
            return []

        if isinstance(inbound, IdRequest):
            if self.id == UNASSIGNED_ID:
                return []
            reply = create_id_reply(self.id)
            return [self._send_later(reply, self.id * self.config.id_reply_delay_ms)]

        if isinstance(inbound, JobPayload):
            return self._reassemble(inbound)

        self.logger.debug(f"Target ignoring {message.command.name} {list(message.fields)}")
        return []

    def _start_reassembly(self, header: StartLogging) -> List[Effect]:
        self.reassembly.start(header.sensor_count, header.stream_back)
        self.logger.info(
            f"Job header: expecting {header.sensor_count} sensors, "
            f"stream_back={header.stream_back}"
        )

        if self.id == UNASSIGNED_ID:
            join = create_join_request()
            return [lambda: self._send(join)]
        return []

    def _reassemble(self, payload: JobPayload) -> List[Effect]:
        state = self.reassembly
        if not state.in_progress:
            self.logger.debug(f"Ignoring job payload {payload.sensor_name}: no job in progress")
            return []

        sensor = self.sensor_registry.get_by_name(payload.sensor_name)
        if sensor is None:
            self.logger.warning(f"Unknown sensor in job: {payload.sensor_name}")
            return []

        sensor.configure(payload.config)
        state.sensors.append(sensor)
        state.received += 1
        self.logger.debug(f"Job payload {state.received}/{state.expected}: {payload.sensor_name}")

        if state.received < state.expected:
            return []

        sensors = list(state.sensors)
        stream_back = state.stream_back
        state.reset_counters()
        self.finished_logging.clear()
        self._finish_sent = False
        self.jobs_started += 1

        return [lambda: self._hand_off(sensors, stream_back)]

    def _hand_off(self, sensors: List[Sensor], stream_back: bool):
        self.logger.info(
            f"Starting job: {', '.join(s.name for s in sensors)}, stream_back={stream_back}"
        )
        try:
            self.scheduler.start(sensors, self if stream_back else None)
        except Exception as e:
            self.logger.error(f"Scheduler failed to start: {e}")

    # -------------------------------------------------------------------------
    # Target: Data Relay
    # -------------------------------------------------------------------------

    def on_row_logged(self, row: Sequence[object]):
        """
        Relay one logged row to the commander.

        Once the finished flag is set, DATA_STREAM_FINISH is sent a single
        time and nothing further is relayed for this job.
        """
        with self._lock:
            if self.finished_logging.is_set():
                if self._finish_sent:
                    return
                self._finish_sent = True
                message = create_stream_finish()
            elif not row:
                return
            else:
                message = create_relay_row(self.id, row)

        self._send(message)

    # -------------------------------------------------------------------------
    # Public API - Event Handlers
    # -------------------------------------------------------------------------

    def on_row(self, handler: Callable[[LoggedRow], None]) -> bool:
        """Register handler for rows ingested by the commander."""
        if len(self._row_handlers) >= MAX_EVENT_HANDLERS:
            self.logger.warning("Max row handlers reached")
            return False
        self._row_handlers.append(handler)
        return True

    def on_role_change(self, handler: Callable[[Role, Role], None]) -> bool:
        """Register handler for the (single) role change."""
        if len(self._role_handlers) >= MAX_EVENT_HANDLERS:
            self.logger.warning("Max role handlers reached")
            return False
        self._role_handlers.append(handler)
        return True

    # -------------------------------------------------------------------------
    # Public API - Status
    # -------------------------------------------------------------------------

    def get_stats(self) -> dict:
        """Get a snapshot of the coordinator state."""
        with self._lock:
            return {
                "role": self.role.value,
                "id": self.id,
                "targets_connected": self.targets_connected,
                "next_id_to_issue": self._next_id_to_issue if self.is_commander else None,
                "target_ids": list(self.target_ids),
                "polling": self.polling,
                "watching_registry": self.watching_registry,
                "streaming_done": self.streaming_done,
                "live_view_available": self.live_view_available,
                "rows_received": self.rows_received,
                "row_count": self.storage.row_count() if self.storage else self.rows_received,
                "jobs_started": self.jobs_started,
                "reassembly": {
                    "expected": self.reassembly.expected,
                    "received": self.reassembly.received,
                    "sensors": [s.name for s in self.reassembly.sensors],
                },
            }

    # -------------------------------------------------------------------------
    # Public API - Run Loop
    # -------------------------------------------------------------------------

    def run(self):
        """Bootstrap, then keep the process alive for the message handler."""
        role = self.bootstrap()
        self.logger.info(f"Running as {role.value} (id {self.id})")

        try:
            while not self._stopped.is_set():
                self._stopped.wait(1)
        except KeyboardInterrupt:
            self.logger.info("Interrupted by user")
        finally:
            self.shutdown()

    def run_with_api(self, api_host: str = None, api_port: int = None):
        """
        Bootstrap, then serve the REST API until interrupted.

        Args:
            api_host: Host to bind API server to (uses config if None).
            api_port: Port for API server (uses config if None).
        """
        from .api import create_api, run_api_server

        host = api_host or self.config.api.host
        port = api_port or self.config.api.port

        role = self.bootstrap()
        if role != Role.COMMANDER:
            self.logger.warning(f"Running as {role.value}: API endpoints will answer 409")

        app = create_api(self)
        self.logger.info(f"API server starting on http://{host}:{port}")
        self.logger.info(f"API docs available at http://{host}:{port}/api/docs")

        try:
            run_api_server(app, host=host, port=port, log_level=self.config.log_level.lower())
        except KeyboardInterrupt:
            self.logger.info("Interrupted by user")
        finally:
            self.shutdown()

    def shutdown(self):
        """Stop background work and close the transport."""
        self.logger.info("Shutting down coordinator...")
        self._stopped.set()
        self.stop_registry_watch()
        self.scheduler.stop()
        self.transport.close()
