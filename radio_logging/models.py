#!/usr/bin/env python3
"""
Data Models for the Radio Logging Coordinator

This module contains the constants, enums, data classes and configuration
used by the commander and target roles.
"""

import yaml
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List

from .protocol import EVENT_POLLING_PERIOD_MS, MAX_DATAGRAM_LENGTH


# =============================================================================
# Constants (fixed bounds for every retry and wait)
# =============================================================================

# Id of a device that has not joined yet
UNASSIGNED_ID = -1

# Id the commander gives itself
COMMANDER_ID = 0

# First id the commander issues
FIRST_TARGET_ID = 1

# Wait between radio messages (ms)
MESSAGE_LATENCY_MS = 100

# Join requests sent before a display device declares itself commander
DEFAULT_JOIN_ATTEMPTS = 3

# GET_ID rounds per registry refresh
DEFAULT_REGISTRY_POLL_ROUNDS = 5

# Wait for GET_ID replies per round (ms)
DEFAULT_REGISTRY_POLL_WINDOW_MS = 200

# Per-id reply stagger for GET_ID (ms); target N waits N x this
DEFAULT_ID_REPLY_DELAY_MS = 50

# Default channel index for the radio transport
DEFAULT_CHANNEL_INDEX = 0

# Default SQLite database for ingested rows
DEFAULT_DB_PATH = "radio_logging.db"


# =============================================================================
# Enums
# =============================================================================

class Role(Enum):
    """Coordination role. Set once, never changed afterwards."""
    UNCONFIGURED = "unconfigured"
    COMMANDER = "commander"
    TARGET = "target"


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class ReassemblyState:
    """
    Target-side state while a job arrives over several messages.

    Reset on every START_LOGGING header and again once `received`
    reaches `expected`.
    """
    expected: int = 0
    received: int = 0
    stream_back: bool = False
    sensors: List = field(default_factory=list)

    @property
    def in_progress(self) -> bool:
        return self.received < self.expected

    def start(self, expected: int, stream_back: bool):
        self.expected = expected
        self.received = 0
        self.stream_back = stream_back
        self.sensors = []

    def reset_counters(self):
        self.expected = 0
        self.received = 0


@dataclass
class LoggedRow:
    """A row the commander received from a target."""
    device_id: int
    sensor: str
    time_ms: str
    reading: str
    event: str


@dataclass
class ApiConfig:
    """API server configuration."""
    enabled: bool = False
    host: str = "0.0.0.0"
    port: int = 8080


@dataclass
class CoordinatorConfig:
    """Configuration for a commander or target device."""
    # Device settings
    device_port: str = ""
    device_timeout: int = 30

    # Channel settings
    channel_index: int = DEFAULT_CHANNEL_INDEX

    # Radio settings
    max_datagram_length: int = MAX_DATAGRAM_LENGTH
    message_latency_ms: int = MESSAGE_LATENCY_MS

    # Bootstrap settings
    display_attached: bool = False  # Only display devices may become commander
    join_attempts: int = DEFAULT_JOIN_ATTEMPTS

    # Registry settings
    registry_poll_rounds: int = DEFAULT_REGISTRY_POLL_ROUNDS
    registry_poll_window_ms: int = DEFAULT_REGISTRY_POLL_WINDOW_MS
    id_reply_delay_ms: int = DEFAULT_ID_REPLY_DELAY_MS

    # Recording settings
    event_polling_period_ms: int = EVENT_POLLING_PERIOD_MS

    # Storage settings
    db_path: str = DEFAULT_DB_PATH

    # API settings
    api: ApiConfig = field(default_factory=ApiConfig)

    # Logging
    log_level: str = "INFO"
    log_file: str = "radio_logging.log"

    @classmethod
    def from_yaml(cls, path: str) -> "CoordinatorConfig":
        """Load configuration from YAML file."""
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict) -> "CoordinatorConfig":
        """Build configuration from a nested dictionary (as in the YAML file)."""
        device = data.get("device", {})
        radio = data.get("radio", {})
        bootstrap = data.get("bootstrap", {})
        registry = data.get("registry", {})
        api_data = data.get("api", {})

        return cls(
            device_port=device.get("port", ""),
            device_timeout=device.get("timeout", 30),
            channel_index=data.get("channel", {}).get("index", DEFAULT_CHANNEL_INDEX),
            max_datagram_length=radio.get("max_datagram_length", MAX_DATAGRAM_LENGTH),
            message_latency_ms=radio.get("message_latency_ms", MESSAGE_LATENCY_MS),
            display_attached=bootstrap.get("display_attached", False),
            join_attempts=bootstrap.get("join_attempts", DEFAULT_JOIN_ATTEMPTS),
            registry_poll_rounds=registry.get("poll_rounds", DEFAULT_REGISTRY_POLL_ROUNDS),
            registry_poll_window_ms=registry.get("poll_window_ms", DEFAULT_REGISTRY_POLL_WINDOW_MS),
            id_reply_delay_ms=registry.get("reply_delay_ms", DEFAULT_ID_REPLY_DELAY_MS),
            event_polling_period_ms=data.get("recording", {}).get(
                "event_polling_period_ms", EVENT_POLLING_PERIOD_MS
            ),
            db_path=data.get("storage", {}).get("db_path", DEFAULT_DB_PATH),
            api=ApiConfig(
                enabled=api_data.get("enabled", False),
                host=api_data.get("host", "0.0.0.0"),
                port=api_data.get("port", 8080),
            ),
            log_level=data.get("logging", {}).get("level", "INFO"),
            log_file=data.get("logging", {}).get("file", "radio_logging.log"),
        )

    def to_dict(self) -> Dict:
        """Convert config to dictionary."""
        return {
            "device": {
                "port": self.device_port,
                "timeout": self.device_timeout,
            },
            "channel": {
                "index": self.channel_index,
            },
            "radio": {
                "max_datagram_length": self.max_datagram_length,
                "message_latency_ms": self.message_latency_ms,
            },
            "bootstrap": {
                "display_attached": self.display_attached,
                "join_attempts": self.join_attempts,
            },
            "registry": {
                "poll_rounds": self.registry_poll_rounds,
                "poll_window_ms": self.registry_poll_window_ms,
                "reply_delay_ms": self.id_reply_delay_ms,
            },
            "recording": {
                "event_polling_period_ms": self.event_polling_period_ms,
            },
            "storage": {
                "db_path": self.db_path,
            },
            "api": {
                "enabled": self.api.enabled,
                "host": self.api.host,
                "port": self.api.port,
            },
            "logging": {
                "level": self.log_level,
                "file": self.log_file,
            },
        }
