#!/usr/bin/env python3
"""
Radio Transports for the Radio Logging Coordinator

A transport broadcasts short text datagrams on one shared channel and hands
every received datagram to a single handler. Delivery is unreliable: there
are no acknowledgements and nothing is retried here.

Transports:
- MeshtasticTransport: a Meshtastic device on USB/Serial, text packets on one channel
- LoopbackTransport: an in-process channel shared by several coordinators
"""

import logging
import queue
import threading
import time
from typing import Callable, List, Optional

from .models import CoordinatorConfig


MessageHandler = Callable[[str], None]

# Seconds the dispatcher waits on an empty inbox before re-checking shutdown
DISPATCH_POLL_SECONDS = 0.5


class Transport:
    """Base class: one broadcast channel, one inbound handler."""

    def __init__(self, logger: logging.Logger = None):
        self.logger = logger or logging.getLogger("Transport")
        self._handler: Optional[MessageHandler] = None

    def on_message(self, handler: MessageHandler):
        """Install the handler invoked for every inbound datagram."""
        self._handler = handler

    def broadcast(self, datagram: str) -> bool:
        raise NotImplementedError

    def close(self):
        """Release the underlying channel."""

    def _dispatch(self, datagram: str):
        if not self._handler:
            return

        try:
            self._handler(datagram)
        except Exception as e:
            self.logger.error(f"Message handler error: {e}")


# =============================================================================
# Loopback
# =============================================================================

class LoopbackChannel:
    """
    An in-process broadcast channel.

    A datagram sent by one transport is delivered synchronously, in the
    sender's thread, to every other transport attached to the channel.

    Args:
        drop: Optional predicate (datagram, sender, receiver) -> bool. When it
            returns True the datagram is lost for that receiver.
    """

    def __init__(self, drop: Callable[[str, "LoopbackTransport", "LoopbackTransport"], bool] = None):
        self.drop = drop
        self.transports: List["LoopbackTransport"] = []
        self.history: List[str] = []
        self._lock = threading.Lock()

    def attach(self, name: str = "") -> "LoopbackTransport":
        """Create a transport on this channel."""
        with self._lock:
            transport = LoopbackTransport(self, name or f"device-{len(self.transports)}")
            self.transports.append(transport)
        return transport

    def detach(self, transport: "LoopbackTransport"):
        with self._lock:
            if transport in self.transports:
                self.transports.remove(transport)

    def deliver(self, datagram: str, sender: "LoopbackTransport"):
        with self._lock:
            self.history.append(datagram)
            receivers = [t for t in self.transports if t is not sender]

        for receiver in receivers:
            if self.drop and self.drop(datagram, sender, receiver):
                continue
            receiver._dispatch(datagram)


class LoopbackTransport(Transport):
    """A transport attached to a LoopbackChannel."""

    def __init__(self, channel: LoopbackChannel, name: str):
        super().__init__(logging.getLogger(f"Transport.{name}"))
        self.channel = channel
        self.name = name
        self.sent: List[str] = []
        self.closed = False

    def broadcast(self, datagram: str) -> bool:
        if self.closed:
            self.logger.error("Cannot send: transport closed")
            return False

        self.sent.append(datagram)
        self.channel.deliver(datagram, self)
        return True

    def close(self):
        self.closed = True
        self.channel.detach(self)

    def __repr__(self) -> str:
        return f"LoopbackTransport({self.name!r})"


# =============================================================================
# Meshtastic
# =============================================================================

class MeshtasticTransport(Transport):
    """
    Broadcast text datagrams through a Meshtastic device.

    Received text packets are queued by the Meshtastic reader thread and
    handed to the handler by a single dispatcher thread, so the handler
    never runs concurrently with itself.
    """

    def __init__(self, config: CoordinatorConfig, logger: logging.Logger = None):
        """
        Initialize the transport.

        Args:
            config: Coordinator configuration.
            logger: Logger instance (creates one if not provided).
        """
        super().__init__(logger)
        self.config = config
        self.interface = None
        self.my_node_id: str = ""
        self.my_node_info: dict = {}
        self._subscribed = False
        self._inbox: "queue.Queue[str]" = queue.Queue()
        self._running = threading.Event()
        self._dispatcher: Optional[threading.Thread] = None

    # -------------------------------------------------------------------------
    # Connection Management
    # -------------------------------------------------------------------------

    def connect(self) -> bool:
        """
        Connect to the Meshtastic device and start dispatching.

        Returns:
            True if connected successfully.
        """
        try:
            import meshtastic.serial_interface
            from pubsub import pub
        except ImportError:
            self.logger.error("meshtastic package not installed")
            return False

        if self.interface:
            self.interface.close()
            self.interface = None
            time.sleep(1)

        # Subscribe to events (only once to avoid duplicates)
        if not self._subscribed:
            pub.subscribe(self._on_receive, "meshtastic.receive.text")
            pub.subscribe(self._on_connection, "meshtastic.connection.established")
            pub.subscribe(self._on_disconnect, "meshtastic.connection.lost")
            self._subscribed = True

        try:
            if self.config.device_port:
                self.logger.info(f"Connecting to {self.config.device_port}...")
                self.interface = meshtastic.serial_interface.SerialInterface(
                    devPath=self.config.device_port
                )
            else:
                self.logger.info("Auto-detecting device...")
                self.interface = meshtastic.serial_interface.SerialInterface()

            # Wait for connection
            start = time.time()
            while not self.my_node_id and (time.time() - start) < self.config.device_timeout:
                time.sleep(0.5)

            if not self.my_node_id:
                self.logger.error("Connection timeout")
                return False

        except Exception as e:
            self.logger.error(f"Connection failed: {e}")
            return False

        self._start_dispatcher()
        return True

    def close(self):
        """Stop dispatching and disconnect from the device."""
        self._running.clear()
        if self._dispatcher:
            self._dispatcher.join(timeout=DISPATCH_POLL_SECONDS * 2)
            self._dispatcher = None

        if self.interface:
            self.interface.close()
            self.interface = None

    def _on_connection(self, interface, topic=None):
        """Handle connection established event."""
        try:
            self.my_node_info = interface.getMyNodeInfo()
            user = self.my_node_info.get("user", {})
            self.my_node_id = user.get("id", "")

            self.logger.info(f"Device: {user.get('longName', 'Unknown')}")
            self.logger.info(f"Node ID: {self.my_node_id}")
        except Exception as e:
            self.logger.warning(f"Could not get node info: {e}")

    def _on_disconnect(self, interface, topic=None):
        self.logger.warning("Disconnected from Meshtastic device")

    # -------------------------------------------------------------------------
    # Receive
    # -------------------------------------------------------------------------

    def _on_receive(self, packet, interface):
        """Queue text packets from our channel for the dispatcher."""
        try:
            if packet.get("channel", 0) != self.config.channel_index:
                return

            if packet.get("fromId") == self.my_node_id:
                return

            text = packet.get("decoded", {}).get("text")
            if text:
                self._inbox.put(text)

        except Exception as e:
            self.logger.error(f"Error processing packet: {e}")

    def _start_dispatcher(self):
        if self._dispatcher and self._dispatcher.is_alive():
            return

        self._running.set()
        self._dispatcher = threading.Thread(
            target=self._dispatch_loop, name="RadioDispatcher", daemon=True
        )
        self._dispatcher.start()

    def _dispatch_loop(self):
        while self._running.is_set():
            try:
                datagram = self._inbox.get(timeout=DISPATCH_POLL_SECONDS)
            except queue.Empty:
                continue
            self._dispatch(datagram)

    # -------------------------------------------------------------------------
    # Send
    # -------------------------------------------------------------------------

    def broadcast(self, datagram: str) -> bool:
        """
        Broadcast a datagram on the configured channel.

        Returns:
            True if handed to the device.
        """
        if not self.interface:
            self.logger.error("Cannot send: not connected")
            return False

        try:
            self.interface.sendText(datagram, channelIndex=self.config.channel_index)
            return True
        except Exception as e:
            self.logger.error(f"Send failed: {e}")
            return False
