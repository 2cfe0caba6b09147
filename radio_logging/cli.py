#!/usr/bin/env python3
"""
Command-Line Interface for the Radio Logging Coordinator

Usage:
    radio-logging                        # Run with default config
    radio-logging -c config.yaml         # Run with custom config
    radio-logging --display --api        # Commander candidate with REST API
    radio-logging --simulate 3           # In-process demo fleet, no radio needed
"""

import argparse
import os
import sys
import tempfile
from dataclasses import replace

from .coordinator import Coordinator, setup_logging
from .models import CoordinatorConfig
from .protocol import RecordingConfig
from .sensors import simulated_registry
from .storage import DataStorage
from .transport import LoopbackChannel, MeshtasticTransport


# Seconds to wait for simulated targets to finish their job
SIMULATION_TIMEOUT = 30


def simulate(config: CoordinatorConfig, target_count: int) -> int:
    """
    Run one commander and `target_count` targets on a loopback channel.

    The commander distributes a short job, then the ingested rows are printed.

    Returns:
        Process exit status.
    """
    channel = LoopbackChannel()
    db_path = os.path.join(tempfile.mkdtemp(prefix="radio-logging-"), "simulation.db")

    commander = Coordinator(
        replace(config, display_attached=True),
        channel.attach("commander"),
        storage=DataStorage(db_path),
    )
    commander.bootstrap()
    commander.on_row(
        lambda row: print(f"  device {row.device_id}: {row.sensor} t={row.time_ms}ms "
                          f"reading={row.reading} event={row.event}")
    )

    targets = []
    for index in range(target_count):
        target = Coordinator(
            replace(config, display_attached=False),
            channel.attach(f"target-{index + 1}"),
            sensor_registry=simulated_registry(seed=index),
        )
        target.bootstrap()
        targets.append(target)

    print("\n" + "=" * 50)
    print("SIMULATED FLEET")
    print("=" * 50)
    print(f"Commander id:    {commander.id}")
    print(f"Targets joined:  {commander.targets_connected}")
    print(f"Registry:        {commander.request_target_registry()}")
    print(f"Database:        {db_path}")
    print("=" * 50)

    sensors = ["Temp", "Light"]
    configs = [RecordingConfig.periodic(3, 200), RecordingConfig.event(2, ">=", 0)]
    if not commander.request_job(sensors, configs, stream_back=True):
        print("\nFailed to send job!")
        return 1

    print("\nRows:")
    finished = all(t.finished_logging.wait(SIMULATION_TIMEOUT) for t in targets)

    print("\n" + "=" * 50)
    print(f"Rows stored:     {commander.storage.row_count()}")
    print(f"Streaming done:  {commander.streaming_done}")
    print("=" * 50)

    for coordinator in [commander] + targets:
        coordinator.shutdown()

    return 0 if finished else 1


def main():
    """Command-line entry point."""
    parser = argparse.ArgumentParser(
        description="Radio Logging Coordinator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  radio-logging                              # Run with default config
  radio-logging -c config.yaml               # Run with custom config
  radio-logging --headless                   # Always join as a target
  radio-logging --display --api              # Commander candidate with REST API
  radio-logging --api --api-port 8000        # Custom API port
  radio-logging --simulate 3                 # Loopback demo with 3 targets
        """
    )
    parser.add_argument(
        "-c", "--config",
        default="config.yaml",
        help="Path to config file (default: config.yaml)",
    )
    display = parser.add_mutually_exclusive_group()
    display.add_argument(
        "--display",
        dest="display_attached",
        action="store_const",
        const=True,
        default=None,
        help="Device has a display and may become the commander",
    )
    display.add_argument(
        "--headless",
        dest="display_attached",
        action="store_const",
        const=False,
        help="Device has no display and always joins as a target",
    )
    parser.add_argument(
        "--api",
        action="store_true",
        help="Run with REST API server for web access",
    )
    parser.add_argument(
        "--api-host",
        default=None,
        help="API server host (default: from config or 0.0.0.0)",
    )
    parser.add_argument(
        "--api-port",
        type=int,
        default=None,
        help="API server port (default: from config or 8080)",
    )
    parser.add_argument(
        "--simulate",
        type=int,
        metavar="N",
        default=None,
        help="Run a loopback fleet of one commander and N targets, then exit",
    )

    args = parser.parse_args()

    # Load config
    if args.simulate is not None and not os.path.exists(args.config):
        config = CoordinatorConfig()
    else:
        try:
            config = CoordinatorConfig.from_yaml(args.config)
        except FileNotFoundError:
            print(f"Error: Config file not found: {args.config}")
            sys.exit(1)
        except Exception as e:
            print(f"Error loading config: {e}")
            sys.exit(1)

    if args.display_attached is not None:
        config.display_attached = args.display_attached

    setup_logging(config)

    # Handle --simulate
    if args.simulate is not None:
        if args.simulate < 1:
            print("Error: --simulate needs at least one target")
            sys.exit(1)
        sys.exit(simulate(config, args.simulate))

    transport = MeshtasticTransport(config)
    if not transport.connect():
        print("Error: could not connect to Meshtastic device")
        sys.exit(1)

    storage = DataStorage(config.db_path) if config.display_attached else None
    coordinator = Coordinator(
        config,
        transport,
        sensor_registry=simulated_registry(),
        storage=storage,
    )

    # Handle --api or config.api.enabled
    if args.api or config.api.enabled:
        api_host = args.api_host or config.api.host
        api_port = args.api_port or config.api.port

        print("\n" + "=" * 50)
        print("RADIO LOGGING + REST API")
        print("=" * 50)
        print(f"API Host:        {api_host}")
        print(f"API Port:        {api_port}")
        print(f"Channel:         {config.channel_index}")
        print(f"Display:         {config.display_attached}")
        print("=" * 50)

        coordinator.run_with_api(api_host=api_host, api_port=api_port)
        sys.exit(0)

    # Run main loop (no API)
    coordinator.run()


if __name__ == "__main__":
    main()
