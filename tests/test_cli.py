#!/usr/bin/env python3
"""
Command-line tests: the loopback fleet simulation.
"""

from radio_logging.cli import simulate
from radio_logging.models import CoordinatorConfig


def test_simulate_single_target(capsys):
    # Real sleeps: one short periodic sensor and one always-true event sensor
    assert simulate(CoordinatorConfig(), target_count=1) == 0

    out = capsys.readouterr().out
    assert "Targets joined:  1" in out
    assert "Registry:        [1]" in out
    # 3 Temp readings and 2 Light events
    assert "Rows stored:     5" in out
    assert "device 1: Temp" in out
    assert "device 1: Light" in out
