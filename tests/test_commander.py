#!/usr/bin/env python3
"""
Commander tests: id allocation, job distribution and row ingestion.
"""

from radio_logging.models import Role
from radio_logging.protocol import RecordingConfig


# =============================================================================
# Id Allocation
# =============================================================================

def test_issued_ids_strictly_increase(make_fleet):
    fleet = make_fleet(targets=4)

    ids = [t.id for t in fleet.targets]
    assert ids == [1, 2, 3, 4]
    assert fleet.commander.targets_connected == 4
    assert fleet.commander.next_id_to_issue == 5


def test_repeated_join_requests_get_new_ids(make_fleet):
    fleet = make_fleet()
    commander = fleet.commander

    commander.handle_datagram("J")
    commander.handle_datagram("J")

    assert commander.transport.sent[-2:] == ["T,1", "T,2"]
    assert commander.targets_connected == 2


def test_commander_ignores_its_own_message_kinds(make_fleet):
    fleet = make_fleet()
    commander = fleet.commander
    sent_before = list(commander.transport.sent)

    for datagram in ["G", "T,5", "S,1,1", "D,Temp,P,5,1000", "garbage"]:
        commander.handle_datagram(datagram)

    assert commander.transport.sent == sent_before
    assert commander.rows_received == 0


# =============================================================================
# Job Distribution
# =============================================================================

def test_request_job_sends_header_then_payloads(make_fleet, clock):
    fleet = make_fleet()
    commander = fleet.commander
    clock.sleeps.clear()

    configs = [RecordingConfig.periodic(5, 1000), RecordingConfig.event(3, ">", 20)]
    assert commander.request_job(["Temp", "Light"], configs, stream_back=True)

    assert commander.transport.sent[-3:] == ["S,2,1", "D,Temp,P,5,1000", "D,Light,E,3,>,20"]
    # One latency pause after every message
    assert clock.sleeps == [0.1, 0.1, 0.1]


def test_request_job_accepts_sensor_objects(make_fleet):
    fleet = make_fleet()
    sensor = fleet.commander.sensor_registry.get_by_name("Temp")

    assert fleet.commander.request_job([sensor], [RecordingConfig.periodic(2, 500)], False)
    assert fleet.commander.transport.sent[-2:] == ["S,1,0", "D,Temp,P,2,500"]


def test_request_job_clears_streaming_done(make_fleet):
    fleet = make_fleet()
    commander = fleet.commander
    assert commander.streaming_done

    commander.request_job(["Temp"], [RecordingConfig.periodic(1, 1000)], stream_back=True)

    # No target answered with F
    assert not commander.streaming_done


def test_request_job_rejects_mismatched_lists(make_fleet):
    fleet = make_fleet()
    sent_before = list(fleet.commander.transport.sent)

    assert not fleet.commander.request_job(["Temp", "Light"], [RecordingConfig.periodic(1, 1)], True)
    assert fleet.commander.transport.sent == sent_before


def test_unencodable_job_sends_nothing(make_fleet, spy_scheduler):
    fleet = make_fleet(targets=1)
    target = fleet.targets[0]
    target.scheduler = spy_scheduler
    sent_before = list(fleet.commander.transport.sent)

    sensors = ["Temp", "Very Long Sensor Name That Overflows"]
    configs = [RecordingConfig.periodic(1, 1)] * 2
    assert not fleet.commander.request_job(sensors, configs, stream_back=True)

    assert fleet.commander.transport.sent == sent_before
    assert not target.reassembly.in_progress
    assert target.reassembly.expected == 0
    assert spy_scheduler.starts == []


def test_request_job_needs_commander(lone_target):
    assert lone_target.role == Role.TARGET
    assert not lone_target.request_job(["Temp"], [RecordingConfig.periodic(1, 1)], True)
    assert lone_target.transport.sent == []


# =============================================================================
# Row Ingestion
# =============================================================================

def test_relayed_row_is_stored(make_fleet, storage):
    fleet = make_fleet(storage=storage)
    commander = fleet.commander
    assert not commander.live_view_available

    commander.handle_datagram("D,3,Temp,1000,21.5,0")

    rows = storage.get_rows()
    assert len(rows) == 1
    assert (rows[0].device_id, rows[0].sensor, rows[0].time_ms, rows[0].reading, rows[0].event) == (
        3, "Temp", "1000", "21.5", "0"
    )
    assert commander.live_view_available
    assert not commander.streaming_done
    assert commander.rows_received == 1


def test_finish_marks_streaming_done(make_fleet):
    fleet = make_fleet()
    commander = fleet.commander

    commander.handle_datagram("D,1,Temp,0,21.5,0")
    assert not commander.streaming_done

    commander.handle_datagram("F")
    assert commander.streaming_done


def test_row_handlers(make_fleet):
    fleet = make_fleet()
    received = []
    fleet.commander.on_row(lambda row: 1 / 0)
    fleet.commander.on_row(received.append)

    fleet.commander.handle_datagram("D,2,Light,500,80,1")

    assert len(received) == 1
    assert received[0].device_id == 2
    assert received[0].sensor == "Light"
    assert received[0].event == "1"


def test_live_view_available_from_existing_log(make_fleet, storage):
    storage.append(1, "Temp", "0", "20", "0")

    fleet = make_fleet(storage=storage)

    assert fleet.commander.live_view_available


def test_stats(make_fleet, storage):
    fleet = make_fleet(targets=2, storage=storage)
    fleet.commander.handle_datagram("D,1,Temp,0,21.5,0")

    stats = fleet.commander.get_stats()

    assert stats["role"] == "commander"
    assert stats["id"] == 0
    assert stats["targets_connected"] == 2
    assert stats["next_id_to_issue"] == 3
    assert stats["row_count"] == 1
    assert fleet.targets[0].get_stats()["next_id_to_issue"] is None


def test_no_live_view_for_empty_log(make_fleet, storage):
    fleet = make_fleet(storage=storage)

    assert not fleet.commander.live_view_available
