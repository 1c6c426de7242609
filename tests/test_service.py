import math

from conftest import RecordingTransport, frame, make_service
from peerhub.config import RelayRuntimeConfig
from peerhub.registry import ConnectionRegistry
from peerhub.service import RelayService
from peerhub.util import normalize_name, parse_position


def test_injected_registry_is_used() -> None:
    reg = ConnectionRegistry()
    pre = reg.on_connect()
    transport = RecordingTransport()
    transport.bind(pre, object())
    svc = RelayService(RelayRuntimeConfig(tick_interval_s=0.0), registry=reg, transport=transport)

    new = svc.on_connect(object())

    assert svc.registry is reg
    snap = transport.frames_for(pre, "clients")[0]["a"][0]
    assert set(snap) == {pre, new}


def test_disconnect_unbinds_after_registry_removal() -> None:
    svc, transport = make_service()
    a = svc.on_connect(object())
    assert a in transport.bound
    svc.on_disconnect(a)
    assert a not in transport.bound
    assert len(svc.registry) == 0


def test_start_and_stop_lifecycle() -> None:
    svc, transport = make_service(tick_interval_s=0.05)
    svc.start()
    try:
        assert transport.started
        assert svc.aggregator.is_running()
        svc.on_connect(object())
    finally:
        svc.stop()
    assert not transport.started
    assert not svc.aggregator.is_running()
    assert len(svc.registry) == 0


def test_stats_are_counted_and_formatted() -> None:
    svc, _ = make_service()
    a = svc.on_connect(object())
    b = svc.on_connect(object())
    svc.on_frame(a, frame("name", "Alice"))
    svc.on_frame(a, frame("signal", b, "x"))
    svc.on_frame(a, frame("signal", "ghost", "x"))
    svc.on_disconnect(b)

    c = svc.stats_manager.snapshot()
    assert c["connects"] == 2
    assert c["disconnects"] == 1
    assert c["names_accepted"] == 1
    assert c["routed"] == 1
    assert c["dropped_unknown_target"] == 1
    assert c["frames_in"] == 3

    text = svc.stats_manager.format_stats()
    assert "clients_total=1 clients_named=1" in text
    assert "routed=1 dropped_unknown_target=1" in text


def test_normalize_name() -> None:
    assert normalize_name("  Bob ") == "Bob"
    assert normalize_name("") is None
    assert normalize_name(" \t ") is None
    assert normalize_name("a\x00b") is None
    assert normalize_name("x" * 33) is None
    assert normalize_name("x" * 33, max_chars=0) == "x" * 33
    assert normalize_name(["Bob"]) is None


def test_parse_position_forms() -> None:
    assert parse_position([{"x": 1, "y": 2.5}]) == (1, 2.5)
    assert parse_position([3, 4]) == (3, 4)
    assert parse_position([{"x": 1}]) is None
    assert parse_position([math.inf, 0]) is None
    assert parse_position([]) is None
    assert parse_position(["1", "2"]) is None
