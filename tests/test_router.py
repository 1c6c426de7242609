import pytest

from conftest import frame, make_service
from peerhub.constants import RK_CHAT, RK_OFFER, RK_SIGNAL


def _connect(svc, n: int) -> list[str]:
    return [svc.on_connect(object()) for _ in range(n)]


def test_signal_delivered_once_to_target_only() -> None:
    svc, transport = make_service()
    a, b, c = _connect(svc, 3)
    transport.clear()

    payload = {"type": "offer", "sdp": "v=0\r\n"}
    svc.on_frame(a, frame("signal", b, payload))

    assert transport.frames_for(a) == []
    assert transport.frames_for(c) == []
    got = transport.frames_for(b)
    assert len(got) == 1
    assert got[0]["t"] == "signal"
    assert got[0]["a"] == [b, payload, a]


@pytest.mark.parametrize("event", ["peerOffer", "peerAnswer", "peerIce"])
def test_negotiation_events_relayed_with_sender_appended(event: str) -> None:
    svc, transport = make_service()
    a, b = _connect(svc, 2)
    transport.clear()

    svc.on_frame(a, frame(event, b, {"candidate": "x"}))

    assert transport.sent == [(b, transport.sent[0][1])]
    assert transport.sent[0][1]["t"] == event
    assert transport.sent[0][1]["a"] == [b, {"candidate": "x"}, a]


def test_route_to_unknown_target_is_silent() -> None:
    svc, transport = make_service()
    (a,) = _connect(svc, 1)
    transport.clear()

    outgoing: list = []
    with svc._state_lock:
        assert svc.router.route(a, "nobody", RK_SIGNAL, {"x": 1}, outgoing) is False
    assert outgoing == []

    svc.on_frame(a, frame("signal", "nobody", {"x": 1}))
    assert transport.sent == []
    assert svc.stats_manager.get("dropped_unknown_target") == 2


def test_route_after_disconnect_is_noop() -> None:
    svc, transport = make_service()
    a, b = _connect(svc, 2)
    svc.on_disconnect(b)
    transport.clear()

    svc.on_frame(a, frame("peerOffer", b, {"sdp": "..."}))
    assert transport.sent == []
    assert b not in svc.registry.snapshot()


def test_route_preserves_per_sender_order() -> None:
    svc, transport = make_service()
    a, b = _connect(svc, 2)
    transport.clear()

    for i in range(10):
        svc.on_frame(a, frame("peerIce", b, {"seq": i}))

    assert [env["a"][1]["seq"] for env in transport.frames_for(b)] == list(range(10))


def test_route_rejects_unknown_kind() -> None:
    svc, _ = make_service()
    (a,) = _connect(svc, 1)
    with pytest.raises(ValueError):
        svc.router.route(a, a, "teleport", None, [])
    with pytest.raises(ValueError):
        svc.router.route_all("teleport", None, [])


def test_peer_cannot_trigger_route_kind_error() -> None:
    svc, transport = make_service()
    a, b = _connect(svc, 2)
    transport.clear()

    svc.on_frame(a, frame("teleport", b, "x"))
    svc.on_frame(a, frame("ice-candidate", b, "x"))

    assert transport.sent == []
    assert svc.stats_manager.get("dropped_unknown_kind") == 2


def test_route_direct_api_uses_event_for_kind() -> None:
    svc, transport = make_service()
    a, b = _connect(svc, 2)
    outgoing: list = []
    with svc._state_lock:
        assert svc.router.route(a, b, RK_OFFER, "sdp", outgoing)
    assert len(outgoing) == 1
    cid, env = outgoing[0]
    assert cid == b
    assert env["t"] == "peerOffer"
    assert env["a"] == [b, "sdp", a]


def test_name_accepted_is_echoed_to_sender_only() -> None:
    svc, transport = make_service()
    a, b = _connect(svc, 2)
    transport.clear()

    svc.on_frame(a, frame("name", "  Alice "))

    assert transport.frames_for(a, "name")[0]["a"] == ["Alice"]
    assert transport.frames_for(b) == []


def test_name_rejection_is_silent() -> None:
    svc, transport = make_service()
    a, b = _connect(svc, 2)
    svc.on_frame(a, frame("name", "Alice"))
    transport.clear()

    svc.on_frame(b, frame("name", "Alice"))
    svc.on_frame(b, frame("name", "   "))
    svc.on_frame(b, frame("name"))

    assert transport.sent == []
    assert svc.registry.get(b).name is None
    assert svc.stats_manager.get("names_rejected") == 3


def test_name_change_does_not_broadcast_presence() -> None:
    svc, transport = make_service()
    a, b = _connect(svc, 2)
    transport.clear()

    svc.on_frame(a, frame("name", "Alice"))

    assert transport.frames_for(b, "clients") == []
    assert transport.frames_for(a, "clients") == []


def test_chat_from_named_sender_reaches_everyone_once() -> None:
    svc, transport = make_service()
    a, b, c = _connect(svc, 3)
    svc.on_frame(a, frame("name", "Alice"))
    transport.clear()

    svc.on_frame(a, frame("message", "hi"))

    for cid in (a, b, c):
        got = transport.frames_for(cid, "message")
        assert len(got) == 1
        assert got[0]["a"] == ["hi", {"id": a, "name": "Alice"}]


def test_chat_from_unnamed_sender_is_dropped() -> None:
    svc, transport = make_service()
    a, b = _connect(svc, 2)
    transport.clear()

    svc.on_frame(a, frame("message", "hi"))

    assert transport.sent == []
    assert svc.stats_manager.get("chat_dropped_unnamed") == 1


def test_chat_without_name_requirement_and_without_echo() -> None:
    svc, transport = make_service(require_name_for_chat=False, chat_echo_to_sender=False)
    a, b, c = _connect(svc, 3)
    transport.clear()

    svc.on_frame(a, frame("message", {"text": "hi"}))

    assert transport.frames_for(a) == []
    for cid in (b, c):
        got = transport.frames_for(cid, "message")
        assert len(got) == 1
        assert got[0]["a"] == [{"text": "hi"}, {"id": a}]


def test_route_all_counts_recipients() -> None:
    svc, _ = make_service()
    a, b, c = _connect(svc, 3)
    outgoing: list = []
    with svc._state_lock:
        n = svc.router.route_all(RK_CHAT, "x", outgoing, sender_id=a, include_sender=False)
    assert n == 2
    assert sorted(cid for cid, _ in outgoing) == sorted([b, c])


def test_position_update_is_stored_not_relayed() -> None:
    svc, transport = make_service()
    a, b = _connect(svc, 2)
    transport.clear()

    svc.on_frame(a, frame("update", {"x": 10, "y": 20}))
    svc.on_frame(b, frame("update", 3, 4))

    assert transport.sent == []
    assert svc.registry.get(a).position == (10, 20)
    assert svc.registry.get(b).position == (3, 4)


def test_bad_position_update_is_ignored() -> None:
    svc, transport = make_service()
    (a,) = _connect(svc, 1)

    svc.on_frame(a, frame("update", {"x": "ten", "y": 20}))
    svc.on_frame(a, frame("update"))
    svc.on_frame(a, frame("update", True, 1))

    assert svc.registry.get(a).position is None


def test_directed_position_update() -> None:
    svc, transport = make_service()
    a, b, c = _connect(svc, 3)
    transport.clear()

    svc.on_frame(a, frame("update", b, {"x": 1, "y": 2}))

    assert transport.frames_for(c) == []
    got = transport.frames_for(b)
    assert len(got) == 1
    assert got[0]["t"] == "update"
    assert got[0]["a"] == [{"x": 1, "y": 2}, a]
    assert svc.registry.get(a).position == (1, 2)


def test_directed_position_update_to_unknown_target_changes_nothing() -> None:
    svc, transport = make_service()
    (a,) = _connect(svc, 1)
    transport.clear()

    svc.on_frame(a, frame("update", "ghost", {"x": 1, "y": 2}))

    assert transport.sent == []
    assert svc.registry.get(a).position is None


def test_malformed_and_unknown_frames_are_dropped() -> None:
    svc, transport = make_service()
    (a,) = _connect(svc, 1)
    transport.clear()

    svc.on_frame(a, "not json")
    svc.on_frame(a, '["name", "Alice"]')
    svc.on_frame(a, '{"a": ["Alice"]}')
    svc.on_frame(a, b"\xff\xfe")
    svc.on_frame(a, frame("dance", 1))

    assert transport.sent == []
    assert svc.stats_manager.get("frames_bad") == 4
    assert svc.stats_manager.get("dropped_unknown_kind") == 1


def test_frame_from_unknown_connection_is_ignored() -> None:
    svc, transport = make_service()
    a, b = _connect(svc, 2)
    svc.on_disconnect(a)
    transport.clear()

    svc.on_frame(a, frame("signal", b, "late"))
    svc.on_frame(a, frame("name", "Alice"))

    assert transport.sent == []
    assert svc.registry.get_by_name("Alice") is None
    assert svc.stats_manager.get("frames_in") == 0


def test_binary_cbor_frames_are_routed() -> None:
    svc, transport = make_service()
    a, b = _connect(svc, 2)
    transport.clear()

    svc.on_frame(a, frame("signal", b, b"\x01\x02", binary=True))

    got = transport.frames_for(b, "signal")
    assert got[0]["a"] == [b, b"\x01\x02", a]
